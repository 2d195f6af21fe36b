"""Consumer self-service: a consumer's own meters and their consumption."""
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from api_utils import RAListParams, parse_sort, paginate_and_respond, respond_item
from deps import get_current_consumer
from schemas import ConsumptionSummaryRead, MeterRead
from services.meters import consumer_meter_consumption, consumer_meters_query
from services.scope import ConsumerCaller

router = APIRouter(prefix="/me/meters", tags=["self-service"])


@router.get("", response_model=list[MeterRead])
async def list_my_meters(params: RAListParams = Depends(), caller: ConsumerCaller = Depends(get_current_consumer)):
    order = parse_sort(params.sort, ["meter_number", "status", "created_at"], default="-created_at")
    return await paginate_and_respond(
        consumer_meters_query(caller), params.skip, params.limit, order, MeterRead.model_validate
    )


@router.get("/{meter_id}/consumption", response_model=ConsumptionSummaryRead)
async def read_my_consumption(
    meter_id: UUID,
    period_start: datetime = Query(...),
    period_end: datetime = Query(...),
    caller: ConsumerCaller = Depends(get_current_consumer),
):
    summary = await consumer_meter_consumption(caller, meter_id, period_start, period_end)
    return respond_item(summary, ConsumptionSummaryRead.model_validate)
