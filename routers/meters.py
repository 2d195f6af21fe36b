# routers/meters.py
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item
from deps import get_current_admin
from schemas import ConsumptionSummaryRead, MeterCreate, MeterRead, MeterStatusUpdate, MeterTariffAssign
from services.meters import (
    assign_tariff, create_meter, get_meter, meter_consumption, meters_query, update_meter_status,
)
from services.scope import AdminCaller

router = APIRouter(prefix="/meters", tags=["meters"])


def to_meter_read(m) -> MeterRead:
    return MeterRead.model_validate(m)


@router.get("", response_model=list[MeterRead])
async def list_meters(params: RAListParams = Depends(), caller: AdminCaller = Depends(get_current_admin)):
    qs = meters_query(caller)
    fmap = {
        "meter_number": lambda q, v: q.filter(meter_number__icontains=str(v)),
        "status": lambda q, v: q.filter(status=str(v).upper()),
        "consumer_id": lambda q, v: q.filter(consumer_id=v),
        "tariff_id": lambda q, v: q.filter(tariff_id=v),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["meter_number", "status", "created_at", "updated_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_meter_read)


@router.get("/{meter_id}", response_model=MeterRead)
async def read_meter(meter_id: UUID, caller: AdminCaller = Depends(get_current_admin)):
    return respond_item(await get_meter(caller, meter_id), to_meter_read)


@router.get("/{meter_id}/consumption", response_model=ConsumptionSummaryRead)
async def read_consumption(
    meter_id: UUID,
    period_start: datetime = Query(...),
    period_end: datetime = Query(...),
    caller: AdminCaller = Depends(get_current_admin),
):
    summary = await meter_consumption(caller, meter_id, period_start, period_end)
    return respond_item(summary, ConsumptionSummaryRead.model_validate)


@router.post("", response_model=MeterRead, status_code=201)
async def add_meter(payload: MeterCreate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await create_meter(caller, **payload.model_dump())
    return respond_item(obj, to_meter_read, status_code=201)


@router.put("/{meter_id}/tariff", response_model=MeterRead)
async def relink_tariff(meter_id: UUID, payload: MeterTariffAssign, caller: AdminCaller = Depends(get_current_admin)):
    obj = await assign_tariff(caller, meter_id, payload.tariff_id)
    return respond_item(obj, to_meter_read)


@router.put("/{meter_id}/status", response_model=MeterRead)
async def change_status(meter_id: UUID, payload: MeterStatusUpdate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await update_meter_status(caller, meter_id, payload.status)
    return respond_item(obj, to_meter_read)
