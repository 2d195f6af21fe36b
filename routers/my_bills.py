# routers/my_bills.py
"""Consumer self-service: a consumer's own current bills."""
from uuid import UUID

from fastapi import APIRouter, Depends

from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item
from deps import get_billing_service, get_current_consumer
from schemas import BillRead, BillViewRead
from services.billing import BillingService
from services.scope import ConsumerCaller

router = APIRouter(prefix="/me/bills", tags=["self-service"])


def to_bill_read(b) -> BillRead:
    return BillRead.model_validate(b)


@router.get("", response_model=list[BillRead])
async def list_my_bills(
    params: RAListParams = Depends(),
    caller: ConsumerCaller = Depends(get_current_consumer),
    svc: BillingService = Depends(get_billing_service),
):
    qs = apply_filter_map(svc.consumer_bills_query(caller), params.filters, {
        "meter_id": lambda q, v: q.filter(meter_id=v),
    })
    order = parse_sort(params.sort, ["billing_start", "billing_end", "total_amount"], default="-billing_start")
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_bill_read)


@router.get("/{bill_id}", response_model=BillRead)
async def read_my_bill(
    bill_id: UUID,
    caller: ConsumerCaller = Depends(get_current_consumer),
    svc: BillingService = Depends(get_billing_service),
):
    return respond_item(await svc.get_consumer_bill(caller, bill_id), to_bill_read)


@router.post("/{bill_id}/view", response_model=BillViewRead, status_code=201)
async def mark_viewed(
    bill_id: UUID,
    caller: ConsumerCaller = Depends(get_current_consumer),
    svc: BillingService = Depends(get_billing_service),
):
    view = await svc.record_bill_view(caller, bill_id)
    return respond_item(view, BillViewRead.model_validate, status_code=201)
