# routers/billing.py
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from api_utils import (
    RAListParams, parse_dt, parse_sort, apply_filter_map,
    paginate_and_respond, respond_item, respond_list,
)
from deps import get_billing_service, get_current_admin
from models import Granularity
from schemas import (
    AggregateRead, AggregateRequest, BillDetailRead, BillGenerate, BillRead,
    BillRecalculate, RecalculationLogRead, RecalculationRead,
)
from services.billing import BillingService, Recalculation
from services.scope import AdminCaller

router = APIRouter(prefix="/billing", tags=["billing"])

BILL_FILTERS = {
    "meter_id": lambda q, v: q.filter(meter_id=v),
    "consumer_id": lambda q, v: q.filter(meter__consumer_id=v),
    "tariff_id": lambda q, v: q.filter(tariff_id=v),
    "billing_start_gte": lambda q, v: q.filter(billing_start__gte=parse_dt(v)),
    "billing_end_lte": lambda q, v: q.filter(billing_end__lte=parse_dt(v)),
}
BILL_SORT = ["billing_start", "billing_end", "total_amount", "version", "generated_at"]


def to_bill_read(b) -> BillRead:
    return BillRead.model_validate(b)


def to_bill_detail(b) -> BillDetailRead:
    # reverse relation is not a list; fold it explicitly
    base = BillRead.model_validate(b).model_dump()
    base["recalculations"] = [RecalculationLogRead.model_validate(r) for r in b.recalculations]
    return BillDetailRead.model_validate(base)


def to_recalculation_read(r: Recalculation) -> RecalculationRead:
    return RecalculationRead(
        bill=BillRead.model_validate(r.bill),
        log=RecalculationLogRead.model_validate(r.log),
        superseded_id=r.superseded_id,
    )


@router.post("/generate", response_model=BillRead, status_code=201)
async def generate_bill(
    payload: BillGenerate,
    caller: AdminCaller = Depends(get_current_admin),
    svc: BillingService = Depends(get_billing_service),
):
    bill = await svc.generate(caller, payload.meter_id, payload.billing_start, payload.billing_end, payload.tax_rate)
    return respond_item(bill, to_bill_read, status_code=201)


@router.post("/aggregate", response_model=AggregateRead, status_code=201)
async def aggregate_consumption(
    payload: AggregateRequest,
    caller: AdminCaller = Depends(get_current_admin),
    svc: BillingService = Depends(get_billing_service),
):
    agg = await svc.aggregate_consumption(
        caller, payload.meter_id, payload.period_start, payload.period_end, payload.granularity
    )
    return respond_item(agg, AggregateRead.model_validate, status_code=201)


@router.get("", response_model=list[BillRead])
async def list_bills(
    params: RAListParams = Depends(),
    caller: AdminCaller = Depends(get_current_admin),
    svc: BillingService = Depends(get_billing_service),
):
    qs = apply_filter_map(svc.bills_query(caller), params.filters, BILL_FILTERS)
    order = parse_sort(params.sort, BILL_SORT, default="-generated_at")
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_bill_read)


@router.get("/meter/{meter_id}/aggregates", response_model=list[AggregateRead])
async def list_meter_aggregates(
    meter_id: UUID,
    granularity: Optional[Granularity] = None,
    params: RAListParams = Depends(),
    caller: AdminCaller = Depends(get_current_admin),
    svc: BillingService = Depends(get_billing_service),
):
    qs = await svc.aggregates_query(caller, meter_id, granularity)
    order = parse_sort(params.sort, ["period_start", "granularity", "total_units"], default="-period_start")
    return await paginate_and_respond(qs, params.skip, params.limit, order, AggregateRead.model_validate)


@router.get("/{bill_id}", response_model=BillDetailRead)
async def get_bill(
    bill_id: UUID,
    caller: AdminCaller = Depends(get_current_admin),
    svc: BillingService = Depends(get_billing_service),
):
    return respond_item(await svc.get_bill(caller, bill_id), to_bill_detail)


@router.get("/{bill_id}/versions", response_model=list[BillRead])
async def list_bill_versions(
    bill_id: UUID,
    caller: AdminCaller = Depends(get_current_admin),
    svc: BillingService = Depends(get_billing_service),
):
    return respond_list(await svc.bill_versions(caller, bill_id), to_bill_read)


@router.get("/{bill_id}/recalculations", response_model=list[RecalculationLogRead])
async def list_recalculations(
    bill_id: UUID,
    caller: AdminCaller = Depends(get_current_admin),
    svc: BillingService = Depends(get_billing_service),
):
    return respond_list(await svc.recalculation_history(caller, bill_id), RecalculationLogRead.model_validate)


@router.post("/{bill_id}/recalculate", response_model=RecalculationRead, status_code=201)
async def recalculate_bill(
    bill_id: UUID,
    payload: BillRecalculate,
    caller: AdminCaller = Depends(get_current_admin),
    svc: BillingService = Depends(get_billing_service),
):
    result = await svc.recalculate(caller, bill_id, payload.reason)
    return respond_item(result, to_recalculation_read, status_code=201)
