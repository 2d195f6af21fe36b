# routers/tariffs.py
from uuid import UUID

from fastapi import APIRouter, Depends
from tortoise.expressions import Q

from api_utils import RAListParams, parse_dt, parse_sort, apply_filter_map, paginate_and_respond, respond_item
from deps import get_current_admin
from schemas import TariffCreate, TariffRead
from services.scope import AdminCaller
from services.tariffs import create_tariff, get_tariff, tariffs_query

router = APIRouter(prefix="/tariffs", tags=["tariffs"])


def to_tariff_read(t) -> TariffRead:
    return TariffRead.model_validate(t)


@router.get("", response_model=list[TariffRead])
async def list_tariffs(params: RAListParams = Depends(), caller: AdminCaller = Depends(get_current_admin)):
    qs = tariffs_query(caller)
    fmap = {
        "state_id": lambda q, v: q.filter(state_id=v),
        "type": lambda q, v: q.filter(type=str(v).upper()),
        # active at a point in time
        "active_at": lambda q, v: q.filter(effective_from__lte=parse_dt(v)).filter(
            Q(effective_to__isnull=True) | Q(effective_to__gt=parse_dt(v))
        ),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["type", "unit_rate", "effective_from", "effective_to", "created_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_tariff_read)


@router.get("/{tariff_id}", response_model=TariffRead)
async def read_tariff(tariff_id: UUID, caller: AdminCaller = Depends(get_current_admin)):
    return respond_item(await get_tariff(caller, tariff_id), to_tariff_read)


@router.post("", response_model=TariffRead, status_code=201)
async def add_tariff(payload: TariffCreate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await create_tariff(caller, **payload.model_dump())
    return respond_item(obj, to_tariff_read, status_code=201)
