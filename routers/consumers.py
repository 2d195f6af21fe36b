# routers/consumers.py
from uuid import UUID

from fastapi import APIRouter, Depends

from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item
from deps import get_current_admin
from schemas import ConsumerCreate, ConsumerRead
from services.consumers import consumers_query, create_consumer, get_consumer
from services.scope import AdminCaller

router = APIRouter(prefix="/consumers", tags=["consumers"])


def to_consumer_read(c) -> ConsumerRead:
    return ConsumerRead.model_validate(c)


@router.get("", response_model=list[ConsumerRead])
async def list_consumers(params: RAListParams = Depends(), caller: AdminCaller = Depends(get_current_admin)):
    qs = consumers_query(caller)
    fmap = {
        "q": lambda q, v: q.filter(name__icontains=str(v)),
        "phone_number": lambda q, v: q.filter(phone_number__icontains=str(v)),
        "state_id": lambda q, v: q.filter(state_id=v),
        "board_id": lambda q, v: q.filter(board_id=v),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["name", "created_at", "updated_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_consumer_read)


@router.get("/{consumer_id}", response_model=ConsumerRead)
async def read_consumer(consumer_id: UUID, caller: AdminCaller = Depends(get_current_admin)):
    return respond_item(await get_consumer(caller, consumer_id), to_consumer_read)


@router.post("", response_model=ConsumerRead, status_code=201)
async def register_consumer(payload: ConsumerCreate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await create_consumer(caller, **payload.model_dump())
    return respond_item(obj, to_consumer_read, status_code=201)
