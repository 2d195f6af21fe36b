# routers/states.py
from uuid import UUID

from fastapi import APIRouter, Depends

from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item
from deps import get_current_admin
from schemas import StateCreate, StateRead
from services.reference import create_state, get_state, states_query
from services.scope import AdminCaller

router = APIRouter(prefix="/states", tags=["states"])


def to_state_read(s) -> StateRead:
    return StateRead.model_validate(s)


@router.get("", response_model=list[StateRead])
async def list_states(params: RAListParams = Depends(), caller: AdminCaller = Depends(get_current_admin)):
    qs = states_query(caller)
    fmap = {
        "q": lambda q, v: q.filter(name__icontains=str(v)),
        "code": lambda q, v: q.filter(code=str(v).upper()),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["name", "code", "created_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_state_read)


@router.get("/{state_id}", response_model=StateRead)
async def read_state(state_id: UUID, caller: AdminCaller = Depends(get_current_admin)):
    return respond_item(await get_state(caller, state_id), to_state_read)


@router.post("", response_model=StateRead, status_code=201)
async def add_state(payload: StateCreate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await create_state(caller, **payload.model_dump())
    return respond_item(obj, to_state_read, status_code=201)
