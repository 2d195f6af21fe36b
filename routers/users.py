# routers/users.py
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item
from deps import get_current_admin
from schemas import UserCreate, UserRead, UserRoleUpdate, UserScopeUpdate
from services.scope import AdminCaller
from services.users import (
    create_user, delete_user, get_own_profile, get_user,
    update_user_role, update_user_scope, users_query,
)

router = APIRouter(prefix="/users", tags=["users"])


def to_user_read(u) -> UserRead:
    return UserRead.model_validate(u)


@router.get("", response_model=list[UserRead])
async def list_users(params: RAListParams = Depends(), caller: AdminCaller = Depends(get_current_admin)):
    qs = apply_filter_map(users_query(caller), params.filters, {
        "q": lambda q, v: q.filter(name__icontains=str(v)),
        "role": lambda q, v: q.filter(role=str(v).upper()),
        "state_id": lambda q, v: q.filter(state_id=v),
        "board_id": lambda q, v: q.filter(board_id=v),
    })
    order = parse_sort(params.sort, ["name", "role", "created_at"], default="-created_at")
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_user_read)


@router.get("/me", response_model=UserRead)
async def read_me(caller: AdminCaller = Depends(get_current_admin)):
    return respond_item(await get_own_profile(caller), to_user_read)


@router.get("/{user_id}", response_model=UserRead)
async def read_user(user_id: UUID, caller: AdminCaller = Depends(get_current_admin)):
    return respond_item(await get_user(caller, user_id), to_user_read)


@router.post("", response_model=UserRead, status_code=201)
async def add_user(payload: UserCreate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await create_user(caller, **payload.model_dump())
    return respond_item(obj, to_user_read, status_code=201)


@router.put("/{user_id}/role", response_model=UserRead)
async def change_role(user_id: UUID, payload: UserRoleUpdate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await update_user_role(caller, user_id, payload.role)
    return respond_item(obj, to_user_read)


@router.put("/{user_id}/scope", response_model=UserRead)
async def change_scope(user_id: UUID, payload: UserScopeUpdate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await update_user_scope(caller, user_id, **payload.model_dump())
    return respond_item(obj, to_user_read)


@router.delete("/{user_id}", status_code=204)
async def remove_user(user_id: UUID, caller: AdminCaller = Depends(get_current_admin)):
    await delete_user(caller, user_id)
    return Response(status_code=204)
