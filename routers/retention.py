# routers/retention.py
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item
from deps import get_current_admin
from schemas import RetentionPolicyCreate, RetentionPolicyRead, RetentionPolicyUpdate
from services.retention import create_policy, delete_policy, get_policy, policies_query, update_policy
from services.scope import AdminCaller

router = APIRouter(prefix="/retention/policies", tags=["retention"])


def to_policy_read(p) -> RetentionPolicyRead:
    return RetentionPolicyRead.model_validate(p)


@router.get("", response_model=list[RetentionPolicyRead])
async def list_policies(params: RAListParams = Depends(), caller: AdminCaller = Depends(get_current_admin)):
    qs = apply_filter_map(policies_query(caller), params.filters, {
        "entity_type": lambda q, v: q.filter(entity_type=str(v)),
        "state_id": lambda q, v: q.filter(state_id=v),
        "board_id": lambda q, v: q.filter(board_id=v),
    })
    order = parse_sort(params.sort, ["entity_type", "retention_days", "created_at"], default="-created_at")
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_policy_read)


@router.get("/{policy_id}", response_model=RetentionPolicyRead)
async def read_policy(policy_id: UUID, caller: AdminCaller = Depends(get_current_admin)):
    return respond_item(await get_policy(caller, policy_id), to_policy_read)


@router.post("", response_model=RetentionPolicyRead, status_code=201)
async def add_policy(payload: RetentionPolicyCreate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await create_policy(caller, **payload.model_dump())
    return respond_item(obj, to_policy_read, status_code=201)


@router.put("/{policy_id}", response_model=RetentionPolicyRead)
async def edit_policy(policy_id: UUID, payload: RetentionPolicyUpdate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await update_policy(caller, policy_id, **payload.model_dump(exclude_unset=True))
    return respond_item(obj, to_policy_read)


@router.delete("/{policy_id}", status_code=204)
async def remove_policy(policy_id: UUID, caller: AdminCaller = Depends(get_current_admin)):
    await delete_policy(caller, policy_id)
    return Response(status_code=204)
