# routers/audit_logs.py
from fastapi import APIRouter, Depends

from api_utils import RAListParams, parse_dt, parse_sort, apply_filter_map, paginate_and_respond
from deps import get_current_admin
from schemas import AuditLogRead
from services.audit import audit_logs_query
from services.scope import AdminCaller

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=list[AuditLogRead])
async def list_audit_logs(params: RAListParams = Depends(), caller: AdminCaller = Depends(get_current_admin)):
    qs = apply_filter_map(audit_logs_query(caller), params.filters, {
        "action": lambda q, v: q.filter(action=str(v)),
        "entity": lambda q, v: q.filter(entity=str(v)),
        "entity_id": lambda q, v: q.filter(entity_id=str(v)),
        "user_id": lambda q, v: q.filter(user_id=v),
        "created_at_gte": lambda q, v: q.filter(created_at__gte=parse_dt(v)),
        "created_at_lte": lambda q, v: q.filter(created_at__lte=parse_dt(v)),
    })
    order = parse_sort(params.sort, ["action", "entity", "created_at"], default="-created_at")
    return await paginate_and_respond(qs, params.skip, params.limit, order, AuditLogRead.model_validate)
