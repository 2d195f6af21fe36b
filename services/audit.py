# services/audit.py
from __future__ import annotations
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from tortoise.queryset import QuerySet

from models import AuditLog
from services.scope import Caller, Permission, require_permission, scope_of

logger = logging.getLogger(__name__)


async def log_action(
    user_id: Optional[UUID],
    action: str,
    entity: str,
    entity_id: Any,
    metadata: Optional[Dict[str, Any]] = None,
    *,
    using_db=None,
) -> Optional[AuditLog]:
    """
    Record an audit event. Never raises: a failed write is logged and the
    triggering operation carries on. `user_id` is None for system actions.
    """
    try:
        entry = await AuditLog.create(
            user_id=user_id,
            action=action,
            entity=entity,
            entity_id=str(entity_id),
            # Decimal / UUID / datetime -> JSON-safe
            metadata=jsonable_encoder(metadata) if metadata is not None else None,
            using_db=using_db,
        )
    except Exception:
        logger.warning("audit write failed: %s %s %s", action, entity, entity_id, exc_info=True)
        return None
    logger.debug("audit %s %s.%s by %s", action, entity, entity_id, user_id)
    return entry


def audit_logs_query(caller: Caller) -> QuerySet[AuditLog]:
    """Audit entries whose acting user falls inside the caller's scope."""
    require_permission(caller, Permission.AUDIT_READ)
    return scope_of(caller).filter(AuditLog.all(), "user")
