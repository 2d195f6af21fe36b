# services/retention.py
from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Type
from uuid import UUID

from tortoise import connections
from tortoise.models import Model
from tortoise.queryset import QuerySet
from tortoise.transactions import in_transaction

from models import (
    AuditLog,
    Board,
    CustomerQuery,
    DataRetentionPolicy,
    GeneratedReportFile,
    MeterReading,
    RetentionEntityType,
    Role,
    State,
)
from services import config
from services.aggregation import as_utc
from services.audit import log_action
from services.errors import ForbiddenError, InvalidInputError, NotFoundError
from services.scope import (
    ALL_SCOPE,
    Caller,
    Permission,
    Scope,
    ScopeLevel,
    require_permission,
    scope_of,
)

logger = logging.getLogger(__name__)

UTC = timezone.utc

# entity type -> (model, age column, relation path to the object carrying state_id/board_id)
SWEEP_TARGETS: Dict[RetentionEntityType, Tuple[Type[Model], str, str]] = {
    RetentionEntityType.METER_READING: (MeterReading, "timestamp", "meter__consumer"),
    RetentionEntityType.AUDIT_LOG: (AuditLog, "created_at", "user"),
    RetentionEntityType.GENERATED_REPORT_FILE: (GeneratedReportFile, "created_at", ""),
    RetentionEntityType.CUSTOMER_QUERY: (CustomerQuery, "created_at", "consumer"),
}


MAX_RETENTION_DAYS = 36500


def _check_days(days: int) -> int:
    if days is None or not 1 <= int(days) <= MAX_RETENTION_DAYS:
        raise InvalidInputError(f"retention_days must be between 1 and {MAX_RETENTION_DAYS}")
    return int(days)


def policy_scope(policy: DataRetentionPolicy) -> Scope:
    """The tenant slice a policy sweeps: its board, else its state, else everything."""
    if policy.board_id is not None:
        return Scope(ScopeLevel.BOARD, state_id=policy.state_id, board_id=policy.board_id)
    if policy.state_id is not None:
        return Scope(ScopeLevel.STATE, state_id=policy.state_id)
    return ALL_SCOPE


# ---------- Policy CRUD ----------

def policies_query(caller: Caller) -> QuerySet[DataRetentionPolicy]:
    require_permission(caller, Permission.RETENTION_MANAGE)
    return scope_of(caller).filter(DataRetentionPolicy.all())


async def get_policy(caller: Caller, policy_id: UUID) -> DataRetentionPolicy:
    obj = await policies_query(caller).filter(id=policy_id).first()
    if obj is None:
        raise NotFoundError("DataRetentionPolicy", policy_id)
    return obj


async def create_policy(
    caller: Caller,
    *,
    entity_type: RetentionEntityType,
    retention_days: int,
    state_id: Optional[UUID] = None,
    board_id: Optional[UUID] = None,
) -> DataRetentionPolicy:
    """
    SUPER_ADMIN may target any scope (none at all is a global policy).
    STATE_ADMIN policies are pinned to the admin's state, BOARD_ADMIN
    policies to the admin's board.
    """
    admin = require_permission(caller, Permission.RETENTION_MANAGE)
    days = _check_days(retention_days)

    if admin.role is Role.SUPER_ADMIN:
        pass
    elif admin.role is Role.STATE_ADMIN:
        if admin.state_id is None or (state_id and state_id != admin.state_id):
            raise ForbiddenError("You can only create policies for your own state")
        state_id = admin.state_id
    elif admin.role is Role.BOARD_ADMIN:
        if admin.board_id is None or (board_id and board_id != admin.board_id):
            raise ForbiddenError("You can only create policies for your own board")
        board_id = admin.board_id
        state_id = admin.state_id
    else:
        raise ForbiddenError("You do not have permission to create retention policies")

    if board_id is not None:
        board = await Board.get_or_none(id=board_id)
        if board is None:
            raise NotFoundError("ElectricityBoard", board_id)
        if state_id is None:
            state_id = board.state_id
        elif board.state_id != state_id:
            raise InvalidInputError(f"ElectricityBoard '{board_id}' does not belong to state '{state_id}'")
    if state_id is not None and not await State.exists(id=state_id):
        raise NotFoundError("State", state_id)

    policy = await DataRetentionPolicy.create(
        state_id=state_id,
        board_id=board_id,
        entity_type=entity_type,
        retention_days=days,
    )
    await log_action(admin.user_id, "RETENTION_POLICY_CREATED", "DataRetentionPolicy", policy.id, {
        "entity_type": entity_type,
        "retention_days": days,
        "state_id": state_id,
        "board_id": board_id,
    })
    return policy


async def update_policy(
    caller: Caller,
    policy_id: UUID,
    *,
    entity_type: Optional[RetentionEntityType] = None,
    retention_days: Optional[int] = None,
) -> DataRetentionPolicy:
    policy = await get_policy(caller, policy_id)
    changes: Dict[str, Any] = {}
    if entity_type is not None:
        changes["entity_type"] = entity_type
    if retention_days is not None:
        changes["retention_days"] = _check_days(retention_days)
    if not changes:
        return policy
    for k, v in changes.items():
        setattr(policy, k, v)
    await policy.save(update_fields=list(changes))
    await log_action(caller.user_id, "RETENTION_POLICY_UPDATED", "DataRetentionPolicy", policy.id, changes)
    return policy


async def delete_policy(caller: Caller, policy_id: UUID) -> UUID:
    policy = await get_policy(caller, policy_id)
    await policy.delete()
    await log_action(caller.user_id, "RETENTION_POLICY_DELETED", "DataRetentionPolicy", policy.id, {
        "entity_type": policy.entity_type,
        "retention_days": policy.retention_days,
    })
    return policy.id


# ---------- Sweep ----------

class RetentionSweeper:
    """
    Deletes rows older than each policy's retention window.

    Policies run concurrently (at most `concurrency` at a time), each in its own
    transaction. A failing policy is logged and reported with deleted_count=0;
    the others still run.
    """

    def __init__(
        self,
        connection_name: str = config.DB_CONNECTION,
        *,
        concurrency: int = config.RETENTION_CONCURRENCY,
        chunk_size: int = config.RETENTION_DELETE_CHUNK,
    ):
        self.connection_name = connection_name
        self.concurrency = max(1, concurrency)
        self.chunk_size = max(1, chunk_size)

    @property
    def db(self):
        return connections.get(self.connection_name)

    async def _purge(self, policy: DataRetentionPolicy, cutoff: datetime) -> int:
        model, age_field, path = SWEEP_TARGETS[RetentionEntityType(policy.entity_type)]
        qs = policy_scope(policy).filter(model.filter(**{f"{age_field}__lt": cutoff}), path)

        deleted = 0
        async with in_transaction(self.connection_name) as conn:
            # relation filters cannot go into a DELETE directly; collect ids first
            ids = await qs.using_db(conn).values_list("id", flat=True)
            for i in range(0, len(ids), self.chunk_size):
                chunk = ids[i:i + self.chunk_size]
                deleted += await model.filter(id__in=chunk).using_db(conn).delete()
        return deleted

    async def _run_policy(self, policy: DataRetentionPolicy, now: datetime) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "policy_id": policy.id,
            "entity_type": policy.entity_type,
            "retention_days": policy.retention_days,
            "cutoff_date": None,
            "deleted_count": 0,
        }
        try:
            # rows stored before the day bound existed can still overflow here
            cutoff = now - timedelta(days=policy.retention_days)
            result["entity_type"] = RetentionEntityType(policy.entity_type).value
            result["cutoff_date"] = cutoff
            result["deleted_count"] = await self._purge(policy, cutoff)
        except Exception:
            logger.exception("retention policy %s (%s) failed", policy.id, policy.entity_type)
            result["error"] = "Cleanup failed for this policy"
            return result

        logger.info(
            "retention policy %s: deleted %d %s rows older than %s",
            policy.id, result["deleted_count"], result["entity_type"], cutoff.isoformat(),
        )
        return result

    async def run_cleanup(self, now: Optional[datetime] = None, *, actor_id: Optional[UUID] = None) -> Dict[str, Any]:
        now = as_utc(now) if now else datetime.now(tz=UTC)
        policies: List[DataRetentionPolicy] = await (
            DataRetentionPolicy.all().using_db(self.db).order_by("created_at")
        )
        sem = asyncio.Semaphore(self.concurrency)

        async def _bounded(policy: DataRetentionPolicy) -> Dict[str, Any]:
            async with sem:
                return await self._run_policy(policy, now)

        results = await asyncio.gather(*(_bounded(p) for p in policies))

        # audited once every policy transaction has closed
        for result in results:
            if result.get("error"):
                continue
            await log_action(actor_id, "RETENTION_CLEANUP", "DataRetentionPolicy", result["policy_id"], {
                "entity_type": result["entity_type"],
                "cutoff_date": result["cutoff_date"],
                "deleted_count": result["deleted_count"],
            }, using_db=self.db)
        return {"executed_at": now, "results": list(results)}


async def run_retention_cleanup(caller: Caller, sweeper: RetentionSweeper) -> Dict[str, Any]:
    """On-demand sweep. Deletes across every tenant, so only SUPER_ADMIN may trigger it."""
    admin = require_permission(caller, Permission.RETENTION_RUN)
    return await sweeper.run_cleanup(actor_id=admin.user_id)
