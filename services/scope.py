# services/scope.py
"""
Caller identities, role permissions and the tenant scope predicate.

Every read or write against tenant data goes through `Scope.filter(...)`
with the relation path that leads from the queried model to the object
holding `state_id` / `board_id` (usually a Consumer):

    Consumer           -> ""
    SmartMeter         -> "consumer"
    BillingReport      -> "meter__consumer"
    MeterReading       -> "meter__consumer"
    AuditLog           -> "user"

A caller that is missing the state/board its role requires gets a scope
that matches nothing.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
from uuid import UUID

from tortoise.expressions import Q
from tortoise.queryset import QuerySet

from models import Role
from services.errors import ForbiddenError


# ------------------------------------------------------------------------------
# Permissions
# ------------------------------------------------------------------------------
class Permission(str, Enum):
    STATE_CREATE = "state:create"
    BOARD_CREATE = "board:create"
    BOARD_UPDATE = "board:update"
    BOARD_DELETE = "board:delete"
    TARIFF_MANAGE = "tariff:manage"
    METER_CREATE = "meter:create"
    METER_READ = "meter:read"
    METER_ASSIGN = "meter:assign"
    METER_UPDATE = "meter:update"
    CONSUMER_CREATE = "consumer:create"
    CONSUMER_READ = "consumer:read"
    BILLING_READ = "billing:read"
    BILLING_GENERATE = "billing:generate"
    BILLING_RECALCULATE = "billing:recalculate"
    RETENTION_MANAGE = "retention:manage"
    RETENTION_RUN = "retention:run"
    AUDIT_READ = "audit:read"
    USER_MANAGE = "user:manage"


_TENANT_ADMIN = frozenset({
    Permission.TARIFF_MANAGE,
    Permission.METER_CREATE,
    Permission.METER_READ,
    Permission.METER_ASSIGN,
    Permission.METER_UPDATE,
    Permission.CONSUMER_CREATE,
    Permission.CONSUMER_READ,
    Permission.BILLING_READ,
    Permission.BILLING_GENERATE,
    Permission.BILLING_RECALCULATE,
    Permission.RETENTION_MANAGE,
    Permission.BOARD_UPDATE,
    Permission.USER_MANAGE,
})

_READ_ONLY = frozenset({
    Permission.METER_READ,
    Permission.CONSUMER_READ,
    Permission.BILLING_READ,
})

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.SUPER_ADMIN: frozenset(Permission),
    Role.STATE_ADMIN: _TENANT_ADMIN | {Permission.BOARD_CREATE, Permission.BOARD_DELETE, Permission.AUDIT_READ},
    Role.BOARD_ADMIN: _TENANT_ADMIN,
    Role.SUPPORT_AGENT: _READ_ONLY,
    Role.AUDITOR: _READ_ONLY | {Permission.AUDIT_READ},
}

_unmapped = set(Role) - set(ROLE_PERMISSIONS)
if _unmapped:
    raise RuntimeError(f"Roles without a permission set: {sorted(r.value for r in _unmapped)}")


# ------------------------------------------------------------------------------
# Callers
# ------------------------------------------------------------------------------
@dataclass(frozen=True)
class AdminCaller:
    user_id: UUID
    role: Role
    state_id: Optional[UUID] = None
    board_id: Optional[UUID] = None


@dataclass(frozen=True)
class ConsumerCaller:
    consumer_id: UUID
    state_id: UUID
    board_id: UUID


Caller = Union[AdminCaller, ConsumerCaller]


def has_permission(caller: Caller, permission: Permission) -> bool:
    if not isinstance(caller, AdminCaller):
        return False
    return permission in ROLE_PERMISSIONS[caller.role]


def require_permission(caller: Caller, permission: Permission) -> AdminCaller:
    if not has_permission(caller, permission):
        raise ForbiddenError(f"Missing permission: {permission.value}")
    return caller  # type: ignore[return-value]


def require_admin(caller: Caller) -> AdminCaller:
    if not isinstance(caller, AdminCaller):
        raise ForbiddenError("Administrative access required")
    return caller


def require_consumer(caller: Caller) -> ConsumerCaller:
    if not isinstance(caller, ConsumerCaller):
        raise ForbiddenError("Consumer access required")
    return caller


# ------------------------------------------------------------------------------
# Scope
# ------------------------------------------------------------------------------
class ScopeLevel(str, Enum):
    ALL = "ALL"
    NONE = "NONE"
    STATE = "STATE"
    BOARD = "BOARD"
    CONSUMER = "CONSUMER"


@dataclass(frozen=True)
class Scope:
    level: ScopeLevel
    state_id: Optional[UUID] = None
    board_id: Optional[UUID] = None
    consumer_id: Optional[UUID] = None

    @property
    def is_empty(self) -> bool:
        return self.level is ScopeLevel.NONE

    @property
    def is_unrestricted(self) -> bool:
        return self.level is ScopeLevel.ALL

    def q(
        self,
        path: str = "",
        *,
        state_field: str = "state_id",
        board_field: str = "board_id",
        consumer_field: str = "id",
    ) -> Q:
        """Predicate over the object reached through `path` (Tortoise `__` notation)."""
        prefix = f"{path}__" if path else ""
        if self.level is ScopeLevel.ALL:
            return Q()
        if self.level is ScopeLevel.STATE:
            return Q(**{f"{prefix}{state_field}": self.state_id})
        if self.level is ScopeLevel.BOARD:
            return Q(**{f"{prefix}{board_field}": self.board_id})
        if self.level is ScopeLevel.CONSUMER:
            return Q(**{f"{prefix}{consumer_field}": self.consumer_id})
        # SQL has no FALSE; an empty IN list renders as 1=0
        return Q(id__in=[])

    def filter(self, qs: QuerySet, path: str = "", **fields: str) -> QuerySet:
        """Narrow a queryset to this scope."""
        if self.level is ScopeLevel.ALL:
            return qs
        if self.level is ScopeLevel.NONE:
            return qs.filter(id__in=[])
        return qs.filter(self.q(path, **fields))

    def allows(self, state_id: Optional[UUID], board_id: Optional[UUID], consumer_id: Optional[UUID] = None) -> bool:
        """Same predicate, evaluated against an already loaded object's derived scope."""
        if self.level is ScopeLevel.ALL:
            return True
        if self.level is ScopeLevel.STATE:
            return state_id is not None and state_id == self.state_id
        if self.level is ScopeLevel.BOARD:
            return board_id is not None and board_id == self.board_id
        if self.level is ScopeLevel.CONSUMER:
            return consumer_id is not None and consumer_id == self.consumer_id
        return False

    def state_level(self) -> "Scope":
        """Widen to the caller's state, for state-owned reference data such as tariffs."""
        if self.level in (ScopeLevel.ALL, ScopeLevel.NONE, ScopeLevel.STATE):
            return self
        if self.state_id is None:
            return NO_SCOPE
        return Scope(ScopeLevel.STATE, state_id=self.state_id)


ALL_SCOPE = Scope(ScopeLevel.ALL)
NO_SCOPE = Scope(ScopeLevel.NONE)


def scope_of(caller: Caller) -> Scope:
    if isinstance(caller, ConsumerCaller):
        return Scope(
            ScopeLevel.CONSUMER,
            state_id=caller.state_id,
            board_id=caller.board_id,
            consumer_id=caller.consumer_id,
        )

    role = caller.role
    if role is Role.SUPER_ADMIN:
        return ALL_SCOPE
    if role is Role.STATE_ADMIN:
        if caller.state_id is None:
            return NO_SCOPE
        return Scope(ScopeLevel.STATE, state_id=caller.state_id)
    if role is Role.BOARD_ADMIN:
        if caller.board_id is None:
            return NO_SCOPE
        return Scope(ScopeLevel.BOARD, state_id=caller.state_id, board_id=caller.board_id)
    if role in (Role.SUPPORT_AGENT, Role.AUDITOR):
        if caller.board_id is not None:
            return Scope(ScopeLevel.BOARD, state_id=caller.state_id, board_id=caller.board_id)
        if caller.state_id is not None:
            return Scope(ScopeLevel.STATE, state_id=caller.state_id)
        return NO_SCOPE
    raise ValueError(f"Unhandled role: {role}")
