# services/users.py
"""
Administrative users. Login happens at the external identity provider;
this module only keeps the role and tenant pinning that `deps` resolves
a token subject to.
"""
from __future__ import annotations
from typing import Optional, Tuple
from uuid import UUID

from tortoise.exceptions import IntegrityError
from tortoise.queryset import QuerySet

from models import AuditLog, Board, Role, State, User
from services.audit import log_action
from services.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from services.scope import AdminCaller, Caller, Permission, require_admin, require_permission, scope_of

# creator role -> roles it may create, assign, or remove
CREATION_HIERARCHY: dict[Role, frozenset[Role]] = {
    Role.SUPER_ADMIN: frozenset({Role.STATE_ADMIN, Role.BOARD_ADMIN, Role.SUPPORT_AGENT, Role.AUDITOR}),
    Role.STATE_ADMIN: frozenset({Role.BOARD_ADMIN, Role.SUPPORT_AGENT}),
    Role.BOARD_ADMIN: frozenset({Role.SUPPORT_AGENT}),
}


def can_manage_role(creator: Role, target: Role) -> bool:
    return target in CREATION_HIERARCHY.get(creator, frozenset())


def _require_manageable(admin: AdminCaller, target: Role, verb: str) -> None:
    if not can_manage_role(admin.role, target):
        raise ForbiddenError(f"{admin.role.value} cannot {verb} users with role {target.value}")


async def _resolve_placement(
    admin: AdminCaller,
    state_id: Optional[UUID],
    board_id: Optional[UUID],
) -> Tuple[Optional[UUID], Optional[UUID]]:
    """Pin the (state, board) pair to what the acting admin may hand out, then check it exists."""
    if admin.role is Role.STATE_ADMIN:
        if state_id and state_id != admin.state_id:
            raise ForbiddenError("You can only place users within your own state")
        state_id = admin.state_id
    elif admin.role is Role.BOARD_ADMIN:
        if board_id and board_id != admin.board_id:
            raise ForbiddenError("You can only place users within your own board")
        state_id, board_id = admin.state_id, admin.board_id

    if board_id is not None:
        board = await Board.get_or_none(id=board_id)
        if board is None:
            raise NotFoundError("ElectricityBoard", board_id)
        if state_id is None:
            state_id = board.state_id
        elif board.state_id != state_id:
            raise InvalidInputError("Board does not belong to the specified state")
    if state_id is not None and not await State.exists(id=state_id):
        raise NotFoundError("State", state_id)
    return state_id, board_id


def _check_role_placement(role: Role, state_id: Optional[UUID], board_id: Optional[UUID]) -> None:
    # a role without the tenant it needs would resolve to an empty scope
    if role is Role.STATE_ADMIN and state_id is None:
        raise InvalidInputError("A STATE_ADMIN needs a state")
    if role is Role.BOARD_ADMIN and board_id is None:
        raise InvalidInputError("A BOARD_ADMIN needs a board")


# ---------- Reads ----------

def users_query(caller: Caller) -> QuerySet[User]:
    admin = require_admin(caller)
    return scope_of(admin).filter(User.all())


async def get_user(caller: Caller, user_id: UUID) -> User:
    obj = await users_query(caller).filter(id=user_id).first()
    if obj is None:
        raise NotFoundError("User", user_id)
    return obj


async def get_own_profile(caller: Caller) -> User:
    admin = require_admin(caller)
    obj = await User.get_or_none(id=admin.user_id)
    if obj is None:
        raise NotFoundError("User", admin.user_id)
    return obj


# ---------- Writes ----------

async def create_user(
    caller: Caller,
    *,
    name: str,
    role: Role,
    external_user_id: Optional[str] = None,
    email: Optional[str] = None,
    state_id: Optional[UUID] = None,
    board_id: Optional[UUID] = None,
) -> User:
    admin = require_permission(caller, Permission.USER_MANAGE)
    role = Role(role)
    _require_manageable(admin, role, "create")
    state_id, board_id = await _resolve_placement(admin, state_id, board_id)
    _check_role_placement(role, state_id, board_id)

    if external_user_id is not None:
        external_user_id = external_user_id.strip() or None
    if external_user_id and await User.exists(external_user_id=external_user_id):
        raise ConflictError(f"User with external id '{external_user_id}' already exists")
    try:
        user = await User.create(
            name=name.strip(),
            email=email,
            role=role,
            external_user_id=external_user_id,
            state_id=state_id,
            board_id=board_id,
        )
    except IntegrityError as e:
        raise ConflictError(f"User with external id '{external_user_id}' already exists") from e
    await log_action(admin.user_id, "USER_CREATED", "User", user.id, {
        "role": role,
        "state_id": state_id,
        "board_id": board_id,
    })
    return user


async def _managed_user(admin: AdminCaller, user_id: UUID, verb: str) -> User:
    user = await get_user(admin, user_id)
    if user.id == admin.user_id:
        raise ForbiddenError(f"You cannot {verb} your own account")
    _require_manageable(admin, Role(user.role), verb)
    return user


async def update_user_role(caller: Caller, user_id: UUID, role: Role) -> User:
    admin = require_permission(caller, Permission.USER_MANAGE)
    user = await _managed_user(admin, user_id, "change the role of")
    role = Role(role)
    _require_manageable(admin, role, "assign")
    _check_role_placement(role, user.state_id, user.board_id)

    previous = Role(user.role)
    if previous is role:
        return user
    user.role = role
    await user.save(update_fields=["role"])
    await log_action(admin.user_id, "USER_ROLE_UPDATED", "User", user.id, {
        "previous_role": previous,
        "role": role,
    })
    return user


async def update_user_scope(
    caller: Caller,
    user_id: UUID,
    *,
    state_id: Optional[UUID] = None,
    board_id: Optional[UUID] = None,
) -> User:
    admin = require_permission(caller, Permission.USER_MANAGE)
    user = await _managed_user(admin, user_id, "change the scope of")
    state_id, board_id = await _resolve_placement(admin, state_id, board_id)
    _check_role_placement(Role(user.role), state_id, board_id)

    previous = {"state_id": user.state_id, "board_id": user.board_id}
    user.state_id, user.board_id = state_id, board_id
    await user.save(update_fields=["state_id", "board_id"])
    await log_action(admin.user_id, "USER_SCOPE_UPDATED", "User", user.id, {
        "previous": previous,
        "state_id": state_id,
        "board_id": board_id,
    })
    return user


async def delete_user(caller: Caller, user_id: UUID) -> UUID:
    """Users referenced by audit history stay, so the trail keeps its actors."""
    admin = require_permission(caller, Permission.USER_MANAGE)
    user = await _managed_user(admin, user_id, "delete")
    if await AuditLog.exists(user_id=user.id):
        raise ConflictError(f"User '{user.id}' has audit history and cannot be deleted")
    try:
        await user.delete()
    except IntegrityError as e:
        raise ConflictError(f"User '{user.id}' is still referenced and cannot be deleted") from e
    await log_action(admin.user_id, "USER_DELETED", "User", user.id, {"role": user.role})
    return user.id
