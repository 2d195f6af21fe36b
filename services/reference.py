# services/reference.py
"""States and electricity boards. The tenant hierarchy itself."""
from __future__ import annotations
from typing import Optional
from uuid import UUID

from tortoise.exceptions import IntegrityError
from tortoise.queryset import QuerySet

from models import Board, Consumer, Role, State, User
from services.audit import log_action
from services.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from services.scope import Caller, Permission, require_admin, require_permission, scope_of


def _clean_code(code: str) -> str:
    code = (code or "").strip().upper()
    if not code:
        raise InvalidInputError("code must not be empty")
    return code


# ---------- States ----------

def states_query(caller: Caller) -> QuerySet[State]:
    admin = require_admin(caller)
    return scope_of(admin).state_level().filter(State.all(), state_field="id")


async def get_state(caller: Caller, state_id: UUID) -> State:
    obj = await states_query(caller).filter(id=state_id).first()
    if obj is None:
        raise NotFoundError("State", state_id)
    return obj


async def create_state(caller: Caller, *, name: str, code: str) -> State:
    admin = require_permission(caller, Permission.STATE_CREATE)
    code = _clean_code(code)
    if await State.exists(code=code):
        raise ConflictError(f"State with code '{code}' already exists")
    try:
        state = await State.create(name=name.strip(), code=code)
    except IntegrityError as e:
        raise ConflictError(f"State with code '{code}' already exists") from e
    await log_action(admin.user_id, "STATE_CREATED", "State", state.id, {"code": code})
    return state


# ---------- Boards ----------

def boards_query(caller: Caller) -> QuerySet[Board]:
    admin = require_admin(caller)
    return scope_of(admin).filter(Board.all(), board_field="id")


async def get_board(caller: Caller, board_id: UUID) -> Board:
    obj = await boards_query(caller).filter(id=board_id).first()
    if obj is None:
        raise NotFoundError("ElectricityBoard", board_id)
    return obj


async def create_board(caller: Caller, *, state_id: UUID, name: str, code: str) -> Board:
    admin = require_permission(caller, Permission.BOARD_CREATE)
    if admin.role is Role.STATE_ADMIN and admin.state_id != state_id:
        raise ForbiddenError("You can only create boards in your own state")

    state = await State.get_or_none(id=state_id)
    if state is None:
        raise NotFoundError("State", state_id)

    code = _clean_code(code)
    if await Board.exists(code=code):
        raise ConflictError(f"ElectricityBoard with code '{code}' already exists")
    try:
        board = await Board.create(name=name.strip(), code=code, state_id=state.id)
    except IntegrityError as e:
        raise ConflictError(f"ElectricityBoard with code '{code}' already exists") from e
    await log_action(admin.user_id, "BOARD_CREATED", "ElectricityBoard", board.id, {
        "state_id": state.id,
        "code": code,
    })
    return board


async def update_board(caller: Caller, board_id: UUID, *, name: Optional[str] = None, code: Optional[str] = None) -> Board:
    admin = require_permission(caller, Permission.BOARD_UPDATE)
    board = await get_board(admin, board_id)

    changes = {}
    if name is not None:
        changes["name"] = name.strip()
    if code is not None:
        new_code = _clean_code(code)
        if new_code != board.code and await Board.exists(code=new_code):
            raise ConflictError(f"ElectricityBoard with code '{new_code}' already exists")
        changes["code"] = new_code
    if not changes:
        return board

    for k, v in changes.items():
        setattr(board, k, v)
    try:
        await board.save(update_fields=list(changes))
    except IntegrityError as e:
        raise ConflictError("ElectricityBoard code already exists") from e
    await log_action(admin.user_id, "BOARD_UPDATED", "ElectricityBoard", board.id, changes)
    return board


async def delete_board(caller: Caller, board_id: UUID) -> UUID:
    """Only an empty board goes; its retention policies go with it."""
    admin = require_permission(caller, Permission.BOARD_DELETE)
    board = await get_board(admin, board_id)

    consumers = await Consumer.filter(board_id=board.id).count()
    users = await User.filter(board_id=board.id).count()
    if consumers or users:
        raise InvalidInputError(
            f"Cannot delete board: it has {consumers} consumers and {users} users"
        )
    try:
        await board.delete()
    except IntegrityError as e:
        raise ConflictError(f"ElectricityBoard '{board.id}' is still referenced") from e
    await log_action(admin.user_id, "BOARD_DELETED", "ElectricityBoard", board.id, {
        "state_id": board.state_id,
        "code": board.code,
    })
    return board.id
