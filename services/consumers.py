# services/consumers.py
from __future__ import annotations
from typing import Optional
from uuid import UUID

from tortoise.exceptions import IntegrityError
from tortoise.queryset import QuerySet

from models import Board, Consumer
from services.audit import log_action
from services.errors import ConflictError, InvalidInputError, NotFoundError
from services.scope import Caller, Permission, require_permission, scope_of


def consumers_query(caller: Caller) -> QuerySet[Consumer]:
    require_permission(caller, Permission.CONSUMER_READ)
    return scope_of(caller).filter(Consumer.all())


async def get_consumer(caller: Caller, consumer_id: UUID) -> Consumer:
    obj = await consumers_query(caller).filter(id=consumer_id).first()
    if obj is None:
        raise NotFoundError("Consumer", consumer_id)
    return obj


async def create_consumer(
    caller: Caller,
    *,
    name: str,
    address: str,
    state_id: UUID,
    board_id: UUID,
    phone_number: Optional[str] = None,
    external_user_id: Optional[str] = None,
) -> Consumer:
    """Register a consumer under a board; the given state must be the board's state."""
    admin = require_permission(caller, Permission.CONSUMER_CREATE)

    board = await scope_of(admin).filter(Board.filter(id=board_id), board_field="id").first()
    if board is None:
        raise NotFoundError("ElectricityBoard", board_id)
    if board.state_id != state_id:
        raise InvalidInputError(f"ElectricityBoard '{board_id}' does not belong to state '{state_id}'")

    if external_user_id and await Consumer.exists(external_user_id=external_user_id):
        raise ConflictError(f"Consumer with external id '{external_user_id}' already exists")
    try:
        consumer = await Consumer.create(
            name=name.strip(),
            address=address.strip(),
            phone_number=phone_number,
            external_user_id=external_user_id,
            state_id=board.state_id,
            board_id=board.id,
        )
    except IntegrityError as e:
        raise ConflictError("Consumer already exists") from e
    await log_action(admin.user_id, "CONSUMER_CREATED", "Consumer", consumer.id, {
        "state_id": board.state_id,
        "board_id": board.id,
    })
    return consumer
