import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from models import AuditLog, Board, Role, SmartMeter, TariffType
from services.consumers import consumers_query, create_consumer, get_consumer
from services.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from services.meters import assign_tariff, create_meter, get_meter, meters_query
from services.reference import (
    boards_query, create_board, create_state, delete_board, get_board, states_query, update_board,
)
from services.scope import AdminCaller
from services.tariffs import TariffLookup, create_tariff, get_tariff, tariffs_query
from tests.conftest import T0, consumer_caller, make_tariff


# ---------- states & boards ----------

async def test_only_super_admin_creates_states(world):
    state = await create_state(world.super, name="Kerala", code=" kl ")
    assert state.code == "KL"
    with pytest.raises(ForbiddenError):
        await create_state(world.state_admin, name="Goa", code="GA")
    with pytest.raises(ConflictError):
        await create_state(world.super, name="Kerala again", code="KL")


async def test_states_visible_to_admins(world):
    assert await states_query(world.super).count() == 2
    assert [s.id for s in await states_query(world.board_admin)] == [world.s1.id]
    assert await states_query(AdminCaller(uuid.uuid4(), Role.STATE_ADMIN)).count() == 0
    with pytest.raises(ForbiddenError):
        states_query(consumer_caller(world.c1))


async def test_state_admin_creates_boards_in_own_state_only(world):
    board = await create_board(world.state_admin, state_id=world.s1.id, name="North", code="n1")
    assert (board.state_id, board.code) == (world.s1.id, "N1")

    with pytest.raises(ForbiddenError):
        await create_board(world.state_admin, state_id=world.s2.id, name="South", code="S9")
    with pytest.raises(ForbiddenError):
        await create_board(world.board_admin, state_id=world.s1.id, name="East", code="E1")
    with pytest.raises(NotFoundError):
        await create_board(world.super, state_id=uuid.uuid4(), name="Nowhere", code="X1")
    with pytest.raises(ConflictError):
        await create_board(world.super, state_id=world.s2.id, name="Dup", code="B1")


async def test_board_visibility_and_updates(world):
    assert await boards_query(world.state_admin).count() == 2
    assert [b.id for b in await boards_query(world.board_admin)] == [world.b1.id]

    renamed = await update_board(world.board_admin, world.b1.id, name="Board One")
    assert renamed.name == "Board One"

    with pytest.raises(NotFoundError):
        await update_board(world.board_admin, world.b1b.id, name="Not mine")
    with pytest.raises(NotFoundError):
        await get_board(world.state_admin, world.b2.id)
    with pytest.raises(ForbiddenError):
        await update_board(world.agent, world.b1.id, name="Agents cannot")
    with pytest.raises(ConflictError):
        await update_board(world.super, world.b1.id, code="B2")


# ---------- consumers ----------

async def test_consumer_state_must_match_board(world):
    with pytest.raises(InvalidInputError):
        await create_consumer(
            world.super, name="Mismatch", address="1 Lane",
            state_id=world.s2.id, board_id=world.b1.id,
        )

    consumer = await create_consumer(
        world.super, name="Match", address="1 Lane",
        state_id=world.s1.id, board_id=world.b1.id,
    )
    assert (consumer.state_id, consumer.board_id) == (world.s1.id, world.b1.id)


async def test_consumer_board_must_be_in_scope(world):
    with pytest.raises(NotFoundError):
        await create_consumer(
            world.board_admin, name="Elsewhere", address="2 Lane",
            state_id=world.s1.id, board_id=world.b1b.id,
        )


async def test_consumer_reads_are_scoped(world):
    assert await consumers_query(world.agent).count() == 1
    assert await consumers_query(world.auditor).count() == 2
    with pytest.raises(NotFoundError):
        await get_consumer(world.agent, world.c2.id)


async def test_consumer_creation_is_audited(world):
    consumer = await create_consumer(
        world.board_admin, name="Audited", address="3 Lane",
        state_id=world.s1.id, board_id=world.b1.id,
    )
    entry = await AuditLog.get(action="CONSUMER_CREATED")
    assert entry.entity_id == str(consumer.id)
    assert entry.user_id == world.board_admin.user_id


# ---------- tariffs ----------

async def test_tariffs_are_state_level(world):
    # board admins see their whole state's plans
    assert [t.id for t in await tariffs_query(world.board_admin)] == [world.t1.id]
    with pytest.raises(NotFoundError):
        await get_tariff(world.board_admin, world.t2.id)


async def test_create_tariff_validation(world):
    tariff = await create_tariff(
        world.board_admin, state_id=world.s1.id, type=TariffType.COMMERCIAL,
        unit_rate=Decimal("7.25"), fixed_charge=Decimal("250"), effective_from=T0,
    )
    assert tariff.state_id == world.s1.id

    with pytest.raises(NotFoundError):
        await create_tariff(
            world.board_admin, state_id=world.s2.id, type=TariffType.COMMERCIAL,
            unit_rate=Decimal("1"), fixed_charge=Decimal("1"), effective_from=T0,
        )
    with pytest.raises(InvalidInputError):
        await create_tariff(
            world.super, state_id=world.s1.id, type=TariffType.INDUSTRIAL,
            unit_rate=Decimal("-1"), fixed_charge=Decimal("1"), effective_from=T0,
        )
    with pytest.raises(InvalidInputError):
        await create_tariff(
            world.super, state_id=world.s1.id, type=TariffType.INDUSTRIAL,
            unit_rate=Decimal("1"), fixed_charge=Decimal("1"),
            effective_from=T0, effective_to=T0 - timedelta(days=1),
        )
    with pytest.raises(ForbiddenError):
        await create_tariff(
            world.agent, state_id=world.s1.id, type=TariffType.INDUSTRIAL,
            unit_rate=Decimal("1"), fixed_charge=Decimal("1"), effective_from=T0,
        )


async def test_lookup_resolves_linked_tariff(world):
    tariff = await TariffLookup().resolve_meter_tariff(world.m1)
    assert tariff.id == world.t1.id

    dangling = SmartMeter(id=uuid.uuid4(), meter_number="ghost", consumer_id=world.c1.id, tariff_id=uuid.uuid4())
    with pytest.raises(NotFoundError) as exc:
        await TariffLookup().resolve_meter_tariff(dangling)
    assert str(dangling.tariff_id) in exc.value.message


# ---------- meters ----------

async def test_create_meter(world):
    meter = await create_meter(world.board_admin, meter_number=" M-NEW ", consumer_id=world.c1.id, tariff_id=world.t1.id)
    assert meter.meter_number == "M-NEW"
    assert (await get_meter(world.agent, meter.id)).id == meter.id

    with pytest.raises(ConflictError):
        await create_meter(world.super, meter_number="M-NEW", consumer_id=world.c1.id, tariff_id=world.t1.id)
    with pytest.raises(InvalidInputError):
        await create_meter(world.super, meter_number="M-X", consumer_id=world.c1.id, tariff_id=world.t2.id)
    with pytest.raises(NotFoundError):
        await create_meter(world.board_admin, meter_number="M-Y", consumer_id=world.c2.id, tariff_id=world.t2.id)


async def test_meter_reads_are_scoped(world):
    assert await meters_query(world.super).count() == 3
    assert await meters_query(world.state_admin).count() == 2
    with pytest.raises(NotFoundError):
        await get_meter(world.board_admin, world.m1b.id)


async def test_assign_tariff_within_state(world):
    newer = await make_tariff(world.s1, unit_rate="6.50")
    meter = await assign_tariff(world.board_admin, world.m1.id, newer.id)
    assert meter.tariff_id == newer.id
    assert (await SmartMeter.get(id=world.m1.id)).tariff_id == newer.id

    with pytest.raises(InvalidInputError):
        await assign_tariff(world.super, world.m1.id, world.t2.id)
    with pytest.raises(NotFoundError):
        await assign_tariff(world.board_admin, world.m2.id, world.t2.id)
    with pytest.raises(ForbiddenError):
        await assign_tariff(world.agent, world.m1.id, world.t1.id)


# ---------- board removal ----------

async def test_only_empty_boards_are_deleted(world):
    empty = await create_board(world.state_admin, state_id=world.s1.id, name="Spare", code="SP1")
    assert await delete_board(world.state_admin, empty.id) == empty.id
    assert not await Board.exists(id=empty.id)
    entry = await AuditLog.get(action="BOARD_DELETED")
    assert entry.metadata["code"] == "SP1"

    with pytest.raises(InvalidInputError):
        await delete_board(world.super, world.b1.id)
    assert await Board.exists(id=world.b1.id)


async def test_board_removal_is_scoped_and_gated(world):
    spare = await create_board(world.super, state_id=world.s2.id, name="Far", code="FAR")
    with pytest.raises(NotFoundError):
        await delete_board(world.state_admin, spare.id)
    with pytest.raises(ForbiddenError):
        await delete_board(world.board_admin, world.b1.id)
