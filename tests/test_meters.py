import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from models import AuditLog, ConsumptionAggregate, MeterStatus, SmartMeter
from services.errors import ForbiddenError, InvalidInputError, NotFoundError
from services.meters import (
    consumer_meter_consumption,
    consumer_meters_query,
    meter_consumption,
    update_meter_status,
)
from tests.conftest import T0, add_readings, consumer_caller


async def test_update_meter_status(world):
    meter = await update_meter_status(world.board_admin, world.m1.id, MeterStatus.FAULTY)
    assert meter.status is MeterStatus.FAULTY
    assert (await SmartMeter.get(id=world.m1.id)).status is MeterStatus.FAULTY

    entry = await AuditLog.get(action="METER_STATUS_UPDATED")
    assert entry.metadata == {"previous_status": "ACTIVE", "status": "FAULTY"}

    # unchanged status writes nothing
    await update_meter_status(world.board_admin, world.m1.id, MeterStatus.FAULTY)
    assert await AuditLog.filter(action="METER_STATUS_UPDATED").count() == 1


async def test_meter_status_is_scoped_and_gated(world):
    with pytest.raises(NotFoundError):
        await update_meter_status(world.board_admin, world.m1b.id, MeterStatus.INACTIVE)
    with pytest.raises(ForbiddenError):
        await update_meter_status(world.agent, world.m1.id, MeterStatus.INACTIVE)


async def test_consumption_summary(world):
    summary = await meter_consumption(world.agent, world.m1.id, world.start, world.end)
    assert summary.meter_number == "M-1"
    assert summary.reading_count == 3
    assert summary.total_units == Decimal("4.00")
    assert summary.max_demand == Decimal("7.50")
    assert summary.avg_voltage == Decimal("231.00")

    # nothing is stored
    assert not await ConsumptionAggregate.filter(meter_id=world.m1.id).exists()


async def test_consumption_window_is_inclusive(world):
    summary = await meter_consumption(
        world.super, world.m1.id, T0 + timedelta(hours=1), T0 + timedelta(hours=2)
    )
    assert summary.reading_count == 2
    assert summary.total_units == Decimal("3.50")


async def test_empty_window_summarises_to_zero(world):
    later = world.end + timedelta(days=3)
    summary = await meter_consumption(world.super, world.m1.id, later, later + timedelta(days=1))
    assert summary.reading_count == 0
    assert summary.total_units == Decimal("0")
    assert summary.max_demand is None and summary.avg_voltage is None


async def test_consumption_rejects_reversed_window(world):
    with pytest.raises(InvalidInputError):
        await meter_consumption(world.super, world.m1.id, world.end, world.start)


async def test_consumption_is_scoped(world):
    with pytest.raises(NotFoundError):
        await meter_consumption(world.board_admin, world.m2.id, world.start, world.end)


# ---------- consumer self-service ----------

async def test_consumer_lists_own_meters(world):
    me = consumer_caller(world.c1)
    assert [m.id for m in await consumer_meters_query(me)] == [world.m1.id]
    with pytest.raises(ForbiddenError):
        consumer_meters_query(world.super)


async def test_consumer_reads_own_consumption_only(world):
    me = consumer_caller(world.c1)
    await add_readings(world.m1, [(T0 + timedelta(hours=5), 1.25)])

    summary = await consumer_meter_consumption(me, world.m1.id, world.start, world.end)
    assert summary.reading_count == 4
    assert summary.total_units == Decimal("5.25")

    with pytest.raises(NotFoundError):
        await consumer_meter_consumption(me, world.m2.id, world.start, world.end)
    with pytest.raises(NotFoundError):
        await consumer_meter_consumption(me, uuid.uuid4(), world.start, world.end)
