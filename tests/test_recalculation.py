import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from models import AuditLog, BillingReport, RecalculationLog, Tariff
from services.billing import BillingService
from services.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from tests.conftest import T0, add_readings, make_consumer, make_meter


async def _chain(bill):
    return await BillingReport.filter(
        meter_id=bill.meter_id, billing_start=bill.billing_start, billing_end=bill.billing_end,
    ).order_by("version")


async def test_versions_are_contiguous_with_one_latest(world):
    svc = BillingService()
    bill = await svc.generate(world.state_admin, world.m1.id, world.start, world.end)
    for i in range(3):
        await svc.recalculate(world.state_admin, bill.id, f"correction {i}")
        chain = await _chain(bill)
        assert [b.version for b in chain] == list(range(1, i + 3))
        assert [b.is_latest for b in chain].count(True) == 1
        assert chain[-1].is_latest


async def test_recalculation_log_points_at_new_version(world):
    svc = BillingService()
    bill = await svc.generate(world.super, world.m1.id, world.start, world.end)
    result = await svc.recalculate(world.board_admin, bill.id, "  estimated read replaced  ")

    assert result.superseded_id == bill.id
    assert result.bill.version == 2
    assert result.bill.billing_start == bill.billing_start
    assert result.bill.billing_end == bill.billing_end

    log = await RecalculationLog.get(id=result.log.id)
    assert log.billing_report_id == result.bill.id
    assert (log.previous_version, log.new_version) == (1, 2)
    assert log.reason == "estimated read replaced"
    assert log.triggered_by == world.board_admin.user_id

    old = await BillingReport.get(id=bill.id)
    assert old.is_latest is False
    # superseded rows keep their amounts
    assert old.total_amount == bill.total_amount


async def test_unchanged_inputs_give_identical_charges(world):
    svc = BillingService()
    bill = await svc.generate(world.super, world.m1.id, world.start, world.end, Decimal("0.18"))
    new = (await svc.recalculate(world.super, bill.id, "recheck")).bill
    for field in ("total_units", "energy_charge", "fixed_charge", "tax_amount", "total_amount"):
        assert str(getattr(new, field)) == str(getattr(bill, field))


async def test_tax_ratio_is_preserved(world):
    consumer = await make_consumer(world.b1, "Dev")
    meter = await make_meter(consumer, world.t1, "M-TAX")
    # 200 kWh at 5.00 -> 1000.00 energy, 100.00 fixed
    await add_readings(meter, [(T0 + timedelta(hours=4), 200.0)])

    svc = BillingService()
    bill = await svc.generate(world.super, meter.id, world.start, world.end, Decimal("0.05"))
    assert (bill.energy_charge, bill.fixed_charge, bill.tax_amount) == (Decimal("1000.00"), Decimal("100.00"), Decimal("55.00"))

    new = (await svc.recalculate(world.super, bill.id, "audit")).bill
    assert new.tax_amount == Decimal("55.00")
    assert new.total_amount == Decimal("1155.00")


async def test_untaxed_bill_stays_untaxed(world):
    svc = BillingService()
    bill = await svc.generate(world.super, world.m1.id, world.start, world.end)
    new = (await svc.recalculate(world.super, bill.id, "audit")).bill
    assert new.tax_amount == Decimal("0.00")


async def test_recalculation_uses_current_tariff_and_readings(world):
    svc = BillingService()
    bill = await svc.generate(world.super, world.m1.id, world.start, world.end, Decimal("0.10"))

    await Tariff.filter(id=world.t1.id).update(unit_rate=Decimal("6.00"))
    await add_readings(world.m1, [(T0 + timedelta(hours=6), 1.0)])
    new = (await svc.recalculate(world.super, bill.id, "tariff revision")).bill

    assert new.total_units == Decimal("5.00")
    assert new.energy_charge == Decimal("30.00")
    assert new.tax_amount == Decimal("13.00")
    assert new.total_amount == Decimal("143.00")
    assert new.tariff_id == world.t1.id


async def test_recalculating_old_version_supersedes_latest(world):
    svc = BillingService()
    v1 = await svc.generate(world.super, world.m1.id, world.start, world.end)
    v2 = (await svc.recalculate(world.super, v1.id, "first")).bill
    result = await svc.recalculate(world.super, v1.id, "second")

    assert result.bill.version == 3
    assert result.superseded_id == v2.id
    assert result.log.previous_version == 2
    chain = await _chain(v1)
    assert [b.is_latest for b in chain] == [False, False, True]


async def test_history_covers_whole_chain_newest_first(world):
    svc = BillingService()
    v1 = await svc.generate(world.super, world.m1.id, world.start, world.end)
    await svc.recalculate(world.super, v1.id, "a")
    await svc.recalculate(world.super, v1.id, "b")

    history = await svc.recalculation_history(world.agent, v1.id)
    assert [h.new_version for h in history] == [3, 2]
    versions = await svc.bill_versions(world.agent, v1.id)
    assert [v.version for v in versions] == [1, 2, 3]


async def test_failed_insert_leaves_chain_untouched(world, monkeypatch):
    svc = BillingService()
    bill = await svc.generate(world.super, world.m1.id, world.start, world.end)

    async def _boom(*args, **kwargs):
        raise RuntimeError("disk full")
    monkeypatch.setattr(RecalculationLog, "create", _boom)

    with pytest.raises(RuntimeError):
        await svc.recalculate(world.super, bill.id, "will fail")

    chain = await _chain(bill)
    assert [(b.version, b.is_latest) for b in chain] == [(1, True)]
    assert await RecalculationLog.all().count() == 0


async def test_concurrent_recalculations_never_fork_the_chain(world):
    svc = BillingService()
    bill = await svc.generate(world.super, world.m1.id, world.start, world.end)

    outcomes = await asyncio.gather(
        *(svc.recalculate(world.super, bill.id, f"race {i}") for i in range(4)),
        return_exceptions=True,
    )
    for outcome in outcomes:
        assert not isinstance(outcome, Exception) or isinstance(outcome, ConflictError)

    chain = await _chain(bill)
    wins = [o for o in outcomes if not isinstance(o, Exception)]
    assert [b.version for b in chain] == list(range(1, len(wins) + 2))
    assert [b.is_latest for b in chain].count(True) == 1
    assert await RecalculationLog.all().count() == len(wins)


async def test_recalculation_requires_role_scope_and_reason(world):
    svc = BillingService()
    bill = await svc.generate(world.super, world.m2.id, world.start, world.end)

    with pytest.raises(ForbiddenError):
        await svc.recalculate(world.agent, bill.id, "nope")
    with pytest.raises(NotFoundError):
        await svc.recalculate(world.state_admin, bill.id, "other state")
    with pytest.raises(InvalidInputError):
        await svc.recalculate(world.super, bill.id, "   ")
    assert len(await _chain(bill)) == 1


async def test_readings_gone_on_recompute_is_an_error(world):
    svc = BillingService()
    bill = await svc.generate(world.super, world.m1.id, world.start, world.end)
    from models import MeterReading
    await MeterReading.filter(meter_id=world.m1.id).delete()

    with pytest.raises(InvalidInputError):
        await svc.recalculate(world.super, bill.id, "readings purged")
    chain = await _chain(bill)
    assert [(b.version, b.is_latest) for b in chain] == [(1, True)]


async def test_recalculation_is_audited(world):
    svc = BillingService()
    bill = await svc.generate(world.super, world.m1.id, world.start, world.end)
    result = await svc.recalculate(world.super, bill.id, "audit me")

    entry = await AuditLog.get(action="BILL_RECALCULATED")
    assert entry.entity_id == str(result.bill.id)
    assert entry.user_id == world.super.user_id
    assert entry.metadata["previous_version"] == 1
    assert entry.metadata["reason"] == "audit me"
