# services/meters.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from tortoise.exceptions import IntegrityError
from tortoise.queryset import QuerySet

from models import Consumer, MeterStatus, SmartMeter, Tariff
from services.aggregation import ConsumptionAggregator, as_utc
from services.audit import log_action
from services.errors import ConflictError, InvalidInputError, NotFoundError
from services.scope import Caller, Permission, require_consumer, require_permission, scope_of


def meters_query(caller: Caller) -> QuerySet[SmartMeter]:
    require_permission(caller, Permission.METER_READ)
    return scope_of(caller).filter(SmartMeter.all(), "consumer")


async def get_meter(caller: Caller, meter_id: UUID) -> SmartMeter:
    obj = await meters_query(caller).filter(id=meter_id).first()
    if obj is None:
        raise NotFoundError("SmartMeter", meter_id)
    return obj


async def _tariff_for_state(tariff_id: UUID, state_id: UUID) -> Tariff:
    tariff = await Tariff.get_or_none(id=tariff_id)
    if tariff is None:
        raise NotFoundError("Tariff", tariff_id)
    if tariff.state_id != state_id:
        raise InvalidInputError(f"Tariff '{tariff_id}' belongs to a different state than the consumer")
    return tariff


async def create_meter(
    caller: Caller,
    *,
    meter_number: str,
    consumer_id: UUID,
    tariff_id: UUID,
    status: MeterStatus = MeterStatus.ACTIVE,
) -> SmartMeter:
    admin = require_permission(caller, Permission.METER_CREATE)

    consumer = await scope_of(admin).filter(Consumer.filter(id=consumer_id)).first()
    if consumer is None:
        raise NotFoundError("Consumer", consumer_id)
    tariff = await _tariff_for_state(tariff_id, consumer.state_id)

    meter_number = meter_number.strip()
    if await SmartMeter.exists(meter_number=meter_number):
        raise ConflictError(f"SmartMeter with number '{meter_number}' already exists")
    try:
        meter = await SmartMeter.create(
            meter_number=meter_number,
            status=status,
            consumer_id=consumer.id,
            tariff_id=tariff.id,
        )
    except IntegrityError as e:
        raise ConflictError(f"SmartMeter with number '{meter_number}' already exists") from e
    await log_action(admin.user_id, "METER_CREATED", "SmartMeter", meter.id, {
        "meter_number": meter_number,
        "consumer_id": consumer.id,
        "tariff_id": tariff.id,
    })
    return meter


async def assign_tariff(caller: Caller, meter_id: UUID, tariff_id: UUID) -> SmartMeter:
    """Re-link a meter to another tariff of its consumer's state. Existing bills keep theirs."""
    admin = require_permission(caller, Permission.METER_ASSIGN)
    meter = await scope_of(admin).filter(SmartMeter.filter(id=meter_id), "consumer").select_related("consumer").first()
    if meter is None:
        raise NotFoundError("SmartMeter", meter_id)
    tariff = await _tariff_for_state(tariff_id, meter.consumer.state_id)

    previous = meter.tariff_id
    if previous == tariff.id:
        return meter
    meter.tariff_id = tariff.id
    await meter.save(update_fields=["tariff_id"])
    await log_action(admin.user_id, "METER_TARIFF_ASSIGNED", "SmartMeter", meter.id, {
        "previous_tariff_id": previous,
        "tariff_id": tariff.id,
    })
    return meter


async def update_meter_status(caller: Caller, meter_id: UUID, status: MeterStatus) -> SmartMeter:
    admin = require_permission(caller, Permission.METER_UPDATE)
    meter = await get_meter(admin, meter_id)
    status = MeterStatus(status)
    previous = MeterStatus(meter.status)
    if previous is status:
        return meter
    meter.status = status
    await meter.save(update_fields=["status"])
    await log_action(admin.user_id, "METER_STATUS_UPDATED", "SmartMeter", meter.id, {
        "previous_status": previous,
        "status": status,
    })
    return meter


# ---------- Consumption ----------

@dataclass(frozen=True)
class ConsumptionSummary:
    meter_id: UUID
    meter_number: str
    period_start: datetime
    period_end: datetime
    total_units: Decimal
    reading_count: int
    max_demand: Optional[Decimal]
    avg_voltage: Optional[Decimal]


async def _summarize(meter: SmartMeter, period_start: datetime, period_end: datetime) -> ConsumptionSummary:
    period_start, period_end = as_utc(period_start), as_utc(period_end)
    if period_start > period_end:
        raise InvalidInputError("period_start must not be after period_end")
    summary = await ConsumptionAggregator().aggregate(meter.id, period_start, period_end)
    return ConsumptionSummary(
        meter_id=meter.id,
        meter_number=meter.meter_number,
        period_start=period_start,
        period_end=period_end,
        total_units=summary.total_units,
        reading_count=summary.reading_count,
        max_demand=summary.max_demand,
        avg_voltage=summary.avg_voltage,
    )


async def meter_consumption(caller: Caller, meter_id: UUID, period_start: datetime, period_end: datetime) -> ConsumptionSummary:
    """Read-only totals straight from the raw readings; nothing is stored."""
    meter = await get_meter(caller, meter_id)
    return await _summarize(meter, period_start, period_end)


# ---------- Consumer self-service ----------

def consumer_meters_query(caller: Caller) -> QuerySet[SmartMeter]:
    consumer = require_consumer(caller)
    return SmartMeter.filter(consumer_id=consumer.consumer_id)


async def consumer_meter_consumption(
    caller: Caller, meter_id: UUID, period_start: datetime, period_end: datetime
) -> ConsumptionSummary:
    meter = await consumer_meters_query(caller).filter(id=meter_id).first()
    if meter is None:
        raise NotFoundError("SmartMeter", meter_id)
    return await _summarize(meter, period_start, period_end)
