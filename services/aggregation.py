# services/aggregation.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from tortoise import connections

from models import ConsumptionAggregate, Granularity, MeterReading
from services import config
from services.charges import ZERO, round2, to_decimal

UTC = timezone.utc


def as_utc(ts: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


@dataclass(frozen=True)
class ReadingSummary:
    total_units: Decimal
    reading_count: int
    max_demand: Optional[Decimal] = None
    avg_voltage: Optional[Decimal] = None

    @property
    def is_empty(self) -> bool:
        return self.reading_count == 0


def summarize_readings(rows: Iterable[Dict[str, Any]]) -> ReadingSummary:
    """
    Reduce reading rows (dicts with consumption / voltage / current) to totals.

    max_demand is the peak `current` and avg_voltage the mean `voltage`, each
    over the readings that carry the channel; None when no reading does.
    """
    count = 0
    total = Decimal(0)
    currents: list[Decimal] = []
    voltages: list[Decimal] = []
    for row in rows:
        count += 1
        total += to_decimal(row["consumption"])
        if row.get("current") is not None:
            currents.append(to_decimal(row["current"]))
        if row.get("voltage") is not None:
            voltages.append(to_decimal(row["voltage"]))

    return ReadingSummary(
        total_units=round2(total) if count else ZERO,
        reading_count=count,
        max_demand=round2(max(currents)) if currents else None,
        avg_voltage=round2(sum(voltages) / len(voltages)) if voltages else None,
    )


class ConsumptionAggregator:
    """Reads raw meter readings over a window. Bound to one Tortoise connection."""

    def __init__(self, connection_name: str = config.DB_CONNECTION):
        self.connection_name = connection_name

    @property
    def db(self):
        return connections.get(self.connection_name)

    async def aggregate(self, meter_id: UUID, start: datetime, end: datetime, *, using_db=None) -> ReadingSummary:
        """Window is inclusive on both ends."""
        rows = await (
            MeterReading.filter(
                meter_id=meter_id,
                timestamp__gte=as_utc(start),
                timestamp__lte=as_utc(end),
            )
            .using_db(using_db or self.db)
            .values("consumption", "voltage", "current")
        )
        return summarize_readings(rows)

    async def upsert_bucket(
        self,
        meter_id: UUID,
        start: datetime,
        end: datetime,
        granularity: Granularity,
    ) -> ConsumptionAggregate:
        """
        Recompute one (meter, period_start, granularity) bucket and overwrite
        whatever was stored for it. An empty window stores zero units.
        """
        summary = await self.aggregate(meter_id, start, end)
        obj, _ = await ConsumptionAggregate.update_or_create(
            defaults={
                "period_end": as_utc(end),
                "total_units": summary.total_units,
                "max_demand": summary.max_demand,
                "avg_voltage": summary.avg_voltage,
            },
            using_db=self.db,
            meter_id=meter_id,
            period_start=as_utc(start),
            granularity=granularity,
        )
        return obj
