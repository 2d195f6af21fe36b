# services/billing.py
"""
Bill generation and the version ledger.

A logical bill is identified by (meter, billing_start, billing_end). Its rows
form a chain of versions 1, 2, 3, ... of which exactly one has
`is_latest=True`. Rows are only ever added; a recalculation supersedes the
current latest row with a compare-and-set on `is_latest` and inserts the next
version plus its `RecalculationLog` in the same transaction. The unique
(meter, billing_start, billing_end, version) key rejects whichever of two
concurrent writers commits second.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from tortoise import connections
from tortoise.exceptions import IntegrityError
from tortoise.queryset import QuerySet
from tortoise.transactions import in_transaction

from models import (
    BillingReport,
    ConsumptionAggregate,
    CustomerBillView,
    Granularity,
    RecalculationLog,
    SmartMeter,
)
from services import config
from services.aggregation import ConsumptionAggregator, as_utc
from services.audit import log_action
from services.charges import compute_charges, recompute_charges, to_decimal
from services.errors import ConflictError, InvalidInputError, NotFoundError
from services.scope import (
    Caller,
    Permission,
    require_consumer,
    require_permission,
    scope_of,
)
from services.tariffs import TariffLookup

logger = logging.getLogger(__name__)

UTC = timezone.utc


@dataclass(frozen=True)
class Recalculation:
    bill: BillingReport
    log: RecalculationLog
    superseded_id: UUID


def _check_window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    start, end = as_utc(start), as_utc(end)
    if start >= end:
        raise InvalidInputError("billing_start must be before billing_end")
    return start, end


def _check_tax_rate(tax_rate) -> Decimal:
    rate = to_decimal(tax_rate if tax_rate is not None else 0)
    if rate < 0 or rate > 1:
        raise InvalidInputError("tax_rate must be between 0 and 1")
    return rate


def _no_readings(meter_id: UUID, start: datetime, end: datetime) -> InvalidInputError:
    return InvalidInputError(
        f"No readings for meter '{meter_id}' between {start.isoformat()} and {end.isoformat()}"
    )


class BillingService:
    """
    Billing operations bound to one Tortoise connection.

        svc = BillingService("default")
        bill = await svc.generate(caller, meter_id, start, end, tax_rate=Decimal("0.05"))
        result = await svc.recalculate(caller, bill.id, "meter replaced")
    """

    def __init__(self, connection_name: str = config.DB_CONNECTION):
        self.connection_name = connection_name
        self.aggregator = ConsumptionAggregator(connection_name)
        self.tariffs = TariffLookup(connection_name)

    @property
    def db(self):
        return connections.get(self.connection_name)

    # ---------- scoped lookups ----------

    def _meters(self, caller: Caller) -> QuerySet[SmartMeter]:
        return scope_of(caller).filter(SmartMeter.all(), "consumer").using_db(self.db)

    def _bills(self, caller: Caller) -> QuerySet[BillingReport]:
        return scope_of(caller).filter(BillingReport.all(), "meter__consumer").using_db(self.db)

    async def _meter(self, caller: Caller, meter_id: UUID) -> SmartMeter:
        meter = await self._meters(caller).filter(id=meter_id).first()
        if meter is None:
            raise NotFoundError("SmartMeter", meter_id)
        return meter

    async def _bill(self, caller: Caller, bill_id: UUID) -> BillingReport:
        bill = await self._bills(caller).filter(id=bill_id).first()
        if bill is None:
            raise NotFoundError("BillingReport", bill_id)
        return bill

    def _chain(self, bill: BillingReport) -> QuerySet[BillingReport]:
        return BillingReport.filter(
            meter_id=bill.meter_id,
            billing_start=bill.billing_start,
            billing_end=bill.billing_end,
        ).using_db(self.db)

    # ---------- generation ----------

    async def generate(
        self,
        caller: Caller,
        meter_id: UUID,
        billing_start: datetime,
        billing_end: datetime,
        tax_rate: Decimal | float | int = 0,
    ) -> BillingReport:
        """Create version 1 of a bill. An existing bill for the same window is a conflict."""
        admin = require_permission(caller, Permission.BILLING_GENERATE)
        start, end = _check_window(billing_start, billing_end)
        rate = _check_tax_rate(tax_rate)

        meter = await self._meter(admin, meter_id)
        if await BillingReport.filter(meter_id=meter.id, billing_start=start, billing_end=end).using_db(self.db).exists():
            raise ConflictError(
                f"A bill for meter '{meter.id}' and this billing period already exists; recalculate it instead"
            )

        summary = await self.aggregator.aggregate(meter.id, start, end)
        if summary.is_empty:
            raise _no_readings(meter.id, start, end)
        tariff = await self.tariffs.resolve_meter_tariff(meter)
        charges = compute_charges(summary.total_units, tariff.unit_rate, tariff.fixed_charge, rate)

        try:
            async with in_transaction(self.connection_name) as conn:
                bill = await BillingReport.create(
                    meter_id=meter.id,
                    tariff_id=tariff.id,
                    billing_start=start,
                    billing_end=end,
                    total_units=charges.total_units,
                    energy_charge=charges.energy_charge,
                    fixed_charge=charges.fixed_charge,
                    tax_amount=charges.tax_amount,
                    total_amount=charges.total_amount,
                    version=1,
                    is_latest=True,
                    using_db=conn,
                )
        except IntegrityError as e:
            raise ConflictError(f"A bill for meter '{meter.id}' and this billing period was generated concurrently") from e

        logger.info("bill %s generated for meter %s (%s units, total %s)", bill.id, meter.id, charges.total_units, charges.total_amount)
        await log_action(admin.user_id, "BILL_GENERATED", "BillingReport", bill.id, {
            "meter_id": meter.id,
            "tariff_id": tariff.id,
            "billing_start": start,
            "billing_end": end,
            "tax_rate": rate,
            "total_amount": charges.total_amount,
        }, using_db=self.db)
        return bill

    # ---------- recalculation ----------

    async def recalculate(self, caller: Caller, bill_id: UUID, reason: str) -> Recalculation:
        """
        Supersede the current version of the bill's chain with a freshly
        computed one. Same billing window, the meter's current tariff, and the
        named version's effective tax rate.
        """
        admin = require_permission(caller, Permission.BILLING_RECALCULATE)
        reason = (reason or "").strip()
        if not reason:
            raise InvalidInputError("A recalculation reason is required")

        bill = await self._bill(admin, bill_id)
        latest = await self._chain(bill).filter(is_latest=True).first()
        if latest is None:
            raise ConflictError(f"BillingReport '{bill.id}' has no current version")

        meter = await SmartMeter.filter(id=bill.meter_id).using_db(self.db).first()
        if meter is None:
            raise NotFoundError("SmartMeter", bill.meter_id)

        summary = await self.aggregator.aggregate(meter.id, bill.billing_start, bill.billing_end)
        if summary.is_empty:
            raise _no_readings(meter.id, bill.billing_start, bill.billing_end)
        tariff = await self.tariffs.resolve_meter_tariff(meter)
        charges = recompute_charges(
            summary.total_units,
            tariff.unit_rate,
            tariff.fixed_charge,
            previous_energy=bill.energy_charge,
            previous_fixed=bill.fixed_charge,
            previous_tax=bill.tax_amount,
        )

        new_version = latest.version + 1
        try:
            async with in_transaction(self.connection_name) as conn:
                flipped = await (
                    BillingReport.filter(id=latest.id, is_latest=True)
                    .using_db(conn)
                    .update(is_latest=False)
                )
                if not flipped:
                    raise ConflictError(f"BillingReport '{bill.id}' was recalculated concurrently; retry")
                new_bill = await BillingReport.create(
                    meter_id=meter.id,
                    tariff_id=tariff.id,
                    billing_start=bill.billing_start,
                    billing_end=bill.billing_end,
                    total_units=charges.total_units,
                    energy_charge=charges.energy_charge,
                    fixed_charge=charges.fixed_charge,
                    tax_amount=charges.tax_amount,
                    total_amount=charges.total_amount,
                    version=new_version,
                    is_latest=True,
                    using_db=conn,
                )
                log = await RecalculationLog.create(
                    billing_report_id=new_bill.id,
                    reason=reason,
                    triggered_by=admin.user_id,
                    previous_version=latest.version,
                    new_version=new_version,
                    using_db=conn,
                )
        except IntegrityError as e:
            raise ConflictError(f"BillingReport '{bill.id}' was recalculated concurrently; retry") from e

        logger.info("bill %s recalculated: v%d -> v%d (%s)", bill.id, latest.version, new_version, new_bill.id)
        await log_action(admin.user_id, "BILL_RECALCULATED", "BillingReport", new_bill.id, {
            "superseded_id": latest.id,
            "previous_version": latest.version,
            "new_version": new_version,
            "reason": reason,
            "tariff_id": tariff.id,
            "previous_total": latest.total_amount,
            "new_total": charges.total_amount,
        }, using_db=self.db)
        return Recalculation(bill=new_bill, log=log, superseded_id=latest.id)

    # ---------- aggregates ----------

    async def aggregate_consumption(
        self,
        caller: Caller,
        meter_id: UUID,
        period_start: datetime,
        period_end: datetime,
        granularity: Granularity,
    ) -> ConsumptionAggregate:
        admin = require_permission(caller, Permission.BILLING_GENERATE)
        start, end = as_utc(period_start), as_utc(period_end)
        if start > end:
            raise InvalidInputError("period_start must not be after period_end")
        meter = await self._meter(admin, meter_id)

        try:
            agg = await self.aggregator.upsert_bucket(meter.id, start, end, granularity)
        except IntegrityError as e:
            raise ConflictError("Aggregate bucket was written concurrently; retry") from e

        await log_action(admin.user_id, "CONSUMPTION_AGGREGATED", "ConsumptionAggregate", agg.id, {
            "meter_id": meter.id,
            "granularity": granularity,
            "period_start": start,
            "total_units": agg.total_units,
        }, using_db=self.db)
        return agg

    async def aggregates_query(
        self, caller: Caller, meter_id: UUID, granularity: Optional[Granularity] = None
    ) -> QuerySet[ConsumptionAggregate]:
        admin = require_permission(caller, Permission.BILLING_READ)
        meter = await self._meter(admin, meter_id)
        qs = ConsumptionAggregate.filter(meter_id=meter.id).using_db(self.db)
        if granularity is not None:
            qs = qs.filter(granularity=granularity)
        return qs

    # ---------- reads ----------

    def bills_query(self, caller: Caller) -> QuerySet[BillingReport]:
        """Current versions only."""
        require_permission(caller, Permission.BILLING_READ)
        return self._bills(caller).filter(is_latest=True)

    async def get_bill(self, caller: Caller, bill_id: UUID) -> BillingReport:
        require_permission(caller, Permission.BILLING_READ)
        bill = await self._bill(caller, bill_id)
        await bill.fetch_related("recalculations", using_db=self.db)
        return bill

    async def bill_versions(self, caller: Caller, bill_id: UUID) -> List[BillingReport]:
        require_permission(caller, Permission.BILLING_READ)
        bill = await self._bill(caller, bill_id)
        return await self._chain(bill).order_by("version")

    async def recalculation_history(self, caller: Caller, bill_id: UUID) -> List[RecalculationLog]:
        """Every recalculation of the bill's chain, newest first."""
        require_permission(caller, Permission.BILLING_READ)
        bill = await self._bill(caller, bill_id)
        return await (
            RecalculationLog.filter(
                billing_report__meter_id=bill.meter_id,
                billing_report__billing_start=bill.billing_start,
                billing_report__billing_end=bill.billing_end,
            )
            .using_db(self.db)
            .order_by("-new_version")
        )

    # ---------- consumer self-service ----------

    def consumer_bills_query(self, caller: Caller) -> QuerySet[BillingReport]:
        consumer = require_consumer(caller)
        return BillingReport.filter(is_latest=True, meter__consumer_id=consumer.consumer_id).using_db(self.db)

    async def get_consumer_bill(self, caller: Caller, bill_id: UUID) -> BillingReport:
        consumer = require_consumer(caller)
        bill = await (
            BillingReport.filter(id=bill_id, meter__consumer_id=consumer.consumer_id)
            .using_db(self.db)
            .first()
        )
        if bill is None:
            raise NotFoundError("BillingReport", bill_id)
        return bill

    async def record_bill_view(self, caller: Caller, bill_id: UUID) -> CustomerBillView:
        bill = await self.get_consumer_bill(caller, bill_id)
        return await CustomerBillView.create(
            billing_report_id=bill.id,
            consumer_id=caller.consumer_id,
            viewed_at=datetime.now(tz=UTC),
            using_db=self.db,
        )
