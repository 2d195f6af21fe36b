# services/tariffs.py
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from tortoise import connections
from tortoise.queryset import QuerySet

from models import SmartMeter, State, Tariff, TariffType
from services import config
from services.aggregation import as_utc
from services.audit import log_action
from services.charges import to_decimal
from services.errors import InvalidInputError, NotFoundError
from services.scope import Caller, Permission, require_permission, scope_of


class TariffLookup:
    """Resolves the rate plan a meter is linked to right now."""

    def __init__(self, connection_name: str = config.DB_CONNECTION):
        self.connection_name = connection_name

    @property
    def db(self):
        return connections.get(self.connection_name)

    async def resolve_meter_tariff(self, meter: SmartMeter, *, using_db=None) -> Tariff:
        tariff = await Tariff.filter(id=meter.tariff_id).using_db(using_db or self.db).first()
        if tariff is None:
            raise NotFoundError("Tariff", meter.tariff_id)
        return tariff


# ---------- CRUD ----------

def tariffs_query(caller: Caller) -> QuerySet[Tariff]:
    # tariffs belong to a state, so board-level callers see their whole state's plans
    require_permission(caller, Permission.BILLING_READ)
    return scope_of(caller).state_level().filter(Tariff.all())


async def get_tariff(caller: Caller, tariff_id: UUID) -> Tariff:
    obj = await tariffs_query(caller).filter(id=tariff_id).first()
    if obj is None:
        raise NotFoundError("Tariff", tariff_id)
    return obj


async def create_tariff(
    caller: Caller,
    *,
    state_id: UUID,
    type: TariffType,
    unit_rate: Decimal,
    fixed_charge: Decimal,
    effective_from: datetime,
    effective_to: Optional[datetime] = None,
) -> Tariff:
    admin = require_permission(caller, Permission.TARIFF_MANAGE)
    scope = scope_of(admin).state_level()

    state = await scope.filter(State.filter(id=state_id), state_field="id").first()
    if state is None:
        raise NotFoundError("State", state_id)

    if to_decimal(unit_rate) < 0 or to_decimal(fixed_charge) < 0:
        raise InvalidInputError("Tariff rates must not be negative")
    if effective_to is not None and as_utc(effective_to) <= as_utc(effective_from):
        raise InvalidInputError("effective_to must be after effective_from")

    tariff = await Tariff.create(
        state_id=state.id,
        type=type,
        unit_rate=unit_rate,
        fixed_charge=fixed_charge,
        effective_from=as_utc(effective_from),
        effective_to=as_utc(effective_to) if effective_to else None,
    )
    await log_action(admin.user_id, "TARIFF_CREATED", "Tariff", tariff.id, {
        "state_id": state.id,
        "type": tariff.type,
        "unit_rate": tariff.unit_rate,
        "fixed_charge": tariff.fixed_charge,
    })
    return tariff
