# services/charges.py
"""
Money arithmetic for bills.

Every amount is a `Decimal` quantized to 2 places with ROUND_HALF_UP
(half away from zero), and every derived value is rounded again before it
is used further, so a stored total always equals
round(energy + fixed + tax).
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Number) -> Decimal:
    # floats go through str() so 2.675 stays 2.675 and not 2.67499999...
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round2(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Charges:
    total_units: Decimal
    energy_charge: Decimal
    fixed_charge: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def _finish(units: Decimal, energy: Decimal, fixed: Decimal, tax: Decimal) -> Charges:
    return Charges(
        total_units=units,
        energy_charge=energy,
        fixed_charge=fixed,
        tax_amount=tax,
        total_amount=round2(energy + fixed + tax),
    )


def compute_charges(total_units: Number, unit_rate: Number, fixed_charge: Number, tax_rate: Number = 0) -> Charges:
    """Charges for a fresh bill at an explicit tax rate (0 when none is given)."""
    units = round2(total_units)
    energy = round2(units * to_decimal(unit_rate))
    fixed = round2(fixed_charge)
    tax = round2((energy + fixed) * to_decimal(tax_rate))
    return _finish(units, energy, fixed, tax)


def tax_ratio(energy_charge: Number, fixed_charge: Number, tax_amount: Optional[Number]) -> Decimal:
    """Effective tax rate of an existing bill; 0 when it carried no tax or no subtotal."""
    if not tax_amount:
        return Decimal(0)
    subtotal = to_decimal(energy_charge) + to_decimal(fixed_charge)
    if subtotal == 0:
        return Decimal(0)
    return to_decimal(tax_amount) / subtotal


def recompute_charges(
    total_units: Number,
    unit_rate: Number,
    fixed_charge: Number,
    *,
    previous_energy: Number,
    previous_fixed: Number,
    previous_tax: Optional[Number],
) -> Charges:
    """Charges for a new version, re-applying the previous version's effective tax rate."""
    units = round2(total_units)
    energy = round2(units * to_decimal(unit_rate))
    fixed = round2(fixed_charge)
    ratio = tax_ratio(previous_energy, previous_fixed, previous_tax)
    tax = round2((energy + fixed) * ratio) if ratio else ZERO
    return _finish(units, energy, fixed, tax)
