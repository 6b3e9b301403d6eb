"""
datamarket/money.py

Decimal money parsing and the wei <-> coin conversion used at the ledger
boundary. Nothing in the engine carries amounts as binary floats.
"""

from decimal import Decimal, InvalidOperation
from typing import Union

from .config import UNITS_PER_COIN
from .errors import InvalidAmount

AmountLike = Union[Decimal, int, str, float]


def to_decimal(value: AmountLike, field_name: str = "amount") -> Decimal:
    """
    Parse an amount into a finite Decimal.

    Floats go through their shortest repr so 0.1 becomes Decimal('0.1'),
    never the binary expansion.

    Raises:
        InvalidAmount: bool, NaN, infinity or anything unparsable
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"{field_name} must be numeric, got {value!r}", value)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidAmount(f"{field_name} is not a number: {value!r}", value)
    else:
        raise InvalidAmount(f"{field_name} has unsupported type {type(value).__name__}", value)

    if not result.is_finite():
        raise InvalidAmount(f"{field_name} must be finite, got {value!r}", value)
    return result


def to_units(amount: AmountLike) -> int:
    """
    Convert a coin amount to ledger units (wei).

    Raises:
        InvalidAmount: negative, or finer than one wei
    """
    value = to_decimal(amount)
    if value < 0:
        raise InvalidAmount(f"amount must be non-negative, got {value}", amount)
    units = value * UNITS_PER_COIN
    if units != units.to_integral_value():
        raise InvalidAmount(f"amount {value} is finer than one ledger unit", amount)
    return int(units)


def from_units(units: int) -> Decimal:
    """Convert ledger units (wei) to a coin Decimal."""
    if isinstance(units, bool) or not isinstance(units, int):
        raise InvalidAmount(f"ledger units must be an integer, got {units!r}", units)
    return Decimal(units) / Decimal(UNITS_PER_COIN)
