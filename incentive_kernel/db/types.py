"""
Module: incentive_kernel.db.types
Responsibility: Decimal constants and rounding helpers for money, volume
    and rate values.  Centralizes rounding so that every calculator and
    service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models, domain code
    and services.  MUST NOT import from any of those layers.

Invariants enforced:
    - Storage precision lives in ``TrackedBase.type_annotation_map``
      (Numeric(38, 9)); rate columns declare Numeric(38, 18) explicitly.
    - round_money() is the ONLY sanctioned rounding function for
      monetary values (half-up).
    - No floats anywhere.  All amounts, volumes and rates are Decimal.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any


DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized to the specified decimal places
        using the specified rounding mode.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_decimal(value: Any) -> Decimal:
    """Coerce a stored or serialized numeric value (str, int, Decimal) to Decimal.

    Floats are routed through ``str`` so that values read back from
    backends without a native decimal type do not carry binary noise.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

