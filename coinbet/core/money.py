"""
Money helpers. Client amounts are Decimals in whole cents; payouts and
balances keep the exact product of stake and multiplier.
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any

from coinbet.core.exceptions import InvalidAmount

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Amounts are below 10**12, which keeps every product and sum well inside
# the 28 significant digits of the default decimal context
MAX_INTEGER_DIGITS = 12


def to_decimal(value: Any) -> Decimal:
    """Convert a JSON number or numeric string to Decimal without float noise."""
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError):
            raise ValueError(f"not a number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return result


def to_money(value: Any) -> Decimal:
    """Quantize to cents, rounding fractions of a cent down."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_DOWN)


def parse_amount(value: Any, minimum: Decimal, label: str = "amount") -> Decimal:
    """
    Validate a client-supplied amount.

    The amount must be a finite number, positive, below 10**12, expressed in
    whole cents and at least `minimum`. Raises InvalidAmount otherwise.
    """
    if value is None or isinstance(value, (bool, str, list, dict)):
        raise InvalidAmount(f"Invalid {label}")
    try:
        amount = to_decimal(value)
    except ValueError:
        raise InvalidAmount(f"Invalid {label}")

    if amount <= 0:
        raise InvalidAmount(f"The {label} must be positive")
    if amount.adjusted() >= MAX_INTEGER_DIGITS:
        raise InvalidAmount(f"The {label} is too large")
    try:
        whole_cents = amount == amount.quantize(CENT, rounding=ROUND_DOWN)
    except InvalidOperation:
        raise InvalidAmount(f"Invalid {label}")
    if not whole_cents:
        raise InvalidAmount(f"The {label} cannot have fractions of a cent")
    if amount < minimum:
        raise InvalidAmount(f"The minimum {label} is {minimum.quantize(CENT)}")

    return amount.quantize(CENT)
