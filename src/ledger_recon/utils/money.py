"""
Balance and variance arithmetic.

All amounts are ``Decimal``; floats are converted through ``str`` so that
``0.1`` stays ``Decimal("0.1")`` rather than its binary expansion.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from .exceptions import InvalidInputError

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """
    Convert a user-supplied value to Decimal.

    Raises:
        InvalidInputError: If the value is missing, not numeric, or not finite
    """
    if value is None or isinstance(value, bool):
        raise InvalidInputError(f"{field_name} is required")

    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).replace(",", "").strip()
        if not text:
            raise InvalidInputError(f"{field_name} is required")
        try:
            result = Decimal(text)
        except InvalidOperation as e:
            raise InvalidInputError(f"{field_name} is not a valid amount: {value!r}") from e

    if not result.is_finite():
        raise InvalidInputError(f"{field_name} must be a finite amount")
    return result


def to_date(value: Any, field_name: str = "date") -> date:
    """
    Convert an ISO date string, ``date`` or ``datetime`` to ``date``.

    Raises:
        InvalidInputError: If the value cannot be interpreted as a date
    """
    if value is None or value == "":
        raise InvalidInputError(f"{field_name} is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as e:
        raise InvalidInputError(f"{field_name} is not an ISO date: {value!r}") from e


def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
    """Sum Decimal amounts, starting from an exact zero."""
    return sum(amounts, ZERO)


def compute_balance(
    opening_balance: Decimal, matched_sum: Decimal, adjustment_sum: Decimal
) -> Decimal:
    """Opening balance plus matched activity plus accepted adjustments."""
    return opening_balance + matched_sum + adjustment_sum


def compute_variance(statement_balance: Decimal, computed_balance: Decimal) -> Decimal:
    """Signed difference between the claimed and the computed balance."""
    return statement_balance - computed_balance


def quantize(amount: Decimal, exponent: Decimal = CENT) -> Decimal:
    """Round to the given exponent using banker's rounding."""
    return amount.quantize(exponent, rounding=ROUND_HALF_EVEN)


def format_amount(amount: Optional[Decimal], currency_symbol: str = "$") -> str:
    """
    Format an amount for display with an explicit currency symbol.

    Negative amounts render as ``-$50.00``.
    """
    if amount is None:
        return ""
    sign = "-" if amount < 0 else ""
    return f"{sign}{currency_symbol}{abs(amount):,.2f}"
