"""
Decimal Math Utilities for Benefit Calculations.

Provides precise decimal arithmetic so that eligibility thresholds and
benefit amounts never drift through float rounding. All program
calculators use these helpers instead of direct float arithmetic.

Rounding conventions:
- Benefit amounts round to whole currency units, half-up ($272.50 -> $273)
- Percentages (variance, rates shown to reviewers) keep 2 decimal places
- Intermediate values keep full precision until the final rounding step
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union
import logging

logger = logging.getLogger(__name__)

# Type alias for values that can be converted to Decimal
Numeric = Union[int, float, str, Decimal]

MONEY_PLACES = Decimal("0.01")
WHOLE_UNITS = Decimal("1")
PERCENT_PLACES = Decimal("0.01")

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
MONTHS_PER_YEAR = Decimal("12")


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert a numeric value to Decimal.

    Examples:
        >>> to_decimal(100)
        Decimal('100')
        >>> to_decimal(100.50)
        Decimal('100.5')
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # Convert float to string first to preserve representation
        return Decimal(str(value))
    return Decimal(value)


def money(value: Numeric) -> Decimal:
    """
    Round to cents (2 decimal places, half-up).

    Examples:
        >>> money(100.994)
        Decimal('100.99')
    """
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def whole_units(value: Numeric) -> Decimal:
    """
    Round a monetary value to whole currency units, half-up.

    The result is expressed with 2 decimal places so it serializes
    consistently as a money amount.

    Examples:
        >>> whole_units(272.1)
        Decimal('272.00')
        >>> whole_units(272.5)
        Decimal('273.00')
    """
    rounded = to_decimal(value).quantize(WHOLE_UNITS, rounding=ROUND_HALF_UP)
    return rounded.quantize(MONEY_PLACES)


def percentage(value: Numeric) -> Decimal:
    """
    Round a percentage to 2 decimal places, half-up.

    Examples:
        >>> percentage(3.33333)
        Decimal('3.33')
    """
    return to_decimal(value).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def add(*values: Numeric) -> Decimal:
    """Add multiple values with Decimal precision."""
    result = ZERO
    for v in values:
        result += to_decimal(v)
    return result


def subtract(a: Numeric, b: Numeric) -> Decimal:
    """Subtract b from a with Decimal precision."""
    return to_decimal(a) - to_decimal(b)


def multiply(a: Numeric, b: Numeric) -> Decimal:
    """Multiply two values with Decimal precision."""
    return to_decimal(a) * to_decimal(b)


def divide(a: Numeric, b: Numeric, default: Optional[Numeric] = None) -> Decimal:
    """
    Divide a by b with Decimal precision.

    Args:
        a: Dividend
        b: Divisor
        default: Value to return if division by zero (None raises error)

    Raises:
        InvalidOperation: If b is zero and no default provided
    """
    b_dec = to_decimal(b)
    if b_dec == 0:
        if default is not None:
            return to_decimal(default)
        raise InvalidOperation("Division by zero")
    return to_decimal(a) / b_dec


def min_decimal(*values: Numeric) -> Decimal:
    """Find minimum of values with Decimal precision."""
    return min(to_decimal(v) for v in values)


def max_decimal(*values: Numeric) -> Decimal:
    """Find maximum of values with Decimal precision."""
    return max(to_decimal(v) for v in values)


def floor_at_zero(value: Numeric) -> Decimal:
    """Clamp negative values to zero."""
    return max_decimal(ZERO, value)


def clamp(value: Numeric, minimum: Numeric, maximum: Numeric) -> Decimal:
    """
    Clamp value between minimum and maximum.

    Examples:
        >>> clamp(150, 0, 100)
        Decimal('100')
    """
    return max_decimal(minimum, min_decimal(value, maximum))


def annualize(monthly: Numeric) -> Decimal:
    """Convert a monthly amount to an annual amount."""
    return multiply(monthly, MONTHS_PER_YEAR)


def percent_difference(actual: Numeric, baseline: Numeric, rounded: bool = True) -> Decimal:
    """
    Percent difference of actual from baseline, rounded to 2 places
    unless rounded is False.

    A zero baseline yields 0 when actual is also zero and 100 otherwise,
    so that every comparison has a defined variance.

    Examples:
        >>> percent_difference(459, 450)
        Decimal('2.00')
        >>> percent_difference(0, 0)
        Decimal('0.00')
    """
    actual_d = to_decimal(actual)
    baseline_d = to_decimal(baseline)

    if baseline_d == 0:
        exact = ZERO if actual_d == 0 else HUNDRED
    else:
        exact = divide(abs(actual_d - baseline_d), abs(baseline_d)) * HUNDRED
    return percentage(exact) if rounded else exact


def format_money(value: Numeric) -> str:
    """
    Format value as money string.

    Examples:
        >>> format_money(1234.5)
        '$1,234.50'
    """
    m = money(value)
    return f"${m:,.2f}"


def format_percentage(value: Numeric, decimal_places: int = 2) -> str:
    """
    Format a fractional rate as a percentage string.

    Examples:
        >>> format_percentage(0.3)
        '30.00%'
    """
    pct = multiply(value, HUNDRED)
    return f"{pct:.{decimal_places}f}%"
