"""Display helpers for amounts, counts and rates (en-IE conventions)."""

from typing import Union

Number = Union[int, float]


def format_currency(value: Number) -> str:
    """Format an amount in euros, e.g. ``€1,234.50``."""
    sign = "-" if value < 0 else ""
    return f"{sign}€{abs(value):,.2f}"


def format_number(value: Number) -> str:
    """Group thousands; fractions keep at most three digits."""
    if isinstance(value, float) and not value.is_integer():
        return f"{round(value, 3):,}"
    return f"{int(value):,}"


def format_percentage(value: Number, fraction_digits: int = 2) -> str:
    return f"{value:.{fraction_digits}f}%"
