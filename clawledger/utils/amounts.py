"""
Decimal helpers for amounts stored as strings.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

ZERO = Decimal("0")


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Parse a stored amount, returning default for empty or invalid input."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def decimal_str(value: Optional[Decimal]) -> str:
    """Render a Decimal without exponent notation or trailing zeros."""
    if value is None:
        return "0"
    if value == 0:
        return "0"
    return format(value.normalize(), "f")
