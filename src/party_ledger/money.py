"""Fixed-point money helpers.

Amounts travel through the engine as integers counting minor units (paisa,
cents). Conversion from raw record values happens once, when an adapter reads
a record, and conversion back to :class:`~decimal.Decimal` happens only when a
value is formatted or serialized. Keeping the fold in integers guarantees the
running balance invariant holds exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Optional

from . import log
from .constants import DEFAULT_CURRENCY, DEFAULT_CURRENCY_EXPONENT


@dataclass(frozen=True)
class Money:
    """Integer minor-unit amount tagged with its currency."""

    amount_minor: int
    currency: str = DEFAULT_CURRENCY
    exponent: int = DEFAULT_CURRENCY_EXPONENT

    def to_decimal(self) -> Decimal:
        return to_decimal(self.amount_minor, exponent=self.exponent)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for HTTP callers without losing precision."""
        return {"amount_minor": self.amount_minor, "currency": self.currency}

    def __str__(self) -> str:
        return format_money(self.amount_minor, currency=self.currency, exponent=self.exponent)


def is_missing(value: Any) -> bool:
    """Return ``True`` when a raw monetary field is absent rather than present."""

    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def to_minor_units(value: Any, *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> int:
    """Convert a raw numeric value into an integer count of minor units.

    Values are routed through ``str`` before building a :class:`Decimal` so
    binary floats such as ``0.1`` keep their printed meaning. Sub-minor
    fractions are rounded half-up, matching how invoices are totalled.

    Args:
        value (Any): ``int``, ``float``, ``Decimal`` or numeric string.
        exponent (int): Number of decimal places in one major unit.

    Returns:
        int: Amount expressed in minor units.

    Raises:
        ValueError: If ``value`` is missing, boolean, or not a finite number.
    """

    if is_missing(value) or isinstance(value, bool):
        raise ValueError(f"Not a monetary value: {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary value: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a finite monetary value: {value!r}")

    quantum = Decimal(1).scaleb(-exponent)
    scaled = amount.quantize(quantum, rounding=ROUND_HALF_UP).scaleb(exponent)
    return int(scaled)


def coerce_minor_units(
    value: Any,
    *,
    exponent: int = DEFAULT_CURRENCY_EXPONENT,
    field: Optional[str] = None,
) -> int:
    """Lenient variant of :func:`to_minor_units` that never raises.

    Missing values count as zero silently; present but non-numeric values also
    count as zero and are logged, so one bad cell cannot blank a statement.
    """

    if is_missing(value):
        return 0
    try:
        return to_minor_units(value, exponent=exponent)
    except ValueError:
        log.warning("Treating non-numeric amount %r in field '%s' as zero", value, field or "?")
        return 0


def to_decimal(amount_minor: int, *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> Decimal:
    """Convert minor units back into a :class:`Decimal` in major units."""

    return Decimal(amount_minor).scaleb(-exponent)


def format_money(
    amount_minor: int,
    *,
    currency: str = DEFAULT_CURRENCY,
    exponent: int = DEFAULT_CURRENCY_EXPONENT,
) -> str:
    """Render minor units for display, e.g. ``PKR 1,250.50``."""

    value = to_decimal(amount_minor, exponent=exponent)
    return f"{currency} {value:,.{exponent}f}"


__all__ = [
    "Money",
    "is_missing",
    "to_minor_units",
    "coerce_minor_units",
    "to_decimal",
    "format_money",
]
