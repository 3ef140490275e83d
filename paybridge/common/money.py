"""Minor-unit money helpers.

Every amount stored, compared or sent to the gateway is a `MinorUnits` integer.
`DisplayAmount` (a `Decimal` in major units) exists only at the presentation
edge; the two convert through `to_minor_units` / `to_display` and nowhere else.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import NewType

MinorUnits = NewType("MinorUnits", int)
DisplayAmount = NewType("DisplayAmount", Decimal)

MINOR_PER_MAJOR = 100


def minor_units(value: int) -> MinorUnits:
    """Tag a raw integer as a minor-unit amount, rejecting floats and bools."""

    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"minor-unit amounts must be int, got {type(value).__name__}")
    return MinorUnits(value)


def to_minor_units(amount: DisplayAmount) -> MinorUnits:
    """Convert a major-unit display amount to minor units (half-up rounding)."""

    cents = (Decimal(amount) * MINOR_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return MinorUnits(int(cents))


def to_display(amount: MinorUnits) -> DisplayAmount:
    return DisplayAmount((Decimal(amount) / MINOR_PER_MAJOR).quantize(Decimal("0.01")))


def line_total(amount: MinorUnits, quantity: int) -> MinorUnits:
    return MinorUnits(amount * quantity)
