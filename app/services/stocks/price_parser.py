"""Parsing for the free-text price fields of a recommendation.

Entry zones, targets and stop-losses are typed by analysts, so they arrive as
"₹650 - 570", "570 to 650", "1,234.50" and so on. Everything here is a pure
function that returns None when the text cannot be read; callers skip the
stock for that cycle instead of guessing.
"""

import math
import re
from typing import NamedTuple

_NOISE = re.compile(r"[₹$,]")
_DASHES = re.compile(r"[‐‑‒–—―−]")
_TO_WORD = re.compile(r"\bto\b", re.IGNORECASE)
_RANGE = re.compile(r"(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)")
_NUMBER = re.compile(r"\d+(?:\.\d+)?")


class PriceRange(NamedTuple):
    """Inclusive price band, always ordered low to high."""

    min: float
    max: float

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2

    def contains(self, price: float) -> bool:
        return self.min <= price <= self.max


def _clean(text: str) -> str:
    cleaned = _NOISE.sub("", text).strip()
    cleaned = _DASHES.sub("-", cleaned)
    cleaned = _TO_WORD.sub("-", cleaned)
    return re.sub(r"\s+", " ", cleaned)


def parse_range(text: str | None) -> PriceRange | None:
    """Parse an entry zone like "650-570" into PriceRange(570, 650).

    Order of the two bounds does not matter. A single number gives a zero-width
    range. Returns None when no number can be found.
    """
    if not text:
        return None

    cleaned = _clean(text)

    match = _RANGE.search(cleaned)
    if match:
        first, second = float(match.group(1)), float(match.group(2))
        return PriceRange(min(first, second), max(first, second))

    single = _NUMBER.search(cleaned)
    if single:
        value = float(single.group(0))
        return PriceRange(value, value)

    return None


def parse_price(text: str | None) -> float | None:
    """Parse a target or stop-loss like "₹1,234.50" into 1234.5."""
    if not text:
        return None
    match = _NUMBER.search(_NOISE.sub("", text))
    return float(match.group(0)) if match else None


def resolve_average_entry(
    average_entry: float | str | None, entry_zone: str | None
) -> float | None:
    """Average entry price used for every return calculation.

    An explicit, strictly positive value wins. Anything else (missing, zero,
    negative, NaN, unparseable) falls back to the entry zone midpoint.
    """
    explicit: float | None
    if isinstance(average_entry, str):
        explicit = parse_price(average_entry)
    elif average_entry is None:
        explicit = None
    else:
        explicit = float(average_entry)

    if explicit is not None and math.isfinite(explicit) and explicit > 0:
        return explicit

    zone = parse_range(entry_zone)
    if zone is None or zone.midpoint <= 0:
        return None
    return zone.midpoint
