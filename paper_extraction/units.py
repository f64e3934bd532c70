"""Unit normalization for extracted quantities.

Values arrive as free text ("1,000 participants", "12 cm", "2.5 h"). When a
field declares an expected unit, the number is parsed, scaled into that unit
and reported together with its original text.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from .errors import UnitConversionError

Number = Union[int, float]

COUNT = "count"

# alias -> (dimension, size of one unit expressed in the dimension's base unit)
UNITS: Dict[str, Tuple[str, float]] = {
    # dimensionless counts
    "count": (COUNT, 1.0),
    "n": (COUNT, 1.0),
    "number": (COUNT, 1.0),
    # percent / fraction (base: percent)
    "%": ("ratio", 1.0),
    "percent": ("ratio", 1.0),
    "pct": ("ratio", 1.0),
    "fraction": ("ratio", 100.0),
    # length (base: metre)
    "nm": ("length", 1e-9),
    "um": ("length", 1e-6),
    "µm": ("length", 1e-6),
    "mm": ("length", 1e-3),
    "cm": ("length", 1e-2),
    "m": ("length", 1.0),
    "km": ("length", 1e3),
    "in": ("length", 0.0254),
    "ft": ("length", 0.3048),
    # mass (base: kilogram)
    "µg": ("mass", 1e-9),
    "ug": ("mass", 1e-9),
    "mg": ("mass", 1e-6),
    "g": ("mass", 1e-3),
    "kg": ("mass", 1.0),
    "t": ("mass", 1e3),
    "lb": ("mass", 0.45359237),
    "lbs": ("mass", 0.45359237),
    # time (base: second)
    "ms": ("time", 1e-3),
    "s": ("time", 1.0),
    "sec": ("time", 1.0),
    "second": ("time", 1.0),
    "seconds": ("time", 1.0),
    "min": ("time", 60.0),
    "minute": ("time", 60.0),
    "minutes": ("time", 60.0),
    "h": ("time", 3600.0),
    "hr": ("time", 3600.0),
    "hour": ("time", 3600.0),
    "hours": ("time", 3600.0),
    "day": ("time", 86400.0),
    "days": ("time", 86400.0),
    "week": ("time", 604800.0),
    "weeks": ("time", 604800.0),
    "year": ("time", 31557600.0),
    "years": ("time", 31557600.0),
}

MULTIPLIERS: Dict[str, float] = {
    "thousand": 1e3,
    "million": 1e6,
    "billion": 1e9,
}

LEADING_NOISE = re.compile(
    r"^(?:(?:approximately|approx\.?|about|around|n\s*=)\s*|[~≈])", re.IGNORECASE
)
NUMBER_PATTERN = re.compile(
    r"^(?P<number>[-+]?(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?(?:[eE][-+]?\d+)?|[-+]?\.\d+)"
    r"\s*(?P<rest>.*?)\s*$",
    re.DOTALL,
)
# A number that stopped at a separator: "1,00", "1.000.000"
SPLIT_DIGITS = re.compile(r"^[.,]\d")


@dataclass(frozen=True)
class Quantity:
    """A parsed value expressed in the expected unit."""

    value: Number
    unit: str
    original: str

    @property
    def formatted(self) -> str:
        if lookup_unit(self.unit)[0] == COUNT:
            return str(self.value)
        if self.unit == "%":
            return f"{self.value}%"
        return f"{self.value} {self.unit}"

    @property
    def changed(self) -> bool:
        """True when the normalized form differs from the original text."""
        return self.formatted != self.original.strip() and str(self.value) != self.original.strip()

    def describe(self) -> str:
        return f"normalized from '{self.original}' to {self.formatted}"


def lookup_unit(unit: str) -> Tuple[str, float]:
    key = unit.strip()
    if key in UNITS:
        return UNITS[key]
    lowered = key.lower()
    if lowered in UNITS:
        return UNITS[lowered]
    raise UnitConversionError(f"unknown unit '{unit}'")


def clean_number(value: float) -> Number:
    """Round away float noise and collapse integral floats to int."""
    if not math.isfinite(value):
        raise UnitConversionError(f"non-finite number {value}")
    rounded = round(value, 10)
    if rounded == 0:
        return 0
    if float(rounded).is_integer() and abs(rounded) < 1e15:
        return int(rounded)
    return rounded


def parse_number(text: str) -> Optional[Number]:
    """Parse a bare number (thousands separators allowed); None if not numeric."""
    match = NUMBER_PATTERN.match(text.strip())
    if not match or match.group("rest"):
        return None
    number = float(match.group("number").replace(",", ""))
    if not math.isfinite(number):
        return None
    return clean_number(number)


def _split_unit(rest: str) -> Tuple[Optional[float], str]:
    """Return (multiplier, unit token) from the text following the number."""
    words = rest.split()
    if not words:
        return None, ""
    multiplier = MULTIPLIERS.get(words[0].lower())
    if multiplier is not None:
        words = words[1:]
    if not words:
        return multiplier, ""
    if rest.startswith("%"):
        return multiplier, "%"
    return multiplier, words[0].rstrip(".,;:)")


def normalize_quantity(text: str, expected_unit: str) -> Quantity:
    """
    Convert ``text`` into ``expected_unit``.

    Raises UnitConversionError when the text has no leading number, has a
    malformed one, names an unknown unit, or names a unit of a different
    dimension.
    """
    target_dimension, target_factor = lookup_unit(expected_unit)
    cleaned = LEADING_NOISE.sub("", text.strip())
    match = NUMBER_PATTERN.match(cleaned)
    if not match:
        raise UnitConversionError("no numeric value found")

    if SPLIT_DIGITS.match(match.group("rest")):
        raise UnitConversionError(f"malformed number in '{text.strip()}'")

    number = float(match.group("number").replace(",", ""))
    multiplier, token = _split_unit(match.group("rest"))
    if multiplier is not None:
        number *= multiplier

    if target_dimension == COUNT:
        # Trailing words name what is counted ("participants"); only a known
        # non-count unit is a conflict.
        if token:
            known = UNITS.get(token) or UNITS.get(token.lower())
            if known is not None and known[0] != COUNT:
                raise UnitConversionError(f"cannot convert '{token}' to a count")
        return Quantity(clean_number(number), expected_unit, text)

    if not token:
        return Quantity(clean_number(number), expected_unit, text)

    source_dimension, source_factor = lookup_unit(token)
    if source_dimension != target_dimension:
        raise UnitConversionError(f"cannot convert '{token}' to '{expected_unit}'")
    converted = number * source_factor / target_factor
    return Quantity(clean_number(converted), expected_unit, text)
