"""Exact area values for land records.

Areas are held as a rational magnitude plus a unit tag.  Every conversion
factor is an exact rational multiple of a square metre, so repeated
acre ↔ guntha ↔ sq_m round-trips never drift:

  1 acre   = 4046.8564224 sq_m   (international acre, exact)
  1 guntha = 1/40 acre           = 101.17141056 sq_m
  1 hectare = 10000 sq_m
  1 sq_ft  = 0.09290304 sq_m

Comparison and arithmetic always go through square metres; the unit tag only
controls how a value is presented.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from functools import total_ordering
from typing import Any, Iterable

from app.config import DEFAULT_AREA_UNIT

GUNTHAS_PER_ACRE = 40

SQM_PER_UNIT: dict[str, Fraction] = {
    "sq_m": Fraction(1),
    "acre": Fraction("4046.8564224"),
    "guntha": Fraction("4046.8564224") / GUNTHAS_PER_ACRE,
    "hectare": Fraction(10000),
    "sq_ft": Fraction("0.09290304"),
}

# Loose spellings seen in payloads and free-text extents
_UNIT_ALIASES = {
    "sqm": "sq_m", "sq.m": "sq_m", "sq m": "sq_m", "sq_m": "sq_m",
    "square meter": "sq_m", "square meters": "sq_m", "square_meters": "sq_m",
    "m2": "sq_m", "acre": "acre", "acres": "acre", "ac": "acre",
    "guntha": "guntha", "gunthas": "guntha", "gunta": "guntha", "guntas": "guntha",
    "hectare": "hectare", "hectares": "hectare", "ha": "hectare",
    "sq_ft": "sq_ft", "sqft": "sq_ft", "sq.ft": "sq_ft", "sq ft": "sq_ft",
}


def normalize_unit(unit: str | None) -> str:
    """Map a unit spelling to its canonical key; raises ValueError if unknown."""
    if not unit:
        return DEFAULT_AREA_UNIT
    key = _UNIT_ALIASES.get(str(unit).strip().lower())
    if key is None:
        raise ValueError(f"Unknown area unit: {unit!r}")
    return key


def to_fraction(value: Any) -> Fraction:
    """Convert a numeric-ish value to an exact Fraction.

    Floats go through their shortest repr so ``0.1`` becomes ``1/10``
    instead of the binary approximation.
    """
    if value is None or value == "":
        return Fraction(0)
    if isinstance(value, Fraction):
        return value
    if isinstance(value, bool):
        raise ValueError("Boolean is not an area magnitude")
    if isinstance(value, int):
        return Fraction(value)
    if isinstance(value, float):
        return Fraction(repr(value))
    if isinstance(value, Decimal):
        return Fraction(value)
    if isinstance(value, str):
        return Fraction(value.replace(",", "").strip())
    raise ValueError(f"Cannot convert {type(value).__name__} to an area magnitude")


@total_ordering
@dataclass(frozen=True, eq=False)
class Area:
    """A rational area magnitude tagged with its display unit."""
    magnitude: Fraction
    unit: str = "sq_m"

    @classmethod
    def of(cls, value: Any, unit: str | None = None) -> "Area":
        return cls(to_fraction(value), normalize_unit(unit))

    @classmethod
    def zero(cls, unit: str | None = None) -> "Area":
        return cls(Fraction(0), normalize_unit(unit))

    @property
    def sq_m(self) -> Fraction:
        return self.magnitude * SQM_PER_UNIT[self.unit]

    def value_in(self, unit: str) -> Fraction:
        unit = normalize_unit(unit)
        return self.sq_m / SQM_PER_UNIT[unit]

    def to(self, unit: str) -> "Area":
        unit = normalize_unit(unit)
        return Area(self.value_in(unit), unit)

    def floor_zero(self) -> "Area":
        return self if self.magnitude >= 0 else Area(Fraction(0), self.unit)

    def is_positive(self) -> bool:
        return self.magnitude > 0

    def is_zero(self) -> bool:
        return self.magnitude == 0

    # ── arithmetic (result keeps the left operand's unit) ──

    def __add__(self, other: "Area") -> "Area":
        if not isinstance(other, Area):
            return NotImplemented
        return Area(self.magnitude + other.value_in(self.unit), self.unit)

    def __sub__(self, other: "Area") -> "Area":
        if not isinstance(other, Area):
            return NotImplemented
        return Area(self.magnitude - other.value_in(self.unit), self.unit)

    def __truediv__(self, n: int) -> "Area":
        if isinstance(n, Area) or not n:
            raise ZeroDivisionError("Area can only be divided by a non-zero count")
        return Area(self.magnitude / n, self.unit)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Area):
            return NotImplemented
        return self.sq_m == other.sq_m

    def __lt__(self, other: "Area") -> bool:
        if not isinstance(other, Area):
            return NotImplemented
        return self.sq_m < other.sq_m

    def __hash__(self) -> int:
        return hash(self.sq_m)

    def __str__(self) -> str:
        return f"{float(self.magnitude):.4f} {self.unit}"

    # ── serialization ──

    def to_dict(self) -> dict:
        return {
            "numerator": self.magnitude.numerator,
            "denominator": self.magnitude.denominator,
            "unit": self.unit,
            "value": round(float(self.magnitude), 4),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Area":
        """Build an Area from any of the shapes the workflow produces.

        Accepted:
          {"numerator": 3, "denominator": 2, "unit": "acre"}
          {"value": 1200.5, "unit": "sq_m"}
          {"sqm": 1200.5}
          {"acre": 2, "guntha": 10}      / {"acres": 2, "gunthas": 10}
          {"value": ..., "unit": "acre_guntha", "acres": 2, "gunthas": 10}
        """
        if isinstance(data, Area):
            return data
        if not data:
            return cls.zero()
        if not isinstance(data, dict):
            raise ValueError(f"Area must be an object, got {type(data).__name__}")

        if "numerator" in data:
            denominator = int(data.get("denominator") or 1)
            return cls(Fraction(int(data["numerator"]), denominator),
                       normalize_unit(data.get("unit")))

        for key in ("sqm", "sq_m", "square_meters"):
            if data.get(key) not in (None, ""):
                return cls.of(data[key], "sq_m")

        acres = data.get("acres", data.get("acre"))
        gunthas = data.get("gunthas", data.get("guntha"))
        if data.get("unit") == "acre_guntha" or (
            "value" not in data and (acres is not None or gunthas is not None)
        ):
            total = to_fraction(acres) * GUNTHAS_PER_ACRE + to_fraction(gunthas)
            if total == 0 and data.get("value") not in (None, ""):
                return cls.of(data["value"], "sq_m")
            return cls(total, "guntha")

        return cls.of(data.get("value"), data.get("unit"))


def sum_areas(areas: Iterable[Area], unit: str | None = None) -> Area:
    """Sum areas exactly; the result is expressed in ``unit`` (or the first area's unit)."""
    total: Area | None = None
    for a in areas:
        total = a if total is None else total + a
    if total is None:
        return Area.zero(unit)
    return total.to(unit) if unit else total


# ═══════════════════════════════════════════════════
# FREE-TEXT EXTENT PARSING
# ═══════════════════════════════════════════════════

_AREA_PATTERN = re.compile(
    r'(\d+(?:\.\d+)?)\s*(' + '|'.join(
        re.escape(k) for k in sorted(_UNIT_ALIASES.keys(), key=len, reverse=True)
    ) + r')\b',
    re.IGNORECASE,
)


def parse_area(text: str, default_unit: str | None = None) -> Area | None:
    """Parse an extent string such as ``"2 acre 10 guntha"`` into an exact Area.

    Compound extents are summed.  A bare number is read in ``default_unit``.
    Returns None when nothing parseable is found.
    """
    if not text or not isinstance(text, str):
        return None
    total: Area | None = None
    for match in _AREA_PATTERN.finditer(text):
        part = Area.of(match.group(1), match.group(2))
        total = part if total is None else total + part
    if total is not None:
        return total
    try:
        return Area.of(text.strip(), default_unit)
    except (ValueError, ZeroDivisionError):
        return None
