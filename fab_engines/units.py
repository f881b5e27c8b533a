"""
fab_engines.units -- Length and area unit conversion.

Responsibility:
    Normalise unit names and convert lengths and areas between inches, feet,
    millimetres, centimetres and metres.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Every unit is defined by its exact length in millimetres
      (1 in = 25.4 mm, 1 ft = 304.8 mm).  Conversions multiply by the source
      factor and divide once by the target factor, so inches to square feet
      is exactly ``(w * h) / 144``.
    - Unit names are matched case-insensitively against a fixed alias table;
      anything else is a ValidationError.
"""

from __future__ import annotations

from decimal import Decimal

from fab_kernel.exceptions import ValidationError

MM_PER_UNIT: dict[str, Decimal] = {
    "inches": Decimal("25.4"),
    "ft": Decimal("304.8"),
    "mm": Decimal("1"),
    "cm": Decimal("10"),
    "m": Decimal("1000"),
}

_LENGTH_ALIASES: dict[str, str] = {
    "in": "inches",
    "inch": "inches",
    "inches": "inches",
    '"': "inches",
    "ft": "ft",
    "feet": "ft",
    "foot": "ft",
    "'": "ft",
    "mm": "mm",
    "millimeter": "mm",
    "millimeters": "mm",
    "millimetre": "mm",
    "millimetres": "mm",
    "cm": "cm",
    "centimeter": "cm",
    "centimeters": "cm",
    "centimetre": "cm",
    "centimetres": "cm",
    "m": "m",
    "meter": "m",
    "meters": "m",
    "metre": "m",
    "metres": "m",
}

# Square unit name -> linear unit it is the square of.
AREA_UNITS: dict[str, str] = {
    "sqin": "inches",
    "sqft": "ft",
    "sqmm": "mm",
    "sqcm": "cm",
    "sqm": "m",
}

_AREA_ALIASES: dict[str, str] = {
    "sqin": "sqin",
    "sq in": "sqin",
    "in2": "sqin",
    "sqft": "sqft",
    "sq ft": "sqft",
    "ft2": "sqft",
    "sqmm": "sqmm",
    "sq mm": "sqmm",
    "mm2": "sqmm",
    "sqcm": "sqcm",
    "sq cm": "sqcm",
    "cm2": "sqcm",
    "sqm": "sqm",
    "sq m": "sqm",
    "m2": "sqm",
}


def normalize_length_unit(unit: object, field: str = "unit") -> str:
    """Canonical linear unit name for ``unit`` ("in" -> "inches")."""
    if isinstance(unit, str):
        canonical = _LENGTH_ALIASES.get(unit.strip().lower())
        if canonical is not None:
            return canonical
    raise ValidationError(
        field,
        f"unsupported length unit; expected one of {', '.join(MM_PER_UNIT)}",
        unit,
    )


def normalize_area_unit(unit: object, field: str = "unit") -> str:
    """Canonical square unit name for ``unit`` ("ft2" -> "sqft")."""
    if isinstance(unit, str):
        key = unit.strip().lower().replace("²", "2")
        canonical = _AREA_ALIASES.get(key)
        if canonical is not None:
            return canonical
    raise ValidationError(
        field,
        f"unsupported area unit; expected one of {', '.join(AREA_UNITS)}",
        unit,
    )


def convert_length(value: Decimal, from_unit: str, to_unit: str) -> Decimal:
    source = normalize_length_unit(from_unit, "from_unit")
    target = normalize_length_unit(to_unit, "to_unit")
    if source == target:
        return value
    return value * MM_PER_UNIT[source] / MM_PER_UNIT[target]


def convert_area(value: Decimal, from_unit: str, to_unit: str) -> Decimal:
    source = AREA_UNITS[normalize_area_unit(from_unit, "from_unit")]
    target = AREA_UNITS[normalize_area_unit(to_unit, "to_unit")]
    if source == target:
        return value
    numerator = value * MM_PER_UNIT[source] * MM_PER_UNIT[source]
    return numerator / (MM_PER_UNIT[target] * MM_PER_UNIT[target])


def rectangle_area(
    width: Decimal,
    height: Decimal,
    length_unit: str,
    area_unit: str,
) -> Decimal:
    """Area of ``width`` x ``height`` (in ``length_unit``) expressed in ``area_unit``."""
    source = normalize_length_unit(length_unit, "length_unit")
    target = AREA_UNITS[normalize_area_unit(area_unit, "area_unit")]
    product = width * height
    if source == target:
        return product
    return (product * MM_PER_UNIT[source] * MM_PER_UNIT[source]) / (
        MM_PER_UNIT[target] * MM_PER_UNIT[target]
    )


def supported_units() -> dict[str, list[str]]:
    """Canonical unit names, for callers that build unit pickers."""
    return {
        "length": list(MM_PER_UNIT),
        "area": list(AREA_UNITS),
    }
