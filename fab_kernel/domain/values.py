"""
Values -- coercion and validation of raw numeric and text inputs.

Responsibility:
    Turn caller-supplied primitives (int, str, Decimal, float) into the exact
    types the engines and ledger compute with: Decimal for weights, costs,
    lengths and dimensions; int for piece counts.  Every rejection is a
    ValidationError naming the field.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by fab_engines and fab_services.

Invariants enforced:
    - Decimal-only arithmetic: floats are converted through ``str`` so
      ``7.5`` becomes ``Decimal("7.5")``, never its binary expansion.
    - Non-finite values (NaN, Infinity) are always rejected.
    - Piece counts are integers; ``bool`` and fractional values are rejected.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from fab_kernel.exceptions import ValidationError


def to_decimal(value: object, field: str) -> Decimal:
    """Coerce ``value`` to a finite Decimal or raise ValidationError."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(field, "must be a number", value)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(field, "must be a number", value) from None
    else:
        raise ValidationError(field, "must be a number", value)
    if not result.is_finite():
        raise ValidationError(field, "must be finite", value)
    return result


def positive_decimal(value: object, field: str) -> Decimal:
    result = to_decimal(value, field)
    if result <= 0:
        raise ValidationError(field, "must be greater than zero", value)
    return result


def non_negative_decimal(value: object, field: str) -> Decimal:
    result = to_decimal(value, field)
    if result < 0:
        raise ValidationError(field, "must not be negative", value)
    return result


def to_quantity(value: object, field: str) -> int:
    """
    Coerce a piece count to a positive int.

    Integral strings and Decimals ("10", Decimal("10.0")) are accepted;
    fractional counts are not.
    """
    if isinstance(value, bool):
        raise ValidationError(field, "must be a whole number", value)
    if isinstance(value, int):
        result = value
    else:
        number = to_decimal(value, field)
        if number != number.to_integral_value():
            raise ValidationError(field, "must be a whole number", value)
        result = int(number)
    if result <= 0:
        raise ValidationError(field, "must be greater than zero", value)
    return result


def require_text(value: object, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "is required", value)
    return value.strip()


def optional_text(value: object, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(field, "must be text", value)
    stripped = value.strip()
    return stripped or None
