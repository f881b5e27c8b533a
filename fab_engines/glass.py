"""
fab_engines.glass -- Glass cutting size and area calculation.

Responsibility:
    Evaluate separate width and height cutting formulas against a window's
    dimensions, round the results to a manufacturable increment, and compute
    glass area per piece and for a quantity of pieces.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Imports fab_engines.formula and fab_engines.units.
    Called by fab_services.boundary and the glass_calc script.

Invariants enforced:
    - Width and height are evaluated independently, never combined into one
      expression, so each can be rounded on its own.
    - Rounding is a pure function of (value, unit, policy): the same inputs
      give the same rounded dimension regardless of call order.
    - Area is converted once from the input square unit to the output unit
      using exact millimetre factors, then quantized (ROUND_HALF_UP).
    - total_area == area_per_piece * glass_quantity, exactly.

Failure modes:
    - FormulaError naming the dimension and expression when either formula
      fails to evaluate or yields a non-positive size.  The evaluator's own
      error is chained as ``__cause__``.  No partial result is returned.
    - ValidationError for a non-positive window dimension, a quantity that
      is not a positive whole number, or an unknown unit.

Usage:
    result = calculate_glass_area_with_quantity(
        "(W - 4.75) / 2", "H - 5", 48, 60, 2, "inches", "sqft",
    )
    result.rounded_width     # Decimal("21.75")
    result.total_area        # Decimal("16.6146")
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from enum import Enum

from fab_engines.formula import FormulaEvaluator
from fab_engines.tracer import traced_engine
from fab_engines.units import (
    AREA_UNITS,
    MM_PER_UNIT,
    normalize_area_unit,
    normalize_length_unit,
    rectangle_area,
)
from fab_kernel.domain.values import positive_decimal, to_quantity
from fab_kernel.exceptions import FabricationError, FormulaError, ValidationError

GLASS_VARIABLES = ("W", "H")
DEFAULT_AREA_PLACES = 4

DEFAULT_SAMPLE_WINDOWS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("48"), Decimal("60")),
    (Decimal("36"), Decimal("48")),
    (Decimal("24"), Decimal("36")),
)

# Formulas are written by estimators as W/H or w/h interchangeably.
_evaluator = FormulaEvaluator(case_insensitive=True)


class RoundingMode(str, Enum):
    """How a cut dimension is brought onto the increment grid."""

    NEAREST = "nearest"  # half-up to the closest multiple
    UP = "up"  # next multiple at or above the value
    NONE = "none"  # use the evaluated size as-is


@dataclass(frozen=True, slots=True)
class RoundingPolicy:
    """
    Dimension rounding rule.

    ``increment`` is expressed in ``increment_unit`` when given (the factory
    3-inch rule applies to millimetre input as 76.2 mm), otherwise in the
    unit of the dimension being rounded.
    """

    mode: RoundingMode = RoundingMode.NEAREST
    increment: Decimal = Decimal("0.25")
    increment_unit: str | None = None

    def __post_init__(self) -> None:
        try:
            mode = RoundingMode(self.mode)
        except ValueError:
            allowed = ", ".join(m.value for m in RoundingMode)
            raise ValidationError("rounding.mode", f"must be one of {allowed}", self.mode) from None
        object.__setattr__(self, "mode", mode)
        increment = positive_decimal(self.increment, "rounding.increment")
        object.__setattr__(self, "increment", increment)
        if self.increment_unit is not None:
            object.__setattr__(
                self,
                "increment_unit",
                normalize_length_unit(self.increment_unit, "rounding.increment_unit"),
            )

    @classmethod
    def nearest(cls, increment: Decimal | str, unit: str | None = None) -> RoundingPolicy:
        return cls(RoundingMode.NEAREST, Decimal(str(increment)), unit)

    @classmethod
    def up(cls, increment: Decimal | str, unit: str | None = None) -> RoundingPolicy:
        return cls(RoundingMode.UP, Decimal(str(increment)), unit)

    @classmethod
    def none(cls) -> RoundingPolicy:
        return cls(RoundingMode.NONE, Decimal("1"), None)

    @classmethod
    def factory_cut(cls) -> RoundingPolicy:
        """Glass sheets are cut up to the next 3 inches (76.2 mm)."""
        return cls(RoundingMode.UP, Decimal("3"), "inches")

    def describe(self) -> str:
        if self.mode is RoundingMode.NONE:
            return "no rounding"
        unit = f" {self.increment_unit}" if self.increment_unit else ""
        return f"{self.mode.value} {self.increment}{unit}"


DEFAULT_ROUNDING = RoundingPolicy()


def round_dimension(value: Decimal, unit: str, policy: RoundingPolicy) -> Decimal:
    """
    Round ``value`` (in ``unit``) onto the policy's increment grid.

    The multiple count is computed in millimetres, where every supported
    unit is an exact decimal, so the choice of multiple is always exact.
    A positive value never rounds below one increment.
    """
    if policy.mode is RoundingMode.NONE:
        return value
    unit = normalize_length_unit(unit)
    step_unit = policy.increment_unit or unit
    value_mm = value * MM_PER_UNIT[unit]
    step_mm = policy.increment * MM_PER_UNIT[step_unit]
    ratio = value_mm / step_mm
    if policy.mode is RoundingMode.UP:
        multiples = ratio.to_integral_value(rounding=ROUND_CEILING)
    else:
        multiples = ratio.to_integral_value(rounding=ROUND_HALF_UP)
    if multiples < 1 and value > 0:
        multiples = Decimal(1)
    if step_unit == unit:
        return multiples * policy.increment
    return multiples * step_mm / MM_PER_UNIT[unit]


def round_billable_area(area: Decimal, area_unit: str) -> Decimal:
    """
    Billing ladder applied to a per-piece area.

    sqft: the fractional part is billed as .25, .50 or .75 (an exact whole
    number is billed as whole + .25); above .75 bills the next whole foot.
    sqm: fractions up to .025, .05 and .075 bill at those marks; above
    that, the next 0.1.  Other units are billed exactly.
    """
    unit = normalize_area_unit(area_unit)
    if area <= 0:
        return area
    whole = area.to_integral_value(rounding=ROUND_FLOOR)
    fraction = area - whole
    if unit == "sqft":
        for mark in (Decimal("0.25"), Decimal("0.50"), Decimal("0.75")):
            if fraction <= mark:
                return whole + mark
        return whole + 1
    if unit == "sqm":
        for mark in (Decimal("0.025"), Decimal("0.05"), Decimal("0.075")):
            if fraction <= mark:
                return whole + mark
        tenths = (fraction * 10).to_integral_value(rounding=ROUND_CEILING)
        return whole + tenths / 10
    return area


@dataclass(frozen=True, slots=True)
class GlassAreaResult:
    """
    Every intermediate of a glass calculation, for audit and display.

    Dimensions are in ``input_unit``; areas are in ``output_unit``.
    """

    width_formula: str
    height_formula: str
    window_width: Decimal
    window_height: Decimal
    glass_quantity: int
    input_unit: str
    output_unit: str
    rounding: RoundingPolicy
    adjusted_width: Decimal
    adjusted_height: Decimal
    rounded_width: Decimal
    rounded_height: Decimal
    exact_area_per_piece: Decimal
    area_per_piece: Decimal
    total_area: Decimal
    billable_area_per_piece: Decimal
    billable_total_area: Decimal


def _evaluate_dimension(
    dimension: str,
    formula: object,
    bindings: dict[str, Decimal],
) -> Decimal:
    if not isinstance(formula, str) or not formula.strip():
        raise FormulaError(str(formula or ""), "formula is required", dimension=dimension)
    try:
        value = _evaluator.evaluate(formula, bindings)
    except FormulaError as exc:
        raise FormulaError(formula, exc.reason, dimension=dimension) from exc
    if value <= 0:
        raise FormulaError(
            formula,
            f"evaluates to {value}, a glass size must be positive",
            dimension=dimension,
        )
    return value


@traced_engine(
    "glass_area",
    "1.0",
    fingerprint_fields=(
        "width_formula",
        "height_formula",
        "window_width",
        "window_height",
        "glass_quantity",
        "input_unit",
        "output_unit",
    ),
)
def calculate_glass_area_with_quantity(
    width_formula: str,
    height_formula: str,
    window_width: Decimal | int | str,
    window_height: Decimal | int | str,
    glass_quantity: int,
    input_unit: str = "inches",
    output_unit: str = "sqft",
    rounding: RoundingPolicy | None = None,
    area_places: int = DEFAULT_AREA_PLACES,
    billing_ladder: bool = False,
) -> GlassAreaResult:
    """
    Glass size and area for ``glass_quantity`` identical pieces.

    Args:
        width_formula: Expression over W/H giving the cut width.
        height_formula: Expression over W/H giving the cut height.
        window_width, window_height: Window dimensions in ``input_unit``.
        glass_quantity: Number of identical pieces (e.g. 2 for a 2-track).
        input_unit: Linear unit of the window and cut dimensions.
        output_unit: Square unit of the reported areas.
        rounding: Dimension rounding policy; DEFAULT_ROUNDING when None.
        area_places: Decimal places of area_per_piece.
        billing_ladder: Apply round_billable_area to the billable figures.
    """
    width = positive_decimal(window_width, "window_width")
    height = positive_decimal(window_height, "window_height")
    quantity = to_quantity(glass_quantity, "glass_quantity")
    length_unit = normalize_length_unit(input_unit, "input_unit")
    area_unit = normalize_area_unit(output_unit, "output_unit")
    if isinstance(area_places, bool) or not isinstance(area_places, int) or area_places < 0:
        raise ValidationError("area_places", "must be a non-negative integer", area_places)
    policy = rounding or DEFAULT_ROUNDING

    bindings = {"W": width, "H": height}
    adjusted_width = _evaluate_dimension("width", width_formula, bindings)
    adjusted_height = _evaluate_dimension("height", height_formula, bindings)

    rounded_width = round_dimension(adjusted_width, length_unit, policy)
    rounded_height = round_dimension(adjusted_height, length_unit, policy)

    exact_area = rectangle_area(rounded_width, rounded_height, length_unit, area_unit)
    area_per_piece = exact_area.quantize(Decimal(1).scaleb(-area_places), rounding=ROUND_HALF_UP)
    billable_per_piece = (
        round_billable_area(area_per_piece, area_unit) if billing_ladder else area_per_piece
    )

    return GlassAreaResult(
        width_formula=width_formula,
        height_formula=height_formula,
        window_width=width,
        window_height=height,
        glass_quantity=quantity,
        input_unit=length_unit,
        output_unit=area_unit,
        rounding=policy,
        adjusted_width=adjusted_width,
        adjusted_height=adjusted_height,
        rounded_width=rounded_width,
        rounded_height=rounded_height,
        exact_area_per_piece=exact_area,
        area_per_piece=area_per_piece,
        total_area=area_per_piece * quantity,
        billable_area_per_piece=billable_per_piece,
        billable_total_area=billable_per_piece * quantity,
    )


# ---------------------------------------------------------------------------
# Formula authoring helpers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FormulaCheck:
    """Outcome of validate_formula."""

    valid: bool
    variables: frozenset[str] = frozenset()
    error: str | None = None
    code: str | None = None


def validate_formula(
    expression: object,
    allowed: Iterable[str] = GLASS_VARIABLES,
) -> FormulaCheck:
    """Check a formula's syntax and that it only references ``allowed`` names."""
    if not isinstance(expression, str) or not expression.strip():
        return FormulaCheck(False, error="Formula is required", code=ValidationError.code)
    try:
        names = _evaluator.validate(expression, allowed)
    except FormulaError as exc:
        return FormulaCheck(False, error=str(exc), code=exc.code)
    return FormulaCheck(True, variables=names)


@dataclass(frozen=True, slots=True)
class FormulaTrial:
    """One sample window run through a pair of formulas."""

    window_width: Decimal | int | str
    window_height: Decimal | int | str
    result: GlassAreaResult | None
    error: str | None = None


def test_formula(
    width_formula: str,
    height_formula: str,
    samples: Sequence[tuple[Decimal | int | str, Decimal | int | str]] = DEFAULT_SAMPLE_WINDOWS,
    input_unit: str = "inches",
    output_unit: str = "sqft",
    rounding: RoundingPolicy | None = None,
) -> list[FormulaTrial]:
    """
    Run a formula pair over sample windows, one piece each.

    A failing sample is reported in its trial's ``error`` instead of
    aborting the remaining samples.
    """
    trials: list[FormulaTrial] = []
    for sample_width, sample_height in samples:
        try:
            result = calculate_glass_area_with_quantity(
                width_formula,
                height_formula,
                sample_width,
                sample_height,
                1,
                input_unit,
                output_unit,
                rounding,
            )
        except FabricationError as exc:
            trials.append(
                FormulaTrial(sample_width, sample_height, None, str(exc))
            )
            continue
        trials.append(FormulaTrial(result.window_width, result.window_height, result))
    return trials


# pytest would otherwise collect the helper when a test module imports it.
test_formula.__test__ = False

__all__ = [
    "AREA_UNITS",
    "DEFAULT_ROUNDING",
    "DEFAULT_SAMPLE_WINDOWS",
    "FormulaCheck",
    "FormulaTrial",
    "GLASS_VARIABLES",
    "GlassAreaResult",
    "RoundingMode",
    "RoundingPolicy",
    "calculate_glass_area_with_quantity",
    "round_billable_area",
    "round_dimension",
    "test_formula",
    "validate_formula",
]
