"""
Module: fab_engines
Responsibility:
    Package entrypoint for the pure calculation engines: the formula
    evaluator, unit conversion, the glass calculator, and batch stock
    planning.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import fab_kernel (exceptions, domain values, logging for
    the engine tracer).  MUST NOT import fab_services or fab_config.

Invariants enforced:
    - Engines NEVER read the clock; timestamps come in as parameters.
    - Decimal-only arithmetic; floats are converted through ``str``.
    - Identical inputs always produce identical outputs.
"""

from fab_engines.formula import FormulaEvaluator, evaluate, validate, variables
from fab_engines.glass import (
    DEFAULT_ROUNDING,
    GlassAreaResult,
    RoundingMode,
    RoundingPolicy,
    calculate_glass_area_with_quantity,
    round_billable_area,
    round_dimension,
    test_formula,
    validate_formula,
)
from fab_engines.stock import (
    Batch,
    BatchStatus,
    ConsumptionPlan,
    ConsumptionType,
    MaterialStockView,
    SortOrder,
    StockKey,
    StockTransaction,
    TransactionLine,
    TransactionType,
    aggregate_stock,
    order_candidates,
    plan_consumption,
)
from fab_engines.units import (
    convert_area,
    convert_length,
    normalize_area_unit,
    normalize_length_unit,
    supported_units,
)

__all__ = [
    "Batch",
    "BatchStatus",
    "ConsumptionPlan",
    "ConsumptionType",
    "DEFAULT_ROUNDING",
    "FormulaEvaluator",
    "GlassAreaResult",
    "MaterialStockView",
    "RoundingMode",
    "RoundingPolicy",
    "SortOrder",
    "StockKey",
    "StockTransaction",
    "TransactionLine",
    "TransactionType",
    "aggregate_stock",
    "calculate_glass_area_with_quantity",
    "convert_area",
    "convert_length",
    "evaluate",
    "normalize_area_unit",
    "normalize_length_unit",
    "order_candidates",
    "plan_consumption",
    "round_billable_area",
    "round_dimension",
    "supported_units",
    "test_formula",
    "validate",
    "validate_formula",
    "variables",
]
