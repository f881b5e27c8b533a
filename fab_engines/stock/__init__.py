"""Batch stock domain: value objects, FIFO/LIFO planning, aggregation."""

from fab_engines.stock.batch import (
    APPORTION_PLACES,
    Batch,
    BatchStatus,
    ConsumptionPlan,
    ConsumptionType,
    KeySummary,
    MaterialStockView,
    SortOrder,
    StockKey,
    StockTransaction,
    TransactionLine,
    TransactionType,
)
from fab_engines.stock.consumption import (
    aggregate_stock,
    order_candidates,
    plan_consumption,
)

__all__ = [
    "APPORTION_PLACES",
    "Batch",
    "BatchStatus",
    "ConsumptionPlan",
    "ConsumptionType",
    "KeySummary",
    "MaterialStockView",
    "SortOrder",
    "StockKey",
    "StockTransaction",
    "TransactionLine",
    "TransactionType",
    "aggregate_stock",
    "order_candidates",
    "plan_consumption",
]
