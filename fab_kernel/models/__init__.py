"""ORM models for the fabrication kernel."""

from fab_kernel.models.sequence_counter import SequenceCounterModel
from fab_kernel.models.stock_batch import MUTABLE_BATCH_COLUMNS, StockBatchModel
from fab_kernel.models.stock_transaction import (
    StockTransactionLineModel,
    StockTransactionModel,
)

__all__ = [
    "MUTABLE_BATCH_COLUMNS",
    "SequenceCounterModel",
    "StockBatchModel",
    "StockTransactionLineModel",
    "StockTransactionModel",
]
