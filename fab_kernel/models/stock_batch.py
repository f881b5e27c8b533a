"""
Module: fab_kernel.models.stock_batch
Responsibility: ORM persistence for stock batches.  Each row is one
    stock-inward event for a material: its own recorded weight, quantity,
    cost and provenance.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    B1 -- original_quantity > 0 and actual_total_weight > 0 (service layer).
    B2 -- Only current_quantity and status may change after insert; every
          other column is frozen (db/immutability.py listeners).
    B3 -- Rows are never deleted; DEPLETED batches stay for traceability.
    B4 -- (material_id, received_at, batch_id) index supports deterministic
          FIFO/LIFO candidate ordering.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fab_kernel.db.base import Base, DecimalString, UTCDateTime

# Columns that may change after insert; everything else is frozen (B2).
MUTABLE_BATCH_COLUMNS = frozenset({"current_quantity", "status"})


class StockBatchModel(Base):
    """
    Persistent storage for a stock batch.

    Contract:
        original_quantity, actual_total_weight, total_cost and provenance
        are written once.  current_quantity only moves through the ledger's
        consumption and correction paths.

    Non-goals:
        - Does NOT store unit weight or rates; those are derived on read
          from the batch's own recorded totals.
    """

    __tablename__ = "stock_batches"

    __table_args__ = (
        Index("idx_stock_batch_material_received", "material_id", "received_at", "batch_id"),
        Index("idx_stock_batch_key", "material_id", "length", "length_unit", "gauge"),
        Index("idx_stock_batch_status", "status"),
    )

    batch_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    material_id: Mapped[str] = mapped_column(String(100), nullable=False)
    length: Mapped[Decimal | None] = mapped_column(DecimalString(), nullable=True)
    length_unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    gauge: Mapped[str | None] = mapped_column(String(50), nullable=True)

    original_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    actual_total_weight: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)
    weight_unit: Mapped[str] = mapped_column(String(10), nullable=False, default="kg")
    total_cost: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)

    supplier: Mapped[str | None] = mapped_column(String(200), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_batch_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    received_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StockBatch {self.batch_id}: material={self.material_id} "
            f"qty={self.current_quantity}/{self.original_quantity} "
            f"weight={self.actual_total_weight}{self.weight_unit}>"
        )
