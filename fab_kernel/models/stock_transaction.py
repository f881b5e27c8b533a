"""
Module: fab_kernel.models.stock_transaction
Responsibility: ORM persistence for the append-only stock transaction log
    (inward, consumption, correction) and its per-batch lines.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    T1 -- Append-only: rows are never updated or deleted
          (db/immutability.py listeners).
    T2 -- Every line references the batch it moved stock in or out of.
    T3 -- A consumption is reversed at most once: reverses_transaction_id
          is unique among corrections.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fab_kernel.db.base import Base, DecimalString, UTCDateTime, UUIDString


class StockTransactionModel(Base):
    """One ledger event; lines hold the per-batch movement."""

    __tablename__ = "stock_transactions"

    __table_args__ = (
        Index("idx_stock_txn_material_occurred", "material_id", "occurred_at"),
    )

    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    material_id: Mapped[str] = mapped_column(String(100), nullable=False)
    length: Mapped[Decimal | None] = mapped_column(DecimalString(), nullable=True)
    length_unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    gauge: Mapped[str | None] = mapped_column(String(50), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    consumption_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    sort_order: Mapped[str | None] = mapped_column(String(10), nullable=True)
    reverses_transaction_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list[StockTransactionLineModel]] = relationship(
        back_populates="transaction",
        order_by="StockTransactionLineModel.line_seq",
        cascade="save-update, merge",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<StockTransaction {self.transaction_id}: {self.transaction_type} "
            f"material={self.material_id} lines={len(self.lines)}>"
        )


class StockTransactionLineModel(Base):
    """Quantity, weight and cost moved for one batch within a transaction."""

    __tablename__ = "stock_transaction_lines"

    __table_args__ = (
        Index("idx_stock_txn_line_batch", "batch_id"),
    )

    transaction_pk: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_transactions.id"),
        nullable=False,
    )
    line_seq: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)
    weight: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)
    cost: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)
    residual_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    transaction: Mapped[StockTransactionModel] = relationship(back_populates="lines")
