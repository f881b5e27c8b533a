"""
Module: fab_kernel.models.sequence_counter
Responsibility: Named counters backing batch and transaction id sequences.

The locked counter row is the sole source of truth for the next value; the
aggregate-max-plus-one pattern is never used.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from fab_kernel.db.base import Base


class SequenceCounterModel(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value, e.g.
    ``BATCH_20240115`` -> 3.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(80),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
