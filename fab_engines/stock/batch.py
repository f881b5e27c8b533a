"""
Batch stock domain objects.

Responsibility:
    Immutable value objects for batch-based stock: the stock key that groups
    interchangeable pieces, the batch itself with every figure derived from
    its own recorded totals, the append-only transaction record, and the
    read-side stock view.

Architecture position:
    Engines -- pure domain layer, zero I/O.
    Used by fab_engines.stock.consumption (planning) and fab_services
    (ledger, record stores, boundary).

Invariants enforced:
    - actual_total_weight and total_cost belong to the batch and never
      change; unit_weight and rates are derived on read.
    - 0 <= current_quantity <= original_quantity.
    - status is DEPLETED exactly when current_quantity == 0.
    - weight_at(q) and cost_at(q) are the batch-local amounts for ``q``
      pieces.  They are exact at both ends (all pieces and none) and
      quantized to APPORTION_PLACES in between, so telescoping differences
      of them conserve the recorded totals exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from fab_kernel.exceptions import ValidationError

APPORTION_PLACES = Decimal("0.000001")
RATE_PLACES = Decimal("0.0001")
PERCENT_PLACES = Decimal("0.01")


class BatchStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DEPLETED = "DEPLETED"


class SortOrder(str, Enum):
    """Which batches are consumed first."""

    FIFO = "FIFO"  # oldest received first
    LIFO = "LIFO"  # newest received first


class ConsumptionType(str, Enum):
    PRODUCTION = "PRODUCTION"
    SCRAP = "SCRAP"
    TRANSFER = "TRANSFER"
    ORDER_CUT = "ORDER_CUT"
    OTHER = "OTHER"


class TransactionType(str, Enum):
    INWARD = "INWARD"
    CONSUMPTION = "CONSUMPTION"
    CORRECTION = "CORRECTION"


@dataclass(frozen=True, slots=True)
class StockKey:
    """
    Identity of interchangeable stock.

    Batches are consumed only against an exact key match.  Length and gauge
    are None for materials that are not cut profiles (hardware, glass).
    """

    material_id: str
    length: Decimal | None = None
    length_unit: str | None = None
    gauge: str | None = None

    def __str__(self) -> str:
        parts = [self.material_id]
        if self.length is not None:
            parts.append(f"{self.length} {self.length_unit}")
        if self.gauge is not None:
            parts.append(f"gauge {self.gauge}")
        return " / ".join(parts)


@dataclass(frozen=True, slots=True)
class Batch:
    """
    One stock-inward event and what remains of it.

    Contract:
        Created ACTIVE with current_quantity == original_quantity.  Only
        current_quantity and status change afterwards, and only by
        replacing the whole object (``with_quantity``).

    Guarantees:
        - unit_weight == actual_total_weight / original_quantity, always.
        - current_weight + every weight taken from the batch ==
          actual_total_weight, exactly.
    """

    batch_id: str
    key: StockKey
    original_quantity: int
    current_quantity: int
    actual_total_weight: Decimal
    total_cost: Decimal
    received_at: datetime
    status: BatchStatus = BatchStatus.ACTIVE
    weight_unit: str = "kg"
    supplier: str | None = None
    invoice_number: str | None = None
    lot_number: str | None = None
    notes: str | None = None
    source_batch_id: str | None = None

    def __post_init__(self) -> None:
        if self.original_quantity <= 0:
            raise ValidationError("original_quantity", "must be greater than zero", self.original_quantity)
        if not 0 <= self.current_quantity <= self.original_quantity:
            raise ValidationError(
                "current_quantity",
                f"must be between 0 and {self.original_quantity}",
                self.current_quantity,
            )
        if self.actual_total_weight <= 0:
            raise ValidationError("actual_total_weight", "must be greater than zero", self.actual_total_weight)
        if self.total_cost < 0:
            raise ValidationError("total_cost", "must not be negative", self.total_cost)
        if self.received_at.tzinfo is None:
            raise ValidationError("received_at", "must be timezone-aware", self.received_at)
        object.__setattr__(self, "status", BatchStatus(self.status))
        expected = BatchStatus.DEPLETED if self.current_quantity == 0 else BatchStatus.ACTIVE
        if self.status is not expected:
            raise ValidationError(
                "status",
                f"{self.status.value} is inconsistent with current_quantity {self.current_quantity}",
            )

    @property
    def material_id(self) -> str:
        return self.key.material_id

    @property
    def is_active(self) -> bool:
        return self.status is BatchStatus.ACTIVE

    @property
    def unit_weight(self) -> Decimal:
        return self.actual_total_weight / self.original_quantity

    @property
    def rate_per_piece(self) -> Decimal:
        return (self.total_cost / self.original_quantity).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)

    @property
    def rate_per_kg(self) -> Decimal:
        return (self.total_cost / self.actual_total_weight).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)

    @property
    def consumed_quantity(self) -> int:
        return self.original_quantity - self.current_quantity

    @property
    def current_weight(self) -> Decimal:
        return self.weight_at(self.current_quantity)

    @property
    def current_value(self) -> Decimal:
        return self.cost_at(self.current_quantity)

    @property
    def utilization_percent(self) -> Decimal:
        percent = Decimal(self.consumed_quantity * 100) / self.original_quantity
        return percent.quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)

    def weight_at(self, quantity: int) -> Decimal:
        return _apportion(self.actual_total_weight, quantity, self.original_quantity)

    def cost_at(self, quantity: int) -> Decimal:
        return _apportion(self.total_cost, quantity, self.original_quantity)

    def with_quantity(self, current_quantity: int) -> Batch:
        status = BatchStatus.DEPLETED if current_quantity == 0 else BatchStatus.ACTIVE
        return replace(self, current_quantity=current_quantity, status=status)


def _apportion(total: Decimal, quantity: int, of: int) -> Decimal:
    if quantity == of:
        return total
    if quantity == 0:
        return Decimal(0)
    return (total * quantity / of).quantize(APPORTION_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class TransactionLine:
    """Stock moved for one batch: out of it (consumption) or back in (correction)."""

    batch_id: str
    quantity: int
    weight: Decimal
    cost: Decimal
    residual_quantity: int


@dataclass(frozen=True, slots=True)
class StockTransaction:
    """Append-only ledger record.  Never edited once written."""

    transaction_id: str
    transaction_type: TransactionType
    key: StockKey
    occurred_at: datetime
    lines: tuple[TransactionLine, ...]
    consumption_type: ConsumptionType | None = None
    sort_order: SortOrder | None = None
    reverses_transaction_id: str | None = None
    notes: str | None = None

    @property
    def material_id(self) -> str:
        return self.key.material_id

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def total_weight(self) -> Decimal:
        return sum((line.weight for line in self.lines), Decimal(0))

    @property
    def total_cost(self) -> Decimal:
        return sum((line.cost for line in self.lines), Decimal(0))


@dataclass(frozen=True, slots=True)
class ConsumptionPlan:
    """
    Outcome of a consumption: ordered lines and the batches they leave behind.

    ``transaction_id`` is None while the plan is only computed and is set by
    the ledger once the plan is committed.
    """

    key: StockKey
    sort_order: SortOrder
    consumption_type: ConsumptionType
    lines: tuple[TransactionLine, ...]
    updated_batches: tuple[Batch, ...]
    transaction_id: str | None = None

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def total_weight(self) -> Decimal:
        return sum((line.weight for line in self.lines), Decimal(0))

    @property
    def total_cost(self) -> Decimal:
        return sum((line.cost for line in self.lines), Decimal(0))


@dataclass(frozen=True, slots=True)
class KeySummary:
    """Active stock for one (length, unit, gauge) key of a material."""

    key: StockKey
    batch_count: int
    total_stock: int
    total_weight: Decimal
    total_value: Decimal


@dataclass(frozen=True, slots=True)
class MaterialStockView:
    """Stock figures aggregated from ACTIVE batches only."""

    material_id: str
    active_batches: tuple[Batch, ...]
    total_current_stock: int
    total_current_weight: Decimal
    total_current_value: Decimal
    average_rate_per_piece: Decimal
    average_rate_per_kg: Decimal
    summary_by_key: tuple[KeySummary, ...] = field(default_factory=tuple)
