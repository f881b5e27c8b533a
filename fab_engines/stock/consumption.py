"""
Consumption planning and stock aggregation.

Responsibility:
    Order candidate batches FIFO or LIFO, plan a greedy all-or-nothing
    consumption across them, and aggregate the stock view of a material.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Called by fab_services.batch_ledger, which holds the per-key lock and
    commits the plan.

Invariants enforced:
    - FIFO orders by received_at ascending, LIFO by received_at descending;
      ties are broken by batch_id ascending in both modes.
    - Only ACTIVE batches with the exact key are candidates.
    - The plan takes min(remaining, current) per batch in order and is
      computed in full before anything is returned; a shortfall raises
      InsufficientStockError with no plan.
    - Weight and cost taken are telescoping differences of the batch's own
      remaining amounts, so they sum with what remains to the recorded totals.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import ROUND_HALF_UP, Decimal

from fab_engines.stock.batch import (
    RATE_PLACES,
    Batch,
    ConsumptionPlan,
    ConsumptionType,
    KeySummary,
    MaterialStockView,
    SortOrder,
    StockKey,
    TransactionLine,
)
from fab_engines.tracer import traced_engine
from fab_kernel.exceptions import InsufficientStockError, ValidationError


def order_candidates(
    batches: Iterable[Batch],
    key: StockKey,
    sort_order: SortOrder,
) -> list[Batch]:
    """ACTIVE batches of ``key`` in consumption order."""
    candidates = sorted(
        (b for b in batches if b.key == key and b.is_active and b.current_quantity > 0),
        key=lambda b: b.batch_id,
    )
    # Stable sort keeps the batch_id tie-break in both directions.
    candidates.sort(key=lambda b: b.received_at, reverse=sort_order is SortOrder.LIFO)
    return candidates


@traced_engine(
    "batch_consumption",
    "1.0",
    fingerprint_fields=("key", "quantity_needed", "sort_order"),
)
def plan_consumption(
    batches: Iterable[Batch],
    key: StockKey,
    quantity_needed: int,
    sort_order: SortOrder = SortOrder.FIFO,
    consumption_type: ConsumptionType = ConsumptionType.PRODUCTION,
) -> ConsumptionPlan:
    """
    Plan taking ``quantity_needed`` pieces of ``key`` from ``batches``.

    Raises:
        InsufficientStockError: ACTIVE stock for the key is short.
        ValidationError: quantity_needed is not a positive int.
    """
    if isinstance(quantity_needed, bool) or not isinstance(quantity_needed, int) or quantity_needed <= 0:
        raise ValidationError("quantity_needed", "must be a positive whole number", quantity_needed)
    sort_order = SortOrder(sort_order)

    candidates = order_candidates(batches, key, sort_order)
    available = sum(b.current_quantity for b in candidates)
    if available < quantity_needed:
        raise InsufficientStockError(
            material_id=key.material_id,
            stock_key=str(key),
            requested_quantity=quantity_needed,
            available_quantity=available,
        )

    remaining = quantity_needed
    lines: list[TransactionLine] = []
    updated: list[Batch] = []
    for batch in candidates:
        if remaining == 0:
            break
        take = min(remaining, batch.current_quantity)
        after = batch.current_quantity - take
        lines.append(
            TransactionLine(
                batch_id=batch.batch_id,
                quantity=take,
                weight=batch.weight_at(batch.current_quantity) - batch.weight_at(after),
                cost=batch.cost_at(batch.current_quantity) - batch.cost_at(after),
                residual_quantity=after,
            )
        )
        updated.append(batch.with_quantity(after))
        remaining -= take

    return ConsumptionPlan(
        key=key,
        sort_order=sort_order,
        consumption_type=ConsumptionType(consumption_type),
        lines=tuple(lines),
        updated_batches=tuple(updated),
    )


def _ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == 0:
        return Decimal(0)
    return (numerator / denominator).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


def _key_order(key: StockKey) -> tuple:
    return (
        key.length is None,
        key.length if key.length is not None else Decimal(0),
        key.length_unit or "",
        key.gauge or "",
    )


def aggregate_stock(material_id: str, batches: Sequence[Batch]) -> MaterialStockView:
    """
    Stock view of ``material_id`` computed from its ACTIVE batches.

    Averages are 0 when there is no stock (or no weight) to divide by.
    """
    active = tuple(
        sorted(
            (b for b in batches if b.material_id == material_id and b.is_active),
            key=lambda b: (b.received_at, b.batch_id),
        )
    )

    by_key: dict[StockKey, list[Batch]] = {}
    for batch in active:
        by_key.setdefault(batch.key, []).append(batch)

    summaries = tuple(
        KeySummary(
            key=key,
            batch_count=len(group),
            total_stock=sum(b.current_quantity for b in group),
            total_weight=sum((b.current_weight for b in group), Decimal(0)),
            total_value=sum((b.current_value for b in group), Decimal(0)),
        )
        for key, group in sorted(by_key.items(), key=lambda item: _key_order(item[0]))
    )

    total_stock = sum(s.total_stock for s in summaries)
    total_weight = sum((s.total_weight for s in summaries), Decimal(0))
    total_value = sum((s.total_value for s in summaries), Decimal(0))

    return MaterialStockView(
        material_id=material_id,
        active_batches=active,
        total_current_stock=total_stock,
        total_current_weight=total_weight,
        total_current_value=total_value,
        average_rate_per_piece=_ratio(total_value, Decimal(total_stock)),
        average_rate_per_kg=_ratio(total_value, total_weight),
        summary_by_key=summaries,
    )
