"""
fab_services.batch_ledger -- Batch-based stock ledger with FIFO/LIFO consumption.

Responsibility:
    Record stock inward as batches carrying their own weight and cost,
    consume stock FIFO or LIFO against an exact stock key, reverse a
    consumption with a correction, and report stock aggregated from the
    batches' own recorded values.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Validates inputs with fab_kernel.domain.values, plans with
    fab_engines.stock, persists through a RecordStore, and serializes
    writers per stock key with KeyedLocks.

Invariants enforced:
    - A batch's actual_total_weight never changes after inward.
    - 0 <= current_quantity <= original_quantity; quantity only falls
      through consumption and only rises through a correction transaction.
    - Total stock for a key always equals the sum of its ACTIVE batches'
      current quantities; there is no separately stored running total.
    - A DEPLETED batch is never a consumption candidate and is never
      revived.  Reversing stock taken from a depleted batch books a new
      ACTIVE return batch with exactly the weight and cost taken.
    - Every write (batch insert/update plus its transaction record) happens
      inside one store unit of work under the stock key's lock.

Failure modes:
    - ValidationError on malformed input; nothing is written.
    - InsufficientStockError when ACTIVE stock for the key is short; no
      batch is touched.
    - BatchNotFoundError / TransactionNotFoundError for unknown ids.
    - NotReversibleError / AlreadyReversedError from reverse_consumption.

Audit relevance:
    Every inward, consumption and correction is an append-only
    StockTransaction whose lines name the batches moved, and is logged
    with its transaction id, stock key and totals.

Usage:
    ledger = BatchStockLedger(InMemoryRecordStore())
    ledger.stock_inward("AL-2040", 12, "ft", "1.2", 10, "7.5", "4500",
                        "Jindal", "INV-1")
    plan = ledger.consume_stock("AL-2040", 12, "ft", "1.2", 4)
    plan.total_weight        # Decimal("3.000000")
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TypeVar

from fab_config.schema import InventoryConfig
from fab_engines.stock.batch import (
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
)
from fab_engines.stock.consumption import aggregate_stock, plan_consumption
from fab_engines.units import normalize_length_unit
from fab_kernel.domain.clock import Clock, SystemClock
from fab_kernel.domain.values import (
    non_negative_decimal,
    optional_text,
    positive_decimal,
    require_text,
    to_decimal,
    to_quantity,
)
from fab_kernel.exceptions import (
    AlreadyReversedError,
    BatchNotFoundError,
    FabricationError,
    InsufficientStockError,
    NotReversibleError,
    TransactionNotFoundError,
    ValidationError,
)
from fab_kernel.logging_config import LogContext, get_logger
from fab_services.locking import KeyedLocks
from fab_services.record_store import RecordStore

logger = get_logger("services.batch_ledger")

E = TypeVar("E", bound=Enum)


def parse_enum(enum_type: type[E], value: object, field: str) -> E:
    """Accept an enum member or its (case-insensitive) value."""
    if isinstance(value, enum_type):
        return value
    if isinstance(value, str):
        try:
            return enum_type(value.strip().upper())
        except ValueError:
            pass
    allowed = ", ".join(member.value for member in enum_type)
    raise ValidationError(field, f"must be one of {allowed}", value)


def build_stock_key(
    material_id: object,
    length: object = None,
    length_unit: object = None,
    gauge: object = None,
) -> StockKey:
    """
    Validated, normalised stock key.

    A length needs a unit and vice versa.  Gauges are kept as text so
    "1.2" and "18 SWG" are both usable; numeric gauges are written in plain
    notation without trailing zeros, so 1.2 and Decimal("1.20") key as "1.2".
    """
    material = require_text(material_id, "material_id")
    if length is None and length_unit is None:
        key_length, key_unit = None, None
    elif length is None:
        raise ValidationError("length", "is required when length_unit is given")
    elif length_unit is None:
        raise ValidationError("length_unit", "is required when length is given")
    else:
        key_length = positive_decimal(length, "length")
        key_unit = normalize_length_unit(length_unit, "length_unit")
    if gauge is None or (isinstance(gauge, str) and not gauge.strip()):
        key_gauge = None
    elif isinstance(gauge, str):
        key_gauge = gauge.strip()
    elif isinstance(gauge, (int, float, Decimal)) and not isinstance(gauge, bool):
        key_gauge = format(to_decimal(gauge, "gauge").normalize(), "f")
    else:
        raise ValidationError("gauge", "must be text or a number", gauge)
    return StockKey(material, key_length, key_unit, key_gauge)


def _key_fields(key: StockKey) -> dict[str, object]:
    return {
        "material_id": key.material_id,
        "length": key.length,
        "length_unit": key.length_unit,
        "gauge": key.gauge,
    }


class BatchStockLedger:
    """
    Batch stock ledger.

    Contract:
        Receives a RecordStore, a Clock and the InventoryConfig via
        constructor injection.  Returns frozen value objects; callers never
        hold a mutable view of stored state.

    Guarantees:
        - ``stock_inward`` writes one ACTIVE batch and one INWARD
          transaction, atomically.
        - ``consume_stock`` is all-or-nothing and serialized per stock key.
        - ``reverse_consumption`` reverses a consumption at most once.
        - Reads (reports, history) never write.

    Non-goals:
        - Does NOT decide cutting plans or which length to cut from.
        - Does NOT estimate weights from reference gauge tables.
    """

    def __init__(
        self,
        store: RecordStore,
        clock: Clock | None = None,
        config: InventoryConfig | None = None,
        locks: KeyedLocks | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or InventoryConfig()
        self._locks = locks or KeyedLocks()

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def config(self) -> InventoryConfig:
        return self._config

    @contextmanager
    def unit_of_work(self, keys: Iterable[StockKey]) -> Iterator[None]:
        """
        Group several writes into one store unit of work.

        Key locks are taken before the store, in the order single writes use.
        """
        with self._locks.hold_all(keys), self._store.atomic():
            yield

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def stock_inward(
        self,
        material_id: str,
        length: Decimal | int | str | None,
        length_unit: str | None,
        gauge: str | None,
        quantity: int,
        actual_weight: Decimal | int | str,
        total_cost: Decimal | int | str,
        supplier: str | None = None,
        invoice_number: str | None = None,
        lot_number: str | None = None,
        notes: str | None = None,
    ) -> Batch:
        """
        Record a stock-inward event as a new ACTIVE batch.

        Args:
            quantity: Pieces received (positive whole number).
            actual_weight: Weighed total of the delivery, in the configured
                weight unit.  Recorded as-is and never recomputed.
            total_cost: Amount paid for the delivery; zero is allowed.

        Raises:
            ValidationError: Any input is malformed or out of range.
        """
        try:
            key = build_stock_key(material_id, length, length_unit, gauge)
            pieces = to_quantity(quantity, "quantity")
            weight = positive_decimal(actual_weight, "actual_weight")
            cost = non_negative_decimal(total_cost, "total_cost")
            provenance = {
                "supplier": optional_text(supplier, "supplier"),
                "invoice_number": optional_text(invoice_number, "invoice_number"),
                "lot_number": optional_text(lot_number, "lot_number"),
                "notes": optional_text(notes, "notes"),
            }
        except ValidationError as exc:
            self._log_rejection("stock_inward_rejected", exc, material_id=material_id)
            raise

        batch = self._record_inward(
            key,
            pieces,
            weight,
            cost,
            prefix=self._config.batch_prefix,
            received_at=None,
            **provenance,
        )
        return batch

    def book_opening_stock(
        self,
        material_id: str,
        length: Decimal | int | str | None,
        length_unit: str | None,
        gauge: str | None,
        quantity: int,
        actual_weight: Decimal | int | str,
        total_cost: Decimal | int | str,
        supplier: str | None = None,
        received_at: datetime | None = None,
        notes: str | None = None,
    ) -> Batch:
        """
        Record migrated stock as a batch with the migrated-id prefix.

        Same validation as ``stock_inward``.  ``received_at`` keeps the
        legacy receipt date so FIFO order survives the migration.
        """
        if received_at is not None and received_at.tzinfo is None:
            raise ValidationError("received_at", "must be timezone-aware", received_at)
        key = build_stock_key(material_id, length, length_unit, gauge)
        return self._record_inward(
            key,
            to_quantity(quantity, "quantity"),
            positive_decimal(actual_weight, "actual_weight"),
            non_negative_decimal(total_cost, "total_cost"),
            prefix=self._config.migrated_prefix,
            received_at=received_at,
            supplier=optional_text(supplier, "supplier"),
            invoice_number=None,
            lot_number=None,
            notes=optional_text(notes, "notes"),
        )

    def _record_inward(
        self,
        key: StockKey,
        pieces: int,
        weight: Decimal,
        cost: Decimal,
        *,
        prefix: str,
        received_at: datetime | None,
        supplier: str | None,
        invoice_number: str | None,
        lot_number: str | None,
        notes: str | None,
    ) -> Batch:
        with LogContext.bind(material_id=key.material_id):
            with self._locks.hold(key), self._store.atomic():
                now = self._clock.now_utc()
                batch = Batch(
                    batch_id=self._next_id(prefix, now),
                    key=key,
                    original_quantity=pieces,
                    current_quantity=pieces,
                    actual_total_weight=weight,
                    total_cost=cost,
                    received_at=received_at or now,
                    weight_unit=self._config.weight_unit,
                    supplier=supplier,
                    invoice_number=invoice_number,
                    lot_number=lot_number,
                    notes=notes,
                )
                self._store.add_batch(batch)
                transaction = StockTransaction(
                    transaction_id=self._next_id(self._config.transaction_prefix, now),
                    transaction_type=TransactionType.INWARD,
                    key=key,
                    occurred_at=now,
                    lines=(TransactionLine(batch.batch_id, pieces, weight, cost, pieces),),
                    notes=notes,
                )
                self._store.append_transaction(transaction)

            logger.info(
                "stock_inward_recorded",
                extra={
                    **_key_fields(key),
                    "batch_id": batch.batch_id,
                    "transaction_id": transaction.transaction_id,
                    "quantity": pieces,
                    "actual_total_weight": weight,
                    "total_cost": cost,
                },
            )
        return batch

    def consume_stock(
        self,
        material_id: str,
        length: Decimal | int | str | None,
        length_unit: str | None,
        gauge: str | None,
        quantity_needed: int,
        sort_order: SortOrder | str | None = None,
        consumption_type: ConsumptionType | str = ConsumptionType.PRODUCTION,
        notes: str | None = None,
    ) -> ConsumptionPlan:
        """
        Consume ``quantity_needed`` pieces of the key, FIFO or LIFO.

        ``sort_order`` defaults to the configured default.  The returned
        plan carries the CONSUMPTION transaction id, the per-batch lines
        and the batches as left behind.

        Raises:
            ValidationError: Malformed input.
            InsufficientStockError: ACTIVE stock for the key is short.
        """
        try:
            key = build_stock_key(material_id, length, length_unit, gauge)
            needed = to_quantity(quantity_needed, "quantity_needed")
            order = parse_enum(
                SortOrder,
                sort_order if sort_order is not None else self._config.default_sort_order,
                "sort_order",
            )
            kind = parse_enum(ConsumptionType, consumption_type, "consumption_type")
            note = optional_text(notes, "notes")
        except ValidationError as exc:
            self._log_rejection("consume_stock_rejected", exc, material_id=material_id)
            raise

        with LogContext.bind(material_id=key.material_id):
            try:
                with self._locks.hold(key), self._store.atomic():
                    candidates = [
                        b
                        for b in self._store.batches_for_material(
                            key.material_id, active_only=True, for_update=True
                        )
                        if b.key == key
                    ]
                    plan = plan_consumption(candidates, key, needed, order, kind)
                    now = self._clock.now_utc()
                    transaction_id = self._next_id(self._config.transaction_prefix, now)
                    for batch in plan.updated_batches:
                        self._store.update_batch(batch)
                    self._store.append_transaction(
                        StockTransaction(
                            transaction_id=transaction_id,
                            transaction_type=TransactionType.CONSUMPTION,
                            key=key,
                            occurred_at=now,
                            lines=plan.lines,
                            consumption_type=kind,
                            sort_order=order,
                            notes=note,
                        )
                    )
            except InsufficientStockError as exc:
                self._log_rejection("consume_stock_rejected", exc, **_key_fields(key))
                raise

            plan = replace(plan, transaction_id=transaction_id)
            logger.info(
                "stock_consumed",
                extra={
                    **_key_fields(key),
                    "transaction_id": transaction_id,
                    "sort_order": order.value,
                    "consumption_type": kind.value,
                    "quantity": plan.total_quantity,
                    "weight": plan.total_weight,
                    "cost": plan.total_cost,
                    "batches": [line.batch_id for line in plan.lines],
                },
            )
        return plan

    def reverse_consumption(self, transaction_id: str, reason: str) -> StockTransaction:
        """
        Return the stock taken by a CONSUMPTION transaction.

        Pieces go back into their batch when it is still ACTIVE.  Pieces
        taken from a batch that has since been DEPLETED are booked as a new
        ACTIVE batch carrying exactly the weight and cost that were taken,
        received at the source batch's receipt time.

        Raises:
            TransactionNotFoundError: Unknown transaction id.
            NotReversibleError: The transaction is not a consumption.
            AlreadyReversedError: A correction already reverses it.
            ValidationError: ``reason`` is empty.
        """
        try:
            txn_id = require_text(transaction_id, "transaction_id")
            note = require_text(reason, "reason")
            original = self._store.get_transaction(txn_id)
            if original is None:
                raise TransactionNotFoundError(txn_id)
            if original.transaction_type is not TransactionType.CONSUMPTION:
                raise NotReversibleError(txn_id, original.transaction_type.value)
        except FabricationError as exc:
            self._log_rejection("reversal_rejected", exc, transaction_id=transaction_id)
            raise

        key = original.key
        with LogContext.bind(material_id=key.material_id):
            try:
                with self._locks.hold(key), self._store.atomic():
                    existing = self._store.find_reversal(txn_id)
                    if existing is not None:
                        raise AlreadyReversedError(txn_id, existing.transaction_id)
                    now = self._clock.now_utc()
                    correction_id = self._next_id(self._config.transaction_prefix, now)
                    lines = tuple(
                        self._restore_line(line, correction_id, txn_id, now)
                        for line in original.lines
                    )
                    correction = StockTransaction(
                        transaction_id=correction_id,
                        transaction_type=TransactionType.CORRECTION,
                        key=key,
                        occurred_at=now,
                        lines=lines,
                        consumption_type=original.consumption_type,
                        reverses_transaction_id=txn_id,
                        notes=note,
                    )
                    self._store.append_transaction(correction)
            except AlreadyReversedError as exc:
                self._log_rejection("reversal_rejected", exc, transaction_id=txn_id)
                raise

            logger.info(
                "consumption_reversed",
                extra={
                    **_key_fields(key),
                    "transaction_id": correction_id,
                    "reverses_transaction_id": txn_id,
                    "quantity": correction.total_quantity,
                    "weight": correction.total_weight,
                    "cost": correction.total_cost,
                },
            )
        return correction

    def _restore_line(
        self,
        line: TransactionLine,
        correction_id: str,
        reversed_id: str,
        now: datetime,
    ) -> TransactionLine:
        batch = self._store.get_batch(line.batch_id)
        if batch is None:
            raise BatchNotFoundError(line.batch_id)

        if batch.status is BatchStatus.ACTIVE:
            before = batch.current_quantity
            after = before + line.quantity
            self._store.update_batch(batch.with_quantity(after))
            return TransactionLine(
                batch_id=batch.batch_id,
                quantity=line.quantity,
                weight=batch.weight_at(after) - batch.weight_at(before),
                cost=batch.cost_at(after) - batch.cost_at(before),
                residual_quantity=after,
            )

        returned = Batch(
            batch_id=self._next_id(self._config.batch_prefix, now),
            key=batch.key,
            original_quantity=line.quantity,
            current_quantity=line.quantity,
            actual_total_weight=line.weight,
            total_cost=line.cost,
            received_at=batch.received_at,
            weight_unit=batch.weight_unit,
            supplier=batch.supplier,
            invoice_number=batch.invoice_number,
            lot_number=batch.lot_number,
            notes=f"Returned by {correction_id} reversing {reversed_id}",
            source_batch_id=batch.batch_id,
        )
        self._store.add_batch(returned)
        logger.info(
            "return_batch_booked",
            extra={
                "batch_id": returned.batch_id,
                "source_batch_id": batch.batch_id,
                "quantity": line.quantity,
            },
        )
        return TransactionLine(
            batch_id=returned.batch_id,
            quantity=line.quantity,
            weight=line.weight,
            cost=line.cost,
            residual_quantity=line.quantity,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_batch(self, batch_id: str) -> Batch:
        batch = self._store.get_batch(require_text(batch_id, "batch_id"))
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    def get_transaction(self, transaction_id: str) -> StockTransaction:
        transaction = self._store.get_transaction(require_text(transaction_id, "transaction_id"))
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    def get_stock_report(
        self,
        material_id: str,
        length: Decimal | int | str | None = None,
        length_unit: str | None = None,
        gauge: str | None = None,
    ) -> MaterialStockView:
        """
        Stock of a material aggregated from its ACTIVE batches.

        With length/unit and/or gauge given, only batches of matching keys
        count.  A gauge on its own filters across all lengths.
        """
        filter_key = build_stock_key(material_id, length, length_unit, gauge)
        batches = self._store.batches_for_material(filter_key.material_id, active_only=True)
        batches = [b for b in batches if _matches(b.key, filter_key)]
        view = aggregate_stock(filter_key.material_id, batches)
        logger.debug(
            "stock_report_built",
            extra={
                **_key_fields(filter_key),
                "active_batches": len(view.active_batches),
                "total_current_stock": view.total_current_stock,
            },
        )
        return view

    def get_batch_history(
        self,
        material_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        supplier: str | None = None,
        gauge: str | None = None,
        include_depleted: bool = True,
    ) -> list[Batch]:
        """
        Batches of a material ordered by received_at, then batch_id.

        ``start``/``end`` bound received_at inclusively; ``supplier`` is a
        case-insensitive substring match; DEPLETED batches are included
        unless ``include_depleted`` is False.
        """
        material = require_text(material_id, "material_id")
        for name, bound in (("start", start), ("end", end)):
            if bound is not None and bound.tzinfo is None:
                raise ValidationError(name, "must be timezone-aware", bound)
        if start is not None and end is not None and start > end:
            raise ValidationError("start", "must not be after end", start)
        supplier_text = optional_text(supplier, "supplier")
        gauge_key = build_stock_key(material, gauge=gauge).gauge

        history = [
            b
            for b in self._store.batches_for_material(material)
            if (include_depleted or b.is_active)
            and (start is None or b.received_at >= start)
            and (end is None or b.received_at <= end)
            and (gauge_key is None or b.key.gauge == gauge_key)
            and (
                supplier_text is None
                or (b.supplier is not None and supplier_text.lower() in b.supplier.lower())
            )
        ]
        logger.debug(
            "batch_history_read",
            extra={"material_id": material, "batches": len(history)},
        )
        return sorted(history, key=lambda b: (b.received_at, b.batch_id))

    def get_consumption_history(
        self,
        material_id: str,
        transaction_types: Iterable[TransactionType | str] | None = None,
    ) -> list[StockTransaction]:
        """Transactions of a material in occurrence order, optionally by type."""
        material = require_text(material_id, "material_id")
        wanted = (
            {parse_enum(TransactionType, t, "transaction_types") for t in transaction_types}
            if transaction_types is not None
            else None
        )
        return [
            t
            for t in self._store.transactions_for_material(material)
            if wanted is None or t.transaction_type in wanted
        ]

    def material_ids(self) -> list[str]:
        return self._store.material_ids()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _next_id(self, prefix: str, now: datetime) -> str:
        day = now.strftime("%Y%m%d")
        seq = self._store.next_sequence(f"{prefix}_{day}")
        return f"{prefix}_{day}_{seq:04d}"

    def _log_rejection(self, event: str, exc: FabricationError, **fields: object) -> None:
        logger.warning(
            event,
            extra={
                **{k: v for k, v in fields.items() if v is not None and not isinstance(v, (list, dict))},
                "error_code": exc.code,
                "reason": str(exc),
            },
        )


def _matches(key: StockKey, filter_key: StockKey) -> bool:
    if filter_key.length is not None and (
        key.length != filter_key.length or key.length_unit != filter_key.length_unit
    ):
        return False
    if filter_key.gauge is not None and key.gauge != filter_key.gauge:
        return False
    return True
