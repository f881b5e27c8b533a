"""
Record stores for the batch stock ledger.

Responsibility:
    Persist batches, the append-only transaction log, and named sequence
    counters behind one small interface, with an ``atomic()`` unit of work
    that commits batch updates and transaction appends together or not at
    all.

Architecture position:
    Services -- imperative shell.  BatchStockLedger is the only caller.
    InMemoryRecordStore serves tests and embedded use; SqlAlchemyRecordStore
    maps onto the fab_kernel ORM models.

Invariants enforced:
    - update_batch may change only current_quantity and status.  Any other
      difference from the stored batch raises ImmutabilityViolationError.
    - Transactions are append-only; there is no update or delete operation.
    - next_sequence reads and increments a counter row; the
      aggregate-max-plus-one pattern is never used.
    - Batch listings are ordered by (received_at, batch_id); transaction
      listings by (occurred_at, transaction_id).

Failure modes:
    - ImmutabilityViolationError from update_batch (both stores) and from
      ORM listeners on any other write path (SQL store).
    - BatchNotFoundError from update_batch for an unknown batch.
    - Any exception inside ``atomic()`` rolls back every write made in it.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from dataclasses import fields

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from fab_engines.stock.batch import (
    Batch,
    BatchStatus,
    ConsumptionType,
    SortOrder,
    StockKey,
    StockTransaction,
    TransactionLine,
    TransactionType,
)
from fab_kernel.db.immutability import register_immutability_listeners
from fab_kernel.exceptions import BatchNotFoundError, ImmutabilityViolationError
from fab_kernel.logging_config import get_logger
from fab_kernel.models import (
    MUTABLE_BATCH_COLUMNS,
    SequenceCounterModel,
    StockBatchModel,
    StockTransactionLineModel,
    StockTransactionModel,
)

logger = get_logger("services.record_store")

_FROZEN_BATCH_FIELDS = tuple(f.name for f in fields(Batch) if f.name not in MUTABLE_BATCH_COLUMNS)


def check_batch_update(stored: Batch, updated: Batch) -> None:
    """Raise ImmutabilityViolationError if ``updated`` changes a frozen field."""
    changed = [
        name for name in _FROZEN_BATCH_FIELDS if getattr(stored, name) != getattr(updated, name)
    ]
    if changed:
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "StockBatch",
                "entity_id": stored.batch_id,
                "fields": changed,
            },
        )
        raise ImmutabilityViolationError(
            entity_type="StockBatch",
            entity_id=stored.batch_id,
            reason=f"fields {', '.join(changed)} are frozen after inward",
        )


class RecordStore(ABC):
    """Append/read/update-by-id collaborator of the ledger."""

    @abstractmethod
    def atomic(self):
        """Context manager: one unit of work.  Re-entrant within a thread."""

    @abstractmethod
    def add_batch(self, batch: Batch) -> None: ...

    @abstractmethod
    def get_batch(self, batch_id: str) -> Batch | None: ...

    @abstractmethod
    def update_batch(self, batch: Batch) -> None: ...

    @abstractmethod
    def batches_for_material(
        self,
        material_id: str,
        *,
        active_only: bool = False,
        for_update: bool = False,
    ) -> list[Batch]: ...

    @abstractmethod
    def material_ids(self) -> list[str]: ...

    @abstractmethod
    def append_transaction(self, transaction: StockTransaction) -> None: ...

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> StockTransaction | None: ...

    @abstractmethod
    def transactions_for_material(self, material_id: str) -> list[StockTransaction]: ...

    @abstractmethod
    def find_reversal(self, transaction_id: str) -> StockTransaction | None:
        """The correction that reverses ``transaction_id``, if any."""

    @abstractmethod
    def next_sequence(self, name: str) -> int: ...


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed store.

    ``atomic()`` holds the store lock for the whole unit of work and restores
    a snapshot on failure.  Stored values are immutable dataclasses, so a
    shallow copy of each dict is a complete snapshot.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._batches: dict[str, Batch] = {}
        self._transactions: dict[str, StockTransaction] = {}
        self._counters: dict[str, int] = {}
        self._depth = 0

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return
            snapshot = (dict(self._batches), dict(self._transactions), dict(self._counters))
            self._depth = 1
            try:
                yield
            except BaseException:
                self._batches, self._transactions, self._counters = snapshot
                logger.debug("unit_of_work_rolled_back")
                raise
            finally:
                self._depth = 0

    def add_batch(self, batch: Batch) -> None:
        with self._lock:
            if batch.batch_id in self._batches:
                raise ImmutabilityViolationError("StockBatch", batch.batch_id, "batch id already exists")
            self._batches[batch.batch_id] = batch

    def get_batch(self, batch_id: str) -> Batch | None:
        with self._lock:
            return self._batches.get(batch_id)

    def update_batch(self, batch: Batch) -> None:
        with self._lock:
            stored = self._batches.get(batch.batch_id)
            if stored is None:
                raise BatchNotFoundError(batch.batch_id)
            check_batch_update(stored, batch)
            self._batches[batch.batch_id] = batch

    def batches_for_material(
        self,
        material_id: str,
        *,
        active_only: bool = False,
        for_update: bool = False,
    ) -> list[Batch]:
        with self._lock:
            selected = [
                b
                for b in self._batches.values()
                if b.material_id == material_id and (b.is_active or not active_only)
            ]
        return sorted(selected, key=lambda b: (b.received_at, b.batch_id))

    def material_ids(self) -> list[str]:
        with self._lock:
            return sorted({b.material_id for b in self._batches.values()})

    def append_transaction(self, transaction: StockTransaction) -> None:
        with self._lock:
            if transaction.transaction_id in self._transactions:
                raise ImmutabilityViolationError(
                    "StockTransaction",
                    transaction.transaction_id,
                    "stock transactions are append-only",
                )
            self._transactions[transaction.transaction_id] = transaction

    def get_transaction(self, transaction_id: str) -> StockTransaction | None:
        with self._lock:
            return self._transactions.get(transaction_id)

    def transactions_for_material(self, material_id: str) -> list[StockTransaction]:
        with self._lock:
            selected = [t for t in self._transactions.values() if t.material_id == material_id]
        return sorted(selected, key=lambda t: (t.occurred_at, t.transaction_id))

    def find_reversal(self, transaction_id: str) -> StockTransaction | None:
        with self._lock:
            for transaction in self._transactions.values():
                if transaction.reverses_transaction_id == transaction_id:
                    return transaction
        return None

    def next_sequence(self, name: str) -> int:
        with self._lock:
            value = self._counters.get(name, 0) + 1
            self._counters[name] = value
        logger.debug("sequence_allocated", extra={"sequence_name": name, "value": value})
        return value


# ---------------------------------------------------------------------------
# SQLAlchemy store
# ---------------------------------------------------------------------------


def _batch_from_row(row: StockBatchModel) -> Batch:
    return Batch(
        batch_id=row.batch_id,
        key=StockKey(row.material_id, row.length, row.length_unit, row.gauge),
        original_quantity=row.original_quantity,
        current_quantity=row.current_quantity,
        actual_total_weight=row.actual_total_weight,
        total_cost=row.total_cost,
        received_at=row.received_at,
        status=BatchStatus(row.status),
        weight_unit=row.weight_unit,
        supplier=row.supplier,
        invoice_number=row.invoice_number,
        lot_number=row.lot_number,
        notes=row.notes,
        source_batch_id=row.source_batch_id,
    )


def _row_from_batch(batch: Batch) -> StockBatchModel:
    return StockBatchModel(
        batch_id=batch.batch_id,
        material_id=batch.key.material_id,
        length=batch.key.length,
        length_unit=batch.key.length_unit,
        gauge=batch.key.gauge,
        original_quantity=batch.original_quantity,
        current_quantity=batch.current_quantity,
        actual_total_weight=batch.actual_total_weight,
        weight_unit=batch.weight_unit,
        total_cost=batch.total_cost,
        supplier=batch.supplier,
        invoice_number=batch.invoice_number,
        lot_number=batch.lot_number,
        notes=batch.notes,
        source_batch_id=batch.source_batch_id,
        received_at=batch.received_at,
        status=batch.status.value,
    )


def _transaction_from_row(row: StockTransactionModel) -> StockTransaction:
    return StockTransaction(
        transaction_id=row.transaction_id,
        transaction_type=TransactionType(row.transaction_type),
        key=StockKey(row.material_id, row.length, row.length_unit, row.gauge),
        occurred_at=row.occurred_at,
        lines=tuple(
            TransactionLine(
                batch_id=line.batch_id,
                quantity=line.quantity,
                weight=line.weight,
                cost=line.cost,
                residual_quantity=line.residual_quantity,
            )
            for line in row.lines
        ),
        consumption_type=ConsumptionType(row.consumption_type) if row.consumption_type else None,
        sort_order=SortOrder(row.sort_order) if row.sort_order else None,
        reverses_transaction_id=row.reverses_transaction_id,
        notes=row.notes,
    )


class SqlAlchemyRecordStore(RecordStore):
    """
    Session-backed store over the stock_* tables.

    Contract:
        Each ``atomic()`` block runs in one session and commits on normal
        exit.  Calls made outside a block run in a short unit of work of
        their own.  Candidate batches are read ``FOR UPDATE`` when the
        caller asks for it, so concurrent processes serialize on the rows.

    Non-goals:
        - Does NOT create tables; call ``fab_kernel.db.create_tables()``.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._factory = session_factory
        self._local = threading.local()
        bind = session_factory.kw.get("bind")
        self._dialect = bind.dialect.name if bind is not None else ""
        # SQLite connections are shared between threads; one writer at a time.
        self._serial = threading.RLock() if self._dialect == "sqlite" else None
        register_immutability_listeners()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if getattr(self._local, "session", None) is not None:
            yield
            return
        with self._serial or nullcontext():
            session = self._factory()
            self._local.session = session
            try:
                yield
                session.commit()
            except BaseException:
                session.rollback()
                logger.debug("unit_of_work_rolled_back")
                raise
            finally:
                self._local.session = None
                session.close()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self.atomic():
            yield self._local.session

    def _batch_row(self, session: Session, batch_id: str, for_update: bool = False) -> StockBatchModel | None:
        stmt = select(StockBatchModel).where(StockBatchModel.batch_id == batch_id)
        if for_update:
            stmt = stmt.with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def add_batch(self, batch: Batch) -> None:
        with self._session() as session:
            session.add(_row_from_batch(batch))
            session.flush()

    def get_batch(self, batch_id: str) -> Batch | None:
        with self._session() as session:
            row = self._batch_row(session, batch_id)
            return _batch_from_row(row) if row is not None else None

    def update_batch(self, batch: Batch) -> None:
        with self._session() as session:
            row = self._batch_row(session, batch.batch_id, for_update=True)
            if row is None:
                raise BatchNotFoundError(batch.batch_id)
            check_batch_update(_batch_from_row(row), batch)
            row.current_quantity = batch.current_quantity
            row.status = batch.status.value
            session.flush()

    def batches_for_material(
        self,
        material_id: str,
        *,
        active_only: bool = False,
        for_update: bool = False,
    ) -> list[Batch]:
        stmt = select(StockBatchModel).where(StockBatchModel.material_id == material_id)
        if active_only:
            stmt = stmt.where(StockBatchModel.status == BatchStatus.ACTIVE.value)
        stmt = stmt.order_by(StockBatchModel.received_at, StockBatchModel.batch_id)
        if for_update:
            stmt = stmt.with_for_update()
        with self._session() as session:
            rows = session.execute(stmt).scalars().all()
            batches = [_batch_from_row(row) for row in rows]
        # Timestamps are re-sorted as aware datetimes; text ordering of
        # mixed offsets is not chronological on every backend.
        return sorted(batches, key=lambda b: (b.received_at, b.batch_id))

    def material_ids(self) -> list[str]:
        with self._session() as session:
            rows = session.execute(select(StockBatchModel.material_id).distinct()).scalars().all()
        return sorted(rows)

    def append_transaction(self, transaction: StockTransaction) -> None:
        row = StockTransactionModel(
            transaction_id=transaction.transaction_id,
            transaction_type=transaction.transaction_type.value,
            material_id=transaction.key.material_id,
            length=transaction.key.length,
            length_unit=transaction.key.length_unit,
            gauge=transaction.key.gauge,
            occurred_at=transaction.occurred_at,
            consumption_type=transaction.consumption_type.value if transaction.consumption_type else None,
            sort_order=transaction.sort_order.value if transaction.sort_order else None,
            reverses_transaction_id=transaction.reverses_transaction_id,
            notes=transaction.notes,
        )
        row.lines = [
            StockTransactionLineModel(
                line_seq=seq,
                batch_id=line.batch_id,
                quantity=line.quantity,
                weight=line.weight,
                cost=line.cost,
                residual_quantity=line.residual_quantity,
            )
            for seq, line in enumerate(transaction.lines)
        ]
        with self._session() as session:
            session.add(row)
            session.flush()

    def get_transaction(self, transaction_id: str) -> StockTransaction | None:
        stmt = select(StockTransactionModel).where(StockTransactionModel.transaction_id == transaction_id)
        with self._session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _transaction_from_row(row) if row is not None else None

    def transactions_for_material(self, material_id: str) -> list[StockTransaction]:
        stmt = select(StockTransactionModel).where(StockTransactionModel.material_id == material_id)
        with self._session() as session:
            transactions = [_transaction_from_row(row) for row in session.execute(stmt).scalars().all()]
        return sorted(transactions, key=lambda t: (t.occurred_at, t.transaction_id))

    def find_reversal(self, transaction_id: str) -> StockTransaction | None:
        stmt = select(StockTransactionModel).where(
            StockTransactionModel.reverses_transaction_id == transaction_id
        )
        with self._session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _transaction_from_row(row) if row is not None else None

    def next_sequence(self, name: str) -> int:
        with self._session() as session:
            value = self._increment(session, name)
        logger.debug("sequence_allocated", extra={"sequence_name": name, "value": value})
        return value

    def _lock_counter(self, session: Session, name: str) -> SequenceCounterModel | None:
        return session.execute(
            select(SequenceCounterModel)
            .where(SequenceCounterModel.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _increment(self, session: Session, name: str) -> int:
        counter = self._lock_counter(session, name)
        if counter is None:
            if self._serial is not None:
                session.add(SequenceCounterModel(name=name, current_value=1))
                session.flush()
                return 1
            # Another process may create the counter concurrently; retry on
            # the unique constraint inside a savepoint.
            savepoint = session.begin_nested()
            try:
                session.add(SequenceCounterModel(name=name, current_value=1))
                session.flush()
                savepoint.commit()
                return 1
            except IntegrityError:
                savepoint.rollback()
                logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
                counter = self._lock_counter(session, name)
                if counter is None:
                    raise
        counter.current_value += 1
        session.flush()
        return counter.current_value
