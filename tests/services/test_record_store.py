"""
Record store tests.

Covers:
- Frozen batch fields rejected by both stores
- ORM before_update / before_delete listeners on the stock tables
- Unit-of-work rollback leaves no partial writes
- Sequence counters
"""

from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy import select

from fab_kernel.db.engine import get_session
from fab_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from fab_kernel.exceptions import BatchNotFoundError, ImmutabilityViolationError
from fab_kernel.models import StockBatchModel, StockTransactionLineModel, StockTransactionModel


@pytest.fixture(params=["memory", "sqlite"])
def store(request, memory_store):
    if request.param == "memory":
        return memory_store
    return request.getfixturevalue("sql_store")


class TestFrozenFields:

    def test_weight_change_rejected(self, store, make_batch):
        batch = make_batch("B1", 10, "7.5")
        store.add_batch(batch)
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            store.update_batch(replace(batch, actual_total_weight=Decimal("8")))
        assert "actual_total_weight" in str(exc_info.value)
        assert store.get_batch("B1").actual_total_weight == Decimal("7.5")

    def test_quantity_change_allowed(self, store, make_batch):
        batch = make_batch("B1", 10, "7.5")
        store.add_batch(batch)
        store.update_batch(batch.with_quantity(0))
        stored = store.get_batch("B1")
        assert stored.current_quantity == 0
        assert not stored.is_active

    def test_duplicate_batch_id_rejected(self, memory_store, make_batch):
        memory_store.add_batch(make_batch("B1", 10, "7.5"))
        with pytest.raises(ImmutabilityViolationError):
            memory_store.add_batch(make_batch("B1", 3, "1"))

    def test_update_unknown_batch(self, store, make_batch):
        with pytest.raises(BatchNotFoundError):
            store.update_batch(make_batch("NOPE", 1, "1"))

    def test_violation_is_logged(self, store, make_batch, captured_logs):
        batch = make_batch("B1", 10, "7.5")
        store.add_batch(batch)
        with pytest.raises(ImmutabilityViolationError):
            store.update_batch(replace(batch, total_cost=Decimal("99")))
        [record] = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert record["entity_id"] == "B1"
        assert record["fields"] == ["total_cost"]


class TestOrmListeners:
    """Direct session writes that bypass the store are still blocked."""

    @pytest.fixture
    def stocked(self, sql_ledger, receive):
        batch = receive(sql_ledger, 10, "7.5", "100")
        plan = sql_ledger.consume_stock("AL-2040", 12, "ft", "1.2", 4)
        return batch, plan

    def test_batch_weight_update_blocked(self, stocked):
        batch, _ = stocked
        session = get_session()
        try:
            row = session.execute(
                select(StockBatchModel).where(StockBatchModel.batch_id == batch.batch_id)
            ).scalar_one()
            row.actual_total_weight = Decimal("9.9")
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
        finally:
            session.rollback()
            session.close()

    def test_listeners_can_be_lifted(self, stocked):
        batch, _ = stocked
        unregister_immutability_listeners()
        session = get_session()
        try:
            row = session.execute(
                select(StockBatchModel).where(StockBatchModel.batch_id == batch.batch_id)
            ).scalar_one()
            row.actual_total_weight = Decimal("9.9")
            session.flush()
        finally:
            session.rollback()
            session.close()
            register_immutability_listeners()

    def test_batch_quantity_update_allowed(self, stocked):
        batch, _ = stocked
        session = get_session()
        try:
            row = session.execute(
                select(StockBatchModel).where(StockBatchModel.batch_id == batch.batch_id)
            ).scalar_one()
            row.current_quantity = 5
            session.flush()
        finally:
            session.rollback()
            session.close()

    def test_batch_delete_blocked(self, stocked):
        batch, _ = stocked
        session = get_session()
        try:
            row = session.execute(
                select(StockBatchModel).where(StockBatchModel.batch_id == batch.batch_id)
            ).scalar_one()
            session.delete(row)
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
        finally:
            session.rollback()
            session.close()

    def test_transaction_update_blocked(self, stocked):
        _, plan = stocked
        session = get_session()
        try:
            row = session.execute(
                select(StockTransactionModel).where(
                    StockTransactionModel.transaction_id == plan.transaction_id
                )
            ).scalar_one()
            row.notes = "edited"
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
        finally:
            session.rollback()
            session.close()

    def test_line_update_blocked(self, stocked):
        _, plan = stocked
        session = get_session()
        try:
            line = session.execute(
                select(StockTransactionLineModel).where(
                    StockTransactionLineModel.batch_id == plan.lines[0].batch_id
                )
            ).scalars().first()
            line.quantity = 1
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
        finally:
            session.rollback()
            session.close()


class TestUnitOfWork:

    def test_failure_rolls_back_everything(self, store, make_batch):
        with pytest.raises(RuntimeError):
            with store.atomic():
                store.add_batch(make_batch("B1", 10, "7.5"))
                store.next_sequence("BATCH_20240101")
                raise RuntimeError("boom")
        assert store.get_batch("B1") is None
        assert store.material_ids() == []
        assert store.next_sequence("BATCH_20240101") == 1

    def test_nested_blocks_commit_once(self, store, make_batch):
        with store.atomic():
            store.add_batch(make_batch("B1", 10, "7.5"))
            with store.atomic():
                store.add_batch(make_batch("B2", 5, "2", received=1))
        assert [b.batch_id for b in store.batches_for_material("AL-2040")] == ["B1", "B2"]


class TestSequences:

    def test_counters_are_independent(self, store):
        assert [store.next_sequence("A") for _ in range(3)] == [1, 2, 3]
        assert store.next_sequence("B") == 1
        assert store.next_sequence("A") == 4

    def test_active_only_filter(self, store, make_batch):
        store.add_batch(make_batch("B1", 10, "7.5"))
        store.add_batch(make_batch("B2", 10, "7.5", received=1))
        store.update_batch(store.get_batch("B1").with_quantity(0))
        active = store.batches_for_material("AL-2040", active_only=True)
        assert [b.batch_id for b in active] == ["B2"]
