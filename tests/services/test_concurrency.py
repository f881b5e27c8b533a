"""
Concurrent consumption of one stock key.

Many threads consume the same key at once.  The ledger must never hand out
more pieces than were received, and every batch must end consistent with
the transactions written against it.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from fab_engines.stock import TransactionType
from fab_kernel.exceptions import InsufficientStockError
from fab_services import migrate_legacy_stock
from fab_services.locking import KeyedLocks

WORKERS = 8


def _consume_concurrently(ledger, attempts, quantity):
    barrier = threading.Barrier(WORKERS)
    outcomes = []
    guard = threading.Lock()

    def worker():
        barrier.wait()
        try:
            plan = ledger.consume_stock("AL-2040", 12, "ft", "1.2", quantity)
            result = plan.transaction_id
        except InsufficientStockError:
            result = None
        with guard:
            outcomes.append(result)

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        futures = [pool.submit(worker) for _ in range(attempts)]
        for future in futures:
            future.result()
    return outcomes


class TestNoOversell:

    @pytest.mark.parametrize("attempts", [WORKERS])
    def test_exactly_the_available_stock_is_issued(self, any_ledger, receive, attempts):
        receive(any_ledger, 10, "7.5", "100")
        receive(any_ledger, 10, "8.0", "100")

        outcomes = _consume_concurrently(any_ledger, attempts, 3)

        succeeded = [o for o in outcomes if o is not None]
        assert len(succeeded) == 6
        assert len(set(succeeded)) == 6
        report = any_ledger.get_stock_report("AL-2040")
        assert report.total_current_stock == 2

    def test_batches_match_transactions(self, any_ledger, receive):
        b1 = receive(any_ledger, 10, "7.5", "100")
        b2 = receive(any_ledger, 10, "8.0", "100")

        _consume_concurrently(any_ledger, WORKERS, 2)

        consumed = {b1.batch_id: 0, b2.batch_id: 0}
        for txn in any_ledger.get_consumption_history("AL-2040", [TransactionType.CONSUMPTION]):
            for line in txn.lines:
                consumed[line.batch_id] += line.quantity
        assert sum(consumed.values()) == 16
        for batch_id, taken in consumed.items():
            assert any_ledger.get_batch(batch_id).consumed_quantity == taken
        # FIFO: the older batch is exhausted first.
        assert consumed[b1.batch_id] == 10


class TestGroupedWrites:

    def test_migration_alongside_consumers_finishes(self, any_ledger):
        rows = [
            {"length": 12, "unit": "ft", "gauge": "1.2", "quantity": 40, "unitRate": "450", "actualWeight": "30"},
            {"length": 16, "unit": "ft", "gauge": "1.2", "quantity": 8, "unitRate": "600", "actualWeight": "8"},
        ]
        barrier = threading.Barrier(WORKERS)
        taken = []
        guard = threading.Lock()

        def consumer():
            barrier.wait()
            try:
                plan = any_ledger.consume_stock("AL-2040", 12, "ft", "1.2", 2)
            except InsufficientStockError:
                return
            with guard:
                taken.append(plan.total_quantity)

        def migration():
            barrier.wait()
            return migrate_legacy_stock(any_ledger, "AL-2040", rows)

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            migrated = pool.submit(migration)
            consumers = [pool.submit(consumer) for _ in range(WORKERS - 1)]
            report = migrated.result(timeout=30)
            for future in consumers:
                future.result(timeout=30)

        assert report.migrated_quantity == 48
        remaining = any_ledger.get_stock_report("AL-2040", 12, "ft", "1.2").total_current_stock
        assert remaining + sum(taken) == 40

    def test_hold_all_is_reentrant_with_hold(self):
        locks = KeyedLocks()
        with locks.hold_all(["b", "a", "a"]):
            with locks.hold("a"):
                pass
        assert len(locks) == 2
