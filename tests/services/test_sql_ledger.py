"""
SQLAlchemy-backed ledger tests.

State written by one ledger is visible to a fresh ledger over the same
database, and values round-trip through the DecimalString / UTCDateTime
columns unchanged.
"""

from datetime import timezone
from decimal import Decimal

from fab_engines.stock import BatchStatus, ConsumptionType, SortOrder, TransactionType
from fab_kernel.db.engine import get_session_factory
from fab_services import BatchStockLedger, SqlAlchemyRecordStore


def _fresh_ledger(clock, inventory_config):
    return BatchStockLedger(
        SqlAlchemyRecordStore(get_session_factory()),
        clock=clock,
        config=inventory_config,
    )


class TestPersistence:

    def test_batches_survive_a_new_ledger(self, sql_ledger, receive, clock, inventory_config):
        b1 = receive(sql_ledger, 10, "7.5", "4500.50", supplier="Jindal")
        receive(sql_ledger, 20, "14.0", "3000")
        sql_ledger.consume_stock("AL-2040", 12, "ft", "1.2", 12)

        other = _fresh_ledger(clock, inventory_config)
        stored = other.get_batch(b1.batch_id)
        assert stored.status is BatchStatus.DEPLETED
        assert stored.actual_total_weight == Decimal("7.5")
        assert stored.total_cost == Decimal("4500.50")
        assert stored.supplier == "Jindal"
        assert stored.received_at.tzinfo is not None
        assert stored.received_at.astimezone(timezone.utc) == b1.received_at
        assert other.get_stock_report("AL-2040").total_current_stock == 18

    def test_sequences_continue_across_ledgers(self, sql_ledger, clock, inventory_config):
        sql_ledger.stock_inward("AL-2040", 12, "ft", "1.2", 1, "1", "0")
        other = _fresh_ledger(clock, inventory_config)
        batch = other.stock_inward("AL-2040", 12, "ft", "1.2", 1, "1", "0")
        assert batch.batch_id == "BATCH_20240101_0002"

    def test_transaction_round_trip(self, sql_ledger, receive, clock, inventory_config):
        receive(sql_ledger, 10, "7.5", "1000")
        receive(sql_ledger, 20, "14.0", "3000")
        plan = sql_ledger.consume_stock(
            "AL-2040", 12, "ft", "1.2", 25, "LIFO", "SCRAP", "breakage",
        )
        txn = _fresh_ledger(clock, inventory_config).get_transaction(plan.transaction_id)
        assert txn.transaction_type is TransactionType.CONSUMPTION
        assert txn.sort_order is SortOrder.LIFO
        assert txn.consumption_type is ConsumptionType.SCRAP
        assert txn.notes == "breakage"
        assert txn.lines == plan.lines
        assert txn.key.length == Decimal("12")

    def test_material_ids(self, sql_ledger, receive):
        receive(sql_ledger, 1, "1", key=("GLASS-5MM", None, None, None))
        receive(sql_ledger, 1, "1")
        assert sql_ledger.material_ids() == ["AL-2040", "GLASS-5MM"]


class TestStoreParity:
    """The same sequence of operations gives the same figures on both stores."""

    def _run(self, ledger, receive):
        receive(ledger, 7, "10", "350")
        receive(ledger, 3, "4.5", "99.99")
        first = ledger.consume_stock("AL-2040", 12, "ft", "1.2", 5)
        ledger.consume_stock("AL-2040", 12, "ft", "1.2", 4, "LIFO")
        ledger.reverse_consumption(first.transaction_id, "redo")
        report = ledger.get_stock_report("AL-2040")
        return (
            report.total_current_stock,
            report.total_current_weight,
            report.total_current_value,
            [(b.batch_id, b.current_quantity) for b in report.active_batches],
        )

    def test_memory_and_sqlite_agree(self, ledger, sql_ledger, receive):
        assert self._run(ledger, receive) == self._run(sql_ledger, receive)
