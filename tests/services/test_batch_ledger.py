"""
Tests for BatchStockLedger.

Covers:
- Stock inward: validation, ids, recorded weight, INWARD transaction
- FIFO / LIFO consumption scenarios
- All-or-nothing failures leave every batch unchanged
- Stock report totals, key filters and batch history filters
- Structured log events

Runs against both record stores via the ``any_ledger`` fixture where the
behaviour is store-independent.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from fab_engines.stock import BatchStatus, ConsumptionType, SortOrder, TransactionType
from fab_kernel.exceptions import (
    BatchNotFoundError,
    InsufficientStockError,
    TransactionNotFoundError,
    ValidationError,
)
from fab_services.batch_ledger import build_stock_key, parse_enum
T0 = datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


class TestStockInward:

    def test_creates_active_batch_with_recorded_weight(self, any_ledger):
        batch = any_ledger.stock_inward(
            "AL-2040", 12, "ft", "1.2", 10, "7.5", "4500", "Jindal", "INV-1", "LOT-7", "first load",
        )
        assert batch.batch_id == "BATCH_20240101_0001"
        assert batch.status is BatchStatus.ACTIVE
        assert batch.original_quantity == batch.current_quantity == 10
        assert batch.actual_total_weight == Decimal("7.5")
        assert batch.unit_weight == Decimal("0.75")
        assert batch.total_cost == Decimal("4500")
        assert batch.received_at == T0
        assert (batch.supplier, batch.invoice_number, batch.lot_number) == ("Jindal", "INV-1", "LOT-7")
        assert any_ledger.get_batch(batch.batch_id) == batch

    def test_records_inward_transaction(self, any_ledger):
        batch = any_ledger.stock_inward("AL-2040", 12, "ft", "1.2", 10, "7.5", "4500")
        [txn] = any_ledger.get_consumption_history("AL-2040")
        assert txn.transaction_type is TransactionType.INWARD
        assert txn.transaction_id == "TXN_20240101_0001"
        assert [(l.batch_id, l.quantity, l.weight, l.cost) for l in txn.lines] == [
            (batch.batch_id, 10, Decimal("7.5"), Decimal("4500")),
        ]

    def test_ids_are_sequential_per_day(self, ledger, clock):
        first = ledger.stock_inward("AL-2040", 12, "ft", "1.2", 1, "1", "0")
        second = ledger.stock_inward("AL-2040", 12, "ft", "1.2", 1, "1", "0")
        clock.advance(86400)
        third = ledger.stock_inward("AL-2040", 12, "ft", "1.2", 1, "1", "0")
        assert [first.batch_id, second.batch_id, third.batch_id] == [
            "BATCH_20240101_0001",
            "BATCH_20240101_0002",
            "BATCH_20240102_0001",
        ]

    def test_zero_cost_allowed(self, ledger):
        batch = ledger.stock_inward("AL-2040", 12, "ft", "1.2", 5, "2", "0")
        assert batch.total_cost == Decimal("0")
        assert batch.rate_per_piece == Decimal("0.0000")

    def test_key_without_length(self, ledger):
        batch = ledger.stock_inward("HINGE-01", None, None, None, 50, "5", "2500")
        assert batch.key.length is None and batch.key.gauge is None

    def test_unit_alias_is_normalised(self, ledger):
        batch = ledger.stock_inward("AL-2040", "12", "feet", 1.2, 1, "1", "0")
        assert batch.key.length_unit == "ft"
        assert batch.key.gauge == "1.2"

    @pytest.mark.parametrize(
        "args, field",
        [
            (("", 12, "ft", "1.2", 10, "7.5", "100"), "material_id"),
            (("AL-2040", 12, "ft", "1.2", 0, "7.5", "100"), "quantity"),
            (("AL-2040", 12, "ft", "1.2", 2.5, "7.5", "100"), "quantity"),
            (("AL-2040", 12, "ft", "1.2", 10, "0", "100"), "actual_weight"),
            (("AL-2040", 12, "ft", "1.2", 10, "-1", "100"), "actual_weight"),
            (("AL-2040", 12, "ft", "1.2", 10, "7.5", "-5"), "total_cost"),
            (("AL-2040", 12, None, "1.2", 10, "7.5", "100"), "length_unit"),
            (("AL-2040", None, "ft", "1.2", 10, "7.5", "100"), "length"),
            (("AL-2040", 12, "yard", "1.2", 10, "7.5", "100"), "length_unit"),
            (("AL-2040", -12, "ft", "1.2", 10, "7.5", "100"), "length"),
        ],
    )
    def test_rejects_invalid_input_and_writes_nothing(self, ledger, args, field):
        with pytest.raises(ValidationError) as exc_info:
            ledger.stock_inward(*args)
        assert exc_info.value.field == field
        assert ledger.material_ids() == []

    def test_inward_is_logged(self, ledger, captured_logs):
        batch = ledger.stock_inward("AL-2040", 12, "ft", "1.2", 10, "7.5", "4500")
        [record] = [r for r in captured_logs() if r["message"] == "stock_inward_recorded"]
        assert record["batch_id"] == batch.batch_id
        assert record["material_id"] == "AL-2040"
        assert record["actual_total_weight"] == "7.5"

    def test_rejection_is_logged(self, ledger, captured_logs):
        with pytest.raises(ValidationError):
            ledger.stock_inward("AL-2040", 12, "ft", "1.2", 10, "0", "4500")
        [record] = [r for r in captured_logs() if r["message"] == "stock_inward_rejected"]
        assert record["level"] == "WARNING"
        assert record["error_code"] == "VALIDATION_ERROR"


class TestConsumeStock:
    """Batch 1: 10 pcs / 7.5 kg at t1.  Batch 2: 20 pcs / 14.0 kg at t2."""

    @pytest.fixture
    def two_batches(self, any_ledger, receive):
        b1 = receive(any_ledger, 10, "7.5", "1000")
        b2 = receive(any_ledger, 20, "14.0", "3000")
        return any_ledger, b1, b2

    def test_fifo_takes_oldest_first(self, two_batches):
        ledger, b1, b2 = two_batches
        plan = ledger.consume_stock("AL-2040", 12, "ft", "1.2", 25, "FIFO")
        assert [(l.batch_id, l.quantity) for l in plan.lines] == [(b1.batch_id, 10), (b2.batch_id, 15)]
        assert plan.total_weight == Decimal("18.0")
        assert ledger.get_batch(b1.batch_id).status is BatchStatus.DEPLETED
        assert ledger.get_batch(b2.batch_id).current_quantity == 5
        report = ledger.get_stock_report("AL-2040")
        assert report.total_current_stock == 5
        assert report.total_current_weight == Decimal("3.5")

    def test_lifo_takes_newest_first(self, two_batches):
        ledger, b1, b2 = two_batches
        plan = ledger.consume_stock("AL-2040", 12, "ft", "1.2", 15, SortOrder.LIFO)
        assert [(l.batch_id, l.quantity) for l in plan.lines] == [(b2.batch_id, 15)]
        assert ledger.get_batch(b1.batch_id).current_quantity == 10
        assert ledger.get_batch(b2.batch_id).current_quantity == 5

    def test_default_sort_order_from_config(self, two_batches):
        ledger, b1, _ = two_batches
        assert ledger.config.default_sort_order == "FIFO"
        plan = ledger.consume_stock("AL-2040", 12, "ft", "1.2", 1)
        assert plan.sort_order is SortOrder.FIFO
        assert plan.lines[0].batch_id == b1.batch_id

    def test_consumption_transaction_recorded(self, two_batches):
        ledger, _, _ = two_batches
        plan = ledger.consume_stock(
            "AL-2040", 12, "ft", "1.2", 25, "fifo", consumption_type="scrap", notes="offcuts",
        )
        txn = ledger.get_transaction(plan.transaction_id)
        assert txn.transaction_type is TransactionType.CONSUMPTION
        assert txn.consumption_type is ConsumptionType.SCRAP
        assert txn.sort_order is SortOrder.FIFO
        assert txn.notes == "offcuts"
        assert txn.lines == plan.lines
        assert txn.total_weight == Decimal("18.0")

    def test_recorded_weight_never_changes(self, two_batches):
        ledger, b1, b2 = two_batches
        ledger.consume_stock("AL-2040", 12, "ft", "1.2", 25)
        assert ledger.get_batch(b1.batch_id).actual_total_weight == Decimal("7.5")
        assert ledger.get_batch(b2.batch_id).actual_total_weight == Decimal("14.0")

    def test_insufficient_stock_changes_nothing(self, two_batches, captured_logs):
        ledger, b1, b2 = two_batches
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.consume_stock("AL-2040", 12, "ft", "1.2", 31)
        assert exc_info.value.available_quantity == 30
        assert ledger.get_batch(b1.batch_id).current_quantity == 10
        assert ledger.get_batch(b2.batch_id).current_quantity == 20
        assert [t.transaction_type for t in ledger.get_consumption_history("AL-2040")] == [
            TransactionType.INWARD,
            TransactionType.INWARD,
        ]
        assert any(
            r["message"] == "consume_stock_rejected" and r["error_code"] == "INSUFFICIENT_STOCK"
            for r in captured_logs()
        )

    def test_exact_key_match_only(self, two_batches):
        ledger, _, _ = two_batches
        with pytest.raises(InsufficientStockError):
            ledger.consume_stock("AL-2040", 12, "ft", "1.5", 1)
        with pytest.raises(InsufficientStockError):
            ledger.consume_stock("AL-2040", 16, "ft", "1.2", 1)

    def test_equal_lengths_in_different_notation_match(self, two_batches):
        ledger, _, _ = two_batches
        plan = ledger.consume_stock("AL-2040", "12.0", "ft", "1.2", 1)
        assert plan.total_quantity == 1

    def test_ties_break_by_batch_id(self, ledger):
        # Same clock instant: both batches share received_at.
        first = ledger.stock_inward("AL-2040", 12, "ft", "1.2", 5, "5", "0")
        second = ledger.stock_inward("AL-2040", 12, "ft", "1.2", 5, "5", "0")
        assert first.received_at == second.received_at
        fifo = ledger.consume_stock("AL-2040", 12, "ft", "1.2", 1, "FIFO")
        lifo = ledger.consume_stock("AL-2040", 12, "ft", "1.2", 1, "LIFO")
        assert fifo.lines[0].batch_id == first.batch_id
        assert lifo.lines[0].batch_id == first.batch_id

    def test_depleted_batches_are_skipped(self, two_batches):
        ledger, b1, b2 = two_batches
        ledger.consume_stock("AL-2040", 12, "ft", "1.2", 10)
        plan = ledger.consume_stock("AL-2040", 12, "ft", "1.2", 3)
        assert [l.batch_id for l in plan.lines] == [b2.batch_id]

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"quantity_needed": 0}, "quantity_needed"),
            ({"quantity_needed": 1, "sort_order": "RANDOM"}, "sort_order"),
            ({"quantity_needed": 1, "consumption_type": "THEFT"}, "consumption_type"),
        ],
    )
    def test_invalid_requests(self, ledger, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            ledger.consume_stock("AL-2040", 12, "ft", "1.2", **kwargs)
        assert exc_info.value.field == field

    def test_consumption_is_logged(self, two_batches, captured_logs):
        ledger, b1, b2 = two_batches
        plan = ledger.consume_stock("AL-2040", 12, "ft", "1.2", 25)
        [record] = [r for r in captured_logs() if r["message"] == "stock_consumed"]
        assert record["transaction_id"] == plan.transaction_id
        assert record["batches"] == [b1.batch_id, b2.batch_id]
        assert Decimal(record["weight"]) == Decimal("18.0")


class TestStockReport:

    def test_totals_sum_recorded_weights(self, any_ledger, receive):
        receive(any_ledger, 10, "7.5", "1000")
        receive(any_ledger, 20, "14.0", "3000")
        report = any_ledger.get_stock_report("AL-2040")
        assert report.total_current_weight == Decimal("21.5")
        assert report.total_current_stock == 30
        assert report.total_current_value == Decimal("4000")
        assert report.average_rate_per_piece == Decimal("133.3333")

    def test_stock_equals_sum_of_active_batches(self, any_ledger, receive):
        receive(any_ledger, 10, "7.5")
        receive(any_ledger, 20, "14.0")
        any_ledger.consume_stock("AL-2040", 12, "ft", "1.2", 13)
        report = any_ledger.get_stock_report("AL-2040")
        assert report.total_current_stock == sum(b.current_quantity for b in report.active_batches)
        assert report.total_current_stock == 17
        assert all(b.status is BatchStatus.ACTIVE for b in report.active_batches)

    def test_filters(self, ledger, receive):
        receive(ledger, 10, "7.5")
        receive(ledger, 4, "4", key=("AL-2040", 16, "ft", "1.2"))
        receive(ledger, 6, "3", key=("AL-2040", 12, "ft", "0.9"))
        assert ledger.get_stock_report("AL-2040").total_current_stock == 20
        assert ledger.get_stock_report("AL-2040", 12, "ft").total_current_stock == 16
        assert ledger.get_stock_report("AL-2040", gauge="1.2").total_current_stock == 14
        assert ledger.get_stock_report("AL-2040", 12, "ft", "1.2").total_current_stock == 10
        assert len(ledger.get_stock_report("AL-2040").summary_by_key) == 3

    def test_unknown_material_is_empty(self, ledger):
        report = ledger.get_stock_report("NOPE")
        assert report.total_current_stock == 0
        assert report.active_batches == ()


class TestHistory:

    @pytest.fixture
    def history_ledger(self, ledger, receive):
        receive(ledger, 10, "7.5", supplier="Jindal Aluminium")
        receive(ledger, 20, "14.0", supplier="Hindalco")
        receive(ledger, 5, "3", supplier="jindal", key=("AL-2040", 12, "ft", "0.9"))
        ledger.consume_stock("AL-2040", 12, "ft", "1.2", 10)
        return ledger

    def test_includes_depleted_by_default(self, history_ledger):
        history = history_ledger.get_batch_history("AL-2040")
        assert [b.current_quantity for b in history] == [0, 20, 5]

    def test_exclude_depleted(self, history_ledger):
        history = history_ledger.get_batch_history("AL-2040", include_depleted=False)
        assert [b.current_quantity for b in history] == [20, 5]

    def test_supplier_substring_case_insensitive(self, history_ledger):
        history = history_ledger.get_batch_history("AL-2040", supplier="JINDAL")
        assert [b.supplier for b in history] == ["Jindal Aluminium", "jindal"]

    def test_gauge(self, history_ledger):
        assert len(history_ledger.get_batch_history("AL-2040", gauge="0.9")) == 1

    def test_date_bounds_are_inclusive(self, history_ledger):
        history = history_ledger.get_batch_history(
            "AL-2040", start=T0 + timedelta(hours=1), end=T0 + timedelta(hours=2),
        )
        assert [b.received_at for b in history] == [T0 + timedelta(hours=1), T0 + timedelta(hours=2)]

    def test_naive_bound_rejected(self, history_ledger):
        with pytest.raises(ValidationError):
            history_ledger.get_batch_history("AL-2040", start=T0.replace(tzinfo=None))

    def test_start_after_end_rejected(self, history_ledger):
        with pytest.raises(ValidationError):
            history_ledger.get_batch_history("AL-2040", start=T0 + timedelta(days=1), end=T0)

    def test_consumption_history_by_type(self, history_ledger):
        consumptions = history_ledger.get_consumption_history("AL-2040", ["CONSUMPTION"])
        assert len(consumptions) == 1
        assert consumptions[0].total_quantity == 10


class TestLookups:

    def test_unknown_batch(self, ledger):
        with pytest.raises(BatchNotFoundError):
            ledger.get_batch("BATCH_19990101_0001")

    def test_unknown_transaction(self, ledger):
        with pytest.raises(TransactionNotFoundError):
            ledger.get_transaction("TXN_19990101_0001")

    def test_material_ids(self, ledger, receive):
        receive(ledger, 1, "1", key=("ZZ-1", None, None, None))
        receive(ledger, 1, "1")
        assert ledger.material_ids() == ["AL-2040", "ZZ-1"]


class TestHelpers:

    def test_parse_enum_accepts_lowercase(self):
        assert parse_enum(SortOrder, "lifo", "sort_order") is SortOrder.LIFO

    def test_parse_enum_rejects_other_types(self):
        with pytest.raises(ValidationError):
            parse_enum(SortOrder, 1, "sort_order")

    def test_build_stock_key_gauge_blank_is_none(self):
        assert build_stock_key("AL-2040", gauge="  ").gauge is None

    def test_build_stock_key_rejects_bool_gauge(self):
        with pytest.raises(ValidationError):
            build_stock_key("AL-2040", gauge=True)

    @pytest.mark.parametrize("gauge", [Decimal("1.20"), 1.2, "1.2", Decimal("1.2E0")])
    def test_numeric_gauges_share_a_key(self, gauge):
        assert build_stock_key("AL-2040", 12, "ft", gauge) == build_stock_key("AL-2040", 12, "ft", "1.2")

    def test_whole_number_gauge_is_plain(self):
        assert build_stock_key("AL-2040", gauge=Decimal("18.00")).gauge == "18"
        assert build_stock_key("AL-2040", gauge=20).gauge == "20"

    def test_build_stock_key_rejects_non_finite_gauge(self):
        with pytest.raises(ValidationError) as exc_info:
            build_stock_key("AL-2040", gauge=float("nan"))
        assert exc_info.value.field == "gauge"

    def test_float_gauge_stock_is_consumable_by_text_gauge(self, ledger):
        ledger.stock_inward("AL-2040", 12, "ft", 1.2, 4, "3", "0")
        plan = ledger.consume_stock("AL-2040", 12, "ft", Decimal("1.20"), 4)
        assert plan.total_quantity == 4
