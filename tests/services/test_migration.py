"""Tests for legacy stock migration into opening batches."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fab_kernel.exceptions import ValidationError
from fab_services import migrate_legacy_stock

LEGACY_RECEIPT = datetime(2023, 6, 30, tzinfo=timezone.utc)

ROWS = [
    {"length": 12, "unit": "ft", "gauge": "1.2", "quantity": 40, "unitRate": "450", "actualWeight": "30"},
    {"length": 16, "unit": "ft", "gauge": "1.2", "quantity": 8, "unitRate": "600", "actualWeight": "8"},
]


class TestMigrateLegacyStock:

    def test_rows_become_opening_batches(self, any_ledger):
        report = migrate_legacy_stock(any_ledger, "AL-2040", ROWS, supplier="Legacy", received_at=LEGACY_RECEIPT)
        assert not report.already_migrated
        assert report.skipped == ()
        assert report.migrated_quantity == 48
        first = report.migrated[0]
        assert first.batch_id == "MIGRATED_20240101_0001"
        assert first.total_cost == Decimal("18000")
        assert first.actual_total_weight == Decimal("30")
        assert first.received_at == LEGACY_RECEIPT
        assert first.supplier == "Legacy"
        assert first.notes == "Migrated from legacy stock entry 0"
        assert any_ledger.get_stock_report("AL-2040").total_current_stock == 48

    def test_migrated_stock_is_consumed_before_new_receipts(self, any_ledger, receive):
        migrate_legacy_stock(any_ledger, "AL-2040", ROWS[:1], received_at=LEGACY_RECEIPT)
        receive(any_ledger, 10, "7.5")
        plan = any_ledger.consume_stock("AL-2040", 12, "ft", "1.2", 5, "FIFO")
        assert plan.lines[0].batch_id.startswith("MIGRATED_")

    def test_rows_without_recorded_weight_are_skipped(self, ledger, captured_logs):
        rows = [
            ROWS[0],
            {"length": 12, "unit": "ft", "gauge": "1.5", "quantity": 5, "unitRate": "400"},
            {"length": 12, "unit": "ft", "gauge": "1.5", "quantity": 0, "unitRate": "400", "actualWeight": "1"},
            "not a row",
        ]
        report = migrate_legacy_stock(ledger, "AL-2040", rows)
        assert len(report.migrated) == 1
        assert [index for index, _ in report.skipped] == [1, 2, 3]
        assert "actualWeight" in report.skipped[0][1]
        assert report.skipped[2][1] == "entry is not an object"
        warnings = [r for r in captured_logs() if r["message"] == "legacy_entry_skipped"]
        assert [r["entry_index"] for r in warnings] == [1, 2, 3]

    def test_second_run_is_a_no_op(self, ledger):
        migrate_legacy_stock(ledger, "AL-2040", ROWS)
        again = migrate_legacy_stock(ledger, "AL-2040", ROWS)
        assert again.already_migrated
        assert again.migrated == ()
        assert ledger.get_stock_report("AL-2040").total_current_stock == 48

    def test_failure_part_way_books_nothing_and_rerun_completes(self, any_ledger, monkeypatch):
        book = any_ledger.book_opening_stock
        calls = []

        def fail_on_second_row(*args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise RuntimeError("connection lost")
            return book(*args, **kwargs)

        monkeypatch.setattr(any_ledger, "book_opening_stock", fail_on_second_row)
        with pytest.raises(RuntimeError):
            migrate_legacy_stock(any_ledger, "AL-2040", ROWS)
        assert any_ledger.store.batches_for_material("AL-2040") == []

        report = migrate_legacy_stock(any_ledger, "AL-2040", ROWS)
        assert not report.already_migrated
        assert report.migrated_quantity == 48
        assert report.migrated[0].batch_id == "MIGRATED_20240101_0001"
        assert any_ledger.get_stock_report("AL-2040").total_current_stock == 48

    def test_numeric_gauge_rows_keep_their_key(self, ledger):
        rows = [{**ROWS[0], "gauge": 1.2}, {**ROWS[0], "gauge": "1.20"}]
        report = migrate_legacy_stock(ledger, "AL-2040", rows)
        assert [b.key.gauge for b in report.migrated] == ["1.2", "1.20"]

    def test_naive_receipt_time_rejected_before_writing(self, ledger):
        with pytest.raises(ValidationError):
            migrate_legacy_stock(ledger, "AL-2040", ROWS, received_at=datetime(2023, 6, 30))
        assert ledger.material_ids() == []

    def test_material_required(self, ledger):
        with pytest.raises(ValidationError):
            migrate_legacy_stock(ledger, " ", ROWS)
