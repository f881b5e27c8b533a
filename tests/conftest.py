"""
Pytest fixtures for the fabrication test suite.

Provides:
- Structured logging configured once per session, plus ``captured_logs``
- A deterministic clock advanced between ledger writes
- Ledgers over the in-memory store and over an in-memory SQLite database
- Builders for batches and stock keys used by the engine tests

The SQLite fixtures use ``sqlite://`` with a shared StaticPool connection,
so no external database is needed.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO

import pytest

from fab_config import clear_config_cache, get_active_config
from fab_engines.stock.batch import Batch, StockKey
from fab_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from fab_kernel.domain.clock import DeterministicClock
from fab_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fab_services.batch_ledger import BatchStockLedger
from fab_services.record_store import InMemoryRecordStore, SqlAlchemyRecordStore

T0 = datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture(autouse=True)
def _fresh_config_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def captured_logs():
    """
    Capture fab_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.stock_inward(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_inward_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fab_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Clock and builders
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(T0)


@pytest.fixture
def make_batch():
    """
    Build a Batch directly, bypassing the ledger.

    ``received`` is an hour offset from T0 so ordering tests read clearly.
    """

    def _make(
        batch_id: str,
        quantity: int,
        weight: str,
        cost: str = "0",
        received: int = 0,
        key: StockKey | None = None,
        current: int | None = None,
    ) -> Batch:
        batch = Batch(
            batch_id=batch_id,
            key=key or StockKey("AL-2040", Decimal("12"), "ft", "1.2"),
            original_quantity=quantity,
            current_quantity=quantity,
            actual_total_weight=Decimal(weight),
            total_cost=Decimal(cost),
            received_at=T0 + timedelta(hours=received),
        )
        if current is not None:
            batch = batch.with_quantity(current)
        return batch

    return _make


# =============================================================================
# Ledgers
# =============================================================================


@pytest.fixture
def inventory_config():
    return get_active_config().inventory


@pytest.fixture
def memory_store():
    return InMemoryRecordStore()


@pytest.fixture
def ledger(memory_store, clock, inventory_config):
    return BatchStockLedger(memory_store, clock=clock, config=inventory_config)


@pytest.fixture
def sql_engine():
    """Fresh in-memory SQLite database with all tables."""
    engine = init_engine_from_url("sqlite://")
    create_tables()
    yield engine
    reset_engine()


@pytest.fixture
def sql_store(sql_engine):
    return SqlAlchemyRecordStore(get_session_factory())


@pytest.fixture
def sql_ledger(sql_store, clock, inventory_config):
    return BatchStockLedger(sql_store, clock=clock, config=inventory_config)


@pytest.fixture(params=["memory", "sqlite"])
def any_ledger(request, clock, inventory_config):
    """The same ledger contract over both record stores."""
    if request.param == "memory":
        yield BatchStockLedger(InMemoryRecordStore(), clock=clock, config=inventory_config)
        return
    init_engine_from_url("sqlite://")
    create_tables()
    try:
        yield BatchStockLedger(
            SqlAlchemyRecordStore(get_session_factory()),
            clock=clock,
            config=inventory_config,
        )
    finally:
        reset_engine()


@pytest.fixture
def receive(clock):
    """
    Stock inward for the default key (AL-2040, 12 ft, gauge 1.2), then move
    the clock forward an hour so the next batch is strictly newer.
    """

    def _receive(ledger, quantity, weight, cost="0", supplier=None, key=None, advance=3600):
        material, length, unit, gauge = key or ("AL-2040", 12, "ft", "1.2")
        batch = ledger.stock_inward(material, length, unit, gauge, quantity, weight, cost, supplier)
        clock.advance(advance)
        return batch

    return _receive
