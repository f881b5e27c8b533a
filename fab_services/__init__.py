"""
fab_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure engines: the batch stock ledger,
    its record stores, per-key locking, the request boundary and legacy
    stock migration.  This is the only layer that holds database sessions
    or reads the wall clock.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        fab_services/ -> fab_engines/, fab_config/, fab_kernel/  (allowed)
        fab_engines/  -> fab_services/                           (FORBIDDEN)
        fab_kernel/   -> fab_services/                           (FORBIDDEN)
"""

from fab_kernel.logging_config import get_logger

logger = get_logger("services")

from fab_services.batch_ledger import BatchStockLedger, build_stock_key, parse_enum
from fab_services.locking import KeyedLocks
from fab_services.migration import MigrationReport, migrate_legacy_stock
from fab_services.record_store import (
    InMemoryRecordStore,
    RecordStore,
    SqlAlchemyRecordStore,
)

__all__ = [
    "BatchStockLedger",
    "InMemoryRecordStore",
    "KeyedLocks",
    "MigrationReport",
    "RecordStore",
    "SqlAlchemyRecordStore",
    "build_stock_key",
    "migrate_legacy_stock",
    "parse_enum",
]
