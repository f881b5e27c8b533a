"""Database layer - engine, base classes and portable column types."""

from fab_kernel.db.base import Base, DecimalString, UTCDateTime, UUIDString
from fab_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)

__all__ = [
    "Base",
    "DecimalString",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
]
