"""
Module: fab_kernel.db.engine
Responsibility: one process-wide SQLAlchemy engine and session factory for
    the stock ledger's SQL record store and the stock report script.
Architecture position: Kernel > DB.  ``create_tables`` imports the models
    package so their tables are registered; nothing else here knows about
    the schema.

Invariants enforced:
    - In-memory SQLite (``sqlite://``) shares one connection through a
      StaticPool, so every session and thread sees the same database.
    - File SQLite allows cross-thread use; the record store serializes
      writers itself.
    - Server databases get a QueuePool with pre-ping.
    - Sessions never expire objects on commit; the store rebuilds value
      objects from rows explicitly.

Failure modes:
    - RuntimeError from any accessor called before init_engine_from_url().
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from fab_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
) -> Engine:
    """
    Create the engine for ``database_url`` and replace any previous one.

    Args:
        database_url: SQLAlchemy URL, e.g. ``sqlite://``,
            ``sqlite:///fabrication.db`` or a server URL.
        echo: Log every SQL statement through SQLAlchemy's own logger.
        pool_size, max_overflow: Pool sizing for server databases.
    """
    global _engine, _SessionFactory

    reset_engine()
    url = make_url(database_url)
    dialect = url.get_backend_name()

    if dialect == "sqlite":
        in_memory = url.database in (None, "", ":memory:")
        _engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if in_memory else None,
        )
    else:
        _engine = create_engine(
            url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": dialect, "database": url.database})
    return _engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    _require_factory()
    assert _engine is not None
    return _engine


def get_session() -> Session:
    """New session bound to the current engine."""
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """The session factory itself, for stores that open one session per unit of work."""
    return _require_factory()


def create_tables() -> None:
    """Create the batch, transaction and sequence tables if they are missing."""
    from fab_kernel.db.base import Base
    import fab_kernel.models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(get_engine())


def reset_engine() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
