"""
Process-wide engine and session factory for the payroll store.

PostgreSQL is the production target: connections run at READ COMMITTED and
the payroll services serialize finalization against employee responses
with ``SELECT ... FOR UPDATE`` on the cycle row.  SQLite URLs are accepted
for tests; there the row lock degrades to a no-op and a single shared
connection keeps an in-memory database alive across sessions.

Sessions are created with ``expire_on_commit=False`` because services
build their return DTOs from models after committing.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from studio_kernel.db.base import Base
from studio_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    *,
    echo: bool = False,
    pool_size: int = 10,
    pool_timeout: int = 30,
) -> Engine:
    """Create the engine for ``database_url``, replacing any previous one."""
    global _engine, _session_factory

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )

    reset_engine()
    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": engine.dialect.name})
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database engine not initialized; call init_engine_from_url()")
    return _engine


def get_session() -> Session:
    if _session_factory is None:
        raise RuntimeError("Database engine not initialized; call init_engine_from_url()")
    return _session_factory()


def create_tables() -> None:
    """Create the payroll cycle, slip and outbox tables."""
    from studio_modules.payroll import orm  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the current engine, if any (tests and shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
