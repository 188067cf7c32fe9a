"""
Module: fluid_kernel.db.engine
Responsibility: SQLAlchemy engine construction, session factories and the
    transactional scope utility.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from repositories/, services/ or outer layers (except for
    create_tables/drop_tables which import models).

Invariants enforced:
    - No module-level engine.  Callers build an Engine and a session factory
      and pass them explicitly, so several ledgers can live in one process.
    - PostgreSQL sessions run at READ COMMITTED with explicit row-level
      locking (FOR UPDATE) where stronger isolation is needed.
    - SQLite is supported for local runs and tests.  In-memory databases share
      a single connection (StaticPool) and are single-writer by nature.
      File-backed databases give every session its own connection and open
      each transaction with BEGIN IMMEDIATE, so writers serialize on the
      database lock and one session's rollback never touches another's work.

Failure modes:
    - OperationalError on unreachable database.
    - Connection pool exhaustion if pool_size + max_overflow is exceeded.

Audit relevance:
    session_scope() gives every stock operation atomic commit-or-rollback
    semantics: aggregate increments and ledger appends land together or not
    at all.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, QueuePool, StaticPool

from fluid_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def create_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build an SQLAlchemy engine for the ledger database.

    Args:
        database_url: PostgreSQL or SQLite connection URL.
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool (PostgreSQL).
        max_overflow: Max connections beyond pool_size (PostgreSQL).
        pool_pre_ping: If True, test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.

    Returns:
        SQLAlchemy Engine instance.
    """
    if database_url.startswith("sqlite") and _is_sqlite_memory(database_url):
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        dialect = "sqlite"
    elif database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=NullPool,
            connect_args={"check_same_thread": False, "timeout": pool_timeout},
        )
        _begin_immediate(engine)
        dialect = "sqlite"
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
        dialect = engine.dialect.name

    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "pool_size": pool_size, "echo": echo},
    )
    return engine


def _is_sqlite_memory(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///") or ":memory:" in database_url


def _begin_immediate(engine: Engine) -> None:
    """
    Take the SQLite write lock when a transaction begins.

    pysqlite's own deferred BEGIN is switched off so SQLAlchemy's ``begin``
    event owns transaction start.  ``FOR UPDATE`` is a no-op on SQLite; the
    database lock held from BEGIN IMMEDIATE to COMMIT stands in for it.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to ``engine``; one session per unit of work."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed.  The exception
        is re-raised to the caller.

    Usage:
        with session_scope(factory) as session:
            session.add(entity)
    """
    session = session_factory()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """
    Create all ledger tables.

    All ORM models are imported here so Base.metadata is complete.
    """
    from fluid_kernel.db.base import Base
    import fluid_kernel.models  # noqa: F401
    import fluid_kernel.services.sequence_service  # noqa: F401

    Base.metadata.create_all(engine)
    logger.info(
        "tables_created",
        extra={"tables": sorted(Base.metadata.tables.keys())},
    )


def drop_tables(engine: Engine) -> None:
    """Drop all ledger tables.  FOR TESTING ONLY."""
    from fluid_kernel.db.base import Base
    import fluid_kernel.models  # noqa: F401
    import fluid_kernel.services.sequence_service  # noqa: F401

    Base.metadata.drop_all(engine)
    logger.info("tables_dropped")


def dialect_insert(session: Session, table):
    """
    ``INSERT`` construct supporting ``ON CONFLICT`` for the session's dialect.

    Raises:
        NotImplementedError: for dialects without an upsert construct.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise NotImplementedError(f"Unsupported database dialect: {dialect}")
