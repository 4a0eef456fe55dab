"""
Database session management for Escalera.

Provides the SQLAlchemy engine, the session factory and a transaction
helper that every multi-row write of the ladder goes through.

Usage:
    # As a context manager (recommended for scripts)
    from escalera.db import get_session

    with get_session() as session:
        rounds = session.query(Round).all()
        # Commits automatically on exit, rolls back on exception

    # One logical operation with a bounded, isolated transaction
    from escalera.db import transaction

    with transaction(factory, isolation_level="SERIALIZABLE", timeout_seconds=120) as session:
        ...
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from escalera.config import Settings, get_settings
from escalera.errors import ConcurrentModification

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATEs meaning "retry the whole transaction"
CONCURRENCY_SQLSTATES = {
    "40001": "serialization failure",
    "40P01": "deadlock detected",
    "55P03": "lock not available",
    "57014": "statement timeout",
}


def get_engine(settings: Optional[Settings] = None) -> Engine:
    """
    Create SQLAlchemy engine with connection pooling.

    The engine is configured with:
    - Connection pool for efficient reuse
    - Echo mode disabled (set LOG_LEVEL=DEBUG for SQL logging)
    - Pre-ping to verify connections before use (handles stale connections)
    """
    settings = settings or get_settings()
    return create_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        echo=settings.log_level == "DEBUG",
    )


# Created lazily so importing the package never needs a database driver
_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def _get_engine() -> Engine:
    """Get or create the singleton engine instance."""
    global _engine
    if _engine is None:
        _engine = get_engine()
    return _engine


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine``; commits are always explicit."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def get_session_factory() -> sessionmaker:
    """Get or create the session factory bound to the configured database."""
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(_get_engine())
    return _session_factory


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Automatically commits on successful exit, rolls back on exception.

    Raises:
        Any exception from the database operation (after rollback)
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def concurrency_sqlstate(error: DBAPIError) -> Optional[str]:
    """SQLSTATE of a database error when it is a retryable concurrency failure."""
    # psycopg2 exposes pgcode, psycopg 3 sqlstate
    orig = error.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code if code in CONCURRENCY_SQLSTATES else None


@contextmanager
def transaction(
    session_factory: sessionmaker,
    isolation_level: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
) -> Generator[Session, None, None]:
    """
    Run one logical operation inside a single transaction.

    Commits on success and rolls back on any exception, so a failed
    operation never leaves partial state behind. Serialization failures,
    deadlocks, lock timeouts and statement timeouts are raised as
    ConcurrentModification so the caller can retry the whole operation.

    Args:
        session_factory: Factory producing sessions for the target database
        isolation_level: e.g. "SERIALIZABLE"; applied where the dialect supports it
        timeout_seconds: Statement timeout for the transaction (PostgreSQL only)
    """
    session = session_factory()
    try:
        dialect = session.get_bind().dialect.name
        if isolation_level and dialect == "postgresql":
            session.connection(execution_options={"isolation_level": isolation_level})
        # SQLite transactions are serializable already and have no statement timeout
        if timeout_seconds and dialect == "postgresql":
            session.execute(
                text("SELECT set_config('statement_timeout', :value, true)"),
                {"value": f"{int(timeout_seconds * 1000)}ms"},
            )
        yield session
        session.commit()
    except DBAPIError as e:
        session.rollback()
        sqlstate = concurrency_sqlstate(e)
        if sqlstate is None:
            raise
        logger.warning("Transaction aborted (%s %s): %s", sqlstate, CONCURRENCY_SQLSTATES[sqlstate], e.orig)
        raise ConcurrentModification(
            f"Transaction aborted by the database: {CONCURRENCY_SQLSTATES[sqlstate]}",
            context={"sqlstate": sqlstate},
        ) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

