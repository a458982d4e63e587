"""
Engine, Sessions and Transactions

One engine per process, a sessionmaker bound to it, and the helpers every
write path uses: transaction() commits or rolls back as a unit, and
store_errors() turns driver connectivity failures into StoreUnavailableError.
PostgreSQL in production, SQLite for local development and tests.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

from civicpulse.errors import StoreUnavailableError
from civicpulse.utils.config import get_settings
from .models import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Driver-level failures that mean "the store is unreachable", not "the query is wrong"
STORE_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)


# =============================================================================
# DATABASE URL CONFIGURATION
# =============================================================================

def get_database_url() -> str:
    """
    Get database URL from settings.

    Priority:
    1. DATABASE_URL
    2. SQLite fallback for local development
    """
    settings = get_settings()
    url = settings.DATABASE_URL

    if url:
        # Hosted PostgreSQL URLs often use postgres:// but SQLAlchemy needs postgresql://
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        logger.info("Using PostgreSQL database from DATABASE_URL")
        return url

    logger.warning(f"No DATABASE_URL found, using SQLite: {settings.SQLITE_PATH}")
    return f"sqlite:///{settings.SQLITE_PATH}"


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


# =============================================================================
# ENGINE CONFIGURATION
# =============================================================================

def create_db_engine(url: Optional[str] = None) -> Engine:
    """
    Build the engine for a database URL.

    PostgreSQL: bounded pool, acquisition timeout, statement timeout
    SQLite: foreign keys on, explicit BEGIN so SAVEPOINT works
    """
    settings = get_settings()
    url = url or get_database_url()
    is_postgres = url.startswith("postgresql")

    if is_postgres:
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=settings.DB_POOL_SIZE,          # Base connections
            max_overflow=settings.DB_MAX_OVERFLOW,    # Additional connections under load
            pool_timeout=settings.DB_POOL_TIMEOUT,    # Wait for connection
            pool_recycle=1800,                        # Recycle connections after 30 min
            pool_pre_ping=True,                       # Verify connections before use
            connect_args={
                "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
            },
            echo=settings.SQL_DEBUG,
        )
        logger.info("Created PostgreSQL engine with connection pooling")
        return engine

    kwargs = {
        "connect_args": {"check_same_thread": False},  # Allow multi-thread access
        "echo": settings.SQL_DEBUG,
    }
    if _is_memory_sqlite(url):
        # One shared connection, otherwise each checkout sees an empty database
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        # Let SQLAlchemy emit BEGIN itself (pysqlite's implicit BEGIN breaks SAVEPOINT)
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    logger.info("Created SQLite engine")
    return engine


# Global engine (lazy initialization)
_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


# =============================================================================
# SESSION MANAGEMENT
# =============================================================================

# Session factory (lazy initialization)
_SessionLocal: Optional[sessionmaker] = None


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,  # Serializers read attributes after commit
    )


def get_session_factory() -> sessionmaker:
    """Get or create session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = make_session_factory(get_engine())
    return _SessionLocal


def configure_engine(engine: Engine):
    """Install a specific engine (tests, scripts)."""
    global _engine, _SessionLocal
    _engine = engine
    _SessionLocal = make_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI-style dependency for database sessions.

    Usage:
        @router.get("/items")
        async def get_items(db: Session = Depends(get_db)):
            ...
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Session scoped to one transaction, for scripts and background jobs.

    Usage:
        with get_db_context() as db:
            db.query(Item).all()
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        with transaction(db):
            yield db
    finally:
        db.close()


# =============================================================================
# DATABASE INITIALIZATION
# =============================================================================

def init_db(drop_all: bool = False, engine: Optional[Engine] = None) -> None:
    """
    Create all tables.

    Args:
        drop_all: If True, drop all tables first (USE WITH CAUTION!)
    """
    engine = engine or get_engine()

    if drop_all:
        logger.warning("Dropping all database tables!")
        Base.metadata.drop_all(bind=engine)

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


def check_db_connection(engine: Optional[Engine] = None) -> bool:
    """
    Round-trip a SELECT 1.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = engine or get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False


def get_db_stats(engine: Optional[Engine] = None) -> dict:
    """Connection pool statistics (QueuePool only)."""
    engine = engine or get_engine()
    pool = engine.pool

    if not isinstance(pool, QueuePool):
        return {"pool": type(pool).__name__}

    return {
        "pool": "QueuePool",
        "pool_size": pool.size(),
        "checked_out": pool.checkedout(),
        "overflow": pool.overflow(),
        "checked_in": pool.checkedin(),
    }


# =============================================================================
# TRANSACTION HELPERS
# =============================================================================

@contextmanager
def store_errors():
    """Re-raise connectivity failures as the retryable StoreUnavailableError."""
    try:
        yield
    except STORE_UNAVAILABLE_ERRORS as e:
        logger.error(f"Store unavailable: {e}")
        raise StoreUnavailableError(
            retry_after=get_settings().DB_RETRY_AFTER_SECONDS,
        ) from e


@contextmanager
def transaction(db: Session):
    """
    Commit on success, roll back on any exception.

    Usage:
        with transaction(db):
            db.add(item1)
            db.add(item2)
            # committed here, or rolled back if the block raised
    """
    with store_errors():
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise


def run_in_transaction(db: Session, fn: Callable[[Session], T]) -> T:
    """Run fn(db) in one transaction; commit on success, roll back on any error."""
    with transaction(db):
        return fn(db)
