"""Database configuration and session management."""

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from .core.config import settings

DATABASE_URL = settings.database_url


def create_db_engine(url: str) -> Engine:
    """Create an engine with database-specific tuning.

    SQLite: every transaction starts with ``BEGIN IMMEDIATE`` so writers are
    serialized at the database level and a transaction's reads cannot be
    invalidated by a concurrent commit. PostgreSQL: pooled connections;
    row-level ``FOR UPDATE`` locks are taken by the repository instead.
    """
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            # Hand transaction control to SQLAlchemy so BEGIN IMMEDIATE below
            # is the only BEGIN ever emitted.
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            # SQLite defaults foreign_keys to OFF.
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(
        url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        # Detects stale connections before use.
        pool_pre_ping=True,
    )


engine = create_db_engine(DATABASE_URL)

# Nodes are returned to callers after commit, so attributes must stay loaded.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

# Create base class for models
Base = declarative_base()


def init_db(bind: Engine = engine) -> None:
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(bind=bind)


def get_db():
    """Dependency for FastAPI routes to get database session.

    Rolls back the transaction on unhandled exceptions so that the
    connection is returned to the pool in a clean state.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
