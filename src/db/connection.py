"""Database connection management for MediaSync.

Provides synchronous database access using SQLAlchemy. SQLite is the
default store; any SQLAlchemy URL works via DATABASE_URL.

Usage:
    from src.db.connection import get_db_context, init_db

    init_db(engine)  # Create tables
    with get_db_context(session_factory) as db:
        # ... use db session

Long-lived components (the sync orchestrator, the CLI) receive a session
factory built with create_session_factory() instead of importing a global.
"""

import os
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from src.db.models import Base

SessionFactory = Callable[[], Session]


# Configuration
def get_database_url(configured_url: str | None = None) -> str:
    """Get database URL from environment, config, or use default SQLite.

    Precedence:
    1. DATABASE_URL (canonical)
    2. MEDIASYNC_DB_PATH (file path, converted to sqlite URL)
    3. configured_url (from mediasync.yaml)
    4. sqlite file under the platformdirs user data directory
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("MEDIASYNC_DB_PATH", "").strip()
    if db_path:
        if db_path.startswith("sqlite:"):
            return db_path
        return f"sqlite:///{db_path}"

    if configured_url:
        return configured_url

    from src.utils.paths import get_default_db_path
    return f"sqlite:///{get_default_db_path()}"


def create_db_engine(url: str) -> Engine:
    """Create an engine, enabling SQLite pragmas for file databases."""
    is_sqlite = url.startswith("sqlite")
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
        echo=os.environ.get("SQL_ECHO", "").lower() == "true",
    )

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            """Configure SQLite pragmas for correctness and concurrency.

            Enables:
            - foreign_keys=ON: Referential integrity (disabled by default in SQLite).
            - journal_mode=WAL: Concurrent readers alongside the single writer,
              so the CLI can list jobs while a scheduled sweep is writing.
            - synchronous=NORMAL: Commits are durable after WAL fsync.
            """
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Build the session factory handed to services and the orchestrator."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


# Context managers for manual session management


@contextmanager
def get_db_context(session_factory: SessionFactory) -> Generator[Session, None, None]:
    """Context manager for a unit of work.

    Usage:
        with get_db_context(session_factory) as db:
            job = db.query(SyncJobLog).first()
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# Initialization functions


def init_db(engine: Engine) -> None:
    """Create all database tables.

    Uses the Base.metadata from models.py to create all defined tables.
    Safe to call multiple times - will not recreate existing tables.
    """
    Base.metadata.create_all(bind=engine)


def close_db(engine: Engine) -> None:
    """Close the engine and dispose of connection pool."""
    engine.dispose()
