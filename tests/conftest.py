"""Root-level pytest fixtures for all tests.

Provides shared fixtures including:
- Database fixtures (file-based SQLite, session factory)
- Encryption key and vault fixtures
- Scripted platform adapters
"""

import os
import tempfile
from collections.abc import Generator

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from src.db.connection import create_db_engine, create_session_factory, init_db
from src.services.credential_vault import KEY_ENV_VAR, CredentialVault

TEST_KEY = "0123456789abcdef" * 4


# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring external services"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests that take a long time to run"
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def file_based_db() -> Generator[str, None, None]:
    """Create a file-based SQLite database path.

    Unlike in-memory databases, this persists across connections, so the
    orchestrator and the test can open independent sessions on it.
    """
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    yield path

    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture
def db_engine(file_based_db: str) -> Generator[Engine, None, None]:
    """Engine with all tables created."""
    engine = create_db_engine(f"sqlite:///{file_based_db}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to the test database."""
    return create_session_factory(db_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a database session for a test."""
    session = session_factory()
    yield session
    session.close()


# ============================================================================
# Encryption Fixtures
# ============================================================================


@pytest.fixture
def encryption_key() -> Generator[str, None, None]:
    """Set CREDENTIAL_ENCRYPTION_KEY for the duration of a test."""
    previous = os.environ.get(KEY_ENV_VAR)
    os.environ[KEY_ENV_VAR] = TEST_KEY
    try:
        yield TEST_KEY
    finally:
        if previous is None:
            os.environ.pop(KEY_ENV_VAR, None)
        else:
            os.environ[KEY_ENV_VAR] = previous


@pytest.fixture
def vault() -> CredentialVault:
    """Vault with an explicit key (independent of the environment)."""
    return CredentialVault(key_hex=TEST_KEY)


# ============================================================================
# Platform Fixtures
# ============================================================================


@pytest.fixture
def fake_adapter():
    """Scripted adapter registered as 'bilibili' with no pages configured."""
    from tests.helpers import FakePlatformAdapter

    return FakePlatformAdapter()


@pytest.fixture
def no_sleep():
    """Awaitable sleep that records delays instead of waiting."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
