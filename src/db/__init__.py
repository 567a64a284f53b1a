"""Database module for MediaSync credentials, watch history and job logs."""

from src.db.connection import (
    create_db_engine,
    create_session_factory,
    get_database_url,
    get_db_context,
    init_db,
)
from src.db.models import (
    Credential,
    MediaType,
    MediaWatch,
    Platform,
    SyncJobLog,
    SyncJobStatus,
    SyncMode,
    TriggerType,
)

__all__ = [
    # Models
    "Credential",
    "MediaWatch",
    "SyncJobLog",
    # Enums
    "Platform",
    "SyncJobStatus",
    "SyncMode",
    "TriggerType",
    "MediaType",
    # Connection
    "create_db_engine",
    "create_session_factory",
    "get_database_url",
    "get_db_context",
    "init_db",
]
