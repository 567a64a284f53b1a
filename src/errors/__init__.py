"""Error types for MediaSync.

Domain errors (not found, conflict, validation) live here; vault errors
live in src.services.credential_vault and sync errors in
src.services.errors.
"""

from src.errors.domain import (
    ConflictError,
    DomainError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "DomainError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
]
