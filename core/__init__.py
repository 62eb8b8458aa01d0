"""
DhanSetu Core Module

Shared infrastructure for the gateway services:
- Configuration (Settings)
- Error taxonomy
- Logging setup
- Storage repositories and per-entity locking
- Retry, circuit breaker and scheduling utilities
- Signing and sensitive-data encryption
"""

from .config import Settings, get_settings
from .errors import (
    DhanSetuError,
    ValidationError,
    NotFoundError,
    ConflictError,
    UnsupportedChainError,
    ExternalServiceError,
)
from .locks import KeyedLock
from .repository import InMemoryRepository, Repository, Storage

__all__ = [
    "Settings",
    "get_settings",
    "DhanSetuError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "UnsupportedChainError",
    "ExternalServiceError",
    "KeyedLock",
    "InMemoryRepository",
    "Repository",
    "Storage",
]
