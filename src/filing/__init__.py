"""Filing core - settings, errors, events and scheduling shared by providers."""

from .config import LockBackend, ProviderType, RemoteType, Settings
from .errors import (
    ConfigurationError,
    FilingError,
    GitOperationError,
    InvalidPathError,
    LocalFileNotFoundError,
    LockConflictError,
    NotFoundError,
    NotLockedError,
    OwnershipError,
    PendingCommitNotFoundError,
    PersistenceError,
    RemoteNotFoundError,
    UnsupportedOperationError,
)
from .events import EventBus, EventRecorder, FilingEvent
from .log import configure_logging
from .scheduler import RecurringTask

__all__ = [
    "ConfigurationError",
    "EventBus",
    "EventRecorder",
    "FilingError",
    "FilingEvent",
    "GitOperationError",
    "InvalidPathError",
    "LocalFileNotFoundError",
    "LockBackend",
    "LockConflictError",
    "NotFoundError",
    "NotLockedError",
    "OwnershipError",
    "PendingCommitNotFoundError",
    "PersistenceError",
    "ProviderType",
    "RecurringTask",
    "RemoteNotFoundError",
    "RemoteType",
    "Settings",
    "UnsupportedOperationError",
    "configure_logging",
]
