"""File sync models - states, locks and per-path records."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileState(str, Enum):
    """Sync lifecycle states."""
    DRAFT = "draft"                  # local only, never synced
    CLEAN = "clean"                  # matches remote
    MODIFIED = "modified"            # edited since last sync
    LOCKED_LOCAL = "locked-local"    # locked by the querying user
    LOCKED_REMOTE = "locked-remote"  # locked by another user
    CONFLICT = "conflict"            # remote changed while locally locked


LOCKED_STATES = (FileState.LOCKED_LOCAL, FileState.LOCKED_REMOTE)


class Lock(BaseModel):
    """Advisory lock on a path."""
    user_id: str
    reason: str = "Editing"
    timestamp: datetime = Field(default_factory=utcnow)
    from_remote: bool = False  # mirrored from the remote, not taken on this node


class FileRecord(BaseModel):
    """Sync metadata for one path."""
    path: str
    state: FileState = FileState.DRAFT
    lock: Lock | None = None
    remote_timestamp: str | None = None
    last_modified: datetime = Field(default_factory=utcnow)


class SyncStatus(BaseModel):
    """Known paths grouped by state."""
    draft: list[str] = []
    clean: list[str] = []
    modified: list[str] = []
    locked_local: list[str] = []
    locked_remote: list[str] = []
    conflict: list[str] = []
    total: int = 0


class SyncStatusReport(SyncStatus):
    """Sync status plus the provider's auto-sync settings."""
    auto_sync_enabled: bool
    auto_sync_running: bool
    sync_interval: float
    user_id: str


class LockedFile(BaseModel):
    """A locked path with its lock."""
    path: str
    lock: Lock
    state: FileState


class SyncSummary(BaseModel):
    """Outcome of a batch sync."""
    files_processed: int
    errors: dict[str, str] = {}
