"""Typed filing events and the bus that carries them.

Events are advisory notifications for logging and telemetry consumers. They are
never part of the control contract: a subscriber that raises is logged and
skipped, and the operation that emitted the event carries on.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, ClassVar, TypeVar

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()

E = TypeVar("E", bound="FilingEvent")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FilingEvent(BaseModel):
    """Base event."""
    name: ClassVar[str] = "event"
    timestamp: datetime = Field(default_factory=_utcnow)


class PathEvent(FilingEvent):
    """Event about a single path."""
    path: str


# === File lifecycle ===

class FileCreated(PathEvent):
    name: ClassVar[str] = "file:created"
    state: str | None = None
    commit_id: str | None = None


class FileUpdated(PathEvent):
    name: ClassVar[str] = "file:updated"
    state: str | None = None
    commit_id: str | None = None


class FileDeleted(PathEvent):
    name: ClassVar[str] = "file:deleted"
    commit_id: str | None = None


class FileLocked(PathEvent):
    name: ClassVar[str] = "file:locked"
    user_id: str
    reason: str


class FileUnlocked(PathEvent):
    name: ClassVar[str] = "file:unlocked"
    user_id: str


class FileStateChanged(PathEvent):
    name: ClassVar[str] = "file:state-changed"
    state: str


# === Sync ===

class FilePushed(PathEvent):
    name: ClassVar[str] = "file:pushed"
    remote_timestamp: str


class FilePulled(PathEvent):
    name: ClassVar[str] = "file:pulled"
    remote_timestamp: str


class FileNotFoundRemote(PathEvent):
    name: ClassVar[str] = "file:not-found-remote"


class RemoteLockFailed(PathEvent):
    name: ClassVar[str] = "sync:remote-lock-failed"
    error: str


class RemoteUnlockFailed(PathEvent):
    name: ClassVar[str] = "sync:remote-unlock-failed"
    error: str


class SyncConflict(PathEvent):
    name: ClassVar[str] = "sync:conflict"


class SyncFileError(PathEvent):
    name: ClassVar[str] = "sync:file-error"
    error: str


class SyncCompleted(FilingEvent):
    name: ClassVar[str] = "sync:completed"
    files_processed: int
    errors: int = 0


class RemoteChangeError(PathEvent):
    name: ClassVar[str] = "sync:remote-change-error"
    error: str


class RemoteChangesProcessed(FilingEvent):
    name: ClassVar[str] = "sync:remote-changes-processed"
    files: list[str]
    conflicts: list[str] = []
    errors: int = 0


# === Commit queue ===

class CommitQueued(FilingEvent):
    name: ClassVar[str] = "commit:queued"
    commit_id: str
    files: list[str]
    user_id: str
    total_pending: int


class CommitCompleted(FilingEvent):
    name: ClassVar[str] = "commit:completed"
    commit_id: str
    commit_message: str
    files: list[str]
    user_id: str
    total_pending: int


class CommitCancelled(FilingEvent):
    name: ClassVar[str] = "commit:cancelled"
    commit_id: str
    files: list[str]
    user_id: str
    total_pending: int


class CommitQueueCleared(FilingEvent):
    name: ClassVar[str] = "commit:queue-cleared"
    cleared_count: int


# === Git ===

class GitInitialized(FilingEvent):
    name: ClassVar[str] = "git:initialized"
    repo_url: str
    local_path: str
    branch: str
    user_id: str


class GitCloned(FilingEvent):
    name: ClassVar[str] = "git:cloned"
    repo_url: str
    local_path: str


class GitBranchWarning(FilingEvent):
    name: ClassVar[str] = "git:branch-warning"
    branch: str
    error: str


class GitCommitted(FilingEvent):
    name: ClassVar[str] = "git:committed"
    commit_id: str
    commit_message: str
    files: list[str]
    hexsha: str
    user_id: str


class GitFetched(FilingEvent):
    name: ClassVar[str] = "git:fetched"
    behind: int


class GitPulled(FilingEvent):
    name: ClassVar[str] = "git:pulled"
    strategy: str


class GitConflictsResolved(FilingEvent):
    name: ClassVar[str] = "git:conflicts-resolved"
    strategy: str = "latest-wins"
    message: str = "Local changes discarded in favor of remote changes"


class GitPushed(FilingEvent):
    name: ClassVar[str] = "git:pushed"
    branch: str
    retry: bool = False


class GitFetchError(FilingEvent):
    name: ClassVar[str] = "git:fetch-error"
    error: str


# === Scheduling ===

class AutoTaskStarted(FilingEvent):
    name: ClassVar[str] = "task:auto-started"
    task: str
    interval: float


class AutoTaskStopped(FilingEvent):
    name: ClassVar[str] = "task:auto-stopped"
    task: str


class AutoTaskFailed(FilingEvent):
    name: ClassVar[str] = "task:auto-failed"
    task: str
    error: str


Handler = Callable[[Any], None]


class EventBus:
    """In-process event channel, injected into every component that emits."""

    def __init__(self):
        self._subscribers: list[tuple[type[FilingEvent], Handler]] = []

    def subscribe(
        self,
        handler: Callable[[E], None],
        event_type: type[E] = FilingEvent,
    ) -> Callable[[], None]:
        """Register a handler for an event class (and its subclasses).

        Returns a callable that removes the subscription.
        """
        entry = (event_type, handler)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def emit(self, event: FilingEvent) -> None:
        """Deliver an event to matching subscribers."""
        logger.debug("Event", event_name=event.name, **event.model_dump(exclude={"timestamp"}))

        for event_type, handler in list(self._subscribers):
            if not isinstance(event, event_type):
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed", event_name=event.name)


class EventRecorder:
    """Subscriber that keeps every event it sees. Handy in tests and CLIs."""

    def __init__(self, bus: EventBus, event_type: type[FilingEvent] = FilingEvent):
        self.events: list[FilingEvent] = []
        self._unsubscribe = bus.subscribe(self.events.append, event_type)

    def of_type(self, event_type: type[E]) -> list[E]:
        return [e for e in self.events if isinstance(e, event_type)]

    def names(self) -> list[str]:
        return [e.name for e in self.events]

    def close(self) -> None:
        self._unsubscribe()
