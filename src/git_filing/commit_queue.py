"""Commit queue - file changes waiting for a human-written commit message."""

import asyncio
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from src.filing.errors import OwnershipError, PendingCommitNotFoundError, PersistenceError
from src.filing.events import (
    CommitCancelled,
    CommitCompleted,
    CommitQueueCleared,
    CommitQueued,
    EventBus,
)
from src.sync.metadata_store import write_atomic
from src.sync.models import utcnow

logger = structlog.get_logger()

QUEUE_FILE = "pending-commits.json"


class PendingCommit(BaseModel):
    """Staged change set awaiting a commit message."""
    id: str
    files: list[str]
    user_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = {}


class CompletedCommit(PendingCommit):
    """Pending commit handed back to the caller for the actual commit."""
    commit_message: str
    completed_at: datetime = Field(default_factory=utcnow)


class UserQueueStats(BaseModel):
    count: int = 0
    files: list[str] = []
    oldest_commit: datetime


class QueueStats(BaseModel):
    total_pending: int
    user_stats: dict[str, UserQueueStats] = {}
    oldest_pending: datetime | None = None


_queue_adapter = TypeAdapter(list[PendingCommit])


def _new_commit_id() -> str:
    return f"commit-{uuid.uuid4().hex[:12]}"


class CommitQueue:
    """Durable queue of pending commits, persisted as a JSON array.

    Completing a commit is a two-phase hand-off: the entry is removed from the
    queue before the caller commits. If that commit fails the caller must
    ``requeue`` it, so commit intent is delivered at least once.
    """

    def __init__(self, queue_dir: str | Path = "./.git-queue", events: EventBus | None = None):
        self.queue_dir = Path(queue_dir).resolve()
        self.queue_file = self.queue_dir / QUEUE_FILE
        self.events = events
        self._pending: list[PendingCommit] = []
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return

        try:
            await asyncio.to_thread(self.queue_dir.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to create queue directory: {e}") from e

        self._pending = await asyncio.to_thread(self._load)
        self._initialized = True

        logger.info("Loaded commit queue", queue_file=str(self.queue_file), pending=len(self._pending))

    def _load(self) -> list[PendingCommit]:
        try:
            data = self.queue_file.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise PersistenceError(f"Failed to load commit queue: {e}") from e

        if not data.strip():
            return []

        try:
            return _queue_adapter.validate_json(data)
        except ValidationError as e:
            raise PersistenceError(f"Failed to load commit queue: {e}") from e

    async def _save(self, pending: list[PendingCommit]) -> None:
        """Persist ``pending`` and only then make it current."""
        data = _queue_adapter.dump_json(pending, indent=2)
        try:
            await asyncio.to_thread(write_atomic, self.queue_file, data)
        except OSError as e:
            raise PersistenceError(f"Failed to save commit queue: {e}") from e
        self._pending = pending

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    def _emit(self, event) -> None:
        if self.events:
            self.events.emit(event)

    def _find(self, commit_id: str, user_id: str) -> int:
        for index, commit in enumerate(self._pending):
            if commit.id == commit_id:
                if commit.user_id != user_id:
                    raise OwnershipError(
                        f"Commit {commit_id} belongs to user {commit.user_id}, not {user_id}"
                    )
                return index
        raise PendingCommitNotFoundError(commit_id)

    async def add_pending_commit(
        self,
        files: list[str],
        user_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Queue a change set. Returns the new commit id."""
        await self._ensure_initialized()

        commit = PendingCommit(
            id=_new_commit_id(),
            files=list(dict.fromkeys(files)),
            user_id=user_id,
            metadata=dict(metadata or {}),
        )
        await self._save([*self._pending, commit])

        logger.info("Queued commit", commit_id=commit.id, files=commit.files, user_id=user_id)
        self._emit(
            CommitQueued(
                commit_id=commit.id,
                files=commit.files,
                user_id=user_id,
                total_pending=len(self._pending),
            )
        )
        return commit.id

    def get_pending_commit(self, commit_id: str) -> PendingCommit | None:
        return next((c for c in self._pending if c.id == commit_id), None)

    def get_all_pending_commits(self) -> list[PendingCommit]:
        return list(self._pending)

    def get_pending_commits_by_user(self, user_id: str) -> list[PendingCommit]:
        return [c for c in self._pending if c.user_id == user_id]

    def get_pending_count(self) -> int:
        return len(self._pending)

    def get_pending_count_by_user(self, user_id: str) -> int:
        return len(self.get_pending_commits_by_user(user_id))

    async def complete_pending_commit(
        self,
        commit_id: str,
        commit_message: str,
        user_id: str,
    ) -> CompletedCommit:
        """Take a commit off the queue for ``user_id`` to commit."""
        await self._ensure_initialized()

        index = self._find(commit_id, user_id)
        commit = self._pending[index]
        await self._save(self._pending[:index] + self._pending[index + 1 :])

        logger.info("Completed pending commit", commit_id=commit_id, user_id=user_id)
        self._emit(
            CommitCompleted(
                commit_id=commit_id,
                commit_message=commit_message,
                files=commit.files,
                user_id=user_id,
                total_pending=len(self._pending),
            )
        )
        return CompletedCommit(**commit.model_dump(), commit_message=commit_message)

    async def requeue(self, completed: PendingCommit) -> str:
        """Put a change set back after its commit failed, flagged as a retry."""
        return await self.add_pending_commit(
            completed.files,
            completed.user_id,
            {**completed.metadata, "retry": True},
        )

    async def cancel_pending_commit(self, commit_id: str, user_id: str) -> PendingCommit:
        """Discard a pending commit without committing it."""
        await self._ensure_initialized()

        index = self._find(commit_id, user_id)
        commit = self._pending[index]
        await self._save(self._pending[:index] + self._pending[index + 1 :])

        logger.info("Cancelled pending commit", commit_id=commit_id, user_id=user_id)
        self._emit(
            CommitCancelled(
                commit_id=commit_id,
                files=commit.files,
                user_id=user_id,
                total_pending=len(self._pending),
            )
        )
        return commit

    async def clear_all(self) -> int:
        """Drop every pending commit. Returns how many were dropped."""
        await self._ensure_initialized()

        count = len(self._pending)
        await self._save([])

        logger.warning("Cleared commit queue", cleared=count)
        self._emit(CommitQueueCleared(cleared_count=count))
        return count

    def get_queue_stats(self) -> QueueStats:
        user_stats: dict[str, UserQueueStats] = {}

        for commit in self._pending:
            stats = user_stats.get(commit.user_id)
            if stats is None:
                stats = UserQueueStats(oldest_commit=commit.timestamp)
                user_stats[commit.user_id] = stats

            stats.count += 1
            for path in commit.files:
                if path not in stats.files:
                    stats.files.append(path)
            if commit.timestamp < stats.oldest_commit:
                stats.oldest_commit = commit.timestamp

        return QueueStats(
            total_pending=len(self._pending),
            user_stats=user_stats,
            oldest_pending=min((c.timestamp for c in self._pending), default=None),
        )
