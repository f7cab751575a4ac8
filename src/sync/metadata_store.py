"""Metadata store - durable per-path sync state and lock registry."""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog
from pydantic import TypeAdapter, ValidationError

from src.filing.errors import (
    LockConflictError,
    NotLockedError,
    OwnershipError,
    PersistenceError,
)
from src.filing.events import EventBus, FileLocked, FileStateChanged, FileUnlocked

from .models import (
    LOCKED_STATES,
    FileRecord,
    FileState,
    Lock,
    LockedFile,
    SyncStatus,
    utcnow,
)

logger = structlog.get_logger()

METADATA_FILE = "metadata.json"

_records_adapter = TypeAdapter(dict[str, FileRecord])


def write_atomic(path: Path, data: bytes) -> None:
    """Write a file through a temp file and rename it into place."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class MetadataStore:
    """Source of truth for sync decisions.

    Holds one FileRecord per known path in memory and rewrites
    ``metadata_dir/metadata.json`` after every mutation. A path with no record
    is a DRAFT. Safe for a single process only.
    """

    def __init__(
        self,
        metadata_dir: str | Path = "./.sync",
        user_id: str = "default-user",
        events: EventBus | None = None,
    ):
        self.metadata_dir = Path(metadata_dir).resolve()
        self.metadata_file = self.metadata_dir / METADATA_FILE
        self.user_id = user_id
        self.events = events
        self._records: dict[str, FileRecord] = {}
        self._initialized = False

    async def initialize(self) -> None:
        """Load metadata from disk, creating the directory if needed."""
        if self._initialized:
            return

        try:
            await asyncio.to_thread(self.metadata_dir.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to create metadata directory: {e}") from e

        self._records = await asyncio.to_thread(self._load)
        self._initialized = True

        logger.info(
            "Loaded sync metadata",
            metadata_file=str(self.metadata_file),
            files=len(self._records),
            user_id=self.user_id,
        )

    def _load(self) -> dict[str, FileRecord]:
        try:
            data = self.metadata_file.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise PersistenceError(f"Failed to load metadata: {e}") from e

        if not data.strip():
            return {}

        try:
            return _records_adapter.validate_json(data)
        except ValidationError as e:
            raise PersistenceError(f"Failed to load metadata: {e}") from e

    async def _save(self, records: dict[str, FileRecord]) -> None:
        """Persist ``records`` and only then make them current."""
        data = _records_adapter.dump_json(records, indent=2)
        try:
            await asyncio.to_thread(write_atomic, self.metadata_file, data)
        except OSError as e:
            raise PersistenceError(f"Failed to save metadata: {e}") from e
        self._records = records

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    def _emit(self, event) -> None:
        if self.events:
            self.events.emit(event)

    # === Records ===

    def get_file_metadata(self, path: str) -> FileRecord | None:
        return self._records.get(path)

    async def set_file_metadata(self, path: str, **fields: Any) -> FileRecord:
        """Merge fields into the path's record and persist."""
        await self._ensure_initialized()

        current = self._records.get(path) or FileRecord(path=path)
        record = FileRecord.model_validate(
            {**current.model_dump(), **fields, "last_modified": utcnow()}
        )

        await self._save({**self._records, path: record})
        return record

    async def remove_file(self, path: str) -> None:
        """Forget a path entirely (no tombstone)."""
        await self._ensure_initialized()

        if path in self._records:
            await self._save({p: r for p, r in self._records.items() if p != path})
            logger.debug("Removed file metadata", path=path)

    # === State ===

    def get_file_state(self, path: str, user_id: str | None = None) -> FileState:
        """Current state, DRAFT if unknown.

        Lock states are derived from the lock owner relative to ``user_id``
        (the store identity by default), never trusted as stored.
        """
        record = self._records.get(path)
        if record is None:
            return FileState.DRAFT

        if record.state in LOCKED_STATES and record.lock is not None:
            identity = user_id or self.user_id
            if record.lock.user_id == identity:
                return FileState.LOCKED_LOCAL
            return FileState.LOCKED_REMOTE

        return record.state

    async def set_file_state(self, path: str, state: FileState) -> None:
        await self.set_file_metadata(path, state=state)
        self._emit(FileStateChanged(path=path, state=state.value))

    def get_files_by_state(self, state: FileState) -> list[str]:
        return [path for path in self._records if self.get_file_state(path) == state]

    # === Locks ===

    def get_file_lock(self, path: str) -> Lock | None:
        record = self._records.get(path)
        return record.lock if record else None

    async def lock_file(
        self,
        path: str,
        user_id: str | None = None,
        reason: str = "Editing",
        from_remote: bool = False,
    ) -> Lock:
        """Record a lock for ``user_id`` (the store identity by default).

        Re-locking by the same user refreshes the lock. ``from_remote`` marks
        a lock mirrored from the remote rather than taken on this node.
        """
        user_id = user_id or self.user_id

        existing = self.get_file_lock(path)
        if existing is not None and existing.user_id != user_id:
            raise LockConflictError(path, holder=existing.user_id)

        lock = Lock(user_id=user_id, reason=reason, from_remote=from_remote)
        state = FileState.LOCKED_LOCAL if user_id == self.user_id else FileState.LOCKED_REMOTE
        await self.set_file_metadata(path, lock=lock, state=state)

        logger.info("Locked file", path=path, user_id=user_id, reason=reason)
        self._emit(FileLocked(path=path, user_id=user_id, reason=reason))
        return lock

    async def unlock_file(self, path: str, user_id: str | None = None) -> Lock:
        """Release a lock held by ``user_id``. Resets the path to CLEAN."""
        user_id = user_id or self.user_id

        lock = self.get_file_lock(path)
        if lock is None:
            raise NotLockedError(path)

        if lock.user_id != user_id:
            raise OwnershipError(
                f"Cannot unlock file locked by another user ({lock.user_id}): {path}"
            )

        await self.set_file_metadata(path, lock=None, state=FileState.CLEAN)

        logger.info("Unlocked file", path=path, user_id=user_id)
        self._emit(FileUnlocked(path=path, user_id=user_id))
        return lock

    async def clear_lock(self, path: str) -> Lock | None:
        """Drop whatever lock the path holds, without an ownership check.

        Used when a lock mirrored from the remote has gone away.
        """
        lock = self.get_file_lock(path)
        if lock is None:
            return None

        await self.set_file_metadata(path, lock=None, state=FileState.CLEAN)
        self._emit(FileUnlocked(path=path, user_id=lock.user_id))
        return lock

    def is_locked_by_current_user(self, path: str, user_id: str | None = None) -> bool:
        lock = self.get_file_lock(path)
        return lock is not None and lock.user_id == (user_id or self.user_id)

    def is_locked_by_other_user(self, path: str, user_id: str | None = None) -> bool:
        lock = self.get_file_lock(path)
        return lock is not None and lock.user_id != (user_id or self.user_id)

    def get_locked_files(self) -> list[LockedFile]:
        return [
            LockedFile(path=path, lock=record.lock, state=self.get_file_state(path))
            for path, record in self._records.items()
            if record.lock is not None
        ]

    # === Remote timestamps ===

    async def set_remote_timestamp(self, path: str, timestamp: str) -> None:
        await self.set_file_metadata(path, remote_timestamp=timestamp)

    def get_remote_timestamp(self, path: str) -> str | None:
        record = self._records.get(path)
        return record.remote_timestamp if record else None

    # === Reporting ===

    def get_sync_status(self) -> SyncStatus:
        """Partition every known path by state."""
        status = SyncStatus(total=len(self._records))
        groups = {
            FileState.DRAFT: status.draft,
            FileState.CLEAN: status.clean,
            FileState.MODIFIED: status.modified,
            FileState.LOCKED_LOCAL: status.locked_local,
            FileState.LOCKED_REMOTE: status.locked_remote,
            FileState.CONFLICT: status.conflict,
        }

        for path in self._records:
            groups[self.get_file_state(path)].append(path)

        return status
