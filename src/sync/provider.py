"""Sync filing provider - local drafts, advisory locks and remote sync."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import structlog

from src.coordination.mutex import PathMutex
from src.filing.config import Settings
from src.filing.errors import LocalFileNotFoundError, LockConflictError, RemoteNotFoundError
from src.filing.events import (
    EventBus,
    FileCreated,
    FileDeleted,
    FileNotFoundRemote,
    FilePulled,
    FilePushed,
    FileUpdated,
    RemoteChangeError,
    RemoteChangesProcessed,
    RemoteLockFailed,
    RemoteUnlockFailed,
    SyncCompleted,
    SyncConflict,
    SyncFileError,
)
from src.filing.scheduler import RecurringTask
from src.remotes.base import LockingRemote, RemoteProvider

from .local_store import Content, LocalWorkingStore
from .metadata_store import MetadataStore
from .models import FileState, Lock, SyncStatusReport, SyncSummary, utcnow

logger = structlog.get_logger()

T = TypeVar("T")


class SyncFilingProvider:
    """Drives the FileState machine over a working store and a remote.

    Files start as local drafts, get pushed explicitly, and are kept in step
    with the remote by ``sync_all`` (by hand or on a timer). Locks live in the
    MetadataStore; when the remote supports locks they are mirrored there on a
    best-effort basis.
    """

    def __init__(
        self,
        settings: Settings,
        remote: RemoteProvider,
        events: EventBus | None = None,
        local_store: LocalWorkingStore | None = None,
        metadata: MetadataStore | None = None,
    ):
        if remote is None:
            raise ValueError("SyncFilingProvider requires a remote provider")

        self.settings = settings
        self.remote = remote
        self.events = events or EventBus()
        self.user_id = settings.user_id

        self.local = local_store or LocalWorkingStore(settings.working_dir)
        self.metadata = metadata or MetadataStore(
            settings.metadata_dir,
            settings.user_id,
            self.events,
        )

        self._mutex = PathMutex()
        self._auto_sync = RecurringTask(
            "sync",
            settings.sync_interval_seconds,
            self.sync_all,
            self.events,
        )
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return

        await self.metadata.initialize()
        self._initialized = True

        if self.settings.auto_sync:
            self.start_auto_sync()

        logger.info("Sync provider initialized", user_id=self.user_id)

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def close(self) -> None:
        """Stop auto-sync and wait for a running sync to finish."""
        self.stop_auto_sync()
        await self._auto_sync.drain()

    # === Auto sync ===

    def start_auto_sync(self) -> None:
        self._auto_sync.start()

    def stop_auto_sync(self) -> None:
        self._auto_sync.stop()

    # === Helpers ===

    async def _remote_call(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, timeout=self.settings.remote_timeout_seconds)

    def _check_not_locked_by_other(self, path: str) -> None:
        if self.metadata.is_locked_by_other_user(path):
            lock = self.metadata.get_file_lock(path)
            raise LockConflictError(path, holder=lock.user_id)

    async def _refresh_remote_lock(self, path: str) -> None:
        """Mirror another user's remote lock into local metadata."""
        if not isinstance(self.remote, LockingRemote):
            return

        try:
            remote_lock = await self._remote_call(self.remote.get_lock(path))
        except Exception as e:
            logger.warning("Could not read remote lock", path=path, error=str(e))
            return

        local_lock = self.metadata.get_file_lock(path)

        if remote_lock is not None and remote_lock.user_id != self.user_id:
            if local_lock is None:
                await self.metadata.lock_file(
                    path,
                    remote_lock.user_id,
                    remote_lock.reason,
                    from_remote=True,
                )
            elif local_lock.user_id == self.user_id:
                # Local lock is authoritative for this node
                logger.warning(
                    "Remote lock held by another user",
                    path=path,
                    holder=remote_lock.user_id,
                )
        elif local_lock is not None and local_lock.from_remote:
            await self.metadata.clear_lock(path)
            logger.info("Remote lock released", path=path, holder=local_lock.user_id)

    # === File operations ===

    async def create(self, path: str, content: Content) -> None:
        """Create a local draft."""
        await self._ensure_initialized()

        async with self._mutex.hold(path):
            await self._refresh_remote_lock(path)
            self._check_not_locked_by_other(path)

            await self.local.create(path, content)
            await self.metadata.set_file_state(path, FileState.DRAFT)

        logger.info("Created draft", path=path)
        self.events.emit(FileCreated(path=path, state=FileState.DRAFT.value))

    async def read(self, path: str, encoding: str | None = None) -> Content:
        """Read the local copy, pulling it from the remote first if absent."""
        await self._ensure_initialized()

        async with self._mutex.hold(path):
            if not await self.local.exists(path):
                await self._pull_file(path)
            return await self.local.read(path, encoding)

    async def update(self, path: str, content: Content) -> None:
        await self._ensure_initialized()

        async with self._mutex.hold(path):
            await self._refresh_remote_lock(path)
            self._check_not_locked_by_other(path)

            await self.local.update(path, content)

            state = self.metadata.get_file_state(path)
            # Edits to a draft or a file locked for editing are not a new modification
            if state not in (FileState.DRAFT, FileState.LOCKED_LOCAL):
                state = FileState.MODIFIED
                await self.metadata.set_file_state(path, state)

        logger.info("Updated file", path=path, state=state.value)
        self.events.emit(FileUpdated(path=path, state=state.value))

    async def delete(self, path: str) -> None:
        await self._ensure_initialized()

        async with self._mutex.hold(path):
            await self._refresh_remote_lock(path)
            self._check_not_locked_by_other(path)

            await self.local.delete(path)
            await self.metadata.remove_file(path)

        logger.info("Deleted file", path=path)
        self.events.emit(FileDeleted(path=path))

    async def list(self, dir_path: str = ".") -> list[str]:
        await self._ensure_initialized()
        return await self.local.list(dir_path)

    # === Locks ===

    async def lock_file(self, path: str, reason: str = "Editing") -> Lock:
        """Lock a file for exclusive editing."""
        await self._ensure_initialized()

        async with self._mutex.hold(path):
            await self._refresh_remote_lock(path)

            if self.metadata.is_locked_by_other_user(path):
                holder = self.metadata.get_file_lock(path).user_id
                raise LockConflictError(
                    path,
                    holder=holder,
                    message=f"File is already locked by {holder}: {path}",
                )

            lock = await self.metadata.lock_file(path, self.user_id, reason)

            if isinstance(self.remote, LockingRemote):
                try:
                    await self._remote_call(self.remote.lock_file(path, self.user_id, reason))
                except Exception as e:
                    # Keep the local lock
                    logger.warning("Remote lock failed", path=path, error=str(e))
                    self.events.emit(RemoteLockFailed(path=path, error=str(e)))

        return lock

    async def unlock_file(self, path: str) -> None:
        await self._ensure_initialized()

        async with self._mutex.hold(path):
            await self.metadata.unlock_file(path, self.user_id)

            if isinstance(self.remote, LockingRemote):
                try:
                    await self._remote_call(self.remote.unlock_file(path, self.user_id))
                except Exception as e:
                    logger.warning("Remote unlock failed", path=path, error=str(e))
                    self.events.emit(RemoteUnlockFailed(path=path, error=str(e)))

    # === Push / pull ===

    async def push_file(self, path: str) -> str:
        """Upload the local copy. Returns the new remote timestamp."""
        await self._ensure_initialized()

        async with self._mutex.hold(path):
            return await self._push_file(path)

    async def _push_file(self, path: str) -> str:
        await self._refresh_remote_lock(path)

        if self.metadata.get_file_state(path) == FileState.LOCKED_REMOTE:
            holder = self.metadata.get_file_lock(path).user_id
            raise LockConflictError(
                path,
                holder=holder,
                message=f"Cannot push file locked by another user ({holder}): {path}",
            )

        if not await self.local.exists(path):
            raise LocalFileNotFoundError(path)

        content = await self.local.read(path)
        await self._remote_call(self.remote.create(path, content))

        remote_timestamp = utcnow().isoformat()
        await self.metadata.set_remote_timestamp(path, remote_timestamp)
        await self.metadata.set_file_state(path, FileState.CLEAN)

        logger.info("Pushed file", path=path, size=len(content))
        self.events.emit(FilePushed(path=path, remote_timestamp=remote_timestamp))
        return remote_timestamp

    async def pull_file(self, path: str) -> bool:
        """Download the remote copy. Returns False if the remote has none yet."""
        await self._ensure_initialized()

        async with self._mutex.hold(path):
            return await self._pull_file(path)

    async def _pull_file(self, path: str) -> bool:
        if self.metadata.is_locked_by_current_user(path):
            raise LockConflictError(
                path,
                holder=self.user_id,
                message=f"Cannot pull file locked locally: {path}",
            )

        try:
            content = await self._remote_call(self.remote.read(path))
        except (RemoteNotFoundError, FileNotFoundError):
            # Not synced yet
            logger.debug("File not on remote", path=path)
            self.events.emit(FileNotFoundRemote(path=path))
            return False

        await self.local.create(path, content)

        remote_timestamp = utcnow().isoformat()
        await self.metadata.set_remote_timestamp(path, remote_timestamp)
        await self.metadata.set_file_state(path, FileState.CLEAN)

        logger.info("Pulled file", path=path, size=len(content))
        self.events.emit(FilePulled(path=path, remote_timestamp=remote_timestamp))
        return True

    # === Sync ===

    async def sync_file(self, path: str) -> None:
        """Push or pull a single file depending on its state."""
        await self._ensure_initialized()

        async with self._mutex.hold(path):
            state = self.metadata.get_file_state(path)

            match state:
                case FileState.DRAFT:
                    # Drafts are never synced automatically
                    return
                case FileState.MODIFIED:
                    if not self.metadata.is_locked_by_other_user(path):
                        await self._push_file(path)
                case FileState.CLEAN:
                    if self.metadata.is_locked_by_current_user(path):
                        logger.debug("Skipping pull of locally locked file", path=path)
                        return
                    await self._pull_file(path)
                case FileState.LOCKED_LOCAL | FileState.LOCKED_REMOTE:
                    return
                case FileState.CONFLICT:
                    logger.warning("File in conflict, needs manual resolution", path=path)
                    self.events.emit(SyncConflict(path=path))

    async def sync_all(self) -> SyncSummary:
        """Sync every CLEAN and MODIFIED file, isolating per-file failures."""
        await self._ensure_initialized()

        status = self.metadata.get_sync_status()
        paths = [*status.clean, *status.modified]
        errors: dict[str, str] = {}

        for path in paths:
            try:
                await self.sync_file(path)
            except Exception as e:
                errors[path] = str(e)
                logger.warning("File sync failed", path=path, error=str(e))
                self.events.emit(SyncFileError(path=path, error=str(e)))

        logger.info("Sync completed", files_processed=len(paths), errors=len(errors))
        self.events.emit(SyncCompleted(files_processed=len(paths), errors=len(errors)))

        return SyncSummary(files_processed=len(paths), errors=errors)

    async def process_remote_changes(self, changed_paths: list[str]) -> SyncSummary:
        """Pull files that changed remotely.

        A file locked by the current user is marked CONFLICT instead: the local
        edit wins for now and the user resolves it later.
        """
        await self._ensure_initialized()

        errors: dict[str, str] = {}
        conflicts: list[str] = []

        for path in changed_paths:
            try:
                async with self._mutex.hold(path):
                    if self.metadata.is_locked_by_current_user(path):
                        await self.metadata.set_file_state(path, FileState.CONFLICT)
                        conflicts.append(path)
                    else:
                        await self._pull_file(path)
            except Exception as e:
                errors[path] = str(e)
                logger.warning("Remote change failed", path=path, error=str(e))
                self.events.emit(RemoteChangeError(path=path, error=str(e)))

        logger.info(
            "Remote changes processed",
            files=len(changed_paths),
            conflicts=len(conflicts),
            errors=len(errors),
        )
        self.events.emit(
            RemoteChangesProcessed(
                files=list(changed_paths),
                conflicts=conflicts,
                errors=len(errors),
            )
        )

        return SyncSummary(files_processed=len(changed_paths), errors=errors)

    async def get_sync_status(self) -> SyncStatusReport:
        await self._ensure_initialized()

        status = self.metadata.get_sync_status()
        return SyncStatusReport(
            **status.model_dump(),
            auto_sync_enabled=self.settings.auto_sync,
            auto_sync_running=self._auto_sync.running,
            sync_interval=self._auto_sync.interval,
            user_id=self.user_id,
        )
