"""Directory-backed remote, e.g. a shared network mount."""

import asyncio
import hashlib
import os
from pathlib import Path

import structlog

from src.filing.errors import LockConflictError, OwnershipError, RemoteNotFoundError
from src.sync.local_store import Content, resolve_under, to_bytes
from src.sync.metadata_store import write_atomic
from src.sync.models import Lock

logger = structlog.get_logger()

LOCKS_DIR = ".filing-locks"


class LocalRemoteProvider:
    """Remote files in a plain directory, with lock sidecar files."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.locks_dir = self.root / LOCKS_DIR

    def _full_path(self, path: str) -> Path:
        return resolve_under(self.root, path)

    def _lock_path(self, path: str) -> Path:
        digest = hashlib.sha1(path.encode("utf-8")).hexdigest()
        return self.locks_dir / f"{digest}.json"

    async def create(self, path: str, content: Content) -> None:
        full = self._full_path(path)
        data = to_bytes(content)

        def write() -> None:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(data)

        await asyncio.to_thread(write)
        logger.debug("Stored remote file", path=path, size=len(data))

    async def update(self, path: str, content: Content) -> None:
        await self.create(path, content)

    async def read(self, path: str) -> bytes:
        full = self._full_path(path)
        try:
            return await asyncio.to_thread(full.read_bytes)
        except (FileNotFoundError, IsADirectoryError) as e:
            raise RemoteNotFoundError(path) from e

    async def delete(self, path: str) -> None:
        full = self._full_path(path)
        try:
            await asyncio.to_thread(full.unlink)
        except FileNotFoundError as e:
            raise RemoteNotFoundError(path) from e

    async def list(self, dir_path: str = ".") -> list[str]:
        full = self._full_path(dir_path)
        try:
            names = await asyncio.to_thread(os.listdir, full)
        except (FileNotFoundError, NotADirectoryError):
            return []
        return sorted(name for name in names if name != LOCKS_DIR)

    # === Locks ===

    async def get_lock(self, path: str) -> Lock | None:
        lock_path = self._lock_path(path)
        try:
            raw = await asyncio.to_thread(lock_path.read_bytes)
        except FileNotFoundError:
            return None
        return Lock.model_validate_json(raw)

    async def lock_file(self, path: str, user_id: str, reason: str = "Editing") -> None:
        existing = await self.get_lock(path)
        if existing is not None and existing.user_id != user_id:
            raise LockConflictError(path, holder=existing.user_id)

        lock = Lock(user_id=user_id, reason=reason)
        lock_path = self._lock_path(path)

        def write() -> None:
            self.locks_dir.mkdir(parents=True, exist_ok=True)
            write_atomic(lock_path, lock.model_dump_json().encode("utf-8"))

        await asyncio.to_thread(write)

    async def unlock_file(self, path: str, user_id: str) -> None:
        existing = await self.get_lock(path)
        if existing is None:
            return
        if existing.user_id != user_id:
            raise OwnershipError(
                f"Cannot unlock file locked by another user ({existing.user_id}): {path}"
            )
        try:
            await asyncio.to_thread(self._lock_path(path).unlink)
        except FileNotFoundError:
            pass
