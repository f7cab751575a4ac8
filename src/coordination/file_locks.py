"""File coordination - advisory lock managers."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import redis.asyncio as redis
import structlog

from src.filing.config import Settings
from src.filing.errors import (
    LockConflictError,
    NotLockedError,
    OwnershipError,
    UnsupportedOperationError,
)
from src.sync.models import Lock

if TYPE_CHECKING:
    from src.sync.metadata_store import MetadataStore

logger = structlog.get_logger()


class LockManager(ABC):
    """Advisory lock registry shared by filing providers."""

    @abstractmethod
    async def acquire(self, path: str, user_id: str, reason: str = "Editing") -> Lock:
        """Lock a path for ``user_id``. Same user refreshes; another user conflicts."""
        ...

    @abstractmethod
    async def release(self, path: str, user_id: str) -> Lock:
        """Release a lock held by ``user_id``."""
        ...

    @abstractmethod
    async def holder(self, path: str) -> Lock | None:
        """Current lock on a path, if any."""
        ...

    @abstractmethod
    async def locked_paths(self) -> dict[str, Lock]:
        """All locked paths with their locks."""
        ...

    async def is_locked_by_other(self, path: str, user_id: str) -> bool:
        lock = await self.holder(path)
        return lock is not None and lock.user_id != user_id

    async def extend_locks(self, user_id: str, ttl: int | None = None) -> int:
        """Extend TTL on all locks held by a user. Only expiring backends support it."""
        raise UnsupportedOperationError(f"{type(self).__name__} locks do not expire")

    async def close(self) -> None:
        """Release any connection held by the manager."""


class InMemoryLockManager(LockManager):
    """Process-local lock set."""

    def __init__(self):
        self._locks: dict[str, Lock] = {}

    async def acquire(self, path: str, user_id: str, reason: str = "Editing") -> Lock:
        existing = self._locks.get(path)
        if existing is not None and existing.user_id != user_id:
            raise LockConflictError(path, holder=existing.user_id)

        lock = Lock(user_id=user_id, reason=reason)
        self._locks[path] = lock
        return lock

    async def release(self, path: str, user_id: str) -> Lock:
        lock = self._locks.get(path)
        if lock is None:
            raise NotLockedError(path)
        if lock.user_id != user_id:
            raise OwnershipError(
                f"Cannot unlock file locked by another user ({lock.user_id}): {path}"
            )
        return self._locks.pop(path)

    async def holder(self, path: str) -> Lock | None:
        return self._locks.get(path)

    async def locked_paths(self) -> dict[str, Lock]:
        return dict(self._locks)


class MetadataLockManager(LockManager):
    """Locks kept in a MetadataStore, so sync and Git providers share one registry."""

    def __init__(self, metadata: "MetadataStore"):
        self.metadata = metadata

    async def acquire(self, path: str, user_id: str, reason: str = "Editing") -> Lock:
        await self.metadata.initialize()
        return await self.metadata.lock_file(path, user_id, reason)

    async def release(self, path: str, user_id: str) -> Lock:
        await self.metadata.initialize()
        return await self.metadata.unlock_file(path, user_id)

    async def holder(self, path: str) -> Lock | None:
        await self.metadata.initialize()
        return self.metadata.get_file_lock(path)

    async def locked_paths(self) -> dict[str, Lock]:
        await self.metadata.initialize()
        return {item.path: item.lock for item in self.metadata.get_locked_files()}


class RedisLockManager(LockManager):
    """Locks in Redis with a TTL, visible to every process sharing the server."""

    def __init__(self, settings: Settings, client: redis.Redis | None = None):
        self.settings = settings
        self.redis: redis.Redis | None = client

    async def _get_redis(self) -> redis.Redis:
        """Lazy Redis connection."""
        if self.redis is None:
            self.redis = redis.from_url(self.settings.redis_url)
        return self.redis

    def _lock_key(self, file_path: str) -> str:
        """Generate Redis key for file lock."""
        return f"lock:{self.settings.lock_namespace}:{file_path}"

    @staticmethod
    def _decode(value: bytes | str) -> str:
        return value.decode() if isinstance(value, bytes) else value

    async def holder(self, path: str) -> Lock | None:
        r = await self._get_redis()
        raw = await r.get(self._lock_key(path))
        if not raw:
            return None
        return Lock.model_validate_json(self._decode(raw))

    async def acquire(self, path: str, user_id: str, reason: str = "Editing") -> Lock:
        r = await self._get_redis()
        key = self._lock_key(path)
        lock = Lock(user_id=user_id, reason=reason)
        ttl = self.settings.file_lock_ttl_seconds

        acquired = await r.set(key, lock.model_dump_json(), nx=True, ex=ttl)
        if not acquired:
            existing = await self.holder(path)
            if existing is not None and existing.user_id != user_id:
                raise LockConflictError(path, holder=existing.user_id)
            # Ours already (or expired in between): refresh
            await r.set(key, lock.model_dump_json(), ex=ttl)

        logger.info("Acquired file lock", path=path, user_id=user_id, ttl=ttl)
        return lock

    async def release(self, path: str, user_id: str) -> Lock:
        r = await self._get_redis()
        lock = await self.holder(path)
        if lock is None:
            raise NotLockedError(path)
        if lock.user_id != user_id:
            raise OwnershipError(
                f"Cannot unlock file locked by another user ({lock.user_id}): {path}"
            )

        await r.delete(self._lock_key(path))
        logger.info("Released file lock", path=path, user_id=user_id)
        return lock

    async def locked_paths(self) -> dict[str, Lock]:
        """Get all locked files with their holders."""
        r = await self._get_redis()
        pattern = self._lock_key("*")
        prefix_len = len(self._lock_key(""))

        locks = {}
        async for key in r.scan_iter(match=pattern):
            key_str = self._decode(key)
            raw = await r.get(key)
            if raw:
                locks[key_str[prefix_len:]] = Lock.model_validate_json(self._decode(raw))

        return locks

    async def extend_locks(self, user_id: str, ttl: int | None = None) -> int:
        """Extend TTL on all locks held by a user."""
        if ttl is None:
            ttl = self.settings.file_lock_ttl_seconds

        r = await self._get_redis()
        extended = 0

        for path, lock in (await self.locked_paths()).items():
            if lock.user_id == user_id:
                await r.expire(self._lock_key(path), ttl)
                extended += 1

        return extended

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
