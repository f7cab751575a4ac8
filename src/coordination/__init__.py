"""Coordination layer - file locks and per-path mutexes."""

from .file_locks import InMemoryLockManager, LockManager, MetadataLockManager, RedisLockManager
from .mutex import PathMutex

__all__ = [
    "InMemoryLockManager",
    "LockManager",
    "MetadataLockManager",
    "PathMutex",
    "RedisLockManager",
]
