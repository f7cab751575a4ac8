"""Remote backends for the sync provider."""

from .base import LockingRemote, RemoteProvider
from .http import HttpRemoteProvider
from .local import LocalRemoteProvider

__all__ = [
    "HttpRemoteProvider",
    "LocalRemoteProvider",
    "LockingRemote",
    "RemoteProvider",
]
