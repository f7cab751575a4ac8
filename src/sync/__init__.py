"""Sync filing - local drafts kept in step with a remote file service."""

from .models import FileRecord, FileState, Lock, LockedFile, SyncStatus, SyncStatusReport, SyncSummary
from .local_store import LocalWorkingStore
from .metadata_store import MetadataStore
from .provider import SyncFilingProvider

__all__ = [
    "FileRecord",
    "FileState",
    "LocalWorkingStore",
    "Lock",
    "LockedFile",
    "MetadataStore",
    "SyncFilingProvider",
    "SyncStatus",
    "SyncStatusReport",
    "SyncSummary",
]
