"""Git filing - staged edits committed later with a human-written message."""

from .commit_queue import CommitQueue, CompletedCommit, PendingCommit, QueueStats, UserQueueStats
from .provider import CommitResult, GitFilingProvider, GitStatus
from .repository import GitRepository

__all__ = [
    "CommitQueue",
    "CommitResult",
    "CompletedCommit",
    "GitFilingProvider",
    "GitRepository",
    "GitStatus",
    "PendingCommit",
    "QueueStats",
    "UserQueueStats",
]
