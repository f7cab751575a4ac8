"""Git filing provider - staged edits, deferred commits, latest-wins sync."""

from __future__ import annotations

from pathlib import PurePosixPath

import structlog
from pydantic import BaseModel

from src.coordination.file_locks import InMemoryLockManager, LockManager
from src.coordination.mutex import PathMutex
from src.filing.config import Settings
from src.filing.errors import (
    ConfigurationError,
    GitOperationError,
    InvalidPathError,
    LockConflictError,
)
from src.filing.events import (
    EventBus,
    FileCreated,
    FileDeleted,
    FileLocked,
    FileUnlocked,
    FileUpdated,
    GitBranchWarning,
    GitCloned,
    GitCommitted,
    GitConflictsResolved,
    GitFetched,
    GitFetchError,
    GitInitialized,
    GitPulled,
    GitPushed,
)
from src.filing.scheduler import RecurringTask
from src.sync.local_store import Content, LocalWorkingStore
from src.sync.models import Lock

from .commit_queue import CommitQueue, PendingCommit
from .repository import GitRepository, authenticated_url, redact_url

logger = structlog.get_logger()

PULL_CONFLICT_MARKERS = ("conflict", "merge", "overwritten")
PUSH_REJECTED_MARKERS = ("rejected", "non-fast-forward", "fetch first")


def _mentions(error: GitOperationError, markers: tuple[str, ...]) -> bool:
    text = f"{error} {error.stderr} {error.stdout}".lower()
    return any(marker in text for marker in markers)


class CommitResult(BaseModel):
    commit_id: str
    hexsha: str
    commit_message: str
    files: list[str]
    user_id: str
    # False when an earlier commit already carried these changes
    committed: bool = True


class GitStatus(BaseModel):
    """Working copy status plus provider settings."""
    branch: str
    user_id: str
    status: list[str]
    ahead: int
    behind: int
    pending_commits: int
    locked_files: dict[str, Lock]
    auto_fetch_enabled: bool
    auto_fetch_running: bool
    fetch_interval: float


class GitFilingProvider:
    """Files in a Git working copy, committed only with a human-written message.

    Writes are staged and queued as pending commits; ``commit_with_message``
    turns one into a real commit. ``fetch`` keeps the copy current and resolves
    pull conflicts by taking the remote side ("latest wins").
    """

    def __init__(
        self,
        settings: Settings,
        events: EventBus | None = None,
        commit_queue: CommitQueue | None = None,
        lock_manager: LockManager | None = None,
        repository: GitRepository | None = None,
    ):
        self.settings = settings
        self.events = events or EventBus()
        self.user_id = settings.user_id
        self.branch = settings.git_branch

        self.repository = repository or GitRepository(
            settings.git_local_path,
            timeout=settings.git_timeout_seconds,
        )
        self.local = LocalWorkingStore(self.repository.local_path)
        self.commit_queue = commit_queue or CommitQueue(settings.commit_queue_dir, self.events)
        self.locks = lock_manager or InMemoryLockManager()

        self._mutex = PathMutex()
        self._auto_fetch = RecurringTask(
            "fetch",
            settings.fetch_interval_seconds,
            self.fetch,
            self.events,
        )
        self._initialized = False

    async def initialize(self) -> None:
        """Clone if needed, set the commit identity and check out the branch."""
        if self._initialized:
            return

        repo_url = self.settings.git_repo_url

        if not self.repository.exists():
            if not repo_url:
                raise ConfigurationError(
                    f"No git repository at {self.repository.local_path} and no repo URL configured"
                )
            url = authenticated_url(repo_url, self.settings.git_username, self.settings.git_token)
            await self.repository.clone(url)
            self.events.emit(
                GitCloned(repo_url=redact_url(repo_url), local_path=str(self.repository.local_path))
            )

        await self.repository.configure_identity(
            self.settings.git_user_name,
            self.settings.git_user_email,
        )

        try:
            await self.repository.checkout(self.branch)
        except GitOperationError as e:
            # Fresh remote with no commits yet; keep whatever HEAD we have
            logger.warning("Could not check out branch", branch=self.branch, error=str(e))
            self.events.emit(GitBranchWarning(branch=self.branch, error=str(e)))

        await self.commit_queue.initialize()
        self._initialized = True

        logger.info(
            "Git provider initialized",
            local_path=str(self.repository.local_path),
            branch=self.branch,
            user_id=self.user_id,
        )
        self.events.emit(
            GitInitialized(
                repo_url=redact_url(repo_url) if repo_url else "",
                local_path=str(self.repository.local_path),
                branch=self.branch,
                user_id=self.user_id,
            )
        )

        if self.settings.auto_fetch:
            self.start_auto_fetch()

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def close(self) -> None:
        """Stop auto-fetch, wait for a running fetch, release lock backends."""
        self.stop_auto_fetch()
        await self._auto_fetch.drain()
        await self.locks.close()

    # === Auto fetch ===

    def start_auto_fetch(self) -> None:
        self._auto_fetch.start()

    def stop_auto_fetch(self) -> None:
        self._auto_fetch.stop()

    # === Helpers ===

    @staticmethod
    def _check_path(path: str) -> None:
        parts = PurePosixPath(path.lstrip("/")).parts
        if parts and parts[0] == ".git":
            raise InvalidPathError(f"Refusing to touch git internals: {path}")

    async def _check_not_locked_by_other(self, path: str) -> None:
        lock = await self.locks.holder(path)
        if lock is not None and lock.user_id != self.user_id:
            raise LockConflictError(path, holder=lock.user_id)

    async def _write(self, path: str, content: Content, operation: str) -> str:
        self._check_path(path)

        async with self._mutex.hold(path):
            await self._check_not_locked_by_other(path)

            size = await self.local.create(path, content)
            await self.repository.add(path)

            return await self.commit_queue.add_pending_commit(
                [path],
                self.user_id,
                {"operation": operation, "size": size},
            )

    # === File operations ===

    async def create(self, path: str, content: Content) -> str:
        """Write and stage a file. Returns the pending commit id."""
        await self._ensure_initialized()

        commit_id = await self._write(path, content, "create")

        logger.info("Created file", path=path, commit_id=commit_id)
        self.events.emit(FileCreated(path=path, commit_id=commit_id))
        return commit_id

    async def update(self, path: str, content: Content) -> str:
        await self._ensure_initialized()

        commit_id = await self._write(path, content, "update")

        logger.info("Updated file", path=path, commit_id=commit_id)
        self.events.emit(FileUpdated(path=path, commit_id=commit_id))
        return commit_id

    async def delete(self, path: str) -> str | None:
        """Remove and stage a deletion. A missing file is a no-op (returns None)."""
        await self._ensure_initialized()
        self._check_path(path)

        async with self._mutex.hold(path):
            await self._check_not_locked_by_other(path)

            if not await self.local.exists(path):
                logger.debug("Delete of missing file ignored", path=path)
                return None

            await self.repository.remove(path)
            commit_id = await self.commit_queue.add_pending_commit(
                [path],
                self.user_id,
                {"operation": "delete"},
            )

        logger.info("Deleted file", path=path, commit_id=commit_id)
        self.events.emit(FileDeleted(path=path, commit_id=commit_id))
        return commit_id

    async def read(self, path: str, encoding: str | None = None) -> Content:
        await self._ensure_initialized()
        self._check_path(path)
        return await self.local.read(path, encoding)

    async def list(self, dir_path: str = ".") -> list[str]:
        """Directory entries, hiding dot-files other than ``.gitkeep``."""
        await self._ensure_initialized()

        names = await self.local.list(dir_path)
        return [name for name in names if not name.startswith(".") or name == ".gitkeep"]

    # === Commits ===

    async def commit_with_message(
        self,
        commit_id: str,
        commit_message: str,
        user_id: str | None = None,
    ) -> CommitResult:
        """Turn a pending commit into a real one.

        If ``git commit`` fails the change set goes back on the queue, marked
        as a retry, and the error is raised. A change set whose files already
        match HEAD (an earlier commit on the same paths took the working-tree
        content) is completed without a new commit.
        """
        await self._ensure_initialized()
        user_id = user_id or self.user_id

        completed = await self.commit_queue.complete_pending_commit(
            commit_id,
            commit_message,
            user_id,
        )

        try:
            if not await self.repository.has_changes(completed.files):
                hexsha = await self.repository.head()
                logger.info(
                    "Nothing to commit, changes already in HEAD",
                    commit_id=commit_id,
                    hexsha=hexsha,
                    files=completed.files,
                )
                return CommitResult(
                    commit_id=commit_id,
                    hexsha=hexsha,
                    commit_message=commit_message,
                    files=completed.files,
                    user_id=user_id,
                    committed=False,
                )

            hexsha = await self.repository.commit(commit_message, completed.files)
        except GitOperationError as e:
            new_id = await self.commit_queue.requeue(completed)
            logger.error(
                "Commit failed, change requeued",
                commit_id=commit_id,
                requeued_as=new_id,
                error=str(e),
            )
            raise

        logger.info("Committed", commit_id=commit_id, hexsha=hexsha, files=completed.files)
        self.events.emit(
            GitCommitted(
                commit_id=commit_id,
                commit_message=commit_message,
                files=completed.files,
                hexsha=hexsha,
                user_id=user_id,
            )
        )

        return CommitResult(
            commit_id=commit_id,
            hexsha=hexsha,
            commit_message=commit_message,
            files=completed.files,
            user_id=user_id,
        )

    async def cancel_commit(self, commit_id: str, user_id: str | None = None) -> PendingCommit:
        """Drop a pending commit. Its files stay staged in the index."""
        await self._ensure_initialized()
        return await self.commit_queue.cancel_pending_commit(commit_id, user_id or self.user_id)

    async def get_pending_commits(self, user_id: str | None = None) -> list[PendingCommit]:
        await self._ensure_initialized()
        if user_id is None:
            return self.commit_queue.get_all_pending_commits()
        return self.commit_queue.get_pending_commits_by_user(user_id)

    # === Remote sync ===

    async def fetch(self) -> int:
        """Fetch and, if behind, pull. Returns how many commits were behind.

        A pull that conflicts is resolved by hard-resetting to
        ``origin/<branch>``: remote changes win over local uncommitted work.
        """
        await self._ensure_initialized()

        try:
            await self.repository.fetch()
            _, behind = await self.repository.ahead_behind(self.branch)
        except GitOperationError as e:
            logger.warning("Fetch failed", error=str(e))
            self.events.emit(GitFetchError(error=str(e)))
            raise

        self.events.emit(GitFetched(behind=behind))

        if behind == 0:
            return 0

        try:
            await self.repository.pull(self.branch)
            strategy = "merge"
        except GitOperationError as e:
            if not _mentions(e, PULL_CONFLICT_MARKERS):
                logger.warning("Pull failed", error=str(e))
                self.events.emit(GitFetchError(error=str(e)))
                raise

            logger.warning("Pull conflict, resetting to remote", branch=self.branch, error=str(e))
            await self.repository.abort_merge()
            await self.repository.reset_hard(f"origin/{self.branch}")
            strategy = "latest-wins"
            self.events.emit(GitConflictsResolved())

        logger.info("Pulled remote changes", behind=behind, strategy=strategy)
        self.events.emit(GitPulled(strategy=strategy))
        return behind

    async def push(self) -> None:
        """Push the branch, fetching and retrying once if the remote moved on."""
        await self._ensure_initialized()

        try:
            await self.repository.push(self.branch)
        except GitOperationError as e:
            if not _mentions(e, PUSH_REJECTED_MARKERS):
                raise

            logger.info("Push rejected, fetching and retrying", branch=self.branch)
            await self.fetch()
            await self.repository.push(self.branch)

            logger.info("Pushed", branch=self.branch, retry=True)
            self.events.emit(GitPushed(branch=self.branch, retry=True))
            return

        logger.info("Pushed", branch=self.branch)
        self.events.emit(GitPushed(branch=self.branch))

    # === Locks ===

    async def lock_file(self, path: str, reason: str = "Editing") -> Lock:
        await self._ensure_initialized()

        lock = await self.locks.acquire(path, self.user_id, reason)

        logger.info("Locked file", path=path, user_id=self.user_id, reason=reason)
        self.events.emit(FileLocked(path=path, user_id=self.user_id, reason=reason))
        return lock

    async def unlock_file(self, path: str) -> None:
        await self._ensure_initialized()

        await self.locks.release(path, self.user_id)

        logger.info("Unlocked file", path=path, user_id=self.user_id)
        self.events.emit(FileUnlocked(path=path, user_id=self.user_id))

    # === Status ===

    async def get_status(self) -> GitStatus:
        await self._ensure_initialized()

        status = await self.repository.status_lines()
        try:
            ahead, behind = await self.repository.ahead_behind(self.branch)
        except GitOperationError:
            # No origin/<branch> yet
            ahead, behind = 0, 0

        return GitStatus(
            branch=self.branch,
            user_id=self.user_id,
            status=status,
            ahead=ahead,
            behind=behind,
            pending_commits=self.commit_queue.get_pending_count(),
            locked_files=await self.locks.locked_paths(),
            auto_fetch_enabled=self.settings.auto_fetch,
            auto_fetch_running=self._auto_fetch.running,
            fetch_interval=self._auto_fetch.interval,
        )
