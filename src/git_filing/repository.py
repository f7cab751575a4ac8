"""Async wrapper around a GitPython working copy."""

import asyncio
from pathlib import Path
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

import structlog
from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from src.filing.errors import GitOperationError

logger = structlog.get_logger()


def authenticated_url(repo_url: str, username: str | None, token: str | None) -> str:
    """Embed ``username:token`` in an http(s) URL. Other URLs are returned as-is."""
    if not (username and token):
        return repo_url

    parts = urlsplit(repo_url)
    if parts.scheme not in ("http", "https"):
        return repo_url

    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{quote(username, safe='')}:{quote(token, safe='')}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def redact_url(repo_url: str) -> str:
    """Strip credentials from a URL before logging it."""
    parts = urlsplit(repo_url)
    if not parts.password:
        return repo_url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"***@{host}", parts.path, parts.query, parts.fragment))


class GitRepository:
    """One local clone. Every command goes through a single lock and a timeout.

    GitPython is blocking, so commands run in a worker thread. On timeout the
    caller gets a GitOperationError; the git process itself is left to finish
    in its thread.
    """

    def __init__(self, local_path: str | Path, timeout: float = 120.0):
        self.local_path = Path(local_path).resolve()
        self.timeout = timeout
        self._lock = asyncio.Lock()
        self._repo: Repo | None = None

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            try:
                self._repo = Repo(self.local_path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise GitOperationError(f"Not a git repository: {self.local_path}") from e
        return self._repo

    def exists(self) -> bool:
        return (self.local_path / ".git").exists()

    async def _run(self, command: str, func, *args: Any) -> Any:
        async with self._lock:
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(func, *args),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError as e:
                raise GitOperationError(
                    f"git {command} timed out after {self.timeout}s",
                    command=command,
                ) from e
            except GitCommandError as e:
                stderr = (e.stderr or "").strip()
                stdout = (e.stdout or "").strip()
                raise GitOperationError(
                    f"git {command} failed: {stderr or stdout or e}",
                    command=command,
                    stderr=stderr,
                    stdout=stdout,
                ) from e

    async def git(self, command: str, *args: str) -> str:
        """Run ``git <command> <args>`` and return its stdout."""
        method = getattr(self.repo.git, command.replace("-", "_"))
        return await self._run(command, lambda: method(*args))

    # === Setup ===

    async def clone(self, repo_url: str) -> None:
        def _clone() -> Repo:
            self.local_path.parent.mkdir(parents=True, exist_ok=True)
            return Repo.clone_from(repo_url, self.local_path)

        self._repo = await self._run("clone", _clone)
        logger.info("Cloned repository", repo_url=redact_url(repo_url), local_path=str(self.local_path))

    async def configure_identity(self, name: str, email: str) -> None:
        def _configure() -> None:
            with self.repo.config_writer() as config:
                config.set_value("user", "name", name)
                config.set_value("user", "email", email)

        await self._run("config", _configure)

    async def checkout(self, branch: str) -> None:
        """Check out ``branch``, creating it to track ``origin/<branch>`` if needed."""
        try:
            await self.git("checkout", branch)
        except GitOperationError:
            await self.git("checkout", "-b", branch, "--track", f"origin/{branch}")

    async def current_branch(self) -> str:
        return (await self.git("rev-parse", "--abbrev-ref", "HEAD")).strip()

    # === Working tree ===

    async def add(self, path: str) -> None:
        await self.git("add", "--", path)

    async def remove(self, path: str) -> None:
        await self.git("rm", "-f", "--ignore-unmatch", "--", path)

    async def commit(self, message: str, files: list[str]) -> str:
        """Commit only ``files``. Returns the new commit sha."""
        await self.git("commit", "-m", message, "--", *files)
        return await self.head()

    async def head(self) -> str:
        return (await self.git("rev-parse", "HEAD")).strip()

    async def has_changes(self, files: list[str]) -> bool:
        """Whether any of ``files`` differs from HEAD, staged or not."""
        output = await self.git("diff", "--name-only", "HEAD", "--", *files)
        return bool(output.strip())

    async def status_lines(self) -> list[str]:
        output = await self.git("status", "--porcelain")
        return [line for line in output.splitlines() if line.strip()]

    # === Remote ===

    async def fetch(self) -> None:
        await self.git("fetch", "origin")

    async def ahead_behind(self, branch: str) -> tuple[int, int]:
        """Commits ahead of and behind ``origin/<branch>``."""
        output = await self.git(
            "rev-list", "--left-right", "--count", f"HEAD...origin/{branch}"
        )
        ahead, behind = output.split()
        return int(ahead), int(behind)

    async def pull(self, branch: str) -> None:
        await self.git("pull", "--no-rebase", "--no-edit", "origin", branch)

    async def reset_hard(self, ref: str) -> None:
        await self.git("reset", "--hard", ref)

    async def abort_merge(self) -> None:
        try:
            await self.git("merge", "--abort")
        except GitOperationError:
            # No merge in progress
            pass

    async def push(self, branch: str) -> None:
        await self.git("push", "origin", f"HEAD:{branch}")
