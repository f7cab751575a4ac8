"""Local working store - sandboxed draft copies on disk."""

import asyncio
import os
from datetime import datetime, timezone
from pathlib import Path

import structlog

from src.filing.errors import InvalidPathError, LocalFileNotFoundError

logger = structlog.get_logger()

Content = bytes | str


def to_bytes(content: Content) -> bytes:
    if isinstance(content, str):
        return content.encode("utf-8")
    return bytes(content)


def resolve_under(root: Path, path: str) -> Path:
    """Resolve ``path`` relative to ``root``, refusing anything outside it."""
    if not path or not str(path).strip():
        raise InvalidPathError("Invalid path: must be a non-empty string")

    full = (root / path.lstrip("/")).resolve()
    if full != root and root not in full.parents:
        raise InvalidPathError(f"Path escapes working directory: {path}")
    return full


class LocalWorkingStore:
    """File I/O primitive scoped to a working root. No sync logic lives here."""

    def __init__(self, working_dir: str | Path = "./workspace"):
        self.working_dir = Path(working_dir).resolve()
        self.working_dir.mkdir(parents=True, exist_ok=True)

    def _full_path(self, path: str) -> Path:
        return resolve_under(self.working_dir, path)

    async def create(self, path: str, content: Content) -> int:
        """Write a file, creating parent directories. Returns bytes written."""
        full = self._full_path(path)
        data = to_bytes(content)

        def write() -> None:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(data)

        await asyncio.to_thread(write)
        logger.debug("Wrote local file", path=path, size=len(data))
        return len(data)

    async def update(self, path: str, content: Content) -> int:
        # Same operation on disk: last write wins
        return await self.create(path, content)

    async def read(self, path: str, encoding: str | None = None) -> Content:
        full = self._full_path(path)
        try:
            data = await asyncio.to_thread(full.read_bytes)
        except FileNotFoundError as e:
            raise LocalFileNotFoundError(path) from e

        if encoding:
            return data.decode(encoding)
        return data

    async def delete(self, path: str) -> None:
        full = self._full_path(path)
        try:
            await asyncio.to_thread(full.unlink)
        except FileNotFoundError as e:
            raise LocalFileNotFoundError(path) from e
        logger.debug("Deleted local file", path=path)

    async def list(self, dir_path: str = ".") -> list[str]:
        """Entry names in a directory; empty if the directory does not exist."""
        full = self._full_path(dir_path)
        try:
            return sorted(await asyncio.to_thread(os.listdir, full))
        except (FileNotFoundError, NotADirectoryError):
            return []

    async def exists(self, path: str) -> bool:
        full = self._full_path(path)
        return await asyncio.to_thread(full.is_file)

    async def stat(self, path: str) -> os.stat_result:
        full = self._full_path(path)
        try:
            return await asyncio.to_thread(full.stat)
        except FileNotFoundError as e:
            raise LocalFileNotFoundError(path) from e

    async def get_mod_time(self, path: str) -> datetime:
        stats = await self.stat(path)
        return datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc)
