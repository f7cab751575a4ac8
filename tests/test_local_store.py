"""Tests for local working store."""

from datetime import datetime, timezone

import pytest

from src.filing.errors import InvalidPathError, LocalFileNotFoundError, NotFoundError
from src.sync.local_store import LocalWorkingStore


@pytest.fixture
def store(tmp_path):
    return LocalWorkingStore(tmp_path / "work")


class TestLocalWorkingStore:
    """File I/O under the working root."""

    def test_creates_working_dir(self, tmp_path):
        """Constructing the store creates its root."""
        LocalWorkingStore(tmp_path / "new-root")
        assert (tmp_path / "new-root").is_dir()

    @pytest.mark.asyncio
    async def test_create_makes_parents(self, store, tmp_path):
        """Nested paths get their parent directories."""
        written = await store.create("a/b/c.txt", "hello")

        assert written == 5
        assert (tmp_path / "work" / "a" / "b" / "c.txt").read_text() == "hello"

    @pytest.mark.asyncio
    async def test_read_bytes_and_text(self, store):
        """read returns bytes unless an encoding is given."""
        await store.create("note.txt", "héllo")

        assert await store.read("note.txt") == "héllo".encode("utf-8")
        assert await store.read("note.txt", encoding="utf-8") == "héllo"

    @pytest.mark.asyncio
    async def test_update_overwrites(self, store):
        """update replaces content."""
        await store.create("a.txt", b"one")
        await store.update("a.txt", b"two")

        assert await store.read("a.txt") == b"two"

    @pytest.mark.asyncio
    async def test_read_missing_raises_not_found(self, store):
        """Missing files raise a NotFoundError subclass."""
        with pytest.raises(LocalFileNotFoundError) as exc_info:
            await store.read("missing.txt")

        assert isinstance(exc_info.value, NotFoundError)

    @pytest.mark.asyncio
    async def test_delete(self, store):
        """delete removes the file; deleting again is an error."""
        await store.create("a.txt", "x")
        await store.delete("a.txt")

        assert not await store.exists("a.txt")
        with pytest.raises(LocalFileNotFoundError):
            await store.delete("a.txt")

    @pytest.mark.asyncio
    async def test_list(self, store):
        """list returns sorted entry names; a missing directory is empty."""
        await store.create("docs/b.txt", "b")
        await store.create("docs/a.txt", "a")
        await store.create("top.txt", "t")

        assert await store.list("docs") == ["a.txt", "b.txt"]
        assert await store.list() == ["docs", "top.txt"]
        assert await store.list("nowhere") == []

    @pytest.mark.asyncio
    async def test_exists_is_false_for_directories(self, store):
        """exists only reports files."""
        await store.create("docs/a.txt", "a")

        assert await store.exists("docs/a.txt")
        assert not await store.exists("docs")

    @pytest.mark.asyncio
    async def test_get_mod_time(self, store):
        """Modification time is a UTC datetime."""
        await store.create("a.txt", "a")

        mod_time = await store.get_mod_time("a.txt")

        assert mod_time.tzinfo == timezone.utc
        assert abs((datetime.now(timezone.utc) - mod_time).total_seconds()) < 60

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["../escape.txt", "a/../../escape.txt", "", "   "])
    async def test_rejects_paths_outside_root(self, store, path):
        """Paths that are empty or resolve outside the root are refused."""
        with pytest.raises(InvalidPathError):
            await store.create(path, "nope")
