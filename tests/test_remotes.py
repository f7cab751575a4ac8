"""Tests for bundled remote providers."""

import base64
import json

import httpx
import pytest

from src.filing.config import Settings
from src.filing.errors import InvalidPathError, LockConflictError, OwnershipError, RemoteNotFoundError
from src.remotes.base import LockingRemote, RemoteProvider
from src.remotes.http import HttpRemoteProvider
from src.remotes.local import LocalRemoteProvider


class TestLocalRemoteProvider:
    """Directory-backed remote."""

    @pytest.fixture
    def remote(self, tmp_path):
        return LocalRemoteProvider(tmp_path / "remote")

    def test_satisfies_protocols(self, remote):
        assert isinstance(remote, RemoteProvider)
        assert isinstance(remote, LockingRemote)

    @pytest.mark.asyncio
    async def test_round_trip(self, remote):
        """Stored content reads back as bytes."""
        await remote.create("docs/a.txt", "hello")
        await remote.update("docs/a.txt", "hello again")

        assert await remote.read("docs/a.txt") == b"hello again"
        assert await remote.list("docs") == ["a.txt"]

    @pytest.mark.asyncio
    async def test_missing_file(self, remote):
        """Reading or deleting an unknown file raises RemoteNotFoundError."""
        with pytest.raises(RemoteNotFoundError):
            await remote.read("nope.txt")
        with pytest.raises(RemoteNotFoundError):
            await remote.delete("nope.txt")

    @pytest.mark.asyncio
    async def test_escape_refused(self, remote):
        with pytest.raises(InvalidPathError):
            await remote.create("../outside.txt", "x")

    @pytest.mark.asyncio
    async def test_locks(self, remote):
        """Remote locks are exclusive and owner-released."""
        await remote.lock_file("a.txt", "alice", "Review")

        assert (await remote.get_lock("a.txt")).reason == "Review"
        with pytest.raises(LockConflictError):
            await remote.lock_file("a.txt", "bob")
        with pytest.raises(OwnershipError):
            await remote.unlock_file("a.txt", "bob")

        await remote.unlock_file("a.txt", "alice")
        assert await remote.get_lock("a.txt") is None
        # Unlocking a free path is harmless
        await remote.unlock_file("a.txt", "alice")

    @pytest.mark.asyncio
    async def test_lock_dir_hidden_from_listing(self, remote):
        """Lock sidecars never show up as files."""
        await remote.create("a.txt", "x")
        await remote.lock_file("a.txt", "alice")

        assert await remote.list() == ["a.txt"]


class TestHttpRemoteProvider:
    """Filing HTTP API client."""

    @pytest.fixture
    def settings(self):
        return Settings(remote_api_root="http://filing.test", remote_api_key="secret-key")

    @staticmethod
    def make_remote(settings, handler) -> HttpRemoteProvider:
        return HttpRemoteProvider(settings, transport=httpx.MockTransport(handler))

    def test_is_not_a_locking_remote(self, settings):
        remote = HttpRemoteProvider(settings)
        assert isinstance(remote, RemoteProvider)
        assert not isinstance(remote, LockingRemote)

    @pytest.mark.asyncio
    async def test_upload(self, settings):
        """create posts base64 content with the API key."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        await self.make_remote(settings, handler).create("docs/a.txt", b"\x00binary")

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/services/filing/api/upload"
        assert request.headers["X-API-Key"] == "secret-key"
        body = json.loads(request.content)
        assert body["path"] == "docs/a.txt"
        assert body["encoding"] == "base64"
        assert base64.b64decode(body["data"]) == b"\x00binary"

    @pytest.mark.asyncio
    async def test_download(self, settings):
        """read returns the raw response body."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/services/filing/api/download/docs/a.txt"
            return httpx.Response(200, content=b"file body")

        assert await self.make_remote(settings, handler).read("docs/a.txt") == b"file body"

    @pytest.mark.asyncio
    async def test_download_404_is_not_found(self, settings):
        """A 404 for a file maps to RemoteNotFoundError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        with pytest.raises(RemoteNotFoundError):
            await self.make_remote(settings, handler).read("missing.txt")

    @pytest.mark.asyncio
    async def test_server_error_propagates(self, settings):
        """Other failures surface as HTTP errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        with pytest.raises(httpx.HTTPStatusError):
            await self.make_remote(settings, handler).read("a.txt")

    @pytest.mark.asyncio
    async def test_delete_and_list(self, settings):
        """delete and list hit their endpoints."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "DELETE":
                return httpx.Response(204)
            return httpx.Response(200, json=["a.txt", "b.txt"])

        remote = self.make_remote(settings, handler)
        await remote.delete("a.txt")
        names = await remote.list("docs")

        assert names == ["a.txt", "b.txt"]
        assert seen[0].url.path == "/services/filing/api/delete/a.txt"
        assert seen[1].url.params["directory"] == "docs"

    @pytest.mark.asyncio
    async def test_no_key_no_header(self):
        """Without an API key no auth header is sent."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        remote = self.make_remote(Settings(remote_api_root="http://filing.test"), handler)
        await remote.list()

        assert "X-API-Key" not in seen[0].headers
