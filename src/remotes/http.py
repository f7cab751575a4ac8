"""Filing HTTP API client - a remote backed by another filing service."""

import base64
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from src.filing.config import Settings
from src.filing.errors import RemoteNotFoundError
from src.sync.local_store import Content, to_bytes

logger = structlog.get_logger()

API_PREFIX = "/services/filing/api"


class HttpRemoteProvider:
    """Remote filing service reached over HTTP."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if self.settings.remote_api_key:
            return {"X-API-Key": self.settings.remote_api_key}
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        file_path: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make request to the filing API."""
        async with httpx.AsyncClient(
            base_url=self.settings.remote_api_root,
            timeout=self.settings.remote_timeout_seconds,
            headers=self._headers(),
            transport=self._transport,
        ) as client:
            resp = await client.request(method, f"{API_PREFIX}{path}", **kwargs)
            if resp.status_code == 404 and file_path is not None:
                raise RemoteNotFoundError(file_path)
            resp.raise_for_status()
            return resp

    async def create(self, path: str, content: Content) -> None:
        data = to_bytes(content)
        await self._request(
            "POST",
            "/upload",
            json={
                "path": path,
                "data": base64.b64encode(data).decode("ascii"),
                "encoding": "base64",
            },
        )
        logger.info("Uploaded file", path=path, size=len(data))

    async def update(self, path: str, content: Content) -> None:
        await self.create(path, content)

    async def read(self, path: str) -> bytes:
        resp = await self._request("GET", f"/download/{quote(path, safe='')}", file_path=path)
        logger.debug("Downloaded file", path=path, size=len(resp.content))
        return resp.content

    async def delete(self, path: str) -> None:
        await self._request("DELETE", f"/delete/{quote(path, safe='')}", file_path=path)
        logger.info("Deleted remote file", path=path)

    async def list(self, dir_path: str = ".") -> list[str]:
        resp = await self._request("GET", "/list", params={"directory": dir_path})
        return list(resp.json())
