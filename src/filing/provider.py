"""Contract shared by the sync and Git filing providers."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class FilingProvider(Protocol):
    """What callers may rely on regardless of the configured provider."""

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def create(self, path: str, content: bytes | str) -> Any: ...

    async def read(self, path: str, encoding: str | None = None) -> bytes | str: ...

    async def update(self, path: str, content: bytes | str) -> Any: ...

    async def delete(self, path: str) -> Any: ...

    async def list(self, dir_path: str = ".") -> list[str]: ...

    async def lock_file(self, path: str, reason: str = "Editing") -> Any: ...

    async def unlock_file(self, path: str) -> None: ...
