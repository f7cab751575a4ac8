"""Remote provider contract consumed by the sync provider."""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from src.sync.models import Lock


@runtime_checkable
class RemoteProvider(Protocol):
    """Minimal object-store-like backend.

    ``read`` raises RemoteNotFoundError when the path has never been pushed.
    """

    async def create(self, path: str, content: bytes | str) -> None: ...

    async def read(self, path: str) -> bytes: ...

    async def update(self, path: str, content: bytes | str) -> None: ...

    async def delete(self, path: str) -> None: ...

    async def list(self, dir_path: str = ".") -> list[str]: ...


@runtime_checkable
class LockingRemote(Protocol):
    """Optional capability: remote-side advisory locks."""

    async def lock_file(self, path: str, user_id: str, reason: str = "Editing") -> None: ...

    async def unlock_file(self, path: str, user_id: str) -> None: ...

    async def get_lock(self, path: str) -> "Lock | None": ...
