"""Build providers from Settings."""

import structlog

from src.coordination.file_locks import (
    InMemoryLockManager,
    LockManager,
    MetadataLockManager,
    RedisLockManager,
)
from src.git_filing.provider import GitFilingProvider
from src.remotes.base import RemoteProvider
from src.remotes.http import HttpRemoteProvider
from src.remotes.local import LocalRemoteProvider
from src.sync.metadata_store import MetadataStore
from src.sync.provider import SyncFilingProvider

from .config import LockBackend, ProviderType, RemoteType, Settings
from .errors import ConfigurationError
from .events import EventBus
from .provider import FilingProvider

logger = structlog.get_logger()


def create_remote_provider(settings: Settings) -> RemoteProvider:
    match settings.remote_type:
        case RemoteType.LOCAL:
            return LocalRemoteProvider(settings.remote_dir)
        case RemoteType.HTTP:
            return HttpRemoteProvider(settings)
        case _:
            raise ConfigurationError(f"Unknown remote type: {settings.remote_type}")


def create_lock_manager(
    settings: Settings,
    metadata: MetadataStore | None = None,
) -> LockManager:
    """Lock backend for the Git provider.

    The metadata backend needs a MetadataStore; one over ``metadata_dir`` is
    created when none is passed.
    """
    match settings.lock_backend:
        case LockBackend.MEMORY:
            return InMemoryLockManager()
        case LockBackend.METADATA:
            if metadata is None:
                metadata = MetadataStore(settings.metadata_dir, settings.user_id)
            return MetadataLockManager(metadata)
        case LockBackend.REDIS:
            return RedisLockManager(settings)
        case _:
            raise ConfigurationError(f"Unknown lock backend: {settings.lock_backend}")


def create_filing_provider(
    settings: Settings,
    events: EventBus | None = None,
) -> FilingProvider:
    """Provider for ``settings.provider_type``. Call ``initialize()`` before use."""
    events = events or EventBus()

    match settings.provider_type:
        case ProviderType.SYNC:
            provider = SyncFilingProvider(settings, create_remote_provider(settings), events)
        case ProviderType.GIT:
            if not settings.git_repo_url and not (settings.git_local_path / ".git").exists():
                raise ConfigurationError("Git provider requires git_repo_url or an existing clone")
            provider = GitFilingProvider(
                settings,
                events,
                lock_manager=create_lock_manager(settings),
            )
        case _:
            raise ConfigurationError(f"Unknown provider type: {settings.provider_type}")

    logger.info("Created filing provider", provider_type=settings.provider_type.value, user_id=settings.user_id)
    return provider
