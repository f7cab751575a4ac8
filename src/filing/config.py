"""Configuration management."""

from enum import Enum
from pathlib import Path

from pydantic_settings import BaseSettings


class ProviderType(str, Enum):
    """Filing provider variants."""
    SYNC = "sync"
    GIT = "git"


class RemoteType(str, Enum):
    """Remote backends the sync provider can talk to."""
    LOCAL = "local"
    HTTP = "http"


class LockBackend(str, Enum):
    """Where advisory locks are kept."""
    MEMORY = "memory"
    METADATA = "metadata"
    REDIS = "redis"


class Settings(BaseSettings):
    """Filing settings from environment."""

    # Provider selection
    provider_type: ProviderType = ProviderType.SYNC
    user_id: str = "default-user"

    # Sync provider
    working_dir: Path = Path("./workspace")
    metadata_dir: Path = Path("./.sync")
    sync_interval_seconds: float = 30.0
    auto_sync: bool = False

    # Remote backend (sync provider)
    remote_type: RemoteType = RemoteType.LOCAL
    remote_dir: Path = Path("./remote")
    remote_api_root: str = "http://localhost:3000"
    remote_api_key: str | None = None
    remote_timeout_seconds: float = 30.0

    # Git provider
    git_repo_url: str | None = None
    git_local_path: Path = Path("./git-repo")
    git_branch: str = "main"
    git_user_name: str = "Filing User"
    git_user_email: str = "user@example.com"
    git_username: str | None = None
    git_token: str | None = None
    git_queue_dir: Path | None = None  # defaults to <git_local_path>/.git/filing-queue
    fetch_interval_seconds: float = 30.0
    auto_fetch: bool = False
    git_timeout_seconds: float = 120.0

    # Coordination
    lock_backend: LockBackend = LockBackend.MEMORY
    redis_url: str = "redis://localhost:6379"
    lock_namespace: str = "filing"
    file_lock_ttl_seconds: int = 1800  # 30 minutes

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "FILING_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def commit_queue_dir(self) -> Path:
        """Directory holding pending-commits.json for the Git provider."""
        if self.git_queue_dir is not None:
            return self.git_queue_dir
        return self.git_local_path / ".git" / "filing-queue"
