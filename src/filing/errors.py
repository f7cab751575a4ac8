"""Filing error taxonomy."""


class FilingError(Exception):
    """Base class for all filing errors."""


class LockConflictError(FilingError):
    """Operation attempted on a path locked by someone else."""

    def __init__(self, path: str, holder: str | None = None, message: str | None = None):
        self.path = path
        self.holder = holder
        if message is None:
            if holder:
                message = f"File is locked by {holder}: {path}"
            else:
                message = f"File is locked: {path}"
        super().__init__(message)


class OwnershipError(FilingError):
    """Wrong user attempting to release a lock or finish a commit."""


class NotLockedError(FilingError):
    """Unlock requested for a path that holds no lock."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File is not locked: {path}")


class NotFoundError(FilingError):
    """Something that was asked for does not exist."""


class RemoteNotFoundError(NotFoundError):
    """Remote has no copy of the file (never pushed)."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File not found on remote: {path}")


class LocalFileNotFoundError(NotFoundError):
    """Working copy has no file at the path."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File does not exist in local store: {path}")


class PendingCommitNotFoundError(NotFoundError):
    """Commit id is not in the queue."""

    def __init__(self, commit_id: str):
        self.commit_id = commit_id
        super().__init__(f"Pending commit not found: {commit_id}")


class InvalidPathError(FilingError, ValueError):
    """Path is empty or escapes the sandbox root."""


class GitOperationError(FilingError):
    """A git command failed or timed out."""

    def __init__(
        self,
        message: str,
        command: str | None = None,
        stderr: str = "",
        stdout: str = "",
    ):
        self.command = command
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(message)


class PersistenceError(FilingError):
    """Metadata or queue file could not be read or written."""


class UnsupportedOperationError(FilingError):
    """Provider does not offer the requested capability."""


class ConfigurationError(FilingError):
    """Settings do not describe a usable provider."""
