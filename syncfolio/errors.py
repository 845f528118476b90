"""Exception hierarchy for syncfolio.

Every public mutation raises one of these so callers can present a
human-readable message and, for remote failures, a retry affordance.
"""

from typing import Any


class SyncfolioError(Exception):
    """Base exception for syncfolio.

    Attributes:
        details: Optional structured information (e.g., HTTP status, record id).
        cause: Optional original exception that triggered this error.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.details = details or {}
        self.cause = cause


class ConfigError(SyncfolioError):
    """Raised when the configuration cannot be used."""


class ValidationError(SyncfolioError):
    """Raised when a mutation is rejected before any state changes."""


class NotFoundError(SyncfolioError):
    """Raised when an operation references a record id that is not present."""


class CacheError(SyncfolioError):
    """Raised when the local SQLite cache cannot be read or written."""


class RemoteError(SyncfolioError):
    """Base class for failures reported by a remote document store."""


class RemoteReadError(RemoteError):
    """Raised when reading from the remote store fails."""


class RemoteReadTimeoutError(RemoteReadError, TimeoutError):
    """Raised when a remote read does not settle within its time limit."""


class RemoteWriteError(RemoteError):
    """Raised when a remote write fails (network, permission, quota).

    Local state is left unchanged, so retrying the same operation is safe.
    """


class RemoteTimeoutError(RemoteWriteError, TimeoutError):
    """Raised when a remote call does not settle within its time limit."""


class PartialBulkReplaceError(RemoteWriteError):
    """Raised when a bulk replace deleted the old documents but failed to write the new ones.

    The remote collection is left empty or partially written. Nothing is
    rolled back; re-running the import is the recovery path.
    """

    def __init__(
        self,
        message: str,
        *,
        deleted_count: int = 0,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, details=details, cause=cause)
        self.deleted_count = deleted_count
