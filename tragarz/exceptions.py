"""Exception hierarchy for Tragarz."""

from typing import Any, Optional


class TragarzError(Exception):
    """Base class for all Tragarz errors."""


class TragarzConfigError(TragarzError):
    """Project configuration is missing or invalid."""


class TragarzNotFoundError(TragarzError):
    """A project, file or snapshot does not exist."""


class TragarzProjectNotFoundError(TragarzNotFoundError):
    """The requested project does not exist."""


class TragarzSnapshotNotFoundError(TragarzNotFoundError):
    """The snapshot archive or its metadata record is missing."""


class TragarzProjectExistsError(TragarzError):
    """A project with that name already exists."""


class TragarzInvalidPathError(TragarzError):
    """A path escapes the project root or is otherwise malformed."""


class TragarzConflictError(TragarzError):
    """Local and server copies diverged independently from the baseline.

    This is a report rather than a failure: it carries the conflicts so
    the caller can show them and pick a resolution policy.
    """

    def __init__(self, message: str, conflicts: Optional[list[Any]] = None):
        super().__init__(message)
        self.conflicts = conflicts or []


class TragarzIOError(TragarzError):
    """Reading or writing a file failed."""


class TragarzArchiveError(TragarzIOError):
    """Creating or extracting a snapshot archive failed."""


class TragarzRestoreError(TragarzError):
    """A snapshot restore failed part way.

    ``backup_id`` names the automatic backup taken before the live file set
    was touched, if one was created.
    """

    def __init__(self, message: str, backup_id: Optional[str] = None):
        super().__init__(message)
        self.backup_id = backup_id


class TragarzAPIError(TragarzError):
    """The server answered with an error."""


class TragarzAuthenticationError(TragarzAPIError):
    """The server rejected our credentials."""


class TragarzAuthExpiredError(TragarzAuthenticationError):
    """The session token expired. Safe to retry after re-authenticating."""


class TragarzPermissionError(TragarzAPIError):
    """The server refused access to the resource."""


class TragarzRateLimitError(TragarzAPIError):
    """Too many requests."""


class TragarzNetworkError(TragarzAPIError):
    """The server could not be reached."""


class TragarzInvalidResponseError(TragarzAPIError):
    """The server returned something we cannot parse."""


class TragarzTransferError(TragarzAPIError):
    """An upload or download did not complete."""
