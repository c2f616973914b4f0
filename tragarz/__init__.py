"""Tragarz - file synchronization between a local directory and a project server."""

from .api import TragarzClient
from .config import ConfigManager, ProjectConfig
from .exceptions import (
    TragarzAPIError,
    TragarzArchiveError,
    TragarzAuthenticationError,
    TragarzAuthExpiredError,
    TragarzConfigError,
    TragarzConflictError,
    TragarzError,
    TragarzInvalidPathError,
    TragarzInvalidResponseError,
    TragarzIOError,
    TragarzNetworkError,
    TragarzNotFoundError,
    TragarzPermissionError,
    TragarzProjectExistsError,
    TragarzProjectNotFoundError,
    TragarzRateLimitError,
    TragarzRestoreError,
    TragarzSnapshotNotFoundError,
    TragarzTransferError,
)
from .projects import ProjectStore
from .sessions import Session, SessionStore
from .snapshots import RestoreResult, Snapshot, SnapshotEngine

__all__ = [
    "TragarzClient",
    "ConfigManager",
    "ProjectConfig",
    "ProjectStore",
    "Session",
    "SessionStore",
    "Snapshot",
    "SnapshotEngine",
    "RestoreResult",
    "TragarzError",
    "TragarzAPIError",
    "TragarzArchiveError",
    "TragarzAuthenticationError",
    "TragarzAuthExpiredError",
    "TragarzConfigError",
    "TragarzConflictError",
    "TragarzInvalidPathError",
    "TragarzInvalidResponseError",
    "TragarzIOError",
    "TragarzNetworkError",
    "TragarzNotFoundError",
    "TragarzPermissionError",
    "TragarzProjectExistsError",
    "TragarzProjectNotFoundError",
    "TragarzRateLimitError",
    "TragarzRestoreError",
    "TragarzSnapshotNotFoundError",
    "TragarzTransferError",
]
