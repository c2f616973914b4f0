"""Utility functions for Tragarz."""

import ipaddress
import json
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Optional
from urllib.parse import urlparse

from .exceptions import TragarzInvalidPathError

# =============================================================================
# Constants for file operations
# =============================================================================

# Read size used when hashing files (64 KB)
HASH_CHUNK_SIZE: int = 64 * 1024

# Number of files sent per upload request
DEFAULT_UPLOAD_BATCH_SIZE: int = 10

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Sessions live for one day
DEFAULT_SESSION_TTL: float = 24 * 60 * 60

CONFIG_FILE_NAME = ".tragarz.json"
IGNORE_FILE_NAME = ".tragarzignore"
BACKUP_DIR_NAME = ".tragarz-backup"

PROJECT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,50}$")


# =============================================================================
# Timestamp utilities
# =============================================================================


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso_timestamp(dt: datetime) -> str:
    """Format a datetime as an ISO 8601 string with a ``Z`` suffix for UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO format timestamp as sent by the server.

    Args:
        timestamp_str: ISO format timestamp string (e.g., "2025-01-15T10:30:00.000Z")

    Returns:
        Aware datetime in UTC, or None if the value is missing or unparsable
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
    except (ValueError, TypeError):
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# URL utilities
# =============================================================================


def _is_local_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_private


def normalize_url(url: str) -> str:
    """Normalize a server URL.

    A missing scheme becomes ``http://`` for localhost and private network
    addresses and ``https://`` for everything else. Trailing slashes are
    removed.

    Examples:
        >>> normalize_url("localhost:3000")
        'http://localhost:3000'
        >>> normalize_url("sync.example.com/")
        'https://sync.example.com'
    """
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        host = url.split("/", 1)[0].rsplit(":", 1)[0]
        scheme = "http://" if _is_local_host(host) else "https://"
        url = f"{scheme}{url}"
    return url.rstrip("/")


def is_valid_url(url: str) -> bool:
    """Check whether ``url`` is an http or https URL with a host."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


# =============================================================================
# Path utilities
# =============================================================================


def validate_relative_path(relative_path: str) -> str:
    """Validate a project-relative path and return it in normalized form.

    The check is purely lexical, so it runs before any filesystem access.

    Raises:
        TragarzInvalidPathError: If the path is empty, absolute, or escapes
            the project root
    """
    if not relative_path or "\x00" in relative_path:
        raise TragarzInvalidPathError(f"Invalid path: {relative_path!r}")

    posix = relative_path.replace("\\", "/")
    pure = PurePosixPath(posix)
    if pure.is_absolute() or re.match(r"^[A-Za-z]:", posix):
        raise TragarzInvalidPathError(f"Absolute paths are not allowed: {relative_path}")
    if any(part == ".." for part in pure.parts):
        raise TragarzInvalidPathError(f"Path escapes the project root: {relative_path}")

    parts = [part for part in pure.parts if part != "."]
    if not parts:
        raise TragarzInvalidPathError(f"Invalid path: {relative_path!r}")
    return "/".join(parts)


def resolve_within(root: Path, relative_path: str) -> Path:
    """Join ``relative_path`` onto ``root`` after validating it.

    Raises:
        TragarzInvalidPathError: If the path is malformed or would land
            outside ``root``
    """
    normalized = validate_relative_path(relative_path)
    target = root / normalized
    # Catches escapes through symlinked directories
    if not target.resolve().is_relative_to(root.resolve()):
        raise TragarzInvalidPathError(f"Path escapes the project root: {relative_path}")
    return target


def validate_project_name(name: str) -> bool:
    """Check a project name: 1-50 characters of letters, digits, ``_`` or ``-``."""
    return bool(name) and PROJECT_NAME_PATTERN.match(name) is not None


def prune_empty_dirs(start: Path, root: Path) -> None:
    """Remove ``start`` and its parents while they are empty, stopping at ``root``."""
    root = root.resolve()
    current = start.resolve()
    while current != root and current.is_relative_to(root):
        try:
            current.rmdir()
        except OSError:
            # Not empty or already gone
            return
        current = current.parent


def write_json_atomic(path: Path, data: Any) -> None:
    """Write ``data`` as JSON to ``path`` through a temporary sibling file.

    Readers see either the old file or the complete new one.

    Raises:
        OSError: If the file cannot be written
    """
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
