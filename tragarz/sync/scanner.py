"""Directory scanning utilities for sync operations."""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..exceptions import TragarzIOError
from .hasher import compute_file_hash
from .ignore import IgnorePredicate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalFile:
    """Represents a local file with its content fingerprint."""

    path: Path
    """Absolute path to the file"""

    relative_path: str
    """Relative path (using forward slashes for cross-platform compatibility)"""

    hash: str
    """SHA-256 hex digest of the content"""

    size: int
    """File size in bytes"""

    mtime: float
    """Last modification time (Unix timestamp)"""

    @classmethod
    def from_path(cls, file_path: Path, base_path: Path) -> "LocalFile":
        """Create LocalFile from a path, hashing its content.

        Args:
            file_path: Absolute path to the file
            base_path: Base path for calculating relative paths

        Returns:
            LocalFile instance

        Raises:
            TragarzIOError: If the file cannot be read
        """
        try:
            stat = file_path.stat()
        except OSError as e:
            raise TragarzIOError(f"Cannot stat {file_path}: {e}") from e

        return cls(
            path=file_path,
            # Use as_posix() to ensure forward slashes on all platforms
            relative_path=file_path.relative_to(base_path).as_posix(),
            hash=compute_file_hash(file_path),
            size=stat.st_size,
            mtime=stat.st_mtime,
        )


@dataclass
class ScanResult:
    """Files found by a scan plus the problems met along the way."""

    files: dict[str, LocalFile] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class DirectoryScanner:
    """Scans a sync root and fingerprints every regular file in it.

    Symbolic links are never followed. Hashing runs on a thread pool since
    files share no state with each other.

    Examples:
        >>> scanner = DirectoryScanner()
        >>> result = scanner.scan_local(Path("/sync/folder"), ignore=rules)
        >>> result.files["docs/readme.md"].hash
        '9f86d0...'
    """

    def __init__(self, max_workers: int = 4):
        """Initialize directory scanner.

        Args:
            max_workers: Number of threads used for hashing
        """
        self.max_workers = max(1, max_workers)

    def _collect(
        self,
        directory: Path,
        base_path: Path,
        ignore: Optional[IgnorePredicate],
        warnings: list[str],
    ) -> list[Path]:
        """Recursively list regular files that are not ignored."""
        candidates: list[Path] = []

        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            message = f"Could not read directory {directory}: {e}"
            logger.debug(message)
            warnings.append(message)
            return candidates

        for entry in entries:
            item = Path(entry.path)
            relative = item.relative_to(base_path).as_posix()

            if entry.is_symlink():
                logger.debug(f"Skipping symlink: {relative}")
                continue

            if entry.is_dir(follow_symlinks=False):
                if ignore is not None and ignore(relative + "/"):
                    logger.debug(f"Ignoring directory: {relative}/")
                    continue
                candidates.extend(self._collect(item, base_path, ignore, warnings))
            elif entry.is_file(follow_symlinks=False):
                if ignore is not None and ignore(relative):
                    logger.debug(f"Ignoring file: {relative}")
                    continue
                candidates.append(item)

        return candidates

    def scan_local(
        self, directory: Path, ignore: Optional[IgnorePredicate] = None
    ) -> ScanResult:
        """Scan a local directory.

        A file that cannot be read is left out of the result and reported in
        ``ScanResult.warnings``; the scan carries on with the other files.

        Args:
            directory: Root of the sync tree
            ignore: Predicate returning True for relative paths to skip

        Returns:
            ScanResult keyed by relative path
        """
        start = time.time()
        result = ScanResult()
        base_path = directory.resolve()
        paths = self._collect(base_path, base_path, ignore, result.warnings)

        def fingerprint(file_path: Path) -> Optional[LocalFile]:
            try:
                return LocalFile.from_path(file_path, base_path)
            except TragarzIOError as e:
                message = f"Could not process file {file_path.relative_to(base_path).as_posix()}: {e}"
                logger.debug(message)
                result.warnings.append(message)
                return None

        if self.max_workers > 1 and len(paths) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                local_files = list(executor.map(fingerprint, paths))
        else:
            local_files = [fingerprint(p) for p in paths]

        for local_file in local_files:
            if local_file is not None:
                result.files[local_file.relative_path] = local_file

        logger.debug(
            f"Local scan of {directory} took {time.time() - start:.2f}s "
            f"for {len(result.files)} file(s)"
        )
        return result
