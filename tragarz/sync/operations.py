"""File transfer and local file operations used by the sync engine."""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from send2trash import send2trash

from ..exceptions import TragarzIOError, TragarzTransferError
from ..utils import BACKUP_DIR_NAME, prune_empty_dirs, resolve_within, utc_now
from .hasher import compute_file_hash
from .scanner import LocalFile

if TYPE_CHECKING:
    from ..api import TragarzClient

logger = logging.getLogger(__name__)


class SyncOperations:
    """Unified operations for upload/download with common interface."""

    def __init__(self, client: "TragarzClient", project_name: str, root: Path):
        """Initialize sync operations.

        Args:
            client: Tragarz API client
            project_name: Project on the server
            root: Local sync root
        """
        self.client = client
        self.project_name = project_name
        self.root = root

    def upload_batch(self, files: list[LocalFile]) -> dict[str, Optional[str]]:
        """Upload a batch of files.

        Returns:
            Map of stored path to the hash the server reported for it
        """
        return self.client.upload_files(self.project_name, files)

    def download_file(self, relative_path: str, expected_hash: str) -> Path:
        """Download a server file into the sync root and verify it.

        The content goes to a temporary file beside the target and replaces
        the target only once its hash matches ``expected_hash``, so a bad
        transfer leaves the local copy as it was.

        Raises:
            TragarzInvalidPathError: If the path would land outside the root
            TragarzTransferError: If the content does not match
                ``expected_hash`` or cannot be moved into place
        """
        local_path = resolve_within(self.root, relative_path)
        try:
            local_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{local_path.name}.", suffix=".download", dir=local_path.parent
            )
            os.close(fd)
        except OSError as e:
            raise TragarzTransferError(
                f"Failed to prepare download of {relative_path}: {e}"
            ) from e

        tmp_path = Path(tmp_name)
        try:
            self.client.download_file(self.project_name, relative_path, tmp_path)
            actual = compute_file_hash(tmp_path)
            if actual != expected_hash:
                raise TragarzTransferError(
                    f"Hash mismatch after download of {relative_path}: "
                    f"expected {expected_hash[:8]}, got {actual[:8]}"
                )
            os.replace(tmp_path, local_path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise TragarzTransferError(f"Failed to write {relative_path}: {e}") from e
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return local_path

    def delete_remote(self, relative_path: str) -> None:
        self.client.delete_file(self.project_name, relative_path)

    def delete_local(self, relative_path: str, use_trash: bool = True) -> None:
        """Delete a local file and prune directories left empty.

        Args:
            relative_path: File to delete, relative to the root
            use_trash: If True, move to the system trash; otherwise delete
                permanently
        """
        local_path = resolve_within(self.root, relative_path)
        try:
            if use_trash:
                send2trash(str(local_path))
            else:
                local_path.unlink()
        except FileNotFoundError:
            logger.debug(f"Already gone: {relative_path}")
        except OSError as e:
            raise TragarzIOError(f"Failed to delete {relative_path}: {e}") from e
        prune_empty_dirs(local_path.parent, self.root)

    def backup_local_files(self, relative_paths: list[str]) -> Optional[Path]:
        """Copy local files aside before they are overwritten.

        Files go to ``.tragarz-backup/<timestamp>/<relative path>`` under
        the root. Paths with no local file are skipped.

        Returns:
            The backup directory, or None if nothing was copied
        """
        stamp = utc_now().strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        backup_dir = self.root / BACKUP_DIR_NAME / stamp
        copied = 0

        for relative_path in relative_paths:
            source = resolve_within(self.root, relative_path)
            if not source.is_file():
                continue
            target = backup_dir / relative_path
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
            except OSError as e:
                raise TragarzIOError(f"Failed to back up {relative_path}: {e}") from e
            copied += 1

        if not copied:
            return None
        logger.info(f"Backed up {copied} file(s) to {backup_dir}")
        return backup_dir
