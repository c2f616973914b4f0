"""Point-in-time snapshots of a project's files.

A snapshot is a zip archive of the project's ``files`` directory plus a JSON
metadata record beside it. The pair is committed in order: the archive is
written under a temporary name and renamed into place, then the metadata is
written. A snapshot exists only while both halves exist. Listing removes
metadata whose archive is gone and never looks at archives without
metadata, which are leftovers of an interrupted create. Temporary archives
of a create that crashed part way are removed once they are an hour old.
"""

import json
import logging
import os
import shutil
import tempfile
import time
import uuid
import zipfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .exceptions import (
    TragarzArchiveError,
    TragarzError,
    TragarzInvalidPathError,
    TragarzIOError,
    TragarzRestoreError,
    TragarzSnapshotNotFoundError,
)
from .projects import ProjectStore
from .utils import (
    format_iso_timestamp,
    parse_iso_timestamp,
    utc_now,
    validate_relative_path,
    write_json_atomic,
)

logger = logging.getLogger(__name__)

STALE_TEMP_AGE = 3600
"""Seconds after which an unfinished snapshot archive counts as abandoned"""


@dataclass(frozen=True)
class Snapshot:
    """Metadata of a committed snapshot."""

    id: str
    """UUID4 string, also the archive's file name"""

    project_name: str
    description: str
    created_at: datetime

    file_count: int
    """Number of files in the archive"""

    size_bytes: int
    """Size of the archive on disk"""

    is_auto_backup: bool = False
    """Taken automatically before a restore"""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectName": self.project_name,
            "description": self.description,
            "createdAt": format_iso_timestamp(self.created_at),
            "fileCount": self.file_count,
            "sizeBytes": self.size_bytes,
            "isAutoBackup": self.is_auto_backup,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        created_at = parse_iso_timestamp(data.get("createdAt"))
        if created_at is None:
            raise ValueError(f"Invalid createdAt: {data.get('createdAt')!r}")
        return cls(
            id=str(data["id"]),
            project_name=str(data.get("projectName", "")),
            description=str(data.get("description", "")),
            created_at=created_at,
            file_count=int(data.get("fileCount", 0)),
            size_bytes=int(data.get("sizeBytes", data.get("size", 0))),
            is_auto_backup=bool(data.get("isAutoBackup", False)),
        )


@dataclass(frozen=True)
class RestoreResult:
    restored: Snapshot
    backup_id: Optional[str] = None


def validate_snapshot_id(snapshot_id: str) -> str:
    """Return ``snapshot_id`` if it is a canonical UUID string.

    Raises:
        TragarzInvalidPathError: For anything else, before it reaches a path
    """
    try:
        canonical = str(uuid.UUID(snapshot_id))
    except (ValueError, TypeError, AttributeError) as e:
        raise TragarzInvalidPathError(f"Invalid snapshot id: {snapshot_id!r}") from e
    if canonical != snapshot_id:
        raise TragarzInvalidPathError(f"Invalid snapshot id: {snapshot_id!r}")
    return snapshot_id


class SnapshotEngine:
    """Creates, lists, restores and deletes snapshots of stored projects.

    Examples:
        >>> engine = SnapshotEngine(ProjectStore(Path("/srv/tragarz")))
        >>> snapshot = engine.create_snapshot("website", "before redesign")
        >>> engine.restore_snapshot("website", snapshot.id).backup_id
        '1b4e28ba-2fa1-41d2-883f-0016d3cca427'
    """

    def __init__(self, store: ProjectStore):
        self.store = store

    def archive_path(self, project_name: str, snapshot_id: str) -> Path:
        return self.store.snapshots_path(project_name) / f"{snapshot_id}.zip"

    def metadata_path(self, project_name: str, snapshot_id: str) -> Path:
        return self.store.snapshots_path(project_name) / f"{snapshot_id}.json"

    # =========================
    # Create
    # =========================

    def _write_archive(self, files_root: Path, archive: Path) -> int:
        """Zip every regular file under ``files_root``, returning the count."""
        file_count = 0
        with zipfile.ZipFile(archive, "w", zipfile.ZIP_DEFLATED) as zf:
            for dirpath, dirnames, filenames in os.walk(files_root):
                dirnames.sort()
                for filename in sorted(filenames):
                    file_path = Path(dirpath) / filename
                    if file_path.is_symlink() or not file_path.is_file():
                        continue
                    arcname = file_path.relative_to(files_root).as_posix()
                    zf.write(file_path, arcname)
                    file_count += 1
                    logger.debug(f"  Added: {arcname}")
        return file_count

    def create_snapshot(
        self,
        project_name: str,
        description: str = "",
        is_auto_backup: bool = False,
    ) -> Snapshot:
        """Archive the project's current files.

        Raises:
            TragarzProjectNotFoundError: If the project does not exist
            TragarzArchiveError: If the archive or its metadata cannot be
                written
        """
        self.store.require(project_name)
        files_root = self.store.files_path(project_name)
        snapshots_dir = self.store.snapshots_path(project_name)
        snapshot_id = str(uuid.uuid4())
        archive = self.archive_path(project_name, snapshot_id)

        try:
            files_root.mkdir(parents=True, exist_ok=True)
            snapshots_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{snapshot_id}.", suffix=".zip.tmp", dir=snapshots_dir
            )
            os.close(fd)
        except OSError as e:
            raise TragarzArchiveError(f"Failed to prepare snapshot: {e}") from e

        try:
            file_count = self._write_archive(files_root, Path(tmp_name))
            os.replace(tmp_name, archive)
        except (OSError, zipfile.LargeZipFile) as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise TragarzArchiveError(f"Failed to write snapshot archive: {e}") from e

        snapshot = Snapshot(
            id=snapshot_id,
            project_name=project_name,
            description=description,
            created_at=utc_now(),
            file_count=file_count,
            size_bytes=archive.stat().st_size,
            is_auto_backup=is_auto_backup,
        )
        try:
            write_json_atomic(self.metadata_path(project_name, snapshot_id), snapshot.to_dict())
        except OSError as e:
            archive.unlink(missing_ok=True)
            raise TragarzArchiveError(f"Failed to write snapshot metadata: {e}") from e

        logger.info(
            f"Created snapshot {snapshot_id} of {project_name} "
            f"({file_count} file(s), {snapshot.size_bytes} bytes)"
        )
        return snapshot

    # =========================
    # Read
    # =========================

    def _read_metadata(self, path: Path) -> Snapshot:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("metadata is not an object")
        data.setdefault("id", path.stem)
        return Snapshot.from_dict(data)

    def _sweep_stale_temps(self, snapshots_dir: Path) -> None:
        """Delete temp archives left by a create that never finished."""
        cutoff = time.time() - STALE_TEMP_AGE
        for tmp_path in snapshots_dir.glob(".*.zip.tmp"):
            try:
                if tmp_path.stat().st_mtime < cutoff:
                    tmp_path.unlink()
                    logger.info(f"Removed stale snapshot temp file: {tmp_path.name}")
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to remove {tmp_path.name}: {e}")

    def list_snapshots(self, project_name: str) -> list[Snapshot]:
        """Committed snapshots, newest first.

        Metadata records without an archive are deleted along the way, as are
        temp archives older than ``STALE_TEMP_AGE``. Unreadable records are
        skipped with a warning.
        """
        self.store.require(project_name)
        snapshots_dir = self.store.snapshots_path(project_name)
        if not snapshots_dir.is_dir():
            return []
        self._sweep_stale_temps(snapshots_dir)

        snapshots = []
        for metadata_path in sorted(snapshots_dir.glob("*.json")):
            if metadata_path.name.startswith("."):
                continue
            archive = metadata_path.with_suffix(".zip")
            if not archive.exists():
                logger.warning(f"Removing orphaned snapshot metadata: {metadata_path.name}")
                metadata_path.unlink(missing_ok=True)
                continue
            try:
                snapshots.append(self._read_metadata(metadata_path))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Failed to read snapshot metadata {metadata_path.name}: {e}")

        snapshots.sort(key=lambda s: s.created_at, reverse=True)
        return snapshots

    def get_snapshot(self, project_name: str, snapshot_id: str) -> Snapshot:
        """Read one committed snapshot.

        Raises:
            TragarzInvalidPathError: If the id is not a UUID
            TragarzSnapshotNotFoundError: If either half is missing
        """
        validate_snapshot_id(snapshot_id)
        self.store.require(project_name)
        archive = self.archive_path(project_name, snapshot_id)
        metadata_path = self.metadata_path(project_name, snapshot_id)
        if not archive.is_file() or not metadata_path.is_file():
            raise TragarzSnapshotNotFoundError(f"Snapshot not found: {snapshot_id}")
        try:
            return self._read_metadata(metadata_path)
        except (OSError, ValueError, KeyError) as e:
            raise TragarzIOError(f"Failed to read snapshot {snapshot_id}: {e}") from e

    # =========================
    # Restore
    # =========================

    def _checked_members(self, zf: zipfile.ZipFile) -> list[tuple[zipfile.ZipInfo, str]]:
        """Validate every entry name, returning (entry, normalized path) pairs.

        Raises:
            TragarzInvalidPathError: If any entry would land outside the
                files root
        """
        members = []
        for info in zf.infolist():
            if info.is_dir():
                continue
            members.append((info, validate_relative_path(info.filename)))
        return members

    def restore_snapshot(
        self,
        project_name: str,
        snapshot_id: str,
        with_backup: bool = True,
    ) -> RestoreResult:
        """Replace the project's files with the content of a snapshot.

        Steps: take an automatic backup snapshot (if ``with_backup`` and
        there are files), delete the current files, extract the archive.
        The last two steps are not atomic; if extraction fails the files
        directory may be empty or partial and the backup is the way back.

        Raises:
            TragarzSnapshotNotFoundError: If the snapshot is missing; nothing
                has been changed
            TragarzInvalidPathError: If the archive holds an unsafe entry
                name; nothing has been changed
            TragarzArchiveError: If the archive cannot be opened; nothing has
                been changed
            TragarzRestoreError: If a later step failed, with ``backup_id``
                set when a backup was taken
        """
        snapshot = self.get_snapshot(project_name, snapshot_id)
        archive = self.archive_path(project_name, snapshot_id)
        files_root = self.store.files_path(project_name)

        try:
            zf = zipfile.ZipFile(archive)
        except (OSError, zipfile.BadZipFile) as e:
            raise TragarzArchiveError(f"Cannot open snapshot archive {snapshot_id}: {e}") from e

        backup_id: Optional[str] = None
        with zf:
            members = self._checked_members(zf)
            try:
                if with_backup and files_root.is_dir():
                    backup = self.create_snapshot(
                        project_name,
                        f"Auto backup before restoring snapshot {snapshot_id}",
                        is_auto_backup=True,
                    )
                    backup_id = backup.id

                if files_root.exists():
                    shutil.rmtree(files_root)
                files_root.mkdir(parents=True)

                for info, relative_path in members:
                    target = files_root / relative_path
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with zf.open(info) as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst)

                self.store.touch(project_name)
            except (TragarzError, OSError, zipfile.BadZipFile) as e:
                raise TragarzRestoreError(
                    f"Restore of snapshot {snapshot_id} failed: {e}", backup_id=backup_id
                ) from e

        logger.info(
            f"Restored snapshot {snapshot_id} of {project_name} "
            f"({len(members)} file(s), backup: {backup_id or 'none'})"
        )
        return RestoreResult(restored=snapshot, backup_id=backup_id)

    # =========================
    # Delete
    # =========================

    def delete_snapshot(self, project_name: str, snapshot_id: str) -> None:
        """Remove both halves of a snapshot.

        Raises:
            TragarzSnapshotNotFoundError: If neither half exists
        """
        validate_snapshot_id(snapshot_id)
        self.store.require(project_name)
        archive = self.archive_path(project_name, snapshot_id)
        metadata_path = self.metadata_path(project_name, snapshot_id)
        if not archive.exists() and not metadata_path.exists():
            raise TragarzSnapshotNotFoundError(f"Snapshot not found: {snapshot_id}")
        try:
            archive.unlink(missing_ok=True)
            metadata_path.unlink(missing_ok=True)
        except OSError as e:
            raise TragarzIOError(f"Failed to delete snapshot {snapshot_id}: {e}") from e
        logger.info(f"Deleted snapshot {snapshot_id} of {project_name}")
