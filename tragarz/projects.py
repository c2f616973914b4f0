"""Project storage in a local data directory.

Layout of one project::

    <data_dir>/<name>/metadata.json
    <data_dir>/<name>/files/...
    <data_dir>/<name>/snapshots/<id>.zip
    <data_dir>/<name>/snapshots/<id>.json
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .exceptions import (
    TragarzInvalidPathError,
    TragarzIOError,
    TragarzProjectExistsError,
    TragarzProjectNotFoundError,
)
from .sync.tree import TreeNode, build_tree
from .utils import (
    format_iso_timestamp,
    resolve_within,
    utc_now,
    validate_project_name,
    write_json_atomic,
)

logger = logging.getLogger(__name__)

FILES_DIR_NAME = "files"
SNAPSHOTS_DIR_NAME = "snapshots"
METADATA_FILE_NAME = "metadata.json"


class ProjectStore:
    """Projects kept under one data directory."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir).resolve()

    def validate_name(self, name: str) -> str:
        """Return ``name`` if it is a valid project name.

        Raises:
            TragarzInvalidPathError: If the name has characters outside
                letters, digits, ``_`` and ``-``, or is longer than 50
        """
        if not validate_project_name(name):
            raise TragarzInvalidPathError(
                f"Invalid project name {name!r}: use only letters, numbers, "
                "hyphens and underscores (max 50 chars)"
            )
        return name

    def project_path(self, name: str) -> Path:
        return self.data_dir / self.validate_name(name)

    def files_path(self, name: str) -> Path:
        return self.project_path(name) / FILES_DIR_NAME

    def snapshots_path(self, name: str) -> Path:
        return self.project_path(name) / SNAPSHOTS_DIR_NAME

    def metadata_path(self, name: str) -> Path:
        return self.project_path(name) / METADATA_FILE_NAME

    def exists(self, name: str) -> bool:
        return self.project_path(name).is_dir()

    def require(self, name: str) -> Path:
        """Return the project directory.

        Raises:
            TragarzProjectNotFoundError: If the project does not exist
        """
        path = self.project_path(name)
        if not path.is_dir():
            raise TragarzProjectNotFoundError(f"Project not found: {name}")
        return path

    def create(self, name: str, description: str = "") -> dict[str, Any]:
        """Create an empty project.

        Raises:
            TragarzProjectExistsError: If the project already exists
        """
        path = self.project_path(name)
        if path.exists():
            raise TragarzProjectExistsError(f"Project already exists: {name}")

        now = format_iso_timestamp(utc_now())
        metadata = {
            "name": name,
            "description": description,
            "createdAt": now,
            "lastModified": now,
            "id": str(uuid.uuid4()),
            "fileCount": 0,
            "totalSize": 0,
        }
        try:
            self.files_path(name).mkdir(parents=True)
            self.snapshots_path(name).mkdir()
            write_json_atomic(self.metadata_path(name), metadata)
        except OSError as e:
            raise TragarzIOError(f"Failed to create project {name}: {e}") from e

        logger.info(f"Created project {name}")
        return metadata

    def _read_metadata(self, name: str) -> dict[str, Any]:
        path = self.metadata_path(name)
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read metadata for project {name}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def list_projects(self) -> list[dict[str, Any]]:
        """Metadata of every project, most recently modified first."""
        if not self.data_dir.is_dir():
            return []

        projects = []
        for entry in os.scandir(self.data_dir):
            if not entry.is_dir(follow_symlinks=False) or not validate_project_name(entry.name):
                continue
            mtime = datetime.fromtimestamp(entry.stat().st_mtime, tz=timezone.utc)
            metadata = {"name": entry.name, "lastModified": format_iso_timestamp(mtime)}
            metadata.update(self._read_metadata(entry.name))
            projects.append(metadata)

        return sorted(projects, key=lambda p: p.get("lastModified") or "", reverse=True)

    def project_info(self, name: str) -> dict[str, Any]:
        """Metadata with file count and total size recalculated."""
        self.require(name)
        metadata = {"name": name}
        metadata.update(self._read_metadata(name))

        file_count = 0
        total_size = 0
        files_root = self.files_path(name)
        for dirpath, _dirnames, filenames in os.walk(files_root):
            for filename in filenames:
                try:
                    total_size += os.lstat(os.path.join(dirpath, filename)).st_size
                    file_count += 1
                except OSError as e:
                    logger.warning(f"Error reading {filename}: {e}")
        metadata["fileCount"] = file_count
        metadata["totalSize"] = total_size
        return metadata

    def touch(self, name: str) -> None:
        """Stamp ``lastModified`` after the project's files changed."""
        metadata = self._read_metadata(name)
        metadata.setdefault("name", name)
        metadata["lastModified"] = format_iso_timestamp(utc_now())
        try:
            write_json_atomic(self.metadata_path(name), metadata)
        except OSError as e:
            raise TragarzIOError(f"Failed to update project {name}: {e}") from e

    def file_tree(self, name: str) -> tuple[TreeNode, ...]:
        """Describe the project's files as a tree, directories first."""
        self.require(name)
        files_root = self.files_path(name)
        if not files_root.is_dir():
            return ()
        return build_tree(files_root)

    def resolve_file(self, name: str, relative_path: str) -> Path:
        """Absolute path of a project file.

        Raises:
            TragarzInvalidPathError: If the path escapes the files root
        """
        self.require(name)
        return resolve_within(self.files_path(name), relative_path)
