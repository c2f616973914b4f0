"""Remote file tree: parsing, building and flattening.

The server describes a project as a nested list of nodes::

    [
        {"path": "docs", "type": "directory", "children": [
            {"path": "docs/a.md", "type": "file", "hash": "...", "size": 12,
             "modified": "2025-01-15T10:30:00.000Z"}
        ]},
        {"path": "README.md", "type": "file", ...}
    ]

Nodes are a tagged union of ``FileNode`` and ``DirectoryNode`` told apart by
their ``type`` field. ``flatten`` turns a tree into the path->record map the
comparator works on.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal, Optional, Union

from ..exceptions import TragarzIOError
from ..utils import format_iso_timestamp, parse_iso_timestamp, validate_relative_path
from .hasher import compute_file_hash

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteFile:
    """A file as reported by the server."""

    relative_path: str
    """Relative path (forward slashes)"""

    hash: str
    """SHA-256 hex digest of the content"""

    size: int
    """File size in bytes"""

    modified: Optional[datetime] = None
    """Last modification time on the server"""


@dataclass(frozen=True)
class FileNode:
    record: RemoteFile
    type: Literal["file"] = "file"

    @property
    def path(self) -> str:
        return self.record.relative_path


@dataclass(frozen=True)
class DirectoryNode:
    path: str
    children: tuple["TreeNode", ...] = field(default_factory=tuple)
    type: Literal["directory"] = "directory"


TreeNode = Union[FileNode, DirectoryNode]


def sort_nodes(nodes: list[TreeNode]) -> tuple[TreeNode, ...]:
    """Order nodes directories first, then by path."""
    return tuple(sorted(nodes, key=lambda n: (n.type != "directory", n.path)))


def _join(base: str, path: str) -> str:
    path = path.replace("\\", "/").rstrip("/")
    if not base or path.startswith("/") or path.startswith(base + "/"):
        # The server sends paths relative to the project root already
        return path
    return f"{base}/{path}"


def parse_tree(data: list[dict[str, Any]], base: str = "") -> tuple[TreeNode, ...]:
    """Parse the server's JSON file listing into tree nodes.

    Unknown node types are skipped. Paths are validated, so a listing that
    tries to point outside the project raises before anything touches disk.

    Args:
        data: List of node dictionaries
        base: Path of the enclosing directory

    Returns:
        Sorted tuple of nodes

    Raises:
        TragarzInvalidPathError: If a node's path is malformed
    """
    nodes: list[TreeNode] = []

    for item in data:
        node_type = item.get("type")
        path = validate_relative_path(_join(base, str(item.get("path", ""))))

        if node_type == "file":
            record = RemoteFile(
                relative_path=path,
                hash=str(item.get("hash", "")),
                size=int(item.get("size") or 0),
                modified=parse_iso_timestamp(item.get("modified")),
            )
            nodes.append(FileNode(record=record))
        elif node_type == "directory":
            children = parse_tree(item.get("children") or [], path)
            nodes.append(DirectoryNode(path=path, children=children))
        else:
            logger.debug(f"Skipping node with unknown type {node_type!r}: {path}")

    return sort_nodes(nodes)


def flatten(
    nodes: tuple[TreeNode, ...], result: Optional[dict[str, RemoteFile]] = None
) -> dict[str, RemoteFile]:
    """Flatten a tree into a map of relative path to RemoteFile.

    Directories contribute only their files.
    """
    if result is None:
        result = {}

    for node in nodes:
        if isinstance(node, FileNode):
            result[node.path] = node.record
        else:
            flatten(node.children, result)

    return result


def build_tree(root: Path, relative: str = "") -> tuple[TreeNode, ...]:
    """Build a tree from a directory on disk.

    Used on the storage side to describe a project's files. Symlinks are
    skipped. Unreadable entries are logged and left out.

    Args:
        root: Directory to describe
        relative: Path of ``root`` relative to the project root

    Returns:
        Sorted tuple of nodes
    """
    nodes: list[TreeNode] = []

    try:
        entries = list(os.scandir(root))
    except OSError as e:
        logger.warning(f"Error reading directory {root}: {e}")
        return ()

    for entry in entries:
        path = f"{relative}/{entry.name}" if relative else entry.name
        try:
            if entry.is_symlink():
                continue
            if entry.is_dir(follow_symlinks=False):
                children = build_tree(Path(entry.path), path)
                nodes.append(DirectoryNode(path=path, children=children))
            elif entry.is_file(follow_symlinks=False):
                stat = entry.stat(follow_symlinks=False)
                record = RemoteFile(
                    relative_path=path,
                    hash=compute_file_hash(Path(entry.path)),
                    size=stat.st_size,
                    modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
                nodes.append(FileNode(record=record))
        except (OSError, TragarzIOError) as e:
            logger.warning(f"Error reading {path}: {e}")

    return sort_nodes(nodes)


def tree_to_dict(nodes: tuple[TreeNode, ...]) -> list[dict[str, Any]]:
    """Serialize nodes back into the JSON listing format."""
    items: list[dict[str, Any]] = []
    for node in nodes:
        if isinstance(node, FileNode):
            record = node.record
            items.append(
                {
                    "path": record.relative_path,
                    "type": "file",
                    "hash": record.hash,
                    "size": record.size,
                    "modified": (
                        format_iso_timestamp(record.modified)
                        if record.modified
                        else None
                    ),
                }
            )
        else:
            items.append(
                {
                    "path": node.path,
                    "type": "directory",
                    "children": tree_to_dict(node.children),
                }
            )
    return items
