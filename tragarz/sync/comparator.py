"""Three-way comparison of local files, server files and the sync baseline.

``reconcile`` is pure: it looks only at the three maps it is given and
sorts every path into exactly one bucket of a ``ChangeSet``. What to do
about conflicts is decided afterwards by ``resolve_conflicts``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from ..exceptions import TragarzConflictError
from .scanner import LocalFile
from .tree import RemoteFile


class SyncAction(str, Enum):
    """Actions that can be taken during sync."""

    UPLOAD = "upload"
    """Upload local file to remote"""

    DOWNLOAD = "download"
    """Download remote file to local"""

    DELETE = "delete"
    """Propagate a local deletion to the server"""

    CONFLICT = "conflict"
    """Both sides changed since the baseline"""


class SyncDirection(str, Enum):
    """Which way a sync round moves data."""

    PUSH = "push"
    PULL = "pull"


class ConflictPolicy(str, Enum):
    """How a caller settles conflicts reported by ``reconcile``."""

    ABORT = "abort"
    """Report the conflicts and stop"""

    FORCE = "force"
    """Keep the side being synced from: local on push, server on pull"""

    BACKUP = "backup"
    """Pull only: copy the local files aside, then take the server's"""


@dataclass(frozen=True)
class Download:
    """A path whose server copy should be fetched."""

    relative_path: str
    server_file: RemoteFile


@dataclass(frozen=True)
class Conflict:
    """A path where local and server diverged from a common baseline."""

    relative_path: str
    local_hash: str
    server_hash: str
    baseline_hash: str
    local_file: LocalFile
    server_file: RemoteFile


@dataclass
class ChangeSet:
    """Partition of every known path into what needs doing.

    Converged paths (same hash on both sides) appear in no bucket.
    """

    to_upload: list[LocalFile] = field(default_factory=list)
    to_download: list[Download] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.to_upload or self.to_download or self.to_delete or self.conflicts)

    def paths(self) -> dict[str, SyncAction]:
        """Map each classified path to its action."""
        result: dict[str, SyncAction] = {}
        for local_file in self.to_upload:
            result[local_file.relative_path] = SyncAction.UPLOAD
        for download in self.to_download:
            result[download.relative_path] = SyncAction.DOWNLOAD
        for path in self.to_delete:
            result[path] = SyncAction.DELETE
        for conflict in self.conflicts:
            result[conflict.relative_path] = SyncAction.CONFLICT
        return result

    def stats(self) -> dict[str, int]:
        return {
            "uploads": len(self.to_upload),
            "downloads": len(self.to_download),
            "deletes": len(self.to_delete),
            "conflicts": len(self.conflicts),
        }

    def to_dict(self) -> dict:
        """Plain data view, for JSON output."""
        return {
            "to_upload": [f.relative_path for f in self.to_upload],
            "to_download": [d.relative_path for d in self.to_download],
            "to_delete": list(self.to_delete),
            "conflicts": [
                {
                    "path": c.relative_path,
                    "local_hash": c.local_hash,
                    "server_hash": c.server_hash,
                    "baseline_hash": c.baseline_hash,
                }
                for c in self.conflicts
            ],
        }


def reconcile(
    local: Mapping[str, LocalFile],
    server: Mapping[str, RemoteFile],
    baseline: Mapping[str, str],
) -> ChangeSet:
    """Classify every path of ``local`` and ``server`` into a ChangeSet.

    For a path on both sides with different hashes, the baseline (the hash
    both sides agreed on at the last sync) decides who changed:

    - baseline differs from both: conflict
    - no baseline, or baseline equals the server hash: upload (only local
      changed, or nothing is known and local wins)
    - baseline equals the local hash: download

    A path only on the server is deleted if the baseline knows it (it was
    removed locally since the last sync), otherwise downloaded. Missing
    baseline information never leads to a deletion.

    Args:
        local: Scanned local files by relative path
        server: Flattened server files by relative path
        baseline: Last synchronized hash by relative path

    Returns:
        ChangeSet with paths in sorted order within each bucket
    """
    changes = ChangeSet()

    for path in sorted(local):
        local_file = local[path]
        server_file = server.get(path)

        if server_file is None:
            changes.to_upload.append(local_file)
            continue

        if local_file.hash == server_file.hash:
            continue

        base = baseline.get(path)
        if base is not None and base != local_file.hash and base != server_file.hash:
            changes.conflicts.append(
                Conflict(
                    relative_path=path,
                    local_hash=local_file.hash,
                    server_hash=server_file.hash,
                    baseline_hash=base,
                    local_file=local_file,
                    server_file=server_file,
                )
            )
        elif base is None or base == server_file.hash:
            changes.to_upload.append(local_file)
        else:
            changes.to_download.append(Download(path, server_file))

    for path in sorted(server):
        if path in local:
            continue
        if path in baseline:
            changes.to_delete.append(path)
        else:
            changes.to_download.append(Download(path, server[path]))

    return changes


def resolve_conflicts(
    changes: ChangeSet,
    direction: SyncDirection,
    policy: ConflictPolicy,
) -> ChangeSet:
    """Apply a conflict policy, returning a ChangeSet without conflicts.

    ``FORCE`` turns every conflict into an upload when pushing and into a
    download when pulling. ``BACKUP`` does the same as ``FORCE`` on pull;
    the caller is expected to have copied the local files aside first.

    Raises:
        TragarzConflictError: Under ``ABORT`` when conflicts exist
        ValueError: For ``BACKUP`` on push
    """
    if not changes.conflicts:
        return changes

    if policy == ConflictPolicy.ABORT:
        raise TragarzConflictError(
            f"{len(changes.conflicts)} conflict(s) detected", changes.conflicts
        )
    if policy == ConflictPolicy.BACKUP and direction == SyncDirection.PUSH:
        raise ValueError("Backup conflict resolution is only available when pulling")

    resolved = ChangeSet(
        to_upload=list(changes.to_upload),
        to_download=list(changes.to_download),
        to_delete=list(changes.to_delete),
    )
    for conflict in changes.conflicts:
        if direction == SyncDirection.PUSH:
            resolved.to_upload.append(conflict.local_file)
        else:
            resolved.to_download.append(
                Download(conflict.relative_path, conflict.server_file)
            )
    return resolved


def find_server_deletions(
    changes: ChangeSet,
    server: Mapping[str, RemoteFile],
    baseline: Mapping[str, str],
) -> list[str]:
    """Paths removed on the server that are unchanged locally.

    These sit in ``to_upload`` because the server no longer has them. When
    the local copy still matches the baseline, nothing new would be lost by
    removing it, so a pull may delete it.
    """
    return [
        f.relative_path
        for f in changes.to_upload
        if f.relative_path not in server and baseline.get(f.relative_path) == f.hash
    ]
