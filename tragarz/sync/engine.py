"""Core sync engine for executing push and pull rounds."""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from ..config import ConfigManager
from ..exceptions import TragarzNotFoundError
from ..output import OutputFormatter
from ..utils import DEFAULT_UPLOAD_BATCH_SIZE
from .comparator import (
    ChangeSet,
    ConflictPolicy,
    Download,
    SyncDirection,
    find_server_deletions,
    reconcile,
    resolve_conflicts,
)
from .confirm import AutoConfirm, Confirmer
from .ignore import load_ignore_predicate
from .operations import SyncOperations
from .scanner import DirectoryScanner, LocalFile, ScanResult
from .state import Baseline, SyncStateManager
from .tree import RemoteFile, flatten

if TYPE_CHECKING:
    from ..api import TragarzClient

logger = logging.getLogger(__name__)


@dataclass
class SyncPlan:
    """Inputs and result of one reconciliation."""

    local: ScanResult
    server: dict[str, RemoteFile]
    baseline: Baseline
    changes: ChangeSet = field(default_factory=ChangeSet)


def _batches(items: list[LocalFile], size: int) -> Iterator[list[LocalFile]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class SyncEngine:
    """Core sync engine that orchestrates file synchronization.

    The engine works against one project directory (the directory holding
    ``.tragarz.json``). Each push or pull scans the directory, fetches the
    server tree, reconciles both against the baseline and applies the half
    of the change set that belongs to its direction. The other half is
    reported and left for the opposite command.
    """

    def __init__(
        self,
        client: "TragarzClient",
        config_manager: ConfigManager,
        output: Optional[OutputFormatter] = None,
        confirmer: Optional[Confirmer] = None,
        scanner: Optional[DirectoryScanner] = None,
        batch_size: int = DEFAULT_UPLOAD_BATCH_SIZE,
        use_trash: bool = False,
    ):
        """Initialize sync engine.

        Args:
            client: Tragarz API client
            config_manager: Manager for the project's configuration
            output: Output formatter for displaying progress/status
            confirmer: Asked before destructive steps (default: always yes)
            scanner: Local directory scanner
            batch_size: Files per upload request
            use_trash: Move locally deleted files to the system trash
        """
        self.client = client
        self.config_manager = config_manager
        self.root = config_manager.working_dir
        self.output = output or OutputFormatter()
        self.confirmer = confirmer or AutoConfirm()
        self.scanner = scanner or DirectoryScanner()
        self.batch_size = max(1, batch_size)
        self.use_trash = use_trash
        self.state = SyncStateManager(config_manager)
        self._operations: Optional[SyncOperations] = None

    @property
    def project_name(self) -> str:
        return self.state.config.project_name

    @property
    def operations(self) -> SyncOperations:
        if self._operations is None:
            self._operations = SyncOperations(self.client, self.project_name, self.root)
        return self._operations

    def _progress(self) -> Progress:
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            transient=True,
            disable=self.output.quiet or self.output.json_output,
        )

    # =========================
    # Planning
    # =========================

    def plan(self) -> SyncPlan:
        """Scan, fetch and reconcile without changing anything.

        Returns:
            SyncPlan with the local scan, flattened server files, the
            baseline used and the resulting ChangeSet
        """
        baseline = self.state.load()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=self.output.quiet or self.output.json_output,
        ) as progress:
            task = progress.add_task("Scanning local directory...", total=None)
            ignore = load_ignore_predicate(self.root)
            local = self.scanner.scan_local(self.root, ignore=ignore)
            progress.update(task, description=f"Found {len(local.files)} local file(s)")

            task = progress.add_task("Fetching server file list...", total=None)
            server = flatten(self.client.get_project_files(self.project_name))
            progress.update(task, description=f"Found {len(server)} server file(s)")

        for warning in local.warnings:
            self.output.warning(warning)

        changes = reconcile(local.files, server, baseline)
        logger.debug(f"Reconciled {self.project_name}: {changes.stats()}")
        return SyncPlan(local=local, server=server, baseline=baseline, changes=changes)

    def status(self) -> dict[str, Any]:
        """Describe the project and what a sync would do.

        The baseline is not touched.
        """
        plan = self.plan()
        config = self.state.config
        return {
            "project": {
                "projectName": config.project_name,
                "serverUrl": config.server_url,
                "lastSync": config.last_sync,
                "trackedFiles": len(config.files),
            },
            "localFiles": len(plan.local.files),
            "serverFiles": len(plan.server),
            "stats": plan.changes.stats(),
            "changes": plan.changes.to_dict(),
            "warnings": list(plan.local.warnings),
        }

    # =========================
    # Push
    # =========================

    def push(self, force: bool = False, dry_run: bool = False) -> dict[str, Any]:
        """Upload local changes and propagate local deletions.

        Args:
            force: Settle conflicts by uploading the local copy
            dry_run: Only show what would be done

        Returns:
            Dictionary with sync statistics

        Raises:
            TragarzConflictError: If conflicts exist and ``force`` is False

        Examples:
            >>> engine = SyncEngine(client, ConfigManager(Path(".")))
            >>> stats = engine.push(dry_run=True)
            >>> print(f"Would upload {stats['uploads']} files")
        """
        plan = self.plan()
        if not dry_run:
            self.state.advance_converged(plan.local.files, plan.server)

        policy = ConflictPolicy.FORCE if force else ConflictPolicy.ABORT
        forced = [c.relative_path for c in plan.changes.conflicts]
        changes = resolve_conflicts(plan.changes, SyncDirection.PUSH, policy)

        stats = self._create_empty_stats(dry_run)
        stats["uploads"] = len(changes.to_upload)
        stats["deletes_remote"] = len(changes.to_delete)
        stats["conflicts"] = len(forced)
        stats["pending"] = len(changes.to_download)

        self._display_plan(
            uploads=changes.to_upload,
            deletes=changes.to_delete,
            forced=forced,
            direction=SyncDirection.PUSH,
        )
        if changes.to_download:
            self.output.info(
                f"{len(changes.to_download)} file(s) changed on the server; "
                "run `tragarz pull` to fetch them"
            )

        if not (changes.to_upload or changes.to_delete):
            self.output.success("Nothing to push - server is up to date")
            return stats
        if dry_run:
            self.output.info("Dry run: no changes made")
            return stats

        if not self.confirmer.confirm(self._confirm_message(stats, forced, SyncDirection.PUSH)):
            self.output.info("Push cancelled")
            stats["cancelled"] = True
            return stats

        stats["uploads"] = self._upload_all(changes.to_upload)
        stats["deletes_remote"] = self._delete_remote_all(changes.to_delete)
        self._display_summary(stats)
        return stats

    def _upload_all(self, files: list[LocalFile]) -> int:
        """Upload in batches, recording each path the server confirms."""
        uploaded = 0
        if not files:
            return uploaded

        with self._progress() as progress:
            task = progress.add_task("Uploading...", total=len(files))
            for batch in _batches(files, self.batch_size):
                stored = self.operations.upload_batch(batch)
                for local_file in batch:
                    path = local_file.relative_path
                    if path not in stored:
                        logger.warning(f"Server did not store {path}")
                        self.output.warning(f"Not stored by server: {path}")
                        continue
                    server_hash = stored[path]
                    if server_hash is not None and server_hash != local_file.hash:
                        logger.warning(
                            f"Hash mismatch after upload of {path}: "
                            f"{local_file.hash[:8]} != {server_hash[:8]}"
                        )
                        self.output.warning(f"Upload not confirmed: {path}")
                        continue
                    self.state.record(path, local_file.hash)
                    uploaded += 1
                    logger.debug(f"Uploaded {path}")
                progress.update(task, advance=len(batch))

        return uploaded

    def _delete_remote_all(self, paths: list[str]) -> int:
        deleted = 0
        for path in paths:
            try:
                self.operations.delete_remote(path)
            except TragarzNotFoundError:
                logger.debug(f"Already deleted on server: {path}")
            self.state.forget(path)
            deleted += 1
            logger.debug(f"Deleted on server: {path}")
        return deleted

    # =========================
    # Pull
    # =========================

    def pull(
        self,
        force: bool = False,
        backup: bool = False,
        keep_local: bool = False,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        """Download server changes and remove files the server dropped.

        Args:
            force: Settle conflicts by taking the server copy
            backup: Like ``force``, but copy the conflicting local files to
                ``.tragarz-backup/<timestamp>/`` first
            keep_local: Do not remove local files deleted on the server
            dry_run: Only show what would be done

        Returns:
            Dictionary with sync statistics

        Raises:
            TragarzConflictError: If conflicts exist and neither ``force``
                nor ``backup`` is set
            TragarzTransferError: If a downloaded file does not match the
                server's hash
        """
        plan = self.plan()
        if not dry_run:
            self.state.advance_converged(plan.local.files, plan.server)

        if backup:
            policy = ConflictPolicy.BACKUP
        elif force:
            policy = ConflictPolicy.FORCE
        else:
            policy = ConflictPolicy.ABORT
        forced = [c.relative_path for c in plan.changes.conflicts]
        changes = resolve_conflicts(plan.changes, SyncDirection.PULL, policy)

        removals = (
            []
            if keep_local
            else find_server_deletions(changes, plan.server, plan.baseline)
        )
        pending_uploads = len(changes.to_upload) - len(removals)

        stats = self._create_empty_stats(dry_run)
        stats["downloads"] = len(changes.to_download)
        stats["deletes_local"] = len(removals)
        stats["conflicts"] = len(forced)
        stats["pending"] = pending_uploads + len(changes.to_delete)

        self._display_plan(
            downloads=[d.relative_path for d in changes.to_download],
            deletes=removals,
            forced=forced,
            direction=SyncDirection.PULL,
        )
        if stats["pending"]:
            self.output.info(
                f"{stats['pending']} local change(s) not on the server; "
                "run `tragarz push` to send them"
            )

        if not (changes.to_download or removals):
            self.output.success("Nothing to pull - local files are up to date")
            return stats
        if dry_run:
            self.output.info("Dry run: no changes made")
            return stats

        if not self.confirmer.confirm(self._confirm_message(stats, forced, SyncDirection.PULL)):
            self.output.info("Pull cancelled")
            stats["cancelled"] = True
            return stats

        if policy == ConflictPolicy.BACKUP and forced:
            backup_dir = self.operations.backup_local_files(forced)
            if backup_dir is not None:
                stats["backup_dir"] = str(backup_dir)
                self.output.info(
                    f"Backed up {len(forced)} file(s) to {escape(str(backup_dir))}"
                )

        stats["downloads"] = self._download_all(changes.to_download)
        stats["deletes_local"] = self._delete_local_all(removals)
        self._display_summary(stats)
        return stats

    def _download_all(self, downloads: list[Download]) -> int:
        """Download each file, verified before it replaces the local copy."""
        downloaded = 0
        if not downloads:
            return downloaded

        with self._progress() as progress:
            task = progress.add_task("Downloading...", total=len(downloads))
            for download in downloads:
                path = download.relative_path
                expected = download.server_file.hash
                self.operations.download_file(path, expected)
                self.state.record(path, expected)
                downloaded += 1
                logger.debug(f"Downloaded {path}")
                progress.update(task, advance=1)

        return downloaded

    def _delete_local_all(self, paths: list[str]) -> int:
        deleted = 0
        for path in paths:
            self.operations.delete_local(path, use_trash=self.use_trash)
            self.state.forget(path)
            deleted += 1
            logger.debug(f"Deleted locally: {path}")
        return deleted

    # =========================
    # Display
    # =========================

    def _create_empty_stats(self, dry_run: bool) -> dict[str, Any]:
        return {
            "uploads": 0,
            "downloads": 0,
            "deletes_local": 0,
            "deletes_remote": 0,
            "conflicts": 0,
            "pending": 0,
            "cancelled": False,
            "dry_run": dry_run,
        }

    def _display_plan(
        self,
        direction: SyncDirection,
        uploads: Optional[list[LocalFile]] = None,
        downloads: Optional[list[str]] = None,
        deletes: Optional[list[str]] = None,
        forced: Optional[list[str]] = None,
    ) -> None:
        """Display the sync plan to the user."""
        uploads = uploads or []
        downloads = downloads or []
        deletes = deletes or []
        forced = forced or []
        if not (uploads or downloads or deletes):
            return

        self.output.info("Sync plan:")
        for local_file in uploads:
            self.output.info(f"  ↑ {escape(local_file.relative_path)}")
        for path in downloads:
            self.output.info(f"  ↓ {escape(path)}")
        where = "server" if direction == SyncDirection.PUSH else "local"
        for path in deletes:
            self.output.info(f"  ✗ {escape(path)} (delete {where})")
        if forced:
            side = "server" if direction == SyncDirection.PUSH else "local"
            self.output.warning(
                f"⚠ {len(forced)} conflicting file(s) will overwrite the {side} copy"
            )
        self.output.print("")

    def _confirm_message(
        self, stats: dict[str, Any], forced: list[str], direction: SyncDirection
    ) -> str:
        if direction == SyncDirection.PUSH:
            parts = [f"upload {stats['uploads']}", f"delete {stats['deletes_remote']} on server"]
        else:
            parts = [f"download {stats['downloads']}", f"delete {stats['deletes_local']} locally"]
        message = f"Continue with {direction.value} ({', '.join(parts)})?"
        if forced:
            message = f"{len(forced)} conflict(s) will be overwritten. {message}"
        return message

    def _display_summary(self, stats: dict[str, Any]) -> None:
        self.output.print("")
        self.output.success("Sync complete!")
        if stats["uploads"] > 0:
            self.output.info(f"  Uploaded: {stats['uploads']}")
        if stats["downloads"] > 0:
            self.output.info(f"  Downloaded: {stats['downloads']}")
        if stats["deletes_local"] > 0:
            self.output.info(f"  Deleted locally: {stats['deletes_local']}")
        if stats["deletes_remote"] > 0:
            self.output.info(f"  Deleted remotely: {stats['deletes_remote']}")
