"""Baseline tracking for three-way sync.

The baseline is the path->hash map of files last confirmed identical on
both the local and the server side. It lives in the project configuration
(``files`` in ``.tragarz.json``) and is only changed after a transfer for a
path has been confirmed, one path at a time. An interrupted push or pull
therefore resumes where it stopped: finished paths reconcile as converged,
pending ones are classified again.
"""

import logging
from collections.abc import Iterator, Mapping
from typing import Optional

from ..config import ConfigManager, ProjectConfig
from .scanner import LocalFile
from .tree import RemoteFile

logger = logging.getLogger(__name__)


class Baseline(Mapping[str, str]):
    """Read-only view of the last synchronized hash per path."""

    def __init__(self, entries: Optional[Mapping[str, str]] = None):
        self._entries: dict[str, str] = dict(entries or {})

    def __getitem__(self, path: str) -> str:
        return self._entries[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Baseline({len(self._entries)} entries)"


class SyncStateManager:
    """Loads the baseline and commits changes to it path by path.

    Every ``record`` and ``forget`` call is written to disk before it
    returns, so progress made before a failure is kept.
    """

    def __init__(self, config_manager: ConfigManager):
        """Initialize state manager.

        Args:
            config_manager: Manager for the project's ``.tragarz.json``
        """
        self.config_manager = config_manager
        self._config: Optional[ProjectConfig] = None

    @property
    def config(self) -> ProjectConfig:
        if self._config is None:
            self._config = self.config_manager.load()
        return self._config

    def load(self) -> Baseline:
        """Reload the configuration and return a snapshot of the baseline."""
        self._config = self.config_manager.load()
        logger.debug(f"Loaded baseline with {len(self._config.files)} entries")
        return Baseline(self._config.files)

    def record(self, path: str, content_hash: str) -> None:
        """Commit ``content_hash`` as the synchronized state of ``path``.

        Call only after the transfer for ``path`` is confirmed.
        """
        self.config.files[path] = content_hash
        self.config_manager.save(self.config)
        logger.debug(f"Baseline: {path} -> {content_hash[:8]}")

    def forget(self, path: str) -> None:
        """Drop ``path`` after it was confirmed deleted on both sides."""
        if self.config.files.pop(path, None) is not None:
            self.config_manager.save(self.config)
            logger.debug(f"Baseline: forgot {path}")

    def advance_converged(
        self,
        local: Mapping[str, LocalFile],
        server: Mapping[str, RemoteFile],
    ) -> int:
        """Bring the baseline in line with paths that need no transfer.

        Paths with the same hash on both sides are recorded with that hash.
        Entries for paths absent from both sides are dropped. Other entries
        are left untouched.

        Returns:
            Number of baseline entries changed
        """
        files = self.config.files
        changed = 0

        for path, local_file in local.items():
            server_file = server.get(path)
            if (
                server_file is not None
                and server_file.hash == local_file.hash
                and files.get(path) != local_file.hash
            ):
                files[path] = local_file.hash
                changed += 1

        for path in [p for p in files if p not in local and p not in server]:
            del files[path]
            changed += 1

        if changed:
            self.config_manager.save(self.config)
            logger.debug(f"Baseline: {changed} converged entries updated")
        return changed
