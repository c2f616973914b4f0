"""Gitignore-style ignore rules for local scans.

Patterns come from the project's ``.tragarzignore`` file and a fixed set of
built-in rules that keep version control data, dependency caches and
Tragarz's own state files out of sync.
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, Optional

import pathspec

from ..utils import BACKUP_DIR_NAME, CONFIG_FILE_NAME, IGNORE_FILE_NAME

logger = logging.getLogger(__name__)

BUILTIN_IGNORE_PATTERNS: tuple[str, ...] = (
    CONFIG_FILE_NAME,
    f".{CONFIG_FILE_NAME}.*.tmp",
    IGNORE_FILE_NAME,
    f"{BACKUP_DIR_NAME}/",
    ".*.download",
    ".*.part",
    ".git/",
    "node_modules/",
    ".DS_Store",
)

IgnorePredicate = Callable[[str], bool]
"""Takes a forward-slash relative path (directories end with ``/``)."""


class IgnoreRules:
    """Compiled ignore patterns.

    Examples:
        >>> rules = IgnoreRules(["*.log", "build/"])
        >>> rules.is_ignored("debug.log")
        True
        >>> rules.is_ignored("build/")
        True
        >>> rules.is_ignored("src/main.py")
        False
    """

    def __init__(self, patterns: Iterable[str] = ()):
        self.patterns = [*BUILTIN_IGNORE_PATTERNS, *patterns]
        self._spec = pathspec.GitIgnoreSpec.from_lines(self.patterns)

    def is_ignored(self, relative_path: str) -> bool:
        """Check a relative path against the rules.

        Args:
            relative_path: Forward-slash path relative to the sync root.
                Directory paths should carry a trailing ``/``.

        Returns:
            True if the path is excluded from sync
        """
        return self._spec.match_file(relative_path)

    def __call__(self, relative_path: str) -> bool:
        return self.is_ignored(relative_path)


def read_ignore_file(path: Path) -> list[str]:
    """Read patterns from an ignore file, skipping blanks and comments.

    A missing file yields no patterns. An unreadable one is logged and
    treated the same way.
    """
    if not path.exists():
        return []

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read {path.name}: {e}")
        return []

    patterns = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            patterns.append(stripped)
    return patterns


def load_ignore_predicate(
    root: Path, extra_patterns: Optional[Iterable[str]] = None
) -> IgnoreRules:
    """Build the ignore predicate for a sync root.

    Args:
        root: Directory holding ``.tragarzignore``
        extra_patterns: Additional patterns, e.g. from the command line

    Returns:
        Callable rules object usable as an ignore predicate
    """
    patterns = read_ignore_file(root / IGNORE_FILE_NAME)
    if extra_patterns:
        patterns.extend(extra_patterns)
    logger.debug(f"Loaded {len(patterns)} ignore pattern(s) for {root}")
    return IgnoreRules(patterns)

