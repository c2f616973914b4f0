"""Sync engine for Tragarz - three-way push/pull against a server project."""

from .comparator import (
    ChangeSet,
    Conflict,
    ConflictPolicy,
    Download,
    SyncAction,
    SyncDirection,
    find_server_deletions,
    reconcile,
    resolve_conflicts,
)
from .confirm import AutoConfirm, ClickConfirm, Confirmer
from .engine import SyncEngine, SyncPlan
from .hasher import compute_file_hash
from .ignore import BUILTIN_IGNORE_PATTERNS, IgnoreRules, load_ignore_predicate
from .operations import SyncOperations
from .scanner import DirectoryScanner, LocalFile, ScanResult
from .state import Baseline, SyncStateManager
from .tree import (
    DirectoryNode,
    FileNode,
    RemoteFile,
    build_tree,
    flatten,
    parse_tree,
    tree_to_dict,
)

__all__ = [
    "SyncEngine",
    "SyncPlan",
    "SyncOperations",
    "SyncAction",
    "SyncDirection",
    "ConflictPolicy",
    "ChangeSet",
    "Conflict",
    "Download",
    "reconcile",
    "resolve_conflicts",
    "find_server_deletions",
    "Confirmer",
    "AutoConfirm",
    "ClickConfirm",
    "compute_file_hash",
    "IgnoreRules",
    "BUILTIN_IGNORE_PATTERNS",
    "load_ignore_predicate",
    "DirectoryScanner",
    "LocalFile",
    "ScanResult",
    "Baseline",
    "SyncStateManager",
    "FileNode",
    "DirectoryNode",
    "RemoteFile",
    "build_tree",
    "flatten",
    "parse_tree",
    "tree_to_dict",
]
