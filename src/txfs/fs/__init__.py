"""Filesystem layer: path resolution, atomic appliers, snapshots and trash.

This module provides the single-operation appliers used by the committer,
the pre-image snapshot store used for rollback, and the safe-delete trash.
"""

from txfs.fs.fs_ops import ApplyOutcome, apply_operation, write_atomic
from txfs.fs.paths import normalize_path, resolve_workspace_path
from txfs.fs.snapshots import RestoreReport, SnapshotStore
from txfs.fs.trash import SafeDeleter, TrashBin, TrashEntry

__all__ = [
    "ApplyOutcome",
    "RestoreReport",
    "SafeDeleter",
    "SnapshotStore",
    "TrashBin",
    "TrashEntry",
    "apply_operation",
    "normalize_path",
    "resolve_workspace_path",
    "write_atomic",
]
