"""Path utilities for filesystem operations.

This module provides workspace path resolution, atomic temp-path generation
and directory fsync used by the appliers and the snapshot store.
"""

import os
import unicodedata
import uuid
from pathlib import Path

from txfs.core.errors import ValidationError


def normalize_path(path: Path | str, root: Path | None = None) -> Path:
    """Normalize a path for consistent handling.

    Relative paths are anchored at ``root`` (or the working directory).
    Symlinks in the final component are not followed, so a link is handled
    as the link itself rather than as its target.

    Args:
        path: Path to normalize
        root: Optional root directory for relative paths

    Returns:
        Normalized absolute path
    """
    if not isinstance(path, Path):
        path = Path(path)

    if not path.is_absolute():
        path = (root or Path.cwd()) / path

    path = Path(os.path.abspath(path))
    parent = path.parent.resolve()
    path = parent / path.name if path.name else parent

    # Normalize Unicode (NFC on macOS, NFD handling)
    if os.name == "posix":
        path = Path(unicodedata.normalize("NFC", str(path)))

    return path


def resolve_workspace_path(
    raw: str, root: Path, *, forbidden: Path | None = None
) -> Path:
    """Resolve an operation path inside the workspace root.

    Args:
        raw: Path as given by the caller (relative or absolute)
        root: Normalized workspace root
        forbidden: Optional directory the path must not fall inside

    Returns:
        Normalized absolute path

    Raises:
        ValidationError: If the path is empty, escapes the workspace or
            points into the forbidden directory
    """
    if not raw or not raw.strip():
        raise ValidationError("path must not be empty")

    path = normalize_path(raw, root)
    if path == root or not is_within(path, root):
        raise ValidationError(f"path escapes workspace: {raw}")
    if forbidden is not None and (path == forbidden or is_within(path, forbidden)):
        raise ValidationError(f"path is reserved for engine state: {raw}")
    return path


def is_within(path: Path, ancestor: Path) -> bool:
    """Return True if ``path`` is strictly below ``ancestor``."""
    try:
        path.relative_to(ancestor)
    except ValueError:
        return False
    return path != ancestor


def paths_overlap(a: Path, b: Path) -> bool:
    """Two paths overlap when equal or when one contains the other."""
    return a == b or is_within(a, b) or is_within(b, a)


def relative_label(path: Path, root: Path) -> str:
    """Render a path relative to the workspace root for reports."""
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def get_temp_path(target: Path) -> Path:
    """Get a sibling temp path for atomic write-then-rename.

    The temp file lives in the target's directory so the final rename never
    crosses a filesystem boundary.
    """
    return target.with_name(f".{target.name}.txfs_tmp_{uuid.uuid4().hex[:8]}")


def ensure_parent_dir(path: Path) -> None:
    """Ensure parent directory exists for a path.

    Args:
        path: Path whose parent directory should exist

    Raises:
        OSError: If parent directory cannot be created
    """
    parent = path.parent
    if not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)


def fsync_directory(path: Path) -> None:
    """Flush a directory entry so a rename inside it survives a crash."""
    if os.name != "posix":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
