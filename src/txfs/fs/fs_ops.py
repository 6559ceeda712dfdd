"""Single-operation filesystem appliers.

Every function here applies exactly one operation and never leaves a file
half-written: content changes go through :func:`write_atomic`
(temp file in the same directory, fsync, rename). Multi-file atomicity is the
committer's job, not this module's.
"""

import errno
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, assert_never

from txfs.core.errors import OperationFailed
from txfs.core.operations import (
    AppendFile,
    CreateDirectory,
    DeleteSafe,
    MoveFile,
    Operation,
    PatchFile,
    WriteFile,
)
from txfs.fs.paths import (
    ensure_parent_dir,
    fsync_directory,
    get_temp_path,
    relative_label,
    resolve_workspace_path,
)
from txfs.fs.trash import SafeDeleter
from txfs.utils.debug import debug


@dataclass
class ApplyOutcome:
    """Result of applying one operation."""

    op: str
    paths: list[Path]
    status: Literal["applied", "unchanged"] = "applied"
    detail: dict[str, Any] = field(default_factory=dict)


def read_text(path: Path) -> str:
    """Read a file as UTF-8 text, preserving line endings."""
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def patch_text(content: str, search: str, replace: str, occurrence: int) -> str:
    """Replace one (1-based) or all (0) occurrences of ``search``.

    Raises:
        ValueError: If the search text is empty, missing, or the requested
            occurrence does not exist
    """
    if not search:
        raise ValueError("search text is empty")

    found = content.count(search)
    if found == 0:
        raise ValueError("search text not found")
    if occurrence == 0:
        return content.replace(search, replace)
    if occurrence > found:
        raise ValueError(
            f"occurrence {occurrence} requested but only {found} occurrences found"
        )

    start = -1
    for _ in range(occurrence):
        start = content.index(search, start + 1)
    return content[:start] + replace + content[start + len(search) :]


def append_text(existing: str, content: str, newline_before: bool) -> str:
    """Return ``existing`` with ``content`` appended."""
    if newline_before and existing and not existing.endswith("\n"):
        return f"{existing}\n{content}"
    return existing + content


def write_atomic(target: Path, data: bytes, mode: int | None = None) -> None:
    """Write ``data`` to ``target`` via temp file + rename.

    Args:
        target: Destination file path (its parent must exist)
        data: Bytes to write
        mode: Permission bits for the new file; defaults to the existing
            target's mode when it exists
    """
    if mode is None and target.exists():
        mode = target.stat().st_mode & 0o7777

    temp_path = get_temp_path(target)
    try:
        with open(temp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, target)
    except OSError:
        if temp_path.exists():
            temp_path.unlink()
        raise
    fsync_directory(target.parent)
    debug("atomic write", path=str(target), size=len(data))


def move_path(source: Path, destination: Path) -> None:
    """Rename ``source`` to ``destination``, copying across devices."""
    try:
        os.rename(source, destination)
        debug(f"Direct rename: {source} -> {destination}")
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        # Cross-device move: copy + fsync + remove
        if source.is_dir() and not source.is_symlink():
            shutil.copytree(source, destination, symlinks=True)
            shutil.rmtree(source)
        else:
            shutil.copy2(source, destination, follow_symlinks=False)
            with open(destination, "rb") as f:
                os.fsync(f.fileno())
            source.unlink()
        debug(f"Cross-device move: {source} -> {destination}")


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _apply_patch(op: PatchFile, root: Path, forbidden: Path | None) -> ApplyOutcome:
    path = resolve_workspace_path(op.path, root, forbidden=forbidden)
    if not path.is_file():
        raise OperationFailed(op.type, op.path, "file not found")

    content = read_text(path)
    try:
        updated = patch_text(content, op.search, op.replace, op.occurrence)
    except ValueError as e:
        raise OperationFailed(op.type, op.path, str(e)) from e

    write_atomic(path, updated.encode("utf-8"))
    found = content.count(op.search)
    return ApplyOutcome(
        op=op.type,
        paths=[path],
        detail={
            "occurrences_found": found,
            "occurrences_replaced": found if op.occurrence == 0 else 1,
        },
    )


def _apply_write(op: WriteFile, root: Path, forbidden: Path | None) -> ApplyOutcome:
    path = resolve_workspace_path(op.path, root, forbidden=forbidden)
    if path.is_dir():
        raise OperationFailed(op.type, op.path, "path is a directory")

    if op.create_dirs:
        ensure_parent_dir(path)
    elif not path.parent.is_dir():
        raise OperationFailed(op.type, op.path, "parent directory does not exist")

    existed = path.exists()
    data = op.content.encode("utf-8")
    write_atomic(path, data)
    return ApplyOutcome(
        op=op.type,
        paths=[path],
        detail={"action": "overwritten" if existed else "created", "size": len(data)},
    )


def _apply_append(op: AppendFile, root: Path, forbidden: Path | None) -> ApplyOutcome:
    path = resolve_workspace_path(op.path, root, forbidden=forbidden)
    if not path.is_file():
        raise OperationFailed(op.type, op.path, "file not found")

    existing = read_text(path)
    updated = append_text(existing, op.content, op.newline_before)
    write_atomic(path, updated.encode("utf-8"))
    return ApplyOutcome(
        op=op.type,
        paths=[path],
        detail={"bytes_added": len(updated.encode("utf-8")) - len(existing.encode())},
    )


def _apply_delete(
    op: DeleteSafe, root: Path, forbidden: Path | None, trash: SafeDeleter
) -> ApplyOutcome:
    path = resolve_workspace_path(op.path, root, forbidden=forbidden)
    entry = trash.delete_safe(path, reason=op.reason, tags=list(op.tags))
    return ApplyOutcome(
        op=op.type,
        paths=[path],
        detail={"deletion_uuid": entry.deletion_uuid, "size_bytes": entry.size_bytes},
    )


def _apply_move(op: MoveFile, root: Path, forbidden: Path | None) -> ApplyOutcome:
    source = resolve_workspace_path(op.source, root, forbidden=forbidden)
    destination = resolve_workspace_path(op.destination, root, forbidden=forbidden)

    if not source.exists() and not source.is_symlink():
        raise OperationFailed(op.type, op.source, "source not found")
    if destination.exists() or destination.is_symlink():
        if not op.overwrite:
            raise OperationFailed(op.type, op.destination, "destination exists")
        _remove_path(destination)

    try:
        ensure_parent_dir(destination)
        move_path(source, destination)
    except OSError as e:
        raise OperationFailed(op.type, op.source, f"move failed: {e}") from e

    fsync_directory(destination.parent)
    return ApplyOutcome(
        op=op.type,
        paths=[source, destination],
        detail={"type": "directory" if destination.is_dir() else "file"},
    )


def _apply_mkdir(
    op: CreateDirectory, root: Path, forbidden: Path | None
) -> ApplyOutcome:
    path = resolve_workspace_path(op.path, root, forbidden=forbidden)
    if path.is_dir():
        return ApplyOutcome(op=op.type, paths=[path], status="unchanged")
    if path.exists():
        raise OperationFailed(op.type, op.path, "a file exists at this path")

    try:
        path.mkdir(parents=op.recursive)
    except OSError as e:
        raise OperationFailed(op.type, op.path, str(e)) from e
    return ApplyOutcome(op=op.type, paths=[path])


def apply_operation(
    operation: Operation,
    *,
    root: Path,
    trash: SafeDeleter,
    forbidden: Path | None = None,
) -> ApplyOutcome:
    """Apply one operation to the workspace.

    Args:
        operation: Operation to apply
        root: Normalized workspace root
        trash: Safe-delete collaborator used by ``delete_safe``
        forbidden: Engine state directory that operations must not touch

    Returns:
        ApplyOutcome describing what changed

    Raises:
        OperationFailed: If the operation cannot be applied
    """
    try:
        match operation:
            case PatchFile():
                return _apply_patch(operation, root, forbidden)
            case WriteFile():
                return _apply_write(operation, root, forbidden)
            case AppendFile():
                return _apply_append(operation, root, forbidden)
            case DeleteSafe():
                return _apply_delete(operation, root, forbidden, trash)
            case MoveFile():
                return _apply_move(operation, root, forbidden)
            case CreateDirectory():
                return _apply_mkdir(operation, root, forbidden)
            case _:
                assert_never(operation)
    except OperationFailed:
        raise
    except (OSError, UnicodeDecodeError) as e:
        primary = operation.write_paths()[0]
        raise OperationFailed(operation.type, primary, str(e)) from e


def affected_labels(outcome: ApplyOutcome, root: Path) -> list[str]:
    """Workspace-relative labels of the paths an outcome touched."""
    return [relative_label(path, root) for path in outcome.paths]
