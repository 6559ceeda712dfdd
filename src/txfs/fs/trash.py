"""Safe deletion into a recoverable, project-local trash.

Deleted paths are moved (never unlinked) into
``<state_dir>/trash/<deletion_uuid>/content`` next to a ``metadata.json``
record, so they can be listed, restored or purged later.
"""

from __future__ import annotations

import json
import os
import shutil
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal, Protocol

from pydantic import BaseModel, Field

from txfs.core.errors import OperationFailed
from txfs.fs.paths import ensure_parent_dir, fsync_directory, relative_label
from txfs.utils.debug import debug


class TrashEntry(BaseModel):
    """Metadata for one safe-deleted path."""

    deletion_uuid: str
    original_path: str
    deleted_at: datetime
    deleted_by: str = "txfs"
    reason: str | None = None
    file_type: Literal["file", "directory"]
    size_bytes: int
    tags: list[str] = Field(default_factory=list)


class TrashRestoreResult(BaseModel):
    """Result of restoring a trash entry."""

    status: Literal["restored", "conflict"]
    path: str
    message: str | None = None


class SafeDeleter(Protocol):
    """Collaborator that moves a path to a recoverable location."""

    def delete_safe(
        self, path: Path, reason: str | None = None, tags: list[str] | None = None
    ) -> TrashEntry: ...


def _tree_size(path: Path) -> int:
    if not path.is_dir() or path.is_symlink():
        return path.lstat().st_size
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            try:
                total += (Path(dirpath) / name).lstat().st_size
            except OSError:
                continue
    return total


class TrashBin:
    """Default safe-delete implementation backed by a trash directory."""

    def __init__(self, root: Path, trash_dir: Path) -> None:
        """Initialize the trash bin.

        Args:
            root: Workspace root (original paths are recorded relative to it)
            trash_dir: Directory that stores trash entries
        """
        self.root = root
        self.trash_dir = trash_dir

    def _entry_dir(self, deletion_uuid: str) -> Path:
        return self.trash_dir / deletion_uuid

    def delete_safe(
        self, path: Path, reason: str | None = None, tags: list[str] | None = None
    ) -> TrashEntry:
        """Move ``path`` into the trash.

        Raises:
            OperationFailed: If the path is missing or cannot be moved
        """
        label = relative_label(path, self.root)
        if not path.exists() and not path.is_symlink():
            raise OperationFailed("delete_safe", label, "path not found")

        deletion_uuid = str(uuid.uuid4())
        entry_dir = self._entry_dir(deletion_uuid)
        is_dir = path.is_dir() and not path.is_symlink()

        try:
            entry = TrashEntry(
                deletion_uuid=deletion_uuid,
                original_path=label,
                deleted_at=datetime.now(UTC),
                reason=reason,
                file_type="directory" if is_dir else "file",
                size_bytes=_tree_size(path),
                tags=list(tags or []),
            )
            entry_dir.mkdir(parents=True, exist_ok=False)
            (entry_dir / "metadata.json").write_text(
                entry.model_dump_json(indent=2), encoding="utf-8"
            )
            # rename keeps the delete atomic; cross-device falls back to copy
            shutil.move(str(path), str(entry_dir / "content"))
            fsync_directory(path.parent)
        except OSError as e:
            shutil.rmtree(entry_dir, ignore_errors=True)
            raise OperationFailed("delete_safe", label, str(e)) from e

        debug("moved to trash", path=label, entry=deletion_uuid)
        return entry

    def list_entries(self) -> list[TrashEntry]:
        """Return trash entries, newest first. Unreadable entries are skipped."""
        if not self.trash_dir.exists():
            return []

        entries: list[TrashEntry] = []
        for child in self.trash_dir.iterdir():
            metadata = child / "metadata.json"
            if not metadata.is_file():
                continue
            try:
                entries.append(
                    TrashEntry.model_validate_json(metadata.read_text(encoding="utf-8"))
                )
            except (OSError, ValueError) as e:
                debug(f"Skipping unreadable trash entry {child.name}: {e}")
        entries.sort(key=lambda item: item.deleted_at, reverse=True)
        return entries

    def restore(
        self, deletion_uuid: str, target: Path | None = None
    ) -> TrashRestoreResult:
        """Move a trash entry back to its original (or a given) location.

        Raises:
            FileNotFoundError: If the entry does not exist
        """
        entry_dir = self._entry_dir(deletion_uuid)
        metadata = entry_dir / "metadata.json"
        if not metadata.is_file():
            raise FileNotFoundError(f"Trash entry not found: {deletion_uuid}")

        entry = TrashEntry.model_validate_json(metadata.read_text(encoding="utf-8"))
        destination = target or (self.root / entry.original_path)

        if destination.exists() or destination.is_symlink():
            return TrashRestoreResult(
                status="conflict",
                path=relative_label(destination, self.root),
                message=f"Path already exists: {destination}",
            )

        ensure_parent_dir(destination)
        shutil.move(str(entry_dir / "content"), str(destination))
        shutil.rmtree(entry_dir)
        debug(f"Restored from trash: {deletion_uuid} -> {destination}")
        return TrashRestoreResult(
            status="restored", path=relative_label(destination, self.root)
        )

    def purge(self, deletion_uuid: str | None = None) -> tuple[int, int]:
        """Permanently delete one entry, or the whole trash.

        Returns:
            Tuple of (entries deleted, bytes freed)
        """
        if not self.trash_dir.exists():
            return 0, 0

        if deletion_uuid is not None:
            targets = [self._entry_dir(deletion_uuid)]
        else:
            targets = [child for child in self.trash_dir.iterdir() if child.is_dir()]

        deleted = 0
        freed = 0
        for entry_dir in targets:
            metadata = entry_dir / "metadata.json"
            if not metadata.is_file():
                continue
            try:
                data = json.loads(metadata.read_text(encoding="utf-8"))
                freed += int(data.get("size_bytes", 0))
            except (OSError, ValueError) as e:
                debug(f"Unknown size for trash entry {entry_dir.name}: {e}")
            shutil.rmtree(entry_dir)
            deleted += 1
        return deleted, freed
