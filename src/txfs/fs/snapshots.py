"""Durable pre-image snapshots for transaction rollback.

Each committing transaction gets one snapshot directory::

    <state_dir>/snapshots/<transaction_id>/
        manifest.jsonl     header line + one record per captured path
        blobs/000001.bin   file contents referenced by the records

A snapshot is written under ``.<transaction_id>.partial`` and only renamed to
its final name once every blob and the manifest are fsynced. Transaction ids
never start with a dot, so staging directories cannot collide with a
published snapshot, and a published one is always a complete pre-image.
"""

from __future__ import annotations

import json
import os
import platform
import shutil
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

import structlog

from txfs.core.constants import (
    PARTIAL_SUFFIX,
    RESTORE_ATTEMPTS,
    SNAPSHOT_MANIFEST,
    SNAPSHOT_SCHEMA_VERSION,
)
from txfs.core.errors import SnapshotIoError
from txfs.fs.fs_ops import write_atomic
from txfs.fs.paths import fsync_directory, is_within, relative_label
from txfs.utils.debug import debug

logger = structlog.get_logger(__name__)

RecordKind = Literal["file", "directory", "symlink", "absent"]


@dataclass
class SnapshotRecord:
    """Pre-image of one path."""

    path: Path
    label: str
    kind: RecordKind
    blob: str | None = None
    mode: int | None = None
    target: str | None = None
    tree: bool = False
    prune: bool = False

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "entry",
            "path": str(self.path),
            "label": self.label,
            "kind": self.kind,
        }
        if self.blob is not None:
            data["blob"] = self.blob
        if self.mode is not None:
            data["mode"] = self.mode
        if self.target is not None:
            data["target"] = self.target
        if self.tree:
            data["tree"] = True
        if self.prune:
            data["prune"] = True
        return data

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> SnapshotRecord:
        return cls(
            path=Path(data["path"]),
            label=data.get("label", data["path"]),
            kind=data["kind"],
            blob=data.get("blob"),
            mode=data.get("mode"),
            target=data.get("target"),
            tree=bool(data.get("tree", False)),
            prune=bool(data.get("prune", False)),
        )


@dataclass
class SnapshotHandle:
    """Reference to a published snapshot."""

    transaction_id: str
    directory: Path
    record_count: int
    captured_at: datetime


@dataclass
class RestoreReport:
    """Outcome of restoring a snapshot."""

    transaction_id: str
    restored: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return bool(self.failed)

    @property
    def rollback_status(self) -> Literal["complete", "degraded"]:
        return "degraded" if self.failed else "complete"


def _depth(record: SnapshotRecord) -> int:
    return len(record.path.parts)


class SnapshotStore:
    """Captures, restores and discards per-transaction pre-images."""

    def __init__(self, snapshots_dir: Path, root: Path) -> None:
        """Initialize the snapshot store.

        Args:
            snapshots_dir: Directory that holds one subdirectory per snapshot
            root: Workspace root; captured paths are labelled relative to it
        """
        self.snapshots_dir = snapshots_dir
        self.root = root

    # ------------------------------------------------------------------
    # Layout helpers
    # ------------------------------------------------------------------

    def snapshot_dir(self, transaction_id: str) -> Path:
        return self.snapshots_dir / transaction_id

    def staging_dir(self, transaction_id: str) -> Path:
        return self.snapshots_dir / f".{transaction_id}{PARTIAL_SUFFIX}"

    def exists(self, transaction_id: str) -> bool:
        return (self.snapshot_dir(transaction_id) / SNAPSHOT_MANIFEST).is_file()

    def _ensure_snapshots_directory(self, transaction_id: str) -> None:
        """Ensure the snapshot directory exists and is writable."""
        try:
            self.snapshots_dir.mkdir(parents=True, exist_ok=True)
            test_file = self.snapshots_dir / f".test_{uuid.uuid4().hex}"
            test_file.write_text("test")
            test_file.unlink()
        except OSError as e:
            raise SnapshotIoError(
                transaction_id,
                f"cannot write snapshot directory {self.snapshots_dir}: {e}",
            ) from e

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def capture(self, transaction_id: str, paths: Iterable[Path]) -> SnapshotHandle:
        """Record the current state of every path before mutation.

        Args:
            transaction_id: Owning transaction
            paths: Normalized absolute paths about to be mutated

        Returns:
            Handle to the published snapshot

        Raises:
            SnapshotIoError: If any read or write fails; no partial snapshot
                is left behind
        """
        self._ensure_snapshots_directory(transaction_id)

        final_dir = self.snapshot_dir(transaction_id)
        partial_dir = self.staging_dir(transaction_id)
        shutil.rmtree(partial_dir, ignore_errors=True)
        if final_dir.exists():
            raise SnapshotIoError(
                transaction_id, f"a snapshot already exists at {final_dir}"
            )

        try:
            records = self._write_snapshot(transaction_id, partial_dir, paths)
            os.rename(partial_dir, final_dir)
            fsync_directory(self.snapshots_dir)
        except (OSError, ValueError) as e:
            shutil.rmtree(partial_dir, ignore_errors=True)
            logger.error(
                "snapshot.capture_failed", transaction_id=transaction_id, error=str(e)
            )
            raise SnapshotIoError(transaction_id, str(e)) from e

        logger.info(
            "snapshot.capture",
            transaction_id=transaction_id,
            records=len(records),
            directory=str(final_dir),
        )
        return SnapshotHandle(
            transaction_id=transaction_id,
            directory=final_dir,
            record_count=len(records),
            captured_at=datetime.now(UTC),
        )

    def _write_snapshot(
        self, transaction_id: str, directory: Path, paths: Iterable[Path]
    ) -> list[SnapshotRecord]:
        blobs_dir = directory / "blobs"
        blobs_dir.mkdir(parents=True)

        records = self._collect_records(paths)
        for number, record in enumerate(records, start=1):
            if record.kind != "file":
                continue
            record.blob = f"{number:06d}.bin"
            with open(record.path, "rb") as src, open(
                blobs_dir / record.blob, "wb"
            ) as dst:
                shutil.copyfileobj(src, dst)
                dst.flush()
                os.fsync(dst.fileno())

        header = {
            "type": "header",
            "schema_version": SNAPSHOT_SCHEMA_VERSION,
            "transaction_id": transaction_id,
            "generated_at": datetime.now(UTC).isoformat(),
            "root": str(self.root),
            "system": {"os": platform.system()},
        }
        with open(directory / SNAPSHOT_MANIFEST, "w", encoding="utf-8") as f:
            for line in [header, *(record.to_json() for record in records)]:
                f.write(json.dumps(line, ensure_ascii=False, separators=(",", ":")))
                f.write("\n")
            f.flush()
            os.fsync(f.fileno())

        fsync_directory(blobs_dir)
        fsync_directory(directory)
        return records

    def _collect_records(self, paths: Iterable[Path]) -> list[SnapshotRecord]:
        """Build records for the given paths.

        Directories are captured as a tree. Missing paths are recorded as
        absent, together with the highest missing ancestor (marked for
        pruning) so directories created on the way can be removed again.
        """
        unique = sorted(set(paths), key=lambda p: (len(p.parts), str(p)))
        covered: list[Path] = []
        records: list[SnapshotRecord] = []
        seen: set[Path] = set()

        def add(record: SnapshotRecord) -> None:
            if record.path not in seen:
                seen.add(record.path)
                records.append(record)

        for path in unique:
            if any(is_within(path, tree) for tree in covered):
                continue

            if path.is_symlink():
                add(self._symlink_record(path))
            elif path.is_dir():
                covered.append(path)
                for record in self._tree_records(path):
                    add(record)
            elif path.exists():
                add(self._file_record(path))
            else:
                add(SnapshotRecord(path, relative_label(path, self.root), "absent"))
                missing = path.parent
                highest: Path | None = None
                while missing != self.root and is_within(missing, self.root):
                    if missing.exists():
                        break
                    highest = missing
                    missing = missing.parent
                if highest is not None:
                    add(
                        SnapshotRecord(
                            highest,
                            relative_label(highest, self.root),
                            "absent",
                            prune=True,
                        )
                    )
        return records

    def _file_record(self, path: Path) -> SnapshotRecord:
        return SnapshotRecord(
            path,
            relative_label(path, self.root),
            "file",
            mode=path.stat().st_mode & 0o7777,
        )

    def _symlink_record(self, path: Path) -> SnapshotRecord:
        return SnapshotRecord(
            path,
            relative_label(path, self.root),
            "symlink",
            target=os.readlink(path),
        )

    def _tree_records(self, top: Path) -> list[SnapshotRecord]:
        records = [
            SnapshotRecord(
                top,
                relative_label(top, self.root),
                "directory",
                mode=top.stat().st_mode & 0o7777,
                tree=True,
            )
        ]
        for dirpath, dirnames, filenames in os.walk(top):
            base = Path(dirpath)
            for name in sorted(dirnames):
                child = base / name
                if child.is_symlink():
                    records.append(self._symlink_record(child))
                else:
                    records.append(
                        SnapshotRecord(
                            child,
                            relative_label(child, self.root),
                            "directory",
                            mode=child.stat().st_mode & 0o7777,
                        )
                    )
            for name in sorted(filenames):
                child = base / name
                if child.is_symlink():
                    records.append(self._symlink_record(child))
                else:
                    records.append(self._file_record(child))
        return records

    # ------------------------------------------------------------------
    # Load / restore / discard
    # ------------------------------------------------------------------

    def load(self, transaction_id: str) -> list[SnapshotRecord]:
        """Read the records of a published snapshot.

        Raises:
            FileNotFoundError: If no snapshot exists for the transaction
            ValueError: If the manifest is malformed
        """
        manifest = self.snapshot_dir(transaction_id) / SNAPSHOT_MANIFEST
        with open(manifest, encoding="utf-8") as f:
            lines = [json.loads(line) for line in f if line.strip()]

        header = lines[0] if lines else None
        if not isinstance(header, dict) or header.get("type") != "header":
            raise ValueError(f"snapshot manifest has no header: {manifest}")

        records: list[SnapshotRecord] = []
        for number, line in enumerate(lines[1:], start=2):
            try:
                record = SnapshotRecord.from_json(line)
            except (KeyError, TypeError) as e:
                raise ValueError(
                    f"malformed snapshot record on line {number} "
                    f"of {manifest}: {e!r}"
                ) from e
            if record.kind not in ("file", "directory", "symlink", "absent"):
                raise ValueError(
                    f"unknown record kind {record.kind!r} "
                    f"on line {number} of {manifest}"
                )
            records.append(record)
        return records

    def restore(self, transaction_id: str) -> RestoreReport:
        """Rewrite every recorded pre-image.

        Each path is attempted twice; paths that still fail are reported in
        :attr:`RestoreReport.failed` and the remaining paths are restored
        anyway. A clean restore consumes the snapshot; a degraded one keeps
        it on disk for a later recovery attempt.
        """
        report = RestoreReport(transaction_id=transaction_id)
        records = self.load(transaction_id)
        blobs_dir = self.snapshot_dir(transaction_id) / "blobs"
        captured = {record.path for record in records}

        absent = sorted(
            (r for r in records if r.kind == "absent" and not r.prune),
            key=_depth,
            reverse=True,
        )
        directories = sorted(
            (r for r in records if r.kind == "directory"), key=_depth
        )
        leaves = [r for r in records if r.kind in ("file", "symlink")]
        trees = [r for r in directories if r.tree]
        prunable = sorted(
            (r for r in records if r.prune), key=_depth, reverse=True
        )

        for record in absent:
            self._attempt(report, record.label, lambda r=record: _remove(r.path))
        for record in directories:
            self._attempt(report, record.label, lambda r=record: _restore_dir(r))
        for record in leaves:
            self._attempt(
                report,
                record.label,
                lambda r=record: _restore_leaf(r, blobs_dir),
            )
        for record in trees:
            self._attempt(
                report,
                record.label,
                lambda r=record: _remove_untracked(r.path, captured),
            )
        for record in prunable:
            _prune_empty(record.path)

        if report.degraded:
            logger.error(
                "snapshot.restore_degraded",
                transaction_id=transaction_id,
                failed=report.failed,
            )
        else:
            self.discard(transaction_id)
            logger.info(
                "snapshot.restore",
                transaction_id=transaction_id,
                restored=len(report.restored),
            )
        return report

    def _attempt(self, report: RestoreReport, label: str, action: Any) -> None:
        last_error: Exception | None = None
        for attempt in range(1, RESTORE_ATTEMPTS + 1):
            try:
                action()
            except OSError as e:
                last_error = e
                debug(
                    "restore attempt failed", label=label, attempt=attempt, error=str(e)
                )
                continue
            if label not in report.restored:
                report.restored.append(label)
            report.failed.pop(label, None)
            return
        report.failed[label] = str(last_error)

    def discard(self, transaction_id: str) -> None:
        """Delete a snapshot. Never touches live workspace files."""
        directory = self.snapshot_dir(transaction_id)
        if directory.exists():
            shutil.rmtree(directory)
            debug(f"Discarded snapshot {directory}")

    def pending(self) -> list[str]:
        """List snapshots left behind by an interrupted commit.

        Unpublished ``.<id>.partial`` staging directories are incomplete by
        construction and are removed.
        """
        if not self.snapshots_dir.exists():
            return []

        pending: list[str] = []
        for child in sorted(self.snapshots_dir.iterdir()):
            if not child.is_dir():
                continue
            if child.name.startswith(".") and child.name.endswith(PARTIAL_SUFFIX):
                shutil.rmtree(child, ignore_errors=True)
                continue
            if self.exists(child.name):
                pending.append(child.name)
        return pending


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def _restore_dir(record: SnapshotRecord) -> None:
    path = record.path
    if path.is_symlink() or (path.exists() and not path.is_dir()):
        path.unlink()
    path.mkdir(parents=True, exist_ok=True)
    if record.mode is not None:
        os.chmod(path, record.mode)


def _restore_leaf(record: SnapshotRecord, blobs_dir: Path) -> None:
    path = record.path
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if record.kind == "symlink":
        if path.is_symlink() or path.exists():
            path.unlink()
        os.symlink(record.target or "", path)
        return

    if path.is_symlink():
        path.unlink()
    if record.blob is None:
        raise OSError(f"snapshot record for {record.label} has no blob")
    data = (blobs_dir / record.blob).read_bytes()
    write_atomic(path, data, mode=record.mode)


def _remove_untracked(top: Path, captured: set[Path]) -> None:
    """Delete entries under a restored tree that were not in the pre-image."""
    if not top.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(top, topdown=False):
        base = Path(dirpath)
        for name in filenames:
            child = base / name
            if child not in captured:
                child.unlink()
        for name in dirnames:
            child = base / name
            if child not in captured:
                _remove(child)


def _prune_empty(top: Path) -> None:
    """Remove a directory chain created during the transaction if empty."""
    if not top.is_dir() or top.is_symlink():
        return
    for dirpath, _dirnames, _filenames in os.walk(top, topdown=False):
        try:
            os.rmdir(dirpath)
        except OSError as e:
            debug(f"Keeping non-empty directory {dirpath}: {e}")
