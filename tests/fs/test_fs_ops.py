"""Tests for single-operation appliers and atomic writes."""

import errno
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from txfs.core.errors import OperationFailed
from txfs.core.operations import (
    AppendFile,
    CreateDirectory,
    DeleteSafe,
    MoveFile,
    PatchFile,
    WriteFile,
)
from txfs.fs.fs_ops import (
    affected_labels,
    append_text,
    apply_operation,
    move_path,
    patch_text,
    write_atomic,
)
from txfs.fs.trash import TrashBin


@pytest.fixture
def trash(workspace: Path) -> TrashBin:
    return TrashBin(workspace, workspace / ".txfs" / "trash")


class TestPatchText:
    """Test occurrence-based search and replace."""

    def test_first_occurrence_by_default(self) -> None:
        assert patch_text("a-a-a", "a", "b", 1) == "b-a-a"

    def test_nth_occurrence(self) -> None:
        assert patch_text("a-a-a", "a", "b", 3) == "a-a-b"

    def test_zero_replaces_all(self) -> None:
        assert patch_text("a-a-a", "a", "b", 0) == "b-b-b"

    def test_occurrence_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="only 3 occurrences found"):
            patch_text("a-a-a", "a", "b", 4)

    def test_missing_and_empty(self) -> None:
        with pytest.raises(ValueError, match="not found"):
            patch_text("abc", "z", "y", 1)
        with pytest.raises(ValueError, match="empty"):
            patch_text("abc", "", "y", 1)


class TestAppendText:
    def test_inserts_newline_when_missing(self) -> None:
        assert append_text("line", "next", True) == "line\nnext"

    def test_no_double_newline(self) -> None:
        assert append_text("line\n", "next", True) == "line\nnext"

    def test_empty_file(self) -> None:
        assert append_text("", "first", True) == "first"

    def test_newline_disabled(self) -> None:
        assert append_text("line", "next", False) == "linenext"


class TestWriteAtomic:
    """Test temp-file-then-rename writes."""

    def test_writes_and_leaves_no_temp_files(self, tmp_path: Path) -> None:
        target = tmp_path / "out.txt"

        write_atomic(target, b"payload")

        assert target.read_bytes() == b"payload"
        assert [p.name for p in tmp_path.iterdir()] == ["out.txt"]

    def test_keeps_existing_mode(self, tmp_path: Path) -> None:
        target = tmp_path / "tool.sh"
        target.write_text("old")
        target.chmod(0o750)

        write_atomic(target, b"new")

        assert target.stat().st_mode & 0o777 == 0o750

    def test_failed_replace_keeps_original(self, tmp_path: Path) -> None:
        target = tmp_path / "keep.txt"
        target.write_text("original")

        with patch("txfs.fs.fs_ops.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                write_atomic(target, b"new content")

        assert target.read_text() == "original"
        assert [p.name for p in tmp_path.iterdir()] == ["keep.txt"]


class TestMovePath:
    def test_cross_device_fallback(self, tmp_path: Path) -> None:
        source = tmp_path / "a.txt"
        source.write_text("data")
        destination = tmp_path / "b.txt"
        real_rename = os.rename
        calls = {"count": 0}

        def exdev_once(src, dst):
            calls["count"] += 1
            if calls["count"] == 1:
                raise OSError(errno.EXDEV, "Invalid cross-device link")
            return real_rename(src, dst)

        with patch("txfs.fs.fs_ops.os.rename", side_effect=exdev_once):
            move_path(source, destination)

        assert not source.exists()
        assert destination.read_text() == "data"

    def test_other_errors_propagate(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            move_path(tmp_path / "missing", tmp_path / "dest")


class TestApplyOperation:
    """Test one applier per operation variant."""

    def test_patch(self, workspace: Path, trash: TrashBin) -> None:
        outcome = apply_operation(
            PatchFile(path="README.md", search="hello", replace="bye"),
            root=workspace,
            trash=trash,
        )

        assert (workspace / "README.md").read_text() == "# Demo\n\nbye world\n"
        assert outcome.detail == {"occurrences_found": 1, "occurrences_replaced": 1}
        assert affected_labels(outcome, workspace) == ["README.md"]

    def test_patch_preserves_crlf(self, workspace: Path, trash: TrashBin) -> None:
        target = workspace / "win.txt"
        target.write_bytes(b"one\r\ntwo\r\n")

        apply_operation(
            PatchFile(path="win.txt", search="two", replace="2"), root=workspace, trash=trash
        )

        assert target.read_bytes() == b"one\r\n2\r\n"

    def test_write_creates_and_overwrites(self, workspace: Path, trash: TrashBin) -> None:
        created = apply_operation(
            WriteFile(path="new.txt", content="x"), root=workspace, trash=trash
        )
        overwritten = apply_operation(
            WriteFile(path="new.txt", content="yy"), root=workspace, trash=trash
        )

        assert created.detail["action"] == "created"
        assert overwritten.detail == {"action": "overwritten", "size": 2}

    def test_write_requires_parent_unless_create_dirs(
        self, workspace: Path, trash: TrashBin
    ) -> None:
        with pytest.raises(OperationFailed, match="parent directory does not exist"):
            apply_operation(
                WriteFile(path="a/b.txt", content="x"), root=workspace, trash=trash
            )

        apply_operation(
            WriteFile(path="a/b.txt", content="x", create_dirs=True),
            root=workspace,
            trash=trash,
        )
        assert (workspace / "a" / "b.txt").read_text() == "x"

    def test_append(self, workspace: Path, trash: TrashBin) -> None:
        apply_operation(
            AppendFile(path="README.md", content="tail"), root=workspace, trash=trash
        )

        assert (workspace / "README.md").read_text().endswith("world\ntail")

    def test_append_missing_file(self, workspace: Path, trash: TrashBin) -> None:
        with pytest.raises(OperationFailed, match="file not found"):
            apply_operation(
                AppendFile(path="none.log", content="x"), root=workspace, trash=trash
            )

    def test_delete_goes_to_trash(self, workspace: Path, trash: TrashBin) -> None:
        outcome = apply_operation(
            DeleteSafe(path="config.json", reason="obsolete"), root=workspace, trash=trash
        )

        assert not (workspace / "config.json").exists()
        [entry] = trash.list_entries()
        assert entry.deletion_uuid == outcome.detail["deletion_uuid"]
        assert entry.reason == "obsolete"

    def test_move_refuses_existing_destination(
        self, workspace: Path, trash: TrashBin
    ) -> None:
        with pytest.raises(OperationFailed, match="destination exists"):
            apply_operation(
                MoveFile(source="README.md", destination="config.json"),
                root=workspace,
                trash=trash,
            )

    def test_move_overwrite(self, workspace: Path, trash: TrashBin) -> None:
        outcome = apply_operation(
            MoveFile(source="README.md", destination="config.json", overwrite=True),
            root=workspace,
            trash=trash,
        )

        assert (workspace / "config.json").read_text().startswith("# Demo")
        assert affected_labels(outcome, workspace) == ["README.md", "config.json"]

    def test_move_directory_into_new_parent(
        self, workspace: Path, trash: TrashBin
    ) -> None:
        apply_operation(
            MoveFile(source="src", destination="pkg/src"), root=workspace, trash=trash
        )

        assert (workspace / "pkg" / "src" / "app.py").is_file()

    def test_mkdir_existing_is_unchanged(self, workspace: Path, trash: TrashBin) -> None:
        outcome = apply_operation(
            CreateDirectory(path="src"), root=workspace, trash=trash
        )

        assert outcome.status == "unchanged"

    def test_mkdir_non_recursive(self, workspace: Path, trash: TrashBin) -> None:
        with pytest.raises(OperationFailed):
            apply_operation(
                CreateDirectory(path="x/y", recursive=False), root=workspace, trash=trash
            )

    def test_os_errors_become_operation_failed(
        self, workspace: Path, trash: TrashBin
    ) -> None:
        with patch("txfs.fs.fs_ops.os.replace", side_effect=PermissionError("denied")):
            with pytest.raises(OperationFailed, match="denied"):
                apply_operation(
                    WriteFile(path="README.md", content="x"), root=workspace, trash=trash
                )
