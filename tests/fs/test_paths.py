"""Tests for workspace path resolution."""

import os
from pathlib import Path

import pytest

from txfs.core.errors import ValidationError
from txfs.fs.paths import (
    get_temp_path,
    is_within,
    normalize_path,
    paths_overlap,
    relative_label,
    resolve_workspace_path,
)


class TestNormalizePath:
    def test_relative_anchored_at_root(self, tmp_path: Path) -> None:
        assert normalize_path("a/b.txt", tmp_path) == tmp_path.resolve() / "a" / "b.txt"

    def test_dot_dot_collapsed(self, tmp_path: Path) -> None:
        assert normalize_path("a/../b.txt", tmp_path) == tmp_path.resolve() / "b.txt"

    def test_final_symlink_not_followed(self, tmp_path: Path) -> None:
        target = tmp_path / "target.txt"
        target.write_text("x")
        link = tmp_path / "link.txt"
        os.symlink(target, link)

        assert normalize_path(link) == tmp_path.resolve() / "link.txt"


class TestResolveWorkspacePath:
    def test_inside(self, workspace: Path) -> None:
        assert resolve_workspace_path("src/app.py", workspace) == workspace / "src" / "app.py"

    @pytest.mark.parametrize("raw", ["../x", "/etc/passwd", ".", "src/../.."])
    def test_escapes(self, workspace: Path, raw: str) -> None:
        with pytest.raises(ValidationError, match="escapes workspace"):
            resolve_workspace_path(raw, workspace)

    def test_symlinked_directory_escape(self, workspace: Path, tmp_path: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        os.symlink(outside, workspace / "door")

        with pytest.raises(ValidationError, match="escapes workspace"):
            resolve_workspace_path("door/file.txt", workspace)

    def test_forbidden_directory(self, workspace: Path) -> None:
        with pytest.raises(ValidationError, match="engine state"):
            resolve_workspace_path(".txfs/snapshots/x", workspace, forbidden=workspace / ".txfs")

    def test_empty(self, workspace: Path) -> None:
        with pytest.raises(ValidationError, match="must not be empty"):
            resolve_workspace_path("  ", workspace)


class TestRelations:
    def test_is_within_is_strict(self, tmp_path: Path) -> None:
        assert is_within(tmp_path / "a", tmp_path)
        assert not is_within(tmp_path, tmp_path)
        assert not is_within(tmp_path / "ab", tmp_path / "a")

    def test_overlap(self, tmp_path: Path) -> None:
        assert paths_overlap(tmp_path / "a", tmp_path / "a")
        assert paths_overlap(tmp_path / "a", tmp_path / "a" / "b")
        assert not paths_overlap(tmp_path / "a", tmp_path / "b")

    def test_relative_label(self, tmp_path: Path) -> None:
        assert relative_label(tmp_path / "a" / "b", tmp_path) == "a/b"
        assert relative_label(Path("/elsewhere"), tmp_path) == "/elsewhere"

    def test_temp_path_is_hidden_sibling(self, tmp_path: Path) -> None:
        temp = get_temp_path(tmp_path / "file.txt")

        assert temp.parent == tmp_path
        assert temp.name.startswith(".file.txt.txfs_tmp_")
