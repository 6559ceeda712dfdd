"""CLI tests for the trash subcommands."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from txfs.cli.tx import app
from txfs.core.settings import EngineSettings
from txfs.fs.trash import TrashBin, TrashEntry

runner = CliRunner()


@pytest.fixture()
def trash(workspace: Path) -> TrashBin:
    settings = EngineSettings.from_env(workspace)
    return TrashBin(settings.root, settings.trash_dir)


@pytest.fixture()
def deleted(trash: TrashBin, workspace: Path) -> TrashEntry:
    return trash.delete_safe(workspace / "README.md", reason="tidy")


def test_list_empty(workspace: Path) -> None:
    result = runner.invoke(app, ["trash", "list", "--root", str(workspace)])

    assert result.exit_code == 0
    assert "Trash is empty." in result.output


def test_list_json(workspace: Path, deleted: TrashEntry) -> None:
    result = runner.invoke(app, ["trash", "list", "--root", str(workspace), "--json"])

    assert result.exit_code == 0, result.output
    [entry] = json.loads(result.stdout)
    assert entry["deletion_uuid"] == deleted.deletion_uuid
    assert entry["original_path"] == "README.md"
    assert entry["reason"] == "tidy"


def test_list_table(workspace: Path, deleted: TrashEntry) -> None:
    result = runner.invoke(app, ["trash", "list", "--root", str(workspace)])

    assert result.exit_code == 0, result.output
    assert "Trash (1 entries)" in result.output


def test_restore(workspace: Path, deleted: TrashEntry) -> None:
    result = runner.invoke(
        app, ["trash", "restore", deleted.deletion_uuid, "--root", str(workspace)]
    )

    assert result.exit_code == 0, result.output
    assert "Restored README.md" in result.output
    assert (workspace / "README.md").read_text().startswith("# Demo")


def test_restore_to_target(workspace: Path, deleted: TrashEntry) -> None:
    result = runner.invoke(
        app,
        [
            "trash",
            "restore",
            deleted.deletion_uuid,
            "--root",
            str(workspace),
            "--target",
            "archive/README.md",
        ],
    )

    assert result.exit_code == 0, result.output
    assert (workspace / "archive" / "README.md").is_file()


def test_restore_conflict(workspace: Path, deleted: TrashEntry) -> None:
    (workspace / "README.md").write_text("new readme")

    result = runner.invoke(
        app, ["trash", "restore", deleted.deletion_uuid, "--root", str(workspace)]
    )

    assert result.exit_code == 1
    assert "Path already exists" in result.output


def test_restore_unknown(workspace: Path) -> None:
    result = runner.invoke(app, ["trash", "restore", "nope", "--root", str(workspace)])

    assert result.exit_code == 1
    assert "Trash entry not found" in result.output


def test_purge_requires_target(workspace: Path) -> None:
    result = runner.invoke(app, ["trash", "purge", "--root", str(workspace)])

    assert result.exit_code == 2


def test_purge_all(workspace: Path, trash: TrashBin, deleted: TrashEntry) -> None:
    trash.delete_safe(workspace / "config.json")

    result = runner.invoke(app, ["trash", "purge", "--all", "--root", str(workspace)])

    assert result.exit_code == 0, result.output
    assert "Purged 2 entries" in result.output
    assert trash.list_entries() == []
