"""CLI tests for the apply, check and recover commands."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from txfs.cli.tx import app
from txfs.core.settings import EngineSettings
from txfs.fs.snapshots import SnapshotStore

runner = CliRunner()


@pytest.fixture()
def write_batch(tmp_path: Path):
    def _write(payload: object) -> Path:
        path = tmp_path / "batch.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _write


def test_apply_json_report(workspace: Path, write_batch) -> None:
    batch = write_batch(
        {
            "operations": [
                {"type": "patch_file", "path": "README.md", "search": "hello", "replace": "hey"},
                {"type": "create_directory", "path": "docs"},
            ]
        }
    )

    result = runner.invoke(app, ["apply", str(batch), "--root", str(workspace), "--json"])

    assert result.exit_code == 0, result.output
    report = json.loads(result.stdout)
    assert report["status"] == "committed"
    assert report["commit"]["files_changed"] == ["README.md", "docs"]
    assert (workspace / "docs").is_dir()
    assert "hey world" in (workspace / "README.md").read_text()


def test_apply_rejected_exits_nonzero(workspace: Path, write_batch, tree_of) -> None:
    before = tree_of(workspace)
    batch = write_batch([{"type": "write_file", "path": "../outside.txt", "content": "x"}])

    result = runner.invoke(app, ["apply", str(batch), "--root", str(workspace)])

    assert result.exit_code == 1
    assert "REJECTED" in result.output
    assert tree_of(workspace) == before


def test_check_does_not_touch_workspace(workspace: Path, write_batch, tree_of) -> None:
    before = tree_of(workspace)
    batch = write_batch([{"type": "delete_safe", "path": "config.json"}])

    result = runner.invoke(app, ["check", str(batch), "--root", str(workspace)])

    assert result.exit_code == 0, result.output
    assert "CHECKED" in result.output
    assert tree_of(workspace) == before


def test_missing_batch_file(workspace: Path, tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["apply", str(tmp_path / "nope.json"), "--root", str(workspace)]
    )

    assert result.exit_code == 1
    assert "cannot read batch file" in result.output


def test_state_dir_option(workspace: Path, write_batch, tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    batch = write_batch([{"type": "delete_safe", "path": "config.json"}])

    result = runner.invoke(
        app,
        ["apply", str(batch), "--root", str(workspace), "--state-dir", str(state_dir)],
    )

    assert result.exit_code == 0, result.output
    assert len(list((state_dir / "trash").iterdir())) == 1
    assert not (workspace / ".txfs").exists()


def test_recover_nothing(workspace: Path) -> None:
    result = runner.invoke(app, ["recover", "--root", str(workspace)])

    assert result.exit_code == 0
    assert "Nothing to recover." in result.output


def test_recover_restores_interrupted_commit(workspace: Path) -> None:
    settings = EngineSettings.from_env(workspace)
    store = SnapshotStore(settings.snapshots_dir, settings.root)
    store.capture("tx_crashed", [workspace / "README.md"])
    (workspace / "README.md").write_text("half-applied")

    result = runner.invoke(app, ["recover", "--root", str(workspace), "--json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == [
        {
            "transaction_id": "tx_crashed",
            "rollback_status": "complete",
            "restored": ["README.md"],
            "failed": {},
        }
    ]
    assert (workspace / "README.md").read_text() == "# Demo\n\nhello world\n"
    assert store.pending() == []


def test_verbose_flag_accepted(workspace: Path, write_batch) -> None:
    batch = write_batch([{"type": "create_directory", "path": "docs"}])

    result = runner.invoke(app, ["-v", "check", str(batch), "--root", str(workspace)])

    assert result.exit_code == 0, result.output
