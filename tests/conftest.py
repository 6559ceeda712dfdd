"""Pytest configuration and fixtures for txfs tests."""

from pathlib import Path

import pytest
import structlog

from txfs.core.settings import EngineSettings
from txfs.core.transaction_service import (
    TransactionService,
    create_transaction_service,
)


@pytest.fixture(autouse=True)
def _clean_txfs_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep TXFS_* variables from the developer shell out of tests."""
    for name in (
        "TXFS_STATE_DIR",
        "TXFS_STALE_AFTER",
        "TXFS_RETAIN_TERMINAL",
        "TXFS_SWEEP_INTERVAL",
        "TXFS_DEEP_VALIDATION",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A small workspace with a few files and a subdirectory."""
    root = tmp_path / "workspace"
    (root / "src").mkdir(parents=True)
    (root / "README.md").write_text("# Demo\n\nhello world\n", encoding="utf-8")
    (root / "src" / "app.py").write_text(
        "def greet():\n    return 'hello'\n", encoding="utf-8"
    )
    (root / "config.json").write_text('{"debug": false}\n', encoding="utf-8")
    return root.resolve()


@pytest.fixture
def settings(workspace: Path) -> EngineSettings:
    return EngineSettings.from_env(workspace)


@pytest.fixture
def service(settings: EngineSettings) -> TransactionService:
    return create_transaction_service(settings.root, settings=settings)


def snapshot_tree(root: Path) -> dict[str, bytes | None]:
    """Map every path under ``root`` (engine state excluded) to its bytes.

    Directories map to None.
    """
    tree: dict[str, bytes | None] = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)
        if rel.parts and rel.parts[0] == ".txfs":
            continue
        tree[rel.as_posix()] = None if path.is_dir() else path.read_bytes()
    return tree


@pytest.fixture
def tree_of():
    return snapshot_tree


@pytest.fixture(autouse=True)
def _reset_structlog():
    """CLI runs point structlog at a captured stderr; undo that afterwards."""
    yield
    structlog.reset_defaults()
