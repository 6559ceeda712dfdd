"""Engine settings resolved from arguments and TXFS_* environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

from txfs.core.constants import (
    DEFAULT_RETAIN_TERMINAL,
    DEFAULT_STALE_AFTER,
    DEFAULT_SWEEP_INTERVAL,
    SNAPSHOTS_DIR_NAME,
    STATE_DIR_NAME,
    TRASH_DIR_NAME,
)

__all__ = ["EngineSettings", "resolve_state_dir"]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def resolve_state_dir(root: Path, state_dir: str | Path | None = None) -> Path:
    """Resolve the on-disk engine state directory.

    Args:
        root: Workspace root
        state_dir: Optional explicit directory; relative values are anchored
            at ``root``. When omitted, uses `TXFS_STATE_DIR` or
            ``<root>/.txfs``.

    Returns:
        Absolute path to the state directory (not created here)
    """

    chosen: str | Path | None = state_dir
    env_path = os.getenv("TXFS_STATE_DIR")
    if chosen is None and env_path:
        chosen = env_path
    if chosen is None:
        chosen = STATE_DIR_NAME

    resolved = Path(chosen).expanduser()
    if not resolved.is_absolute():
        resolved = root / resolved
    return resolved.resolve()


class EngineSettings(BaseModel):
    """Configuration for one engine instance.

    Attributes:
        root: Workspace root all operation paths are resolved against
        state_dir: Engine state directory (snapshots, trash)
        stale_after: Idle seconds before an active transaction is swept
        retain_terminal: Seconds a finished transaction stays listed
        sweep_interval: Seconds between background sweeps
        deep_validation: Whether staged content is syntax-checked
    """

    root: Path
    state_dir: Path
    stale_after: float = Field(default=DEFAULT_STALE_AFTER, gt=0)
    retain_terminal: float = Field(default=DEFAULT_RETAIN_TERMINAL, ge=0)
    sweep_interval: float = Field(default=DEFAULT_SWEEP_INTERVAL, gt=0)
    deep_validation: bool = True

    model_config = {"frozen": True}

    @property
    def snapshots_dir(self) -> Path:
        return self.state_dir / SNAPSHOTS_DIR_NAME

    @property
    def trash_dir(self) -> Path:
        return self.state_dir / TRASH_DIR_NAME

    @classmethod
    def from_env(
        cls, root: str | Path, state_dir: str | Path | None = None
    ) -> EngineSettings:
        """Build settings for ``root`` using TXFS_* environment overrides."""
        resolved_root = Path(root).expanduser().resolve()
        return cls(
            root=resolved_root,
            state_dir=resolve_state_dir(resolved_root, state_dir),
            stale_after=_env_float("TXFS_STALE_AFTER", DEFAULT_STALE_AFTER),
            retain_terminal=_env_float(
                "TXFS_RETAIN_TERMINAL", DEFAULT_RETAIN_TERMINAL
            ),
            sweep_interval=_env_float("TXFS_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL),
            deep_validation=_env_flag("TXFS_DEEP_VALIDATION", True),
        )
