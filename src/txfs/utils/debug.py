"""Opt-in trace output for the filesystem layer.

Low-level helpers (atomic writes, moves, snapshot restore attempts, trash
moves) call :func:`debug` instead of logging: these traces are too chatty
for the structured event log and only matter when chasing a filesystem
problem by hand.

Set ``TXFS_DEBUG`` to ``1``, ``true`` or ``yes`` (any case) to turn them on.
The variable is read once at import; reload the module to pick up changes.
Output always goes to stderr so ``--json`` reports on stdout stay clean.
"""

import os
import sys
from typing import Any

_TRUTHY = ("1", "true", "yes")

_DEBUG_ENABLED = os.environ.get("TXFS_DEBUG", "").strip().lower() in _TRUTHY


def enabled() -> bool:
    return _DEBUG_ENABLED


def debug(msg: Any, **fields: Any) -> None:
    """Write a trace line to stderr when ``TXFS_DEBUG`` is on.

    Args:
        msg: Message text
        **fields: Extra context appended as ``key=value`` pairs
    """
    if not _DEBUG_ENABLED:
        return
    line = f"[DEBUG] {msg}"
    if fields:
        line += " " + " ".join(f"{key}={value!r}" for key, value in fields.items())
    print(line, file=sys.stderr)
