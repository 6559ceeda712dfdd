"""Core constants for txfs.

This module defines constants used throughout the engine:
- Engine state directory layout
- Transaction identifier rules
- Defaults for the registry sweep and retention windows
"""

import re

# ============================================================================
# State Directory Layout
# ============================================================================

#: Name of the engine state directory created under the workspace root
STATE_DIR_NAME: str = ".txfs"

#: Subdirectory holding per-transaction snapshots
SNAPSHOTS_DIR_NAME: str = "snapshots"

#: Subdirectory holding safe-deleted files
TRASH_DIR_NAME: str = "trash"

#: Suffix of a snapshot directory that has not been published yet
PARTIAL_SUFFIX: str = ".partial"

#: Snapshot manifest file name
SNAPSHOT_MANIFEST: str = "manifest.jsonl"

#: Snapshot manifest schema version
SNAPSHOT_SCHEMA_VERSION: str = "1.0"

# ============================================================================
# Transactions
# ============================================================================

#: Prefix for generated transaction identifiers
TRANSACTION_ID_PREFIX: str = "tx_"

#: Caller-supplied identifiers must be usable as a directory name
TRANSACTION_ID_PATTERN: re.Pattern[str] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")

#: Format for staged operation identifiers (1-based)
OPERATION_ID_FORMAT: str = "op_{:03d}"

# ============================================================================
# Registry Configuration
# ============================================================================

#: Idle seconds after which an active transaction is swept (15 minutes)
DEFAULT_STALE_AFTER: float = 900.0

#: Seconds a terminal transaction stays inspectable before removal (5 minutes)
DEFAULT_RETAIN_TERMINAL: float = 300.0

#: Seconds between background sweeps
DEFAULT_SWEEP_INTERVAL: float = 60.0

# ============================================================================
# Snapshot Restore
# ============================================================================

#: Attempts per path when restoring a pre-image (first try + one retry)
RESTORE_ATTEMPTS: int = 2

#: File suffixes checked by the default syntax checker
SYNTAX_CHECKED_SUFFIXES: tuple[str, ...] = (".py", ".json", ".toml")
