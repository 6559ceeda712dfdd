"""CLI entrypoints for txfs."""

from txfs.cli.trash import app as trash_app
from txfs.cli.tx import app as tx_app

__all__ = ["trash_app", "tx_app"]
