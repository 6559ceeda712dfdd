"""CLI commands for inspecting and emptying the safe-delete trash."""

from __future__ import annotations

import importlib
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer
    from typer import Typer as TyperType
else:  # pragma: no cover - runtime fallback for typing
    typer = importlib.import_module("typer")
    TyperType = Any

from rich.console import Console
from rich.table import Table

from txfs.core.settings import EngineSettings
from txfs.fs.trash import TrashBin
from txfs.utils.formatting import format_age, format_bytes

app: TyperType = typer.Typer(help="Inspect files removed by delete_safe.")

RootOption = Annotated[
    Path,
    typer.Option("--root", help="Workspace root the trash belongs to."),
]
StateDirOption = Annotated[
    Path | None,
    typer.Option("--state-dir", help="Optional override for the engine state dir."),
]
JsonFlag = Annotated[
    bool,
    typer.Option("--json", help="Emit entries as JSON."),
]
UuidArgument = Annotated[str, typer.Argument(help="Deletion UUID of the entry.")]
TargetOption = Annotated[
    Path | None,
    typer.Option("--target", help="Restore to this path instead of the original."),
]
AllFlag = Annotated[
    bool,
    typer.Option("--all", help="Purge every entry."),
]


def _trash_bin(root: Path, state_dir: Path | None) -> TrashBin:
    settings = EngineSettings.from_env(root, state_dir)
    return TrashBin(settings.root, settings.trash_dir)


def list_entries(
    root: RootOption = Path("."),
    state_dir: StateDirOption = None,
    json_output: JsonFlag = False,
) -> None:
    """List trash entries, newest first."""

    entries = _trash_bin(root, state_dir).list_entries()

    if json_output:
        payload = [entry.model_dump(mode="json") for entry in entries]
        typer.echo(json.dumps(payload, indent=2))
        return
    if not entries:
        typer.echo("Trash is empty.")
        return

    now = datetime.now(UTC)
    table = Table(title=f"Trash ({len(entries)} entries)")
    table.add_column("UUID", style="cyan", no_wrap=True)
    table.add_column("Path")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Deleted")
    table.add_column("Reason")
    for entry in entries:
        table.add_row(
            entry.deletion_uuid,
            entry.original_path,
            entry.file_type,
            format_bytes(entry.size_bytes),
            format_age((now - entry.deleted_at).total_seconds()),
            entry.reason or "",
        )
    Console().print(table)


def restore_entry(
    deletion_uuid: UuidArgument,
    root: RootOption = Path("."),
    state_dir: StateDirOption = None,
    target: TargetOption = None,
) -> None:
    """Move a trash entry back into the workspace."""

    trash = _trash_bin(root, state_dir)
    destination = None
    if target is not None:
        destination = target if target.is_absolute() else trash.root / target
    try:
        result = trash.restore(deletion_uuid, destination)
    except FileNotFoundError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    if result.status == "conflict":
        typer.secho(result.message or "conflict", err=True, fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)
    typer.secho(f"Restored {result.path}", fg=typer.colors.GREEN)


def purge_entries(
    deletion_uuid: Annotated[
        str | None, typer.Argument(help="Entry to purge (omit with --all).")
    ] = None,
    root: RootOption = Path("."),
    state_dir: StateDirOption = None,
    purge_all: AllFlag = False,
) -> None:
    """Permanently delete one trash entry, or all of them with --all."""

    if deletion_uuid is None and not purge_all:
        typer.secho("Give an entry UUID or --all.", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2)

    deleted, freed = _trash_bin(root, state_dir).purge(
        None if purge_all else deletion_uuid
    )
    typer.secho(
        f"Purged {deleted} entr{'y' if deleted == 1 else 'ies'} "
        f"({format_bytes(freed)} freed)",
        fg=typer.colors.GREEN,
    )


app.command("list")(list_entries)
app.command("restore")(restore_entry)
app.command("purge")(purge_entries)
