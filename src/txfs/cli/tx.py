"""CLI entry point for running operation batches as transactions."""

from __future__ import annotations

import importlib
import json
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any, NoReturn

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer
    from typer import Typer as TyperType
else:  # pragma: no cover - runtime fallback for typing
    typer = importlib.import_module("typer")
    TyperType = Any

from rich.console import Console

from txfs.chains.batch_chain import BatchChain, BatchOptions, load_batch
from txfs.cli.trash import app as trash_app
from txfs.core.errors import TxfsError
from txfs.core.settings import EngineSettings
from txfs.core.transaction_service import (
    TransactionService,
    create_transaction_service,
)
from txfs.utils.log import configure_logging

app: TyperType = typer.Typer(help="Apply file operations all-or-nothing.")
app.add_typer(trash_app, name="trash")


BatchArgument = Annotated[
    Path,
    typer.Argument(help="JSON batch file: {'operations': [...]}."),
]
RootOption = Annotated[
    Path,
    typer.Option("--root", help="Workspace root operation paths resolve against."),
]
StateDirOption = Annotated[
    Path | None,
    typer.Option("--state-dir", help="Optional override for the engine state dir."),
]
JsonFlag = Annotated[
    bool,
    typer.Option("--json", help="Emit the run report as JSON on stdout."),
]
KeepGoingFlag = Annotated[
    bool,
    typer.Option("--keep-going", help="Stage every operation even after a reject."),
]
VerboseFlag = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Log engine events to stderr."),
]


def main(verbose: VerboseFlag = False) -> None:
    """Transactional file-mutation engine."""

    configure_logging(verbose)


def _service(root: Path, state_dir: Path | None) -> TransactionService:
    return create_transaction_service(
        root, settings=EngineSettings.from_env(root, state_dir)
    )


def _fail(exc: TxfsError) -> NoReturn:
    typer.secho(str(exc), err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1) from exc


def _run_batch(
    batch_path: Path,
    root: Path,
    state_dir: Path | None,
    json_output: bool,
    opts: BatchOptions,
) -> None:
    ui = Console(stderr=True) if json_output else Console()
    try:
        batch = load_batch(batch_path)
        report = BatchChain(_service(root, state_dir), ui=ui).run(batch, opts)
    except TxfsError as exc:
        _fail(exc)

    if json_output:
        typer.echo(json.dumps(report.to_dict(), indent=2, sort_keys=True))
    if not report.ok:
        raise typer.Exit(code=1)


def apply_batch(
    batch: BatchArgument,
    root: RootOption = Path("."),
    state_dir: StateDirOption = None,
    json_output: JsonFlag = False,
    keep_going: KeepGoingFlag = False,
) -> None:
    """Stage every operation in BATCH and commit them as one transaction."""

    _run_batch(
        batch,
        root,
        state_dir,
        json_output,
        BatchOptions(mode="apply", stop_on_reject=not keep_going),
    )


def check_batch(
    batch: BatchArgument,
    root: RootOption = Path("."),
    state_dir: StateDirOption = None,
    json_output: JsonFlag = False,
) -> None:
    """Validate BATCH without changing the workspace."""

    _run_batch(
        batch,
        root,
        state_dir,
        json_output,
        BatchOptions(mode="check", stop_on_reject=False),
    )


def recover(
    root: RootOption = Path("."),
    state_dir: StateDirOption = None,
    json_output: JsonFlag = False,
) -> None:
    """Restore files from snapshots left by an interrupted commit."""

    try:
        reports = _service(root, state_dir).recover()
    except TxfsError as exc:
        _fail(exc)

    if json_output:
        typer.echo(json.dumps(reports, indent=2, sort_keys=True))
    elif not reports:
        typer.secho("Nothing to recover.", fg=typer.colors.GREEN)
    else:
        for report in reports:
            color = (
                typer.colors.GREEN
                if report["rollback_status"] == "complete"
                else typer.colors.RED
            )
            typer.secho(
                f"{report['transaction_id']}: {report['rollback_status']} "
                f"({len(report['restored'])} restored, "
                f"{len(report['failed'])} failed)",
                fg=color,
            )

    if any(report["rollback_status"] == "degraded" for report in reports):
        raise typer.Exit(code=1)


def run_cli(args: Sequence[str] | None = None) -> None:
    app(args=args)


app.callback()(main)
app.command("apply")(apply_batch)
app.command("check")(check_batch)
app.command("recover")(recover)
