"""Batch chain for running a JSON batch of operations as one transaction.

This module provides the BatchChain class that drives a TransactionService
through begin → stage → commit (or cancel), with structured logging and Rich
console output.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import structlog
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
)

from txfs.core.errors import ValidationError
from txfs.core.transaction_service import TransactionService
from txfs.routes.schemas import BatchRequest

Mode = Literal["apply", "check"]
BatchStatus = Literal["committed", "failed", "rejected", "checked"]


@dataclass
class BatchOptions:
    """Options for batch runs.

    Attributes:
        mode: 'apply' commits the batch; 'check' stages it and cancels
        stop_on_reject: Stop staging at the first rejected operation
    """

    mode: Mode = "apply"
    stop_on_reject: bool = True


@dataclass
class BatchReport:
    """Summary of one batch run."""

    transaction_id: str
    status: BatchStatus
    staged: list[dict[str, Any]] = field(default_factory=list)
    rejected: list[dict[str, Any]] = field(default_factory=list)
    commit: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.status in ("committed", "checked") and not self.rejected

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "status": self.status,
            "staged": self.staged,
            "rejected": self.rejected,
            "commit": self.commit,
        }


def load_batch(path: Path) -> BatchRequest:
    """Read and validate a batch file.

    Raises:
        ValidationError: If the file is missing, not JSON, or not a batch
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ValidationError(f"cannot read batch file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ValidationError(f"batch file is not valid JSON: {e}") from e

    if isinstance(raw, list):
        raw = {"operations": raw}
    try:
        return BatchRequest.model_validate(raw)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(
            f"invalid batch: {location}: {first.get('msg', 'invalid')}"
        ) from e


class BatchChain:
    """Runs a batch through a transaction with structured logging.

    In ``apply`` mode every operation is staged and the transaction committed
    only if all of them were accepted; otherwise it is cancelled and the
    workspace is left untouched. ``check`` mode always cancels.
    """

    def __init__(
        self,
        service: TransactionService,
        logger: Any = None,
        ui: Console | None = None,
    ) -> None:
        """Initialize batch chain.

        Args:
            service: Transaction service bound to the workspace
            logger: Optional structlog logger instance
            ui: Optional Rich console for output
        """
        self._service = service
        self._logger = logger or structlog.get_logger()
        self._ui = ui or Console()

    def run(self, batch: BatchRequest, opts: BatchOptions) -> BatchReport:
        """Stage a batch and commit or cancel it.

        Args:
            batch: Parsed batch request
            opts: Batch options

        Returns:
            BatchReport describing every staged/rejected operation and the
            commit result
        """
        begun = self._service.begin_transaction(batch.transaction_id)
        transaction_id = begun["transaction_id"]
        bound_logger = self._logger.bind(
            transaction_id=transaction_id,
            root=str(self._service.root),
            mode=opts.mode,
        )
        report = BatchReport(transaction_id=transaction_id, status="checked")

        with self._create_progress() as progress:
            task = progress.add_task(
                f"Stage ({opts.mode})", total=len(batch.operations)
            )
            for index, payload in enumerate(batch.operations):
                result = self._service.add_operation(transaction_id, payload)
                progress.advance(task)
                bound_logger.info(
                    "batch.stage",
                    index=index,
                    op=payload.get("type"),
                    status=result["status"],
                    reason=result.get("reason"),
                )
                self._show_stage_result(index, payload, result)

                if result["status"] == "staged":
                    report.staged.append(result)
                    continue
                report.rejected.append({"index": index, **result})
                if opts.stop_on_reject:
                    break

        if opts.mode == "check" or report.rejected:
            self._service.rollback_transaction(transaction_id)
            report.status = "rejected" if report.rejected else "checked"
            bound_logger.info(
                "batch.cancelled",
                staged=len(report.staged),
                rejected=len(report.rejected),
            )
            self._show_summary(report)
            return report

        report.commit = self._service.commit_transaction(transaction_id)
        report.status = report.commit["status"]
        if self._service.get_transaction(transaction_id)["status"] == "active":
            # Snapshot capture failed before any change; nothing to retry here.
            self._service.rollback_transaction(transaction_id)
        bound_logger.info(
            "batch.summary",
            status=report.status,
            operations=len(report.staged),
            failed_operation_index=report.commit.get("failed_operation_index"),
            rollback_status=report.commit.get("rollback_status"),
        )
        self._show_summary(report)
        return report

    def _create_progress(self) -> Progress:
        """Create Rich progress display."""
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=self._ui,
            transient=True,
        )

    def _show_stage_result(
        self, index: int, payload: dict[str, Any], result: dict[str, Any]
    ) -> None:
        label = f"#{index} {payload.get('type', '?')}"
        if result["status"] == "staged":
            check = result.get("validation", {}).get("syntax_check")
            suffix = (
                f" [yellow](syntax: {check})[/yellow]" if check == "failed" else ""
            )
            self._ui.print(
                f"✅ [green]STAGED[/green] {label} {result['operation_id']}{suffix}"
            )
        else:
            self._ui.print(f"❌ [red]REJECTED[/red] {label} ({result['reason']})")

    def _show_summary(self, report: BatchReport) -> None:
        if report.status == "committed" and report.commit is not None:
            files = ", ".join(report.commit["files_changed"]) or "-"
            self._ui.print(
                f"✅ [green]COMMITTED[/green] {report.transaction_id} "
                f"({report.commit['operations_applied']} operations; {files})"
            )
        elif report.status == "failed" and report.commit is not None:
            self._ui.print(
                f"❌ [red]FAILED[/red] {report.transaction_id} at operation "
                f"{report.commit['failed_operation_index']}: {report.commit['reason']}"
            )
            if report.commit["rollback_status"] == "degraded":
                self._ui.print(
                    "⚠️ [bold red]Rollback degraded[/bold red]; not restored: "
                    + ", ".join(report.commit.get("unrestored_paths", []))
                )
            else:
                self._ui.print("↩️ [blue]Rolled back[/blue]; workspace unchanged")
        elif report.status == "rejected":
            self._ui.print(
                f"🔄 [yellow]Cancelled[/yellow] {report.transaction_id}; "
                f"{len(report.rejected)} operation(s) rejected"
            )
        else:
            self._ui.print(
                f"🔍 [blue]CHECKED[/blue] {report.transaction_id}; "
                f"{len(report.staged)} operation(s) would be staged"
            )
