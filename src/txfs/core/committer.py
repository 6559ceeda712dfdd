"""Commit, cancel and crash recovery for transactions.

A commit snapshots every path the transaction will write, applies the staged
operations in order, and on the first failure restores the snapshot so the
workspace is back to its pre-transaction image. Commits of different
transactions run concurrently; only status changes take the registry lock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal

import structlog

from txfs.core.errors import (
    CommitFailure,
    DegradedRollback,
    InvalidTransactionState,
    OperationFailed,
    SnapshotIoError,
    TransactionNotFound,
    TxfsError,
    ValidationError,
)
from txfs.core.registry import TransactionRegistry
from txfs.core.transaction import StagedOperation, Transaction, TransactionStatus
from txfs.core.validator import DeepValidator, resulting_content
from txfs.fs.fs_ops import affected_labels, apply_operation, read_text
from txfs.fs.paths import relative_label
from txfs.fs.snapshots import RestoreReport, SnapshotStore
from txfs.fs.trash import SafeDeleter

logger = structlog.get_logger(__name__)


@dataclass
class CommitOutcome:
    """Result of Committer.commit.

    ``failed_index`` is None for a successful commit and for a commit that
    aborted before any operation was attempted.
    """

    status: Literal["committed", "failed"]
    transaction_id: str
    operations_applied: int = 0
    files_changed: list[str] = field(default_factory=list)
    committed_at: datetime | None = None
    failed_index: int | None = None
    reason: str | None = None
    rollback_status: Literal["complete", "degraded"] | None = None
    unrestored_paths: list[str] = field(default_factory=list)
    error: TxfsError | None = None

    @property
    def committed(self) -> bool:
        return self.status == "committed"


@dataclass
class RollbackOutcome:
    """Result of cancelling an active transaction."""

    transaction_id: str
    operations_discarded: int


class Committer:
    """Applies transactions all-or-nothing."""

    def __init__(
        self,
        registry: TransactionRegistry,
        snapshots: SnapshotStore,
        trash: SafeDeleter,
        *,
        root: Path,
        state_dir: Path | None = None,
        deep_validator: DeepValidator | None = None,
    ) -> None:
        """Initialize the committer.

        Args:
            registry: Registry that owns transactions and path locks
            snapshots: Pre-image store used for rollback
            trash: Safe-delete collaborator for delete_safe operations
            root: Normalized workspace root
            state_dir: Engine state directory operations may not touch
            deep_validator: Checker re-run on resulting content before each apply
        """
        self.registry = registry
        self.snapshots = snapshots
        self.trash = trash
        self.root = root
        self.state_dir = state_dir
        self.deep_validator = deep_validator

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(self, transaction_id: str) -> CommitOutcome:
        """Apply every staged operation, or none of them.

        Raises:
            TransactionNotFound: If the id is not registered
            InvalidTransactionState: If the transaction is not active
            ValidationError: If the transaction has no staged operations
        """
        log = logger.bind(transaction_id=transaction_id)

        with self.registry.lock:
            transaction = self.registry.get(transaction_id)
            if transaction.status is not TransactionStatus.ACTIVE:
                raise InvalidTransactionState(
                    transaction_id, transaction.status.value, "commit"
                )
            if not transaction.operations:
                raise ValidationError("transaction has no staged operations")
            transaction.transition(TransactionStatus.COMMITTING, "commit")
            paths = sorted(transaction.claimed_paths())

        log.info("tx.commit_start", operations=len(transaction.operations))

        try:
            self.snapshots.capture(transaction_id, paths)
        except SnapshotIoError as e:
            with self.registry.lock:
                transaction.reopen()
            log.error("tx.commit_aborted", reason=e.reason)
            return CommitOutcome(
                status="failed",
                transaction_id=transaction_id,
                reason=str(e),
                rollback_status="complete",
                error=e,
            )

        files_changed: list[str] = []
        for staged in transaction.operations:
            try:
                self._revalidate(staged)
                outcome = apply_operation(
                    staged.operation,
                    root=self.root,
                    trash=self.trash,
                    forbidden=self.state_dir,
                )
            except (OperationFailed, ValidationError) as e:
                staged.status = "failed"
                return self._abort(transaction, staged.index, e)
            except Exception as e:
                # Injected collaborators may raise anything; roll back all the same.
                log.exception("tx.apply_crashed", operation_id=staged.operation_id)
                staged.status = "failed"
                failure = OperationFailed(
                    staged.operation.type,
                    relative_label(staged.write_paths[0], self.root),
                    f"unexpected {type(e).__name__}: {e}",
                )
                failure.__cause__ = e
                return self._abort(transaction, staged.index, failure)

            staged.status = "applied"
            for label in affected_labels(outcome, self.root):
                if label not in files_changed:
                    files_changed.append(label)
            log.debug(
                "tx.apply",
                operation_id=staged.operation_id,
                op=outcome.op,
                status=outcome.status,
            )

        try:
            self.snapshots.discard(transaction_id)
        except OSError as e:
            # Committed data is durable; a leftover snapshot is only garbage.
            log.warning("snapshot.discard_failed", error=str(e))

        transaction.files_changed = files_changed
        self.registry.finalize(transaction, TransactionStatus.COMMITTED, "commit")
        log.info(
            "tx.commit",
            operations_applied=len(transaction.operations),
            files_changed=len(files_changed),
        )
        return CommitOutcome(
            status="committed",
            transaction_id=transaction_id,
            operations_applied=len(transaction.operations),
            files_changed=files_changed,
            committed_at=transaction.completed_at,
        )

    def _revalidate(self, staged: StagedOperation) -> None:
        """Re-run deep validation against the content about to be written."""
        if self.deep_validator is None:
            return

        path = staged.write_paths[0]
        current: str | None = None
        if path.is_file():
            try:
                current = read_text(path)
            except (OSError, UnicodeDecodeError):
                current = None

        content = resulting_content(staged.operation, path, current)
        if content is None:
            return
        check = self.deep_validator(path, content)
        if check.failed:
            raise OperationFailed(
                staged.operation.type,
                relative_label(path, self.root),
                f"deep validation failed: {check.reason}",
            )

    def _abort(
        self, transaction: Transaction, failed_index: int, error: TxfsError
    ) -> CommitOutcome:
        """Restore the snapshot after a failed apply and finalize."""
        transaction_id = transaction.transaction_id
        log = logger.bind(transaction_id=transaction_id)
        log.warning("tx.commit_failed", failed_index=failed_index, reason=str(error))

        report = self._restore(transaction_id)
        transaction.rollback_status = report.rollback_status
        transaction.failure = str(error)
        self.registry.finalize(transaction, TransactionStatus.ROLLED_BACK, "commit")

        result: TxfsError = CommitFailure(
            failed_index, str(error), report.rollback_status
        )
        if report.degraded:
            result = DegradedRollback(transaction_id, report.failed)
            log.error("tx.rollback_degraded", failed_paths=report.failed)
        else:
            log.info("tx.rollback", restored=len(report.restored))

        return CommitOutcome(
            status="failed",
            transaction_id=transaction_id,
            failed_index=failed_index,
            reason=str(error),
            rollback_status=report.rollback_status,
            unrestored_paths=sorted(report.failed),
            error=result,
        )

    def _restore(self, transaction_id: str) -> RestoreReport:
        try:
            return self.snapshots.restore(transaction_id)
        except (OSError, ValueError) as e:
            logger.error(
                "snapshot.unreadable", transaction_id=transaction_id, error=str(e)
            )
            return RestoreReport(
                transaction_id=transaction_id,
                failed={"<snapshot>": f"cannot read snapshot: {e}"},
            )

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def rollback(self, transaction_id: str) -> RollbackOutcome:
        """Cancel an active transaction without touching the filesystem.

        Raises:
            TransactionNotFound: If the id is not registered
            InvalidTransactionState: If the transaction is committing or
                already finished
        """
        with self.registry.lock:
            transaction = self.registry.get(transaction_id)
            if transaction.status is not TransactionStatus.ACTIVE:
                raise InvalidTransactionState(
                    transaction_id, transaction.status.value, "rollback"
                )
            discarded = len(transaction.operations)
            transaction.failure = "cancelled"
            self.registry.finalize(
                transaction, TransactionStatus.ROLLED_BACK, "rollback"
            )

        logger.info(
            "tx.rollback",
            transaction_id=transaction_id,
            operations_discarded=discarded,
        )
        return RollbackOutcome(
            transaction_id=transaction_id, operations_discarded=discarded
        )

    # ------------------------------------------------------------------
    # Crash recovery
    # ------------------------------------------------------------------

    def recover(self) -> list[RestoreReport]:
        """Restore snapshots left behind by an interrupted commit.

        Snapshots belonging to a commit still running in this process are
        left alone.
        """
        reports: list[RestoreReport] = []
        for transaction_id in self.snapshots.pending():
            try:
                transaction = self.registry.get(transaction_id)
            except TransactionNotFound:
                transaction = None
            if (
                transaction is not None
                and transaction.status is TransactionStatus.COMMITTING
            ):
                continue

            report = self._restore(transaction_id)
            logger.info(
                "tx.recover",
                transaction_id=transaction_id,
                rollback_status=report.rollback_status,
                restored=len(report.restored),
            )
            reports.append(report)
        return reports
