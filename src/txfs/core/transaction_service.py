"""Public transaction interface and the factory that wires its dependencies.

Every method returns a JSON-ready dict built from the schemas in
:mod:`txfs.routes.schemas`. Stage and commit failures come back as
``rejected`` / ``failed`` payloads; unknown ids and illegal lifecycle calls
raise :class:`~txfs.core.errors.TransactionNotFound` and
:class:`~txfs.core.errors.InvalidTransactionState`.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from txfs.core.committer import Committer
from txfs.core.errors import ConflictError
from txfs.core.operations import Operation, dump_operation
from txfs.core.registry import TransactionRegistry
from txfs.core.settings import EngineSettings
from txfs.core.sweeper import StaleTransactionSweeper
from txfs.core.validator import DeepValidator, SyntaxChecker, Validator
from txfs.fs.snapshots import SnapshotStore
from txfs.fs.trash import SafeDeleter, TrashBin
from txfs.routes.schemas import (
    BeginResponse,
    CommitFailedResponse,
    CommittedResponse,
    RejectedResponse,
    RolledBackResponse,
    StagedResponse,
    TransactionDetail,
    TransactionList,
)


class TransactionService:
    """Begin, stage, commit and cancel transactions over one workspace."""

    def __init__(
        self,
        settings: EngineSettings,
        registry: TransactionRegistry,
        validator: Validator,
        committer: Committer,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.validator = validator
        self.committer = committer

    @property
    def root(self) -> Path:
        return self.settings.root

    def begin_transaction(self, transaction_id: str | None = None) -> dict[str, Any]:
        """Start a new active transaction.

        Args:
            transaction_id: Optional caller-chosen id; generated when omitted

        Returns:
            ``{transaction_id, status: "active", started_at}``
        """
        transaction = self.registry.begin(transaction_id)
        return BeginResponse(
            transaction_id=transaction.transaction_id,
            started_at=transaction.created_at,
        ).model_dump(mode="json")

    def add_operation(
        self,
        transaction_id: str,
        operation: Operation | Mapping[str, Any],
    ) -> dict[str, Any]:
        """Validate and stage an operation.

        Returns:
            ``{operation_id, operation_index, status: "staged", validation}``
            or ``{status: "rejected", reason, error}``
        """
        outcome = self.validator.add_operation(transaction_id, operation)
        if outcome.staged is not None:
            staged = outcome.staged
            return StagedResponse(
                operation_id=staged.operation_id,
                operation_index=staged.index,
                validation=staged.validation.model_dump(mode="json"),
            ).model_dump(mode="json")

        error = outcome.error
        return RejectedResponse(
            reason=outcome.reason or "rejected",
            error=error.code if error is not None else "validation_error",
            owner_id=error.owner_id if isinstance(error, ConflictError) else None,
        ).model_dump(mode="json", exclude_none=True)

    def commit_transaction(self, transaction_id: str) -> dict[str, Any]:
        """Apply every staged operation atomically.

        Returns:
            A ``committed`` payload, or a ``failed`` payload naming the failing
            operation index and the rollback status
        """
        outcome = self.committer.commit(transaction_id)
        if outcome.committed and outcome.committed_at is not None:
            return CommittedResponse(
                transaction_id=transaction_id,
                operations_applied=outcome.operations_applied,
                files_changed=outcome.files_changed,
                committed_at=outcome.committed_at,
            ).model_dump(mode="json")

        return CommitFailedResponse(
            transaction_id=transaction_id,
            failed_operation_index=outcome.failed_index,
            reason=outcome.reason or "commit failed",
            rollback_status=outcome.rollback_status or "complete",
            unrestored_paths=outcome.unrestored_paths,
        ).model_dump(mode="json")

    def rollback_transaction(self, transaction_id: str) -> dict[str, Any]:
        """Cancel an active transaction; the filesystem is not touched."""
        outcome = self.committer.rollback(transaction_id)
        return RolledBackResponse(
            transaction_id=outcome.transaction_id,
            operations_discarded=outcome.operations_discarded,
        ).model_dump(mode="json")

    def list_transactions(self) -> dict[str, Any]:
        summaries = self.registry.list()
        return TransactionList(
            transactions=summaries, total=len(summaries)
        ).model_dump(mode="json")

    def get_transaction(self, transaction_id: str) -> dict[str, Any]:
        """Full record of one transaction, including its staged operations."""
        transaction = self.registry.get(transaction_id)
        operations = [
            {
                "operation_id": staged.operation_id,
                "operation_index": staged.index,
                "status": staged.status,
                "description": staged.operation.describe(),
                "operation": dump_operation(staged.operation),
                "validation": staged.validation.model_dump(mode="json"),
            }
            for staged in transaction.operations
        ]
        return TransactionDetail(
            transaction_id=transaction.transaction_id,
            status=transaction.status.value,
            created_at=transaction.created_at,
            updated_at=transaction.updated_at,
            completed_at=transaction.completed_at,
            operations=operations,
            files_changed=list(transaction.files_changed),
            rollback_status=transaction.rollback_status,
            failure=transaction.failure,
        ).model_dump(mode="json")

    def recover(self) -> list[dict[str, Any]]:
        """Restore snapshots left behind by an interrupted commit."""
        return [
            {
                "transaction_id": report.transaction_id,
                "rollback_status": report.rollback_status,
                "restored": list(report.restored),
                "failed": dict(report.failed),
            }
            for report in self.committer.recover()
        ]

    def start_sweeper(self) -> StaleTransactionSweeper:
        """Start a background sweeper using the configured interval."""
        sweeper = StaleTransactionSweeper(
            self.registry, interval=self.settings.sweep_interval
        )
        sweeper.start()
        return sweeper


def create_transaction_service(
    root: str | Path,
    *,
    settings: EngineSettings | None = None,
    trash: SafeDeleter | None = None,
    deep_validator: DeepValidator | None = None,
) -> TransactionService:
    """Build a transaction service with default dependencies.

    Args:
        root: Workspace root (ignored when ``settings`` is given)
        settings: Explicit settings; defaults to ``EngineSettings.from_env``
        trash: Safe-delete collaborator; defaults to a TrashBin in the state dir
        deep_validator: Content checker; defaults to SyntaxChecker when deep
            validation is enabled
    """
    settings = settings or EngineSettings.from_env(root)

    if deep_validator is None and settings.deep_validation:
        deep_validator = SyntaxChecker()

    registry = TransactionRegistry(
        stale_after=settings.stale_after,
        retain_terminal=settings.retain_terminal,
    )
    validator = Validator(
        registry,
        root=settings.root,
        state_dir=settings.state_dir,
        deep_validator=deep_validator,
    )
    committer = Committer(
        registry,
        SnapshotStore(settings.snapshots_dir, settings.root),
        trash or TrashBin(settings.root, settings.trash_dir),
        root=settings.root,
        state_dir=settings.state_dir,
        deep_validator=deep_validator,
    )
    return TransactionService(settings, registry, validator, committer)
