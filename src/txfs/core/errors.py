"""Custom exceptions for txfs.

This module defines the typed exceptions used throughout the engine. Stage and
commit failures are carried inside structured outcomes; lifecycle misuse
(unknown ids, illegal transitions) is raised to the caller.
"""

from typing import Any


class TxfsError(Exception):
    """Base exception for all txfs errors.

    All custom exceptions inherit from this base class to allow broad
    exception handling when needed.
    """

    code: str = "txfs_error"

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {"error": self.code, "message": str(self)}


class ValidationError(TxfsError):
    """Raised when an operation is rejected at stage time.

    The transaction is unaffected; the caller may adjust and retry.

    Attributes:
        reason: Human-readable rejection reason
        operation_index: Sequence index the operation would have taken
    """

    code = "validation_error"

    def __init__(self, reason: str, operation_index: int | None = None) -> None:
        self.reason = reason
        self.operation_index = operation_index
        super().__init__(reason)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"error": self.code, "reason": self.reason}
        if self.operation_index is not None:
            result["operation_index"] = self.operation_index
        return result

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(reason={self.reason!r}, "
            f"operation_index={self.operation_index!r})"
        )


class ConflictError(ValidationError):
    """Raised when a path is already owned by another live transaction.

    Attributes:
        path: The contested path
        owner_id: Identifier of the transaction holding the path
    """

    code = "conflict"

    def __init__(
        self, path: str, owner_id: str, operation_index: int | None = None
    ) -> None:
        self.path = path
        self.owner_id = owner_id
        super().__init__(f"path locked by {owner_id}: {path}", operation_index)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["path"] = self.path
        result["owner_id"] = self.owner_id
        return result

    def __repr__(self) -> str:
        return f"ConflictError(path={self.path!r}, owner_id={self.owner_id!r})"


class OperationFailed(TxfsError):
    """Raised when a single operation cannot be applied to the filesystem.

    Attributes:
        op: Operation type (e.g. 'patch_file')
        path: Primary path of the operation
        reason: Why the apply step failed
    """

    code = "operation_failed"

    def __init__(self, op: str, path: str, reason: str) -> None:
        self.op = op
        self.path = path
        self.reason = reason
        super().__init__(f"{op} failed for {path}: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "op": self.op,
            "path": self.path,
            "reason": self.reason,
        }


class CommitFailure(TxfsError):
    """Describes an operation that failed while a transaction was applying.

    The engine has already rolled back every operation applied before the
    failing one when this error is produced.

    Attributes:
        failed_index: Sequence index of the failing operation
        reason: Failure reason
        rollback_status: 'complete' or 'degraded'
    """

    code = "commit_failed"

    def __init__(
        self,
        failed_index: int | None,
        reason: str,
        rollback_status: str = "complete",
    ) -> None:
        self.failed_index = failed_index
        self.reason = reason
        self.rollback_status = rollback_status

        message = "Commit failed"
        if failed_index is not None:
            message += f" at operation {failed_index}"
        message += f": {reason} (rollback {rollback_status})"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "failed_operation_index": self.failed_index,
            "reason": self.reason,
            "rollback_status": self.rollback_status,
        }

    def __repr__(self) -> str:
        return (
            f"CommitFailure(failed_index={self.failed_index!r}, "
            f"reason={self.reason!r}, "
            f"rollback_status={self.rollback_status!r})"
        )


class SnapshotIoError(TxfsError):
    """Raised when pre-images cannot be captured before a commit.

    No mutation has happened when this is raised; the transaction is returned
    to the active state so the commit can be retried.
    """

    code = "snapshot_io_error"

    def __init__(self, transaction_id: str, reason: str) -> None:
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(f"Snapshot failed for transaction {transaction_id}: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "transaction_id": self.transaction_id,
            "reason": self.reason,
        }


class DegradedRollback(TxfsError):
    """Raised (or reported) when some pre-images could not be restored.

    This is the one state in which the workspace may match neither the
    pre-transaction nor the post-transaction image.

    Attributes:
        transaction_id: Transaction whose rollback degraded
        failed_paths: Mapping of path to the last restore error
    """

    code = "degraded_rollback"

    def __init__(self, transaction_id: str, failed_paths: dict[str, str]) -> None:
        self.transaction_id = transaction_id
        self.failed_paths = failed_paths
        paths = ", ".join(sorted(failed_paths))
        super().__init__(
            f"Rollback of transaction {transaction_id} degraded; "
            f"{len(failed_paths)} path(s) not restored: {paths}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "transaction_id": self.transaction_id,
            "failed_paths": dict(self.failed_paths),
        }


class TransactionNotFound(TxfsError):
    """Raised when a transaction identifier is not registered."""

    code = "transaction_not_found"

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "transaction_id": self.transaction_id}


class DuplicateTransaction(TxfsError):
    """Raised when begin() is called with an id held by a live transaction."""

    code = "duplicate_transaction"

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} already exists")

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "transaction_id": self.transaction_id}


class InvalidTransactionState(TxfsError):
    """Raised when a lifecycle call does not fit the transaction's status.

    Attributes:
        transaction_id: Transaction identifier
        status: Current status value
        action: The attempted action (e.g. 'commit', 'rollback')
    """

    code = "invalid_transaction_state"

    def __init__(self, transaction_id: str, status: str, action: str) -> None:
        self.transaction_id = transaction_id
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} transaction {transaction_id} (status: {status})"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "transaction_id": self.transaction_id,
            "status": self.status,
            "action": self.action,
        }

    def __repr__(self) -> str:
        return (
            f"InvalidTransactionState(transaction_id={self.transaction_id!r}, "
            f"status={self.status!r}, action={self.action!r})"
        )
