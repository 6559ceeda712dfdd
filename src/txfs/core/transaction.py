"""Transaction and staged-operation records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from txfs.core.errors import InvalidTransactionState
from txfs.core.operations import Operation


class TransactionStatus(str, Enum):
    """Lifecycle status of a transaction.

    Attributes:
        ACTIVE: Accepting new operations
        COMMITTING: Frozen; operations are being applied
        COMMITTED: Every operation applied and durable
        ROLLED_BACK: Cancelled, or reverted after a failed commit
    """

    ACTIVE = "active"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.COMMITTED, TransactionStatus.ROLLED_BACK)


_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.ACTIVE: frozenset(
        {TransactionStatus.COMMITTING, TransactionStatus.ROLLED_BACK}
    ),
    TransactionStatus.COMMITTING: frozenset(
        {TransactionStatus.COMMITTED, TransactionStatus.ROLLED_BACK}
    ),
    TransactionStatus.COMMITTED: frozenset(),
    TransactionStatus.ROLLED_BACK: frozenset(),
}


class DeepCheck(BaseModel):
    """Result of the optional syntax/compile check of resulting content."""

    status: Literal["passed", "failed", "skipped"] = "skipped"
    reason: str | None = None

    @property
    def failed(self) -> bool:
        return self.status == "failed"


class ValidationResult(BaseModel):
    """Stage-time validation attached to an accepted operation."""

    status: Literal["valid"] = "valid"
    syntax_check: Literal["passed", "failed", "skipped"] = "skipped"
    syntax_error: str | None = None
    conflicts: list[str] = Field(default_factory=list)

    @classmethod
    def from_check(cls, check: DeepCheck) -> ValidationResult:
        return cls(syntax_check=check.status, syntax_error=check.reason)


@dataclass
class StagedOperation:
    """An accepted operation and its position in the transaction."""

    operation_id: str
    index: int
    operation: Operation
    validation: ValidationResult
    write_paths: tuple[Path, ...]
    status: Literal["staged", "applied", "failed"] = "staged"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Transaction:
    """Ordered batch of staged operations plus lifecycle state."""

    transaction_id: str
    status: TransactionStatus = TransactionStatus.ACTIVE
    operations: list[StagedOperation] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None
    files_changed: list[str] = field(default_factory=list)
    rollback_status: Literal["complete", "degraded"] | None = None
    failure: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def touch(self) -> None:
        self.updated_at = _now()

    def transition(self, new_status: TransactionStatus, action: str) -> None:
        """Move to ``new_status`` if the lifecycle allows it.

        Raises:
            InvalidTransactionState: For any backwards or repeated transition
        """
        if new_status not in _TRANSITIONS[self.status]:
            raise InvalidTransactionState(
                self.transaction_id, self.status.value, action
            )
        self.status = new_status
        self.touch()
        if new_status.is_terminal:
            self.completed_at = self.updated_at

    def reopen(self) -> None:
        """Return a committing transaction to active before any mutation.

        Only used when the snapshot store is unwritable, so the commit can be
        retried once storage is available again.
        """
        if self.status is not TransactionStatus.COMMITTING:
            raise InvalidTransactionState(
                self.transaction_id, self.status.value, "reopen"
            )
        if any(staged.status != "staged" for staged in self.operations):
            raise InvalidTransactionState(
                self.transaction_id, self.status.value, "reopen after apply"
            )
        self.status = TransactionStatus.ACTIVE
        self.touch()

    def claimed_paths(self) -> set[Path]:
        """Union of every staged operation's write paths."""
        paths: set[Path] = set()
        for staged in self.operations:
            paths.update(staged.write_paths)
        return paths

    def age_seconds(self, now: datetime | None = None) -> float:
        return ((now or _now()) - self.created_at).total_seconds()

    def idle_seconds(self, now: datetime | None = None) -> float:
        return ((now or _now()) - self.updated_at).total_seconds()
