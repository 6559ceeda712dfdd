"""Pydantic schemas for the transaction request/response surface.

These schemas define the payloads exchanged with the command layer:
- BeginResponse: Output of begin_transaction
- StagedResponse / RejectedResponse: Output of add_operation
- CommittedResponse / CommitFailedResponse: Output of commit_transaction
- RolledBackResponse: Output of rollback_transaction
- TransactionSummary / TransactionList: Output of list_transactions
- BatchRequest: JSON batch accepted by the command line

All schemas use Pydantic v2 for validation and serialization.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_serializer


class BeginResponse(BaseModel):
    """A freshly started transaction."""

    transaction_id: str
    status: Literal["active"] = "active"
    started_at: datetime

    @field_serializer("started_at")
    def serialize_started_at(self, value: datetime) -> str:
        """Serialize timestamp as ISO-8601."""
        return value.isoformat()


class StagedResponse(BaseModel):
    """An operation accepted into a transaction.

    Attributes:
        operation_id: Identifier such as 'op_001'
        operation_index: 0-based position in the transaction
        status: Always 'staged'
        validation: Stage-time validation details
    """

    operation_id: str
    operation_index: int
    status: Literal["staged"] = "staged"
    validation: dict[str, Any] = Field(default_factory=dict)


class RejectedResponse(BaseModel):
    """An operation refused at stage time; the transaction is unchanged."""

    status: Literal["rejected"] = "rejected"
    reason: str
    error: str
    owner_id: str | None = None


class CommittedResponse(BaseModel):
    """Every staged operation was applied."""

    status: Literal["committed"] = "committed"
    transaction_id: str
    operations_applied: int
    files_changed: list[str]
    committed_at: datetime

    @field_serializer("committed_at")
    def serialize_committed_at(self, value: datetime) -> str:
        """Serialize timestamp as ISO-8601."""
        return value.isoformat()


class CommitFailedResponse(BaseModel):
    """A commit that failed and was rolled back.

    ``failed_operation_index`` is None when the commit aborted before any
    operation was attempted (snapshot capture failure).
    """

    status: Literal["failed"] = "failed"
    transaction_id: str
    failed_operation_index: int | None
    reason: str
    rollback_status: Literal["complete", "degraded"]
    unrestored_paths: list[str] = Field(default_factory=list)


class RolledBackResponse(BaseModel):
    """An active transaction cancelled without touching the filesystem."""

    status: Literal["rolled_back"] = "rolled_back"
    transaction_id: str
    operations_discarded: int


class TransactionSummary(BaseModel):
    """One row of list_transactions.

    Attributes:
        transaction_id: Transaction identifier
        status: Lifecycle status value
        operations_count: Number of staged operations
        age: Human-readable age such as '12s ago'
        age_seconds: Age in seconds
    """

    transaction_id: str
    status: Literal["active", "committing", "committed", "rolled_back"]
    operations_count: int
    age: str
    age_seconds: float


class TransactionList(BaseModel):
    """Output of list_transactions."""

    transactions: list[TransactionSummary]
    total: int


class TransactionDetail(BaseModel):
    """Full view of one transaction for inspection."""

    transaction_id: str
    status: str
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    operations: list[dict[str, Any]]
    files_changed: list[str] = Field(default_factory=list)
    rollback_status: str | None = None
    failure: str | None = None


class BatchRequest(BaseModel):
    """A JSON batch run as one transaction by the command line.

    Attributes:
        transaction_id: Optional caller-chosen transaction id
        operations: Operation payloads, staged in order
    """

    transaction_id: str | None = None
    operations: list[dict[str, Any]] = Field(min_length=1)

    model_config = {"extra": "forbid"}
