"""Process-wide table of transactions and the path-ownership table.

The registry is an explicit object, constructed once and handed to the
validator and committer. ``registry.lock`` is the single mutual-exclusion
discipline: every check-then-claim and every status change happens while it
is held.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import structlog

from txfs.core.constants import (
    DEFAULT_RETAIN_TERMINAL,
    DEFAULT_STALE_AFTER,
    TRANSACTION_ID_PATTERN,
    TRANSACTION_ID_PREFIX,
)
from txfs.core.errors import (
    DuplicateTransaction,
    InvalidTransactionState,
    TransactionNotFound,
    ValidationError,
)
from txfs.core.transaction import Transaction, TransactionStatus
from txfs.fs.paths import paths_overlap
from txfs.routes.schemas import TransactionSummary
from txfs.utils.formatting import format_age

logger = structlog.get_logger(__name__)


@dataclass
class SweepReport:
    """What one sweep pass did."""

    rolled_back: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


class TransactionRegistry:
    """Owns transactions by id and arbitrates path ownership between them."""

    def __init__(
        self,
        *,
        stale_after: float = DEFAULT_STALE_AFTER,
        retain_terminal: float = DEFAULT_RETAIN_TERMINAL,
    ) -> None:
        """Initialize an empty registry.

        Args:
            stale_after: Idle seconds after which sweep() cancels an active
                transaction
            retain_terminal: Seconds sweep() keeps finished transactions
        """
        self.stale_after = stale_after
        self.retain_terminal = retain_terminal
        self.lock = threading.RLock()
        self._transactions: dict[str, Transaction] = {}
        self._owners: dict[Path, str] = {}

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin(self, transaction_id: str | None = None) -> Transaction:
        """Create a new active transaction.

        Raises:
            ValidationError: If a caller-supplied id is not a valid name
            DuplicateTransaction: If the id belongs to a live transaction
        """
        if transaction_id is not None and not TRANSACTION_ID_PATTERN.match(
            transaction_id
        ):
            raise ValidationError(f"invalid transaction id: {transaction_id!r}")

        with self.lock:
            if transaction_id is None:
                transaction_id = self._generate_id()
            existing = self._transactions.get(transaction_id)
            if existing is not None and not existing.is_terminal:
                raise DuplicateTransaction(transaction_id)

            transaction = Transaction(transaction_id=transaction_id)
            self._transactions[transaction_id] = transaction

        logger.info("tx.begin", transaction_id=transaction_id)
        return transaction

    def _generate_id(self) -> str:
        while True:
            candidate = f"{TRANSACTION_ID_PREFIX}{uuid.uuid4().hex}"
            if candidate not in self._transactions:
                return candidate

    def get(self, transaction_id: str) -> Transaction:
        """Look up a transaction.

        Raises:
            TransactionNotFound: If the id is not registered
        """
        transaction = self._transactions.get(transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        return transaction

    def list(self, now: datetime | None = None) -> list[TransactionSummary]:
        """Summaries of every registered transaction, oldest first.

        Reads a copy of the table without taking the lock.
        """
        now = now or datetime.now(UTC)
        transactions = list(self._transactions.values())
        transactions.sort(key=lambda tx: tx.created_at)
        return [
            TransactionSummary(
                transaction_id=tx.transaction_id,
                status=tx.status.value,
                operations_count=len(tx.operations),
                age=format_age(tx.age_seconds(now)),
                age_seconds=tx.age_seconds(now),
            )
            for tx in transactions
        ]

    def remove(self, transaction_id: str) -> None:
        """Drop a finished transaction's record.

        Raises:
            TransactionNotFound: If the id is not registered
            InvalidTransactionState: If the transaction is not terminal
        """
        with self.lock:
            transaction = self.get(transaction_id)
            if not transaction.is_terminal:
                raise InvalidTransactionState(
                    transaction_id, transaction.status.value, "remove"
                )
            del self._transactions[transaction_id]

    def __len__(self) -> int:
        return len(self._transactions)

    # ------------------------------------------------------------------
    # Path ownership
    # ------------------------------------------------------------------

    def owner_of(self, path: Path) -> str | None:
        return self._owners.get(path)

    def find_conflict(
        self, transaction_id: str, paths: Iterable[Path]
    ) -> tuple[Path, str] | None:
        """Return the first path that overlaps one held by another transaction.

        Must be called with the lock held when followed by :meth:`claim`.
        """
        for path in paths:
            owner = self._owners.get(path)
            if owner is not None and owner != transaction_id:
                return path, owner
            for held, holder in self._owners.items():
                if holder != transaction_id and paths_overlap(path, held):
                    return path, holder
        return None

    def claim(self, transaction_id: str, paths: Iterable[Path]) -> None:
        with self.lock:
            for path in paths:
                self._owners[path] = transaction_id

    def release(self, transaction_id: str) -> int:
        """Release every path held by a transaction; returns the count."""
        with self.lock:
            held = [p for p, owner in self._owners.items() if owner == transaction_id]
            for path in held:
                del self._owners[path]
            return len(held)

    def held_paths(self, transaction_id: str) -> set[Path]:
        return {p for p, owner in self._owners.items() if owner == transaction_id}

    def finalize(
        self, transaction: Transaction, status: TransactionStatus, action: str
    ) -> None:
        """Set a terminal status and release the transaction's paths atomically."""
        with self.lock:
            transaction.transition(status, action)
            released = self.release(transaction.transaction_id)
        logger.info(
            "tx.finalize",
            transaction_id=transaction.transaction_id,
            status=status.value,
            released_paths=released,
        )

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    def sweep(self, now: datetime | None = None) -> SweepReport:
        """Cancel idle active transactions and drop expired finished ones."""
        now = now or datetime.now(UTC)
        report = SweepReport()

        with self.lock:
            for transaction in list(self._transactions.values()):
                if (
                    transaction.status is TransactionStatus.ACTIVE
                    and transaction.idle_seconds(now) > self.stale_after
                ):
                    transaction.failure = (
                        f"abandoned: idle for {int(transaction.idle_seconds(now))}s"
                    )
                    self.finalize(transaction, TransactionStatus.ROLLED_BACK, "sweep")
                    report.rolled_back.append(transaction.transaction_id)
                elif (
                    transaction.is_terminal
                    and transaction.completed_at is not None
                    and (now - transaction.completed_at).total_seconds()
                    > self.retain_terminal
                ):
                    del self._transactions[transaction.transaction_id]
                    report.removed.append(transaction.transaction_id)

        if report.rolled_back or report.removed:
            logger.info(
                "tx.sweep",
                rolled_back=report.rolled_back,
                removed=report.removed,
            )
        return report
