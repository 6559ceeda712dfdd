"""Background thread that garbage-collects idle and finished transactions."""

from __future__ import annotations

import threading
from types import TracebackType

import structlog

from txfs.core.constants import DEFAULT_SWEEP_INTERVAL
from txfs.core.registry import SweepReport, TransactionRegistry

logger = structlog.get_logger(__name__)


class StaleTransactionSweeper:
    """Calls ``registry.sweep()`` every ``interval`` seconds on a daemon thread.

    Example:
        >>> with StaleTransactionSweeper(registry, interval=30):
        ...     serve()
    """

    def __init__(
        self, registry: TransactionRegistry, interval: float = DEFAULT_SWEEP_INTERVAL
    ) -> None:
        if interval <= 0:
            raise ValueError("sweep interval must be positive")
        self.registry = registry
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> SweepReport:
        return self.registry.sweep()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.run_once()
            except Exception:
                # Log and keep the thread alive for the next pass.
                logger.exception("tx.sweep_failed")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="txfs-sweeper", daemon=True
        )
        self._thread.start()
        logger.debug("tx.sweeper_started", interval=self.interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.debug("tx.sweeper_stopped")

    def __enter__(self) -> StaleTransactionSweeper:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()
