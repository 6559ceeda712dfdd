"""Tests for the background stale-transaction sweeper."""

import threading
import time
from unittest.mock import patch

import pytest

from txfs.core.registry import SweepReport, TransactionRegistry
from txfs.core.sweeper import StaleTransactionSweeper
from txfs.core.transaction import TransactionStatus


def test_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        StaleTransactionSweeper(TransactionRegistry(), interval=0)


def test_run_once_delegates_to_registry() -> None:
    registry = TransactionRegistry(stale_after=0.01)
    tx = registry.begin()
    time.sleep(0.05)

    report = StaleTransactionSweeper(registry, interval=60).run_once()

    assert report.rolled_back == [tx.transaction_id]
    assert tx.status is TransactionStatus.ROLLED_BACK


def test_background_thread_sweeps_idle_transactions() -> None:
    registry = TransactionRegistry(stale_after=0.05)
    tx = registry.begin()

    with StaleTransactionSweeper(registry, interval=0.02) as sweeper:
        assert sweeper.running
        deadline = time.monotonic() + 5
        while tx.status is TransactionStatus.ACTIVE and time.monotonic() < deadline:
            time.sleep(0.02)

    assert tx.status is TransactionStatus.ROLLED_BACK
    assert not sweeper.running


def test_failed_pass_keeps_thread_alive() -> None:
    registry = TransactionRegistry()
    calls = threading.Event()
    results = iter([RuntimeError("boom")])

    def flaky_sweep(now=None):
        error = next(results, None)
        if error is not None:
            raise error
        calls.set()
        return SweepReport()

    with patch.object(registry, "sweep", side_effect=flaky_sweep):
        with StaleTransactionSweeper(registry, interval=0.01) as sweeper:
            assert calls.wait(timeout=5)
            assert sweeper.running


def test_start_is_idempotent() -> None:
    sweeper = StaleTransactionSweeper(TransactionRegistry(), interval=10)
    sweeper.start()
    first = sweeper._thread
    sweeper.start()

    assert sweeper._thread is first
    sweeper.stop()
