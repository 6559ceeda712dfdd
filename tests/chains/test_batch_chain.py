"""Tests for the batch chain."""

import json
from io import StringIO
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from txfs.chains.batch_chain import BatchChain, BatchOptions, load_batch
from txfs.core import committer
from txfs.core.errors import OperationFailed, ValidationError
from txfs.core.transaction_service import TransactionService
from txfs.routes.schemas import BatchRequest


def _chain(service: TransactionService, logger: object = None) -> tuple[BatchChain, StringIO]:
    out = StringIO()
    return BatchChain(service, logger=logger, ui=Console(file=out, width=200)), out


class TestLoadBatch:
    def test_object_form(self, tmp_path: Path) -> None:
        path = tmp_path / "batch.json"
        path.write_text(
            json.dumps(
                {
                    "transaction_id": "tx_custom",
                    "operations": [{"type": "create_directory", "path": "docs"}],
                }
            )
        )

        batch = load_batch(path)

        assert batch.transaction_id == "tx_custom"
        assert batch.operations == [{"type": "create_directory", "path": "docs"}]

    def test_bare_list(self, tmp_path: Path) -> None:
        path = tmp_path / "batch.json"
        path.write_text('[{"type": "create_directory", "path": "docs"}]')

        assert len(load_batch(path).operations) == 1

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="cannot read batch file"):
            load_batch(tmp_path / "missing.json")

    def test_bad_json(self, tmp_path: Path) -> None:
        path = tmp_path / "batch.json"
        path.write_text("{oops")

        with pytest.raises(ValidationError, match="not valid JSON"):
            load_batch(path)

    @pytest.mark.parametrize(
        "payload",
        [
            {"operations": []},
            {"operations": [{"type": "write_file"}], "extra": 1},
            {"ops": []},
        ],
    )
    def test_invalid_shape(self, tmp_path: Path, payload: dict) -> None:
        path = tmp_path / "batch.json"
        path.write_text(json.dumps(payload))

        with pytest.raises(ValidationError, match="invalid batch"):
            load_batch(path)


class TestBatchChain:
    """Test apply/check flows end to end against a real workspace."""

    def test_apply_commits(self, service: TransactionService, workspace: Path) -> None:
        chain, out = _chain(service)
        batch = BatchRequest(
            operations=[
                {"type": "write_file", "path": "docs/guide.md", "content": "guide", "create_dirs": True},
                {"type": "patch_file", "path": "README.md", "search": "hello", "replace": "hi"},
            ]
        )

        report = chain.run(batch, BatchOptions())

        assert report.ok
        assert report.status == "committed"
        assert [item["operation_id"] for item in report.staged] == ["op_001", "op_002"]
        assert report.commit is not None
        assert report.commit["operations_applied"] == 2
        assert (workspace / "docs" / "guide.md").read_text() == "guide"
        assert "hi world" in (workspace / "README.md").read_text()
        assert "COMMITTED" in out.getvalue()

    def test_check_leaves_workspace_untouched(
        self, service: TransactionService, workspace: Path, tree_of
    ) -> None:
        before = tree_of(workspace)
        chain, out = _chain(service)
        batch = BatchRequest(operations=[{"type": "delete_safe", "path": "README.md"}])

        report = chain.run(batch, BatchOptions(mode="check", stop_on_reject=False))

        assert report.ok
        assert report.status == "checked"
        assert report.commit is None
        assert tree_of(workspace) == before
        assert service.get_transaction(report.transaction_id)["status"] == "rolled_back"
        assert "CHECKED" in out.getvalue()

    def test_reject_cancels_and_stops(
        self, service: TransactionService, workspace: Path, tree_of
    ) -> None:
        before = tree_of(workspace)
        chain, out = _chain(service)
        batch = BatchRequest(
            operations=[
                {"type": "write_file", "path": "ok.txt", "content": "x"},
                {"type": "delete_safe", "path": "missing.txt"},
                {"type": "write_file", "path": "never.txt", "content": "y"},
            ]
        )

        report = chain.run(batch, BatchOptions())

        assert not report.ok
        assert report.status == "rejected"
        assert len(report.staged) == 1
        assert [item["index"] for item in report.rejected] == [1]
        assert report.rejected[0]["reason"] == "delete_safe: path not found: missing.txt"
        assert tree_of(workspace) == before
        assert "REJECTED" in out.getvalue()

    def test_keep_going_collects_every_reject(self, service: TransactionService) -> None:
        chain, _out = _chain(service)
        batch = BatchRequest(
            operations=[
                {"type": "delete_safe", "path": "a.txt"},
                {"type": "delete_safe", "path": "b.txt"},
            ]
        )

        report = chain.run(batch, BatchOptions(stop_on_reject=False))

        assert [item["index"] for item in report.rejected] == [0, 1]

    def test_commit_failure_rolls_back(
        self, service: TransactionService, workspace: Path, tree_of
    ) -> None:
        before = tree_of(workspace)
        real_apply = committer.apply_operation
        calls = {"count": 0}

        def fail_second(operation, **kwargs):
            calls["count"] += 1
            if calls["count"] == 2:
                raise OperationFailed(operation.type, "config.json", "disk full")
            return real_apply(operation, **kwargs)

        chain, out = _chain(service)
        batch = BatchRequest(
            operations=[
                {"type": "patch_file", "path": "README.md", "search": "hello", "replace": "bye"},
                {"type": "write_file", "path": "config.json", "content": "{}"},
            ]
        )

        with patch("txfs.core.committer.apply_operation", side_effect=fail_second):
            report = chain.run(batch, BatchOptions())

        assert not report.ok
        assert report.status == "failed"
        assert report.commit is not None
        assert report.commit["failed_operation_index"] == 1
        assert report.commit["rollback_status"] == "complete"
        assert tree_of(workspace) == before
        assert "Rolled back" in out.getvalue()

    def test_logs_bound_events(self, service: TransactionService) -> None:
        logger = MagicMock()
        bound = logger.bind.return_value
        chain, _out = _chain(service, logger=logger)

        report = chain.run(
            BatchRequest(operations=[{"type": "create_directory", "path": "docs"}]),
            BatchOptions(),
        )

        logger.bind.assert_called_once_with(
            transaction_id=report.transaction_id,
            root=str(service.root),
            mode="apply",
        )
        events = [call.args[0] for call in bound.info.call_args_list]
        assert events == ["batch.stage", "batch.summary"]

    def test_caller_transaction_id(self, service: TransactionService) -> None:
        chain, _out = _chain(service)

        report = chain.run(
            BatchRequest(
                transaction_id="release-42",
                operations=[{"type": "create_directory", "path": "docs"}],
            ),
            BatchOptions(),
        )

        assert report.transaction_id == "release-42"
        assert report.to_dict()["commit"]["transaction_id"] == "release-42"
