"""Stage-time validation of operations against a transaction.

An operation is checked against the *projected* workspace: the real
filesystem overlaid with the effects of the operations already staged in the
same transaction. Writing a file and then patching it in the same
transaction therefore validates the patch against the written content, while
patching a file an earlier operation deleted is rejected.
"""

from __future__ import annotations

import json
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Protocol, assert_never

import structlog

from txfs.core.constants import OPERATION_ID_FORMAT, SYNTAX_CHECKED_SUFFIXES
from txfs.core.errors import ConflictError, ValidationError
from txfs.core.operations import (
    AppendFile,
    CreateDirectory,
    DeleteSafe,
    MoveFile,
    Operation,
    PatchFile,
    WriteFile,
    parse_operation,
)
from txfs.core.registry import TransactionRegistry
from txfs.core.transaction import (
    DeepCheck,
    StagedOperation,
    Transaction,
    TransactionStatus,
    ValidationResult,
)
from txfs.fs.fs_ops import append_text, patch_text, read_text
from txfs.fs.paths import is_within, relative_label, resolve_workspace_path

logger = structlog.get_logger(__name__)

Kind = Literal["file", "directory", "absent"]


class DeepValidator(Protocol):
    """Collaborator that checks the content a file would end up with."""

    def __call__(self, path: Path, content: str) -> DeepCheck: ...


class SyntaxChecker:
    """Default deep validator: parses Python, JSON and TOML content.

    Files with other suffixes are reported as skipped.
    """

    def __init__(self, suffixes: tuple[str, ...] = SYNTAX_CHECKED_SUFFIXES) -> None:
        self.suffixes = suffixes

    def __call__(self, path: Path, content: str) -> DeepCheck:
        suffix = path.suffix.lower()
        if suffix not in self.suffixes:
            return DeepCheck(status="skipped")

        try:
            if suffix == ".py":
                compile(content, str(path), "exec", dont_inherit=True)
            elif suffix == ".json":
                json.loads(content)
            elif suffix == ".toml":
                tomllib.loads(content)
        except SyntaxError as e:
            return DeepCheck(status="failed", reason=f"line {e.lineno}: {e.msg}")
        except ValueError as e:
            # JSONDecodeError and TOMLDecodeError are ValueError subclasses
            return DeepCheck(status="failed", reason=str(e))
        except (RecursionError, MemoryError) as e:
            return DeepCheck(
                status="failed", reason=f"content too deeply nested: {type(e).__name__}"
            )
        return DeepCheck(status="passed")


@dataclass
class StageOutcome:
    """Result of Validator.add_operation."""

    status: Literal["staged", "rejected"]
    staged: StagedOperation | None = None
    reason: str | None = None
    error: ValidationError | None = None

    @property
    def accepted(self) -> bool:
        return self.status == "staged"


@dataclass
class _Entry:
    """Projected state of one path.

    ``origin`` is the on-disk path whose content (for files) or children (for
    directories) this entry mirrors; None means the content is known only
    through ``content`` (files) or the directory is new (directories).
    """

    kind: Kind
    content: str | None = None
    origin: Path | None = None
    seq: int = 0


class WorkspaceView:
    """Filesystem state as it will be after the staged operations."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._overlay: dict[Path, _Entry] = {}
        self._seq = 0

    # -- lookups -------------------------------------------------------

    def _disk_entry(self, path: Path) -> _Entry:
        if path.is_dir():
            return _Entry("directory", origin=path)
        if path.exists() or path.is_symlink():
            return _Entry("file", origin=path)
        return _Entry("absent")

    def lookup(self, path: Path) -> _Entry:
        latest: tuple[Path, _Entry] | None = None
        own = self._overlay.get(path)
        if own is not None:
            latest = (path, own)
        for ancestor in path.parents:
            if not is_within(ancestor, self.root):
                break
            entry = self._overlay.get(ancestor)
            if entry is not None and (latest is None or entry.seq > latest[1].seq):
                latest = (ancestor, entry)

        if latest is None:
            return self._disk_entry(path)
        where, entry = latest
        if where == path:
            return entry
        if entry.kind != "directory" or entry.origin is None:
            return _Entry("absent")
        return self._disk_entry(entry.origin / path.relative_to(where))

    def kind(self, path: Path) -> Kind:
        return self.lookup(path).kind

    def content(self, path: Path) -> str | None:
        """Projected text content of a file, or None when unknown."""
        entry = self.lookup(path)
        if entry.kind != "file":
            return None
        if entry.content is not None:
            return entry.content
        if entry.origin is None:
            return None
        try:
            return read_text(entry.origin)
        except (OSError, UnicodeDecodeError):
            return None

    def parent_resolvable(self, path: Path) -> bool:
        """True if the nearest existing ancestor of ``path`` is a directory."""
        for ancestor in path.parents:
            if not is_within(ancestor, self.root) and ancestor != self.root:
                return False
            kind = self.kind(ancestor) if ancestor != self.root else "directory"
            if kind == "directory":
                return True
            if kind == "file":
                return False
        return False

    # -- updates -------------------------------------------------------

    def _set(self, path: Path, entry: _Entry) -> None:
        self._seq += 1
        entry.seq = self._seq
        self._overlay[path] = entry

    def _create_parents(self, path: Path) -> None:
        missing: list[Path] = []
        for ancestor in path.parents:
            if ancestor == self.root or not is_within(ancestor, self.root):
                break
            if self.kind(ancestor) != "absent":
                break
            missing.append(ancestor)
        for ancestor in reversed(missing):
            self._set(ancestor, _Entry("directory"))

    def apply(self, operation: Operation, paths: tuple[Path, ...]) -> None:
        match operation:
            case WriteFile():
                if operation.create_dirs:
                    self._create_parents(paths[0])
                self._set(paths[0], _Entry("file", content=operation.content))
            case PatchFile():
                current = self.content(paths[0])
                updated: str | None = None
                if current is not None:
                    try:
                        updated = patch_text(
                            current,
                            operation.search,
                            operation.replace,
                            operation.occurrence,
                        )
                    except ValueError:
                        updated = None
                self._set(paths[0], _Entry("file", content=updated))
            case AppendFile():
                current = self.content(paths[0])
                appended = (
                    append_text(current, operation.content, operation.newline_before)
                    if current is not None
                    else None
                )
                self._set(paths[0], _Entry("file", content=appended))
            case DeleteSafe():
                self._set(paths[0], _Entry("absent"))
            case MoveFile():
                source, destination = paths
                moved = self.lookup(source)
                self._create_parents(destination)
                self._set(source, _Entry("absent"))
                self._set(
                    destination,
                    _Entry(moved.kind, content=moved.content, origin=moved.origin),
                )
            case CreateDirectory():
                if self.kind(paths[0]) == "absent":
                    self._create_parents(paths[0])
                    self._set(paths[0], _Entry("directory"))
            case _:
                assert_never(operation)


def resulting_content(
    operation: Operation, path: Path, current: str | None
) -> str | None:
    """Content ``path`` holds after ``operation``, or None if not a text write.

    Args:
        operation: Operation being checked
        path: Its resolved primary path
        current: Current content of ``path`` (None if unknown)
    """
    match operation:
        case WriteFile():
            return operation.content
        case PatchFile():
            if current is None:
                return None
            try:
                return patch_text(
                    current, operation.search, operation.replace, operation.occurrence
                )
            except ValueError:
                return None
        case AppendFile():
            if current is None:
                return None
            return append_text(current, operation.content, operation.newline_before)
        case DeleteSafe() | MoveFile() | CreateDirectory():
            return None
        case _:
            assert_never(operation)


class Validator:
    """Decides whether an operation may join an active transaction."""

    def __init__(
        self,
        registry: TransactionRegistry,
        *,
        root: Path,
        state_dir: Path | None = None,
        deep_validator: DeepValidator | None = None,
    ) -> None:
        """Initialize the validator.

        Args:
            registry: Registry that owns transactions and path locks
            root: Normalized workspace root
            state_dir: Engine state directory operations may not touch
            deep_validator: Optional syntax/compile checker for resulting content
        """
        self.registry = registry
        self.root = root
        self.state_dir = state_dir
        self.deep_validator = deep_validator

    def resolve_paths(self, operation: Operation) -> tuple[Path, ...]:
        """Resolve an operation's write paths inside the workspace.

        Raises:
            ValidationError: If a path is empty, escapes the workspace, or
                points into the engine state directory
        """
        return tuple(
            resolve_workspace_path(raw, self.root, forbidden=self.state_dir)
            for raw in operation.write_paths()
        )

    def deep_check(self, path: Path, content: str | None) -> DeepCheck:
        if self.deep_validator is None or content is None:
            return DeepCheck(status="skipped")
        return self.deep_validator(path, content)

    def project(self, transaction: Transaction) -> WorkspaceView:
        """Replay a transaction's staged operations into a fresh view."""
        view = WorkspaceView(self.root)
        for staged in transaction.operations:
            view.apply(staged.operation, staged.write_paths)
        return view

    def add_operation(
        self,
        transaction: Transaction | str,
        operation: Operation | Mapping[str, Any],
    ) -> StageOutcome:
        """Validate and stage one operation.

        Check, claim and append happen in a single critical section so two
        concurrent callers cannot both claim the same path. A rejected
        operation leaves the transaction exactly as it was.
        """
        with self.registry.lock:
            try:
                if isinstance(transaction, str):
                    transaction = self.registry.get(transaction)
                staged = self._stage(transaction, operation)
            except ValidationError as e:
                tx_id = (
                    transaction.transaction_id
                    if isinstance(transaction, Transaction)
                    else transaction
                )
                logger.info(
                    "tx.stage_rejected",
                    transaction_id=tx_id,
                    error=e.code,
                    reason=e.reason,
                )
                return StageOutcome(status="rejected", reason=e.reason, error=e)

        logger.info(
            "tx.stage",
            transaction_id=transaction.transaction_id,
            operation_id=staged.operation_id,
            op=staged.operation.type,
            syntax_check=staged.validation.syntax_check,
        )
        return StageOutcome(status="staged", staged=staged)

    def _stage(
        self, transaction: Transaction, raw: Operation | Mapping[str, Any]
    ) -> StagedOperation:
        index = len(transaction.operations)
        if transaction.status is not TransactionStatus.ACTIVE:
            raise ValidationError(
                f"transaction not active (status: {transaction.status.value})", index
            )

        operation = parse_operation(raw)
        paths = self.resolve_paths(operation)

        conflict = self.registry.find_conflict(transaction.transaction_id, paths)
        if conflict is not None:
            path, owner = conflict
            raise ConflictError(relative_label(path, self.root), owner, index)

        view = self.project(transaction)
        try:
            self._check_structure(operation, paths, view)
        except ValidationError as e:
            e.operation_index = index
            raise

        check = self.deep_check(
            paths[0], resulting_content(operation, paths[0], view.content(paths[0]))
        )
        staged = StagedOperation(
            operation_id=OPERATION_ID_FORMAT.format(index + 1),
            index=index,
            operation=operation,
            validation=ValidationResult.from_check(check),
            write_paths=paths,
        )
        transaction.operations.append(staged)
        self.registry.claim(transaction.transaction_id, paths)
        transaction.touch()
        return staged

    def _check_structure(
        self, operation: Operation, paths: tuple[Path, ...], view: WorkspaceView
    ) -> None:
        """Reject operations that cannot apply to the projected workspace."""
        match operation:
            case PatchFile():
                if not operation.search:
                    raise ValidationError("patch_file: search text is empty")
                self._require_file(view, paths[0], operation.path, "patch_file")
                current = view.content(paths[0])
                if current is not None:
                    try:
                        patch_text(
                            current,
                            operation.search,
                            operation.replace,
                            operation.occurrence,
                        )
                    except ValueError as e:
                        raise ValidationError(
                            f"patch_file: {e} in {operation.path}"
                        ) from e
            case WriteFile():
                if view.kind(paths[0]) == "directory":
                    raise ValidationError(
                        f"write_file: path is a directory: {operation.path}"
                    )
                if not view.parent_resolvable(paths[0]):
                    raise ValidationError(
                        f"write_file: parent is not a directory: {operation.path}"
                    )
                if not operation.create_dirs and view.kind(paths[0].parent) != "directory":
                    raise ValidationError(
                        f"write_file: parent directory does not exist: {operation.path}"
                    )
            case AppendFile():
                self._require_file(view, paths[0], operation.path, "append_file")
            case DeleteSafe():
                if view.kind(paths[0]) == "absent":
                    raise ValidationError(f"delete_safe: path not found: {operation.path}")
            case MoveFile():
                source, destination = paths
                if view.kind(source) == "absent":
                    raise ValidationError(
                        f"move_file: source not found: {operation.source}"
                    )
                if source == destination or is_within(destination, source):
                    raise ValidationError(
                        "move_file: destination must not be the source or inside it"
                    )
                if not view.parent_resolvable(destination):
                    raise ValidationError(
                        f"move_file: destination parent is not a directory: "
                        f"{operation.destination}"
                    )
                if view.kind(destination) != "absent" and not operation.overwrite:
                    raise ValidationError(
                        f"move_file: destination exists: {operation.destination}"
                    )
            case CreateDirectory():
                if view.kind(paths[0]) == "file":
                    raise ValidationError(
                        f"create_directory: a file exists at {operation.path}"
                    )
                if not view.parent_resolvable(paths[0]):
                    raise ValidationError(
                        f"create_directory: parent is not a directory: {operation.path}"
                    )
                if (
                    not operation.recursive
                    and view.kind(paths[0].parent) != "directory"
                ):
                    raise ValidationError(
                        f"create_directory: parent does not exist: {operation.path}"
                    )
            case _:
                assert_never(operation)

    @staticmethod
    def _require_file(view: WorkspaceView, path: Path, raw: str, op: str) -> None:
        kind = view.kind(path)
        if kind == "absent":
            raise ValidationError(f"{op}: file not found: {raw}")
        if kind == "directory":
            raise ValidationError(f"{op}: path is a directory: {raw}")
