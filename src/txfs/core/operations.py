"""Operation model for staged file mutations.

Each operation is a frozen pydantic model tagged by ``type``. The set is
closed: ``Operation`` is a discriminated union and every consumer dispatches
over it exhaustively.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from txfs.core.errors import ValidationError


class _OperationBase(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    def write_paths(self) -> tuple[str, ...]:
        """Paths whose state this operation changes."""
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


class PatchFile(_OperationBase):
    """Search-and-replace inside an existing file.

    Attributes:
        path: Target file
        search: Text to find (must be non-empty)
        replace: Replacement text
        occurrence: 1-based occurrence to replace; 0 replaces all
    """

    type: Literal["patch_file"] = "patch_file"
    path: str
    search: str
    replace: str
    occurrence: int = Field(default=1, ge=0)

    def write_paths(self) -> tuple[str, ...]:
        return (self.path,)

    def describe(self) -> str:
        return f"patch {self.path}"


class WriteFile(_OperationBase):
    """Create or overwrite a file with the given content."""

    type: Literal["write_file"] = "write_file"
    path: str
    content: str
    create_dirs: bool = False

    def write_paths(self) -> tuple[str, ...]:
        return (self.path,)

    def describe(self) -> str:
        return f"write {self.path}"


class AppendFile(_OperationBase):
    """Append content to an existing file."""

    type: Literal["append_file"] = "append_file"
    path: str
    content: str
    newline_before: bool = True

    def write_paths(self) -> tuple[str, ...]:
        return (self.path,)

    def describe(self) -> str:
        return f"append {self.path}"


class DeleteSafe(_OperationBase):
    """Move a file or directory to the trash instead of unlinking it."""

    type: Literal["delete_safe"] = "delete_safe"
    path: str
    reason: str | None = None
    tags: list[str] = Field(default_factory=list)

    def write_paths(self) -> tuple[str, ...]:
        return (self.path,)

    def describe(self) -> str:
        return f"delete {self.path}"


class MoveFile(_OperationBase):
    """Rename or move a file or directory."""

    type: Literal["move_file"] = "move_file"
    source: str
    destination: str
    overwrite: bool = False

    def write_paths(self) -> tuple[str, ...]:
        return (self.source, self.destination)

    def describe(self) -> str:
        return f"move {self.source} -> {self.destination}"


class CreateDirectory(_OperationBase):
    """Create a directory (and its parents when recursive)."""

    type: Literal["create_directory"] = "create_directory"
    path: str
    recursive: bool = True

    def write_paths(self) -> tuple[str, ...]:
        return (self.path,)

    def describe(self) -> str:
        return f"mkdir {self.path}"


Operation = Annotated[
    PatchFile | WriteFile | AppendFile | DeleteSafe | MoveFile | CreateDirectory,
    Field(discriminator="type"),
]

OperationType = Literal[
    "patch_file",
    "write_file",
    "append_file",
    "delete_safe",
    "move_file",
    "create_directory",
]

_OPERATION_ADAPTER: TypeAdapter[Operation] = TypeAdapter(Operation)

# Names accepted from the original command surface.
_TYPE_ALIASES: dict[str, str] = {"append_to_file": "append_file"}
_FIELD_ALIASES: dict[str, str] = {
    "search_string": "search",
    "replace_string": "replace",
}


def parse_operation(data: Operation | Mapping[str, Any]) -> Operation:
    """Build an Operation from a request payload.

    Accepts either the flat form ``{"type": "write_file", "path": ...}`` or
    the nested form ``{"type": "write_file", "params": {...}}``.

    Raises:
        ValidationError: If the payload does not describe a valid operation
    """

    if isinstance(data, _OperationBase):
        return data  # type: ignore[return-value]
    if not isinstance(data, Mapping):
        raise ValidationError(
            f"operation must be an object, got {type(data).__name__}"
        )

    op_type = data.get("type")
    if not isinstance(op_type, str) or not op_type:
        raise ValidationError("operation.type is required")

    fields: dict[str, Any]
    if "params" in data:
        params = data["params"]
        if not isinstance(params, Mapping):
            raise ValidationError("operation.params must be an object")
        fields = dict(params)
    else:
        fields = {key: value for key, value in data.items() if key != "type"}

    for alias, name in _FIELD_ALIASES.items():
        if alias in fields and name not in fields:
            fields[name] = fields.pop(alias)

    fields["type"] = _TYPE_ALIASES.get(op_type, op_type)

    try:
        return _OPERATION_ADAPTER.validate_python(fields)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "invalid operation")
        raise ValidationError(
            f"invalid {op_type} operation: {location}: {message}"
            if location
            else f"invalid {op_type} operation: {message}"
        ) from exc


def dump_operation(operation: Operation) -> dict[str, Any]:
    """Serialize an operation to its flat JSON form."""
    return operation.model_dump(mode="json")

