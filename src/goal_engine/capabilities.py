# capabilities.py
# Capability definitions and the per-run registry.
#
# A capability is a name, a description (the only thing the oracle uses to
# choose it), an ordered field schema and a handler. Handlers receive the
# synthesized arguments plus an explicit RunContext; nothing is global.

import inspect
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Iterator

from pydantic import BaseModel

from goal_engine import display
from goal_engine.models import Failure, FieldSpec, Goal, Response, Success

if TYPE_CHECKING:
    from goal_engine.bridge import ProcessBridge
    from goal_engine.oracle import Oracle
    from goal_engine.stack import TaskStack


Handler = Callable[[dict[str, Any], "RunContext"], Response | Awaitable[Response]]


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def ok(summary: str, data: Any = None) -> Success:
    return Success(summary=summary, data=data)


def fail(error: str, summary: str | None = None) -> Failure:
    return Failure(summary=summary or f"Error: {error}", error=error)


# ---------------------------------------------------------------------------
# RunContext
# ---------------------------------------------------------------------------


@dataclass
class RunContext:
    """What a handler may touch. `goal` is the goal being dispatched for."""

    stack: "TaskStack"
    oracle: "Oracle"
    workspace: Path
    bridge: "ProcessBridge | None" = None
    goal: Goal | None = None

    def resolve(self, path: str) -> Path:
        """
        Resolve `path` inside the workspace.

        Raises PermissionError for anything that escapes it.
        """
        root = self.workspace.resolve()
        target = (root / path).resolve()
        if target != root and root not in target.parents:
            raise PermissionError(f"SECURITY BLOCK: {path!r} is outside the workspace.")
        return target


# ---------------------------------------------------------------------------
# Capability
# ---------------------------------------------------------------------------


def _field_type(annotation: Any) -> str:
    if annotation is bool:
        return "boolean"
    if annotation in (int, float):
        return "number"
    return "string"


class Capability:
    """
    One schema-described unit of work.

    At most one field may be raw data. Extra raw-data fields are demoted to
    normal fields and a warning is recorded on the capability.
    """

    def __init__(
        self,
        name: str,
        description: str,
        input_schema: Mapping[str, FieldSpec],
        handler: Handler,
        args_model: type[BaseModel] | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.handler = handler
        self.args_model = args_model
        self.warnings: list[str] = []

        schema: dict[str, FieldSpec] = {}
        raw_field: str | None = None
        for field_name, spec in input_schema.items():
            if spec.is_raw_data:
                if raw_field is None:
                    raw_field = field_name
                else:
                    message = (
                        f"{name}: field '{field_name}' demoted to a normal field; "
                        f"'{raw_field}' is already the raw-data field."
                    )
                    self.warnings.append(message)
                    display.warning(message)
                    spec = spec.model_copy(update={"is_raw_data": False})
            schema[field_name] = spec

        self.input_schema = schema
        self.raw_field = raw_field

    @classmethod
    def from_model(
        cls,
        name: str,
        description: str,
        args_model: type[BaseModel],
        handler: Handler,
    ) -> "Capability":
        """Derive the field schema from a pydantic argument model."""
        schema = {}
        for field_name, info in args_model.model_fields.items():
            extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
            schema[field_name] = FieldSpec(
                type=_field_type(info.annotation),
                description=info.description or "",
                is_raw_data=bool(extra.get("raw_data", False)),
            )
        return cls(name, description, schema, handler, args_model=args_model)

    def synthesis_schema(self) -> dict[str, dict[str, str]]:
        """The schema shown during argument synthesis: raw-data field omitted."""
        return {
            field_name: {"type": spec.type, "description": spec.description}
            for field_name, spec in self.input_schema.items()
            if field_name != self.raw_field
        }

    async def invoke(self, args: dict[str, Any], ctx: RunContext) -> Response:
        result = self.handler(args, ctx)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"Capability({self.name!r})"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class Registry(Mapping):
    """Read-only, ordered name -> Capability table for one run."""

    def __init__(self, capabilities: Iterable[Capability]) -> None:
        table: dict[str, Capability] = {}
        for capability in capabilities:
            if capability.name in table:
                raise ValueError(f"Duplicate capability name: {capability.name}")
            table[capability.name] = capability
        self._table = table

    def __getitem__(self, name: str) -> Capability:
        return self._table[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)

    def subset(self, names: Iterable[str]) -> "Registry":
        """Keep catalog order; names not present are ignored."""
        wanted = set(names)
        return Registry(c for n, c in self._table.items() if n in wanted)

    def describe(self) -> str:
        return "\n".join(f"- {c.name}: {c.description}" for c in self._table.values())
