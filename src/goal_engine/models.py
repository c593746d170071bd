# models.py
# Data contracts for the goal engine.
# No business logic lives here: pure schema and validation.

from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field


class Goal(BaseModel):
    """A single entry on the task stack."""

    title: str = Field(..., description="Short name of the goal.")
    description: str = Field(default="", description="Free-text explanation of the work.")
    dod: str = Field(default="", description="Definition of Done.")
    strategy: str | None = Field(default=None, description="Set by the planning capability.")
    reasoning: str | None = Field(default=None, description="Rationale behind the strategy.")
    completed: list["Goal"] = Field(default_factory=list, description="Resolved child goals.")
    turns: int = Field(default=0, description="Scheduling iterations spent while on top.")
    group: str | None = Field(default=None, description="Shared by siblings pushed together.")
    uid: str = Field(default_factory=lambda: uuid4().hex, description="Identity, not content.")


Goal.model_rebuild()


class FieldSpec(BaseModel):
    """One argument of a capability, as shown to the oracle."""

    type: Literal["string", "number", "boolean"] = "string"
    description: str = ""
    is_raw_data: bool = False


class Success(BaseModel):
    success: Literal[True] = True
    summary: str
    data: Any = None


class Failure(BaseModel):
    success: Literal[False] = False
    summary: str
    error: str


Response = Success | Failure


class ControlSnapshot(BaseModel):
    """The orchestrator's own record of its latest selection."""

    capability: str
    rationale: str = ""


class RunSummary(BaseModel):
    """Returned by the harness once the stack is empty."""

    turns: int
    progress: int
    popped: int
