# orchestrator.py
# Selection and dispatch.
#
# The orchestrator owns the observation buffer: the last Response, the last
# ControlSnapshot and a short trail of earlier snapshots. Selection asks the
# oracle which capability to run; dispatch synthesizes arguments, fetches the
# raw-data field separately, runs the handler and records what happened.

import json
from collections import deque
from dataclasses import replace

from goal_engine import display
from goal_engine.capabilities import Capability, Registry, RunContext, fail
from goal_engine.models import ControlSnapshot, Goal, Response
from goal_engine.oracle import Oracle
from goal_engine.parsing import (
    normalize_keys,
    parse_selection,
    strip_code_fence,
    truncate_for_prompt,
)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

SELECTION_PROMPT = """\
You are an autonomous agent working through a stack of goals.

### Goal
{goal}

### Completed Sub-goals
{completed}

### Available Capabilities
{capabilities}

### Observation
{observation}
{instruction}
### Instruction
Choose the single capability to execute next. Respond in EXACTLY this format \
with no other text:

Rationale: <one line explaining why>
Capability: <capability name>\
"""

ARGUMENTS_PROMPT = """\
You are about to execute the capability "{name}".
Description: {description}

### Goal
{goal}

### Observation
{observation}
{instruction}
### Instruction
Respond with ONLY a JSON object containing exactly these fields:
{schema}\
"""

RAW_DATA_PROMPT = """\
You are executing the capability "{name}" with these arguments:
{arguments}

### Goal
{goal}

### Instruction
Output ONLY the literal content for the field "{field}" ({description}).
No commentary, no explanation, no markdown code fences, no surrounding quotes.\
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_goal(goal: Goal) -> str:
    return "\n".join(
        [
            f"Title: {goal.title}",
            f"Description: {goal.description}",
            f"DoD: {goal.dod}",
            f"Strategy: {goal.strategy or 'None (Need to plan?)'}",
            f"Reasoning: {goal.reasoning or 'None'}",
        ]
    )


def _format_completed(goal: Goal) -> str:
    if not goal.completed:
        return "None."
    return "\n".join(f"- {child.title}: {child.dod}" for child in goal.completed)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """
    Tool selection, argument synthesis and execution for one lane.

    The shared RunContext carries the stack and the services handlers use;
    the observation buffer is private to this instance (see fork()).
    """

    def __init__(
        self,
        oracle: Oracle,
        context: RunContext,
        observation_budget: int = 2000,
        history_size: int = 5,
    ) -> None:
        self._oracle = oracle
        self._context = context
        self._budget = observation_budget
        self._last_name: str | None = None
        self._last_response: Response | None = None
        self._snapshot: ControlSnapshot | None = None
        self._history: deque[ControlSnapshot] = deque(maxlen=history_size)
        self._instruction: str | None = None

    def fork(self) -> "Orchestrator":
        """Same oracle and context, empty observation buffer."""
        return Orchestrator(
            self._oracle,
            self._context,
            observation_budget=self._budget,
            history_size=self._history.maxlen or 1,
        )

    # ------------------------------------------------------------------
    # Observation buffer
    # ------------------------------------------------------------------

    @property
    def last_response(self) -> Response | None:
        return self._last_response

    @property
    def snapshot(self) -> ControlSnapshot | None:
        return self._snapshot

    @property
    def history(self) -> list[ControlSnapshot]:
        return list(self._history)

    def record_result(self, name: str, response: Response) -> None:
        self._last_name = name
        self._last_response = response

    def format_observation(self) -> str:
        """Last response (truncated) plus the previous decision as self-context."""
        if self._last_response is None:
            observation = "No previous action."
        else:
            payload = {"capability": self._last_name, **self._last_response.model_dump()}
            raw = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
            observation = truncate_for_prompt(raw, self._budget)

        lines = [observation]
        if self._snapshot is not None:
            lines.append("")
            lines.append(
                f"(Internal) I previously chose {self._snapshot.capability}"
                f" because: {self._snapshot.rationale or 'no rationale given'}."
            )
        earlier = list(self._history)[:-1]
        if earlier:
            trail = ", ".join(s.capability for s in earlier)
            lines.append(f"(Internal) Earlier choices, oldest first: {trail}.")
        return "\n".join(lines)

    def set_special_instruction(self, text: str | None) -> None:
        """One-shot instruction for the next prompt built by this orchestrator."""
        self._instruction = text

    def _consume_instruction(self) -> str:
        text, self._instruction = self._instruction, None
        return f"\n### Special Instruction\n{text}\n" if text else ""

    def _oracle_failed(self, name: str, exc: Exception) -> Response:
        response = fail(str(exc) or type(exc).__name__, summary=f"Oracle error in {name}")
        self.record_result(name, response)
        display.observation(name, response)
        return response

    def _remember(self, snapshot: ControlSnapshot) -> None:
        self._snapshot = snapshot
        self._history.append(snapshot)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select_next_capability(
        self, registry: Registry, goal: Goal | None = None
    ) -> Capability | None:
        """
        Ask the oracle for the next capability out of `registry`.

        Returns None, and records a failure listing the registry, when the
        reply names nothing in it.
        """
        goal = goal or self._context.stack.current_task
        if goal is None or len(registry) == 0:
            return None

        prompt = SELECTION_PROMPT.format(
            goal=_format_goal(goal),
            completed=_format_completed(goal),
            capabilities=registry.describe(),
            observation=self.format_observation(),
            instruction=self._consume_instruction(),
        )
        try:
            reply = await self._oracle.complete(prompt)
        except Exception as exc:
            self._oracle_failed("selection", exc)
            return None
        name, rationale = parse_selection(reply, registry)

        if name is None:
            available = ", ".join(registry)
            self.record_result(
                "selection",
                fail(f"AVAILABLE: {available}", summary="Unknown capability selected."),
            )
            display.selection_failed(reply, available)
            return None

        self._remember(ControlSnapshot(capability=name, rationale=rationale))
        display.selection(name, rationale)
        return registry[name]

    def force(self, capability: Capability, rationale: str) -> Capability:
        """Record a selection made without the oracle."""
        self._remember(ControlSnapshot(capability=capability.name, rationale=rationale))
        return capability

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def synthesize_arguments(
        self, capability: Capability, goal: Goal
    ) -> tuple[dict | None, str | None]:
        schema = capability.synthesis_schema()
        instruction = self._consume_instruction()
        if not schema:
            return {}, None

        prompt = ARGUMENTS_PROMPT.format(
            name=capability.name,
            description=capability.description,
            goal=_format_goal(goal),
            observation=self.format_observation(),
            instruction=instruction,
            schema=json.dumps(schema, indent=2),
        )
        value, error = await self._oracle.complete_as_json(prompt)
        if error is not None:
            return None, error
        if not isinstance(value, dict):
            return None, f"Expected a JSON object, got {type(value).__name__}"
        return normalize_keys(value, capability.input_schema), None

    async def fetch_raw_data(self, capability: Capability, goal: Goal, args: dict) -> str:
        field_name = capability.raw_field
        prompt = RAW_DATA_PROMPT.format(
            name=capability.name,
            arguments=json.dumps(args, indent=2, ensure_ascii=False, default=str),
            goal=_format_goal(goal),
            field=field_name,
            description=capability.input_schema[field_name].description,
        )
        return strip_code_fence(await self._oracle.complete(prompt))

    async def dispatch(self, capability: Capability, goal: Goal) -> Response:
        """
        Synthesize arguments, fill the raw-data field, execute.

        Never raises for oracle or handler failures: they come back as a
        Failure and, like every outcome, become the next observation.
        """
        raw_field = capability.raw_field
        try:
            args, error = await self.synthesize_arguments(capability, goal)
            if args is not None and raw_field is not None and args.get(raw_field) in (None, ""):
                args[raw_field] = await self.fetch_raw_data(capability, goal, args)
        except Exception as exc:
            return self._oracle_failed(capability.name, exc)

        if args is None:
            response = fail(error, summary=f"Argument synthesis failed for {capability.name}")
            self.record_result(capability.name, response)
            display.observation(capability.name, response)
            return response

        display.arguments(capability.name, args, raw_field)

        ctx = replace(self._context, goal=goal)
        try:
            response = await capability.invoke(args, ctx)
        except Exception as exc:
            response = fail(str(exc) or type(exc).__name__, summary=f"Runtime error in {capability.name}")

        self.record_result(capability.name, response)
        display.observation(capability.name, response)
        return response
