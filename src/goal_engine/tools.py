# tools.py
# Built-in capability catalog.
#
# Every handler validates its arguments with a pydantic model and takes the
# RunContext explicitly. Raised exceptions are fine: the orchestrator turns
# them into failure responses.

import asyncio
import json
from typing import Literal

import httpx
from pydantic import BaseModel, Field, TypeAdapter

from goal_engine import display
from goal_engine.capabilities import Capability, Registry, RunContext, fail, ok
from goal_engine.config import DEFAULT_OBSERVATION
from goal_engine.models import Goal, Response

SHELL_TIMEOUT = 60.0
FETCH_LIMIT = 20_000


# ---------------------------------------------------------------------------
# task.*
# ---------------------------------------------------------------------------


class CheckArgs(BaseModel):
    observations: str = Field(..., description="Current observation of the environment or task status.")
    is_passed: bool = Field(..., description="True if the current goal meets its Definition of Done.")
    reason: str = Field(..., description="Reasoning for this judgment based on evidence.")


def _task_check(args: dict, ctx: RunContext) -> Response:
    parsed = CheckArgs.model_validate(args)
    goal = ctx.goal or ctx.stack.current_task
    if goal is None:
        return fail("No task found in the stack. Cannot perform check.")

    if parsed.is_passed:
        ctx.stack.complete(goal)
        display.goal_popped(goal.title, ctx.stack.progress)
        return ok(f'Task "{goal.title}" COMPLETED.', {"status": "completed"})

    return ok(f"STILL IN PROGRESS: {parsed.reason}", {"status": "continuing"})


class PlanArgs(BaseModel):
    strategy: str = Field(..., description="The step-by-step strategy to reach the goal's DoD.")
    reasoning: str = Field(..., description="Why this strategy is effective.")


def _task_plan(args: dict, ctx: RunContext) -> Response:
    parsed = PlanArgs.model_validate(args)
    goal = ctx.goal or ctx.stack.current_task
    if goal is None:
        return fail("No active task found in the stack to plan for.")

    goal.strategy = parsed.strategy
    goal.reasoning = parsed.reasoning
    return ok(f'Strategy for "{goal.title}" has been updated. Proceed with implementation.')


class SplitArgs(BaseModel):
    title: str = Field(..., description="Clear and concise title for the sub-task.")
    description: str = Field(..., description="Detailed explanation of what needs to be done.")
    dod: str = Field(..., description="Specific Definition of Done for this sub-task.")
    reasoning: str = Field(..., description="Why this sub-task is the necessary next step.")


def _task_split(args: dict, ctx: RunContext) -> Response:
    parsed = SplitArgs.model_validate(args)
    if ctx.stack.is_empty:
        return fail("No parent task found in the stack to split.")

    ctx.stack.push(Goal(title=parsed.title, description=parsed.description, dod=parsed.dod))
    display.goal_pushed([parsed.title], parsed.reasoning)
    return ok(f'Sub-task "{parsed.title}" has been pushed to the stack. Focus on this sub-task now.')


class SubGoal(BaseModel):
    title: str
    description: str = ""
    dod: str


class SplitManyArgs(BaseModel):
    reasoning: str = Field(..., description="Why these independent sub-tasks are needed.")
    goals: str = Field(
        ...,
        description='JSON list of {"title", "description", "dod"} objects, in execution order.',
        json_schema_extra={"raw_data": True},
    )


_SUBGOALS = TypeAdapter(list[SubGoal])


def _task_split_many(args: dict, ctx: RunContext) -> Response:
    parsed = SplitManyArgs.model_validate(args)
    parent = ctx.goal or ctx.stack.current_task
    if parent is None:
        return fail("No parent task found in the stack to split.")

    children = _SUBGOALS.validate_json(parsed.goals)
    if not children:
        return fail("No sub-tasks given.")

    # First listed ends up on top.
    goals = [
        Goal(title=c.title, description=c.description, dod=c.dod, group=parent.uid)
        for c in reversed(children)
    ]
    ctx.stack.push(goals)
    titles = [c.title for c in children]
    display.goal_pushed(titles, parsed.reasoning)
    return ok(f"{len(goals)} sub-tasks pushed: {', '.join(titles)}.")


class WaitArgs(BaseModel):
    ms: int = Field(..., ge=100, le=60_000, description="Duration to wait in milliseconds (100 - 60000).")
    reason: str = Field(..., description="What exactly are we waiting for?")


async def _task_wait(args: dict, ctx: RunContext) -> Response:
    parsed = WaitArgs.model_validate(args)
    await asyncio.sleep(parsed.ms / 1000)
    return ok(f"Waiting completed ({parsed.ms}ms). Reason: {parsed.reason}")


# ---------------------------------------------------------------------------
# ai.*
# ---------------------------------------------------------------------------

THEORIZE_PROMPT = """\
You are an expert researcher in software architecture and formal methods.
Your goal is not to write code, but to formulate a rigorous model of the
problem below: its structure, the assumptions it rests on, and why the
current approach is not converging.

Problem Statement: {problem}
Context:
{context}\
"""


class TheorizeArgs(BaseModel):
    problem_statement: str = Field(..., description="What logic or system are we trying to model?")
    context: str = Field(
        default="",
        description="Relevant code, logs or environment data.",
        json_schema_extra={"raw_data": True},
    )


async def _ai_theorize(args: dict, ctx: RunContext) -> Response:
    parsed = TheorizeArgs.model_validate(args)
    theory = await ctx.oracle.complete(
        THEORIZE_PROMPT.format(problem=parsed.problem_statement, context=parsed.context)
    )
    if not theory:
        return fail("Theory formulation failed: the oracle returned no response.")
    return ok("Theoretical model formulated.", {"theory": theory})


# ---------------------------------------------------------------------------
# file.*
# ---------------------------------------------------------------------------


class PathArgs(BaseModel):
    path: str = Field(default=".", description="Path relative to the workspace root.")


def _file_list(args: dict, ctx: RunContext) -> Response:
    parsed = PathArgs.model_validate(args)
    target = ctx.resolve(parsed.path)
    if not target.exists():
        return fail(f"{parsed.path} does not exist.")
    if not target.is_dir():
        return fail(f"{parsed.path} is not a directory.")
    entries = sorted(p.name + ("/" if p.is_dir() else "") for p in target.iterdir())
    return ok(f"{len(entries)} entries in {parsed.path}.", entries)


def _file_read(args: dict, ctx: RunContext) -> Response:
    parsed = PathArgs.model_validate(args)
    target = ctx.resolve(parsed.path)
    if not target.is_file():
        return fail(f"{parsed.path} is not a file.")
    return ok(f"Read {parsed.path}.", target.read_text(encoding="utf-8"))


class CreateArgs(BaseModel):
    path: str = Field(..., description="File path relative to the workspace root.")
    content: str = Field(
        default="",
        description="The complete file content.",
        json_schema_extra={"raw_data": True},
    )


def _file_create(args: dict, ctx: RunContext) -> Response:
    parsed = CreateArgs.model_validate(args)
    target = ctx.resolve(parsed.path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(parsed.content, encoding="utf-8")
    return ok(f"Wrote {len(parsed.content)} bytes to {parsed.path}.")


class PatchArgs(BaseModel):
    path: str = Field(..., description="Target file path relative to the workspace root.")
    start_line: int = Field(..., ge=1, description="First line to replace (1-indexed, inclusive).")
    end_line: int = Field(..., ge=1, description="Last line to replace (1-indexed, inclusive).")
    insert_text: str = Field(
        default="",
        description="New content for the line range (can be multiple lines).",
        json_schema_extra={"raw_data": True},
    )


def _file_patch(args: dict, ctx: RunContext) -> Response:
    parsed = PatchArgs.model_validate(args)
    if parsed.start_line > parsed.end_line:
        return fail(f"Invalid range: start_line ({parsed.start_line}) > end_line ({parsed.end_line})")

    target = ctx.resolve(parsed.path)
    if not target.is_file():
        return fail(f"{parsed.path} is not a file.")
    lines = target.read_text(encoding="utf-8").splitlines()
    if parsed.start_line > len(lines):
        return fail(f"Start line {parsed.start_line} exceeds file length ({len(lines)}).")

    lines[parsed.start_line - 1 : parsed.end_line] = [parsed.insert_text]
    target.write_text("\n".join(lines), encoding="utf-8")
    return ok(f"Patched {parsed.path} (L{parsed.start_line}-L{parsed.end_line} replaced).", {"path": parsed.path})


class InsertAtArgs(BaseModel):
    path: str = Field(..., description="Target file path relative to the workspace root.")
    at_line: int = Field(..., ge=1, description="Line number where the text is inserted (1-indexed).")
    insert_text: str = Field(
        default="",
        description="Text to insert at the given line.",
        json_schema_extra={"raw_data": True},
    )


def _file_insert_at(args: dict, ctx: RunContext) -> Response:
    parsed = InsertAtArgs.model_validate(args)
    target = ctx.resolve(parsed.path)
    if not target.is_file():
        return fail(f"{parsed.path} is not a file.")
    lines = target.read_text(encoding="utf-8").splitlines()
    index = min(parsed.at_line - 1, len(lines))
    lines.insert(index, parsed.insert_text)
    target.write_text("\n".join(lines), encoding="utf-8")
    return ok(f"Inserted text at {parsed.path}:L{parsed.at_line}.", {"path": parsed.path})


# ---------------------------------------------------------------------------
# shell.*
# ---------------------------------------------------------------------------


class ExecArgs(BaseModel):
    cmd: str = Field(..., description="The shell command to execute in the workspace root.")


async def _shell_exec(args: dict, ctx: RunContext) -> Response:
    parsed = ExecArgs.model_validate(args)
    cwd = ctx.resolve(".")
    cwd.mkdir(parents=True, exist_ok=True)
    process = await asyncio.create_subprocess_shell(
        parsed.cmd,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), SHELL_TIMEOUT)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return fail(f"Command timed out after {SHELL_TIMEOUT:.0f}s: {parsed.cmd}")

    out = stdout.decode("utf-8", errors="replace")
    err = stderr.decode("utf-8", errors="replace")
    if process.returncode != 0:
        return fail(f"Exit Code: {process.returncode}\nSTDOUT: {out}\nSTDERR: {err}")
    return ok("Command executed successfully.", {"stdout": out, "stderr": err})


# ---------------------------------------------------------------------------
# web.*
# ---------------------------------------------------------------------------


class FetchArgs(BaseModel):
    url: str = Field(..., description="Absolute http(s) URL to fetch.")


async def _web_fetch(args: dict, ctx: RunContext) -> Response:
    parsed = FetchArgs.model_validate(args)
    async with httpx.AsyncClient(follow_redirects=True, timeout=10) as client:
        response = await client.get(parsed.url)
    if response.is_error:
        return fail(f"GET {parsed.url} → {response.status_code}")
    body = response.text
    return ok(
        f"GET {parsed.url} → {response.status_code} ({len(response.content)} bytes)",
        body[:FETCH_LIMIT],
    )


class SearchArgs(BaseModel):
    query: str = Field(..., description="Search keywords.")


async def _web_search(args: dict, ctx: RunContext) -> Response:
    parsed = SearchArgs.model_validate(args)
    if not parsed.query.strip():
        return fail("no query provided.")
    if ctx.bridge is None:
        return fail("No process bridge configured.")
    result = await ctx.bridge.call_tool("DUCKDUCKGO", "search", {"query": parsed.query})
    if isinstance(result, (dict, list)):
        result = json.dumps(result, ensure_ascii=False)
    return ok(f"Search results for {parsed.query!r}.", result)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def build_catalog() -> Registry:
    return Registry(
        [
            Capability.from_model(
                "task.check",
                "Evaluate the current task against its Definition of Done. Declare it "
                "passed (completed) or not yet passed (needs more work).",
                CheckArgs,
                _task_check,
            ),
            Capability.from_model(
                "task.plan",
                "Formulate a strategy to achieve the current task's DoD.",
                PlanArgs,
                _task_plan,
            ),
            Capability.from_model(
                "task.split",
                "Create one sub-task to break down implementation or to create a "
                "specific verification task.",
                SplitArgs,
                _task_split,
            ),
            Capability.from_model(
                "task.split_many",
                "Create several independent sub-tasks at once; they may be worked on in parallel.",
                SplitManyArgs,
                _task_split_many,
            ),
            Capability.from_model(
                "task.wait",
                "Wait for a specified duration to let external processes sync or complete.",
                WaitArgs,
                _task_wait,
            ),
            Capability.from_model(
                "ai.theorize",
                "Formulate a structural model of a problem before proceeding, "
                "especially when progress has stalled.",
                TheorizeArgs,
                _ai_theorize,
            ),
            Capability.from_model(
                "file.list",
                "List the entries of a directory in the workspace.",
                PathArgs,
                _file_list,
            ),
            Capability.from_model(
                "file.read",
                "Read a text file from the workspace.",
                PathArgs,
                _file_read,
            ),
            Capability.from_model(
                "file.create",
                "Create or overwrite a file in the workspace with the given content.",
                CreateArgs,
                _file_create,
            ),
            Capability.from_model(
                "file.patch",
                "Replace a line range of a workspace file with new content. "
                "Read the file first to find the line numbers.",
                PatchArgs,
                _file_patch,
            ),
            Capability.from_model(
                "file.insert_at",
                "Insert text at a line number of a workspace file without deleting existing content.",
                InsertAtArgs,
                _file_insert_at,
            ),
            Capability.from_model(
                "shell.exec",
                "Execute a shell command in the workspace root.",
                ExecArgs,
                _shell_exec,
            ),
            Capability.from_model(
                "web.fetch",
                "Fetch the body of a web page.",
                FetchArgs,
                _web_fetch,
            ),
            Capability.from_model(
                "web.search",
                "Search the web and return result snippets.",
                SearchArgs,
                _web_search,
            ),
        ]
    )


SUBSETS: dict[str, frozenset[str] | None] = {
    "observation": DEFAULT_OBSERVATION,
    "all": None,
}


def catalog_subset(catalog: Registry, subset: Literal["observation", "all"]) -> Registry:
    names = SUBSETS[subset]
    return catalog if names is None else catalog.subset(names)
