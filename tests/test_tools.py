import asyncio
import json
import sys
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pydantic import ValidationError

from goal_engine import tools
from goal_engine.config import DEFAULT_MUTATING, DEFAULT_OBSERVATION
from goal_engine.models import Failure, Goal, Success
from goal_engine.tools import build_catalog, catalog_subset


@pytest.fixture
def catalog():
    return build_catalog()


def _invoke(catalog, name, args, ctx):
    return asyncio.run(catalog[name].invoke(args, ctx))


def _goal(title="root", group=None):
    return Goal(title=title, description="", dod="", group=group)


# ---------------------------------------------------------------------------
# Catalog shape
# ---------------------------------------------------------------------------

def test_catalog_raw_data_fields(catalog):
    assert catalog["file.create"].raw_field == "content"
    assert catalog["task.split_many"].raw_field == "goals"
    assert catalog["ai.theorize"].raw_field == "context"
    assert catalog["file.patch"].raw_field == "insert_text"
    assert catalog["file.insert_at"].raw_field == "insert_text"
    assert catalog["task.check"].raw_field is None
    assert catalog["task.check"].input_schema["is_passed"].type == "boolean"
    assert catalog["task.wait"].input_schema["ms"].type == "number"
    assert all(not c.warnings for c in catalog.values())


def test_builtin_file_mutators_are_classified_mutating(catalog):
    mutators = {n for n in catalog if n.startswith("file.")} - DEFAULT_OBSERVATION
    assert mutators == {"file.create", "file.patch", "file.insert_at"}
    assert mutators <= DEFAULT_MUTATING


def test_catalog_subsets(catalog):
    assert catalog_subset(catalog, "all") is catalog
    assert set(catalog_subset(catalog, "observation")) == DEFAULT_OBSERVATION


# ---------------------------------------------------------------------------
# task.*
# ---------------------------------------------------------------------------

def test_check_passed_completes_dispatched_goal(catalog, context, stack):
    parent, child = _goal("parent"), _goal("child")
    stack.push([parent, child])
    context.goal = child

    response = _invoke(catalog, "task.check", {"observations": "ok", "is_passed": True, "reason": "done"}, context)

    assert response.summary == 'Task "child" COMPLETED.'
    assert response.data == {"status": "completed"}
    assert stack.snapshot() == [parent]
    assert parent.completed == [child]


def test_check_not_passed_leaves_stack(catalog, context, stack):
    goal = _goal()
    stack.push(goal)
    response = _invoke(catalog, "task.check", {"observations": "no", "is_passed": False, "reason": "missing file"}, context)
    assert response.summary == "STILL IN PROGRESS: missing file"
    assert stack.snapshot() == [goal]


def test_check_on_empty_stack_fails(catalog, context):
    response = _invoke(catalog, "task.check", {"observations": "", "is_passed": True, "reason": ""}, context)
    assert isinstance(response, Failure)
    assert response.summary.startswith("Error: ")


def test_plan_sets_strategy(catalog, context, stack):
    goal = _goal()
    stack.push(goal)
    _invoke(catalog, "task.plan", {"strategy": "step 1, step 2", "reasoning": "obvious"}, context)
    assert goal.strategy == "step 1, step 2"
    assert goal.reasoning == "obvious"


def test_split_pushes_one_subgoal(catalog, context, stack):
    stack.push(_goal())
    response = _invoke(
        catalog,
        "task.split",
        {"title": "sub", "description": "d", "dod": "done", "reasoning": "smaller"},
        context,
    )
    assert isinstance(response, Success)
    assert stack.current_task.title == "sub"
    assert stack.current_task.group is None


def test_split_many_pushes_siblings_in_order(catalog, context, stack):
    parent = _goal()
    stack.push(parent)
    context.goal = parent
    goals = json.dumps([{"title": "first", "dod": "a"}, {"title": "second", "dod": "b"}])

    response = _invoke(catalog, "task.split_many", {"reasoning": "parallel", "goals": goals}, context)

    assert response.summary == "2 sub-tasks pushed: first, second."
    assert [g.title for g in stack.siblings(5)] == ["first", "second"]
    assert all(g.group == parent.uid for g in stack.siblings(5))


def test_split_many_rejects_bad_json(catalog, context, stack):
    stack.push(_goal())
    with pytest.raises(ValidationError):
        _invoke(catalog, "task.split_many", {"reasoning": "r", "goals": "not json"}, context)


def test_wait_bounds(catalog, context):
    with pytest.raises(ValidationError):
        _invoke(catalog, "task.wait", {"ms": 5, "reason": "too short"}, context)
    response = _invoke(catalog, "task.wait", {"ms": 100, "reason": "sync"}, context)
    assert response.summary == "Waiting completed (100ms). Reason: sync"


# ---------------------------------------------------------------------------
# ai.*
# ---------------------------------------------------------------------------

def test_theorize_asks_the_oracle(catalog, context, oracle):
    oracle.replies = ["The loop never terminates because the guard is inverted."]
    response = _invoke(catalog, "ai.theorize", {"problem_statement": "why stuck", "context": "logs here"}, context)
    assert response.data == {"theory": "The loop never terminates because the guard is inverted."}
    assert "Problem Statement: why stuck" in oracle.prompts[0]
    assert "logs here" in oracle.prompts[0]


def test_theorize_empty_reply_fails(catalog, context, oracle):
    oracle.replies = [""]
    response = _invoke(catalog, "ai.theorize", {"problem_statement": "x"}, context)
    assert isinstance(response, Failure)


# ---------------------------------------------------------------------------
# file.*
# ---------------------------------------------------------------------------

def test_file_create_read_list(catalog, context, tmp_path):
    _invoke(catalog, "file.create", {"path": "notes/a.txt", "content": "alpha"}, context)
    assert (tmp_path / "notes" / "a.txt").read_text() == "alpha"

    response = _invoke(catalog, "file.read", {"path": "notes/a.txt"}, context)
    assert response.data == "alpha"

    response = _invoke(catalog, "file.list", {}, context)
    assert response.data == ["notes/"]
    response = _invoke(catalog, "file.list", {"path": "notes"}, context)
    assert response.data == ["a.txt"]


def test_file_patch_replaces_line_range(catalog, context, tmp_path):
    (tmp_path / "a.txt").write_text("one\ntwo\nthree\nfour")
    response = _invoke(
        catalog, "file.patch", {"path": "a.txt", "start_line": 2, "end_line": 3, "insert_text": "TWO\nTHREE"}, context
    )
    assert response.summary == "Patched a.txt (L2-L3 replaced)."
    assert (tmp_path / "a.txt").read_text() == "one\nTWO\nTHREE\nfour"


def test_file_patch_rejects_bad_ranges(catalog, context, tmp_path):
    (tmp_path / "a.txt").write_text("one\ntwo")
    response = _invoke(catalog, "file.patch", {"path": "a.txt", "start_line": 2, "end_line": 1}, context)
    assert response.error.startswith("Invalid range")
    response = _invoke(catalog, "file.patch", {"path": "a.txt", "start_line": 5, "end_line": 6}, context)
    assert response.error == "Start line 5 exceeds file length (2)."
    assert (tmp_path / "a.txt").read_text() == "one\ntwo"


def test_file_insert_at(catalog, context, tmp_path):
    (tmp_path / "a.txt").write_text("one\nthree")
    _invoke(catalog, "file.insert_at", {"path": "a.txt", "at_line": 2, "insert_text": "two"}, context)
    assert (tmp_path / "a.txt").read_text() == "one\ntwo\nthree"
    _invoke(catalog, "file.insert_at", {"path": "a.txt", "at_line": 99, "insert_text": "end"}, context)
    assert (tmp_path / "a.txt").read_text() == "one\ntwo\nthree\nend"


def test_file_read_missing(catalog, context):
    response = _invoke(catalog, "file.read", {"path": "missing.txt"}, context)
    assert isinstance(response, Failure)
    assert response.error == "missing.txt is not a file."


@pytest.mark.parametrize("path", ["../outside.txt", "/etc/passwd", "a/../../b"])
def test_paths_outside_workspace_are_blocked(catalog, context, path):
    with pytest.raises(PermissionError, match="SECURITY BLOCK"):
        _invoke(catalog, "file.create", {"path": path, "content": "x"}, context)


# ---------------------------------------------------------------------------
# shell.*
# ---------------------------------------------------------------------------

def test_shell_exec_runs_in_workspace(catalog, context, tmp_path):
    (tmp_path / "marker.txt").write_text("")
    command = f'"{sys.executable}" -c "import os; print(sorted(os.listdir()))"'
    response = _invoke(catalog, "shell.exec", {"cmd": command}, context)
    assert isinstance(response, Success)
    assert "marker.txt" in response.data["stdout"]


def test_shell_exec_nonzero_exit(catalog, context):
    command = f'"{sys.executable}" -c "import sys; sys.exit(4)"'
    response = _invoke(catalog, "shell.exec", {"cmd": command}, context)
    assert isinstance(response, Failure)
    assert response.error.startswith("Exit Code: 4")


# ---------------------------------------------------------------------------
# web.*
# ---------------------------------------------------------------------------

def test_web_fetch(catalog, context, monkeypatch):
    real_client = httpx.AsyncClient

    def handler(request):
        if request.url.path == "/missing":
            return httpx.Response(404, text="nope")
        return httpx.Response(200, text="<html>hi</html>")

    monkeypatch.setattr(
        tools.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )

    response = _invoke(catalog, "web.fetch", {"url": "https://example.test/"}, context)
    assert response.data == "<html>hi</html>"

    response = _invoke(catalog, "web.fetch", {"url": "https://example.test/missing"}, context)
    assert isinstance(response, Failure)
    assert "404" in response.error


def test_web_search_goes_through_bridge(catalog, context):
    bridge = MagicMock()
    bridge.call_tool = AsyncMock(return_value={"results": ["a", "b"]})
    context.bridge = bridge

    response = _invoke(catalog, "web.search", {"query": "pydantic"}, context)

    bridge.call_tool.assert_awaited_once_with("DUCKDUCKGO", "search", {"query": "pydantic"})
    assert json.loads(response.data) == {"results": ["a", "b"]}


def test_web_search_without_bridge(catalog, context):
    response = _invoke(catalog, "web.search", {"query": "x"}, context)
    assert response.error == "No process bridge configured."
