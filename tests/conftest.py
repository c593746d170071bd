import asyncio
from typing import Callable

import pytest

from goal_engine.capabilities import RunContext
from goal_engine.parsing import repair_and_parse_json
from goal_engine.stack import TaskStack


class ScriptedOracle:
    """
    Stand-in for the oracle.

    Replies are consumed in order (an Exception in the list is raised
    instead of returned); once they run out, `responder` (if any)
    answers based on the prompt. Every call yields to the event loop once so
    concurrent lanes actually interleave.
    """

    model = "scripted-model"

    def __init__(self, replies: list[str] | None = None, responder: Callable[[str], str] | None = None):
        self.replies = list(replies or [])
        self.responder = responder
        self.prompts: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.replies:
                reply = self.replies.pop(0)
                if isinstance(reply, Exception):
                    raise reply
                return reply
            if self.responder is not None:
                return self.responder(prompt)
            raise AssertionError(f"Oracle ran out of replies. Last prompt:\n{prompt}")
        finally:
            self.in_flight -= 1

    async def complete_as_json(self, prompt: str):
        return repair_and_parse_json(await self.complete(prompt))


@pytest.fixture
def oracle():
    return ScriptedOracle()


@pytest.fixture
def stack():
    return TaskStack()


@pytest.fixture
def context(stack, oracle, tmp_path):
    return RunContext(stack=stack, oracle=oracle, workspace=tmp_path)
