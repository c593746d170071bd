# oracle.py
# Capability-free wrapper around an OpenAI-compatible chat completion endpoint.
#
# The oracle never sees tools or function-calling: every request is a single
# user message and every answer is plain text.

from typing import Any

from openai import AsyncOpenAI

from goal_engine.config import EngineConfig
from goal_engine.parsing import repair_and_parse_json


class Oracle:
    """
    Text and JSON completion against one model.

    Example:
        oracle = Oracle(EngineConfig.from_env())
        text = await oracle.complete("Say hi.")
        value, error = await oracle.complete_as_json('Reply with {"ok": true}')
    """

    def __init__(self, config: EngineConfig) -> None:
        self._model = config.llm_model
        self._client = AsyncOpenAI(
            base_url=config.llm_base_url,
            api_key=config.llm_api_key,
        )

    @property
    def model(self) -> str:
        return self._model

    async def _ask(self, prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0,
        )
        return response.choices[0].message.content or ""

    async def complete(self, prompt: str) -> str:
        return (await self._ask(prompt)).strip()

    async def complete_as_json(self, prompt: str) -> tuple[Any, str | None]:
        """Returns (value, None) or (None, structural error)."""
        return repair_and_parse_json(await self._ask(prompt))
