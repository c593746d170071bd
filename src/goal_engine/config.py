# config.py
# Run configuration. Defaults live here; the environment (and .env) override them.

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# git.* are not in the built-in catalog; they apply to catalogs extended with
# git capabilities.
DEFAULT_MUTATING = frozenset(
    {
        "file.create",
        "file.patch",
        "file.insert_at",
        "git.checkout",
        "git.clone",
        "shell.exec",
    }
)

DEFAULT_OBSERVATION = frozenset({"file.list", "file.read", "web.fetch", "web.search"})


# ---------------------------------------------------------------------------
# Env helpers
# ---------------------------------------------------------------------------


def _int_env(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        warnings.warn(
            f"Invalid integer for {name}={raw!r}; falling back to {default}.",
            RuntimeWarning,
            stacklevel=2,
        )
        return default
    return max(value, minimum)


def _float_env(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        warnings.warn(
            f"Invalid float for {name}={raw!r}; falling back to {default}.",
            RuntimeWarning,
            stacklevel=2,
        )
        return default
    return max(value, minimum)


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


class EngineConfig(BaseModel):
    """
    Every tunable of a run.

    The escalation thresholds are not invariants; they are exposed here so a
    deployment can tune how patient the scheduler is with a looping model.
    """

    llm_base_url: str = "https://openrouter.ai/api/v1"
    llm_api_key: str = "not-needed"
    llm_model: str = "anthropic/claude-3.5-haiku"

    workspace: Path = Field(default_factory=lambda: Path("workspace"))

    max_turns: int = 100
    fan_out: int = 1

    stagnation_theorize_threshold: int = 3
    stagnation_split_threshold: int = 6
    repeat_threshold: int = 3

    observation_budget: int = 2000
    history_size: int = 5
    rpc_timeout: float = 15.0

    planning_capability: str = "task.plan"
    diagnostic_capability: str = "ai.theorize"
    split_capability: str = "task.split"
    mutating_capabilities: frozenset[str] = DEFAULT_MUTATING
    observation_capabilities: frozenset[str] = DEFAULT_OBSERVATION

    @classmethod
    def from_env(cls) -> "EngineConfig":
        load_dotenv()
        defaults = cls()
        return cls(
            llm_base_url=os.getenv("LLM_API_URL", defaults.llm_base_url),
            llm_api_key=(
                os.getenv("LLM_API_KEY")
                or os.getenv("OPENROUTER_API_KEY")
                or defaults.llm_api_key
            ),
            llm_model=os.getenv("LLM_MODEL", defaults.llm_model),
            workspace=Path(os.getenv("GOAL_ENGINE_WORKSPACE", str(defaults.workspace))),
            max_turns=_int_env("GOAL_ENGINE_MAX_TURNS", defaults.max_turns),
            fan_out=_int_env("GOAL_ENGINE_FAN_OUT", defaults.fan_out),
            stagnation_theorize_threshold=_int_env(
                "GOAL_ENGINE_STAGNATION_THEORIZE", defaults.stagnation_theorize_threshold
            ),
            stagnation_split_threshold=_int_env(
                "GOAL_ENGINE_STAGNATION_SPLIT", defaults.stagnation_split_threshold
            ),
            repeat_threshold=_int_env("GOAL_ENGINE_REPEAT_THRESHOLD", defaults.repeat_threshold),
            observation_budget=_int_env(
                "GOAL_ENGINE_OBSERVATION_BUDGET", defaults.observation_budget, minimum=100
            ),
            history_size=_int_env("GOAL_ENGINE_HISTORY_SIZE", defaults.history_size),
            rpc_timeout=_float_env("GOAL_ENGINE_RPC_TIMEOUT", defaults.rpc_timeout, minimum=0.1),
        )
