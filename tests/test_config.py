from pathlib import Path

import pytest

from goal_engine import config as config_module
from goal_engine.config import DEFAULT_MUTATING, DEFAULT_OBSERVATION, EngineConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr(config_module, "load_dotenv", lambda: False)
    for name in [
        "LLM_API_URL",
        "LLM_API_KEY",
        "OPENROUTER_API_KEY",
        "LLM_MODEL",
        "GOAL_ENGINE_WORKSPACE",
        "GOAL_ENGINE_MAX_TURNS",
        "GOAL_ENGINE_FAN_OUT",
        "GOAL_ENGINE_STAGNATION_THEORIZE",
        "GOAL_ENGINE_STAGNATION_SPLIT",
        "GOAL_ENGINE_REPEAT_THRESHOLD",
        "GOAL_ENGINE_OBSERVATION_BUDGET",
        "GOAL_ENGINE_HISTORY_SIZE",
        "GOAL_ENGINE_RPC_TIMEOUT",
    ]:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = EngineConfig.from_env()
    assert config.max_turns == 100
    assert config.fan_out == 1
    assert config.stagnation_theorize_threshold == 3
    assert config.stagnation_split_threshold == 6
    assert config.repeat_threshold == 3
    assert config.rpc_timeout == 15.0
    assert config.workspace == Path("workspace")
    assert config.mutating_capabilities == DEFAULT_MUTATING
    assert config.observation_capabilities == DEFAULT_OBSERVATION
    assert not DEFAULT_MUTATING & DEFAULT_OBSERVATION


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("LLM_MODEL", "some/model")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or")
    monkeypatch.setenv("GOAL_ENGINE_WORKSPACE", str(tmp_path))
    monkeypatch.setenv("GOAL_ENGINE_MAX_TURNS", "7")
    monkeypatch.setenv("GOAL_ENGINE_FAN_OUT", "4")
    monkeypatch.setenv("GOAL_ENGINE_RPC_TIMEOUT", "2.5")

    config = EngineConfig.from_env()

    assert config.llm_model == "some/model"
    assert config.llm_api_key == "sk-or"
    assert config.workspace == tmp_path
    assert config.max_turns == 7
    assert config.fan_out == 4
    assert config.rpc_timeout == 2.5


def test_llm_api_key_wins_over_openrouter(monkeypatch):
    monkeypatch.setenv("LLM_API_KEY", "primary")
    monkeypatch.setenv("OPENROUTER_API_KEY", "secondary")
    assert EngineConfig.from_env().llm_api_key == "primary"


def test_invalid_numbers_warn_and_fall_back(monkeypatch):
    monkeypatch.setenv("GOAL_ENGINE_MAX_TURNS", "lots")
    monkeypatch.setenv("GOAL_ENGINE_RPC_TIMEOUT", "soon")
    with pytest.warns(RuntimeWarning, match="GOAL_ENGINE_MAX_TURNS"):
        config = EngineConfig.from_env()
    assert config.max_turns == 100
    assert config.rpc_timeout == 15.0


def test_values_are_clamped(monkeypatch):
    monkeypatch.setenv("GOAL_ENGINE_FAN_OUT", "0")
    monkeypatch.setenv("GOAL_ENGINE_OBSERVATION_BUDGET", "10")
    config = EngineConfig.from_env()
    assert config.fan_out == 1
    assert config.observation_budget == 100
