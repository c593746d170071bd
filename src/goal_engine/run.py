# run.py
# Entry point. Config and wiring only, no logic lives here.
#
# Model and endpoint come from the environment (.env is loaded):
#   LLM_API_URL, LLM_API_KEY / OPENROUTER_API_KEY, LLM_MODEL
# External services are launched from <SERVICE>_MCP_COMMAND on first use.

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from goal_engine import display
from goal_engine.config import EngineConfig
from goal_engine.errors import EngineError
from goal_engine.goalfile import load_goal_file
from goal_engine.harness import Harness
from goal_engine.tools import build_catalog, catalog_subset


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="goal-engine", description="Drive a goal file to completion.")
    parser.add_argument("goal_file", help="Path to a goal file (title --- description --- DoD).")
    parser.add_argument("--max-turns", type=int, help="Override GOAL_ENGINE_MAX_TURNS.")
    parser.add_argument("--fan-out", type=int, help="Override GOAL_ENGINE_FAN_OUT.")
    parser.add_argument("--workspace", help="Override GOAL_ENGINE_WORKSPACE.")
    parser.add_argument(
        "--capabilities",
        choices=["all", "observation"],
        default="all",
        help="Which part of the catalog the run may use.",
    )
    return parser.parse_args(argv)


async def _run(harness: Harness, goal) -> None:
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, task.cancel)
        except NotImplementedError:
            pass
    # Harness.run shuts the bridge down on every exit path, cancellation included.
    await harness.run(goal)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    config = EngineConfig.from_env()
    overrides = {
        "max_turns": args.max_turns,
        "fan_out": args.fan_out,
        "workspace": Path(args.workspace) if args.workspace else None,
    }
    config = config.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    try:
        goal = load_goal_file(args.goal_file)
        harness = Harness(config, catalog_subset(build_catalog(), args.capabilities))
        asyncio.run(_run(harness, goal))
    except EngineError as exc:
        display.halt(f"{type(exc).__name__}: {exc}")
        return 1
    except Exception as exc:
        display.halt(f"Unexpected {type(exc).__name__}: {exc}")
        return 1
    except asyncio.CancelledError:
        display.halt("Interrupted.")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
