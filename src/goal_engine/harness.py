# harness.py
# Goal engine run loop
#
# The Harness is the kernel. The oracle is a passive responder; this class
# owns the loop, the stack, the policy and the turn ceiling.
#
# Control flow per iteration:
#   policy decides → (forced capability | oracle selection) → argument
#   synthesis → raw-data fetch → handler → policy reads progress
#
# All terminal output is delegated to display.py, no formatting here.

import asyncio
from collections.abc import Hashable

from goal_engine import display
from goal_engine.bridge import ProcessBridge
from goal_engine.capabilities import Registry, RunContext
from goal_engine.config import EngineConfig
from goal_engine.errors import TurnLimitExceeded
from goal_engine.models import Goal, RunSummary
from goal_engine.oracle import Oracle
from goal_engine.orchestrator import Orchestrator
from goal_engine.policy import SchedulingPolicy
from goal_engine.stack import TaskStack


class Harness:
    """
    Drives one goal to completion.

    Example:
        config = EngineConfig.from_env()
        harness = Harness(config, build_catalog())
        summary = asyncio.run(harness.run(load_goal_file("goal.txt")))

    With config.fan_out > 1, sibling sub-goals pushed together are worked
    on concurrently, each in its own lane with its own observation buffer.
    Oracle calls overlap; stack mutation is serialized by the stack itself.
    """

    def __init__(
        self,
        config: EngineConfig,
        catalog: Registry,
        oracle: Oracle | None = None,
        bridge: ProcessBridge | None = None,
        stack: TaskStack | None = None,
    ) -> None:
        self.config = config
        self.catalog = catalog
        self.oracle = oracle or Oracle(config)
        self.bridge = bridge or ProcessBridge(timeout=config.rpc_timeout)
        self.stack = stack or TaskStack()
        self.policy = SchedulingPolicy(catalog, config)
        self.context = RunContext(
            stack=self.stack,
            oracle=self.oracle,
            workspace=config.workspace,
            bridge=self.bridge,
        )
        self.orchestrator = Orchestrator(
            self.oracle,
            self.context,
            observation_budget=config.observation_budget,
            history_size=config.history_size,
        )
        self.turns = 0
        self._lanes: dict[str, Orchestrator] = {}

    # ------------------------------------------------------------------
    # One iteration
    # ------------------------------------------------------------------

    async def step(
        self, goal: Goal, orchestrator: Orchestrator, lane: Hashable = 0, turn: int | None = None
    ) -> None:
        """Select, dispatch and feed the policy for a single goal. `turn` is the run-wide turn number."""
        progress_before = self.stack.progress
        decision = self.policy.decide(goal, lane)
        display.turn_start(turn or self.turns, goal.title, goal.turns, progress_before)

        if decision.instruction:
            orchestrator.set_special_instruction(decision.instruction)

        if decision.capability is not None:
            display.intervention(decision.phase, decision.reason, decision.capability.name)
            capability = orchestrator.force(decision.capability, decision.reason)
        else:
            if decision.registry is not self.catalog:
                display.intervention(decision.phase, decision.reason, None)
            capability = await orchestrator.select_next_capability(decision.registry, goal)

        if capability is None:
            self.policy.observe(goal, None, progress_before, self.stack.progress, lane)
            return

        await orchestrator.dispatch(capability, goal)
        self.policy.observe(goal, capability.name, progress_before, self.stack.progress, lane)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _claim_turns(self, wanted: int) -> int:
        remaining = self.config.max_turns - self.turns
        if remaining <= 0:
            raise TurnLimitExceeded(
                f"Turn ceiling of {self.config.max_turns} reached with "
                f"{len(self.stack)} goal(s) still open."
            )
        granted = min(wanted, remaining)
        self.turns += granted
        return granted

    def _lane(self, goal: Goal) -> tuple[Hashable, Orchestrator]:
        # Siblings get a lane of their own only when they can run concurrently.
        if self.config.fan_out <= 1 or goal.group is None:
            return 0, self.orchestrator
        if goal.uid not in self._lanes:
            self._lanes[goal.uid] = self.orchestrator.fork()
        return goal.uid, self._lanes[goal.uid]

    def _release_lanes(self) -> None:
        open_uids = {goal.uid for goal in self.stack.snapshot()}
        for uid in [uid for uid in self._lanes if uid not in open_uids]:
            del self._lanes[uid]
            self.policy.forget(uid)

    async def _round(self) -> None:
        goals = self.stack.siblings(self.config.fan_out)
        first_turn = self.turns + 1
        goals = goals[: self._claim_turns(len(goals))]

        if len(goals) == 1:
            lane, orchestrator = self._lane(goals[0])
            await self.step(goals[0], orchestrator, lane, first_turn)
        else:
            display.fan_out([goal.title for goal in goals])
            steps = []
            for offset, goal in enumerate(goals):
                lane, orchestrator = self._lane(goal)
                steps.append(self.step(goal, orchestrator, lane, first_turn + offset))
            # Every lane finishes its turn before an error leaves the round.
            results = await asyncio.gather(*steps, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    raise result

        self._release_lanes()

    async def run(self, goal: Goal) -> RunSummary:
        """
        Push `goal` and loop until the stack is empty.

        Raises TurnLimitExceeded when the ceiling is hit. The bridge is shut
        down on every exit path.
        """
        display.banner(self.oracle.model, goal.title, self.config.max_turns)
        self.stack.push(goal)
        try:
            while not self.stack.is_empty:
                await self._round()
        finally:
            await self.shutdown()

        summary = RunSummary(
            turns=self.turns,
            progress=self.stack.progress,
            popped=self.stack.total_popped_count,
        )
        display.run_complete(summary)
        return summary

    async def shutdown(self) -> None:
        await self.bridge.shutdown()
