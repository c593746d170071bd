# policy.py
# Deterministic scheduling rules evaluated before the oracle gets a say.
#
# Rules, highest priority first:
#   turn 1 of a goal       -> choose among observation capabilities
#   turn 2                 -> force the planning capability
#   turn 3                 -> model chooses, framed as split-or-proceed
#   after a mutation       -> choose among observation capabilities
#   stagnation             -> force diagnosis, later force a split
#   same capability again  -> force diagnosis
# The rules look at counters and at set membership only, never at what a
# capability actually did.

from collections.abc import Hashable
from dataclasses import dataclass, field

from goal_engine import display
from goal_engine.capabilities import Capability, Registry
from goal_engine.config import EngineConfig
from goal_engine.models import Goal

PLAN_INSTRUCTION = (
    "This is the planning turn. Write down a concrete step-by-step strategy that "
    "reaches the Definition of Done, based on what you have observed so far."
)

SPLIT_OR_PROCEED_INSTRUCTION = (
    "Decide now: if the goal needs more than a couple of distinct actions, split it "
    "into a sub-goal; otherwise proceed directly with the first action of the strategy."
)

THEORIZE_INSTRUCTION = (
    "Progress has stalled. Analyze why the recent actions did not move the goal "
    "forward and describe the structural cause before trying anything else."
)

FORCED_SPLIT_INSTRUCTION = (
    "Progress has stalled for too long. Carve out the smallest sub-goal that can be "
    "completed and verified on its own."
)


@dataclass
class Decision:
    """
    What the policy wants this turn.

    Exactly one of `capability` (forced, no oracle selection) or `registry`
    (oracle selects from it) is set. `instruction` is a one-turn framing.
    """

    phase: str
    reason: str
    capability: Capability | None = None
    registry: Registry | None = None
    instruction: str | None = None


@dataclass
class Streak:
    """Counts how many consecutive turns chose the same capability."""

    name: str | None = None
    count: int = 0

    def update(self, name: str) -> int:
        if name == self.name:
            self.count += 1
        else:
            self.name = name
            self.count = 1
        return self.count


@dataclass
class _Track:
    uid: str | None = None
    stagnation: int = 0
    streak: Streak = field(default_factory=Streak)
    after_mutation: bool = False


class SchedulingPolicy:
    """
    Per-lane turn counters and escalation state.

    Lane 0 follows the top of the stack. Sibling goals worked on together
    each get their own lane, keyed by the goal's uid. Counters reset
    whenever a different goal (by identity) becomes the lane's goal, and any
    turn taken in another lane breaks lane 0's continuity.
    """

    def __init__(self, catalog: Registry, config: EngineConfig) -> None:
        self._catalog = catalog
        self._config = config
        self._observation = catalog.subset(config.observation_capabilities)
        self._tracks: dict[Hashable, _Track] = {}

    @property
    def observation_registry(self) -> Registry:
        return self._observation

    def track(self, lane: Hashable = 0) -> _Track:
        if lane not in self._tracks:
            self._tracks[lane] = _Track()
        return self._tracks[lane]

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def begin_turn(self, goal: Goal, lane: Hashable = 0) -> int:
        """Advance the goal's turn counter. Returns the new turn number."""
        if lane != 0:
            self._tracks.pop(0, None)
        track = self.track(lane)
        if track.uid != goal.uid:
            self._tracks[lane] = _Track(uid=goal.uid)
            goal.turns = 0
        goal.turns += 1
        return goal.turns

    def forget(self, lane: Hashable) -> None:
        self._tracks.pop(lane, None)

    def decide(self, goal: Goal, lane: Hashable = 0) -> Decision:
        turn = self.begin_turn(goal, lane)
        track = self.track(lane)
        config = self._config

        if turn == 1:
            return self._observe("bootstrap", "First turn of a goal: look before acting.")

        if turn == 2:
            forced = self._forced(
                "bootstrap",
                "Second turn of a goal: plan.",
                config.planning_capability,
                PLAN_INSTRUCTION,
            )
            if forced is not None:
                return forced

        if turn == 3:
            return Decision(
                phase="bootstrap",
                reason="Third turn of a goal: split or proceed.",
                registry=self._catalog,
                instruction=SPLIT_OR_PROCEED_INSTRUCTION,
            )

        if track.after_mutation:
            return self._observe("steady", "Verify the previous change before continuing.")

        if track.stagnation >= config.stagnation_split_threshold:
            forced = self._forced(
                "escalated",
                f"No progress for {track.stagnation} turns: split the goal.",
                config.split_capability,
                FORCED_SPLIT_INSTRUCTION,
            )
            if forced is not None:
                return forced

        if track.stagnation == config.stagnation_theorize_threshold:
            forced = self._forced(
                "escalated",
                f"No progress for {track.stagnation} turns: diagnose.",
                config.diagnostic_capability,
                THEORIZE_INSTRUCTION,
            )
            if forced is not None:
                return forced

        if track.streak.count >= config.repeat_threshold:
            forced = self._forced(
                "escalated",
                f"{track.streak.name} chosen {track.streak.count} times in a row: diagnose.",
                config.diagnostic_capability,
                THEORIZE_INSTRUCTION,
            )
            if forced is not None:
                return forced

        return Decision(phase="steady", reason="Model chooses.", registry=self._catalog)

    def _observe(self, phase: str, reason: str) -> Decision:
        registry = self._observation if len(self._observation) else self._catalog
        return Decision(phase=phase, reason=reason, registry=registry)

    def _forced(self, phase: str, reason: str, name: str, instruction: str) -> Decision | None:
        capability = self._catalog.get(name)
        if capability is None:
            display.warning(f"{name} is not in this run's catalog; {phase} rule skipped.")
            return None
        return Decision(phase=phase, reason=reason, capability=capability, instruction=instruction)

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def observe(
        self,
        goal: Goal,
        capability_name: str | None,
        progress_before: int,
        progress_after: int,
        lane: Hashable = 0,
    ) -> None:
        """Update counters after a dispatch (or a failed selection)."""
        track = self.track(lane)
        if track.uid != goal.uid:
            return

        if progress_after == progress_before:
            track.stagnation += 1
        else:
            track.stagnation = 0

        if capability_name is None:
            track.after_mutation = False
            return

        track.streak.update(capability_name)
        track.after_mutation = capability_name in self._config.mutating_capabilities
