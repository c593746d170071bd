# stack.py
# LIFO store of in-flight goals with a monotonic progress metric.
#
# One TaskStack per run, passed explicitly to whoever needs it. All mutation
# goes through a single lock so fan-out lanes can share it.

import math
import threading

from goal_engine.models import Goal


class TaskStack:
    """
    Ordered goals; the last element is the active one.

    progress is computed from popped goals versus the largest total ever
    seen (popped + depth). The ratio alone can shrink when sub-goals are
    discovered mid-run, so the reported value is clamped to its previous
    maximum.
    """

    def __init__(self) -> None:
        self._goals: list[Goal] = []
        self._lock = threading.RLock()
        self._total_popped = 0
        self._max_total_seen = 0
        self._last_progress = 0

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def push(self, goals: Goal | list[Goal]) -> None:
        with self._lock:
            if isinstance(goals, list):
                self._goals.extend(goals)
            else:
                self._goals.append(goals)
            self._touch()

    def pop(self) -> Goal | None:
        """Remove the active goal. Returns None on an empty stack."""
        with self._lock:
            if not self._goals:
                return None
            return self._remove_at(len(self._goals) - 1)

    def complete(self, goal: Goal) -> bool:
        """
        Remove a specific goal, with the same accounting as pop().

        Fan-out lanes resolve goals that are not necessarily on top; for the
        active goal this is exactly pop().
        """
        with self._lock:
            for index in range(len(self._goals) - 1, -1, -1):
                if self._goals[index] is goal:
                    self._remove_at(index)
                    return True
            return False

    def update_current_task(self, **patch) -> None:
        with self._lock:
            current = self.current_task
            if current is None:
                return
            for key, value in patch.items():
                setattr(current, key, value)

    def _remove_at(self, index: int) -> Goal:
        goal = self._goals.pop(index)
        self._total_popped += 1
        # The parent is the nearest goal below that is not a sibling.
        for parent in reversed(self._goals[:index]):
            if goal.group is None or parent.group != goal.group:
                parent.completed.append(goal)
                break
        self._touch()
        return goal

    def _touch(self) -> None:
        self._max_total_seen = max(self._max_total_seen, self._total_popped + len(self._goals))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def current_task(self) -> Goal | None:
        with self._lock:
            return self._goals[-1] if self._goals else None

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._goals)

    def snapshot(self) -> list[Goal]:
        """Shallow copy, bottom first."""
        with self._lock:
            return list(self._goals)

    def siblings(self, limit: int) -> list[Goal]:
        """
        Up to `limit` goals from the top that were pushed together.

        Always returns at least the active goal when the stack is not empty.
        """
        with self._lock:
            if not self._goals:
                return []
            top = self._goals[-1]
            lanes = [top]
            if top.group is None:
                return lanes
            for goal in reversed(self._goals[:-1]):
                if len(lanes) >= limit or goal.group != top.group:
                    break
                lanes.append(goal)
            return lanes

    @property
    def total_popped_count(self) -> int:
        return self._total_popped

    @property
    def progress(self) -> int:
        with self._lock:
            self._touch()
            if self._max_total_seen == 0:
                return 0
            if not self._goals and self._total_popped > 0:
                self._last_progress = 100
                return 100
            ratio = 100 * self._total_popped / self._max_total_seen
            # Half-up rounding; 100 is reserved for the empty stack.
            computed = min(math.floor(ratio + 0.5), 99)
            self._last_progress = max(self._last_progress, computed)
            return self._last_progress
