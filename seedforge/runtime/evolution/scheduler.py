# SPDX-License-Identifier: Apache-2.0
"""Cadence bookkeeping for the main cycle and its side-cycles."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, List


@dataclass
class ScheduledCycle:
    name: str
    interval_seconds: float
    next_due: float
    runs: int = 0


class CycleScheduler:
    """Reports which named cycles are due against an injectable monotonic clock.

    A cycle registered with ``run_immediately`` is due at registration time;
    otherwise its first run is one interval later. Marking a cycle as run
    schedules it one interval after the time it was taken, so a slow cycle
    delays its successor instead of causing a burst of catch-up runs.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self._cycles: Dict[str, ScheduledCycle] = {}

    def register(self, name: str, interval_seconds: float, *, run_immediately: bool = False) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval for {name} must be positive")
        now = self.clock()
        self._cycles[name] = ScheduledCycle(
            name=name,
            interval_seconds=interval_seconds,
            next_due=now if run_immediately else now + interval_seconds,
        )

    def due(self, now: float | None = None) -> List[str]:
        current = self.clock() if now is None else now
        ready = [cycle for cycle in self._cycles.values() if cycle.next_due <= current]
        ready.sort(key=lambda cycle: cycle.next_due)
        return [cycle.name for cycle in ready]

    def take_due(self, now: float | None = None) -> List[str]:
        current = self.clock() if now is None else now
        names = self.due(current)
        for name in names:
            self.mark_run(name, current)
        return names

    def mark_run(self, name: str, now: float | None = None) -> None:
        cycle = self._cycles[name]
        current = self.clock() if now is None else now
        cycle.runs += 1
        cycle.next_due = current + cycle.interval_seconds

    def seconds_until_next(self, now: float | None = None) -> float:
        if not self._cycles:
            return 0.0
        current = self.clock() if now is None else now
        return max(0.0, min(cycle.next_due for cycle in self._cycles.values()) - current)

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        now = self.clock()
        return {
            name: {
                "interval_seconds": cycle.interval_seconds,
                "due_in_seconds": round(max(0.0, cycle.next_due - now), 3),
                "runs": cycle.runs,
            }
            for name, cycle in self._cycles.items()
        }


__all__ = ["CycleScheduler", "ScheduledCycle"]
