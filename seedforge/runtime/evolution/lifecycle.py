# SPDX-License-Identifier: Apache-2.0
"""Mutation attempt state machine used by the orchestrator."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List


class MutationState(Enum):
    IDLE = "idle"
    CANDIDATE_REQUESTED = "candidate_requested"
    MATCHED = "matched"
    NOVELTY_SCORED = "novelty_scored"
    DUAL_REVIEWED = "dual_reviewed"
    VERIFIED = "verified"
    COMMITTED = "committed"
    REJECTED = "rejected"


class Outcome:
    COMMITTED = "committed"
    NO_CANDIDATE = "no_candidate"
    NO_MATCH = "no_match"
    LOW_FITNESS = "low_fitness"
    LOW_NOVELTY = "low_novelty"
    REVIEW_REJECTED = "review_rejected"
    VERIFICATION_FAILED = "verification_failed"
    REVERIFY_FAILED = "reverify_failed"
    COMMIT_FAILED = "commit_failed"
    ABANDONED = "abandoned"
    ERROR = "error"


_ALLOWED_TRANSITIONS: dict[MutationState, frozenset[MutationState]] = {
    MutationState.IDLE: frozenset({MutationState.CANDIDATE_REQUESTED}),
    MutationState.CANDIDATE_REQUESTED: frozenset({MutationState.MATCHED, MutationState.REJECTED}),
    MutationState.MATCHED: frozenset({MutationState.NOVELTY_SCORED, MutationState.REJECTED}),
    MutationState.NOVELTY_SCORED: frozenset({MutationState.DUAL_REVIEWED, MutationState.REJECTED}),
    MutationState.DUAL_REVIEWED: frozenset({MutationState.VERIFIED, MutationState.REJECTED}),
    MutationState.VERIFIED: frozenset({MutationState.COMMITTED, MutationState.REJECTED}),
    MutationState.COMMITTED: frozenset({MutationState.IDLE}),
    MutationState.REJECTED: frozenset({MutationState.IDLE}),
}

TERMINAL_STATES = frozenset({MutationState.COMMITTED, MutationState.REJECTED})


class LifecycleTransitionError(RuntimeError):
    pass


def can_transition(current: MutationState, nxt: MutationState) -> bool:
    return nxt in _ALLOWED_TRANSITIONS[current]


def require_transition(current: MutationState, nxt: MutationState) -> None:
    if not can_transition(current, nxt):
        raise LifecycleTransitionError(f"invalid mutation transition: {current.value} -> {nxt.value}")


@dataclass
class MutationAttempt:
    """Tracks one candidate's walk through the pipeline."""

    cycle: int
    file: str
    cycle_kind: str = "evolution"
    clock: Callable[[], float] = time.monotonic
    state: MutationState = MutationState.IDLE
    outcome: str | None = None
    reason: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    history: List[Dict[str, Any]] = field(default_factory=list)

    def advance(self, nxt: MutationState) -> None:
        require_transition(self.state, nxt)
        self.history.append({"from": self.state.value, "to": nxt.value, "at": self.clock()})
        self.state = nxt

    def commit(self) -> None:
        self.advance(MutationState.COMMITTED)
        self.outcome = Outcome.COMMITTED

    def reject(self, outcome: str, reason: str = "") -> None:
        self.advance(MutationState.REJECTED)
        self.outcome = outcome
        self.reason = reason

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def reset(self) -> None:
        if self.terminal:
            self.advance(MutationState.IDLE)


__all__ = [
    "LifecycleTransitionError",
    "MutationAttempt",
    "MutationState",
    "Outcome",
    "TERMINAL_STATES",
    "can_transition",
    "require_transition",
]
