# SPDX-License-Identifier: Apache-2.0
"""
Two-opinion review of a candidate edit.

A proposer argues for the change and an evaluator looks for risks; both
calls run concurrently. Only the evaluator decides, and it must say so in
well-formed JSON. Every other outcome (timeout, exception, prose, missing
fields, a string ``"true"``) is a rejection.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Tuple

from pydantic import BaseModel, Field, StrictBool

from seedforge.runtime.intelligence.json_extract import parse_model
from seedforge.runtime.intelligence.oracle import Oracle, OracleOptions, OracleResponse, ask_safely

if TYPE_CHECKING:
    from seedforge.runtime.evolution.candidate import Candidate

PROPOSER_SYSTEM_PROMPT = (
    "You are the proposer in a two-person code review. Explain concisely why the "
    "proposed edit improves the file and what it fixes."
)
EVALUATOR_SYSTEM_PROMPT = (
    "You are the evaluator in a two-person code review. Look for regressions, broken "
    "behaviour, and unsafe constructs in the proposed edit. Reply with JSON only: "
    '{"risks": ["..."], "score": 0-10, "approve": true|false}'
)


class EvaluatorVerdictModel(BaseModel):
    risks: List[str] = Field(default_factory=list)
    score: float = Field(ge=0.0, le=10.0)
    approve: StrictBool


@dataclass(frozen=True)
class RaterOpinion:
    provider_id: str
    success: bool
    content: str = ""
    error: str | None = None

    @classmethod
    def from_response(cls, response: OracleResponse) -> "RaterOpinion":
        return cls(
            provider_id=response.provider_id,
            success=response.success,
            content=response.content[:2000],
            error=response.error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"provider_id": self.provider_id, "success": self.success, "error": self.error}


@dataclass(frozen=True)
class ReviewVerdict:
    approved: bool
    score: float
    rater_a: RaterOpinion
    rater_b: RaterOpinion
    risks: Tuple[str, ...] = field(default_factory=tuple)
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approved": self.approved,
            "score": self.score,
            "risks": list(self.risks),
            "reason": self.reason,
            "rater_a": self.rater_a.to_dict(),
            "rater_b": self.rater_b.to_dict(),
        }


def build_review_prompt(candidate: "Candidate", file_name: str = "") -> str:
    return (
        f"File: {file_name or '<unknown>'}\n"
        f"Change: {candidate.description}\n"
        f"Category: {candidate.category}\n\n"
        f"Original code:\n```python\n{candidate.search[:1500]}\n```\n\n"
        f"Replacement code:\n```python\n{candidate.replace[:1500]}\n```"
    )


class DualReviewGate:
    def __init__(
        self,
        proposer: Oracle,
        evaluator: Oracle | None = None,
        *,
        approval_threshold: float = 7.0,
        options: OracleOptions | None = None,
    ) -> None:
        self.proposer = proposer
        self.evaluator = evaluator or proposer
        self.approval_threshold = approval_threshold
        self.options = options or OracleOptions()
        self._lock = threading.Lock()
        self._stats = {"reviews": 0, "approved": 0, "rejected": 0}

    async def review(self, candidate: "Candidate", file_name: str = "") -> ReviewVerdict:
        prompt = build_review_prompt(candidate, file_name)
        proposer_response, evaluator_response = await asyncio.gather(
            ask_safely(self.proposer, prompt, PROPOSER_SYSTEM_PROMPT, self.options),
            ask_safely(self.evaluator, prompt, EVALUATOR_SYSTEM_PROMPT, self.options),
        )
        verdict = self._decide(RaterOpinion.from_response(proposer_response), evaluator_response)
        with self._lock:
            self._stats["reviews"] += 1
            self._stats["approved" if verdict.approved else "rejected"] += 1
        return verdict

    def _decide(self, rater_a: RaterOpinion, evaluator_response: OracleResponse) -> ReviewVerdict:
        rater_b = RaterOpinion.from_response(evaluator_response)
        if not evaluator_response.success:
            return ReviewVerdict(False, 0.0, rater_a, rater_b, reason=f"evaluator_failed:{evaluator_response.error}")

        parsed = parse_model(evaluator_response.content, EvaluatorVerdictModel)
        if not parsed.ok:
            return ReviewVerdict(False, 0.0, rater_a, rater_b, reason=f"evaluator_unparseable:{parsed.reason}")

        verdict: EvaluatorVerdictModel = parsed.value
        risks = tuple(verdict.risks)
        if not verdict.approve:
            return ReviewVerdict(False, verdict.score, rater_a, rater_b, risks, reason="evaluator_declined")
        if verdict.score < self.approval_threshold:
            return ReviewVerdict(
                False,
                verdict.score,
                rater_a,
                rater_b,
                risks,
                reason=f"score_below_threshold:{verdict.score:g}<{self.approval_threshold:g}",
            )
        return ReviewVerdict(True, verdict.score, rater_a, rater_b, risks, reason="approved")

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)


__all__ = [
    "DualReviewGate",
    "EVALUATOR_SYSTEM_PROMPT",
    "EvaluatorVerdictModel",
    "PROPOSER_SYSTEM_PROMPT",
    "RaterOpinion",
    "ReviewVerdict",
    "build_review_prompt",
]
