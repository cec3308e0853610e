# SPDX-License-Identifier: Apache-2.0
"""
Candidate edits: how they are requested, parsed, and scored for fitness.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from pydantic import AliasChoices, BaseModel, Field

from seedforge.runtime.intelligence.json_extract import Extracted, parse_model
from seedforge.runtime.intelligence.oracle import Oracle, OracleOptions, OracleResponse, ask_safely

ANGLES: Tuple[str, ...] = ("bug_fix", "performance", "safety")

SNIPPET_LIMIT = 5000
SNIPPET_HEAD = 2500
SNIPPET_TAIL = 2000

CANDIDATE_SYSTEM_PROMPT = (
    "You are a code evolution engine. Propose exactly one high-confidence improvement. "
    "The search text must exist verbatim in the file. Reply with JSON only."
)
FITNESS_SYSTEM_PROMPT = (
    "You are a code review expert scoring a proposed edit. Be objective and reply with JSON only."
)

FITNESS_WEIGHTS: Dict[str, float] = {
    "safety": 0.3,
    "correctness": 0.3,
    "impact": 0.25,
    "readability": 0.15,
}


@dataclass(frozen=True)
class Candidate:
    description: str
    search: str
    replace: str
    confidence: float
    category: str = ""
    origin_provider: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "category": self.category,
            "confidence": self.confidence,
            "origin_provider": self.origin_provider,
            "search_chars": len(self.search),
            "replace_chars": len(self.replace),
        }


class CandidateModel(BaseModel):
    description: str = ""
    search: str = Field(min_length=1)
    replace: str
    confidence: float = Field(ge=0.0, le=1.0)
    category: str = Field(default="", validation_alias=AliasChoices("category", "type"))


class FitnessModel(BaseModel):
    correctness: float = 0.0
    safety: float = 0.0
    readability: float = 0.0
    impact: float = 0.0


@dataclass(frozen=True)
class FitnessScore:
    correctness: float = 0.0
    safety: float = 0.0
    readability: float = 0.0
    impact: float = 0.0

    @property
    def total(self) -> float:
        return sum(getattr(self, name) * weight for name, weight in FITNESS_WEIGHTS.items())

    def to_dict(self) -> Dict[str, float]:
        return {
            "correctness": self.correctness,
            "safety": self.safety,
            "readability": self.readability,
            "impact": self.impact,
            "total": round(self.total, 4),
        }


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def source_excerpt(source: str) -> str:
    if len(source) <= SNIPPET_LIMIT:
        return source
    return source[:SNIPPET_HEAD] + "\n# ... [middle omitted] ...\n" + source[-SNIPPET_TAIL:]


def build_candidate_prompt(file_name: str, source: str, angle: str) -> str:
    return (
        f"Find one {angle.replace('_', ' ')} improvement in this file.\n\n"
        f"File: {file_name} ({source.count(chr(10)) + 1} lines)\n\n"
        f"```python\n{source_excerpt(source)}\n```\n\n"
        "Reply with strict JSON:\n"
        '{"description": "what changes", "search": "exact original code (must exist verbatim)", '
        f'"replace": "replacement code", "type": "{angle}", "confidence": 0.0-1.0}}'
    )


def build_fitness_prompt(candidate: Candidate) -> str:
    return (
        "Score this code change on four dimensions (0-1).\n"
        f"Original:\n{candidate.search[:1500]}\n"
        f"Modified:\n{candidate.replace[:1500]}\n"
        f"Type: {candidate.category}\n"
        f"Description: {candidate.description}\n\n"
        'Reply with JSON: {"correctness": 0.0-1.0, "safety": 0.0-1.0, "readability": 0.0-1.0, "impact": 0.0-1.0}'
    )


def parse_candidate(response: OracleResponse, min_confidence: float, default_category: str = "") -> Extracted:
    """Turn an oracle response into a :class:`Candidate`, or a failure reason."""
    if not response.success:
        return Extracted.failure(f"oracle_failed:{response.error}")
    parsed = parse_model(response.content, CandidateModel)
    if not parsed.ok:
        return parsed
    model: CandidateModel = parsed.value
    if model.confidence < min_confidence:
        return Extracted.failure(f"low_confidence:{model.confidence:g}")
    if model.search == model.replace:
        return Extracted.failure("no_op_edit")
    return Extracted.success(
        Candidate(
            description=model.description.strip(),
            search=model.search,
            replace=model.replace,
            confidence=model.confidence,
            category=model.category or default_category,
            origin_provider=response.provider_id,
        )
    )


@dataclass
class CandidateBatch:
    candidates: List[Candidate] = field(default_factory=list)
    rejections: List[str] = field(default_factory=list)


class CandidateGenerator:
    def __init__(
        self,
        oracle: Oracle,
        *,
        confidence_threshold: float = 0.7,
        options: OracleOptions | None = None,
        angles: Sequence[str] = ANGLES,
    ) -> None:
        self.oracle = oracle
        self.confidence_threshold = confidence_threshold
        self.options = options or OracleOptions()
        self.angles = tuple(angles)

    async def generate(self, file_name: str, source: str, count: int, *, angle_offset: int = 0) -> CandidateBatch:
        angles = [self.angles[(angle_offset + index) % len(self.angles)] for index in range(max(1, count))]
        responses = await asyncio.gather(
            *(
                ask_safely(self.oracle, build_candidate_prompt(file_name, source, angle), CANDIDATE_SYSTEM_PROMPT, self.options)
                for angle in angles
            )
        )
        batch = CandidateBatch()
        for angle, response in zip(angles, responses):
            parsed = parse_candidate(response, self.confidence_threshold, default_category=angle)
            if parsed.ok:
                batch.candidates.append(parsed.value)
            else:
                batch.rejections.append(parsed.reason)
        return batch


class FitnessScorer:
    """Oracle-rated fitness. An unusable rating scores zero on every axis."""

    def __init__(self, oracle: Oracle, *, options: OracleOptions | None = None) -> None:
        self.oracle = oracle
        self.options = options or OracleOptions()

    async def score(self, candidate: Candidate) -> FitnessScore:
        response = await ask_safely(self.oracle, build_fitness_prompt(candidate), FITNESS_SYSTEM_PROMPT, self.options)
        if not response.success:
            return FitnessScore()
        parsed = parse_model(response.content, FitnessModel)
        if not parsed.ok:
            return FitnessScore()
        model: FitnessModel = parsed.value
        return FitnessScore(
            correctness=_clamp(model.correctness),
            safety=_clamp(model.safety),
            readability=_clamp(model.readability),
            impact=_clamp(model.impact),
        )


__all__ = [
    "ANGLES",
    "CANDIDATE_SYSTEM_PROMPT",
    "Candidate",
    "CandidateBatch",
    "CandidateGenerator",
    "CandidateModel",
    "FITNESS_SYSTEM_PROMPT",
    "FITNESS_WEIGHTS",
    "FitnessScore",
    "FitnessScorer",
    "build_candidate_prompt",
    "build_fitness_prompt",
    "parse_candidate",
    "source_excerpt",
]
