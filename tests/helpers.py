# SPDX-License-Identifier: Apache-2.0
"""Scripted oracles for exercising the pipeline without a provider."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Dict, List, Tuple, Union

from seedforge.runtime.evolution.candidate import CANDIDATE_SYSTEM_PROMPT, FITNESS_SYSTEM_PROMPT
from seedforge.runtime.evolution.dual_review import EVALUATOR_SYSTEM_PROMPT, PROPOSER_SYSTEM_PROMPT
from seedforge.runtime.intelligence.oracle import Oracle, OracleOptions, OracleResponse

Answer = Union[str, OracleResponse, Callable[[str], Union[str, OracleResponse]], List[Any]]


class ScriptedOracle(Oracle):
    """Answers by matching each route key against the system prompt.

    A list answer is consumed in order and its last item repeats. Unrouted
    prompts get a failed response.
    """

    def __init__(
        self,
        routes: Dict[str, Answer],
        *,
        provider_id: str = "scripted",
        delays: Dict[str, float] | None = None,
    ) -> None:
        self.routes = routes
        self.provider_id = provider_id
        self.delays = delays or {}
        self.calls: List[Tuple[str, str]] = []

    def calls_for(self, key: str) -> List[str]:
        return [prompt for system_prompt, prompt in self.calls if key in system_prompt]

    async def ask(
        self,
        prompt: str,
        system_prompt: str = "",
        options: OracleOptions | None = None,
    ) -> OracleResponse:
        self.calls.append((system_prompt, prompt))
        for key, answer in self.routes.items():
            if key not in system_prompt:
                continue
            if self.delays.get(key):
                await asyncio.sleep(self.delays[key])
            if isinstance(answer, list):
                answer = answer.pop(0) if len(answer) > 1 else answer[0]
            if callable(answer):
                answer = answer(prompt)
            if isinstance(answer, OracleResponse):
                return answer
            return OracleResponse(success=True, content=answer, provider_id=self.provider_id, latency_ms=1.0)
        return OracleResponse.failure("no_route", self.provider_id)


def candidate_json(search: str, replace: str, *, confidence: float = 0.9, description: str = "tweak", kind: str = "bug_fix") -> str:
    return json.dumps(
        {"description": description, "search": search, "replace": replace, "type": kind, "confidence": confidence}
    )


def fitness_json(value: float = 0.9) -> str:
    return json.dumps({"correctness": value, "safety": value, "readability": value, "impact": value})


def verdict_json(score: float = 8.0, approve: bool = True, risks: List[str] | None = None) -> str:
    return json.dumps({"risks": risks or [], "score": score, "approve": approve})


def pipeline_routes(
    search: str,
    replace: str,
    *,
    fitness: float = 0.9,
    score: float = 8.0,
    approve: bool = True,
) -> Dict[str, Answer]:
    """Routes for one full evolution cycle that proposes ``search`` -> ``replace``."""
    return {
        CANDIDATE_SYSTEM_PROMPT: candidate_json(search, replace),
        FITNESS_SYSTEM_PROMPT: fitness_json(fitness),
        PROPOSER_SYSTEM_PROMPT: "This change fixes the off-by-one in the return value.",
        EVALUATOR_SYSTEM_PROMPT: verdict_json(score, approve),
    }


__all__ = ["ScriptedOracle", "candidate_json", "fitness_json", "pipeline_routes", "verdict_json"]
