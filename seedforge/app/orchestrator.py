# SPDX-License-Identifier: Apache-2.0
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Mutation orchestrator.

Drives one candidate at a time through the gate sequence

    candidate -> match -> fitness/novelty -> dual review -> verify -> commit

and records exactly one evolution log entry per terminal state. Directed
repair and pattern import are side-cycles that reuse the same gates.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Sequence

from seedforge.runtime import metrics
from seedforge.runtime.config import EvolutionConfig
from seedforge.runtime.evolution.candidate import Candidate, CandidateGenerator, FitnessScorer, parse_candidate
from seedforge.runtime.evolution.dual_review import DualReviewGate
from seedforge.runtime.evolution.evolution_log import ArchiveStore, EvolutionLog, EvolutionLogEntry
from seedforge.runtime.evolution.features import extract_features
from seedforge.runtime.evolution.lifecycle import MutationAttempt, MutationState, Outcome
from seedforge.runtime.evolution.novelty import NoveltyArchive, ParetoCandidate
from seedforge.runtime.evolution.pattern_import import (
    CATEGORY_TOPICS,
    ImportSummary,
    PatternImporter,
    PatternLibrary,
    PatternSource,
    topics_for,
)
from seedforge.runtime.evolution.scheduler import CycleScheduler
from seedforge.runtime.evolution.text_patcher import MatchResult, TextPatcher
from seedforge.runtime.evolution.verifier import FormalVerifier
from seedforge.runtime.evolution.weakness_map import (
    DIRECTED_SYSTEM_PROMPT,
    Weakness,
    WeaknessAnalyzer,
    WeaknessMap,
    build_directed_fix_prompt,
)
from seedforge.runtime.failure_taxonomy import ErrorCode, classify_exception
from seedforge.runtime.intelligence.oracle import Oracle, OracleOptions, ask_safely
from seedforge.runtime.interfaces.ilogger import ILogger
from seedforge.runtime.logger import get_logger
from seedforge.runtime.tools.source_commit import CommitRestoreError, CommitResult, CommitStatus, SourceUnit

ELEMENT_ID = "Wood"

EVOLUTION_CYCLE = "evolution"
DIRECTED_REPAIR_CYCLE = "directed_repair"
PATTERN_IMPORT_CYCLE = "pattern_import"

DIRECTED_FITNESS = 0.7
STAGNATION_NOVELTY = 0.1
STAGNATION_FITNESS = 0.8
TOPICS_PER_IMPORT = 2


@dataclass(frozen=True)
class Proposal:
    candidate: Candidate
    match: MatchResult
    mutated: str


class MutationOrchestrator:
    def __init__(
        self,
        oracle: Oracle,
        config: EvolutionConfig,
        *,
        evaluator: Oracle | None = None,
        pattern_source: PatternSource | None = None,
        archive: NoveltyArchive | None = None,
        evolution_log: EvolutionLog | None = None,
        patcher: TextPatcher | None = None,
        verifier: FormalVerifier | None = None,
        review_gate: DualReviewGate | None = None,
        scheduler: CycleScheduler | None = None,
        unit_factory: Callable[[Path], SourceUnit] = SourceUnit,
        logger: ILogger | None = None,
    ) -> None:
        self.oracle = oracle
        self.config = config
        self.targets: List[Path] = [Path(path) for path in config.targets]
        self.options = OracleOptions(retries=config.oracle_retries, timeout_seconds=config.oracle_timeout_seconds)
        self.logger = logger or get_logger(component="orchestrator")

        self.patcher = patcher or TextPatcher(anchor_min_length=config.anchor_min_length)
        self.verifier = verifier or FormalVerifier(
            function_floor_ratio=config.function_floor_ratio,
            size_delta_bound=config.size_delta_bound,
        )
        self.review_gate = review_gate or DualReviewGate(
            oracle,
            evaluator,
            approval_threshold=config.approval_score,
            options=self.options,
        )
        self.archive = archive or NoveltyArchive(
            capacity=config.novelty_capacity,
            k_nearest=config.k_nearest,
            fitness_weight=config.fitness_weight,
            novelty_weight=config.novelty_weight,
        )
        self.archive_store = ArchiveStore(config.novelty_archive_path, logger=self.logger)
        if archive is None:
            self.archive_store.load_into(self.archive)
        self.evolution_log = evolution_log or EvolutionLog(config.evolution_log_path, config.log_capacity)

        self.generator = CandidateGenerator(oracle, confidence_threshold=config.confidence_threshold, options=self.options)
        self.fitness = FitnessScorer(oracle, options=self.options)
        self.weakness_map = WeaknessMap()
        self.weakness_analyzer = WeaknessAnalyzer(oracle, options=self.options)
        self.pattern_library = PatternLibrary(capacity=config.pattern_capacity)
        self.pattern_importer = (
            PatternImporter(
                oracle,
                pattern_source,
                self.verifier,
                library=self.pattern_library,
                options=self.options,
                logger=self.logger,
            )
            if pattern_source is not None
            else None
        )

        self.scheduler = scheduler or CycleScheduler()
        self.scheduler.register(EVOLUTION_CYCLE, config.cycle_interval_seconds, run_immediately=True)
        self.scheduler.register(DIRECTED_REPAIR_CYCLE, config.directed_repair_interval_seconds)
        if self.pattern_importer is not None:
            self.scheduler.register(PATTERN_IMPORT_CYCLE, config.pattern_import_interval_seconds)

        self._unit_factory = unit_factory
        self._file_locks: Dict[Path, asyncio.Lock] = {}
        self._cursor = 0
        self._weaknesses_scanned = False
        self.cycle = 0
        self.outcomes: Counter[str] = Counter()
        self.started_at = time.time()

    # ------------------------------------------------------------------ targets

    def _lock_for(self, path: Path) -> asyncio.Lock:
        key = path.resolve()
        lock = self._file_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._file_locks[key] = lock
        return lock

    def is_busy(self, path: Path) -> bool:
        return self._lock_for(path).locked()

    def _next_target(self) -> Path | None:
        count = len(self.targets)
        for step in range(count):
            index = (self._cursor + step) % count
            path = self.targets[index]
            if path.is_file() and not self.is_busy(path):
                self._cursor = index + 1
                return path
        return None

    def _target_for(self, file_id: str) -> Path | None:
        for path in self.targets:
            if str(path) == file_id:
                return path
        return None

    # ------------------------------------------------------------------ cycles

    async def run_one_cycle(self) -> EvolutionLogEntry | None:
        """Run one candidate through the pipeline for the next target file.

        Returns None when no candidate could be obtained or matched; the
        rejection is still recorded in the evolution log.
        """
        path = self._next_target()
        if path is None:
            self.logger.info("no_target_available", targets=len(self.targets))
            return None
        async with self._lock_for(path):
            self.cycle += 1
            attempt = MutationAttempt(cycle=self.cycle, file=str(path), cycle_kind=EVOLUTION_CYCLE)
            entry = await self._run_attempt(attempt, lambda: self._evolve(attempt, path))
        if entry is None or entry.outcome in (Outcome.NO_CANDIDATE, Outcome.NO_MATCH):
            return None
        return entry

    async def _evolve(self, attempt: MutationAttempt, path: Path) -> EvolutionLogEntry:
        unit = self._unit_factory(path)
        self._advance(attempt, MutationState.CANDIDATE_REQUESTED)
        source = await asyncio.to_thread(unit.read_text)
        batch = await self.generator.generate(
            path.name,
            source,
            self.config.candidates_per_cycle,
            angle_offset=attempt.cycle,
        )
        if not batch.candidates:
            return self._reject(attempt, Outcome.NO_CANDIDATE, "; ".join(batch.rejections) or "no_candidates")

        proposals = [proposal for proposal in (self._propose(source, c) for c in batch.candidates) if proposal]
        if not proposals:
            attempt.details["description"] = batch.candidates[0].description
            return self._reject(attempt, Outcome.NO_MATCH, f"{len(batch.candidates)} candidates did not match")
        self._advance(attempt, MutationState.MATCHED)
        return await self._gate_and_commit(attempt, unit, source, proposals)

    async def run_directed_repair(self) -> EvolutionLogEntry | None:
        if not self._weaknesses_scanned:
            await self.scan_weaknesses()
        target = self.weakness_map.top_target()
        if target is None:
            return None
        path = self._target_for(target.file)
        if path is None or not path.is_file():
            self.weakness_map.mark_addressed(target, success=False)
            return None
        if self.is_busy(path):
            return None
        async with self._lock_for(path):
            self.cycle += 1
            attempt = MutationAttempt(cycle=self.cycle, file=str(path), cycle_kind=DIRECTED_REPAIR_CYCLE)
            entry = await self._run_attempt(attempt, lambda: self._repair(attempt, path, target))
        self.weakness_map.mark_addressed(target, success=entry is not None and entry.outcome == Outcome.COMMITTED)
        return entry

    async def _repair(self, attempt: MutationAttempt, path: Path, target: Weakness) -> EvolutionLogEntry:
        unit = self._unit_factory(path)
        self._advance(attempt, MutationState.CANDIDATE_REQUESTED)
        attempt.details["category"] = target.category
        source = await asyncio.to_thread(unit.read_text)
        hints = self.pattern_library.hints(category=target.category)
        response = await ask_safely(
            self.oracle,
            build_directed_fix_prompt(target, source, hints),
            DIRECTED_SYSTEM_PROMPT,
            self.options,
        )
        parsed = parse_candidate(response, self.config.directed_confidence_threshold, default_category=target.category)
        if not parsed.ok:
            return self._reject(attempt, Outcome.NO_CANDIDATE, parsed.reason)
        proposal = self._propose(source, parsed.value)
        if proposal is None:
            attempt.details["description"] = parsed.value.description
            return self._reject(attempt, Outcome.NO_MATCH, "directed fix did not match")
        self._advance(attempt, MutationState.MATCHED)
        return await self._gate_and_commit(attempt, unit, source, [proposal], fixed_fitness=DIRECTED_FITNESS)

    async def scan_weaknesses(self) -> int:
        added = 0
        for path in self.targets:
            if not path.is_file():
                continue
            try:
                source = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                self.logger.error("weakness_scan_read_failed", error=exc, path=str(path))
                continue
            added += self.weakness_map.extend(await self.weakness_analyzer.analyze(str(path), source))
        self._weaknesses_scanned = True
        self._metric("weakness_scan_complete", self.weakness_map.stats())
        return added

    async def run_pattern_import(self) -> ImportSummary | None:
        if self.pattern_importer is None:
            return None
        history = set(self.pattern_importer.search_history)
        top = self.weakness_map.top_target()
        pool = topics_for(top.category if top else None) + [t for group in CATEGORY_TOPICS.values() for t in group]
        topics: List[str] = []
        for topic in pool:
            if topic not in history and topic not in topics:
                topics.append(topic)
        summary = await self.pattern_importer.discover_and_integrate(topics[:TOPICS_PER_IMPORT])
        self._metric("pattern_import_complete", summary.to_dict())
        return summary

    async def run_due(self) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        for name in self.scheduler.take_due():
            if name == EVOLUTION_CYCLE:
                results[name] = await self.run_one_cycle()
            elif name == DIRECTED_REPAIR_CYCLE:
                results[name] = await self.run_directed_repair()
            elif name == PATTERN_IMPORT_CYCLE:
                results[name] = await self.run_pattern_import()
        return results

    async def run_forever(self, stop: asyncio.Event, *, min_sleep_seconds: float = 0.05) -> None:
        self.logger.info("orchestrator_loop_started", targets=[str(path) for path in self.targets])
        while not stop.is_set():
            await self.run_due()
            delay = max(min_sleep_seconds, self.scheduler.seconds_until_next())
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue
        self.logger.info("orchestrator_loop_stopped", cycles=self.cycle)

    # ------------------------------------------------------------------ gates

    def _propose(self, source: str, candidate: Candidate) -> Proposal | None:
        match = self.patcher.locate(source, candidate.search)
        if not match.found:
            return None
        return Proposal(candidate=candidate, match=match, mutated=match.apply(source, candidate.replace))

    async def _gate_and_commit(
        self,
        attempt: MutationAttempt,
        unit: SourceUnit,
        source: str,
        proposals: Sequence[Proposal],
        *,
        fixed_fitness: float | None = None,
    ) -> EvolutionLogEntry:
        if fixed_fitness is None:
            scores = await asyncio.gather(*(self.fitness.score(proposal.candidate) for proposal in proposals))
            fitnesses = [score.total for score in scores]
        else:
            fitnesses = [fixed_fitness] * len(proposals)

        eligible = [
            ParetoCandidate(item=proposal, features=extract_features(proposal.mutated), fitness=fitness)
            for proposal, fitness in zip(proposals, fitnesses)
            if fitness >= self.config.fitness_floor
        ]
        if not eligible:
            best_index = max(range(len(proposals)), key=fitnesses.__getitem__)
            self._describe(attempt, proposals[best_index])
            attempt.details["fitness_score"] = fitnesses[best_index]
            return self._reject(attempt, Outcome.LOW_FITNESS, f"best fitness {fitnesses[best_index]:.2f}")

        choice = self.archive.pareto_select(eligible)[0]
        proposal: Proposal = choice.item
        self._describe(attempt, proposal)
        attempt.details["fitness_score"] = choice.fitness
        attempt.details["novelty_score"] = choice.novelty
        if choice.novelty < self.config.min_novelty:
            return self._reject(attempt, Outcome.LOW_NOVELTY, f"novelty {choice.novelty:.3f}")
        if choice.novelty < STAGNATION_NOVELTY and choice.fitness < STAGNATION_FITNESS:
            self.logger.warning("novelty_stagnation", file=attempt.file, novelty=choice.novelty, fitness=choice.fitness)
        self._advance(attempt, MutationState.NOVELTY_SCORED)

        verdict = await self.review_gate.review(proposal.candidate, attempt.file)
        attempt.details["review_score"] = verdict.score
        if not verdict.approved:
            return self._reject(attempt, Outcome.REVIEW_REJECTED, verdict.reason)
        self._advance(attempt, MutationState.DUAL_REVIEWED)

        report = self.verifier.verify(source, proposal.mutated, attempt.file)
        attempt.details["verification_summary"] = report.summary()
        if not report.passed:
            return self._reject(attempt, Outcome.VERIFICATION_FAILED, report.reason)
        self._advance(attempt, MutationState.VERIFIED)

        result = await self._commit(attempt, unit, proposal.mutated, choice.features)
        return self._conclude_commit(attempt, result, choice.features)

    async def _commit(
        self,
        attempt: MutationAttempt,
        unit: SourceUnit,
        mutated: str,
        features: Sequence[float],
    ) -> CommitResult:
        task = asyncio.ensure_future(
            asyncio.to_thread(unit.commit, mutated, lambda text: self.verifier.compiles(text, attempt.file))
        )
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # The write sequence is already running; let it land, record it, then honour the cancel.
            while not task.done():
                try:
                    await asyncio.shield(task)
                except asyncio.CancelledError:
                    continue
            result = task.result()
            self._conclude_commit(attempt, result, features)
            raise

    def _conclude_commit(
        self,
        attempt: MutationAttempt,
        result: CommitResult,
        features: Sequence[float],
    ) -> EvolutionLogEntry:
        if result.status == CommitStatus.COMMITTED:
            self.archive.add(
                tuple(features),
                attempt.details.get("fitness_score", 0.0),
                {
                    "cycle": attempt.cycle,
                    "file": attempt.file,
                    "cycle_kind": attempt.cycle_kind,
                    "category": attempt.details.get("category", ""),
                },
            )
            self.archive_store.save(self.archive)
            attempt.commit()
            return self._record(attempt)
        outcome = Outcome.REVERIFY_FAILED if result.status == CommitStatus.REVERIFY_FAILED else Outcome.COMMIT_FAILED
        return self._reject(attempt, outcome, result.reason)

    # ------------------------------------------------------------------ bookkeeping

    async def _run_attempt(
        self,
        attempt: MutationAttempt,
        body: Callable[[], Awaitable[EvolutionLogEntry]],
    ) -> EvolutionLogEntry | None:
        try:
            return await body()
        except asyncio.CancelledError:
            if self._open(attempt):
                self._reject(attempt, Outcome.ABANDONED, "cancelled")
            raise
        except CommitRestoreError as exc:
            if self._open(attempt):
                attempt.details["error_code"] = ErrorCode.RESTORE_FAILED
                self._reject(attempt, Outcome.COMMIT_FAILED, str(exc))
            raise
        except Exception as exc:  # noqa: BLE001
            classified = classify_exception(exc)
            self.logger.error(
                "mutation_cycle_error",
                error=exc,
                file=attempt.file,
                cycle=attempt.cycle,
                error_code=classified.error_code,
            )
            if not self._open(attempt):
                return None
            attempt.details["error_code"] = classified.error_code
            return self._reject(attempt, Outcome.ERROR, classified.exception_type)

    @staticmethod
    def _open(attempt: MutationAttempt) -> bool:
        return attempt.state not in (MutationState.IDLE, MutationState.COMMITTED, MutationState.REJECTED)

    @staticmethod
    def _describe(attempt: MutationAttempt, proposal: Proposal) -> None:
        candidate = proposal.candidate
        attempt.details["description"] = candidate.description
        attempt.details["category"] = candidate.category or attempt.details.get("category", "")
        attempt.details["strategy"] = proposal.match.strategy.value if proposal.match.strategy else ""
        attempt.details["provider"] = candidate.origin_provider

    def _advance(self, attempt: MutationAttempt, state: MutationState) -> None:
        attempt.advance(state)
        self._metric(
            "mutation_stage",
            {"cycle": attempt.cycle, "file": attempt.file, "kind": attempt.cycle_kind, "state": state.value},
        )

    def _metric(self, event_type: str, payload: Dict[str, Any], level: str = "INFO") -> None:
        try:
            metrics.log(event_type=event_type, payload=payload, level=level, element_id=ELEMENT_ID)
        except OSError as exc:
            self.logger.error("metrics_write_failed", error=exc, event=event_type)

    def _reject(self, attempt: MutationAttempt, outcome: str, reason: str) -> EvolutionLogEntry:
        attempt.reject(outcome, reason)
        return self._record(attempt)

    def _record(self, attempt: MutationAttempt) -> EvolutionLogEntry:
        details = attempt.details
        outcome = attempt.outcome or Outcome.ERROR
        entry = EvolutionLogEntry(
            cycle=attempt.cycle,
            file=attempt.file,
            description=details.get("description", ""),
            fitness_score=round(float(details.get("fitness_score", 0.0)), 4),
            novelty_score=round(float(details.get("novelty_score", 0.0)), 4),
            verification_summary=details.get("verification_summary", ""),
            outcome=outcome,
            cycle_kind=attempt.cycle_kind,
            category=details.get("category", ""),
            strategy=details.get("strategy", ""),
            review_score=details.get("review_score"),
            provider=details.get("provider", ""),
            error_code=details.get("error_code", ""),
            reason=attempt.reason,
        )
        self.evolution_log.append(entry)
        self.outcomes[outcome] += 1
        level = "INFO" if outcome == Outcome.COMMITTED else "WARNING"
        self._metric("mutation_cycle_complete", entry.to_dict(), level)
        self.logger.audit(
            "mutation_terminal",
            actor="orchestrator",
            outcome=outcome,
            cycle=attempt.cycle,
            file=attempt.file,
            reason=attempt.reason,
        )
        attempt.reset()
        return entry

    def status(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycle,
            "uptime_seconds": round(time.time() - self.started_at, 1),
            "targets": [str(path) for path in self.targets],
            "busy": [str(path) for path in self.targets if self.is_busy(path)],
            "outcomes": dict(self.outcomes),
            "log_entries": len(self.evolution_log),
            "archive": self.archive.stats(),
            "verifier": self.verifier.stats(),
            "review": self.review_gate.stats(),
            "weaknesses": self.weakness_map.stats(),
            "patterns": self.pattern_importer.stats() if self.pattern_importer else None,
            "schedule": self.scheduler.snapshot(),
        }


__all__ = [
    "DIRECTED_REPAIR_CYCLE",
    "EVOLUTION_CYCLE",
    "MutationOrchestrator",
    "PATTERN_IMPORT_CYCLE",
    "Proposal",
]
