# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import asyncio
import json
import threading
import time
from pathlib import Path

import pytest

from seedforge.app.orchestrator import MutationOrchestrator
from seedforge.runtime import metrics
from seedforge.runtime.config import EvolutionConfig
from seedforge.runtime.evolution.candidate import CANDIDATE_SYSTEM_PROMPT, FITNESS_SYSTEM_PROMPT
from seedforge.runtime.evolution.dual_review import EVALUATOR_SYSTEM_PROMPT, PROPOSER_SYSTEM_PROMPT
from seedforge.runtime.evolution.features import extract_features
from seedforge.runtime.evolution.novelty import NoveltyArchive
from seedforge.runtime.evolution.pattern_import import PATTERN_SYSTEM_PROMPT, PatternSource, RepositoryDigest
from seedforge.runtime.evolution.verifier import FormalVerifier
from seedforge.runtime.evolution.weakness_map import DIRECTED_SYSTEM_PROMPT
from seedforge.runtime.tools.source_commit import CommitRestoreError, SourceUnit, atomic_write_bytes, backup_path_for
from tests.helpers import ScriptedOracle, pipeline_routes, verdict_json

SAMPLE = '''"""Sample module."""


def answer():
    return 1


def double(value):
    return value * 2


__all__ = ["answer", "double"]
'''

PARSERS = '''def parse_int(value):
    try:
        return int(value)
    except ValueError:
        pass
    return None


def parse_float(value):
    try:
        return float(value)
    except ValueError:
        pass
    return None


def parse_bool(value):
    try:
        return bool(int(value))
    except ValueError:
        pass
    return None
'''


def _build(tmp_path: Path, routes, *, source: str = SAMPLE, names=("sample.py",), config_overrides=None, **kwargs):
    targets = []
    for name in names:
        target = tmp_path / name
        target.write_text(source, encoding="utf-8")
        targets.append(target)
    config = EvolutionConfig(
        state_dir=tmp_path / "state",
        targets=tuple(targets),
        candidates_per_cycle=1,
        oracle_timeout_seconds=10.0,
    ).with_overrides(**(config_overrides or {}))
    oracle = ScriptedOracle(routes, delays=kwargs.pop("delays", None))
    return MutationOrchestrator(oracle, config, **kwargs), oracle, targets[0]


def _writer(path: Path, *, fail_times: int = 0, started: threading.Event | None = None, pause: float = 0.0):
    state = {"failures": fail_times}

    def write(target: Path, data: bytes) -> None:
        if target == path:
            if started is not None:
                started.set()
            if pause:
                time.sleep(pause)
            if state["failures"] > 0:
                state["failures"] -= 1
                raise PermissionError("read-only")
        atomic_write_bytes(target, data)

    return write


@pytest.mark.asyncio
async def test_approved_candidate_is_committed(tmp_path) -> None:
    orchestrator, oracle, target = _build(tmp_path, pipeline_routes("return 1", "return 2"))

    entry = await orchestrator.run_one_cycle()

    assert entry is not None
    assert entry.outcome == "committed"
    assert entry.strategy == "exact"
    assert entry.fitness_score == pytest.approx(0.9)
    assert entry.novelty_score == pytest.approx(1.0)
    assert entry.review_score == 8.0
    assert entry.verification_summary == "passed 9 checks"
    assert "return 2" in target.read_text(encoding="utf-8")
    assert backup_path_for(target).read_text(encoding="utf-8") == SAMPLE
    assert len(orchestrator.archive) == 1
    assert orchestrator.archive.records[0].metadata["cycle"] == entry.cycle

    persisted = json.loads(orchestrator.config.evolution_log_path.read_text(encoding="utf-8"))
    assert [item["outcome"] for item in persisted] == ["committed"]
    assert orchestrator.config.novelty_archive_path.exists()
    assert orchestrator.status()["outcomes"] == {"committed": 1}


@pytest.mark.asyncio
async def test_unmatched_candidate_returns_none_but_is_logged(tmp_path) -> None:
    orchestrator, oracle, target = _build(tmp_path, pipeline_routes("return 42", "return 43"))

    assert await orchestrator.run_one_cycle() is None

    assert target.read_text(encoding="utf-8") == SAMPLE
    assert [entry.outcome for entry in orchestrator.evolution_log.entries()] == ["no_match"]
    assert oracle.calls_for(FITNESS_SYSTEM_PROMPT) == []


@pytest.mark.asyncio
async def test_no_candidate_returns_none(tmp_path) -> None:
    orchestrator, _, _ = _build(tmp_path, {CANDIDATE_SYSTEM_PROMPT: "Nothing to improve here."})

    assert await orchestrator.run_one_cycle() is None
    entry = orchestrator.evolution_log.entries()[-1]
    assert entry.outcome == "no_candidate"
    assert entry.reason == "no_json_object"


@pytest.mark.asyncio
async def test_dangerous_mutation_fails_verification(tmp_path) -> None:
    orchestrator, _, target = _build(tmp_path, pipeline_routes("return 1", "return eval('1')"))

    entry = await orchestrator.run_one_cycle()

    assert entry.outcome == "verification_failed"
    assert "danger:eval" in entry.reason
    assert entry.verification_summary.startswith("failed 1/9 checks")
    assert target.read_text(encoding="utf-8") == SAMPLE
    assert not backup_path_for(target).exists()
    assert len(orchestrator.archive) == 0


@pytest.mark.asyncio
async def test_review_rejection_skips_verification(tmp_path) -> None:
    orchestrator, _, target = _build(tmp_path, pipeline_routes("return 1", "return 2", approve=False))

    entry = await orchestrator.run_one_cycle()

    assert entry.outcome == "review_rejected"
    assert entry.reason == "evaluator_declined"
    assert orchestrator.verifier.stats()["verified"] == 0
    assert target.read_text(encoding="utf-8") == SAMPLE


@pytest.mark.asyncio
async def test_low_fitness_skips_review(tmp_path) -> None:
    orchestrator, oracle, _ = _build(tmp_path, pipeline_routes("return 1", "return 2", fitness=0.3))

    entry = await orchestrator.run_one_cycle()

    assert entry.outcome == "low_fitness"
    assert entry.fitness_score == pytest.approx(0.3)
    assert oracle.calls_for(EVALUATOR_SYSTEM_PROMPT) == []


@pytest.mark.asyncio
async def test_low_novelty_rejected_when_threshold_set(tmp_path) -> None:
    archive = NoveltyArchive()
    archive.add(extract_features(SAMPLE.replace("return 1", "return 2")), 0.9)
    orchestrator, _, target = _build(
        tmp_path,
        pipeline_routes("return 1", "return 2"),
        config_overrides={"min_novelty": 0.5},
        archive=archive,
    )

    entry = await orchestrator.run_one_cycle()

    assert entry.outcome == "low_novelty"
    assert entry.novelty_score == pytest.approx(0.0)
    assert target.read_text(encoding="utf-8") == SAMPLE


@pytest.mark.asyncio
async def test_reverify_failure_restores_file(tmp_path) -> None:
    class RejectOnReread(FormalVerifier):
        def compiles(self, source: str, file_identifier: str = "<mutation>") -> bool:
            return False

    orchestrator, _, target = _build(tmp_path, pipeline_routes("return 1", "return 2"), verifier=RejectOnReread())

    entry = await orchestrator.run_one_cycle()

    assert entry.outcome == "reverify_failed"
    assert target.read_text(encoding="utf-8") == SAMPLE


@pytest.mark.asyncio
async def test_write_failure_is_recorded(tmp_path) -> None:
    target_path = tmp_path / "sample.py"
    orchestrator, _, target = _build(
        tmp_path,
        pipeline_routes("return 1", "return 2"),
        unit_factory=lambda path: SourceUnit(path, writer=_writer(target_path, fail_times=1)),
    )

    entry = await orchestrator.run_one_cycle()

    assert entry.outcome == "commit_failed"
    assert entry.reason == "write_failed:PermissionError"
    assert target.read_text(encoding="utf-8") == SAMPLE


@pytest.mark.asyncio
async def test_failed_restore_is_logged_and_escalated(tmp_path) -> None:
    target_path = tmp_path / "sample.py"
    orchestrator, _, _ = _build(
        tmp_path,
        pipeline_routes("return 1", "return 2"),
        unit_factory=lambda path: SourceUnit(path, writer=_writer(target_path, fail_times=2)),
    )

    with pytest.raises(CommitRestoreError):
        await orchestrator.run_one_cycle()

    entry = orchestrator.evolution_log.entries()[-1]
    assert entry.outcome == "commit_failed"
    assert entry.error_code == "RESTORE_FAILED"


@pytest.mark.asyncio
async def test_unreadable_source_is_classified(tmp_path) -> None:
    orchestrator, _, target = _build(tmp_path, pipeline_routes("return 1", "return 2"))
    target.write_bytes(b"\xff\xfe\x00bad")

    entry = await orchestrator.run_one_cycle()

    assert entry.outcome == "error"
    assert entry.error_code == "SOURCE_DECODE_ERROR"


@pytest.mark.asyncio
async def test_busy_file_is_skipped(tmp_path) -> None:
    orchestrator, oracle, target = _build(tmp_path, pipeline_routes("return 1", "return 2"))

    async with orchestrator._lock_for(target):
        assert orchestrator.is_busy(target)
        assert await orchestrator.run_one_cycle() is None

    assert oracle.calls == []
    assert len(orchestrator.evolution_log) == 0


@pytest.mark.asyncio
async def test_targets_rotate(tmp_path) -> None:
    orchestrator, _, _ = _build(tmp_path, pipeline_routes("return 1", "return 2"), names=("a.py", "b.py"))

    first = await orchestrator.run_one_cycle()
    second = await orchestrator.run_one_cycle()

    assert {Path(first.file).name, Path(second.file).name} == {"a.py", "b.py"}
    assert (first.cycle, second.cycle) == (1, 2)


@pytest.mark.asyncio
async def test_cancellation_before_commit_leaves_file_untouched(tmp_path) -> None:
    orchestrator, _, target = _build(
        tmp_path,
        pipeline_routes("return 1", "return 2"),
        delays={CANDIDATE_SYSTEM_PROMPT: 5.0},
    )

    task = asyncio.create_task(orchestrator.run_one_cycle())
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert target.read_text(encoding="utf-8") == SAMPLE
    assert orchestrator.evolution_log.entries()[-1].outcome == "abandoned"
    assert not orchestrator.is_busy(target)


@pytest.mark.asyncio
async def test_cancellation_during_commit_lets_write_finish(tmp_path) -> None:
    target_path = tmp_path / "sample.py"
    started = threading.Event()
    orchestrator, _, target = _build(
        tmp_path,
        pipeline_routes("return 1", "return 2"),
        unit_factory=lambda path: SourceUnit(path, writer=_writer(target_path, started=started, pause=0.3)),
    )

    task = asyncio.create_task(orchestrator.run_one_cycle())
    assert await asyncio.to_thread(started.wait, 5.0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert "return 2" in target.read_text(encoding="utf-8")
    assert orchestrator.evolution_log.entries()[-1].outcome == "committed"
    assert len(orchestrator.archive) == 1


@pytest.mark.asyncio
async def test_repeated_cancellation_during_commit_still_records_commit(tmp_path) -> None:
    target_path = tmp_path / "sample.py"
    started = threading.Event()
    orchestrator, _, target = _build(
        tmp_path,
        pipeline_routes("return 1", "return 2"),
        unit_factory=lambda path: SourceUnit(path, writer=_writer(target_path, started=started, pause=0.3)),
    )

    task = asyncio.create_task(orchestrator.run_one_cycle())
    assert await asyncio.to_thread(started.wait, 5.0)
    task.cancel()
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert "return 2" in target.read_text(encoding="utf-8")
    assert [entry.outcome for entry in orchestrator.evolution_log.entries()] == ["committed"]
    assert len(orchestrator.archive) == 1


@pytest.mark.asyncio
async def test_metrics_write_failure_does_not_rewrite_outcome(tmp_path, monkeypatch) -> None:
    original_log = metrics.log

    def disk_full(event_type, *args, **kwargs):
        if event_type in ("source_commit_applied", "mutation_cycle_complete"):
            raise OSError(28, "No space left on device")
        return original_log(event_type, *args, **kwargs)

    monkeypatch.setattr(metrics, "log", disk_full)
    orchestrator, _, target = _build(tmp_path, pipeline_routes("return 1", "return 2"))

    entry = await orchestrator.run_one_cycle()

    assert entry is not None
    assert entry.outcome == "committed"
    assert entry.error_code == ""
    assert "return 2" in target.read_text(encoding="utf-8")
    assert len(orchestrator.archive) == 1


@pytest.mark.asyncio
async def test_directed_repair_commits_marker_annotated_fix(tmp_path) -> None:
    fix = json.dumps(
        {
            "search": "/*L4*/     except ValueError:\n/*L5*/         pass",
            "replace": "    except ValueError:\n        value = None",
            "description": "stop swallowing parse errors",
            "confidence": 0.8,
        }
    )
    routes = {
        DIRECTED_SYSTEM_PROMPT: fix,
        PROPOSER_SYSTEM_PROMPT: "Makes the failure explicit.",
        EVALUATOR_SYSTEM_PROMPT: verdict_json(),
    }
    orchestrator, oracle, target = _build(tmp_path, routes, source=PARSERS, names=("parsers.py",))

    entry = await orchestrator.run_directed_repair()

    assert entry.outcome == "committed"
    assert entry.cycle_kind == "directed_repair"
    assert entry.category == "error_handling"
    assert entry.strategy == "line_markers_stripped"
    assert entry.fitness_score == pytest.approx(0.7)
    assert target.read_text(encoding="utf-8").count("value = None") == 1
    assert oracle.calls_for(FITNESS_SYSTEM_PROMPT) == []
    assert orchestrator.weakness_map.stats()["fixed"] == 1
    assert await orchestrator.run_directed_repair() is None


class _FakePatternSource(PatternSource):
    async def search(self, topic: str, limit: int) -> list[RepositoryDigest]:
        return [RepositoryDigest(full_name="acme/logs", stars=5, code="def log(): pass")]


@pytest.mark.asyncio
async def test_imported_patterns_feed_directed_prompts(tmp_path) -> None:
    patterns = json.dumps(
        [{"name": "log_and_continue", "description": "log swallowed errors", "code": "def f():\n    return 1\n"}]
    )
    routes = {
        PATTERN_SYSTEM_PROMPT: patterns,
        DIRECTED_SYSTEM_PROMPT: "no fix",
    }
    orchestrator, oracle, _ = _build(
        tmp_path, routes, source=PARSERS, names=("parsers.py",), pattern_source=_FakePatternSource()
    )

    await orchestrator.scan_weaknesses()
    summary = await orchestrator.run_pattern_import()
    entry = await orchestrator.run_directed_repair()

    assert summary.integrated >= 1
    assert entry.outcome == "no_candidate"
    assert "log_and_continue" in oracle.calls_for(DIRECTED_SYSTEM_PROMPT)[0]


@pytest.mark.asyncio
async def test_run_forever_stops_on_event(tmp_path) -> None:
    orchestrator, _, target = _build(tmp_path, pipeline_routes("return 1", "return 2"))
    stop = asyncio.Event()

    async def stopper() -> None:
        while orchestrator.cycle == 0:
            await asyncio.sleep(0.01)
        stop.set()

    await asyncio.wait_for(asyncio.gather(orchestrator.run_forever(stop), stopper()), timeout=10)

    assert orchestrator.cycle == 1
    assert "return 2" in target.read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_archive_survives_restart(tmp_path) -> None:
    orchestrator, _, _ = _build(tmp_path, pipeline_routes("return 1", "return 2"))
    await orchestrator.run_one_cycle()

    restarted = MutationOrchestrator(ScriptedOracle({}), orchestrator.config)

    assert len(restarted.archive) == 1
    assert len(restarted.evolution_log) == 1
