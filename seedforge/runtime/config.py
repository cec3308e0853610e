# SPDX-License-Identifier: Apache-2.0
"""
Environment-driven configuration for the mutation pipeline.

Every threshold the pipeline applies lives here so operators can tune it
without code changes. Values are read from ``SEEDFORGE_*`` variables; unset
variables fall back to the defaults below.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Tuple

ENV_PREFIX = "SEEDFORGE_"


@dataclass(frozen=True)
class EvolutionConfig:
    state_dir: Path = Path("data/state")
    targets: Tuple[Path, ...] = field(default_factory=tuple)

    # NoveltyArchive
    novelty_capacity: int = 200
    k_nearest: int = 5
    fitness_weight: float = 0.6
    novelty_weight: float = 0.4
    min_novelty: float = 0.0

    # Candidate gates
    confidence_threshold: float = 0.7
    directed_confidence_threshold: float = 0.6
    fitness_floor: float = 0.6
    candidates_per_cycle: int = 2
    anchor_min_length: int = 15

    # FormalVerifier
    function_floor_ratio: float = 0.8
    size_delta_bound: float = 0.2

    # DualReviewGate
    approval_score: float = 7.0

    # Oracle calls
    oracle_timeout_seconds: float = 30.0
    oracle_retries: int = 3

    # Persistence
    log_capacity: int = 500
    pattern_capacity: int = 100

    # Scheduling
    cycle_interval_seconds: float = 60.0
    directed_repair_interval_seconds: float = 120.0
    pattern_import_interval_seconds: float = 300.0

    @property
    def evolution_log_path(self) -> Path:
        return self.state_dir / "evolution-log.json"

    @property
    def novelty_archive_path(self) -> Path:
        return self.state_dir / "novelty-archive.json"

    def with_overrides(self, **changes: Any) -> "EvolutionConfig":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state_dir": str(self.state_dir),
            "targets": [str(path) for path in self.targets],
            "novelty_capacity": self.novelty_capacity,
            "k_nearest": self.k_nearest,
            "fitness_weight": self.fitness_weight,
            "novelty_weight": self.novelty_weight,
            "min_novelty": self.min_novelty,
            "confidence_threshold": self.confidence_threshold,
            "directed_confidence_threshold": self.directed_confidence_threshold,
            "fitness_floor": self.fitness_floor,
            "candidates_per_cycle": self.candidates_per_cycle,
            "anchor_min_length": self.anchor_min_length,
            "function_floor_ratio": self.function_floor_ratio,
            "size_delta_bound": self.size_delta_bound,
            "approval_score": self.approval_score,
            "oracle_timeout_seconds": self.oracle_timeout_seconds,
            "oracle_retries": self.oracle_retries,
            "log_capacity": self.log_capacity,
            "pattern_capacity": self.pattern_capacity,
            "cycle_interval_seconds": self.cycle_interval_seconds,
            "directed_repair_interval_seconds": self.directed_repair_interval_seconds,
            "pattern_import_interval_seconds": self.pattern_import_interval_seconds,
        }


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""


def _read(source: Mapping[str, str], name: str) -> str | None:
    raw = source.get(f"{ENV_PREFIX}{name}")
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _float(source: Mapping[str, str], name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = _read(source, name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {value}")
    return value


def _int(source: Mapping[str, str], name: str, default: int, *, minimum: int = 1) -> int:
    raw = _read(source, name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {value}")
    return value


def _ratio(source: Mapping[str, str], name: str, default: float) -> float:
    value = _float(source, name, default)
    if value > 1.0:
        raise ConfigError(f"{ENV_PREFIX}{name} must be within [0, 1], got {value}")
    return value


def load_config(env: Mapping[str, str] | None = None) -> EvolutionConfig:
    source = os.environ if env is None else env
    defaults = EvolutionConfig()
    targets_raw = _read(source, "TARGETS")
    targets = tuple(Path(item) for item in targets_raw.split(os.pathsep) if item.strip()) if targets_raw else ()
    return EvolutionConfig(
        state_dir=Path(_read(source, "STATE_DIR") or defaults.state_dir),
        targets=targets,
        novelty_capacity=_int(source, "NOVELTY_CAPACITY", defaults.novelty_capacity),
        k_nearest=_int(source, "K_NEAREST", defaults.k_nearest),
        fitness_weight=_ratio(source, "FITNESS_WEIGHT", defaults.fitness_weight),
        novelty_weight=_ratio(source, "NOVELTY_WEIGHT", defaults.novelty_weight),
        min_novelty=_ratio(source, "MIN_NOVELTY", defaults.min_novelty),
        confidence_threshold=_ratio(source, "CONFIDENCE_THRESHOLD", defaults.confidence_threshold),
        directed_confidence_threshold=_ratio(source, "DIRECTED_CONFIDENCE_THRESHOLD", defaults.directed_confidence_threshold),
        fitness_floor=_ratio(source, "FITNESS_FLOOR", defaults.fitness_floor),
        candidates_per_cycle=_int(source, "CANDIDATES_PER_CYCLE", defaults.candidates_per_cycle),
        anchor_min_length=_int(source, "ANCHOR_MIN_LENGTH", defaults.anchor_min_length, minimum=0),
        function_floor_ratio=_ratio(source, "FUNCTION_FLOOR_RATIO", defaults.function_floor_ratio),
        size_delta_bound=_float(source, "SIZE_DELTA_BOUND", defaults.size_delta_bound),
        approval_score=_float(source, "APPROVAL_SCORE", defaults.approval_score),
        oracle_timeout_seconds=_float(source, "ORACLE_TIMEOUT_SECONDS", defaults.oracle_timeout_seconds),
        oracle_retries=_int(source, "ORACLE_RETRIES", defaults.oracle_retries),
        log_capacity=_int(source, "LOG_CAPACITY", defaults.log_capacity),
        pattern_capacity=_int(source, "PATTERN_CAPACITY", defaults.pattern_capacity),
        cycle_interval_seconds=_float(source, "CYCLE_INTERVAL_SECONDS", defaults.cycle_interval_seconds),
        directed_repair_interval_seconds=_float(
            source, "DIRECTED_REPAIR_INTERVAL_SECONDS", defaults.directed_repair_interval_seconds
        ),
        pattern_import_interval_seconds=_float(
            source, "PATTERN_IMPORT_INTERVAL_SECONDS", defaults.pattern_import_interval_seconds
        ),
    )


__all__ = ["ConfigError", "EvolutionConfig", "ENV_PREFIX", "load_config"]
