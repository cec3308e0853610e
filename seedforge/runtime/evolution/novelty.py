# SPDX-License-Identifier: Apache-2.0
"""
Bounded novelty archive with k-nearest-neighbour scoring and Pareto selection.

Writers (``add`` and eviction) are serialized by a lock and publish a fresh
immutable tuple of records; readers work on whatever tuple was current when
they started, so ``novelty`` never blocks on or observes a half-done add.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Mapping, Sequence, Tuple, TypeVar

from seedforge.runtime.evolution.features import FeatureVector

DEFAULT_CAPACITY = 200
DEFAULT_K_NEAREST = 5

T = TypeVar("T")


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"feature dimension mismatch: {len(a)} != {len(b)}")
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 1.0
    similarity = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    return min(1.0, max(0.0, 1.0 - similarity))


@dataclass(frozen=True)
class NoveltyRecord:
    features: FeatureVector
    fitness: float
    novelty: float
    metadata: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "features": [round(value, 6) for value in self.features],
            "fitness": self.fitness,
            "novelty": self.novelty,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "NoveltyRecord":
        return cls(
            features=tuple(float(value) for value in raw["features"]),
            fitness=float(raw.get("fitness", 0.0)),
            novelty=float(raw.get("novelty", 0.0)),
            metadata=dict(raw.get("metadata") or {}),
            timestamp=float(raw.get("timestamp", 0.0)),
        )


@dataclass(frozen=True)
class ParetoCandidate(Generic[T]):
    item: T
    features: FeatureVector
    fitness: float


@dataclass(frozen=True)
class ParetoChoice(Generic[T]):
    item: T
    features: FeatureVector
    fitness: float
    novelty: float
    score: float


def _dominates(a: ParetoChoice[Any], b: ParetoChoice[Any]) -> bool:
    return (
        a.fitness >= b.fitness
        and a.novelty >= b.novelty
        and (a.fitness > b.fitness or a.novelty > b.novelty)
    )


class NoveltyArchive:
    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        k_nearest: int = DEFAULT_K_NEAREST,
        *,
        fitness_weight: float = 0.6,
        novelty_weight: float = 0.4,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        if k_nearest < 1:
            raise ValueError("k_nearest must be positive")
        self.capacity = capacity
        self.k_nearest = k_nearest
        self.fitness_weight = fitness_weight
        self.novelty_weight = novelty_weight
        self.clock = clock
        self._records: Tuple[NoveltyRecord, ...] = ()
        self._write_lock = threading.Lock()
        self.evicted = 0

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> Tuple[NoveltyRecord, ...]:
        return self._records

    def novelty(self, features: FeatureVector) -> float:
        return self._novelty_against(features, [record.features for record in self._records])

    def _novelty_against(self, features: FeatureVector, others: Sequence[FeatureVector]) -> float:
        if not others:
            return 1.0
        distances = sorted(cosine_distance(features, other) for other in others)
        nearest = distances[: min(self.k_nearest, len(distances))]
        return min(1.0, max(0.0, sum(nearest) / len(nearest)))

    def add(self, features: FeatureVector, fitness: float, metadata: Mapping[str, Any] | None = None) -> NoveltyRecord:
        with self._write_lock:
            record = NoveltyRecord(
                features=tuple(float(value) for value in features),
                fitness=float(fitness),
                novelty=self._novelty_against(features, [existing.features for existing in self._records]),
                metadata=dict(metadata or {}),
                timestamp=self.clock(),
            )
            self._records = self._evict(self._records + (record,))
            return record

    def _evict(self, records: Tuple[NoveltyRecord, ...]) -> Tuple[NoveltyRecord, ...]:
        current = list(records)
        while len(current) > self.capacity:
            # On ties the oldest record is evicted.
            scores = [
                self._novelty_against(rec.features, [other.features for j, other in enumerate(current) if j != i])
                for i, rec in enumerate(current)
            ]
            del current[min(range(len(current)), key=scores.__getitem__)]
            self.evicted += 1
        return tuple(current)

    def pareto_select(self, candidates: Sequence[ParetoCandidate[T]]) -> List[ParetoChoice[T]]:
        """Non-dominated candidates ordered by the blended fitness/novelty score.

        Falls back to ranking every candidate when the front comes out empty.
        """
        scored: List[ParetoChoice[T]] = []
        for candidate in candidates:
            novelty = self.novelty(candidate.features)
            scored.append(
                ParetoChoice(
                    item=candidate.item,
                    features=candidate.features,
                    fitness=candidate.fitness,
                    novelty=novelty,
                    score=self.fitness_weight * candidate.fitness + self.novelty_weight * novelty,
                )
            )
        front = [choice for choice in scored if not any(_dominates(other, choice) for other in scored)]
        if not front:
            front = scored
        return sorted(front, key=lambda choice: choice.score, reverse=True)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity,
            "k_nearest": self.k_nearest,
            "records": [record.to_dict() for record in self._records],
        }

    def load_payload(self, payload: Mapping[str, Any], dimension: int | None = None) -> int:
        """Replace the archive contents; returns the number of records kept."""
        loaded: List[NoveltyRecord] = []
        for raw in payload.get("records") or []:
            try:
                record = NoveltyRecord.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                continue
            if dimension is not None and len(record.features) != dimension:
                continue
            loaded.append(record)
        with self._write_lock:
            self._records = self._evict(tuple(loaded))
        return len(self._records)

    def stats(self) -> Dict[str, Any]:
        records = self._records
        size = len(records)
        return {
            "size": size,
            "capacity": self.capacity,
            "evicted": self.evicted,
            "mean_novelty": round(sum(r.novelty for r in records) / size, 4) if size else 0.0,
            "mean_fitness": round(sum(r.fitness for r in records) / size, 4) if size else 0.0,
        }


__all__ = [
    "DEFAULT_CAPACITY",
    "DEFAULT_K_NEAREST",
    "NoveltyArchive",
    "NoveltyRecord",
    "ParetoCandidate",
    "ParetoChoice",
    "cosine_distance",
]
