# SPDX-License-Identifier: Apache-2.0
"""
Persisted pipeline history.

``EvolutionLog`` keeps the most recent entries as one JSON array that is
rewritten atomically on every append. ``ArchiveStore`` persists the novelty
archive the same way. Both treat a missing or corrupt file as empty: losing
history never stops the pipeline.
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping

from seedforge.runtime.evolution.features import FEATURE_DIMENSION
from seedforge.runtime.evolution.novelty import NoveltyArchive
from seedforge.runtime.interfaces.ilogger import ILogger
from seedforge.runtime.logger import get_logger
from seedforge.runtime.timeutils import now_iso
from seedforge.runtime.tools.source_commit import atomic_write_bytes

DEFAULT_LOG_CAPACITY = 500


@dataclass(frozen=True)
class EvolutionLogEntry:
    cycle: int
    file: str
    description: str
    fitness_score: float
    novelty_score: float
    verification_summary: str
    outcome: str
    timestamp: str = field(default_factory=now_iso)
    cycle_kind: str = "evolution"
    category: str = ""
    strategy: str = ""
    review_score: float | None = None
    provider: str = ""
    error_code: str = ""
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "EvolutionLogEntry":
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in raw.items() if key in known})


def _load_json(path: Path, logger: ILogger) -> Any:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.error("state_file_unreadable", error=exc, path=str(path))
        return None


def _dump_json(path: Path, payload: Any) -> None:
    atomic_write_bytes(path, json.dumps(payload, ensure_ascii=False, indent=1).encode("utf-8"))


class EvolutionLog:
    def __init__(self, path: Path, capacity: int = DEFAULT_LOG_CAPACITY, *, logger: ILogger | None = None) -> None:
        self.path = Path(path)
        self.capacity = capacity
        self.logger = logger or get_logger(component="evolution_log")
        self._lock = threading.Lock()
        self._entries: List[EvolutionLogEntry] = self._load()

    def _load(self) -> List[EvolutionLogEntry]:
        raw = _load_json(self.path, self.logger)
        if not isinstance(raw, list):
            if raw is not None:
                self.logger.error("evolution_log_malformed", path=str(self.path))
            return []
        entries: List[EvolutionLogEntry] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                entries.append(EvolutionLogEntry.from_dict(item))
            except TypeError:
                continue
        return entries[-self.capacity :]

    def append(self, entry: EvolutionLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)
            self._entries = self._entries[-self.capacity :]
            snapshot = [item.to_dict() for item in self._entries]
        try:
            _dump_json(self.path, snapshot)
        except OSError as exc:
            self.logger.error("evolution_log_write_failed", error=exc, path=str(self.path))

    def entries(self) -> List[EvolutionLogEntry]:
        with self._lock:
            return list(self._entries)

    def tail(self, limit: int = 50) -> List[EvolutionLogEntry]:
        with self._lock:
            return list(self._entries[-limit:]) if limit > 0 else []

    def __len__(self) -> int:
        return len(self._entries)

    def outcome_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for entry in self.entries():
            counts[entry.outcome] = counts.get(entry.outcome, 0) + 1
        return counts


class ArchiveStore:
    def __init__(self, path: Path, *, logger: ILogger | None = None) -> None:
        self.path = Path(path)
        self.logger = logger or get_logger(component="evolution_log")

    def load_into(self, archive: NoveltyArchive) -> int:
        raw = _load_json(self.path, self.logger)
        if not isinstance(raw, dict):
            return 0
        return archive.load_payload(raw, dimension=FEATURE_DIMENSION)

    def save(self, archive: NoveltyArchive) -> None:
        payload = archive.to_payload()
        payload["saved_at"] = now_iso()
        try:
            _dump_json(self.path, payload)
        except OSError as exc:
            self.logger.error("novelty_archive_write_failed", error=exc, path=str(self.path))


__all__ = ["ArchiveStore", "DEFAULT_LOG_CAPACITY", "EvolutionLog", "EvolutionLogEntry"]
