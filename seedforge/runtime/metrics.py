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
JSONL event ledger for pipeline telemetry.

One line per event: ``{"timestamp", "event", "level", "element", "payload"}``.
The orchestrator writes ``mutation_stage`` on every state transition and
``mutation_cycle_complete`` on every terminal outcome; source commits write
``source_commit_*`` events. Readers walk the file backwards, so tailing a
long ledger never loads it whole.
"""

import json
import os
import threading
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from seedforge.runtime import ELEMENT_ID, ROOT_DIR
from seedforge.runtime.timeutils import now_iso

METRICS_PATH = Path(os.environ.get("SEEDFORGE_METRICS_PATH") or ROOT_DIR / "reports" / "metrics.jsonl")
LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_WRITE_LOCK = threading.Lock()


def log(
    event_type: str,
    payload: Optional[Dict[str, Any]] = None,
    level: str = "INFO",
    element_id: Optional[str] = None,
) -> None:
    if level not in LEVELS:
        raise ValueError(f"unknown metrics level: {level}")
    record = {
        "timestamp": now_iso(),
        "event": event_type,
        "level": level,
        "element": element_id or ELEMENT_ID,
        "payload": payload or {},
    }
    line = json.dumps(record, ensure_ascii=False, default=str)
    with _WRITE_LOCK:
        METRICS_PATH.parent.mkdir(parents=True, exist_ok=True)
        with METRICS_PATH.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


def _lines_newest_first(path: Path, chunk_size: int = 4096) -> Iterator[bytes]:
    with path.open("rb") as handle:
        handle.seek(0, os.SEEK_END)
        position = handle.tell()
        partial = b""
        while position > 0:
            step = min(chunk_size, position)
            position -= step
            handle.seek(position)
            pieces = (handle.read(step) + partial).split(b"\n")
            # The first piece may continue in the previous chunk.
            partial = pieces.pop(0)
            for piece in reversed(pieces):
                if piece.strip():
                    yield piece
        if partial.strip():
            yield partial


def tail(limit: int = 100, event: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Return up to ``limit`` of the most recent entries, oldest first.

    Unparseable lines are skipped and do not count toward ``limit``. With
    ``event`` set, only entries of that type are returned.
    """
    if limit <= 0 or not METRICS_PATH.exists():
        return []
    newest: List[Dict[str, Any]] = []
    for raw in _lines_newest_first(METRICS_PATH):
        try:
            entry = json.loads(raw.decode("utf-8", errors="ignore"))
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict) or (event and entry.get("event") != event):
            continue
        newest.append(entry)
        if len(newest) >= limit:
            break
    newest.reverse()
    return newest


def event_counts(limit: int = 1000) -> Dict[str, int]:
    """Count event types over the last ``limit`` entries."""
    return dict(Counter(str(entry.get("event", "")) for entry in tail(limit)))


__all__ = ["LEVELS", "METRICS_PATH", "event_counts", "log", "tail"]
