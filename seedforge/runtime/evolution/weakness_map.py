# SPDX-License-Identifier: Apache-2.0
"""
Weakness map for directed repair.

Weaknesses come from two places: cheap static heuristics over the source
text, and an oracle analysis of the file. Each category keeps at most ten
entries (highest severity wins), and the next repair target is the
unaddressed weakness with the highest ``severity * category weight``.
"""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

from seedforge.runtime.evolution.candidate import source_excerpt
from seedforge.runtime.evolution.text_patcher import annotate_lines
from seedforge.runtime.intelligence.json_extract import extract_json_array
from seedforge.runtime.intelligence.oracle import Oracle, OracleOptions, ask_safely

CATEGORIES = ("error_handling", "performance", "resilience", "intelligence", "learning", "integration")

CATEGORY_WEIGHTS: Dict[str, float] = {
    "error_handling": 1.3,
    "resilience": 1.2,
    "performance": 1.1,
}

MAX_PER_CATEGORY = 10
CONTEXT_WINDOW = 80
CONTEXT_STEP = 10
CONTEXT_PAD = 5
AI_ANALYSIS_MIN_CHARS = 1000
AI_ANALYSIS_MAX_CHARS = 50_000

_CATEGORY_KEYWORDS: Dict[str, Sequence[str]] = {
    "error_handling": ("except", "raise", "error", "Error"),
    "performance": ("append", "extend", "for ", "sleep"),
    "resilience": ("timeout", "retry", "reconnect", "request", "urlopen"),
    "intelligence": ("decide", "analyze", "reason", "score"),
    "learning": ("learn", "train", "adapt", "update"),
    "integration": ("import", "client", "connect", "register"),
}

WEAKNESS_SYSTEM_PROMPT = (
    "You are a weakness analyzer. Report only concrete problems that really exist in the "
    "code, never generic advice. Reply with a JSON array only."
)
DIRECTED_SYSTEM_PROMPT = (
    "You are a directed repair engine. The search text must be copied verbatim from the "
    "context, including indentation, but without the /*L<n>*/ line markers. Reply with one JSON object only."
)


@dataclass(frozen=True)
class Weakness:
    category: str
    description: str
    severity: float
    file: str
    suggestion: str = ""
    source: str = "static_analysis"
    addressed: bool = False
    success: bool | None = None
    added_at: float = field(default_factory=time.time)

    @property
    def score(self) -> float:
        return self.severity * CATEGORY_WEIGHTS.get(self.category, 1.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "description": self.description,
            "severity": self.severity,
            "file": self.file,
            "suggestion": self.suggestion,
            "source": self.source,
            "addressed": self.addressed,
            "success": self.success,
        }


class WeaknessModel(BaseModel):
    category: str
    description: str = Field(min_length=1)
    severity: float = 1.0
    suggestion: str = ""

    @field_validator("severity")
    @classmethod
    def _clamp_severity(cls, value: float) -> float:
        return min(5.0, max(1.0, value))


_EMPTY_EXCEPT_RE = re.compile(r"except\b[^:\n]*:\s*(?:#[^\n]*)?\n?\s*pass\b")
_APPEND_RE = re.compile(r"\.append\(")
_LIMIT_RE = re.compile(r"\blen\([^)]*\)\s*[>]=?\s*\d+|\.pop\(|\bdel\s+\w+\[|\bmaxlen\s*=|\[-\w+\s*:\]")
_NETWORK_RE = re.compile(r"\b(?:requests|httpx)\.(?:get|post|put|delete|patch|request)\(|\burlopen\(|\bClientSession\(")
_TIMEOUT_RE = re.compile(r"\btimeout\b")
_MAGIC_RE = re.compile(r"(?<![\w.])(?:[2-9]\d{2,}|1\d{3,})(?![\w.])")
_SYNC_IO_RE = re.compile(r"\bopen\(|\.(?:read|write)_(?:text|bytes)\(|\btime\.sleep\(")


def static_analyze(source: str, file_name: str) -> List[Weakness]:
    found: List[Weakness] = []

    empty_excepts = len(_EMPTY_EXCEPT_RE.findall(source))
    if empty_excepts > 2:
        found.append(
            Weakness("error_handling", f"{empty_excepts} except blocks swallow errors", 3, file_name, "log the error at minimum")
        )

    appends = len(_APPEND_RE.findall(source))
    limits = len(_LIMIT_RE.findall(source))
    if appends > 5 and limits < appends / 3:
        found.append(
            Weakness(
                "performance",
                f"{appends} appends with only {limits} size checks",
                4,
                file_name,
                "bound growing collections",
            )
        )

    network_calls = len(_NETWORK_RE.findall(source))
    if network_calls > 2 and not _TIMEOUT_RE.search(source):
        found.append(
            Weakness("resilience", f"{network_calls} network calls without a timeout", 3, file_name, "add timeouts and retries")
        )

    magic = len(_MAGIC_RE.findall(source))
    if magic > 10:
        found.append(Weakness("intelligence", f"{magic} hard-coded numbers", 2, file_name, "extract named constants"))

    sync_io = len(_SYNC_IO_RE.findall(source))
    if sync_io > 10:
        found.append(
            Weakness("performance", f"{sync_io} blocking I/O calls", 2, file_name, "move hot-path I/O off the event loop")
        )
    return found


def build_analysis_prompt(file_name: str, source: str) -> str:
    return (
        "Find weaknesses in this Python file, at most two per category.\n\n"
        f"File: {file_name} ({source.count(chr(10)) + 1} lines)\n"
        f"```python\n{source_excerpt(source)}\n```\n\n"
        "Categories: " + ", ".join(CATEGORIES) + "\n"
        'Reply with JSON: [{"category": "...", "description": "specific weakness", '
        '"severity": 1-5, "suggestion": "short fix"}]'
    )


def extract_relevant_context(source: str, target: Weakness) -> str:
    """Marker-annotated slice of ``source`` most related to ``target``.

    Falls back to a head/tail excerpt when no keyword matches anywhere.
    """
    lines = source.split("\n")
    keywords = list(_CATEGORY_KEYWORDS.get(target.category, ()))
    keywords.extend(re.findall(r"[A-Za-z_]{3,}", target.description))
    patterns = [re.compile(re.escape(keyword), re.IGNORECASE) for keyword in keywords]

    best_start = 0
    best_score = 0
    for start in range(0, max(1, len(lines) - CONTEXT_STEP), CONTEXT_STEP):
        window = "\n".join(lines[start : start + CONTEXT_WINDOW])
        score = sum(len(pattern.findall(window)) for pattern in patterns)
        if score > best_score:
            best_score = score
            best_start = start

    if best_score == 0 and len(source) > 3000:
        return source_excerpt(source)
    first = max(0, best_start - CONTEXT_PAD)
    last = min(len(lines), best_start + CONTEXT_WINDOW + CONTEXT_PAD)
    return annotate_lines(lines[first:last], start_line=first + 1)


def build_directed_fix_prompt(target: Weakness, source: str, hints: Sequence[str] = ()) -> str:
    hint_block = ""
    if hints:
        hint_block = "Known good patterns:\n" + "\n".join(f"- {hint}" for hint in hints) + "\n\n"
    return (
        "Generate a precise fix for this specific weakness.\n\n"
        f"File: {target.file} ({source.count(chr(10)) + 1} lines)\n"
        f"Category: {target.category}\n"
        f"Weakness: {target.description}\n"
        f"Suggestion: {target.suggestion or 'none'}\n\n"
        f"{hint_block}"
        f"Context:\n```python\n{extract_relevant_context(source, target)}\n```\n\n"
        "Rules: search must be copied verbatim from the context (20-200 chars), replace must be "
        "valid Python, fix only this weakness, and skip it if confidence is below 0.7.\n"
        'Reply with JSON: {"search": "...", "replace": "...", "description": "...", "confidence": 0.0-1.0}'
    )


class WeaknessMap:
    def __init__(self, max_per_category: int = MAX_PER_CATEGORY) -> None:
        self.max_per_category = max_per_category
        self._lock = threading.Lock()
        self._by_category: Dict[str, List[Weakness]] = {}
        self.improvements: List[Dict[str, Any]] = []

    def add(self, weakness: Weakness) -> bool:
        if weakness.category not in CATEGORIES:
            return False
        with self._lock:
            entries = self._by_category.setdefault(weakness.category, [])
            if any(w.file == weakness.file and w.description == weakness.description for w in entries):
                return False
            entries.append(weakness)
            if len(entries) > self.max_per_category:
                entries.sort(key=lambda w: w.severity, reverse=True)
                del entries[self.max_per_category :]
            return weakness in entries

    def extend(self, weaknesses: Iterable[Weakness]) -> int:
        return sum(1 for weakness in weaknesses if self.add(weakness))

    def top_target(self) -> Weakness | None:
        best: Weakness | None = None
        with self._lock:
            for entries in self._by_category.values():
                for weakness in entries:
                    if weakness.addressed:
                        continue
                    if best is None or weakness.score > best.score:
                        best = weakness
        return best

    def mark_addressed(self, target: Weakness, success: bool) -> None:
        with self._lock:
            entries = self._by_category.get(target.category, [])
            for index, weakness in enumerate(entries):
                if weakness.file == target.file and weakness.description == target.description:
                    entries[index] = replace(weakness, addressed=True, success=success)
                    break
            if success:
                self.improvements.append(
                    {"category": target.category, "description": target.description, "file": target.file, "at": time.time()}
                )
                del self.improvements[:-100]

    def report(self) -> Dict[str, List[Dict[str, Any]]]:
        with self._lock:
            return {category: [w.to_dict() for w in entries] for category, entries in self._by_category.items()}

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            all_entries = [w for entries in self._by_category.values() for w in entries]
        return {
            "total": len(all_entries),
            "open": sum(1 for w in all_entries if not w.addressed),
            "fixed": sum(1 for w in all_entries if w.addressed and w.success),
            "categories": len(self._by_category),
        }

    def __len__(self) -> int:
        with self._lock:
            return sum(len(entries) for entries in self._by_category.values())


class WeaknessAnalyzer:
    def __init__(self, oracle: Oracle, *, options: OracleOptions | None = None) -> None:
        self.oracle = oracle
        self.options = options or OracleOptions()

    async def analyze(self, file_name: str, source: str) -> List[Weakness]:
        found = static_analyze(source, file_name)
        if not (AI_ANALYSIS_MIN_CHARS < len(source) < AI_ANALYSIS_MAX_CHARS):
            return found
        response = await ask_safely(self.oracle, build_analysis_prompt(file_name, source), WEAKNESS_SYSTEM_PROMPT, self.options)
        if not response.success:
            return found
        extracted = extract_json_array(response.content)
        if not extracted.ok:
            return found
        for item in extracted.value:
            if not isinstance(item, dict) or item.get("category") not in CATEGORIES:
                continue
            try:
                model = WeaknessModel.model_validate(item)
            except ValidationError:
                continue
            found.append(
                Weakness(
                    category=model.category,
                    description=model.description.strip(),
                    severity=model.severity,
                    file=file_name,
                    suggestion=model.suggestion,
                    source="ai_analysis",
                )
            )
        return found


__all__ = [
    "CATEGORIES",
    "CATEGORY_WEIGHTS",
    "DIRECTED_SYSTEM_PROMPT",
    "WEAKNESS_SYSTEM_PROMPT",
    "Weakness",
    "WeaknessAnalyzer",
    "WeaknessMap",
    "build_analysis_prompt",
    "build_directed_fix_prompt",
    "extract_relevant_context",
    "static_analyze",
]
