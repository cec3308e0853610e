# SPDX-License-Identifier: Apache-2.0
"""
External pattern import.

Searches a :class:`PatternSource` for repositories on a topic, asks the
oracle to extract small reusable snippets from what it finds, and keeps the
ones that compile and introduce no denylisted construct. Imported patterns
are never written into target files directly; they are offered as hints to
directed-repair prompts and go through the normal gates from there.
"""

from __future__ import annotations

import base64
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence

import httpx
from pydantic import BaseModel, Field, ValidationError

from seedforge.runtime.evolution.verifier import FormalVerifier
from seedforge.runtime.intelligence.json_extract import extract_json_array
from seedforge.runtime.intelligence.oracle import Oracle, OracleOptions, ask_safely
from seedforge.runtime.interfaces.ilogger import ILogger
from seedforge.runtime.logger import get_logger

DEFAULT_PATTERN_CAPACITY = 100
DEFAULT_HISTORY_LIMIT = 200
GITHUB_API = "https://api.github.com"

PATTERN_SYSTEM_PROMPT = (
    "Extract genuinely reusable code patterns. Each must be a self-contained Python function "
    "with no project-specific imports. Reply with a JSON array only."
)

CATEGORY_TOPICS: Dict[str, Sequence[str]] = {
    "error_handling": ("python structured error handling", "python exception logging patterns"),
    "performance": ("python bounded cache", "python memory efficient collections"),
    "resilience": ("python retry backoff", "python circuit breaker"),
    "intelligence": ("python decision heuristics", "python scoring functions"),
    "learning": ("python online learning", "python adaptive thresholds"),
    "integration": ("python plugin registry", "python async client patterns"),
}
DEFAULT_TOPICS: Sequence[str] = ("python self-healing service", "python autonomous agent")


@dataclass(frozen=True)
class RepositoryDigest:
    full_name: str
    description: str = ""
    stars: int = 0
    readme: str = ""
    code: str = ""


@dataclass(frozen=True)
class Pattern:
    name: str
    description: str
    code: str
    category: str = "utility"
    source: str = ""
    stars: int = 0
    integrated_at: float = field(default_factory=time.time)

    def hint(self) -> str:
        return f"{self.name}: {self.description}" if self.description else self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "source": self.source,
            "stars": self.stars,
            "integrated_at": self.integrated_at,
        }


class PatternModel(BaseModel):
    name: str = Field(min_length=1)
    code: str = Field(min_length=1)
    description: str = ""
    category: str = "utility"


class PatternSource(ABC):
    @abstractmethod
    async def search(self, topic: str, limit: int) -> List[RepositoryDigest]:
        raise NotImplementedError


class GitHubPatternSource(PatternSource):
    """Repository search over the public GitHub REST API.

    Any HTTP or decoding failure yields fewer (or no) digests rather than an
    exception.
    """

    def __init__(
        self,
        token: str = "",
        *,
        timeout_seconds: float = 10.0,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self.token = token
        self.timeout_seconds = timeout_seconds
        self._client_factory = client_factory or self._default_client

    def _default_client(self) -> httpx.AsyncClient:
        headers = {"User-Agent": "seedforge-pattern-import", "Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(base_url=GITHUB_API, headers=headers, timeout=self.timeout_seconds)

    async def search(self, topic: str, limit: int) -> List[RepositoryDigest]:
        digests: List[RepositoryDigest] = []
        async with self._client_factory() as client:
            found = await self._get_json(
                client,
                "/search/repositories",
                params={"q": f"{topic} language:python", "sort": "stars", "per_page": str(limit)},
            )
            items = found.get("items") if isinstance(found, dict) else None
            for repo in (items or [])[:limit]:
                full_name = repo.get("full_name")
                if not full_name:
                    continue
                readme = self._decode(await self._get_json(client, f"/repos/{full_name}/readme"))[:3000]
                code = await self._core_files(client, full_name)
                if not readme and not code:
                    continue
                digests.append(
                    RepositoryDigest(
                        full_name=full_name,
                        description=repo.get("description") or "",
                        stars=int(repo.get("stargazers_count") or 0),
                        readme=readme,
                        code=code,
                    )
                )
        return digests

    async def _core_files(self, client: httpx.AsyncClient, full_name: str) -> str:
        tree = await self._get_json(client, f"/repos/{full_name}/git/trees/HEAD", params={"recursive": "1"})
        entries = tree.get("tree") if isinstance(tree, dict) else None
        files = [
            entry
            for entry in entries or []
            if str(entry.get("path", "")).endswith(".py")
            and "test" not in str(entry.get("path", ""))
            and int(entry.get("size") or 0) < 50_000
        ]
        files.sort(key=lambda entry: int(entry.get("size") or 0), reverse=True)
        chunks: List[str] = []
        for entry in files[:2]:
            content = self._decode(await self._get_json(client, f"/repos/{full_name}/contents/{entry['path']}"))
            if content:
                chunks.append(f"--- {entry['path']} ---\n{content[:2000]}")
        return "\n".join(chunks)

    @staticmethod
    async def _get_json(client: httpx.AsyncClient, path: str, params: Dict[str, str] | None = None) -> Any:
        try:
            response = await client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError):
            return None

    @staticmethod
    def _decode(blob: Any) -> str:
        if not isinstance(blob, dict) or not blob.get("content"):
            return ""
        try:
            return base64.b64decode(blob["content"]).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return ""


class PatternLibrary:
    def __init__(self, capacity: int = DEFAULT_PATTERN_CAPACITY) -> None:
        self.capacity = capacity
        self._lock = threading.Lock()
        self._patterns: List[Pattern] = []

    def add(self, pattern: Pattern) -> None:
        with self._lock:
            self._patterns.append(pattern)
            del self._patterns[: max(0, len(self._patterns) - self.capacity)]

    def patterns(self) -> List[Pattern]:
        with self._lock:
            return list(self._patterns)

    def hints(self, limit: int = 3, category: str | None = None) -> List[str]:
        with self._lock:
            pool = [p for p in self._patterns if category is None or p.category == category] or list(self._patterns)
        return [pattern.hint() for pattern in pool[-limit:]] if limit > 0 else []

    def __len__(self) -> int:
        return len(self._patterns)


def build_pattern_prompt(repo: RepositoryDigest) -> str:
    return (
        "Extract reusable Python code patterns from this open-source project.\n\n"
        f"Project: {repo.full_name} ({repo.stars} stars)\n"
        f"Description: {repo.description or 'none'}\n"
        f"README excerpt:\n{repo.readme[:1000]}\n\n"
        f"Core code:\n{repo.code[:3000]}\n\n"
        "Extract 2-3 patterns, each a complete self-contained function.\n"
        'Reply with a JSON array: [{"name": "...", "description": "...", "code": "...", '
        '"category": "algorithm|network|data|utility"}]'
    )


@dataclass
class ImportSummary:
    topics: List[str] = field(default_factory=list)
    extracted: int = 0
    integrated: int = 0
    rejected: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topics": list(self.topics),
            "extracted": self.extracted,
            "integrated": self.integrated,
            "rejected": list(self.rejected),
        }


class PatternImporter:
    def __init__(
        self,
        oracle: Oracle,
        source: PatternSource,
        verifier: FormalVerifier,
        *,
        library: PatternLibrary | None = None,
        options: OracleOptions | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        logger: ILogger | None = None,
    ) -> None:
        self.oracle = oracle
        self.source = source
        self.verifier = verifier
        self.library = library or PatternLibrary()
        self.options = options or OracleOptions()
        self.history_limit = history_limit
        self.search_history: List[str] = []
        self.logger = logger or get_logger(component="pattern_import")

    async def search_and_extract(self, topic: str, max_results: int = 2) -> List[Pattern]:
        if topic in self.search_history:
            return []
        self.search_history.append(topic)
        del self.search_history[: max(0, len(self.search_history) - self.history_limit)]

        try:
            repos = await self.source.search(topic, max_results)
        except httpx.HTTPError as exc:
            self.logger.error("pattern_search_failed", error=exc, topic=topic)
            return []

        patterns: List[Pattern] = []
        for repo in repos[:max_results]:
            response = await ask_safely(self.oracle, build_pattern_prompt(repo), PATTERN_SYSTEM_PROMPT, self.options)
            if not response.success:
                continue
            extracted = extract_json_array(response.content)
            if not extracted.ok:
                continue
            for item in extracted.value:
                try:
                    model = PatternModel.model_validate(item)
                except ValidationError:
                    continue
                patterns.append(
                    Pattern(
                        name=model.name,
                        description=model.description,
                        code=model.code,
                        category=model.category,
                        source=repo.full_name,
                        stars=repo.stars,
                    )
                )
        return patterns

    def integrate(self, pattern: Pattern) -> tuple[bool, str]:
        report = self.verifier.check_snippet(pattern.code, label=f"pattern:{pattern.name}")
        if not report.passed:
            return False, report.reason
        self.library.add(pattern)
        self.logger.info("pattern_integrated", name=pattern.name, source=pattern.source)
        return True, ""

    async def discover_and_integrate(self, topics: Sequence[str]) -> ImportSummary:
        summary = ImportSummary(topics=list(topics))
        for topic in topics:
            for pattern in await self.search_and_extract(topic):
                summary.extracted += 1
                ok, reason = self.integrate(pattern)
                if ok:
                    summary.integrated += 1
                else:
                    summary.rejected.append({"name": pattern.name, "reason": reason})
        return summary

    def stats(self) -> Dict[str, Any]:
        return {
            "integrated": len(self.library),
            "searched_topics": len(self.search_history),
        }


def topics_for(category: str | None) -> List[str]:
    return list(CATEGORY_TOPICS.get(category or "", DEFAULT_TOPICS))


__all__ = [
    "CATEGORY_TOPICS",
    "GitHubPatternSource",
    "ImportSummary",
    "PATTERN_SYSTEM_PROMPT",
    "Pattern",
    "PatternImporter",
    "PatternLibrary",
    "PatternSource",
    "RepositoryDigest",
    "build_pattern_prompt",
    "topics_for",
]
