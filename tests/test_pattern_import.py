# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import base64
import json

import httpx
import pytest

from seedforge.runtime.evolution.pattern_import import (
    GITHUB_API,
    PATTERN_SYSTEM_PROMPT,
    GitHubPatternSource,
    Pattern,
    PatternImporter,
    PatternLibrary,
    PatternSource,
    RepositoryDigest,
    topics_for,
)
from seedforge.runtime.evolution.verifier import FormalVerifier
from tests.helpers import ScriptedOracle

PATTERNS = json.dumps(
    [
        {
            "name": "clamp",
            "description": "bound a value",
            "code": "def clamp(x, lo, hi):\n    return max(lo, min(hi, x))\n",
            "category": "utility",
        },
        {
            "name": "runner",
            "description": "run a command",
            "code": "import os\n\ndef runner(cmd):\n    return os.system(cmd)\n",
            "category": "utility",
        },
        {"name": "incomplete", "description": "no code"},
    ]
)


class FakeSource(PatternSource):
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.topics: list[str] = []

    async def search(self, topic: str, limit: int) -> list[RepositoryDigest]:
        self.topics.append(topic)
        if self.error is not None:
            raise self.error
        return [RepositoryDigest(full_name="acme/tools", description="tools", stars=10, code="def f(): pass")]


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


@pytest.mark.asyncio
async def test_discover_keeps_only_verified_patterns() -> None:
    source = FakeSource()
    importer = PatternImporter(ScriptedOracle({PATTERN_SYSTEM_PROMPT: PATTERNS}), source, FormalVerifier())

    summary = await importer.discover_and_integrate(["python retry backoff"])

    assert summary.extracted == 2
    assert summary.integrated == 1
    assert summary.rejected[0]["name"] == "runner"
    assert "danger:shell_command" in summary.rejected[0]["reason"]
    assert [p.name for p in importer.library.patterns()] == ["clamp"]
    assert importer.library.patterns()[0].source == "acme/tools"


@pytest.mark.asyncio
async def test_topics_are_searched_once() -> None:
    source = FakeSource()
    importer = PatternImporter(ScriptedOracle({PATTERN_SYSTEM_PROMPT: PATTERNS}), source, FormalVerifier())

    await importer.search_and_extract("topic")
    assert await importer.search_and_extract("topic") == []
    assert source.topics == ["topic"]
    assert importer.stats() == {"integrated": 0, "searched_topics": 1}


@pytest.mark.asyncio
async def test_search_errors_yield_nothing() -> None:
    importer = PatternImporter(
        ScriptedOracle({PATTERN_SYSTEM_PROMPT: PATTERNS}),
        FakeSource(error=httpx.ConnectError("offline")),
        FormalVerifier(),
    )

    assert await importer.search_and_extract("topic") == []


def test_library_capacity_and_hints() -> None:
    library = PatternLibrary(capacity=2)
    library.add(Pattern("a", "first", "x = 1", category="network"))
    library.add(Pattern("b", "second", "x = 2", category="data"))
    library.add(Pattern("c", "", "x = 3", category="data"))

    assert [p.name for p in library.patterns()] == ["b", "c"]
    assert library.hints(limit=5, category="data") == ["b: second", "c"]
    assert library.hints(limit=1, category="network") == ["c"]
    assert library.hints(limit=0) == []


def test_topics_for_category() -> None:
    assert "python retry backoff" in topics_for("resilience")
    assert topics_for(None) == topics_for("unknown")


def _github_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/search/repositories":
        assert "language:python" in request.url.params["q"]
        return httpx.Response(
            200,
            json={
                "items": [
                    {"full_name": "acme/retry", "description": "Retry helpers", "stargazers_count": 42},
                    {"full_name": "acme/empty"},
                ]
            },
        )
    if path == "/repos/acme/retry/readme":
        return httpx.Response(200, json={"content": _b64("# Retry\nBackoff helpers")})
    if path == "/repos/acme/retry/git/trees/HEAD":
        return httpx.Response(
            200,
            json={
                "tree": [
                    {"path": "retry/core.py", "size": 120},
                    {"path": "tests/test_core.py", "size": 90},
                    {"path": "README.md", "size": 10},
                ]
            },
        )
    if path == "/repos/acme/retry/contents/retry/core.py":
        return httpx.Response(200, json={"content": _b64("def backoff(n):\n    return 2 ** n\n")})
    return httpx.Response(404, json={"message": "Not Found"})


@pytest.mark.asyncio
async def test_github_source_builds_digests() -> None:
    source = GitHubPatternSource(
        client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(_github_handler), base_url=GITHUB_API)
    )

    digests = await source.search("retry", 2)

    assert len(digests) == 1
    digest = digests[0]
    assert digest.full_name == "acme/retry"
    assert digest.stars == 42
    assert digest.readme.startswith("# Retry")
    assert "--- retry/core.py ---" in digest.code
    assert "test_core" not in digest.code


@pytest.mark.asyncio
async def test_github_source_tolerates_failures() -> None:
    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="oops")

    source = GitHubPatternSource(
        client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(broken), base_url=GITHUB_API)
    )

    assert await source.search("retry", 2) == []
