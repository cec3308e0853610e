# SPDX-License-Identifier: Apache-2.0
"""
Provider fleet routing.

``OracleFleet`` is itself an :class:`Oracle`. Each ``ask`` walks providers in
rank order (success rate divided by priority, unknown providers counted at
0.5), skips any provider that failed within the cooldown window, and returns
the first non-empty answer.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from seedforge.runtime.intelligence.oracle import Oracle, OracleOptions, OracleResponse
from seedforge.runtime.logger import get_logger

DEFAULT_COOLDOWN_SECONDS = 30.0
LATENCY_DECAY = 0.8
MAX_PROMPT_CHARS = 12_000


@dataclass
class ProviderStats:
    calls: int = 0
    successes: int = 0
    avg_latency_ms: float = 0.0
    last_use: float = 0.0
    last_fail: float | None = None

    @property
    def success_rate(self) -> float:
        if self.calls == 0:
            return 0.5
        return self.successes / self.calls

    def record_success(self, latency_ms: float) -> None:
        self.successes += 1
        if self.avg_latency_ms:
            self.avg_latency_ms = self.avg_latency_ms * LATENCY_DECAY + latency_ms * (1.0 - LATENCY_DECAY)
        else:
            self.avg_latency_ms = latency_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "calls": self.calls,
            "successes": self.successes,
            "success_rate": round(self.success_rate, 3),
            "avg_latency_ms": round(self.avg_latency_ms, 2),
        }


@dataclass
class FleetMember:
    oracle: Oracle
    priority: int = 1
    stats: ProviderStats = field(default_factory=ProviderStats)

    @property
    def provider_id(self) -> str:
        return getattr(self.oracle, "provider_id", self.oracle.__class__.__name__)

    @property
    def rank_score(self) -> float:
        return self.stats.success_rate / max(1, self.priority)


class OracleFleet(Oracle):
    provider_id = "fleet"

    def __init__(
        self,
        members: Iterable[FleetMember | Oracle],
        *,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.members = [m if isinstance(m, FleetMember) else FleetMember(oracle=m) for m in members]
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.logger = get_logger(component="oracle_fleet")

    def ranked(self) -> list[FleetMember]:
        # sorted() is stable, so equal scores keep registration order.
        return sorted(self.members, key=lambda member: member.rank_score, reverse=True)

    def view(self, offset: int) -> Oracle:
        """An oracle over this fleet whose ranking starts ``offset`` places down."""
        return _RotatedFleet(self, offset)

    async def ask(
        self,
        prompt: str,
        system_prompt: str = "",
        options: OracleOptions | None = None,
    ) -> OracleResponse:
        return await self._ask(prompt, system_prompt, options or OracleOptions(), offset=0)

    async def _ask(self, prompt: str, system_prompt: str, options: OracleOptions, *, offset: int) -> OracleResponse:
        ranked = self.ranked()
        if not ranked:
            return OracleResponse.failure("no_providers", self.provider_id)
        if offset:
            shift = offset % len(ranked)
            ranked = ranked[shift:] + ranked[:shift]

        attempts = min(max(1, options.retries), len(ranked))
        per_call_timeout = options.timeout_seconds / attempts
        inner_options = OracleOptions(retries=1, timeout_seconds=per_call_timeout)
        for member in ranked[:attempts]:
            stats = member.stats
            now = self.clock()
            if stats.last_fail is not None and now - stats.last_fail < self.cooldown_seconds:
                continue
            stats.calls += 1
            stats.last_use = now
            started = time.perf_counter()
            try:
                response = await asyncio.wait_for(
                    member.oracle.ask(prompt[:MAX_PROMPT_CHARS], system_prompt, inner_options),
                    timeout=per_call_timeout,
                )
            except asyncio.TimeoutError:
                response = OracleResponse.failure("timeout", member.provider_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                response = OracleResponse.failure(f"exception:{exc.__class__.__name__}", member.provider_id)

            if response.success and response.content.strip():
                latency_ms = (time.perf_counter() - started) * 1000.0
                stats.record_success(latency_ms)
                return OracleResponse(
                    success=True,
                    content=response.content.strip(),
                    provider_id=member.provider_id,
                    latency_ms=latency_ms,
                )
            stats.last_fail = self.clock()
            self.logger.debug(
                "provider_failed",
                provider=member.provider_id,
                error=response.error or "empty_content",
            )
        return OracleResponse.failure("all_providers_failed", "none")

    def stats(self) -> dict[str, Any]:
        return {member.provider_id: member.stats.to_dict() for member in self.members}


class _RotatedFleet(Oracle):
    def __init__(self, fleet: OracleFleet, offset: int) -> None:
        self.fleet = fleet
        self.offset = offset
        self.provider_id = f"fleet+{offset}"

    async def ask(
        self,
        prompt: str,
        system_prompt: str = "",
        options: OracleOptions | None = None,
    ) -> OracleResponse:
        return await self.fleet._ask(prompt, system_prompt, options or OracleOptions(), offset=self.offset)


__all__ = ["DEFAULT_COOLDOWN_SECONDS", "FleetMember", "OracleFleet", "ProviderStats"]
