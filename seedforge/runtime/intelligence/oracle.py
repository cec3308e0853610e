# SPDX-License-Identifier: Apache-2.0
"""
Oracle contract.

An oracle is an untrusted text-in/text-out function. Nothing it returns is
applied without passing the pipeline gates, and a failing oracle must never
raise into the pipeline: callers go through :func:`ask_safely`.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class OracleOptions:
    retries: int = 3
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class OracleResponse:
    success: bool
    content: str = ""
    provider_id: str = ""
    latency_ms: float = 0.0
    error: str | None = None

    @classmethod
    def failure(cls, error: str, provider_id: str = "", latency_ms: float = 0.0) -> "OracleResponse":
        return cls(success=False, content="", provider_id=provider_id, latency_ms=latency_ms, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "provider_id": self.provider_id,
            "latency_ms": round(self.latency_ms, 2),
            "error": self.error,
            "content_chars": len(self.content),
        }


class Oracle(ABC):
    provider_id: str = "oracle"

    @abstractmethod
    async def ask(
        self,
        prompt: str,
        system_prompt: str = "",
        options: OracleOptions | None = None,
    ) -> OracleResponse:
        raise NotImplementedError


async def ask_safely(
    oracle: Oracle,
    prompt: str,
    system_prompt: str = "",
    options: OracleOptions | None = None,
) -> OracleResponse:
    """Bound an oracle call by its timeout and convert every failure into a response."""
    opts = options or OracleOptions()
    started = time.perf_counter()
    try:
        response = await asyncio.wait_for(oracle.ask(prompt, system_prompt, opts), timeout=opts.timeout_seconds)
    except asyncio.TimeoutError:
        return OracleResponse.failure("timeout", getattr(oracle, "provider_id", ""), _elapsed_ms(started))
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # noqa: BLE001
        return OracleResponse.failure(
            f"exception:{exc.__class__.__name__}", getattr(oracle, "provider_id", ""), _elapsed_ms(started)
        )
    if not isinstance(response, OracleResponse):
        return OracleResponse.failure("invalid_response_type", getattr(oracle, "provider_id", ""), _elapsed_ms(started))
    return response


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


__all__ = ["Oracle", "OracleOptions", "OracleResponse", "ask_safely"]
