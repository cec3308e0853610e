# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import asyncio
import importlib
import os
import time
from dataclasses import dataclass
from typing import Any, Mapping

from seedforge.runtime.intelligence.oracle import Oracle, OracleOptions, OracleResponse


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    backoff_seconds: tuple[float, ...] = (0.0, 0.25, 0.5)

    def delay_for_attempt(self, attempt_index: int) -> float:
        if attempt_index < len(self.backoff_seconds):
            return self.backoff_seconds[attempt_index]
        return self.backoff_seconds[-1]


@dataclass(frozen=True)
class LLMProviderConfig:
    api_key: str
    model: str
    timeout_seconds: float
    max_tokens: int


def load_provider_config(env: Mapping[str, str] | None = None) -> LLMProviderConfig:
    source = os.environ if env is None else env
    return LLMProviderConfig(
        api_key=(source.get("SEEDFORGE_ANTHROPIC_API_KEY") or "").strip(),
        model=(source.get("SEEDFORGE_LLM_MODEL") or "claude-3-5-sonnet-20241022").strip(),
        timeout_seconds=float(source.get("SEEDFORGE_LLM_TIMEOUT_SECONDS") or "30"),
        max_tokens=int(source.get("SEEDFORGE_LLM_MAX_TOKENS") or "1500"),
    )


class AnthropicOracle(Oracle):
    """Reference oracle backed by the Anthropic messages API.

    Failures never raise: a missing key, an unavailable SDK, or a request
    error all come back as unsuccessful responses whose ``error`` holds a
    code and the exception class name only.
    """

    provider_id = "anthropic"

    def __init__(self, config: LLMProviderConfig, retry_policy: RetryPolicy | None = None) -> None:
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy()
        self._client: Any | None = None

    async def ask(
        self,
        prompt: str,
        system_prompt: str = "",
        options: OracleOptions | None = None,
    ) -> OracleResponse:
        opts = options or OracleOptions(timeout_seconds=self.config.timeout_seconds)
        started = time.perf_counter()
        if not self.config.api_key:
            return self._safe_failure("missing_api_key", started)

        client = self._get_client()
        if client is None:
            return self._safe_failure("provider_unavailable", started)

        attempts = max(1, min(self.retry_policy.attempts, opts.retries))
        last_error = "provider_request_failed"
        for attempt in range(attempts):
            delay = self.retry_policy.delay_for_attempt(attempt)
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                response = await client.messages.create(
                    model=self.config.model,
                    max_tokens=self.config.max_tokens,
                    timeout=min(self.config.timeout_seconds, opts.timeout_seconds),
                    system=system_prompt,
                    messages=[{"role": "user", "content": prompt}],
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                last_error = f"provider_request_failed:{self._safe_error_text(exc)}"
                continue
            text = self._extract_text(response)
            if text:
                return OracleResponse(
                    success=True,
                    content=text,
                    provider_id=self.provider_id,
                    latency_ms=(time.perf_counter() - started) * 1000.0,
                )
            last_error = "empty_response"
        return self._safe_failure(last_error, started)

    def _get_client(self) -> Any | None:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def _build_client(self) -> Any | None:
        try:
            anthropic_module = importlib.import_module("anthropic")
            return anthropic_module.AsyncAnthropic(api_key=self.config.api_key)
        except Exception:  # noqa: BLE001
            return None

    def _extract_text(self, response: Any) -> str:
        content = getattr(response, "content", []) or []
        text_parts: list[str] = []
        for block in content:
            block_text = getattr(block, "text", "")
            if block_text:
                text_parts.append(str(block_text))
        return "\n".join(text_parts).strip()

    def _safe_failure(self, code: str, started: float) -> OracleResponse:
        return OracleResponse.failure(code, self.provider_id, (time.perf_counter() - started) * 1000.0)

    @staticmethod
    def _safe_error_text(exc: Exception) -> str:
        return exc.__class__.__name__


__all__ = [
    "AnthropicOracle",
    "LLMProviderConfig",
    "RetryPolicy",
    "load_provider_config",
]
