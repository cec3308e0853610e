# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import pytest

from seedforge.runtime.intelligence.llm_provider import (
    AnthropicOracle,
    LLMProviderConfig,
    RetryPolicy,
    load_provider_config,
)

NO_BACKOFF = RetryPolicy(attempts=3, backoff_seconds=(0.0,))


class _FakeClient:
    def __init__(self, responses: list[object]) -> None:
        self._responses = list(responses)
        self.requests: list[dict] = []
        self.messages = self

    async def create(self, **kwargs: object):
        self.requests.append(kwargs)
        outcome = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(outcome, Exception):
            raise outcome

        class _Block:
            def __init__(self, text: str) -> None:
                self.text = text

        class _Response:
            def __init__(self, text: str) -> None:
                self.content = [_Block(text)] if text else []

        return _Response(str(outcome))


class _OracleWithStubBuild(AnthropicOracle):
    def __init__(self, *args, stub_client=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._stub_client = stub_client

    def _build_client(self):  # noqa: ANN001
        return self._stub_client


def _config(api_key: str = "k") -> LLMProviderConfig:
    return LLMProviderConfig(api_key=api_key, model="m", timeout_seconds=2, max_tokens=200)


def test_config_defaults_and_overrides() -> None:
    cfg = load_provider_config(
        {
            "SEEDFORGE_ANTHROPIC_API_KEY": "key",
            "SEEDFORGE_LLM_MODEL": "claude-test",
            "SEEDFORGE_LLM_TIMEOUT_SECONDS": "9",
            "SEEDFORGE_LLM_MAX_TOKENS": "123",
        }
    )

    assert cfg.api_key == "key"
    assert cfg.model == "claude-test"
    assert cfg.timeout_seconds == 9
    assert cfg.max_tokens == 123

    defaults = load_provider_config({})
    assert defaults.api_key == ""
    assert defaults.max_tokens == 1500


@pytest.mark.asyncio
async def test_missing_api_key_fails_safely() -> None:
    oracle = AnthropicOracle(_config(api_key=""))

    response = await oracle.ask("u", "s")

    assert response.success is False
    assert response.error == "missing_api_key"
    assert response.provider_id == "anthropic"


@pytest.mark.asyncio
async def test_unavailable_sdk_fails_safely() -> None:
    oracle = _OracleWithStubBuild(_config(), stub_client=None)

    response = await oracle.ask("u", "s")

    assert response.error == "provider_unavailable"


@pytest.mark.asyncio
async def test_successful_response() -> None:
    client = _FakeClient(['{"ok": true}'])
    oracle = _OracleWithStubBuild(_config(), stub_client=client, retry_policy=NO_BACKOFF)

    response = await oracle.ask("user prompt", "system prompt")

    assert response.success
    assert response.content == '{"ok": true}'
    assert client.requests[0]["system"] == "system prompt"
    assert client.requests[0]["messages"] == [{"role": "user", "content": "user prompt"}]


@pytest.mark.asyncio
async def test_retries_then_succeeds() -> None:
    client = _FakeClient([RuntimeError("secret-token-in-message"), "answer"])
    oracle = _OracleWithStubBuild(_config(), stub_client=client, retry_policy=NO_BACKOFF)

    response = await oracle.ask("u", "s")

    assert response.success
    assert len(client.requests) == 2


@pytest.mark.asyncio
async def test_request_errors_expose_class_name_only() -> None:
    client = _FakeClient([RuntimeError("secret-token-in-message")])
    oracle = _OracleWithStubBuild(_config(), stub_client=client, retry_policy=NO_BACKOFF)

    response = await oracle.ask("u", "s")

    assert response.success is False
    assert response.error == "provider_request_failed:RuntimeError"
    assert "secret" not in (response.error or "")
    assert len(client.requests) == 3


@pytest.mark.asyncio
async def test_empty_response() -> None:
    oracle = _OracleWithStubBuild(_config(), stub_client=_FakeClient([""]), retry_policy=NO_BACKOFF)

    response = await oracle.ask("u", "s")

    assert response.error == "empty_response"


def test_retry_policy_delays() -> None:
    policy = RetryPolicy()

    assert policy.delay_for_attempt(0) == 0.0
    assert policy.delay_for_attempt(1) == 0.25
    assert policy.delay_for_attempt(9) == 0.5
