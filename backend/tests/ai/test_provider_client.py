"""Tests for ProviderClient retry, token accounting and backend selection."""

import math

import httpx
import pytest
from tenacity import wait_none

from gitanalyzer.ai.client import ProviderClient, build_provider_client
from gitanalyzer.ai.providers import GatewayProvider, OpenAIProvider
from gitanalyzer.ai.retry import is_retryable, provider_retrying
from gitanalyzer.core.config import Settings
from gitanalyzer.core.exceptions import (
    InsufficientCreditsError,
    InvalidRequestError,
    ProviderConfigurationError,
    ProviderError,
    ProviderRateLimitedError,
)
from gitanalyzer.domain.pricing import Provider

pytestmark = pytest.mark.unit

MODEL = "google/gemini-2.5-flash"


# ============================================================================
# Retry behaviour
# ============================================================================


async def test_rate_limited_twice_then_success_waits_1s_then_2s(gateway):
    gateway.queue(httpx.Response(429), httpx.Response(429), gateway.completion("done"))
    client = gateway.client_factory()

    result = await client.execute("system", "user", MODEL)

    assert result.content == "done"
    assert len(gateway.requests) == 3
    assert gateway.sleeps == [1.0, 2.0]


async def test_insufficient_credits_is_not_retried(gateway):
    gateway.queue(httpx.Response(402, text="payment required"))
    client = gateway.client_factory()

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await client.execute("system", "user", MODEL)

    assert exc_info.value.status_code == 402
    assert len(gateway.requests) == 1
    assert gateway.sleeps == []


async def test_invalid_request_is_not_retried(gateway):
    gateway.queue(httpx.Response(400, text="bad model"))

    with pytest.raises(InvalidRequestError):
        await gateway.client_factory().execute("system", "user", MODEL)

    assert len(gateway.requests) == 1


async def test_server_errors_exhaust_three_attempts(gateway):
    gateway.queue(httpx.Response(503))

    with pytest.raises(ProviderError) as exc_info:
        await gateway.client_factory().execute("system", "user", MODEL)

    assert exc_info.value.upstream_status == 503
    assert len(gateway.requests) == 3
    assert gateway.sleeps == [1.0, 2.0]


async def test_persistent_rate_limit_surfaces_rate_limited_error(gateway):
    gateway.queue(httpx.Response(429))

    with pytest.raises(ProviderRateLimitedError):
        await gateway.client_factory().execute("system", "user", MODEL)


async def test_retrying_wait_can_be_disabled():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 2:
            raise ProviderError("boom")
        return "ok"

    retrying = provider_retrying().copy(wait=wait_none())
    assert await retrying(flaky) == "ok"
    assert len(calls) == 2


def test_is_retryable_classification():
    assert is_retryable(ProviderRateLimitedError("x"))
    assert is_retryable(ProviderError("x"))
    assert is_retryable(httpx.ConnectError("down"))
    assert not is_retryable(InsufficientCreditsError("x"))
    assert not is_retryable(InvalidRequestError("x"))
    assert not is_retryable(ProviderConfigurationError("x"))


# ============================================================================
# Token and cost accounting
# ============================================================================


async def test_reported_usage_drives_tokens_and_cost(gateway):
    gateway.queue(gateway.completion("report", prompt_tokens=1000, completion_tokens=1000))

    result = await gateway.client_factory().execute("system", "user", MODEL)

    assert result.input_tokens == 1000
    assert result.output_tokens == 1000
    assert result.tokens_used == 2000
    assert result.cost_usd == pytest.approx(0.00075)
    assert result.model == MODEL
    assert result.provider == Provider.GATEWAY


async def test_missing_usage_is_estimated_from_text_length(gateway):
    gateway.queue(gateway.completion("x" * 41, prompt_tokens=None))

    result = await gateway.client_factory().execute("s" * 10, "u" * 30, MODEL)

    assert result.input_tokens == math.ceil(40 / 4)
    assert result.output_tokens == math.ceil(41 / 4)
    assert result.reported_total_tokens is None


async def test_response_without_choices_is_a_provider_error(gateway):
    gateway.queue({"choices": []})

    with pytest.raises(ProviderError, match="no choices"):
        await gateway.client_factory().execute("system", "user", MODEL)


async def test_extract_sends_tools_and_parses_tool_calls(gateway):
    gateway.queue(gateway.tool_call({"items": []}))
    tool = {"type": "function", "function": {"name": "extract_implementation_items", "parameters": {}}}
    choice = {"type": "function", "function": {"name": "extract_implementation_items"}}

    result = await gateway.client_factory().extract("system", "user", MODEL, tools=[tool], tool_choice=choice)

    sent = gateway.requests[0]
    assert sent["tools"] == [tool]
    assert sent["tool_choice"] == choice
    assert sent["messages"][0] == {"role": "system", "content": "system"}
    assert result.tool_calls[0].parse_arguments() == {"items": []}
    assert result.reported_total_tokens == 2400


async def test_chat_sends_history_between_system_and_message(gateway):
    history = [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello"}]
    gateway.queue(gateway.completion("Sure.", prompt_tokens=None))

    result = await gateway.client_factory().chat("system", history, "What next?", MODEL, max_tokens=2048)

    sent = gateway.requests[0]
    assert [m["role"] for m in sent["messages"]] == ["system", "user", "assistant", "user"]
    assert sent["messages"][-1] == {"role": "user", "content": "What next?"}
    assert sent["max_tokens"] == 2048
    # Estimated input covers every turn, not only the new message
    assert result.input_tokens == math.ceil(len("system" + "Hi" + "Hello" + "What next?") / 4)


# ============================================================================
# Backend selection
# ============================================================================


def test_openai_payload_uses_dated_model_and_completion_cap():
    backend = OpenAIProvider("sk-test", "https://openai.test", max_completion_tokens=8000)

    payload = backend.build_payload("system", "user", "gpt-5-mini")

    assert payload["model"] == "gpt-5-mini-2025-08-07"
    assert payload["max_completion_tokens"] == 8000
    assert backend.recorded_model("gpt-5-mini") == "gpt-5-mini"
    assert backend.recorded_model("not-a-model") == "gpt-5-mini"


def test_openai_chat_cap_replaces_default_completion_cap():
    backend = OpenAIProvider("sk-test", "https://openai.test", max_completion_tokens=8000)

    payload = backend.build_payload("system", "user", "gpt-5-mini", history=[], max_tokens=2048)

    assert payload["max_completion_tokens"] == 2048
    assert "max_tokens" not in payload


def test_openai_without_key_falls_back_to_gateway():
    settings = Settings(gateway_api_key="gw-key", openai_api_key="")

    client = build_provider_client(Provider.OPENAI, settings=settings)

    assert isinstance(client, ProviderClient)
    assert isinstance(client.backend, GatewayProvider)
    assert client.provider == Provider.GATEWAY


def test_openai_with_key_uses_openai_backend():
    settings = Settings(gateway_api_key="gw-key", openai_api_key="sk-key")

    client = build_provider_client("openai", settings=settings)

    assert isinstance(client.backend, OpenAIProvider)
    assert client.backend.max_completion_tokens == settings.openai_max_completion_tokens


def test_gateway_without_key_is_a_configuration_error():
    settings = Settings(gateway_api_key="", openai_api_key="")

    with pytest.raises(ProviderConfigurationError):
        build_provider_client(Provider.GATEWAY, settings=settings)
