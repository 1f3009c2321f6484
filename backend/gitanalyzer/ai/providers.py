"""Chat-completion backends.

Both backends speak the OpenAI chat-completions wire format; they differ in
endpoint, model naming and request extras. Each call is a single HTTP request:
retries live in ``ProviderClient``.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from gitanalyzer.core.exceptions import (
    InsufficientCreditsError,
    InvalidRequestError,
    ProviderError,
    ProviderRateLimitedError,
)
from gitanalyzer.domain.pricing import Provider, api_model_name, resolve_pricing

logger = structlog.get_logger(__name__)


def estimate_tokens(text: str) -> int:
    """Fallback token count when a provider omits usage: ceil(chars / 4)."""
    return math.ceil(len(text) / 4)


@dataclass
class ToolCall:
    name: str
    arguments: str  # raw JSON text exactly as returned

    def parse_arguments(self) -> dict | None:
        """Decoded arguments, or None when the model returned malformed JSON."""
        try:
            parsed = json.loads(self.arguments)
        except (TypeError, ValueError):
            return None
        return parsed if isinstance(parsed, dict) else None


@dataclass
class CompletionResult:
    content: str
    input_tokens: int
    output_tokens: int
    model: str
    provider: Provider
    tool_calls: list[ToolCall] = field(default_factory=list)
    # Provider-reported total, when present
    reported_total_tokens: int | None = None
    cost_usd: float = 0.0

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


class ChatProvider:
    """One chat-completions endpoint authenticated with a bearer key."""

    provider: Provider

    def __init__(self, api_key: str, url: str, http_client: httpx.AsyncClient | None = None, timeout: float = 120.0):
        self.api_key = api_key
        self.url = url
        self._http_client = http_client
        self.timeout = timeout

    def wire_model(self, model: str) -> str:
        return model

    def recorded_model(self, model: str) -> str:
        """Model id written to the usage ledger."""
        return model

    def build_payload(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        tools: list[dict] | None = None,
        tool_choice: dict | None = None,
        history: list[dict] | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        # Prior turns sit between the system prompt and the new user message
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": turn["role"], "content": turn["content"]} for turn in history or [])
        messages.append({"role": "user", "content": user_prompt})
        payload: dict[str, Any] = {"model": self.wire_model(model), "messages": messages}
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if tools:
            payload["tools"] = tools
        if tool_choice:
            payload["tool_choice"] = tool_choice
        return payload

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        tools: list[dict] | None = None,
        tool_choice: dict | None = None,
        history: list[dict] | None = None,
        max_tokens: int | None = None,
    ) -> CompletionResult:
        payload = self.build_payload(system_prompt, user_prompt, model, tools, tool_choice, history, max_tokens)
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        if self._http_client is not None:
            response = await self._http_client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload, headers=headers)

        self._raise_for_status(response)
        prompt_text = "".join(turn["content"] for turn in history or []) + user_prompt
        return self._parse_response(response.json(), system_prompt, prompt_text, model)

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        body = response.text[:500]
        logger.warning("provider_http_error", provider=self.provider.value, status_code=status, body=body)

        message = f"{self.provider.value} API error: {status}"
        if status == 429:
            raise ProviderRateLimitedError(message, provider=self.provider.value, upstream_status=status)
        if status == 402:
            raise InsufficientCreditsError(
                "Insufficient AI credits. Add credits to the workspace.",
                provider=self.provider.value,
                upstream_status=status,
            )
        if status == 400:
            raise InvalidRequestError(message, provider=self.provider.value, upstream_status=status)
        raise ProviderError(message, provider=self.provider.value, upstream_status=status)

    def _parse_response(self, data: dict, system_prompt: str, user_prompt: str, model: str) -> CompletionResult:
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("Provider response has no choices", provider=self.provider.value)
        message = choices[0].get("message") or {}
        content = message.get("content") or ""

        tool_calls = [
            ToolCall(
                name=(call.get("function") or {}).get("name", ""),
                arguments=(call.get("function") or {}).get("arguments") or "",
            )
            for call in message.get("tool_calls") or []
        ]

        usage = data.get("usage") or {}
        input_tokens = usage.get("prompt_tokens") or estimate_tokens(system_prompt + user_prompt)
        output_tokens = usage.get("completion_tokens") or estimate_tokens(content)

        return CompletionResult(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=self.recorded_model(model),
            provider=self.provider,
            tool_calls=tool_calls,
            reported_total_tokens=usage.get("total_tokens"),
        )


class GatewayProvider(ChatProvider):
    """Managed multi-model gateway; model ids are sent as-is ("google/gemini-2.5-flash")."""

    provider = Provider.GATEWAY


class OpenAIProvider(ChatProvider):
    """Direct OpenAI API; model keys map to dated API names."""

    provider = Provider.OPENAI

    def __init__(self, *args, max_completion_tokens: int = 8000, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_completion_tokens = max_completion_tokens

    def wire_model(self, model: str) -> str:
        return api_model_name(model)

    def recorded_model(self, model: str) -> str:
        # Unknown keys are billed and recorded as the default OpenAI model
        return resolve_pricing(model, Provider.OPENAI).key

    def build_payload(self, *args, **kwargs) -> dict[str, Any]:
        payload = super().build_payload(*args, **kwargs)
        # The direct API only accepts max_completion_tokens
        payload["max_completion_tokens"] = payload.pop("max_tokens", None) or self.max_completion_tokens
        return payload
