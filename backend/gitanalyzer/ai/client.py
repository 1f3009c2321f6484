"""ProviderClient: one AI backend behind retry, token and cost accounting."""

import asyncio
from collections.abc import Awaitable, Callable

import httpx
import structlog

from gitanalyzer.ai.providers import ChatProvider, CompletionResult, GatewayProvider, OpenAIProvider
from gitanalyzer.ai.retry import MAX_ATTEMPTS, provider_retrying
from gitanalyzer.core.config import Settings, get_settings
from gitanalyzer.core.exceptions import ProviderConfigurationError
from gitanalyzer.domain.pricing import Provider, calculate_cost

logger = structlog.get_logger(__name__)


class ProviderClient:
    """Uniform ``execute``/``extract`` over a ChatProvider.

    Has no persistence side effects: callers record usage from the returned
    ``CompletionResult``.
    """

    def __init__(
        self,
        backend: ChatProvider,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.max_attempts = max_attempts
        self._sleep = sleep

    @property
    def provider(self) -> Provider:
        return self.backend.provider

    async def execute(self, system_prompt: str, user_prompt: str, model: str) -> CompletionResult:
        """Plain completion with retry; returns content, token counts and cost."""
        return await self._call(system_prompt, user_prompt, model)

    async def extract(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        tools: list[dict],
        tool_choice: dict | None = None,
    ) -> CompletionResult:
        """Function-calling completion; parsed calls are on ``result.tool_calls``."""
        return await self._call(system_prompt, user_prompt, model, tools=tools, tool_choice=tool_choice)

    async def chat(
        self,
        system_prompt: str,
        history: list[dict],
        message: str,
        model: str,
        max_tokens: int | None = None,
    ) -> CompletionResult:
        """Multi-turn completion: ``history`` holds prior ``{role, content}`` turns."""
        return await self._call(system_prompt, message, model, history=history, max_tokens=max_tokens)

    async def _call(self, system_prompt: str, user_prompt: str, model: str, **kwargs) -> CompletionResult:
        log = logger.bind(provider=self.provider.value, model=model)
        log.info("provider_call_started")

        retrying = provider_retrying(max_attempts=self.max_attempts, sleep=self._sleep)
        result = await retrying(self.backend.complete, system_prompt, user_prompt, model, **kwargs)

        result.cost_usd = calculate_cost(result.input_tokens, result.output_tokens, result.model, result.provider)
        log.info(
            "provider_call_completed",
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost_usd=result.cost_usd,
        )
        return result


def build_provider_client(
    provider: Provider | str,
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ProviderClient:
    """Select a backend for ``provider``.

    OpenAI without a key falls back to the gateway; a gateway without a key
    raises ``ProviderConfigurationError``.
    """
    settings = settings or get_settings()
    provider = Provider(provider)

    if provider == Provider.OPENAI and not settings.openai_api_key:
        logger.warning("openai_key_missing_using_gateway")
        provider = Provider.GATEWAY

    if provider == Provider.OPENAI:
        backend: ChatProvider = OpenAIProvider(
            settings.openai_api_key,
            settings.openai_url,
            http_client=http_client,
            timeout=settings.provider_timeout_seconds,
            max_completion_tokens=settings.openai_max_completion_tokens,
        )
    else:
        if not settings.gateway_api_key:
            raise ProviderConfigurationError("AI gateway API key is not configured")
        backend = GatewayProvider(
            settings.gateway_api_key,
            settings.gateway_url,
            http_client=http_client,
            timeout=settings.provider_timeout_seconds,
        )

    return ProviderClient(backend, max_attempts=settings.provider_max_attempts, sleep=sleep)
