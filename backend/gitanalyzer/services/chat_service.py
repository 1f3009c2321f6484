"""ProjectChatService: conversational answers grounded in a project's repository snapshot."""

from collections.abc import Callable
from uuid import UUID

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gitanalyzer.ai.client import ProviderClient, build_provider_client
from gitanalyzer.ai.prompts import build_chat_context, chat_system_prompt
from gitanalyzer.core.config import get_settings
from gitanalyzer.core.exceptions import (
    AIRequestFailedError,
    InsufficientCreditsError,
    ProviderError,
    ProviderRateLimitedError,
)
from gitanalyzer.db.base import get_session_factory
from gitanalyzer.domain.pricing import Provider
from gitanalyzer.schemas.chat import ChatTurn
from gitanalyzer.services.project_access import get_accessible_project

logger = structlog.get_logger(__name__)

EMPTY_REPLY = "Sorry, I could not generate a response."


class ProjectChatService:
    """One chat turn per call; the conversation history is owned by the client."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        client_factory: Callable[[Provider], ProviderClient] = build_provider_client,
    ):
        self._session_factory = session_factory
        self.client_factory = client_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def reply(
        self,
        user_id: str,
        project_id: UUID,
        message: str,
        history: list[ChatTurn] | None = None,
        admin: bool = False,
    ) -> str:
        """Answer ``message`` about the project, continuing ``history``.

        Only the newest ``chat_max_history`` turns are sent.

        Raises:
            NotFoundError: project does not exist
            AccessDeniedError: caller is neither owner nor admin
            InsufficientCreditsError: the AI backend reported no credits (402)
            ProviderRateLimitedError: the AI backend kept rate limiting (429)
            AIRequestFailedError: any other AI failure, surfaced as 500
        """
        settings = get_settings()

        async with self.session_factory() as session:
            project = await get_accessible_project(session, project_id, user_id, admin)
            name, github_url, snapshot = project.name, project.github_url, project.github_data or {}

        context = build_chat_context(name, github_url, snapshot, settings.chat_max_context)
        turns = [turn.model_dump() for turn in (history or [])][-settings.chat_max_history :]
        log = logger.bind(user_id=user_id, project_id=str(project_id), history_turns=len(turns))
        log.info("project_chat_started", context_chars=len(context))

        client = self.client_factory(Provider.GATEWAY)
        try:
            result = await client.chat(
                chat_system_prompt(name, context, settings.report_language),
                turns,
                message,
                settings.chat_model,
                max_tokens=settings.chat_max_tokens,
            )
        except (InsufficientCreditsError, ProviderRateLimitedError):
            raise
        except (ProviderError, httpx.HTTPError) as exc:
            log.error("project_chat_failed", error=str(exc), error_type=type(exc).__name__)
            raise AIRequestFailedError(f"AI chat failed: {exc}") from exc

        log.info("project_chat_completed", input_tokens=result.input_tokens, output_tokens=result.output_tokens)
        return result.content or EMPTY_REPLY
