"""Per-job analysis configuration resolved from ``system_settings`` and ``analysis_prompts``.

Admins edit these tables at runtime, so the processor resolves one
``AnalysisRunConfig`` at the start of each job and uses it throughout.
Missing or malformed rows fall back to the typed defaults below.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gitanalyzer.core.config import get_settings
from gitanalyzer.db.base import get_session_factory
from gitanalyzer.db.models.analysis_prompt import AnalysisPrompt
from gitanalyzer.db.models.system_setting import SystemSetting
from gitanalyzer.domain.analysis_types import AnalysisType, DepthLevel, get_spec
from gitanalyzer.domain.pricing import Provider

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AIProviderSettings:
    provider: Provider
    openai_model: str


@dataclass(frozen=True)
class DepthConfig:
    max_context: int
    model: str


@dataclass(frozen=True)
class PromptTemplate:
    system_prompt: str
    user_prompt: str
    # True when loaded from analysis_prompts (rendered with {{vars}})
    from_database: bool
    name: str | None = None


@dataclass(frozen=True)
class AnalysisRunConfig:
    provider_settings: AIProviderSettings
    depth: DepthConfig
    prompt: PromptTemplate

    def model_for(self, provider: Provider) -> str:
        """Model to request from the backend that actually serves the job."""
        if provider == Provider.OPENAI:
            return self.provider_settings.openai_model
        return self.depth.model


DEFAULT_DEPTH_CONFIG: dict[DepthLevel, DepthConfig] = {
    DepthLevel.CRITICAL: DepthConfig(max_context=8000, model="google/gemini-2.5-flash-lite"),
    DepthLevel.BALANCED: DepthConfig(max_context=20000, model="google/gemini-2.5-flash-lite"),
    DepthLevel.COMPLETE: DepthConfig(max_context=40000, model="google/gemini-2.5-flash"),
}


class SettingsRepository:
    """Reads runtime AI settings and prompt templates."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def load_settings(self) -> dict[str, str]:
        """All system_settings rows as a dict. Empty on database errors."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(SystemSetting.key, SystemSetting.value))
                return {key: value for key, value in result.all()}
        except SQLAlchemyError as exc:
            logger.warning("system_settings_load_failed", error=str(exc), error_type=type(exc).__name__)
            return {}

    async def active_prompt(self, analysis_type: AnalysisType) -> AnalysisPrompt | None:
        """Newest active template for ``analysis_type``, if any."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(AnalysisPrompt)
                    .where(
                        AnalysisPrompt.analysis_type == analysis_type.value,
                        AnalysisPrompt.is_active.is_(True),
                    )
                    .order_by(AnalysisPrompt.version.desc(), AnalysisPrompt.updated_at.desc())
                    .limit(1)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.warning(
                "analysis_prompt_load_failed",
                analysis_type=analysis_type.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

    async def resolve_run_config(self, analysis_type: AnalysisType | str, depth: DepthLevel | str) -> AnalysisRunConfig:
        analysis_type = AnalysisType(analysis_type)
        depth = DepthLevel(depth)
        values = await self.load_settings()

        provider_settings = parse_provider_settings(values)
        depth_config = parse_depth_config(values, depth)

        stored = await self.active_prompt(analysis_type)
        if stored is not None:
            prompt = PromptTemplate(
                system_prompt=stored.system_prompt,
                user_prompt=stored.user_prompt_template,
                from_database=True,
                name=stored.name,
            )
        else:
            spec = get_spec(analysis_type)
            prompt = PromptTemplate(system_prompt=spec.system_prompt, user_prompt=spec.user_prompt, from_database=False)

        return AnalysisRunConfig(provider_settings=provider_settings, depth=depth_config, prompt=prompt)


def parse_provider_settings(values: dict[str, str]) -> AIProviderSettings:
    settings = get_settings()
    raw_provider = values.get("ai_provider") or settings.default_ai_provider
    try:
        provider = Provider(raw_provider)
    except ValueError:
        logger.warning("unknown_ai_provider_setting", value=raw_provider)
        provider = Provider.GATEWAY
    return AIProviderSettings(
        provider=provider,
        openai_model=values.get("openai_model") or settings.default_openai_model,
    )


def parse_depth_config(values: dict[str, str], depth: DepthLevel) -> DepthConfig:
    default = DEFAULT_DEPTH_CONFIG[depth]
    max_context = default.max_context

    raw_context = values.get(f"depth_{depth.value}_context")
    if raw_context:
        try:
            max_context = int(raw_context)
        except ValueError:
            logger.warning("invalid_depth_context_setting", depth=depth.value, value=raw_context)

    return DepthConfig(
        max_context=max_context,
        model=values.get(f"depth_{depth.value}_model") or default.model,
    )
