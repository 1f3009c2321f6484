"""ImplementationPlanService: turns finished analyses into a categorized checklist.

generate() steps:
1. Rate limit the caller (rolling window, checked before anything else)
2. Verify project ownership or admin role
3. Load the newest analysis for each requested type
4. Ask the extraction model for items through a forced function call
5. Sort items critical → implementation → improvement
6. Persist plan, items and the usage row in one transaction

A function call with malformed or missing arguments yields a plan with zero
items rather than an error.
"""

import math
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import UUID

import httpx
import structlog
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from gitanalyzer.ai.client import ProviderClient, build_provider_client
from gitanalyzer.ai.providers import CompletionResult
from gitanalyzer.core.config import get_settings
from gitanalyzer.core.exceptions import (
    AIRequestFailedError,
    InsufficientCreditsError,
    NotFoundError,
    ProviderError,
    ProviderRateLimitedError,
)
from gitanalyzer.core.rate_limit import SlidingWindowRateLimiter
from gitanalyzer.db.base import get_session_factory
from gitanalyzer.db.models.implementation_plan import ImplementationItem, ImplementationPlan
from gitanalyzer.domain.analysis_types import type_label
from gitanalyzer.domain.pricing import Provider
from gitanalyzer.schemas.implementation_plans import (
    CATEGORY_PRIORITY,
    FocusType,
    ImplementationItemRecord,
    ImplementationPlanRecord,
    ItemCategory,
    PlanOverview,
    PlanSummary,
)
from gitanalyzer.services.analysis_service import latest_analyses
from gitanalyzer.services.project_access import get_accessible_project
from gitanalyzer.services.usage_ledger import IMPLEMENTATION_PLAN_USAGE_TYPE, record_usage

logger = structlog.get_logger(__name__)

MAX_ANALYSIS_CHARS = 15_000
MAX_ITEM_TITLE_CHARS = 255

FOCUS_LABELS = {
    FocusType.BUGS: "Fixes & Bugs",
    FocusType.FEATURES: "New Features",
    FocusType.SECURITY: "Security",
    FocusType.COMPLETE: "Complete Plan",
}

FOCUS_INSTRUCTIONS = {
    FocusType.BUGS: """Focus EXCLUSIVELY on:
- Fixes for identified bugs
- Code problems that need to be resolved
- Logic or implementation errors
- Performance issues that affect behaviour""",
    FocusType.FEATURES: """Focus EXCLUSIVELY on:
- Suggested new features
- Improvements to existing features
- Expansions of the system's capabilities""",
    FocusType.SECURITY: """Focus EXCLUSIVELY on:
- Security vulnerabilities
- Authentication/authorization improvements
- Protection of sensitive data
- Security best practices""",
    FocusType.COMPLETE: """Include ALL kinds of actionable items:
- Critical fixes and bugs
- Required new implementations
- Suggested improvements and optimizations""",
}

EXTRACTION_SYSTEM_PROMPT = """You are an expert in software project analysis. Your task is to extract ACTIONABLE items from the provided analyses and build a structured implementation checklist.

CRITICAL RULES:
1. Extract ONLY items that require CONCRETE ACTION (implement, fix, add, configure, etc.)
2. Do NOT include items that are only metrics, statistics or descriptive information
3. Each item must be a clear, specific task
4. Categorize each item as "critical" (urgent/blocker), "implementation" (new functionality) or "improvement" (optimization/enhancement)
5. Keep titles concise (max 100 characters) and descriptions detailed when needed

{focus_instructions}"""

EXTRACTION_USER_PROMPT = """Analyze the following content and extract ALL actionable items to build an implementation plan:

{context}

Return the items you found using the extract_implementation_items function."""

EXTRACTION_TOOL_NAME = "extract_implementation_items"

EXTRACTION_TOOL = {
    "type": "function",
    "function": {
        "name": EXTRACTION_TOOL_NAME,
        "description": "Extracts actionable items from the analyses to build an implementation plan",
        "parameters": {
            "type": "object",
            "properties": {
                "items": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "category": {
                                "type": "string",
                                "enum": ["critical", "implementation", "improvement"],
                                "description": (
                                    "Item category: critical (urgent), implementation (new functionality), "
                                    "improvement (enhancement)"
                                ),
                            },
                            "title": {
                                "type": "string",
                                "description": "Concise item title (max 100 characters)",
                            },
                            "description": {
                                "type": "string",
                                "description": "Detailed description of what needs to be done",
                            },
                            "source_analysis": {
                                "type": "string",
                                "description": "Analysis type the item was extracted from (prd, seguranca, etc)",
                            },
                        },
                        "required": ["category", "title", "source_analysis"],
                    },
                },
            },
            "required": ["items"],
        },
    },
}

EXTRACTION_TOOL_CHOICE = {"type": "function", "function": {"name": EXTRACTION_TOOL_NAME}}


def build_analyses_context(contents: dict[str, str]) -> str:
    """One ``### <label>`` section per analysis, each capped, joined by ``---``."""
    return "\n\n---\n\n".join(
        f"### {type_label(tag)}\n{content[:MAX_ANALYSIS_CHARS]}" for tag, content in contents.items()
    )


def category_priority(category: str) -> int:
    try:
        return CATEGORY_PRIORITY[ItemCategory(category)]
    except ValueError:
        return CATEGORY_PRIORITY[ItemCategory.IMPROVEMENT]


def parse_extracted_items(result: CompletionResult) -> list[dict]:
    """Items from the extraction function call, sorted by category priority.

    Missing or malformed arguments give an empty list. Entries that are not
    objects or have no title are dropped. Unknown categories are stored as
    ``improvement``.
    """
    call = next((c for c in result.tool_calls if c.name == EXTRACTION_TOOL_NAME), None)
    if call is None and result.tool_calls:
        call = result.tool_calls[0]
    if call is None:
        return []

    arguments = call.parse_arguments()
    if arguments is None:
        logger.warning("extraction_arguments_malformed", arguments_preview=call.arguments[:200])
        return []

    raw_items = arguments.get("items")
    if not isinstance(raw_items, list):
        return []

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict) or not isinstance(raw.get("title"), str) or not raw["title"].strip():
            continue
        category = raw.get("category")
        if not isinstance(category, str) or category not in CATEGORY_PRIORITY:
            category = ItemCategory.IMPROVEMENT.value
        items.append(
            {
                "category": str(category),
                "title": raw["title"][:MAX_ITEM_TITLE_CHARS],
                "description": str(raw["description"]) if raw.get("description") else None,
                "source_analysis": str(raw.get("source_analysis") or ""),
            }
        )

    # sorted() is stable: model order is kept within a category
    return sorted(items, key=lambda item: category_priority(item["category"]))


class ImplementationPlanService:
    """Generates and manages implementation plans.

    Constructor dependency injection keeps the provider, Redis limiter and
    session factory replaceable in tests.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        client_factory: Callable[[Provider], ProviderClient] = build_provider_client,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        model: str | None = None,
    ):
        self._session_factory = session_factory
        self.client_factory = client_factory
        self.rate_limiter = rate_limiter
        self.model = model or get_settings().extraction_model

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def generate(
        self,
        user_id: str,
        project_id: UUID,
        analysis_types: list[str],
        focus_type: FocusType = FocusType.COMPLETE,
        title: str | None = None,
        admin: bool = False,
    ) -> PlanSummary:
        """Extract a plan from the newest analyses of ``analysis_types``.

        Raises:
            RateLimitExceededError: caller exceeded the rolling-window limit
            NotFoundError: project missing, or no analysis for any requested type
            AccessDeniedError: caller is neither owner nor admin
            InsufficientCreditsError: the AI backend reported no credits (402)
            ProviderRateLimitedError: the AI backend kept rate limiting (429)
            AIRequestFailedError: any other extraction failure, surfaced as 500
        """
        focus_type = FocusType(focus_type)
        log = logger.bind(user_id=user_id, project_id=str(project_id), focus_type=focus_type.value)

        if self.rate_limiter is not None:
            await self.rate_limiter.enforce(user_id)

        async with self.session_factory() as session:
            project = await get_accessible_project(session, project_id, user_id, admin)
            project_name = project.name
            analyses = await latest_analyses(session, project_id, analysis_types)

        if not analyses:
            raise NotFoundError("No analyses found for the selected types")

        context = build_analyses_context({tag: analysis.content for tag, analysis in analyses.items()})
        log.info("implementation_plan_extracting", analyses=list(analyses), context_chars=len(context))

        client = self.client_factory(Provider.GATEWAY)
        try:
            result = await client.extract(
                EXTRACTION_SYSTEM_PROMPT.format(focus_instructions=FOCUS_INSTRUCTIONS[focus_type]),
                EXTRACTION_USER_PROMPT.format(context=context),
                self.model,
                tools=[EXTRACTION_TOOL],
                tool_choice=EXTRACTION_TOOL_CHOICE,
            )
        except (InsufficientCreditsError, ProviderRateLimitedError):
            raise
        except (ProviderError, httpx.HTTPError) as exc:
            log.error("implementation_plan_extraction_failed", error=str(exc), error_type=type(exc).__name__)
            raise AIRequestFailedError(f"AI extraction failed: {exc}") from exc

        items = parse_extracted_items(result)
        tokens_used = result.reported_total_tokens or math.ceil(len(context) / 4)
        plan_title = title or f"{FOCUS_LABELS[focus_type]} - {project_name}"

        async with self.session_factory() as session:
            plan = ImplementationPlan(
                user_id=user_id,
                project_id=project_id,
                title=plan_title[:255],
                focus_type=focus_type.value,
                analysis_types=list(analysis_types),
                tokens_used=tokens_used,
            )
            plan.items = [ImplementationItem(sort_order=index, **item) for index, item in enumerate(items)]
            session.add(plan)
            record_usage(
                session,
                user_id=user_id,
                project_id=project_id,
                analysis_type=IMPLEMENTATION_PLAN_USAGE_TYPE,
                tokens=tokens_used,
                cost_usd=result.cost_usd,
                model=result.model,
                provider=result.provider.value,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
            )
            await session.commit()
            plan_id = plan.id

        log.info("implementation_plan_created", plan_id=str(plan_id), items_count=len(items), tokens_used=tokens_used)
        return PlanSummary(
            id=plan_id,
            title=plan_title[:255],
            focus_type=focus_type,
            tokens_used=tokens_used,
            items_count=len(items),
        )

    async def list_plans(self, user_id: str, project_id: UUID, admin: bool = False) -> list[PlanOverview]:
        """Plans for a project, newest first, with item progress counters."""
        async with self.session_factory() as session:
            await get_accessible_project(session, project_id, user_id, admin)

            completed = func.sum(case((ImplementationItem.is_completed.is_(True), 1), else_=0))
            counts = (
                select(
                    ImplementationItem.plan_id,
                    func.count(ImplementationItem.id).label("items_count"),
                    func.coalesce(completed, 0).label("completed_count"),
                )
                .group_by(ImplementationItem.plan_id)
                .subquery()
            )
            result = await session.execute(
                select(ImplementationPlan, counts.c.items_count, counts.c.completed_count)
                .outerjoin(counts, counts.c.plan_id == ImplementationPlan.id)
                .where(ImplementationPlan.project_id == project_id)
                .order_by(ImplementationPlan.created_at.desc())
            )

            return [
                PlanOverview(
                    id=plan.id,
                    project_id=plan.project_id,
                    title=plan.title,
                    focus_type=plan.focus_type,
                    analysis_types=plan.analysis_types or [],
                    tokens_used=plan.tokens_used,
                    items_count=items_count or 0,
                    completed_count=int(completed_count or 0),
                    created_at=plan.created_at,
                )
                for plan, items_count, completed_count in result.all()
            ]

    async def get_plan(self, user_id: str, plan_id: UUID, admin: bool = False) -> ImplementationPlanRecord:
        async with self.session_factory() as session:
            plan = await self._get_plan(session, plan_id)
            await get_accessible_project(session, plan.project_id, user_id, admin)
            return ImplementationPlanRecord.model_validate(plan)

    async def toggle_item(
        self,
        user_id: str,
        item_id: UUID,
        is_completed: bool,
        admin: bool = False,
        now: datetime | None = None,
    ) -> ImplementationItemRecord:
        """Mark a checklist item done or not done; ``completed_at`` follows the flag."""
        async with self.session_factory() as session:
            item = await session.get(ImplementationItem, item_id)
            if item is None:
                raise NotFoundError("Implementation item not found")
            plan = await session.get(ImplementationPlan, item.plan_id)
            await get_accessible_project(session, plan.project_id, user_id, admin)

            item.is_completed = is_completed
            item.completed_at = (now or datetime.now(UTC)) if is_completed else None
            plan.updated_at = datetime.now(UTC)
            await session.commit()
            await session.refresh(item)
            return ImplementationItemRecord.model_validate(item)

    async def delete_plan(self, user_id: str, plan_id: UUID, admin: bool = False) -> None:
        async with self.session_factory() as session:
            plan = await self._get_plan(session, plan_id)
            await get_accessible_project(session, plan.project_id, user_id, admin)
            await session.delete(plan)
            await session.commit()

        logger.info("implementation_plan_deleted", user_id=user_id, plan_id=str(plan_id))

    @staticmethod
    async def _get_plan(session: AsyncSession, plan_id: UUID) -> ImplementationPlan:
        plan = await session.get(ImplementationPlan, plan_id, options=[selectinload(ImplementationPlan.items)])
        if plan is None:
            raise NotFoundError("Implementation plan not found")
        return plan
