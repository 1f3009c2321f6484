"""Plan & quota resolution.

Resolution order for the monthly token cap:
1. Plan.config["max_tokens_monthly"]   (admin-edited plan config)
2. Plan.max_tokens_monthly             (plan column)
3. Tier default                        (free 50K, paid unlimited)

Admins are always unlimited. Any lookup failure fails open to the free-tier
default view with ``can_analyze=True``: a broken plan lookup must not block
users from analyzing.
"""

from datetime import UTC, datetime

import structlog
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gitanalyzer.core.exceptions import PlanRestrictionError, QuotaExceededError
from gitanalyzer.db.base import get_session_factory
from gitanalyzer.db.models.plan import Plan, UserSubscription
from gitanalyzer.domain.analysis_types import (
    ALL_DEPTHS,
    SELECTABLE_ANALYSIS_TYPES,
    AnalysisType,
    DepthLevel,
)
from gitanalyzer.services.project_access import has_admin_role
from gitanalyzer.services.usage_ledger import UsageLedger

logger = structlog.get_logger(__name__)

FREE_PLAN_SLUG = "free"
ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")

# Rough tokens consumed by one analysis at each depth
TOKEN_ESTIMATES: dict[DepthLevel, int] = {
    DepthLevel.CRITICAL: 2000,
    DepthLevel.BALANCED: 4000,
    DepthLevel.COMPLETE: 8000,
}

# Analyses in a typical full project run
FULL_RUN_ANALYSIS_COUNT = 8

# Legacy per-count limits reported alongside token quotas
FREE_MONTHLY_ANALYSES = 3
FREE_DAILY_ANALYSES = 1
ADMIN_ANALYSIS_LIMIT = 999_999


def estimate_tokens_for_analysis(depth: DepthLevel | str, analysis_count: int = FULL_RUN_ANALYSIS_COUNT) -> int:
    return TOKEN_ESTIMATES[DepthLevel(depth)] * analysis_count


def suggest_depth_by_tokens(tokens_remaining: int | None, analysis_count: int = FULL_RUN_ANALYSIS_COUNT) -> DepthLevel:
    """Deepest depth whose estimate fits ``tokens_remaining``; critical is the floor."""
    if tokens_remaining is None:
        return DepthLevel.COMPLETE
    for depth in (DepthLevel.COMPLETE, DepthLevel.BALANCED):
        if tokens_remaining >= estimate_tokens_for_analysis(depth, analysis_count):
            return depth
    return DepthLevel.CRITICAL


class PlanConfig(BaseModel):
    allowed_depths: list[str] | None = None
    allowed_analysis_types: list[str] | None = None
    allow_economic_mode: bool | None = None
    can_export_pdf: bool | None = None
    max_tokens_monthly: int | None = None
    limitations: list[str] | None = None


FREE_PLAN_DEFAULTS = PlanConfig(
    allowed_depths=[DepthLevel.CRITICAL.value],
    allowed_analysis_types=[AnalysisType.PRD.value, AnalysisType.DIVULGACAO.value, AnalysisType.CAPTACAO.value],
    allow_economic_mode=False,
    can_export_pdf=False,
    max_tokens_monthly=50_000,
)

PAID_PLAN_DEFAULTS = PlanConfig(
    allowed_depths=[d.value for d in ALL_DEPTHS],
    allowed_analysis_types=[t.value for t in SELECTABLE_ANALYSIS_TYPES],
    allow_economic_mode=True,
    can_export_pdf=True,
    max_tokens_monthly=None,
)


class UserPlan(BaseModel):
    """Everything the client needs to gate analysis requests for a user."""

    plan_id: str | None
    plan_name: str
    plan_slug: str
    # Legacy analysis-count fields
    monthly_limit: int
    daily_limit: int
    monthly_usage: int
    daily_usage: int
    # Token quota
    tokens_used: int
    max_tokens_monthly: int | None
    tokens_remaining: int | None
    tokens_used_percent: float
    can_analyze: bool
    limit_message: str | None
    is_admin: bool
    # Plan config
    allowed_depths: list[str]
    allowed_analysis_types: list[str]
    allow_economic_mode: bool
    can_export_pdf: bool


def evaluate_quota(tokens_used: int, cap: int | None) -> tuple[int | None, float, bool, str | None]:
    """Apply the admission rule to a usage total.

    Returns:
        Tuple of (tokens_remaining, tokens_used_percent, can_analyze, limit_message)
    """
    if cap is None:
        return None, 0.0, True, None

    remaining = max(0, cap - tokens_used)
    percent = min(tokens_used / cap * 100, 100.0) if cap > 0 else 0.0

    if tokens_used >= cap:
        return (
            remaining,
            percent,
            False,
            f"You have reached your monthly limit of {cap // 1000}K tokens. Upgrade your plan to continue.",
        )

    min_needed = estimate_tokens_for_analysis(DepthLevel.CRITICAL, 1)
    if remaining < min_needed:
        return (
            remaining,
            percent,
            False,
            f"Not enough tokens for an analysis. Only {remaining:,} tokens remain this month.",
        )

    return remaining, percent, True, None


def free_default_plan() -> UserPlan:
    """Conservative view used when plan lookup fails."""
    cap = FREE_PLAN_DEFAULTS.max_tokens_monthly
    return UserPlan(
        plan_id=None,
        plan_name="Free",
        plan_slug=FREE_PLAN_SLUG,
        monthly_limit=FREE_MONTHLY_ANALYSES,
        daily_limit=FREE_DAILY_ANALYSES,
        monthly_usage=0,
        daily_usage=0,
        tokens_used=0,
        max_tokens_monthly=cap,
        tokens_remaining=cap,
        tokens_used_percent=0.0,
        can_analyze=True,
        limit_message=None,
        is_admin=False,
        allowed_depths=list(FREE_PLAN_DEFAULTS.allowed_depths),
        allowed_analysis_types=list(FREE_PLAN_DEFAULTS.allowed_analysis_types),
        allow_economic_mode=False,
        can_export_pdf=False,
    )


class PlanResolver:
    """Builds ``UserPlan`` views from subscriptions, plans, roles and the usage ledger."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        ledger: UsageLedger | None = None,
    ):
        self._session_factory = session_factory
        self.ledger = ledger or UsageLedger(session_factory)

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def is_admin(self, user_id: str) -> bool:
        async with self.session_factory() as session:
            return await has_admin_role(session, user_id)

    async def resolve(self, user_id: str, now: datetime | None = None, admin: bool = False) -> UserPlan:
        """Current plan view for ``user_id``; never raises.

        Args:
            user_id: Authenticated user id
            now: Current time (for deterministic testing)
            admin: True when the caller's token already carries the admin role
        """
        now = now or datetime.now(UTC)
        try:
            return await self._resolve(user_id, now, admin)
        except Exception as exc:
            logger.warning(
                "plan_resolution_failed_using_free_default",
                user_id=user_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return free_default_plan()

    async def _resolve(self, user_id: str, now: datetime, admin: bool) -> UserPlan:
        is_admin = admin or await self.is_admin(user_id)
        tokens_used = await self.ledger.tokens_used_this_month(user_id, now)
        monthly_usage, daily_usage = await self.ledger.analysis_counts(user_id, now)

        if is_admin:
            return UserPlan(
                plan_id=None,
                plan_name="Admin",
                plan_slug="admin",
                monthly_limit=ADMIN_ANALYSIS_LIMIT,
                daily_limit=ADMIN_ANALYSIS_LIMIT,
                monthly_usage=monthly_usage,
                daily_usage=daily_usage,
                tokens_used=tokens_used,
                max_tokens_monthly=None,
                tokens_remaining=None,
                tokens_used_percent=0.0,
                can_analyze=True,
                limit_message=None,
                is_admin=True,
                allowed_depths=[d.value for d in ALL_DEPTHS],
                allowed_analysis_types=[t.value for t in SELECTABLE_ANALYSIS_TYPES],
                allow_economic_mode=True,
                can_export_pdf=True,
            )

        plan = await self.effective_plan(user_id, now)
        slug = plan.slug if plan is not None else FREE_PLAN_SLUG
        defaults = FREE_PLAN_DEFAULTS if slug == FREE_PLAN_SLUG else PAID_PLAN_DEFAULTS
        config = PlanConfig.model_validate(plan.config or {}) if plan is not None else PlanConfig()

        if config.max_tokens_monthly is not None:
            cap = config.max_tokens_monthly
        elif plan is not None and plan.max_tokens_monthly is not None:
            cap = plan.max_tokens_monthly
        else:
            cap = defaults.max_tokens_monthly

        remaining, percent, can_analyze, message = evaluate_quota(tokens_used, cap)

        return UserPlan(
            plan_id=str(plan.id) if plan is not None else None,
            plan_name=plan.name if plan is not None else "Free",
            plan_slug=slug,
            monthly_limit=(plan.monthly_analyses if plan is not None else None) or FREE_MONTHLY_ANALYSES,
            daily_limit=(plan.daily_analyses if plan is not None else None) or FREE_DAILY_ANALYSES,
            monthly_usage=monthly_usage,
            daily_usage=daily_usage,
            tokens_used=tokens_used,
            max_tokens_monthly=cap,
            tokens_remaining=remaining,
            tokens_used_percent=percent,
            can_analyze=can_analyze,
            limit_message=message,
            is_admin=False,
            allowed_depths=config.allowed_depths or defaults.allowed_depths,
            allowed_analysis_types=config.allowed_analysis_types or defaults.allowed_analysis_types,
            allow_economic_mode=(
                config.allow_economic_mode if config.allow_economic_mode is not None else defaults.allow_economic_mode
            ),
            can_export_pdf=config.can_export_pdf if config.can_export_pdf is not None else defaults.can_export_pdf,
        )

    async def effective_plan(self, user_id: str, now: datetime) -> Plan | None:
        """Plan the user is billed on; lapsed subscriptions resolve to the free plan.

        A user with no subscription row is attached to the free plan on first lookup.
        """
        async with self.session_factory() as session:
            result = await session.execute(select(UserSubscription).where(UserSubscription.user_id == user_id))
            subscription = result.scalar_one_or_none()

            if subscription is None:
                subscription = await self._attach_free_plan(session, user_id)

            if subscription is not None and subscription.plan_id is not None and _is_current(subscription, now):
                plan = await session.get(Plan, subscription.plan_id)
                if plan is not None and plan.is_active:
                    return plan

            return await _free_plan(session)

    async def _attach_free_plan(self, session: AsyncSession, user_id: str) -> UserSubscription | None:
        free = await _free_plan(session)
        if free is None:
            return None

        subscription = UserSubscription(user_id=user_id, plan_id=free.id, status="active")
        session.add(subscription)
        try:
            await session.commit()
        except IntegrityError:
            # Another request attached the user first; use its row
            await session.rollback()
            result = await session.execute(select(UserSubscription).where(UserSubscription.user_id == user_id))
            return result.scalar_one_or_none()

        logger.info("subscription_reconciled_to_free", user_id=user_id)
        return subscription

    async def ensure_can_analyze(
        self,
        user_id: str,
        analysis_types: list[AnalysisType],
        depth: DepthLevel,
        admin: bool = False,
    ) -> UserPlan:
        """Admission check for a new batch of analyses.

        Raises:
            PlanRestrictionError: depth or a type is not included in the plan
            QuotaExceededError: monthly token budget exhausted
        """
        plan = await self.resolve(user_id, admin=admin)

        if depth.value not in plan.allowed_depths:
            raise PlanRestrictionError(
                f"Depth '{depth.value}' is not available on the {plan.plan_name} plan. Upgrade to unlock it."
            )

        blocked = [t.value for t in analysis_types if t.value not in plan.allowed_analysis_types]
        if blocked:
            raise PlanRestrictionError(
                f"Analysis types not available on the {plan.plan_name} plan: {', '.join(blocked)}. Upgrade to unlock them."
            )

        if not plan.can_analyze:
            suggested = suggest_depth_by_tokens(plan.tokens_remaining, len(analysis_types))
            raise QuotaExceededError(plan.limit_message or "Token limit reached", suggested_depth=suggested.value)

        return plan


def _is_current(subscription: UserSubscription, now: datetime) -> bool:
    if subscription.status not in ACTIVE_SUBSCRIPTION_STATUSES:
        return False
    if subscription.expires_at is None:
        return True
    expires_at = subscription.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    return expires_at > now


async def _free_plan(session: AsyncSession) -> Plan | None:
    result = await session.execute(select(Plan).where(Plan.slug == FREE_PLAN_SLUG))
    return result.scalar_one_or_none()
