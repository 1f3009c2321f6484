"""Usage ledger: append-only token/cost records and their aggregations."""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gitanalyzer.db.base import get_session_factory
from gitanalyzer.db.models.usage_record import UsageRecord
from gitanalyzer.domain.analysis_types import DepthLevel
from gitanalyzer.domain.pricing import (
    DEPTH_TOKEN_ESTIMATES,
    estimate_analysis_cost,
    format_cost_brl,
    format_cost_usd,
    get_model_pricing,
    max_cost_per_1m,
    model_mode,
)

IMPLEMENTATION_PLAN_USAGE_TYPE = "implementation_plan"

# Recorded cost may exceed the model's output rate by this factor before the
# row is treated as a historical pricing-bug artifact
MAX_COST_RATE_FACTOR = 1.5

TOKEN_HISTORY_DAYS = 30


class ModelUsageStats(BaseModel):
    model_id: str
    model_name: str
    provider: str
    mode: str  # economic, detailed
    avg_cost: float
    avg_cost_display: str
    avg_cost_brl_display: str
    avg_tokens: float
    count: int
    cost_per_1k: float


class DepthUsageStats(BaseModel):
    depth: str
    avg_cost: float
    avg_tokens: float
    count: int


class DailyUsage(BaseModel):
    date: str  # YYYY-MM-DD
    tokens: int
    analyses: int


def start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def is_valid_cost_data(cost: float | None, tokens: int | None, model: str | None = None) -> bool:
    """True when a recorded cost is realistic for the recorded token count.

    The bound is the model's registered output rate, since a blended
    input/output cost can never exceed it.
    """
    if not cost or not tokens:
        return False
    return (cost / tokens) * 1_000_000 <= max_cost_per_1m(model) * MAX_COST_RATE_FACTOR


def record_usage(
    session: AsyncSession,
    *,
    user_id: str,
    analysis_type: str,
    tokens: int,
    cost_usd: float,
    model: str | None,
    provider: str | None = None,
    project_id: UUID | None = None,
    depth: str | None = None,
    input_tokens: int | None = None,
    output_tokens: int | None = None,
) -> UsageRecord:
    """Add one ledger row to ``session``. The caller commits.

    Args:
        session: Open session; the row is committed with the caller's other writes
        user_id: Owner of the call
        analysis_type: Analysis type tag, or ``implementation_plan``
        tokens: Total tokens billed against the monthly quota
        cost_usd: Cost at call time from the pricing registry

    Returns:
        The pending UsageRecord
    """
    record = UsageRecord(
        user_id=user_id,
        project_id=project_id,
        analysis_type=analysis_type,
        depth_level=depth,
        model_used=model,
        provider=provider,
        tokens_estimated=tokens,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost_estimated=cost_usd,
    )
    session.add(record)
    return record


class UsageLedger:
    """Read side of the ledger: quota sums and cost reports."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def tokens_used_since(self, user_id: str, since: datetime) -> int:
        """Sum of tokens_estimated for ``user_id`` at or after ``since``."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(UsageRecord.tokens_estimated), 0)).where(
                    UsageRecord.user_id == user_id,
                    UsageRecord.created_at >= since,
                )
            )
            return int(result.scalar_one())

    async def tokens_used_this_month(self, user_id: str, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        return await self.tokens_used_since(user_id, start_of_month(now))

    async def analysis_counts(self, user_id: str, now: datetime | None = None) -> tuple[int, int]:
        """Legacy analysis counters.

        Returns:
            Tuple of (analyses this month, analyses today); extraction calls are excluded
        """
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            counts = []
            for since in (start_of_month(now), start_of_day(now)):
                result = await session.execute(
                    select(func.count(UsageRecord.id)).where(
                        UsageRecord.user_id == user_id,
                        UsageRecord.analysis_type != IMPLEMENTATION_PLAN_USAGE_TYPE,
                        UsageRecord.created_at >= since,
                    )
                )
                counts.append(int(result.scalar_one()))
        return counts[0], counts[1]

    async def token_history(
        self, user_id: str, days: int = TOKEN_HISTORY_DAYS, now: datetime | None = None
    ) -> list[DailyUsage]:
        """Daily token and call totals for ``user_id`` over the last ``days`` days, oldest first.

        Days without usage are omitted.
        """
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            result = await session.execute(
                select(UsageRecord.created_at, UsageRecord.tokens_estimated)
                .where(
                    UsageRecord.user_id == user_id,
                    UsageRecord.created_at >= now - timedelta(days=days),
                )
                .order_by(UsageRecord.created_at.asc())
            )
            rows = result.all()

        days_seen: dict[str, DailyUsage] = {}
        for created_at, tokens in rows:
            date = created_at.date().isoformat()
            entry = days_seen.setdefault(date, DailyUsage(date=date, tokens=0, analyses=0))
            entry.tokens += tokens or 0
            entry.analyses += 1
        return list(days_seen.values())

    async def _valid_rows(self) -> list:
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    UsageRecord.model_used,
                    UsageRecord.depth_level,
                    UsageRecord.cost_estimated,
                    UsageRecord.tokens_estimated,
                ).where(UsageRecord.is_legacy_cost.is_(False))
            )
            return [
                row
                for row in result.all()
                if is_valid_cost_data(row.cost_estimated, row.tokens_estimated, row.model_used)
            ]

    async def aggregate_by_model(self) -> list[ModelUsageStats]:
        """Average real cost per model, cheapest cost-per-1K first."""
        buckets: dict[str, list[float]] = {}
        for row in await self._valid_rows():
            bucket = buckets.setdefault(row.model_used or "unknown", [0.0, 0, 0])
            bucket[0] += row.cost_estimated
            bucket[1] += row.tokens_estimated
            bucket[2] += 1

        stats = []
        for model_id, (cost, tokens, count) in buckets.items():
            pricing = get_model_pricing(model_id)
            avg_cost = cost / count
            stats.append(
                ModelUsageStats(
                    model_id=model_id,
                    model_name=pricing.name if pricing else model_id.split("/")[-1],
                    provider=pricing.provider.value if pricing else ("openai" if "openai" in model_id else "lovable"),
                    mode=model_mode(model_id),
                    avg_cost=avg_cost,
                    avg_cost_display=format_cost_usd(avg_cost),
                    avg_cost_brl_display=format_cost_brl(avg_cost),
                    avg_tokens=tokens / count,
                    count=count,
                    cost_per_1k=(cost / tokens) * 1000 if tokens else 0.0,
                )
            )
        return sorted(stats, key=lambda s: s.cost_per_1k)

    async def aggregate_by_depth(self) -> list[DepthUsageStats]:
        """Average real cost and tokens per depth level."""
        buckets: dict[str, list[float]] = {}
        for row in await self._valid_rows():
            if not row.depth_level:
                continue
            bucket = buckets.setdefault(row.depth_level, [0.0, 0, 0])
            bucket[0] += row.cost_estimated
            bucket[1] += row.tokens_estimated
            bucket[2] += 1

        return [
            DepthUsageStats(depth=depth, avg_cost=cost / count, avg_tokens=tokens / count, count=count)
            for depth, (cost, tokens, count) in buckets.items()
        ]

    async def estimate_depth_cost(self, depth: DepthLevel | str, model: str) -> float:
        """Reference cost of one analysis at ``depth`` with ``model``.

        Uses the real average token count for the depth when the ledger has
        any, else the static per-depth estimate.
        """
        depth = DepthLevel(depth)
        tokens = DEPTH_TOKEN_ESTIMATES[depth]
        for stats in await self.aggregate_by_depth():
            if stats.depth == depth.value and stats.count > 0:
                tokens = round(stats.avg_tokens)
                break
        return estimate_analysis_cost(model, tokens)
