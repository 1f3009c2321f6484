"""Usage routes: admin cost reports and the caller's own token history."""

from fastapi import APIRouter, Depends, Query

from gitanalyzer.core.auth import AuthUser, require_admin, require_auth
from gitanalyzer.domain.pricing import format_cost_brl, format_cost_usd
from gitanalyzer.services.settings_service import DEFAULT_DEPTH_CONFIG
from gitanalyzer.services.usage_ledger import (
    TOKEN_HISTORY_DAYS,
    DailyUsage,
    DepthUsageStats,
    ModelUsageStats,
    UsageLedger,
)

router = APIRouter()


class DepthReport(DepthUsageStats):
    # Reference cost of one analysis at this depth with its default model
    estimated_cost: float
    estimated_cost_display: str
    estimated_cost_brl_display: str


def get_usage_ledger() -> UsageLedger:
    return UsageLedger()


@router.get("/history", response_model=list[DailyUsage])
async def token_history(
    days: int = Query(default=TOKEN_HISTORY_DAYS, ge=1, le=365),
    user: AuthUser = Depends(require_auth),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    return await ledger.token_history(user.user_id, days=days)


@router.get("/models", response_model=list[ModelUsageStats])
async def usage_by_model(
    _admin: AuthUser = Depends(require_admin),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    return await ledger.aggregate_by_model()


@router.get("/depths", response_model=list[DepthReport])
async def usage_by_depth(
    _admin: AuthUser = Depends(require_admin),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    reports = []
    for stats in await ledger.aggregate_by_depth():
        config = DEFAULT_DEPTH_CONFIG.get(stats.depth)
        cost = await ledger.estimate_depth_cost(stats.depth, config.model) if config else 0.0
        reports.append(
            DepthReport(
                **stats.model_dump(),
                estimated_cost=cost,
                estimated_cost_display=format_cost_usd(cost),
                estimated_cost_brl_display=format_cost_brl(cost),
            )
        )
    return reports
