"""Plan routes: the caller's plan/quota view and depth suggestions."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from gitanalyzer.core.auth import AuthUser, is_admin_user, require_auth
from gitanalyzer.services.plan_service import (
    TOKEN_ESTIMATES,
    PlanResolver,
    UserPlan,
    estimate_tokens_for_analysis,
    suggest_depth_by_tokens,
)

router = APIRouter()


class DepthSuggestion(BaseModel):
    suggested_depth: str
    tokens_remaining: int | None
    analysis_count: int
    # Estimated tokens for the whole batch at each depth
    estimates: dict[str, int]


def get_plan_resolver() -> PlanResolver:
    return PlanResolver()


@router.get("", response_model=UserPlan)
async def get_current_plan(
    user: AuthUser = Depends(require_auth),
    resolver: PlanResolver = Depends(get_plan_resolver),
):
    return await resolver.resolve(user.user_id, admin=is_admin_user(user))


@router.get("/suggest-depth", response_model=DepthSuggestion)
async def suggest_depth(
    analysis_count: int = Query(default=8, ge=1, le=50),
    user: AuthUser = Depends(require_auth),
    resolver: PlanResolver = Depends(get_plan_resolver),
):
    """Deepest depth the remaining monthly budget covers for ``analysis_count`` analyses."""
    plan = await resolver.resolve(user.user_id, admin=is_admin_user(user))
    depth = suggest_depth_by_tokens(plan.tokens_remaining, analysis_count)
    return DepthSuggestion(
        suggested_depth=depth.value,
        tokens_remaining=plan.tokens_remaining,
        analysis_count=analysis_count,
        estimates={d.value: estimate_tokens_for_analysis(d, analysis_count) for d in TOKEN_ESTIMATES},
    )
