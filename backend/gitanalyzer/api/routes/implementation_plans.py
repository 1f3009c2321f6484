"""Implementation plan routes: generate, list, fetch, check off items, delete."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Response

from gitanalyzer.api.validation import BadRequestRoute
from gitanalyzer.core.auth import AuthUser, is_admin_user, require_auth
from gitanalyzer.core.rate_limit import implementation_plan_limiter
from gitanalyzer.db.redis import get_redis
from gitanalyzer.schemas.implementation_plans import (
    GeneratePlanRequest,
    GeneratePlanResponse,
    ImplementationItemRecord,
    ImplementationPlanRecord,
    PlanOverview,
    ToggleItemRequest,
)
from gitanalyzer.services.implementation_plan_service import ImplementationPlanService

logger = structlog.get_logger(__name__)

router = APIRouter()
# Plan generation keeps the 400 contract for malformed bodies
generation_router = APIRouter(route_class=BadRequestRoute)


def get_implementation_plan_service() -> ImplementationPlanService:
    try:
        limiter = implementation_plan_limiter(get_redis())
    except RuntimeError:
        # Redis never came up at startup; generation runs unlimited
        logger.warning("rate_limiter_unavailable", scope="implementation_plan")
        limiter = None
    return ImplementationPlanService(rate_limiter=limiter)


@generation_router.post("/implementation-plans", response_model=GeneratePlanResponse)
async def generate_plan(
    request: GeneratePlanRequest,
    user: AuthUser = Depends(require_auth),
    service: ImplementationPlanService = Depends(get_implementation_plan_service),
):
    summary = await service.generate(
        user.user_id,
        request.project_id,
        request.analysis_types,
        focus_type=request.focus_type,
        title=request.title,
        admin=is_admin_user(user),
    )
    return GeneratePlanResponse(plan=summary)


@router.get("/projects/{project_id}/implementation-plans", response_model=list[PlanOverview])
async def list_plans(
    project_id: UUID,
    user: AuthUser = Depends(require_auth),
    service: ImplementationPlanService = Depends(get_implementation_plan_service),
):
    return await service.list_plans(user.user_id, project_id, admin=is_admin_user(user))


@router.get("/implementation-plans/{plan_id}", response_model=ImplementationPlanRecord)
async def get_plan(
    plan_id: UUID,
    user: AuthUser = Depends(require_auth),
    service: ImplementationPlanService = Depends(get_implementation_plan_service),
):
    return await service.get_plan(user.user_id, plan_id, admin=is_admin_user(user))


@router.patch("/implementation-plans/items/{item_id}", response_model=ImplementationItemRecord)
async def toggle_item(
    item_id: UUID,
    request: ToggleItemRequest,
    user: AuthUser = Depends(require_auth),
    service: ImplementationPlanService = Depends(get_implementation_plan_service),
):
    return await service.toggle_item(user.user_id, item_id, request.is_completed, admin=is_admin_user(user))


@router.delete("/implementation-plans/{plan_id}", status_code=204)
async def delete_plan(
    plan_id: UUID,
    user: AuthUser = Depends(require_auth),
    service: ImplementationPlanService = Depends(get_implementation_plan_service),
):
    await service.delete_plan(user.user_id, plan_id, admin=is_admin_user(user))
    return Response(status_code=204)
