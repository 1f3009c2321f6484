from fastapi import APIRouter

from gitanalyzer.api.routes import analyses, chat, health, implementation_plans, plans, usage

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(plans.router, prefix="/plan", tags=["plan"])
api_router.include_router(analyses.router, tags=["analyses"])
api_router.include_router(chat.router, tags=["chat"])
api_router.include_router(implementation_plans.generation_router, tags=["implementation-plans"])
api_router.include_router(implementation_plans.router, tags=["implementation-plans"])
api_router.include_router(usage.router, prefix="/usage", tags=["usage"])
