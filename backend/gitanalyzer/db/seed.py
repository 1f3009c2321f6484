"""Idempotent seed data for subscription plans."""

from sqlalchemy import select

from gitanalyzer.db.base import get_session_factory
from gitanalyzer.db.models.plan import Plan

PLANS = [
    {
        "slug": "free",
        "name": "Free",
        "description": "Try the analyzer on a single project",
        "monthly_analyses": 3,
        "daily_analyses": 1,
        "max_tokens_monthly": 50_000,
        "price_monthly": 0.0,
        "features": ["PRD", "Marketing & Launch", "Investor Pitch"],
        "config": {
            "allowed_depths": ["critical"],
            "allowed_analysis_types": ["prd", "divulgacao", "captacao"],
            "allow_economic_mode": False,
            "can_export_pdf": False,
            "max_tokens_monthly": 50_000,
            "limitations": ["Critical depth only", "3 analysis types"],
        },
    },
    {
        "slug": "pro",
        "name": "Pro",
        "description": "Every analysis type at every depth",
        "monthly_analyses": 50,
        "daily_analyses": None,
        "max_tokens_monthly": 1_000_000,
        "price_monthly": 49.9,
        "features": ["All analysis types", "All depths", "PDF export", "Implementation plans"],
        "config": {
            "allowed_depths": ["critical", "balanced", "complete"],
            "allow_economic_mode": True,
            "can_export_pdf": True,
            "max_tokens_monthly": 1_000_000,
            "limitations": [],
        },
    },
    {
        "slug": "business",
        "name": "Business",
        "description": "Unlimited tokens for teams",
        "monthly_analyses": 500,
        "daily_analyses": None,
        "max_tokens_monthly": None,
        "price_monthly": 199.9,
        "features": ["Everything in Pro", "Unlimited tokens"],
        "config": {
            "allowed_depths": ["critical", "balanced", "complete"],
            "allow_economic_mode": True,
            "can_export_pdf": True,
            "limitations": [],
        },
    },
]


async def seed_plans() -> None:
    """Insert default plans if they don't already exist."""
    factory = get_session_factory()

    async with factory() as session:
        for plan_data in PLANS:
            result = await session.execute(select(Plan).where(Plan.slug == plan_data["slug"]))
            if result.scalar_one_or_none() is None:
                session.add(Plan(**plan_data))

        await session.commit()
