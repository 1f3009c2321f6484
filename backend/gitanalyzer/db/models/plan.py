"""Plan and UserSubscription models: subscription tiers and who is on which."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from gitanalyzer.db.base import Base


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    slug = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)

    # Legacy analysis-count limits
    monthly_analyses = Column(Integer, nullable=False, default=3)
    daily_analyses = Column(Integer, nullable=True)

    # Null = unlimited
    max_tokens_monthly = Column(Integer, nullable=True)

    price_monthly = Column(Float, nullable=True)  # BRL
    features = Column(JSON, nullable=False, default=list)

    # {"allowed_depths": [...], "allowed_analysis_types": [...], "allow_economic_mode": bool,
    #  "can_export_pdf": bool, "limitations": [...], "max_tokens_monthly": int | None}
    config = Column(JSON, nullable=False, default=dict)

    is_active = Column(Boolean, nullable=False, default=True)
    stripe_product_id = Column(String(255), nullable=True)
    stripe_price_id = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    subscriptions = relationship("UserSubscription", back_populates="plan")


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    plan_id = Column(Uuid, ForeignKey("plans.id"), nullable=True)
    plan = relationship("Plan", back_populates="subscriptions")

    status = Column(String(50), nullable=False, default="active")
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=True)
