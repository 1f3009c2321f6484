"""ImplementationPlan and ImplementationItem models: checklists derived from analyses."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from gitanalyzer.db.base import Base


class ImplementationPlan(Base):
    __tablename__ = "implementation_plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False, index=True)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    focus_type = Column(String(20), nullable=False, default="complete")  # bugs, features, security, complete
    analysis_types = Column(JSON, nullable=False, default=list)
    tokens_used = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    items = relationship(
        "ImplementationItem",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="ImplementationItem.sort_order",
    )


class ImplementationItem(Base):
    __tablename__ = "implementation_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id = Column(Uuid, ForeignKey("implementation_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    plan = relationship("ImplementationPlan", back_populates="items")

    category = Column(String(20), nullable=False)  # critical, implementation, improvement
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    source_analysis = Column(String(50), nullable=False)

    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
