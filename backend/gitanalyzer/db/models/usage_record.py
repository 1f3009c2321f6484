"""UsageRecord model: append-only ledger of billable AI calls."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Uuid

from gitanalyzer.db.base import Base


class UsageRecord(Base):
    __tablename__ = "analysis_usage"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False, index=True)
    # No FK: usage outlives deleted projects
    project_id = Column(Uuid, nullable=True, index=True)

    analysis_type = Column(String(50), nullable=False)
    depth_level = Column(String(20), nullable=True)
    model_used = Column(String(100), nullable=True)
    provider = Column(String(20), nullable=True)  # lovable, openai

    tokens_estimated = Column(Integer, nullable=False, default=0)
    input_tokens = Column(Integer, nullable=True)
    output_tokens = Column(Integer, nullable=True)
    cost_estimated = Column(Float, nullable=False, default=0.0)  # USD, price at call time

    # Rows written before per-model pricing; excluded from cost reports
    is_legacy_cost = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
