"""AnalysisPrompt model: admin-editable prompt templates per analysis type."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, Uuid

from gitanalyzer.db.base import Base


class AnalysisPrompt(Base):
    __tablename__ = "analysis_prompts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    analysis_type = Column(String(50), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    system_prompt = Column(Text, nullable=False)
    # May reference {{projectName}}, {{githubUrl}}, {{readme}}, {{structure}},
    # {{dependencies}} and {{sourceCode}}
    user_prompt_template = Column(Text, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
