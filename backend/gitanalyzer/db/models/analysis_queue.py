"""AnalysisQueueItem model: one (project, analysis type, depth) unit of work."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Uuid

from gitanalyzer.db.base import Base


class AnalysisQueueItem(Base):
    __tablename__ = "analysis_queue"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)

    analysis_type = Column(String(50), nullable=False)
    depth_level = Column(String(20), nullable=False, default="complete")  # critical, balanced, complete
    status = Column(String(20), nullable=False, default="pending", index=True)  # QueueStatus values
    retry_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
