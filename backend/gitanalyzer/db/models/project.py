"""Project model: a tracked GitHub repository and its cached snapshot."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text, Uuid

from gitanalyzer.db.base import Base


class Project(Base):
    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    github_url = Column(String(500), nullable=False)

    # Snapshot written by repository ingestion:
    # {"repoData": {...}, "readmeContent": str, "fileStructure": str,
    #  "packageJsonContent": str, "sourceCodeContent": str, "configContent": str}
    github_data = Column(JSON, nullable=True)

    # idle, extracting, generating_<type>, completed, error (advisory, UI only)
    analysis_status = Column(String(50), nullable=False, default="idle")
    error_message = Column(Text, nullable=True)
    is_pinned = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
