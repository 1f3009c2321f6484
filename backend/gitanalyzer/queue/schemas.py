"""Queue schemas: item lifecycle states and API payloads."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from gitanalyzer.domain.analysis_types import AnalysisType, DepthLevel


class QueueStatus(str, Enum):
    """Analysis queue item lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class ProcessStatus(str, Enum):
    """Outcome reported by one processor invocation."""

    COMPLETED = "completed"
    ALREADY_PROCESSING = "already_processing"
    ALREADY_COMPLETED = "already_completed"
    ALREADY_FAILED = "already_failed"
    ERROR = "error"


class EnqueueRequest(BaseModel):
    """Request to analyze a project for one or more types."""

    analysis_types: list[AnalysisType] = Field(min_length=1)
    depth: DepthLevel = DepthLevel.COMPLETE


class QueueItemRecord(BaseModel):
    """Queue item as returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    analysis_type: str
    depth_level: str
    status: QueueStatus
    retry_count: int
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class EnqueueResult(BaseModel):
    items: list[QueueItemRecord]
    # Types skipped because an identical item is already pending or processing
    skipped: list[str]
    tokens_remaining: int | None


class ProcessTrigger(BaseModel):
    """Internal trigger body: ``{"queueItemId": "..."}``."""

    queue_item_id: UUID = Field(alias="queueItemId")


class ProcessResult(BaseModel):
    """Well-formed result of one processor invocation; never an exception."""

    success: bool
    status: ProcessStatus
    analysis_type: str | None = None
    error: str | None = None
    # HTTP status the trigger endpoint responds with
    http_status: int = 200

    def body(self) -> dict:
        if not self.success:
            return {"success": False, "status": self.status.value, "error": self.error}
        body = {"success": True, "status": self.status.value}
        if self.analysis_type:
            body["analysisType"] = self.analysis_type
        return body
