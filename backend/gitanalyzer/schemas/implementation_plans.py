"""Pydantic schemas for implementation plans (actionable checklists extracted from analyses)."""

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class FocusType(StrEnum):
    """Which kind of items the extraction concentrates on."""

    BUGS = "bugs"
    FEATURES = "features"
    SECURITY = "security"
    COMPLETE = "complete"


class ItemCategory(StrEnum):
    CRITICAL = "critical"
    IMPLEMENTATION = "implementation"
    IMPROVEMENT = "improvement"


# Display order inside a plan; anything unrecognised sorts with improvements
CATEGORY_PRIORITY = {
    ItemCategory.CRITICAL: 0,
    ItemCategory.IMPLEMENTATION: 1,
    ItemCategory.IMPROVEMENT: 2,
}


# ==================== REQUESTS ====================


class GeneratePlanRequest(BaseModel):
    """Body of POST /implementation-plans. Accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True)

    project_id: UUID = Field(alias="projectId")
    analysis_types: list[str] = Field(alias="analysisTypes", min_length=1)
    focus_type: FocusType = Field(default=FocusType.COMPLETE, alias="focusType")
    title: str | None = Field(default=None, max_length=255)


class ToggleItemRequest(BaseModel):
    is_completed: bool


# ==================== RESPONSES ====================


class PlanSummary(BaseModel):
    id: UUID
    title: str
    focus_type: FocusType
    tokens_used: int
    items_count: int


class GeneratePlanResponse(BaseModel):
    success: bool = True
    plan: PlanSummary


class ImplementationItemRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    plan_id: UUID
    category: str
    title: str
    description: str | None = None
    source_analysis: str
    is_completed: bool
    completed_at: datetime | None = None
    sort_order: int


class PlanOverview(BaseModel):
    """List entry: plan metadata with progress counters, without items."""

    id: UUID
    project_id: UUID
    title: str
    focus_type: FocusType
    analysis_types: list[str]
    tokens_used: int
    items_count: int
    completed_count: int
    created_at: datetime


class ImplementationPlanRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    title: str
    focus_type: FocusType
    analysis_types: list[str]
    tokens_used: int
    created_at: datetime
    updated_at: datetime
    items: list[ImplementationItemRecord]
