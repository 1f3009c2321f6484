"""Re-export all models so Base.metadata sees them."""

from gitanalyzer.db.models.analysis import Analysis
from gitanalyzer.db.models.analysis_prompt import AnalysisPrompt
from gitanalyzer.db.models.analysis_queue import AnalysisQueueItem
from gitanalyzer.db.models.implementation_plan import ImplementationItem, ImplementationPlan
from gitanalyzer.db.models.plan import Plan, UserSubscription
from gitanalyzer.db.models.project import Project
from gitanalyzer.db.models.system_setting import SystemSetting
from gitanalyzer.db.models.usage_record import UsageRecord
from gitanalyzer.db.models.user_role import UserRole

__all__ = [
    "Analysis",
    "AnalysisPrompt",
    "AnalysisQueueItem",
    "ImplementationItem",
    "ImplementationPlan",
    "Plan",
    "Project",
    "SystemSetting",
    "UsageRecord",
    "UserRole",
    "UserSubscription",
]
