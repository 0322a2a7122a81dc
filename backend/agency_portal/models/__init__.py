"""Agency Portal - Data Models"""
from .db_models import (
    # Enums
    CaseType, CaseStatus, RiskLevel, TimelineEventType, NotificationStatus,
    WorkflowStage, UserRole, TERMINAL_STATUSES, APPROVER_ROLES,
    # Tables
    UserDB, EmployeeDB, EnforcementCaseDB, EnforcementTimelineDB,
    EnforcementNotificationDB, EnforcementStageDB, EnforcementNoticeDB,
)

__all__ = [
    "CaseType", "CaseStatus", "RiskLevel", "TimelineEventType", "NotificationStatus",
    "WorkflowStage", "UserRole", "TERMINAL_STATUSES", "APPROVER_ROLES",
    "UserDB", "EmployeeDB", "EnforcementCaseDB", "EnforcementTimelineDB",
    "EnforcementNotificationDB", "EnforcementStageDB", "EnforcementNoticeDB",
]
