"""
Case Repository

Persistence interface for enforcement cases, their timelines, notices,
stage snapshots and external notifications.

Writes are staged on the session only. The calling service commits once per
operation so a case write and its timeline rows land (or roll back) together.
"""
from datetime import date, datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import (
    EnforcementCaseDB, EnforcementTimelineDB, EnforcementNotificationDB,
    EnforcementStageDB, EnforcementNoticeDB, EmployeeDB, UserDB,
    CaseType, CaseStatus, TimelineEventType, NotificationStatus, WorkflowStage, APPROVER_ROLES,
)


class CaseNotFoundError(LookupError):
    """Raised when a case, provider or supervisor does not exist."""
    pass


class CaseRepository:
    """Row-level access to the enforcement tables."""

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    # =========================================================================
    # CASES
    # =========================================================================

    def create_case(self, **fields) -> EnforcementCaseDB:
        """Stage a new case row. The id is assigned here."""
        case = EnforcementCaseDB(id=str(uuid4()), **fields)
        self.db.add(case)
        return case

    def update_case(
        self,
        case: EnforcementCaseDB,
        updates: Optional[Dict[str, Any]] = None,
        merge_form_data: Optional[Dict[str, Any]] = None,
    ) -> EnforcementCaseDB:
        """
        Apply field updates to a case.

        form_data is merged key-by-key, never replaced.
        """
        for field, value in (updates or {}).items():
            if field in ("id", "type", "form_data"):
                raise ValueError(f"Field '{field}' cannot be updated directly")
            setattr(case, field, value)

        if merge_form_data:
            # New dict so the JSON column registers the change
            case.form_data = {**(case.form_data or {}), **merge_form_data}

        case.updated_at = datetime.utcnow()
        return case

    def get_case(self, case_id: str) -> EnforcementCaseDB:
        case = self.db.query(EnforcementCaseDB).filter(EnforcementCaseDB.id == case_id).first()
        if case is None:
            raise CaseNotFoundError(f"Enforcement case {case_id} not found")
        return case

    def list_cases(
        self,
        status: Optional[CaseStatus] = None,
        case_type: Optional[CaseType] = None,
        employee_id: Optional[str] = None,
    ) -> List[EnforcementCaseDB]:
        """Cases, newest first, with optional filters."""
        query = self.db.query(EnforcementCaseDB)
        if status:
            query = query.filter(EnforcementCaseDB.status == status)
        if case_type:
            query = query.filter(EnforcementCaseDB.type == case_type)
        if employee_id:
            query = query.filter(EnforcementCaseDB.employee_id == employee_id)
        return query.order_by(EnforcementCaseDB.created_at.desc()).all()

    # =========================================================================
    # TIMELINE (append-only)
    # =========================================================================

    def append_timeline(
        self,
        case_id: str,
        event: str,
        on_date: date,
        event_type: TimelineEventType,
        created_by: Optional[str] = None,
    ) -> EnforcementTimelineDB:
        entry = EnforcementTimelineDB(
            id=str(uuid4()),
            case_id=case_id,
            event=event,
            date=on_date,
            type=event_type,
            created_by=created_by,
        )
        self.db.add(entry)
        return entry

    def get_timeline(self, case_id: str) -> List[EnforcementTimelineDB]:
        return self.db.query(EnforcementTimelineDB).filter(
            EnforcementTimelineDB.case_id == case_id
        ).order_by(EnforcementTimelineDB.date, EnforcementTimelineDB.created_at).all()

    def get_timelines(self, case_ids: List[str]) -> Dict[str, List[EnforcementTimelineDB]]:
        """Timelines for several cases, grouped by case id."""
        if not case_ids:
            return {}

        rows = self.db.query(EnforcementTimelineDB).filter(
            EnforcementTimelineDB.case_id.in_(case_ids)
        ).order_by(EnforcementTimelineDB.date, EnforcementTimelineDB.created_at).all()

        grouped: Dict[str, List[EnforcementTimelineDB]] = {}
        for row in rows:
            grouped.setdefault(row.case_id, []).append(row)
        return grouped

    def recent_activity(self, limit: int = 10) -> List[EnforcementTimelineDB]:
        return self.db.query(EnforcementTimelineDB).order_by(
            EnforcementTimelineDB.created_at.desc()
        ).limit(limit).all()

    # =========================================================================
    # SNAPSHOTS AND NOTICES
    # =========================================================================

    def add_stage_snapshot(
        self,
        case_id: str,
        stage: WorkflowStage,
        payload: Dict[str, Any],
        created_by: Optional[str] = None,
    ) -> EnforcementStageDB:
        snapshot = EnforcementStageDB(
            id=str(uuid4()),
            case_id=case_id,
            stage=stage,
            input=payload,
            created_by=created_by,
        )
        self.db.add(snapshot)
        return snapshot

    def get_stage_snapshots(self, case_id: str) -> List[EnforcementStageDB]:
        return self.db.query(EnforcementStageDB).filter(
            EnforcementStageDB.case_id == case_id
        ).order_by(EnforcementStageDB.created_at).all()

    def add_notice(
        self,
        case_id: str,
        notice_type: str,
        reference_number: str,
        content: str,
    ) -> EnforcementNoticeDB:
        notice = EnforcementNoticeDB(
            id=str(uuid4()),
            case_id=case_id,
            notice_type=notice_type,
            reference_number=reference_number,
            content=content,
        )
        self.db.add(notice)
        return notice

    def get_notices(self, case_id: str) -> List[EnforcementNoticeDB]:
        return self.db.query(EnforcementNoticeDB).filter(
            EnforcementNoticeDB.case_id == case_id
        ).order_by(EnforcementNoticeDB.generated_at).all()

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def get_notifications(self, case_id: str) -> List[EnforcementNotificationDB]:
        return self.db.query(EnforcementNotificationDB).filter(
            EnforcementNotificationDB.case_id == case_id
        ).order_by(EnforcementNotificationDB.created_at).all()

    def upsert_notification(
        self,
        case_id: str,
        agency: str,
        agency_name: str,
        agency_detail: Optional[str],
        agency_email: str,
        status: NotificationStatus,
        error_message: Optional[str] = None,
        sent_at: Optional[datetime] = None,
        sent_by: Optional[str] = None,
    ) -> EnforcementNotificationDB:
        """One row per (case, agency); later writes update the same row."""
        row = self.db.query(EnforcementNotificationDB).filter(
            EnforcementNotificationDB.case_id == case_id,
            EnforcementNotificationDB.agency == agency,
        ).first()

        is_new = row is None
        if is_new:
            row = EnforcementNotificationDB(id=str(uuid4()), case_id=case_id, agency=agency)
            self.db.add(row)

        row.agency_name = agency_name
        row.agency_detail = agency_detail
        row.agency_email = agency_email
        row.status = status
        row.error_message = error_message
        row.sent_at = sent_at
        row.sent_by = sent_by

        if is_new:
            # Sessions do not autoflush; later lookups in this request must see the row
            self.db.flush()
        return row

    # =========================================================================
    # PROVIDERS AND SUPERVISORS (externally owned)
    # =========================================================================

    def get_employee(self, employee_id: str) -> EmployeeDB:
        employee = self.db.query(EmployeeDB).filter(EmployeeDB.id == employee_id).first()
        if employee is None:
            raise CaseNotFoundError(f"Provider {employee_id} not found")
        return employee

    def list_employees(self) -> List[EmployeeDB]:
        return self.db.query(EmployeeDB).order_by(EmployeeDB.last_name, EmployeeDB.first_name).all()

    def get_supervisor(self, supervisor_id: str) -> Optional[UserDB]:
        """A user who may approve enforcement action, or None."""
        return self.db.query(UserDB).filter(
            UserDB.id == supervisor_id,
            UserDB.role.in_(APPROVER_ROLES),
        ).first()

    def list_supervisors(self) -> List[UserDB]:
        """Everyone get_supervisor would accept."""
        return self.db.query(UserDB).filter(
            UserDB.role.in_(APPROVER_ROLES)
        ).order_by(UserDB.full_name).all()
