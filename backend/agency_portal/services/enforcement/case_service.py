"""
Enforcement Service

Main orchestration service for enforcement cases.
Coordinates the workflows, state machine, repository, notices and
notification dispatch, and owns the transaction for each operation.

TRANSACTION MODEL:
- One commit per operation; the case row, its timeline entries, stage
  snapshot and notice are written together or not at all.
- Notification dispatch is the exception: each recipient's row commits
  on its own, so a failure part way through a batch keeps earlier sends.
- Any database error rolls the session back before it propagates.
- Concurrent edits to the same case surface as StaleDataError (version check).
"""
import logging
from datetime import date
from typing import Optional, List, Dict, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    EnforcementCaseDB, EnforcementTimelineDB, EmployeeDB, UserDB,
    CaseType, CaseStatus,
)
from ...models.workflow_inputs import (
    RiskAssessmentInput, CancellationInput, ReviewInput, DecisionInput, RepresentationsInput,
    RISK_CATEGORIES, CANCELLATION_GROUNDS,
)
from ...integrations.functions import FunctionInvoker
from .deadlines import DeadlineEngine
from .notifications import NotificationDispatcher, NOTIFICATION_AGENCIES
from .repository import CaseRepository, CaseNotFoundError
from .workflows import (
    SuspensionWorkflow, CancellationWorkflow, SuspensionReviewWorkflow,
    DecisionWorkflow, RepresentationsWorkflow, EnforcementWorkflow,
)

logger = logging.getLogger(__name__)


# Provider status derived from their enforcement cases
PROVIDER_ACTIVE = "active"
PROVIDER_SUSPENDED = "suspended"
PROVIDER_CANCELLATION_PENDING = "cancellation_pending"
PROVIDER_TERMINATED = "terminated"

OPEN_CANCELLATION_STATUSES = (
    CaseStatus.PENDING,
    CaseStatus.REPRESENTATIONS_RECEIVED,
    CaseStatus.DECISION_PENDING,
)


# =============================================================================
# SERIALIZATION
# =============================================================================

def timeline_to_dict(entry: EnforcementTimelineDB) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "case_id": entry.case_id,
        "event": entry.event,
        "date": entry.date.isoformat(),
        "type": entry.type.value,
        "created_by": entry.created_by,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def case_to_dict(
    case: EnforcementCaseDB,
    timeline: Optional[List[EnforcementTimelineDB]] = None,
) -> Dict[str, Any]:
    result = {
        "id": case.id,
        "employee_id": case.employee_id,
        "employee_name": case.employee.full_name if case.employee else None,
        "type": case.type.value,
        "status": case.status.value,
        "risk_level": case.risk_level.value,
        "concern": case.concern,
        "risk_detail": case.risk_detail,
        "risk_categories": case.risk_categories or [],
        "deadline": case.deadline.isoformat() if case.deadline else None,
        "date_created": case.date_created.isoformat(),
        "date_closed": case.date_closed.isoformat() if case.date_closed else None,
        "supervisor_id": case.supervisor_id,
        "supervisor_name": case.supervisor_name,
        "reference_number": case.reference_number,
        "form_data": case.form_data or {},
        "version": case.version,
    }
    if timeline is not None:
        result["timeline"] = [timeline_to_dict(t) for t in timeline]
    return result


def provider_status(cases: List[EnforcementCaseDB]) -> str:
    """
    Registration status implied by a provider's cases.

    Cancelled outranks an in-effect suspension, which outranks a pending cancellation.
    """
    if any(c.type == CaseType.CANCELLATION and c.status == CaseStatus.CANCELLED for c in cases):
        return PROVIDER_TERMINATED
    if any(c.type == CaseType.SUSPENSION and c.status == CaseStatus.IN_EFFECT for c in cases):
        return PROVIDER_SUSPENDED
    if any(c.type == CaseType.CANCELLATION and c.status in OPEN_CANCELLATION_STATUSES for c in cases):
        return PROVIDER_CANCELLATION_PENDING
    return PROVIDER_ACTIVE


def provider_to_dict(employee: EmployeeDB, cases: List[EnforcementCaseDB]) -> Dict[str, Any]:
    return {
        "id": employee.id,
        "name": employee.full_name,
        "email": employee.email,
        "registration_ref": employee.registration_ref,
        "local_authority": employee.local_authority,
        "service_type": employee.service_type,
        "employment_status": employee.employment_status,
        "address": employee.address_dict(),
        "enforcement_status": provider_status(cases),
        "open_cases": sum(1 for c in cases if c.date_closed is None),
    }


def user_to_dict(user: UserDB) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.full_name or user.username,
        "job_title": user.job_title,
        "display_name": user.display_name,
    }


# =============================================================================
# ENFORCEMENT SERVICE
# =============================================================================

class EnforcementService:
    """
    Main service for enforcement case management.

    USER-AUTHORIZED: every workflow commit, representations, notification sends
    SYSTEM-AUTHORITATIVE: deadline sweep (see DeadlineScheduler)
    """

    def __init__(
        self,
        db_session: Session,
        invoker: Optional[FunctionInvoker] = None,
        today: Optional[date] = None,
    ):
        """Initialize with database session."""
        self.db = db_session
        self.repo = CaseRepository(db_session)
        self.deadlines = DeadlineEngine(db_session)
        self.invoker = invoker or FunctionInvoker()
        self.today = today

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Enforcement commit failed, rolling back: {e}")
            self.db.rollback()
            raise

    def _today(self) -> date:
        return self.today or date.today()

    # =========================================================================
    # REFERENCE DATA AND DASHBOARD
    # =========================================================================

    def reference_data(self) -> Dict[str, Any]:
        return {
            "risk_categories": RISK_CATEGORIES,
            "cancellation_grounds": CANCELLATION_GROUNDS,
            "notification_agencies": NOTIFICATION_AGENCIES,
            "supervisors": [user_to_dict(u) for u in self.repo.list_supervisors()],
        }

    def stats(self) -> Dict[str, int]:
        cases = self.repo.list_cases()
        return {
            "active_suspensions": sum(
                1 for c in cases if c.type == CaseType.SUSPENSION and c.status == CaseStatus.IN_EFFECT
            ),
            "pending_decisions": sum(
                1 for c in cases
                if c.status in (CaseStatus.REPRESENTATIONS_RECEIVED, CaseStatus.DECISION_PENDING)
            ),
            "representations_received": sum(
                1 for c in cases if c.status == CaseStatus.REPRESENTATIONS_RECEIVED
            ),
            "active_warnings": sum(
                1 for c in cases if c.type == CaseType.WARNING and c.status == CaseStatus.IN_EFFECT
            ),
            "total_providers": len(self.repo.list_employees()),
        }

    def upcoming_deadlines(self, days_ahead: int = 7) -> List[Dict[str, Any]]:
        return self.deadlines.get_upcoming_deadlines(days_ahead, today=self._today())

    # =========================================================================
    # PROVIDERS
    # =========================================================================

    def list_providers(self) -> List[Dict[str, Any]]:
        employees = self.repo.list_employees()
        cases_by_employee: Dict[str, List[EnforcementCaseDB]] = {}
        for case in self.repo.list_cases():
            cases_by_employee.setdefault(case.employee_id, []).append(case)
        return [provider_to_dict(e, cases_by_employee.get(e.id, [])) for e in employees]

    def get_provider(self, employee_id: str) -> Dict[str, Any]:
        employee = self.repo.get_employee(employee_id)
        cases = self.repo.list_cases(employee_id=employee_id)
        result = provider_to_dict(employee, cases)
        result["cases"] = [case_to_dict(c) for c in cases]
        return result

    # =========================================================================
    # CASES
    # =========================================================================

    def list_cases(
        self,
        status: Optional[CaseStatus] = None,
        case_type: Optional[CaseType] = None,
        employee_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        cases = self.repo.list_cases(status=status, case_type=case_type, employee_id=employee_id)
        timelines = self.repo.get_timelines([c.id for c in cases])
        return [case_to_dict(c, timelines.get(c.id, [])) for c in cases]

    def get_case(self, case_id: str) -> Dict[str, Any]:
        case = self.repo.get_case(case_id)
        result = case_to_dict(case, self.repo.get_timeline(case_id))
        result["notices"] = [
            {
                "id": n.id,
                "notice_type": n.notice_type,
                "reference_number": n.reference_number,
                "content": n.content,
                "generated_at": n.generated_at.isoformat() if n.generated_at else None,
            }
            for n in self.repo.get_notices(case_id)
        ]
        result["stages"] = [
            {
                "id": s.id,
                "stage": s.stage.value,
                "input": s.input,
                "created_by": s.created_by,
                "created_at": s.created_at.isoformat() if s.created_at else None,
            }
            for s in self.repo.get_stage_snapshots(case_id)
        ]
        return result

    def get_timeline(self, case_id: str) -> List[Dict[str, Any]]:
        self.repo.get_case(case_id)
        return [timeline_to_dict(t) for t in self.repo.get_timeline(case_id)]

    def recent_activity(self, limit: int = 10) -> List[Dict[str, Any]]:
        activity = []
        for entry in self.repo.recent_activity(limit):
            item = timeline_to_dict(entry)
            item["employee_name"] = entry.case.employee.full_name if entry.case and entry.case.employee else None
            item["case_type"] = entry.case.type.value if entry.case else None
            activity.append(item)
        return activity

    # =========================================================================
    # WORKFLOWS
    # =========================================================================

    def _supervisor(self, supervisor_id: Optional[str]) -> Optional[UserDB]:
        return self.repo.get_supervisor(supervisor_id) if supervisor_id else None

    def suspension_workflow(self, employee_id: str, data: RiskAssessmentInput) -> SuspensionWorkflow:
        provider = self.repo.get_employee(employee_id)
        supervisor_id = data.path.supervisor_id if data.path else None
        return SuspensionWorkflow(data, provider, self._supervisor(supervisor_id), self._today())

    def cancellation_workflow(self, employee_id: str, data: CancellationInput) -> CancellationWorkflow:
        provider = self.repo.get_employee(employee_id)
        return CancellationWorkflow(data, provider, self._supervisor(data.supervisor_id), self._today())

    def review_workflow(self, case_id: str, data: ReviewInput) -> SuspensionReviewWorkflow:
        case = self.repo.get_case(case_id)
        return SuspensionReviewWorkflow(
            case, data, case.employee, self._supervisor(data.supervisor_id), self._today(),
        )

    def decision_workflow(self, case_id: str, data: DecisionInput) -> DecisionWorkflow:
        case = self.repo.get_case(case_id)
        return DecisionWorkflow(
            case, data, case.employee, self._supervisor(data.supervisor_id), self._today(),
        )

    @staticmethod
    def validate_step(workflow: EnforcementWorkflow, step: int) -> Dict[str, Any]:
        """Step gate check without side effects."""
        missing = workflow.missing_fields(step)
        return {"step": step, "valid": not missing, "missing": missing}

    def commit_workflow(self, workflow: EnforcementWorkflow, created_by: Optional[str] = None) -> Dict[str, Any]:
        """Run a workflow commit as one transaction."""
        try:
            case = workflow.commit(self.repo, created_by=created_by)
            self._commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(case)
        return case_to_dict(case, self.repo.get_timeline(case.id))

    def record_representations(
        self,
        case_id: str,
        data: RepresentationsInput,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        case = self.repo.get_case(case_id)
        workflow = RepresentationsWorkflow(case, data, self._today())
        return self.commit_workflow(workflow, created_by=created_by)

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _dispatcher(self, case_id: str, **kwargs) -> NotificationDispatcher:
        """Dispatch session that commits each recipient's row as soon as it is written."""
        case = self.repo.get_case(case_id)
        if case.employee is None:
            raise CaseNotFoundError(f"Provider for case {case_id} not found")
        return NotificationDispatcher.open(
            case, case.employee, self.invoker, self.repo, commit=self._commit, **kwargs,
        )

    def _dispatch_state(self, dispatcher: NotificationDispatcher) -> Dict[str, Any]:
        return {
            "case_id": dispatcher.case.id,
            "action_type": dispatcher.action_type,
            "recipients": [r.to_dict() for r in dispatcher.recipients],
            "all_sent": dispatcher.all_sent,
        }

    def open_notifications(self, case_id: str) -> Dict[str, Any]:
        dispatcher = self._dispatcher(case_id)
        self._commit()
        return self._dispatch_state(dispatcher)

    def get_notifications(self, case_id: str) -> Dict[str, Any]:
        self.repo.get_case(case_id)
        rows = self.repo.get_notifications(case_id)
        return {
            "case_id": case_id,
            "recipients": [
                {
                    "id": r.agency,
                    "name": r.agency_name,
                    "detail": r.agency_detail,
                    "email": r.agency_email,
                    "status": r.status.value,
                    "error": r.error_message,
                    "sent_at": r.sent_at.isoformat() if r.sent_at else None,
                    "sent_by": r.sent_by,
                }
                for r in rows
            ],
            "all_sent": bool(rows) and all(r.status.value == "sent" for r in rows),
        }

    def add_notification_recipient(self, case_id: str, name: str, email: str, detail: str = "") -> Dict[str, Any]:
        dispatcher = self._dispatcher(case_id)
        dispatcher.add_custom_recipient(name, email, detail)
        self._commit()
        return self._dispatch_state(dispatcher)

    def update_notification_email(self, case_id: str, recipient_id: str, email: str) -> Dict[str, Any]:
        dispatcher = self._dispatcher(case_id)
        dispatcher.update_email(recipient_id, email)
        self._commit()
        return self._dispatch_state(dispatcher)

    def send_notification(self, case_id: str, recipient_id: str, sent_by: Optional[str] = None) -> Dict[str, Any]:
        dispatcher = self._dispatcher(case_id, sent_by=sent_by)
        dispatcher.send(recipient_id)
        return self._dispatch_state(dispatcher)

    def send_all_notifications(
        self,
        case_id: str,
        sent_by: Optional[str] = None,
        send_delay: Optional[float] = None,
    ) -> Dict[str, Any]:
        dispatcher = self._dispatcher(case_id, sent_by=sent_by, send_delay=send_delay)
        summary = dispatcher.send_all()
        result = self._dispatch_state(dispatcher)
        result["summary"] = summary
        return result

    def close_notifications(self, case_id: str, deferral_reason: Optional[str] = None) -> Dict[str, Any]:
        dispatcher = self._dispatcher(case_id)
        result = dispatcher.close(deferral_reason)
        self._commit()
        return result
