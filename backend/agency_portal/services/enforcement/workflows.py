"""
Enforcement Workflows

Server-side rendition of the three-step enforcement wizards:

    Step 1 (facts) → Step 2 (details / confirmations) → Step 3 (notice preview) → commit

Each workflow gates every step on its required fields, renders the notice
for Step 3, and stages the case changes through the CaseRepository on commit.
Nothing here commits the session; EnforcementService owns the transaction.
"""
import logging
from datetime import date
from typing import Optional, List, Dict

from .deadlines import (
    add_days, add_working_days, format_date,
    SUSPENSION_REVIEW_DAYS, WARNING_REPRESENTATIONS_WORKING_DAYS,
    DECISION_AFTER_REPRESENTATIONS_DAYS, CANCELLATION_EFFECT_DAYS, DEFAULT_EXTENSION_WEEKS,
)
from .notices import NoticeGenerator, NoticePreview
from .repository import CaseRepository
from .state_machine import CaseStateMachine, CaseTransitionError
from ...models.db_models import (
    EnforcementCaseDB, EmployeeDB, UserDB,
    CaseType, CaseStatus, RiskLevel, TimelineEventType, WorkflowStage,
)
from ...models.workflow_inputs import (
    RiskAssessmentInput, SuspensionPath, WarningPath, CancellationInput,
    ReviewInput, DecisionInput, RepresentationsInput,
)

logger = logging.getLogger(__name__)

PREVIEW_STEP = 3


class WorkflowValidationError(ValueError):
    """A workflow step is missing required input."""

    def __init__(self, step: int, missing: List[str], message: Optional[str] = None):
        self.step = step
        self.missing = missing
        super().__init__(message or f"Step {step} incomplete: missing {', '.join(missing)}")


# =============================================================================
# BASE
# =============================================================================

class EnforcementWorkflow:
    """
    Common step gating for all wizards.

    Subclasses implement _step_missing(step) for steps 1 and 2, render() for
    the Step 3 notice, and _apply(repo, notice) for the commit.
    """

    stage: WorkflowStage

    def __init__(
        self,
        data,
        provider: EmployeeDB,
        supervisor: Optional[UserDB] = None,
        today: Optional[date] = None,
    ):
        self.data = data
        self.provider = provider
        self.supervisor = supervisor
        self.today = today or date.today()
        self.step = 1
        self.state_machine = CaseStateMachine()

    @property
    def supervisor_name(self) -> Optional[str]:
        return self.supervisor.display_name if self.supervisor else None

    def missing_fields(self, step: int) -> List[str]:
        """Required fields still incomplete for a step. Step 3 has none of its own."""
        if step not in (1, 2, 3):
            raise ValueError(f"Unknown step {step}")
        if step == PREVIEW_STEP:
            return []
        return self._step_missing(step)

    def is_step_valid(self, step: int) -> bool:
        return not self.missing_fields(step)

    def advance(self) -> int:
        """
        Move to the next step.

        Raises:
            WorkflowValidationError: If the current step is incomplete
        """
        missing = self.missing_fields(self.step)
        if missing:
            raise WorkflowValidationError(self.step, missing)
        if self.step < PREVIEW_STEP:
            self.step += 1
        return self.step

    def back(self) -> int:
        if self.step > 1:
            self.step -= 1
        return self.step

    def validate_through(self, step: int = PREVIEW_STEP) -> None:
        """Check every step before `step`; raise on the first incomplete one."""
        for s in range(1, step):
            missing = self.missing_fields(s)
            if missing:
                raise WorkflowValidationError(s, missing)

    def preview(self) -> NoticePreview:
        """Step 3: render the notice. Earlier steps must be complete."""
        self.validate_through(PREVIEW_STEP)
        self.step = PREVIEW_STEP
        return self.render()

    def commit(self, repo: CaseRepository, created_by: Optional[str] = None) -> EnforcementCaseDB:
        """Stage the case changes, snapshot and notice. The caller commits."""
        notice = self.preview()
        case = self._apply(repo, notice)

        repo.add_stage_snapshot(
            case.id,
            self.stage,
            self.data.model_dump(mode="json"),
            created_by=created_by or self.supervisor_name,
        )
        repo.add_notice(case.id, notice.notice_type, notice.reference_number, notice.content)

        logger.info(
            f"{type(self).__name__} committed for case {case.id} "
            f"(provider {self.provider.id}, ref {notice.reference_number})"
        )
        return case

    def _missing_supervisor(self, supervisor_id: Optional[str]) -> List[str]:
        """Supervisor must be chosen and must resolve to a supervisor account."""
        supervisor = self.supervisor
        if not supervisor_id or supervisor is None or supervisor.id != supervisor_id or not supervisor.can_approve:
            return ["supervisor_id"]
        return []

    def _notices(self) -> NoticeGenerator:
        return NoticeGenerator(self.provider, self.supervisor_name, self.today)

    def _step_missing(self, step: int) -> List[str]:
        raise NotImplementedError

    def render(self) -> NoticePreview:
        raise NotImplementedError

    def _apply(self, repo: CaseRepository, notice: NoticePreview) -> EnforcementCaseDB:
        raise NotImplementedError


class ExistingCaseWorkflow(EnforcementWorkflow):
    """Workflow acting on a case that already exists."""

    case_type: CaseType
    eligible_statuses: tuple = ()

    def __init__(self, case: EnforcementCaseDB, data, provider: EmployeeDB,
                 supervisor: Optional[UserDB] = None, today: Optional[date] = None):
        if case.type != self.case_type or case.status not in self.eligible_statuses:
            raise CaseTransitionError(
                f"{type(self).__name__} does not apply to a {case.type.value} case in {case.status.value}"
            )
        super().__init__(data, provider, supervisor, today)
        self.case = case


# =============================================================================
# SUSPENSION / WARNING
# =============================================================================

class SuspensionWorkflow(EnforcementWorkflow):
    """
    Risk assessment leading to either an immediate suspension (Regulation 6)
    or a warning notice to improve, depending on the path chosen in Step 1.
    """

    SUSPENSION_CONFIRMATIONS = (
        "confirm_belief", "confirm_immediate", "confirm_appeal", "confirm_review", "confirm_notify",
    )

    data: RiskAssessmentInput

    @property
    def stage(self) -> WorkflowStage:
        return WorkflowStage.WARNING if self.data.is_warning else WorkflowStage.SUSPENSION

    @property
    def case_type(self) -> Optional[CaseType]:
        if self.data.path is None:
            return None
        return CaseType.WARNING if self.data.is_warning else CaseType.SUSPENSION

    def _step_missing(self, step: int) -> List[str]:
        d = self.data
        missing = []
        if step == 1:
            if not d.concern.strip():
                missing.append("concern")
            if not d.risk_detail.strip():
                missing.append("risk_detail")
            if not d.risk_categories:
                missing.append("risk_categories")
            if d.path is None:
                missing.append("reasonableness")
            return missing

        path = d.path
        if isinstance(path, SuspensionPath):
            # Supervisor is optional here, but a chosen one must resolve
            missing = [f for f in self.SUSPENSION_CONFIRMATIONS if not getattr(path, f)]
            if path.supervisor_id:
                missing += self._missing_supervisor(path.supervisor_id)
            return missing
        if isinstance(path, WarningPath):
            if not path.warning_type:
                missing.append("warning_type")
            if not path.breach_details.strip():
                missing.append("breach_details")
            if not path.required_actions.strip():
                missing.append("required_actions")
            return missing + self._missing_supervisor(path.supervisor_id)
        return ["reasonableness"]

    def deadline(self) -> date:
        """Review date for a suspension, compliance date for a warning."""
        if self.data.is_warning:
            return add_days(self.today, self.data.path.compliance_deadline)
        return add_days(self.today, SUSPENSION_REVIEW_DAYS)

    def render(self) -> NoticePreview:
        notices = self._notices()
        if self.data.is_warning:
            path = self.data.path
            return notices.warning_notice(
                warning_type=path.warning_type,
                breach_details=path.breach_details,
                required_actions=path.required_actions,
                compliance_days=path.compliance_deadline,
                compliance_date=self.deadline(),
                monitoring_method=path.monitoring_method,
                representations_deadline=add_working_days(self.today, WARNING_REPRESENTATIONS_WORKING_DAYS),
            )
        return notices.suspension_notice(self.data.concern, self.data.risk_detail, self.deadline())

    def _apply(self, repo: CaseRepository, notice: NoticePreview) -> EnforcementCaseDB:
        is_warning = self.data.is_warning
        deadline = self.deadline()

        case = repo.create_case(
            employee_id=self.provider.id,
            type=self.case_type,
            status=CaseStatus.IN_EFFECT,
            risk_level=RiskLevel.HIGH if is_warning else RiskLevel.CRITICAL,
            concern=self.data.concern,
            risk_detail=self.data.risk_detail,
            risk_categories=list(self.data.risk_categories),
            deadline=deadline,
            date_created=self.today,
            supervisor_id=self.supervisor.id if self.supervisor else None,
            supervisor_name=self.supervisor_name,
            reference_number=notice.reference_number,
            form_data=self.data.model_dump(mode="json"),
        )

        repo.append_timeline(case.id, "Risk Assessment Completed", self.today,
                             TimelineEventType.COMPLETED, self.supervisor_name)
        repo.append_timeline(case.id, "Warning Notice Issued" if is_warning else "Suspension Notice Issued",
                             self.today, TimelineEventType.COMPLETED, self.supervisor_name)
        repo.append_timeline(case.id, "Compliance Deadline" if is_warning else "6-Week Review Deadline",
                             deadline, TimelineEventType.PENDING)
        return case


# =============================================================================
# CANCELLATION
# =============================================================================

class CancellationWorkflow(EnforcementWorkflow):
    """Notice of intention to cancel (Regulation 4)."""

    stage = WorkflowStage.CANCELLATION
    data: CancellationInput

    def _step_missing(self, step: int) -> List[str]:
        d = self.data
        missing = []
        if step == 1:
            if not d.grounds:
                missing.append("grounds")
            if not d.evidence_summary.strip():
                missing.append("evidence_summary")
            if not d.has_evidence:
                missing.append("has_evidence")
            return missing

        if not d.confirm_reps:
            missing.append("confirm_reps")
        if not d.confirm_delay:
            missing.append("confirm_delay")
        return missing + self._missing_supervisor(d.supervisor_id)

    def timeline(self) -> Dict[str, date]:
        """Statutory timeline computed from the representations period."""
        reps_deadline = add_days(self.today, self.data.rep_period)
        earliest_decision = add_days(reps_deadline, DECISION_AFTER_REPRESENTATIONS_DAYS)
        earliest_effect = add_days(earliest_decision, CANCELLATION_EFFECT_DAYS)
        return {
            "representations_deadline": reps_deadline,
            "earliest_decision": earliest_decision,
            "earliest_effect": earliest_effect,
        }

    def render(self) -> NoticePreview:
        timeline = self.timeline()
        return self._notices().cancellation_intention(
            grounds=self.data.grounds,
            evidence_summary=self.data.evidence_summary,
            rep_period=self.data.rep_period,
            representations_deadline=timeline["representations_deadline"],
            earliest_decision=timeline["earliest_decision"],
            earliest_effect=timeline["earliest_effect"],
        )

    def _apply(self, repo: CaseRepository, notice: NoticePreview) -> EnforcementCaseDB:
        reps_deadline = self.timeline()["representations_deadline"]

        case = repo.create_case(
            employee_id=self.provider.id,
            type=CaseType.CANCELLATION,
            status=CaseStatus.PENDING,
            risk_level=RiskLevel.HIGH,
            concern="Cancellation of registration",
            risk_detail=self.data.evidence_summary,
            risk_categories=list(self.data.grounds),
            deadline=reps_deadline,
            date_created=self.today,
            supervisor_id=self.supervisor.id,
            supervisor_name=self.supervisor_name,
            reference_number=notice.reference_number,
            form_data=self.data.model_dump(mode="json"),
        )

        repo.append_timeline(case.id, "Notice of Intention Issued", self.today,
                             TimelineEventType.COMPLETED, self.supervisor_name)
        repo.append_timeline(case.id, "Representations Deadline", reps_deadline,
                             TimelineEventType.PENDING)
        return case


# =============================================================================
# SUSPENSION REVIEW
# =============================================================================

class SuspensionReviewWorkflow(ExistingCaseWorkflow):
    """Mandatory review of an in-effect suspension: extend (Reg 7(3)) or lift (Reg 8)."""

    stage = WorkflowStage.REVIEW
    case_type = CaseType.SUSPENSION
    eligible_statuses = (CaseStatus.IN_EFFECT,)
    data: ReviewInput

    def _step_missing(self, step: int) -> List[str]:
        d = self.data
        missing = []
        if step == 1:
            if not d.investigation_status.strip():
                missing.append("investigation_status")
            if not d.review_outcome:
                missing.append("review_outcome")
            return missing

        if d.review_outcome == "extend" and not d.extension_weeks:
            missing.append("extension_weeks")
        return missing + self._missing_supervisor(d.supervisor_id)

    @property
    def extension_weeks(self) -> int:
        return self.data.extension_weeks or DEFAULT_EXTENSION_WEEKS

    def new_deadline(self) -> date:
        return add_days(self.today, self.extension_weeks * 7)

    def render(self) -> NoticePreview:
        notices = self._notices()
        if self.data.review_outcome == "lift":
            return notices.suspension_lifted(self.data.lift_conditions)
        return notices.suspension_extended(
            self.data.investigation_status, self.extension_weeks, self.new_deadline(),
        )

    def _apply(self, repo: CaseRepository, notice: NoticePreview) -> EnforcementCaseDB:
        case = self.case
        review_data = self.data.model_dump(mode="json")

        if self.data.review_outcome == "lift":
            self.state_machine.transition(
                repo.db, case, CaseStatus.LIFTED,
                event="Suspension Lifted",
                created_by=self.supervisor_name,
                on_date=self.today,
            )
            repo.update_case(
                case,
                {"reference_number": notice.reference_number},
                merge_form_data={"review_data": review_data},
            )
        else:
            new_deadline = self.new_deadline()
            self.state_machine.transition(
                repo.db, case, CaseStatus.IN_EFFECT,
                event=f"Suspension Extended to {format_date(new_deadline)}",
                created_by=self.supervisor_name,
                on_date=self.today,
            )
            repo.update_case(
                case,
                {"deadline": new_deadline, "reference_number": notice.reference_number},
                merge_form_data={"review_data": review_data},
            )
        return case


# =============================================================================
# DECISION
# =============================================================================

def effective_decision(reps_outcome: Optional[str]) -> str:
    """Upheld representations withdraw the notice; anything else proceeds to cancel."""
    return "withdraw" if reps_outcome == "upheld" else "cancel"


class DecisionWorkflow(ExistingCaseWorkflow):
    """Final decision on a notice of intention to cancel (Regulation 4(4))."""

    stage = WorkflowStage.DECISION
    case_type = CaseType.CANCELLATION
    eligible_statuses = (
        CaseStatus.PENDING,
        CaseStatus.REPRESENTATIONS_RECEIVED,
        CaseStatus.DECISION_PENDING,
    )
    data: DecisionInput

    def _step_missing(self, step: int) -> List[str]:
        d = self.data
        missing = []
        if step == 1:
            if d.reps_received == "yes":
                if not (d.reps_summary or "").strip():
                    missing.append("reps_summary")
                if not d.reps_outcome:
                    missing.append("reps_outcome")
            return missing

        if not d.confirm_review:
            missing.append("confirm_review")
        return missing + self._missing_supervisor(d.supervisor_id)

    @property
    def decision(self) -> str:
        return effective_decision(self.data.reps_outcome)

    def effect_date(self) -> date:
        return add_days(self.today, CANCELLATION_EFFECT_DAYS)

    def render(self) -> NoticePreview:
        return self._notices().decision_notice(
            reps_received=self.data.reps_received == "yes",
            reps_summary=self.data.reps_summary,
            reps_outcome=self.data.reps_outcome,
            effect_date=self.effect_date(),
        )

    def _apply(self, repo: CaseRepository, notice: NoticePreview) -> EnforcementCaseDB:
        case = self.case
        decision_data = {**self.data.model_dump(mode="json"), "decision": self.decision}

        if self.decision == "cancel":
            to_status = CaseStatus.CANCELLED
            event = "Decision Notice Issued - Registration Cancelled"
        else:
            to_status = CaseStatus.CLOSED
            event = "Notice Withdrawn"

        self.state_machine.transition(
            repo.db, case, to_status,
            event=event,
            created_by=self.supervisor_name,
            on_date=self.today,
        )
        repo.update_case(
            case,
            {"reference_number": notice.reference_number},
            merge_form_data={"decision_data": decision_data},
        )
        return case


# =============================================================================
# REPRESENTATIONS
# =============================================================================

class RepresentationsWorkflow:
    """
    Record the provider's representations against a notice of intention.
    Single step, no notice.
    """

    stage = WorkflowStage.REPRESENTATIONS

    def __init__(self, case: EnforcementCaseDB, data: RepresentationsInput, today: Optional[date] = None):
        if case.type != CaseType.CANCELLATION or case.status != CaseStatus.PENDING:
            raise CaseTransitionError(
                f"Representations can only be recorded on a pending cancellation case, "
                f"not a {case.type.value} case in {case.status.value}"
            )
        self.case = case
        self.data = data
        self.today = today or date.today()
        self.state_machine = CaseStateMachine()

    def missing_fields(self) -> List[str]:
        return [] if self.data.summary.strip() else ["summary"]

    def commit(self, repo: CaseRepository, created_by: Optional[str] = None) -> EnforcementCaseDB:
        missing = self.missing_fields()
        if missing:
            raise WorkflowValidationError(1, missing)

        self.state_machine.transition(
            repo.db, self.case, CaseStatus.REPRESENTATIONS_RECEIVED,
            event="Representations Received",
            event_type=TimelineEventType.URGENT,
            created_by=created_by,
            on_date=self.today,
        )
        repo.update_case(self.case, merge_form_data={
            "representations_summary": self.data.summary,
            "representations_received_date": self.today.isoformat(),
        })
        repo.add_stage_snapshot(self.case.id, self.stage, self.data.model_dump(mode="json"), created_by)

        logger.info(f"Representations recorded for case {self.case.id}")
        return self.case
