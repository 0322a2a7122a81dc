"""
Enforcement API Routes

Endpoints for the enforcement case lifecycle.
Handles the suspension/warning, cancellation, review and decision workflows,
representations, case and timeline viewing, and regulator notifications.

Every workflow exposes three calls:
- validate?step=N   step gate check, no side effects
- preview           Step 3 notice rendering, no side effects
- (commit)          persists the case change in one transaction
"""
import logging
from contextlib import contextmanager
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..database import get_db
from ..auth import get_current_user
from ..integrations.functions import FunctionInvoker
from ..models.db_models import CaseStatus, CaseType, UserDB
from ..models.workflow_inputs import (
    RiskAssessmentInput, CancellationInput, ReviewInput, DecisionInput, RepresentationsInput,
)
from ..services.enforcement import (
    EnforcementService,
    CaseTransitionError,
    CaseNotFoundError,
    WorkflowValidationError,
    NotificationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/enforcement", tags=["enforcement"])


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_function_invoker() -> FunctionInvoker:
    return FunctionInvoker()


def get_enforcement_service(
    db: Session = Depends(get_db),
    invoker: FunctionInvoker = Depends(get_function_invoker),
) -> EnforcementService:
    return EnforcementService(db, invoker=invoker)


@contextmanager
def enforcement_errors():
    """Translate service errors into HTTP responses."""
    try:
        yield
    except WorkflowValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "step": e.step, "missing": e.missing},
        )
    except CaseNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (CaseTransitionError, NotificationError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StaleDataError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Case was modified by another operator; reload and try again",
        )
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


# =============================================================================
# REQUEST MODELS
# =============================================================================

class SuspensionRequest(BaseModel):
    """Suspension or warning against a provider."""
    employee_id: str = Field(..., description="Provider (employee) ID")
    data: RiskAssessmentInput


class CancellationRequest(BaseModel):
    """Notice of intention to cancel a provider's registration."""
    employee_id: str = Field(..., description="Provider (employee) ID")
    data: CancellationInput


class CustomRecipientRequest(BaseModel):
    name: str
    email: EmailStr
    detail: str = ""


class UpdateEmailRequest(BaseModel):
    email: EmailStr


class CloseNotificationsRequest(BaseModel):
    deferral_reason: Optional[str] = Field(None, description="Why notification is being deferred")


# =============================================================================
# REFERENCE DATA AND DASHBOARD
# =============================================================================

@router.get("/reference-data", response_model=dict)
async def get_reference_data(
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    """Risk categories, cancellation grounds, notification agencies and supervisors."""
    return service.reference_data()


@router.get("/stats", response_model=dict)
async def get_stats(
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    return service.stats()


@router.get("/activity", response_model=List[dict])
async def get_recent_activity(
    limit: int = Query(10, ge=1, le=100),
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    """Most recent timeline entries across all cases."""
    return service.recent_activity(limit)


@router.get("/deadlines", response_model=List[dict])
async def get_upcoming_deadlines(
    days_ahead: int = Query(7, ge=0, le=90),
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    return service.upcoming_deadlines(days_ahead)


# =============================================================================
# CASES
# =============================================================================

@router.get("/cases", response_model=List[dict])
async def list_cases(
    status_filter: Optional[CaseStatus] = Query(None, alias="status"),
    case_type: Optional[CaseType] = Query(None, alias="type"),
    employee_id: Optional[str] = Query(None),
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    """List cases, newest first, each with its timeline."""
    return service.list_cases(status=status_filter, case_type=case_type, employee_id=employee_id)


@router.get("/cases/{case_id}", response_model=dict)
async def get_case(
    case_id: str,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    """Case detail with timeline, issued notices and stage snapshots."""
    with enforcement_errors():
        return service.get_case(case_id)


@router.get("/cases/{case_id}/timeline", response_model=List[dict])
async def get_case_timeline(
    case_id: str,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        return service.get_timeline(case_id)


# =============================================================================
# SUSPENSION / WARNING WORKFLOW
# =============================================================================

@router.post("/workflows/suspension/validate", response_model=dict)
async def validate_suspension(
    request: SuspensionRequest,
    step: int = Query(1, ge=1, le=3),
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        workflow = service.suspension_workflow(request.employee_id, request.data)
        return service.validate_step(workflow, step)


@router.post("/workflows/suspension/preview", response_model=dict)
async def preview_suspension(
    request: SuspensionRequest,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        workflow = service.suspension_workflow(request.employee_id, request.data)
        return workflow.preview().to_dict()


@router.post("/workflows/suspension", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_suspension(
    request: SuspensionRequest,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Issue a suspension notice (Regulation 6) or a warning notice, according
    to the path chosen in the risk assessment.
    """
    with enforcement_errors():
        workflow = service.suspension_workflow(request.employee_id, request.data)
        return service.commit_workflow(workflow, created_by=current_user.display_name)


# =============================================================================
# CANCELLATION WORKFLOW
# =============================================================================

@router.post("/workflows/cancellation/validate", response_model=dict)
async def validate_cancellation(
    request: CancellationRequest,
    step: int = Query(1, ge=1, le=3),
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        workflow = service.cancellation_workflow(request.employee_id, request.data)
        return service.validate_step(workflow, step)


@router.post("/workflows/cancellation/preview", response_model=dict)
async def preview_cancellation(
    request: CancellationRequest,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        workflow = service.cancellation_workflow(request.employee_id, request.data)
        return workflow.preview().to_dict()


@router.post("/workflows/cancellation", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_cancellation(
    request: CancellationRequest,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    """Issue a notice of intention to cancel (Regulation 4)."""
    with enforcement_errors():
        workflow = service.cancellation_workflow(request.employee_id, request.data)
        return service.commit_workflow(workflow, created_by=current_user.display_name)


# =============================================================================
# REVIEW / DECISION / REPRESENTATIONS
# =============================================================================

@router.post("/cases/{case_id}/review/validate", response_model=dict)
async def validate_review(
    case_id: str,
    request: ReviewInput,
    step: int = Query(1, ge=1, le=3),
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        return service.validate_step(service.review_workflow(case_id, request), step)


@router.post("/cases/{case_id}/review/preview", response_model=dict)
async def preview_review(
    case_id: str,
    request: ReviewInput,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        return service.review_workflow(case_id, request).preview().to_dict()


@router.post("/cases/{case_id}/review", response_model=dict)
async def review_suspension(
    case_id: str,
    request: ReviewInput,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    """Extend (Regulation 7(3)) or lift (Regulation 8) an in-effect suspension."""
    with enforcement_errors():
        workflow = service.review_workflow(case_id, request)
        return service.commit_workflow(workflow, created_by=current_user.display_name)


@router.post("/cases/{case_id}/decision/validate", response_model=dict)
async def validate_decision(
    case_id: str,
    request: DecisionInput,
    step: int = Query(1, ge=1, le=3),
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        return service.validate_step(service.decision_workflow(case_id, request), step)


@router.post("/cases/{case_id}/decision/preview", response_model=dict)
async def preview_decision(
    case_id: str,
    request: DecisionInput,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        workflow = service.decision_workflow(case_id, request)
        result = workflow.preview().to_dict()
        result["decision"] = workflow.decision
        return result


@router.post("/cases/{case_id}/decision", response_model=dict)
async def record_decision(
    case_id: str,
    request: DecisionInput,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    """Cancel the registration or withdraw the notice of intention."""
    with enforcement_errors():
        workflow = service.decision_workflow(case_id, request)
        return service.commit_workflow(workflow, created_by=current_user.display_name)


@router.post("/cases/{case_id}/representations", response_model=dict)
async def record_representations(
    case_id: str,
    request: RepresentationsInput,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        return service.record_representations(case_id, request, created_by=current_user.display_name)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

@router.get("/cases/{case_id}/notifications", response_model=dict)
async def get_notifications(
    case_id: str,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        return service.get_notifications(case_id)


@router.post("/cases/{case_id}/notifications/open", response_model=dict)
async def open_notifications(
    case_id: str,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    """Start (or resume) the regulator notification session for a case."""
    with enforcement_errors():
        return service.open_notifications(case_id)


@router.post("/cases/{case_id}/notifications/custom", response_model=dict)
async def add_custom_recipient(
    case_id: str,
    request: CustomRecipientRequest,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        return service.add_notification_recipient(case_id, request.name, request.email, request.detail)


@router.post("/cases/{case_id}/notifications/send-all", response_model=dict)
def send_all_notifications(
    case_id: str,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Notify every pending recipient in turn.

    Plain def: delivery blocks on the function calls and the send delay,
    so FastAPI runs it in the threadpool.
    """
    with enforcement_errors():
        return service.send_all_notifications(case_id, sent_by=current_user.display_name)


@router.post("/cases/{case_id}/notifications/close", response_model=dict)
async def close_notifications(
    case_id: str,
    request: CloseNotificationsRequest,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        return service.close_notifications(case_id, request.deferral_reason)


@router.patch("/cases/{case_id}/notifications/{recipient_id}", response_model=dict)
async def update_recipient_email(
    case_id: str,
    recipient_id: str,
    request: UpdateEmailRequest,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        return service.update_notification_email(case_id, recipient_id, request.email)


@router.post("/cases/{case_id}/notifications/{recipient_id}/send", response_model=dict)
def send_notification(
    case_id: str,
    recipient_id: str,
    service: EnforcementService = Depends(get_enforcement_service),
    current_user: UserDB = Depends(get_current_user),
):
    with enforcement_errors():
        return service.send_notification(case_id, recipient_id, sent_by=current_user.display_name)
