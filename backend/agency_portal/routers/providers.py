"""
Provider API Routes

Registered childminders with their enforcement status
(active, suspended, cancellation_pending, terminated).
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user
from ..models.db_models import UserDB
from ..services.enforcement import EnforcementService, CaseNotFoundError


router = APIRouter(prefix="/providers", tags=["providers"])


@router.get("", response_model=List[dict])
async def list_providers(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """List providers with their derived enforcement status."""
    return EnforcementService(db).list_providers()


@router.get("/{employee_id}", response_model=dict)
async def get_provider(
    employee_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Provider detail with all enforcement cases."""
    try:
        return EnforcementService(db).get_provider(employee_id)
    except CaseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
