"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Daily deadline sweep and upcoming deadline listing.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Header, Query
from sqlalchemy.orm import Session

from .. import config
from ..database import get_db
from ..services.enforcement import DeadlineEngine, DeadlineScheduler


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != config.INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/deadline-check", response_model=dict)
async def run_deadline_check(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Run daily deadline sweep.

    System-automatic - no user confirmation required.
    Closes expired representations periods and flags overdue suspension reviews.
    """
    scheduler = DeadlineScheduler(db)

    result = scheduler.run_daily_deadline_check()

    return result


@router.get("/deadlines", response_model=List[dict])
async def get_upcoming_deadlines(
    days_ahead: int = Query(7, ge=0, le=90),
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Open cases with a deadline in the next N days."""
    engine = DeadlineEngine(db)

    return engine.get_upcoming_deadlines(days_ahead)
