"""
Deadline Engine

Calendar arithmetic for statutory deadlines, notice reference numbers,
and the daily sweep that acts on deadlines which have passed.

Statutory periods (The Childcare (Childminder Agencies) (Cancellation etc.)
Regulations 2014):
- Suspension review: 6 weeks from the notice (Regulation 7)
- Warning representations: 5 working days
- Cancellation representations: 14 days by default (Regulation 4(2)(c))
- Decision takes effect 28 days after the decision notice (Regulation 4(6))
"""
import logging
from datetime import date, datetime, timedelta
from typing import Optional, List, Dict, Any

from dateutil.rrule import rrule, DAILY, MO, TU, WE, TH, FR
from sqlalchemy.orm import Session

from ...models.db_models import (
    EnforcementCaseDB, EnforcementTimelineDB, CaseType, CaseStatus,
    TimelineEventType, TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)


# =============================================================================
# DEADLINE CONFIGURATION
# =============================================================================

SUSPENSION_REVIEW_DAYS = 42            # 6-week review of an in-effect suspension
DEFAULT_COMPLIANCE_DAYS = 14           # Warning notice compliance deadline
WARNING_REPRESENTATIONS_WORKING_DAYS = 5
DEFAULT_REPRESENTATIONS_DAYS = 14      # Notice of intention to cancel
DECISION_AFTER_REPRESENTATIONS_DAYS = 1
CANCELLATION_EFFECT_DAYS = 28          # Decision notice → cancellation takes effect
DEFAULT_EXTENSION_WEEKS = 6

REFERENCE_PREFIXES = ("SUS", "WRN", "CANC-INT", "DEC-CANC", "SUS-LIFT", "SUS-EXT")

REVIEW_OVERDUE_EVENT = "6-Week Review Overdue"
REPRESENTATIONS_CLOSED_EVENT = "Representations Period Closed"


# =============================================================================
# PURE DATE FUNCTIONS
# =============================================================================

def add_days(start: date, days: int) -> date:
    """Shift a date forward by calendar days."""
    return start + timedelta(days=days)


def add_working_days(start: date, days: int) -> date:
    """
    Count forward `days` business days, skipping Saturday and Sunday.

    Zero days returns the start date unchanged, even on a weekend.
    """
    if days <= 0:
        return start
    business_days = rrule(
        DAILY,
        dtstart=datetime.combine(start + timedelta(days=1), datetime.min.time()),
        byweekday=(MO, TU, WE, TH, FR),
        count=days,
    )
    return list(business_days)[-1].date()


def format_date(value: date) -> str:
    """Long en-GB rendering: 19 October 2026."""
    return f"{value.day} {value.strftime('%B %Y')}"


def format_short_date(value: date) -> str:
    """Short en-GB rendering: 19/10/2026."""
    return value.strftime("%d/%m/%Y")


def generate_reference_number(prefix: str, provider_id: str, year: Optional[int] = None) -> str:
    """
    Notice reference: {prefix}/{provider_id}/{year}.

    Two notices of the same kind for one provider in one year share a reference.
    """
    if year is None:
        year = date.today().year
    return f"{prefix}/{provider_id}/{year}"


# =============================================================================
# DEADLINE ENGINE
# =============================================================================

class DeadlineEngine:
    """
    Read-side deadline queries over open enforcement cases.
    """

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    def get_upcoming_deadlines(
        self,
        days_ahead: int = 7,
        today: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """Get open cases with deadlines in the next N days."""
        today = today or date.today()
        future_date = add_days(today, days_ahead)

        cases = self.db.query(EnforcementCaseDB).filter(
            EnforcementCaseDB.status.notin_(list(TERMINAL_STATUSES)),
            EnforcementCaseDB.deadline >= today,
            EnforcementCaseDB.deadline <= future_date,
        ).order_by(EnforcementCaseDB.deadline).all()

        return [
            {
                "case_id": c.id,
                "employee_id": c.employee_id,
                "type": c.type.value,
                "status": c.status.value,
                "deadline": c.deadline.isoformat(),
                "days_remaining": (c.deadline - today).days,
            }
            for c in cases
        ]

    def get_breached_deadlines(self, today: Optional[date] = None) -> List[EnforcementCaseDB]:
        """Get open cases whose deadline has passed."""
        today = today or date.today()

        return self.db.query(EnforcementCaseDB).filter(
            EnforcementCaseDB.status.notin_(list(TERMINAL_STATUSES)),
            EnforcementCaseDB.deadline < today,
        ).all()


# =============================================================================
# DEADLINE SCHEDULER
# =============================================================================

class DeadlineScheduler:
    """
    Daily sweep over passed deadlines.

    - Cancellation cases awaiting representations move to decision_pending.
    - In-effect suspensions past their review date are flagged once per deadline.
    """

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        from .state_machine import CaseStateMachine

        self.db = db_session
        self.engine = DeadlineEngine(db_session)
        self.state_machine = CaseStateMachine()

    def run_daily_deadline_check(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Run the sweep and commit. One failing case does not stop the others."""
        today = today or date.today()
        transitioned = []
        flagged = []
        errors = []

        breached = self.engine.get_breached_deadlines(today)

        for case in breached:
            try:
                if case.type == CaseType.CANCELLATION and case.status in (
                    CaseStatus.PENDING,
                    CaseStatus.REPRESENTATIONS_RECEIVED,
                ):
                    from_status = case.status
                    self.state_machine.transition(
                        self.db,
                        case,
                        CaseStatus.DECISION_PENDING,
                        event=REPRESENTATIONS_CLOSED_EVENT,
                        event_type=TimelineEventType.URGENT,
                        on_date=today,
                    )
                    transitioned.append({
                        "case_id": case.id,
                        "from_status": from_status.value,
                        "to_status": CaseStatus.DECISION_PENDING.value,
                    })

                elif case.type == CaseType.SUSPENSION and case.status == CaseStatus.IN_EFFECT:
                    if self._review_already_flagged(case):
                        continue
                    self.db.add(self.state_machine.timeline_entry(
                        case.id, REVIEW_OVERDUE_EVENT, today, TimelineEventType.URGENT,
                    ))
                    flagged.append({
                        "case_id": case.id,
                        "deadline": case.deadline.isoformat(),
                        "days_overdue": (today - case.deadline).days,
                    })

            except Exception as e:
                logger.error(f"Deadline check failed for case {case.id}: {e}")
                errors.append({
                    "case_id": case.id,
                    "error": str(e),
                })

        self.db.commit()

        logger.info(
            f"Deadline check complete: {len(breached)} checked, "
            f"{len(transitioned)} transitioned, {len(flagged)} flagged, {len(errors)} errors"
        )

        return {
            "run_date": today.isoformat(),
            "cases_checked": len(breached),
            "transitioned": len(transitioned),
            "flagged": len(flagged),
            "errors": len(errors),
            "details": {
                "transitioned": transitioned,
                "flagged": flagged,
                "errors": errors,
            }
        }

    def _review_already_flagged(self, case: EnforcementCaseDB) -> bool:
        """An overdue flag dated on/after the current deadline already exists."""
        return self.db.query(EnforcementTimelineDB).filter(
            EnforcementTimelineDB.case_id == case.id,
            EnforcementTimelineDB.event == REVIEW_OVERDUE_EVENT,
            EnforcementTimelineDB.date > case.deadline,
        ).count() > 0
