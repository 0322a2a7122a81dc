"""
Case State Machine

Deterministic status machine for enforcement cases.
Transitions are one-directional per case type: no case returns to an
earlier statutory stage. Every transition appends a timeline entry.

    suspension:    in_effect → in_effect (extension) | lifted
    warning:       in_effect (no further transitions)
    cancellation:  pending → representations_received → decision_pending
                   → cancelled | closed  (stages may be skipped, never revisited)
"""
import logging
from datetime import date
from typing import Optional, List, Dict, Any, Tuple
from uuid import uuid4

from ...models.db_models import (
    CaseType, CaseStatus, TimelineEventType, TERMINAL_STATUSES,
    EnforcementCaseDB, EnforcementTimelineDB,
)

logger = logging.getLogger(__name__)


class CaseTransitionError(Exception):
    """Raised when a status transition is not allowed for the case type."""
    pass


# =============================================================================
# STATE CONFIGURATION
# =============================================================================

STATE_CONFIG: Dict[CaseType, Dict[CaseStatus, Dict[str, Any]]] = {
    CaseType.SUSPENSION: {
        CaseStatus.IN_EFFECT: {
            "description": "Suspension in force, review due within 6 weeks",
            "allowed_transitions": [CaseStatus.IN_EFFECT, CaseStatus.LIFTED],
            "regulation": "Regulation 6",
        },
        CaseStatus.LIFTED: {
            "description": "Suspension lifted",
            "allowed_transitions": [],  # Terminal state
            "regulation": "Regulation 8",
        },
    },
    CaseType.WARNING: {
        CaseStatus.IN_EFFECT: {
            "description": "Warning notice issued, compliance deadline running",
            "allowed_transitions": [],
            "regulation": "Section 10",
        },
    },
    CaseType.CANCELLATION: {
        CaseStatus.PENDING: {
            "description": "Notice of intention issued, representations period running",
            "allowed_transitions": [
                CaseStatus.REPRESENTATIONS_RECEIVED,
                CaseStatus.DECISION_PENDING,
                CaseStatus.CANCELLED,
                CaseStatus.CLOSED,
            ],
            "regulation": "Regulation 4(2)",
        },
        CaseStatus.REPRESENTATIONS_RECEIVED: {
            "description": "Representations received, awaiting consideration",
            "allowed_transitions": [
                CaseStatus.DECISION_PENDING,
                CaseStatus.CANCELLED,
                CaseStatus.CLOSED,
            ],
            "regulation": "Regulation 4(3)",
        },
        CaseStatus.DECISION_PENDING: {
            "description": "Representations period closed, decision due",
            "allowed_transitions": [CaseStatus.CANCELLED, CaseStatus.CLOSED],
            "regulation": "Regulation 4(4)",
        },
        CaseStatus.CANCELLED: {
            "description": "Registration cancelled",
            "allowed_transitions": [],  # Terminal state
            "regulation": "Regulation 4(6)",
        },
        CaseStatus.CLOSED: {
            "description": "Notice withdrawn",
            "allowed_transitions": [],  # Terminal state
            "regulation": "Regulation 4(4)",
        },
    },
}


# =============================================================================
# STATE MACHINE
# =============================================================================

class CaseStateMachine:
    """
    Status machine for enforcement cases.

    Holds no session of its own; callers pass the session and own the commit.
    """

    def get_state_config(self, case_type: CaseType, status: CaseStatus) -> Dict[str, Any]:
        """Get configuration for a status of a case type."""
        return STATE_CONFIG.get(case_type, {}).get(status, {})

    def can_transition(
        self,
        case_type: CaseType,
        from_status: CaseStatus,
        to_status: CaseStatus,
    ) -> Tuple[bool, str]:
        """
        Check if a status transition is allowed.

        Returns (allowed, reason)
        """
        config = self.get_state_config(case_type, from_status)
        if to_status in config.get("allowed_transitions", []):
            return True, "Transition allowed"

        return False, (
            f"Cannot transition {case_type.value} case from {from_status.value} to {to_status.value}"
        )

    def transition(
        self,
        db,
        case: EnforcementCaseDB,
        to_status: CaseStatus,
        event: str,
        event_type: TimelineEventType = TimelineEventType.COMPLETED,
        created_by: Optional[str] = None,
        on_date: Optional[date] = None,
    ) -> str:
        """
        Move a case to a new status and record the timeline entry.

        Entering a terminal status stamps date_closed. Nothing is committed here.

        Raises:
            CaseTransitionError: If the transition is not allowed
        """
        on_date = on_date or date.today()
        from_status = case.status

        allowed, reason = self.can_transition(case.type, from_status, to_status)
        if not allowed:
            raise CaseTransitionError(reason)

        case.status = to_status
        if to_status in TERMINAL_STATUSES and case.date_closed is None:
            case.date_closed = on_date

        db.add(self.timeline_entry(case.id, event, on_date, event_type, created_by))

        logger.info(f"Case {case.id} ({case.type.value}) {from_status.value} -> {to_status.value}: {event}")
        return f"Transitioned to {to_status.value}"

    @staticmethod
    def timeline_entry(
        case_id: str,
        event: str,
        on_date: date,
        event_type: TimelineEventType,
        created_by: Optional[str] = None,
    ) -> EnforcementTimelineDB:
        """Build an (unsaved) timeline row."""
        return EnforcementTimelineDB(
            id=str(uuid4()),
            case_id=case_id,
            event=event,
            date=on_date,
            type=event_type,
            created_by=created_by,
        )

    def is_terminal_state(self, status: CaseStatus) -> bool:
        """Check if a status closes the case."""
        return status in TERMINAL_STATUSES

    def get_next_states(self, case_type: CaseType, status: CaseStatus) -> List[CaseStatus]:
        """Get possible next statuses from the current status."""
        return self.get_state_config(case_type, status).get("allowed_transitions", [])
