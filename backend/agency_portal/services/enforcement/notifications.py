"""
Notification Dispatch

Tells the external regulators (Local Authority, HMRC, DWP, Ofsted) and any
ad-hoc recipients about a completed enforcement action.

- Each recipient is independently pending / sent / error.
- A sent recipient is never re-sent; an error recipient may be retried.
- Send-all is strictly sequential with a fixed delay between sends and does
  not stop at the first failure.
- "All sent" holds only while every current recipient is sent.

Recipient state is written to enforcement_notifications after every change
so a dispatch session can continue across requests. With a commit callback
each write is made durable before the next recipient is contacted.
"""
import logging
import re
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, List, Dict, Any, Callable

from ... import config
from ...integrations.functions import FunctionInvoker, FunctionInvocationError
from ...models.db_models import (
    EnforcementCaseDB, EnforcementNotificationDB, EmployeeDB,
    CaseType, CaseStatus, NotificationStatus,
)
from .deadlines import add_days, format_date, CANCELLATION_EFFECT_DAYS
from .repository import CaseRepository

logger = logging.getLogger(__name__)

NOTIFICATION_FUNCTION = "send-enforcement-notification"

NOTIFICATION_AGENCIES = [
    {"id": "LA", "name": "Local Authority", "detail": "Safeguarding Lead", "required": True},
    {"id": "HMRC", "name": "HMRC", "detail": "Tax-Free Childcare Team", "required": True},
    {"id": "DWP", "name": "Universal Credit (DWP)", "detail": "Verification Team", "required": True},
    {"id": "Ofsted", "name": "Ofsted", "detail": "Information Sharing", "required": True},
]

RECIPIENT_PENDING = "pending"
RECIPIENT_SENT = "sent"
RECIPIENT_ERROR = "error"

# Recipient status <-> persisted row status
_ROW_STATUS = {
    RECIPIENT_PENDING: NotificationStatus.PENDING,
    RECIPIENT_SENT: NotificationStatus.SENT,
    RECIPIENT_ERROR: NotificationStatus.FAILED,
}
_RECIPIENT_STATUS = {v: k for k, v in _ROW_STATUS.items()}

_CUSTOM_ID = re.compile(r"^custom-(\d+)$")


class NotificationError(Exception):
    """Raised when a dispatch operation is refused."""
    pass


@dataclass
class Recipient:
    id: str
    name: str
    detail: str
    email: str
    status: str = RECIPIENT_PENDING
    sent_at: Optional[datetime] = None
    error: Optional[str] = None
    custom: bool = False

    @classmethod
    def from_row(cls, row: EnforcementNotificationDB) -> "Recipient":
        return cls(
            id=row.agency,
            name=row.agency_name,
            detail=row.agency_detail or "",
            email=row.agency_email,
            status=_RECIPIENT_STATUS[row.status],
            sent_at=row.sent_at,
            error=row.error_message,
            custom=bool(_CUSTOM_ID.match(row.agency)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "detail": self.detail,
            "email": self.email,
            "status": self.status,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "error": self.error,
            "custom": self.custom,
        }


def default_recipients(email: Optional[str] = None) -> List[Recipient]:
    email = email or config.NOTIFICATION_DEFAULT_EMAIL
    return [
        Recipient(id=a["id"], name=a["name"], detail=a["detail"], email=email)
        for a in NOTIFICATION_AGENCIES
    ]


def action_label(case: EnforcementCaseDB) -> str:
    """Human label for the action being notified."""
    if case.type == CaseType.SUSPENSION:
        return "Suspension Lifted" if case.status == CaseStatus.LIFTED else "Suspension"
    if case.type == CaseType.WARNING:
        return "Warning Notice"
    if case.status == CaseStatus.CANCELLED:
        return "Registration Cancelled"
    if case.status == CaseStatus.CLOSED:
        return "Notice Withdrawn"
    return "Notice of Intention to Cancel"


def effective_date(case: EnforcementCaseDB) -> date:
    """Date the notified action takes (or took) effect."""
    if case.status == CaseStatus.CANCELLED and case.date_closed:
        return add_days(case.date_closed, CANCELLATION_EFFECT_DAYS)
    return case.date_closed or case.date_created


class NotificationDispatcher:
    """
    Dispatch session for one case.

    Without a repository the session is in-memory only.
    """

    def __init__(
        self,
        case: EnforcementCaseDB,
        provider: EmployeeDB,
        invoker: FunctionInvoker,
        repo: Optional[CaseRepository] = None,
        recipients: Optional[List[Recipient]] = None,
        action_type: Optional[str] = None,
        sent_by: Optional[str] = None,
        send_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        commit: Optional[Callable[[], None]] = None,
    ):
        self.case = case
        self.provider = provider
        self.invoker = invoker
        self.repo = repo
        self.commit = commit
        self.recipients = recipients if recipients is not None else default_recipients()
        self.action_type = action_type or action_label(case)
        self.sent_by = sent_by or config.NOTIFICATION_SENT_BY
        self.send_delay = config.NOTIFICATION_SEND_DELAY_S if send_delay is None else send_delay
        self.sleep = sleep

    @classmethod
    def open(
        cls,
        case: EnforcementCaseDB,
        provider: EmployeeDB,
        invoker: FunctionInvoker,
        repo: CaseRepository,
        **kwargs,
    ) -> "NotificationDispatcher":
        """Resume the persisted session for a case, or start one with the fixed agencies."""
        rows = repo.get_notifications(case.id)
        if rows:
            return cls(case, provider, invoker, repo=repo,
                       recipients=[Recipient.from_row(r) for r in rows], **kwargs)

        dispatcher = cls(case, provider, invoker, repo=repo, **kwargs)
        for recipient in dispatcher.recipients:
            dispatcher._persist(recipient)
        return dispatcher

    # =========================================================================
    # RECIPIENTS
    # =========================================================================

    def get_recipient(self, recipient_id: str) -> Recipient:
        for recipient in self.recipients:
            if recipient.id == recipient_id:
                return recipient
        raise NotificationError(f"Unknown recipient {recipient_id}")

    def add_custom_recipient(self, name: str, email: str, detail: str = "") -> Recipient:
        if not name.strip() or not email.strip():
            raise NotificationError("Custom recipient needs a name and an email address")

        numbers = [
            int(m.group(1)) for m in (_CUSTOM_ID.match(r.id) for r in self.recipients) if m
        ]
        recipient = Recipient(
            id=f"custom-{max(numbers, default=0) + 1}",
            name=name.strip(),
            detail=detail,
            email=email.strip(),
            custom=True,
        )
        self.recipients.append(recipient)
        self._persist(recipient)
        return recipient

    def update_email(self, recipient_id: str, email: str) -> Recipient:
        recipient = self.get_recipient(recipient_id)
        if recipient.status == RECIPIENT_SENT:
            raise NotificationError(f"{recipient.name} has already been notified")
        recipient.email = email
        self._persist(recipient)
        return recipient

    @property
    def all_sent(self) -> bool:
        return all(r.status == RECIPIENT_SENT for r in self.recipients)

    # =========================================================================
    # SENDING
    # =========================================================================

    def build_payload(self, recipient: Recipient) -> Dict[str, Any]:
        provider = self.provider
        return {
            "caseId": self.case.id,
            "agency": recipient.id,
            "agencyName": recipient.name,
            "agencyDetail": recipient.detail,
            "agencyEmail": recipient.email,
            "sentBy": self.sent_by,
            "provider": {
                "id": provider.id,
                "name": provider.full_name,
                "registrationRef": provider.registration_ref,
                "address": provider.address_dict(),
            },
            "actionType": self.action_type,
            "effectiveDate": format_date(effective_date(self.case)),
            "concerns": list(self.case.risk_categories or []),
            "caseReference": self.case.reference_number,
        }

    def send(self, recipient_id: str) -> Recipient:
        """
        Send to one recipient.

        A delivery failure is recorded on the recipient, not raised.

        Raises:
            NotificationError: If the recipient was already notified
        """
        recipient = self.get_recipient(recipient_id)
        if recipient.status == RECIPIENT_SENT:
            raise NotificationError(f"{recipient.name} has already been notified")

        try:
            self.invoker.invoke(NOTIFICATION_FUNCTION, self.build_payload(recipient))
        except FunctionInvocationError as e:
            logger.error(f"Notification to {recipient.name} for case {self.case.id} failed: {e}")
            recipient.status = RECIPIENT_ERROR
            recipient.error = str(e)
        else:
            logger.info(f"Notification sent to {recipient.name} ({recipient.email}) for case {self.case.id}")
            recipient.status = RECIPIENT_SENT
            recipient.sent_at = datetime.utcnow()
            recipient.error = None

        self._persist(recipient)
        return recipient

    def send_all(self) -> Dict[str, Any]:
        """Send to every pending recipient, one at a time."""
        pending = [r for r in self.recipients if r.status == RECIPIENT_PENDING]
        sent = []
        failed = []

        for i, recipient in enumerate(pending):
            if i > 0 and self.send_delay:
                self.sleep(self.send_delay)
            result = self.send(recipient.id)
            if result.status == RECIPIENT_SENT:
                sent.append(result.id)
            else:
                failed.append({"id": result.id, "error": result.error})

        logger.info(
            f"Send-all for case {self.case.id}: {len(sent)} sent, {len(failed)} failed, "
            f"{sum(r.status == RECIPIENT_SENT for r in self.recipients)} of {len(self.recipients)} notified"
        )

        return {
            "attempted": len(pending),
            "sent": sent,
            "failed": failed,
            "all_sent": self.all_sent,
        }

    def close(self, deferral_reason: Optional[str] = None) -> Dict[str, Any]:
        """End the session. Closing before everyone is notified is allowed but flagged."""
        deferred = not self.all_sent
        if deferred:
            outstanding = [r.id for r in self.recipients if r.status != RECIPIENT_SENT]
            logger.warning(
                f"Notifications for case {self.case.id} closed with {len(outstanding)} outstanding "
                f"({', '.join(outstanding)}); reason: {deferral_reason or 'none given'}"
            )
        return {
            "all_sent": self.all_sent,
            "deferred": deferred,
            "deferral_reason": deferral_reason if deferred else None,
        }

    def _persist(self, recipient: Recipient) -> None:
        if self.repo is None:
            return
        self.repo.upsert_notification(
            case_id=self.case.id,
            agency=recipient.id,
            agency_name=recipient.name,
            agency_detail=recipient.detail,
            agency_email=recipient.email,
            status=_ROW_STATUS[recipient.status],
            error_message=recipient.error,
            sent_at=recipient.sent_at,
            sent_by=self.sent_by if recipient.status == RECIPIENT_SENT else None,
        )
        if self.commit is not None:
            self.commit()
