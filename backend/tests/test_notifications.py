"""
Tests for the notification dispatcher.

A sent recipient is never re-sent, a failure is recorded without stopping
the batch, and "all sent" tracks every current recipient including
custom ones added after the fixed agencies were notified.
"""
import pytest
from datetime import date
from unittest.mock import MagicMock, patch
from uuid import uuid4

from sqlalchemy.exc import OperationalError

from agency_portal.integrations.functions import FunctionInvocationError
from agency_portal.models.db_models import (
    EnforcementCaseDB, EnforcementNotificationDB, CaseType, CaseStatus, RiskLevel,
    NotificationStatus,
)
from agency_portal.services.enforcement.notifications import (
    NotificationDispatcher, NotificationError, NOTIFICATION_FUNCTION,
    action_label, effective_date, default_recipients,
)
from agency_portal.services.enforcement.case_service import EnforcementService
from agency_portal.services.enforcement.repository import CaseRepository

AGENCY_IDS = ["LA", "HMRC", "DWP", "Ofsted"]


@pytest.fixture
def case(db_session, provider):
    case = EnforcementCaseDB(
        id=str(uuid4()),
        employee_id=provider.id,
        type=CaseType.SUSPENSION,
        status=CaseStatus.IN_EFFECT,
        risk_level=RiskLevel.CRITICAL,
        concern="Unsupervised children",
        risk_categories=["Safeguarding concern"],
        deadline=date(2026, 11, 30),
        date_created=date(2026, 10, 19),
        reference_number=f"SUS/{provider.id}/2026",
    )
    db_session.add(case)
    db_session.commit()
    return case


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def dispatcher(case, provider, invoker, sleep):
    return NotificationDispatcher(case, provider, invoker, sent_by="Admin User", send_delay=0.5, sleep=sleep)


def failing_for(*agencies):
    """invoke side effect that fails for the given agency codes."""
    def invoke(name, body):
        if body["agency"] in agencies:
            raise FunctionInvocationError(f"{body['agency']} mailbox unavailable")
        return {"success": True}
    return invoke


# =============================================================================
# TEST: RECIPIENTS
# =============================================================================

class TestRecipients:

    def test_default_agencies(self):
        recipients = default_recipients("notify@example.com")

        assert [r.id for r in recipients] == AGENCY_IDS
        assert all(r.status == "pending" and r.email == "notify@example.com" for r in recipients)
        assert recipients[2].name == "Universal Credit (DWP)"

    def test_custom_recipient_ids_increment(self, dispatcher):
        first = dispatcher.add_custom_recipient("School Nurse", "nurse@example.com")
        second = dispatcher.add_custom_recipient("Health Visitor", "hv@example.com")

        assert (first.id, second.id) == ("custom-1", "custom-2")
        assert first.custom and first.status == "pending"

    def test_custom_recipient_needs_name_and_email(self, dispatcher):
        with pytest.raises(NotificationError):
            dispatcher.add_custom_recipient("  ", "x@example.com")

    def test_unknown_recipient(self, dispatcher):
        with pytest.raises(NotificationError):
            dispatcher.send("nobody")

    def test_update_email_before_sending(self, dispatcher):
        dispatcher.update_email("HMRC", "tfc@hmrc.example")

        assert dispatcher.get_recipient("HMRC").email == "tfc@hmrc.example"

    def test_update_email_refused_after_sending(self, dispatcher):
        dispatcher.send("LA")

        with pytest.raises(NotificationError):
            dispatcher.update_email("LA", "other@example.com")


# =============================================================================
# TEST: SENDING
# =============================================================================

class TestSend:

    def test_payload(self, dispatcher, invoker, case, provider):
        dispatcher.send("Ofsted")

        name, body = invoker.invoke.call_args[0]
        assert name == NOTIFICATION_FUNCTION
        assert body["caseId"] == case.id
        assert body["agency"] == "Ofsted"
        assert body["agencyName"] == "Ofsted"
        assert body["sentBy"] == "Admin User"
        assert body["actionType"] == "Suspension"
        assert body["effectiveDate"] == "19 October 2026"
        assert body["concerns"] == ["Safeguarding concern"]
        assert body["caseReference"] == case.reference_number
        assert body["provider"]["name"] == "Sarah Jenkins"
        assert body["provider"]["registrationRef"] == "RK-2024-0117"

    def test_success_marks_sent(self, dispatcher):
        recipient = dispatcher.send("LA")

        assert recipient.status == "sent"
        assert recipient.sent_at is not None
        assert recipient.error is None

    def test_sent_recipient_is_not_resent(self, dispatcher, invoker):
        dispatcher.send("LA")

        with pytest.raises(NotificationError):
            dispatcher.send("LA")
        assert invoker.invoke.call_count == 1

    def test_failure_is_recorded_not_raised(self, dispatcher, invoker):
        invoker.invoke.side_effect = FunctionInvocationError("Edge Function returned a non-2xx status code")

        recipient = dispatcher.send("HMRC")

        assert recipient.status == "error"
        assert recipient.error == "Edge Function returned a non-2xx status code"
        assert recipient.sent_at is None

    def test_error_recipient_can_be_retried(self, dispatcher, invoker):
        invoker.invoke.side_effect = FunctionInvocationError("timeout")
        dispatcher.send("HMRC")

        invoker.invoke.side_effect = None
        recipient = dispatcher.send("HMRC")

        assert recipient.status == "sent"
        assert recipient.error is None


class TestSendAll:

    def test_sends_every_pending_recipient_in_order(self, dispatcher, invoker, sleep):
        summary = dispatcher.send_all()

        sent_to = [c[0][1]["agency"] for c in invoker.invoke.call_args_list]
        assert sent_to == AGENCY_IDS
        assert summary == {"attempted": 4, "sent": AGENCY_IDS, "failed": [], "all_sent": True}
        assert dispatcher.all_sent

    def test_delay_between_sends_only(self, dispatcher, sleep):
        dispatcher.send_all()

        assert sleep.call_count == 3
        sleep.assert_called_with(0.5)

    def test_continues_after_failure(self, dispatcher, invoker):
        invoker.invoke.side_effect = failing_for("HMRC")

        summary = dispatcher.send_all()

        assert summary["sent"] == ["LA", "DWP", "Ofsted"]
        assert summary["failed"] == [{"id": "HMRC", "error": "HMRC mailbox unavailable"}]
        assert summary["all_sent"] is False
        assert dispatcher.get_recipient("HMRC").status == "error"

    def test_skips_already_sent_and_errored(self, dispatcher, invoker):
        dispatcher.send("LA")
        invoker.invoke.side_effect = failing_for("HMRC")
        dispatcher.send("HMRC")
        invoker.invoke.reset_mock()

        summary = dispatcher.send_all()

        assert summary["attempted"] == 2
        assert [c[0][1]["agency"] for c in invoker.invoke.call_args_list] == ["DWP", "Ofsted"]
        assert dispatcher.get_recipient("HMRC").status == "error"

    def test_custom_recipient_resets_all_sent(self, dispatcher):
        dispatcher.send_all()
        assert dispatcher.all_sent

        dispatcher.add_custom_recipient("School Nurse", "nurse@example.com")
        assert not dispatcher.all_sent

        dispatcher.send("custom-1")
        assert dispatcher.all_sent


class TestClose:

    def test_close_when_complete(self, dispatcher):
        dispatcher.send_all()

        assert dispatcher.close() == {"all_sent": True, "deferred": False, "deferral_reason": None}

    def test_close_with_outstanding_is_deferred(self, dispatcher):
        dispatcher.send("LA")

        result = dispatcher.close("DWP mailbox down, retry tomorrow")

        assert result == {
            "all_sent": False,
            "deferred": True,
            "deferral_reason": "DWP mailbox down, retry tomorrow",
        }


# =============================================================================
# TEST: ACTION LABELS
# =============================================================================

class TestActionLabel:

    @pytest.mark.parametrize("case_type,status,label", [
        (CaseType.SUSPENSION, CaseStatus.IN_EFFECT, "Suspension"),
        (CaseType.SUSPENSION, CaseStatus.LIFTED, "Suspension Lifted"),
        (CaseType.WARNING, CaseStatus.IN_EFFECT, "Warning Notice"),
        (CaseType.CANCELLATION, CaseStatus.PENDING, "Notice of Intention to Cancel"),
        (CaseType.CANCELLATION, CaseStatus.CANCELLED, "Registration Cancelled"),
        (CaseType.CANCELLATION, CaseStatus.CLOSED, "Notice Withdrawn"),
    ])
    def test_labels(self, case_type, status, label):
        assert action_label(EnforcementCaseDB(type=case_type, status=status)) == label

    def test_cancellation_takes_effect_28_days_after_decision(self):
        case = EnforcementCaseDB(
            type=CaseType.CANCELLATION, status=CaseStatus.CANCELLED,
            date_created=date(2026, 9, 1), date_closed=date(2026, 10, 19),
        )

        assert effective_date(case) == date(2026, 11, 16)


# =============================================================================
# TEST: PERSISTENCE
# =============================================================================

class TestPersistence:

    def test_open_persists_fixed_agencies(self, db_session, case, provider, invoker):
        repo = CaseRepository(db_session)

        NotificationDispatcher.open(case, provider, invoker, repo)
        db_session.commit()

        rows = repo.get_notifications(case.id)
        assert sorted(r.agency for r in rows) == sorted(AGENCY_IDS)
        assert all(r.status == NotificationStatus.PENDING for r in rows)

    def test_session_resumes_with_recorded_state(self, db_session, case, provider, invoker):
        repo = CaseRepository(db_session)
        invoker.invoke.side_effect = failing_for("DWP")

        first = NotificationDispatcher.open(case, provider, invoker, repo, sent_by="Jane Director", sleep=MagicMock())
        first.add_custom_recipient("School Nurse", "nurse@example.com")
        first.send_all()
        db_session.commit()

        resumed = NotificationDispatcher.open(case, provider, invoker, repo)

        assert len(resumed.recipients) == 5
        assert resumed.get_recipient("LA").status == "sent"
        assert resumed.get_recipient("DWP").status == "error"
        assert resumed.get_recipient("DWP").error == "DWP mailbox unavailable"
        assert resumed.get_recipient("custom-1").custom
        assert not resumed.all_sent

        row = db_session.query(EnforcementNotificationDB).filter(
            EnforcementNotificationDB.case_id == case.id,
            EnforcementNotificationDB.agency == "LA",
        ).one()
        assert row.sent_by == "Jane Director"
        assert row.sent_at is not None

    def test_one_row_per_agency(self, db_session, case, provider, invoker):
        repo = CaseRepository(db_session)
        dispatcher = NotificationDispatcher.open(case, provider, invoker, repo)
        dispatcher.update_email("LA", "safeguarding@bristol.example")
        dispatcher.send("LA")
        db_session.commit()

        rows = db_session.query(EnforcementNotificationDB).filter(
            EnforcementNotificationDB.agency == "LA",
        ).all()
        assert len(rows) == 1
        assert rows[0].agency_email == "safeguarding@bristol.example"
        assert rows[0].status == NotificationStatus.SENT


# =============================================================================
# TEST: DURABLE SENDS
# =============================================================================

class TestDurableSends:

    def test_commit_after_every_write(self, db_session, case, provider, invoker):
        commit = MagicMock()
        dispatcher = NotificationDispatcher(
            case, provider, invoker, repo=CaseRepository(db_session), sleep=MagicMock(), commit=commit,
        )

        dispatcher.send_all()

        assert commit.call_count == 4

    def test_failed_write_keeps_earlier_sends(self, db_session, case, invoker):
        service = EnforcementService(db_session, invoker=invoker)
        service.open_notifications(case.id)
        real_commit = service._commit
        commits = []

        def commit_until_third():
            commits.append(1)
            if len(commits) == 3:
                db_session.rollback()
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            real_commit()

        with patch.object(service, "_commit", side_effect=commit_until_third):
            with pytest.raises(OperationalError):
                service.send_all_notifications(case.id, send_delay=0)

        statuses = {r.agency: r.status for r in CaseRepository(db_session).get_notifications(case.id)}
        assert statuses == {
            "LA": NotificationStatus.SENT,
            "HMRC": NotificationStatus.SENT,
            "DWP": NotificationStatus.PENDING,
            "Ofsted": NotificationStatus.PENDING,
        }

        invoker.invoke.reset_mock()
        summary = service.send_all_notifications(case.id, send_delay=0)["summary"]

        assert summary["sent"] == ["DWP", "Ofsted"]
        assert [c[0][1]["agency"] for c in invoker.invoke.call_args_list] == ["DWP", "Ofsted"]
