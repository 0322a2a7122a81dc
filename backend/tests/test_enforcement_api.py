"""
API tests for the enforcement, provider, auth and scheduler routers.

Test Coverage:
1. Authentication (login, token, unauthenticated access)
2. Suspension lifecycle through the HTTP surface
3. Cancellation lifecycle with representations, decision and notifications
4. Error mapping (422 / 404 / 409)
5. Internal scheduler key check
"""
import asyncio

import pytest

from agency_portal import config


def suspension_payload(provider, supervisor, **path_overrides):
    path = {
        "reasonableness": "no",
        "confirm_belief": True,
        "confirm_immediate": True,
        "confirm_appeal": True,
        "confirm_review": True,
        "confirm_notify": True,
        "supervisor_id": supervisor.id,
    }
    path.update(path_overrides)
    return {
        "employee_id": provider.id,
        "data": {
            "concern": "Unsupervised children",
            "risk_detail": "Two children were found alone in the rear garden",
            "risk_categories": ["Safeguarding concern"],
            "path": path,
        },
    }


def cancellation_payload(provider, supervisor):
    return {
        "employee_id": provider.id,
        "data": {
            "grounds": ["conditions"],
            "evidence_summary": "Ratio condition breached on three inspections",
            "has_evidence": True,
            "rep_period": 14,
            "confirm_reps": True,
            "confirm_delay": True,
            "supervisor_id": supervisor.id,
        },
    }


def provider_status(client, auth_headers, provider):
    response = client.get(f"/providers/{provider.id}", headers=auth_headers)
    assert response.status_code == 200
    return response.json()["enforcement_status"]


# =============================================================================
# TEST: AUTH
# =============================================================================

class TestAuth:

    def test_login_and_me(self, client, operator):
        response = client.post("/auth/login", json={
            "email": "operator@readykids.co.uk",
            "password": "operator-password",
        })
        assert response.status_code == 200
        token = response.json()["access_token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["display_name"] == "Olivia Operator (Compliance Officer)"
        assert me.json()["role"] == "operator"

    def test_wrong_password(self, client, operator):
        response = client.post("/auth/login", json={
            "email": "operator@readykids.co.uk",
            "password": "not-the-password",
        })

        assert response.status_code == 401

    def test_enforcement_requires_token(self, client):
        response = client.get("/enforcement/stats")

        assert response.status_code in (401, 403)

    def test_invalid_token(self, client):
        response = client.get("/enforcement/stats", headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 401

    def test_operator_cannot_create_users(self, client, auth_headers):
        response = client.post("/auth/users", json={
            "email": "new@readykids.co.uk", "username": "newuser", "password": "long-enough",
        }, headers=auth_headers)

        assert response.status_code == 403

    def test_admin_creates_supervisor(self, client, db_session):
        from agency_portal.auth import issue_token, hash_password
        from agency_portal.models.db_models import UserDB

        admin = UserDB(id="admin-1", email="admin@readykids.co.uk", username="admin",
                       password_hash=hash_password("admin-password"), role="admin")
        db_session.add(admin)
        db_session.commit()
        headers = {"Authorization": f"Bearer {issue_token(admin)}"}

        response = client.post("/auth/users", json={
            "email": "robert.chief@readykids.co.uk", "username": "rchief", "password": "long-enough",
            "full_name": "Robert Chief", "job_title": "Agency Manager", "role": "supervisor",
        }, headers=headers)

        assert response.status_code == 201
        assert response.json()["display_name"] == "Robert Chief (Agency Manager)"

        short = client.post("/auth/users", json={
            "email": "x@readykids.co.uk", "username": "x", "password": "short",
        }, headers=headers)
        assert short.status_code == 422

    def test_token_refused_after_role_change(self, client, db_session, auth_headers, operator):
        assert client.get("/auth/me", headers=auth_headers).status_code == 200

        operator.role = "supervisor"
        db_session.commit()

        assert client.get("/auth/me", headers=auth_headers).status_code == 401

    def test_token_carries_signing_name(self, operator):
        from agency_portal.auth import issue_token, read_token

        claims = read_token(issue_token(operator))

        assert claims["sub"] == operator.id
        assert claims["role"] == "operator"
        assert claims["name"] == "Olivia Operator (Compliance Officer)"

    def test_supervisors_listed(self, client, auth_headers, supervisor):
        response = client.get("/auth/supervisors", headers=auth_headers)

        assert response.status_code == 200
        assert [s["display_name"] for s in response.json()] == ["Jane Director (Head of Safeguarding)"]

    def test_listed_supervisors_match_approvers(self, db_session, supervisor, operator):
        from agency_portal.models.db_models import UserDB
        from agency_portal.services.enforcement.repository import CaseRepository

        admin = UserDB(id="admin-1", email="admin@readykids.co.uk", username="admin",
                       password_hash="not-used", role="admin")
        db_session.add(admin)
        db_session.commit()
        repo = CaseRepository(db_session)

        listed = {u.id for u in repo.list_supervisors()}
        accepted = {u.id for u in (supervisor, operator, admin) if repo.get_supervisor(u.id)}

        assert listed == accepted == {supervisor.id}


# =============================================================================
# TEST: REFERENCE DATA AND DASHBOARD
# =============================================================================

class TestDashboard:

    def test_reference_data(self, client, auth_headers, supervisor):
        body = client.get("/enforcement/reference-data", headers=auth_headers).json()

        assert "Safeguarding concern" in body["risk_categories"]
        assert [g["id"] for g in body["cancellation_grounds"]][0] == "mandatory_dq"
        assert [a["id"] for a in body["notification_agencies"]] == ["LA", "HMRC", "DWP", "Ofsted"]
        assert body["supervisors"][0]["id"] == supervisor.id

    def test_empty_stats(self, client, auth_headers, provider):
        body = client.get("/enforcement/stats", headers=auth_headers).json()

        assert body == {
            "active_suspensions": 0,
            "pending_decisions": 0,
            "representations_received": 0,
            "active_warnings": 0,
            "total_providers": 1,
        }

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"


# =============================================================================
# TEST: SUSPENSION LIFECYCLE
# =============================================================================

class TestSuspensionApi:

    def test_validate_step(self, client, auth_headers, provider, supervisor):
        payload = suspension_payload(provider, supervisor, confirm_notify=False)

        response = client.post("/enforcement/workflows/suspension/validate?step=2",
                               json=payload, headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"step": 2, "valid": False, "missing": ["confirm_notify"]}

    def test_preview_has_no_side_effects(self, client, auth_headers, provider, supervisor):
        response = client.post("/enforcement/workflows/suspension/preview",
                               json=suspension_payload(provider, supervisor), headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["notice_type"] == "SUS"
        assert "NOTICE OF SUSPENSION OF REGISTRATION" in response.json()["content"]
        assert client.get("/enforcement/cases", headers=auth_headers).json() == []

    def test_incomplete_commit_returns_step_and_fields(self, client, auth_headers, provider, supervisor):
        payload = suspension_payload(provider, supervisor)
        payload["data"]["risk_detail"] = ""

        response = client.post("/enforcement/workflows/suspension", json=payload, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["detail"]["step"] == 1
        assert response.json()["detail"]["missing"] == ["risk_detail"]

    def test_unknown_category_rejected(self, client, auth_headers, provider, supervisor):
        payload = suspension_payload(provider, supervisor)
        payload["data"]["risk_categories"] = ["Made up"]

        response = client.post("/enforcement/workflows/suspension", json=payload, headers=auth_headers)

        assert response.status_code == 422

    def test_unknown_provider(self, client, auth_headers, supervisor, provider):
        payload = suspension_payload(provider, supervisor)
        payload["employee_id"] = "missing"

        response = client.post("/enforcement/workflows/suspension", json=payload, headers=auth_headers)

        assert response.status_code == 404

    def test_suspend_then_lift(self, client, auth_headers, provider, supervisor):
        created = client.post("/enforcement/workflows/suspension",
                              json=suspension_payload(provider, supervisor), headers=auth_headers)
        assert created.status_code == 201
        case = created.json()
        assert case["status"] == "in_effect"
        assert len(case["timeline"]) == 3
        assert provider_status(client, auth_headers, provider) == "suspended"
        assert client.get("/enforcement/stats", headers=auth_headers).json()["active_suspensions"] == 1

        review = {"investigation_status": "Concerns resolved", "review_outcome": "lift",
                  "supervisor_id": supervisor.id}
        lifted = client.post(f"/enforcement/cases/{case['id']}/review", json=review, headers=auth_headers)

        assert lifted.status_code == 200
        assert lifted.json()["status"] == "lifted"
        assert lifted.json()["date_closed"] is not None
        assert provider_status(client, auth_headers, provider) == "active"

        again = client.post(f"/enforcement/cases/{case['id']}/review", json=review, headers=auth_headers)
        assert again.status_code == 409

    def test_warning_path(self, client, auth_headers, provider, supervisor):
        payload = suspension_payload(provider, supervisor)
        payload["data"]["path"] = {
            "reasonableness": "yes",
            "warning_type": "welfare",
            "breach_details": "Medication log not kept",
            "required_actions": "Keep a signed medication log",
            "compliance_deadline": 7,
            "monitoring_method": "documentary",
            "supervisor_id": supervisor.id,
        }

        response = client.post("/enforcement/workflows/suspension", json=payload, headers=auth_headers)

        assert response.status_code == 201
        assert response.json()["type"] == "warning"
        assert provider_status(client, auth_headers, provider) == "active"
        assert client.get("/enforcement/stats", headers=auth_headers).json()["active_warnings"] == 1

    def test_case_detail_and_timeline(self, client, auth_headers, provider, supervisor):
        case_id = client.post("/enforcement/workflows/suspension",
                              json=suspension_payload(provider, supervisor), headers=auth_headers).json()["id"]

        detail = client.get(f"/enforcement/cases/{case_id}", headers=auth_headers).json()
        timeline = client.get(f"/enforcement/cases/{case_id}/timeline", headers=auth_headers).json()

        assert detail["employee_name"] == "Sarah Jenkins"
        assert detail["notices"][0]["notice_type"] == "SUS"
        assert detail["stages"][0]["created_by"] == "Olivia Operator (Compliance Officer)"
        assert [t["event"] for t in timeline] == [t["event"] for t in detail["timeline"]]

    def test_unknown_case(self, client, auth_headers):
        assert client.get("/enforcement/cases/missing", headers=auth_headers).status_code == 404
        assert client.get("/providers/missing", headers=auth_headers).status_code == 404


# =============================================================================
# TEST: CANCELLATION LIFECYCLE
# =============================================================================

@pytest.fixture
def cancellation_case_id(client, auth_headers, provider, supervisor):
    response = client.post("/enforcement/workflows/cancellation",
                           json=cancellation_payload(provider, supervisor), headers=auth_headers)
    assert response.status_code == 201
    return response.json()["id"]


class TestCancellationApi:

    def test_notice_of_intention(self, client, auth_headers, provider, cancellation_case_id):
        detail = client.get(f"/enforcement/cases/{cancellation_case_id}", headers=auth_headers).json()

        assert detail["status"] == "pending"
        assert [t["event"] for t in detail["timeline"]] == ["Notice of Intention Issued", "Representations Deadline"]
        assert provider_status(client, auth_headers, provider) == "cancellation_pending"

    def test_filter_by_type(self, client, auth_headers, provider, supervisor, cancellation_case_id):
        client.post("/enforcement/workflows/suspension",
                    json=suspension_payload(provider, supervisor), headers=auth_headers)

        cases = client.get("/enforcement/cases?type=cancellation", headers=auth_headers).json()

        assert [c["id"] for c in cases] == [cancellation_case_id]

    def test_representations_then_decision(self, client, auth_headers, provider, supervisor, cancellation_case_id):
        reps = client.post(f"/enforcement/cases/{cancellation_case_id}/representations",
                           json={"summary": "Ratios now met with new assistant"}, headers=auth_headers)
        assert reps.status_code == 200
        assert reps.json()["status"] == "representations_received"

        stats = client.get("/enforcement/stats", headers=auth_headers).json()
        assert stats["representations_received"] == 1
        assert stats["pending_decisions"] == 1

        decision = {"reps_received": "yes", "reps_summary": "Assistant not yet vetted",
                    "reps_outcome": "rejected", "confirm_review": True, "supervisor_id": supervisor.id}
        preview = client.post(f"/enforcement/cases/{cancellation_case_id}/decision/preview",
                              json=decision, headers=auth_headers)
        assert preview.json()["decision"] == "cancel"
        assert preview.json()["notice_type"] == "DEC-CANC"

        result = client.post(f"/enforcement/cases/{cancellation_case_id}/decision",
                             json=decision, headers=auth_headers)
        assert result.status_code == 200
        assert result.json()["status"] == "cancelled"
        assert provider_status(client, auth_headers, provider) == "terminated"

    def test_decision_incomplete(self, client, auth_headers, supervisor, cancellation_case_id):
        response = client.post(f"/enforcement/cases/{cancellation_case_id}/decision",
                               json={"supervisor_id": supervisor.id}, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["detail"]["missing"] == ["confirm_review"]

    def test_decision_on_suspension_conflicts(self, client, auth_headers, provider, supervisor):
        case_id = client.post("/enforcement/workflows/suspension",
                              json=suspension_payload(provider, supervisor), headers=auth_headers).json()["id"]

        response = client.post(f"/enforcement/cases/{case_id}/decision",
                               json={"confirm_review": True, "supervisor_id": supervisor.id},
                               headers=auth_headers)

        assert response.status_code == 409


# =============================================================================
# TEST: NOTIFICATIONS
# =============================================================================

class TestNotificationsApi:

    def test_open_send_all_and_close(self, client, auth_headers, invoker, cancellation_case_id):
        opened = client.post(f"/enforcement/cases/{cancellation_case_id}/notifications/open",
                             headers=auth_headers)
        assert opened.status_code == 200
        assert [r["status"] for r in opened.json()["recipients"]] == ["pending"] * 4

        result = client.post(f"/enforcement/cases/{cancellation_case_id}/notifications/send-all",
                             headers=auth_headers).json()

        assert result["all_sent"] is True
        assert result["summary"]["attempted"] == 4
        assert invoker.invoke.call_count == 4
        body = invoker.invoke.call_args[0][1]
        assert body["actionType"] == "Notice of Intention to Cancel"
        assert body["sentBy"] == "Olivia Operator (Compliance Officer)"

        stored = client.get(f"/enforcement/cases/{cancellation_case_id}/notifications",
                            headers=auth_headers).json()
        assert stored["all_sent"] is True
        assert {r["sent_by"] for r in stored["recipients"]} == {"Olivia Operator (Compliance Officer)"}

        closed = client.post(f"/enforcement/cases/{cancellation_case_id}/notifications/close",
                             json={}, headers=auth_headers).json()
        assert closed == {"all_sent": True, "deferred": False, "deferral_reason": None}

    def test_sends_run_off_the_event_loop(self, client, auth_headers, invoker, cancellation_case_id):
        on_loop = []

        def invoke(name, body):
            try:
                asyncio.get_running_loop()
                on_loop.append(True)
            except RuntimeError:
                on_loop.append(False)
            return {"success": True}

        invoker.invoke.side_effect = invoke
        base = f"/enforcement/cases/{cancellation_case_id}/notifications"

        assert client.post(f"{base}/LA/send", headers=auth_headers).status_code == 200
        assert client.post(f"{base}/send-all", headers=auth_headers).status_code == 200

        assert on_loop == [False] * 4

    def test_resend_conflicts(self, client, auth_headers, cancellation_case_id):
        url = f"/enforcement/cases/{cancellation_case_id}/notifications/LA/send"
        assert client.post(url, headers=auth_headers).status_code == 200

        assert client.post(url, headers=auth_headers).status_code == 409

    def test_custom_recipient_and_email_update(self, client, auth_headers, cancellation_case_id):
        base = f"/enforcement/cases/{cancellation_case_id}/notifications"

        added = client.post(f"{base}/custom", json={"name": "School Nurse", "email": "nurse@school.org.uk"},
                            headers=auth_headers).json()
        assert [r["id"] for r in added["recipients"]][-1] == "custom-1"

        updated = client.patch(f"{base}/HMRC", json={"email": "tfc@hmrc.gov.uk"}, headers=auth_headers)
        assert updated.status_code == 200
        hmrc = [r for r in updated.json()["recipients"] if r["id"] == "HMRC"][0]
        assert hmrc["email"] == "tfc@hmrc.gov.uk"

    def test_invalid_email_rejected(self, client, auth_headers, cancellation_case_id):
        response = client.patch(f"/enforcement/cases/{cancellation_case_id}/notifications/HMRC",
                                json={"email": "not-an-email"}, headers=auth_headers)

        assert response.status_code == 422

    def test_deferred_close(self, client, auth_headers, cancellation_case_id):
        client.post(f"/enforcement/cases/{cancellation_case_id}/notifications/open", headers=auth_headers)

        closed = client.post(f"/enforcement/cases/{cancellation_case_id}/notifications/close",
                             json={"deferral_reason": "Awaiting DWP contact"}, headers=auth_headers).json()

        assert closed["deferred"] is True
        assert closed["deferral_reason"] == "Awaiting DWP contact"


# =============================================================================
# TEST: INTERNAL SCHEDULER
# =============================================================================

class TestSchedulerApi:

    def test_wrong_key_forbidden(self, client):
        response = client.post("/internal/deadline-check", headers={"X-Internal-Key": "wrong"})

        assert response.status_code == 403

    def test_missing_key(self, client):
        assert client.post("/internal/deadline-check").status_code == 422

    def test_deadline_check(self, client, cancellation_case_id):
        response = client.post("/internal/deadline-check", headers={"X-Internal-Key": config.INTERNAL_API_KEY})

        assert response.status_code == 200
        assert response.json()["cases_checked"] == 0

    def test_upcoming_deadlines(self, client, cancellation_case_id):
        response = client.get("/internal/deadlines?days_ahead=30",
                              headers={"X-Internal-Key": config.INTERNAL_API_KEY})

        assert [d["case_id"] for d in response.json()] == [cancellation_case_id]
        assert response.json()[0]["days_remaining"] == 14
