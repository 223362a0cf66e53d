"""
HTTP boundary tests for the credit API.

Verifies:
- Requests without a principal return 401
- Every authenticated request reconciles identity and runs the allocation check
- Settlement failures map to status codes and keep the error string
"""

from conftest import principal_headers

from doccredits.models import User
from doccredits.models.users import ROLE_ADMIN
from doccredits.services import identity_service, user_service


class TestMe:
    def test_requires_principal(self, client, db_session):
        resp = client.get("/api/credits/me")
        assert resp.status_code == 401

    def test_first_request_creates_unassigned_user(self, client, db_session):
        resp = client.get(
            "/api/credits/me",
            headers=principal_headers("user_web", plans="premium", email="web@example.com",
                                      first_name="Web", last_name="User"),
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["user"]["role"] == "UNASSIGNED"
        assert body["user"]["credits"] == 0
        assert body["user"]["name"] == "Web User"
        assert body["allocation"]["status"] == "NOT_APPLICABLE"
        assert body["appointment_cost"] == 2

    def test_patient_receives_plan_allocation_once(self, client, db_session):
        headers = principal_headers("user_web", plans="standard,premium")
        client.get("/api/credits/me", headers=headers)
        user_service.set_role("user_web", "PATIENT")

        first = client.get("/api/credits/me", headers=headers).get_json()
        second = client.get("/api/credits/me", headers=headers).get_json()

        assert first["allocation"] == {"status": "GRANTED", "plan": "premium", "amount": 24}
        assert first["user"]["credits"] == 24
        assert second["allocation"]["status"] == "ALREADY_ALLOCATED"
        assert second["user"]["credits"] == 24
        assert db_session.query(User).count() == 1

    def test_identity_failure_returns_503(self, client, db_session, monkeypatch):
        monkeypatch.setattr(identity_service, "reconcile_identity", lambda principal: None)

        resp = client.get("/api/credits/me", headers=principal_headers("user_web"))
        assert resp.status_code == 503

    def test_custom_providers_replace_headers(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(
            app.config, "PRINCIPAL_PROVIDER",
            lambda req: identity_service.AuthPrincipal(external_id="from_session"),
        )
        monkeypatch.setitem(app.config, "ENTITLEMENT_PROVIDER", lambda req, principal: {"standard"})

        resp = client.get("/api/credits/me")

        assert resp.status_code == 200
        assert resp.get_json()["user"]["external_id"] == "from_session"


class TestChargeRoute:
    def test_charge_success(self, client, patient, doctor):
        resp = client.post(
            "/api/credits/appointments/charge",
            json={"doctor_id": doctor.id},
            headers=principal_headers("patient_ext"),
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["user"]["credits"] == 3

    def test_insufficient_credits_is_409_with_message(self, client, make_user, doctor):
        make_user(credits=1, external_id="poor_ext")

        resp = client.post(
            "/api/credits/appointments/charge",
            json={"doctor_id": doctor.id},
            headers=principal_headers("poor_ext"),
        )

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["success"] is False
        assert body["error"] == "Insufficient credits to book an appointment"

    def test_unknown_doctor_is_404(self, client, patient):
        resp = client.post(
            "/api/credits/appointments/charge",
            json={"doctor_id": 987654},
            headers=principal_headers("patient_ext"),
        )
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Doctor not found"

    def test_doctor_id_required(self, client, patient):
        resp = client.post(
            "/api/credits/appointments/charge",
            json={},
            headers=principal_headers("patient_ext"),
        )
        assert resp.status_code == 400

    def test_boolean_ids_are_rejected(self, client, patient, doctor):
        resp = client.post(
            "/api/credits/appointments/charge",
            json={"doctor_id": True},
            headers=principal_headers("patient_ext"),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "doctor_id (integer) required"

    def test_doctor_cannot_book(self, client, doctor, make_user):
        other = make_user(role="DOCTOR")
        resp = client.post(
            "/api/credits/appointments/charge",
            json={"doctor_id": other.id},
            headers=principal_headers("doctor_ext"),
        )
        assert resp.status_code == 403

    def test_only_admin_may_charge_another_patient(self, client, patient, doctor, make_user):
        make_user(credits=4, external_id="other_patient")
        resp = client.post(
            "/api/credits/appointments/charge",
            json={"doctor_id": doctor.id, "patient_id": patient.id},
            headers=principal_headers("other_patient"),
        )
        assert resp.status_code == 403

        make_user(role=ROLE_ADMIN, external_id="admin_ext")
        resp = client.post(
            "/api/credits/appointments/charge",
            json={"doctor_id": doctor.id, "patient_id": patient.id},
            headers=principal_headers("admin_ext"),
        )
        assert resp.status_code == 200
        assert resp.get_json()["user"]["id"] == patient.id


class TestTransactionsRoute:
    def test_lists_callers_ledger(self, client, patient, doctor):
        client.post(
            "/api/credits/appointments/charge",
            json={"doctor_id": doctor.id},
            headers=principal_headers("patient_ext"),
        )

        resp = client.get("/api/credits/transactions?limit=1", headers=principal_headers("patient_ext"))

        assert resp.status_code == 200
        body = resp.get_json()
        assert len(body["items"]) == 1
        assert body["items"][0]["amount"] == -2
        assert body["next_cursor"] == body["items"][0]["id"]

    def test_rejects_unknown_type(self, client, patient):
        resp = client.get(
            "/api/credits/transactions?type=REFUND", headers=principal_headers("patient_ext")
        )
        assert resp.status_code == 400


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["database"]["status"] == "healthy"
