"""
Appointment settlement tests.

Verifies:
- The fee moves from patient to doctor with two ledger rows
- Insufficient balance and unknown users fail before any mutation
- Total credits are conserved
- Infrastructure failures become structured results, never exceptions
"""

from sqlalchemy.exc import OperationalError

from doccredits.models import CreditTransaction
from doccredits.services import credit_service, ledger_service
from doccredits.services.credit_service import (
    APPOINTMENT_CREDIT_COST,
    REASON_NOT_FOUND,
    REASON_INSUFFICIENT_BALANCE,
    REASON_INVALID,
    REASON_TIMEOUT,
    REASON_STORE_UNAVAILABLE,
)


def _deductions(session):
    return (
        session.query(CreditTransaction)
        .filter_by(transaction_type="APPOINTMENT_DEDUCTION")
        .order_by(CreditTransaction.id)
        .all()
    )


class TestChargeAppointment:
    def test_fee_is_two_credits(self):
        assert APPOINTMENT_CREDIT_COST == 2

    def test_booking_sequence_until_insufficient(self, db_session, patient, doctor):
        first = credit_service.charge_appointment(patient.id, doctor.id)
        assert first.success is True
        assert first.user.id == patient.id
        assert first.user.credits == 3
        assert doctor.credits == 2

        rows = _deductions(db_session)
        assert [(r.user_id, r.amount) for r in rows] == [(patient.id, -2), (doctor.id, 2)]
        assert rows[0].counterparty_user_id == doctor.id
        assert rows[1].counterparty_user_id == patient.id

        second = credit_service.charge_appointment(patient.id, doctor.id)
        assert second.success is True
        assert second.user.credits == 1

        third = credit_service.charge_appointment(patient.id, doctor.id)
        assert third.success is False
        assert third.error.startswith("Insufficient credits")
        assert third.reason == REASON_INSUFFICIENT_BALANCE

        db_session.refresh(patient)
        db_session.refresh(doctor)
        assert patient.credits == 1
        assert doctor.credits == 4
        assert len(_deductions(db_session)) == 4

    def test_settlement_conserves_total_credits(self, db_session, patient, doctor, make_user):
        make_user(credits=11)
        before = ledger_service.total_credits()

        credit_service.charge_appointment(patient.id, doctor.id)
        credit_service.charge_appointment(patient.id, doctor.id)
        credit_service.charge_appointment(patient.id, doctor.id)

        assert ledger_service.total_credits() == before
        assert ledger_service.find_balance_drift() == []

    def test_unknown_patient(self, db_session, doctor):
        result = credit_service.charge_appointment(999999, doctor.id)

        assert result.success is False
        assert result.error == "Patient not found"
        assert result.reason == REASON_NOT_FOUND
        assert _deductions(db_session) == []

    def test_unknown_doctor(self, db_session, patient):
        result = credit_service.charge_appointment(patient.id, 999999)

        assert result.success is False
        assert result.error == "Doctor not found"
        assert result.reason == REASON_NOT_FOUND
        db_session.refresh(patient)
        assert patient.credits == 5

    def test_patient_cannot_pay_themselves(self, db_session, patient):
        result = credit_service.charge_appointment(patient.id, patient.id)

        assert result.success is False
        assert result.reason == REASON_INVALID
        assert _deductions(db_session) == []

    def test_zero_balance_patient(self, db_session, make_user, doctor):
        broke = make_user(credits=0)

        result = credit_service.charge_appointment(broke.id, doctor.id)

        assert result.success is False
        assert result.error == "Insufficient credits to book an appointment"
        assert _deductions(db_session) == []

    def test_result_serializes_for_the_booking_flow(self, db_session, patient, doctor):
        ok = credit_service.charge_appointment(patient.id, doctor.id).to_dict()
        assert ok["success"] is True
        assert ok["user"]["credits"] == 3

        missing = credit_service.charge_appointment(patient.id, 424242).to_dict()
        assert missing == {"success": False, "error": "Doctor not found", "reason": REASON_NOT_FOUND}


class TestSettlementFailures:
    def test_timeout_leaves_no_partial_transfer(self, app, db_session, patient, doctor, monkeypatch, caplog):
        monkeypatch.setitem(app.config, "CREDIT_TRANSACTION_TIMEOUT_SECONDS", 0)

        result = credit_service.charge_appointment(patient.id, doctor.id)

        assert result.success is False
        assert result.reason == REASON_TIMEOUT
        assert "Failed to deduct credits" in caplog.text
        assert _deductions(db_session) == []
        db_session.refresh(patient)
        db_session.refresh(doctor)
        assert patient.credits == 5
        assert doctor.credits == 0

    def test_store_unavailable_is_reported_not_raised(self, db_session, patient, doctor, monkeypatch):
        def broken_lock(query):
            raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("could not connect to server"))

        monkeypatch.setattr(credit_service, "lock_for_update", broken_lock)

        result = credit_service.charge_appointment(patient.id, doctor.id)

        assert result.success is False
        assert result.reason == REASON_STORE_UNAVAILABLE
        assert "could not connect to server" in result.error
        assert _deductions(db_session) == []
