import pytest

from clinic_booking.core.exceptions import ConflictError, ValidationError
from clinic_booking.models.appointment import Appointment, AppointmentStatus, display_status
from clinic_booking.models.slot import Slot, SlotState
from clinic_booking.services.appointment_store import parse_status
from clinic_booking.services.booking_service import BookingCoordinator
from clinic_booking.services.status_service import (
    SlotEffect, StatusTransitionEngine, is_allowed, transition_effect
)
from tests.conftest import RecordingDispatcher, slot_state

def _book(db, clinic, slot_id=1, as_admin=False):
    actor = clinic.admin if as_admin else clinic.patient
    return BookingCoordinator(db).create_appointment(
        patient_id=clinic.patient.id,
        provider_id=10,
        slot_id=slot_id,
        reason="Check-up",
        actor=actor,
    )

def _status(db, appointment_id):
    db.expire_all()
    return db.get(Appointment, appointment_id).status

class TestTransitionTable:
    """Test the lifecycle rules on their own."""

    @pytest.mark.parametrize("current,target,effect", [
        (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, SlotEffect.NONE),
        (AppointmentStatus.PENDING, AppointmentStatus.REJECTED, SlotEffect.RELEASE),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, SlotEffect.RELEASE),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.NO_SHOW, SlotEffect.NONE),
        (AppointmentStatus.NO_SHOW, AppointmentStatus.CONFIRMED, SlotEffect.RESERVE),
        (AppointmentStatus.CANCELLED, AppointmentStatus.CONFIRMED, SlotEffect.RESERVE),
    ])
    def test_allowed_moves(self, current, target, effect):
        assert is_allowed(current, target)
        assert transition_effect(current, target) == effect

    @pytest.mark.parametrize("current,target", [
        (AppointmentStatus.PENDING, AppointmentStatus.ATTENDED),
        (AppointmentStatus.ATTENDED, AppointmentStatus.ATTENDED),
        (AppointmentStatus.REJECTED, AppointmentStatus.REJECTED),
        (AppointmentStatus.ATTENDED, AppointmentStatus.CANCELLED),
        (AppointmentStatus.CANCELLED, AppointmentStatus.PENDING),
    ])
    def test_forbidden_moves(self, current, target):
        assert not is_allowed(current, target)
        with pytest.raises(ConflictError):
            transition_effect(current, target)

    def test_parse_status_accepts_names_and_values(self):
        assert parse_status("no_show") == AppointmentStatus.NO_SHOW
        assert parse_status("CONFIRMED") == AppointmentStatus.CONFIRMED
        assert parse_status(" Attended ") == AppointmentStatus.ATTENDED

    def test_parse_status_rejects_unknown(self):
        with pytest.raises(ValidationError):
            parse_status("done")

    def test_display_status_projection(self):
        assert display_status(AppointmentStatus.PENDING) == "scheduled"
        assert display_status(AppointmentStatus.CONFIRMED) == "scheduled"
        assert display_status(AppointmentStatus.ATTENDED) == "completed"
        assert display_status(AppointmentStatus.REJECTED) == "cancelled"
        assert display_status(AppointmentStatus.NO_SHOW) == "missed"

class TestStatusTransitionEngine:
    """Test applying lifecycle changes to stored appointments."""

    def test_doctor_confirms_and_slot_stays_reserved(self, db, clinic):
        appointment = _book(db, clinic)

        assert StatusTransitionEngine(db).update_status(appointment.id, clinic.doctor, "confirmed")

        assert _status(db, appointment.id) == AppointmentStatus.CONFIRMED
        assert slot_state(db, 1) == SlotState.RESERVED

    def test_reject_releases_slot(self, db, clinic):
        appointment = _book(db, clinic)

        StatusTransitionEngine(db).update_status(appointment.id, clinic.doctor, "REJECTED")

        assert _status(db, appointment.id) == AppointmentStatus.REJECTED
        assert slot_state(db, 1) == SlotState.AVAILABLE

    def test_second_rejection_conflicts(self, db, clinic):
        appointment = _book(db, clinic)
        engine = StatusTransitionEngine(db)
        engine.update_status(appointment.id, clinic.doctor, "REJECTED")

        with pytest.raises(ConflictError):
            engine.update_status(appointment.id, clinic.doctor, "REJECTED")

        assert _status(db, appointment.id) == AppointmentStatus.REJECTED

    def test_second_attendance_conflicts(self, db, clinic):
        appointment = _book(db, clinic, as_admin=True)
        engine = StatusTransitionEngine(db)
        engine.update_status(appointment.id, clinic.doctor, "ATTENDED")

        with pytest.raises(ConflictError):
            engine.update_status(appointment.id, clinic.doctor, "ATTENDED")

        assert _status(db, appointment.id) == AppointmentStatus.ATTENDED
        assert slot_state(db, 1) == SlotState.RESERVED

    def test_pending_cannot_be_attended(self, db, clinic):
        appointment = _book(db, clinic)

        with pytest.raises(ConflictError):
            StatusTransitionEngine(db).update_status(appointment.id, clinic.doctor, "ATTENDED")

        assert _status(db, appointment.id) == AppointmentStatus.PENDING

    def test_unknown_status_is_validation_error(self, db, clinic):
        appointment = _book(db, clinic)

        with pytest.raises(ValidationError):
            StatusTransitionEngine(db).update_status(appointment.id, clinic.admin, "finished")

    def test_notes_are_recorded(self, db, clinic):
        appointment = _book(db, clinic)

        StatusTransitionEngine(db).update_status(
            appointment.id, clinic.doctor, "CONFIRMED", notes="Bring previous results"
        )

        db.expire_all()
        notes = [n.note for n in db.get(Appointment, appointment.id).notes]
        assert notes == ["[STATUS CHANGE: PENDING -> CONFIRMED] Bring previous results"]

    def test_no_show_reactivation_conflicts_while_slot_held(self, db, clinic):
        appointment = _book(db, clinic, as_admin=True)
        engine = StatusTransitionEngine(db)
        engine.update_status(appointment.id, clinic.doctor, "NO_SHOW")

        with pytest.raises(ConflictError):
            engine.update_status(appointment.id, clinic.admin, "CONFIRMED")

        assert _status(db, appointment.id) == AppointmentStatus.NO_SHOW
        assert slot_state(db, 1) == SlotState.RESERVED

    def test_no_show_reactivation_reclaims_free_slot(self, db, clinic):
        appointment = _book(db, clinic, as_admin=True)
        engine = StatusTransitionEngine(db)
        engine.update_status(appointment.id, clinic.doctor, "NO_SHOW")

        db.expire_all()
        db.get(Slot, 1).state = SlotState.AVAILABLE
        db.commit()

        engine.update_status(appointment.id, clinic.admin, "CONFIRMED")

        assert _status(db, appointment.id) == AppointmentStatus.CONFIRMED
        assert slot_state(db, 1) == SlotState.RESERVED

    def test_cancelled_reactivation_reserves_slot(self, db, clinic):
        appointment = _book(db, clinic)
        BookingCoordinator(db).cancel_appointment(appointment.id, clinic.patient)

        StatusTransitionEngine(db).update_status(appointment.id, clinic.admin, "CONFIRMED")

        assert _status(db, appointment.id) == AppointmentStatus.CONFIRMED
        assert slot_state(db, 1) == SlotState.RESERVED

    def test_cancelled_reactivation_conflicts_once_rebooked(self, db, clinic):
        appointment = _book(db, clinic)
        coordinator = BookingCoordinator(db)
        coordinator.cancel_appointment(appointment.id, clinic.patient)
        coordinator.create_appointment(
            patient_id=clinic.other_patient.id, provider_id=10, slot_id=1,
            reason=None, actor=clinic.other_patient
        )

        with pytest.raises(ConflictError):
            StatusTransitionEngine(db).update_status(appointment.id, clinic.admin, "CONFIRMED")

        assert _status(db, appointment.id) == AppointmentStatus.CANCELLED

    def test_doctor_cannot_reactivate(self, db, clinic):
        appointment = _book(db, clinic)
        BookingCoordinator(db).cancel_appointment(appointment.id, clinic.patient)

        with pytest.raises(ConflictError):
            StatusTransitionEngine(db).update_status(appointment.id, clinic.doctor, "CONFIRMED")

        assert slot_state(db, 1) == SlotState.AVAILABLE

    def test_other_doctor_has_no_rights(self, db, clinic):
        appointment = _book(db, clinic)

        with pytest.raises(ConflictError):
            StatusTransitionEngine(db).update_status(appointment.id, clinic.other_doctor, "CONFIRMED")

        assert _status(db, appointment.id) == AppointmentStatus.PENDING

    def test_patient_may_only_cancel(self, db, clinic):
        appointment = _book(db, clinic)
        engine = StatusTransitionEngine(db)

        with pytest.raises(ConflictError):
            engine.update_status(appointment.id, clinic.patient, "CONFIRMED")

        engine.update_status(appointment.id, clinic.patient, "CANCELLED")
        assert _status(db, appointment.id) == AppointmentStatus.CANCELLED
        assert slot_state(db, 1) == SlotState.AVAILABLE

    def test_transitions_notify_patient(self, db, clinic):
        dispatcher = RecordingDispatcher()
        appointment = _book(db, clinic)
        engine = StatusTransitionEngine(db, dispatcher=dispatcher)

        engine.update_status(appointment.id, clinic.doctor, "CONFIRMED")
        engine.update_status(appointment.id, clinic.doctor, "CANCELLED")

        assert dispatcher.events() == ["confirmed", "cancelled"]
        assert dispatcher.sent[0][1]["patient_contact"] == "ana@example.com"
        assert dispatcher.sent[0][1]["reason"] == "Check-up"

    def test_rejection_notifies_patient(self, db, clinic):
        dispatcher = RecordingDispatcher()
        appointment = _book(db, clinic)

        StatusTransitionEngine(db, dispatcher=dispatcher).update_status(
            appointment.id, clinic.doctor, "REJECTED"
        )

        assert dispatcher.events() == ["rejected"]
        assert dispatcher.sent[0][1]["provider_name"] == "Dr. Gregory House"
        assert slot_state(db, 1) == SlotState.AVAILABLE
