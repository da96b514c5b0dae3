"""
Booking coordination.

Every operation here changes a slot and an appointment together. Both writes
happen inside one ``unit_of_work`` and the slot claim is a conditional update,
so concurrent attempts on the same slot resolve to one winner and the rest get
``ConflictError`` with nothing written.
"""
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
import logging

from ..core.database import unit_of_work
from ..core.exceptions import ConflictError
from ..core.security import Actor
from ..models.appointment import Appointment, AppointmentStatus
from ..models.slot import SlotState
from .appointment_store import AppointmentStore
from .directory import DirectoryService
from .notification_service import NotificationDispatcher, notify_booking_event
from .slot_store import SlotStore
from .status_service import DEFAULT_REASON, is_allowed

logger = logging.getLogger(__name__)

# An appointment in one of these can no longer move to another slot
NOT_RESCHEDULABLE = frozenset({
    AppointmentStatus.CANCELLED,
    AppointmentStatus.ATTENDED,
    AppointmentStatus.REJECTED,
})

class BookingCoordinator:
    def __init__(self, db: Session, dispatcher: Optional[NotificationDispatcher] = None,
                 background_tasks=None):
        self.db = db
        self.dispatcher = dispatcher
        self.background_tasks = background_tasks
        self.slots = SlotStore(db)
        self.appointments = AppointmentStore(db)
        self.directory = DirectoryService(db)

    def create_appointment(self, patient_id: int, provider_id: int, slot_id: int,
                           reason: Optional[str], actor: Actor,
                           internal_notes: Optional[str] = None,
                           send_email: bool = True) -> Appointment:
        """
        Book a slot for a patient.

        Patients book for themselves and start in PENDING; administrators book on
        a patient's behalf and the appointment starts CONFIRMED.
        """
        if actor.is_patient and actor.id != patient_id:
            raise ConflictError("Patients can only book appointments for themselves")
        if actor.is_doctor:
            raise ConflictError("Doctors cannot book appointments through this operation")

        with unit_of_work(self.db):
            patient = self.directory.get_patient(patient_id)
            if not patient.active:
                raise ConflictError("Patient account is inactive")

            provider = self.directory.get_provider(provider_id)
            if not provider.active:
                raise ConflictError("Doctor is not accepting appointments")

            slot = self.slots.get_or_raise(slot_id)
            if slot.doctor_id != provider_id:
                raise ConflictError("Slot does not belong to the selected doctor")
            if slot.state != SlotState.AVAILABLE:
                raise ConflictError()

            if not self.slots.reserve(slot_id):
                logger.warning(f"Slot {slot_id} was taken by a concurrent booking")
                raise ConflictError()

            now = datetime.utcnow()
            appointment = self.appointments.add(Appointment(
                slot_id=slot.id,
                doctor_id=provider_id,
                patient_id=patient_id,
                start_time=slot.start_time,
                end_time=slot.end_time,
                status=AppointmentStatus.CONFIRMED if actor.is_admin else AppointmentStatus.PENDING,
                reason=reason,
                created_by=actor.id,
                created_at=now,
                updated_at=now
            ))

            if internal_notes and internal_notes.strip():
                self.appointments.add_note(appointment, f"[ADMIN NOTE] {internal_notes.strip()}")

        logger.info(
            f"Appointment {appointment.id} booked: patient {patient_id}, doctor {provider_id}, "
            f"slot {slot_id}, status {appointment.status.name}"
        )

        if send_email:
            notify_booking_event(
                self.db, self.dispatcher, self.background_tasks, "created",
                patient_id, provider_id,
                start=appointment.start_time,
                reason=reason or DEFAULT_REASON,
            )

        return appointment

    def cancel_appointment(self, appointment_id: int, actor: Actor) -> bool:
        """Cancel an appointment and free the slot it currently occupies."""
        with unit_of_work(self.db):
            appointment = self.appointments.get_for_update(appointment_id)

            if not actor.is_admin and appointment.patient_id != actor.id:
                raise ConflictError("You do not have rights over this appointment")

            if appointment.status == AppointmentStatus.CANCELLED:
                raise ConflictError("Appointment is already cancelled")

            if not is_allowed(appointment.status, AppointmentStatus.CANCELLED):
                raise ConflictError(
                    f"An appointment in status {appointment.status.name} cannot be cancelled"
                )

            previous = appointment.status
            self.appointments.apply_change(
                appointment, previous, appointment.slot_id,
                status=AppointmentStatus.CANCELLED
            )
            self.slots.release(appointment.slot_id)

            if actor.is_admin:
                self.appointments.add_note(
                    appointment,
                    f"[ADMIN CANCELLATION] Cancelled by administrator (ID: {actor.id})"
                )

        logger.info(f"Appointment {appointment_id} cancelled by {actor.role.value} {actor.id}")

        notify_booking_event(
            self.db, self.dispatcher, self.background_tasks, "cancelled",
            appointment.patient_id, appointment.doctor_id,
            start=appointment.start_time,
        )
        return True

    def reschedule_appointment(self, appointment_id: int, actor: Actor, new_slot_id: int) -> Appointment:
        """
        Move an appointment to another slot of the same doctor.

        The new slot is claimed before the old one is released, all inside one
        transaction: on any failure the old slot stays RESERVED and the new one
        stays AVAILABLE.
        """
        with unit_of_work(self.db):
            appointment = self.appointments.get_for_update(appointment_id)

            if not actor.is_admin and appointment.patient_id != actor.id:
                raise ConflictError("You do not have rights over this appointment")

            if appointment.status in NOT_RESCHEDULABLE:
                raise ConflictError(
                    f"An appointment in status {appointment.status.name} cannot be rescheduled"
                )

            new_slot = self.slots.get_or_raise(new_slot_id)
            if new_slot.doctor_id != appointment.doctor_id:
                raise ConflictError("Rescheduling cannot change the doctor")
            if new_slot.id == appointment.slot_id or new_slot.state != SlotState.AVAILABLE:
                raise ConflictError()

            old_slot_id = appointment.slot_id
            old_start = appointment.start_time

            if not self.slots.reserve(new_slot.id):
                logger.warning(f"Slot {new_slot.id} was taken by a concurrent booking")
                raise ConflictError()
            self.appointments.apply_change(
                appointment, appointment.status, old_slot_id,
                slot_id=new_slot.id,
                start_time=new_slot.start_time,
                end_time=new_slot.end_time,
                status=AppointmentStatus.CONFIRMED
            )
            self.slots.release(old_slot_id)

        logger.info(
            f"Appointment {appointment_id} rescheduled from slot {old_slot_id} to slot {new_slot_id}"
        )

        notify_booking_event(
            self.db, self.dispatcher, self.background_tasks, "rescheduled",
            appointment.patient_id, appointment.doctor_id,
            old_start=old_start,
            new_start=appointment.start_time,
        )
        return appointment
