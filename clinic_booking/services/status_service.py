from sqlalchemy.orm import Session
from typing import Dict, Optional
import enum
import logging

from ..core.database import unit_of_work
from ..core.exceptions import ConflictError
from ..core.security import Actor
from ..models.appointment import Appointment, AppointmentStatus
from .appointment_store import AppointmentStore, parse_status
from .notification_service import NotificationDispatcher, notify_booking_event
from .slot_store import SlotStore

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Medical consultation"

class SlotEffect(str, enum.Enum):
    NONE = "none"
    RELEASE = "release"
    RESERVE = "reserve"

# Allowed lifecycle moves and what each does to the occupied slot
TRANSITIONS: Dict[AppointmentStatus, Dict[AppointmentStatus, SlotEffect]] = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.CONFIRMED: SlotEffect.NONE,
        AppointmentStatus.CANCELLED: SlotEffect.RELEASE,
        AppointmentStatus.REJECTED: SlotEffect.RELEASE,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.ATTENDED: SlotEffect.NONE,
        AppointmentStatus.CANCELLED: SlotEffect.RELEASE,
        AppointmentStatus.NO_SHOW: SlotEffect.NONE,
    },
    AppointmentStatus.CANCELLED: {
        AppointmentStatus.CONFIRMED: SlotEffect.RESERVE,
    },
    AppointmentStatus.NO_SHOW: {
        AppointmentStatus.CONFIRMED: SlotEffect.RESERVE,
    },
    AppointmentStatus.ATTENDED: {},
    AppointmentStatus.REJECTED: {},
}

def is_allowed(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS[current]

def is_reactivation(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return TRANSITIONS[current].get(target) == SlotEffect.RESERVE

def transition_effect(current: AppointmentStatus, target: AppointmentStatus) -> SlotEffect:
    """Slot effect of a move, or ConflictError when the table does not allow it."""
    if not is_allowed(current, target):
        raise ConflictError(
            f"Cannot change appointment status from {current.name} to {target.name}"
        )
    return TRANSITIONS[current][target]

def check_transition_rights(actor: Actor, appointment: Appointment, target: AppointmentStatus) -> None:
    """
    Administrators may apply any allowed move. The appointment's doctor may apply
    any move except reactivation. The appointment's patient may only cancel.
    """
    if actor.is_admin:
        return

    if actor.is_doctor and appointment.doctor_id == actor.id:
        if is_reactivation(appointment.status, target):
            raise ConflictError("Only administrators can reactivate an appointment")
        return

    if actor.is_patient and appointment.patient_id == actor.id:
        if target != AppointmentStatus.CANCELLED:
            raise ConflictError("Patients can only cancel their appointments")
        return

    raise ConflictError("You do not have rights over this appointment")

class StatusTransitionEngine:
    """Validates and applies appointment lifecycle changes."""

    def __init__(self, db: Session, dispatcher: Optional[NotificationDispatcher] = None,
                 background_tasks=None):
        self.db = db
        self.dispatcher = dispatcher
        self.background_tasks = background_tasks
        self.slots = SlotStore(db)
        self.appointments = AppointmentStore(db)

    def update_status(self, appointment_id: int, actor: Actor, target_state: str,
                      notes: Optional[str] = None) -> bool:
        target = parse_status(target_state)

        with unit_of_work(self.db):
            appointment = self.appointments.get_for_update(appointment_id)
            previous = appointment.status

            check_transition_rights(actor, appointment, target)
            effect = transition_effect(previous, target)

            if effect == SlotEffect.RELEASE:
                self.slots.release(appointment.slot_id)
            elif effect == SlotEffect.RESERVE:
                if not self.slots.reserve(appointment.slot_id):
                    logger.warning(
                        f"Reactivation of appointment {appointment_id} refused: "
                        f"slot {appointment.slot_id} is not available"
                    )
                    raise ConflictError("The appointment's slot is no longer available")

            self.appointments.apply_change(appointment, previous, appointment.slot_id, status=target)

            if notes and notes.strip():
                self.appointments.add_note(
                    appointment,
                    f"[STATUS CHANGE: {previous.name} -> {target.name}] {notes.strip()}"
                )

        logger.info(
            f"Appointment {appointment_id} moved from {previous.name} to {target.name} "
            f"by {actor.role.value} {actor.id}"
        )

        self._notify_transition(appointment, previous, target)
        return True

    def _notify_transition(self, appointment: Appointment, previous: AppointmentStatus,
                           target: AppointmentStatus) -> None:
        if target == previous:
            return

        if target == AppointmentStatus.CONFIRMED:
            notify_booking_event(
                self.db, self.dispatcher, self.background_tasks, "confirmed",
                appointment.patient_id, appointment.doctor_id,
                start=appointment.start_time,
                reason=appointment.reason or DEFAULT_REASON,
            )
        elif target == AppointmentStatus.CANCELLED:
            notify_booking_event(
                self.db, self.dispatcher, self.background_tasks, "cancelled",
                appointment.patient_id, appointment.doctor_id,
                start=appointment.start_time,
            )
        elif target == AppointmentStatus.REJECTED:
            notify_booking_event(
                self.db, self.dispatcher, self.background_tasks, "rejected",
                appointment.patient_id, appointment.doctor_id,
                start=appointment.start_time,
            )
