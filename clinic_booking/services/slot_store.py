from sqlalchemy import update
from sqlalchemy.orm import Session
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional
import logging

from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..models.doctor import Doctor
from ..models.slot import Slot, SlotState

logger = logging.getLogger(__name__)

def to_naive_utc(value: datetime) -> datetime:
    """Slot times are stored as naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

class SlotStore:
    """
    Persistence for bookable time windows.

    State changes go through compare-and-swap updates: the WHERE clause carries
    the expected current state and the affected row count tells the caller
    whether it won. Two writers can never both move the same slot out of
    AVAILABLE.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, slot_id: int) -> Optional[Slot]:
        return self.db.get(Slot, slot_id)

    def get_or_raise(self, slot_id: int) -> Slot:
        slot = self.get(slot_id)
        if not slot:
            raise NotFoundError(f"Slot {slot_id} not found")
        return slot

    def _swap_state(self, slot_id: int, expected: SlotState, new: SlotState) -> bool:
        result = self.db.execute(
            update(Slot)
            .where(Slot.id == slot_id, Slot.state == expected)
            .values(state=new, updated_at=datetime.utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount == 1

    def reserve(self, slot_id: int) -> bool:
        """Claim an AVAILABLE slot. False when someone else got there first."""
        return self._swap_state(slot_id, SlotState.AVAILABLE, SlotState.RESERVED)

    def release(self, slot_id: int) -> bool:
        """Return a RESERVED slot to the pool."""
        released = self._swap_state(slot_id, SlotState.RESERVED, SlotState.AVAILABLE)
        if not released:
            logger.warning(f"Slot {slot_id} was not reserved when release was requested")
        return released

    def block(self, slot_id: int) -> Slot:
        """Withhold an AVAILABLE slot from booking."""
        slot = self.get_or_raise(slot_id)
        if not self._swap_state(slot_id, SlotState.AVAILABLE, SlotState.BLOCKED):
            raise ConflictError(f"Only available slots can be blocked (slot {slot_id} is {slot.state.name})")
        logger.info(f"Slot {slot_id} blocked")
        return slot

    def unblock(self, slot_id: int) -> Slot:
        """Make a BLOCKED slot bookable again."""
        slot = self.get_or_raise(slot_id)
        if not self._swap_state(slot_id, SlotState.BLOCKED, SlotState.AVAILABLE):
            raise ConflictError(f"Slot {slot_id} is not blocked")
        logger.info(f"Slot {slot_id} unblocked")
        return slot

    def create_slot(self, doctor_id: int, start_time: datetime, end_time: datetime) -> Slot:
        """Add a bookable window for a doctor; windows of one doctor never overlap."""
        start_time = to_naive_utc(start_time)
        end_time = to_naive_utc(end_time)

        if end_time <= start_time:
            raise ValidationError("Slot end time must be after its start time")

        if not self.db.get(Doctor, doctor_id):
            raise NotFoundError(f"Doctor {doctor_id} not found")

        overlapping = self.db.query(Slot).filter(
            Slot.doctor_id == doctor_id,
            Slot.start_time < end_time,
            Slot.end_time > start_time
        ).first()

        if overlapping:
            raise ConflictError(
                f"Slot overlaps an existing slot ({overlapping.start_time:%Y-%m-%d %H:%M}"
                f" - {overlapping.end_time:%H:%M})"
            )

        now = datetime.utcnow()
        slot = Slot(
            doctor_id=doctor_id,
            start_time=start_time,
            end_time=end_time,
            state=SlotState.AVAILABLE,
            created_at=now,
            updated_at=now
        )
        self.db.add(slot)
        self.db.flush()
        return slot

    def list_available(self, doctor_id: int, day: date) -> List[Slot]:
        """AVAILABLE slots of a doctor that start on the given day."""
        day_start = datetime.combine(day, time(0, 0))
        day_end = day_start + timedelta(days=1)

        return self.db.query(Slot).filter(
            Slot.doctor_id == doctor_id,
            Slot.start_time >= day_start,
            Slot.start_time < day_end,
            Slot.state == SlotState.AVAILABLE
        ).order_by(Slot.start_time).all()
