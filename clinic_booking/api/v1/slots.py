from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from datetime import date
from typing import List

from ...core.database import get_db, unit_of_work
from ...core.exceptions import ConflictError
from ...core.security import Actor
from ...api.deps import get_current_actor, get_doctor_actor
from ...services.slot_store import SlotStore
from ...schemas.slot import SlotCreate, SlotResponse

router = APIRouter(prefix="/slots", tags=["Slots"])

def _check_slot_owner(actor: Actor, doctor_id: int) -> None:
    if not actor.is_admin and actor.id != doctor_id:
        raise ConflictError("Doctors can only manage their own slots")

@router.get("/doctors/{doctor_id}", response_model=List[SlotResponse])
async def list_available_slots(
    doctor_id: int,
    day: date = Query(..., alias="date", description="Day to list, YYYY-MM-DD"),
    _: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Available slots of a doctor on one day."""
    slots = SlotStore(db).list_available(doctor_id, day)
    return [SlotResponse.model_validate(s) for s in slots]

@router.post("", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def create_slot(
    slot_data: SlotCreate,
    actor: Actor = Depends(get_doctor_actor),
    db: Session = Depends(get_db)
):
    """Open a new bookable window."""
    _check_slot_owner(actor, slot_data.doctor_id)

    store = SlotStore(db)
    with unit_of_work(db):
        slot = store.create_slot(slot_data.doctor_id, slot_data.start_time, slot_data.end_time)

    return SlotResponse.model_validate(slot)

@router.post("/{slot_id}/block", response_model=SlotResponse)
async def block_slot(
    slot_id: int,
    actor: Actor = Depends(get_doctor_actor),
    db: Session = Depends(get_db)
):
    """Withhold an available slot from booking."""
    store = SlotStore(db)
    with unit_of_work(db):
        _check_slot_owner(actor, store.get_or_raise(slot_id).doctor_id)
        slot = store.block(slot_id)

    return SlotResponse.model_validate(slot)

@router.post("/{slot_id}/unblock", response_model=SlotResponse)
async def unblock_slot(
    slot_id: int,
    actor: Actor = Depends(get_doctor_actor),
    db: Session = Depends(get_db)
):
    """Return a blocked slot to the bookable pool."""
    store = SlotStore(db)
    with unit_of_work(db):
        _check_slot_owner(actor, store.get_or_raise(slot_id).doctor_id)
        slot = store.unblock(slot_id)

    return SlotResponse.model_validate(slot)
