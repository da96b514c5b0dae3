from pydantic import BaseModel, ConfigDict
from datetime import datetime

from ..models.slot import SlotState

class SlotCreate(BaseModel):
    doctor_id: int
    start_time: datetime
    end_time: datetime

class SlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    start_time: datetime
    end_time: datetime
    state: SlotState
