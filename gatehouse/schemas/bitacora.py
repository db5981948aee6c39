# gatehouse/schemas/bitacora.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from gatehouse.models.enums import EventKind


class BitacoraEventOut(BaseModel):
    id: int
    registro_id: int
    visitor_leg_id: Optional[int]
    vehicle_leg_id: Optional[int]
    guard_id: int
    kind: EventKind
    note: Optional[str]
    timestamp: datetime

    class Config:
        from_attributes = True
