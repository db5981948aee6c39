# gatehouse/schemas/registro.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from gatehouse.models.enums import (RegistroKind, RegistroStatus, LegStatus,
                                    VehicleLegStatus, TokenKind, EventKind)


# ── Inputs ───────────────────────────────────────────────────────────────────

class VisitorLegIn(BaseModel):
    visitor_id: Optional[int] = None
    token_kind: TokenKind = TokenKind.TAG
    card_number: Optional[str] = None


class VehicleLegIn(BaseModel):
    vehicle_id: int
    marbete: Optional[str] = None


class SessionCreate(BaseModel):
    kind: RegistroKind = RegistroKind.VEHICULAR
    expected_count: Optional[int] = None
    driver: Optional[VisitorLegIn] = None
    vehicle: Optional[VehicleLegIn] = None
    building: Optional[str] = None
    host_name: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None


class PedestrianSessionCreate(BaseModel):
    visitors: list[VisitorLegIn]
    expected_count: Optional[int] = None     # defaults to len(visitors)
    building: Optional[str] = None
    host_name: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None


class AttachVisitorsIn(BaseModel):
    visitors: list[VisitorLegIn]


class AttachVehicleIn(BaseModel):
    vehicle_id: int
    marbete: Optional[str] = None
    driver: Optional[VisitorLegIn] = None


class BuildingEntryIn(BaseModel):
    leg_ids: Optional[list[int]] = None        # None → every leg still at the gate
    new_visitors: list[VisitorLegIn] = []
    notes: Optional[str] = None


class TransitionIn(BaseModel):
    action: EventKind
    pickup: bool = False
    notes: Optional[str] = None


class GateExitIn(BaseModel):
    leg_ids: list[int]
    exit_count: int
    close: bool = False
    notes: Optional[str] = None


class TokenUpdate(BaseModel):
    token_kind: TokenKind
    card_number: Optional[str] = None


class RegistroPatchIn(BaseModel):
    reason: Optional[str] = None
    building: Optional[str] = None
    host_name: Optional[str] = None


class NoteIn(BaseModel):
    text: str


# ── Outputs ──────────────────────────────────────────────────────────────────

class VisitorLegOut(BaseModel):
    id: int
    visitor_id: int
    visitor_name: Optional[str] = None
    is_driver: bool
    tag: str
    token_kind: TokenKind
    card_number: Optional[str]
    status: LegStatus
    gate_entry_at: Optional[datetime]
    building_entry_at: Optional[datetime]
    building_exit_at: Optional[datetime]
    gate_exit_at: Optional[datetime]
    alert_count: int

    class Config:
        from_attributes = True


class VehicleLegOut(BaseModel):
    id: int
    vehicle_id: int
    plate_number: Optional[str] = None
    driver_leg_id: Optional[int]
    marbete: Optional[str]
    status: VehicleLegStatus
    entered_at: Optional[datetime]
    exited_at: Optional[datetime]

    class Config:
        from_attributes = True


class NoteOut(BaseModel):
    id: int
    guard_id: Optional[int]
    text: str
    created_at: datetime

    class Config:
        from_attributes = True


class RegistroOut(BaseModel):
    id: int
    code: str
    kind: RegistroKind
    status: RegistroStatus
    expected_count: int
    departed_count: int
    building: Optional[str]
    host_name: Optional[str]
    reason: Optional[str]
    gate_entry_at: Optional[datetime]
    building_entry_at: Optional[datetime]
    building_exit_at: Optional[datetime]
    gate_exit_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class SessionView(RegistroOut):
    gate_entry_guard_id: Optional[int]
    building_entry_guard_id: Optional[int]
    building_exit_guard_id: Optional[int]
    gate_exit_guard_id: Optional[int]
    visitantes: list[VisitorLegOut] = []
    vehiculos: list[VehicleLegOut] = []
    notas: list[NoteOut] = []


class GateExitOut(BaseModel):
    registro_id: int
    code: str
    exited: int
    departed_count: int
    expected_count: int
    completed: bool


class NextActionOut(BaseModel):
    target: str
    target_id: int
    current_status: Optional[str]
    last_event: Optional[EventKind]
    suggested: Optional[EventKind]
    options: list[EventKind] = []


class CodeLookupOut(BaseModel):
    type: str                      # driver | visitor | registro
    session: SessionView
    leg: Optional[VisitorLegOut] = None


class DelayedVisitorOut(BaseModel):
    leg_id: int
    tag: str
    visitor_name: Optional[str]
    minutes_since_building_exit: int
    alert_count: int


class DelayedSessionOut(BaseModel):
    registro_id: int
    code: str
    building: Optional[str]
    visitors: list[DelayedVisitorOut]
