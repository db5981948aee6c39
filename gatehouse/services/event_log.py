# gatehouse/services/event_log.py
"""
Bitácora writer and readers.
append() never commits: it joins the caller's transaction so the event and the
state change it documents land together or not at all.
"""

from typing import Optional

from sqlalchemy.orm import Session

from gatehouse.models.bitacora import BitacoraEvent
from gatehouse.models.enums import EventKind
from gatehouse.utils.clock import utcnow


def append(db: Session, registro_id: int, guard_id: int, kind: EventKind,
           visitor_leg_id: int = None, vehicle_leg_id: int = None,
           note: str = None, timestamp=None) -> BitacoraEvent:
    event = BitacoraEvent(
        registro_id=registro_id,
        visitor_leg_id=visitor_leg_id,
        vehicle_leg_id=vehicle_leg_id,
        guard_id=guard_id,
        kind=kind,
        note=note,
        timestamp=timestamp or utcnow(),
    )
    db.add(event)
    return event


def last_event_for(db: Session, registro_id: int = None, visitor_leg_id: int = None,
                   vehicle_leg_id: int = None) -> Optional[BitacoraEvent]:
    """Most recent event matching every id given. None when no id is given."""
    if registro_id is None and visitor_leg_id is None and vehicle_leg_id is None:
        return None

    q = db.query(BitacoraEvent)
    if registro_id is not None:
        q = q.filter(BitacoraEvent.registro_id == registro_id)
    if visitor_leg_id is not None:
        q = q.filter(BitacoraEvent.visitor_leg_id == visitor_leg_id)
    if vehicle_leg_id is not None:
        q = q.filter(BitacoraEvent.vehicle_leg_id == vehicle_leg_id)
    return q.order_by(BitacoraEvent.timestamp.desc(), BitacoraEvent.id.desc()).first()


def events_for_session(db: Session, registro_id: int) -> list[BitacoraEvent]:
    """Audit trail of a session, oldest first."""
    return (
        db.query(BitacoraEvent)
        .filter(BitacoraEvent.registro_id == registro_id)
        .order_by(BitacoraEvent.timestamp.asc(), BitacoraEvent.id.asc())
        .all()
    )
