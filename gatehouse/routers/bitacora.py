# gatehouse/routers/bitacora.py
"""Bitácora: the append-only audit trail of every checkpoint event."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from gatehouse.database import get_db
from gatehouse.schemas.bitacora import BitacoraEventOut
from gatehouse.services import event_log
from gatehouse.services.registro_service import get_registro

router = APIRouter()


@router.get("/registros/{registro_id}/bitacora", response_model=list[BitacoraEventOut],
            summary="Audit trail of a session, oldest first")
def session_events(registro_id: int, db: Session = Depends(get_db)):
    get_registro(db, registro_id)
    return event_log.events_for_session(db, registro_id)


@router.get("/bitacora/last", response_model=BitacoraEventOut, summary="Latest event for an entity")
def last_event(registro_id: Optional[int] = None, visitor_leg_id: Optional[int] = None,
               vehicle_leg_id: Optional[int] = None, db: Session = Depends(get_db)):
    """Filter by any of registro_id, visitor_leg_id or vehicle_leg_id."""
    event = event_log.last_event_for(db, registro_id=registro_id, visitor_leg_id=visitor_leg_id,
                                     vehicle_leg_id=vehicle_leg_id)
    if not event:
        raise HTTPException(status_code=404, detail="No events found")
    return event
