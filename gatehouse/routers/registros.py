# gatehouse/routers/registros.py
"""Visit sessions: gate and building checkpoints, headcount exit, tokens and lookups."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gatehouse.config import settings
from gatehouse.database import get_db
from gatehouse.models.enums import RegistroKind, RegistroStatus
from gatehouse.routers.deps import get_current_guard
from gatehouse.schemas.registro import (AttachVehicleIn, AttachVisitorsIn, BuildingEntryIn,
                                        CodeLookupOut, DelayedSessionOut, GateExitIn, GateExitOut,
                                        NextActionOut, NoteIn, NoteOut, PedestrianSessionCreate,
                                        RegistroOut, RegistroPatchIn, SessionCreate, SessionView,
                                        TokenUpdate, TransitionIn, VehicleLegOut, VisitorLegOut)
from gatehouse.services import reconciliation_service, registro_service, token_allocator
from gatehouse.services.roles import Guard
from gatehouse.services.transition_engine import (TargetType, batch_gate_exit, next_actions,
                                                  register_building_entry, transition)

router = APIRouter()


# ── Sessions ─────────────────────────────────────────────────────────────────

@router.post("/registros", response_model=SessionView, status_code=201, summary="Open a visit at the gatehouse")
def create_session(body: SessionCreate, db: Session = Depends(get_db),
                   guard: Guard = Depends(get_current_guard)):
    registro = registro_service.create_session(db, body, guard)
    return reconciliation_service.get_session_view(db, registro.id)


@router.post("/registros/pedestrian", response_model=SessionView, status_code=201,
             summary="Open a walk-in visit at the building")
def create_pedestrian_session(body: PedestrianSessionCreate, db: Session = Depends(get_db),
                              guard: Guard = Depends(get_current_guard)):
    registro = registro_service.create_pedestrian_session(db, body, guard)
    return reconciliation_service.get_session_view(db, registro.id)


@router.get("/registros", response_model=list[RegistroOut], summary="List visit sessions, newest first")
def list_sessions(status: Optional[RegistroStatus] = None, kind: Optional[RegistroKind] = None,
                  limit: int = 50, db: Session = Depends(get_db)):
    return reconciliation_service.list_sessions(db, status=status, kind=kind, limit=limit)


@router.get("/registros/delayed", response_model=list[DelayedSessionOut],
            summary="Visitors out of the building but not through the gate")
def delayed_sessions(threshold_minutes: Optional[int] = None, db: Session = Depends(get_db)):
    threshold = threshold_minutes if threshold_minutes is not None else settings.DELAY_ALERT_MINUTES
    return reconciliation_service.get_sessions_delayed_at_building(db, threshold)


@router.get("/registros/code/{code}", response_model=SessionView)
def get_by_code(code: str, db: Session = Depends(get_db)):
    return reconciliation_service.get_session_by_code(db, code)


@router.get("/registros/lookup/{code}", response_model=CodeLookupOut,
            summary="Resolve a session code or a printed tag")
def lookup(code: str, db: Session = Depends(get_db)):
    return reconciliation_service.lookup_code(db, code)


@router.get("/registros/{registro_id}", response_model=SessionView)
def get_session(registro_id: int, db: Session = Depends(get_db)):
    return reconciliation_service.get_session_view(db, registro_id)


@router.patch("/registros/{registro_id}", response_model=RegistroOut)
def update_session(registro_id: int, body: RegistroPatchIn, db: Session = Depends(get_db),
                   guard: Guard = Depends(get_current_guard)):
    patch = registro_service.RegistroPatch(reason=body.reason, building=body.building,
                                           host_name=body.host_name)
    return registro_service.update_session(db, registro_id, patch, guard)


@router.post("/registros/{registro_id}/notes", response_model=NoteOut, status_code=201)
def add_note(registro_id: int, body: NoteIn, db: Session = Depends(get_db),
             guard: Guard = Depends(get_current_guard)):
    return registro_service.add_note(db, registro_id, body.text, guard)


# ── Attach ───────────────────────────────────────────────────────────────────

@router.post("/registros/{registro_id}/visitors", response_model=list[VisitorLegOut], status_code=201)
def attach_visitors(registro_id: int, body: AttachVisitorsIn, at_building: bool = False,
                    db: Session = Depends(get_db), guard: Guard = Depends(get_current_guard)):
    return registro_service.attach_visitors(db, registro_id, body.visitors, guard, at_building=at_building)


@router.post("/registros/{registro_id}/vehicles", response_model=VehicleLegOut, status_code=201)
def attach_vehicle(registro_id: int, body: AttachVehicleIn, db: Session = Depends(get_db),
                   guard: Guard = Depends(get_current_guard)):
    return registro_service.attach_vehicle(db, registro_id, body.vehicle_id, guard,
                                           marbete=body.marbete, driver=body.driver)


# ── Checkpoints ──────────────────────────────────────────────────────────────

@router.post("/registros/{registro_id}/building-entry", response_model=SessionView)
def building_entry(registro_id: int, body: BuildingEntryIn, db: Session = Depends(get_db),
                   guard: Guard = Depends(get_current_guard)):
    register_building_entry(db, registro_id, guard, leg_ids=body.leg_ids,
                            new_visitors=body.new_visitors, note=body.notes)
    return reconciliation_service.get_session_view(db, registro_id)


@router.post("/registros/{registro_id}/gate-exit", response_model=GateExitOut,
             summary="Gate exit for a batch of visitors, checked against the headcount")
def gate_exit(registro_id: int, body: GateExitIn, db: Session = Depends(get_db),
              guard: Guard = Depends(get_current_guard)):
    result = batch_gate_exit(db, registro_id, body.leg_ids, guard, exit_count=body.exit_count,
                             close=body.close, notes=body.notes)
    return GateExitOut(
        registro_id=result.registro.id,
        code=result.registro.code,
        exited=result.exited,
        departed_count=result.registro.departed_count,
        expected_count=result.registro.expected_count,
        completed=result.completed,
    )


@router.post("/registros/{registro_id}/transition", response_model=SessionView)
def transition_session(registro_id: int, body: TransitionIn, db: Session = Depends(get_db),
                       guard: Guard = Depends(get_current_guard)):
    transition(db, TargetType.SESSION, registro_id, body.action, guard, pickup=body.pickup, note=body.notes)
    return reconciliation_service.get_session_view(db, registro_id)


@router.post("/visitantes/{leg_id}/transition", response_model=VisitorLegOut)
def transition_visitor(leg_id: int, body: TransitionIn, db: Session = Depends(get_db),
                       guard: Guard = Depends(get_current_guard)):
    return transition(db, TargetType.VISITOR, leg_id, body.action, guard, pickup=body.pickup, note=body.notes)


@router.post("/vehiculos/{leg_id}/transition", response_model=VehicleLegOut)
def transition_vehicle(leg_id: int, body: TransitionIn, db: Session = Depends(get_db),
                       guard: Guard = Depends(get_current_guard)):
    return transition(db, TargetType.VEHICLE, leg_id, body.action, guard, note=body.notes)


@router.get("/next-actions/{target}/{target_id}", response_model=NextActionOut,
            summary="What this guard can register next")
def get_next_actions(target: TargetType, target_id: int, db: Session = Depends(get_db),
                     guard: Guard = Depends(get_current_guard)):
    hint = next_actions(db, target, target_id, guard)
    return NextActionOut(
        target=hint.target.value,
        target_id=hint.target_id,
        current_status=hint.current_status,
        last_event=hint.last_event,
        suggested=hint.suggested,
        options=hint.options,
    )


# ── Tokens ───────────────────────────────────────────────────────────────────

@router.put("/visitantes/{leg_id}/token", response_model=VisitorLegOut)
def reassign_token(leg_id: int, body: TokenUpdate, db: Session = Depends(get_db),
                   guard: Guard = Depends(get_current_guard)):
    return registro_service.reassign_token(db, leg_id, body.token_kind, body.card_number, guard)


@router.get("/cards/{card_number}", summary="Is this physical card free?")
def card_availability(card_number: str, exclude_registro_id: Optional[int] = None,
                      db: Session = Depends(get_db)):
    holder = token_allocator.check_card(db, card_number, exclude_registro_id)
    return {"card_number": card_number, "available": holder is None, "held_by": holder}
