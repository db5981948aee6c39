# gatehouse/services/transition_engine.py
"""
Checkpoint state machine for visit sessions.

Visitor leg:  at_gate ─building_in→ in_building ─building_out→ exited_building
                                                └─(pickup)──→ awaiting_pickup
              exited_building | awaiting_pickup ─gate_out→ completed

Vehicle leg:  on_site ─gate_out→ completed   (normally together with its driver)

TRANSITIONS is the only description of what is legal. Commit-time validation
and the advisory next_actions() both read it.

Every operation locks the session row first, validates every leg it will
touch, then writes leg state, milestone timestamps and one bitácora event per
leg inside the same transaction.
"""

import enum
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from gatehouse.database import atomic
from gatehouse.errors import (AlreadyCompleted, HeadcountMismatch, InvalidTransition, NotFound,
                              ValidationError)
from gatehouse.models.enums import (EventKind, LegStatus, RegistroStatus, VehicleLegStatus)
from gatehouse.models.registro import Registro
from gatehouse.models.registro_vehiculo import RegistroVehiculo
from gatehouse.models.registro_visitante import RegistroVisitante
from gatehouse.schemas.registro import VisitorLegIn
from gatehouse.services import event_log, token_allocator
from gatehouse.services.registro_service import (add_note_row, add_visitor_legs, lock_registro,
                                                 require_open, require_role)
from gatehouse.services.roles import Guard, GuardRole
from gatehouse.utils.clock import utcnow
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)


class TargetType(str, enum.Enum):
    SESSION = "registro"
    VISITOR = "visitante"
    VEHICLE = "vehiculo"


@dataclass(frozen=True)
class Transition:
    role: GuardRole
    from_states: frozenset
    to_state: object
    leg_stamp: Optional[str] = None           # milestone column on the leg
    alt_to_state: object = None               # building_out with pickup requested


TRANSITIONS = {
    EventKind.GATE_IN: Transition(
        role=GuardRole.GATEHOUSE,
        from_states=frozenset(),              # legs are born at_gate; no transition into it
        to_state=LegStatus.AT_GATE,
        leg_stamp="gate_entry_at",
    ),
    EventKind.BUILDING_IN: Transition(
        role=GuardRole.BUILDING,
        from_states=frozenset({LegStatus.AT_GATE}),
        to_state=LegStatus.IN_BUILDING,
        leg_stamp="building_entry_at",
    ),
    EventKind.BUILDING_OUT: Transition(
        role=GuardRole.BUILDING,
        from_states=frozenset({LegStatus.IN_BUILDING}),
        to_state=LegStatus.EXITED_BUILDING,
        leg_stamp="building_exit_at",
        alt_to_state=LegStatus.AWAITING_PICKUP,
    ),
    EventKind.GATE_OUT: Transition(
        role=GuardRole.GATEHOUSE,
        from_states=frozenset({LegStatus.EXITED_BUILDING, LegStatus.AWAITING_PICKUP}),
        to_state=LegStatus.COMPLETED,
        leg_stamp="gate_exit_at",
    ),
}

VEHICLE_TRANSITIONS = {
    EventKind.GATE_OUT: Transition(
        role=GuardRole.GATEHOUSE,
        from_states=frozenset({VehicleLegStatus.ON_SITE}),
        to_state=VehicleLegStatus.COMPLETED,
        leg_stamp="exited_at",
    ),
}

# Session-level milestone columns per action: (timestamp, guard) and whether
# the first or the latest occurrence is kept.
_SESSION_STAMPS = {
    EventKind.BUILDING_IN: ("building_entry_at", "building_entry_guard_id", "first"),
    EventKind.BUILDING_OUT: ("building_exit_at", "building_exit_guard_id", "latest"),
}


def legal_actions(status, role: GuardRole, table: dict = TRANSITIONS) -> list[EventKind]:
    """Actions the role may commit from this status, in checkpoint order."""
    return [
        action for action, t in table.items()
        if status in t.from_states and (role == t.role or role.is_override)
    ]


@dataclass
class GateExitResult:
    registro: Registro
    exited: int
    completed: bool
    remaining: int


@dataclass
class NextAction:
    target: TargetType
    target_id: int
    current_status: Optional[str]
    last_event: Optional[EventKind]
    suggested: Optional[EventKind]
    options: list = field(default_factory=list)


# ── Validation (no writes) ───────────────────────────────────────────────────

def _check_leg(leg: RegistroVisitante, action: EventKind, guard: Guard) -> Transition:
    t = TRANSITIONS[action]
    require_role(guard, t.role, f"register {action.value}")
    if leg.status not in t.from_states:
        logger.warning(f"[{action.name}] refused for {leg.tag}: status is {leg.status.value}")
        raise InvalidTransition(
            f"{leg.tag} cannot go through {action.value} while {leg.status.value}."
        )
    return t


def _check_vehicle(vleg: RegistroVehiculo, action: EventKind, guard: Guard) -> Transition:
    t = VEHICLE_TRANSITIONS.get(action)
    if t is None:
        raise InvalidTransition(f"Vehicles only register {EventKind.GATE_OUT.value}.")
    require_role(guard, t.role, f"register {action.value}")
    if vleg.status not in t.from_states:
        raise InvalidTransition(f"Vehicle leg {vleg.id} already left the perimeter.")
    return t


def _legs_of(db: Session, registro: Registro, leg_ids: list[int]) -> list[RegistroVisitante]:
    if len(set(leg_ids)) != len(leg_ids):
        raise ValidationError("A visitor leg is listed twice.", code="DUPLICATE_LEG")
    legs = (
        db.query(RegistroVisitante)
        .filter(RegistroVisitante.id.in_(leg_ids), RegistroVisitante.registro_id == registro.id)
        .order_by(RegistroVisitante.id)
        .all()
    )
    if len(legs) != len(leg_ids):
        missing = sorted(set(leg_ids) - {leg.id for leg in legs})
        raise NotFound(f"Visitor legs {missing} do not belong to session {registro.code}.",
                       code="RECORD_NOT_FOUND")
    return legs


# ── Writes (join the caller's transaction) ───────────────────────────────────

def _advance(db: Session, registro: Registro, leg: RegistroVisitante, action: EventKind,
             t: Transition, guard: Guard, now, pickup: bool = False, note: str = None):
    leg.status = t.alt_to_state if (pickup and t.alt_to_state) else t.to_state
    setattr(leg, t.leg_stamp, now)
    event_log.append(db, registro.id, guard.user_id, action, visitor_leg_id=leg.id,
                     note=note, timestamp=now)

    stamp = _SESSION_STAMPS.get(action)
    if stamp:
        ts_col, guard_col, keep = stamp
        if keep == "latest" or getattr(registro, ts_col) is None:
            setattr(registro, ts_col, now)
            setattr(registro, guard_col, guard.user_id)


def _exit_vehicle(db: Session, registro: Registro, vleg: RegistroVehiculo, guard: Guard, now,
                  note: str = None):
    vleg.status = VehicleLegStatus.COMPLETED
    vleg.exited_at = now
    event_log.append(db, registro.id, guard.user_id, EventKind.GATE_OUT,
                     vehicle_leg_id=vleg.id, note=note, timestamp=now)


def _open_vehicle_legs(db: Session, registro_id: int) -> list[RegistroVehiculo]:
    db.flush()
    return (
        db.query(RegistroVehiculo)
        .filter(RegistroVehiculo.registro_id == registro_id,
                RegistroVehiculo.status == VehicleLegStatus.ON_SITE)
        .order_by(RegistroVehiculo.id)
        .all()
    )


def _complete(db: Session, registro: Registro, guard: Guard, now):
    """Seal the session: vehicles out, cards freed, guard of record stamped."""
    for vleg in _open_vehicle_legs(db, registro.id):
        _exit_vehicle(db, registro, vleg, guard, now, note="Closed with session")
    registro.status = RegistroStatus.COMPLETED
    registro.gate_exit_at = now
    registro.gate_exit_guard_id = guard.user_id
    released = token_allocator.release_session_cards(db, registro.id)
    logger.info(f"[COMPLETE] Session {registro.code} closed by guard {guard.user_id} "
                f"({registro.departed_count}/{registro.expected_count}, {released} card(s) released)")


def _gate_exit(db: Session, registro: Registro, legs: list[RegistroVisitante], guard: Guard,
               exit_count: Optional[int], close: bool, note: str, now) -> GateExitResult:
    require_open(registro)
    if not legs:
        raise ValidationError("No visitors listed for gate exit.", code="MISSING_REQUIRED_FIELD")
    if exit_count is not None and exit_count != len(legs):
        raise HeadcountMismatch(
            f"Declared {exit_count} people leaving but {len(legs)} visitor legs were listed."
        )

    transitions = [_check_leg(leg, EventKind.GATE_OUT, guard) for leg in legs]

    departed = registro.departed_count + len(legs)
    if departed > registro.expected_count:
        raise HeadcountMismatch(
            f"Session {registro.code} expects {registro.expected_count} people; "
            f"{departed} would have left."
        )
    if close and departed != registro.expected_count:
        logger.warning(f"[GATE_OUT] {registro.code} close refused: "
                       f"{departed}/{registro.expected_count} people")
        raise HeadcountMismatch(
            f"People do not match: {departed} of {registro.expected_count} would have left "
            f"session {registro.code}."
        )

    for leg, t in zip(legs, transitions):
        _advance(db, registro, leg, EventKind.GATE_OUT, t, guard, now, note=note)
        for vleg in _open_vehicle_legs(db, registro.id):
            if vleg.driver_leg_id == leg.id:
                _exit_vehicle(db, registro, vleg, guard, now, note=f"Left with {leg.tag}")

    registro.departed_count = departed
    registro.updated_at = now
    add_note_row(db, registro, note, guard, now)

    completed = departed == registro.expected_count
    if completed:
        _complete(db, registro, guard, now)
    else:
        logger.info(f"[GATE_OUT] {len(legs)} left {registro.code}, "
                    f"{registro.expected_count - departed} still inside")
    return GateExitResult(registro=registro, exited=len(legs), completed=completed,
                          remaining=registro.expected_count - departed)


# ── Public operations ────────────────────────────────────────────────────────

def transition_visitor(db: Session, leg_id: int, action: EventKind, guard: Guard,
                       pickup: bool = False, note: str = None) -> RegistroVisitante:
    with atomic(db):
        leg = db.query(RegistroVisitante).filter(RegistroVisitante.id == leg_id).first()
        if not leg:
            raise NotFound(f"Visitor leg {leg_id} does not exist.", code="RECORD_NOT_FOUND")
        registro = lock_registro(db, leg.registro_id)
        require_open(registro)
        db.refresh(leg)

        if action == EventKind.GATE_IN:
            raise InvalidTransition("Gate entry happens when the leg is created.")
        now = utcnow()
        if action == EventKind.GATE_OUT:
            _gate_exit(db, registro, [leg], guard, exit_count=1, close=False, note=note, now=now)
        else:
            t = _check_leg(leg, action, guard)
            _advance(db, registro, leg, action, t, guard, now, pickup=pickup, note=note)
            registro.updated_at = now

    logger.info(f"[{action.name}] {leg.tag} → {leg.status.value} (guard {guard.user_id})")
    return leg


def transition_vehicle(db: Session, vehicle_leg_id: int, action: EventKind, guard: Guard,
                       note: str = None) -> RegistroVehiculo:
    """
    A vehicle leaving on its own, ahead of its people. The session stays open:
    only a gate exit that brings the headcount to expected_count closes it.
    """
    with atomic(db):
        vleg = db.query(RegistroVehiculo).filter(RegistroVehiculo.id == vehicle_leg_id).first()
        if not vleg:
            raise NotFound(f"Vehicle leg {vehicle_leg_id} does not exist.", code="RECORD_NOT_FOUND")
        registro = lock_registro(db, vleg.registro_id)
        require_open(registro)
        db.refresh(vleg)

        _check_vehicle(vleg, action, guard)
        now = utcnow()
        _exit_vehicle(db, registro, vleg, guard, now, note=note)
        registro.updated_at = now

    logger.info(f"[{action.name}] Vehicle leg {vehicle_leg_id} of {registro.code} left")
    return vleg


def transition_session(db: Session, registro_id: int, action: EventKind, guard: Guard,
                       pickup: bool = False, note: str = None) -> Registro:
    """
    Apply an action to every leg of the session currently able to take it.
    gate_out on a whole session is a closing batch: everyone must be out after it.
    """
    with atomic(db):
        registro = lock_registro(db, registro_id)
        require_open(registro)
        if action == EventKind.GATE_IN:
            raise InvalidTransition("Gate entry happens when the session is created.")

        t = TRANSITIONS[action]
        require_role(guard, t.role, f"register {action.value}")
        legs = (
            db.query(RegistroVisitante)
            .filter(RegistroVisitante.registro_id == registro.id,
                    RegistroVisitante.status.in_(t.from_states))
            .order_by(RegistroVisitante.id)
            .populate_existing()
            .all()
        )
        if not legs:
            raise InvalidTransition(f"No visitor in {registro.code} can go through {action.value} now.")

        now = utcnow()
        if action == EventKind.GATE_OUT:
            _gate_exit(db, registro, legs, guard, exit_count=len(legs), close=True, note=note, now=now)
        else:
            for leg in legs:
                _advance(db, registro, leg, action, t, guard, now, pickup=pickup)
            add_note_row(db, registro, note, guard, now)
            registro.updated_at = now

    logger.info(f"[{action.name}] Session {registro.code}: {len(legs)} visitor(s) by guard {guard.user_id}")
    return registro


def transition(db: Session, target: TargetType, target_id: int, action: EventKind, guard: Guard,
               pickup: bool = False, note: str = None):
    """Single entry point for guard stations: session, visitor leg or vehicle leg."""
    if target == TargetType.SESSION:
        return transition_session(db, target_id, action, guard, pickup=pickup, note=note)
    if target == TargetType.VISITOR:
        return transition_visitor(db, target_id, action, guard, pickup=pickup, note=note)
    return transition_vehicle(db, target_id, action, guard, note=note)


def register_building_entry(db: Session, registro_id: int, guard: Guard,
                            leg_ids: Optional[list[int]] = None,
                            new_visitors: Optional[list[VisitorLegIn]] = None,
                            note: str = None) -> Registro:
    """
    Building entry for legs already at the gate (all of them when leg_ids is None)
    plus visitors who were not present at gate creation, attached straight into
    the building within the expected headcount.
    """
    require_role(guard, GuardRole.BUILDING, "register building entry")
    new_visitors = new_visitors or []

    with atomic(db):
        registro = lock_registro(db, registro_id)
        require_open(registro)
        now = utcnow()

        if leg_ids is None:
            legs = (
                db.query(RegistroVisitante)
                .filter(RegistroVisitante.registro_id == registro.id,
                        RegistroVisitante.status == LegStatus.AT_GATE)
                .order_by(RegistroVisitante.id)
                .all()
            )
        else:
            legs = _legs_of(db, registro, leg_ids)

        if not legs and not new_visitors:
            raise InvalidTransition(f"Nobody from {registro.code} is waiting at the gate.")

        transitions = [_check_leg(leg, EventKind.BUILDING_IN, guard) for leg in legs]
        for leg, t in zip(legs, transitions):
            _advance(db, registro, leg, EventKind.BUILDING_IN, t, guard, now)
        if new_visitors:
            add_visitor_legs(db, registro, new_visitors, guard, status=LegStatus.IN_BUILDING, now=now)
            if registro.building_entry_at is None:
                registro.building_entry_at = now
                registro.building_entry_guard_id = guard.user_id
        add_note_row(db, registro, note, guard, now)
        registro.updated_at = now

    logger.info(f"[BUILDING_IN] {registro.code}: {len(legs)} from gate, "
                f"{len(new_visitors)} new (guard {guard.user_id})")
    return registro


def batch_gate_exit(db: Session, registro_id: int, leg_ids: list[int], guard: Guard,
                    exit_count: int, close: bool = False, notes: str = None) -> GateExitResult:
    """
    Gate exit for a batch of visitors of one session.
    exit_count is the number of people the guard counted at the gate and must
    match the legs listed. With close=True the batch must bring the session to
    its expected headcount, otherwise nothing is written.
    """
    require_role(guard, GuardRole.GATEHOUSE, "register gate exit")
    with atomic(db):
        registro = lock_registro(db, registro_id)
        require_open(registro)
        legs = _legs_of(db, registro, leg_ids)
        result = _gate_exit(db, registro, legs, guard, exit_count=exit_count, close=close,
                            note=notes, now=utcnow())
    return result


# ── Advisory ─────────────────────────────────────────────────────────────────

def _narrow(options: list, guard: Guard) -> tuple[Optional[EventKind], list]:
    """Checkpoint guards get one suggestion; supervisors and admins see every option."""
    if not options:
        return None, []
    if guard.role.is_override:
        return options[0], options
    return options[0], options[:1]


def next_actions(db: Session, target: TargetType, target_id: int, guard: Guard) -> NextAction:
    """
    What the caller could commit next on an entity. Reads the authoritative
    status fields; the last bitácora event is reported for display only.
    """
    if target == TargetType.VISITOR:
        leg = db.query(RegistroVisitante).filter(RegistroVisitante.id == target_id).first()
        if not leg:
            raise NotFound(f"Visitor leg {target_id} does not exist.", code="RECORD_NOT_FOUND")
        closed = leg.registro.is_completed
        status = leg.status
        options = [] if closed else legal_actions(status, guard.role)
        last = event_log.last_event_for(db, visitor_leg_id=leg.id)

    elif target == TargetType.VEHICLE:
        vleg = db.query(RegistroVehiculo).filter(RegistroVehiculo.id == target_id).first()
        if not vleg:
            raise NotFound(f"Vehicle leg {target_id} does not exist.", code="RECORD_NOT_FOUND")
        closed = vleg.registro.is_completed
        status = vleg.status
        options = [] if closed else legal_actions(status, guard.role, VEHICLE_TRANSITIONS)
        last = event_log.last_event_for(db, vehicle_leg_id=vleg.id)

    else:
        registro = db.query(Registro).filter(Registro.id == target_id).first()
        if not registro:
            raise NotFound(f"Visit session {target_id} does not exist.", code="REGISTRO_NOT_FOUND")
        status = registro.status
        options = []
        if not registro.is_completed:
            for leg in registro.visitantes:
                for action in legal_actions(leg.status, guard.role):
                    if action not in options:
                        options.append(action)
            options.sort(key=list(TRANSITIONS).index)
        last = event_log.last_event_for(db, registro_id=registro.id)

    suggested, options = _narrow(options, guard)
    return NextAction(
        target=target,
        target_id=target_id,
        current_status=status.value if status is not None else None,
        last_event=last.kind if last else None,
        suggested=suggested,
        options=options,
    )
