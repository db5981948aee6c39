# gatehouse/services/registro_service.py
"""
Visit session store: creation and mutation of the registro aggregate
(session row + visitor legs + vehicle legs + notes).

Public operations own their transaction through atomic(). Helpers that take an
already-locked Registro (add_visitor_legs, add_note_row, lock_registro) join the
caller's transaction and are reused by the transition engine.

Every read-then-write decision (capacity, headcount, card) runs after the
session row has been read FOR UPDATE.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from gatehouse.database import atomic
from gatehouse.errors import (AlreadyCompleted, CapacityExceeded, NotFound, PermissionDenied,
                              ValidationError)
from gatehouse.models.enums import EventKind, LegStatus, RegistroKind, RegistroStatus, TokenKind
from gatehouse.models.registro import Registro, RegistroNota
from gatehouse.models.registro_vehiculo import RegistroVehiculo
from gatehouse.models.registro_visitante import RegistroVisitante
from gatehouse.models.vehicle import Vehicle
from gatehouse.models.visitor import Visitor
from gatehouse.schemas.registro import PedestrianSessionCreate, SessionCreate, VisitorLegIn
from gatehouse.services import code_generator, event_log, token_allocator
from gatehouse.services.roles import Guard, GuardRole
from gatehouse.utils.clock import utcnow
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RegistroPatch:
    """Descriptive fields a guard may correct on an open session. None = unchanged."""
    reason: Optional[str] = None
    building: Optional[str] = None
    host_name: Optional[str] = None

    def is_empty(self) -> bool:
        return self.reason is None and self.building is None and self.host_name is None

    def apply(self, registro: Registro):
        if self.reason is not None:
            registro.reason = self.reason
        if self.building is not None:
            registro.building = self.building
        if self.host_name is not None:
            registro.host_name = self.host_name


# ── Lookups and locks ────────────────────────────────────────────────────────

def get_registro(db: Session, registro_id: int) -> Registro:
    registro = db.query(Registro).filter(Registro.id == registro_id).first()
    if not registro:
        raise NotFound(f"Visit session {registro_id} does not exist.", code="REGISTRO_NOT_FOUND")
    return registro


def lock_registro(db: Session, registro_id: int) -> Registro:
    """Read the session row FOR UPDATE. Concurrent deciders wait here until we commit."""
    registro = (
        db.query(Registro)
        .filter(Registro.id == registro_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not registro:
        raise NotFound(f"Visit session {registro_id} does not exist.", code="REGISTRO_NOT_FOUND")
    return registro


def require_open(registro: Registro):
    if registro.is_completed:
        raise AlreadyCompleted(f"Visit session {registro.code} is already completed.")


def require_role(guard: Guard, role: GuardRole, action: str):
    if not guard.can_act_as(role):
        logger.warning(f"[ROLE] user={guard.user_id} role={guard.role.value} refused for {action}")
        raise PermissionDenied(f"Only {role.value} guards can {action}.")


def _require_visitor(db: Session, visitor_id: Optional[int]) -> Visitor:
    if not visitor_id:
        raise ValidationError("Visitor identity is required.", code="MISSING_REQUIRED_FIELD")
    visitor = db.query(Visitor).filter(Visitor.id == visitor_id, Visitor.is_active == True).first()  # noqa: E712
    if not visitor:
        raise NotFound(f"Visitor {visitor_id} does not exist.", code="VISITOR_NOT_FOUND")
    return visitor


def _require_vehicle(db: Session, vehicle_id: int) -> Vehicle:
    vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id, Vehicle.is_active == True).first()  # noqa: E712
    if not vehicle:
        raise NotFound(f"Vehicle {vehicle_id} does not exist.", code="VEHICLE_NOT_FOUND")
    return vehicle


def _validate_token(leg_in: VisitorLegIn):
    if leg_in.token_kind == TokenKind.CARD and not leg_in.card_number:
        raise ValidationError("A card number is required when the token is a card.",
                              code="MISSING_CARD_NUMBER")


# ── Leg builders (join the caller's transaction) ─────────────────────────────

def _insert_visitor_leg(db: Session, registro: Registro, leg_in: VisitorLegIn, tag: str,
                        is_driver: bool, status: LegStatus, guard: Guard, now) -> RegistroVisitante:
    _require_visitor(db, leg_in.visitor_id)
    _validate_token(leg_in)

    duplicate = db.query(RegistroVisitante.id).filter(
        RegistroVisitante.registro_id == registro.id,
        RegistroVisitante.visitor_id == leg_in.visitor_id,
    ).first()
    if duplicate:
        raise ValidationError(f"Visitor {leg_in.visitor_id} is already part of session {registro.code}.",
                              code="VISITOR_ALREADY_IN_SESSION")

    leg = RegistroVisitante(
        registro_id=registro.id,
        visitor_id=leg_in.visitor_id,
        is_driver=is_driver,
        tag=tag,
        token_kind=TokenKind.TAG,
        status=status,
        alert_count=0,
        created_at=now,
    )
    if status == LegStatus.AT_GATE:
        leg.gate_entry_at = now
    elif status == LegStatus.IN_BUILDING:
        leg.building_entry_at = now

    if leg_in.token_kind == TokenKind.CARD:
        token_allocator.claim_card(db, leg, leg_in.card_number)
    else:
        db.add(leg)
        db.flush()

    kind = EventKind.GATE_IN if status == LegStatus.AT_GATE else EventKind.BUILDING_IN
    event_log.append(db, registro.id, guard.user_id, kind, visitor_leg_id=leg.id, timestamp=now)
    return leg


def _insert_vehicle_leg(db: Session, registro: Registro, vehicle_id: int, guard: Guard, now,
                        marbete: str = None, driver_leg: RegistroVisitante = None) -> RegistroVehiculo:
    _require_vehicle(db, vehicle_id)
    duplicate = db.query(RegistroVehiculo.id).filter(
        RegistroVehiculo.registro_id == registro.id,
        RegistroVehiculo.vehicle_id == vehicle_id,
    ).first()
    if duplicate:
        raise ValidationError(f"Vehicle {vehicle_id} is already part of session {registro.code}.",
                              code="VEHICLE_ALREADY_IN_SESSION")

    vehicle_leg = RegistroVehiculo(
        registro_id=registro.id,
        vehicle_id=vehicle_id,
        driver_leg_id=driver_leg.id if driver_leg else None,
        marbete=marbete,
        entered_at=now,
        authorized_by_guard_id=guard.user_id,
    )
    db.add(vehicle_leg)
    db.flush()
    event_log.append(db, registro.id, guard.user_id, EventKind.GATE_IN,
                     vehicle_leg_id=vehicle_leg.id, timestamp=now)
    return vehicle_leg


def _count_legs(db: Session, registro_id: int) -> tuple[int, int]:
    """(all legs, non-driver legs) of a session."""
    total = db.query(func.count(RegistroVisitante.id)).filter(
        RegistroVisitante.registro_id == registro_id).scalar() or 0
    drivers = db.query(func.count(RegistroVisitante.id)).filter(
        RegistroVisitante.registro_id == registro_id,
        RegistroVisitante.is_driver == True,  # noqa: E712
    ).scalar() or 0
    return total, total - drivers


def add_visitor_legs(db: Session, registro: Registro, legs: list[VisitorLegIn], guard: Guard,
                     status: LegStatus = LegStatus.AT_GATE, now=None) -> list[RegistroVisitante]:
    """
    Attach passenger legs to a locked, open session, numbering tags V01, V02, ...
    The running total of legs never exceeds expected_count.
    """
    now = now or utcnow()
    if not legs:
        raise ValidationError("At least one visitor is required.", code="MISSING_REQUIRED_FIELD")

    total, passengers = _count_legs(db, registro.id)
    if total + len(legs) > registro.expected_count:
        logger.warning(f"[CAPACITY] {registro.code}: {total}+{len(legs)} > {registro.expected_count}")
        raise CapacityExceeded(
            f"Session {registro.code} expects {registro.expected_count} people and already has {total}."
        )

    created = []
    for offset, leg_in in enumerate(legs, start=1):
        tag = code_generator.visitor_tag(registro.code, passengers + offset)
        created.append(_insert_visitor_leg(db, registro, leg_in, tag, False, status, guard, now))
    return created


def add_note_row(db: Session, registro: Registro, text: str, guard: Guard, now=None) -> Optional[RegistroNota]:
    if not text or not text.strip():
        return None
    note = RegistroNota(registro_id=registro.id, guard_id=guard.user_id,
                        text=text.strip(), created_at=now or utcnow())
    db.add(note)
    return note


def _new_registro(db: Session, kind: RegistroKind, expected_count: Optional[int], now,
                  building=None, host_name=None, reason=None) -> Registro:
    if not expected_count or expected_count < 1:
        raise ValidationError("Expected people count must be a positive number.",
                              code="MISSING_REQUIRED_FIELD")
    registro = Registro(
        kind=kind,
        status=RegistroStatus.INITIATED,
        expected_count=expected_count,
        departed_count=0,
        building=building,
        host_name=host_name,
        reason=reason,
        created_at=now,
        updated_at=now,
    )
    db.add(registro)
    db.flush()
    registro.code = code_generator.session_code(registro.id)
    return registro


def _driver_tag_for(kind: RegistroKind, code: str) -> tuple[str, bool]:
    """(tag, is_driver) for the first leg of a gate-created session."""
    if kind == RegistroKind.SUPPLIER:
        return code_generator.special_tag(code, code_generator.SUPPLIER_SUFFIX), True
    if kind == RegistroKind.PEDESTRIAN:
        return code_generator.visitor_tag(code, 1), False
    return code_generator.driver_tag(code), True


# ── Public operations ────────────────────────────────────────────────────────

def create_session(db: Session, data: SessionCreate, guard: Guard) -> Registro:
    """
    Gate entry: session row, its code, the driver leg and the optional vehicle
    leg, all in one transaction.
    """
    require_role(guard, GuardRole.GATEHOUSE, "open a visit at the gatehouse")
    if data.driver is None or not data.driver.visitor_id:
        raise ValidationError("Driver identity is required to open a session.",
                              code="MISSING_REQUIRED_FIELD")
    if data.kind == RegistroKind.VEHICULAR and data.vehicle is None:
        raise ValidationError("A vehicular session needs a vehicle.", code="MISSING_REQUIRED_FIELD")
    if data.kind == RegistroKind.PEDESTRIAN and data.vehicle is not None:
        raise ValidationError("A pedestrian session cannot carry a vehicle.", code="INVALID_FIELD")

    with atomic(db):
        now = utcnow()
        registro = _new_registro(db, data.kind, data.expected_count, now,
                                 data.building, data.host_name, data.reason)
        registro.gate_entry_at = now
        registro.gate_entry_guard_id = guard.user_id

        tag, is_driver = _driver_tag_for(data.kind, registro.code)
        driver_leg = _insert_visitor_leg(db, registro, data.driver, tag, is_driver,
                                         LegStatus.AT_GATE, guard, now)
        if data.vehicle is not None:
            _insert_vehicle_leg(db, registro, data.vehicle.vehicle_id, guard, now,
                                marbete=data.vehicle.marbete,
                                driver_leg=driver_leg if is_driver else None)
        add_note_row(db, registro, data.notes, guard, now)

    logger.info(f"[GATE_IN] Session {registro.code} opened ({registro.kind.value}, "
                f"expects {registro.expected_count}) by guard {guard.user_id}")
    return registro


def create_pedestrian_session(db: Session, data: PedestrianSessionCreate, guard: Guard) -> Registro:
    """Building guard opens a walk-in session; legs start inside the building."""
    require_role(guard, GuardRole.BUILDING, "open a pedestrian visit at the building")
    if not data.visitors:
        raise ValidationError("At least one visitor is required.", code="MISSING_REQUIRED_FIELD")

    with atomic(db):
        now = utcnow()
        registro = _new_registro(db, RegistroKind.PEDESTRIAN,
                                 data.expected_count or len(data.visitors), now,
                                 data.building, data.host_name, data.reason)
        registro.building_entry_at = now
        registro.building_entry_guard_id = guard.user_id
        add_visitor_legs(db, registro, data.visitors, guard, status=LegStatus.IN_BUILDING, now=now)
        add_note_row(db, registro, data.notes, guard, now)

    logger.info(f"[BUILDING_IN] Pedestrian session {registro.code} opened with "
                f"{len(data.visitors)} visitor(s) by guard {guard.user_id}")
    return registro


def attach_visitors(db: Session, registro_id: int, legs: list[VisitorLegIn], guard: Guard,
                    at_building: bool = False) -> list[RegistroVisitante]:
    """Add passenger legs to an open session without exceeding its expected headcount."""
    role = GuardRole.BUILDING if at_building else GuardRole.GATEHOUSE
    require_role(guard, role, "add visitors to a session")
    status = LegStatus.IN_BUILDING if at_building else LegStatus.AT_GATE

    with atomic(db):
        registro = lock_registro(db, registro_id)
        require_open(registro)
        created = add_visitor_legs(db, registro, legs, guard, status=status)
        registro.updated_at = utcnow()

    logger.info(f"[ATTACH] {len(created)} visitor(s) added to {registro.code}")
    return created


def attach_vehicle(db: Session, registro_id: int, vehicle_id: int, guard: Guard,
                   marbete: str = None, driver: VisitorLegIn = None) -> RegistroVehiculo:
    """
    Add a vehicle to an open session. Its driver is one more person, so
    expected_count grows by one; the driver leg is created now when given, or
    attached later through attach_visitors.
    """
    require_role(guard, GuardRole.GATEHOUSE, "add a vehicle to a session")

    with atomic(db):
        now = utcnow()
        registro = lock_registro(db, registro_id)
        require_open(registro)
        registro.expected_count += 1

        driver_leg = None
        if driver is not None:
            has_driver = db.query(RegistroVisitante.id).filter(
                RegistroVisitante.registro_id == registro.id,
                RegistroVisitante.is_driver == True,  # noqa: E712
            ).count()
            suffix = code_generator.DRIVER_SUFFIX + (str(has_driver + 1) if has_driver else "")
            driver_leg = _insert_visitor_leg(
                db, registro, driver, code_generator.special_tag(registro.code, suffix),
                True, LegStatus.AT_GATE, guard, now,
            )
        vehicle_leg = _insert_vehicle_leg(db, registro, vehicle_id, guard, now,
                                          marbete=marbete, driver_leg=driver_leg)
        add_note_row(db, registro, f"Vehicle {vehicle_id} added, expected people now "
                                   f"{registro.expected_count}", guard, now)
        registro.updated_at = now

    logger.info(f"[ATTACH] Vehicle {vehicle_id} added to {registro.code} by guard {guard.user_id}")
    return vehicle_leg


def update_session(db: Session, registro_id: int, patch: RegistroPatch, guard: Guard) -> Registro:
    if patch.is_empty():
        raise ValidationError("Nothing to update.", code="NO_UPDATE_DATA")
    with atomic(db):
        registro = lock_registro(db, registro_id)
        require_open(registro)
        patch.apply(registro)
        registro.updated_at = utcnow()
    logger.info(f"[UPDATE] Session {registro.code} updated by guard {guard.user_id}")
    return registro


def add_note(db: Session, registro_id: int, text: str, guard: Guard) -> RegistroNota:
    """Notes stay appendable after completion; they never change state."""
    if not text or not text.strip():
        raise ValidationError("Note text is required.", code="MISSING_REQUIRED_FIELD")
    with atomic(db):
        registro = get_registro(db, registro_id)
        note = add_note_row(db, registro, text, guard)
    return note


def reassign_token(db: Session, leg_id: int, token_kind: TokenKind, card_number: Optional[str],
                   guard: Guard) -> RegistroVisitante:
    """Switch a leg between printed tag and physical card."""
    if guard.role not in (GuardRole.GATEHOUSE, GuardRole.BUILDING) and not guard.role.is_override:
        raise PermissionDenied("Only guards can hand out tokens.")
    if token_kind == TokenKind.CARD and not card_number:
        raise ValidationError("A card number is required when the token is a card.",
                              code="MISSING_CARD_NUMBER")

    with atomic(db):
        leg = db.query(RegistroVisitante).filter(RegistroVisitante.id == leg_id).first()
        if not leg:
            raise NotFound(f"Visitor leg {leg_id} does not exist.", code="RECORD_NOT_FOUND")
        registro = lock_registro(db, leg.registro_id)
        require_open(registro)

        token_allocator.release_leg_card(db, leg.id)
        if token_kind == TokenKind.CARD:
            token_allocator.claim_card(db, leg, card_number)
        else:
            leg.token_kind = TokenKind.TAG
            leg.card_number = None

    logger.info(f"[TOKEN] {leg.tag} now uses {token_kind.value} {card_number or ''}".rstrip())
    return leg


def increment_alert_count(db: Session, leg_ids: list[int]) -> int:
    """
    Bump alert_count on legs the notifier has just reported. Returns rows touched.
    Joins the caller's transaction: the delay pass commits it together with its alerts.
    """
    if not leg_ids:
        return 0
    return (
        db.query(RegistroVisitante)
        .filter(RegistroVisitante.id.in_(leg_ids))
        .update({RegistroVisitante.alert_count: RegistroVisitante.alert_count + 1},
                synchronize_session=False)
    )
