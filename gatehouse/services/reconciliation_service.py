# gatehouse/services/reconciliation_service.py
"""
Read views over visit sessions: the assembled session, code lookup, the
delayed-at-building report consumed by the notifier, listings and dashboard
counters.

get_session_by_code reads the session row FOR SHARE before loading legs.
Writers lock the same row FOR UPDATE first, so a view is never assembled
halfway through a transition.
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from gatehouse.database import atomic
from gatehouse.errors import NotFound, ValidationError
from gatehouse.models.enums import LegStatus, RegistroKind, RegistroStatus
from gatehouse.models.registro import Registro
from gatehouse.models.registro_visitante import RegistroVisitante
from gatehouse.schemas.registro import (CodeLookupOut, DelayedSessionOut, DelayedVisitorOut,
                                        SessionView)
from gatehouse.services import code_generator
from gatehouse.utils.clock import utcnow
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)


def _view_locked(db: Session, *criteria) -> Optional[SessionView]:
    # Anything already in the identity map may predate the lock
    db.expire_all()
    registro = (
        db.query(Registro)
        .filter(*criteria)
        .with_for_update(read=True)
        .first()
    )
    if not registro:
        return None
    return SessionView.model_validate(registro)


def get_session_view(db: Session, registro_id: int) -> SessionView:
    with atomic(db):
        view = _view_locked(db, Registro.id == registro_id)
    if view is None:
        raise NotFound(f"Visit session {registro_id} does not exist.", code="REGISTRO_NOT_FOUND")
    return view


def get_session_by_code(db: Session, code: str) -> SessionView:
    """Session, visitor legs, vehicle legs and notes as one consistent snapshot."""
    code = code_generator.normalize_text(code)
    if not code:
        raise ValidationError("A session code is required.", code="MISSING_REQUIRED_FIELD")
    with atomic(db):
        view = _view_locked(db, Registro.code == code)
    if view is None:
        raise NotFound(f"Visit session {code} does not exist.", code="REGISTRO_NOT_FOUND")
    return view


def lookup_code(db: Session, code: str) -> CodeLookupOut:
    """
    Resolve whatever a guard scanned or typed: a driver tag (-CND), a visitor
    tag (-Vnn), a special tag (-PROV) or a bare session code.
    """
    code = code_generator.normalize_text(code)
    if not code:
        raise ValidationError("A code is required.", code="MISSING_REQUIRED_FIELD")

    if "-" not in code:
        return CodeLookupOut(type="registro", session=get_session_by_code(db, code))

    leg = db.query(RegistroVisitante).filter(RegistroVisitante.tag == code).first()
    if not leg:
        raise NotFound(f"No visitor carries tag {code}.", code="RECORD_NOT_FOUND")

    if code_generator.DRIVER_TAG_RE.search(code):
        kind = "driver"
    elif code_generator.VISITOR_TAG_RE.search(code):
        kind = "visitor"
    else:
        kind = "driver" if leg.is_driver else "visitor"

    view = get_session_view(db, leg.registro_id)
    leg_out = next((v for v in view.visitantes if v.id == leg.id), None)
    return CodeLookupOut(type=kind, session=view, leg=leg_out)


def get_sessions_delayed_at_building(db: Session, threshold_minutes: int) -> list[DelayedSessionOut]:
    """
    Visitors who left the building more than threshold_minutes ago and have not
    passed the gate yet, grouped by session, oldest exit first.
    """
    now = utcnow()
    cutoff = now - timedelta(minutes=threshold_minutes)
    rows = (
        db.query(RegistroVisitante, Registro)
        .join(Registro, Registro.id == RegistroVisitante.registro_id)
        .filter(
            Registro.status != RegistroStatus.COMPLETED,
            RegistroVisitante.status.in_([LegStatus.EXITED_BUILDING, LegStatus.AWAITING_PICKUP]),
            RegistroVisitante.building_exit_at != None,  # noqa: E711
            RegistroVisitante.gate_exit_at == None,  # noqa: E711
            RegistroVisitante.building_exit_at <= cutoff,
        )
        .order_by(RegistroVisitante.building_exit_at.asc(), RegistroVisitante.id.asc())
        .all()
    )

    grouped: dict[int, DelayedSessionOut] = {}
    for leg, registro in rows:
        entry = grouped.get(registro.id)
        if entry is None:
            entry = DelayedSessionOut(registro_id=registro.id, code=registro.code,
                                      building=registro.building, visitors=[])
            grouped[registro.id] = entry
        entry.visitors.append(DelayedVisitorOut(
            leg_id=leg.id,
            tag=leg.tag,
            visitor_name=leg.visitor_name,
            minutes_since_building_exit=int((now - leg.building_exit_at).total_seconds() // 60),
            alert_count=leg.alert_count,
        ))

    if grouped:
        logger.info(f"[DELAY] {len(rows)} visitor(s) in {len(grouped)} session(s) "
                    f"past {threshold_minutes} min")
    return list(grouped.values())


def list_sessions(db: Session, status: RegistroStatus = None, kind: RegistroKind = None,
                  limit: int = 50) -> list[Registro]:
    q = db.query(Registro)
    if status:
        q = q.filter(Registro.status == status)
    if kind:
        q = q.filter(Registro.kind == kind)
    return q.order_by(Registro.created_at.desc(), Registro.id.desc()).limit(limit).all()


def dashboard_stats(db: Session) -> dict:
    now = utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_ago = now - timedelta(days=7)

    active = db.query(func.count(Registro.id)).filter(
        Registro.status == RegistroStatus.INITIATED).scalar() or 0
    visits_today = db.query(func.count(Registro.id)).filter(
        Registro.created_at >= today).scalar() or 0
    completed_today = db.query(func.count(Registro.id)).filter(
        Registro.status == RegistroStatus.COMPLETED,
        Registro.gate_exit_at >= today,
    ).scalar() or 0
    visitors_week = db.query(func.count(func.distinct(RegistroVisitante.visitor_id))).filter(
        RegistroVisitante.created_at >= week_ago).scalar() or 0

    return {
        "active_sessions": active,
        "visits_today": visits_today,
        "completed_today": completed_today,
        "visitors_last_7_days": visitors_week,
        "generated_at": now.isoformat(),
    }
