# gatehouse/services/alert_service.py
"""
Delay alerts for visitors who left the building but never reached the gate.
Alerts are persisted here; sending them (push, SMS, email) belongs to the
external notifier, which reads the alerts table.
"""

from sqlalchemy.orm import Session

from gatehouse.config import settings
from gatehouse.database import atomic
from gatehouse.models.alert import Alert
from gatehouse.services.reconciliation_service import get_sessions_delayed_at_building
from gatehouse.services.registro_service import increment_alert_count
from gatehouse.utils.clock import utcnow
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)

DELAY_ALERT = "visitor_delayed"


async def create_alert(db: Session, alert_type, registro_id, registro_code, building, description):
    """Stage an alert record in the caller's transaction. The caller commits."""
    alert = Alert(alert_type=alert_type, registro_id=registro_id, registro_code=registro_code,
                  building=building, description=description,
                  is_resolved=0, triggered_at=utcnow())
    db.add(alert)
    return alert


def _is_due(alert_count: int, repeat_every: int) -> bool:
    """First check always alerts; after that every repeat_every-th check does."""
    return alert_count == 0 or (repeat_every > 0 and alert_count % repeat_every == 0)


async def raise_delay_alerts(db: Session, threshold_minutes: int = None) -> list[Alert]:
    """
    One pass of the delay check. Every delayed leg gets its alert_count bumped;
    sessions with at least one leg due get an Alert row. Counters and alerts
    commit together, so a failed pass leaves nothing behind and can be retried.
    """
    threshold = threshold_minutes if threshold_minutes is not None else settings.DELAY_ALERT_MINUTES
    delayed = get_sessions_delayed_at_building(db, threshold)
    if not delayed:
        return []

    alerts = []
    with atomic(db):
        increment_alert_count(db, [v.leg_id for session in delayed for v in session.visitors])
        for session in delayed:
            # alert_count in the report is the value before this pass
            due = [v for v in session.visitors if _is_due(v.alert_count, settings.ALERT_REPEAT_EVERY)]
            if not due:
                continue
            names = ", ".join(v.visitor_name or v.tag for v in due)
            longest = max(v.minutes_since_building_exit for v in due)
            alerts.append(await create_alert(
                db, DELAY_ALERT, session.registro_id, session.code, session.building,
                f"Session {session.code}: {names} left building {session.building or '-'} "
                f"{longest} min ago and has not passed the gate",
            ))

    for alert in alerts:
        logger.warning(f"[ALERT][{alert.alert_type.upper()}] {alert.description}")
    return alerts
