# gatehouse/routers/alerts.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from gatehouse.database import get_db
from gatehouse.models.alert import Alert
from gatehouse.schemas.alert import AlertOut
from gatehouse.services.alert_service import raise_delay_alerts
from gatehouse.utils.clock import utcnow
from typing import Optional

router = APIRouter()


@router.get("/alerts", response_model=list[AlertOut], summary="All alerts, filterable by type")
def get_all_alerts(
    alert_type: Optional[str] = None,
    is_resolved: Optional[int] = None,
    registro_id: Optional[int] = None,
    limit: int = 50,
    db: Session = Depends(get_db)
):
    """Combined alerts endpoint. Filter by alert_type, is_resolved or session."""
    q = db.query(Alert)
    if alert_type:
        q = q.filter(Alert.alert_type == alert_type)
    if is_resolved is not None:
        q = q.filter(Alert.is_resolved == is_resolved)
    if registro_id is not None:
        q = q.filter(Alert.registro_id == registro_id)
    return q.order_by(Alert.triggered_at.desc()).limit(limit).all()


@router.post("/alerts/check-delays", response_model=list[AlertOut],
             summary="Run one delay check; called periodically by the notifier")
async def check_delays(threshold_minutes: Optional[int] = None, db: Session = Depends(get_db)):
    return await raise_delay_alerts(db, threshold_minutes)


@router.put("/alerts/{alert_id}/resolve", summary="Resolve an alert")
def resolve_alert(alert_id: int, db: Session = Depends(get_db)):
    alert = db.query(Alert).filter(Alert.id == alert_id).first()
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    alert.is_resolved = 1
    alert.resolved_at = utcnow()
    db.commit()
    return {"id": alert_id, "status": "resolved"}
