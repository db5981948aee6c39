# gatehouse/routers/dashboard.py
"""Counters for the guard-room dashboard."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from gatehouse.database import get_db
from gatehouse.services.reconciliation_service import dashboard_stats

router = APIRouter()


@router.get("/dashboard/stats", summary="Active sessions, today's visits, weekly visitors")
def get_stats(db: Session = Depends(get_db)):
    return dashboard_stats(db)
