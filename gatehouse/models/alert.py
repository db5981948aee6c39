# gatehouse/models/alert.py
"""
Alerts table: delay alerts raised for visitors who left the building but not the gate.
Written by alert_service; consumed by the external notifier, which marks them resolved.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from gatehouse.database import Base


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_type = Column(String(50), nullable=False, index=True)
    registro_id = Column(Integer, ForeignKey("registros.id"), index=True)
    registro_code = Column(String(30))
    building = Column(String(100))
    description = Column(Text)
    is_resolved = Column(Integer, default=0, nullable=False)
    triggered_at = Column(DateTime, nullable=False, index=True)
    resolved_at = Column(DateTime)

    def __repr__(self):
        return f"<Alert {self.id} type={self.alert_type} resolved={self.is_resolved}>"
