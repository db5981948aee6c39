# gatehouse/models/bitacora.py
"""
Bitácora: append-only event log.
One row per committed transition, written in the same transaction as the state
change it documents. Rows are never updated or deleted; authoritative status
lives on the leg and session rows.
"""

from sqlalchemy import Column, Integer, DateTime, Text, Enum, ForeignKey, Index
from gatehouse.database import Base
from gatehouse.models.enums import EventKind, enum_values


class BitacoraEvent(Base):
    __tablename__ = "bitacora"
    __table_args__ = (
        Index("ix_bitacora_registro_ts", "registro_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    registro_id = Column(Integer, ForeignKey("registros.id"), nullable=False)
    visitor_leg_id = Column(Integer, ForeignKey("registro_visitantes.id"), index=True)
    vehicle_leg_id = Column(Integer, ForeignKey("registro_vehiculos.id"), index=True)
    guard_id = Column(Integer, nullable=False)
    kind = Column(Enum(EventKind, name="event_kind", native_enum=False,
                       values_callable=enum_values, length=20), nullable=False)
    note = Column(Text)
    timestamp = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<BitacoraEvent {self.id} {self.kind} registro={self.registro_id}>"
