# gatehouse/models/registro_visitante.py
"""
Visitor leg table: one visitor's participation in one visit session.
Status mirrors the per-visitor state machine; each milestone has its own timestamp.
"""

from sqlalchemy import (Column, Integer, String, DateTime, Boolean, Enum, ForeignKey,
                        UniqueConstraint)
from sqlalchemy.orm import relationship
from gatehouse.database import Base
from gatehouse.models.enums import LegStatus, TokenKind, enum_values


class RegistroVisitante(Base):
    __tablename__ = "registro_visitantes"
    __table_args__ = (
        UniqueConstraint("registro_id", "visitor_id", name="uq_registro_visitante"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    registro_id = Column(Integer, ForeignKey("registros.id"), nullable=False, index=True)
    visitor_id = Column(Integer, ForeignKey("visitors.id"), nullable=False, index=True)
    is_driver = Column(Boolean, default=False, nullable=False)
    tag = Column(String(40), unique=True, nullable=False, index=True)
    token_kind = Column(Enum(TokenKind, name="token_kind", native_enum=False,
                             values_callable=enum_values, length=10),
                        default=TokenKind.TAG, nullable=False)
    card_number = Column(String(30), index=True)           # required iff token_kind = card
    status = Column(Enum(LegStatus, name="leg_status", native_enum=False,
                         values_callable=enum_values, length=20),
                    default=LegStatus.AT_GATE, nullable=False, index=True)

    gate_entry_at = Column(DateTime)
    building_entry_at = Column(DateTime)
    building_exit_at = Column(DateTime)
    gate_exit_at = Column(DateTime)
    alert_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, nullable=False)

    registro = relationship("Registro", back_populates="visitantes")
    visitor = relationship("Visitor")

    @property
    def visitor_name(self):
        return self.visitor.name if self.visitor else None

    def __repr__(self):
        return f"<RegistroVisitante {self.id} tag={self.tag} status={self.status}>"
