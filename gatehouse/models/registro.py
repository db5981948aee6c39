# gatehouse/models/registro.py
"""
Visit session table (registro) and its ordered notes.
One row per physical pass through the perimeter: gatehouse → building → gatehouse.
Headcount fields drive session closure in the transition engine.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, Enum, ForeignKey
from sqlalchemy.orm import relationship, validates
from gatehouse.database import Base
from gatehouse.models.enums import RegistroKind, RegistroStatus, enum_values


class Registro(Base):
    __tablename__ = "registros"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(30), unique=True, index=True)     # UMX<id><AAA>, set once
    kind = Column(Enum(RegistroKind, name="registro_kind", native_enum=False,
                       values_callable=enum_values, length=20), nullable=False)
    status = Column(Enum(RegistroStatus, name="registro_status", native_enum=False,
                         values_callable=enum_values, length=20),
                    default=RegistroStatus.INITIATED, nullable=False, index=True)
    expected_count = Column(Integer, nullable=False)
    departed_count = Column(Integer, default=0, nullable=False)

    building = Column(String(100))
    host_name = Column(String(200))
    reason = Column(Text)

    gate_entry_at = Column(DateTime)
    building_entry_at = Column(DateTime)
    building_exit_at = Column(DateTime)
    gate_exit_at = Column(DateTime)
    gate_entry_guard_id = Column(Integer)
    building_entry_guard_id = Column(Integer)
    building_exit_guard_id = Column(Integer)
    gate_exit_guard_id = Column(Integer)

    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime)

    visitantes = relationship("RegistroVisitante", back_populates="registro",
                              order_by="RegistroVisitante.id")
    vehiculos = relationship("RegistroVehiculo", back_populates="registro",
                             order_by="RegistroVehiculo.id")
    notas = relationship("RegistroNota", back_populates="registro",
                         order_by="RegistroNota.id")

    @validates("code")
    def _code_is_immutable(self, key, value):
        if self.code is not None and value != self.code:
            raise ValueError(f"Registro {self.id} already has code {self.code}")
        return value

    @property
    def is_completed(self) -> bool:
        return self.status == RegistroStatus.COMPLETED

    def __repr__(self):
        return f"<Registro {self.id} code={self.code} status={self.status} {self.departed_count}/{self.expected_count}>"


class RegistroNota(Base):
    __tablename__ = "registro_notas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    registro_id = Column(Integer, ForeignKey("registros.id"), nullable=False, index=True)
    guard_id = Column(Integer)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False)

    registro = relationship("Registro", back_populates="notas")

    def __repr__(self):
        return f"<RegistroNota {self.id} registro={self.registro_id}>"
