# gatehouse/models/registro_vehiculo.py
"""
Vehicle leg table: one vehicle inside one visit session.
Paired with the driver's visitor leg; leaves the perimeter together with it.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from gatehouse.database import Base
from gatehouse.models.enums import VehicleLegStatus, enum_values


class RegistroVehiculo(Base):
    __tablename__ = "registro_vehiculos"
    __table_args__ = (
        UniqueConstraint("registro_id", "vehicle_id", name="uq_registro_vehiculo"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    registro_id = Column(Integer, ForeignKey("registros.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    driver_leg_id = Column(Integer, ForeignKey("registro_visitantes.id"))
    marbete = Column(String(30))                 # claim-check number
    status = Column(Enum(VehicleLegStatus, name="vehicle_leg_status", native_enum=False,
                         values_callable=enum_values, length=20),
                    default=VehicleLegStatus.ON_SITE, nullable=False)
    entered_at = Column(DateTime)
    exited_at = Column(DateTime)
    authorized_by_guard_id = Column(Integer)

    registro = relationship("Registro", back_populates="vehiculos")
    vehicle = relationship("Vehicle")
    driver_leg = relationship("RegistroVisitante")

    @property
    def plate_number(self):
        return self.vehicle.plate_number if self.vehicle else None

    def __repr__(self):
        return f"<RegistroVehiculo {self.id} vehicle={self.vehicle_id} status={self.status}>"
