# gatehouse/models/vehicle.py
"""
Registered vehicles table.
Identity registry only: visit sessions reference a vehicle by id through
registro_vehiculos, the engine never mutates these rows.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean
from gatehouse.database import Base


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plate_number = Column(String(50), unique=True, nullable=False, index=True)
    plate_photo_path = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)
    registered_at = Column(DateTime)

    def __repr__(self):
        return f"<Vehicle {self.id} plate={self.plate_number}>"
