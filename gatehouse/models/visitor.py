# gatehouse/models/visitor.py
"""
Visitor identity registry (drivers included).
Populated by the registration and advance-registration workflows;
visit sessions only hold references to these rows.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean
from gatehouse.database import Base


class Visitor(Base):
    __tablename__ = "visitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(50))
    company = Column(String(200))
    visitor_type = Column(String(50))        # visitor | supplier | student | ...
    id_photo_path = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime)

    def __repr__(self):
        return f"<Visitor {self.id} name={self.name}>"
