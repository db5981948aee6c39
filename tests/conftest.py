# tests/conftest.py
"""
Shared fixtures: an in-memory SQLite database per test, registry factories and
one guard per role. The card race in test_concurrency.py uses its own file-backed
database so two threads get separate connections.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.pop("API_KEY", None)

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gatehouse.database import Base
import gatehouse.models  # noqa: F401  registers every table on Base.metadata
from gatehouse.models.enums import RegistroKind
from gatehouse.models.vehicle import Vehicle
from gatehouse.models.visitor import Visitor
from gatehouse.schemas.registro import SessionCreate, VehicleLegIn, VisitorLegIn
from gatehouse.services.roles import Guard, GuardRole
from gatehouse.utils.clock import utcnow

GATE = Guard(user_id=1, role=GuardRole.GATEHOUSE)
BUILDING = Guard(user_id=2, role=GuardRole.BUILDING)
SUPERVISOR = Guard(user_id=3, role=GuardRole.SUPERVISOR)
ADMIN = Guard(user_id=4, role=GuardRole.ADMIN)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


def make_visitor(db, name="Ana Torres", **kwargs):
    visitor = Visitor(name=name, is_active=True, created_at=utcnow(), **kwargs)
    db.add(visitor)
    db.commit()
    return visitor


def make_vehicle(db, plate="ABC1234"):
    vehicle = Vehicle(plate_number=plate, is_active=True, registered_at=utcnow())
    db.add(vehicle)
    db.commit()
    return vehicle


def vehicular_session(driver_id, vehicle_id, expected_count=2, card=None, **kwargs) -> SessionCreate:
    driver = VisitorLegIn(visitor_id=driver_id)
    if card:
        driver = VisitorLegIn(visitor_id=driver_id, token_kind="card", card_number=card)
    return SessionCreate(
        kind=kwargs.pop("kind", RegistroKind.VEHICULAR),
        expected_count=expected_count,
        driver=driver,
        vehicle=VehicleLegIn(vehicle_id=vehicle_id) if vehicle_id else None,
        **kwargs,
    )


@pytest.fixture
def people(db):
    """Four registered visitors."""
    return [make_visitor(db, name) for name in ("Ana Torres", "Luis Gómez", "Marta Ruiz", "Pablo Díaz")]


@pytest.fixture
def car(db):
    return make_vehicle(db)
