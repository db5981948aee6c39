# gatehouse/database.py
"""
Database connection, session management, transaction boundary and table creation.
Uses SQLAlchemy with PostgreSQL. All models are auto-imported here
so create_tables() creates every table in one call.
"""

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from gatehouse.config import settings
from gatehouse.errors import EngineError, StorageError
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Local/test runs only: no row locks, single connection per thread
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,          # Auto-reconnect if DB connection drops
        "pool_size": 10,
        "max_overflow": 20,
    }


engine = create_engine(
    settings.DATABASE_URL,
    echo=False,                          # Set True to log all SQL queries (debug only)
    **_engine_options(settings.DATABASE_URL),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency. Yields a DB session and closes it after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db):
    """
    One engine operation = one transaction.
    Commits on success. Engine errors roll back and propagate unchanged;
    driver/ORM errors roll back and surface as StorageError.
    """
    try:
        yield db
        db.commit()
    except EngineError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Transaction rolled back: {exc}", exc_info=True)
        raise StorageError("Storage failure, the operation was not applied.") from exc


def create_tables():
    """
    Creates all DB tables on startup. Safe to call multiple times.
    Import all models here so SQLAlchemy knows about them.
    """
    # Identity registries
    from gatehouse.models.visitor import Visitor                           # noqa
    from gatehouse.models.vehicle import Vehicle                           # noqa
    # Visit sessions
    from gatehouse.models.registro import Registro, RegistroNota           # noqa
    from gatehouse.models.registro_visitante import RegistroVisitante      # noqa
    from gatehouse.models.registro_vehiculo import RegistroVehiculo        # noqa
    from gatehouse.models.card_claim import CardClaim                      # noqa
    from gatehouse.models.bitacora import BitacoraEvent                    # noqa
    from gatehouse.models.alert import Alert                               # noqa

    Base.metadata.create_all(bind=engine)
