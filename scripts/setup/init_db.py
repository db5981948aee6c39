# scripts/setup/init_db.py
"""
Initialize database: creates all tables.
Run once before first launch, or after adding new models.
Usage: python scripts/setup/init_db.py [--seed]
"""

import argparse
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from gatehouse.database import create_tables, engine, SessionLocal
from gatehouse.config import settings
from gatehouse.models.visitor import Visitor
from gatehouse.models.vehicle import Vehicle
from gatehouse.utils.clock import utcnow
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

DEMO_VISITORS = [
    ("Ana Torres", "555-0101", "Transportes del Norte", "visitor"),
    ("Luis Gómez", "555-0102", "Transportes del Norte", "visitor"),
    ("Marta Ruiz", "555-0103", None, "visitor"),
    ("Proveedor Demo", "555-0199", "Abarrotes SA", "supplier"),
]
DEMO_PLATES = ["ABC1234", "XYZ9876"]


def seed():
    """Insert a few registry entries so the simulate_visit script has ids to use."""
    db = SessionLocal()
    try:
        now = utcnow()
        for name, phone, company, visitor_type in DEMO_VISITORS:
            db.add(Visitor(name=name, phone=phone, company=company,
                           visitor_type=visitor_type, is_active=True, created_at=now))
        for plate in DEMO_PLATES:
            if not db.query(Vehicle).filter(Vehicle.plate_number == plate).first():
                db.add(Vehicle(plate_number=plate, is_active=True, registered_at=now))
        db.commit()
        for v in db.query(Visitor).order_by(Visitor.id):
            print(f"   👤 visitor {v.id}: {v.name}")
        for v in db.query(Vehicle).order_by(Vehicle.id):
            print(f"   🚗 vehicle {v.id}: {v.plate_number}")
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Create tables, optionally with demo registry data")
    parser.add_argument("--seed", action="store_true", help="insert demo visitors and vehicles")
    args = parser.parse_args()

    print("🗄️  Gatehouse DB Initialization")
    print("=" * 40)
    print(f"📡 Database: {settings.DATABASE_URL}")

    # Test connection
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")
    except SQLAlchemyError as e:
        print(f"❌ Cannot connect to database: {e}")
        print("\nMake sure PostgreSQL is running:")
        print("  docker-compose up -d db")
        print("  # or: sudo systemctl start postgresql")
        sys.exit(1)

    # Create all tables
    print("\n📋 Creating tables...")
    create_tables()
    print("✅ All tables created")

    tables = sorted(inspect(engine).get_table_names())
    print(f"\n📊 Tables in database ({len(tables)} total):")
    for t in tables:
        print(f"   ✓ {t}")

    if args.seed:
        print("\n🌱 Seeding demo registry data...")
        seed()

    print("\n🎉 Database ready! You can now start the backend:")
    print("   uvicorn gatehouse.main:app --host 0.0.0.0 --port 8080 --reload")


if __name__ == "__main__":
    main()
