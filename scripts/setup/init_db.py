# scripts/setup/init_db.py
"""
Initialize database: creates all tables and provisions the parking spaces.
Run once before first launch, or after changing TOTAL_SPACES / ZONES.
Usage: python scripts/setup/init_db.py [--total 120] [--force]
"""

import argparse
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError
from parkhub.config import settings
from parkhub.database import Database
from parkhub.exceptions import ProvisioningConflict
from parkhub.services.provisioning_service import provision_spaces
from parkhub.services.space_store import SpaceStore


def main():
    parser = argparse.ArgumentParser(description="Create tables and provision parking spaces")
    parser.add_argument("--total", type=int, default=settings.TOTAL_SPACES)
    parser.add_argument("--force", action="store_true",
                        help="Replace the lot even if spaces are reserved or occupied")
    args = parser.parse_args()

    print("🗄️  ParkHub DB Initialization")
    print("=" * 40)
    database = Database(settings.DATABASE_URL, timeout_seconds=settings.STORE_TIMEOUT_SECONDS)
    database.open()
    print(f"📡 Database: {database.engine.url.render_as_string(hide_password=True)}")

    # Test connection
    try:
        database.ping()
        print("✅ Database connection OK")
    except OperationalError as e:
        print(f"❌ Cannot connect to database: {e}")
        print("\nMake sure PostgreSQL is running:")
        print("  docker-compose up -d db")
        print("  # or: sudo systemctl start postgresql")
        sys.exit(1)

    # Create all tables
    print("\n📋 Creating tables...")
    database.create_tables()
    tables = sorted(inspect(database.engine).get_table_names())
    print(f"📊 Tables in database ({len(tables)} total):")
    for t in tables:
        print(f"   ✓ {t}")

    # Provision spaces
    print(f"\n🅿️  Provisioning {args.total} spaces in zones {settings.ZONE_LIST}...")
    db = database.session()
    try:
        report = provision_spaces(
            SpaceStore(db), args.total, settings.ZONE_LIST,
            truck_ratio=settings.PROVISION_TRUCK_RATIO,
            motorcycle_ratio=settings.PROVISION_MOTORCYCLE_RATIO,
            force=args.force,
        )
    except ProvisioningConflict as e:
        print(f"❌ {e}")
        print("   Re-run with --force to replace the lot anyway.")
        sys.exit(2)
    finally:
        db.close()
        database.close()

    if report.created:
        print(f"✅ Replaced {report.previous_count} space(s) with {report.created}")
    else:
        print(f"✅ Already {report.total} spaces, nothing to do")

    print("\n🎉 Database ready! You can now start the backend:")
    print("   uvicorn parkhub.main:app --host 0.0.0.0 --port 8080 --reload")


if __name__ == "__main__":
    main()
