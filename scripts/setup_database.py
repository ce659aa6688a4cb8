#!/usr/bin/env python3
# scripts/setup_database.py
"""
Complete setup check for the flow editor backend
- Verifies the snapshot database connection
- Applies Alembic migrations
- Checks that the CTA flow persistence API answers
"""
import asyncio
import os
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect

from app.core.config import CTA_FLOW_API_BASE_URL, DATABASE_URL
from app.db.session import engine, test_db_connection
from app.flow_builder.errors import FlowApiError
from app.services.cta_flow_client import CtaFlowApiClient

EXPECTED_TABLES = ["editor_snapshots", "alembic_version"]


def setup():
    print("=" * 70)
    print("🚀 CTA FLOW BUILDER SETUP")
    print("=" * 70)

    # Step 1: Test connection
    print("\n1️⃣  Testing database connection...")
    print(f"   Database: {DATABASE_URL.split('@')[1] if '@' in DATABASE_URL else 'hidden'}")

    if not test_db_connection():
        print("   ❌ Database connection failed!")
        print("   Please check:")
        print("   - PostgreSQL is running")
        print("   - Database exists")
        print("   - .env configuration is correct")
        return 1
    print("   ✅ Database connected successfully")

    # Step 2: Run migrations
    print("\n2️⃣  Running database migrations...")
    result = os.system("alembic upgrade head")
    if result != 0:
        print("   ❌ Migration failed!")
        print("   Try manually: alembic upgrade head")
        return 1
    print("   ✅ All migrations applied")

    # Step 3: Verify tables
    print("\n3️⃣  Verifying database tables...")
    tables = inspect(engine).get_table_names()
    missing = [t for t in EXPECTED_TABLES if t not in tables]
    if missing:
        print(f"   ⚠️  Missing tables: {', '.join(missing)}")
    else:
        for table in EXPECTED_TABLES:
            print(f"      ✓ {table}")

    # Step 4: Persistence API
    print(f"\n4️⃣  Checking flow API at {CTA_FLOW_API_BASE_URL}...")
    try:
        drafts = asyncio.run(CtaFlowApiClient().list_flows(published=False))
        print(f"   ✅ Flow API reachable ({len(drafts)} draft flow(s))")
    except FlowApiError as e:
        print(f"   ⚠️  Flow API not reachable: {e.message}")
        print("   Set CTA_FLOW_API_BASE_URL and CTA_FLOW_API_TOKEN in .env")

    print("\n" + "=" * 70)
    print("✅ SETUP COMPLETE!")
    print("=" * 70)
    print("\n🚀 Start Application:")
    print("   python -m uvicorn app.main:app --reload --host 0.0.0.0 --port 8100")
    print("   Visit: http://localhost:8100/docs")
    print("\n" + "=" * 70)

    return 0


if __name__ == "__main__":
    sys.exit(setup())
