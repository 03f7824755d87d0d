"""
scripts/setup_db.py — Initialize the database schema.

Run once before starting the application for the first time:
    python scripts/setup_db.py

Creates every table defined in lead_ml/db/models.py directly via SQLAlchemy
metadata. Existing tables are left untouched.
"""

import sys
import os

# Ensure the project root is on the path so we can import `lead_ml`
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import inspect, text

from lead_ml.config import settings
from lead_ml.db.models import Base
from lead_ml.db.session import engine


def setup_db() -> list[str]:
    print("🔌 Connecting to database...")
    print(f"   URL: {settings.database_url[:40]}...")

    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    print("✅ Connection successful.")

    print("\n📦 Creating tables if they don't exist...")
    Base.metadata.create_all(bind=engine)

    tables = inspect(engine).get_table_names()
    print(f"✅ Tables in database: {tables}")

    print("\n🎉 Database setup complete!")
    return tables


if __name__ == "__main__":
    setup_db()
