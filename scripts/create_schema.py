"""
Create the Shipwatch database schema.

Creates the shipments and processed_messages tables (and their indexes) on
the configured database: DATABASE_URL if set, otherwise the Cloud SQL
instance from INSTANCE_CONNECTION_NAME / DB_NAME / DB_USER with IAM auth.
Existing tables are left untouched.
"""

import os
import sys

from dotenv import load_dotenv
from sqlalchemy import inspect, text

from shipwatch.db import DatabaseConnection
from shipwatch.db.tables import metadata
from shipwatch.utils.logging import setup_logging

# Load environment variables
load_dotenv()


def grant_postgres_access(engine):
    """Grant the postgres user access to tables owned by the IAM user.

    Lets the tables be viewed in Cloud SQL Studio.
    """
    print("\n🔐 Granting postgres user access to tables...")

    try:
        with engine.begin() as conn:
            conn.execute(text("GRANT USAGE ON SCHEMA public TO postgres"))
            conn.execute(
                text(
                    "GRANT SELECT, INSERT, UPDATE, DELETE ON ALL TABLES IN SCHEMA public TO postgres"
                )
            )
        print("✅ Postgres user access granted")
    except Exception as e:
        print(f"⚠️  Failed to grant postgres access (non-fatal): {e}")


def main():
    """Main function."""
    setup_logging("shipwatch-schema")

    print("🚀 Shipwatch Schema Tool")
    print("=" * 50)

    database_url = os.getenv("DATABASE_URL")
    if not database_url and not os.getenv("INSTANCE_CONNECTION_NAME"):
        print("❌ Neither DATABASE_URL nor INSTANCE_CONNECTION_NAME is set")
        print("   Example: DATABASE_URL=sqlite:///shipwatch.db")
        sys.exit(1)

    print("\n🔌 Connecting...")
    try:
        DatabaseConnection.initialize()
    except Exception as e:
        print(f"❌ Failed to connect: {e}")
        sys.exit(1)

    engine = DatabaseConnection.get_engine()
    existing = set(inspect(engine).get_table_names())

    metadata.create_all(engine)

    for table in metadata.sorted_tables:
        state = "exists" if table.name in existing else "created"
        print(f"  - {table.name}: {state}")

    if engine.dialect.name == "postgresql" and not database_url:
        grant_postgres_access(engine)

    DatabaseConnection.close()

    print("\n" + "=" * 50)
    print("✅ Schema is up to date")


if __name__ == "__main__":
    main()
