"""
Check the PostgreSQL database for Session Guard.
Run once before migrating: python scripts/init_postgres.py

Requires: PostgreSQL installed and running. Create user and database:

  sudo -u postgres psql
  CREATE USER sessionguard WITH PASSWORD 'sessionguard';
  CREATE DATABASE sessionguard_db OWNER sessionguard;
  GRANT ALL PRIVILEGES ON DATABASE sessionguard_db TO sessionguard;
  \q

Then apply the schema: alembic upgrade head
"""

import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sessionguard.config import settings


def main():
    url = settings.get_database_url()
    if not url.startswith("postgresql"):
        print("Database URL is not PostgreSQL. Skipping.")
        return
    try:
        engine = create_engine(url)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            migrated = conn.execute(text("SELECT to_regclass('public.alembic_version')")).scalar()
    except SQLAlchemyError as e:
        print(f"Cannot connect to PostgreSQL: {e}")
        print("\nCreate database first:")
        print(f"  psql -U postgres -c \"CREATE USER {settings.POSTGRES_USER} WITH PASSWORD '...';\"")
        print(f"  psql -U postgres -c \"CREATE DATABASE {settings.POSTGRES_DB} OWNER {settings.POSTGRES_USER};\"")
        print(f"  psql -U postgres -c \"GRANT ALL PRIVILEGES ON DATABASE {settings.POSTGRES_DB} TO {settings.POSTGRES_USER};\"")
        sys.exit(1)

    print("PostgreSQL connection OK. Database exists.")
    if not migrated:
        print("No alembic_version table yet. Run: alembic upgrade head")


if __name__ == "__main__":
    main()
