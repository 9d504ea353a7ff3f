import os
import sys
from pathlib import Path
from urllib.parse import urlparse

import psycopg2
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from rentcore.database.db import configure_engine
from rentcore.models import Base

load_dotenv()


def create_database(db_url):
    """Create the Postgres database named in ``db_url`` if it is missing."""
    result = urlparse(db_url)
    database = result.path[1:]

    # Connect to the default 'postgres' database to create the new one
    conn = psycopg2.connect(
        database="postgres",
        user=result.username,
        password=result.password,
        host=result.hostname,
        port=result.port,
    )
    conn.autocommit = True
    cursor = conn.cursor()
    try:
        cursor.execute("SELECT 1 FROM pg_catalog.pg_database WHERE datname = %s", (database,))
        if cursor.fetchone():
            print(f"Database '{database}' already exists.")
        else:
            print(f"Creating database '{database}'...")
            cursor.execute(f'CREATE DATABASE "{database}"')
            print(f"Database '{database}' created successfully.")
    finally:
        cursor.close()
        conn.close()


def create_tables(db_url):
    engine = configure_engine(db_url)
    Base.metadata.create_all(bind=engine)
    print(f"Tables created: {', '.join(sorted(Base.metadata.tables))}")


def main():
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("DATABASE_URL not found in .env")
        return 1

    if db_url.startswith("postgresql"):
        create_database(db_url)
    create_tables(db_url)
    return 0


if __name__ == "__main__":
    sys.exit(main())
