#!/usr/bin/env python3
"""
Initialize AonyxEngine Database
Creates SQLite database with schema and WAL mode
"""

import argparse
import logging
import sqlite3
import sys
from pathlib import Path

from database.crypto import generate_key

LOGGER = logging.getLogger(__name__)

SCHEMA_FILE = Path(__file__).parent / "schema.sql"


def init_database(db_path: str = "aonyxengine.db", force: bool = False) -> bool:
    """
    Initialize database with schema

    Args:
        db_path: Path to SQLite database file
        force: If True, drop existing database

    Returns:
        True if the database is ready
    """
    db_file = Path(db_path)

    if db_file.exists():
        if not force:
            LOGGER.error(f"❌ Database already exists: {db_path}")
            LOGGER.error("   Use --force to recreate it (WARNING: deletes all data!)")
            return False
        LOGGER.warning(f"⚠️ Dropping existing database: {db_path}")
        db_file.unlink()
        for suffix in ("-wal", "-shm"):
            Path(db_path + suffix).unlink(missing_ok=True)

    if not SCHEMA_FILE.exists():
        LOGGER.error(f"❌ Schema file not found: {SCHEMA_FILE}")
        return False

    schema_sql = SCHEMA_FILE.read_text(encoding="utf-8")

    try:
        LOGGER.info(f"📦 Creating database: {db_path}")
        conn = sqlite3.connect(db_path)
        try:
            cursor = conn.cursor()
            cursor.executescript(schema_sql)
            conn.commit()

            # Enable WAL mode for concurrent reads/writes
            cursor.execute("PRAGMA journal_mode=WAL")
            LOGGER.info(f"✅ WAL mode enabled: {cursor.fetchone()[0]}")

            cursor.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
            tables = [row[0] for row in cursor.fetchall() if not row[0].startswith("sqlite_")]
            LOGGER.info(f"✅ Tables created: {', '.join(tables)}")
        finally:
            conn.close()
    except sqlite3.Error as e:
        LOGGER.error(f"❌ Failed to initialize database: {e}")
        return False

    LOGGER.info(f"✅ Database initialized successfully: {db_path}")
    return True


def main(argv=None) -> int:
    """Main entry point"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(message)s"
    )

    parser = argparse.ArgumentParser(description="Initialize AonyxEngine Database")
    parser.add_argument(
        '--db',
        type=str,
        default='aonyxengine.db',
        help='Path to database file (default: aonyxengine.db)'
    )
    parser.add_argument(
        '--force',
        action='store_true',
        help='Force recreation (deletes existing database!)'
    )
    parser.add_argument(
        '--generate-key',
        action='store_true',
        help='Print a new AONYXENGINE_SECRET_KEY and exit'
    )

    args = parser.parse_args(argv)

    if args.generate_key:
        print(generate_key())
        return 0

    return 0 if init_database(args.db, args.force) else 1


if __name__ == "__main__":
    sys.exit(main())
