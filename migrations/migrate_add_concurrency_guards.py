#!/usr/bin/env python3
"""
Migration script adding the concurrency guards to an existing database:

- auctions.version column used for compare-and-set
- partial unique index: one winning bid per auction
- partial unique index: one open auction per vehicle

Uses psycopg2 directly. Safe to run more than once.

Usage:
    python migrations/migrate_add_concurrency_guards.py

Make sure DATABASE_URL environment variable is set.
"""
import os
import sys
import urllib.parse

try:
    import psycopg2
    from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT
except ImportError:
    print("❌ psycopg2 not installed. Install with: pip install psycopg2-binary")
    sys.exit(1)


STEPS = [
    (
        "auctions.version column",
        "SELECT 1 FROM information_schema.columns WHERE table_name = 'auctions' AND column_name = 'version'",
        "ALTER TABLE auctions ADD COLUMN version INTEGER NOT NULL DEFAULT 1",
    ),
    (
        "uq_bids_winning_per_auction index",
        "SELECT 1 FROM pg_indexes WHERE tablename = 'bids' AND indexname = 'uq_bids_winning_per_auction'",
        "CREATE UNIQUE INDEX uq_bids_winning_per_auction ON bids(auction_id) WHERE is_winning",
    ),
    (
        "uq_auctions_open_vehicle index",
        "SELECT 1 FROM pg_indexes WHERE tablename = 'auctions' AND indexname = 'uq_auctions_open_vehicle'",
        "CREATE UNIQUE INDEX uq_auctions_open_vehicle ON auctions(vehicle_id) "
        "WHERE status IN ('SCHEDULED', 'ACTIVE', 'EXTENDED', 'SUSPENDED')",
    ),
]


def parse_database_url(url):
    """Parse PostgreSQL connection URL into components."""
    parsed = urllib.parse.urlparse(url)
    return {
        'dbname': parsed.path[1:],
        'user': parsed.username,
        'password': parsed.password,
        'host': parsed.hostname,
        'port': parsed.port or 5432
    }


def migrate():
    """Apply every missing step."""
    print("Starting migration: adding concurrency guards...")

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("❌ DATABASE_URL environment variable not set")
        sys.exit(1)

    try:
        conn = psycopg2.connect(**parse_database_url(database_url))
        conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
        cur = conn.cursor()

        for name, check_sql, apply_sql in STEPS:
            cur.execute(check_sql)
            if cur.fetchone():
                print(f"✓ {name} already exists, skipping")
                continue
            cur.execute(apply_sql)
            print(f"✅ Added {name}")

        cur.close()
        conn.close()
        print("Migration completed")

    except Exception as e:
        # Duplicate winning bids or open auctions must be resolved by hand before the index can be built
        print(f"❌ Migration failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    migrate()
