"""Integration test fixtures.

Applies the review schema against an ephemeral PostgreSQL database provided
by pytest-postgresql before each integration test.
"""

from __future__ import annotations

import json
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

from idloom_review.store import PgReviewStore

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_idloom_review.sql",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return a psycopg connection with schema applied.

    Each test gets a fresh schema via function scope so tests are isolated.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            sql = migration.read_text(encoding="utf-8")
            conn.execute(sql)
        conn.execute(
            """
            INSERT INTO hotels (id, name, display_order) VALUES
                ('h-four', 'Four Seasons', 1),
                ('h-grand', 'Grand Hyatt', 2)
            """
        )
        conn.execute(
            """
            INSERT INTO agenda_items (id, title, type, date, start_time, end_time) VALUES
                ('s-a', 'Track A: Driving Revenue Growth in the Age of AI', 'breakout',
                 '2025-06-02', '14:00', '15:30'),
                ('s-b', 'Track B: Driving Operational Performance in the Age of AI', 'breakout',
                 '2025-06-02', '14:00', '15:30'),
                ('k-1', 'Opening Keynote', 'session', '2025-06-02', '09:00', '10:00')
            """
        )
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


@pytest.fixture
def pg_store(db_conn):
    conn, _dsn = db_conn
    return PgReviewStore(conn)


@pytest.fixture
def insert_raw(db_conn):
    """Insert a raw record and return its id; later calls get later created_at."""
    conn, _dsn = db_conn
    counter = {"n": 0}

    def _insert(payload, guest_uid=None, status="pending", batch_id="batch-1"):
        counter["n"] += 1
        row = conn.execute(
            """
            INSERT INTO raw_attendee_data
                (guest_uid, event_uid, batch_id, payload, status, created_at)
            VALUES (%s, 'event-1', %s, %s::jsonb, %s,
                    now() - interval '1 day' + %s * interval '1 minute')
            RETURNING id
            """,
            (
                guest_uid or f"guest-{counter['n']}",
                batch_id,
                json.dumps(payload),
                status,
                counter["n"],
            ),
        ).fetchone()
        conn.commit()
        return str(row[0])

    return _insert


@pytest.fixture
def ana_payload():
    return {
        "first_name": "Ana",
        "last_name": "Lee",
        "email": "ana@co.com",
        "title": "CFO",
        "company": "Co",
        "accompanying_person": "1",
        "spouse_first_name": "Max",
        "spouse_last_name": "Lee",
    }
