"""idloom_review.store

Persistence boundary for the review pipeline.

`ReviewStore` is the interface the review queue, batch tools and fund
migration depend on; `PgReviewStore` implements it on PostgreSQL with
psycopg.  Tests substitute an in-memory store.

Every PgReviewStore write method commits on success and rolls back on
failure, so callers never manage the transaction themselves.  Approval and
rejection are guarded by `WHERE status = 'pending'`; losing that race raises
RecordNotPendingError and writes nothing.
"""

from __future__ import annotations

import json
import logging
from datetime import time
from typing import Any, Iterable, Protocol

import psycopg

from idloom_review.models import (
    AttendeeDraft,
    BreakoutSession,
    ExistingAttendee,
    Hotel,
    RawIngestionRecord,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class RecordNotFoundError(LookupError):
    """Raised when a raw record id does not exist."""


class RecordNotPendingError(RuntimeError):
    """Raised when a raw record left the pending state before a transition."""

    def __init__(self, record_id: str, status: str | None = None) -> None:
        self.record_id = record_id
        self.status = status
        detail = f" (status={status})" if status else ""
        super().__init__(f"raw record {record_id} is no longer pending{detail}")


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class ReviewStore(Protocol):
    def fetch_pending(self, limit: int, offset: int) -> list[RawIngestionRecord]: ...

    def count_pending(self) -> int: ...

    def get_record(self, record_id: str) -> RawIngestionRecord | None: ...

    def existing_idloom_ids(self, guest_uids: Iterable[str]) -> set[str]: ...

    def fetch_attendees(self) -> list[ExistingAttendee]: ...

    def fetch_active_hotels(self) -> list[Hotel]: ...

    def fetch_active_breakouts(self) -> list[BreakoutSession]: ...

    def persist_approval(
        self,
        record_id: str,
        main: AttendeeDraft,
        spouse: AttendeeDraft | None,
        update_attendee_id: str | None = None,
    ) -> str: ...

    def append_processing_error(self, record_id: str, message: str) -> None: ...

    def mark_rejected(self, record_id: str, reason: str | None) -> None: ...

    def delete_record(self, record_id: str) -> bool: ...

    def status_counts(self, batch_id: str | None = None) -> dict[str, int]: ...

    def fetch_batch(
        self, batch_id: str, statuses: Iterable[str]
    ) -> list[RawIngestionRecord]: ...

    def mark_transform_outcome(
        self, record_id: str, failed: bool, errors: list[str]
    ) -> None: ...

    def delete_batch(self, batch_id: str) -> int: ...

    def fetch_attendee_attributes(self) -> list[tuple[str, dict[str, Any]]]: ...

    def update_attendee_attributes(self, attendee_id: str, attributes: dict[str, Any]) -> None: ...


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------

_RAW_COLUMNS = (
    "id, guest_uid, event_uid, batch_id, payload, status, processing_errors,"
    " rejection_reason, created_at"
)

_ATTENDEE_COLUMNS = (
    "salutation", "first_name", "last_name", "email", "title", "company",
    "business_phone", "mobile_phone", "address1", "address2", "city", "state",
    "postal_code", "country", "country_code", "assistant_name",
    "assistant_email", "check_in_date", "check_out_date", "hotel_selection",
    "custom_hotel", "hotel_notes", "dietary_requirements",
    "selected_breakouts", "dining_selections", "registration_status",
    "registration_id", "access_code", "idloom_id", "attributes", "has_spouse",
    "spouse_details",
)

_JSON_COLUMNS = frozenset({"dining_selections", "attributes", "spouse_details"})


def _raw_from_row(row: tuple) -> RawIngestionRecord:
    payload = row[4]
    if isinstance(payload, str):
        payload = json.loads(payload)
    return RawIngestionRecord(
        id=str(row[0]),
        guest_uid=row[1],
        event_uid=row[2],
        batch_id=row[3],
        payload=payload or {},
        status=row[5],
        processing_errors=list(row[6] or []),
        rejection_reason=row[7],
        created_at=row[8],
    )


def _placeholder(column: str) -> str:
    return "%s::jsonb" if column in _JSON_COLUMNS else "%s"


def _attendee_values(draft: AttendeeDraft) -> list[Any]:
    row = draft.to_row()
    return [
        json.dumps(row[c]) if c in _JSON_COLUMNS else row[c]
        for c in _ATTENDEE_COLUMNS
    ]


def _fmt_time(value: time | None) -> str | None:
    return value.strftime("%H:%M") if value is not None else None


class PgReviewStore:
    """ReviewStore backed by a psycopg connection (autocommit off)."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn

    @classmethod
    def connect(cls, dsn: str) -> "PgReviewStore":
        return cls(psycopg.connect(dsn, autocommit=False))

    def close(self) -> None:
        self.conn.close()

    # -- reads ---------------------------------------------------------------

    def fetch_pending(self, limit: int, offset: int) -> list[RawIngestionRecord]:
        rows = self.conn.execute(
            f"""
            SELECT {_RAW_COLUMNS}
            FROM raw_attendee_data
            WHERE status = 'pending'
            ORDER BY created_at DESC, id
            LIMIT %s OFFSET %s
            """,
            (limit, offset),
        ).fetchall()
        self.conn.rollback()
        return [_raw_from_row(r) for r in rows]

    def count_pending(self) -> int:
        row = self.conn.execute(
            "SELECT count(*) FROM raw_attendee_data WHERE status = 'pending'"
        ).fetchone()
        self.conn.rollback()
        return int(row[0])

    def get_record(self, record_id: str) -> RawIngestionRecord | None:
        row = self.conn.execute(
            f"SELECT {_RAW_COLUMNS} FROM raw_attendee_data WHERE id = %s",
            (record_id,),
        ).fetchone()
        self.conn.rollback()
        return _raw_from_row(row) if row else None

    def existing_idloom_ids(self, guest_uids: Iterable[str]) -> set[str]:
        uids = [u for u in guest_uids if u]
        if not uids:
            return set()
        rows = self.conn.execute(
            "SELECT DISTINCT idloom_id FROM attendees WHERE idloom_id = ANY(%s)",
            (uids,),
        ).fetchall()
        self.conn.rollback()
        return {r[0] for r in rows}

    def fetch_attendees(self) -> list[ExistingAttendee]:
        rows = self.conn.execute(
            """
            SELECT id, first_name, last_name, email, company, idloom_id,
                   is_spouse, attributes
            FROM attendees
            ORDER BY created_at, id
            """
        ).fetchall()
        self.conn.rollback()
        return [
            ExistingAttendee(
                id=str(r[0]),
                first_name=r[1],
                last_name=r[2],
                email=r[3] or "",
                company=r[4] or "",
                idloom_id=r[5] or "",
                is_spouse=bool(r[6]),
                attributes=r[7] or {},
            )
            for r in rows
        ]

    def fetch_active_hotels(self) -> list[Hotel]:
        rows = self.conn.execute(
            """
            SELECT id, name, is_active, display_order
            FROM hotels
            WHERE is_active
            ORDER BY display_order, name
            """
        ).fetchall()
        self.conn.rollback()
        return [Hotel(id=r[0], name=r[1], is_active=r[2], display_order=r[3]) for r in rows]

    def fetch_active_breakouts(self) -> list[BreakoutSession]:
        rows = self.conn.execute(
            """
            SELECT id, title, date, start_time, end_time, is_active
            FROM agenda_items
            WHERE type = 'breakout' AND is_active
            ORDER BY date, start_time, title
            """
        ).fetchall()
        self.conn.rollback()
        return [
            BreakoutSession(
                id=r[0],
                title=r[1],
                date=r[2].isoformat() if r[2] else None,
                start_time=_fmt_time(r[3]),
                end_time=_fmt_time(r[4]),
                is_active=r[5],
            )
            for r in rows
        ]

    def status_counts(self, batch_id: str | None = None) -> dict[str, int]:
        if batch_id is None:
            rows = self.conn.execute(
                "SELECT status, count(*) FROM raw_attendee_data GROUP BY status"
            ).fetchall()
        else:
            rows = self.conn.execute(
                """
                SELECT status, count(*) FROM raw_attendee_data
                WHERE batch_id = %s GROUP BY status
                """,
                (batch_id,),
            ).fetchall()
        self.conn.rollback()
        return {r[0]: int(r[1]) for r in rows}

    def fetch_batch(
        self, batch_id: str, statuses: Iterable[str]
    ) -> list[RawIngestionRecord]:
        rows = self.conn.execute(
            f"""
            SELECT {_RAW_COLUMNS}
            FROM raw_attendee_data
            WHERE batch_id = %s AND status = ANY(%s)
            ORDER BY created_at, id
            """,
            (batch_id, list(statuses)),
        ).fetchall()
        self.conn.rollback()
        return [_raw_from_row(r) for r in rows]

    def fetch_attendee_attributes(self) -> list[tuple[str, dict[str, Any]]]:
        rows = self.conn.execute(
            "SELECT id, attributes FROM attendees ORDER BY created_at, id"
        ).fetchall()
        self.conn.rollback()
        return [(str(r[0]), r[1] or {}) for r in rows]

    # -- writes --------------------------------------------------------------

    def _insert_attendee(
        self,
        draft: AttendeeDraft,
        is_spouse: bool = False,
        primary_attendee_id: str | None = None,
    ) -> str:
        columns = list(_ATTENDEE_COLUMNS) + ["is_spouse", "primary_attendee_id"]
        placeholders = ", ".join(_placeholder(c) for c in columns)
        row = self.conn.execute(
            f"""
            INSERT INTO attendees ({", ".join(columns)})
            VALUES ({placeholders})
            RETURNING id
            """,
            _attendee_values(draft) + [is_spouse, primary_attendee_id],
        ).fetchone()
        return str(row[0])

    def _update_attendee(self, attendee_id: str, draft: AttendeeDraft) -> None:
        """Overwrite an attendee with the draft; a stored idloom_id is kept."""
        assignments = ", ".join(
            "idloom_id = COALESCE(NULLIF(idloom_id, ''), %s)" if c == "idloom_id"
            else f"{c} = {_placeholder(c)}"
            for c in _ATTENDEE_COLUMNS
        )
        cur = self.conn.execute(
            f"UPDATE attendees SET {assignments}, updated_at = now() WHERE id = %s",
            _attendee_values(draft) + [attendee_id],
        )
        if cur.rowcount == 0:
            raise RecordNotFoundError(f"attendee {attendee_id} not found")

    def persist_approval(
        self,
        record_id: str,
        main: AttendeeDraft,
        spouse: AttendeeDraft | None,
        update_attendee_id: str | None = None,
    ) -> str:
        """Write the attendee (and spouse) and mark the raw record approved.

        One transaction: the pending-state claim comes first so a concurrent
        approval of the same record blocks on the row lock and then finds it
        no longer pending.
        """
        try:
            claimed = self.conn.execute(
                """
                UPDATE raw_attendee_data
                SET status = 'approved', reviewed_at = now()
                WHERE id = %s AND status = 'pending'
                RETURNING id
                """,
                (record_id,),
            ).fetchone()
            if claimed is None:
                current = self.conn.execute(
                    "SELECT status FROM raw_attendee_data WHERE id = %s",
                    (record_id,),
                ).fetchone()
                if current is None:
                    raise RecordNotFoundError(f"raw record {record_id} not found")
                raise RecordNotPendingError(record_id, current[0])

            if update_attendee_id:
                self._update_attendee(update_attendee_id, main)
                attendee_id = update_attendee_id
            else:
                attendee_id = self._insert_attendee(main)

            if spouse is not None:
                existing_spouse = None
                if update_attendee_id:
                    existing_spouse = self.conn.execute(
                        """
                        SELECT id FROM attendees
                        WHERE primary_attendee_id = %s AND is_spouse
                        ORDER BY created_at LIMIT 1
                        """,
                        (attendee_id,),
                    ).fetchone()
                if existing_spouse:
                    self._update_attendee(str(existing_spouse[0]), spouse)
                else:
                    self._insert_attendee(
                        spouse, is_spouse=True, primary_attendee_id=attendee_id
                    )

            self.conn.execute(
                "UPDATE raw_attendee_data SET attendee_id = %s WHERE id = %s",
                (attendee_id, record_id),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return attendee_id

    def append_processing_error(self, record_id: str, message: str) -> None:
        try:
            self.conn.execute(
                """
                UPDATE raw_attendee_data
                SET processing_errors = array_append(processing_errors, %s)
                WHERE id = %s
                """,
                (message, record_id),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def mark_rejected(self, record_id: str, reason: str | None) -> None:
        try:
            row = self.conn.execute(
                """
                UPDATE raw_attendee_data
                SET status = 'rejected', rejection_reason = %s, reviewed_at = now()
                WHERE id = %s AND status = 'pending'
                RETURNING id
                """,
                (reason, record_id),
            ).fetchone()
            if row is None:
                current = self.conn.execute(
                    "SELECT status FROM raw_attendee_data WHERE id = %s",
                    (record_id,),
                ).fetchone()
                if current is None:
                    raise RecordNotFoundError(f"raw record {record_id} not found")
                raise RecordNotPendingError(record_id, current[0])
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def delete_record(self, record_id: str) -> bool:
        try:
            cur = self.conn.execute(
                "DELETE FROM raw_attendee_data WHERE id = %s",
                (record_id,),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return cur.rowcount > 0

    def mark_transform_outcome(
        self, record_id: str, failed: bool, errors: list[str]
    ) -> None:
        """Move a pending/failed record to 'failed' (appending errors) or back to 'pending'."""
        try:
            self.conn.execute(
                """
                UPDATE raw_attendee_data
                SET status = %s,
                    processing_errors = processing_errors || %s::text[]
                WHERE id = %s AND status IN ('pending', 'failed')
                """,
                ("failed" if failed else "pending", errors, record_id),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def delete_batch(self, batch_id: str) -> int:
        """Delete a batch's unreviewed records; approved and rejected rows stay."""
        try:
            cur = self.conn.execute(
                """
                DELETE FROM raw_attendee_data
                WHERE batch_id = %s AND status IN ('pending', 'failed')
                """,
                (batch_id,),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return cur.rowcount

    def update_attendee_attributes(self, attendee_id: str, attributes: dict[str, Any]) -> None:
        try:
            self.conn.execute(
                """
                UPDATE attendees
                SET attributes = %s::jsonb, updated_at = now()
                WHERE id = %s
                """,
                (json.dumps(attributes), attendee_id),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
