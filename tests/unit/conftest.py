"""Unit test fixtures: an in-memory ReviewStore."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta
from typing import Any, Iterable

import pytest

from idloom_review.models import (
    AttendeeDraft,
    BreakoutSession,
    ExistingAttendee,
    Hotel,
    RawIngestionRecord,
)
from idloom_review.store import RecordNotFoundError, RecordNotPendingError


class FakeReviewStore:
    """Dict-backed ReviewStore with the same pending-claim rules as PgReviewStore."""

    def __init__(self) -> None:
        self.records: dict[str, RawIngestionRecord] = {}
        self.attendees: dict[str, dict[str, Any]] = {}
        self.hotels: list[Hotel] = []
        self.breakouts: list[BreakoutSession] = []
        self.record_attendee: dict[str, str] = {}
        self.fail_persist: Exception | None = None
        self.fail_attribute_update: set[str] = set()
        self.closed = False
        self._ids = itertools.count(1)
        self._clock = datetime(2025, 1, 1, 9, 0, 0)

    # -- test helpers -------------------------------------------------------

    def add_record(
        self,
        payload: dict[str, Any],
        guest_uid: str | None = None,
        status: str = "pending",
        batch_id: str | None = "batch-1",
    ) -> RawIngestionRecord:
        n = next(self._ids)
        self._clock += timedelta(minutes=1)
        record = RawIngestionRecord(
            id=f"raw-{n}",
            guest_uid=guest_uid or f"guest-{n}",
            event_uid="event-1",
            batch_id=batch_id,
            payload=payload,
            status=status,
            created_at=self._clock,
        )
        self.records[record.id] = record
        return record

    def add_attendee(self, draft: AttendeeDraft, is_spouse: bool = False,
                     primary_attendee_id: str | None = None) -> str:
        attendee_id = f"att-{next(self._ids)}"
        self.attendees[attendee_id] = {
            **draft.to_row(),
            "id": attendee_id,
            "is_spouse": is_spouse,
            "primary_attendee_id": primary_attendee_id,
        }
        return attendee_id

    def close(self) -> None:
        self.closed = True

    # -- reads --------------------------------------------------------------

    def fetch_pending(self, limit: int, offset: int) -> list[RawIngestionRecord]:
        pending = sorted(
            (r for r in self.records.values() if r.status == "pending"),
            key=lambda r: r.created_at,
            reverse=True,
        )
        return pending[offset:offset + limit]

    def count_pending(self) -> int:
        return sum(1 for r in self.records.values() if r.status == "pending")

    def get_record(self, record_id: str) -> RawIngestionRecord | None:
        return self.records.get(record_id)

    def existing_idloom_ids(self, guest_uids: Iterable[str]) -> set[str]:
        stored = {a["idloom_id"] for a in self.attendees.values()}
        return {u for u in guest_uids if u and u in stored}

    def fetch_attendees(self) -> list[ExistingAttendee]:
        return [
            ExistingAttendee(
                id=a["id"],
                first_name=a["first_name"],
                last_name=a["last_name"],
                email=a["email"],
                company=a["company"],
                idloom_id=a["idloom_id"],
                is_spouse=a["is_spouse"],
                attributes=a["attributes"],
            )
            for a in self.attendees.values()
        ]

    def fetch_active_hotels(self) -> list[Hotel]:
        return [h for h in self.hotels if h.is_active]

    def fetch_active_breakouts(self) -> list[BreakoutSession]:
        return [b for b in self.breakouts if b.is_active]

    def status_counts(self, batch_id: str | None = None) -> dict[str, int]:
        counts: dict[str, int] = {}
        for r in self.records.values():
            if batch_id is not None and r.batch_id != batch_id:
                continue
            counts[r.status] = counts.get(r.status, 0) + 1
        return counts

    def fetch_batch(self, batch_id: str, statuses: Iterable[str]) -> list[RawIngestionRecord]:
        wanted = set(statuses)
        return [
            r for r in self.records.values()
            if r.batch_id == batch_id and r.status in wanted
        ]

    def fetch_attendee_attributes(self) -> list[tuple[str, dict[str, Any]]]:
        return [(a["id"], dict(a["attributes"])) for a in self.attendees.values()]

    # -- writes -------------------------------------------------------------

    def _claim(self, record_id: str, new_status: str) -> RawIngestionRecord:
        record = self.records.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"raw record {record_id} not found")
        if record.status != "pending":
            raise RecordNotPendingError(record_id, record.status)
        record.status = new_status
        return record

    def persist_approval(self, record_id: str, main: AttendeeDraft,
                         spouse: AttendeeDraft | None,
                         update_attendee_id: str | None = None) -> str:
        if self.fail_persist is not None:
            raise self.fail_persist
        self._claim(record_id, "approved")
        if update_attendee_id:
            if update_attendee_id not in self.attendees:
                self.records[record_id].status = "pending"
                raise RecordNotFoundError(f"attendee {update_attendee_id} not found")
            previous = self.attendees[update_attendee_id]
            row = {**previous, **main.to_row()}
            row["idloom_id"] = previous["idloom_id"] or main.idloom_id
            self.attendees[update_attendee_id] = row
            attendee_id = update_attendee_id
        else:
            attendee_id = self.add_attendee(main)
        if spouse is not None:
            linked = [
                a for a in self.attendees.values()
                if a["is_spouse"] and a["primary_attendee_id"] == attendee_id
            ]
            if update_attendee_id and linked:
                linked[0].update({
                    **spouse.to_row(),
                    "idloom_id": linked[0]["idloom_id"] or spouse.idloom_id,
                })
            else:
                self.add_attendee(spouse, is_spouse=True, primary_attendee_id=attendee_id)
        self.record_attendee[record_id] = attendee_id
        return attendee_id

    def append_processing_error(self, record_id: str, message: str) -> None:
        self.records[record_id].processing_errors.append(message)

    def mark_rejected(self, record_id: str, reason: str | None) -> None:
        record = self._claim(record_id, "rejected")
        record.rejection_reason = reason

    def delete_record(self, record_id: str) -> bool:
        return self.records.pop(record_id, None) is not None

    def mark_transform_outcome(self, record_id: str, failed: bool, errors: list[str]) -> None:
        record = self.records[record_id]
        if record.status not in ("pending", "failed"):
            return
        record.status = "failed" if failed else "pending"
        record.processing_errors.extend(errors)

    def delete_batch(self, batch_id: str) -> int:
        doomed = [
            r.id for r in self.records.values()
            if r.batch_id == batch_id and r.status in ("pending", "failed")
        ]
        for record_id in doomed:
            del self.records[record_id]
        return len(doomed)

    def update_attendee_attributes(self, attendee_id: str, attributes: dict[str, Any]) -> None:
        if attendee_id in self.fail_attribute_update:
            raise RuntimeError("connection lost")
        self.attendees[attendee_id]["attributes"] = dict(attributes)


@pytest.fixture
def store():
    s = FakeReviewStore()
    s.hotels = [
        Hotel(id="h-four", name="Four Seasons", display_order=1),
        Hotel(id="h-grand", name="Grand Hyatt", display_order=2),
    ]
    s.breakouts = [
        BreakoutSession(id="s-a", title="Track A: Driving Revenue Growth in the Age of AI"),
        BreakoutSession(id="s-b", title="Track B: Driving Operational Performance in the Age of AI"),
    ]
    return s


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
