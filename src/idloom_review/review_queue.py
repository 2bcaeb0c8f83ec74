"""idloom_review.review_queue

Review queue state machine for raw IDLoom records.

    pending --approve--> approved      (attendee + spouse written)
    pending --reject---> rejected      (reason kept for audit)
    pending --ignore---> (deleted)     (no audit trail)

Reviewing a record only runs the transformer; it never changes status.

Approval re-validates the reviewer's draft and checks it against the current
attendees.  A high-confidence duplicate is returned to the caller with
outcome 'duplicate' unless `on_duplicate` says what to do:

  - skip:   reject the record with reason 'duplicate_of:<attendee id>'
  - update: overwrite the matched attendee with the draft
  - import: insert a new attendee anyway

Persistence failures leave the record pending and append the error text to
its processing_errors.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from idloom_review.duplicate_match import best_match, find_duplicates
from idloom_review.field_map import FieldMap, load_field_map
from idloom_review.models import (
    AttendeeDraft,
    BreakoutSession,
    DuplicateMatch,
    RawIngestionRecord,
    SpouseDetails,
    TransformResult,
)
from idloom_review.normalize import clean, resolve_breakout
from idloom_review.store import RecordNotFoundError, RecordNotPendingError, ReviewStore
from idloom_review.transform import (
    build_spouse_draft,
    generate_access_code,
    transform_raw_record,
    validate_draft,
)

log = logging.getLogger(__name__)

ON_DUPLICATE_CHOICES = ("skip", "update", "import")

_ACCESS_CODE_RE = re.compile(r"^\d{6}$")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class PendingPage:
    records: list[RawIngestionRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.total > self.offset + self.limit


@dataclass
class ReviewResult:
    """Outcome of one queue operation.

    outcome is one of: approved, rejected, ignored, skipped, duplicate,
    invalid, conflict, not_found, failed.
    """

    record_id: str
    outcome: str
    attendee_id: str | None = None
    spouse_created: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duplicates: list[DuplicateMatch] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome in ("approved", "rejected", "ignored", "skipped")

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "outcome": self.outcome,
            "attendee_id": self.attendee_id,
            "spouse_created": self.spouse_created,
            "errors": self.errors,
            "warnings": self.warnings[:50],
            "duplicates": [
                {
                    "attendee_id": m.existing.id,
                    "name": f"{m.existing.first_name} {m.existing.last_name}".strip(),
                    "email": m.existing.email,
                    "match_type": m.match_type,
                    "confidence": m.confidence,
                }
                for m in self.duplicates
            ],
        }


@dataclass
class QueueStats:
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    failed: int = 0

    @classmethod
    def from_counts(cls, counts: dict[str, int]) -> "QueueStats":
        return cls(
            total=sum(counts.values()),
            pending=counts.get("pending", 0),
            approved=counts.get("approved", 0),
            rejected=counts.get("rejected", 0),
            failed=counts.get("failed", 0),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "approved": self.approved,
            "rejected": self.rejected,
            "failed": self.failed,
        }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def list_pending(store: ReviewStore, limit: int = 50, offset: int = 0) -> PendingPage:
    """Pending records, newest first, each flagged if its guest is already an attendee."""
    if limit <= 0:
        raise ValueError(f"limit must be positive, got {limit}")
    if offset < 0:
        raise ValueError(f"offset must not be negative, got {offset}")
    records = store.fetch_pending(limit, offset)
    existing = store.existing_idloom_ids(r.guest_uid for r in records)
    for record in records:
        record.is_existing_attendee = bool(record.guest_uid) and record.guest_uid in existing
    return PendingPage(
        records=records,
        total=store.count_pending(),
        limit=limit,
        offset=offset,
    )


def review_record(
    store: ReviewStore,
    record: RawIngestionRecord | str,
    field_map: FieldMap | None = None,
) -> TransformResult:
    """Transform a record for display; the record's status is not changed."""
    if isinstance(record, str):
        found = store.get_record(record)
        if found is None:
            raise RecordNotFoundError(f"raw record {record} not found")
        record = found
    return transform_raw_record(
        record,
        store.fetch_active_breakouts(),
        store.fetch_active_hotels(),
        field_map=field_map,
    )


def queue_stats(store: ReviewStore) -> QueueStats:
    return QueueStats.from_counts(store.status_counts())


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------

def _canonical_breakouts(
    draft: AttendeeDraft,
    sessions: list[BreakoutSession],
    title_table: dict[str, str] | None,
    warnings: list[str],
) -> list[str]:
    selected: list[str] = []
    for value in draft.selected_breakouts:
        ident = resolve_breakout(value, sessions, title_table)
        if ident is None:
            warnings.append(f"Breakout '{value}' is not a known session")
            ident = clean(value)
        if ident and ident not in selected:
            selected.append(ident)
    return selected


def _prepare_main(
    record: RawIngestionRecord,
    main: AttendeeDraft,
    sessions: list[BreakoutSession],
    title_table: dict[str, str] | None,
    warnings: list[str],
) -> AttendeeDraft:
    changes: dict[str, Any] = {
        "selected_breakouts": _canonical_breakouts(main, sessions, title_table, warnings),
    }
    if record.guest_uid and main.idloom_id != record.guest_uid:
        if main.idloom_id:
            warnings.append(
                f"idloom_id cannot be changed; kept '{record.guest_uid}'"
            )
        changes["idloom_id"] = record.guest_uid
    if not _ACCESS_CODE_RE.match(main.access_code or ""):
        changes["access_code"] = generate_access_code()
    return main.copy(**changes)


def _prepare_spouse(
    main: AttendeeDraft,
    spouse: AttendeeDraft | None,
    errors: list[str],
) -> tuple[AttendeeDraft, AttendeeDraft | None]:
    """Return the primary and spouse drafts to persist.

    An explicit spouse draft marks the primary as having a spouse and replaces
    its spouse_details, so the stored primary always describes its linked spouse.
    """
    if spouse is None:
        return main, build_spouse_draft(main)
    for name in ("first_name", "last_name"):
        if not clean(getattr(spouse, name)):
            errors.append(f"Spouse missing required field: {name}")
    changes: dict[str, Any] = {}
    if main.idloom_id:
        changes["idloom_id"] = f"{main.idloom_id}-spouse"
    if not _ACCESS_CODE_RE.match(spouse.access_code or ""):
        changes["access_code"] = generate_access_code()
    main = main.copy(
        has_spouse=True,
        spouse_details=SpouseDetails(
            salutation=clean(spouse.salutation),
            first_name=clean(spouse.first_name),
            last_name=clean(spouse.last_name),
            email=clean(spouse.email),
            mobile_phone=clean(spouse.mobile_phone),
            dietary_requirements=clean(spouse.dietary_requirements),
        ),
    )
    return main, spouse.copy(**changes)


def approve_record(
    store: ReviewStore,
    record_id: str,
    main: AttendeeDraft,
    spouse: AttendeeDraft | None = None,
    known_breakouts: Iterable[BreakoutSession] | None = None,
    on_duplicate: str | None = None,
    field_map: FieldMap | None = None,
) -> ReviewResult:
    """Commit a reviewer's draft as canonical attendee(s).

    When `spouse` is None and the draft names a spouse, the spouse attendee is
    derived from main.spouse_details.  `known_breakouts` defaults to the
    store's active breakout sessions.
    """
    if on_duplicate not in (None,) + ON_DUPLICATE_CHOICES:
        raise ValueError(
            f"on_duplicate must be one of {ON_DUPLICATE_CHOICES}, got {on_duplicate!r}"
        )

    record = store.get_record(record_id)
    if record is None:
        return ReviewResult(record_id, "not_found", errors=[f"raw record {record_id} not found"])
    if record.status != "pending":
        return ReviewResult(
            record_id, "conflict",
            errors=[f"raw record {record_id} is {record.status}, not pending"],
        )

    warnings: list[str] = []
    sessions = list(known_breakouts) if known_breakouts is not None else store.fetch_active_breakouts()
    title_table = (field_map or load_field_map()).breakout_title_table

    main = _prepare_main(record, main, sessions, title_table, warnings)
    errors = validate_draft(main)
    main, spouse = _prepare_spouse(main, spouse, errors)
    if errors:
        return ReviewResult(record_id, "invalid", errors=errors, warnings=warnings)

    matches = find_duplicates([main], store.fetch_attendees(), stop_at_high_confidence=True)
    high = [m for m in matches if m.confidence == "high"]
    for m in matches:
        if m.confidence != "high":
            warnings.append(
                f"Possible duplicate of {m.existing.first_name} {m.existing.last_name}"
                f" ({m.match_type}, {m.confidence})"
            )

    update_attendee_id = None
    if high:
        target = best_match(high)
        if on_duplicate is None:
            return ReviewResult(
                record_id, "duplicate", warnings=warnings, duplicates=matches,
            )
        if on_duplicate == "skip":
            result = reject_record(store, record_id, f"duplicate_of:{target.existing.id}")
            if result.outcome == "rejected":
                result.outcome = "skipped"
            result.duplicates = matches
            result.warnings = warnings + result.warnings
            return result
        if on_duplicate == "update":
            update_attendee_id = target.existing.id

    try:
        attendee_id = store.persist_approval(record_id, main, spouse, update_attendee_id)
    except RecordNotPendingError as exc:
        log.warning("approve %s: %s", record_id, exc)
        return ReviewResult(record_id, "conflict", errors=[str(exc)], warnings=warnings)
    except RecordNotFoundError as exc:
        log.warning("approve %s: %s", record_id, exc)
        return ReviewResult(record_id, "not_found", errors=[str(exc)], warnings=warnings)
    except Exception as exc:
        message = f"approval failed: {exc}"
        log.error("approve %s: %s", record_id, message)
        try:
            store.append_processing_error(record_id, message)
        except Exception:
            log.exception("approve %s: could not record processing error", record_id)
        return ReviewResult(record_id, "failed", errors=[message], warnings=warnings)

    log.info(
        "approved %s as attendee %s%s",
        record_id, attendee_id, " (with spouse)" if spouse is not None else "",
    )
    return ReviewResult(
        record_id,
        "approved",
        attendee_id=attendee_id,
        spouse_created=spouse is not None,
        warnings=warnings,
        duplicates=matches,
    )


# ---------------------------------------------------------------------------
# Reject / ignore
# ---------------------------------------------------------------------------

def reject_record(store: ReviewStore, record_id: str, reason: str | None = None) -> ReviewResult:
    """Mark a pending record rejected; attendee tables are not touched."""
    reason = clean(reason) or None
    try:
        store.mark_rejected(record_id, reason)
    except RecordNotPendingError as exc:
        log.warning("reject %s: %s", record_id, exc)
        return ReviewResult(record_id, "conflict", errors=[str(exc)])
    except RecordNotFoundError as exc:
        return ReviewResult(record_id, "not_found", errors=[str(exc)])
    log.info("rejected %s%s", record_id, f" ({reason})" if reason else "")
    return ReviewResult(record_id, "rejected")


def ignore_record(store: ReviewStore, record_id: str) -> ReviewResult:
    """Delete a raw record outright, whatever its status."""
    if not store.delete_record(record_id):
        return ReviewResult(record_id, "not_found", errors=[f"raw record {record_id} not found"])
    log.info("ignored (deleted) %s", record_id)
    return ReviewResult(record_id, "ignored")


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

def build_review_report(result: ReviewResult) -> str:
    lines = [
        "=" * 60,
        "IDLoom Review Result",
        f"  record:   {result.record_id}",
        f"  outcome:  {result.outcome}",
        "=" * 60,
    ]
    if result.attendee_id:
        lines.append(f"  attendee id:    {result.attendee_id}")
        lines.append(f"  spouse created: {result.spouse_created}")
    if result.duplicates:
        lines.append(f"\nDuplicates ({len(result.duplicates)}):")
        for m in result.duplicates:
            lines.append(
                f"  {m.existing.id}  {m.existing.first_name} {m.existing.last_name}"
                f" <{m.existing.email}>  {m.match_type}/{m.confidence}"
            )
    if result.errors:
        lines.append(f"\nErrors ({len(result.errors)}):")
        for e in result.errors:
            lines.append(f"  {e}")
    if result.warnings:
        lines.append(f"\nWarnings ({len(result.warnings)}):")
        for w in result.warnings[:20]:
            lines.append(f"  {w}")
        if len(result.warnings) > 20:
            lines.append(f"  ... and {len(result.warnings) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)
