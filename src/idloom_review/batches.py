"""idloom_review.batches

Import-batch tools (--mode transform_batch | batch_stats | delete_batch).

transform_batch re-runs the transformer over every pending record of a batch
(and, with retry_failed, every failed one).  Records that fail validation
move to 'failed' with their errors appended to processing_errors; failed
records that now transform cleanly go back to 'pending' for review.
Nothing is approved here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from idloom_review.field_map import FieldMap
from idloom_review.review_queue import QueueStats
from idloom_review.store import ReviewStore
from idloom_review.transform import transform_raw_record

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

@dataclass
class BatchTransformCounters:
    records_read: int = 0
    records_ok: int = 0
    records_failed: int = 0
    records_recovered: int = 0
    records_requiring_review: int = 0
    confidence_high: int = 0
    confidence_medium: int = 0
    confidence_low: int = 0
    db_errors: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "records_read": self.records_read,
            "records_ok": self.records_ok,
            "records_failed": self.records_failed,
            "records_recovered": self.records_recovered,
            "records_requiring_review": self.records_requiring_review,
            "confidence_high": self.confidence_high,
            "confidence_medium": self.confidence_medium,
            "confidence_low": self.confidence_low,
            "db_errors": self.db_errors,
            "warnings": self.warnings[:50],
        }


# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------

def transform_batch(
    store: ReviewStore,
    batch_id: str,
    retry_failed: bool = False,
    dry_run: bool = False,
    field_map: FieldMap | None = None,
) -> BatchTransformCounters:
    """Transform every pending (and optionally failed) record in a batch.

    Args:
        store: Review store.
        batch_id: Import batch to process.
        retry_failed: Also re-transform records currently in 'failed'.
        dry_run: Count outcomes without updating any record status.
        field_map: Alternate field map; defaults to the bundled one.
    """
    ctrs = BatchTransformCounters()
    statuses = ["pending", "failed"] if retry_failed else ["pending"]
    records = store.fetch_batch(batch_id, statuses)
    breakouts = store.fetch_active_breakouts()
    hotels = store.fetch_active_hotels()

    for record in records:
        ctrs.records_read += 1
        result = transform_raw_record(record, breakouts, hotels, field_map=field_map)
        if result.confidence == "high":
            ctrs.confidence_high += 1
        elif result.confidence == "medium":
            ctrs.confidence_medium += 1
        else:
            ctrs.confidence_low += 1
        if result.requires_review:
            ctrs.records_requiring_review += 1

        if result.success:
            ctrs.records_ok += 1
            if record.status == "failed":
                ctrs.records_recovered += 1
        else:
            ctrs.records_failed += 1
            ctrs.warnings.append(f"{record.guest_uid}: {'; '.join(result.errors)}")

        if dry_run:
            continue
        # Status only moves when it changes; pending successes are left alone.
        if result.success and record.status != "failed":
            continue
        try:
            store.mark_transform_outcome(
                record.id, failed=not result.success, errors=result.errors,
            )
        except Exception as exc:
            ctrs.db_errors += 1
            ctrs.warnings.append(f"{record.guest_uid}: status update failed: {exc}")
            log.error("transform_batch %s record %s: %s", batch_id, record.id, exc)

    log.info("transform_batch %s: %s", batch_id, ctrs.to_dict())
    return ctrs


def batch_stats(store: ReviewStore, batch_id: str) -> QueueStats:
    """Counts per status for one import batch."""
    return QueueStats.from_counts(store.status_counts(batch_id))


def delete_batch(store: ReviewStore, batch_id: str) -> int:
    """Delete a batch's pending and failed records; reviewed records are kept."""
    deleted = store.delete_batch(batch_id)
    log.info("delete_batch %s: %d record(s) deleted", batch_id, deleted)
    return deleted


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def build_transform_batch_report(
    batch_id: str,
    ctrs: BatchTransformCounters,
    dry_run: bool = False,
) -> str:
    lines = [
        "=" * 60,
        "IDLoom Batch Transform Report",
        f"  batch:   {batch_id}",
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  records read:            {ctrs.records_read}",
        f"  transformed ok:          {ctrs.records_ok}",
        f"  failed validation:       {ctrs.records_failed}",
        f"  recovered from failed:   {ctrs.records_recovered}",
        f"  requiring review:        {ctrs.records_requiring_review}",
        f"  confidence high/med/low: {ctrs.confidence_high}/{ctrs.confidence_medium}"
        f"/{ctrs.confidence_low}",
        f"DB errors:                 {ctrs.db_errors}",
    ]
    if ctrs.warnings:
        lines.append(f"\nWarnings ({len(ctrs.warnings)}):")
        for w in ctrs.warnings[:20]:
            lines.append(f"  {w}")
        if len(ctrs.warnings) > 20:
            lines.append(f"  ... and {len(ctrs.warnings) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)


def build_stats_report(title: str, stats: QueueStats) -> str:
    lines = [
        "=" * 60,
        title,
        "=" * 60,
        f"  total:    {stats.total}",
        f"  pending:  {stats.pending}",
        f"  approved: {stats.approved}",
        f"  rejected: {stats.rejected}",
        f"  failed:   {stats.failed}",
        "=" * 60,
    ]
    return "\n".join(lines)
