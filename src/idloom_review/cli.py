"""idloom_review.cli

IDLoom review CLI.

    python -m idloom_review.cli --mode list_pending --db-dsn "$DSN"
    python -m idloom_review.cli --mode review  --record-id <uuid>
    python -m idloom_review.cli --mode approve --record-id <uuid> \\
        [--draft-path edits.json] [--on-duplicate skip|update|import]

--draft-path takes a JSON object {"main": {...}, "spouse": {...}} holding the
reviewer's edits in the attendee column shape; they are applied on top of the
transformer's draft.  Exit status is 1 when an operation is blocked or fails.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click

from idloom_review import batches, fund_migration, review_queue
from idloom_review.field_map import FieldMap, FieldMapValidationError, load_field_map
from idloom_review.models import AttendeeDraft, TransformResult
from idloom_review.store import PgReviewStore, RecordNotFoundError
from idloom_review.transform import SPOUSE_TITLE

MODES = [
    "list_pending", "review", "approve", "reject", "ignore", "stats",
    "batch_stats", "transform_batch", "delete_batch", "fund_migration",
]

_RECORD_MODES = frozenset({"review", "approve", "reject", "ignore"})
_BATCH_MODES = frozenset({"batch_stats", "transform_batch", "delete_batch"})


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _transform_to_dict(result: TransformResult) -> dict[str, Any]:
    return {
        "success": result.success,
        "confidence": result.confidence,
        "requires_review": result.requires_review,
        "main_attendee": result.main_attendee.to_row(),
        "spouse_attendee": (
            result.spouse_attendee.to_row() if result.spouse_attendee else None
        ),
        "selected_breakouts": result.selected_breakouts,
        "warnings": result.warnings,
        "errors": result.errors,
    }


def _load_edits(draft_path: str | None) -> tuple[dict[str, Any], dict[str, Any] | None]:
    if not draft_path:
        return {}, None
    data = json.loads(Path(draft_path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise click.BadParameter("draft JSON must be an object", param_hint="--draft-path")
    return data.get("main") or {}, data.get("spouse")


@click.command()
@click.option(
    "--mode",
    required=True,
    type=click.Choice(MODES),
    help="Operation to run",
)
@click.option(
    "--db-dsn",
    required=True,
    envvar="IDLOOM_REVIEW_DSN",
    help="PostgreSQL DSN (or IDLOOM_REVIEW_DSN)",
)
@click.option("--record-id", default=None, help="[review|approve|reject|ignore] Raw record id")
@click.option("--batch-id", default=None, help="[batch_stats|transform_batch|delete_batch] Import batch id")
@click.option("--limit", default=50, type=int, show_default=True, help="[list_pending] Page size")
@click.option("--offset", default=0, type=int, show_default=True, help="[list_pending] Page offset")
@click.option("--draft-path", default=None, type=click.Path(exists=True), help="[approve] JSON of reviewer edits")
@click.option(
    "--on-duplicate",
    default=None,
    type=click.Choice(["skip", "update", "import"]),
    help="[approve] What to do when a high-confidence duplicate exists",
)
@click.option("--reason", default=None, help="[reject] Rejection reason")
@click.option("--retry-failed", is_flag=True, default=False, help="[transform_batch] Also re-transform failed records")
@click.option("--dry-run", is_flag=True, default=False, help="[transform_batch|fund_migration] Count changes without writing")
@click.option("--field-map", "field_map_path", default=None, type=click.Path(exists=True), help="Alternate field-map YAML")
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON instead of a text report")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    show_default=True,
)
def main(
    mode: str,
    db_dsn: str,
    record_id: str | None,
    batch_id: str | None,
    limit: int,
    offset: int,
    draft_path: str | None,
    on_duplicate: str | None,
    reason: str | None,
    retry_failed: bool,
    dry_run: bool,
    field_map_path: str | None,
    as_json: bool,
    log_level: str,
) -> None:
    """IDLoom ingestion review CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if mode in _RECORD_MODES and not record_id:
        click.echo(f"ERROR: --record-id is required for --mode {mode}", err=True)
        sys.exit(1)
    if mode in _BATCH_MODES and not batch_id:
        click.echo(f"ERROR: --batch-id is required for --mode {mode}", err=True)
        sys.exit(1)

    try:
        field_map: FieldMap = load_field_map(Path(field_map_path) if field_map_path else None)
    except FieldMapValidationError as exc:
        click.echo(f"ERROR: invalid field map: {exc}", err=True)
        sys.exit(1)

    store = PgReviewStore.connect(db_dsn)
    try:
        exit_code = _dispatch(
            store, mode, field_map,
            record_id=record_id, batch_id=batch_id, limit=limit, offset=offset,
            draft_path=draft_path, on_duplicate=on_duplicate, reason=reason,
            retry_failed=retry_failed, dry_run=dry_run, as_json=as_json,
        )
    finally:
        store.close()
    if exit_code:
        sys.exit(exit_code)


def _dispatch(
    store: PgReviewStore,
    mode: str,
    field_map: FieldMap,
    *,
    record_id: str | None,
    batch_id: str | None,
    limit: int,
    offset: int,
    draft_path: str | None,
    on_duplicate: str | None,
    reason: str | None,
    retry_failed: bool,
    dry_run: bool,
    as_json: bool,
) -> int:
    if mode == "list_pending":
        page = review_queue.list_pending(store, limit=limit, offset=offset)
        if as_json:
            _echo_json({
                "total": page.total,
                "has_more": page.has_more,
                "records": [
                    {
                        "id": r.id,
                        "guest_uid": r.guest_uid,
                        "batch_id": r.batch_id,
                        "created_at": r.created_at,
                        "is_existing_attendee": r.is_existing_attendee,
                        "processing_errors": r.processing_errors,
                    }
                    for r in page.records
                ],
            })
        else:
            click.echo(f"{page.total} pending record(s); showing {len(page.records)} from offset {offset}")
            for r in page.records:
                flag = " [existing attendee]" if r.is_existing_attendee else ""
                click.echo(f"  {r.id}  {r.guest_uid}  batch={r.batch_id}  {r.created_at}{flag}")
            if page.has_more:
                click.echo(f"  ... more at --offset {offset + limit}")
        return 0

    if mode == "review":
        try:
            result = review_queue.review_record(store, record_id, field_map=field_map)
        except RecordNotFoundError as exc:
            click.echo(f"ERROR: {exc}", err=True)
            return 1
        _echo_json(_transform_to_dict(result))
        return 0

    if mode == "approve":
        try:
            result = review_queue.review_record(store, record_id, field_map=field_map)
        except RecordNotFoundError as exc:
            click.echo(f"ERROR: {exc}", err=True)
            return 1
        main_edits, spouse_edits = _load_edits(draft_path)
        try:
            main = result.main_attendee.with_edits(main_edits)
            spouse = None
            if spouse_edits is not None:
                base = result.spouse_attendee or AttendeeDraft(
                    title=SPOUSE_TITLE, company=main.company,
                )
                spouse = base.with_edits(spouse_edits)
        except ValueError as exc:
            click.echo(f"ERROR: invalid draft edits: {exc}", err=True)
            return 1
        outcome = review_queue.approve_record(
            store, record_id, main, spouse,
            on_duplicate=on_duplicate, field_map=field_map,
        )
        if as_json:
            _echo_json(outcome.to_dict())
        else:
            click.echo(review_queue.build_review_report(outcome))
        if outcome.outcome == "duplicate":
            click.echo("High-confidence duplicate found; re-run with --on-duplicate.", err=True)
        return 0 if outcome.ok else 1

    if mode == "reject":
        outcome = review_queue.reject_record(store, record_id, reason)
    elif mode == "ignore":
        outcome = review_queue.ignore_record(store, record_id)
    else:
        outcome = None
    if outcome is not None:
        if as_json:
            _echo_json(outcome.to_dict())
        else:
            click.echo(review_queue.build_review_report(outcome))
        return 0 if outcome.ok else 1

    if mode in ("stats", "batch_stats"):
        if mode == "stats":
            stats = review_queue.queue_stats(store)
            title = "IDLoom Review Queue"
        else:
            stats = batches.batch_stats(store, batch_id)
            title = f"IDLoom Batch {batch_id}"
        if as_json:
            _echo_json(stats.to_dict())
        else:
            click.echo(batches.build_stats_report(title, stats))
        return 0

    if mode == "transform_batch":
        ctrs = batches.transform_batch(
            store, batch_id, retry_failed=retry_failed, dry_run=dry_run, field_map=field_map,
        )
        if as_json:
            _echo_json(ctrs.to_dict())
        else:
            click.echo(batches.build_transform_batch_report(batch_id, ctrs, dry_run=dry_run))
        return 1 if ctrs.db_errors else 0

    if mode == "delete_batch":
        deleted = batches.delete_batch(store, batch_id)
        click.echo(f"Deleted {deleted} unreviewed record(s) from batch {batch_id}")
        return 0

    if mode == "fund_migration":
        ctrs = fund_migration.run_fund_migration(store, dry_run=dry_run)
        if as_json:
            _echo_json(ctrs.to_dict())
        else:
            click.echo(fund_migration.build_fund_migration_report(ctrs, dry_run=dry_run))
        return 1 if ctrs.db_errors else 0

    raise click.UsageError(f"unhandled mode {mode}")


if __name__ == "__main__":
    main()
