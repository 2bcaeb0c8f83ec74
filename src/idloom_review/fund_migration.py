"""idloom_review.fund_migration

Fund-affiliation clean-up (--mode fund_migration).

Rewrites attributes.fundAffiliation on existing attendees to its canonical
value ('', buyout, digital, impact, other).  Other attribute keys are left
as stored.  Running it twice changes nothing the second time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from idloom_review.normalize import standardize_fund_affiliation
from idloom_review.store import ReviewStore

log = logging.getLogger(__name__)

FUND_KEY = "fundAffiliation"


@dataclass
class FundMigrationCounters:
    attendees_scanned: int = 0
    attendees_updated: int = 0
    attendees_unchanged: int = 0
    db_errors: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attendees_scanned": self.attendees_scanned,
            "attendees_updated": self.attendees_updated,
            "attendees_unchanged": self.attendees_unchanged,
            "db_errors": self.db_errors,
            "warnings": self.warnings[:50],
        }


def run_fund_migration(store: ReviewStore, dry_run: bool = False) -> FundMigrationCounters:
    """Standardize every attendee's fund affiliation.

    With dry_run the changes are counted and listed in warnings but not written.
    """
    ctrs = FundMigrationCounters()
    for attendee_id, attributes in store.fetch_attendee_attributes():
        ctrs.attendees_scanned += 1
        current = attributes.get(FUND_KEY)
        if not current:
            ctrs.attendees_unchanged += 1
            continue
        standardized = standardize_fund_affiliation(current)
        if standardized == current:
            ctrs.attendees_unchanged += 1
            continue

        if dry_run:
            ctrs.attendees_updated += 1
            ctrs.warnings.append(f"{attendee_id}: {current!r} -> {standardized!r} (dry run)")
            continue
        try:
            store.update_attendee_attributes(
                attendee_id, {**attributes, FUND_KEY: standardized}
            )
        except Exception as exc:
            ctrs.db_errors += 1
            ctrs.warnings.append(f"{attendee_id}: update failed: {exc}")
            log.error("fund_migration attendee %s: %s", attendee_id, exc)
            continue
        ctrs.attendees_updated += 1
        log.info("attendee %s: fundAffiliation %r -> %r", attendee_id, current, standardized)
    return ctrs


def build_fund_migration_report(ctrs: FundMigrationCounters, dry_run: bool = False) -> str:
    lines = [
        "=" * 60,
        "Fund Affiliation Migration Report",
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  attendees scanned:   {ctrs.attendees_scanned}",
        f"  updated:             {ctrs.attendees_updated}",
        f"  unchanged:           {ctrs.attendees_unchanged}",
        f"DB errors:             {ctrs.db_errors}",
    ]
    if ctrs.warnings:
        lines.append(f"\nWarnings ({len(ctrs.warnings)}):")
        for w in ctrs.warnings[:20]:
            lines.append(f"  {w}")
        if len(ctrs.warnings) > 20:
            lines.append(f"  ... and {len(ctrs.warnings) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)
