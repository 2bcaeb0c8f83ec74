"""idloom_review.duplicate_match

Decides whether incoming attendee drafts already exist among the current
attendees, by email equality and fuzzy name similarity.

Every (candidate, existing) pair is compared; the cost is O(n * m), which is
fine for conference-sized attendee lists.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from rapidfuzz.distance import Levenshtein

from idloom_review.models import AttendeeDraft, DuplicateMatch, ExistingAttendee
from idloom_review.normalize import normalize_email, normalize_match_name

PART_THRESHOLD = 0.85
FULL_NAME_THRESHOLD = 0.90
VARIATION_LAST_NAME_THRESHOLD = 0.90
VARIATION_PREFIX_LEN = 3


# ---------------------------------------------------------------------------
# String similarity
# ---------------------------------------------------------------------------

def similarity(a: str, b: str) -> float:
    """1 - distance / longer length; two empty strings are identical (1.0)."""
    if not a and not b:
        return 1.0
    return Levenshtein.normalized_similarity(a, b)


# ---------------------------------------------------------------------------
# Pair comparison
# ---------------------------------------------------------------------------

@dataclass
class PairSignals:
    email_match: bool
    exact_name_match: bool
    fuzzy_name_match: bool
    first_name_variation: bool
    last_name_similarity: float

    @property
    def is_duplicate(self) -> bool:
        return (
            self.email_match
            or self.exact_name_match
            or self.fuzzy_name_match
            or (self.first_name_variation
                and self.last_name_similarity >= VARIATION_LAST_NAME_THRESHOLD)
        )

    def classify(self) -> tuple[str, str]:
        """Return (match_type, confidence) in rule priority order."""
        name_match = self.exact_name_match or self.fuzzy_name_match
        if self.email_match and name_match:
            return "both", "high"
        if self.email_match:
            return "email", "high"
        if self.exact_name_match:
            return "name", "high"
        if self.fuzzy_name_match or self.first_name_variation:
            return "name", "medium"
        return "name", "low"


def compare(
    candidate: AttendeeDraft | ExistingAttendee,
    existing: ExistingAttendee,
) -> PairSignals:
    c_first = normalize_match_name(candidate.first_name)
    c_last = normalize_match_name(candidate.last_name)
    e_first = normalize_match_name(existing.first_name)
    e_last = normalize_match_name(existing.last_name)
    c_full = f"{c_first} {c_last}".strip()
    e_full = f"{e_first} {e_last}".strip()

    c_email = normalize_email(candidate.email)
    e_email = normalize_email(existing.email)
    email_match = bool(c_email and e_email and c_email == e_email)

    # Name rules need both name parts on both sides.
    if not (c_first and c_last and e_first and e_last):
        return PairSignals(email_match, False, False, False, 0.0)

    first_sim = similarity(c_first, e_first)
    last_sim = similarity(c_last, e_last)
    exact = c_first == e_first and c_last == e_last
    fuzzy = (
        (first_sim >= PART_THRESHOLD and last_sim >= PART_THRESHOLD)
        or similarity(c_full, e_full) >= FULL_NAME_THRESHOLD
    )
    variation = (
        len(c_first) >= VARIATION_PREFIX_LEN
        and len(e_first) >= VARIATION_PREFIX_LEN
        and c_first[:VARIATION_PREFIX_LEN] == e_first[:VARIATION_PREFIX_LEN]
    )
    return PairSignals(email_match, exact, fuzzy, variation, last_sim)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def find_duplicates(
    candidates: Sequence[AttendeeDraft | ExistingAttendee],
    existing: Iterable[ExistingAttendee],
    stop_at_high_confidence: bool = False,
) -> list[DuplicateMatch]:
    """Return every duplicate pair between candidates and existing attendees.

    Matches are ordered by candidate index, then by the order of `existing`.
    With stop_at_high_confidence, scanning for a candidate stops at its first
    high-confidence match.
    """
    existing = list(existing)
    matches: list[DuplicateMatch] = []
    for index, candidate in enumerate(candidates):
        for attendee in existing:
            signals = compare(candidate, attendee)
            if not signals.is_duplicate:
                continue
            match_type, confidence = signals.classify()
            matches.append(DuplicateMatch(
                candidate_index=index,
                existing=attendee,
                match_type=match_type,
                confidence=confidence,
            ))
            if stop_at_high_confidence and confidence == "high":
                break
    return matches


def best_match(matches: Iterable[DuplicateMatch]) -> DuplicateMatch | None:
    """Highest-confidence match, preferring 'both' over single-signal types."""
    rank = {"high": 0, "medium": 1, "low": 2}
    type_rank = {"both": 0, "email": 1, "name": 2}
    ordered = sorted(
        matches, key=lambda m: (rank[m.confidence], type_rank[m.match_type])
    )
    return ordered[0] if ordered else None
