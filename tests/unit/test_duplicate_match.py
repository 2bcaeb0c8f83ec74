"""Unit tests for idloom_review.duplicate_match."""

import pytest

from idloom_review.duplicate_match import (
    best_match,
    compare,
    find_duplicates,
    similarity,
)
from idloom_review.models import AttendeeDraft, DuplicateMatch, ExistingAttendee


def _existing(first, last, email="", attendee_id="att-1"):
    return ExistingAttendee(id=attendee_id, first_name=first, last_name=last, email=email)


def _draft(first, last, email=""):
    return AttendeeDraft(first_name=first, last_name=last, email=email)


# ---------------------------------------------------------------------------
# String similarity
# ---------------------------------------------------------------------------

class TestSimilarity:
    def test_identical(self):
        assert similarity("smith", "smith") == 1.0

    def test_both_empty(self):
        assert similarity("", "") == 1.0

    def test_one_empty(self):
        assert similarity("abc", "") == 0.0

    def test_jon_john(self):
        assert similarity("jon", "john") == pytest.approx(0.75)

    def test_full_names(self):
        assert similarity("jon smith", "john smith") == pytest.approx(0.9)

    def test_non_latin(self):
        assert similarity("иван", "иван") == 1.0
        assert similarity("иван", "петр") == 0.0


# ---------------------------------------------------------------------------
# Pair classification
# ---------------------------------------------------------------------------

class TestCompare:
    def test_email_only(self):
        signals = compare(_draft("Ana", "Lee", "ANA@co.com"), _existing("Zed", "Quinn", "ana@co.com"))
        assert signals.email_match
        assert signals.is_duplicate
        assert signals.classify() == ("email", "high")

    def test_email_and_name(self):
        signals = compare(_draft("Ana", "Lee", "ana@co.com"), _existing("Ana", "Lee", "ana@co.com"))
        assert signals.classify() == ("both", "high")

    def test_exact_name(self):
        signals = compare(_draft("Ana", "Lee"), _existing("ana", " LEE "))
        assert signals.exact_name_match
        assert signals.classify() == ("name", "high")

    def test_exact_name_ignores_punctuation(self):
        signals = compare(_draft("Mary-Ann", "O'Brien"), _existing("MaryAnn", "OBrien"))
        assert signals.classify() == ("name", "high")

    def test_fuzzy_name(self):
        signals = compare(_draft("Jon", "Smith"), _existing("John", "Smith"))
        assert signals.fuzzy_name_match
        assert not signals.exact_name_match
        assert signals.classify() == ("name", "medium")

    def test_first_name_variation(self):
        signals = compare(_draft("Robert", "Johnson"), _existing("Roberto", "Johnsen"))
        assert signals.is_duplicate
        assert signals.classify()[1] == "medium"

    def test_variation_needs_similar_last_name(self):
        signals = compare(_draft("Robert", "Johnson"), _existing("Robin", "Williams"))
        assert not signals.is_duplicate

    def test_dissimilar(self):
        signals = compare(_draft("Ana", "Lee"), _existing("Bob", "Jones"))
        assert not signals.is_duplicate

    def test_blank_names_never_match(self):
        signals = compare(_draft("", ""), _existing("", ""))
        assert not signals.is_duplicate

    def test_missing_first_name_never_matches_on_name(self):
        signals = compare(_draft("", "Petrov"), _existing("", "Petrov"))
        assert not signals.is_duplicate

    def test_cyrillic_first_names_with_shared_last_name(self):
        signals = compare(_draft("Иван", "Petrov"), _existing("Пётр", "Petrov"))
        assert not signals.exact_name_match
        assert not signals.is_duplicate

    def test_cyrillic_exact_name(self):
        signals = compare(_draft("Пётр", "Petrov"), _existing("петр", "PETROV"))
        assert signals.classify() == ("name", "high")

    def test_blank_emails_never_match(self):
        signals = compare(_draft("Ana", "Lee", ""), _existing("Bob", "Jones", ""))
        assert not signals.email_match


# ---------------------------------------------------------------------------
# find_duplicates / best_match
# ---------------------------------------------------------------------------

class TestFindDuplicates:
    def test_jon_smith_medium_or_higher(self):
        matches = find_duplicates([_draft("Jon", "Smith")], [_existing("John", "Smith")])
        assert len(matches) == 1
        assert matches[0].match_type == "name"
        assert matches[0].confidence in ("medium", "high")

    def test_no_match(self):
        assert find_duplicates([_draft("Ana", "Lee")], [_existing("Bob", "Jones")]) == []

    def test_different_cyrillic_first_names(self):
        matches = find_duplicates(
            [_draft("Иван", "Petrov", "ivan@x.com")],
            [_existing("Пётр", "Petrov", "petr@y.com")],
        )
        assert matches == []

    def test_order_by_candidate_then_existing(self):
        existing = [
            _existing("Ana", "Lee", attendee_id="e1"),
            _existing("Bob", "Jones", "bob@x.com", attendee_id="e2"),
            _existing("Ana", "Lee", "other@x.com", attendee_id="e3"),
        ]
        matches = find_duplicates(
            [_draft("Bob", "Jonas", "bob@x.com"), _draft("Ana", "Lee")], existing,
        )
        assert [(m.candidate_index, m.existing.id) for m in matches] == [
            (0, "e2"), (1, "e1"), (1, "e3"),
        ]
        assert matches[0].match_type == "email"

    def test_stop_at_high_confidence(self):
        existing = [
            _existing("Ana", "Lee", attendee_id="e1"),
            _existing("Ana", "Lee", attendee_id="e2"),
        ]
        matches = find_duplicates([_draft("Ana", "Lee")], existing, stop_at_high_confidence=True)
        assert [m.existing.id for m in matches] == ["e1"]

    def test_existing_attendee_as_candidate(self):
        matches = find_duplicates([_existing("Ana", "Lee")], [_existing("Ana", "Lee", attendee_id="e9")])
        assert matches[0].confidence == "high"


class TestBestMatch:
    def test_prefers_high_and_both(self):
        e = _existing("Ana", "Lee")
        matches = [
            DuplicateMatch(0, e, "name", "medium"),
            DuplicateMatch(0, e, "email", "high"),
            DuplicateMatch(0, e, "both", "high"),
        ]
        assert best_match(matches).match_type == "both"

    def test_empty(self):
        assert best_match([]) is None
