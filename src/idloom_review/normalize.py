"""Normalization functions for IDLoom registration payloads.

All string helpers accept loosely-typed vendor values (str, number, bool,
None) and return a clean value; none of them raise on bad input.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from typing import Any, Iterable

from idloom_review.models import BreakoutSession, Hotel

_TRUTHY = frozenset({"1", "true", "yes"})

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_DATE_FORMATS = ("%Y-%m-%d", "%Y-%m-%d %H:%M:%S", "%d/%m/%Y", "%b %d, %Y")

CUSTOM_HOTEL = "custom"
OWN_ARRANGEMENTS = ""

FUND_AFFILIATIONS = ("buyout", "digital", "impact", "other")

_FUND_PREFIX_RE = re.compile(r"^\s*fund\s*:\s*", re.IGNORECASE)

_FUND_SYNONYMS = {
    "buyout": "buyout",
    "buyout funds": "buyout",
    "digital": "digital",
    "digital funds": "digital",
    "impact": "impact",
    "impact funds": "impact",
    "other": "other",
    "other funds": "other",
}


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: Any) -> str | None:
    """Stringify and strip; treat None and blank strings as None."""
    if value is None:
        return None
    v = str(value).strip()
    return v if v else None


def clean(value: Any) -> str:
    """Like trim() but returns '' instead of None."""
    return trim(value) or ""


# ---------------------------------------------------------------------------
# Rule 2: boolean coercion
# ---------------------------------------------------------------------------

def parse_flag(value: Any) -> bool:
    """Return True iff the trimmed value is one of '1', 'true', 'yes'.

    Case-insensitive.  Missing values and anything else are False.
    """
    v = trim(value)
    if v is None:
        return False
    return v.lower() in _TRUTHY


# ---------------------------------------------------------------------------
# Rule 3: email / phone
# ---------------------------------------------------------------------------

def normalize_email(value: Any) -> str | None:
    """Lowercase and trim an email address."""
    v = trim(value)
    if v is None:
        return None
    return v.lower()


def is_valid_email(value: str | None) -> bool:
    return bool(value) and _EMAIL_RE.match(value) is not None


def clean_phone(value: Any) -> str:
    """Keep digits only, preserving a leading '+'."""
    v = trim(value)
    if v is None:
        return ""
    if v.startswith("+"):
        return "+" + re.sub(r"\D", "", v[1:])
    return re.sub(r"\D", "", v)


# ---------------------------------------------------------------------------
# Rule 4: names
# ---------------------------------------------------------------------------

def normalize_match_name(value: Any) -> str:
    """Lowercase, drop everything except letters and spaces, collapse spaces.

    Accents are folded first so 'José' and 'Jose' compare equal; letters of
    other scripts are kept as they are.  Used only for duplicate matching.
    """
    v = trim(value)
    if v is None:
        return ""
    v = unicodedata.normalize("NFKD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = "".join(c for c in v if c.isalpha() or c.isspace()).lower()
    return re.sub(r"\s+", " ", v).strip()


def slug_name(value: Any) -> str:
    """Lowercase alnum with single '-' separators.

    Non-alphanumerics (other than spaces and hyphens) are dropped rather than
    replaced, so 'Q&A: Panel' becomes 'qa-panel'.
    """
    v = trim(value)
    if v is None:
        return ""
    v = unicodedata.normalize("NFKD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = v.lower()
    v = re.sub(r"[^a-z0-9\s-]", "", v)
    v = re.sub(r"\s+", "-", v)
    v = re.sub(r"-+", "-", v)
    return v.strip("-")


# ---------------------------------------------------------------------------
# Rule 5: dates
# ---------------------------------------------------------------------------

def parse_date(value: Any) -> date | None:
    """Parse the vendor's date spellings; ISO datetimes keep only the date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    v = trim(value)
    if v is None:
        return None
    if re.match(r"^\d{4}-\d{2}-\d{2}T", v):
        v = v.split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue
    return None


# ---------------------------------------------------------------------------
# Rule 6: registration status
# ---------------------------------------------------------------------------

def normalize_registration_status(value: Any) -> str:
    """Map IDLoom registration statuses onto confirmed / pending / cancelled."""
    status = clean(value).lower()
    if status in ("pending", "incomplete"):
        return "pending"
    if status in ("cancelled", "canceled", "rejected"):
        return "cancelled"
    return "confirmed"


# ---------------------------------------------------------------------------
# Rule 7: fund affiliation
# ---------------------------------------------------------------------------

def standardize_fund_affiliation(value: Any) -> str:
    """Return one of '', 'buyout', 'digital', 'impact', 'other'.

    'Fund:buyout', 'Fund: Buyout Funds' and 'buyout' all map to 'buyout'.
    Any other non-empty value maps to 'other'.  Applying the function to its
    own output returns the same value.
    """
    v = trim(value)
    if v is None:
        return ""
    v = _FUND_PREFIX_RE.sub("", v)
    v = re.sub(r"\s+", " ", v.lower()).strip()
    if not v:
        return ""
    return _FUND_SYNONYMS.get(v, "other")


# ---------------------------------------------------------------------------
# Rule 8: hotel resolution
# ---------------------------------------------------------------------------

def hotel_name_from_value(value: Any) -> str:
    """Pull a hotel name out of a string or a nested vendor object."""
    if isinstance(value, dict):
        for key in ("name", "hotel", "title", "hotel_name", "location", "venue"):
            name = trim(value.get(key))
            if name:
                return name
        return ""
    return clean(value)


def resolve_hotel(
    value: Any,
    hotels: Iterable[Hotel],
) -> tuple[str, str, list[Hotel]]:
    """Resolve a free-text hotel name against the known hotels.

    Returns (hotel_selection, custom_hotel, matches):
      - matched:   (hotel.id, '', all matching hotels in display order)
      - unmatched: ('custom', raw name, [])
      - empty:     ('', '', []), i.e. own arrangements

    A hotel matches when either lowercased name contains the other.  When more
    than one hotel matches, the first by display_order wins and the caller
    decides whether to warn.
    """
    name = hotel_name_from_value(value)
    if not name:
        return OWN_ARRANGEMENTS, "", []

    needle = name.lower()
    matches = [
        h for h in sorted(hotels, key=lambda h: (h.display_order, h.name))
        if h.is_active and h.name
        and (needle in h.name.lower() or h.name.lower() in needle)
    ]
    if not matches:
        return CUSTOM_HOTEL, name, []
    return matches[0].id, "", matches


# ---------------------------------------------------------------------------
# Rule 9: breakout identifiers
# ---------------------------------------------------------------------------

def breakout_slug(title: Any, title_table: dict[str, str] | None = None) -> str:
    """Return the canonical identifier for a breakout session title.

    The explicit title table is consulted first (exact title match) because
    some titles collide when slugged; otherwise the slug of the title is used.
    """
    v = clean(title)
    if title_table and v in title_table:
        return title_table[v]
    return slug_name(v)


def resolve_breakout(
    value: Any,
    sessions: Iterable[BreakoutSession],
    title_table: dict[str, str] | None = None,
) -> str | None:
    """Resolve a selection to a known session's identifier, or None.

    Tried in order: exact session id, exact session identifier, then the
    slug of the value compared to each session's identifier.
    """
    v = clean(value)
    if not v:
        return None
    sessions = list(sessions)
    for s in sessions:
        if v == s.id:
            return breakout_slug(s.title, title_table)
    idents = {breakout_slug(s.title, title_table) for s in sessions}
    if v in idents:
        return v
    slug = breakout_slug(v, title_table)
    if slug and slug in idents:
        return slug
    return None
