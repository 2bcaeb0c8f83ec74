"""idloom_review.models

Canonical attendee model and the records that flow through the review
pipeline.  Pure data definitions: nothing here touches the database.

`AttendeeAttributes` keeps a fixed set of flags.  Its snake_case field names
are mapped to the camelCase keys stored in the `attendees.attributes` JSONB
column by `ATTRIBUTE_KEYS`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date, datetime
from typing import Any

RECORD_STATUSES = ("pending", "approved", "rejected", "failed")
REGISTRATION_STATUSES = ("confirmed", "pending", "cancelled")
MATCH_TYPES = ("email", "name", "both")
CONFIDENCE_LEVELS = ("high", "medium", "low")


def _as_flag(value: Any) -> bool:
    if isinstance(value, str):
        from idloom_review.normalize import parse_flag

        return parse_flag(value)
    return bool(value)


# ---------------------------------------------------------------------------
# Reference data supplied by the caller
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Hotel:
    id: str
    name: str
    is_active: bool = True
    display_order: int = 0


@dataclass(frozen=True)
class BreakoutSession:
    id: str
    title: str
    date: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    is_active: bool = True


# ---------------------------------------------------------------------------
# Raw ingestion record
# ---------------------------------------------------------------------------

@dataclass
class RawIngestionRecord:
    """One vendor registration as stored in raw_attendee_data.

    `payload` is the untouched vendor JSON; it is only read by the transformer.
    """

    id: str
    guest_uid: str
    event_uid: str | None
    batch_id: str | None
    payload: dict[str, Any]
    status: str = "pending"
    processing_errors: list[str] = field(default_factory=list)
    rejection_reason: str | None = None
    created_at: datetime | None = None
    is_existing_attendee: bool = False


# ---------------------------------------------------------------------------
# Attendee draft
# ---------------------------------------------------------------------------

ATTRIBUTE_KEYS: dict[str, str] = {
    "apax_ip": "apaxIP",
    "apax_ep": "apaxEP",
    "apax_oep": "apaxOEP",
    "apax_other": "apaxOther",
    "portfolio_company_executive": "portfolioCompanyExecutive",
    "sponsor_attendee": "sponsorAttendee",
    "speaker": "speaker",
    "ceo": "ceo",
    "cfo": "cfo",
    "cmo": "cmo",
    "cro": "cro",
    "coo": "coo",
    "chro": "chro",
    "cto_cio": "cto_cio",
    "c_level_exec": "cLevelExec",
    "non_c_level_exec": "nonCLevelExec",
    "other_attendee_type": "otherAttendeeType",
    "fund_affiliation": "fundAffiliation",
}

C_LEVEL_FLAGS = ("ceo", "cfo", "cmo", "cro", "coo", "chro", "cto_cio")


@dataclass
class AttendeeAttributes:
    apax_ip: bool = False
    apax_ep: bool = False
    apax_oep: bool = False
    apax_other: bool = False
    portfolio_company_executive: bool = False
    sponsor_attendee: bool = False
    speaker: bool = False
    ceo: bool = False
    cfo: bool = False
    cmo: bool = False
    cro: bool = False
    coo: bool = False
    chro: bool = False
    cto_cio: bool = False
    c_level_exec: bool = False
    non_c_level_exec: bool = False
    other_attendee_type: bool = False
    fund_affiliation: str = ""

    def any_flag(self) -> bool:
        return any(
            getattr(self, f.name) for f in fields(self) if f.name != "fund_affiliation"
        )

    def to_dict(self) -> dict[str, Any]:
        return {ATTRIBUTE_KEYS[k]: v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AttendeeAttributes":
        """Build from the stored camelCase mapping; unknown keys are ignored.

        String flags from edited JSON are parsed, so "false" is False.
        """
        data = data or {}
        kwargs: dict[str, Any] = {}
        for name, key in ATTRIBUTE_KEYS.items():
            if key not in data:
                continue
            if name == "fund_affiliation":
                kwargs[name] = str(data[key] or "")
            else:
                kwargs[name] = _as_flag(data[key])
        return cls(**kwargs)


@dataclass
class SpouseDetails:
    salutation: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    mobile_phone: str = ""
    dietary_requirements: str = ""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass
class DiningSelection:
    attending: bool
    table_number: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"attending": self.attending}
        if self.table_number:
            d["tableNumber"] = self.table_number
        return d


@dataclass
class AttendeeDraft:
    """Reviewer-editable canonical attendee.

    `spouse_details` is None unless has_spouse is true; a true has_spouse with
    no usable spouse name carries an empty SpouseDetails.
    """

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    title: str = ""
    company: str = ""
    salutation: str = ""
    business_phone: str = ""
    mobile_phone: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    country_code: str = ""
    assistant_name: str = ""
    assistant_email: str = ""
    check_in_date: date | None = None
    check_out_date: date | None = None
    hotel_selection: str = ""
    custom_hotel: str = ""
    hotel_notes: str = ""
    dietary_requirements: str = ""
    selected_breakouts: list[str] = field(default_factory=list)
    dining_selections: dict[str, DiningSelection] = field(default_factory=dict)
    registration_status: str = "confirmed"
    registration_id: str = ""
    access_code: str = ""
    idloom_id: str = ""
    attributes: AttendeeAttributes = field(default_factory=AttendeeAttributes)
    has_spouse: bool = False
    spouse_details: SpouseDetails | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def copy(self, **changes: Any) -> "AttendeeDraft":
        return replace(self, **changes)

    def with_edits(self, edits: dict[str, Any]) -> "AttendeeDraft":
        """Apply a reviewer's edits given in the stored (to_row) shape.

        `attributes` and `spouse_details` are merged key by key; dates are
        ISO strings.  Unknown keys raise ValueError.
        """
        known = {f.name for f in fields(self)}
        unknown = set(edits) - known
        if unknown:
            raise ValueError(f"unknown attendee fields: {sorted(unknown)}")
        changes: dict[str, Any] = {}
        for name, value in edits.items():
            if name == "attributes":
                merged = {**self.attributes.to_dict(), **(value or {})}
                changes[name] = AttendeeAttributes.from_dict(merged)
            elif name == "spouse_details":
                base = self.spouse_details.to_dict() if self.spouse_details else {}
                changes[name] = SpouseDetails(**{**base, **(value or {})}) if value else None
            elif name == "dining_selections":
                changes[name] = {
                    k: DiningSelection(
                        attending=_as_flag(v.get("attending")),
                        table_number=v.get("tableNumber") or v.get("table_number"),
                    )
                    for k, v in (value or {}).items()
                }
            elif name in ("check_in_date", "check_out_date"):
                changes[name] = date.fromisoformat(value) if value else None
            elif name == "selected_breakouts":
                changes[name] = [str(v) for v in value or []]
            elif name == "has_spouse":
                changes[name] = bool(value)
            else:
                changes[name] = "" if value is None else str(value)
        return replace(self, **changes)

    def to_row(self) -> dict[str, Any]:
        """Column values for the attendees table (JSON columns as plain dicts)."""
        row = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("attributes", "spouse_details", "dining_selections")
        }
        row["selected_breakouts"] = list(self.selected_breakouts)
        row["attributes"] = self.attributes.to_dict()
        row["dining_selections"] = {
            k: v.to_dict() for k, v in self.dining_selections.items()
        }
        if self.has_spouse and self.spouse_details and self.spouse_details.first_name:
            row["spouse_details"] = self.spouse_details.to_dict()
        else:
            row["spouse_details"] = {}
        return row


# ---------------------------------------------------------------------------
# Existing attendee (duplicate-check view)
# ---------------------------------------------------------------------------

@dataclass
class ExistingAttendee:
    id: str
    first_name: str
    last_name: str
    email: str = ""
    company: str = ""
    idloom_id: str = ""
    is_spouse: bool = False
    attributes: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------

@dataclass
class DuplicateMatch:
    candidate_index: int
    existing: ExistingAttendee
    match_type: str
    confidence: str


@dataclass
class TransformResult:
    success: bool
    main_attendee: AttendeeDraft
    spouse_attendee: AttendeeDraft | None = None
    selected_breakouts: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    confidence: str = "low"
    requires_review: bool = True
