"""idloom_review.transform

Raw-record transformer: one IDLoom guest payload in, one reviewer-editable
AttendeeDraft (plus an optional spouse draft) out.

The transformer is pure.  It never mutates the raw record and never touches
storage; hotels and breakout sessions are passed in by the caller.

Usage:
    result = transform_raw_record(record, breakouts, hotels)
    if result.success:
        ...  # show result.main_attendee to the reviewer
"""

from __future__ import annotations

import re
import secrets
from datetime import date
from typing import Any, Iterable

from idloom_review.field_map import FieldMap, contains_phrase, load_field_map, lookup
from idloom_review.models import (
    C_LEVEL_FLAGS,
    AttendeeAttributes,
    AttendeeDraft,
    BreakoutSession,
    DiningSelection,
    Hotel,
    RawIngestionRecord,
    SpouseDetails,
    TransformResult,
)
from idloom_review.normalize import (
    CUSTOM_HOTEL,
    clean,
    clean_phone,
    hotel_name_from_value,
    is_valid_email,
    normalize_email,
    normalize_registration_status,
    parse_date,
    parse_flag,
    resolve_breakout,
    resolve_hotel,
    slug_name,
    standardize_fund_affiliation,
)

REQUIRED_FIELDS = ("first_name", "last_name", "title", "company")

SPOUSE_TITLE = "Spouse/Partner"

_ACCESS_CODE_RE = re.compile(r"^\d{6}$")
_LIST_SPLIT_RE = re.compile(r"[;,|\n]")
_DINING_KEY_MAX = 50


def generate_access_code() -> str:
    return f"{secrets.randbelow(900000) + 100000:06d}"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_draft(draft: AttendeeDraft) -> list[str]:
    """Return blocking errors for a draft; empty means it may be approved."""
    errors = []
    for name in REQUIRED_FIELDS:
        if not clean(getattr(draft, name)):
            errors.append(f"Missing required field: {name}")
    if draft.email and not is_valid_email(draft.email):
        errors.append(f"Invalid email address: {draft.email}")
    return errors


def calculate_confidence(draft: AttendeeDraft) -> str:
    """Completeness score of a draft, bucketed into high / medium / low."""
    a = draft.attributes
    score = 0
    if draft.first_name and draft.last_name:
        score += 20
    if draft.email and is_valid_email(draft.email):
        score += 10
    if draft.title:
        score += 5
    if draft.company:
        score += 5
    if a.any_flag():
        score += 15
    if a.apax_ip or a.apax_ep or a.apax_oep or any(getattr(a, f) for f in C_LEVEL_FLAGS):
        score += 15
    if draft.business_phone or draft.mobile_phone:
        score += 5
    if draft.check_in_date and draft.check_out_date:
        score += 5
    if draft.address1 or draft.city:
        score += 5
    if draft.dietary_requirements:
        score += 5
    if draft.has_spouse:
        score += 5
    ratio = score / 100
    if ratio >= 0.8:
        return "high"
    if ratio >= 0.6:
        return "medium"
    return "low"


# ---------------------------------------------------------------------------
# Field extraction helpers
# ---------------------------------------------------------------------------

def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, dict):
        value = [value]
    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("id") or item.get("title") or item.get("name")
            text = clean(item)
            if text:
                items.append(text)
        return items
    return [p.strip() for p in _LIST_SPLIT_RE.split(str(value)) if p.strip()]


def _options(payload: dict[str, Any], fm: FieldMap) -> list[dict[str, Any]]:
    options = lookup(payload, [fm.options_field, f"data.{fm.options_field}"])
    if not isinstance(options, list):
        return []
    return [o for o in options if isinstance(o, dict)]


def _email(value: Any, label: str, warnings: list[str]) -> str:
    email = normalize_email(value)
    if email is None:
        return ""
    if not is_valid_email(email):
        warnings.append(f"Invalid {label} '{email}' was removed")
        return ""
    return email


def _date(value: Any, label: str, warnings: list[str]) -> date | None:
    if not clean(value):
        return None
    parsed = parse_date(value)
    if parsed is None:
        warnings.append(f"Unparseable {label} '{value}' was ignored")
    return parsed


# ---------------------------------------------------------------------------
# Breakouts and dining
# ---------------------------------------------------------------------------

def _keyword_breakout(text: str, fm: FieldMap) -> str | None:
    lowered = text.lower()
    for keyword, ident in fm.breakout_keywords.items():
        if keyword in lowered:
            return ident
    return None


def extract_breakouts(
    payload: dict[str, Any],
    fm: FieldMap,
    sessions: list[BreakoutSession],
    warnings: list[str],
) -> tuple[list[str], set[int]]:
    """Resolve breakout choices from explicit fields and vendor options.

    Returns the selected identifiers (unresolved choices kept as raw text) and
    the indexes of option entries consumed as breakout choices.
    """
    selected: list[str] = []
    used_options: set[int] = set()
    table = fm.breakout_title_table

    def add(ident: str) -> None:
        if ident not in selected:
            selected.append(ident)

    def resolve(text: str) -> str | None:
        ident = resolve_breakout(text, sessions, table)
        if ident:
            return ident
        keyword_ident = _keyword_breakout(text, fm)
        if keyword_ident:
            return resolve_breakout(keyword_ident, sessions, table)
        return None

    for value in _as_list(fm.get(payload, "breakouts")):
        ident = resolve(value)
        if ident:
            add(ident)
        else:
            warnings.append(f"Unresolved breakout selection '{value}'")
            add(value)

    for index, option in enumerate(_options(payload, fm)):
        for text in (clean(option.get("full_name")), clean(option.get("name"))):
            if not text:
                continue
            ident = resolve(text)
            if ident:
                add(ident)
                used_options.add(index)
                break
            if _keyword_breakout(text, fm):
                warnings.append(f"Unresolved breakout selection '{text}'")
                add(text)
                used_options.add(index)
                break
    return selected, used_options


def extract_dining(
    payload: dict[str, Any],
    fm: FieldMap,
    skip: set[int],
) -> dict[str, DiningSelection]:
    """Dining events from vendor option entries, keyed by a stable slug."""
    selections: dict[str, DiningSelection] = {}
    for index, option in enumerate(_options(payload, fm)):
        if index in skip:
            continue
        full_name = clean(option.get("full_name"))
        answer = clean(option.get("name")).lower()
        if not full_name or not contains_phrase(full_name, fm.dining_keywords):
            continue
        location = option.get("location")
        location_name = hotel_name_from_value(location) if location else ""
        key = (
            clean(option.get("key"))
            or slug_name(location_name)[:_DINING_KEY_MAX]
            or slug_name(full_name)[:_DINING_KEY_MAX]
        ).strip("-")
        attending = answer in fm.attending_answers or parse_flag(option.get("attending"))
        table_number = clean(option.get("table_number")) or None
        previous = selections.get(key)
        if previous is not None:
            attending = attending or previous.attending
            table_number = table_number or previous.table_number
        selections[key] = DiningSelection(attending=attending, table_number=table_number)
    return selections


# ---------------------------------------------------------------------------
# Attributes
# ---------------------------------------------------------------------------

def _fund_affiliation(payload: dict[str, Any], fm: FieldMap) -> str:
    value = fm.get(payload, "fund_affiliation")
    if value is not None:
        return standardize_fund_affiliation(value)
    for alias in fm.fund_tag_fields:
        for tag in _as_list(lookup(payload, [alias])):
            if tag.lower().startswith("fund:"):
                return standardize_fund_affiliation(tag)
    return ""


def derive_attributes(
    payload: dict[str, Any],
    fm: FieldMap,
    title: str,
    company: str,
    email: str,
    notes: str = "",
) -> AttendeeAttributes:
    """Infer role and category flags.

    Explicit vendor flags win; the company name and email domain classify Apax
    staff; whole-word title phrases set the C-level flags.
    """
    cfg = fm.attributes
    attrs = AttendeeAttributes()

    explicit = {
        flag: parse_flag(lookup(payload, aliases))
        for flag, aliases in cfg["explicit_flags"].items()
    }
    for flag, on in explicit.items():
        if on:
            setattr(attrs, flag, True)

    apax_flags = ("apax_ip", "apax_ep", "apax_oep", "apax_other")
    if not any(explicit.get(f) for f in apax_flags):
        domain = email.rsplit("@", 1)[-1] if "@" in email else ""
        internal = {d.lower() for d in cfg["internal_email_domains"]}
        keyword = cfg.get("apax_company_keyword", "apax")
        if domain in internal or contains_phrase(company, [keyword]):
            if contains_phrase(company, cfg.get("apax_oep_keywords", [])):
                attrs.apax_oep = True
            elif contains_phrase(company, cfg.get("apax_ep_keywords", [])):
                attrs.apax_ep = True
            else:
                attrs.apax_ip = True

    for flag, patterns in fm.title_patterns().items():
        if any(p.search(title) for p in patterns):
            setattr(attrs, flag, True)

    other_chief = cfg.get("other_c_level_keyword")
    attrs.c_level_exec = (
        any(getattr(attrs, f) for f in C_LEVEL_FLAGS)
        or bool(other_chief and contains_phrase(title, [other_chief]))
    )

    is_apax = any(getattr(attrs, f) for f in apax_flags)
    if not is_apax and not explicit.get("sponsor_attendee"):
        if contains_phrase(company, cfg["vendor_indicators"]):
            attrs.sponsor_attendee = True

    if not is_apax and not attrs.sponsor_attendee:
        indicators = cfg["portfolio_indicators"]
        if (attrs.c_level_exec or contains_phrase(company, indicators)
                or contains_phrase(title, indicators)):
            attrs.portfolio_company_executive = True

    if not explicit.get("speaker"):
        indicators = cfg["speaker_indicators"]
        if contains_phrase(title, indicators) or contains_phrase(notes, indicators):
            attrs.speaker = True

    if not attrs.c_level_exec:
        if contains_phrase(title, cfg["non_c_level_indicators"]):
            attrs.non_c_level_exec = True
        elif not (is_apax or attrs.sponsor_attendee
                  or attrs.portfolio_company_executive or attrs.speaker):
            attrs.other_attendee_type = True

    attrs.fund_affiliation = _fund_affiliation(payload, fm)
    return attrs


# ---------------------------------------------------------------------------
# Spouse
# ---------------------------------------------------------------------------

def extract_spouse(
    payload: dict[str, Any],
    fm: FieldMap,
    warnings: list[str],
) -> tuple[bool, SpouseDetails | None]:
    """Return (has_spouse, spouse_details).

    When the vendor sends an accompanying-person flag it decides has_spouse;
    otherwise a spouse name implies one.  A spouse without both names yields
    empty details, so no spouse record is created.
    """
    first = clean(fm.get_spouse(payload, "first_name"))
    last = clean(fm.get_spouse(payload, "last_name"))

    if fm.has_any(payload, fm.spouse_flag):
        has_spouse = parse_flag(lookup(payload, fm.spouse_flag))
    else:
        has_spouse = bool(first or last)

    if not has_spouse:
        if first or last:
            warnings.append("Spouse details ignored: accompanying person flag is not set")
        return False, None

    if not (first and last):
        warnings.append("Incomplete spouse name information; no spouse record will be created")
        return True, SpouseDetails()

    return True, SpouseDetails(
        salutation=clean(fm.get_spouse(payload, "salutation")),
        first_name=first,
        last_name=last,
        email=_email(fm.get_spouse(payload, "email"), "spouse email", warnings),
        mobile_phone=clean_phone(fm.get_spouse(payload, "mobile_phone")),
        dietary_requirements=clean(fm.get_spouse(payload, "dietary_requirements")),
    )


def build_spouse_draft(main: AttendeeDraft) -> AttendeeDraft | None:
    """Derive the spouse attendee from the primary's spouse_details.

    The spouse shares the primary's company, stay and hotel but none of its
    registration or contact fields.
    """
    details = main.spouse_details
    if not main.has_spouse or details is None or not clean(details.first_name):
        return None
    email = normalize_email(details.email) or ""
    return AttendeeDraft(
        salutation=clean(details.salutation),
        first_name=clean(details.first_name),
        last_name=clean(details.last_name),
        email=email if is_valid_email(email) else "",
        title=SPOUSE_TITLE,
        company=main.company,
        mobile_phone=clean_phone(details.mobile_phone),
        dietary_requirements=clean(details.dietary_requirements),
        check_in_date=main.check_in_date,
        check_out_date=main.check_out_date,
        hotel_selection=main.hotel_selection,
        custom_hotel=main.custom_hotel,
        registration_status="confirmed",
        access_code=generate_access_code(),
        idloom_id=f"{main.idloom_id}-spouse" if main.idloom_id else "",
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def transform_raw_record(
    raw: RawIngestionRecord,
    known_breakouts: Iterable[BreakoutSession],
    known_hotels: Iterable[Hotel] = (),
    field_map: FieldMap | None = None,
) -> TransformResult:
    """Convert one raw IDLoom record into a canonical attendee draft.

    The main draft is always returned, even when validation fails, so the
    reviewer can correct it.  `success` is False iff `errors` is non-empty.
    """
    fm = field_map or load_field_map()
    payload = raw.payload if isinstance(raw.payload, dict) else {}
    sessions = [s for s in known_breakouts if s.is_active]
    warnings: list[str] = []

    def text(name: str) -> str:
        return clean(fm.get(payload, name))

    email = _email(fm.get(payload, "email"), "email address", warnings)
    business_phone = clean_phone(fm.get(payload, "business_phone"))
    mobile_phone = clean_phone(fm.get(payload, "mobile_phone"))
    if not business_phone and not mobile_phone:
        warnings.append("Missing phone number")

    hotel_value = fm.get(payload, "hotel")
    hotel_selection, custom_hotel, matches = resolve_hotel(hotel_value, known_hotels)
    if len(matches) > 1:
        names = ", ".join(h.name for h in matches)
        warnings.append(
            f"Hotel '{hotel_name_from_value(hotel_value)}' matches several hotels "
            f"({names}); using '{matches[0].name}'"
        )
    elif hotel_selection == CUSTOM_HOTEL:
        warnings.append(f"Hotel '{custom_hotel}' not found; recorded as custom hotel")

    access_code = text("access_code")
    if access_code and not _ACCESS_CODE_RE.match(access_code):
        warnings.append(f"Access code '{access_code}' is not 6 digits; a new one was generated")
        access_code = ""

    selected_breakouts, breakout_options = extract_breakouts(payload, fm, sessions, warnings)
    has_spouse, spouse_details = extract_spouse(payload, fm, warnings)
    company = text("company")
    # IDLoom's "title" key carries a salutation; older exports used it for
    # the job title.
    title = text("title")
    salutation = text("salutation")
    if fm.is_salutation(title):
        title = ""
    if salutation == title and not fm.is_salutation(salutation):
        salutation = ""

    main = AttendeeDraft(
        first_name=text("first_name"),
        last_name=text("last_name"),
        email=email,
        title=title,
        company=company,
        salutation=salutation,
        business_phone=business_phone,
        mobile_phone=mobile_phone,
        address1=text("address1"),
        address2=text("address2"),
        city=text("city"),
        state=text("state"),
        postal_code=text("postal_code"),
        country=text("country"),
        country_code=text("country_code").upper(),
        assistant_name=text("assistant_name"),
        assistant_email=_email(fm.get(payload, "assistant_email"), "assistant email", warnings),
        check_in_date=_date(fm.get(payload, "check_in_date"), "check-in date", warnings),
        check_out_date=_date(fm.get(payload, "check_out_date"), "check-out date", warnings),
        hotel_selection=hotel_selection,
        custom_hotel=custom_hotel,
        hotel_notes=text("hotel_notes"),
        dietary_requirements=text("dietary_requirements"),
        selected_breakouts=selected_breakouts,
        dining_selections=extract_dining(payload, fm, breakout_options),
        registration_status=normalize_registration_status(fm.get(payload, "registration_status")),
        registration_id=text("registration_id") or clean(raw.guest_uid),
        access_code=access_code or generate_access_code(),
        idloom_id=clean(raw.guest_uid),
        attributes=derive_attributes(payload, fm, title, company, email, text("notes")),
        has_spouse=has_spouse,
        spouse_details=spouse_details,
    )

    errors = validate_draft(main)
    confidence = calculate_confidence(main)
    return TransformResult(
        success=not errors,
        main_attendee=main,
        spouse_attendee=build_spouse_draft(main),
        selected_breakouts=list(selected_breakouts),
        warnings=warnings,
        errors=errors,
        confidence=confidence,
        requires_review=confidence == "low" or bool(errors) or len(warnings) > 3,
    )
