"""idloom_review.field_map

YAML-driven field map for IDLoom guest payloads.

Responsibilities:
  - Load and validate the alias/heuristics YAML (idloom_fields.yml by default)
  - Resolve a logical field against a payload using its alias list
  - Hash YAML content so a transformation can be traced to its field map

Usage:
    from idloom_review.field_map import load_field_map

    field_map = load_field_map()          # bundled idloom_fields.yml
    first = field_map.get(payload, "first_name")
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from idloom_review.models import ATTRIBUTE_KEYS

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_FIELD_MAP_PATH = Path(__file__).with_name("idloom_fields.yml")

REQUIRED_YAML_KEYS = frozenset({
    "version",
    "fields",
    "spouse_flag",
    "spouse_fields",
    "breakouts",
    "dining",
    "attributes",
})

REQUIRED_FIELDS = frozenset({"first_name", "last_name", "email", "title", "company"})

REQUIRED_SPOUSE_FIELDS = frozenset({"first_name", "last_name"})

REQUIRED_ATTRIBUTE_KEYS = frozenset({
    "internal_email_domains",
    "explicit_flags",
    "title_rules",
    "portfolio_indicators",
    "vendor_indicators",
    "speaker_indicators",
    "non_c_level_indicators",
})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class FieldMapValidationError(ValueError):
    """Raised when a field-map YAML file fails schema validation."""


# ---------------------------------------------------------------------------
# FieldMap dataclass
# ---------------------------------------------------------------------------

@dataclass
class FieldMap:
    """Parsed, validated field map loaded from a YAML file."""

    version: str
    yaml_hash: str
    fields: dict[str, list[str]]
    spouse_flag: list[str]
    spouse_fields: dict[str, list[str]]
    fund_tag_fields: list[str]
    options_field: str
    salutations: list[str]
    breakout_title_table: dict[str, str]
    breakout_keywords: dict[str, str]
    dining_keywords: list[str]
    attending_answers: list[str]
    attributes: dict[str, Any]
    raw_yaml: str = field(repr=False, default="")

    def get(self, payload: dict[str, Any], name: str) -> Any:
        """First non-blank value of logical field `name`, or None."""
        return lookup(payload, self.fields.get(name, []))

    def is_salutation(self, value: str) -> bool:
        return value.strip().rstrip(".").lower() in self.salutations

    def get_spouse(self, payload: dict[str, Any], name: str) -> Any:
        return lookup(payload, self.spouse_fields.get(name, []))

    def has_any(self, payload: dict[str, Any], aliases: list[str]) -> bool:
        """True if any alias is present in the payload, even with a blank value."""
        missing = object()
        return any(_dig(payload, a, missing) is not missing for a in aliases)

    def title_patterns(self) -> dict[str, list[re.Pattern[str]]]:
        return {
            flag: [phrase_pattern(p) for p in phrases]
            for flag, phrases in self.attributes["title_rules"].items()
        }


# ---------------------------------------------------------------------------
# Alias lookup
# ---------------------------------------------------------------------------

def _dig(payload: Any, dotted: str, default: Any = None) -> Any:
    """Resolve a key or dotted path.

    A literal key containing dots wins over the nested path.
    """
    if isinstance(payload, dict) and dotted in payload:
        return payload[dotted]
    node = payload
    for part in dotted.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def lookup(payload: dict[str, Any], aliases: list[str]) -> Any:
    """Return the first alias value that is not None or a blank string."""
    for alias in aliases:
        value = _dig(payload, alias)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def phrase_pattern(phrase: str) -> re.Pattern[str]:
    """Case-insensitive whole-word pattern for a keyword phrase."""
    return re.compile(r"\b" + re.escape(phrase.lower()) + r"\b", re.IGNORECASE)


def contains_phrase(text: str, phrases: list[str]) -> bool:
    return any(phrase_pattern(p).search(text) for p in phrases)


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_field_map(yaml_path: Path | None = None) -> FieldMap:
    """Load, validate, and return a FieldMap from a YAML file.

    Args:
        yaml_path: Path to the YAML file; defaults to the bundled map.

    Raises:
        FieldMapValidationError: If any required section is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    if yaml_path is None:
        return _default_field_map()
    return _load(yaml_path)


@lru_cache(maxsize=1)
def _default_field_map() -> FieldMap:
    return _load(DEFAULT_FIELD_MAP_PATH)


def _load(yaml_path: Path) -> FieldMap:
    raw = yaml_path.read_text(encoding="utf-8")
    data: dict[str, Any] = yaml.safe_load(raw)
    validate_field_map(data)
    yaml_hash = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    breakouts = data.get("breakouts") or {}
    dining = data.get("dining") or {}
    return FieldMap(
        version=str(data["version"]),
        yaml_hash=yaml_hash,
        fields={k: [str(a) for a in v] for k, v in data["fields"].items()},
        spouse_flag=[str(a) for a in data["spouse_flag"]],
        spouse_fields={k: [str(a) for a in v] for k, v in data["spouse_fields"].items()},
        fund_tag_fields=[str(a) for a in data.get("fund_tag_fields") or []],
        options_field=str(data.get("options_field") or "options"),
        salutations=[str(s).lower() for s in data.get("salutations") or []],
        breakout_title_table={
            str(k): str(v) for k, v in (breakouts.get("title_table") or {}).items()
        },
        breakout_keywords={
            str(k).lower(): str(v) for k, v in (breakouts.get("keywords") or {}).items()
        },
        dining_keywords=[str(k).lower() for k in dining.get("keywords") or []],
        attending_answers=[str(a).lower() for a in dining.get("attending_answers") or []],
        attributes=dict(data["attributes"]),
        raw_yaml=raw,
    )


def _check_alias_lists(section: str, mapping: Any, required: frozenset[str]) -> None:
    if not isinstance(mapping, dict):
        raise FieldMapValidationError(f"'{section}' must be a mapping.")
    missing = required - set(mapping.keys())
    if missing:
        raise FieldMapValidationError(f"Missing '{section}' entries: {sorted(missing)}")
    for name, aliases in mapping.items():
        if not isinstance(aliases, list) or not aliases:
            raise FieldMapValidationError(
                f"'{section}.{name}' must be a non-empty list of keys."
            )
        for alias in aliases:
            if not isinstance(alias, str) or not alias.strip():
                raise FieldMapValidationError(
                    f"'{section}.{name}' contains an invalid key: {alias!r}"
                )


def validate_field_map(data: dict[str, Any]) -> None:
    """Raise FieldMapValidationError if data does not match the required schema.

    Validates:
      - Required top-level sections present
      - Alias lists for the required attendee and spouse fields
      - Breakout keyword and title tables map strings to identifiers
      - Attribute heuristics sections present, title rules non-empty
    """
    if not isinstance(data, dict):
        raise FieldMapValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise FieldMapValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    _check_alias_lists("fields", data["fields"], REQUIRED_FIELDS)
    _check_alias_lists("spouse_fields", data["spouse_fields"], REQUIRED_SPOUSE_FIELDS)

    spouse_flag = data["spouse_flag"]
    if not isinstance(spouse_flag, list) or not spouse_flag:
        raise FieldMapValidationError("'spouse_flag' must be a non-empty list of keys.")

    breakouts = data["breakouts"]
    if not isinstance(breakouts, dict):
        raise FieldMapValidationError("'breakouts' must be a mapping.")
    for table in ("title_table", "keywords"):
        entries = breakouts.get(table) or {}
        if not isinstance(entries, dict):
            raise FieldMapValidationError(f"'breakouts.{table}' must be a mapping.")
        for title, ident in entries.items():
            if not str(ident or "").strip():
                raise FieldMapValidationError(
                    f"'breakouts.{table}' entry '{title}' has an empty identifier."
                )

    dining = data["dining"]
    if not isinstance(dining, dict) or not dining.get("keywords"):
        raise FieldMapValidationError("'dining.keywords' must not be empty.")

    attributes = data["attributes"]
    if not isinstance(attributes, dict):
        raise FieldMapValidationError("'attributes' must be a mapping.")
    missing_attr = REQUIRED_ATTRIBUTE_KEYS - set(attributes.keys())
    if missing_attr:
        raise FieldMapValidationError(f"Missing 'attributes' keys: {sorted(missing_attr)}")
    if not attributes.get("title_rules"):
        raise FieldMapValidationError("'attributes.title_rules' must not be empty.")
    _check_alias_lists("attributes.explicit_flags", attributes["explicit_flags"], frozenset())
    for section in ("explicit_flags", "title_rules"):
        unknown = set(attributes[section].keys()) - set(ATTRIBUTE_KEYS)
        if unknown:
            raise FieldMapValidationError(
                f"Unknown attribute flags in 'attributes.{section}': {sorted(unknown)}"
            )
