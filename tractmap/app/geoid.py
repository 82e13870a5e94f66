"""Canonical 11-character tract GEOIDs (2 state + 3 county + 6 tract)."""

from __future__ import annotations

import re
from typing import Any, Mapping

GEOID_LENGTH = 11
DEFAULT_STATE_FIPS = "36"

_WHITESPACE = re.compile(r"\s+")


def _clean(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return _WHITESPACE.sub("", str(value))


def normalize_geoid(value: Any) -> str | None:
    """Truncate or right-pad a raw identifier to exactly 11 characters.

    Returns None when nothing usable is left after stripping whitespace.
    """
    text = _clean(value)
    if not text:
        return None
    if len(text) >= GEOID_LENGTH:
        return text[:GEOID_LENGTH]
    return text.ljust(GEOID_LENGTH, "0")


def build_geoid(
    *,
    state: Any = None,
    county: Any = None,
    tract: Any = None,
) -> str | None:
    county_text = _clean(county)
    tract_text = _clean(tract)
    if not county_text and not tract_text:
        return None

    state_text = _clean(state) or DEFAULT_STATE_FIPS
    tract_digits = tract_text.lstrip("0") or ("0" if tract_text else "")
    combined = f"{state_text}{county_text.zfill(3)}{tract_digits.zfill(6)}"
    return combined[:GEOID_LENGTH]


def lookup_field(properties: Mapping[str, Any], *names: str) -> Any:
    """Return the first non-empty value among ``names``, ignoring key case."""
    if not properties:
        return None
    lowered = {str(key).lower(): value for key, value in properties.items()}
    for name in names:
        value = properties.get(name)
        if value is None or value == "":
            value = lowered.get(name.lower())
        if value is not None and value != "":
            return value
    return None


def state_of(geoid: str) -> str:
    return geoid[0:2]


def county_of(geoid: str) -> str:
    return geoid[2:5]


def tract_of(geoid: str) -> str:
    return geoid[5:11]


def is_canonical(geoid: str | None) -> bool:
    return bool(geoid) and len(geoid) == GEOID_LENGTH and geoid.isdigit()
