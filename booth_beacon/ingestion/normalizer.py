"""
Normalizer Module
=================

Matching keys and geometry helpers used by validation and dedup.
Keys are only ever used for comparison; stored names and addresses
keep their original text.
"""

from __future__ import annotations

import math
import re
import unicodedata

EARTH_RADIUS_M = 6_371_000.0

_PUNCTUATION_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")
_STREET_NUMBER_RE = re.compile(r"(\d+)\s+([a-z]+)")

# Common variations mapped to standard country names
COUNTRY_ALIASES: dict[str, str] = {
    "usa": "United States",
    "us": "United States",
    "u.s.": "United States",
    "u.s.a.": "United States",
    "america": "United States",
    "united states of america": "United States",
    "uk": "United Kingdom",
    "u.k.": "United Kingdom",
    "great britain": "United Kingdom",
    "britain": "United Kingdom",
    "england": "United Kingdom",
    "scotland": "United Kingdom",
    "wales": "United Kingdom",
    "northern ireland": "United Kingdom",
    "deutschland": "Germany",
    "holland": "Netherlands",
    "czechia": "Czech Republic",
}


def _fold(value: str) -> str:
    """Lower-case and strip accents."""
    decomposed = unicodedata.normalize("NFKD", value.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize_name(name: str | None) -> str:
    """
    Build the name matching key.

    Lower-cased, accents and punctuation stripped, whitespace collapsed.

    Examples:
        "Joe's Bar & Grill" -> "joes bar grill"
        "  CAFÉ  Noir " -> "cafe noir"
    """
    if not name:
        return ""
    stripped = _PUNCTUATION_RE.sub("", _fold(name))
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def normalize_city(city: str | None) -> str:
    """Build the city matching key (same rules as names)."""
    return normalize_name(city)


def street_number_prefix(address: str | None) -> str:
    """
    Extract the leading street-number token of an address.

    Returns the first ``<digits> <word>`` pair, lower-cased, or an
    empty string when the address has none.

    Examples:
        "123 Main St, Springfield" -> "123 main"
        "Suite 4, 55 Elm Street" -> "55 elm"
    """
    if not address:
        return ""
    match = _STREET_NUMBER_RE.search(normalize_name(address))
    if match is None:
        return ""
    return f"{match.group(1)} {match.group(2)}"


def standardize_country(country: str | None) -> str | None:
    """Map common country aliases to a standard name."""
    if country is None:
        return None
    cleaned = country.strip()
    if not cleaned:
        return None
    return COUNTRY_ALIASES.get(cleaned.lower(), cleaned)


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points in metres.

    Args:
        lat1, lon1: First point in decimal degrees
        lat2, lon2: Second point in decimal degrees
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))
