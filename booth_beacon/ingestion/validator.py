"""
Field Validator Module
======================

Structural gate for extraction candidates. Validation trims fields and
computes matching keys but never rewrites a name or address; anything
that fails a rule is rejected rather than corrected.

Rules, in order:
1. Name must be non-empty after trimming.
2. Address, when present, must be at least 10 characters.
3. Address must not repeat the name (case and whitespace insensitive).
4. Address must contain a street number followed by a word.
5. Out-of-range coordinates are cleared with a warning; the record is kept.
"""

from __future__ import annotations

import logging
import math
import re

from booth_beacon.core.errors import ValidationRejected
from booth_beacon.core.schema import ExtractionCandidate, ValidatedRecord
from booth_beacon.ingestion.normalizer import normalize_city, normalize_name, standardize_country

logger = logging.getLogger(__name__)

MIN_ADDRESS_LENGTH = 10
STREET_NUMBER_RE = re.compile(r"\d+\s+[A-Za-z]")

_OPTIONAL_TEXT_FIELDS = ("city", "region", "postal_code", "description", "website")


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def _squash(value: str) -> str:
    return " ".join(value.split()).lower()


def _coordinate_in_range(value: float, limit: float) -> bool:
    return math.isfinite(value) and -limit <= value <= limit


def check_address(address: str, name: str) -> str | None:
    """
    Apply the address rules.

    Args:
        address: Trimmed address, possibly empty
        name: Trimmed name

    Returns:
        Rejection reason, or None when the address is acceptable
    """
    if len(address) < MIN_ADDRESS_LENGTH:
        return f"address shorter than {MIN_ADDRESS_LENGTH} characters"
    if _squash(address) == _squash(name):
        return "address repeats the name"
    if not STREET_NUMBER_RE.search(address):
        return "address has no street number"
    return None


def validate(candidate: ExtractionCandidate) -> ValidatedRecord | ValidationRejected:
    """
    Validate and sanitize one candidate.

    Args:
        candidate: Raw extraction candidate

    Returns:
        ValidatedRecord on success, ValidationRejected otherwise
    """
    name = (candidate.name or "").strip()
    if not name:
        return ValidationRejected(candidate=candidate, field="name", reason="name is empty")

    address = None
    if candidate.address is not None:
        address = candidate.address.strip()
        reason = check_address(address, name)
        if reason is not None:
            return ValidationRejected(candidate=candidate, field="address", reason=reason)

    warnings: list[str] = []
    latitude = candidate.latitude
    longitude = candidate.longitude
    if latitude is not None or longitude is not None:
        if latitude is None or longitude is None:
            warnings.append("incomplete coordinates dropped")
            latitude = longitude = None
        elif not (
            _coordinate_in_range(latitude, 90.0) and _coordinate_in_range(longitude, 180.0)
        ):
            warnings.append(f"out-of-range coordinates dropped ({latitude}, {longitude})")
            latitude = longitude = None

    cleaned = {field: _clean(getattr(candidate, field)) for field in _OPTIONAL_TEXT_FIELDS}

    return ValidatedRecord(
        **candidate.model_dump(
            exclude={"name", "address", "latitude", "longitude", "country", *_OPTIONAL_TEXT_FIELDS}
        ),
        **cleaned,
        name=name,
        address=address,
        country=standardize_country(candidate.country),
        latitude=latitude,
        longitude=longitude,
        sanitized=True,
        validation_errors=[],
        warnings=warnings,
        name_key=normalize_name(name),
        city_key=normalize_city(cleaned["city"]),
    )


def validate_batch(
    candidates: list[ExtractionCandidate],
) -> tuple[list[ValidatedRecord], list[ValidationRejected]]:
    """
    Validate a list of candidates.

    Returns:
        (accepted records, rejections), each in input order
    """
    accepted: list[ValidatedRecord] = []
    rejected: list[ValidationRejected] = []
    for candidate in candidates:
        outcome = validate(candidate)
        if isinstance(outcome, ValidationRejected):
            logger.debug(f"Rejected candidate: {outcome}")
            rejected.append(outcome)
        else:
            for warning in outcome.warnings:
                logger.debug(f"{outcome.name}: {warning}")
            accepted.append(outcome)
    return accepted, rejected
