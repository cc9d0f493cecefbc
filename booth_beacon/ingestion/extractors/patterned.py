"""
Patterned Extractor
===================

Replays a learned ExtractionPattern: select every container, then read
each field through its relative selector.
"""

from __future__ import annotations

from typing import Any

from booth_beacon.core.enums import ExtractorVariant
from booth_beacon.core.schema import ExtractionCandidate, ExtractionPattern
from booth_beacon.ingestion.extractors.base import (
    ExtractionContext,
    element_text,
    make_candidate,
    parse_html,
)

PATTERN_FIELDS = ("name", "address", "city", "region", "country", "postal_code")


def extract_with_pattern(
    content: str,
    pattern: ExtractionPattern,
    context: ExtractionContext,
) -> list[ExtractionCandidate]:
    """
    Extract candidates with a learned pattern.

    Containers without a name are skipped. Candidate confidence is the
    pattern's current confidence.
    """
    name_selector = pattern.field_selectors.get("name")
    if not name_selector:
        return []

    soup = parse_html(content)
    candidates: list[ExtractionCandidate] = []

    for container in soup.select(pattern.container_selector):
        fields: dict[str, Any] = {}
        for field_name in PATTERN_FIELDS:
            selector = pattern.field_selectors.get(field_name)
            if selector:
                fields[field_name] = element_text(container.select_one(selector))
        if not fields.get("name"):
            continue
        candidates.append(
            make_candidate(
                context,
                ExtractorVariant.PATTERNED,
                f"pattern:{pattern.signature[:12]}",
                confidence=pattern.confidence,
                **fields,
            )
        )

    return candidates
