"""
Extractor Base Module
=====================

Shared types and helpers for the three extraction paths. Every
extractor is a function that takes page content plus an
``ExtractionContext`` and returns ``list[ExtractionCandidate]``.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from booth_beacon.core.enums import ExtractorVariant, SourceType
from booth_beacon.core.schema import ExtractionCandidate, Source

HTML_PARSER = "html.parser"

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class ExtractionContext:
    """Where the content came from."""

    source: Source
    url: str

    @property
    def source_type(self) -> SourceType:
        return self.source.source_type

    @property
    def custom_config(self) -> dict[str, Any]:
        return self.source.custom_config


@dataclass(frozen=True)
class SpecializedExtractor:
    """A registered rule-based extractor for a known source family."""

    name: str
    version: str
    func: Callable[[str, ExtractionContext], list[ExtractionCandidate]]
    description: str = ""

    def __call__(self, content: str, context: ExtractionContext) -> list[ExtractionCandidate]:
        return self.func(content, context)


@dataclass
class ExtractionOutcome:
    """
    Result of extracting one page.

    Zero candidates with no errors is a valid, reportable outcome.
    """

    candidates: list[ExtractionCandidate] = field(default_factory=list)
    variant: ExtractorVariant | None = None
    extractor_name: str = ""
    pattern_attempted: bool = False
    pattern_candidates: int = 0
    fell_back: bool = False
    llm_calls: int = 0
    errors: list[str] = field(default_factory=list)


def parse_html(content: str) -> BeautifulSoup:
    """Parse HTML with the standard library parser."""
    return BeautifulSoup(content, HTML_PARSER)


def clean_text(value: str | None) -> str:
    """Collapse whitespace and strip."""
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip()


def element_text(element: Tag | None) -> str | None:
    """Visible text of an element, or None when empty."""
    if element is None:
        return None
    text = clean_text(element.get_text(" "))
    return text or None


def absolute_url(base: str, href: str | None) -> str | None:
    if not href:
        return None
    return urljoin(base, href)


def to_float(value: Any) -> float | None:
    """Parse a coordinate-like value, returning None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def make_candidate(
    context: ExtractionContext,
    variant: ExtractorVariant,
    extractor_name: str,
    confidence: float,
    **fields: Any,
) -> ExtractionCandidate:
    """Build a candidate tagged with its source and extractor."""
    return ExtractionCandidate(
        **fields,
        source_id=context.source.id,
        source_name=context.source.name,
        source_url=context.url,
        confidence=confidence,
        extractor=variant,
        extractor_name=extractor_name,
    )
