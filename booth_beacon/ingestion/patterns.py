"""
Pattern Learner Module
======================

Learns a reusable CSS extraction pattern for a source from records that
passed validation, and adjusts its confidence from later runs.

Derivation looks for the element each record's name sits in, walks up
to the nearest repeated ancestor shared by the records (the container),
and records a relative selector per field. Selectors only use tag names
and plain class names, so replay never depends on positional markup.

Confidence lifecycle:
- new pattern: initial confidence
- re-derived with the same signature: + reinforce step (capped at 1.0)
- tried and yielded zero valid records: x decay factor
- below the usable floor: no longer tried before the LLM
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from bs4 import BeautifulSoup, NavigableString, Tag
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booth_beacon.core.enums import ExtractorVariant
from booth_beacon.core.errors import RegistryError
from booth_beacon.core.schema import ExtractionPattern, Source, ValidatedRecord
from booth_beacon.db.repositories import PatternRepository
from booth_beacon.ingestion.config import PatternConfig
from booth_beacon.ingestion.extractors.base import clean_text, parse_html

logger = logging.getLogger(__name__)

MAX_ANCESTOR_DEPTH = 6
LEARNED_FIELDS = ("address", "city", "region", "country", "postal_code")
_SAFE_CLASS_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
_SKIP_PARENTS = frozenset({"script", "style", "noscript", "template", "head", "title"})


# ============================================================================
# Derivation
# ============================================================================


@dataclass
class PatternDescriptor:
    """A derived, not yet stored, pattern."""

    container_selector: str
    field_selectors: dict[str, str]
    signature: str
    matched_records: int = 0


def _simple_selectors(element: Tag) -> list[str]:
    """Tag-plus-one-class selectors for an element, then the bare tag."""
    classes = element.get("class") or []
    selectors = [
        f"{element.name}.{cls}" for cls in sorted(set(classes)) if _SAFE_CLASS_RE.match(cls)
    ]
    selectors.append(element.name)
    return selectors


def _squash(value: str) -> str:
    return clean_text(value).lower()


def _text_nodes(soup: BeautifulSoup) -> list[tuple[str, Tag]]:
    nodes: list[tuple[str, Tag]] = []
    for string in soup.find_all(string=True):
        parent = string.parent
        if not isinstance(string, NavigableString) or parent is None:
            continue
        if parent.name in _SKIP_PARENTS:
            continue
        text = _squash(str(string))
        if text:
            nodes.append((text, parent))
    return nodes


def _find_element(nodes: list[tuple[str, Tag]], value: str) -> Tag | None:
    """Element whose own text equals value, else the first one containing it."""
    target = _squash(value)
    if not target:
        return None
    for text, parent in nodes:
        if text == target:
            return parent
    for text, parent in nodes:
        if target in text:
            return parent
    return None


def compute_signature(container_selector: str, field_selectors: dict[str, str]) -> str:
    """Stable hash identifying a pattern's structure."""
    payload = json.dumps(
        {"container": container_selector, "fields": field_selectors}, sort_keys=True
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _choose_container(
    name_elements: list[tuple[int, Tag]],
    min_records: int,
) -> tuple[str, dict[int, Tag]] | None:
    """
    Pick the container selector shared by the most records.

    Returns:
        (selector, {record index: container element}) or None
    """
    # selector -> container element id -> (element, record indexes, depth)
    hits: dict[str, dict[int, tuple[Tag, set[int], int]]] = defaultdict(dict)

    for record_index, name_el in name_elements:
        ancestor = name_el.parent
        depth = 1
        while isinstance(ancestor, Tag) and ancestor.name not in ("[document]", "html", "body"):
            if depth > MAX_ANCESTOR_DEPTH:
                break
            for selector in _simple_selectors(ancestor):
                entry = hits[selector].setdefault(id(ancestor), (ancestor, set(), depth))
                entry[1].add(record_index)
            ancestor = ancestor.parent
            depth += 1

    best: tuple[tuple[int, int, float], str, dict[int, Tag]] | None = None
    for selector, elements in hits.items():
        # A container holds exactly one record
        singles = {
            next(iter(indexes)): element
            for element, indexes, _depth in elements.values()
            if len(indexes) == 1
        }
        if len(singles) < min_records:
            continue
        depths = [depth for _el, indexes, depth in elements.values() if len(indexes) == 1]
        score = (len(singles), 1 if "." in selector else 0, -sum(depths) / len(depths))
        if best is None or score > best[0]:
            best = (score, selector, singles)

    if best is None:
        return None
    return best[1], best[2]


def _choose_field_selector(
    containers: dict[int, Tag],
    values: dict[int, str],
) -> str | None:
    """Relative selector that finds the field value in most containers."""
    counts: dict[str, int] = defaultdict(int)
    for record_index, container in containers.items():
        value = values.get(record_index)
        if not value:
            continue
        element = _find_element(_text_nodes_within(container), value)
        if element is None or element is container:
            continue
        for selector in _simple_selectors(element):
            counts[selector] += 1

    with_value = sum(1 for index in containers if values.get(index))
    if not with_value:
        return None

    for selector, _count in sorted(counts.items(), key=lambda kv: (-kv[1], "." not in kv[0])):
        confirmed = 0
        for record_index, container in containers.items():
            value = values.get(record_index)
            if not value:
                continue
            found = container.select_one(selector)
            if found is not None and _squash(value) in _squash(found.get_text(" ")):
                confirmed += 1
        if confirmed * 2 >= with_value:
            return selector
    return None


def _text_nodes_within(container: Tag) -> list[tuple[str, Tag]]:
    nodes: list[tuple[str, Tag]] = []
    for string in container.find_all(string=True):
        parent = string.parent
        if parent is None or parent.name in _SKIP_PARENTS:
            continue
        text = _squash(str(string))
        if text:
            nodes.append((text, parent))
    return nodes


def derive_pattern(
    html: str,
    records: list[ValidatedRecord],
    min_records: int = 2,
) -> PatternDescriptor | None:
    """
    Derive an extraction pattern from validated records on a page.

    Args:
        html: Page content the records were extracted from
        records: Records that passed validation
        min_records: Minimum records the container must cover

    Returns:
        PatternDescriptor, or None if no repeated structure explains the records
    """
    if len(records) < min_records:
        return None

    soup = parse_html(html)
    nodes = _text_nodes(soup)

    name_elements: list[tuple[int, Tag]] = []
    for index, record in enumerate(records):
        element = _find_element(nodes, record.name)
        if element is not None:
            name_elements.append((index, element))

    chosen = _choose_container(name_elements, min_records)
    if chosen is None:
        logger.debug("No repeated container found for validated records")
        return None
    container_selector, containers = chosen

    name_selector = _choose_field_selector(
        containers, {i: records[i].name for i in containers}
    )
    if name_selector is None:
        return None

    field_selectors = {"name": name_selector}
    for field_name in LEARNED_FIELDS:
        values = {
            i: getattr(records[i], field_name)
            for i in containers
            if getattr(records[i], field_name)
        }
        if len(values) < min_records:
            continue
        selector = _choose_field_selector(containers, values)
        if selector is not None and selector != name_selector:
            field_selectors[field_name] = selector

    return PatternDescriptor(
        container_selector=container_selector,
        field_selectors=field_selectors,
        signature=compute_signature(container_selector, field_selectors),
        matched_records=len(containers),
    )


# ============================================================================
# Learning
# ============================================================================


@dataclass
class PageObservation:
    """What happened on one page, as the learner needs it."""

    content: str
    variant: ExtractorVariant | None
    pattern_attempted: bool = False
    candidates: int = 0
    records: list[ValidatedRecord] = field(default_factory=list)

    @property
    def pass_rate(self) -> float:
        if self.candidates == 0:
            return 0.0
        return len(self.records) / self.candidates


@dataclass
class PatternUpdate:
    """Result of one learning step."""

    action: str = "none"
    pattern: ExtractionPattern | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "action": self.action,
            "signature": self.pattern.signature if self.pattern else None,
            "confidence": self.pattern.confidence if self.pattern else None,
            "usable": self.pattern.usable if self.pattern else None,
        }


class PatternLearner:
    """
    Stores and adjusts learned patterns for sources.

    Only generic or patterned pages contribute. Specialized extractors
    are already deterministic and are never learned from.
    """

    def __init__(self, session: Session, config: PatternConfig | None = None) -> None:
        self.session = session
        self.config = config or PatternConfig()
        self._repo = PatternRepository(session)

    def active_pattern(self, source_id: UUID) -> ExtractionPattern | None:
        """Get the source's active pattern."""
        try:
            return self._repo.get_active(source_id)
        except SQLAlchemyError as e:
            raise RegistryError(f"Failed to load pattern for {source_id}: {e}") from e

    def observe(
        self,
        source: Source,
        pattern: ExtractionPattern | None,
        pages: list[PageObservation],
    ) -> PatternUpdate:
        """
        Update the pattern store after a completed run.

        Args:
            source: The crawled source
            pattern: Pattern that was active when the run started
            pages: Per-page results of the run

        Returns:
            PatternUpdate describing what changed
        """
        try:
            update = self._observe(source, pattern, pages)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RegistryError(f"Failed to update patterns for '{source.name}': {e}") from e

        if update.action != "none":
            logger.info(f"Pattern {update.action} for '{source.name}'")
        return update

    def _observe(
        self,
        source: Source,
        pattern: ExtractionPattern | None,
        pages: list[PageObservation],
    ) -> PatternUpdate:
        now = datetime.now(UTC)
        update = PatternUpdate()

        if pattern is not None:
            attempted = [p for p in pages if p.pattern_attempted]
            if attempted:
                patterned_valid = sum(
                    len(p.records) for p in attempted if p.variant == ExtractorVariant.PATTERNED
                )
                if patterned_valid == 0:
                    pattern = self._decay(pattern)
                    update = PatternUpdate(
                        action="disabled" if not pattern.usable else "decayed",
                        pattern=pattern,
                    )
                else:
                    pattern.success_count += 1
                    pattern.validated_at = now
                    pattern = self._repo.update(pattern)
                    update = PatternUpdate(action="confirmed", pattern=pattern)

        descriptor = self._best_descriptor(pages)
        if descriptor is None:
            return update

        if pattern is not None and pattern.signature == descriptor.signature:
            pattern.confidence = min(1.0, pattern.confidence + self.config.reinforce_step)
            pattern.usable = pattern.confidence >= self.config.usable_floor
            pattern.validated_at = now
            return PatternUpdate(action="reinforced", pattern=self._repo.update(pattern))

        created = self._repo.create(
            ExtractionPattern(
                source_id=source.id,
                container_selector=descriptor.container_selector,
                field_selectors=descriptor.field_selectors,
                signature=descriptor.signature,
                confidence=self.config.initial_confidence,
                usable=self.config.initial_confidence >= self.config.usable_floor,
                learned_at=now,
            )
        )
        return PatternUpdate(action="created", pattern=created)

    def _decay(self, pattern: ExtractionPattern) -> ExtractionPattern:
        pattern.confidence = pattern.confidence * self.config.decay_factor
        pattern.failure_count += 1
        pattern.usable = pattern.confidence >= self.config.usable_floor
        logger.info(
            f"Pattern {pattern.signature[:12]} decayed to {pattern.confidence:.2f}"
            + ("" if pattern.usable else " (below usable floor)")
        )
        return self._repo.update(pattern)

    def _best_descriptor(self, pages: list[PageObservation]) -> PatternDescriptor | None:
        eligible = [
            p
            for p in pages
            if p.variant in (ExtractorVariant.GENERIC, ExtractorVariant.PATTERNED)
            and len(p.records) >= self.config.min_records
            and p.pass_rate >= self.config.min_pass_rate
        ]
        eligible.sort(key=lambda p: len(p.records), reverse=True)
        for page in eligible:
            descriptor = derive_pattern(page.content, page.records, self.config.min_records)
            if descriptor is not None:
                return descriptor
        return None

    def reset(self, source_id: UUID) -> int:
        """Deactivate all patterns for a source. Returns patterns changed."""
        try:
            changed = self._repo.deactivate_all(source_id)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RegistryError(f"Failed to reset patterns for {source_id}: {e}") from e
        return changed

    def history(self, source_id: UUID) -> list[ExtractionPattern]:
        """All patterns ever learned for a source, newest first."""
        try:
            return self._repo.list_for_source(source_id)
        except SQLAlchemyError as e:
            raise RegistryError(f"Failed to list patterns for {source_id}: {e}") from e
