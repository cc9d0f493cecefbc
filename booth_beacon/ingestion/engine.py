"""
Extraction Engine
=================

Chooses the extraction path for a page:

1. A specialized extractor registered for the source's extractor_type.
2. The source's learned pattern, if it is active and above the
   confidence floor. Zero results fall back to step 3.
3. The generic LLM extractor.
"""

from __future__ import annotations

import logging

from booth_beacon.core.enums import ExtractorVariant
from booth_beacon.core.errors import ExtractionUnavailableError
from booth_beacon.core.schema import ExtractionPattern, RawContentSnapshot, Source
from booth_beacon.ingestion.extractors import get_extractor
from booth_beacon.ingestion.extractors.base import ExtractionContext, ExtractionOutcome
from booth_beacon.ingestion.extractors.generic import DEFAULT_MAX_CHUNK_CHARS, extract_generic
from booth_beacon.ingestion.extractors.patterned import extract_with_pattern
from booth_beacon.services.ai.client import LLMClient

logger = logging.getLogger(__name__)

GENERIC_EXTRACTOR_TYPES = frozenset({"generic", "patterned", "ai", ""})


def pattern_is_usable(pattern: ExtractionPattern | None, usable_floor: float) -> bool:
    """Whether a pattern may be tried before the LLM."""
    return (
        pattern is not None
        and pattern.active
        and pattern.usable
        and pattern.confidence >= usable_floor
    )


class ExtractionEngine:
    """
    Dispatches page content to the right extractor.

    Example:
        engine = ExtractionEngine(llm_client)
        outcome = await engine.extract(source, snapshot, pattern)
        print(outcome.variant, len(outcome.candidates))
    """

    def __init__(
        self,
        llm_client: LLMClient | None = None,
        usable_floor: float = 0.3,
        max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS,
    ) -> None:
        self.llm_client = llm_client
        self.usable_floor = usable_floor
        self.max_chunk_chars = max_chunk_chars

    async def extract(
        self,
        source: Source,
        snapshot: RawContentSnapshot,
        pattern: ExtractionPattern | None = None,
    ) -> ExtractionOutcome:
        """
        Extract candidates from one snapshot.

        Args:
            source: Owning source
            snapshot: Page content
            pattern: Active learned pattern for the source, if any

        Returns:
            ExtractionOutcome describing which path ran

        Raises:
            ExtractionUnavailableError: The generic path was needed and no
                LLM is configured or reachable.
        """
        context = ExtractionContext(source=source, url=snapshot.url)

        specialized = get_extractor(source.extractor_type)
        if specialized is not None:
            candidates = specialized(snapshot.content, context)
            logger.debug(
                f"{specialized.name} extracted {len(candidates)} candidates from {snapshot.url}"
            )
            return ExtractionOutcome(
                candidates=candidates,
                variant=ExtractorVariant.SPECIALIZED,
                extractor_name=specialized.name,
            )

        if source.extractor_type not in GENERIC_EXTRACTOR_TYPES:
            logger.warning(
                f"Unknown extractor_type '{source.extractor_type}' for source "
                f"'{source.name}', using the generic path"
            )

        outcome = ExtractionOutcome()
        if pattern is not None and pattern_is_usable(pattern, self.usable_floor):
            candidates = extract_with_pattern(snapshot.content, pattern, context)
            outcome.pattern_attempted = True
            outcome.pattern_candidates = len(candidates)
            if candidates:
                outcome.candidates = candidates
                outcome.variant = ExtractorVariant.PATTERNED
                outcome.extractor_name = candidates[0].extractor_name
                return outcome
            logger.info(
                f"Pattern {pattern.signature[:12]} found nothing on {snapshot.url}, "
                f"falling back to LLM extraction"
            )
            outcome.fell_back = True

        if self.llm_client is None:
            raise ExtractionUnavailableError(
                f"No LLM provider configured for generic extraction of {snapshot.url}"
            )

        candidates, llm_calls, errors = await extract_generic(
            snapshot.content, context, self.llm_client, self.max_chunk_chars
        )
        outcome.candidates = candidates
        outcome.variant = ExtractorVariant.GENERIC
        outcome.extractor_name = f"llm:{self.llm_client.provider.value}"
        outcome.llm_calls = llm_calls
        outcome.errors = errors
        return outcome
