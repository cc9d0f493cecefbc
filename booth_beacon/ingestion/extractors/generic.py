"""
Generic (LLM) Extractor
=======================

Sends cleaned page content to an LLM and parses its JSON answer into
candidates. Long directory/operator pages are split on line boundaries
so each request stays under the configured size.

A malformed answer gets exactly one stricter re-ask. If that also
fails, the chunk contributes zero candidates and an error is recorded.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from bs4 import Comment
from pydantic import BaseModel, Field, ValidationError

from booth_beacon.core.enums import ExtractorVariant, SourceType
from booth_beacon.core.errors import ExtractionSchemaError
from booth_beacon.core.schema import ExtractionCandidate
from booth_beacon.ingestion.extractors.base import (
    ExtractionContext,
    make_candidate,
    parse_html,
)
from booth_beacon.services.ai.client import LLMClient
from booth_beacon.services.ai.prompts import (
    BOOTH_EXTRACTION_SCHEMA,
    SYSTEM_PROMPT,
    build_extraction_prompt,
    build_strict_reask_prompt,
)

logger = logging.getLogger(__name__)

GENERIC_CONFIDENCE = 0.6
DEFAULT_MAX_CHUNK_CHARS = 50_000

STRIP_TAGS = ("script", "style", "svg", "noscript", "template", "iframe")
KEEP_ATTRIBUTES = frozenset({"href", "itemprop", "datetime"})
CHUNKED_SOURCE_TYPES = frozenset({SourceType.DIRECTORY, SourceType.OPERATOR})


# ============================================================================
# Response schema
# ============================================================================


class ExtractedBooth(BaseModel):
    """One booth as returned by the model."""

    name: str
    address: str | None = None
    city: str | None = None
    region: str | None = None
    country: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    description: str | None = None
    website: str | None = None


class BoothExtractionResponse(BaseModel):
    """Top-level model answer."""

    booths: list[ExtractedBooth] = Field(default_factory=list)


# ============================================================================
# Content preparation
# ============================================================================


def clean_html(html: str) -> str:
    """
    Reduce HTML to what matters for extraction.

    Removes scripts, styles, inline SVG, comments and base64 images, and
    drops attributes other than links and microdata hints.
    """
    soup = parse_html(html)

    for tag in soup.find_all(list(STRIP_TAGS)):
        tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    for img in soup.find_all("img"):
        if str(img.get("src", "")).startswith("data:"):
            img.decompose()
    for tag in soup.find_all(True):
        tag.attrs = {k: v for k, v in tag.attrs.items() if k in KEEP_ATTRIBUTES}

    lines = (line.strip() for line in str(soup).splitlines())
    return "\n".join(line for line in lines if line)


def chunk_content(content: str, max_chars: int, source_type: SourceType) -> list[str]:
    """
    Split content into chunks of at most max_chars on line boundaries.

    Only directory and operator pages are split; other source types are
    sent whole. A single line longer than max_chars is hard-split.

    Args:
        content: Cleaned content
        max_chars: Maximum chunk size
        source_type: Kind of source the content came from

    Returns:
        Non-empty list of chunks (a single empty string for empty content)
    """
    if source_type not in CHUNKED_SOURCE_TYPES or len(content) <= max_chars:
        return [content]

    chunks: list[str] = []
    current: list[str] = []
    current_len = 0

    for line in content.split("\n"):
        while len(line) > max_chars:
            if current:
                chunks.append("\n".join(current))
                current, current_len = [], 0
            chunks.append(line[:max_chars])
            line = line[max_chars:]
        # +1 for the joining newline
        if current and current_len + len(line) + 1 > max_chars:
            chunks.append("\n".join(current))
            current, current_len = [], 0
        current.append(line)
        current_len += len(line) + 1

    if current:
        chunks.append("\n".join(current))
    return chunks


# ============================================================================
# Response parsing
# ============================================================================


def parse_llm_response(raw: str) -> list[ExtractedBooth]:
    """
    Parse and validate a model answer.

    Args:
        raw: Raw response text

    Returns:
        Booths in the answer

    Raises:
        ExtractionSchemaError: The answer is not JSON or does not match the schema
    """
    text = raw.strip()

    # Handle markdown code blocks
    if text.startswith("```"):
        lines = text.split("\n")
        if lines[-1].strip() == "```":
            lines = lines[1:-1]
        else:
            lines = lines[1:]
        text = "\n".join(lines).strip()

    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError as e:
        raise ExtractionSchemaError(f"Response is not valid JSON: {e}", raw_response=raw) from e

    try:
        response = BoothExtractionResponse.model_validate(data)
    except ValidationError as e:
        raise ExtractionSchemaError(
            f"Response does not match the booth schema: {e.error_count()} error(s)",
            raw_response=raw,
        ) from e

    return response.booths


# ============================================================================
# Extraction
# ============================================================================


async def _extract_chunk(
    chunk: str,
    context: ExtractionContext,
    llm_client: LLMClient,
    index: int,
    total: int,
) -> tuple[list[ExtractedBooth], int, str | None]:
    """Returns (booths, llm_calls, error)."""
    prompt = build_extraction_prompt(
        chunk,
        source_type=context.source_type.value,
        source_name=context.source.name,
        chunk_index=index,
        total_chunks=total,
    )
    raw = await llm_client.extract(prompt, BOOTH_EXTRACTION_SCHEMA, system=SYSTEM_PROMPT)
    try:
        return parse_llm_response(raw), 1, None
    except ExtractionSchemaError as first_error:
        logger.warning(
            f"Malformed LLM response for {context.url} chunk {index + 1}/{total}, "
            f"re-asking: {first_error}"
        )
        reask = build_strict_reask_prompt(
            chunk,
            error_message=str(first_error),
            schema=json.dumps(BOOTH_EXTRACTION_SCHEMA, indent=2),
        )

    raw = await llm_client.extract(reask, BOOTH_EXTRACTION_SCHEMA, system=SYSTEM_PROMPT)
    try:
        return parse_llm_response(raw), 2, None
    except ExtractionSchemaError as second_error:
        message = (
            f"{context.url} chunk {index + 1}/{total}: malformed response after re-ask "
            f"({second_error})"
        )
        logger.error(message)
        return [], 2, message


async def extract_generic(
    content: str,
    context: ExtractionContext,
    llm_client: LLMClient,
    max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS,
) -> tuple[list[ExtractionCandidate], int, list[str]]:
    """
    Extract candidates with the LLM.

    Args:
        content: Raw page HTML
        context: Extraction context
        llm_client: Configured LLM client
        max_chunk_chars: Maximum chunk size

    Returns:
        (candidates, number of LLM calls, per-chunk error messages)

    Raises:
        ExtractionUnavailableError: The provider could not be reached
    """
    cleaned = clean_html(content)
    if not cleaned:
        return [], 0, []

    chunks = chunk_content(cleaned, max_chunk_chars, context.source_type)
    if len(chunks) > 1:
        logger.info(f"Split {context.url} into {len(chunks)} chunks")

    candidates: list[ExtractionCandidate] = []
    llm_calls = 0
    errors: list[str] = []

    for index, chunk in enumerate(chunks):
        booths, calls, error = await _extract_chunk(chunk, context, llm_client, index, len(chunks))
        llm_calls += calls
        if error:
            errors.append(error)
        for booth in booths:
            candidates.append(
                make_candidate(
                    context,
                    ExtractorVariant.GENERIC,
                    f"llm:{llm_client.provider.value}",
                    confidence=GENERIC_CONFIDENCE,
                    **booth.model_dump(),
                )
            )

    return candidates, llm_calls, errors
