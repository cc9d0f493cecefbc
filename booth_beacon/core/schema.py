"""Pydantic v2 models for Booth Beacon ingestion.

These models define the entities that flow through a source run:
- Source, RawContentSnapshot (registry and cache entities)
- ExtractionCandidate, ValidatedRecord (transient run entities)
- CanonicalBooth (durable, deduplicated output)
- ExtractionPattern (learned per-source extraction rule)
- ProgressEvent (observable run output)
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from booth_beacon.core.enums import (
    ExtractorVariant,
    ProgressEventType,
    RunStage,
    SourceStatus,
    SourceType,
)


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


# ============================================================================
# Registry & Cache Entities
# ============================================================================


class Source(BaseModel):
    """
    A configured origin site or page set to crawl.

    Created from configuration, mutated after every run, never deleted
    automatically.
    """

    id: UUID = Field(default_factory=uuid4)
    name: str
    urls: list[str] = Field(default_factory=list)
    extractor_type: str = "generic"
    source_type: SourceType = SourceType.DIRECTORY
    enabled: bool = True
    priority: int = 50
    status: SourceStatus = SourceStatus.IDLE
    total_found: int = 0
    total_added: int = 0
    total_updated: int = 0
    consecutive_failures: int = 0
    last_error: str | None = None
    last_crawled_at: datetime | None = None
    last_success_at: datetime | None = None
    run_started_at: datetime | None = None
    custom_config: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()


class RawContentSnapshot(BaseModel):
    """
    Fetched page content keyed by URL and content hash.

    Snapshots are append-only: a new hash for a URL creates a new snapshot,
    only ``last_seen_at`` is ever touched on an existing one.
    """

    id: UUID = Field(default_factory=uuid4)
    source_id: UUID
    url: str
    content: str
    content_hash: str
    mime_type: str = "text/html"
    fetched_at: datetime = Field(default_factory=_utc_now)
    last_seen_at: datetime = Field(default_factory=_utc_now)

    # Set by the fetcher, not persisted
    from_cache: bool = False
    unchanged: bool = False


# ============================================================================
# Run Entities
# ============================================================================


class ExtractionCandidate(BaseModel):
    """A raw, unvalidated venue record produced by an extractor."""

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

    source_id: UUID | None = None
    source_name: str = ""
    source_url: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    extractor: ExtractorVariant = ExtractorVariant.GENERIC
    extractor_name: str = ""


class ValidatedRecord(ExtractionCandidate):
    """A candidate that passed validation, trimmed and keyed for matching."""

    sanitized: bool = True
    validation_errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    name_key: str = ""
    city_key: str = ""

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


# ============================================================================
# Durable Output
# ============================================================================


class CanonicalBooth(BaseModel):
    """
    Durable, deduplicated record for a real-world booth location.

    Uniqueness is logical: normalized name plus location proximity.
    """

    id: UUID = Field(default_factory=uuid4)
    name: str
    name_key: str
    address: str | None = None
    city: str | None = None
    city_key: str = ""
    region: str | None = None
    country: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    description: str | None = None
    website: str | None = None
    source_id: UUID | None = None
    source_trust: int = 0
    source_names: list[str] = Field(default_factory=list)
    source_urls: list[str] = Field(default_factory=list)
    last_extractor: ExtractorVariant | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class ExtractionPattern(BaseModel):
    """
    Learned, source-specific extraction rule.

    Replayed on later runs to avoid repeat LLM calls. Confidence is
    reinforced on matching re-learns and decayed on empty runs.
    """

    id: UUID = Field(default_factory=uuid4)
    source_id: UUID
    container_selector: str
    field_selectors: dict[str, str] = Field(default_factory=dict)
    signature: str
    confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    usable: bool = True
    active: bool = True
    success_count: int = 0
    failure_count: int = 0
    learned_at: datetime = Field(default_factory=_utc_now)
    validated_at: datetime | None = None


# ============================================================================
# Observability
# ============================================================================


class ProgressEvent(BaseModel):
    """One event in the stream a run emits to its caller."""

    type: ProgressEventType
    message: str
    stage: RunStage | None = None
    counts: dict[str, int] | None = None
    timestamp: datetime = Field(default_factory=_utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.type in (ProgressEventType.COMPLETE, ProgressEventType.ERROR)
