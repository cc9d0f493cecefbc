"""SQLAlchemy ORM models for Booth Beacon.

These models define the database tables used by the ingestion pipeline:
- SourceDB (source registry with run statistics)
- SnapshotDB (append-only raw content cache)
- BoothDB (canonical, deduplicated booth locations)
- ExtractionPatternDB (learned per-source extraction rules)
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ============================================================================
# Registry
# ============================================================================


class SourceDB(Base):
    """
    Database model for crawl sources.

    Holds the source configuration plus cumulative run counters. The
    ``status`` column doubles as the per-source run lock.
    """

    __tablename__ = "sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    urls_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    extractor_type: Mapped[str] = mapped_column(String(50), default="generic")
    source_type: Mapped[str] = mapped_column(String(30), default="directory")
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    priority: Mapped[int] = mapped_column(Integer, default=50)
    status: Mapped[str] = mapped_column(String(20), default="idle", index=True)
    total_found: Mapped[int] = mapped_column(Integer, default=0)
    total_added: Mapped[int] = mapped_column(Integer, default=0)
    total_updated: Mapped[int] = mapped_column(Integer, default=0)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_crawled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    run_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    custom_config_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    # Relationships
    snapshots: Mapped[list["SnapshotDB"]] = relationship("SnapshotDB", back_populates="source")
    patterns: Mapped[list["ExtractionPatternDB"]] = relationship(
        "ExtractionPatternDB", back_populates="source"
    )

    def __repr__(self) -> str:
        return f"<SourceDB(id={self.id}, name='{self.name}', status='{self.status}')>"


# ============================================================================
# Raw Content Cache
# ============================================================================


class SnapshotDB(Base):
    """
    Database model for raw content snapshots.

    Append-only: rows are never rewritten except for ``last_seen_at``.
    """

    __tablename__ = "snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sources.id"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(String(2000), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    mime_type: Mapped[str] = mapped_column(String(100), default="text/html")
    fetched_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, index=True)

    # Relationships
    source: Mapped["SourceDB"] = relationship("SourceDB", back_populates="snapshots")

    def __repr__(self) -> str:
        return f"<SnapshotDB(id={self.id}, url='{self.url}', hash='{self.content_hash[:12]}')>"


# ============================================================================
# Canonical Output
# ============================================================================


class BoothDB(Base):
    """
    Database model for canonical booth locations.

    Matching is logical (name_key plus location), not by primary key.
    """

    __tablename__ = "booths"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    name_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    city: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city_key: Mapped[str] = mapped_column(String(255), default="", index=True)
    region: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    source_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("sources.id"), nullable=True, index=True
    )
    source_trust: Mapped[int] = mapped_column(Integer, default=0)
    source_names_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    source_urls_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    last_extractor: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return f"<BoothDB(id={self.id}, name='{self.name}', city='{self.city}')>"


# ============================================================================
# Learned Patterns
# ============================================================================


class ExtractionPatternDB(Base):
    """Database model for learned per-source extraction patterns."""

    __tablename__ = "extraction_patterns"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sources.id"), nullable=False, index=True
    )
    container_selector: Mapped[str] = mapped_column(String(500), nullable=False)
    field_selectors_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    signature: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    confidence: Mapped[float] = mapped_column(Float, default=0.6)
    usable: Mapped[bool] = mapped_column(Boolean, default=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, default=0)
    learned_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Relationships
    source: Mapped["SourceDB"] = relationship("SourceDB", back_populates="patterns")

    def __repr__(self) -> str:
        return (
            f"<ExtractionPatternDB(id={self.id}, source_id={self.source_id}, "
            f"confidence={self.confidence:.2f}, usable={self.usable})>"
        )
