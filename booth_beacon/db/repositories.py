"""Repository classes for Booth Beacon database operations."""

import json
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from booth_beacon.core.enums import ExtractorVariant, SourceStatus, SourceType
from booth_beacon.core.schema import (
    CanonicalBooth,
    ExtractionPattern,
    RawContentSnapshot,
    Source,
)
from booth_beacon.db.models import BoothDB, ExtractionPatternDB, SnapshotDB, SourceDB


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ============================================================================
# Source Registry
# ============================================================================


class SourceRepository:
    """Repository for Source CRUD operations and run bookkeeping."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, source: Source) -> Source:
        """Create a new source."""
        db_item = SourceDB(
            id=str(source.id),
            name=source.name,
            urls_json=json.dumps(source.urls),
            extractor_type=source.extractor_type,
            source_type=source.source_type.value,
            enabled=source.enabled,
            priority=source.priority,
            status=source.status.value,
            custom_config_json=json.dumps(source.custom_config),
            created_at=source.created_at,
            updated_at=source.updated_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, source_id: UUID | str) -> Source | None:
        """Get a source by ID."""
        stmt = select(SourceDB).where(SourceDB.id == str(source_id))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def get_by_name(self, name: str) -> Source | None:
        """Get a source by its unique name."""
        stmt = select(SourceDB).where(SourceDB.name == name.strip())
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def list_all(self) -> list[Source]:
        """List all sources, highest priority first."""
        stmt = select(SourceDB).order_by(SourceDB.priority.desc(), SourceDB.name)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(s) for s in result]

    def list_enabled(self) -> list[Source]:
        """List all enabled sources, highest priority first."""
        stmt = (
            select(SourceDB)
            .where(SourceDB.enabled == True)  # noqa: E712
            .order_by(SourceDB.priority.desc(), SourceDB.name)
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(s) for s in result]

    def count(self) -> int:
        """Get total count of sources."""
        stmt = select(func.count()).select_from(SourceDB)
        return self.session.execute(stmt).scalar() or 0

    def update_config(self, source: Source) -> Source:
        """Update configuration columns, leaving run counters untouched."""
        stmt = select(SourceDB).where(SourceDB.id == str(source.id))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is None:
            raise ValueError(f"Source {source.id} not found")

        db_item.name = source.name
        db_item.urls_json = json.dumps(source.urls)
        db_item.extractor_type = source.extractor_type
        db_item.source_type = source.source_type.value
        db_item.enabled = source.enabled
        db_item.priority = source.priority
        db_item.custom_config_json = json.dumps(source.custom_config)
        db_item.updated_at = _utc_now()

        self.session.flush()
        return self._to_domain(db_item)

    def set_enabled(self, source_id: UUID | str, enabled: bool) -> bool:
        """Enable or disable a source. Returns False if it does not exist."""
        stmt = (
            update(SourceDB)
            .where(SourceDB.id == str(source_id))
            .values(enabled=enabled, updated_at=_utc_now())
        )
        return self.session.execute(stmt).rowcount == 1

    def try_begin_run(self, source_id: UUID | str, stale_before: datetime) -> bool:
        """
        Atomically claim a source for a run.

        The claim succeeds only for an enabled source that is not already
        running, or whose running claim started before ``stale_before``.

        Returns:
            True if this caller now holds the source.
        """
        now = _utc_now()
        stmt = (
            update(SourceDB)
            .where(
                SourceDB.id == str(source_id),
                SourceDB.enabled == True,  # noqa: E712
                or_(
                    SourceDB.status != SourceStatus.RUNNING.value,
                    SourceDB.run_started_at.is_(None),
                    SourceDB.run_started_at < stale_before,
                ),
            )
            .values(status=SourceStatus.RUNNING.value, run_started_at=now, updated_at=now)
        )
        return self.session.execute(stmt).rowcount == 1

    def record_run_result(
        self,
        source_id: UUID | str,
        found: int,
        added: int,
        updated: int,
        status: SourceStatus,
        error_message: str | None = None,
    ) -> bool:
        """
        Apply a run's statistics in a single UPDATE statement.

        Counters are incremented in SQL so concurrent writers never lose
        an update. Also releases the run claim.

        Returns:
            True if the source row exists.
        """
        now = _utc_now()
        values: dict = {
            "total_found": SourceDB.total_found + found,
            "total_added": SourceDB.total_added + added,
            "total_updated": SourceDB.total_updated + updated,
            "status": status.value,
            "last_error": error_message,
            "last_crawled_at": now,
            "run_started_at": None,
            "updated_at": now,
        }
        if status == SourceStatus.FAILED:
            values["consecutive_failures"] = SourceDB.consecutive_failures + 1
        else:
            values["consecutive_failures"] = 0
        if status == SourceStatus.SUCCESS:
            values["last_success_at"] = now

        stmt = update(SourceDB).where(SourceDB.id == str(source_id)).values(**values)
        return self.session.execute(stmt).rowcount == 1

    def _to_domain(self, db_item: SourceDB) -> Source:
        """Convert DB model to domain model."""
        return Source(
            id=UUID(db_item.id),
            name=db_item.name,
            urls=json.loads(db_item.urls_json),
            extractor_type=db_item.extractor_type,
            source_type=SourceType(db_item.source_type),
            enabled=db_item.enabled,
            priority=db_item.priority,
            status=SourceStatus(db_item.status),
            total_found=db_item.total_found,
            total_added=db_item.total_added,
            total_updated=db_item.total_updated,
            consecutive_failures=db_item.consecutive_failures,
            last_error=db_item.last_error,
            last_crawled_at=_as_utc(db_item.last_crawled_at),
            last_success_at=_as_utc(db_item.last_success_at),
            run_started_at=_as_utc(db_item.run_started_at),
            custom_config=json.loads(db_item.custom_config_json),
            created_at=_as_utc(db_item.created_at),
            updated_at=_as_utc(db_item.updated_at),
        )


# ============================================================================
# Raw Content Cache
# ============================================================================


class SnapshotRepository:
    """Repository for append-only content snapshots."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, snapshot: RawContentSnapshot) -> RawContentSnapshot:
        """Append a new snapshot."""
        db_item = SnapshotDB(
            id=str(snapshot.id),
            source_id=str(snapshot.source_id),
            url=snapshot.url,
            content=snapshot.content,
            content_hash=snapshot.content_hash,
            mime_type=snapshot.mime_type,
            fetched_at=snapshot.fetched_at,
            last_seen_at=snapshot.last_seen_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_latest(self, url: str) -> RawContentSnapshot | None:
        """Get the most recently stored snapshot for a URL."""
        stmt = (
            select(SnapshotDB)
            .where(SnapshotDB.url == url)
            .order_by(SnapshotDB.fetched_at.desc())
            .limit(1)
        )
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def list_for_url(self, url: str) -> list[RawContentSnapshot]:
        """List all snapshots for a URL, newest first."""
        stmt = (
            select(SnapshotDB)
            .where(SnapshotDB.url == url)
            .order_by(SnapshotDB.fetched_at.desc())
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(s) for s in result]

    def touch(self, snapshot_id: UUID | str, seen_at: datetime) -> None:
        """Record that a scrape confirmed a snapshot's content."""
        stmt = (
            update(SnapshotDB)
            .where(SnapshotDB.id == str(snapshot_id))
            .values(last_seen_at=seen_at)
        )
        self.session.execute(stmt)

    def count(self) -> int:
        """Get total count of snapshots."""
        stmt = select(func.count()).select_from(SnapshotDB)
        return self.session.execute(stmt).scalar() or 0

    def _to_domain(self, db_item: SnapshotDB) -> RawContentSnapshot:
        """Convert DB model to domain model."""
        return RawContentSnapshot(
            id=UUID(db_item.id),
            source_id=UUID(db_item.source_id),
            url=db_item.url,
            content=db_item.content,
            content_hash=db_item.content_hash,
            mime_type=db_item.mime_type,
            fetched_at=_as_utc(db_item.fetched_at),
            last_seen_at=_as_utc(db_item.last_seen_at),
        )


# ============================================================================
# Canonical Booths
# ============================================================================


class BoothRepository:
    """Repository for canonical booth records."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, booth: CanonicalBooth) -> CanonicalBooth:
        """Create a new canonical booth."""
        db_item = BoothDB(id=str(booth.id), created_at=booth.created_at)
        self._apply(db_item, booth)
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def update(self, booth: CanonicalBooth) -> CanonicalBooth:
        """Update an existing canonical booth."""
        stmt = select(BoothDB).where(BoothDB.id == str(booth.id))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is None:
            raise ValueError(f"Booth {booth.id} not found")

        self._apply(db_item, booth)
        db_item.updated_at = _utc_now()
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, booth_id: UUID | str) -> CanonicalBooth | None:
        """Get a booth by ID."""
        stmt = select(BoothDB).where(BoothDB.id == str(booth_id))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def find_by_name_key(self, name_key: str) -> list[CanonicalBooth]:
        """Get every booth sharing a normalized name."""
        stmt = select(BoothDB).where(BoothDB.name_key == name_key).order_by(BoothDB.created_at)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(b) for b in result]

    def list_all(self, limit: int | None = None) -> list[CanonicalBooth]:
        """List booths ordered by name."""
        stmt = select(BoothDB).order_by(BoothDB.name_key)
        if limit:
            stmt = stmt.limit(limit)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(b) for b in result]

    def count(self) -> int:
        """Get total count of booths."""
        stmt = select(func.count()).select_from(BoothDB)
        return self.session.execute(stmt).scalar() or 0

    @staticmethod
    def _apply(db_item: BoothDB, booth: CanonicalBooth) -> None:
        db_item.name = booth.name
        db_item.name_key = booth.name_key
        db_item.address = booth.address
        db_item.city = booth.city
        db_item.city_key = booth.city_key
        db_item.region = booth.region
        db_item.country = booth.country
        db_item.postal_code = booth.postal_code
        db_item.latitude = booth.latitude
        db_item.longitude = booth.longitude
        db_item.description = booth.description
        db_item.website = booth.website
        db_item.source_id = str(booth.source_id) if booth.source_id else None
        db_item.source_trust = booth.source_trust
        db_item.source_names_json = json.dumps(booth.source_names)
        db_item.source_urls_json = json.dumps(booth.source_urls)
        db_item.last_extractor = booth.last_extractor.value if booth.last_extractor else None

    def _to_domain(self, db_item: BoothDB) -> CanonicalBooth:
        """Convert DB model to domain model."""
        return CanonicalBooth(
            id=UUID(db_item.id),
            name=db_item.name,
            name_key=db_item.name_key,
            address=db_item.address,
            city=db_item.city,
            city_key=db_item.city_key,
            region=db_item.region,
            country=db_item.country,
            postal_code=db_item.postal_code,
            latitude=db_item.latitude,
            longitude=db_item.longitude,
            description=db_item.description,
            website=db_item.website,
            source_id=UUID(db_item.source_id) if db_item.source_id else None,
            source_trust=db_item.source_trust,
            source_names=json.loads(db_item.source_names_json),
            source_urls=json.loads(db_item.source_urls_json),
            last_extractor=ExtractorVariant(db_item.last_extractor) if db_item.last_extractor else None,
            created_at=_as_utc(db_item.created_at),
            updated_at=_as_utc(db_item.updated_at),
        )


# ============================================================================
# Extraction Patterns
# ============================================================================


class PatternRepository:
    """Repository for learned extraction patterns."""

    def __init__(self, session: Session):
        self.session = session

    def get_active(self, source_id: UUID | str) -> ExtractionPattern | None:
        """Get the active pattern for a source, if any."""
        stmt = (
            select(ExtractionPatternDB)
            .where(
                ExtractionPatternDB.source_id == str(source_id),
                ExtractionPatternDB.active == True,  # noqa: E712
            )
            .order_by(ExtractionPatternDB.learned_at.desc())
            .limit(1)
        )
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def list_for_source(self, source_id: UUID | str) -> list[ExtractionPattern]:
        """List all patterns ever learned for a source, newest first."""
        stmt = (
            select(ExtractionPatternDB)
            .where(ExtractionPatternDB.source_id == str(source_id))
            .order_by(ExtractionPatternDB.learned_at.desc())
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(p) for p in result]

    def create(self, pattern: ExtractionPattern) -> ExtractionPattern:
        """Store a new active pattern, deactivating earlier ones for the source."""
        self.deactivate_all(pattern.source_id)
        db_item = ExtractionPatternDB(
            id=str(pattern.id),
            source_id=str(pattern.source_id),
            container_selector=pattern.container_selector,
            field_selectors_json=json.dumps(pattern.field_selectors),
            signature=pattern.signature,
            confidence=pattern.confidence,
            usable=pattern.usable,
            active=True,
            success_count=pattern.success_count,
            failure_count=pattern.failure_count,
            learned_at=pattern.learned_at,
            validated_at=pattern.validated_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def update(self, pattern: ExtractionPattern) -> ExtractionPattern:
        """Persist confidence and bookkeeping changes."""
        stmt = select(ExtractionPatternDB).where(ExtractionPatternDB.id == str(pattern.id))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is None:
            raise ValueError(f"Pattern {pattern.id} not found")

        db_item.confidence = pattern.confidence
        db_item.usable = pattern.usable
        db_item.active = pattern.active
        db_item.success_count = pattern.success_count
        db_item.failure_count = pattern.failure_count
        db_item.validated_at = pattern.validated_at

        self.session.flush()
        return self._to_domain(db_item)

    def deactivate_all(self, source_id: UUID | str) -> int:
        """Deactivate every pattern for a source. Returns rows changed."""
        stmt = (
            update(ExtractionPatternDB)
            .where(
                ExtractionPatternDB.source_id == str(source_id),
                ExtractionPatternDB.active == True,  # noqa: E712
            )
            .values(active=False)
        )
        return self.session.execute(stmt).rowcount

    def _to_domain(self, db_item: ExtractionPatternDB) -> ExtractionPattern:
        """Convert DB model to domain model."""
        return ExtractionPattern(
            id=UUID(db_item.id),
            source_id=UUID(db_item.source_id),
            container_selector=db_item.container_selector,
            field_selectors=json.loads(db_item.field_selectors_json),
            signature=db_item.signature,
            confidence=db_item.confidence,
            usable=db_item.usable,
            active=db_item.active,
            success_count=db_item.success_count,
            failure_count=db_item.failure_count,
            learned_at=_as_utc(db_item.learned_at),
            validated_at=_as_utc(db_item.validated_at),
        )
