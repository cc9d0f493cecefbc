"""
Source Registry Module
======================

Reads sources and writes run statistics against the ``sources`` table.
Storage failures surface as ``RegistryError``; a missing source surfaces
as ``SourceNotFoundError`` so callers can retry only the former.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booth_beacon.core.enums import SourceStatus
from booth_beacon.core.errors import RegistryError, SourceNotFoundError
from booth_beacon.core.schema import Source
from booth_beacon.db.repositories import SourceRepository
from booth_beacon.ingestion.config import CrawlerConfig

logger = logging.getLogger(__name__)


@dataclass
class RunStats:
    """Statistics written back to a source after a run."""

    found: int = 0
    added: int = 0
    updated: int = 0
    status: SourceStatus = SourceStatus.SUCCESS
    error_message: str | None = None


def _parse_uuid(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(value)
    except ValueError:
        return None


class SourceRegistry:
    """
    Registry accessor for crawl sources.

    Every write commits immediately so run status is durable even if the
    surrounding run later fails.
    """

    def __init__(self, session: Session, stale_lock_minutes: float = 30.0) -> None:
        self.session = session
        self.stale_lock_minutes = stale_lock_minutes
        self._repo = SourceRepository(session)

    def load_source(self, source_ref: UUID | str) -> Source:
        """
        Load a source by id or by name.

        Args:
            source_ref: Source UUID or unique name

        Returns:
            The Source

        Raises:
            SourceNotFoundError: No source matches.
            RegistryError: The registry could not be read.
        """
        source_id = _parse_uuid(source_ref)
        try:
            if source_id is not None:
                source = self._repo.get_by_id(source_id)
            else:
                source = self._repo.get_by_name(str(source_ref))
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RegistryError(f"Failed to load source '{source_ref}': {e}") from e

        if source is None:
            raise SourceNotFoundError(str(source_ref))
        return source

    def try_begin_run(self, source_id: UUID | str) -> bool:
        """
        Atomically mark a source as running.

        Returns:
            True if the claim succeeded, False if another run holds it or
            the source is disabled.
        """
        stale_before = datetime.now(UTC) - timedelta(minutes=self.stale_lock_minutes)
        try:
            claimed = self._repo.try_begin_run(source_id, stale_before)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RegistryError(f"Failed to claim source {source_id}: {e}") from e

        if claimed:
            logger.debug(f"Claimed source {source_id} for a run")
        return claimed

    def record_run_result(self, source_id: UUID | str, stats: RunStats) -> None:
        """
        Atomically add run counters, set status and release the run claim.

        Raises:
            SourceNotFoundError: The source row no longer exists.
            RegistryError: The write failed.
        """
        try:
            found = self._repo.record_run_result(
                source_id,
                found=stats.found,
                added=stats.added,
                updated=stats.updated,
                status=stats.status,
                error_message=stats.error_message,
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RegistryError(f"Failed to record run result for {source_id}: {e}") from e

        if not found:
            raise SourceNotFoundError(str(source_id))

        logger.info(
            f"Recorded run for source {source_id}: status={stats.status.value}, "
            f"found={stats.found}, added={stats.added}, updated={stats.updated}"
        )

    def release_run(
        self,
        source_id: UUID | str,
        status: SourceStatus,
        error_message: str | None = None,
    ) -> None:
        """Release a run claim without touching counters."""
        self.record_run_result(
            source_id, RunStats(status=status, error_message=error_message)
        )

    def list_sources(self, enabled_only: bool = False) -> list[Source]:
        """List registered sources."""
        try:
            if enabled_only:
                return self._repo.list_enabled()
            return self._repo.list_all()
        except SQLAlchemyError as e:
            raise RegistryError(f"Failed to list sources: {e}") from e

    def set_enabled(self, source_ref: UUID | str, enabled: bool) -> Source:
        """
        Enable or disable a source.

        Raises:
            SourceNotFoundError: No source matches.
        """
        source = self.load_source(source_ref)
        try:
            self._repo.set_enabled(source.id, enabled)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RegistryError(f"Failed to update source '{source_ref}': {e}") from e
        return self.load_source(source.id)

    def sync_from_config(self, config: CrawlerConfig) -> list[Source]:
        """
        Create or update registry rows for every configured source.

        Run counters and status are preserved on existing rows.

        Returns:
            The synced sources
        """
        synced: list[Source] = []
        try:
            for source_config in config.list_sources():
                desired = source_config.to_source()
                existing = self._repo.get_by_name(desired.name)
                if existing is None:
                    synced.append(self._repo.create(desired))
                    logger.info(f"Registered source '{desired.name}'")
                else:
                    desired.id = existing.id
                    synced.append(self._repo.update_config(desired))
                    logger.debug(f"Updated source '{desired.name}'")
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RegistryError(f"Failed to sync sources: {e}") from e
        return synced
