"""Tests for the source registry."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from booth_beacon.core.enums import SourceStatus
from booth_beacon.core.errors import SourceNotFoundError
from booth_beacon.db.models import SourceDB
from booth_beacon.ingestion.config import CrawlerConfig
from booth_beacon.ingestion.registry import RunStats, SourceRegistry


class TestLoadSource:
    """Tests for loading sources."""

    def test_by_name_and_id(self, session: Session, make_source) -> None:
        """Test lookup by name and by UUID."""
        source = make_source(name="photobooth.net")
        registry = SourceRegistry(session)

        assert registry.load_source("photobooth.net").id == source.id
        assert registry.load_source(source.id).name == "photobooth.net"
        assert registry.load_source(str(source.id)).name == "photobooth.net"

    def test_not_found(self, session: Session) -> None:
        """Test that a missing source raises SourceNotFoundError."""
        with pytest.raises(SourceNotFoundError):
            SourceRegistry(session).load_source("nope")


class TestRunLock:
    """Tests for the run claim."""

    def test_claim_once(self, session: Session, make_source) -> None:
        """Test that a second claim fails while the first is held."""
        source = make_source()
        registry = SourceRegistry(session)

        assert registry.try_begin_run(source.id) is True
        assert registry.try_begin_run(source.id) is False
        assert registry.load_source(source.id).status == SourceStatus.RUNNING

    def test_disabled_cannot_be_claimed(self, session: Session, make_source) -> None:
        """Test that disabled sources are never claimed."""
        source = make_source(enabled=False)
        assert SourceRegistry(session).try_begin_run(source.id) is False

    def test_stale_claim_reclaimed(self, session: Session, make_source) -> None:
        """Test that a claim older than the stale window can be taken over."""
        source = make_source()
        registry = SourceRegistry(session, stale_lock_minutes=30)
        assert registry.try_begin_run(source.id)

        session.execute(
            update(SourceDB)
            .where(SourceDB.id == str(source.id))
            .values(run_started_at=datetime.now(UTC) - timedelta(hours=2))
        )
        session.commit()

        assert registry.try_begin_run(source.id) is True

    def test_release(self, session: Session, make_source) -> None:
        """Test that releasing allows a new claim."""
        source = make_source()
        registry = SourceRegistry(session)
        registry.try_begin_run(source.id)
        registry.release_run(source.id, SourceStatus.FAILED, "boom")

        reloaded = registry.load_source(source.id)
        assert reloaded.status == SourceStatus.FAILED
        assert reloaded.run_started_at is None
        assert registry.try_begin_run(source.id) is True


class TestRecordRunResult:
    """Tests for recording run statistics."""

    def test_counters_accumulate(self, session: Session, make_source) -> None:
        """Test that counters add up across runs."""
        source = make_source()
        registry = SourceRegistry(session)

        registry.record_run_result(source.id, RunStats(found=3, added=2, updated=1))
        registry.record_run_result(source.id, RunStats(found=4, added=0, updated=4))

        reloaded = registry.load_source(source.id)
        assert reloaded.total_found == 7
        assert reloaded.total_added == 2
        assert reloaded.total_updated == 5
        assert reloaded.status == SourceStatus.SUCCESS
        assert reloaded.last_success_at is not None
        assert reloaded.last_crawled_at is not None

    def test_failures_counted_and_reset(self, session: Session, make_source) -> None:
        """Test consecutive failure tracking."""
        source = make_source()
        registry = SourceRegistry(session)

        registry.record_run_result(source.id, RunStats(status=SourceStatus.FAILED, error_message="x"))
        registry.record_run_result(source.id, RunStats(status=SourceStatus.FAILED, error_message="y"))
        failed = registry.load_source(source.id)
        assert failed.consecutive_failures == 2
        assert failed.last_error == "y"
        assert failed.last_success_at is None

        registry.record_run_result(source.id, RunStats(status=SourceStatus.PARTIAL))
        assert registry.load_source(source.id).consecutive_failures == 0

    def test_missing_source(self, session: Session) -> None:
        """Test that recording against a missing source raises."""
        with pytest.raises(SourceNotFoundError):
            SourceRegistry(session).record_run_result(
                "00000000-0000-0000-0000-000000000000", RunStats()
            )


class TestSyncAndToggle:
    """Tests for config sync and enable/disable."""

    def test_sync_preserves_counters(self, session: Session) -> None:
        """Test that re-syncing updates config but keeps run counters."""
        config = CrawlerConfig.from_dict(
            {"sources": [{"name": "a", "url": "https://a.example", "priority": 10}]}
        )
        registry = SourceRegistry(session)
        (created,) = registry.sync_from_config(config)
        registry.record_run_result(created.id, RunStats(found=5, added=5))

        config.sources["a"].priority = 80
        (synced,) = registry.sync_from_config(config)

        assert synced.id == created.id
        assert synced.priority == 80
        assert synced.total_found == 5

    def test_set_enabled(self, session: Session, make_source) -> None:
        """Test disabling and re-enabling a source."""
        make_source(name="toggle")
        registry = SourceRegistry(session)

        assert registry.set_enabled("toggle", False).enabled is False
        assert registry.set_enabled("toggle", True).enabled is True

    def test_list_sources(self, session: Session, make_source) -> None:
        """Test listing with and without disabled sources."""
        make_source(name="on", priority=10)
        make_source(name="off", enabled=False)
        make_source(name="top", priority=90)
        registry = SourceRegistry(session)

        assert [s.name for s in registry.list_sources(enabled_only=True)] == ["top", "on"]
        assert len(registry.list_sources()) == 3
