"""Shared fixtures and fakes for the Booth Beacon test suite."""

from __future__ import annotations

import asyncio
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from booth_beacon.core.enums import SourceType
from booth_beacon.core.errors import ExtractionUnavailableError
from booth_beacon.core.schema import Source
from booth_beacon.db.models import Base
from booth_beacon.db.repositories import SourceRepository
from booth_beacon.ingestion.scraper import ScrapeClient, ScrapeResult
from booth_beacon.services.ai.client import LLMClient, LLMProvider


class FakeScraper(ScrapeClient):
    """
    Scraper returning canned results.

    ``pages`` maps a URL to HTML, a ScrapeResult, or a list of either
    (consumed one per call, the last one repeating).
    """

    def __init__(self, pages: dict[str, Any] | None = None, delay: float = 0.0) -> None:
        self.pages = pages or {}
        self.delay = delay
        self.calls: list[str] = []

    async def scrape(self, url: str) -> ScrapeResult:
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)

        entry = self.pages.get(url)
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if entry is None:
            return ScrapeResult(url=url, status_code=404, error="HTTP 404")
        if isinstance(entry, ScrapeResult):
            return entry
        return ScrapeResult(url=url, content=entry, success=True, status_code=200)


class FakeLLM(LLMClient):
    """LLM returning queued responses, or the output of a responder callable."""

    provider = LLMProvider.ANTHROPIC
    model = "fake-model"

    def __init__(
        self,
        responses: list[str] | None = None,
        responder: Callable[[str], str] | None = None,
        unavailable: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.responses = list(responses or [])
        self.responder = responder
        self.unavailable = unavailable
        self.delay = delay
        self.prompts: list[str] = []

    async def extract(
        self,
        prompt: str,
        schema: dict[str, Any],
        system: str | None = None,
    ) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.unavailable:
            raise ExtractionUnavailableError("provider unreachable")
        if self.responder is not None:
            return self.responder(prompt)
        if self.responses:
            return self.responses.pop(0)
        return '{"booths": []}'


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test_booth_beacon.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine."""
    engine = create_engine(f"sqlite:///{temp_db_path}", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create a database session for testing."""
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_source(session: Session):
    """Factory that stores a source and returns it."""

    def _make(
        name: str = "test-source",
        urls: list[str] | None = None,
        extractor_type: str = "generic",
        source_type: SourceType = SourceType.DIRECTORY,
        priority: int = 50,
        enabled: bool = True,
        custom_config: dict[str, Any] | None = None,
    ) -> Source:
        source = SourceRepository(session).create(
            Source(
                name=name,
                urls=urls if urls is not None else ["https://example.com/booths"],
                extractor_type=extractor_type,
                source_type=source_type,
                priority=priority,
                enabled=enabled,
                custom_config=custom_config or {},
            )
        )
        session.commit()
        return source

    return _make
