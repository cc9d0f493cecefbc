"""Tests for the run controller."""

import asyncio
import json

import pytest
from sqlalchemy.orm import Session

from booth_beacon.core.enums import ProgressEventType, RunStage, SourceStatus
from booth_beacon.core.errors import PermanentFetchError, TransientFetchError
from booth_beacon.core.schema import ProgressEvent, Source
from booth_beacon.db.repositories import BoothRepository, PatternRepository, SourceRepository
from booth_beacon.ingestion.config import CrawlerConfig, GlobalConfig
from booth_beacon.ingestion.runner import RunController, RunResult, retry_async
from booth_beacon.ingestion.scraper import ScrapeResult

from conftest import FakeLLM, FakeScraper

PAGE_URL = "https://op.example/locations"
SECOND_URL = "https://op.example/more"


def json_ld_page(*venues: dict) -> str:
    blocks = "".join(
        f'<script type="application/ld+json">{json.dumps({"@type": "LocalBusiness", **v})}</script>'
        for v in venues
    )
    return f"<html><body>{blocks}</body></html>"


ALPHA = {
    "name": "Alpha Bar",
    "address": {"streetAddress": "12 Oak Street", "addressLocality": "Springfield"},
}

LISTING_HTML = """
<ul>
  <li class="venue"><h3 class="name">Alpha Bar</h3><span class="city">Springfield</span></li>
  <li class="venue"><h3 class="name">Beta Lounge</h3><span class="city">Shelbyville</span></li>
  <li class="venue"><h3 class="name">Gamma Club</h3><span class="city">Ogdenville</span></li>
</ul>
"""
LISTING_ANSWER = json.dumps(
    {
        "booths": [
            {"name": "Alpha Bar", "city": "Springfield"},
            {"name": "Beta Lounge", "city": "Shelbyville"},
            {"name": "Gamma Club", "city": "Ogdenville"},
        ]
    }
)


@pytest.fixture
def config() -> CrawlerConfig:
    return CrawlerConfig(
        global_config=GlobalConfig(
            max_retries=3,
            backoff_base_seconds=0.01,
            backoff_max_seconds=0.05,
            run_deadline_seconds=10.0,
        )
    )


@pytest.fixture
def operator(make_source) -> Source:
    return make_source(name="operator", urls=[PAGE_URL], extractor_type="json_ld", priority=90)


async def collect(controller: RunController, source_ref, **kwargs) -> list[ProgressEvent]:
    return [event async for event in controller.run(source_ref, **kwargs)]


def assert_single_terminal(events: list[ProgressEvent]) -> ProgressEvent:
    terminal = [e for e in events if e.is_terminal]
    assert len(terminal) == 1
    assert events[-1] is terminal[0]
    return terminal[0]


def reload(session: Session, source: Source) -> Source:
    session.expire_all()
    return SourceRepository(session).get_by_id(source.id)


class TestRunScenarios:
    """End-to-end runs against fake clients."""

    @pytest.mark.asyncio
    async def test_first_run_adds(
        self, session: Session, config: CrawlerConfig, operator: Source
    ) -> None:
        """Test that a first run adds a booth and marks the source successful."""
        scraper = FakeScraper({PAGE_URL: json_ld_page(ALPHA)})
        controller = RunController(session, scraper, config=config)

        events = await collect(controller, "operator")

        terminal = assert_single_terminal(events)
        assert terminal.type == ProgressEventType.COMPLETE
        assert terminal.stage == RunStage.SUCCEEDED
        assert terminal.counts["added"] == 1

        stages = [e.stage for e in events if e.type == ProgressEventType.STAGE]
        assert stages == [
            RunStage.PENDING,
            RunStage.FETCHING,
            RunStage.EXTRACTING,
            RunStage.VALIDATING,
            RunStage.RECONCILING,
        ]

        stored = reload(session, operator)
        assert stored.status == SourceStatus.SUCCESS
        assert (stored.total_found, stored.total_added, stored.total_updated) == (1, 1, 0)
        assert stored.run_started_at is None
        assert stored.last_success_at is not None
        assert controller.last_result.variants == {"specialized": 1}

    @pytest.mark.asyncio
    async def test_rerun_updates(
        self, session: Session, config: CrawlerConfig, operator: Source
    ) -> None:
        """Test that a re-run with new data updates instead of inserting."""
        updated_alpha = {**ALPHA, "telephone": "555", "description": "Four-strip booth"}
        scraper = FakeScraper({PAGE_URL: [json_ld_page(ALPHA), json_ld_page(updated_alpha)]})
        controller = RunController(session, scraper, config=config)

        await collect(controller, "operator")
        events = await collect(controller, operator.id, force_refresh=True)

        terminal = assert_single_terminal(events)
        assert terminal.counts["added"] == 0
        assert terminal.counts["updated"] == 1
        booths = BoothRepository(session).list_all()
        assert len(booths) == 1
        assert booths[0].description == "Four-strip booth"

        stored = reload(session, operator)
        assert (stored.total_found, stored.total_added, stored.total_updated) == (2, 1, 1)

    @pytest.mark.asyncio
    async def test_cached_page_still_extracted(
        self, session: Session, config: CrawlerConfig, operator: Source
    ) -> None:
        """Test that a fresh cached page is not re-scraped but still extracted."""
        scraper = FakeScraper({PAGE_URL: json_ld_page(ALPHA)})
        controller = RunController(session, scraper, config=config)

        await collect(controller, "operator")
        await collect(controller, "operator")

        assert scraper.calls == [PAGE_URL]
        result = controller.last_result
        assert result.cache_hits == 1
        assert result.updated == 1

    @pytest.mark.asyncio
    async def test_zero_booths_succeeds(
        self, session: Session, config: CrawlerConfig, operator: Source
    ) -> None:
        """Test that a page with nothing on it is still a successful run."""
        scraper = FakeScraper({PAGE_URL: "<html><body><p>Coming soon</p></body></html>"})
        controller = RunController(session, scraper, config=config)

        events = await collect(controller, "operator")

        assert assert_single_terminal(events).stage == RunStage.SUCCEEDED
        stored = reload(session, operator)
        assert stored.status == SourceStatus.SUCCESS
        assert stored.total_found == 0
        assert BoothRepository(session).count() == 0

    @pytest.mark.asyncio
    async def test_generic_single_venue(
        self, session: Session, config: CrawlerConfig, make_source
    ) -> None:
        """Test a first LLM-extracted run that finds one venue."""
        source = make_source(name="guide", urls=[PAGE_URL])
        answer = json.dumps({"booths": [{"name": "Elm Bar", "address": "123 Elm St, Springfield"}]})
        html = "<html><body><h1>Elm Bar</h1><p>123 Elm St, Springfield</p></body></html>"
        controller = RunController(session, FakeScraper({PAGE_URL: html}), FakeLLM([answer]), config)

        terminal = assert_single_terminal(await collect(controller, "guide"))

        assert terminal.stage == RunStage.SUCCEEDED
        stored = reload(session, source)
        assert (stored.total_found, stored.total_added) == (1, 1)
        booth = BoothRepository(session).list_all()[0]
        assert booth.address == "123 Elm St, Springfield"
        assert booth.last_extractor.value == "generic"

    @pytest.mark.asyncio
    async def test_address_echoing_name(
        self, session: Session, config: CrawlerConfig, make_source
    ) -> None:
        """Test that a sole candidate whose address repeats its name yields found=0."""
        source = make_source(name="guide", urls=[PAGE_URL])
        answer = json.dumps({"booths": [{"name": "Elm Bar Lounge", "address": "Elm Bar Lounge"}]})
        controller = RunController(
            session, FakeScraper({PAGE_URL: "<p>Elm Bar Lounge</p>"}), FakeLLM([answer]), config
        )

        terminal = assert_single_terminal(await collect(controller, "guide"))

        assert terminal.type == ProgressEventType.COMPLETE
        assert terminal.stage == RunStage.SUCCEEDED
        assert controller.last_result.rejected == 1
        stored = reload(session, source)
        assert stored.status == SourceStatus.SUCCESS
        assert stored.total_found == 0

    @pytest.mark.asyncio
    async def test_rejected_candidates_counted(
        self, session: Session, config: CrawlerConfig, operator: Source
    ) -> None:
        """Test that invalid candidates are rejected, not written."""
        bad = {"name": "Beta Lounge", "address": "Beta Lounge"}
        scraper = FakeScraper({PAGE_URL: json_ld_page(ALPHA, bad)})
        controller = RunController(session, scraper, config=config)

        await collect(controller, "operator")

        result = controller.last_result
        assert (result.candidates, result.valid, result.rejected) == (2, 1, 1)
        assert BoothRepository(session).count() == 1


class TestRunFailures:
    """Tests for failed, partial and refused runs."""

    @pytest.mark.asyncio
    async def test_unknown_source(self, session: Session, config: CrawlerConfig) -> None:
        """Test that an unknown source yields one error event."""
        controller = RunController(session, FakeScraper(), config=config)
        events = await collect(controller, "nowhere")

        terminal = assert_single_terminal(events)
        assert terminal.type == ProgressEventType.ERROR
        assert "nowhere" in terminal.message

    @pytest.mark.asyncio
    async def test_disabled_source(self, session: Session, config: CrawlerConfig, make_source) -> None:
        """Test that a disabled source is refused."""
        source = make_source(name="off", enabled=False)
        scraper = FakeScraper()
        controller = RunController(session, scraper, config=config)

        terminal = assert_single_terminal(await collect(controller, "off"))

        assert terminal.type == ProgressEventType.ERROR
        assert "disabled" in terminal.message
        assert scraper.calls == []
        assert reload(session, source).status == SourceStatus.IDLE

    @pytest.mark.asyncio
    async def test_already_running(
        self, session: Session, config: CrawlerConfig, operator: Source
    ) -> None:
        """Test that a held run lock refuses a second run."""
        controller = RunController(session, FakeScraper(), config=config)
        assert controller.registry.try_begin_run(operator.id)

        terminal = assert_single_terminal(await collect(controller, "operator"))

        assert terminal.type == ProgressEventType.ERROR
        assert "already running" in terminal.message
        assert reload(session, operator).status == SourceStatus.RUNNING

    @pytest.mark.asyncio
    async def test_permanent_failure(
        self, session: Session, config: CrawlerConfig, operator: Source
    ) -> None:
        """Test that a 404 fails the run once and releases the lock."""
        scraper = FakeScraper()
        controller = RunController(session, scraper, config=config)

        terminal = assert_single_terminal(await collect(controller, "operator"))

        assert terminal.type == ProgressEventType.ERROR
        assert terminal.stage == RunStage.FAILED
        assert scraper.calls == [PAGE_URL]
        stored = reload(session, operator)
        assert stored.status == SourceStatus.FAILED
        assert stored.consecutive_failures == 1
        assert stored.run_started_at is None
        assert "not found" in stored.last_error

    @pytest.mark.asyncio
    async def test_partial_run(self, session: Session, config: CrawlerConfig, make_source) -> None:
        """Test that one failed page of two gives a partial run."""
        source = make_source(
            name="two-pages", urls=[PAGE_URL, SECOND_URL], extractor_type="json_ld"
        )
        scraper = FakeScraper({PAGE_URL: json_ld_page(ALPHA)})
        controller = RunController(session, scraper, config=config)

        terminal = assert_single_terminal(await collect(controller, source.name))

        assert terminal.type == ProgressEventType.COMPLETE
        assert terminal.stage == RunStage.PARTIAL
        assert controller.last_result.pages_failed == 1
        stored = reload(session, source)
        assert stored.status == SourceStatus.PARTIAL
        assert stored.total_added == 1
        assert SECOND_URL in stored.last_error

    @pytest.mark.asyncio
    async def test_extractor_crash_isolated_to_page(
        self, session: Session, config: CrawlerConfig, make_source, monkeypatch
    ) -> None:
        """Test that an unexpected extractor error fails only its own page."""
        source = make_source(
            name="two-pages", urls=[PAGE_URL, SECOND_URL], extractor_type="json_ld"
        )
        scraper = FakeScraper(
            {
                PAGE_URL: json_ld_page({"@type": None, "name": "Weird"}),
                SECOND_URL: json_ld_page(ALPHA),
            }
        )
        controller = RunController(session, scraper, config=config)
        real_extract = controller.engine.extract

        async def crashing_extract(source, snapshot, pattern=None):
            if snapshot.url == PAGE_URL:
                raise ValueError("unexpected markup")
            return await real_extract(source, snapshot, pattern)

        monkeypatch.setattr(controller.engine, "extract", crashing_extract)

        terminal = assert_single_terminal(await collect(controller, source.name))

        assert terminal.type == ProgressEventType.COMPLETE
        assert terminal.stage == RunStage.PARTIAL
        assert terminal.counts["added"] == 1
        assert controller.last_result.pages_failed == 1
        stored = reload(session, source)
        assert stored.status == SourceStatus.PARTIAL
        assert stored.run_started_at is None
        assert "extraction failed: unexpected markup" in stored.last_error

    @pytest.mark.asyncio
    async def test_null_json_ld_type_does_not_fail_run(
        self, session: Session, config: CrawlerConfig, make_source
    ) -> None:
        """Test that a JSON-LD node with a null @type is skipped, not fatal."""
        source = make_source(
            name="two-pages", urls=[PAGE_URL, SECOND_URL], extractor_type="json_ld"
        )
        scraper = FakeScraper(
            {
                PAGE_URL: json_ld_page({"@type": None, "name": "Weird"}),
                SECOND_URL: json_ld_page(ALPHA),
            }
        )
        controller = RunController(session, scraper, config=config)

        terminal = assert_single_terminal(await collect(controller, source.name))

        assert terminal.type == ProgressEventType.COMPLETE
        assert terminal.stage == RunStage.SUCCEEDED
        assert terminal.counts["added"] == 1
        assert [b.name for b in BoothRepository(session).list_all()] == ["Alpha Bar"]

    @pytest.mark.asyncio
    async def test_transient_retry_succeeds(
        self, session: Session, config: CrawlerConfig, operator: Source
    ) -> None:
        """Test that a transient error is retried and then succeeds."""
        scraper = FakeScraper(
            {
                PAGE_URL: [
                    ScrapeResult(url=PAGE_URL, status_code=503, error="HTTP 503"),
                    json_ld_page(ALPHA),
                ]
            }
        )
        controller = RunController(session, scraper, config=config)

        terminal = assert_single_terminal(await collect(controller, "operator"))

        assert terminal.stage == RunStage.SUCCEEDED
        assert scraper.calls == [PAGE_URL, PAGE_URL]

    @pytest.mark.asyncio
    async def test_transient_retries_exhausted(
        self, session: Session, config: CrawlerConfig, operator: Source
    ) -> None:
        """Test that persistent transient errors stop after max_retries."""
        scraper = FakeScraper(
            {PAGE_URL: ScrapeResult(url=PAGE_URL, status_code=503, error="HTTP 503")}
        )
        controller = RunController(session, scraper, config=config)

        terminal = assert_single_terminal(await collect(controller, "operator"))

        assert terminal.stage == RunStage.FAILED
        assert len(scraper.calls) == 3
        assert "gave up after 3 attempts" in terminal.message

    @pytest.mark.asyncio
    async def test_generic_without_llm_fails(
        self, session: Session, config: CrawlerConfig, make_source
    ) -> None:
        """Test that a generic page without an LLM fails the run."""
        make_source(name="guide", urls=[PAGE_URL])
        controller = RunController(session, FakeScraper({PAGE_URL: LISTING_HTML}), config=config)

        terminal = assert_single_terminal(await collect(controller, "guide"))

        assert terminal.stage == RunStage.FAILED
        assert "No LLM provider" in terminal.message


class TestInterruption:
    """Tests for deadlines and cancellation."""

    @pytest.mark.asyncio
    async def test_deadline(self, session: Session, config: CrawlerConfig, operator: Source) -> None:
        """Test that a slow fetch past the deadline ends the run and releases the lock."""
        scraper = FakeScraper({PAGE_URL: json_ld_page(ALPHA)}, delay=5.0)
        controller = RunController(session, scraper, config=config)

        events = await collect(controller, "operator", deadline_seconds=0.2)

        terminal = assert_single_terminal(events)
        assert terminal.stage == RunStage.FAILED
        assert "deadline" in terminal.message
        stored = reload(session, operator)
        assert stored.status == SourceStatus.FAILED
        assert stored.run_started_at is None

    @pytest.mark.asyncio
    async def test_cancel_event(
        self, session: Session, config: CrawlerConfig, operator: Source
    ) -> None:
        """Test that setting the cancel event stops the run."""
        scraper = FakeScraper({PAGE_URL: json_ld_page(ALPHA)}, delay=5.0)
        controller = RunController(session, scraper, config=config)
        cancel = asyncio.Event()

        events = []
        async for event in controller.run("operator", cancel_event=cancel):
            events.append(event)
            if event.stage == RunStage.FETCHING:
                cancel.set()

        terminal = assert_single_terminal(events)
        assert terminal.type == ProgressEventType.ERROR
        assert "cancelled" in terminal.message
        assert controller.last_result.interrupted == "run cancelled"
        assert reload(session, operator).run_started_at is None

    @pytest.mark.asyncio
    async def test_closing_stream_releases_source(
        self, session: Session, config: CrawlerConfig, operator: Source
    ) -> None:
        """Test that abandoning the event stream still records the run."""
        scraper = FakeScraper({PAGE_URL: json_ld_page(ALPHA)}, delay=5.0)
        controller = RunController(session, scraper, config=config)

        stream = controller.run("operator")
        first = await stream.__anext__()
        assert first.stage == RunStage.PENDING
        await stream.aclose()

        assert controller.last_result is not None
        assert controller.last_result.stage == RunStage.FAILED
        assert reload(session, operator).status != SourceStatus.RUNNING


class TestPatternLoop:
    """Tests for learning and replaying extraction patterns across runs."""

    @pytest.mark.asyncio
    async def test_learned_pattern_replaces_llm(
        self, session: Session, config: CrawlerConfig, make_source
    ) -> None:
        """Test that a second run reuses the learned pattern instead of the LLM."""
        source = make_source(name="guide", urls=[PAGE_URL])
        llm = FakeLLM(responses=[LISTING_ANSWER])
        controller = RunController(session, FakeScraper({PAGE_URL: LISTING_HTML}), llm, config)

        await collect(controller, "guide")
        first = controller.last_result
        assert first.variants == {"generic": 1}
        assert first.llm_calls == 1
        assert first.pattern_action == "created"
        assert first.added == 3

        await collect(controller, "guide")
        second = controller.last_result
        assert second.variants == {"patterned": 1}
        assert second.llm_calls == 0
        assert len(llm.prompts) == 1
        assert second.pattern_action == "reinforced"
        assert (second.added, second.updated) == (0, 3)

        pattern = PatternRepository(session).get_active(source.id)
        assert pattern.confidence == pytest.approx(0.7)
        assert pattern.success_count == 1


class TestRetryAsync:
    """Tests for retry_async."""

    @pytest.mark.asyncio
    async def test_backoff_delays(self) -> None:
        """Test that delays double and are capped."""
        delays: list[float] = []
        attempts = 0

        async def sleep(delay: float) -> None:
            delays.append(delay)

        async def flaky() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 4:
                raise TransientFetchError("https://x.example", "HTTP 503", 503)
            return "ok"

        result = await retry_async(
            flaky, max_retries=4, base_delay=1.0, max_delay=3.0, sleep=sleep
        )

        assert result == "ok"
        assert delays == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self) -> None:
        """Test that other errors are not retried."""
        calls = 0

        async def broken() -> None:
            nonlocal calls
            calls += 1
            raise PermanentFetchError("https://x.example", "not found", 404)

        async def sleep(delay: float) -> None:
            raise AssertionError("should not sleep")

        with pytest.raises(PermanentFetchError):
            await retry_async(broken, sleep=sleep)
        assert calls == 1


class TestRunResult:
    """Tests for RunResult."""

    def test_to_dict(self) -> None:
        """Test serialization of a finished result."""
        result = RunResult(source_ref="operator", source_name="operator")
        result.added = 2
        result.stage = RunStage.SUCCEEDED
        result.finish()

        data = result.to_dict()
        assert data["stage"] == "succeeded"
        assert data["added"] == 2
        assert data["duration_seconds"] >= 0
        assert result.summary() == "operator: succeeded, 0 found, 2 added, 0 updated"

    def test_error_message_truncates(self) -> None:
        """Test that long error lists are summarized."""
        result = RunResult(source_ref="x", errors=["a", "b", "c", "d", "e"])
        assert result.error_message == "a; b; c (+2 more)"
