"""
Run Controller Module
=====================

Drives one crawl of one source and streams ProgressEvents to the caller.

Pipeline for a run:
1. Load the source and claim its run lock
2. Fetch every page (cache first), concurrently with retry on transient errors
3. Extract candidates from each fetched page
4. Validate candidates
5. Reconcile validated records into canonical booths, committing per page
6. Update the learned extraction pattern
7. Record run statistics and release the lock

Every network call is guarded by the run deadline and the cancel event.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booth_beacon.core.enums import RunStage
from booth_beacon.core.errors import (
    DeadlineExceeded,
    ExtractionUnavailableError,
    PermanentFetchError,
    ReconciliationConflict,
    RegistryError,
    RunCancelled,
    RunInterrupted,
    SourceBusyError,
    SourceDisabledError,
    SourceNotFoundError,
    TransientFetchError,
)
from booth_beacon.core.schema import (
    ExtractionPattern,
    ProgressEvent,
    RawContentSnapshot,
    Source,
    ValidatedRecord,
)
from booth_beacon.db.engine import get_session
from booth_beacon.ingestion.config import CrawlerConfig, get_default_config
from booth_beacon.ingestion.engine import ExtractionEngine
from booth_beacon.ingestion.events import EventChannel
from booth_beacon.ingestion.extractors.base import ExtractionOutcome
from booth_beacon.ingestion.fetcher import Fetcher
from booth_beacon.ingestion.patterns import PageObservation, PatternLearner
from booth_beacon.ingestion.registry import RunStats, SourceRegistry
from booth_beacon.ingestion.resolver import BoothResolver
from booth_beacon.ingestion.scraper import ScrapeClient, create_scraper_from_env
from booth_beacon.ingestion.validator import validate_batch
from booth_beacon.services.ai.client import LLMClient, create_llm_client_from_env

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================================
# Retry and Guard
# ============================================================================


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    retry_on: tuple[type[Exception], ...] = (TransientFetchError,),
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Run an async operation with exponential backoff.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        retry_on: Exception types that trigger a retry
        max_retries: Total attempts
        base_delay: Delay before the second attempt, doubled each time
        max_delay: Cap on a single delay
        sleep: Sleep function (the run guard's, so waits stay cancellable)
        label: Name used in log messages

    Returns:
        The operation's result

    Raises:
        The last retryable exception once attempts run out; anything else
        immediately.
    """
    attempts = max(1, max_retries)
    for attempt in range(attempts):
        try:
            return await operation()
        except retry_on as e:
            if attempt + 1 >= attempts:
                raise
            delay = min(base_delay * 2**attempt, max_delay)
            logger.warning(
                f"{label} failed (attempt {attempt + 1}/{attempts}): {e}. "
                f"Retrying in {delay:.1f}s"
            )
            await sleep(delay)
    raise AssertionError("unreachable")


class RunGuard:
    """
    Deadline and cancellation guard for awaitables in a run.

    The first interruption is remembered in ``interrupted``.
    """

    def __init__(self, cancel_event: asyncio.Event, deadline_seconds: float) -> None:
        self.cancel_event = cancel_event
        self.deadline_seconds = deadline_seconds
        self._deadline = asyncio.get_running_loop().time() + deadline_seconds
        self.interrupted: RunInterrupted | None = None

    def remaining(self) -> float:
        return self._deadline - asyncio.get_running_loop().time()

    def _interrupt(self, error: RunInterrupted) -> RunInterrupted:
        if self.interrupted is None:
            self.interrupted = error
            logger.warning(f"Run interrupted: {error}")
        return self.interrupted

    def check(self) -> None:
        """Raise if the run has been cancelled or is out of time."""
        if self.cancel_event.is_set():
            raise self._interrupt(RunCancelled("run cancelled"))
        if self.remaining() <= 0:
            raise self._interrupt(
                DeadlineExceeded(f"run exceeded its {self.deadline_seconds:.0f}s deadline")
            )

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await with the guard.

        Raises:
            RunCancelled: The cancel event was set first.
            DeadlineExceeded: The deadline passed first.
        """
        try:
            self.check()
        except RunInterrupted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise

        task = asyncio.ensure_future(awaitable)
        cancel_wait = asyncio.ensure_future(self.cancel_event.wait())
        try:
            done, _pending = await asyncio.wait(
                {task, cancel_wait},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_wait.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        self.check()
        # wait() timed out right at the deadline
        raise self._interrupt(
            DeadlineExceeded(f"run exceeded its {self.deadline_seconds:.0f}s deadline")
        )

    async def sleep(self, delay: float) -> None:
        await self.run(asyncio.sleep(delay))


# ============================================================================
# Results
# ============================================================================


@dataclass
class PageResult:
    """Per-page state as it moves through the pipeline."""

    url: str
    snapshot: RawContentSnapshot | None = None
    outcome: ExtractionOutcome | None = None
    records: list[ValidatedRecord] = field(default_factory=list)
    error: str | None = None
    permanent: bool = False
    fatal: bool = False
    interrupted: bool = False

    @property
    def completed(self) -> bool:
        return self.outcome is not None and self.error is None


@dataclass
class RunResult:
    """Metrics for one source run."""

    source_ref: str
    source_id: UUID | None = None
    source_name: str | None = None
    stage: RunStage = RunStage.PENDING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    pages_total: int = 0
    pages_fetched: int = 0
    pages_failed: int = 0
    cache_hits: int = 0
    candidates: int = 0
    valid: int = 0
    rejected: int = 0
    added: int = 0
    updated: int = 0
    merged_duplicates: int = 0
    conflicts: list[ReconciliationConflict] = field(default_factory=list)
    llm_calls: int = 0
    variants: dict[str, int] = field(default_factory=dict)
    pattern_action: str | None = None
    interrupted: str | None = None
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    @property
    def written(self) -> int:
        return self.added + self.updated

    @property
    def error_message(self) -> str | None:
        if not self.errors:
            return None
        message = "; ".join(self.errors[:3])
        if len(self.errors) > 3:
            message += f" (+{len(self.errors) - 3} more)"
        return message

    def fail(self, message: str) -> None:
        self.stage = RunStage.FAILED
        self.errors.append(message)

    def finish(self) -> None:
        self.completed_at = datetime.now(UTC)
        self.duration_seconds = (self.completed_at - self.started_at).total_seconds()

    def counts(self) -> dict[str, int]:
        return {
            "pages": self.pages_total,
            "fetched": self.pages_fetched,
            "failed": self.pages_failed,
            "cache_hits": self.cache_hits,
            "candidates": self.candidates,
            "valid": self.valid,
            "rejected": self.rejected,
            "added": self.added,
            "updated": self.updated,
        }

    def summary(self) -> str:
        name = self.source_name or self.source_ref
        return (
            f"{name}: {self.stage.value}, {self.valid} found, "
            f"{self.added} added, {self.updated} updated"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "source_ref": self.source_ref,
            "source_id": str(self.source_id) if self.source_id else None,
            "source_name": self.source_name,
            "stage": self.stage.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "pages_total": self.pages_total,
            "pages_fetched": self.pages_fetched,
            "pages_failed": self.pages_failed,
            "cache_hits": self.cache_hits,
            "candidates": self.candidates,
            "valid": self.valid,
            "rejected": self.rejected,
            "added": self.added,
            "updated": self.updated,
            "merged_duplicates": self.merged_duplicates,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "llm_calls": self.llm_calls,
            "variants": self.variants,
            "pattern_action": self.pattern_action,
            "interrupted": self.interrupted,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }


# ============================================================================
# Controller
# ============================================================================


class RunController:
    """
    Runs sources end to end.

    Example:
        controller = RunController(session, scraper, llm_client, config)
        async for event in controller.run("photobooth.net"):
            print(event.type, event.message)
        print(controller.last_result.to_dict())
    """

    def __init__(
        self,
        session: Session,
        scraper: ScrapeClient,
        llm_client: LLMClient | None = None,
        config: CrawlerConfig | None = None,
    ) -> None:
        self.session = session
        self.config = config or CrawlerConfig()
        settings = self.config.global_config

        self.registry = SourceRegistry(session, stale_lock_minutes=settings.stale_lock_minutes)
        self.fetcher = Fetcher(
            session, scraper, freshness_window=timedelta(hours=settings.freshness_window_hours)
        )
        self.engine = ExtractionEngine(
            llm_client,
            usable_floor=self.config.patterns.usable_floor,
            max_chunk_chars=settings.llm_max_chunk_chars,
        )
        self.learner = PatternLearner(session, self.config.patterns)
        self.last_result: RunResult | None = None

    async def run(
        self,
        source_ref: UUID | str,
        cancel_event: asyncio.Event | None = None,
        force_refresh: bool = False,
        deadline_seconds: float | None = None,
    ) -> AsyncIterator[ProgressEvent]:
        """
        Run one source, yielding progress events.

        The stream ends with exactly one COMPLETE or ERROR event. Closing
        the stream early cancels the run; the source is still released.

        Args:
            source_ref: Source UUID or name
            cancel_event: Set to cancel the run
            force_refresh: Ignore the content cache freshness window
            deadline_seconds: Override run_deadline_seconds

        Yields:
            ProgressEvent
        """
        cancel_event = cancel_event or asyncio.Event()
        deadline = deadline_seconds or self.config.global_config.run_deadline_seconds
        channel = EventChannel()
        guard = RunGuard(cancel_event, deadline)
        task = asyncio.create_task(self._execute(source_ref, channel, guard, force_refresh))

        try:
            async for event in channel:
                yield event
        finally:
            if not task.done():
                cancel_event.set()
            self.last_result = await task

    async def _execute(
        self,
        source_ref: UUID | str,
        channel: EventChannel,
        guard: RunGuard,
        force_refresh: bool,
    ) -> RunResult:
        result = RunResult(source_ref=str(source_ref))
        try:
            await self._run(source_ref, channel, guard, force_refresh, result)
        except Exception as e:
            logger.exception(f"Run for {source_ref} failed")
            result.fail(f"Unexpected error: {e}")
        finally:
            result.finish()
            if result.stage in (RunStage.SUCCEEDED, RunStage.PARTIAL):
                channel.complete(result.stage, result.summary(), result.counts())
            else:
                result.stage = RunStage.FAILED
                channel.error(result.error_message or "Run failed", counts=result.counts())
        return result

    async def _run(
        self,
        source_ref: UUID | str,
        channel: EventChannel,
        guard: RunGuard,
        force_refresh: bool,
        result: RunResult,
    ) -> None:
        settings = self.config.global_config
        channel.stage(RunStage.PENDING, f"Loading source {source_ref}")

        async def load() -> Source:
            guard.check()
            return self.registry.load_source(source_ref)

        try:
            source = await retry_async(
                load,
                retry_on=(RegistryError,),
                max_retries=settings.max_retries,
                base_delay=settings.backoff_base_seconds,
                max_delay=settings.backoff_max_seconds,
                sleep=guard.sleep,
                label=f"Loading source {source_ref}",
            )
        except (SourceNotFoundError, RegistryError, RunInterrupted) as e:
            result.fail(str(e))
            return

        result.source_id = source.id
        result.source_name = source.name

        try:
            self._claim(source)
        except (SourceDisabledError, RegistryError) as e:
            result.fail(str(e))
            return

        try:
            await self._pipeline(source, channel, guard, force_refresh, result)
        except RegistryError as e:
            result.fail(str(e))
        finally:
            if not result.stage.is_terminal:
                # Cancelled from outside the guard
                result.stage = RunStage.PARTIAL if result.written else RunStage.FAILED
                result.errors.append("run stopped before completion")
            self._record(source, result)

    def _claim(self, source: Source) -> None:
        """
        Take the source's run lock.

        Raises:
            SourceDisabledError: The source is disabled.
            SourceBusyError: Another run holds the lock.
            RegistryError: The registry could not be written.
        """
        if not source.enabled:
            raise SourceDisabledError(f"Source '{source.name}' is disabled")
        if not self.registry.try_begin_run(source.id):
            raise SourceBusyError(f"Source '{source.name}' is already running")

    def _record(self, source: Source, result: RunResult) -> None:
        """Write run statistics and release the run lock."""
        try:
            self.registry.record_run_result(
                source.id,
                RunStats(
                    found=result.valid,
                    added=result.added,
                    updated=result.updated,
                    status=result.stage.to_source_status(),
                    error_message=result.error_message,
                ),
            )
        except (RegistryError, SourceNotFoundError) as e:
            logger.error(f"Could not record run result for '{source.name}': {e}")
            result.fail(str(e))

    async def _pipeline(
        self,
        source: Source,
        channel: EventChannel,
        guard: RunGuard,
        force_refresh: bool,
        result: RunResult,
    ) -> None:
        urls = list(dict.fromkeys(source.urls))
        result.pages_total = len(urls)
        if not urls:
            result.fail(f"Source '{source.name}' has no URLs")
            return

        pattern = self.learner.active_pattern(source.id)
        pages = [PageResult(url=url) for url in urls]
        semaphore = asyncio.Semaphore(max(1, self.config.global_config.page_concurrency))

        # Fetch
        channel.stage(RunStage.FETCHING, f"Fetching {len(pages)} page(s)", result.counts())
        await asyncio.gather(
            *(self._fetch_page(page, source, guard, semaphore, force_refresh, result) for page in pages)
        )
        for page in pages:
            if page.fatal:
                raise RegistryError(page.error or f"Content store failed for {page.url}")
            if page.error:
                channel.log(f"Fetch failed for {page.url}: {page.error}")

        # Extract
        fetched = [p for p in pages if p.snapshot is not None]
        channel.stage(
            RunStage.EXTRACTING, f"Extracting from {len(fetched)} page(s)", result.counts()
        )
        await asyncio.gather(
            *(self._extract_page(page, source, pattern, guard, semaphore) for page in fetched)
        )
        for page in fetched:
            if page.outcome is not None:
                outcome = page.outcome
                result.candidates += len(outcome.candidates)
                result.llm_calls += outcome.llm_calls
                if outcome.variant is not None:
                    key = outcome.variant.value
                    result.variants[key] = result.variants.get(key, 0) + 1
                for error in outcome.errors:
                    result.errors.append(error)
                    channel.log(error)
            elif page.error:
                channel.log(f"Extraction failed for {page.url}: {page.error}")

        # Validate
        extracted = [p for p in pages if p.outcome is not None]
        channel.stage(
            RunStage.VALIDATING,
            f"Validating {sum(len(p.outcome.candidates) for p in extracted)} candidate(s)",
            result.counts(),
        )
        for page in extracted:
            accepted, rejected = validate_batch(page.outcome.candidates)
            page.records = accepted
            result.valid += len(accepted)
            result.rejected += len(rejected)
        if result.rejected:
            channel.log(f"Rejected {result.rejected} candidate(s)", result.counts())

        # Reconcile
        channel.stage(
            RunStage.RECONCILING, f"Reconciling {result.valid} record(s)", result.counts()
        )
        resolver = BoothResolver(self.session, self.config.dedup)
        for page in extracted:
            if not page.records:
                continue
            summary = resolver.reconcile(page.records, source)
            try:
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                raise RegistryError(f"Failed to commit booths for {page.url}: {e}") from e
            result.added += summary.added
            result.updated += summary.updated
            result.merged_duplicates += summary.merged
            result.conflicts.extend(summary.conflicts)

        if guard.interrupted is None:
            self._learn(source, pattern, extracted, channel, result)

        self._settle(pages, guard, result)

    async def _fetch_page(
        self,
        page: PageResult,
        source: Source,
        guard: RunGuard,
        semaphore: asyncio.Semaphore,
        force_refresh: bool,
        result: RunResult,
    ) -> None:
        settings = self.config.global_config
        async with semaphore:
            try:
                snapshot = await retry_async(
                    lambda: guard.run(self.fetcher.fetch(page.url, source.id, force_refresh)),
                    retry_on=(TransientFetchError,),
                    max_retries=settings.max_retries,
                    base_delay=settings.backoff_base_seconds,
                    max_delay=settings.backoff_max_seconds,
                    sleep=guard.sleep,
                    label=f"Fetch {page.url}",
                )
            except RunInterrupted:
                page.interrupted = True
                return
            except PermanentFetchError as e:
                page.error = str(e)
                page.permanent = True
                return
            except TransientFetchError as e:
                page.error = f"{e} (gave up after {settings.max_retries} attempts)"
                return
            except RegistryError as e:
                page.error = str(e)
                page.fatal = True
                return

        page.snapshot = snapshot
        result.pages_fetched += 1
        if snapshot.from_cache:
            result.cache_hits += 1

    async def _extract_page(
        self,
        page: PageResult,
        source: Source,
        pattern: ExtractionPattern | None,
        guard: RunGuard,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            try:
                page.outcome = await guard.run(self.engine.extract(source, page.snapshot, pattern))
            except RunInterrupted:
                page.interrupted = True
            except ExtractionUnavailableError as e:
                page.error = str(e)
            except Exception as e:
                logger.exception(f"Extractor failed on {page.url}")
                page.error = f"extraction failed: {e}"

    def _learn(
        self,
        source: Source,
        pattern: ExtractionPattern | None,
        pages: list[PageResult],
        channel: EventChannel,
        result: RunResult,
    ) -> None:
        observations = [
            PageObservation(
                content=page.snapshot.content,
                variant=page.outcome.variant,
                pattern_attempted=page.outcome.pattern_attempted,
                candidates=len(page.outcome.candidates),
                records=page.records,
            )
            for page in pages
            if page.snapshot is not None and page.outcome is not None
        ]
        try:
            update = self.learner.observe(source, pattern, observations)
        except RegistryError as e:
            logger.error(f"Pattern update failed for '{source.name}': {e}")
            channel.log(f"Pattern update failed: {e}")
            return
        result.pattern_action = update.action
        if update.action != "none":
            channel.log(f"Extraction pattern {update.action}")

    def _settle(self, pages: list[PageResult], guard: RunGuard, result: RunResult) -> None:
        """Decide the terminal stage."""
        failed = [p for p in pages if p.error]
        result.pages_failed = len(failed)
        for page in failed:
            result.errors.append(f"{page.url}: {page.error}")

        if guard.interrupted is not None:
            result.interrupted = str(guard.interrupted)
            result.errors.append(f"Run interrupted: {guard.interrupted}")
            completed = any(p.completed for p in pages)
            result.stage = RunStage.PARTIAL if completed or result.written else RunStage.FAILED
        elif not failed:
            result.stage = RunStage.SUCCEEDED
        elif len(failed) == len(pages):
            result.stage = RunStage.FAILED
        else:
            result.stage = RunStage.PARTIAL


# ============================================================================
# Convenience Entry Point
# ============================================================================


async def run_source(
    source_ref: UUID | str,
    cancel_event: asyncio.Event | None = None,
    force_refresh: bool = False,
    deadline_seconds: float | None = None,
    config: CrawlerConfig | None = None,
) -> AsyncIterator[ProgressEvent]:
    """
    Run a source with default config, database session and clients.

    The LLM client is optional: without provider credentials, specialized
    and patterned extraction still work and generic pages fail.

    Yields:
        ProgressEvent
    """
    config = config or get_default_config()
    try:
        llm_client: LLMClient | None = create_llm_client_from_env()
    except ValueError as e:
        logger.warning(f"LLM extraction unavailable: {e}")
        llm_client = None

    scraper = create_scraper_from_env(config.global_config)
    try:
        with get_session() as session:
            controller = RunController(session, scraper, llm_client, config)
            async for event in controller.run(
                source_ref,
                cancel_event=cancel_event,
                force_refresh=force_refresh,
                deadline_seconds=deadline_seconds,
            ):
                yield event
    finally:
        await scraper.aclose()
