"""
Fetcher Module
==============

Retrieves page content through a scraping client and keeps the
append-only raw content cache. Unchanged pages inside the freshness
window are served from the cache without calling the scraper.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booth_beacon.core.errors import PermanentFetchError, RegistryError
from booth_beacon.core.schema import RawContentSnapshot
from booth_beacon.db.repositories import SnapshotRepository
from booth_beacon.ingestion.scraper import ScrapeClient, classify_scrape_failure, is_valid_url

logger = logging.getLogger(__name__)

_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_content(content: str) -> str:
    """Strip HTML comments and collapse whitespace before hashing."""
    without_comments = _COMMENT_RE.sub("", content)
    return _WHITESPACE_RE.sub(" ", without_comments).strip()


def compute_content_hash(content: str) -> str:
    """
    Compute the SHA-256 hash of normalized content.

    Args:
        content: Raw page content

    Returns:
        Hex-encoded SHA-256 hash
    """
    return hashlib.sha256(normalize_content(content).encode("utf-8")).hexdigest()


class Fetcher:
    """
    Page fetcher backed by the raw content cache.

    Cache semantics:
    - Latest snapshot seen within the freshness window: returned as-is,
      no scrape (``from_cache``).
    - Scraped content hashes to the latest snapshot: only ``last_seen_at``
      is updated (``unchanged``).
    - New hash: a new snapshot is appended; older ones are kept.
    """

    def __init__(
        self,
        session: Session,
        scraper: ScrapeClient,
        freshness_window: timedelta = timedelta(hours=24),
    ) -> None:
        self.session = session
        self.scraper = scraper
        self.freshness_window = freshness_window
        self._snapshots = SnapshotRepository(session)

    async def fetch(
        self,
        url: str,
        source_id: UUID,
        force_refresh: bool = False,
    ) -> RawContentSnapshot:
        """
        Fetch a URL, consulting the cache first.

        Args:
            url: Page URL
            source_id: Owning source
            force_refresh: Skip the freshness check and always scrape

        Returns:
            The current snapshot for the URL

        Raises:
            PermanentFetchError: Invalid URL or a non-retryable scrape failure.
            TransientFetchError: A retryable scrape failure.
            RegistryError: The raw content store could not be read or written.
        """
        if not is_valid_url(url):
            raise PermanentFetchError(url, "invalid URL")

        try:
            latest = self._snapshots.get_latest(url)
        except SQLAlchemyError as e:
            raise RegistryError(f"Failed to read cached content for {url}: {e}") from e

        now = datetime.now(UTC)
        if (
            latest is not None
            and not force_refresh
            and now - latest.last_seen_at < self.freshness_window
        ):
            logger.debug(f"Cache hit for {url} (hash {latest.content_hash[:12]})")
            return latest.model_copy(update={"from_cache": True})

        result = await self.scraper.scrape(url)
        if not result.success or not result.content.strip():
            raise classify_scrape_failure(result)

        content_hash = compute_content_hash(result.content)

        try:
            if latest is not None and latest.content_hash == content_hash:
                self._snapshots.touch(latest.id, now)
                self.session.commit()
                logger.debug(f"Content unchanged for {url}")
                return latest.model_copy(update={"last_seen_at": now, "unchanged": True})

            snapshot = self._snapshots.add(
                RawContentSnapshot(
                    source_id=source_id,
                    url=url,
                    content=result.content,
                    content_hash=content_hash,
                    mime_type=result.mime_type,
                    fetched_at=now,
                    last_seen_at=now,
                )
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RegistryError(f"Failed to store content for {url}: {e}") from e

        logger.info(f"Stored new snapshot for {url} ({len(result.content)} chars)")
        return snapshot
