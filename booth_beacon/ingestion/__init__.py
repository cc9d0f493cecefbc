"""
Booth Beacon Ingestion Framework
================================

This package provides the complete pipeline for crawling photo booth
locations from external sources into deduplicated canonical booths.

Pipeline Stages:
1. Registry - Load the source and claim its run lock
2. Fetch - Scrape pages through the raw content cache
3. Extract - Specialized, learned-pattern or LLM extraction
4. Validate - Structural field checks and sanitization
5. Reconcile - Match against canonical booths and upsert
6. Learn - Derive and score reusable extraction patterns
"""

from booth_beacon.ingestion.config import (
    CrawlerConfig,
    DedupConfig,
    GlobalConfig,
    PatternConfig,
    RateLimitConfig,
    SourceConfig,
    get_default_config,
)
from booth_beacon.ingestion.registry import (
    RunStats,
    SourceRegistry,
)
from booth_beacon.ingestion.scraper import (
    FirecrawlScraper,
    HttpScraper,
    ScrapeClient,
    ScrapeResult,
    TokenBucket,
)
from booth_beacon.ingestion.fetcher import (
    Fetcher,
    compute_content_hash,
)
from booth_beacon.ingestion.engine import ExtractionEngine
from booth_beacon.ingestion.validator import (
    validate,
    validate_batch,
)
from booth_beacon.ingestion.patterns import (
    PatternDescriptor,
    PatternLearner,
    derive_pattern,
)
from booth_beacon.ingestion.resolver import (
    BoothResolver,
    UpsertSummary,
)
from booth_beacon.ingestion.runner import (
    RunController,
    RunResult,
    retry_async,
    run_source,
)

__all__ = [
    # Config
    "CrawlerConfig",
    "DedupConfig",
    "GlobalConfig",
    "PatternConfig",
    "RateLimitConfig",
    "SourceConfig",
    "get_default_config",
    # Registry
    "RunStats",
    "SourceRegistry",
    # Fetching
    "FirecrawlScraper",
    "HttpScraper",
    "ScrapeClient",
    "ScrapeResult",
    "TokenBucket",
    "Fetcher",
    "compute_content_hash",
    # Extraction
    "ExtractionEngine",
    # Validation
    "validate",
    "validate_batch",
    # Patterns
    "PatternDescriptor",
    "PatternLearner",
    "derive_pattern",
    # Resolver
    "BoothResolver",
    "UpsertSummary",
    # Runner
    "RunController",
    "RunResult",
    "retry_async",
    "run_source",
]
