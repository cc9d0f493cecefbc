"""
Error Taxonomy
==============

Exceptions raised by the ingestion pipeline, plus the two non-exception
result types (rejections and reconciliation conflicts) that are reported
rather than raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from booth_beacon.core.schema import ExtractionCandidate


class BoothBeaconError(Exception):
    """Base class for all pipeline errors."""


# ============================================================================
# Fetch Errors
# ============================================================================


class FetchError(BoothBeaconError):
    """A page could not be fetched."""

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url
        self.message = message
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Timeout, 5xx or rate limiting. Safe to retry."""


class PermanentFetchError(FetchError):
    """404, blocked or invalid URL. Never retried."""


# ============================================================================
# Extraction Errors
# ============================================================================


class ExtractionError(BoothBeaconError):
    """Base class for extraction failures."""


class ExtractionSchemaError(ExtractionError):
    """LLM output did not match the candidate schema."""

    def __init__(self, message: str, raw_response: str = "") -> None:
        super().__init__(message)
        self.raw_response = raw_response


class ExtractionUnavailableError(ExtractionError):
    """The LLM provider could not be reached or is not configured."""


# ============================================================================
# Registry Errors
# ============================================================================


class SourceNotFoundError(BoothBeaconError):
    """No source exists with the requested id or name."""

    def __init__(self, source_ref: str) -> None:
        super().__init__(f"Source '{source_ref}' not found")
        self.source_ref = source_ref


class RegistryError(BoothBeaconError):
    """The source registry could not be read or written."""


class SourceBusyError(RegistryError):
    """Another run already holds the source."""


class SourceDisabledError(BoothBeaconError):
    """The source is disabled and must not be run."""


# ============================================================================
# Run Interruption
# ============================================================================


class RunInterrupted(BoothBeaconError):
    """A run was stopped before finishing."""


class RunCancelled(RunInterrupted):
    """The caller cancelled the run."""


class DeadlineExceeded(RunInterrupted):
    """The run exceeded its wall-clock deadline."""


# ============================================================================
# Reported Results
# ============================================================================


@dataclass
class ValidationRejected:
    """A candidate that failed field validation."""

    candidate: ExtractionCandidate
    field: str
    reason: str

    def __str__(self) -> str:
        return f"{self.candidate.name!r} rejected on {self.field}: {self.reason}"


@dataclass
class ReconciliationConflict:
    """Two records disagreed on a field of the same canonical entity."""

    entity_key: str
    field: str
    kept: Any
    discarded: Any
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_key": self.entity_key,
            "field": self.field,
            "kept": self.kept,
            "discarded": self.discarded,
            "reason": self.reason,
        }
