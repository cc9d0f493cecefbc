"""Enums for crawl sources, runs and extraction."""

from enum import Enum


class SourceStatus(str, Enum):
    """Run status stored on a source row."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SourceType(str, Enum):
    """Kind of site a source points at."""

    DIRECTORY = "directory"
    OPERATOR = "operator"
    CITY_GUIDE = "city_guide"
    BLOG = "blog"
    COMMUNITY = "community"


class RunStage(str, Enum):
    """Stages of a single source run."""

    PENDING = "pending"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    RECONCILING = "reconciling"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStage.SUCCEEDED, RunStage.PARTIAL, RunStage.FAILED)

    def to_source_status(self) -> SourceStatus:
        """Map a terminal stage onto the status recorded on the source."""
        return {
            RunStage.SUCCEEDED: SourceStatus.SUCCESS,
            RunStage.PARTIAL: SourceStatus.PARTIAL,
            RunStage.FAILED: SourceStatus.FAILED,
        }[self]


class ExtractorVariant(str, Enum):
    """Which extraction path produced a candidate."""

    SPECIALIZED = "specialized"
    PATTERNED = "patterned"
    GENERIC = "generic"


class ProgressEventType(str, Enum):
    """Type of a progress event emitted during a run."""

    STAGE = "stage"
    LOG = "log"
    COMPLETE = "complete"
    ERROR = "error"
