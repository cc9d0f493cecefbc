"""
Progress Event Channel
======================

Carries ProgressEvents from a running pipeline to its consumer. The
channel closes after its first terminal (complete or error) event, so
a stream always ends with exactly one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from booth_beacon.core.enums import ProgressEventType, RunStage
from booth_beacon.core.schema import ProgressEvent

logger = logging.getLogger(__name__)


class EventChannel:
    """Single-producer, single-consumer event queue."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: ProgressEvent) -> None:
        """Queue an event. Events after the terminal one are dropped."""
        if self._closed:
            logger.debug(f"Dropping event after terminal: {event.message}")
            return
        self._queue.put_nowait(event)
        if event.is_terminal:
            self._closed = True

    def stage(
        self, stage: RunStage, message: str, counts: dict[str, int] | None = None
    ) -> None:
        self.emit(
            ProgressEvent(type=ProgressEventType.STAGE, stage=stage, message=message, counts=counts)
        )

    def log(self, message: str, counts: dict[str, int] | None = None) -> None:
        self.emit(ProgressEvent(type=ProgressEventType.LOG, message=message, counts=counts))

    def complete(
        self, stage: RunStage, message: str, counts: dict[str, int] | None = None
    ) -> None:
        self.emit(
            ProgressEvent(
                type=ProgressEventType.COMPLETE, stage=stage, message=message, counts=counts
            )
        )

    def error(
        self,
        message: str,
        stage: RunStage | None = RunStage.FAILED,
        counts: dict[str, int] | None = None,
    ) -> None:
        self.emit(
            ProgressEvent(type=ProgressEventType.ERROR, stage=stage, message=message, counts=counts)
        )

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return
