"""Ordered progress/log event channel for a pipeline run."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, List, Optional

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED)


class EventKind(str, Enum):
    LOG = "log"
    PROGRESS = "progress"
    STATE = "state"


@dataclass(frozen=True)
class PipelineEvent:
    """One entry in a run's notification stream.

    Attributes:
        kind: log line, progress update or state transition
        message: Human-readable text
        level: logging level the message was logged with
        current: Items finished so far (progress events only)
        total: Items in this run (progress events only)
        state: New state (state events only)
    """

    kind: EventKind
    message: str
    level: int = logging.INFO
    current: Optional[int] = None
    total: Optional[int] = None
    state: Optional[RunState] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def display_text(self) -> str:
        return f"[{time.strftime('%H:%M:%S', time.localtime(self.timestamp))}] {self.message}"


class EventChannel:
    """Append-only event stream with a single publisher.

    Every event is logged, kept in ``history`` and pushed to an
    asyncio.Queue so a consumer can follow the run while it is in progress.
    The stream ends with ``None`` once ``close()`` is called.
    """

    def __init__(self, maxsize: int = 0):
        self.history: List[PipelineEvent] = []
        self._queue: asyncio.Queue[Optional[PipelineEvent]] = asyncio.Queue(maxsize)
        self._closed = False

    def publish(self, event: PipelineEvent) -> None:
        if self._closed:
            logger.debug(f"Event published after close: {event.message}")
            return
        logger.log(event.level, event.message)
        self.history.append(event)
        self._queue.put_nowait(event)

    def log(self, message: str, level: int = logging.INFO) -> None:
        self.publish(PipelineEvent(EventKind.LOG, message, level=level))

    def progress(self, current: int, total: int) -> None:
        self.publish(PipelineEvent(EventKind.PROGRESS, f"{current}/{total}", current=current, total=total))

    def state(self, state: RunState) -> None:
        self.publish(PipelineEvent(EventKind.STATE, f"State: {state.value}", level=logging.DEBUG, state=state))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[PipelineEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
