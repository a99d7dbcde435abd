"""Progress events and the per-attempt line-delimited stream."""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator

from shipyard.utils.logging import get_logger

logger = get_logger(__name__)


class EventKind(str, Enum):
    """Kind of a progress event."""

    LOG = "log"
    PROGRESS = "progress"
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ProgressEvent:
    """One unit of the streamed deployment log."""

    kind: EventKind
    message: str
    percentage: int | None = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.kind.value, "message": self.message}
        if self.percentage is not None:
            data["percentage"] = self.percentage
        data["timestamp"] = self.timestamp.isoformat() + "Z"
        return data

    def to_line(self) -> str:
        """Serialize as one newline-terminated JSON object."""
        return json.dumps(self.to_dict()) + "\n"


class ProgressStream:
    """Single-writer, ordered channel from one pipeline attempt to one caller.

    The orchestrator writes with the non-blocking ``emit`` helpers; the caller
    reads with ``lines()``. Events go into a bounded queue that acts as a
    detachable sink. When the reader goes away, or falls so far behind that the
    queue fills up, the sink is detached and the pipeline keeps running. Every
    event is also kept in ``events`` so the full transcript of the attempt
    stays available after the caller is gone.
    """

    _CLOSED = object()

    def __init__(self, attempt_id: str, maxsize: int = 1000):
        self.attempt_id = attempt_id
        self.events: list[ProgressEvent] = []
        self._queue: asyncio.Queue[Any] | None = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._last_percentage = 0

    @property
    def attached(self) -> bool:
        return self._queue is not None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_percentage(self) -> int:
        return self._last_percentage

    def emit(
        self,
        kind: EventKind,
        message: str,
        percentage: int | None = None,
    ) -> ProgressEvent:
        """Append an event and hand it to the reader without waiting."""
        if self._closed:
            raise RuntimeError(f"Progress stream {self.attempt_id} is closed")

        if percentage is not None:
            if not 0 <= percentage <= 100:
                raise ValueError(f"Percentage out of range: {percentage}")
            if percentage < self._last_percentage:
                raise ValueError(
                    f"Progress went backwards: {self._last_percentage} -> {percentage}"
                )
            self._last_percentage = percentage

        event = ProgressEvent(kind=kind, message=message, percentage=percentage)
        self.events.append(event)
        self._offer(event)
        return event

    def log(self, message: str) -> ProgressEvent:
        return self.emit(EventKind.LOG, message)

    def progress(self, message: str, percentage: int) -> ProgressEvent:
        return self.emit(EventKind.PROGRESS, message, percentage)

    def warning(self, message: str) -> ProgressEvent:
        return self.emit(EventKind.WARNING, message)

    def success(self, message: str, percentage: int | None = None) -> ProgressEvent:
        return self.emit(EventKind.SUCCESS, message, percentage)

    def error(self, message: str) -> ProgressEvent:
        return self.emit(EventKind.ERROR, message)

    def close(self) -> None:
        """Mark the end of the attempt; the reader stops after draining."""
        if self._closed:
            return
        self._closed = True
        self._offer(self._CLOSED)

    def detach(self) -> None:
        """Drop the reader sink. Later events only go to the transcript."""
        if self._queue is None:
            return
        self._queue = None
        logger.info(
            "progress_stream.detached",
            attempt_id=self.attempt_id,
            events=len(self.events),
        )

    def _offer(self, item: Any) -> None:
        if self._queue is None:
            return
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning(
                "progress_stream.reader_too_slow",
                attempt_id=self.attempt_id,
                queued=self._queue.qsize(),
            )
            self.detach()

    async def lines(self) -> AsyncIterator[str]:
        """Yield serialized events until the attempt ends or the reader leaves."""
        queue = self._queue
        if queue is None:
            return
        try:
            while True:
                # Detached on overflow: deliver what was queued, then stop
                if self._queue is not queue and queue.empty():
                    break
                item = await queue.get()
                if item is self._CLOSED:
                    break
                yield item.to_line()
        finally:
            # Reader disconnected or finished; the pipeline carries on regardless
            if not self._closed:
                self.detach()
