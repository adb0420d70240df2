import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from launchpad.modules.jobs.tracker import JobTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    step: str
    message: str
    completed: bool = False


class ProgressChannel:
    """
    FIFO of progress events between a running operation and its consumer.

    Producers call emit() and never see the tracker. A single consumer
    (drain_into) appends events to the job in emission order and returns once
    close() has been called and the queue is empty.
    """

    _CLOSED = None

    def __init__(self, label: str = ""):
        self.label = label
        self._queue: "asyncio.Queue[Optional[ProgressEvent]]" = asyncio.Queue()
        self._closed = False

    def emit(self, step: str, message: str, completed: bool = False) -> None:
        if self._closed:
            logger.debug(f"Dropping progress event after close: {step}")
            return
        if self.label:
            logger.info(f"[{self.label}] {step}: {message}")
        self._queue.put_nowait(ProgressEvent(step=step, message=message, completed=completed))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    async def drain_into(self, tracker: JobTracker, job_id: str) -> int:
        count = 0
        while True:
            event = await self._queue.get()
            if event is self._CLOSED:
                return count
            tracker.append(job_id, event.step, event.message, event.completed)
            count += 1
