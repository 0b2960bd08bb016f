"""
Detection Publication

Bounded hand-off between ingestion and detection consumers:
- DetectionQueue: FIFO asyncio queue that drops its oldest entry when full
- DetectionSink: interface for anything that receives published detections
- DetectionStore: in-memory per-instrument history with time-range queries
- CallbackSink: adapts a plain or async callable into a sink
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from ..models.detections import Detection


logger = logging.getLogger(__name__)


class DetectionQueue:
    """FIFO detection queue with drop-oldest overflow and join support."""

    def __init__(self, max_size: int = 10000):
        if max_size < 1:
            raise ValueError(f"Queue size must be >= 1, got {max_size}")
        self.max_size = max_size
        self._items: Deque[Detection] = deque()
        self._lock = asyncio.Lock()
        self._changed = asyncio.Condition(self._lock)
        self._unfinished = 0
        self._dropped_count = 0
        self._enqueued_count = 0

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    def qsize(self) -> int:
        return len(self._items)

    def empty(self) -> bool:
        return not self._items

    async def put(self, detection: Detection) -> bool:
        """
        Enqueue a detection.

        Returns:
            False if the oldest queued detection had to be dropped to make room
        """
        async with self._changed:
            dropped = False
            if len(self._items) >= self.max_size:
                oldest = self._items.popleft()
                self._unfinished -= 1
                self._dropped_count += 1
                dropped = True
                logger.warning(
                    f"Detection queue full, dropped {oldest.pattern_id} on {oldest.instrument} "
                    f"@ {oldest.end_time.isoformat()}"
                )

            self._items.append(detection)
            self._unfinished += 1
            self._enqueued_count += 1
            self._changed.notify_all()
            return not dropped

    async def get(self) -> Detection:
        """Remove and return the oldest detection, waiting if the queue is empty."""
        async with self._changed:
            while not self._items:
                await self._changed.wait()
            return self._items.popleft()

    async def task_done(self) -> None:
        """Mark one previously fetched detection as fully handled."""
        async with self._changed:
            if self._unfinished <= 0:
                raise ValueError("task_done() called more times than detections were queued")
            self._unfinished -= 1
            self._changed.notify_all()

    async def join(self) -> None:
        """Wait until every queued detection has been fetched and handled."""
        async with self._changed:
            while self._unfinished > 0:
                await self._changed.wait()

    def get_stats(self) -> Dict[str, int]:
        return {
            "size": len(self._items),
            "max_size": self.max_size,
            "enqueued_count": self._enqueued_count,
            "dropped_count": self._dropped_count,
            "unfinished": self._unfinished,
        }


class DetectionSink(ABC):
    """Receiver of published detections."""

    @abstractmethod
    async def publish(self, detection: Detection) -> None:
        """Deliver one detection. Exceptions are logged by the publisher."""


class DetectionStore(DetectionSink):
    """
    In-memory detection history.

    Keeps the most recent ``history`` detections per instrument in
    publication order and answers time-range queries against the detection's
    end time.
    """

    def __init__(self, history: int = 1000):
        if history < 1:
            raise ValueError(f"History size must be >= 1, got {history}")
        self.history = history
        self._detections: Dict[str, Deque[Detection]] = {}

    async def publish(self, detection: Detection) -> None:
        self.add(detection)

    def add(self, detection: Detection) -> None:
        bucket = self._detections.get(detection.instrument)
        if bucket is None:
            bucket = deque(maxlen=self.history)
            self._detections[detection.instrument] = bucket
        bucket.append(detection)

    def query(
        self,
        instrument: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Detection]:
        """
        Detections for an instrument, oldest first.

        Args:
            instrument: Instrument id
            since: Inclusive lower bound on end_time
            until: Inclusive upper bound on end_time
        """
        bucket = self._detections.get(instrument.upper())
        if not bucket:
            return []
        return [
            d for d in bucket
            if (since is None or d.end_time >= since) and (until is None or d.end_time <= until)
        ]

    def instruments(self) -> List[str]:
        return sorted(self._detections)

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._detections.values())

    def forget(self, instrument: str) -> int:
        """Drop an instrument's history; returns how many detections were removed."""
        bucket = self._detections.pop(instrument.upper(), None)
        return len(bucket) if bucket else 0

    def clear(self) -> None:
        self._detections.clear()


class CallbackSink(DetectionSink):
    """Sink that forwards each detection to a callable, sync or async."""

    def __init__(self, callback: Callable[[Detection], Union[None, Awaitable[None]]]):
        self.callback = callback
        self._is_async = inspect.iscoroutinefunction(callback)

    async def publish(self, detection: Detection) -> None:
        result: Any = self.callback(detection)
        if self._is_async or inspect.isawaitable(result):
            await result
