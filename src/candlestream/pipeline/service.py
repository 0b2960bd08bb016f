"""
Detection Service

Asynchronous front door of the engine. Each ingested candle is appended to
its instrument's rolling window, the window is matched against the catalog,
and the resulting detections are queued for publication to the registered
sinks.

Candles for one instrument are processed one at a time under that
instrument's asyncio lock, and detections are enqueued before the lock is
released. A single publisher task drains the queue in FIFO order, so each
instrument's detections are published in ingestion order. Different
instruments proceed independently.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Set

from ..config import Config
from ..exceptions import OutOfOrderError
from ..models.candles import Candle, WindowSnapshot, normalize_instrument, parse_timestamp
from ..models.detections import Detection, IngestResult
from ..models.patterns import PatternCatalog
from ..patterns.matcher import MatchReport, evaluate
from .buffers import WindowBufferManager
from .publication import DetectionQueue, DetectionSink, DetectionStore


logger = logging.getLogger(__name__)


class DetectionService:
    """
    Streaming candlestick pattern detection.

    Args:
        catalog: Loaded pattern catalog
        config: Engine configuration; defaults apply when omitted
        sinks: Extra sinks to publish to, after the built-in DetectionStore
        clock: Monotonic time source used for idle eviction
    """

    def __init__(
        self,
        catalog: PatternCatalog,
        config: Optional[Config] = None,
        sinks: Optional[List[DetectionSink]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        if len(catalog) == 0:
            raise ValueError("Pattern catalog is empty")

        self.catalog = catalog
        self.config = config or Config()
        self.min_confidence = Decimal(str(self.config.matcher.min_confidence))

        capacity = max(catalog.max_window, self.config.buffers.capacity_override or 0)
        self.buffers = WindowBufferManager(
            capacity=capacity,
            idle_ttl=self.config.buffers.idle_ttl_seconds,
            clock=clock,
        )
        self.store = DetectionStore(history=self.config.publication.history_per_instrument)
        self.sinks: List[DetectionSink] = [self.store] + list(sinks or [])
        self.queue = DetectionQueue(max_size=self.config.publication.queue_size)

        self._executor: Optional[ThreadPoolExecutor] = None
        self._instrument_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._background_tasks: Set[asyncio.Task] = set()
        self._running = False

        self.stats = {
            "candles_accepted": 0,
            "candles_rejected": 0,
            "candles_invalid": 0,
            "detections_produced": 0,
            "detections_published": 0,
            "pattern_failures": 0,
            "sink_errors": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    def add_sink(self, sink: DetectionSink) -> None:
        self.sinks.append(sink)

    async def start(self):
        """Start the publisher and the periodic idle sweep."""
        if self._running:
            return

        workers = self.config.matcher.worker_threads
        if workers > 0:
            self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="matcher")

        publisher = asyncio.create_task(self._publish_worker())
        self._background_tasks.add(publisher)
        publisher.add_done_callback(self._background_tasks.discard)

        sweeper = asyncio.create_task(self._periodic_sweep())
        self._background_tasks.add(sweeper)
        sweeper.add_done_callback(self._background_tasks.discard)

        self._running = True
        logger.info(
            f"Detection service started: {len(self.catalog)} patterns, "
            f"window capacity {self.buffers.capacity}, matcher workers {workers}"
        )

    async def stop(self, drain: bool = True):
        """
        Stop background processing.

        Args:
            drain: Publish every queued detection before stopping
        """
        if not self._running:
            return

        if drain:
            await self.queue.join()

        for task in list(self._background_tasks):
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

        self._running = False
        logger.info(f"Detection service stopped ({self.queue.qsize()} detections left unpublished)")

    async def __aenter__(self) -> 'DetectionService':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop(drain=exc_type is None)

    async def flush(self):
        """Wait until every queued detection has been published."""
        if not self._running:
            raise RuntimeError("Detection service is not running; nothing will publish queued detections")
        await self.queue.join()

    def _enter_instrument(self, instrument: str) -> asyncio.Lock:
        lock = self._instrument_locks.get(instrument)
        if lock is None:
            lock = asyncio.Lock()
            self._instrument_locks[instrument] = lock
        self._lock_users[instrument] = self._lock_users.get(instrument, 0) + 1
        return lock

    def _leave_instrument(self, instrument: str) -> None:
        users = self._lock_users.get(instrument, 1) - 1
        if users > 0:
            self._lock_users[instrument] = users
        else:
            self._lock_users.pop(instrument, None)

    async def _match(self, snapshot: WindowSnapshot) -> MatchReport:
        if self._executor is None:
            return evaluate(snapshot, self.catalog, self.min_confidence)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, evaluate, snapshot, self.catalog, self.min_confidence
        )

    async def ingest(self, instrument: str, candle: Candle) -> IngestResult:
        """
        Ingest one candle for an instrument.

        Returns:
            IngestResult with the detections for the updated window, or a
            rejection when the candle is out of order or misaddressed
        """
        try:
            key = normalize_instrument(instrument)
        except ValueError as e:
            self.stats["candles_invalid"] += 1
            logger.warning(f"Rejected candle: {e}")
            return IngestResult.rejected(str(instrument), str(e), candle)

        if candle.instrument != key:
            self.stats["candles_invalid"] += 1
            reason = f"candle for {candle.instrument} addressed to {key}"
            logger.warning(f"Rejected candle: {reason}", extra={"instrument": key})
            return IngestResult.rejected(key, reason, candle)

        lock = self._enter_instrument(key)
        try:
            async with lock:
                try:
                    snapshot = self.buffers.append_candle(key, candle)
                except OutOfOrderError as e:
                    self.stats["candles_rejected"] += 1
                    logger.warning(str(e), extra={"instrument": key})
                    return IngestResult.rejected(key, str(e), candle)

                self.stats["candles_accepted"] += 1
                report = await self._match(snapshot)

                for failure in report.failures:
                    self.stats["pattern_failures"] += 1
                    logger.error(
                        f"Pattern evaluation failed: {failure.error}",
                        extra={"instrument": key, "pattern_id": failure.pattern_id},
                    )

                for detection in report.detections:
                    await self.queue.put(detection)
                self.stats["detections_produced"] += len(report.detections)

                if report.detections:
                    logger.debug(
                        f"{len(report.detections)} pattern(s) at {candle.timestamp.isoformat()}: "
                        f"{', '.join(d.pattern_id for d in report.detections)}",
                        extra={"instrument": key},
                    )
        finally:
            self._leave_instrument(key)

        return IngestResult(
            instrument=key,
            timestamp=candle.timestamp,
            accepted=True,
            detections=report.detections,
        )

    async def ingest_record(self, record: Dict[str, Any], instrument: Optional[str] = None) -> IngestResult:
        """Parse a raw candle record and ingest it; invalid records are rejected."""
        try:
            candle = Candle.from_record(record, instrument=instrument)
        except ValueError as e:
            self.stats["candles_invalid"] += 1
            target = instrument or record.get("instrument") or record.get("symbol") or record.get("s") or ""
            reason = f"invalid candle record: {e}"
            logger.warning(reason, extra={"instrument": str(target)})
            return IngestResult.rejected(str(target), reason)
        return await self.ingest(candle.instrument, candle)

    async def _publish_worker(self):
        """Deliver queued detections to every sink in FIFO order."""
        while True:
            try:
                detection = await self.queue.get()
            except asyncio.CancelledError:
                break

            try:
                for sink in self.sinks:
                    try:
                        await sink.publish(detection)
                    except Exception as e:
                        self.stats["sink_errors"] += 1
                        logger.error(
                            f"Sink {type(sink).__name__} failed to publish: {e}",
                            extra={"instrument": detection.instrument, "pattern_id": detection.pattern_id},
                        )
                self.stats["detections_published"] += 1
            finally:
                await self.queue.task_done()

    def sweep_idle(self, now: Optional[float] = None) -> List[str]:
        """Evict idle instrument windows and forget their locks and history."""
        evicted = self.buffers.evict_idle(now)
        for instrument in evicted:
            self.store.forget(instrument)
            if instrument not in self._lock_users:
                self._instrument_locks.pop(instrument, None)
        return evicted

    async def _periodic_sweep(self):
        interval = self.config.buffers.sweep_interval_seconds
        while True:
            try:
                await asyncio.sleep(interval)
                self.sweep_idle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Idle sweep error: {e}")

    def get_detections(
        self,
        instrument: str,
        since: Optional[Any] = None,
        until: Optional[Any] = None,
    ) -> List[Detection]:
        """
        Published detections for an instrument, oldest first.

        Args:
            instrument: Instrument id
            since: Inclusive lower bound on detection end time
            until: Inclusive upper bound on detection end time
        """
        since_dt: Optional[datetime] = parse_timestamp(since) if since is not None else None
        until_dt: Optional[datetime] = parse_timestamp(until) if until is not None else None
        return self.store.query(normalize_instrument(instrument), since_dt, until_dt)

    def get_stats(self) -> Dict[str, Any]:
        """Service, buffer and queue counters."""
        buffer_stats = self.buffers.get_stats()
        return {
            **self.stats,
            "detections_dropped": self.queue.dropped_count,
            "queue_size": self.queue.qsize(),
            "instruments": buffer_stats["instruments"],
            "candles_buffered": buffer_stats["candles_buffered"],
            "windows_evicted": buffer_stats["windows_evicted"],
            "window_capacity": buffer_stats["capacity"],
            "patterns": len(self.catalog),
            "running": self._running,
        }
