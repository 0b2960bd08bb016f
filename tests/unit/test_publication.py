"""
Unit tests for the detection queue and sinks.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List

import pytest

from candlestream.models.detections import Detection
from candlestream.models.patterns import PatternCategory, PatternDirection
from candlestream.pipeline.publication import (
    CallbackSink,
    DetectionQueue,
    DetectionStore,
)


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def create_detection(minute: int = 0, instrument: str = "BTC", pattern_id: str = "doji") -> Detection:
    timestamp = BASE_TIME + timedelta(minutes=minute)
    return Detection(
        instrument=instrument,
        pattern_id=pattern_id,
        pattern_name=pattern_id.title(),
        category=PatternCategory.NEUTRAL,
        direction=PatternDirection.NEUTRAL,
        start_time=timestamp,
        end_time=timestamp,
        confidence=Decimal("0.75"),
        candle_indices=(minute,),
    )


class TestDetectionModel:
    """Test detection validation and serialization."""

    def test_to_record_is_json_safe(self):
        record = create_detection(minute=2).to_record()

        assert record["confidence"] == "0.75"
        assert record["end_time"] == "2024-01-01T00:02:00Z"
        assert record["category"] == "neutral"
        assert record["candle_indices"] == [2]
        assert record["window"] == 1

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            Detection(
                instrument="BTC", pattern_id="x", pattern_name="X", category=PatternCategory.NEUTRAL,
                start_time=BASE_TIME, end_time=BASE_TIME - timedelta(minutes=1),
                confidence=Decimal("0.5"), candle_indices=(0,),
            )

    def test_confidence_above_one_rejected(self):
        with pytest.raises(ValueError):
            Detection(
                instrument="BTC", pattern_id="x", pattern_name="X", category=PatternCategory.NEUTRAL,
                start_time=BASE_TIME, end_time=BASE_TIME,
                confidence=Decimal("1.5"), candle_indices=(0,),
            )


@pytest.mark.asyncio
class TestDetectionQueue:
    """Test the bounded publication queue."""

    async def test_fifo_order(self):
        queue = DetectionQueue(max_size=10)
        for minute in range(3):
            await queue.put(create_detection(minute))

        received = [await queue.get() for _ in range(3)]

        assert [d.end_time.minute for d in received] == [0, 1, 2]
        assert queue.empty()

    async def test_overflow_drops_oldest(self):
        queue = DetectionQueue(max_size=2)

        assert await queue.put(create_detection(0))
        assert await queue.put(create_detection(1))
        assert not await queue.put(create_detection(2))

        assert queue.dropped_count == 1
        assert queue.qsize() == 2
        assert (await queue.get()).end_time.minute == 1
        assert (await queue.get()).end_time.minute == 2
        assert queue.get_stats()["enqueued_count"] == 3

    async def test_get_waits_for_put(self):
        queue = DetectionQueue()
        getter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)
        assert not getter.done()

        await queue.put(create_detection(4))
        detection = await asyncio.wait_for(getter, timeout=1)

        assert detection.end_time.minute == 4

    async def test_join_waits_for_task_done(self):
        queue = DetectionQueue()
        await queue.put(create_detection(0))
        joined = asyncio.create_task(queue.join())

        await queue.get()
        await asyncio.sleep(0)
        assert not joined.done()

        await queue.task_done()
        await asyncio.wait_for(joined, timeout=1)

    async def test_join_does_not_wait_for_dropped(self):
        queue = DetectionQueue(max_size=1)
        await queue.put(create_detection(0))
        await queue.put(create_detection(1))

        await queue.get()
        await queue.task_done()
        await asyncio.wait_for(queue.join(), timeout=1)

    async def test_task_done_without_work(self):
        with pytest.raises(ValueError):
            await DetectionQueue().task_done()

    async def test_invalid_size(self):
        with pytest.raises(ValueError):
            DetectionQueue(max_size=0)


@pytest.mark.asyncio
class TestSinks:
    """Test the built-in sinks."""

    async def test_store_keeps_bounded_history(self):
        store = DetectionStore(history=2)
        for minute in range(3):
            await store.publish(create_detection(minute))

        assert [d.end_time.minute for d in store.query("BTC")] == [1, 2]
        assert len(store) == 2

    async def test_store_time_filter(self):
        store = DetectionStore()
        for minute in range(5):
            await store.publish(create_detection(minute))
        await store.publish(create_detection(3, instrument="ETH"))

        window = store.query(
            "btc",
            since=BASE_TIME + timedelta(minutes=1),
            until=BASE_TIME + timedelta(minutes=3),
        )

        assert [d.end_time.minute for d in window] == [1, 2, 3]
        assert store.instruments() == ["BTC", "ETH"]
        assert store.query("SOL") == []

    async def test_store_forget(self):
        store = DetectionStore()
        for minute in range(3):
            await store.publish(create_detection(minute))
        await store.publish(create_detection(0, instrument="ETH"))

        assert store.forget("btc") == 3
        assert store.forget("BTC") == 0
        assert store.query("BTC") == []
        assert store.instruments() == ["ETH"]

    async def test_callback_sink_sync(self):
        received: List[Detection] = []
        sink = CallbackSink(received.append)

        await sink.publish(create_detection())

        assert len(received) == 1

    async def test_callback_sink_async(self):
        received: List[Detection] = []

        async def collect(detection):
            received.append(detection)

        await CallbackSink(collect).publish(create_detection())

        assert len(received) == 1
