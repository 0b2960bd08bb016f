"""
Time Series Buffer Manager

Keeps a bounded rolling window of recent candles per instrument.

- Windows are created lazily on an instrument's first candle and hold at most
  ``capacity`` candles; the oldest candle is dropped on overflow.
- A candle whose timestamp is not strictly after the instrument's last one
  is rejected with OutOfOrderError and the window is left untouched.
- Appends return a WindowSnapshot value copy.
- ``evict_idle`` removes windows that have received no candle within the
  idle time-to-live.

The instrument map lock is only taken to insert or remove windows. Appends
lock the individual window, so different instruments never contend.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from ..exceptions import OutOfOrderError
from ..models.candles import Candle, WindowSnapshot, normalize_instrument


logger = logging.getLogger(__name__)


class InstrumentWindow:
    """Fixed-capacity, strictly time-ordered candle buffer for one instrument."""

    def __init__(self, instrument: str, capacity: int, created_at: float):
        self.instrument = instrument
        self.capacity = capacity
        self.lock = threading.Lock()
        self.last_seen = created_at
        self.evicted = False
        self._candles: Deque[Candle] = deque(maxlen=capacity)
        self._appended = 0

    def __len__(self) -> int:
        return len(self._candles)

    @property
    def last_candle(self) -> Optional[Candle]:
        return self._candles[-1] if self._candles else None

    @property
    def appended(self) -> int:
        """Total candles ever accepted into this window."""
        return self._appended

    def append(self, candle: Candle, now: float) -> WindowSnapshot:
        """Append a candle; caller must hold ``lock``."""
        last = self.last_candle
        if last is not None and candle.timestamp <= last.timestamp:
            raise OutOfOrderError(self.instrument, candle.timestamp, last.timestamp)

        self._candles.append(candle)
        self._appended += 1
        self.last_seen = now
        return self.snapshot()

    def snapshot(self) -> WindowSnapshot:
        return WindowSnapshot(
            instrument=self.instrument,
            candles=tuple(self._candles),
            start_index=self._appended - len(self._candles),
            capacity=self.capacity,
        )


class WindowBufferManager:
    """
    Map of instrument id to bounded InstrumentWindow.

    Args:
        capacity: Maximum candles per window (the catalog's longest pattern)
        idle_ttl: Seconds without a candle after which a window is evicted
        clock: Monotonic time source in seconds
    """

    def __init__(
        self,
        capacity: int,
        idle_ttl: float = 3600.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        if capacity < 1:
            raise ValueError(f"Window capacity must be >= 1, got {capacity}")
        if idle_ttl <= 0:
            raise ValueError(f"Idle TTL must be positive, got {idle_ttl}")

        self.capacity = capacity
        self.idle_ttl = idle_ttl
        self._clock = clock or time.monotonic
        self._windows: Dict[str, InstrumentWindow] = {}
        self._map_lock = threading.Lock()
        self._stats_lock = threading.Lock()

        self.stats = {
            "candles_accepted": 0,
            "candles_rejected": 0,
            "windows_created": 0,
            "windows_evicted": 0,
        }

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, instrument: object) -> bool:
        return isinstance(instrument, str) and instrument.upper() in self._windows

    def _bump(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1

    def _get_or_create(self, instrument: str) -> InstrumentWindow:
        window = self._windows.get(instrument)
        if window is not None:
            return window

        with self._map_lock:
            window = self._windows.get(instrument)
            if window is None:
                window = InstrumentWindow(instrument, self.capacity, self._clock())
                self._windows[instrument] = window
                self._bump("windows_created")
                logger.debug(f"Created window for {instrument} (capacity {self.capacity})")
            return window

    def append_candle(self, instrument: str, candle: Candle) -> WindowSnapshot:
        """
        Append a candle to an instrument's window.

        Args:
            instrument: Instrument id the candle is addressed to
            candle: Candle to record

        Returns:
            Snapshot of the window after the append

        Raises:
            OutOfOrderError: Timestamp is not after the last recorded candle
            ValueError: Candle belongs to a different instrument
        """
        key = normalize_instrument(instrument)
        if candle.instrument != key:
            raise ValueError(f"Candle for {candle.instrument} addressed to {key}")

        while True:
            window = self._get_or_create(key)
            with window.lock:
                if window.evicted:
                    # Lost a race with the idle sweep; retry on a fresh window
                    continue
                try:
                    snapshot = window.append(candle, self._clock())
                except OutOfOrderError:
                    self._bump("candles_rejected")
                    raise
            self._bump("candles_accepted")
            return snapshot

    def snapshot(self, instrument: str) -> Optional[WindowSnapshot]:
        """Current snapshot of an instrument's window, if it has one."""
        window = self._windows.get(normalize_instrument(instrument))
        if window is None:
            return None
        with window.lock:
            return window.snapshot()

    def instruments(self) -> List[str]:
        return sorted(self._windows)

    def evict_idle(self, now: Optional[float] = None) -> List[str]:
        """
        Remove windows with no candle for longer than the idle TTL.

        Windows currently being appended to are skipped and picked up by a
        later sweep.

        Returns:
            Evicted instrument ids, sorted
        """
        now = self._clock() if now is None else now
        evicted: List[str] = []

        with self._map_lock:
            for instrument, window in list(self._windows.items()):
                if now - window.last_seen <= self.idle_ttl:
                    continue
                if not window.lock.acquire(blocking=False):
                    continue
                try:
                    window.evicted = True
                    del self._windows[instrument]
                finally:
                    window.lock.release()
                evicted.append(instrument)

            with self._stats_lock:
                self.stats["windows_evicted"] += len(evicted)

        if evicted:
            logger.info(f"Evicted {len(evicted)} idle window(s): {', '.join(sorted(evicted))}")
        return sorted(evicted)

    def get_stats(self) -> Dict[str, int]:
        """Counters plus current instrument and candle totals."""
        with self._map_lock:
            windows = list(self._windows.values())
        with self._stats_lock:
            stats = dict(self.stats)
        stats["instruments"] = len(windows)
        stats["candles_buffered"] = sum(len(w) for w in windows)
        stats["capacity"] = self.capacity
        return stats
