"""
Pytest configuration and fixtures for Candlestream tests.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Generator, Union

import pytest
from unittest.mock import patch

from candlestream.config import Config
from candlestream.models.candles import Candle
from candlestream.models.patterns import PatternCatalog
from candlestream.patterns.catalog import load_catalog


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)

Number = Union[str, int, float, Decimal]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_candle(
    open_price: Number,
    high: Number,
    low: Number,
    close: Number,
    minute: int = 0,
    instrument: str = "BTC",
    volume: Number = "1",
) -> Candle:
    """Create a one-minute candle ``minute`` minutes after BASE_TIME."""
    return Candle(
        instrument=instrument,
        timestamp=BASE_TIME + timedelta(minutes=minute),
        open=Decimal(str(open_price)),
        high=Decimal(str(high)),
        low=Decimal(str(low)),
        close=Decimal(str(close)),
        volume=Decimal(str(volume)),
    )


@pytest.fixture
def candle_factory() -> Callable[..., Candle]:
    return make_candle


@pytest.fixture(scope="session")
def catalog() -> PatternCatalog:
    """The packaged pattern catalog."""
    return load_catalog()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def mock_env_vars() -> Generator[dict, None, None]:
    """Mock environment variables for testing."""
    test_env = {
        "IDLE_TTL_SECONDS": "120",
        "SWEEP_INTERVAL_SECONDS": "5",
        "MIN_CONFIDENCE": "0.7",
        "MATCHER_WORKERS": "2",
        "PUBLISH_QUEUE_SIZE": "50",
        "DETECTION_HISTORY": "20",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, test_env, clear=False):
        yield test_env


@pytest.fixture
def test_config() -> Config:
    """Configuration with a short idle TTL and inline matching."""
    config = Config()
    config.buffers.idle_ttl_seconds = 60.0
    config.buffers.sweep_interval_seconds = 3600.0
    return config
