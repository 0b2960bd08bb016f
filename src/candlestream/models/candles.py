"""
Candle Models

This module contains the price-bar types the engine works on:
- Candle: immutable OHLCV bar for one instrument with comprehensive validation
- CandleMetrics: body/range/shadow measurements of a single candle
- WindowSnapshot: value copy of an instrument's most recent candles

Prices are held as Decimal and quantized to 8 places so that ratios computed
from them are reproducible across runs.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


INSTRUMENT_PATTERN = re.compile(r"^[A-Z0-9._:/-]{1,32}$")
PRICE_QUANTUM = Decimal('0.00000001')
ZERO = Decimal('0')


def normalize_instrument(value: str) -> str:
    """Normalize an instrument identifier to its canonical upper-case form."""
    if not isinstance(value, str):
        raise ValueError(f"Instrument must be a string: {value!r}")

    normalized = value.strip().upper()
    if not INSTRUMENT_PATTERN.match(normalized):
        raise ValueError(
            f"Instrument must be 1-32 characters of A-Z, 0-9 or '._:/-': {value!r}"
        )
    return normalized


def parse_timestamp(v: Any) -> datetime:
    """Parse a timestamp into a timezone-aware UTC datetime."""
    if isinstance(v, str):
        v = v.strip()
        if v.lstrip('-').isdigit():
            v = int(v)
        else:
            # Parse ISO format string
            if v.endswith('Z'):
                v = v[:-1] + '+00:00'
            v = datetime.fromisoformat(v)

    if isinstance(v, bool):
        raise ValueError(f"Invalid timestamp format: {type(v)}")
    if isinstance(v, (int, float)):
        # Epoch milliseconds
        try:
            dt = datetime.fromtimestamp(v / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValueError(f"Timestamp out of range: {v!r}")
    elif isinstance(v, datetime):
        dt = v
    else:
        raise ValueError(f"Invalid timestamp format: {type(v)}")

    # Ensure UTC timezone
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    elif dt.tzinfo != timezone.utc:
        dt = dt.astimezone(timezone.utc)

    return dt


class Candle(BaseModel):
    """
    OHLCV candle for a single instrument.

    Immutable once constructed. Includes validation for:
    - Price relationships (high >= low, high >= open/close, low <= open/close)
    - Positive prices and non-negative volume
    - Proper decimal precision
    """

    instrument: str = Field(
        ...,
        description="Instrument identifier (e.g., 'BTC', 'EUR/USD')"
    )
    timestamp: datetime = Field(
        ...,
        description="Candle open time in UTC"
    )
    open: Decimal = Field(
        ...,
        description="Opening price",
        gt=0
    )
    high: Decimal = Field(
        ...,
        description="Highest price",
        gt=0
    )
    low: Decimal = Field(
        ...,
        description="Lowest price",
        gt=0
    )
    close: Decimal = Field(
        ...,
        description="Closing price",
        gt=0
    )
    volume: Decimal = Field(
        default=ZERO,
        description="Traded volume",
        ge=0
    )

    model_config = ConfigDict(frozen=True)

    @field_validator('instrument', mode='before')
    @classmethod
    def validate_instrument(cls, v) -> str:
        """Validate and normalize instrument format."""
        return normalize_instrument(v)

    @field_validator('timestamp', mode='before')
    @classmethod
    def validate_timestamp(cls, v) -> datetime:
        """Ensure timestamp is timezone-aware UTC."""
        return parse_timestamp(v)

    @field_validator('open', 'high', 'low', 'close', 'volume', mode='before')
    @classmethod
    def validate_price_fields(cls, v) -> Decimal:
        """Convert and validate price/volume fields."""
        if isinstance(v, bool):
            raise ValueError("Boolean is not a valid price")
        if isinstance(v, str):
            v = v.strip()

        try:
            decimal_val = Decimal(str(v))
            if not decimal_val.is_finite():
                raise ValueError(f"Price fields must be finite: {v!r}")
            return decimal_val.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)
        except ArithmeticError:
            raise ValueError(f"Invalid numeric value: {v!r}")

    @model_validator(mode='after')
    def validate_ohlc_relationships(self):
        """Validate OHLC price relationships."""
        if self.high < self.low:
            raise ValueError(f"High price {self.high} must be >= low price {self.low}")
        if self.high < max(self.open, self.close):
            raise ValueError(f"High price {self.high} must be >= max(open, close)")
        if self.low > min(self.open, self.close):
            raise ValueError(f"Low price {self.low} must be <= min(open, close)")
        return self

    @classmethod
    def from_record(cls, data: Dict[str, Any], instrument: Optional[str] = None) -> 'Candle':
        """
        Create a Candle from a loosely-keyed record.

        Accepts the long keys (``open``, ``high``...) or the short exchange
        form ``{'t', 's', 'o', 'h', 'l', 'c', 'v'}``.
        """
        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data and data[key] not in (None, ''):
                    return data[key]
            return default

        return cls(
            instrument=instrument or pick('instrument', 'symbol', 's'),
            timestamp=pick('timestamp', 'time', 't'),
            open=pick('open', 'o'),
            high=pick('high', 'h'),
            low=pick('low', 'l'),
            close=pick('close', 'c'),
            volume=pick('volume', 'v', default=ZERO),
        )

    def to_record(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dict."""
        return {
            'instrument': self.instrument,
            'timestamp': self.timestamp.isoformat(),
            'open': str(self.open),
            'high': str(self.high),
            'low': str(self.low),
            'close': str(self.close),
            'volume': str(self.volume),
        }

    @property
    def body(self) -> Decimal:
        """Signed body (close - open); positive for bullish candles."""
        return self.close - self.open

    @property
    def body_size(self) -> Decimal:
        """Absolute body size."""
        return abs(self.close - self.open)

    @property
    def body_top(self) -> Decimal:
        return max(self.open, self.close)

    @property
    def body_bottom(self) -> Decimal:
        return min(self.open, self.close)

    @property
    def range(self) -> Decimal:
        """High-low range."""
        return self.high - self.low

    @property
    def upper_shadow(self) -> Decimal:
        """Upper shadow length, clamped to >= 0."""
        return max(ZERO, self.high - self.body_top)

    @property
    def lower_shadow(self) -> Decimal:
        """Lower shadow length, clamped to >= 0."""
        return max(ZERO, self.body_bottom - self.low)

    @property
    def is_bullish(self) -> bool:
        """Check if candle is bullish (close > open)."""
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        """Check if candle is bearish (close < open)."""
        return self.close < self.open


@dataclass(frozen=True)
class CandleMetrics:
    """Geometric measurements of one candle, normalized by its range."""

    body: Decimal
    range: Decimal
    body_ratio: Decimal
    upper_shadow: Decimal
    lower_shadow: Decimal
    upper_shadow_ratio: Decimal
    lower_shadow_ratio: Decimal
    is_doji: bool

    @property
    def body_fraction(self) -> Decimal:
        """Unsigned body ratio."""
        return abs(self.body_ratio)


def measure(candle: Candle) -> CandleMetrics:
    """
    Measure body, range and shadows of a candle.

    A zero-range candle (high == low) is flagged as doji and every ratio is
    exactly zero instead of dividing by the range.
    """
    body = candle.body
    total_range = candle.range
    upper = candle.upper_shadow
    lower = candle.lower_shadow

    if total_range == 0:
        return CandleMetrics(
            body=body,
            range=total_range,
            body_ratio=ZERO,
            upper_shadow=upper,
            lower_shadow=lower,
            upper_shadow_ratio=ZERO,
            lower_shadow_ratio=ZERO,
            is_doji=True,
        )

    return CandleMetrics(
        body=body,
        range=total_range,
        body_ratio=body / total_range,
        upper_shadow=upper,
        lower_shadow=lower,
        upper_shadow_ratio=upper / total_range,
        lower_shadow_ratio=lower / total_range,
        is_doji=False,
    )


@dataclass(frozen=True)
class WindowSnapshot:
    """
    Immutable copy of an instrument's rolling window.

    ``start_index`` is the stream ordinal (0-based count of accepted candles
    for the instrument) of ``candles[0]``.
    """

    instrument: str
    candles: Tuple[Candle, ...]
    start_index: int = 0
    capacity: int = 0

    def __len__(self) -> int:
        return len(self.candles)

    @property
    def end_index(self) -> int:
        """Stream ordinal of the most recent candle."""
        return self.start_index + len(self.candles) - 1

    @property
    def last_timestamp(self) -> Optional[datetime]:
        return self.candles[-1].timestamp if self.candles else None

    def tail(self, count: int) -> Tuple[Tuple[Candle, ...], Tuple[int, ...]]:
        """Return the most recent ``count`` candles with their stream ordinals."""
        if count < 1 or count > len(self.candles):
            raise ValueError(f"Cannot take {count} candles from a window of {len(self.candles)}")
        offset = len(self.candles) - count
        candles = self.candles[offset:]
        indices = tuple(range(self.start_index + offset, self.start_index + len(self.candles)))
        return candles, indices

    @classmethod
    def of(cls, candles, instrument: Optional[str] = None) -> 'WindowSnapshot':
        """Build a snapshot directly from a sequence of candles."""
        candles = tuple(candles)
        if instrument is None:
            if not candles:
                raise ValueError("Instrument is required for an empty snapshot")
            instrument = candles[0].instrument
        return cls(instrument=instrument, candles=candles, start_index=0, capacity=len(candles))
