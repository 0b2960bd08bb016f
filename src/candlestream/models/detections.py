"""
Detection Models

Output types of the pattern engine:
- Detection: one confidence-scored pattern match over a candle range
- IngestResult: acknowledgment or rejection for one ingested candle
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from .candles import Candle
from .patterns import PatternCategory, PatternDirection


class Detection(BaseModel):
    """
    A pattern matched over the most recent candles of an instrument.

    Detections are immutable and carry no wall-clock fields, so evaluating
    the same window twice produces equal detections.
    """

    instrument: str = Field(
        ...,
        description="Instrument the pattern was found on"
    )
    pattern_id: str = Field(
        ...,
        description="Catalog id of the matched pattern"
    )
    pattern_name: str = Field(
        ...,
        description="Display name of the matched pattern"
    )
    category: PatternCategory = Field(
        ...,
        description="Pattern category"
    )
    direction: PatternDirection = Field(
        default=PatternDirection.NEUTRAL,
        description="Pattern directional bias"
    )
    start_time: datetime = Field(
        ...,
        description="Timestamp of the first supporting candle"
    )
    end_time: datetime = Field(
        ...,
        description="Timestamp of the last supporting candle"
    )
    confidence: Decimal = Field(
        ...,
        description="Match confidence (0-1)",
        ge=Decimal('0'),
        le=Decimal('1')
    )
    candle_indices: Tuple[int, ...] = Field(
        ...,
        description="Stream ordinals of the supporting candles",
        min_length=1
    )
    evidence: Dict[str, Decimal] = Field(
        default_factory=dict,
        description="Measured value for each sub-condition of the rule"
    )

    model_config = ConfigDict(frozen=True)

    @model_validator(mode='after')
    def validate_time_range(self):
        if self.end_time < self.start_time:
            raise ValueError(f"end_time {self.end_time} is before start_time {self.start_time}")
        return self

    @computed_field
    @property
    def window(self) -> int:
        """Number of candles supporting the match."""
        return len(self.candle_indices)

    @property
    def sort_key(self) -> Tuple[Decimal, str]:
        """Confidence descending, then pattern id ascending."""
        return (-self.confidence, self.pattern_id)

    def to_record(self) -> Dict[str, Any]:
        """Serialize to a transport-agnostic, JSON-safe dict."""
        return self.model_dump(mode='json')


class IngestResult(BaseModel):
    """Outcome of ingesting one candle."""

    instrument: str
    timestamp: Optional[datetime] = None
    accepted: bool
    reason: Optional[str] = None
    detections: Tuple[Detection, ...] = ()

    model_config = ConfigDict(frozen=True)

    @classmethod
    def rejected(cls, instrument: str, reason: str, candle: Optional[Candle] = None) -> 'IngestResult':
        return cls(
            instrument=instrument,
            timestamp=candle.timestamp if candle is not None else None,
            accepted=False,
            reason=reason,
        )

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')
