"""
Candlestream Models Package

Data models for the pattern engine: candles and window snapshots, the
pattern catalog, and detections.
"""

from .candles import (
    Candle,
    CandleMetrics,
    WindowSnapshot,
    measure,
    normalize_instrument,
)

from .patterns import (
    PatternCategory,
    PatternDirection,
    RuleKind,
    PatternDefinition,
    PatternCatalog,
)

from .detections import (
    Detection,
    IngestResult,
)

__all__ = [
    # Candle Models
    "Candle",
    "CandleMetrics",
    "WindowSnapshot",
    "measure",
    "normalize_instrument",

    # Catalog Models
    "PatternCategory",
    "PatternDirection",
    "RuleKind",
    "PatternDefinition",
    "PatternCatalog",

    # Detection Models
    "Detection",
    "IngestResult",
]
