"""
Candlestream: Candlestick Pattern Recognition Engine

Ingests OHLCV candles per instrument, keeps a bounded rolling window for
each, and matches every window against a catalog of candlestick patterns,
publishing confidence-scored detections.
"""

__version__ = "0.1.0"
__author__ = "Candlestream Team"
__description__ = "Streaming candlestick pattern recognition engine"

# Package-level imports for convenience
from .config import Config
from .logger import get_logger, setup_logger
from .models import Candle, Detection, IngestResult, PatternCatalog
from .patterns import load_catalog, match
from .pipeline import DetectionService

__all__ = [
    "Config",
    "get_logger",
    "setup_logger",
    "Candle",
    "Detection",
    "IngestResult",
    "PatternCatalog",
    "load_catalog",
    "match",
    "DetectionService",
    "__version__",
]
