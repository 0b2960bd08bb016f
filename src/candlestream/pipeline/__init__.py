"""
Streaming pipeline: per-instrument window buffers, the asyncio detection
service and detection publication.
"""

from .buffers import InstrumentWindow, WindowBufferManager
from .publication import CallbackSink, DetectionQueue, DetectionSink, DetectionStore
from .service import DetectionService

__all__ = [
    "InstrumentWindow",
    "WindowBufferManager",
    "CallbackSink",
    "DetectionQueue",
    "DetectionSink",
    "DetectionStore",
    "DetectionService",
]
