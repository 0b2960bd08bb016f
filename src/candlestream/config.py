"""
Configuration management for the Candlestream pattern engine.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


class CatalogConfig(BaseModel):
    """Pattern catalog location."""

    path: Optional[str] = Field(default=None, description="Catalog CSV; packaged catalog when unset")


class BufferConfig(BaseModel):
    """Per-instrument window buffer settings."""

    idle_ttl_seconds: float = Field(default=3600.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    capacity_override: Optional[int] = Field(default=None, ge=1)


class MatcherConfig(BaseModel):
    """Pattern matcher settings."""

    min_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    worker_threads: int = Field(default=0, ge=0, le=64)


class PublicationConfig(BaseModel):
    """Detection publication settings."""

    queue_size: int = Field(default=10000, ge=1)
    history_per_instrument: int = Field(default=1000, ge=1)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO")
    file_path: Optional[str] = Field(default=None)
    max_size: str = Field(default="10MB")
    backup_count: int = Field(default=5, ge=0)

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        level = v.upper().strip()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else None


class Config(BaseModel):
    """Main configuration class."""

    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    buffers: BufferConfig = Field(default_factory=BufferConfig)
    matcher: MatcherConfig = Field(default_factory=MatcherConfig)
    publication: PublicationConfig = Field(default_factory=PublicationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load_from_env(cls, env_file: Optional[str] = None) -> "Config":
        """Load configuration from environment variables."""
        if env_file:
            load_dotenv(env_file)
        else:
            # Try to load from .env file in current directory
            env_path = Path(".env")
            if env_path.exists():
                load_dotenv(env_path)

        catalog = CatalogConfig(
            path=_env_optional("CANDLESTREAM_CATALOG_PATH")
        )

        capacity = _env_optional("WINDOW_CAPACITY")
        buffers = BufferConfig(
            idle_ttl_seconds=float(os.getenv("IDLE_TTL_SECONDS", "3600")),
            sweep_interval_seconds=float(os.getenv("SWEEP_INTERVAL_SECONDS", "60")),
            capacity_override=int(capacity) if capacity else None
        )

        matcher = MatcherConfig(
            min_confidence=float(os.getenv("MIN_CONFIDENCE", "0")),
            worker_threads=int(os.getenv("MATCHER_WORKERS", "0"))
        )

        publication = PublicationConfig(
            queue_size=int(os.getenv("PUBLISH_QUEUE_SIZE", "10000")),
            history_per_instrument=int(os.getenv("DETECTION_HISTORY", "1000"))
        )

        logging = LoggingConfig(
            level=os.getenv("LOG_LEVEL", "INFO"),
            file_path=_env_optional("LOG_FILE_PATH"),
            max_size=os.getenv("LOG_MAX_SIZE", "10MB"),
            backup_count=int(os.getenv("LOG_BACKUP_COUNT", "5"))
        )

        return cls(
            catalog=catalog,
            buffers=buffers,
            matcher=matcher,
            publication=publication,
            logging=logging
        )

    def summary(self) -> Dict[str, Any]:
        """Flattened view of the effective settings."""
        return {
            "catalog_path": self.catalog.path or "(packaged)",
            "idle_ttl_seconds": self.buffers.idle_ttl_seconds,
            "sweep_interval_seconds": self.buffers.sweep_interval_seconds,
            "capacity_override": self.buffers.capacity_override,
            "min_confidence": self.matcher.min_confidence,
            "worker_threads": self.matcher.worker_threads,
            "queue_size": self.publication.queue_size,
            "history_per_instrument": self.publication.history_per_instrument,
            "log_level": self.logging.level,
            "log_file": self.logging.file_path,
        }
