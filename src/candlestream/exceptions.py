"""
Exception hierarchy for the candlestream engine.

Catalog errors are fatal and abort startup. OutOfOrderError is raised per
candle and leaves the instrument's window untouched.
"""

from datetime import datetime
from typing import Optional


class CandlestreamError(Exception):
    """Base class for all candlestream errors."""


class CatalogError(CandlestreamError, ValueError):
    """
    Pattern catalog could not be loaded.

    Data rows are numbered from 1; row 0 is the header.
    """

    def __init__(self, message: str, row: Optional[int] = None, field: Optional[str] = None):
        self.row = row
        self.field = field
        location = []
        if row == 0:
            location.append("header")
        elif row is not None:
            location.append(f"row {row}")
        if field is not None:
            location.append(f"field '{field}'")
        prefix = f"{', '.join(location)}: " if location else ""
        super().__init__(f"{prefix}{message}")


class SchemaError(CatalogError):
    """A required column or cell is missing."""


class ParseError(CatalogError):
    """A cell holds text that cannot be parsed or is outside its domain."""

    def __init__(self, message: str, row: Optional[int] = None, field: Optional[str] = None, value: Optional[str] = None):
        self.value = value
        if value is not None:
            message = f"{message} (got {value!r})"
        super().__init__(message, row=row, field=field)


class DuplicateDefinitionError(CatalogError):
    """Two catalog rows share the same pattern id."""

    def __init__(self, pattern_id: str, row: int, first_row: int):
        self.pattern_id = pattern_id
        self.first_row = first_row
        super().__init__(
            f"duplicate pattern id '{pattern_id}' (first defined on row {first_row})",
            row=row,
            field="id",
        )


class OutOfOrderError(CandlestreamError):
    """Candle timestamp is not strictly after the instrument's last candle."""

    def __init__(self, instrument: str, timestamp: datetime, last_timestamp: datetime):
        self.instrument = instrument
        self.timestamp = timestamp
        self.last_timestamp = last_timestamp
        super().__init__(
            f"[{instrument}] candle at {timestamp.isoformat()} is not after "
            f"last recorded candle at {last_timestamp.isoformat()}"
        )
