"""
Pattern Catalog Loader

Parses the tabular (CSV) pattern catalog into an immutable PatternCatalog.

Columns:
- required: id, name, category, window, rule
- optional: direction, description, base_confidence, weights
- thresholds: one column per threshold name in THRESHOLD_DOMAINS, filled in
  only where the row's rule family uses it

Any problem is fatal: a missing column or cell raises SchemaError, malformed
or out-of-domain values raise ParseError, and a repeated id raises
DuplicateDefinitionError. Values are never coerced to zero.
"""

import csv
import io
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Union

from ..exceptions import DuplicateDefinitionError, ParseError, SchemaError
from ..models.patterns import (
    PatternCatalog,
    PatternCategory,
    PatternDefinition,
    PatternDirection,
    RuleKind,
)
from .rules import RULE_SPECS, THRESHOLD_DOMAINS, ThresholdDomain


logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('id', 'name', 'category', 'window', 'rule')
DEFAULT_BASE_CONFIDENCE = Decimal('0.5')
DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "candlestick_patterns.csv"


def _cell(record: Mapping[str, Optional[str]], name: str) -> str:
    value = record.get(name)
    return value.strip() if isinstance(value, str) else ""


def _require(record: Mapping[str, Optional[str]], name: str, row: int) -> str:
    value = _cell(record, name)
    if not value:
        raise SchemaError("required value is missing", row=row, field=name)
    return value


def _parse_decimal(raw: str, row: int, field: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ParseError("not a number", row=row, field=field, value=raw)
    if not value.is_finite():
        raise ParseError("number must be finite", row=row, field=field, value=raw)
    return value


def _parse_threshold(raw: str, row: int, field: str) -> Decimal:
    value = _parse_decimal(raw, row, field)
    if value < 0:
        raise ParseError("must be >= 0", row=row, field=field, value=raw)
    if THRESHOLD_DOMAINS[field] == ThresholdDomain.PROPORTION and value > 1:
        raise ParseError("proportion must be within [0, 1]", row=row, field=field, value=raw)
    return value


def _parse_enum(enum_cls, raw: str, row: int, field: str):
    try:
        return enum_cls(raw.lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ParseError(f"must be one of: {allowed}", row=row, field=field, value=raw)


def _parse_window(raw: str, row: int) -> int:
    try:
        window = int(raw)
    except ValueError:
        raise ParseError("not an integer", row=row, field='window', value=raw)
    if window < 1:
        raise ParseError("must be >= 1", row=row, field='window', value=raw)
    return window


def _parse_weights(raw: str, row: int, allowed: Iterable[str]) -> Dict[str, Decimal]:
    """Parse ``name=value;name=value`` weight pairs."""
    allowed = set(allowed)
    weights: Dict[str, Decimal] = {}
    for part in raw.split(';'):
        part = part.strip()
        if not part:
            continue
        name, sep, value = part.partition('=')
        name = name.strip()
        if not sep or not name:
            raise ParseError("expected name=value pairs", row=row, field='weights', value=part)
        if name not in allowed:
            raise ParseError(
                f"weight names a threshold the rule does not use ({', '.join(sorted(allowed))})",
                row=row, field='weights', value=name,
            )
        weight = _parse_decimal(value.strip(), row, 'weights')
        if weight < 0:
            raise ParseError("weights must be >= 0", row=row, field='weights', value=part)
        weights[name] = weight
    return weights


def parse_definition(record: Mapping[str, Optional[str]], row: int) -> PatternDefinition:
    """Validate one catalog record and build its PatternDefinition."""
    pattern_id = _require(record, 'id', row)
    name = _require(record, 'name', row)
    category = _parse_enum(PatternCategory, _require(record, 'category', row), row, 'category')
    window = _parse_window(_require(record, 'window', row), row)
    rule = _parse_enum(RuleKind, _require(record, 'rule', row), row, 'rule')

    direction_raw = _cell(record, 'direction')
    direction = (
        _parse_enum(PatternDirection, direction_raw, row, 'direction')
        if direction_raw else PatternDirection.NEUTRAL
    )

    spec = RULE_SPECS[rule]
    if window != spec.window:
        raise ParseError(
            f"rule '{rule.value}' evaluates exactly {spec.window} candle(s)",
            row=row, field='window', value=str(window),
        )
    if spec.directional and direction == PatternDirection.NEUTRAL:
        raise ParseError(
            f"rule '{rule.value}' needs a bullish or bearish direction",
            row=row, field='direction', value=direction_raw,
        )

    thresholds: Dict[str, Decimal] = {}
    for threshold in spec.required:
        thresholds[threshold] = _parse_threshold(_require(record, threshold, row), row, threshold)
    for threshold, default in spec.optional.items():
        raw = _cell(record, threshold)
        thresholds[threshold] = _parse_threshold(raw, row, threshold) if raw else default

    # Extra threshold cells must still be well-formed even if unused
    for threshold in THRESHOLD_DOMAINS:
        raw = _cell(record, threshold)
        if raw and threshold not in thresholds:
            _parse_threshold(raw, row, threshold)
            logger.debug(f"Row {row} ({pattern_id}): ignoring '{threshold}', unused by rule '{rule.value}'")

    base_raw = _cell(record, 'base_confidence')
    if base_raw:
        base_confidence = _parse_decimal(base_raw, row, 'base_confidence')
        if not (Decimal('0') < base_confidence <= Decimal('1')):
            raise ParseError("must be within (0, 1]", row=row, field='base_confidence', value=base_raw)
    else:
        base_confidence = DEFAULT_BASE_CONFIDENCE

    weights = {threshold: Decimal('1') for threshold in thresholds}
    weights_raw = _cell(record, 'weights')
    if weights_raw:
        weights.update(_parse_weights(weights_raw, row, thresholds))
    if sum(weights.values()) == 0:
        raise ParseError("at least one weight must be positive", row=row, field='weights', value=weights_raw)

    return PatternDefinition(
        id=pattern_id,
        name=name,
        category=category,
        direction=direction,
        window=window,
        rule=rule,
        thresholds=thresholds,
        weights=weights,
        base_confidence=base_confidence,
        description=_cell(record, 'description'),
    )


def parse_catalog(
    records: Iterable[Mapping[str, Optional[str]]],
    columns: Optional[Iterable[str]] = None,
    source: Optional[str] = None,
) -> PatternCatalog:
    """
    Build a catalog from already-split records.

    Args:
        records: One mapping per data row, keyed by column name
        columns: Header columns, when known, used to report missing columns
        source: Description of where the records came from

    Returns:
        Immutable PatternCatalog ordered by (window, id)
    """
    columns = [c.strip() for c in columns] if columns is not None else None
    if columns is not None:
        for required in REQUIRED_COLUMNS:
            if required not in columns:
                raise SchemaError("required column is missing", row=0, field=required)

    definitions: List[PatternDefinition] = []
    first_seen: Dict[str, int] = {}

    row = 0
    for record in records:
        record = {(k.strip() if isinstance(k, str) else k): v for k, v in record.items()}
        if not any(isinstance(v, str) and v.strip() for v in record.values()):
            continue
        row += 1

        definition = parse_definition(record, row)
        if definition.id in first_seen:
            raise DuplicateDefinitionError(definition.id, row=row, first_row=first_seen[definition.id])
        first_seen[definition.id] = row
        definitions.append(definition)

    catalog = PatternCatalog(definitions=tuple(definitions), source=source)
    logger.info(
        f"Loaded {len(catalog)} candlestick patterns from {source or 'records'} "
        f"(max window {catalog.max_window})"
    )
    return catalog


def parse_catalog_text(text: str, source: Optional[str] = None) -> PatternCatalog:
    """Parse catalog CSV text."""
    reader = csv.DictReader(io.StringIO(text))
    return parse_catalog(reader, columns=reader.fieldnames or [], source=source or "<text>")


def load_catalog(path: Optional[Union[str, Path]] = None) -> PatternCatalog:
    """
    Load the pattern catalog from a CSV file.

    Args:
        path: CSV path; defaults to the packaged candlestick_patterns.csv

    Returns:
        Immutable PatternCatalog
    """
    catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH
    # utf-8-sig drops a leading byte order mark from the header
    with open(catalog_path, 'r', newline='', encoding='utf-8-sig') as f:
        try:
            reader = csv.DictReader(f)
            return parse_catalog(reader, columns=reader.fieldnames or [], source=str(catalog_path))
        except UnicodeDecodeError as e:
            raise ParseError(f"{catalog_path} is not valid UTF-8: {e.reason} at byte {e.start}")
        except csv.Error as e:
            raise ParseError(f"malformed CSV in {catalog_path}: {e}")


def describe_catalog(catalog: PatternCatalog) -> Dict[str, object]:
    """Summary of a catalog: counts per category, window and rule family."""
    by_category: Dict[str, int] = {}
    by_window: Dict[int, int] = {}
    by_rule: Dict[str, int] = {}
    for definition in catalog:
        by_category[definition.category.value] = by_category.get(definition.category.value, 0) + 1
        by_window[definition.window] = by_window.get(definition.window, 0) + 1
        by_rule[definition.rule.value] = by_rule.get(definition.rule.value, 0) + 1

    return {
        "source": catalog.source,
        "total_patterns": len(catalog),
        "max_window": catalog.max_window,
        "by_category": by_category,
        "by_window": by_window,
        "by_rule": by_rule,
    }
