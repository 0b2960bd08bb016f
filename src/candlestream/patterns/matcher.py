"""
Pattern Matcher

Evaluates a window snapshot against the pattern catalog. Matching is a pure
function of (window, catalog, min_confidence): it performs no I/O, keeps no
state and returns the same ordered detections every time it is called with
the same inputs, so it is safe to call from any thread.

A failure inside one pattern's rule is recorded in the MatchReport and the
remaining patterns are still evaluated.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from typing import List, Optional, Tuple

from ..models.candles import WindowSnapshot
from ..models.detections import Detection
from ..models.patterns import PatternCatalog, PatternDefinition
from .rules import combine_scores, evaluate_rule


CONFIDENCE_QUANTUM = Decimal('0.000001')
ONE = Decimal('1')


@dataclass(frozen=True)
class PatternFailure:
    """A pattern whose rule raised while evaluating a window."""
    pattern_id: str
    error: str


@dataclass(frozen=True)
class MatchReport:
    """Detections for one window plus any per-pattern failures."""
    instrument: str
    detections: Tuple[Detection, ...] = ()
    failures: Tuple[PatternFailure, ...] = ()
    evaluated: int = 0

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


def quantize_confidence(value: Decimal) -> Decimal:
    """Round up to 6 places so satisfied matches never round down to zero."""
    return min(ONE, value.quantize(CONFIDENCE_QUANTUM, rounding=ROUND_CEILING))


def _detect(snapshot: WindowSnapshot, definition: PatternDefinition) -> Optional[Detection]:
    candles, indices = snapshot.tail(definition.window)
    outcome = evaluate_rule(candles, definition)
    if outcome is None:
        return None

    return Detection(
        instrument=snapshot.instrument,
        pattern_id=definition.id,
        pattern_name=definition.name,
        category=definition.category,
        direction=definition.direction,
        start_time=candles[0].timestamp,
        end_time=candles[-1].timestamp,
        confidence=quantize_confidence(combine_scores(outcome, definition)),
        candle_indices=indices,
        evidence=dict(sorted(outcome.evidence.items())),
    )


def evaluate(
    snapshot: WindowSnapshot,
    catalog: PatternCatalog,
    min_confidence: Decimal = Decimal('0'),
) -> MatchReport:
    """
    Evaluate every applicable catalog pattern against a window.

    Args:
        snapshot: Window of candles, oldest first
        catalog: Pattern catalog
        min_confidence: Detections below this confidence are dropped

    Returns:
        MatchReport with detections sorted by (confidence desc, pattern id asc)
    """
    detections: List[Detection] = []
    failures: List[PatternFailure] = []
    evaluated = 0

    for definition in catalog:
        if definition.window > len(snapshot):
            continue
        evaluated += 1
        try:
            detection = _detect(snapshot, definition)
        except Exception as e:
            failures.append(PatternFailure(pattern_id=definition.id, error=f"{type(e).__name__}: {e}"))
            continue
        if detection is not None and detection.confidence >= min_confidence:
            detections.append(detection)

    detections.sort(key=lambda d: d.sort_key)
    return MatchReport(
        instrument=snapshot.instrument,
        detections=tuple(detections),
        failures=tuple(failures),
        evaluated=evaluated,
    )


def match(
    snapshot: WindowSnapshot,
    catalog: PatternCatalog,
    min_confidence: Decimal = Decimal('0'),
) -> List[Detection]:
    """Detections for a window, ordered by (confidence desc, pattern id asc)."""
    return list(evaluate(snapshot, catalog, min_confidence).detections)
