"""
Geometric Pattern Rules

This module implements the closed set of rule families a catalog row can
reference. Each family is a function of the last N candles and the row's
thresholds that either rejects the candles or returns per-threshold scores:

- doji, lower_shadow, upper_shadow, marubozu, spinning_top (1 candle)
- engulfing, harami, piercing, tweezer (2 candles)
- star, three_soldiers (3 candles)

Directional families check the bullish or bearish form depending on the
definition's direction. Each threshold is a sub-condition; its score in [0, 1]
says how far the measured value clears the threshold.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from ..models.candles import Candle, measure
from ..models.patterns import PatternDefinition, PatternDirection, RuleKind


ZERO = Decimal('0')
ONE = Decimal('1')
TWO = Decimal('2')


class ThresholdDomain:
    """Valid domains for threshold values."""
    PROPORTION = "proportion"  # [0, 1]
    RATIO = "ratio"            # [0, +inf)


THRESHOLD_DOMAINS: Dict[str, str] = {
    'body_ratio_max': ThresholdDomain.PROPORTION,
    'body_ratio_min': ThresholdDomain.PROPORTION,
    'opposite_shadow_ratio_max': ThresholdDomain.PROPORTION,
    'shadow_ratio_min': ThresholdDomain.PROPORTION,
    'penetration_min': ThresholdDomain.PROPORTION,
    'tolerance_max': ThresholdDomain.PROPORTION,
    'shadow_multiple_min': ThresholdDomain.RATIO,
    'body_multiple_min': ThresholdDomain.RATIO,
    'body_multiple_max': ThresholdDomain.RATIO,
}


@dataclass(frozen=True)
class RuleSpec:
    """Shape of a rule family: window, thresholds and direction handling."""
    window: int
    required: Tuple[str, ...]
    optional: Mapping[str, Decimal] = field(default_factory=dict)
    directional: bool = False

    @property
    def threshold_names(self) -> Tuple[str, ...]:
        return self.required + tuple(self.optional)


RULE_SPECS: Dict[RuleKind, RuleSpec] = {
    RuleKind.DOJI: RuleSpec(window=1, required=('body_ratio_max',)),
    RuleKind.LOWER_SHADOW: RuleSpec(
        window=1,
        required=('shadow_multiple_min', 'body_ratio_max'),
        optional={'opposite_shadow_ratio_max': ONE},
    ),
    RuleKind.UPPER_SHADOW: RuleSpec(
        window=1,
        required=('shadow_multiple_min', 'body_ratio_max'),
        optional={'opposite_shadow_ratio_max': ONE},
    ),
    RuleKind.MARUBOZU: RuleSpec(window=1, required=('body_ratio_min',), directional=True),
    RuleKind.SPINNING_TOP: RuleSpec(window=1, required=('body_ratio_max', 'shadow_ratio_min')),
    RuleKind.ENGULFING: RuleSpec(window=2, required=('body_multiple_min',), directional=True),
    RuleKind.HARAMI: RuleSpec(window=2, required=('body_multiple_max',), directional=True),
    RuleKind.PIERCING: RuleSpec(window=2, required=('penetration_min',), directional=True),
    RuleKind.TWEEZER: RuleSpec(window=2, required=('tolerance_max',), directional=True),
    RuleKind.STAR: RuleSpec(window=3, required=('body_multiple_max', 'penetration_min'), directional=True),
    RuleKind.THREE_SOLDIERS: RuleSpec(window=3, required=('body_ratio_min',), directional=True),
}


@dataclass(frozen=True)
class RuleOutcome:
    """A satisfied rule: score and measured value per threshold."""
    scores: Mapping[str, Decimal]
    evidence: Mapping[str, Decimal]


class Checks:
    """
    Accumulates sub-condition checks for one rule evaluation.

    Every check method returns False when the measured value violates the
    threshold, so rules can chain them with ``and``.
    """

    def __init__(self, thresholds: Mapping[str, Decimal]):
        self.thresholds = thresholds
        self.scores: Dict[str, Decimal] = {}
        self.evidence: Dict[str, Decimal] = {}

    def at_most(self, name: str, measured: Decimal) -> bool:
        """measured <= threshold; score is the unused share of the threshold."""
        limit = self.thresholds[name]
        if measured > limit:
            return False
        score = ONE if limit == 0 else (limit - measured) / limit
        return self._record(name, measured, score)

    def at_least(self, name: str, measured: Decimal) -> bool:
        """measured >= threshold for a proportion; score is progress towards 1."""
        limit = self.thresholds[name]
        if measured < limit:
            return False
        score = ONE if limit >= ONE else (measured - limit) / (ONE - limit)
        return self._record(name, measured, score)

    def at_least_multiple(self, name: str, numerator: Decimal, denominator: Decimal) -> bool:
        """numerator / denominator >= threshold for an unbounded ratio."""
        limit = self.thresholds[name]
        if denominator == 0:
            # Unbounded multiple; satisfied whenever the numerator is positive.
            # Evidence holds the raw numerator.
            if numerator > 0:
                return self._record(name, numerator, ONE)
            return limit == 0 and self._record(name, ZERO, ZERO)
        measured = numerator / denominator
        if measured < limit:
            return False
        score = ZERO if measured == 0 else ONE - limit / measured
        return self._record(name, measured, score)

    def _record(self, name: str, measured: Decimal, score: Decimal) -> bool:
        self.scores[name] = min(ONE, max(ZERO, score))
        self.evidence[name] = measured
        return True

    def outcome(self) -> RuleOutcome:
        return RuleOutcome(scores=dict(self.scores), evidence=dict(self.evidence))


def _wants_bullish(definition: PatternDefinition) -> bool:
    return definition.direction == PatternDirection.BULLISH


def _body_penetration(first: Candle, close: Decimal, bullish: bool) -> Decimal:
    """How far ``close`` retraces into ``first``'s body, as a share of it."""
    if bullish:
        return (close - first.close) / first.body_size
    return (first.close - close) / first.body_size


# Single candle families

def _doji(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    metrics = measure(candles[0])
    checks = Checks(definition.thresholds)
    if not checks.at_most('body_ratio_max', metrics.body_fraction):
        return None
    return checks.outcome()


def _shadow(candles: Sequence[Candle], definition: PatternDefinition, lower: bool) -> Optional[RuleOutcome]:
    candle = candles[0]
    metrics = measure(candle)
    if metrics.is_doji:
        return None

    shadow = metrics.lower_shadow if lower else metrics.upper_shadow
    opposite_ratio = metrics.upper_shadow_ratio if lower else metrics.lower_shadow_ratio

    checks = Checks(definition.thresholds)
    if not (
        shadow > 0
        and checks.at_least_multiple('shadow_multiple_min', shadow, candle.body_size)
        and checks.at_most('body_ratio_max', metrics.body_fraction)
        and checks.at_most('opposite_shadow_ratio_max', opposite_ratio)
    ):
        return None
    return checks.outcome()


def _lower_shadow(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    return _shadow(candles, definition, lower=True)


def _upper_shadow(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    return _shadow(candles, definition, lower=False)


def _marubozu(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    candle = candles[0]
    metrics = measure(candle)
    if metrics.is_doji:
        return None
    if _wants_bullish(definition) != candle.is_bullish or candle.body == 0:
        return None

    checks = Checks(definition.thresholds)
    if not checks.at_least('body_ratio_min', metrics.body_fraction):
        return None
    return checks.outcome()


def _spinning_top(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    metrics = measure(candles[0])
    if metrics.is_doji:
        return None

    checks = Checks(definition.thresholds)
    shortest_shadow = min(metrics.upper_shadow_ratio, metrics.lower_shadow_ratio)
    if not (
        checks.at_most('body_ratio_max', metrics.body_fraction)
        and checks.at_least('shadow_ratio_min', shortest_shadow)
    ):
        return None
    return checks.outcome()


# Two candle families

def _opposite_pair(first: Candle, second: Candle, bullish: bool) -> bool:
    """First candle against the direction, second candle with it."""
    if bullish:
        return first.is_bearish and second.is_bullish
    return first.is_bullish and second.is_bearish


def _engulfing(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    first, second = candles
    if not _opposite_pair(first, second, _wants_bullish(definition)):
        return None

    # Second body must strictly contain the first body
    if not (second.body_top > first.body_top and second.body_bottom < first.body_bottom):
        return None

    checks = Checks(definition.thresholds)
    if not checks.at_least_multiple('body_multiple_min', second.body_size, first.body_size):
        return None
    return checks.outcome()


def _harami(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    first, second = candles
    if not _opposite_pair(first, second, _wants_bullish(definition)):
        return None
    if not (second.body_top <= first.body_top and second.body_bottom >= first.body_bottom):
        return None

    checks = Checks(definition.thresholds)
    if not checks.at_most('body_multiple_max', second.body_size / first.body_size):
        return None
    return checks.outcome()


def _piercing(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    first, second = candles
    bullish = _wants_bullish(definition)
    if not _opposite_pair(first, second, bullish):
        return None

    if bullish:
        # Opens below the prior close, closes back inside the prior body
        gapped = second.open < first.close
        contained = second.close < first.open
    else:
        gapped = second.open > first.close
        contained = second.close > first.open
    if not (gapped and contained):
        return None

    checks = Checks(definition.thresholds)
    if not checks.at_least('penetration_min', _body_penetration(first, second.close, bullish)):
        return None
    return checks.outcome()


def _tweezer(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    first, second = candles
    bullish = _wants_bullish(definition)
    if not _opposite_pair(first, second, bullish):
        return None

    mean_range = (first.range + second.range) / TWO
    if mean_range == 0:
        return None

    if bullish:
        difference = abs(first.low - second.low)
    else:
        difference = abs(first.high - second.high)

    checks = Checks(definition.thresholds)
    if not checks.at_most('tolerance_max', difference / mean_range):
        return None
    return checks.outcome()


# Three candle families

def _star(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    first, star, third = candles
    bullish = _wants_bullish(definition)
    if not _opposite_pair(first, third, bullish):
        return None

    # Star body gaps away from the first candle's close
    if bullish:
        gapped = star.body_top < first.close
    else:
        gapped = star.body_bottom > first.close
    if not gapped:
        return None

    checks = Checks(definition.thresholds)
    if not (
        checks.at_most('body_multiple_max', star.body_size / first.body_size)
        and checks.at_least('penetration_min', _body_penetration(first, third.close, bullish))
    ):
        return None
    return checks.outcome()


def _three_soldiers(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    bullish = _wants_bullish(definition)
    if not all(c.is_bullish if bullish else c.is_bearish for c in candles):
        return None

    for previous, current in zip(candles, candles[1:]):
        if bullish:
            progressing = current.close > previous.close
            opens_in_body = previous.open <= current.open <= previous.close
        else:
            progressing = current.close < previous.close
            opens_in_body = previous.close <= current.open <= previous.open
        if not (progressing and opens_in_body):
            return None

    metrics = [measure(c) for c in candles]
    if any(m.is_doji for m in metrics):
        return None

    checks = Checks(definition.thresholds)
    weakest_body = min(m.body_fraction for m in metrics)
    if not checks.at_least('body_ratio_min', weakest_body):
        return None
    return checks.outcome()


RuleFunction = Callable[[Sequence[Candle], PatternDefinition], Optional[RuleOutcome]]

RULE_FUNCTIONS: Dict[RuleKind, RuleFunction] = {
    RuleKind.DOJI: _doji,
    RuleKind.LOWER_SHADOW: _lower_shadow,
    RuleKind.UPPER_SHADOW: _upper_shadow,
    RuleKind.MARUBOZU: _marubozu,
    RuleKind.SPINNING_TOP: _spinning_top,
    RuleKind.ENGULFING: _engulfing,
    RuleKind.HARAMI: _harami,
    RuleKind.PIERCING: _piercing,
    RuleKind.TWEEZER: _tweezer,
    RuleKind.STAR: _star,
    RuleKind.THREE_SOLDIERS: _three_soldiers,
}


def evaluate_rule(candles: Sequence[Candle], definition: PatternDefinition) -> Optional[RuleOutcome]:
    """
    Evaluate a definition's rule against exactly ``definition.window`` candles.

    Returns None when the predicate is not satisfied.
    """
    if len(candles) != definition.window:
        raise ValueError(
            f"Pattern '{definition.id}' needs {definition.window} candles, got {len(candles)}"
        )
    return RULE_FUNCTIONS[definition.rule](candles, definition)


def combine_scores(outcome: RuleOutcome, definition: PatternDefinition) -> Decimal:
    """
    Weighted confidence of a satisfied rule.

    confidence = base + (1 - base) * sum(w_i * s_i) / sum(w_i); thresholds
    without a weight count once. Result is unquantized and within [0, 1].
    """
    base = definition.base_confidence
    total_weight = ZERO
    weighted = ZERO
    for name, score in outcome.scores.items():
        weight = definition.weights.get(name, ONE)
        total_weight += weight
        weighted += weight * score

    if total_weight == 0:
        return min(ONE, base)

    return min(ONE, base + (ONE - base) * weighted / total_weight)
