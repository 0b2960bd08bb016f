"""
Pattern Catalog Models

Defines the read-only rule catalog:
- PatternCategory / PatternDirection: classification enums
- RuleKind: closed set of geometric rule families
- PatternDefinition: one validated catalog row
- PatternCatalog: deterministically ordered, immutable set of definitions
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple


class PatternCategory(str, Enum):
    """Pattern classification."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"
    REVERSAL = "reversal"
    CONTINUATION = "continuation"


class PatternDirection(str, Enum):
    """Directional bias of a pattern."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class RuleKind(str, Enum):
    """Geometric rule families understood by the matcher."""
    # Single candle
    DOJI = "doji"
    LOWER_SHADOW = "lower_shadow"
    UPPER_SHADOW = "upper_shadow"
    MARUBOZU = "marubozu"
    SPINNING_TOP = "spinning_top"

    # Two candles
    ENGULFING = "engulfing"
    HARAMI = "harami"
    PIERCING = "piercing"
    TWEEZER = "tweezer"

    # Three candles
    STAR = "star"
    THREE_SOLDIERS = "three_soldiers"


@dataclass(frozen=True)
class PatternDefinition:
    """
    A single pattern rule.

    ``thresholds`` maps threshold names (e.g. ``body_ratio_max``) to their
    values; ``weights`` maps the same names to their share of the confidence
    score. Both are exposed as read-only mappings.
    """

    id: str
    name: str
    category: PatternCategory
    window: int
    rule: RuleKind
    thresholds: Mapping[str, Decimal]
    weights: Mapping[str, Decimal]
    direction: PatternDirection = PatternDirection.NEUTRAL
    base_confidence: Decimal = Decimal('0.5')
    description: str = ""

    def __post_init__(self):
        if self.window < 1:
            raise ValueError(f"Pattern '{self.id}' window must be >= 1, got {self.window}")
        object.__setattr__(self, 'thresholds', MappingProxyType(dict(self.thresholds)))
        object.__setattr__(self, 'weights', MappingProxyType(dict(self.weights)))

    def threshold(self, name: str) -> Decimal:
        return self.thresholds[name]

    @property
    def is_bullish(self) -> bool:
        return self.direction == PatternDirection.BULLISH

    def to_record(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dict."""
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category.value,
            'direction': self.direction.value,
            'window': self.window,
            'rule': self.rule.value,
            'base_confidence': str(self.base_confidence),
            'thresholds': {k: str(v) for k, v in self.thresholds.items()},
            'weights': {k: str(v) for k, v in self.weights.items()},
            'description': self.description,
        }


@dataclass(frozen=True)
class PatternCatalog:
    """
    Immutable, ordered collection of pattern definitions.

    Definitions are sorted by (window ascending, id ascending) so every
    evaluation walks the catalog in the same order.
    """

    definitions: Tuple[PatternDefinition, ...] = ()
    source: Optional[str] = None
    _by_id: Mapping[str, PatternDefinition] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        ordered = tuple(sorted(self.definitions, key=lambda d: (d.window, d.id)))
        by_id: Dict[str, PatternDefinition] = {}
        for definition in ordered:
            if definition.id in by_id:
                raise ValueError(f"Duplicate pattern id in catalog: {definition.id}")
            by_id[definition.id] = definition
        object.__setattr__(self, 'definitions', ordered)
        object.__setattr__(self, '_by_id', MappingProxyType(by_id))

    def __len__(self) -> int:
        return len(self.definitions)

    def __iter__(self) -> Iterator[PatternDefinition]:
        return iter(self.definitions)

    def __contains__(self, pattern_id: object) -> bool:
        return pattern_id in self._by_id

    def get(self, pattern_id: str) -> Optional[PatternDefinition]:
        return self._by_id.get(pattern_id)

    @property
    def ids(self) -> List[str]:
        return [d.id for d in self.definitions]

    @property
    def max_window(self) -> int:
        """Longest window any definition needs (0 for an empty catalog)."""
        return max((d.window for d in self.definitions), default=0)

    def by_category(self, category: PatternCategory) -> List[PatternDefinition]:
        return [d for d in self.definitions if d.category == category]

    def to_records(self) -> List[Dict[str, Any]]:
        return [d.to_record() for d in self.definitions]
