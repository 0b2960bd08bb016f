"""
Candlestick Pattern Recognition Module

Catalog loading, the geometric rule families and the pure window matcher.
"""

from .catalog import (
    DEFAULT_CATALOG_PATH,
    describe_catalog,
    load_catalog,
    parse_catalog,
    parse_catalog_text,
)
from .matcher import MatchReport, PatternFailure, evaluate, match
from .rules import RULE_FUNCTIONS, RULE_SPECS, THRESHOLD_DOMAINS, evaluate_rule

__all__ = [
    "DEFAULT_CATALOG_PATH",
    "describe_catalog",
    "load_catalog",
    "parse_catalog",
    "parse_catalog_text",
    "MatchReport",
    "PatternFailure",
    "evaluate",
    "match",
    "RULE_FUNCTIONS",
    "RULE_SPECS",
    "THRESHOLD_DOMAINS",
    "evaluate_rule",
]
