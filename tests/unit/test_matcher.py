"""
Unit tests for the pattern matcher.
"""

from decimal import Decimal

import pytest

from candlestream.models.candles import WindowSnapshot
from candlestream.models.patterns import RuleKind
from candlestream.patterns import rules
from candlestream.patterns.catalog import parse_catalog_text
from candlestream.patterns.matcher import evaluate, match, quantize_confidence


TWIN_DOJI_CSV = """id,name,category,window,rule,base_confidence,body_ratio_max
b_doji,B Doji,neutral,1,doji,0.5,0.1
a_doji,A Doji,neutral,1,doji,0.5,0.1
"""


@pytest.fixture
def hammer_window(candle_factory):
    return WindowSnapshot.of([candle_factory("10", "10.5", "8", "10.3")])


class TestMatch:
    """Test matching windows against the packaged catalog."""

    def test_hammer_example(self, catalog, hammer_window):
        detections = match(hammer_window, catalog)

        assert [d.pattern_id for d in detections] == ["hammer", "hanging_man"]
        hammer = detections[0]
        assert hammer.confidence == Decimal("0.857929")
        assert hammer.instrument == "BTC"
        assert hammer.candle_indices == (0,)
        assert hammer.window == 1
        assert hammer.start_time == hammer.end_time
        assert detections[1].confidence == Decimal("0.842143")

    def test_doji_window(self, catalog, candle_factory):
        detections = match(WindowSnapshot.of([candle_factory("10", "11", "9", "10")]), catalog)

        assert [d.pattern_id for d in detections] == ["doji", "spinning_top"]
        assert detections[0].confidence == Decimal("1")
        assert detections[1].confidence == Decimal("0.816667")

    def test_zero_range_candle(self, catalog, candle_factory):
        detections = match(WindowSnapshot.of([candle_factory("10", "10", "10", "10")]), catalog)

        assert [d.pattern_id for d in detections] == ["doji"]

    def test_confidence_is_positive_and_bounded(self, catalog, hammer_window):
        for detection in match(hammer_window, catalog):
            assert Decimal("0") < detection.confidence <= Decimal("1")

    def test_multi_candle_detection_uses_stream_ordinals(self, catalog, candle_factory):
        candles = (
            candle_factory("10", "10.2", "8.9", "9", minute=0),
            candle_factory("8.8", "10.6", "8.7", "10.5", minute=1),
        )
        snapshot = WindowSnapshot(instrument="BTC", candles=candles, start_index=41, capacity=3)

        detections = match(snapshot, catalog)

        assert [d.pattern_id for d in detections] == ["bullish_engulfing"]
        engulfing = detections[0]
        assert engulfing.candle_indices == (41, 42)
        assert engulfing.start_time == candles[0].timestamp
        assert engulfing.end_time == candles[1].timestamp
        assert engulfing.confidence == Decimal("0.741177")

    def test_min_confidence_filter(self, catalog, hammer_window):
        detections = match(hammer_window, catalog, min_confidence=Decimal("0.85"))
        assert [d.pattern_id for d in detections] == ["hammer"]

    def test_no_match_returns_empty(self, catalog, candle_factory):
        # Long-bodied candle with even shadows matches nothing
        window = WindowSnapshot.of([candle_factory("10", "10.5", "9.5", "10.4")])
        assert match(window, catalog) == []

    def test_empty_window(self, catalog):
        report = evaluate(WindowSnapshot.of([], instrument="BTC"), catalog)

        assert report.detections == ()
        assert report.evaluated == 0

    def test_short_window_skips_longer_patterns(self, catalog, hammer_window):
        report = evaluate(hammer_window, catalog)
        assert report.evaluated == 8

    def test_matching_is_deterministic(self, catalog, hammer_window):
        assert match(hammer_window, catalog) == match(hammer_window, catalog)


class TestOrdering:
    """Test detection ordering."""

    def test_equal_confidence_sorted_by_id(self, candle_factory):
        catalog = parse_catalog_text(TWIN_DOJI_CSV)
        detections = match(WindowSnapshot.of([candle_factory("10", "11", "9", "10")]), catalog)

        assert [d.pattern_id for d in detections] == ["a_doji", "b_doji"]
        assert detections[0].confidence == detections[1].confidence

    def test_higher_confidence_first(self, catalog, hammer_window):
        confidences = [d.confidence for d in match(hammer_window, catalog)]
        assert confidences == sorted(confidences, reverse=True)


class TestFailureIsolation:
    """Test that one failing rule does not stop the others."""

    def test_failing_rule_is_reported(self, catalog, candle_factory, monkeypatch):
        def explode(candles, definition):
            raise ZeroDivisionError("boom")

        monkeypatch.setitem(rules.RULE_FUNCTIONS, RuleKind.SPINNING_TOP, explode)
        report = evaluate(WindowSnapshot.of([candle_factory("10", "11", "9", "10")]), catalog)

        assert [d.pattern_id for d in report.detections] == ["doji"]
        assert report.has_failures
        assert report.failures[0].pattern_id == "spinning_top"
        assert "ZeroDivisionError" in report.failures[0].error


class TestQuantize:
    """Test confidence quantization."""

    def test_rounds_up(self):
        assert quantize_confidence(Decimal("0.1234561")) == Decimal("0.123457")
        assert quantize_confidence(Decimal("0.0000001")) == Decimal("0.000001")

    def test_clamped_to_one(self):
        assert quantize_confidence(Decimal("1")) == Decimal("1")
