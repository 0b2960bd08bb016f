"""
Unit tests for pattern catalog loading and validation.
"""

from decimal import Decimal

import pytest

from candlestream.exceptions import (
    CatalogError,
    DuplicateDefinitionError,
    ParseError,
    SchemaError,
)
from candlestream.models.patterns import PatternCategory, PatternDirection, RuleKind
from candlestream.patterns.catalog import (
    describe_catalog,
    load_catalog,
    parse_catalog,
    parse_catalog_text,
)


HEADER = "id,name,category,direction,window,rule,base_confidence,body_ratio_max,body_ratio_min,weights"
DOJI_ROW = "doji,Doji,neutral,,1,doji,,0.1,,"
MARUBOZU_ROW = "bull_maru,Bullish Marubozu,continuation,bullish,1,marubozu,0.5,,0.9,"


def catalog_csv(*rows: str, header: str = HEADER) -> str:
    return "\n".join((header,) + rows) + "\n"


class TestPackagedCatalog:
    """Test the catalog shipped with the package."""

    def test_loads_all_patterns(self, catalog):
        assert len(catalog) == 20
        assert catalog.max_window == 3
        assert "hammer" in catalog
        assert "morning_star" in catalog

    def test_ordered_by_window_then_id(self, catalog):
        keys = [(d.window, d.id) for d in catalog]
        assert keys == sorted(keys)
        assert catalog.ids[0] == "bearish_marubozu"

    def test_hammer_definition(self, catalog):
        hammer = catalog.get("hammer")

        assert hammer.rule == RuleKind.LOWER_SHADOW
        assert hammer.category == PatternCategory.BULLISH
        assert hammer.direction == PatternDirection.BULLISH
        assert hammer.threshold("shadow_multiple_min") == Decimal("2")
        assert hammer.threshold("opposite_shadow_ratio_max") == Decimal("0.25")
        assert hammer.weights["shadow_multiple_min"] == Decimal("2")
        assert hammer.base_confidence == Decimal("0.55")

    def test_definitions_are_read_only(self, catalog):
        hammer = catalog.get("hammer")
        with pytest.raises(TypeError):
            hammer.thresholds["body_ratio_max"] = Decimal("0.9")

    def test_describe_catalog(self, catalog):
        summary = describe_catalog(catalog)

        assert summary["total_patterns"] == 20
        assert summary["by_window"] == {1: 8, 2: 8, 3: 4}
        assert summary["by_category"]["reversal"] == 10
        assert summary["by_rule"]["star"] == 2


class TestCatalogParsing:
    """Test parsing of catalog rows."""

    def test_parses_valid_rows(self):
        catalog = parse_catalog_text(catalog_csv(MARUBOZU_ROW, DOJI_ROW))

        assert catalog.ids == ["bull_maru", "doji"]
        doji = catalog.get("doji")
        assert doji.direction == PatternDirection.NEUTRAL
        assert doji.base_confidence == Decimal("0.5")
        assert dict(doji.weights) == {"body_ratio_max": Decimal("1")}

    def test_optional_threshold_default(self):
        header = "id,name,category,direction,window,rule,body_ratio_max,shadow_multiple_min"
        catalog = parse_catalog_text(catalog_csv("hammer,Hammer,bullish,bullish,1,lower_shadow,0.35,2", header=header))

        assert catalog.get("hammer").threshold("opposite_shadow_ratio_max") == Decimal("1")

    def test_blank_rows_are_skipped(self):
        catalog = parse_catalog_text(catalog_csv(DOJI_ROW, "", ",,,,,,,,,", MARUBOZU_ROW))
        assert len(catalog) == 2

    def test_empty_catalog(self):
        catalog = parse_catalog_text(catalog_csv())
        assert len(catalog) == 0
        assert catalog.max_window == 0

    def test_parse_catalog_from_records(self):
        records = [{"id": "doji", "name": "Doji", "category": "neutral", "window": "1",
                    "rule": "doji", "body_ratio_max": "0.05"}]
        catalog = parse_catalog(records, source="memory")

        assert catalog.source == "memory"
        assert catalog.get("doji").threshold("body_ratio_max") == Decimal("0.05")

    def test_weights_column(self):
        header = "id,name,category,direction,window,rule,body_ratio_max,shadow_ratio_min,weights"
        row = "top,Top,neutral,,1,spinning_top,0.3,0.25,body_ratio_max=3; shadow_ratio_min=0.5"
        definition = parse_catalog_text(catalog_csv(row, header=header)).get("top")

        assert definition.weights["body_ratio_max"] == Decimal("3")
        assert definition.weights["shadow_ratio_min"] == Decimal("0.5")


class TestCatalogErrors:
    """Test that catalog problems are fatal and located."""

    def test_missing_column(self):
        header = "id,name,category,direction,window,body_ratio_max"
        with pytest.raises(SchemaError) as exc_info:
            parse_catalog_text(catalog_csv("doji,Doji,neutral,,1,0.1", header=header))

        assert exc_info.value.row == 0
        assert exc_info.value.field == "rule"
        assert str(exc_info.value).startswith("header, field 'rule'")

    def test_missing_required_cell(self):
        with pytest.raises(SchemaError) as exc_info:
            parse_catalog_text(catalog_csv(DOJI_ROW, "no_name,,neutral,,1,doji,,0.1,,"))

        assert exc_info.value.row == 2
        assert exc_info.value.field == "name"

    def test_missing_threshold_cell(self):
        with pytest.raises(SchemaError) as exc_info:
            parse_catalog_text(catalog_csv("doji,Doji,neutral,,1,doji,,,,"))
        assert exc_info.value.field == "body_ratio_max"

    def test_malformed_number_is_not_coerced(self):
        with pytest.raises(ParseError) as exc_info:
            parse_catalog_text(catalog_csv(MARUBOZU_ROW, "doji,Doji,neutral,,1,doji,,abc,,"))

        error = exc_info.value
        assert error.row == 2
        assert error.field == "body_ratio_max"
        assert error.value == "abc"
        assert "row 2" in str(error)
        assert "field 'body_ratio_max'" in str(error)

    @pytest.mark.parametrize("value", ["1.5", "-0.1", "inf", "NaN"])
    def test_proportion_out_of_domain(self, value):
        with pytest.raises(ParseError):
            parse_catalog_text(catalog_csv(f"doji,Doji,neutral,,1,doji,,{value},,"))

    def test_negative_ratio_threshold(self):
        header = "id,name,category,direction,window,rule,body_multiple_min"
        with pytest.raises(ParseError) as exc_info:
            parse_catalog_text(catalog_csv("eng,Engulfing,reversal,bullish,2,engulfing,-1", header=header))
        assert exc_info.value.field == "body_multiple_min"

    def test_unknown_rule(self):
        with pytest.raises(ParseError) as exc_info:
            parse_catalog_text(catalog_csv("x,X,neutral,,1,triangle,,0.1,,"))
        assert exc_info.value.field == "rule"

    def test_unknown_category(self):
        with pytest.raises(ParseError) as exc_info:
            parse_catalog_text(catalog_csv("x,X,sideways,,1,doji,,0.1,,"))
        assert exc_info.value.field == "category"

    def test_window_must_match_rule(self):
        with pytest.raises(ParseError) as exc_info:
            parse_catalog_text(catalog_csv("doji,Doji,neutral,,2,doji,,0.1,,"))
        assert exc_info.value.field == "window"

    def test_non_integer_window(self):
        with pytest.raises(ParseError) as exc_info:
            parse_catalog_text(catalog_csv("doji,Doji,neutral,,one,doji,,0.1,,"))
        assert exc_info.value.field == "window"

    def test_directional_rule_needs_direction(self):
        with pytest.raises(ParseError) as exc_info:
            parse_catalog_text(catalog_csv("maru,Marubozu,continuation,,1,marubozu,,,0.9,"))
        assert exc_info.value.field == "direction"

    def test_base_confidence_domain(self):
        with pytest.raises(ParseError) as exc_info:
            parse_catalog_text(catalog_csv("doji,Doji,neutral,,1,doji,0,0.1,,"))
        assert exc_info.value.field == "base_confidence"

    def test_unused_threshold_cell_still_validated(self):
        with pytest.raises(ParseError) as exc_info:
            parse_catalog_text(catalog_csv("doji,Doji,neutral,,1,doji,,0.1,abc,"))
        assert exc_info.value.field == "body_ratio_min"

    def test_weight_for_unused_threshold(self):
        with pytest.raises(ParseError) as exc_info:
            parse_catalog_text(catalog_csv("doji,Doji,neutral,,1,doji,,0.1,,body_ratio_min=2"))
        assert exc_info.value.field == "weights"

    def test_malformed_weights(self):
        with pytest.raises(ParseError):
            parse_catalog_text(catalog_csv("doji,Doji,neutral,,1,doji,,0.1,,body_ratio_max"))

    def test_all_zero_weights(self):
        with pytest.raises(ParseError):
            parse_catalog_text(catalog_csv("doji,Doji,neutral,,1,doji,,0.1,,body_ratio_max=0"))

    def test_duplicate_id(self):
        with pytest.raises(DuplicateDefinitionError) as exc_info:
            parse_catalog_text(catalog_csv(DOJI_ROW, MARUBOZU_ROW, DOJI_ROW))

        error = exc_info.value
        assert error.pattern_id == "doji"
        assert error.row == 3
        assert error.first_row == 1

    def test_catalog_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            parse_catalog_text(catalog_csv("doji,Doji,neutral,,1,doji,,abc,,"))
        assert issubclass(CatalogError, ValueError)


class TestLoadCatalog:
    """Test loading catalogs from files."""

    def test_load_from_file(self, temp_dir):
        path = temp_dir / "patterns.csv"
        path.write_text(catalog_csv(DOJI_ROW), encoding="utf-8")

        catalog = load_catalog(path)

        assert catalog.ids == ["doji"]
        assert catalog.source == str(path)

    def test_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            load_catalog(temp_dir / "missing.csv")

    def test_byte_order_mark_is_ignored(self, temp_dir):
        path = temp_dir / "bom.csv"
        path.write_text(catalog_csv(DOJI_ROW), encoding="utf-8-sig")

        assert load_catalog(path).ids == ["doji"]

    def test_invalid_utf8_is_parse_error(self, temp_dir):
        path = temp_dir / "latin1.csv"
        path.write_bytes(catalog_csv(DOJI_ROW).encode("utf-8") + b"caf\xe9,Caf\xe9,neutral,,1,doji,,0.1,,\n")

        with pytest.raises(ParseError, match="not valid UTF-8"):
            load_catalog(path)

    def test_malformed_csv_is_parse_error(self, temp_dir):
        path = temp_dir / "huge.csv"
        path.write_text(catalog_csv(DOJI_ROW, "x" * 200_000), encoding="utf-8")

        with pytest.raises(ParseError, match="malformed CSV"):
            load_catalog(path)
