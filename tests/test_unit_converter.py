"""Tests for the serving-to-grams conversion ladder."""

import pytest

from ingredient_nutrition.services.conversion_cache import ConversionCache, ConversionTables
from ingredient_nutrition.services.unit_converter import (
    UnitConverter,
    convert_with_tables,
    format_from_grams,
    is_countable_unit,
    parse_amount,
)


class FixedStore:
    def __init__(self, densities, weights):
        self.densities = densities
        self.weights = weights
        self.calls = 0

    def load_density_multipliers(self):
        self.calls += 1
        return dict(self.densities)

    def load_item_weights(self):
        return dict(self.weights)


@pytest.fixture
def tables():
    return ConversionTables.fallback()


@pytest.fixture
def converter():
    return UnitConverter(ConversionCache())


class TestParseAmount:

    @pytest.mark.parametrize("raw, expected", [
        ("2", 2.0),
        ("1.5", 1.5),
        (".5", 0.5),
        ("  3 ", 3.0),
        ("2 cups", 2.0),
        ("1e2", 100.0),
        ("1/2", 0.5),
        ("1 1/2", 1.5),
        ("½", 0.5),
        ("1½", 1.5),
        ("0", 0.0),
    ])
    def test_valid(self, raw, expected):
        assert parse_amount(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", ["", "abc", "-1", "-0.5", "1/0", "about 2"])
    def test_invalid(self, raw):
        assert parse_amount(raw) is None


class TestConversionLadder:

    def test_unparseable_amount_defaults_to_100g(self, tables):
        result = convert_with_tables(tables, "a handful", "cup", "milk")
        assert result.grams == 100
        assert result.confidence == "low"

    def test_negative_amount_defaults_to_100g(self, tables):
        result = convert_with_tables(tables, "-2", "oz", "chicken breast")
        assert result.grams == 100
        assert result.confidence == "low"

    def test_zero_amount(self, tables):
        result = convert_with_tables(tables, "0", "cup", "milk")
        assert result.grams == 0

    def test_weight_unit(self, tables):
        result = convert_with_tables(tables, "2", "oz", "chicken breast")
        assert result.grams == pytest.approx(56.699)
        assert result.confidence == "high"

    def test_countable_unit_uses_item_weight(self, tables):
        result = convert_with_tables(tables, "2", "large", "eggs")
        assert result.grams == pytest.approx(100)
        assert result.confidence == "high"

    def test_empty_unit_is_countable(self, tables):
        result = convert_with_tables(tables, "3", "", "banana")
        assert result.grams == pytest.approx(354)
        assert result.confidence == "high"

    def test_numeric_unit_is_countable(self, tables):
        result = convert_with_tables(tables, "2", "1", "apple")
        assert result.grams == pytest.approx(364)
        assert result.confidence == "high"

    def test_item_weight_by_substring(self, tables):
        # "garlic" is contained in "minced garlic"
        result = convert_with_tables(tables, "4", "cloves", "minced garlic")
        assert result.grams == pytest.approx(12)
        assert result.confidence == "high"

    def test_volume_with_known_density(self, tables):
        result = convert_with_tables(tables, "1", "cup", "olive oil")
        assert result.grams == pytest.approx(220.8)
        assert result.confidence == "high"

    def test_volume_with_default_density(self, tables):
        result = convert_with_tables(tables, "1", "cup", "xyz")
        assert result.grams == pytest.approx(240)
        assert result.confidence == "medium"

    def test_unit_is_case_and_space_insensitive(self, tables):
        result = convert_with_tables(tables, "2", "  Fl Oz ", "water")
        assert result.grams == pytest.approx(59.147)
        assert result.confidence == "high"

    def test_unknown_unit_falls_back_to_item_weight(self, tables):
        result = convert_with_tables(tables, "2", "bunch", "banana")
        assert result.grams == pytest.approx(236)
        assert result.confidence == "medium"

    def test_last_resort_is_100g_per_unit(self, tables):
        result = convert_with_tables(tables, "3", "handful", "zzz")
        assert result.grams == pytest.approx(300)
        assert result.confidence == "low"

    def test_empty_ingredient_name_matches_nothing(self, tables):
        result = convert_with_tables(tables, "2", "", "")
        assert result.grams == pytest.approx(200)
        assert result.confidence == "low"

    def test_fractions(self, tables):
        assert convert_with_tables(tables, "1/2", "cup", "water").grams == pytest.approx(120)
        assert convert_with_tables(tables, "1 1/2", "cups", "water").grams == pytest.approx(360)
        assert convert_with_tables(tables, "½", "tsp", "honey").grams == pytest.approx(3.55)


class TestIsCountableUnit:

    @pytest.mark.parametrize("unit", ["", "large", "pieces", "thigh", "3", "0.5"])
    def test_countable(self, unit):
        assert is_countable_unit(unit)

    @pytest.mark.parametrize("unit", ["cup", "oz", "bunch"])
    def test_not_countable(self, unit):
        assert not is_countable_unit(unit)


class TestFormatFromGrams:

    def test_known_unit(self):
        assert format_from_grams(56.699, "oz") == "2"
        assert format_from_grams(120, "cup") == "0.5"
        assert format_from_grams(22.5, "TBSP") == "1.5"

    def test_unknown_unit_rounds_to_100g_items(self):
        assert format_from_grams(250, "bunch") == "3"
        assert format_from_grams(40, "handful") == "0"


class TestUnitConverter:

    @pytest.mark.asyncio
    async def test_convert_loads_tables(self, converter):
        result = await converter.convert("2", "oz", "chicken breast")
        assert result.grams == pytest.approx(56.699)
        assert converter.cache.is_fresh()

    @pytest.mark.asyncio
    async def test_store_values_override_fallbacks(self):
        store = FixedStore(densities={"honey": 2.0}, weights={"egg": 60})
        converter = UnitConverter(ConversionCache(store=store))

        honey = await converter.convert("1", "tbsp", "honey")
        eggs = await converter.convert("2", "large", "egg")

        assert honey.grams == pytest.approx(30)
        assert eggs.grams == pytest.approx(120)

    def test_convert_sync_uses_current_snapshot_only(self):
        store = FixedStore(densities={"honey": 2.0}, weights={"egg": 60})
        converter = UnitConverter(ConversionCache(store=store))

        result = converter.convert_sync("1", "tbsp", "honey")

        # Not loaded yet: built-in honey density, store untouched
        assert result.grams == pytest.approx(21.3)
        assert store.calls == 0
