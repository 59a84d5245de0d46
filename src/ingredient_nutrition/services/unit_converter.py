"""
Serving-to-grams conversion.

USDA values are per 100 g, so every serving expression has to become grams
before macros can be scaled. The conversion walks a fixed ladder and reports
how much it trusts the answer:

1. unparseable amount               -> 100 g, low
2. countable unit + known item      -> amount * item weight, high
3. known weight unit                -> amount * factor, high
   known volume unit                -> amount * ml * density, high
                                       (medium when density defaults to 1.0)
4. known item, unknown unit         -> amount * item weight, medium
5. anything else                    -> amount * 100 g, low
"""

import logging
import math
import re
from typing import Dict, Mapping, Optional, Tuple

from ingredient_nutrition.models import ConversionResult
from ingredient_nutrition.services.conversion_cache import ConversionCache, ConversionTables

logger = logging.getLogger(__name__)

# Grams (or ml, for volume units) per unit
UNIT_TO_GRAMS: Dict[str, float] = {
    # Weight
    "g": 1,
    "gram": 1,
    "grams": 1,
    "kg": 1000,
    "kilogram": 1000,
    "kilograms": 1000,
    "oz": 28.3495,
    "ounce": 28.3495,
    "ounces": 28.3495,
    "lb": 453.592,
    "lbs": 453.592,
    "pound": 453.592,
    "pounds": 453.592,
    # Volume, water density
    "ml": 1,
    "milliliter": 1,
    "milliliters": 1,
    "l": 1000,
    "liter": 1000,
    "liters": 1000,
    "cup": 240,
    "cups": 240,
    "tbsp": 15,
    "tablespoon": 15,
    "tablespoons": 15,
    "tsp": 5,
    "teaspoon": 5,
    "teaspoons": 5,
    "fl oz": 29.5735,
    "fluid ounce": 29.5735,
    "fluid ounces": 29.5735,
}

VOLUME_UNITS = frozenset({
    "ml", "milliliter", "milliliters", "l", "liter", "liters",
    "cup", "cups", "tbsp", "tablespoon", "tablespoons",
    "tsp", "teaspoon", "teaspoons", "fl oz", "fluid ounce", "fluid ounces",
})

COUNTABLE_UNITS = frozenset({
    "", "large", "medium", "small", "whole", "piece", "pieces",
    "slice", "slices", "clove", "cloves", "fillet", "fillets",
    "breast", "breasts", "thigh", "thighs",
})

DEFAULT_GRAMS = 100.0

# Leading decimal number, the way JavaScript's parseFloat reads it
_LEADING_NUMBER = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_MIXED_NUMBER = re.compile(r"^(\d+)\s+(\d+)\s*/\s*(\d+)")
_FRACTION = re.compile(r"^(\d+)\s*/\s*(\d+)")


_VULGAR_FRACTIONS = {
    "¼": "1/4", "½": "1/2", "¾": "3/4",
    "⅓": "1/3", "⅔": "2/3",
    "⅛": "1/8", "⅜": "3/8", "⅝": "5/8", "⅞": "7/8",
}


def _expand_vulgar_fractions(text: str) -> str:
    """'1½' -> '1 1/2', '¾' -> '3/4'."""
    out = []
    for ch in text:
        fraction = _VULGAR_FRACTIONS.get(ch)
        if fraction is None:
            out.append(ch)
            continue
        if out and out[-1].isdigit():
            out.append(" ")
        out.append(fraction)
    return "".join(out)


def parse_amount(amount: str) -> Optional[float]:
    """
    Read the leading quantity of an amount string.

    Accepts decimals ("1.5", ".5", "2 cups"), fractions ("1/2"), mixed
    numbers ("1 1/2") and unicode fractions ("½", "1½"). Trailing text is
    ignored. Returns None when no non-negative number can be read.
    """
    text = _expand_vulgar_fractions(str(amount)).strip()
    if not text:
        return None

    mixed = _MIXED_NUMBER.match(text)
    if mixed:
        whole, num, den = (int(g) for g in mixed.groups())
        if den == 0:
            return None
        return whole + num / den

    fraction = _FRACTION.match(text)
    if fraction:
        num, den = (int(g) for g in fraction.groups())
        if den == 0:
            return None
        return num / den

    match = _LEADING_NUMBER.match(text)
    if not match:
        return None
    value = float(match.group(0))
    if value < 0 or math.isinf(value) or math.isnan(value):
        return None
    return value


def _lookup(table: Mapping[str, float], name: str) -> Optional[float]:
    """Exact match, then the first key contained in the name or containing it."""
    if not name:
        return None
    value = table.get(name)
    if value:
        return value
    for key, candidate in table.items():
        if key in name or name in key:
            return candidate
    return None


def get_item_weight(tables: ConversionTables, ingredient: str) -> Optional[float]:
    return _lookup(tables.item_weights, ingredient)


def get_density_multiplier(tables: ConversionTables, ingredient: str) -> Tuple[float, bool]:
    """(multiplier, found). Unknown ingredients get water density, 1.0."""
    multiplier = _lookup(tables.density_multipliers, ingredient)
    if multiplier is None:
        return 1.0, False
    return multiplier, True


def is_countable_unit(unit: str) -> bool:
    """Size words, piece words, no unit at all, or a bare number."""
    return unit in COUNTABLE_UNITS or parse_amount(unit) is not None


def is_volume_unit(unit: str) -> bool:
    return unit in VOLUME_UNITS


def convert_with_tables(
    tables: ConversionTables,
    amount: str,
    unit: str,
    ingredient_name: str,
) -> ConversionResult:
    """Run the conversion ladder against one table snapshot."""
    quantity = parse_amount(amount)
    if quantity is None:
        return ConversionResult(grams=DEFAULT_GRAMS, confidence="low")

    normalized_unit = (unit or "").lower().strip()
    normalized_name = (ingredient_name or "").lower().strip()

    if is_countable_unit(normalized_unit):
        item_weight = get_item_weight(tables, normalized_name)
        if item_weight:
            return ConversionResult(grams=quantity * item_weight, confidence="high")

    factor = UNIT_TO_GRAMS.get(normalized_unit)
    if factor:
        if is_volume_unit(normalized_unit):
            density, found = get_density_multiplier(tables, normalized_name)
            return ConversionResult(
                grams=quantity * factor * density,
                confidence="high" if found else "medium",
            )
        return ConversionResult(grams=quantity * factor, confidence="high")

    item_weight = get_item_weight(tables, normalized_name)
    if item_weight:
        return ConversionResult(grams=quantity * item_weight, confidence="medium")

    logger.debug(f"No conversion for '{amount} {unit} {ingredient_name}', assuming 100 g per unit")
    return ConversionResult(grams=quantity * DEFAULT_GRAMS, confidence="low")


def format_from_grams(grams: float, unit: str) -> str:
    """
    Express grams in a known unit, rounded to one decimal.

    Unknown units are treated as 100 g items and rounded to a whole count.
    """
    factor = UNIT_TO_GRAMS.get((unit or "").lower().strip())
    if factor:
        rounded = math.floor(grams / factor * 10 + 0.5) / 10
        if rounded == int(rounded):
            return str(int(rounded))
        return str(rounded)
    return str(int(math.floor(grams / DEFAULT_GRAMS + 0.5)))


class UnitConverter:
    """Converts serving expressions to grams using cached lookup tables."""

    def __init__(self, cache: Optional[ConversionCache] = None):
        self.cache = cache or ConversionCache()

    async def convert(self, amount: str, unit: str, ingredient_name: str) -> ConversionResult:
        """Convert after making sure the lookup tables are fresh."""
        tables = await self.cache.get()
        return convert_with_tables(tables, amount, unit, ingredient_name)

    def convert_sync(self, amount: str, unit: str, ingredient_name: str) -> ConversionResult:
        """Convert with whatever tables are loaded right now. Never touches the store."""
        return convert_with_tables(self.cache.tables, amount, unit, ingredient_name)
