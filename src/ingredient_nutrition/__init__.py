"""
ingredient_nutrition: resolve free-text ingredients to USDA FoodData Central
nutrition records and convert servings to grams.
"""

from .models import IngredientQuery, MatchedResult, MatchErrorResult, NoMatchResult
from .services.matcher import IngredientMatcher
from .services.unit_converter import UnitConverter

__all__ = [
    "IngredientMatcher",
    "UnitConverter",
    "IngredientQuery",
    "MatchedResult",
    "NoMatchResult",
    "MatchErrorResult",
]
