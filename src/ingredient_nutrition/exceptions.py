"""Exceptions for the ingredient nutrition package."""


class IngredientNutritionError(Exception):
    """Base class for all package errors."""
    pass


class DisambiguationError(IngredientNutritionError):
    """Raised when the disambiguation oracle cannot produce a decision."""
    pass


class OracleResponseError(DisambiguationError):
    """Raised when the oracle's structured output does not match the decision schema."""
    pass


class OracleUnavailableError(DisambiguationError):
    """Raised when the oracle could not be reached (transport or API failure)."""
    pass


class StoreError(IngredientNutritionError):
    """Raised when a backing store read or write fails."""
    pass
