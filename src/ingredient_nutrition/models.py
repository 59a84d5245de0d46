"""Pydantic models for ingredient queries, USDA candidates and match results."""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ── Nutrition ────────────────────────────────────────────────────────


class NutritionPer100g(BaseModel):
    """Macronutrients normalized to a 100 g reference quantity."""

    model_config = ConfigDict(frozen=True)

    calories: float = 0
    protein: float = 0
    carbs: float = 0
    fat: float = 0
    fiber: Optional[float] = None
    sugar: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        """True when all four macros are zero (search results sometimes omit them)."""
        return (
            self.calories == 0
            and self.protein == 0
            and self.carbs == 0
            and self.fat == 0
        )


class NutritionEstimate(BaseModel):
    """Caller-supplied nutrition estimate for a serving, used as a sanity check."""

    model_config = ConfigDict(frozen=True)

    calories: float = Field(ge=0)
    protein: float = 0
    carbs: float = 0
    fat: float = 0


class ServingNutrition(BaseModel):
    """Nutrition scaled from per-100g values to a concrete serving."""

    grams: float
    conversion_confidence: Literal["high", "medium", "low"]
    calories: float
    protein: float
    carbs: float
    fat: float
    fiber: Optional[float] = None
    sugar: Optional[float] = None


# ── Query ────────────────────────────────────────────────────────────


class IngredientQuery(BaseModel):
    """A single resolution request. Immutable once built."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(min_length=1)
    serving_size: Optional[float] = Field(default=None, gt=0)
    serving_unit: Optional[str] = None
    category: Optional[str] = None
    prior_estimate: Optional[NutritionEstimate] = None


class MatchContext(BaseModel):
    """Context forwarded to the disambiguation oracle alongside the candidates."""

    model_config = ConfigDict(frozen=True)

    ingredient_name: str
    serving_size: Optional[float] = None
    serving_unit: Optional[str] = None
    category: Optional[str] = None
    prior_estimate: Optional[NutritionEstimate] = None

    @classmethod
    def from_query(cls, query: IngredientQuery) -> "MatchContext":
        return cls(
            ingredient_name=query.name,
            serving_size=query.serving_size,
            serving_unit=query.serving_unit,
            category=query.category,
            prior_estimate=query.prior_estimate,
        )


# ── USDA candidates ──────────────────────────────────────────────────


class DataType(str, Enum):
    """FoodData Central data types, declared from most to least reliable."""

    FOUNDATION = "Foundation"
    SR_LEGACY = "SR Legacy"
    SURVEY = "Survey (FNDDS)"
    BRANDED = "Branded"

    @classmethod
    def rank(cls, data_type: str) -> int:
        """Lower is better. Unknown data types rank with Branded."""
        order = {
            cls.FOUNDATION.value: 0,
            cls.SR_LEGACY.value: 1,
            cls.SURVEY.value: 2,
            cls.BRANDED.value: 3,
        }
        return order.get(data_type, 3)


class FoodPortion(BaseModel):
    """A household measure for one food ("1 cup, chopped" = 91 g)."""

    model_config = ConfigDict(frozen=True)

    description: str
    gram_weight: float = Field(gt=0)
    amount: float = 1
    unit: str = "unit"


class SearchCandidate(BaseModel):
    """One FoodData Central record with its per-100g macros."""

    model_config = ConfigDict(frozen=True)

    fdc_id: int
    description: str
    data_type: str = ""
    brand_owner: Optional[str] = None
    nutrition: NutritionPer100g = Field(default_factory=NutritionPer100g)
    portions: List[FoodPortion] = Field(
        default_factory=list,
        description="Food-specific serving weights, only present on detail records",
    )


class ScoredCandidate(BaseModel):
    """A search candidate with its fuzzy relevance score."""

    model_config = ConfigDict(frozen=True)

    candidate: SearchCandidate
    score: float = Field(ge=0, le=1)


# ── Oracle decision ──────────────────────────────────────────────────


NO_MATCH_SENTINEL = 0


class OracleDecision(BaseModel):
    """Structured decision returned by the disambiguation oracle."""

    best_match_fdc_id: int = Field(description="Chosen FDC ID, 0 when nothing fits")
    confidence: float = Field(ge=0, le=1)
    reasoning: str
    alternative_fdc_ids: List[int] = Field(default_factory=list)
    recommended_serving_size: Optional[float] = Field(default=None, gt=0)
    recommended_serving_unit: Optional[str] = None
    serving_change_reason: Optional[str] = None
    needs_review: bool = False

    @property
    def is_no_match(self) -> bool:
        return self.best_match_fdc_id == NO_MATCH_SENTINEL


# ── Match results ────────────────────────────────────────────────────


class Alternative(BaseModel):
    """A runner-up candidate suggested by the oracle."""

    fdc_id: int
    description: str = ""
    confidence: float


class BestEffortCandidate(BaseModel):
    """Candidate the oracle leaned towards without enough confidence to match."""

    fdc_id: int
    description: str = ""
    confidence: float
    nutrition: NutritionPer100g = Field(default_factory=NutritionPer100g)


class MatchedResult(BaseModel):
    status: Literal["matched"] = "matched"
    fdc_id: int
    description: str = ""
    confidence: float = Field(ge=0, le=1)
    reasoning: str = ""
    nutrition: NutritionPer100g
    alternatives: List[Alternative] = Field(default_factory=list)
    recommended_serving_size: Optional[float] = None
    recommended_serving_unit: Optional[str] = None
    serving_change_reason: Optional[str] = None
    needs_review: bool = False
    from_cache: bool = False


class NoMatchResult(BaseModel):
    status: Literal["no_match"] = "no_match"
    reason: str
    best_effort: Optional[BestEffortCandidate] = None
    alternatives: List[Alternative] = Field(default_factory=list)


class MatchErrorResult(BaseModel):
    status: Literal["error"] = "error"
    message: str


MatchResult = Annotated[
    Union[MatchedResult, NoMatchResult, MatchErrorResult],
    Field(discriminator="status"),
]


# ── Unit conversion ──────────────────────────────────────────────────


Confidence = Literal["high", "medium", "low"]


class ConversionResult(BaseModel):
    """Grams for an (amount, unit, ingredient) triple and how sure we are."""

    model_config = ConfigDict(frozen=True)

    grams: float = Field(ge=0)
    confidence: Confidence


# ── Batch mode ───────────────────────────────────────────────────────


class BatchItem(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    name: str = Field(min_length=1)
    serving_size: Optional[float] = Field(default=None, gt=0)
    serving_unit: Optional[str] = None
    category: Optional[str] = None

    def to_query(self) -> IngredientQuery:
        return IngredientQuery(
            name=self.name,
            serving_size=self.serving_size,
            serving_unit=self.serving_unit,
            category=self.category,
        )


class BatchResult(BaseModel):
    id: str
    result: MatchResult
