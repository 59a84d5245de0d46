from typing import Dict, List, Optional

import pytest

from ingredient_nutrition.models import NutritionPer100g, SearchCandidate


# Keep tests hermetic: nothing reaches USDA, OpenRouter or Supabase by accident
@pytest.fixture(autouse=True)
def _no_credentials(monkeypatch):
    for var in (
        "USDA_API_KEY",
        "OPENROUTER_API_KEY",
        "NUTRITION_MATCH_MODEL",
        "SUPABASE_URL",
        "NEXT_PUBLIC_SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "SUPABASE_ANON_KEY",
        "LANGFUSE_PUBLIC_KEY",
        "LANGFUSE_SECRET_KEY",
    ):
        monkeypatch.delenv(var, raising=False)


def make_candidate(
    fdc_id: int,
    description: str,
    data_type: str = "Foundation",
    calories: float = 100,
    protein: float = 5,
    carbs: float = 10,
    fat: float = 3,
    fiber: Optional[float] = None,
    sugar: Optional[float] = None,
    brand_owner: Optional[str] = None,
) -> SearchCandidate:
    return SearchCandidate(
        fdc_id=fdc_id,
        description=description,
        data_type=data_type,
        brand_owner=brand_owner,
        nutrition=NutritionPer100g(
            calories=calories, protein=protein, carbs=carbs, fat=fat, fiber=fiber, sugar=sugar,
        ),
    )


class FakeFdcClient:
    """In-memory stand-in for FdcClient: canned results per query string."""

    def __init__(
        self,
        results: Optional[Dict[str, List[SearchCandidate]]] = None,
        details: Optional[Dict[int, SearchCandidate]] = None,
        failing_queries: Optional[set] = None,
    ):
        self.results = results or {}
        self.details = details or {}
        self.failing_queries = failing_queries or set()
        self.queries: List[str] = []
        self.detail_requests: List[int] = []
        self.is_configured = True

    async def search(self, query: str, page_size: int = 10, data_types=None) -> List[SearchCandidate]:
        self.queries.append(query)
        if query in self.failing_queries:
            raise RuntimeError(f"search exploded for {query}")
        return list(self.results.get(query, []))[:page_size]

    async def get_details(self, fdc_id: int) -> Optional[SearchCandidate]:
        self.detail_requests.append(fdc_id)
        return self.details.get(fdc_id)


@pytest.fixture
def chicken_breast():
    return make_candidate(
        171077, "Chicken, broilers or fryers, breast, meat only, raw",
        calories=120, protein=22.5, carbs=0, fat=2.6,
    )


@pytest.fixture
def chicken_roasted():
    return make_candidate(
        171477, "Chicken, broilers or fryers, breast, meat only, cooked, roasted",
        data_type="SR Legacy", calories=165, protein=31, carbs=0, fat=3.6,
    )


@pytest.fixture
def chicken_nuggets():
    return make_candidate(
        2345678, "Chicken nuggets, breaded, frozen",
        data_type="Branded", calories=280, protein=14, carbs=16, fat=18,
    )
