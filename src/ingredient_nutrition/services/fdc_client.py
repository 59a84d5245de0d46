"""
USDA FoodData Central API client.

Search and detail lookups are best-effort: rate limiting (HTTP 429), any
other non-2xx response, timeouts and transport errors are logged and turned
into an empty result. Callers treat "no candidates" as a normal outcome.

The two endpoints encode nutrients differently:
- /foods/search  -> {"nutrientId": 1008, "value": 52.0}
- /food/{fdcId}  -> {"nutrient": {"id": 1008, "number": "208"}, "amount": 52.0}
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from ingredient_nutrition.config import (
    FDC_BASE_URL,
    HTTP_TIMEOUT_SECONDS,
    MAX_PAGE_SIZE,
    get_usda_api_key,
)
from ingredient_nutrition.models import FoodPortion, NutritionPer100g, SearchCandidate

logger = logging.getLogger(__name__)

# Nutrient IDs we care about (keyed by FDC nutrient id)
_ENERGY_KCAL = 1008
_ENERGY_ATWATER_SPECIFIC = 2048   # Foundation foods report energy here
_ENERGY_ATWATER_GENERAL = 2047
_PROTEIN = 1003
_CARBS = 1005                     # Carbohydrate, by difference
_FAT = 1004                       # Total lipid (fat)
_FIBER = 1079                     # Fiber, total dietary
_SUGAR = 2000                     # Sugars, total including NLEA
_SUGAR_ALT = 1063                 # Sugars, Total (NLEA)

_ENERGY_IDS = (_ENERGY_KCAL, _ENERGY_ATWATER_SPECIFIC, _ENERGY_ATWATER_GENERAL)


def _search_schema_values(food: Dict[str, Any]) -> Dict[int, float]:
    """nutrientId -> value for a search result."""
    values: Dict[int, float] = {}
    for entry in food.get("foodNutrients") or []:
        nutrient_id = entry.get("nutrientId")
        value = entry.get("value")
        if nutrient_id is not None and isinstance(value, (int, float)):
            values.setdefault(int(nutrient_id), float(value))
    return values


def _detail_schema_values(food: Dict[str, Any]) -> Dict[int, float]:
    """nutrient.id -> amount for a detail record."""
    values: Dict[int, float] = {}
    for entry in food.get("foodNutrients") or []:
        nutrient = entry.get("nutrient") or {}
        nutrient_id = nutrient.get("id")
        amount = entry.get("amount")
        if nutrient_id is not None and isinstance(amount, (int, float)):
            values.setdefault(int(nutrient_id), float(amount))
    return values


def _first(values: Dict[int, float], ids: Iterable[int]) -> Optional[float]:
    for nutrient_id in ids:
        if nutrient_id in values:
            return values[nutrient_id]
    return None


def _to_nutrition(values: Dict[int, float]) -> NutritionPer100g:
    return NutritionPer100g(
        calories=_first(values, _ENERGY_IDS) or 0,
        protein=_first(values, (_PROTEIN,)) or 0,
        carbs=_first(values, (_CARBS,)) or 0,
        fat=_first(values, (_FAT,)) or 0,
        fiber=_first(values, (_FIBER,)),
        sugar=_first(values, (_SUGAR, _SUGAR_ALT)),
    )


def extract_nutrition_from_search_result(food: Dict[str, Any]) -> NutritionPer100g:
    """Per-100g macros from a /foods/search item. Missing macros are 0, missing fiber/sugar None."""
    return _to_nutrition(_search_schema_values(food))


def extract_nutrition_from_details(food: Dict[str, Any]) -> NutritionPer100g:
    """Per-100g macros from a /food/{fdcId} record."""
    return _to_nutrition(_detail_schema_values(food))


def extract_portions(food: Dict[str, Any]) -> List[FoodPortion]:
    """
    Household measures from a /food/{fdcId} record.

    Portions without a positive gram weight are skipped. The label falls
    back from portionDescription to modifier to "<amount> <unit name>".
    """
    portions: List[FoodPortion] = []
    for entry in food.get("foodPortions") or []:
        gram_weight = entry.get("gramWeight")
        if not isinstance(gram_weight, (int, float)) or gram_weight <= 0:
            continue
        amount = entry.get("amount")
        if not isinstance(amount, (int, float)):
            amount = 1
        measure = entry.get("measureUnit") or {}
        unit_name = measure.get("name") or "unit"
        description = (
            entry.get("portionDescription")
            or entry.get("modifier")
            or f"{amount:g} {unit_name}"
        )
        portions.append(FoodPortion(
            description=description,
            gram_weight=float(gram_weight),
            amount=float(amount),
            unit=measure.get("abbreviation") or unit_name,
        ))
    return portions


def _to_candidate(
    food: Dict[str, Any],
    nutrition: NutritionPer100g,
    portions: Optional[List[FoodPortion]] = None,
) -> SearchCandidate:
    return SearchCandidate(
        fdc_id=int(food["fdcId"]),
        description=food.get("description") or "",
        data_type=food.get("dataType") or "",
        brand_owner=food.get("brandOwner") or None,
        nutrition=nutrition,
        portions=portions or [],
    )


class FdcClient:
    """
    Thin async wrapper around the FoodData Central REST API.

    Rate limit is 1000 requests/hour per key; this client does not throttle
    on its own (batch callers space their calls out).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = FDC_BASE_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: FDC API key. Defaults to USDA_API_KEY env var.
            base_url: API root, overridable for tests.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests to mock the API).
        """
        self._api_key = api_key or get_usda_api_key()
        if not self._api_key:
            logger.warning("No USDA_API_KEY found, FDC search will return no results")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _get_json(self, path: str, params: Dict[str, Any], what: str) -> Optional[Any]:
        """GET and decode JSON, or None on any failure."""
        try:
            async with self._client() as client:
                response = await client.get(f"{self._base_url}{path}", params=params)
        except httpx.TimeoutException:
            logger.error(f"USDA API timeout for {what}")
            return None
        except httpx.HTTPError as e:
            logger.error(f"USDA API transport error for {what}: {e}")
            return None

        if response.status_code == 429:
            logger.error(f"USDA API rate limit exceeded ({what})")
            return None
        if response.status_code == 404:
            logger.warning(f"USDA food not found: {what}")
            return None
        if not response.is_success:
            logger.error(f"USDA API error {response.status_code} for {what}: {response.text[:200]}")
            return None

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"USDA API returned invalid JSON for {what}: {e}")
            return None

    async def search(
        self,
        query: str,
        page_size: int = 10,
        data_types: Optional[List[str]] = None,
    ) -> List[SearchCandidate]:
        """
        Search FoodData Central.

        A trailing "*" is appended for prefix matching ("kirklan" -> "kirklan*")
        unless the query already ends with one.

        Args:
            query: Search text.
            page_size: Number of results (capped at 50).
            data_types: Optional filter, e.g. ["Foundation", "SR Legacy"].

        Returns:
            Candidates in API order, or [] on any failure.
        """
        if not self._api_key:
            logger.debug(f"No API key, skipping USDA search for '{query}'")
            return []

        wildcard_query = query if query.endswith("*") else f"{query}*"
        params: Dict[str, Any] = {
            "api_key": self._api_key,
            "query": wildcard_query,
            "pageSize": min(page_size, MAX_PAGE_SIZE),
        }
        if data_types:
            params["dataType"] = ",".join(data_types)

        data = await self._get_json("/foods/search", params, f"search '{query}'")
        if not isinstance(data, dict):
            return []

        candidates: List[SearchCandidate] = []
        for food in data.get("foods") or []:
            if food.get("fdcId") is None:
                continue
            candidates.append(_to_candidate(food, extract_nutrition_from_search_result(food)))

        logger.debug(f"USDA search '{wildcard_query}': {len(candidates)} results")
        return candidates

    async def get_details(self, fdc_id: int) -> Optional[SearchCandidate]:
        """Fetch a full food record, or None on any failure."""
        if not self._api_key:
            logger.debug(f"No API key, skipping USDA detail fetch for {fdc_id}")
            return None

        data = await self._get_json(
            f"/food/{fdc_id}", {"api_key": self._api_key}, f"food {fdc_id}"
        )
        if not isinstance(data, dict) or data.get("fdcId") is None:
            return None

        candidate = _to_candidate(data, extract_nutrition_from_details(data), extract_portions(data))
        logger.debug(
            f"USDA details {fdc_id}: cal={candidate.nutrition.calories} "
            f"p={candidate.nutrition.protein} c={candidate.nutrition.carbs} "
            f"f={candidate.nutrition.fat}, {len(candidate.portions)} portions"
        )
        return candidate

    async def check_connection(self) -> Dict[str, Any]:
        """Report whether the API key is set and the API answers a trivial search."""
        if not self._api_key:
            return {
                "configured": False,
                "connected": False,
                "error": "USDA_API_KEY environment variable not set",
            }

        data = await self._get_json(
            "/foods/search",
            {"api_key": self._api_key, "query": "apple*", "pageSize": 1},
            "connection check",
        )
        if data is None:
            return {
                "configured": True,
                "connected": False,
                "error": "USDA API did not answer the connection check",
            }
        return {"configured": True, "connected": True}
