"""
Cache of resolved ingredient matches.

Entries are keyed by normalized ingredient name, serving size and serving
unit, and expire after NUTRITION_CACHE_EXPIRATION_DAYS. On read, entries
whose macros look corrupted are dropped from the backend so the ingredient
gets matched again.

Backends are synchronous and raise StoreError; NutritionCache runs them in
a worker thread and treats any backend failure as a cache miss.
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union

from pydantic import ValidationError
from supabase import Client, create_client

from ingredient_nutrition.config import (
    NUTRITION_CACHE_EXPIRATION_DAYS,
    get_supabase_key,
    get_supabase_url,
)
from ingredient_nutrition.exceptions import StoreError
from ingredient_nutrition.models import IngredientQuery, MatchedResult, NutritionPer100g

logger = logging.getLogger(__name__)

_KEY_SEPARATOR = "|"


def normalize_name(name: str) -> str:
    return " ".join(name.lower().split())


def cache_key(name: str, serving_size: Optional[float] = None, serving_unit: Optional[str] = None) -> str:
    """'Chicken  Breast', 4, 'OZ' -> 'chicken breast|4|oz'."""
    size = f"{serving_size:.10g}" if serving_size is not None else ""
    unit = (serving_unit or "").lower().strip()
    return _KEY_SEPARATOR.join([normalize_name(name), size, unit])


def key_for_query(query: IngredientQuery) -> str:
    return cache_key(query.name, query.serving_size, query.serving_unit)


def _name_of_key(key: str) -> str:
    return key.split(_KEY_SEPARATOR, 1)[0]


def is_nutrition_plausible(nutrition: NutritionPer100g, label: str = "") -> bool:
    """
    Sanity check for cached macros.

    Rejects:
    - more than 50 kcal with exactly 0 g carbs, unless it is a pure fat
    - calories with all three macros at 0
    - macro-implied energy under 20 kcal when more than 80 kcal is stored
    """
    is_pure_fat = nutrition.fat > 80 and nutrition.calories > 800

    if nutrition.calories > 50 and nutrition.carbs == 0 and not is_pure_fat:
        logger.warning(
            f"Cache validation failed for '{label}': calories={nutrition.calories} but carbs=0"
        )
        return False

    if (
        nutrition.calories > 0
        and nutrition.protein == 0
        and nutrition.carbs == 0
        and nutrition.fat == 0
    ):
        logger.warning(f"Cache validation failed for '{label}': calories but all macros are 0")
        return False

    expected = nutrition.protein * 4 + nutrition.carbs * 4 + nutrition.fat * 9
    if expected < 20 and nutrition.calories > 80:
        logger.warning(
            f"Cache validation failed for '{label}': calories={nutrition.calories} "
            f"but macro-implied={expected:.0f}"
        )
        return False

    return True


# ── Backends ─────────────────────────────────────────────────────────


class NutritionCacheBackend(Protocol):
    """Key -> {"cached_at": iso8601, "result": MatchedResult dump}."""

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def put(self, key: str, entry: Dict[str, Any]) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def clear(self) -> int:
        ...

    def delete_names(self, names: Iterable[str]) -> int:
        ...


class JsonFileCacheBackend:
    """
    Cache persisted as one JSON file.

    Writes are buffered in memory; call save_cache() to persist. The file
    starts with a "_meta" entry that is skipped on load.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._dirty = False
        self._load_cache()

    def _load_cache(self) -> None:
        if not self._path.exists():
            self._cache = {}
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read nutrition cache {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"Nutrition cache {self._path} is not a JSON object")
        self._cache = {k: v for k, v in data.items() if not k.startswith("_")}
        logger.info(f"Loaded {len(self._cache)} cached nutrition matches")

    def save_cache(self) -> None:
        """Persist cache to disk if changed."""
        if not self._dirty:
            return

        data: Dict[str, Any] = {
            "_meta": {
                "description": "Cache of USDA FoodData Central ingredient matches.",
                "source": "USDA FoodData Central",
                "last_updated": datetime.now(timezone.utc).isoformat(),
                "total_entries": len(self._cache),
            }
        }
        data.update(dict(sorted(self._cache.items())))

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except OSError as e:
            raise StoreError(f"Failed to write nutrition cache {self._path}: {e}") from e

        self._dirty = False
        logger.info(f"Saved {len(self._cache)} nutrition matches to cache")

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._cache.get(key)

    def put(self, key: str, entry: Dict[str, Any]) -> None:
        self._cache[key] = entry
        self._dirty = True

    def delete(self, key: str) -> None:
        if self._cache.pop(key, None) is not None:
            self._dirty = True

    def clear(self) -> int:
        cleared = len(self._cache)
        self._cache = {}
        self._dirty = True
        return cleared

    def delete_names(self, names: Iterable[str]) -> int:
        wanted = {normalize_name(n) for n in names}
        doomed = [k for k in self._cache if _name_of_key(k) in wanted]
        for key in doomed:
            del self._cache[key]
        if doomed:
            self._dirty = True
        return len(doomed)


class SupabaseCacheBackend:
    """
    Cache rows in the `usda_ingredients` table.

    `ingredient_name` holds the composite cache key (unique); the per-100g
    columns mirror the cached result for querying, `match_data` holds the
    full result.
    """

    TABLE = "usda_ingredients"

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            url, key = get_supabase_url(), get_supabase_key()
            if not url or not key:
                raise StoreError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
            client = create_client(url, key)
        self._client = client

    def _table(self):
        return self._client.table(self.TABLE)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            response = (
                self._table()
                .select("ingredient_name, match_data, updated_at")
                .eq("ingredient_name", key)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise StoreError(f"Failed to read {self.TABLE}: {e}") from e
        rows = response.data or []
        if not rows or not rows[0].get("match_data"):
            return None
        return {"cached_at": rows[0].get("updated_at"), "result": rows[0]["match_data"]}

    def put(self, key: str, entry: Dict[str, Any]) -> None:
        result = entry["result"]
        nutrition = result.get("nutrition") or {}
        row = {
            "ingredient_name": key,
            "fdc_id": result.get("fdc_id"),
            "calories_per_100g": nutrition.get("calories"),
            "protein_per_100g": nutrition.get("protein"),
            "carbs_per_100g": nutrition.get("carbs"),
            "fat_per_100g": nutrition.get("fat"),
            "match_data": result,
            "updated_at": entry["cached_at"],
        }
        try:
            self._table().upsert(row, on_conflict="ingredient_name").execute()
        except Exception as e:
            raise StoreError(f"Failed to write {self.TABLE}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._table().delete().eq("ingredient_name", key).execute()
        except Exception as e:
            raise StoreError(f"Failed to delete from {self.TABLE}: {e}") from e

    def clear(self) -> int:
        try:
            response = self._table().delete().neq("ingredient_name", "").execute()
        except Exception as e:
            raise StoreError(f"Failed to clear {self.TABLE}: {e}") from e
        return len(response.data or [])

    def delete_names(self, names: Iterable[str]) -> int:
        cleared = 0
        try:
            for name in {normalize_name(n) for n in names}:
                response = (
                    self._table()
                    .delete()
                    .like("ingredient_name", f"{name}{_KEY_SEPARATOR}%")
                    .execute()
                )
                cleared += len(response.data or [])
        except Exception as e:
            raise StoreError(f"Failed to delete from {self.TABLE}: {e}") from e
        return cleared


# ── Cache ────────────────────────────────────────────────────────────


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class NutritionCache:
    """
    Expiring, self-validating cache of MatchedResult values.

    Args:
        backend: Where entries live.
        expiration_days: Entries older than this are misses.
        now: Clock returning an aware datetime, injectable for tests.
    """

    def __init__(
        self,
        backend: NutritionCacheBackend,
        expiration_days: int = NUTRITION_CACHE_EXPIRATION_DAYS,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.backend = backend
        self._max_age = timedelta(days=expiration_days)
        self._now = now

    async def get(self, query: IngredientQuery) -> Optional[MatchedResult]:
        key = key_for_query(query)
        try:
            entry = await asyncio.to_thread(self.backend.get, key)
        except StoreError as e:
            logger.warning(f"Nutrition cache read failed for '{key}': {e}")
            return None
        if not entry:
            return None
        if not isinstance(entry, dict):
            logger.warning(f"Dropping malformed cache entry '{key}' ({type(entry).__name__})")
            await self._delete(key)
            return None

        cached_at = _parse_timestamp(entry.get("cached_at"))
        if cached_at is None or self._now() - cached_at >= self._max_age:
            logger.debug(f"Nutrition cache entry for '{key}' is stale")
            return None

        try:
            result = MatchedResult.model_validate(entry.get("result") or {})
        except ValidationError as e:
            logger.warning(f"Dropping unreadable cache entry '{key}': {e}")
            await self._delete(key)
            return None

        if not is_nutrition_plausible(result.nutrition, label=query.name):
            logger.info(f"Nutrition cache invalidated for '{query.name}' - will re-match")
            await self._delete(key)
            return None

        logger.debug(f"Nutrition cache hit for '{key}' -> fdc {result.fdc_id}")
        return result.model_copy(update={"from_cache": True})

    async def put(self, query: IngredientQuery, result: MatchedResult) -> None:
        key = key_for_query(query)
        entry = {
            "cached_at": self._now().isoformat(),
            "result": result.model_copy(update={"from_cache": False}).model_dump(mode="json"),
        }
        try:
            await asyncio.to_thread(self.backend.put, key, entry)
        except StoreError as e:
            logger.warning(f"Failed to cache match for '{key}': {e}")

    async def _delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.backend.delete, key)
        except StoreError as e:
            logger.warning(f"Failed to delete cache entry '{key}': {e}")

    async def clear(self) -> int:
        """Drop every entry. Returns the number removed."""
        cleared = await asyncio.to_thread(self.backend.clear)
        logger.info(f"Cleared {cleared} nutrition cache entries")
        return cleared

    async def clear_names(self, names: List[str]) -> int:
        """Drop all entries (any serving) for the given ingredient names."""
        cleared = await asyncio.to_thread(self.backend.delete_names, names)
        logger.info(f"Cleared {cleared} nutrition cache entries for {len(names)} names")
        return cleared
