"""Tests for the match cache: keys, expiry, plausibility checks and backends."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from ingredient_nutrition.exceptions import StoreError
from ingredient_nutrition.models import IngredientQuery, MatchedResult, NutritionPer100g
from ingredient_nutrition.services.nutrition_cache import (
    JsonFileCacheBackend,
    NutritionCache,
    SupabaseCacheBackend,
    cache_key,
    is_nutrition_plausible,
)


class MovableClock:
    def __init__(self):
        self.now = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class BrokenBackend:
    def get(self, key):
        raise StoreError("connection reset")

    def put(self, key, entry):
        raise StoreError("connection reset")

    def delete(self, key):
        raise StoreError("connection reset")


def matched(fdc_id=169756, **nutrition) -> MatchedResult:
    values = {"calories": 130, "protein": 2.7, "carbs": 28.2, "fat": 0.3}
    values.update(nutrition)
    return MatchedResult(
        fdc_id=fdc_id,
        description="Rice, white, long-grain, regular, enriched, cooked",
        confidence=0.9,
        reasoning="plain cooked rice",
        nutrition=NutritionPer100g(**values),
    )


@pytest.fixture
def clock():
    return MovableClock()


@pytest.fixture
def backend(tmp_path):
    return JsonFileCacheBackend(tmp_path / "nutrition_cache.json")


@pytest.fixture
def cache(backend, clock):
    return NutritionCache(backend, expiration_days=90, now=clock)


class TestCacheKey:

    def test_normalizes_name_and_unit(self):
        assert cache_key("  Chicken   Breast ", 4, " OZ") == "chicken breast|4|oz"

    def test_fractional_and_missing_serving(self):
        assert cache_key("rice", 0.5, "cup") == "rice|0.5|cup"
        assert cache_key("rice") == "rice||"

    def test_large_servings_keep_every_digit(self):
        assert cache_key("rice", 1234567, "g") == "rice|1234567|g"
        assert cache_key("rice", 1234567) != cache_key("rice", 1234568)


class TestPlausibility:

    def test_normal_food(self):
        assert is_nutrition_plausible(NutritionPer100g(calories=130, protein=2.7, carbs=28.2, fat=0.3))

    def test_zero_carbs_with_calories_rejected(self):
        # Lean meats trip this rule and get matched again
        meat = NutritionPer100g(calories=165, protein=31, carbs=0, fat=3.6)
        assert not is_nutrition_plausible(meat)

    def test_pure_fat_allowed(self):
        oil = NutritionPer100g(calories=884, protein=0, carbs=0, fat=100)
        assert is_nutrition_plausible(oil)

    def test_calories_without_macros_rejected(self):
        assert not is_nutrition_plausible(NutritionPer100g(calories=40))

    def test_macros_far_below_calories_rejected(self):
        assert not is_nutrition_plausible(NutritionPer100g(calories=300, protein=1, carbs=2, fat=0.5))

    def test_zero_calorie_food_allowed(self):
        assert is_nutrition_plausible(NutritionPer100g(calories=0, protein=0, carbs=0, fat=0))


class TestNutritionCache:

    @pytest.mark.asyncio
    async def test_put_then_get(self, cache):
        query = IngredientQuery(name="White Rice", serving_size=1, serving_unit="cup")
        await cache.put(query, matched())

        hit = await cache.get(IngredientQuery(name="white  rice", serving_size=1, serving_unit="CUP"))

        assert hit is not None
        assert hit.fdc_id == 169756
        assert hit.from_cache

    @pytest.mark.asyncio
    async def test_stored_entry_is_not_flagged_from_cache(self, cache, backend):
        query = IngredientQuery(name="rice")
        await cache.put(query, matched().model_copy(update={"from_cache": True}))
        assert backend.get("rice||")["result"]["from_cache"] is False

    @pytest.mark.asyncio
    async def test_miss_for_other_serving(self, cache):
        await cache.put(IngredientQuery(name="rice", serving_size=1, serving_unit="cup"), matched())
        assert await cache.get(IngredientQuery(name="rice", serving_size=2, serving_unit="cup")) is None

    @pytest.mark.asyncio
    async def test_entries_expire(self, cache, clock):
        query = IngredientQuery(name="rice")
        await cache.put(query, matched())

        clock.now += timedelta(days=89)
        assert await cache.get(query) is not None

        clock.now += timedelta(days=2)
        assert await cache.get(query) is None

    @pytest.mark.asyncio
    async def test_implausible_entry_is_dropped(self, cache, backend):
        query = IngredientQuery(name="chicken breast")
        await cache.put(query, matched(fdc_id=171477, calories=165, protein=31, carbs=0, fat=3.6))

        assert await cache.get(query) is None
        assert backend.get("chicken breast||") is None

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_dropped(self, cache, backend, clock):
        backend.put("rice||", {"cached_at": clock.now.isoformat(), "result": {"fdc_id": "nope"}})

        assert await cache.get(IngredientQuery(name="rice")) is None
        assert backend.get("rice||") is None

    @pytest.mark.asyncio
    async def test_non_dict_entry_is_dropped(self, tmp_path, clock):
        path = tmp_path / "cache.json"
        path.write_text(json.dumps({"rice||": "corrupted", "oats||": ["x"]}))
        backend = JsonFileCacheBackend(path)
        cache = NutritionCache(backend, now=clock)

        assert await cache.get(IngredientQuery(name="rice")) is None
        assert await cache.get(IngredientQuery(name="oats")) is None
        assert backend.get("rice||") is None
        assert backend.get("oats||") is None

    @pytest.mark.asyncio
    async def test_backend_failure_is_a_miss(self, clock):
        cache = NutritionCache(BrokenBackend(), now=clock)
        query = IngredientQuery(name="rice")

        await cache.put(query, matched())
        assert await cache.get(query) is None

    @pytest.mark.asyncio
    async def test_clear_names_drops_every_serving(self, cache, backend):
        await cache.put(IngredientQuery(name="rice", serving_size=1, serving_unit="cup"), matched())
        await cache.put(IngredientQuery(name="rice", serving_size=2, serving_unit="cup"), matched())
        await cache.put(IngredientQuery(name="brown rice"), matched(fdc_id=169704))

        cleared = await cache.clear_names(["Rice"])

        assert cleared == 2
        assert backend.get("brown rice||") is not None

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        await cache.put(IngredientQuery(name="rice"), matched())
        await cache.put(IngredientQuery(name="oats"), matched(fdc_id=173904))

        assert await cache.clear() == 2
        assert await cache.get(IngredientQuery(name="rice")) is None


class TestJsonFileCacheBackend:

    def test_save_writes_meta_header(self, tmp_path):
        path = tmp_path / "cache.json"
        backend = JsonFileCacheBackend(path)
        backend.put("rice||", {"cached_at": "2026-01-01T00:00:00+00:00", "result": {}})
        backend.save_cache()

        data = json.loads(path.read_text())
        assert list(data)[0] == "_meta"
        assert data["_meta"]["total_entries"] == 1
        assert "rice||" in data

    def test_reload_skips_meta(self, tmp_path):
        path = tmp_path / "cache.json"
        first = JsonFileCacheBackend(path)
        first.put("rice||", {"cached_at": "2026-01-01T00:00:00+00:00", "result": {}})
        first.save_cache()

        second = JsonFileCacheBackend(path)
        assert second.get("_meta") is None
        assert second.get("rice||") is not None

    def test_clean_cache_is_not_written(self, tmp_path):
        path = tmp_path / "cache.json"
        JsonFileCacheBackend(path).save_cache()
        assert not path.exists()

    def test_corrupt_file_raises_store_error(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        with pytest.raises(StoreError):
            JsonFileCacheBackend(path)

    def test_non_object_file_raises_store_error(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(StoreError):
            JsonFileCacheBackend(path)


class TestSupabaseCacheBackend:

    def test_put_upserts_on_ingredient_name(self):
        client = MagicMock()
        backend = SupabaseCacheBackend(client=client)
        result = matched().model_dump(mode="json")

        backend.put("rice|1|cup", {"cached_at": "2026-01-01T00:00:00+00:00", "result": result})

        client.table.assert_called_with("usda_ingredients")
        row, = client.table.return_value.upsert.call_args.args
        assert row["ingredient_name"] == "rice|1|cup"
        assert row["calories_per_100g"] == 130
        assert row["match_data"] == result
        assert client.table.return_value.upsert.call_args.kwargs == {"on_conflict": "ingredient_name"}

    def test_get_reads_match_data(self):
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value = MagicMock(data=[{
            "ingredient_name": "rice||",
            "match_data": {"fdc_id": 1},
            "updated_at": "2026-01-01T00:00:00+00:00",
        }])

        entry = SupabaseCacheBackend(client=client).get("rice||")

        assert entry == {"cached_at": "2026-01-01T00:00:00+00:00", "result": {"fdc_id": 1}}

    def test_query_failure_raises_store_error(self):
        client = MagicMock()
        client.table.side_effect = RuntimeError("network down")
        with pytest.raises(StoreError):
            SupabaseCacheBackend(client=client).get("rice||")

    def test_requires_credentials(self):
        with pytest.raises(StoreError):
            SupabaseCacheBackend()
