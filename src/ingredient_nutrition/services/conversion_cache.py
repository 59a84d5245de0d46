"""
TTL cache for the unit-conversion lookup tables.

Readers get an immutable ConversionTables snapshot and never lock. A refresh
builds a new snapshot and swaps it in with a single assignment. Concurrent
refreshes collapse into one store read through an asyncio.Lock; callers that
waited on the lock re-check freshness before reading the store themselves.

When the store fails, the previous snapshot is kept and re-stamped, so the
next attempt waits a full TTL. Before the first successful load the static
fallback tables below are served.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional

from ingredient_nutrition.config import CONVERSION_CACHE_TTL_SECONDS
from ingredient_nutrition.exceptions import StoreError
from ingredient_nutrition.services.store import ConversionStore

logger = logging.getLogger(__name__)

# Grams per ml relative to water, used for volume units.
FALLBACK_DENSITY_MULTIPLIERS: Dict[str, float] = {
    # Liquids
    "water": 1,
    "milk": 1.03,
    "olive oil": 0.92,
    "oil": 0.92,
    "honey": 1.42,
    "maple syrup": 1.37,
    # Flours and powders
    "flour": 0.53,
    "almond flour": 0.48,
    "coconut flour": 0.45,
    "protein powder": 0.4,
    "cocoa powder": 0.45,
    "sugar": 0.85,
    "brown sugar": 0.83,
    # Grains and cereals
    "rice": 0.75,
    "oats": 0.35,
    "rolled oats": 0.35,
    "quinoa": 0.73,
    "granola": 0.45,
    "cereal": 0.4,
    "muesli": 0.45,
    # Leafy vegetables
    "spinach": 0.25,
    "lettuce": 0.2,
    "kale": 0.25,
    "mixed greens": 0.22,
    # Berries
    "berries": 0.6,
    "blueberries": 0.65,
    "strawberries": 0.55,
    "raspberries": 0.5,
    "blackberries": 0.55,
    "mixed berries": 0.6,
    # Nuts and spreads
    "almonds": 0.6,
    "walnuts": 0.55,
    "peanut butter": 1.05,
    "almond butter": 1.05,
    # Dairy
    "greek yogurt": 1.05,
    "yogurt": 1.03,
    "cottage cheese": 0.95,
    "cheese": 0.9,
    "butter": 0.91,
}

# Typical weight of one item, in grams.
FALLBACK_ITEM_WEIGHTS: Dict[str, float] = {
    "egg": 50,
    "eggs": 50,
    "large egg": 50,
    "large eggs": 50,
    "banana": 118,
    "bananas": 118,
    "apple": 182,
    "apples": 182,
    "orange": 131,
    "oranges": 131,
    "avocado": 150,
    "avocados": 150,
    "chicken breast": 174,
    "chicken breasts": 174,
    "salmon fillet": 170,
    "salmon fillets": 170,
    "sweet potato": 130,
    "sweet potatoes": 130,
    "potato": 150,
    "potatoes": 150,
    "tomato": 123,
    "tomatoes": 123,
    "onion": 110,
    "onions": 110,
    "garlic": 3,  # one clove
    "garlic clove": 3,
    "garlic cloves": 3,
    "clove": 3,
    "cloves": 3,
    "lemon": 58,
    "lemons": 58,
    "lime": 44,
    "limes": 44,
    "slice": 30,  # bread and the like
    "slices": 30,
    "piece": 100,
    "pieces": 100,
}


@dataclass(frozen=True)
class ConversionTables:
    """One immutable generation of the lookup tables."""

    density_multipliers: Mapping[str, float]
    item_weights: Mapping[str, float]
    # Monotonic timestamp of the load, None for the never-loaded fallback
    loaded_at: Optional[float] = None
    # "store", "fallback" or "mixed" (one table from each)
    source: str = "fallback"

    @classmethod
    def fallback(cls, loaded_at: Optional[float] = None) -> "ConversionTables":
        return cls(
            density_multipliers=MappingProxyType(dict(FALLBACK_DENSITY_MULTIPLIERS)),
            item_weights=MappingProxyType(dict(FALLBACK_ITEM_WEIGHTS)),
            loaded_at=loaded_at,
            source="fallback",
        )

    def restamped(self, loaded_at: Optional[float]) -> "ConversionTables":
        return ConversionTables(
            density_multipliers=self.density_multipliers,
            item_weights=self.item_weights,
            loaded_at=loaded_at,
            source=self.source,
        )


class ConversionCache:
    """
    Holds the current ConversionTables and refreshes it from a store.

    Args:
        store: Table source. None means static fallbacks only.
        ttl_seconds: Snapshot lifetime.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        store: Optional[ConversionStore] = None,
        ttl_seconds: float = CONVERSION_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._ttl = ttl_seconds
        self._clock = clock
        self._tables = ConversionTables.fallback()
        self._refresh_lock = asyncio.Lock()
        self.load_count = 0
        self.store_reads = 0

    @property
    def tables(self) -> ConversionTables:
        """Current snapshot, without triggering a refresh."""
        return self._tables

    def is_fresh(self) -> bool:
        loaded_at = self._tables.loaded_at
        return loaded_at is not None and (self._clock() - loaded_at) < self._ttl

    def invalidate(self) -> None:
        """Force the next get() to reload."""
        self._tables = self._tables.restamped(loaded_at=None)

    async def get(self) -> ConversionTables:
        """Return a fresh snapshot, reloading from the store if the TTL expired."""
        if self.is_fresh():
            return self._tables

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited
            if self.is_fresh():
                return self._tables
            self._tables = await self._load()
            self.load_count += 1
        return self._tables

    async def _load(self) -> ConversionTables:
        now = self._clock()
        if self._store is None:
            return ConversionTables.fallback(loaded_at=now)

        self.store_reads += 1
        try:
            densities = await asyncio.to_thread(self._store.load_density_multipliers)
            weights = await asyncio.to_thread(self._store.load_item_weights)
        except StoreError as e:
            logger.warning(f"Conversion table reload failed, keeping previous tables: {e}")
            return self._tables.restamped(loaded_at=now)

        from_store = 0
        if densities:
            from_store += 1
        else:
            logger.info("No density multipliers in store, using fallback table")
            densities = dict(FALLBACK_DENSITY_MULTIPLIERS)
        if weights:
            from_store += 1
        else:
            logger.info("No item weights in store, using fallback table")
            weights = dict(FALLBACK_ITEM_WEIGHTS)

        source = {0: "fallback", 1: "mixed", 2: "store"}[from_store]
        logger.debug(
            f"Loaded conversion tables ({source}): "
            f"{len(densities)} densities, {len(weights)} item weights"
        )
        return ConversionTables(
            density_multipliers=MappingProxyType(densities),
            item_weights=MappingProxyType(weights),
            loaded_at=now,
            source=source,
        )
