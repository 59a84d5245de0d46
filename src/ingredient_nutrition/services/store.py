"""
Backing stores for unit-conversion lookup tables.

A store hands back two name -> value mappings:
- density multipliers (grams per ml relative to water), from `density_multipliers`
- typical item weights in grams, from `item_weights`

Stores are synchronous. The conversion cache calls them through
asyncio.to_thread and falls back to static tables when they raise StoreError.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol, Union

from supabase import Client, create_client

from ingredient_nutrition.config import get_supabase_key, get_supabase_url
from ingredient_nutrition.exceptions import StoreError

logger = logging.getLogger(__name__)


class ConversionStore(Protocol):
    """Source of density multipliers and item weights, keyed by lower-case ingredient name."""

    def load_density_multipliers(self) -> Dict[str, float]:
        ...

    def load_item_weights(self) -> Dict[str, float]:
        ...


def _rows_to_mapping(rows: Iterable[Dict[str, Any]], value_column: str) -> Dict[str, float]:
    """Lower-case names, coerce values to float, skip rows that don't parse."""
    mapping: Dict[str, float] = {}
    for row in rows:
        name = row.get("ingredient_name")
        value = row.get(value_column)
        if not name or value is None:
            continue
        try:
            mapping[str(name).lower().strip()] = float(value)
        except (TypeError, ValueError):
            logger.warning(f"Skipping unparseable {value_column} for '{name}': {value!r}")
    return mapping


class SupabaseConversionStore:
    """Reads the conversion tables from Supabase (PostgREST)."""

    DENSITY_TABLE = "density_multipliers"
    ITEM_WEIGHT_TABLE = "item_weights"

    def __init__(
        self,
        client: Optional[Client] = None,
        url: Optional[str] = None,
        key: Optional[str] = None,
    ):
        if client is None:
            url = url or get_supabase_url()
            key = key or get_supabase_key()
            if not url or not key:
                raise StoreError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
            client = create_client(url, key)
        self._client = client

    def _select(self, table: str, columns: str) -> list:
        try:
            response = self._client.table(table).select(columns).execute()
        except Exception as e:
            raise StoreError(f"Failed to read {table}: {e}") from e
        return response.data or []

    def load_density_multipliers(self) -> Dict[str, float]:
        rows = self._select(self.DENSITY_TABLE, "ingredient_name, multiplier")
        return _rows_to_mapping(rows, "multiplier")

    def load_item_weights(self) -> Dict[str, float]:
        rows = self._select(self.ITEM_WEIGHT_TABLE, "ingredient_name, weight_grams")
        return _rows_to_mapping(rows, "weight_grams")


class JsonConversionStore:
    """
    Reads the conversion tables from a local JSON file.

    Expected layout:
        {
          "density_multipliers": [{"ingredient_name": "honey", "multiplier": 1.42}, ...],
          "item_weights": [{"ingredient_name": "egg", "weight_grams": 50}, ...]
        }
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read conversion tables from {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"{self.path} must contain a JSON object")
        return data

    def load_density_multipliers(self) -> Dict[str, float]:
        return _rows_to_mapping(self._load().get("density_multipliers") or [], "multiplier")

    def load_item_weights(self) -> Dict[str, float]:
        return _rows_to_mapping(self._load().get("item_weights") or [], "weight_grams")
