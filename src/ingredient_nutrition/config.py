"""
Centralized configuration for ingredient nutrition matching.

Tunable thresholds live here as named constants. Credentials and endpoints
are read lazily from the environment so that entry points can call
``load_dotenv()`` before anything touches them.
"""

import os
from typing import Optional

# ── External endpoints ──────────────────────────────────────────────

FDC_BASE_URL = "https://api.nal.usda.gov/fdc/v1"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MATCH_MODEL = "anthropic/claude-sonnet-4.5"

# ── Search ──────────────────────────────────────────────────────────

SEARCH_PAGE_SIZE = 15
MAX_PAGE_SIZE = 50
MAX_ORACLE_CANDIDATES = 15
HTTP_TIMEOUT_SECONDS = 15.0

# ── Matching thresholds (tunable) ───────────────────────────────────

# Top fuzzy score below which fallback queries are issued.
FUZZY_THRESHOLD = 0.4
# Per-token Jaro-Winkler similarity that counts as a token hit.
TOKEN_SIMILARITY_THRESHOLD = 0.85
# Oracle confidence below which a decision is treated as no match.
MIN_MATCH_CONFIDENCE = 0.5
# Relative calorie deviation from the prior estimate that forces review.
CALORIE_REVIEW_DEVIATION = 0.40
# Alternatives inherit the oracle confidence scaled by this factor.
ALTERNATIVE_CONFIDENCE_FACTOR = 0.8
MAX_FALLBACK_QUERIES = 3

# ── Caching ─────────────────────────────────────────────────────────

CONVERSION_CACHE_TTL_SECONDS = 5 * 60
NUTRITION_CACHE_EXPIRATION_DAYS = 90

# ── Batch mode ──────────────────────────────────────────────────────

DEFAULT_BATCH_DELAY_MS = 200


# ── Environment (lazy) ──────────────────────────────────────────────

def get_usda_api_key() -> Optional[str]:
    return os.getenv("USDA_API_KEY") or None


def get_openrouter_api_key() -> Optional[str]:
    return os.getenv("OPENROUTER_API_KEY") or None


def get_match_model() -> str:
    return os.getenv("NUTRITION_MATCH_MODEL", DEFAULT_MATCH_MODEL)


def get_supabase_url() -> Optional[str]:
    return os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or None


def get_supabase_key() -> Optional[str]:
    return (
        os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        or os.getenv("SUPABASE_ANON_KEY")
        or None
    )
