"""
Fuzzy re-ranking of USDA search results and fallback query generation.

The USDA search endpoint ranks by its own relevance score, which happily
puts "Sardines, canned in olive oil" above "Oil, olive" for "olive oil".
Results are re-scored against the cleaned query:

    score = 0.7 * token_overlap + 0.3 * jaro_winkler(query, description)

token_overlap is the fraction of query tokens with a fuzzy hit in the
description (substring either way, or Jaro-Winkler above 0.85).

When the best score stays under FUZZY_THRESHOLD the caller retries the
search with one token dropped at a time (see generate_fallback_queries).
"""

import re
from typing import List, Sequence

from ingredient_nutrition.config import (
    FUZZY_THRESHOLD,
    MAX_FALLBACK_QUERIES,
    TOKEN_SIMILARITY_THRESHOLD,
)
from ingredient_nutrition.models import ScoredCandidate, SearchCandidate

__all__ = [
    "FUZZY_THRESHOLD",
    "jaro_winkler",
    "fuzzy_score",
    "score_candidates",
    "generate_fallback_queries",
]

_TOKEN_WEIGHT = 0.7
_FULL_STRING_WEIGHT = 0.3

_WINKLER_PREFIX_LIMIT = 4
_WINKLER_SCALING = 0.1

_DESCRIPTION_SPLIT = re.compile(r"[\s,\-()]+")


def jaro_winkler(s1: str, s2: str) -> float:
    """
    Jaro-Winkler similarity in [0, 1].

    Jaro: characters match when equal and no further apart than
    max(len1, len2) // 2 - 1 (clamped at 0); half the out-of-order matched
    characters count as transpositions. Winkler adds
    prefix_len * 0.1 * (1 - jaro) for up to 4 shared leading characters.
    """
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    len1, len2 = len(s1), len(s2)
    match_window = max(max(len1, len2) // 2 - 1, 0)

    s1_matches = [False] * len1
    s2_matches = [False] * len2
    matches = 0

    for i in range(len1):
        start = max(0, i - match_window)
        end = min(i + match_window + 1, len2)
        for j in range(start, end):
            if s2_matches[j] or s1[i] != s2[j]:
                continue
            s1_matches[i] = True
            s2_matches[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    transpositions = 0
    k = 0
    for i in range(len1):
        if not s1_matches[i]:
            continue
        while not s2_matches[k]:
            k += 1
        if s1[i] != s2[k]:
            transpositions += 1
        k += 1

    jaro = (
        matches / len1
        + matches / len2
        + (matches - transpositions / 2) / matches
    ) / 3

    prefix_len = 0
    for i in range(min(_WINKLER_PREFIX_LIMIT, len1, len2)):
        if s1[i] != s2[i]:
            break
        prefix_len += 1

    return jaro + prefix_len * _WINKLER_SCALING * (1 - jaro)


def _description_tokens(description: str) -> List[str]:
    return [t for t in _DESCRIPTION_SPLIT.split(description) if t]


def _token_hit(query_token: str, description_tokens: Sequence[str]) -> bool:
    for desc_token in description_tokens:
        if query_token in desc_token or desc_token in query_token:
            return True
        if jaro_winkler(query_token, desc_token) > TOKEN_SIMILARITY_THRESHOLD:
            return True
    return False


def fuzzy_score(description: str, query_tokens: Sequence[str]) -> float:
    """Score a single description against the query tokens."""
    desc = description.lower()
    desc_tokens = _description_tokens(desc)

    if query_tokens:
        hits = sum(1 for qt in query_tokens if _token_hit(qt, desc_tokens))
        token_overlap = hits / len(query_tokens)
    else:
        token_overlap = 0.0

    full_similarity = jaro_winkler(" ".join(query_tokens), desc)
    score = _TOKEN_WEIGHT * token_overlap + _FULL_STRING_WEIGHT * full_similarity
    # Float noise can push a perfect score a hair above 1
    return min(score, 1.0)


def score_candidates(
    candidates: Sequence[SearchCandidate],
    query_tokens: Sequence[str],
) -> List[ScoredCandidate]:
    """
    Score and sort candidates by fuzzy relevance, best first.

    Sorting is stable, so equal scores keep the search API's order.
    """
    scored = [
        ScoredCandidate(candidate=c, score=fuzzy_score(c.description, query_tokens))
        for c in candidates
    ]
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored


def generate_fallback_queries(tokens: Sequence[str]) -> List[str]:
    """
    Alternative queries built by dropping one token at a time.

    Left to right, so the first token goes first: it is often a brand or
    store name that survived preprocessing. At most three alternatives;
    none for single-token queries.
    """
    if len(tokens) < 2:
        return []

    queries: List[str] = []
    for i in range(len(tokens)):
        if len(queries) >= MAX_FALLBACK_QUERIES:
            break
        reduced = " ".join(t for idx, t in enumerate(tokens) if idx != i)
        if len(reduced) >= 2:
            queries.append(reduced)
    return queries
