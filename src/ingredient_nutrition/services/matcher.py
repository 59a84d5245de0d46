"""
Ingredient -> USDA FoodData Central match orchestration.

Pipeline for one ingredient:

    nutrition cache -> preprocess -> FDC search -> fuzzy rerank
      -> (fallback searches while the best score is under FUZZY_THRESHOLD)
      -> top candidates -> disambiguation oracle -> interpret decision

Every outcome is a MatchResult variant. "No match" is a normal result; only
oracle failures and malformed decisions become MatchErrorResult.
"""

import asyncio
import logging
import math
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from ingredient_nutrition.config import (
    ALTERNATIVE_CONFIDENCE_FACTOR,
    CALORIE_REVIEW_DEVIATION,
    DEFAULT_BATCH_DELAY_MS,
    FUZZY_THRESHOLD,
    MAX_ORACLE_CANDIDATES,
    MIN_MATCH_CONFIDENCE,
    SEARCH_PAGE_SIZE,
)
from ingredient_nutrition.exceptions import DisambiguationError
from ingredient_nutrition.models import (
    Alternative,
    BatchItem,
    BatchResult,
    BestEffortCandidate,
    IngredientQuery,
    MatchContext,
    MatchErrorResult,
    MatchedResult,
    MatchResult,
    NoMatchResult,
    NutritionPer100g,
    OracleDecision,
    ScoredCandidate,
    SearchCandidate,
    ServingNutrition,
)
from ingredient_nutrition.observability import observe, trace_context
from ingredient_nutrition.services.disambiguation import Disambiguator, default_disambiguator
from ingredient_nutrition.services.fdc_client import FdcClient
from ingredient_nutrition.services.fuzzy_ranker import generate_fallback_queries, score_candidates
from ingredient_nutrition.services.nutrition_cache import NutritionCache
from ingredient_nutrition.services.query_preprocessor import preprocess, tokenize
from ingredient_nutrition.services.unit_converter import UnitConverter

logger = logging.getLogger(__name__)


def _round_half_up(value: float, digits: int = 0) -> float:
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def scale_nutrition(
    nutrition: NutritionPer100g,
    grams: float,
    conversion_confidence: str,
) -> ServingNutrition:
    """Per-100g values scaled to a serving. Calories whole, the rest to 0.1 g."""
    factor = grams / 100

    def scaled(value: Optional[float]) -> Optional[float]:
        return None if value is None else _round_half_up(value * factor, 1)

    return ServingNutrition(
        grams=grams,
        conversion_confidence=conversion_confidence,
        calories=_round_half_up(nutrition.calories * factor),
        protein=scaled(nutrition.protein),
        carbs=scaled(nutrition.carbs),
        fat=scaled(nutrition.fat),
        fiber=scaled(nutrition.fiber),
        sugar=scaled(nutrition.sugar),
    )


class IngredientMatcher:
    """
    Resolves ingredient queries to USDA records.

    All collaborators are injected; defaults build the production ones
    from environment configuration.

    Args:
        fdc_client: FoodData Central client.
        disambiguator: Oracle picking among candidates.
        converter: Serving-to-grams converter for the calorie sanity check.
        nutrition_cache: Optional cache of previous matches.
        page_size: Results requested per search.
        sleep: Awaitable sleep used between batch items.
    """

    def __init__(
        self,
        fdc_client: Optional[FdcClient] = None,
        disambiguator: Optional[Disambiguator] = None,
        converter: Optional[UnitConverter] = None,
        nutrition_cache: Optional[NutritionCache] = None,
        page_size: int = SEARCH_PAGE_SIZE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fdc = fdc_client or FdcClient()
        self.disambiguator = disambiguator or default_disambiguator()
        self.converter = converter or UnitConverter()
        self.nutrition_cache = nutrition_cache
        self.page_size = page_size
        self._sleep = sleep

    # ── Single match ─────────────────────────────────────────────────

    @observe(name="find_best_match")
    async def find_best_match(self, query: IngredientQuery) -> MatchResult:
        trace_context.update_current_trace(metadata={"ingredient": query.name})

        if self.nutrition_cache is not None:
            cached = await self.nutrition_cache.get(query)
            if cached is not None:
                logger.info(f"Cache hit for '{query.name}' -> fdc {cached.fdc_id}")
                return cached

        cleaned = preprocess(query.name)
        tokens = tokenize(cleaned)
        if not tokens:
            return NoMatchResult(reason="Empty ingredient name")
        if cleaned != query.name.lower():
            logger.debug(f"Preprocessed '{query.name}' -> '{cleaned}'")

        candidates = await self.fdc.search(cleaned, page_size=self.page_size)
        if not candidates:
            logger.info(f"No USDA results for '{query.name}'")
            return NoMatchResult(reason=f"No USDA search results for '{query.name}'")

        scored = score_candidates(candidates, tokens)
        if scored[0].score < FUZZY_THRESHOLD:
            scored = await self._search_fallbacks(tokens, candidates, scored)

        shortlist = [s.candidate for s in scored[:MAX_ORACLE_CANDIDATES]]
        logger.debug(
            f"'{query.name}': {len(shortlist)} candidates for the oracle, "
            f"top '{scored[0].candidate.description}' ({scored[0].score:.2f})"
        )

        try:
            decision = await self.disambiguator.disambiguate(shortlist, MatchContext.from_query(query))
        except DisambiguationError as e:
            logger.error(f"Disambiguation failed for '{query.name}': {e}")
            return MatchErrorResult(message=str(e))

        result = await self._interpret(query, decision, shortlist)

        if isinstance(result, MatchedResult) and self.nutrition_cache is not None:
            await self.nutrition_cache.put(query, result)

        logger.info(f"'{query.name}' -> {result.status}")
        return result

    async def _search_fallbacks(
        self,
        tokens: Sequence[str],
        candidates: Sequence[SearchCandidate],
        scored: List[ScoredCandidate],
    ) -> List[ScoredCandidate]:
        """
        Retry with reduced queries, merging results by FDC ID.

        Everything is re-scored against the full query tokens; stops at
        the first reduced query that lifts the best score to the threshold.
        """
        merged: Dict[int, SearchCandidate] = {c.fdc_id: c for c in candidates}

        for alt_query in generate_fallback_queries(tokens):
            logger.debug(f"Best score {scored[0].score:.2f} < {FUZZY_THRESHOLD}, trying '{alt_query}'")
            for candidate in await self.fdc.search(alt_query, page_size=self.page_size):
                merged.setdefault(candidate.fdc_id, candidate)
            scored = score_candidates(list(merged.values()), tokens)
            if scored[0].score >= FUZZY_THRESHOLD:
                break

        return scored

    async def _interpret(
        self,
        query: IngredientQuery,
        decision: OracleDecision,
        shortlist: Sequence[SearchCandidate],
    ) -> MatchResult:
        by_id = {c.fdc_id: c for c in shortlist}
        alternatives = [
            Alternative(
                fdc_id=alt_id,
                description=by_id[alt_id].description if alt_id in by_id else "",
                confidence=decision.confidence * ALTERNATIVE_CONFIDENCE_FACTOR,
            )
            for alt_id in decision.alternative_fdc_ids
        ]

        if decision.is_no_match or decision.confidence < MIN_MATCH_CONFIDENCE:
            best_effort = None
            if not decision.is_no_match:
                leaning = by_id.get(decision.best_match_fdc_id)
                best_effort = BestEffortCandidate(
                    fdc_id=decision.best_match_fdc_id,
                    description=leaning.description if leaning else "",
                    confidence=decision.confidence,
                    nutrition=leaning.nutrition if leaning else NutritionPer100g(),
                )
            return NoMatchResult(
                reason=decision.reasoning,
                best_effort=best_effort,
                alternatives=alternatives,
            )

        chosen = by_id.get(decision.best_match_fdc_id)
        fetched = False
        if chosen is None:
            logger.info(
                f"'{query.name}': oracle chose fdc {decision.best_match_fdc_id} outside the shortlist, "
                f"fetching details"
            )
            chosen = await self.fdc.get_details(decision.best_match_fdc_id)
            if chosen is None:
                return MatchErrorResult(
                    message=(
                        f"Oracle chose FDC ID {decision.best_match_fdc_id}, which is not among "
                        f"the {len(shortlist)} candidates and could not be fetched"
                    )
                )
            fetched = True

        nutrition = chosen.nutrition
        if nutrition.is_empty and not fetched:
            details = await self.fdc.get_details(chosen.fdc_id)
            if details is not None and not details.nutrition.is_empty:
                nutrition = details.nutrition

        needs_review = decision.needs_review
        if not needs_review and await self._calories_deviate(query, nutrition):
            logger.info(f"'{query.name}': calories deviate from the prior estimate, flagging for review")
            needs_review = True

        return MatchedResult(
            fdc_id=chosen.fdc_id,
            description=chosen.description,
            confidence=decision.confidence,
            reasoning=decision.reasoning,
            nutrition=nutrition,
            alternatives=alternatives,
            recommended_serving_size=decision.recommended_serving_size,
            recommended_serving_unit=decision.recommended_serving_unit,
            serving_change_reason=decision.serving_change_reason,
            needs_review=needs_review,
        )

    async def _calories_deviate(self, query: IngredientQuery, nutrition: NutritionPer100g) -> bool:
        """True when the match implies calories > 40% away from the caller's estimate."""
        prior = query.prior_estimate
        if prior is None:
            return False

        grams = 100.0
        if query.serving_size is not None:
            conversion = await self.converter.convert(
                f"{query.serving_size:.10g}", query.serving_unit or "", query.name
            )
            grams = conversion.grams

        implied = nutrition.calories * grams / 100
        if prior.calories == 0:
            return implied > 0
        return abs(implied - prior.calories) / prior.calories > CALORIE_REVIEW_DEVIATION

    # ── Batch ────────────────────────────────────────────────────────

    async def batch_match(
        self,
        items: Sequence[BatchItem],
        delay_ms: int = DEFAULT_BATCH_DELAY_MS,
    ) -> List[BatchResult]:
        """
        Match items one at a time, in input order.

        Sleeps delay_ms between items to stay under the FDC rate limit. A
        failure on one item becomes that item's MatchErrorResult.
        """
        results: List[BatchResult] = []
        total = len(items)

        for i, item in enumerate(items, start=1):
            logger.info(f"[{i}/{total}] Matching '{item.name}'")
            try:
                result = await self.find_best_match(item.to_query())
            except Exception as e:
                logger.error(f"Matching '{item.name}' failed: {e}")
                result = MatchErrorResult(message=str(e))
            results.append(BatchResult(id=item.id, result=result))

            if delay_ms > 0 and i < total:
                await self._sleep(delay_ms / 1000)

        matched = sum(1 for r in results if r.result.status == "matched")
        logger.info(f"Batch done: {matched}/{total} matched")
        return results

    # ── Serving conversion ───────────────────────────────────────────

    async def convert_match_to_serving(
        self,
        result: MatchResult,
        serving_size: float,
        serving_unit: str,
        ingredient_name: Optional[str] = None,
    ) -> Optional[ServingNutrition]:
        """
        Scale a match's per-100g nutrition to a serving.

        Returns None unless the result is a MatchedResult. Grams come from
        the unit converter, looked up by ingredient_name (or the USDA
        description when no name is given).
        """
        if not isinstance(result, MatchedResult):
            return None

        conversion = await self.converter.convert(
            f"{serving_size:.10g}", serving_unit, ingredient_name or result.description
        )
        return scale_nutrition(result.nutrition, conversion.grams, conversion.confidence)
