"""
Disambiguation oracles: pick one USDA candidate for an ingredient.

The matcher only depends on the Disambiguator protocol. Two implementations:

- LLMDisambiguator: an OpenAI-compatible chat model (OpenRouter) forced to
  answer through the select_usda_match tool. The tool arguments are validated
  into an OracleDecision.
- HeuristicDisambiguator: deterministic keyword and data-type scoring, for
  offline runs and when no API key is configured.
"""

import json
import logging
from typing import Any, List, Optional, Protocol, Sequence, Tuple

import openai
from pydantic import ValidationError

from ingredient_nutrition.config import (
    OPENROUTER_BASE_URL,
    get_match_model,
    get_openrouter_api_key,
)
from ingredient_nutrition.exceptions import OracleResponseError, OracleUnavailableError
from ingredient_nutrition.models import (
    NO_MATCH_SENTINEL,
    DataType,
    MatchContext,
    OracleDecision,
    SearchCandidate,
)
from ingredient_nutrition.observability import get_async_openai_class, observe
from ingredient_nutrition.prompts.disambiguation import (
    SELECT_MATCH_TOOL,
    SELECT_MATCH_TOOL_NAME,
    SYSTEM_PROMPT,
    build_matching_prompt,
)
from ingredient_nutrition.services.fuzzy_ranker import fuzzy_score
from ingredient_nutrition.services.query_preprocessor import tokenize

logger = logging.getLogger(__name__)


class Disambiguator(Protocol):
    """Chooses the best candidate, or the no-match sentinel, for a query."""

    async def disambiguate(
        self,
        candidates: Sequence[SearchCandidate],
        context: MatchContext,
    ) -> OracleDecision:
        ...


# ── LLM oracle ───────────────────────────────────────────────────────


def _strip_code_fences(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("```"):
        first_newline = raw.find("\n")
        raw = raw[first_newline + 1:] if first_newline != -1 else ""
        if raw.rstrip().endswith("```"):
            raw = raw.rstrip()[:-3].rstrip()
    return raw


def parse_decision(arguments: str) -> OracleDecision:
    """Validate raw tool-call arguments (a JSON object) into an OracleDecision."""
    try:
        data = json.loads(_strip_code_fences(arguments))
    except json.JSONDecodeError as e:
        raise OracleResponseError(f"Oracle returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise OracleResponseError(f"Oracle returned {type(data).__name__}, expected an object")
    # Models sometimes send explicit nulls for optional fields
    data = {k: v for k, v in data.items() if v is not None}
    try:
        return OracleDecision.model_validate(data)
    except ValidationError as e:
        raise OracleResponseError(f"Oracle decision failed validation: {e}") from e


def _extract_arguments(response: Any) -> str:
    """Pull the select_usda_match arguments out of a chat completion."""
    if not response.choices:
        raise OracleResponseError("Oracle returned no choices")
    message = response.choices[0].message

    for tool_call in message.tool_calls or []:
        if tool_call.function.name == SELECT_MATCH_TOOL_NAME:
            return tool_call.function.arguments

    # Some providers ignore tool_choice and answer in plain content
    if message.content and message.content.strip():
        logger.debug("Oracle answered without a tool call, parsing message content")
        return message.content

    raise OracleResponseError(f"Oracle did not call {SELECT_MATCH_TOOL_NAME}")


class LLMDisambiguator:
    """
    Picks a USDA entry with a chat model through OpenRouter.

    All nutrition numbers still come from USDA; the model only chooses which
    entry to use and may recommend a clearer serving unit.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[Any] = None,
        timeout: float = 60.0,
        max_tokens: int = 1024,
    ):
        """
        Args:
            api_key: OpenRouter key. Defaults to OPENROUTER_API_KEY.
            model: OpenRouter model slug. Defaults to NUTRITION_MATCH_MODEL or the built-in default.
            client: Pre-built AsyncOpenAI-compatible client (tests inject a mock here).
            timeout: Request timeout in seconds.
            max_tokens: Completion budget for the tool call.
        """
        self.api_key = api_key or get_openrouter_api_key()
        self.model = model or get_match_model()
        self.max_tokens = max_tokens

        if client is not None:
            self._client = client
        elif not self.api_key:
            logger.warning("No OPENROUTER_API_KEY, LLM disambiguation will be unavailable")
            self._client = None
        else:
            async_openai = get_async_openai_class()
            self._client = async_openai(
                api_key=self.api_key,
                base_url=OPENROUTER_BASE_URL,
                timeout=timeout,
                default_headers={
                    "X-Title": "Ingredient Nutrition Matcher",
                },
            )

    @property
    def is_available(self) -> bool:
        return self._client is not None

    @observe(name="llm_disambiguate")
    async def disambiguate(
        self,
        candidates: Sequence[SearchCandidate],
        context: MatchContext,
    ) -> OracleDecision:
        if not self.is_available:
            raise OracleUnavailableError("LLM disambiguator disabled (no OPENROUTER_API_KEY)")

        prompt = build_matching_prompt(candidates, context)
        logger.debug(
            f"[LLMDisambiguator] '{context.ingredient_name}': {len(candidates)} candidates -> {self.model}"
        )

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                tools=[SELECT_MATCH_TOOL],
                tool_choice={"type": "function", "function": {"name": SELECT_MATCH_TOOL_NAME}},
                max_tokens=self.max_tokens,
                temperature=0.1,
            )
        except openai.APIError as e:
            raise OracleUnavailableError(f"LLM request failed: {e}") from e

        decision = parse_decision(_extract_arguments(response))
        logger.info(
            f"[LLMDisambiguator] '{context.ingredient_name}' -> fdc {decision.best_match_fdc_id} "
            f"(confidence={decision.confidence:.2f})"
        )
        return decision


# ── Heuristic oracle ─────────────────────────────────────────────────

_PROCESSED_WORDS = {
    "dehydrated", "canned", "frozen", "dried", "cooked",
    "roasted", "fried", "spread", "sauce", "juice", "powder",
    "pickled", "smoked", "breaded", "concentrate",
    "syrup", "mix", "blend", "flavored", "baby", "snack",
    "snacks", "babyfood", "reduced",
}

# Words that turn one food into another ("apple" vs "apple pie")
_CATEGORY_CHANGERS = {
    "flour", "oil", "fat", "juice", "extract", "powder", "paste",
    "sauce", "bread", "ice", "cream", "yogurt", "cake", "pie",
    "cookie", "muffin", "soup", "stew", "salad", "sandwich",
    "loaf", "burger", "shake", "pudding", "puddings", "candy",
    "candies", "fudge", "chip", "chips", "stick", "sticks",
    "pancake", "pancakes", "mayonnaise", "cheese", "jam", "jelly",
    "marmalade", "wafer", "cracker", "crackers", "cereal", "granola",
    "sausage", "jerky", "pate", "sardines", "sardine", "anchovies",
}

_NEUTRAL_WORDS = {
    "raw", "fresh", "whole", "plain", "natural", "unsalted",
    "salted", "with", "and", "or", "in", "of", "the",
    "peeled", "halves", "pieces", "skin", "includes",
    "without", "table", "light", "regular", "cooking",
}

_DATA_TYPE_BONUS = {0: 5, 1: 3, 2: 1, 3: 0}

# Grade qualifiers that name no other food ("Oil, olive, salad or cooking")
_NEUTRAL_PHRASES = ("salad or cooking",)


def _stem(word: str) -> str:
    """Strip plural endings: berries -> berry, potatoes -> potato."""
    if word.endswith("ies"):
        return word[:-3] + "y"
    if word.endswith("oes"):
        return word[:-2]
    if word.endswith("es") and len(word) > 3:
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss") and len(word) > 2:
        return word[:-1]
    return word


def _words(text: str) -> set:
    cleaned = text.lower().replace(",", " ").replace("(", " ").replace(")", " ").replace("-", " ")
    return set(cleaned.split())


def heuristic_score(query: str, candidate: SearchCandidate) -> float:
    """
    Keyword score for one candidate. Higher is better, unbounded.

    - Foundation > SR Legacy > Survey > Branded
    - every query word must appear in the description
    - "raw" is a strong positive, processed forms are penalized
    - words that change the food category are heavily penalized
    - shorter, more generic descriptions win ties
    """
    query_lower = query.lower().strip()
    query_words = _words(query_lower)
    query_stems = {_stem(w) for w in query_words}

    desc = candidate.description.lower()
    described = desc
    for phrase in _NEUTRAL_PHRASES:
        if phrase not in query_lower:
            described = described.replace(phrase, " ")
    desc_words = _words(described)
    desc_stems = {_stem(w) for w in desc_words}

    score = float(_DATA_TYPE_BONUS[DataType.rank(candidate.data_type)])

    if query_lower == desc:
        score += 50

    missing = query_stems - desc_stems
    if not missing:
        score += 20
    else:
        score -= len(missing) * 10

    if "raw" in desc_words:
        score += 15

    score -= 10 * len((_PROCESSED_WORDS & desc_words) - query_words)
    score -= 20 * len((_CATEGORY_CHANGERS & desc_words) - query_words)

    neutral_stems = {_stem(w) for w in _NEUTRAL_WORDS}
    extra_stems = desc_stems - query_stems - neutral_stems
    score -= len(extra_stems) * 3

    score -= len(desc) * 0.05
    return score


class HeuristicDisambiguator:
    """
    Rule-based oracle. No network, fully deterministic.

    The winner is the best heuristic_score; its confidence is the fuzzy
    relevance of its description to the query, so descriptions that miss
    query words fall under the match threshold on their own.
    """

    def __init__(self, max_alternatives: int = 2, review_below: float = 0.7):
        self.max_alternatives = max_alternatives
        self.review_below = review_below

    async def disambiguate(
        self,
        candidates: Sequence[SearchCandidate],
        context: MatchContext,
    ) -> OracleDecision:
        if not candidates:
            return OracleDecision(
                best_match_fdc_id=NO_MATCH_SENTINEL,
                confidence=0.0,
                reasoning="No candidates to choose from",
            )

        query = context.ingredient_name
        ranked: List[Tuple[float, SearchCandidate]] = sorted(
            ((heuristic_score(query, c), c) for c in candidates),
            key=lambda pair: pair[0],
            reverse=True,
        )
        best_score, best = ranked[0]
        confidence = round(fuzzy_score(best.description, tokenize(query)), 3)

        logger.debug(
            f"Heuristic match for '{query}': '{best.description}' "
            f"(score={best_score:.1f}, type={best.data_type}, confidence={confidence})"
        )

        return OracleDecision(
            best_match_fdc_id=best.fdc_id,
            confidence=confidence,
            reasoning=(
                f"Keyword heuristic picked '{best.description}' ({best.data_type or 'unknown type'}), "
                f"score {best_score:.1f}"
            ),
            alternative_fdc_ids=[c.fdc_id for _, c in ranked[1:1 + self.max_alternatives]],
            needs_review=confidence < self.review_below,
        )


def default_disambiguator() -> Disambiguator:
    """LLM oracle when an OpenRouter key is configured, heuristic otherwise."""
    llm = LLMDisambiguator()
    if llm.is_available:
        return llm
    logger.info("Using heuristic disambiguation (no OPENROUTER_API_KEY)")
    return HeuristicDisambiguator()
