"""Prompt and tool schema for picking a USDA entry with an LLM."""

from typing import Any, Dict, Sequence

from ingredient_nutrition.models import MatchContext, SearchCandidate

SELECT_MATCH_TOOL_NAME = "select_usda_match"

# OpenAI function-calling format
SELECT_MATCH_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": SELECT_MATCH_TOOL_NAME,
        "description": (
            "Select the best USDA FoodData Central entry that matches an ingredient "
            "and optionally recommend better serving units"
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "best_match_fdc_id": {
                    "type": "integer",
                    "description": "The FDC ID of the best matching USDA entry. Use 0 if no good match exists.",
                },
                "confidence": {
                    "type": "number",
                    "description": (
                        "Confidence score from 0.0 to 1.0 indicating how well the USDA entry "
                        "matches the ingredient. Below 0.5 means no good match."
                    ),
                },
                "reasoning": {
                    "type": "string",
                    "description": "Brief explanation of why this match was selected (or why no match was found).",
                },
                "alternative_fdc_ids": {
                    "type": "array",
                    "items": {"type": "integer"},
                    "description": "Other viable FDC IDs that could also match, in order of preference.",
                },
                "recommended_serving_size": {
                    "type": "number",
                    "description": (
                        "If the current serving unit is non-standard or ambiguous (like \"1 medium\"), "
                        "recommend a better serving size in standard cooking measurements."
                    ),
                },
                "recommended_serving_unit": {
                    "type": "string",
                    "description": "Recommended unit when the current one is ambiguous. Prefer g, oz, cup, tbsp, tsp.",
                },
                "serving_change_reason": {
                    "type": "string",
                    "description": "Why the serving change is recommended.",
                },
                "needs_review": {
                    "type": "boolean",
                    "description": (
                        "True if the match is uncertain or the nutrition differs by more than 40% "
                        "from the existing estimate."
                    ),
                },
            },
            "required": ["best_match_fdc_id", "confidence", "reasoning"],
        },
    },
}

SYSTEM_PROMPT = """\
You match recipe ingredients to USDA FoodData Central entries.
All nutrition values come from USDA: you only choose which entry to use.
Always answer by calling the select_usda_match tool."""

_TASK = """\
## Your Task
Select the BEST matching USDA entry for this ingredient based on:

1. **Name Similarity**: How closely does the USDA description match the ingredient name?
2. **Typical Usage**: For proteins, prefer "meat only" unless the ingredient explicitly says "with skin". For vegetables/fruits, prefer raw unless the recipe implies cooked.
3. **Data Type Priority**: Prefer Foundation > SR Legacy > Survey (FNDDS) > Branded (branded products vary too much)
4. **Nutrition Sanity Check**: If an existing nutrition estimate is given, the USDA values should be in a SIMILAR range. If your selected match would change calories by more than 40%, set needs_review=true.

## Guidelines
- Common whole foods (chicken, rice, vegetables) should have a good match
- Branded products or very specific preparations may not
- Do NOT pick a different food that merely contains the ingredient ("olive oil" is not "sardines in olive oil")
- Confidence 0.9+ for exact or near-exact matches
- Confidence 0.7-0.9 for good matches with minor differences
- Confidence 0.5-0.7 for acceptable matches with some uncertainty
- Confidence below 0.5 (or FDC ID 0) if no suitable match exists
"""

_SERVING = """\
## Serving Size Recommendations
The current serving uses: {size} {unit}

If the serving unit is non-standard or ambiguous, recommend a better one:
- Non-standard units to fix: "medium", "large", "small", "piece", "item", "whole", "unit", "serving"
- Standard units: g, oz, cup, tbsp, tsp, lb
- Proteins (chicken, beef, fish): prefer oz or g
- Produce: prefer g or cup
- Liquids and sauces: prefer cup, tbsp or tsp
- Grains and pasta: prefer cup (cooked) or g

Reference: 1 oz = 28.35 g, 1 tbsp ~ 15 g, 1 tsp ~ 5 g, 1 cup varies by ingredient.

If you recommend a change, fill recommended_serving_size, recommended_serving_unit
and serving_change_reason.
"""

_EXAMPLES = """\
## Examples of Good Matches
- "chicken breast" -> "Chicken, broilers or fryers, breast, meat only, cooked, roasted"
- "chicken thighs" -> "Chicken, broilers or fryers, thigh, meat only, cooked, roasted"
- "almonds" -> "Nuts, almonds, dry roasted, without salt added"
- "brown rice" -> "Rice, brown, long-grain, cooked"

## Examples of Poor Matches (confidence < 0.5)
- "grandma's special sauce" -> no standard USDA entry exists
- "protein powder" -> too brand-specific, USDA entries vary significantly

## When to Flag for Review (needs_review=true)
- Confidence between 0.5 and 0.7
- Calories would differ by more than 40% from the existing estimate
- The serving unit conversion is uncertain
- Several equally good matches exist

Select the best match using the select_usda_match tool."""


def _format_number(value: float) -> str:
    return f"{value:g}"


def format_candidates(candidates: Sequence[SearchCandidate]) -> str:
    blocks = []
    for i, c in enumerate(candidates, start=1):
        n = c.nutrition
        brand = f" (Brand: {c.brand_owner})" if c.brand_owner else ""
        blocks.append(
            f"{i}. FDC ID: {c.fdc_id}\n"
            f"   Description: {c.description}\n"
            f"   Data Type: {c.data_type or 'unknown'}{brand}\n"
            f"   Nutrition per 100g: {_format_number(n.calories)} cal, "
            f"{_format_number(n.protein)}g protein, {_format_number(n.carbs)}g carbs, "
            f"{_format_number(n.fat)}g fat"
        )
    return "\n\n".join(blocks)


def build_matching_prompt(
    candidates: Sequence[SearchCandidate],
    context: MatchContext,
) -> str:
    """User message for one disambiguation call."""
    context_lines = []
    if context.serving_size and context.serving_unit:
        context_lines.append(
            f"Typical serving size used: {_format_number(context.serving_size)} {context.serving_unit}"
        )
    if context.category:
        context_lines.append(f"Ingredient category: {context.category}")
    if context.prior_estimate:
        p = context.prior_estimate
        context_lines.append(
            f"Current nutrition estimate for the serving: {_format_number(p.calories)} cal, "
            f"{_format_number(p.protein)}g protein, {_format_number(p.carbs)}g carbs, "
            f"{_format_number(p.fat)}g fat"
        )
    context_section = "".join(f"\n{line}" for line in context_lines)

    serving = _SERVING.format(
        size=_format_number(context.serving_size) if context.serving_size else "?",
        unit=context.serving_unit or "?",
    )

    return (
        "You are helping match a recipe ingredient to the most appropriate "
        "USDA FoodData Central entry.\n\n"
        "## Ingredient to Match\n"
        f'Name: "{context.ingredient_name}"{context_section}\n\n'
        "## USDA Candidates\n"
        f"{format_candidates(candidates)}\n\n"
        f"{_TASK}\n{serving}\n{_EXAMPLES}"
    )
