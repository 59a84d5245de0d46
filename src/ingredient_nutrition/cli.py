#!/usr/bin/env python3
"""
CLI for ingredient -> USDA nutrition matching.

Usage:
    # Match one ingredient
    poetry run ingredient-nutrition match "chicken breast" --size 4 --unit oz

    # Convert a serving to grams
    poetry run ingredient-nutrition convert 1 cup "olive oil"

    # Match a JSON list of {id, name, serving_size?, serving_unit?, category?}
    poetry run ingredient-nutrition batch ingredients.json --output matches.json

    # Raw FDC search, fuzzy-ranked
    poetry run ingredient-nutrition search "greek yogurt" --limit 10
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import TypeAdapter, ValidationError
from rich.console import Console
from rich.table import Table

from ingredient_nutrition.config import DEFAULT_BATCH_DELAY_MS, get_supabase_key, get_supabase_url
from ingredient_nutrition.exceptions import StoreError
from ingredient_nutrition.models import (
    BatchItem,
    BatchResult,
    IngredientQuery,
    MatchedResult,
    MatchErrorResult,
    MatchResult,
    NoMatchResult,
    NutritionEstimate,
)
from ingredient_nutrition.services.conversion_cache import ConversionCache
from ingredient_nutrition.services.disambiguation import HeuristicDisambiguator, default_disambiguator
from ingredient_nutrition.services.fdc_client import FdcClient
from ingredient_nutrition.services.fuzzy_ranker import score_candidates
from ingredient_nutrition.services.matcher import IngredientMatcher
from ingredient_nutrition.services.nutrition_cache import JsonFileCacheBackend, NutritionCache
from ingredient_nutrition.services.query_preprocessor import preprocess, tokenize
from ingredient_nutrition.services.store import (
    ConversionStore,
    JsonConversionStore,
    SupabaseConversionStore,
)
from ingredient_nutrition.services.unit_converter import UnitConverter

console = Console()
logger = logging.getLogger(__name__)


def _confidence_style(confidence: float) -> str:
    if confidence >= 0.8:
        return "green"
    if confidence >= 0.5:
        return "yellow"
    return "red"


def _conversion_style(confidence: str) -> str:
    return {"high": "green", "medium": "yellow", "low": "red"}.get(confidence, "dim")


# ── Wiring ───────────────────────────────────────────────────────────


def _build_conversion_store(args: argparse.Namespace) -> Optional[ConversionStore]:
    if getattr(args, "tables", None):
        return JsonConversionStore(args.tables)
    if get_supabase_url() and get_supabase_key():
        try:
            return SupabaseConversionStore()
        except StoreError as e:
            logger.warning(f"Supabase unavailable, using built-in conversion tables: {e}")
    return None


def _build_converter(args: argparse.Namespace) -> UnitConverter:
    return UnitConverter(ConversionCache(store=_build_conversion_store(args)))


def _build_matcher(args: argparse.Namespace, cache: Optional[NutritionCache]) -> IngredientMatcher:
    disambiguator = HeuristicDisambiguator() if args.heuristic else default_disambiguator()
    return IngredientMatcher(
        fdc_client=FdcClient(),
        disambiguator=disambiguator,
        converter=_build_converter(args),
        nutrition_cache=cache,
    )


def _open_cache(args: argparse.Namespace) -> Optional[NutritionCache]:
    if not args.cache:
        return None
    try:
        return NutritionCache(JsonFileCacheBackend(args.cache))
    except StoreError as e:
        console.print(f"[yellow]Ignoring unreadable cache file: {e}[/yellow]")
        return None


def _close_cache(cache: Optional[NutritionCache]) -> None:
    if cache is not None and isinstance(cache.backend, JsonFileCacheBackend):
        cache.backend.save_cache()


# ── Output ───────────────────────────────────────────────────────────


def _print_result(name: str, result: MatchResult) -> None:
    if isinstance(result, MatchErrorResult):
        console.print(f"  [red]ERROR[/red] {name}: {result.message}")
        return

    if isinstance(result, NoMatchResult):
        console.print(f"  [yellow]NO MATCH[/yellow] [bold]{name}[/bold]: {result.reason}")
        if result.best_effort:
            be = result.best_effort
            console.print(
                f"    [dim]closest: {be.description} (fdc {be.fdc_id}, confidence {be.confidence:.2f})[/dim]"
            )
        return

    style = _confidence_style(result.confidence)
    cached = " [dim](cached)[/dim]" if result.from_cache else ""
    review = " [yellow]needs review[/yellow]" if result.needs_review else ""
    console.print(
        f"  [{style}]MATCH[/{style}] [bold]{name}[/bold] -> {result.description} "
        f"(fdc {result.fdc_id}, confidence {result.confidence:.2f}){cached}{review}"
    )

    table = Table(show_header=True, header_style="bold", padding=(0, 1))
    table.add_column("Per 100 g", min_width=10)
    table.add_column("Value", justify="right", min_width=10)
    n = result.nutrition
    table.add_row("Calories", f"{n.calories:g} kcal")
    table.add_row("Protein", f"{n.protein:g} g")
    table.add_row("Carbs", f"{n.carbs:g} g")
    table.add_row("Fat", f"{n.fat:g} g")
    if n.fiber is not None:
        table.add_row("Fiber", f"{n.fiber:g} g")
    if n.sugar is not None:
        table.add_row("Sugar", f"{n.sugar:g} g")
    console.print(table)

    if result.reasoning:
        console.print(f"  [dim]{result.reasoning}[/dim]")
    if result.recommended_serving_unit:
        console.print(
            f"  [dim]Suggested serving: {result.recommended_serving_size or ''} "
            f"{result.recommended_serving_unit} ({result.serving_change_reason or 'no reason given'})[/dim]"
        )


def _print_batch_summary(results: List[BatchResult]) -> None:
    matched = sum(1 for r in results if r.result.status == "matched")
    no_match = sum(1 for r in results if r.result.status == "no_match")
    errors = sum(1 for r in results if r.result.status == "error")
    review = sum(
        1 for r in results
        if isinstance(r.result, MatchedResult) and r.result.needs_review
    )

    console.print("\n[bold]Batch Summary[/bold]")
    console.print(
        f"  [green]{matched} matched[/green]  "
        f"[yellow]{no_match} no match[/yellow]  "
        f"[red]{errors} errors[/red]  "
        f"[dim]{review} flagged for review[/dim]"
    )

    table = Table(show_header=True, header_style="bold", padding=(0, 1))
    table.add_column("ID", min_width=8)
    table.add_column("Status", min_width=8)
    table.add_column("USDA entry", min_width=40)
    for r in results:
        res = r.result
        if isinstance(res, MatchedResult):
            table.add_row(r.id, "[green]matched[/green]", f"{res.description} ({res.fdc_id})")
        elif isinstance(res, NoMatchResult):
            table.add_row(r.id, "[yellow]no_match[/yellow]", res.reason[:60])
        else:
            table.add_row(r.id, "[red]error[/red]", res.message[:60])
    console.print(table)


# ── Commands ─────────────────────────────────────────────────────────


async def _cmd_match(args: argparse.Namespace) -> int:
    prior = NutritionEstimate(calories=args.calories) if args.calories is not None else None
    try:
        query = IngredientQuery(
            name=args.name,
            serving_size=args.size,
            serving_unit=args.unit,
            category=args.category,
            prior_estimate=prior,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid query: {e}[/red]")
        return 1

    cache = _open_cache(args)
    matcher = _build_matcher(args, cache)
    result = await matcher.find_best_match(query)
    _print_result(args.name, result)

    if isinstance(result, MatchedResult) and args.size is not None and args.unit:
        serving = await matcher.convert_match_to_serving(result, args.size, args.unit, args.name)
        if serving is not None:
            style = _conversion_style(serving.conversion_confidence)
            console.print(
                f"  Serving {args.size:g} {args.unit} = [{style}]{serving.grams:.1f} g[/{style}]: "
                f"{serving.calories:g} kcal, {serving.protein:g} g protein, "
                f"{serving.carbs:g} g carbs, {serving.fat:g} g fat"
            )

    _close_cache(cache)
    return 0 if result.status != "error" else 2


async def _cmd_convert(args: argparse.Namespace) -> int:
    converter = _build_converter(args)
    conversion = await converter.convert(args.amount, args.unit, args.name)
    style = _conversion_style(conversion.confidence)
    console.print(
        f"{args.amount} {args.unit} {args.name} = "
        f"[bold]{conversion.grams:.2f} g[/bold] ([{style}]{conversion.confidence}[/{style}])"
    )
    return 0


async def _cmd_batch(args: argparse.Namespace) -> int:
    path = Path(args.file)
    if not path.exists():
        console.print(f"[red]File not found: {args.file}[/red]")
        return 1

    try:
        with open(path, "r", encoding="utf-8") as f:
            items = TypeAdapter(List[BatchItem]).validate_python(json.load(f))
    except (json.JSONDecodeError, ValidationError) as e:
        console.print(f"[red]Invalid batch file: {e}[/red]")
        return 1

    console.print(f"[bold]Ingredient matching[/bold]  ({len(items)} ingredient(s))\n")

    cache = _open_cache(args)
    matcher = _build_matcher(args, cache)
    results = await matcher.batch_match(items, delay_ms=args.delay_ms)
    _close_cache(cache)

    _print_batch_summary(results)

    if args.output:
        output_data = [r.model_dump(mode="json") for r in results]
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(output_data, f, indent=2, ensure_ascii=False)
        console.print(f"\n[dim]Results saved to {args.output}[/dim]")

    return 0


async def _cmd_search(args: argparse.Namespace) -> int:
    client = FdcClient()
    if not client.is_configured:
        console.print("[red]USDA_API_KEY is not set[/red]")
        return 1

    cleaned = preprocess(args.query)
    candidates = await client.search(cleaned, page_size=args.limit)
    if not candidates:
        console.print(f"[yellow]No results for '{args.query}'[/yellow]")
        return 0

    table = Table(show_header=True, header_style="bold", padding=(0, 1))
    table.add_column("Score", justify="right")
    table.add_column("FDC ID", justify="right")
    table.add_column("Description", min_width=40)
    table.add_column("Type")
    table.add_column("kcal/100g", justify="right")
    for s in score_candidates(candidates, tokenize(cleaned)):
        c = s.candidate
        table.add_row(
            f"{s.score:.2f}", str(c.fdc_id), c.description, c.data_type, f"{c.nutrition.calories:g}"
        )
    console.print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Match ingredients to USDA FoodData Central nutrition and convert servings to grams",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command")

    def add_matching_options(p: argparse.ArgumentParser) -> None:
        p.add_argument("--heuristic", action="store_true", help="Skip the LLM, use keyword heuristics")
        p.add_argument("--cache", type=str, default=None, help="JSON file caching previous matches")
        p.add_argument("--tables", type=str, default=None, help="JSON file with conversion tables")

    p_match = sub.add_parser("match", help="Match one ingredient")
    p_match.add_argument("name", type=str)
    p_match.add_argument("--size", type=float, default=None, help="Serving size")
    p_match.add_argument("--unit", type=str, default=None, help="Serving unit")
    p_match.add_argument("--category", type=str, default=None)
    p_match.add_argument("--calories", type=float, default=None, help="Existing calorie estimate for the serving")
    add_matching_options(p_match)

    p_convert = sub.add_parser("convert", help="Convert a serving to grams")
    p_convert.add_argument("amount", type=str)
    p_convert.add_argument("unit", type=str)
    p_convert.add_argument("name", type=str)
    p_convert.add_argument("--tables", type=str, default=None, help="JSON file with conversion tables")

    p_batch = sub.add_parser("batch", help="Match a JSON list of ingredients")
    p_batch.add_argument("file", type=str)
    p_batch.add_argument("--delay-ms", type=int, default=DEFAULT_BATCH_DELAY_MS)
    p_batch.add_argument("--output", "-o", type=str, default=None, help="Save JSON results to this file")
    add_matching_options(p_batch)

    p_search = sub.add_parser("search", help="Search FoodData Central")
    p_search.add_argument("query", type=str)
    p_search.add_argument("--limit", type=int, default=10)

    return parser


_COMMANDS = {
    "match": _cmd_match,
    "convert": _cmd_convert,
    "batch": _cmd_batch,
    "search": _cmd_search,
}


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    if not args.command:
        parser.print_help()
        return 1

    return asyncio.run(_COMMANDS[args.command](args))


if __name__ == "__main__":
    sys.exit(main())
