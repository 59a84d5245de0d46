"""
Pre-search cleanup of raw ingredient names.

Two passes, both token-based:
- spelling correction from a fixed dictionary of common food misspellings
- removal of store/brand/filler tokens that never match a USDA description

Tokens are replaced whole, never as substrings, so "tomatoes" is left
alone even though "tomatoe" is a known misspelling.
"""

from typing import List

_SPELLING_CORRECTIONS = {
    # Peppers
    "jalopeno": "jalapeno",
    "jalapino": "jalapeno",
    "jalepenio": "jalapeno",
    "jalepeno": "jalapeno",
    # Cheese
    "parmesean": "parmesan",
    "parmasean": "parmesan",
    "parmasan": "parmesan",
    "parmezan": "parmesan",
    "mozerella": "mozzarella",
    "mozarella": "mozzarella",
    # Vegetables
    "brocoli": "broccoli",
    "brocolli": "broccoli",
    "calliflower": "cauliflower",
    "califlower": "cauliflower",
    "cauliflour": "cauliflower",
    "zuchini": "zucchini",
    "zuchinni": "zucchini",
    "zuccini": "zucchini",
    "letuce": "lettuce",
    "lettuse": "lettuce",
    "tomatoe": "tomato",
    "potatoe": "potato",
    "potatos": "potatoes",
    "tomatos": "tomatoes",
    "aspargus": "asparagus",
    "asperagus": "asparagus",
    "artichoak": "artichoke",
    # Fruits
    "avacado": "avocado",
    "avacodo": "avocado",
    "avocato": "avocado",
    "bannana": "banana",
    "bananana": "banana",
    "straberry": "strawberry",
    "strwaberry": "strawberry",
    "strawbery": "strawberry",
    "blueburry": "blueberry",
    "bluberry": "blueberry",
    "raspbery": "raspberry",
    "rasberry": "raspberry",
    "pommegranate": "pomegranate",
    "pomegranite": "pomegranate",
    "pinapple": "pineapple",
    "pineaple": "pineapple",
    "watermelen": "watermelon",
    "watermellon": "watermelon",
    "cantalope": "cantaloupe",
    "cantelope": "cantaloupe",
    # Grains / pasta
    "spagehtti": "spaghetti",
    "spagetti": "spaghetti",
    "spageti": "spaghetti",
    "fetuccine": "fettuccine",
    "fettucine": "fettuccine",
    "tortila": "tortilla",
    "tortillia": "tortilla",
    "qinoa": "quinoa",
    "quiona": "quinoa",
    # Condiments / sauces
    "guacomole": "guacamole",
    "guacamoly": "guacamole",
    "mayonaise": "mayonnaise",
    "mayonase": "mayonnaise",
    "mayonaize": "mayonnaise",
    "katchup": "ketchup",
    "ketsup": "ketchup",
    "mustared": "mustard",
    # Spices
    "tumeric": "turmeric",
    "cinamon": "cinnamon",
    "cinimon": "cinnamon",
    "cinnimon": "cinnamon",
    "oregeno": "oregano",
    "origano": "oregano",
    # Proteins
    "salman": "salmon",
    "samon": "salmon",
    # Dairy
    "yogart": "yogurt",
    "yougurt": "yogurt",
    "yoghert": "yogurt",
    # Misc
    "sandwhich": "sandwich",
    "sandwitch": "sandwich",
    "caeser": "caesar",
    "ceasar": "caesar",
    "protien": "protein",
    "maccaroni": "macaroni",
    "macoroni": "macaroni",
    "hummos": "hummus",
    "humas": "hummus",
    "humus": "hummus",
}

# Store names and filler words that never appear in USDA descriptions
_NON_FOOD_TOKENS = {
    "harmons", "harmon's",
    "costco", "kirkland",
    "trader", "joe's", "trader's",
    "kroger", "safeway", "walmart", "aldi",
    "wegmans", "publix", "target",
    "sams", "sam's",
    "brand", "store", "generic",
}


def tokenize(text: str) -> List[str]:
    """Lower-case and split on whitespace."""
    return text.lower().split()


def correct_spelling(query: str) -> str:
    """Replace known misspellings token by token."""
    tokens = tokenize(query)
    return " ".join(_SPELLING_CORRECTIONS.get(token, token) for token in tokens)


def strip_non_food_tokens(query: str) -> str:
    """
    Drop store/brand/filler tokens.

    Never returns an empty string: if every token would be dropped, the
    query is returned unchanged.
    """
    tokens = tokenize(query)
    kept = [t for t in tokens if t not in _NON_FOOD_TOKENS]
    return " ".join(kept) if kept else query


def preprocess(raw: str) -> str:
    """Full pre-search cleanup: correct spelling, then strip non-food tokens."""
    return strip_non_food_tokens(correct_spelling(raw))
