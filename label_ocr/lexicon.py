"""
Label lexicon - named word and pattern sets shared by the corrector and ranker.

Every heuristic in the pipeline reads its vocabulary from here:
- FOOD_KEYWORDS / FOOD_BIGRAMS: whole-food nouns and multi-word food names
- BRAND_HINTS / BRAND_WORDS / BRAND_BIGRAMS: store and house brands
- UNIT_WORDS: size/weight abbreviations that survive garbage trimming
- BOILERPLATE_PATTERNS / SIZE_LINE_PATTERN: lines that are never a product name
- CATEGORY_KEYWORDS: category detection for product drafts
"""

import re
from typing import Dict, List, Pattern

# =============================================================================
# FOOD LEXICON
# =============================================================================

PASTA_TYPES = [
    "fusilli", "penne", "spaghetti", "farfalle", "rigatoni", "rotini", "macaroni",
    "linguine", "fettuccine", "orecchiette", "shells", "elbows", "capellini",
    "vermicelli", "bucatini", "ziti", "ditalini", "campanelle", "cavatappi",
    "gemelli", "paccheri", "radiatori",
]

BEAN_TYPES_2W = ["red kidney", "great northern"]
BEAN_TYPES_1W = [
    "kidney", "black", "pinto", "garbanzo", "chickpea", "white", "cannellini",
    "navy", "lentil", "refried", "baked", "green", "lima",
]

# Whole-food nouns. A line containing one of these is "food-bearing".
FOOD_KEYWORDS = frozenset([
    # staples
    "beans", "bean", "pasta", "noodles", "rice", "quinoa", "couscous", "oats",
    "oatmeal", "cereal", "granola", "flour", "sugar", "salt", "honey",
    # canned / jarred
    "tomatoes", "tomato", "sauce", "marinara", "pesto", "salsa", "broth", "stock",
    "soup", "chowder", "bisque", "chili", "lentils", "chickpeas", "hummus",
    "corn", "peas", "olives", "pickles",
    # dairy and alternatives
    "milk", "cheese", "butter", "yogurt", "cream", "eggs",
    # oils and vinegars
    "oil", "vinegar",
    # fish and meat
    "tuna", "salmon", "sardines", "anchovies", "mackerel", "chicken", "beef",
    "pork", "turkey",
    # snacks and baking
    "chips", "crackers", "popcorn", "cookies", "pretzels", "almonds", "peanuts",
    "cashews", "walnuts", "raisins", "chocolate", "coffee", "tea", "bread",
    "tortillas", "peanut", "jam", "juice",
] + PASTA_TYPES)

FOOD_BIGRAMS = frozenset([
    "kidney beans", "black beans", "pinto beans", "garbanzo beans", "navy beans",
    "cannellini beans", "refried beans", "baked beans", "green beans",
    "great northern", "red kidney", "brown rice", "white rice", "jasmine rice",
    "basmati rice", "wild rice", "long grain", "tomato sauce", "tomato paste",
    "diced tomatoes", "crushed tomatoes", "whole peeled", "fire roasted",
    "chicken broth", "beef broth", "vegetable broth", "bone broth",
    "olive oil", "extra virgin", "canola oil", "avocado oil", "sesame oil",
    "apple cider", "balsamic vinegar", "red wine", "peanut butter",
    "almond milk", "oat milk", "soy milk", "coconut milk", "whole milk",
    "all purpose", "whole wheat", "brown sugar", "cane sugar",
    "fusilli pasta", "penne pasta", "elbow macaroni", "rolled oats",
])

DESCRIPTOR_HINTS = [
    "organic", "brown rice", "quinoa", "gluten free", "sodium free", "low sodium",
    "no salt added", "extra virgin", "unsalted", "no sugar added",
]

# "<descriptor> beans" and friends earn a soft bonus in the ranker.
HIGH_VALUE_PHRASES: List[Pattern] = [
    re.compile(
        r"\b(?:red\s+kidney|great\s+northern|kidney|black|pinto|garbanzo|cannellini|"
        r"navy|white|refried|baked|green|lima)\s+beans?\b",
        re.I,
    ),
    re.compile(r"\b(?:" + "|".join(PASTA_TYPES) + r")\s+pasta\b", re.I),
    re.compile(r"\b(?:extra\s+virgin\s+)?olive\s+oil\b", re.I),
]

# =============================================================================
# BRAND LEXICON
# =============================================================================

BRAND_HINTS = [
    "Trader Joe's", "Trader Joes", "O Organics", "Barilla", "Rao's", "Annie's",
    "General Mills", "De Cecco", "Whole Foods", "Campbell's", "Heinz",
    "Goya", "Progresso", "Kraft", "365", "Great Value",
]

BRAND_WORDS = frozenset([
    "trader", "joe's", "joes", "barilla", "rao's", "raos", "annie's", "annies",
    "cecco", "campbell's", "campbells", "heinz", "goya", "progresso", "kraft",
    "organics", "mills",
])

BRAND_BIGRAMS = frozenset([
    "trader joe's", "trader joes", "o organics", "general mills", "de cecco",
    "whole foods", "great value",
])

# =============================================================================
# UNITS, BOILERPLATE, SIZE
# =============================================================================

UNIT_WORDS = frozenset(["oz", "lb", "lbs", "ml", "gm", "kg", "g", "fl", "wt", "ct"])

# Multipack suffixes that follow a count ("6pk", "12ct", "4pack").
PACK_WORDS = frozenset([
    "pk", "pks", "pack", "packs", "ct", "count", "pc", "pcs", "piece", "pieces", "ea", "x",
])

# Short words the fuzzy pass must never rewrite.
PROTECTED_WORDS = frozenset([
    "oat", "the", "and", "with", "for", "net", "new", "red", "hot", "mix",
    "bag", "box", "can", "jar", "pack", "fat", "low", "raw", "dry", "oil",
    "tea", "jam", "egg", "ham", "nut", "non", "all", "pure", "fine", "less",
    "more", "each", "made", "real", "lite", "light", "rich", "wild", "long",
    "short", "sea", "style", "family", "size", "value", "great",
])

BOILERPLATE_PATTERNS: List[Pattern] = [
    re.compile(r"\bserving\s*size\b", re.I),
    re.compile(r"\bservings?\s+per\b", re.I),
    re.compile(r"\bnutrition(?:al)?\b", re.I),
    re.compile(r"\b(?:calories|total\s+fat|saturated|cholesterol|sodium\s+\d|carbohydrates?|protein\s+\d)\b", re.I),
    re.compile(r"\b%?\s*daily\s+value\b", re.I),
    re.compile(r"\bmade\s+(?:with|in|from)\b", re.I),
    re.compile(r"\bingredients?\b\s*:?", re.I),
    re.compile(r"\bcontains?\s*:", re.I),
    re.compile(r"\b(?:distributed|manufactured|packed)\s+(?:by|for)\b", re.I),
    re.compile(r"\bproduct\s+of\b", re.I),
    re.compile(r"\b(?:best\s+by|use\s+by|keep\s+refrigerated|refrigerate\s+after)\b", re.I),
    re.compile(r"\b(?:usda|certified|non[\s-]?gmo|kosher|verified)\b", re.I),
]

# A line made only of size/weight tokens ("NET WT 15.5 OZ (439g)").
SIZE_LINE_PATTERN = re.compile(
    r"^(?:net\s*(?:wt|weight)?\.?|\d+(?:[.,]\d+)?(?!\d)|\(|\)|/|"
    r"(?:fl\s*)?oz|lbs?|ml|gm?|kg|ct|wt|\s)+$",
    re.I,
)

# Characters a legitimate label line may contain.
ALLOWED_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789 &().,'-/%"
)

VOWELS = frozenset("aeiouyAEIOUY")

# =============================================================================
# FUZZY CORRECTION VOCABULARY
# =============================================================================

# Closed vocabulary for the fuzzy pass; keys are matched, values are displayed.
FUZZY_VOCABULARY: Dict[str, str] = {
    word: word.title()
    for word in sorted(
        {w for w in FOOD_KEYWORDS if len(w) >= 4}
        | {w for w in BEAN_TYPES_1W if len(w) >= 4}
        | {
            "organic", "kidney", "trader", "barilla", "progresso", "goya",
            "heinz", "kraft", "organics", "quinoa", "virgin", "extra", "whole",
            "wheat", "grain", "northern", "diced", "crushed", "roasted",
            "peeled", "vegetable", "balsamic", "canola", "avocado", "coconut",
            "almond", "sesame", "jasmine", "basmati", "unsalted", "sodium",
            "gluten", "free",
        }
    )
}
# The one brand whose apostrophe the fuzzy pass restores.
FUZZY_VOCABULARY["joes"] = "Joe's"

# Words already spelled right somewhere in the lexicon; the fuzzy pass leaves them alone.
LEXICON_WORDS = frozenset(
    word.replace("'", "")
    for phrase in (
        list(FOOD_KEYWORDS) + list(FOOD_BIGRAMS) + DESCRIPTOR_HINTS
        + BEAN_TYPES_1W + BEAN_TYPES_2W + list(BRAND_WORDS) + list(BRAND_BIGRAMS)
    )
    for word in phrase.lower().split()
)

# =============================================================================
# CATEGORY KEYWORDS (product drafts)
# =============================================================================

CATEGORY_KEYWORDS: Dict[str, List[Pattern]] = {
    "Pasta": [
        re.compile(r"\bpasta\b", re.I),
        re.compile(r"\b(?:" + "|".join(PASTA_TYPES) + r")\b", re.I),
    ],
    "Beans": [
        re.compile(r"\bbeans?\b", re.I), re.compile(r"\bkidney\b", re.I),
        re.compile(r"\bgarbanzo|chickpeas?\b", re.I), re.compile(r"\bpinto\b", re.I),
        re.compile(r"\bcannellini\b", re.I), re.compile(r"\blentils?\b", re.I),
        re.compile(r"\brefried\b", re.I),
    ],
    "Rice": [
        re.compile(r"\brice\b", re.I), re.compile(r"\barborio\b", re.I),
        re.compile(r"\bbasmati\b", re.I), re.compile(r"\bjasmine\b", re.I),
    ],
    "Tomatoes": [
        re.compile(r"\btomato(?:es)?\b", re.I), re.compile(r"\bpaste\b", re.I),
        re.compile(r"\bdiced\b", re.I), re.compile(r"\bcrushed\b", re.I),
    ],
    "Broth": [re.compile(r"\bbroth\b", re.I), re.compile(r"\bstock\b", re.I)],
    "Flour": [re.compile(r"\bflour\b", re.I)],
    "Sugar": [re.compile(r"\bsugar\b", re.I)],
    "Milk": [
        re.compile(r"\bmilk\b", re.I), re.compile(r"\bevaporated\b", re.I),
        re.compile(r"\bcondensed\b", re.I),
    ],
    "Oil": [
        re.compile(r"\boil\b", re.I), re.compile(r"\bolive\b", re.I),
        re.compile(r"\bextra\s*virgin\b", re.I),
    ],
    "Vinegar": [re.compile(r"\bvinegar\b", re.I)],
    "Fish": [
        re.compile(r"\btuna\b", re.I), re.compile(r"\bsalmon\b", re.I),
        re.compile(r"\bsardines?\b", re.I), re.compile(r"\banchov(?:y|ies)\b", re.I),
        re.compile(r"\bmackerel\b", re.I),
    ],
    "Cereal": [
        re.compile(r"\bcereal\b", re.I), re.compile(r"\boats?\b", re.I),
        re.compile(r"\bcheerios?\b", re.I),
    ],
    "Sauce": [
        re.compile(r"\bsauce\b", re.I), re.compile(r"\bmarinara\b", re.I),
        re.compile(r"\bpesto\b", re.I),
    ],
    "Soup": [
        re.compile(r"\bsoup\b", re.I), re.compile(r"\bchowder\b", re.I),
        re.compile(r"\bbisque\b", re.I),
    ],
    "Snacks": [
        re.compile(r"\bchips?\b", re.I), re.compile(r"\bcrackers?\b", re.I),
        re.compile(r"\bpopcorn\b", re.I),
    ],
}


def words_of(text: str) -> List[str]:
    """Lowercase word tokens, apostrophes kept ("joe's")."""
    return re.findall(r"[a-z0-9']+", text.lower())


def has_food_keyword(text: str) -> bool:
    """True when the line names at least one whole food."""
    return any(w.strip("'") in FOOD_KEYWORDS for w in words_of(text))


def is_boilerplate(text: str) -> bool:
    return any(p.search(text) for p in BOILERPLATE_PATTERNS)


def is_size_line(text: str) -> bool:
    stripped = text.strip()
    return bool(stripped) and bool(SIZE_LINE_PATTERN.match(stripped))
