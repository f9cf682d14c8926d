"""
Label Text Corrector - deterministic clean-up of raw OCR label lines.

PRINCIPLE: Trim aggressively at the edges, correct conservatively in the middle.
A wrong correction is worse than no correction.

Every raw line goes through the same six steps, in this order:
1. Strip bounding punctuation pairs, replace pipe/backslash artifacts
2. Trim non-alphanumerics from both ends
3. Collapse whitespace
4. Drop a trailing 1-2 character garbage token (units and numbers survive)
5. Whole-line confusion fixes (0/O, 1/l/I, 5/S, 8/B, 6/G, 4/A) in letter context
6. Bounded fuzzy correction against the closed label vocabulary

The steps are repeated until the line stops changing, so normalize_line is
idempotent.
"""

import re
from typing import List, Optional

from rapidfuzz.distance import Levenshtein

from .lexicon import FUZZY_VOCABULARY, LEXICON_WORDS, PACK_WORDS, PROTECTED_WORDS, UNIT_WORDS

MAX_NORMALIZE_ROUNDS = 6
FUZZY_MAX_DISTANCE = 2
FUZZY_MAX_LENGTH_GAP = 2

# =============================================================================
# STEP TABLES
# =============================================================================

BOUNDING_PAIRS = [
    ("(", ")"), ("[", "]"), ("{", "}"), ("<", ">"), ('"', '"'), ("'", "'"), ("*", "*"),
]

QUOTE_TRANSLATION = str.maketrans({
    "“": '"', "”": '"', "„": '"', "‟": '"',
    "‘": "'", "’": "'", "‚": "'", "‛": "'",
})

EDGE_JUNK = re.compile(r"^[^A-Za-z0-9]+|[^A-Za-z0-9]+$")
WHITESPACE = re.compile(r"\s+")

# Unit spellings OCR mangles on every other label.
UNIT_FIXES = [
    (re.compile(r"\bN[E£3]T[\s.]*W[T7I]\b[\s.:;-]*", re.I), "NET WT "),
    (re.compile(r"\bFL[\s.-]*OZ\b", re.I), "FL OZ"),
    (re.compile(r"(\d)\s*(?:0[Zz]|[Oo]2)\b"), r"\1 OZ"),
    (re.compile(r"\b0\s*Z\b"), "OZ"),
    (re.compile(r"\bO\s+Z\b"), "OZ"),
    (re.compile(r"\bI\s*LB\b"), "1 LB"),
    (re.compile(r"\b1\s*L8\b"), "1 LB"),
]

# Whole-word spellings recovered from real label reads.
WORD_FIXES = [
    (re.compile(r"\btrader[^a-z0-9]{0,30}joe'?s?\b", re.I), "Trader Joe's"),
    (re.compile(r"\b[o0][^a-z0-9]{1,12}organics?\b", re.I), "O Organics"),
    (re.compile(r"\b(?:qum?i?noa|qunioa|quuinoa|quinua)\b", re.I), "quinoa"),
    (re.compile(r"\bfusil+i+e?\b", re.I), "fusilli"),
    (re.compile(r"\bpenn?e\b", re.I), "penne"),
]

DIGIT_TO_UPPER = {"0": "O", "1": "I", "5": "S", "8": "B", "6": "G", "4": "A"}
DIGIT_TO_LOWER = {"0": "o", "1": "l", "5": "s", "8": "b", "6": "g", "4": "a"}

CONFUSABLE_TOKEN = re.compile(r"^([^A-Za-z0-9]*)([A-Za-z014568']+)([^A-Za-z0-9]*)$")
LEADING_DIGITS = re.compile(r"^\d+")
WORD_TOKEN = re.compile(r"^([^A-Za-z0-9]*)([A-Za-z](?:[A-Za-z']*[A-Za-z])?)([^A-Za-z0-9]*)$")

# Letters read where a digit belongs ("1O.5", "l5")
DIGIT_CONTEXT_FIXES = [
    (re.compile(r"(?<=\d)[Oo](?=\d)"), "0"),
    (re.compile(r"(?<=\d)[Il](?=\d)"), "1"),
]

SPACED_LETTERS = re.compile(r"^(?:[A-Za-z][\s.]+){2,}[A-Za-z]?$")

SMALL_WORDS = frozenset(["of", "and", "a", "an", "the", "in", "on", "with", "for", "to", "from", "by", "or"])
ACRONYMS = frozenset(["USDA", "BPA", "GMO", "USA", "BBQ", "XL"])


# =============================================================================
# STEPS
# =============================================================================

def strip_bounding_punctuation(text: str) -> str:
    """Step 1: remove wrapping pairs like '(...)' and pipe/backslash artifacts."""
    out = text.translate(QUOTE_TRANSLATION).replace("|", " ").replace("\\", " ").strip()
    while len(out) >= 2:
        for opener, closer in BOUNDING_PAIRS:
            if out.startswith(opener) and out.endswith(closer):
                out = out[1:-1].strip()
                break
        else:
            break
    return out


def trim_edges(text: str) -> str:
    """Step 2: trim non-alphanumerics from both ends."""
    return EDGE_JUNK.sub("", text)


def collapse_whitespace(text: str) -> str:
    """Step 3."""
    return WHITESPACE.sub(" ", text).strip()


def is_garbage_tail(token: str) -> bool:
    if not 1 <= len(token) <= 2:
        return False
    if token.lower() in UNIT_WORDS or any(c.isdigit() for c in token):
        return False
    return True


def drop_trailing_garbage(text: str) -> str:
    """Step 4: drop trailing 1-2 char tokens that are not units or numbers."""
    tokens = text.split(" ")
    while len(tokens) > 1 and is_garbage_tail(tokens[-1]):
        tokens.pop()
    return trim_edges(" ".join(tokens))


def _match_case(source: str, replacement: str) -> str:
    if source.isupper():
        return replacement.upper()
    if source[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def _fix_token_confusions(token: str) -> str:
    match = CONFUSABLE_TOKEN.match(token)
    if not match:
        return token
    lead, core, trail = match.groups()
    letters = [c for c in core if c.isalpha()]
    digits = [c for c in core if c.isdigit()]
    if not digits or len(letters) < 2 or len(letters) <= len(digits):
        return token
    # "5oz", "2lbs" are quantities, not words
    if "".join(letters).lower() in UNIT_WORDS:
        return token
    # so are leading counts: "6pk", "12ct", "4pack"
    count = LEADING_DIGITS.match(core)
    if count:
        rest = core[count.end():]
        if (len(count.group(0)) > 1 or sum(c.isalpha() for c in rest) < 3
                or rest.lower() in UNIT_WORDS | PACK_WORDS):
            return token
    table = DIGIT_TO_UPPER if all(c.isupper() for c in letters) else DIGIT_TO_LOWER
    return lead + "".join(table.get(c, c) for c in core) + trail


def fix_confusions(text: str) -> str:
    """Step 5: unit spellings, known word fixes and digit/letter confusions."""
    out = text
    for pattern, replacement in UNIT_FIXES:
        out = pattern.sub(replacement, out)
    for pattern, replacement in DIGIT_CONTEXT_FIXES:
        out = pattern.sub(replacement, out)
    out = " ".join(_fix_token_confusions(tok) for tok in out.split(" "))
    for pattern, replacement in WORD_FIXES:
        out = pattern.sub(lambda m, r=replacement: _match_case(m.group(0), r) if r.islower() else r, out)
    return collapse_whitespace(out)


def fuzzy_correct_word(word: str) -> str:
    """
    Correct one alphabetic word against the label vocabulary.

    Returns the vocabulary spelling (title case, "Joe's" for joes) only when a
    single vocabulary word is closest and within the length-scaled distance.
    """
    key = word.lower().replace("'", "")
    if len(key) < 3 or key in PROTECTED_WORDS or key in UNIT_WORDS or key in FUZZY_VOCABULARY:
        return word
    if key in LEXICON_WORDS:
        return word

    max_distance = 1 if len(key) <= 4 else FUZZY_MAX_DISTANCE
    best_distance = max_distance + 1
    best: List[str] = []
    for candidate in FUZZY_VOCABULARY:
        if abs(len(candidate) - len(key)) > FUZZY_MAX_LENGTH_GAP:
            continue
        distance = Levenshtein.distance(key, candidate, score_cutoff=max_distance)
        if distance < best_distance:
            best_distance, best = distance, [candidate]
        elif distance == best_distance and distance <= max_distance:
            best.append(candidate)

    if best_distance > max_distance or len(best) != 1:
        return word
    return FUZZY_VOCABULARY[best[0]]


def fuzzy_correct(text: str) -> str:
    """Step 6: apply fuzzy_correct_word to every purely alphabetic token."""
    tokens = []
    for token in text.split(" "):
        match = WORD_TOKEN.match(token)
        if match:
            lead, word, trail = match.groups()
            token = lead + fuzzy_correct_word(word) + trail
        tokens.append(token)
    return " ".join(tokens)


# =============================================================================
# PUBLIC API
# =============================================================================

def _normalize_once(text: str) -> str:
    out = strip_bounding_punctuation(text)
    out = trim_edges(out)
    out = collapse_whitespace(out)
    out = drop_trailing_garbage(out)
    out = fix_confusions(out)
    out = fuzzy_correct(out)
    return out


def normalize_line(text: Optional[str]) -> str:
    """Normalize one raw OCR line. Idempotent; returns '' for empty input."""
    out = text or ""
    for _ in range(MAX_NORMALIZE_ROUNDS):
        cleaned = _normalize_once(out)
        if cleaned == out:
            break
        out = cleaned
    return out


def split_lines(raw_text: Optional[str]) -> List[str]:
    """Split multi-line OCR output into trimmed non-empty lines."""
    if not raw_text:
        return []
    return [line.strip() for line in re.split(r"\r?\n", raw_text) if line.strip()]


def clean_ocr_text(raw_text: Optional[str]) -> str:
    """Normalize every line of a raw OCR block, dropping lines that vanish."""
    lines = [normalize_line(line) for line in split_lines(raw_text)]
    return "\n".join(line for line in lines if line)


def looks_like_real_line(text: str, min_length: int = 4) -> bool:
    """Check if a normalized line reads like words rather than OCR noise.

    Args:
        text: Normalized line
        min_length: Minimum number of characters

    Returns:
        True when letter, digit and symbol densities look like label text
    """
    stripped = text.strip()
    if len(stripped) < min_length:
        return False

    chars = [c for c in stripped if not c.isspace()]
    total = len(chars)
    letters = sum(1 for c in chars if c.isalpha())
    digits = sum(1 for c in chars if c.isdigit())
    other = total - letters - digits

    if letters / total < 0.55 or digits / total > 0.25 or other / total > 0.15:
        return False

    # "T R A D E R" and friends
    if SPACED_LETTERS.match(stripped):
        return False
    tokens = stripped.split()
    singles = sum(1 for t in tokens if len(t) == 1 and t.isalpha())
    if len(tokens) >= 3 and singles / len(tokens) > 0.5:
        return False

    return True


def _capitalize(word: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in word.split("-"))


def proper_case(text: str) -> str:
    """Display casing for final output lines ("ORGANIC KIDNEY BEANS" -> "Organic Kidney Beans")."""
    words = collapse_whitespace(text).split(" ") if text else []
    out = []
    for i, word in enumerate(words):
        bare = word.strip("().,")
        if bare.upper() in ACRONYMS:
            out.append(word.upper())
        elif bare.lower() in UNIT_WORDS:
            out.append(word.lower())
        elif i > 0 and word.lower() in SMALL_WORDS:
            out.append(word.lower())
        else:
            out.append(_capitalize(word))
    return " ".join(out)
