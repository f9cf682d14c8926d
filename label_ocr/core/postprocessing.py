"""
Candidate scoring and ranking for label OCR.

Scores normalized lines with lexical signals, then runs the guard passes
that keep boilerplate, size text and brand echoes away from the top:

1. drop boilerplate and pure size/weight lines
2. merge a lone "Organic" line into the food line
3. demote brand-only lines below the first food-bearing line
4. once a food line leads, drop the remaining brand-only lines

Every pass returns a new list re-sorted by (score desc, length desc) with a
stable sort, so identical inputs always give identical output.
"""

import logging
import re
from dataclasses import replace
from typing import Iterable, List, Optional

from ..label_corrector import is_garbage_tail, looks_like_real_line, normalize_line, split_lines
from ..lexicon import (
    ALLOWED_CHARS,
    BRAND_BIGRAMS,
    BRAND_HINTS,
    BRAND_WORDS,
    FOOD_BIGRAMS,
    FOOD_KEYWORDS,
    HIGH_VALUE_PHRASES,
    VOWELS,
    has_food_keyword,
    is_boilerplate,
    is_size_line,
    words_of,
)
from .settings import ScoringSettings
from .utils import Candidate

logger = logging.getLogger(__name__)

ORGANIC_RE = re.compile(r"\borganic\b", re.I)


def squash(text: str) -> str:
    """Comparison key: lowercase, no apostrophes, single spaces."""
    out = text.lower().replace("'", "")
    return re.sub(r"[^a-z0-9]+", " ", out).strip()


BRAND_KEYS = sorted({squash(hint) for hint in BRAND_HINTS}, key=lambda k: (-len(k), k))


class CandidateRanker:
    """Scores lines and orders candidates best first."""

    def __init__(self, scoring: Optional[ScoringSettings] = None):
        self.scoring = scoring or ScoringSettings()

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    def score(self, text: str) -> float:
        """
        Heuristic quality score for one normalized line.

        Positive: food/brand bigrams, food/brand unigrams, letter count,
        "<descriptor> beans" style phrases. Negative: characters outside the
        label alphabet, digit-heavy lines, vowel-starved lines, a trailing
        1-2 character non-unit token.
        """
        s = self.scoring
        words = words_of(text)
        bigrams = [f"{a} {b}" for a, b in zip(words, words[1:])]

        food_bigrams = sum(1 for bg in bigrams if bg in FOOD_BIGRAMS)
        brand_bigrams = sum(1 for bg in bigrams if bg in BRAND_BIGRAMS)
        food_words = sum(1 for w in words if w.strip("'") in FOOD_KEYWORDS)
        brand_words = sum(1 for w in words if w in BRAND_WORDS)

        letters = sum(1 for c in text if c.isalpha())
        digits = sum(1 for c in text if c.isdigit())
        vowels = sum(1 for c in text if c in VOWELS)
        bad_chars = sum(1 for c in text if c not in ALLOWED_CHARS)

        score = (
            food_bigrams * s.food_bigram_weight
            + brand_bigrams * s.brand_bigram_weight
            + food_words * s.food_unigram_weight
            + brand_words * s.brand_unigram_weight
            + min(letters, s.max_scored_letters) * s.letter_weight
        )
        score -= bad_chars * s.bad_char_penalty

        if letters:
            excess = digits / letters - s.digit_ratio_allowance
            if excess > 0:
                score -= excess * s.digit_ratio_penalty
        elif digits:
            score -= s.digit_ratio_penalty

        if letters >= 3 and vowels / letters < s.min_vowel_ratio:
            score -= s.low_vowel_penalty

        tokens = text.split()
        if len(tokens) > 1 and is_garbage_tail(tokens[-1]):
            score -= s.garbage_tail_penalty

        if any(p.search(text) for p in HIGH_VALUE_PHRASES):
            score += s.phrase_bonus

        return round(score, 3)

    def make_candidate(self, text: str, source: str) -> Candidate:
        return Candidate(text=text, score=self.score(text), source=source)

    def candidates_from_lines(self, lines: Iterable[str], source: str) -> List[Candidate]:
        return [self.make_candidate(line, source) for line in lines if line]

    def candidates_from_text(self, raw_text: str, source: str) -> List[Candidate]:
        """Split raw OCR text, normalize each line and keep the ones that read like words."""
        lines = [normalize_line(line) for line in split_lines(raw_text)]
        return self.candidates_from_lines([line for line in lines if looks_like_real_line(line)], source)

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    @staticmethod
    def is_food_bearing(text: str) -> bool:
        return has_food_keyword(text)

    def is_brand_only(self, text: str, brand_text: str = "") -> bool:
        """
        True when the line is just a brand name.

        Matches the Brand-zone read exactly or with a short suffix
        ("Trader Joe's Co"), or a known brand name the same way. Lines that
        name a food are never brand-only.
        """
        if has_food_keyword(text):
            return False
        key = squash(text)
        if not key:
            return False
        keys = ([squash(brand_text)] if brand_text else []) + BRAND_KEYS
        for brand in keys:
            if not brand:
                continue
            if key == brand:
                return True
            if key.startswith(brand + " ") and len(key) - len(brand) - 1 <= self.scoring.brand_suffix_max:
                return True
        return False

    # -------------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------------

    @staticmethod
    def order(candidates: Iterable[Candidate]) -> List[Candidate]:
        """Stable sort by (score desc, length desc)."""
        return sorted(candidates, key=lambda c: (-c.score, -len(c.text)))

    def dedupe(self, candidates: Iterable[Candidate]) -> List[Candidate]:
        """Keep the best-placed candidate per lowercase text."""
        seen = set()
        out = []
        for candidate in self.order(candidates):
            if candidate.key in seen:
                continue
            seen.add(candidate.key)
            out.append(candidate)
        return out

    # -------------------------------------------------------------------------
    # Guard passes
    # -------------------------------------------------------------------------

    def filter_boilerplate(self, ranked: List[Candidate]) -> List[Candidate]:
        kept = [c for c in ranked if not is_boilerplate(c.text) and not is_size_line(c.text)]
        if len(kept) != len(ranked):
            logger.debug("[Rank] Dropped %d boilerplate/size lines", len(ranked) - len(kept))
        return self.order(kept)

    def merge_organic(self, ranked: List[Candidate]) -> List[Candidate]:
        food = next((c for c in ranked if has_food_keyword(c.text)), None)
        if food is None or ORGANIC_RE.search(food.text):
            return ranked
        organic = next(
            (c for c in ranked
             if c is not food and ORGANIC_RE.search(c.text)
             and not has_food_keyword(c.text) and not self.is_brand_only(c.text)),
            None,
        )
        if organic is None:
            return ranked

        merged_text = f"{organic.text} {food.text}"
        if any(c.key == merged_text.lower() for c in ranked):
            return ranked
        logger.debug("[Rank] Merged '%s' + '%s'", organic.text, food.text)
        return self.order([self.make_candidate(merged_text, "merged")] + ranked)

    def demote_brands(self, ranked: List[Candidate], brand_text: str = "") -> List[Candidate]:
        """Move brand-only lines ranked above the first food line to just below it."""
        food_idx = next((i for i, c in enumerate(ranked) if has_food_keyword(c.text)), None)
        if not food_idx:
            return ranked
        floor = ranked[food_idx].score
        out = []
        for i, candidate in enumerate(ranked):
            if i < food_idx and self.is_brand_only(candidate.text, brand_text):
                logger.debug("[Rank] Demoting brand-only '%s'", candidate.text)
                candidate = replace(candidate, score=round(min(candidate.score, floor) - 1.0, 3))
            out.append(candidate)
        return self.order(out)

    def drop_brand_echoes(self, ranked: List[Candidate], brand_text: str = "") -> List[Candidate]:
        if not ranked or not has_food_keyword(ranked[0].text):
            return ranked
        return [ranked[0]] + [c for c in ranked[1:] if not self.is_brand_only(c.text, brand_text)]

    def rank(self, candidates: Iterable[Candidate], brand_text: str = "") -> List[Candidate]:
        """
        Full ranking: dedupe, then the four guard passes in order.

        Args:
            candidates: Scored candidates in arrival order (earlier wins ties)
            brand_text: Independent Brand-zone read, "" when not available

        Returns:
            New list, best first
        """
        ranked = self.dedupe(candidates)
        ranked = self.filter_boilerplate(ranked)
        ranked = self.merge_organic(ranked)
        ranked = self.demote_brands(ranked, brand_text)
        ranked = self.drop_brand_echoes(ranked, brand_text)
        return ranked
