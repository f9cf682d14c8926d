"""
Unit tests for the CandidateRanker (core/postprocessing.py).

Covers relative scoring, deterministic ordering and the four guard passes:
boilerplate removal, organic merge, brand demotion and brand-echo removal.

Usage:
    pytest label_ocr/tests/test_ranking.py -v
"""

import pytest

from label_ocr.core.postprocessing import CandidateRanker
from label_ocr.core.settings import ScoringSettings
from label_ocr.core.utils import Candidate


@pytest.fixture
def ranker():
    return CandidateRanker(ScoringSettings())


def texts(candidates):
    return [c.text for c in candidates]


# =============================================================================
# Scoring
# =============================================================================

class TestScoring:
    """Relative ordering of the scoring signals."""

    def test_food_line_beats_brand_line(self, ranker):
        assert ranker.score("Organic Kidney Beans") > ranker.score("Trader Joe's")

    def test_food_bigram_outweighs_brand_bigram(self, ranker):
        assert ranker.score("Kidney Beans") > ranker.score("Trader Joe's")

    def test_clean_food_line_is_good_enough(self, ranker):
        assert ranker.score("Organic Kidney Beans") > ScoringSettings().good_enough_score

    def test_brand_line_is_not_good_enough(self, ranker):
        assert ranker.score("Trader Joe's") < ScoringSettings().good_enough_score

    def test_bad_characters_penalized(self, ranker):
        assert ranker.score("Black Beans") > ranker.score("Black Beans @#")

    def test_digit_heavy_penalized(self, ranker):
        assert ranker.score("Pinto Beans") > ranker.score("P1nt0 8ean5 123")

    def test_garbage_tail_penalized(self, ranker):
        assert ranker.score("Penne Rigate") > ranker.score("Penne Rigate xq")

    def test_phrase_bonus(self, ranker):
        # same letters, only the first forms "<descriptor> beans"
        assert ranker.score("Pinto Beans") > ranker.score("Beans Pinto")

    def test_garbage_scores_low(self, ranker):
        assert ranker.score("trader j03s") < ScoringSettings().fallback_min_score


# =============================================================================
# Ordering
# =============================================================================

class TestOrdering:
    """Stable (score desc, length desc) ordering."""

    def test_score_then_length(self, ranker):
        ordered = ranker.order([
            Candidate("Beans", 5.0, "general"),
            Candidate("Black Beans", 5.0, "general"),
            Candidate("Kidney Beans", 9.0, "general"),
        ])
        assert texts(ordered) == ["Kidney Beans", "Black Beans", "Beans"]

    def test_full_ties_keep_input_order(self, ranker):
        ordered = ranker.order([
            Candidate("Rice A", 3.0, "vision"),
            Candidate("Rice B", 3.0, "general"),
        ])
        assert [c.source for c in ordered] == ["vision", "general"]

    def test_dedupe_case_insensitive_keeps_best(self, ranker):
        deduped = ranker.dedupe([
            Candidate("kidney beans", 4.0, "general"),
            Candidate("KIDNEY BEANS", 8.0, "label_band"),
        ])
        assert len(deduped) == 1
        assert deduped[0].source == "label_band"

    def test_rank_is_deterministic(self, ranker):
        lines = ["Trader Joe's", "Organic", "Kidney Beans", "Serving Size 1/2 cup", "Family Recipe"]
        candidates = ranker.candidates_from_lines(lines, "general")
        first = ranker.rank(candidates, "Trader Joe's")
        second = ranker.rank(list(candidates), "Trader Joe's")
        assert first == second

    def test_rank_returns_new_list(self, ranker):
        candidates = ranker.candidates_from_lines(["Kidney Beans", "Organic"], "general")
        snapshot = list(candidates)
        ranker.rank(candidates)
        assert candidates == snapshot


# =============================================================================
# Guard Passes
# =============================================================================

class TestBoilerplate:
    """Pass 1: boilerplate and size lines never survive."""

    @pytest.mark.parametrize("line", [
        "Serving Size 1/2 cup",
        "Nutrition Facts",
        "Made with Organic Beans",
        "Ingredients: Water, Beans, Salt",
        "USDA Organic",
        "Distributed by Trader Joe's",
        "NET WT 15.5 OZ",
        "16 OZ (1 LB) 454 g",
    ])
    def test_excluded(self, ranker, line):
        candidates = [Candidate(line, 50.0, "general"), ranker.make_candidate("Black Beans", "general")]
        assert line not in texts(ranker.rank(candidates))


class TestOrganicMerge:
    """Pass 2: a lone "Organic" line joins the food line."""

    def test_merge_at_front(self, ranker):
        candidates = ranker.candidates_from_lines(["Kidney Beans", "Organic"], "general")
        ranked = ranker.rank(candidates)
        assert ranked[0].text == "Organic Kidney Beans"
        assert ranked[0].source == "merged"

    def test_no_merge_when_food_line_already_organic(self, ranker):
        candidates = ranker.candidates_from_lines(["Organic Kidney Beans", "Organic"], "general")
        assert "Organic Organic Kidney Beans" not in texts(ranker.rank(candidates))

    def test_no_merge_without_food_line(self, ranker):
        candidates = ranker.candidates_from_lines(["Organic", "Family Recipe"], "general")
        assert all(c.source != "merged" for c in ranker.rank(candidates))


class TestBrandGuards:
    """Passes 3 and 4: food lines outrank brand-only lines."""

    def test_brand_only_detection(self, ranker):
        assert ranker.is_brand_only("Trader Joe's", "Trader Joe's")
        assert ranker.is_brand_only("Trader Joe's Co", "Trader Joe's")
        assert ranker.is_brand_only("BARILLA")
        assert not ranker.is_brand_only("Trader Joe's Kidney Beans", "Trader Joe's")
        assert not ranker.is_brand_only("Family Recipe", "Barilla")

    def test_brand_top_demoted_below_food(self, ranker):
        ranked = ranker.demote_brands([
            Candidate("Trader Joe's", 20.0, "brand"),
            Candidate("Kidney Beans", 15.0, "general"),
        ], "Trader Joe's")
        assert texts(ranked) == ["Kidney Beans", "Trader Joe's"]
        assert ranked[1].score < ranked[0].score

    def test_brand_echoes_dropped_when_food_leads(self, ranker):
        ranked = ranker.rank([
            Candidate("Trader Joe's", 20.0, "brand"),
            Candidate("Kidney Beans", 15.0, "general"),
        ], "Trader Joe's")
        assert texts(ranked) == ["Kidney Beans"]

    def test_food_before_brand_when_top_is_neither(self, ranker):
        ranked = ranker.rank([
            Candidate("Family Recipe", 30.0, "general"),
            Candidate("Barilla", 25.0, "brand"),
            Candidate("Penne Rigate", 10.0, "general"),
        ], "Barilla")
        order = texts(ranked)
        assert order.index("Penne Rigate") < order.index("Barilla")

    def test_candidates_never_mutated(self, ranker):
        brand = Candidate("Trader Joe's", 20.0, "brand")
        ranker.rank([brand, Candidate("Kidney Beans", 15.0, "general")], "Trader Joe's")
        assert brand.score == 20.0


class TestCandidatesFromText:
    """Raw text to scored candidates."""

    def test_noise_filtered(self, ranker):
        candidates = ranker.candidates_from_text("ORGANIC KIDNEY BEANS\n@@##\nT R A D E R\n", "general")
        assert texts(candidates) == ["ORGANIC KIDNEY BEANS"]

    def test_empty_text(self, ranker):
        assert ranker.candidates_from_text("", "vision") == []
