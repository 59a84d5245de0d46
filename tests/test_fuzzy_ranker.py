"""Tests for Jaro-Winkler, fuzzy re-ranking and fallback query generation."""

import pytest

from ingredient_nutrition.services.fuzzy_ranker import (
    FUZZY_THRESHOLD,
    fuzzy_score,
    generate_fallback_queries,
    jaro_winkler,
    score_candidates,
)

from conftest import make_candidate


class TestJaroWinkler:

    @pytest.mark.parametrize("s1, s2, expected", [
        ("MARTHA", "MARHTA", 0.9611),
        ("DWAYNE", "DUANE", 0.84),
        ("DIXON", "DICKSONX", 0.8133),
    ])
    def test_reference_values(self, s1, s2, expected):
        assert jaro_winkler(s1, s2) == pytest.approx(expected, abs=1e-3)

    def test_identical_strings(self):
        assert jaro_winkler("olive oil", "olive oil") == 1.0
        assert jaro_winkler("", "") == 1.0

    def test_empty_against_non_empty(self):
        assert jaro_winkler("", "rice") == 0.0
        assert jaro_winkler("rice", "") == 0.0

    def test_no_common_characters(self):
        assert jaro_winkler("abc", "xyz") == 0.0

    def test_symmetric(self):
        pairs = [("chicken", "chocolate"), ("tomatos", "tomatoes"), ("kale", "kalamata")]
        for a, b in pairs:
            assert jaro_winkler(a, b) == pytest.approx(jaro_winkler(b, a))

    def test_within_unit_interval(self):
        for a, b in [("a", "b"), ("ab", "ba"), ("spinach", "spinach raw"), ("x", "xxxxxxxx")]:
            assert 0.0 <= jaro_winkler(a, b) <= 1.0


class TestFuzzyScore:

    def test_exact_description_scores_one(self):
        assert fuzzy_score("Banana", ["banana"]) == pytest.approx(1.0)

    def test_token_hit_by_substring(self):
        # "apple" is contained in "apples"
        assert fuzzy_score("Apples, raw, with skin", ["apple"]) >= 0.7

    def test_token_hit_by_similarity(self):
        # no substring relation, but Jaro-Winkler > 0.85
        assert fuzzy_score("Tomatoes, red, ripe, raw", ["tomatos"]) >= 0.7

    def test_no_overlap_only_string_similarity(self):
        score = fuzzy_score("Beef, ground, 80% lean", ["chicken", "breast"])
        assert score < 0.3

    def test_no_tokens(self):
        assert fuzzy_score("Rice, white", []) == pytest.approx(0.0)


class TestScoreCandidates:

    def test_sorted_best_first(self):
        beef = make_candidate(1, "Beef, ground, 80% lean meat / 20% fat, raw")
        chicken = make_candidate(2, "Chicken, broilers or fryers, breast, meat only, raw")
        scored = score_candidates([beef, chicken], ["chicken", "breast"])
        assert [s.candidate.fdc_id for s in scored] == [2, 1]
        assert scored[0].score > scored[1].score

    def test_ties_keep_input_order(self):
        a = make_candidate(10, "Milk, whole")
        b = make_candidate(11, "Milk, whole")
        c = make_candidate(12, "Milk, whole")
        scored = score_candidates([a, b, c], ["milk"])
        assert [s.candidate.fdc_id for s in scored] == [10, 11, 12]

    def test_deterministic(self):
        candidates = [
            make_candidate(1, "Oil, olive, salad or cooking"),
            make_candidate(2, "Fish, sardine, Atlantic, canned in oil"),
            make_candidate(3, "Olives, ripe, canned"),
        ]
        first = score_candidates(candidates, ["olive", "oil"])
        second = score_candidates(candidates, ["olive", "oil"])
        assert [(s.candidate.fdc_id, s.score) for s in first] == [
            (s.candidate.fdc_id, s.score) for s in second
        ]

    def test_scores_bounded(self):
        candidates = [make_candidate(i, d) for i, d in enumerate(["", "x", "Banana", "Bananas, raw"])]
        for s in score_candidates(candidates, ["banana"]):
            assert 0.0 <= s.score <= 1.0

    def test_empty_candidates(self):
        assert score_candidates([], ["anything"]) == []

    def test_threshold_constant(self):
        assert FUZZY_THRESHOLD == 0.4


class TestGenerateFallbackQueries:

    def test_drops_one_token_left_to_right(self):
        assert generate_fallback_queries(["kirklan", "chicken", "breast"]) == [
            "chicken breast",
            "kirklan breast",
            "kirklan chicken",
        ]

    def test_at_most_three(self):
        queries = generate_fallback_queries(["a1", "b2", "c3", "d4", "e5"])
        assert len(queries) == 3
        assert queries[0] == "b2 c3 d4 e5"

    def test_single_token_has_no_fallbacks(self):
        assert generate_fallback_queries(["rice"]) == []
        assert generate_fallback_queries([]) == []

    def test_skips_too_short_results(self):
        assert generate_fallback_queries(["a", "b"]) == []
        assert generate_fallback_queries(["a", "rice"]) == ["rice"]
