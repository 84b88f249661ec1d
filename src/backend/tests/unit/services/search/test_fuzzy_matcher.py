"""
Unit tests for FuzzyMatcher and TokenVocabulary
"""

import pytest

from app.services.search.fuzzy_matcher import FuzzyMatchConfig, FuzzyMatcher, TokenVocabulary


@pytest.fixture
def vocabulary():
    return TokenVocabulary(
        ["laptop", "laptops", "lamp", "headphones", "car", "cart", "mouse", "sleeve"]
    )


@pytest.fixture
def matcher():
    return FuzzyMatcher()


class TestTokenVocabulary:

    def test_with_prefix_is_lexical(self, vocabulary):
        assert vocabulary.with_prefix("lap") == ["laptop", "laptops"]
        assert vocabulary.with_prefix("zzz") == []

    def test_with_length_between(self, vocabulary):
        assert set(vocabulary.with_length_between(3, 4)) == {"car", "cart", "lamp"}

    def test_contains_and_len(self, vocabulary):
        assert "mouse" in vocabulary
        assert "mice" not in vocabulary
        assert len(vocabulary) == 8


@pytest.mark.unit
class TestFuzzyMatcher:

    def test_exact_match_has_full_quality(self, matcher, vocabulary):
        matches = matcher.match_token("laptop", vocabulary)

        assert matches["laptop"] == 1.0
        # longer completion still matches as a prefix
        assert matches["laptops"] == 0.8

    def test_prefix_match(self, matcher, vocabulary):
        matches = matcher.match_token("lap", vocabulary)

        assert matches == {"laptop": 0.8, "laptops": 0.8}

    def test_transposition_is_one_edit(self, matcher, vocabulary):
        matches = matcher.match_token("lapotp", vocabulary)

        assert matches["laptop"] == 0.7

    def test_levenshtein_counts_transposition_twice(self, vocabulary):
        matcher = FuzzyMatcher(FuzzyMatchConfig(distance_metric="levenshtein"))

        assert "laptop" not in matcher.match_token("lapotp", vocabulary)

    def test_short_tokens_need_exact_or_prefix(self, matcher, vocabulary):
        # "cat" is one edit from "car" but three letters allow no edits
        assert matcher.match_token("cat", vocabulary) == {}
        assert matcher.match_token("car", vocabulary) == {"car": 1.0, "cart": 0.8}

    def test_long_tokens_allow_two_edits(self, matcher, vocabulary):
        assert matcher.match_token("headphnes", vocabulary)["headphones"] == 0.7
        assert matcher.match_token("hedphnes", vocabulary)["headphones"] == 0.5

    def test_distance_bound_by_length(self, matcher):
        assert matcher.max_distance("tv") == 0
        assert matcher.max_distance("mouse") == 1
        assert matcher.max_distance("headphones") == 2

    def test_unrelated_token_matches_nothing(self, matcher, vocabulary):
        assert matcher.match_token("nonexistentproductxyz", vocabulary) == {}

    def test_disabled_matcher_is_exact_only(self, vocabulary):
        matcher = FuzzyMatcher(FuzzyMatchConfig(enabled=False))

        assert matcher.match_token("lap", vocabulary) == {}
        assert matcher.match_token("laptop", vocabulary) == {"laptop": 1.0}

    def test_expansion_limit(self, vocabulary):
        matcher = FuzzyMatcher(FuzzyMatchConfig(max_expansions_per_token=1))

        assert matcher.match_token("lap", vocabulary) == {"laptop": 0.8}

    def test_expand_deduplicates_tokens(self, matcher, vocabulary):
        expansion = matcher.expand(["lap", "mouse", "lap"], vocabulary)

        assert list(expansion) == ["lap", "mouse"]
        assert expansion["mouse"]["mouse"] == 1.0

    def test_from_config_ignores_unknown_keys(self):
        config = FuzzyMatchConfig.from_config({"medium_max_distance": 2, "unknown": True})

        assert config.medium_max_distance == 2
        assert config.edit_distance_quality == (0.7, 0.5)
