"""Tests for probability normalisation and identifier helpers."""

import re

import pytest

from chatmarkets.models import OutcomeOption
from chatmarkets.utils import clamp, hash_id, market_identity, normalize_probabilities, round2, slugify


def _probabilities(outcomes):
    return [outcome.probability for outcome in outcomes]


class TestNormalizeProbabilities:
    def test_already_normalised_set_is_kept(self):
        result = normalize_probabilities([
            OutcomeOption("A", 0.5), OutcomeOption("B", 0.3), OutcomeOption("C", 0.2),
        ])
        assert _probabilities(result) == [0.5, 0.3, 0.2]

    def test_last_entry_takes_the_remainder(self):
        result = normalize_probabilities([
            OutcomeOption("A", 1), OutcomeOption("B", 1), OutcomeOption("C", 1),
        ])
        assert _probabilities(result) == [0.33, 0.33, 0.34]

    def test_yes_with_full_weight_no(self):
        result = normalize_probabilities([OutcomeOption("Yes", 0.6), OutcomeOption("No", 1.0)])
        assert _probabilities(result) == [0.38, 0.62]

    def test_zero_sum_gives_equal_shares(self):
        result = normalize_probabilities([OutcomeOption("A", 0), OutcomeOption("B", -2)])
        assert _probabilities(result) == [0.5, 0.5]

    def test_out_of_range_values_are_clamped(self):
        result = normalize_probabilities([OutcomeOption("A", 3.0), OutcomeOption("B", -1.0)])
        assert _probabilities(result) == [1.0, 0.0]

    @pytest.mark.parametrize("raw", [
        [0.1, 0.1, 0.1],
        [0.7, 0.7],
        [0.2, 0.33, 0.45, 0.9],
        [0.05, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        [0.165] * 6 + [0.01],
        [0.0] * 40,
    ])
    def test_sum_is_one_and_values_in_range(self, raw):
        result = normalize_probabilities([OutcomeOption(str(i), p) for i, p in enumerate(raw)])
        probabilities = _probabilities(result)
        assert abs(sum(probabilities) - 1.0) <= 0.01
        assert all(0.0 <= p <= 1.0 for p in probabilities)

    def test_rounding_overflow_is_taken_from_largest_shares(self):
        outcomes = [OutcomeOption(str(i), 0.165) for i in range(6)] + [OutcomeOption("6", 0.01)]
        result = normalize_probabilities(outcomes)
        assert _probabilities(result) == [0.16, 0.16, 0.17, 0.17, 0.17, 0.17, 0.0]

    def test_labels_and_order_are_preserved(self):
        result = normalize_probabilities([OutcomeOption("x", 0.2), OutcomeOption("y", 0.8)])
        assert [outcome.label for outcome in result] == ["x", "y"]

    def test_empty_input(self):
        assert normalize_probabilities([]) == []


class TestRound2:
    def test_rounds_half_up(self):
        assert round2(0.375) == 0.38
        assert round2(0.125) == 0.13

    def test_plain_values(self):
        assert round2(1 / 3) == 0.33


class TestClamp:
    def test_bounds(self):
        assert clamp(5, 0, 1) == 1
        assert clamp(-5, 0, 1) == 0
        assert clamp(0.4, 0, 1) == 0.4

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            clamp(0.5, 1, 0)


class TestIdentity:
    SLUG_RE = re.compile(r"^[a-z0-9-]+$")

    def test_slugify_basic(self):
        assert slugify("Will Dana show up at 9PM?") == "will-dana-show-up-at-9pm"

    def test_slugify_symbols_only_is_empty(self):
        assert slugify("?!? ***") == ""

    def test_slugify_max_length(self):
        slug = slugify("word " * 40)
        assert len(slug) <= 64
        assert not slug.endswith("-")

    def test_hash_id_is_stable(self):
        assert hash_id("abc") == hash_id("abc")
        assert len(hash_id("abc")) == 12

    def test_market_identity_format(self):
        market_id, slug = market_identity("Will it rain?", 0, prefix="heuristic")
        assert re.match(r"^heuristic-1-[0-9a-f]{12}$", market_id)
        assert slug == "will-it-rain"

    @pytest.mark.parametrize("title", ["", "???", "בדרך", "A" * 300, "Mixed -- Title!!"])
    def test_slug_always_valid(self, title):
        market_id, slug = market_identity(title, 3, prefix="market")
        assert slug
        assert self.SLUG_RE.match(slug)
        assert len(slug) <= 64

    def test_slug_falls_back_to_id(self):
        market_id, slug = market_identity("בדרך", 0, prefix="market")
        assert slug == market_id

    def test_index_changes_id(self):
        first, _ = market_identity("Same title", 0, prefix="market")
        second, _ = market_identity("Same title", 1, prefix="market")
        assert first != second
