"""Tests for tier classification."""

from datetime import timedelta

import pytest

from lorekeeper.memory.config import TierPolicy
from lorekeeper.memory.tiers import Tier, classify, effective_significance


class TestEffectiveSignificance:
    def test_access_boost(self):
        assert effective_significance(0.2, 0) == 0.2
        assert effective_significance(0.2, 3) == pytest.approx(0.5)

    def test_boost_capped(self):
        assert effective_significance(0.2, 100) == pytest.approx(0.7)

    def test_never_above_one(self):
        assert effective_significance(0.9, 5) == 1.0

    def test_non_decreasing_in_access_count(self):
        values = [effective_significance(0.35, n) for n in range(12)]
        assert values == sorted(values)
        assert all(v <= 1.0 for v in values)


class TestClassify:
    def test_fresh_significant_event_is_hot(self):
        assert classify(timedelta(0), 0.31) == Tier.HOT

    def test_fresh_trivial_event_is_not_hot(self):
        assert classify(timedelta(0), 0.3) == Tier.WARM

    @pytest.mark.parametrize(
        "age, significance, expected",
        [
            (timedelta(hours=1), 0.5, Tier.HOT),
            (timedelta(hours=3), 0.5, Tier.WARM),
            (timedelta(days=2), 0.5, Tier.COOL),
            (timedelta(days=10), 0.5, Tier.COLD),
            (timedelta(days=31), 1.0, Tier.ARCHIVED),
            (timedelta(hours=1), 0.05, Tier.ARCHIVED),
        ],
    )
    def test_thresholds(self, age, significance, expected):
        assert classify(age, significance) == expected

    def test_access_count_promotes(self):
        age = timedelta(hours=1)
        assert classify(age, 0.25, access_count=0) == Tier.WARM
        assert classify(age, 0.25, access_count=1) == Tier.HOT

    def test_monotonic_in_age(self):
        order = list(Tier)
        previous = 0
        for hours in [0, 1, 3, 30, 200, 800, 5000]:
            rank = order.index(classify(timedelta(hours=hours), 0.6))
            assert rank >= previous
            previous = rank

    def test_custom_policy(self):
        policy = TierPolicy(hot_max_hours=0.5)
        assert classify(timedelta(hours=1), 0.9, policy=policy) == Tier.WARM

    def test_pure(self):
        results = {classify(timedelta(hours=5), 0.4, 2) for _ in range(10)}
        assert len(results) == 1
