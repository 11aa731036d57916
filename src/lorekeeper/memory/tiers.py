"""
Tier Classifier - Age/significance/access based memory tiers.

Pure functions only: classification is called repeatedly for display and
ranking and must never drift or mutate anything.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lorekeeper.memory.config import TierPolicy


class Tier(str, Enum):
    """Memory tier definitions."""

    HOT = "hot"  # < 2h: immediate actions
    WARM = "warm"  # < 1 day: session events
    COOL = "cool"  # < 1 week: story beats
    COLD = "cold"  # < 1 month: major events
    ARCHIVED = "archived"  # Older, eligible for folding


def _policy(policy: TierPolicy | None) -> TierPolicy:
    if policy is None:
        from lorekeeper.memory.config import TierPolicy

        return TierPolicy()
    return policy


def effective_significance(
    significance: float,
    access_count: int,
    policy: TierPolicy | None = None,
) -> float:
    """
    Significance boosted by access frequency, bounded to 1.0.

    Non-decreasing in access_count.
    """
    p = _policy(policy)
    boost = min(max(access_count, 0) * p.access_boost, p.max_access_boost)
    return min(significance + boost, 1.0)


def classify(
    age: timedelta,
    significance: float,
    access_count: int = 0,
    policy: TierPolicy | None = None,
) -> Tier:
    """
    Determine which tier an event belongs to.

    Args:
        age: Time since the event was recorded
        significance: Stored significance (0-1)
        access_count: Times the event was selected into a context
        policy: Thresholds (defaults when None)

    Returns:
        Tier
    """
    p = _policy(policy)
    adjusted = effective_significance(significance, access_count, p)
    hours = age.total_seconds() / 3600.0

    if hours < p.hot_max_hours and adjusted > p.hot_min_significance:
        return Tier.HOT
    if hours < p.warm_max_hours and adjusted > p.warm_min_significance:
        return Tier.WARM
    if hours < p.cool_max_hours and adjusted > p.cool_min_significance:
        return Tier.COOL
    if hours < p.cold_max_hours and adjusted > p.cold_min_significance:
        return Tier.COLD
    return Tier.ARCHIVED
