"""
Scoring Engine - Significance and recency scoring for memory events.

Provides:
1. Significance scoring: how important an event is when it is written
2. Recency decay: how much age discounts an event at ranking time
3. Token estimation and elapsed-time labels shared by assembly

Significance is a write-time value. Recency is applied only to ranking and
never stored.
"""

from __future__ import annotations

import math
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from lorekeeper.memory.config import RelevancePolicy, SignificancePolicy
from lorekeeper.memory.schema import clamp_significance

if TYPE_CHECKING:
    from lorekeeper.memory.schema import EventPayload


class ScoringEngine:
    """Engine for significance and recency calculations."""

    def __init__(
        self,
        significance_policy: SignificancePolicy | None = None,
        relevance_policy: RelevancePolicy | None = None,
    ):
        """Initialize scoring engine with optional custom policies."""
        self.significance_policy = significance_policy or SignificancePolicy()
        self.relevance_policy = relevance_policy or RelevancePolicy()

    # =========================================================================
    # Significance
    # =========================================================================

    def calculate_significance(
        self,
        payload: EventPayload,
        hint: Any = None,
    ) -> float:
        """
        Calculate significance for a new event.

        Args:
            payload: Typed event payload
            hint: Caller-supplied significance; overrides the heuristic
                  when it is a number (clamped to [0, 1])

        Returns:
            Significance between 0.0 and 1.0
        """
        clamped = clamp_significance(hint)
        if clamped is not None:
            return clamped
        return min(max(payload.significance(self.significance_policy), 0.0), 1.0)

    # =========================================================================
    # Recency
    # =========================================================================

    def recency_decay(self, age: timedelta) -> float:
        """
        Ranking multiplier that halves every half-life.

        Exponential, so the ratio between two events' factors does not depend
        on when ranking happens.
        """
        return recency_decay(age, self.relevance_policy.recency_half_life_hours)


def recency_decay(age: timedelta, half_life_hours: float = 168.0) -> float:
    """Exponential decay: 1.0 now, 0.5 after one half-life."""
    hours = max(age.total_seconds(), 0.0) / 3600.0
    if half_life_hours <= 0:
        return 1.0
    return 0.5 ** (hours / half_life_hours)


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Deterministic length-based token estimate."""
    if not text:
        return 0
    return math.ceil(len(text) / max(chars_per_token, 1))


def format_time_ago(age: timedelta) -> str:
    """Elapsed-time label: 'just now', '5m ago', '2h ago', '3d ago'."""
    minutes = int(max(age.total_seconds(), 0.0) // 60)
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d ago"
    if hours > 0:
        return f"{hours}h ago"
    if minutes > 0:
        return f"{minutes}m ago"
    return "just now"
