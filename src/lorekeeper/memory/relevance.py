"""
Relevance Scorer - How well events match the current situation.

One blending policy for lexical/contextual evidence and vector similarity:

    relevance = lexical                                   (no vector hit)
    relevance = max(lexical, w * similarity + (1 - w) * lexical)

so vector evidence can raise an event's relevance but an event found by both
paths is never counted twice. Similarities are supplied by the caller, which
keeps this module independent of the embedding backend (or its absence).
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from lorekeeper.memory.config import RelevancePolicy
from lorekeeper.memory.schema import EventType

if TYPE_CHECKING:
    from lorekeeper.memory.schema import MemoryEvent, QueryContext

# Fixed action groups: a recent action relates to an event when both fall
# into the same group.
ACTION_GROUPS: dict[str, frozenset[str]] = {
    "combat": frozenset({"combat", "attack", "defend", "fight", "battle", "strike", "shoot"}),
    "social": frozenset({"dialogue", "persuade", "intimidate", "say", "talk", "ask", "tell"}),
    "exploration": frozenset({"travel", "search", "investigate", "explore", "move", "go"}),
    "magic": frozenset({"cast", "ritual", "enchant", "spell"}),
}

EVENT_ACTION_GROUPS: dict[EventType, str] = {
    EventType.COMBAT: "combat",
    EventType.DIALOGUE: "social",
    EventType.TRAVEL: "exploration",
    EventType.LOCATION_DISCOVERY: "exploration",
}

_WORD_RE = re.compile(r"\w+")


def _words(text: str) -> set[str]:
    return set(_WORD_RE.findall(text.lower()))


def action_groups_for(action: str) -> set[str]:
    """Groups any word of a free-text action belongs to."""
    words = _words(action)
    return {group for group, verbs in ACTION_GROUPS.items() if words & verbs}


@dataclass(frozen=True)
class Relevance:
    """Relevance figures for one event."""

    lexical: float
    score: float
    similarity: float | None = None

    @property
    def vector_match(self) -> bool:
        return self.similarity is not None


class RelevanceScorer:
    """Scores events against a QueryContext."""

    def __init__(self, policy: RelevancePolicy | None = None):
        self.policy = policy or RelevancePolicy()

    def lexical_score(self, event: MemoryEvent, context: QueryContext) -> float:
        """Location, participant and action-group overlap, in [0, 1]."""
        p = self.policy
        score = p.base_score

        # Location relevance
        location = event.payload.location.strip().lower()
        if location and location == context.location.strip().lower():
            score += p.location_match

        # Character relevance
        if context.participants:
            wanted = {name.lower() for name in context.participants}
            involved = {name.lower() for name in event.payload.participants()}
            overlap = len(wanted & involved)
            score += min(overlap * p.participant_match, p.max_participant_bonus)

        # Action type relevance
        group = EVENT_ACTION_GROUPS.get(event.event_type)
        if group and any(group in action_groups_for(a) for a in context.recent_actions):
            score += p.action_group_match

        return min(score, 1.0)

    def blend(self, lexical: float, similarity: float | None) -> float:
        """Combine lexical relevance with vector similarity."""
        if similarity is None:
            return lexical
        w = self.policy.vector_weight
        blended = w * similarity + (1.0 - w) * lexical
        return min(max(lexical, blended), 1.0)

    def score(
        self,
        event: MemoryEvent,
        context: QueryContext,
        similarity: float | None = None,
    ) -> float:
        """Final relevance in [0, 1]."""
        return self.blend(self.lexical_score(event, context), similarity)

    def score_all(
        self,
        events: Iterable[MemoryEvent],
        context: QueryContext,
        similarities: dict[str, float] | None = None,
    ) -> dict[str, Relevance]:
        """
        Score a batch of events.

        Args:
            events: Candidate events
            context: Current situation
            similarities: event id -> cosine similarity for events returned
                          by vector search (missing ids are lexical only)

        Returns:
            event id -> Relevance
        """
        similarities = similarities or {}
        results: dict[str, Relevance] = {}
        for event in events:
            lexical = self.lexical_score(event, context)
            similarity = similarities.get(event.id)
            results[event.id] = Relevance(
                lexical=lexical,
                score=self.blend(lexical, similarity),
                similarity=similarity,
            )
        return results

    @staticmethod
    def text_overlap(query: str, content: str) -> float:
        """Keyword overlap between a free-text query and event text."""
        query_lower = query.lower().strip()
        query_words = _words(query_lower)
        if not query_words:
            return 0.0

        overlap = len(query_words & _words(content))
        score = overlap / len(query_words)

        # Boost score if query appears as substring
        if query_lower in content.lower():
            score += 0.3

        return min(score, 1.0)
