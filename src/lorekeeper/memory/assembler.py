"""
Context Assembler - Token-budgeted memory block for the prompt.

Ranks candidate events by relevance x effective significance x recency,
accepts them greedily in rank order while the estimated size of the rendered
block stays within the budget, and renders the accepted events in three
sections. Truncation is "most important first": the first event that does
not fit ends selection, except an event too large to fit even on its own,
which is skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from lorekeeper.memory.config import AssemblyPolicy, TierPolicy
from lorekeeper.memory.relevance import Relevance
from lorekeeper.memory.schema import MemoryEvent
from lorekeeper.memory.scoring import ScoringEngine, estimate_tokens, format_time_ago

logger = logging.getLogger(__name__)

PLACEHOLDER = "## Recent History\nThis is a new adventure with no significant events yet."
CONTEXT_TITLE = "## Memory Context\n\n"


class Section(str, Enum):
    """Rendered groups, in output order."""

    SEMANTIC = "semantic"
    IMMEDIATE = "immediate"
    HISTORICAL = "historical"


SECTION_TITLES = {
    Section.SEMANTIC: "**Semantically Related Events:**",
    Section.IMMEDIATE: "**Just Happened:**",
    Section.HISTORICAL: "**Related History:**",
}


@dataclass
class RankedEvent:
    """A candidate with its ranking inputs and rendered line."""

    event: MemoryEvent
    relevance: Relevance
    rank: float
    section: Section
    line: str


@dataclass
class AssembledContext:
    """
    Result of one assembly call.

    token_estimate never exceeds token_budget for selected events. The
    placeholder is the one exception: it is returned whole, whatever the
    budget, and token_estimate reports its real cost.
    """

    text: str
    selected: list[RankedEvent] = field(default_factory=list)
    token_budget: int = 0
    token_estimate: int = 0
    skipped_oversize: list[str] = field(default_factory=list)

    @property
    def events(self) -> list[MemoryEvent]:
        return [ranked.event for ranked in self.selected]

    @property
    def is_placeholder(self) -> bool:
        return not self.selected

    def section(self, section: Section) -> list[MemoryEvent]:
        return [ranked.event for ranked in self.selected if ranked.section == section]


class ContextAssembler:
    """Selects and renders events for one prompt."""

    def __init__(
        self,
        policy: AssemblyPolicy | None = None,
        tier_policy: TierPolicy | None = None,
        scoring: ScoringEngine | None = None,
    ):
        self.policy = policy or AssemblyPolicy()
        self.tier_policy = tier_policy or TierPolicy()
        self.scoring = scoring or ScoringEngine()

    def tokens(self, text: str) -> int:
        return estimate_tokens(text, self.policy.chars_per_token)

    # =========================================================================
    # Ranking
    # =========================================================================

    def section_for(self, event: MemoryEvent, relevance: Relevance, now: datetime) -> Section:
        similarity = relevance.similarity
        if similarity is not None and similarity > self.policy.semantic_threshold:
            return Section.SEMANTIC
        if event.age(now) < timedelta(minutes=self.policy.immediate_max_minutes):
            return Section.IMMEDIATE
        return Section.HISTORICAL

    def render_line(
        self, event: MemoryEvent, relevance: Relevance, section: Section, now: datetime
    ) -> str:
        """One-line prompt form with elapsed-time label."""
        line = (
            f"{event.payload.summary(self.policy.dialogue_excerpt_chars)} "
            f"({format_time_ago(event.age(now))})"
        )
        if section == Section.SEMANTIC and relevance.similarity is not None:
            line += f" [similarity: {relevance.similarity * 100:.1f}%]"
        return line

    def rank(
        self,
        events: Iterable[MemoryEvent],
        relevance: dict[str, Relevance],
        now: datetime,
        access_counts: dict[str, int] | None = None,
    ) -> list[RankedEvent]:
        """
        Order candidates by final rank, descending.

        Args:
            events: Candidates in insertion order (ties keep this order)
            relevance: event id -> Relevance (missing ids are skipped)
            now: Reference time for age and recency
            access_counts: Access counts to rank with; defaults to each
                           event's current count

        Returns:
            RankedEvent list
        """
        access_counts = access_counts or {}
        ranked = []
        for event in events:
            rel = relevance.get(event.id)
            if rel is None:
                continue
            significance = event.effective_significance(
                self.tier_policy, access_counts.get(event.id)
            )
            rank = rel.score * significance * self.scoring.recency_decay(event.age(now))
            section = self.section_for(event, rel, now)
            ranked.append(
                RankedEvent(
                    event=event,
                    relevance=rel,
                    rank=rank,
                    section=section,
                    line=self.render_line(event, rel, section, now),
                )
            )
        # sorted() is stable: equal ranks keep insertion order
        return sorted(ranked, key=lambda r: -r.rank)

    # =========================================================================
    # Selection and rendering
    # =========================================================================

    def assemble(
        self,
        events: Iterable[MemoryEvent],
        relevance: dict[str, Relevance],
        token_budget: int,
        now: datetime,
        access_counts: dict[str, int] | None = None,
    ) -> AssembledContext:
        """
        Select events within the token budget and render them.

        Selected events have access_count incremented and last_accessed set
        to `now`.
        """
        if token_budget < 0:
            raise ValueError("token_budget must be non-negative")

        title_cost = self.tokens(CONTEXT_TITLE)
        header_costs = {s: self.tokens(f"{title}\n\n") for s, title in SECTION_TITLES.items()}

        selected: list[RankedEvent] = []
        skipped: list[str] = []
        opened: set[Section] = set()
        used = title_cost

        for candidate in self.rank(events, relevance, now, access_counts):
            line_cost = self.tokens(f"- {candidate.line}\n")
            header_cost = 0 if candidate.section in opened else header_costs[candidate.section]

            # Too large even alone: skip it, keep going
            if title_cost + header_costs[candidate.section] + line_cost > token_budget:
                skipped.append(candidate.event.id)
                logger.debug("Skipping event %s: larger than the whole budget", candidate.event.id)
                continue
            # First event that does not fit ends selection
            if used + header_cost + line_cost > token_budget:
                break

            used += header_cost + line_cost
            opened.add(candidate.section)
            selected.append(candidate)

        if not selected:
            return AssembledContext(
                text=PLACEHOLDER,
                token_budget=token_budget,
                token_estimate=self.tokens(PLACEHOLDER),
                skipped_oversize=skipped,
            )

        for ranked in selected:
            ranked.event.access_count += 1
            ranked.event.last_accessed = now

        text = self.render(selected)
        return AssembledContext(
            text=text,
            selected=selected,
            token_budget=token_budget,
            token_estimate=self.tokens(text),
            skipped_oversize=skipped,
        )

    @staticmethod
    def render(selected: list[RankedEvent]) -> str:
        """Render selected events grouped by section, rank order within each."""
        context = CONTEXT_TITLE
        for section in Section:
            lines = [ranked.line for ranked in selected if ranked.section == section]
            if not lines:
                continue
            context += f"{SECTION_TITLES[section]}\n"
            for line in lines:
                context += f"- {line}\n"
            context += "\n"
        return context.rstrip("\n") + "\n"
