"""
Compaction - Memory compression and tier management.

Responsibilities:
- Tier transition (Hot → Warm → Cool → Cold → Archived)
- Folding old, low-significance events into per-type summaries
- Rebuilding the Hot working set

Summaries are LLM-free aggregation. Events at or above the retention
significance are never folded, however old they are.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from lorekeeper.memory.config import CompactionPolicy, TierPolicy
from lorekeeper.memory.schema import (
    ArchiveSummary,
    CombatPayload,
    DialoguePayload,
    EventType,
    MemoryEvent,
    QuestPayload,
)
from lorekeeper.memory.tiers import Tier

logger = logging.getLogger(__name__)


@dataclass
class CompactionResult:
    """Outcome of one compaction pass."""

    hot: list[MemoryEvent] = field(default_factory=list)
    history: list[MemoryEvent] = field(default_factory=list)
    folded: list[MemoryEvent] = field(default_factory=list)
    tier_counts: dict[str, int] = field(default_factory=dict)
    retained: int = 0
    summary: ArchiveSummary | None = None

    @property
    def total(self) -> int:
        return len(self.hot) + len(self.history) + len(self.folded)

    @property
    def archived(self) -> int:
        return len(self.folded)

    def stats(self) -> dict[str, Any]:
        return {
            "total_events": self.total,
            "tiers": dict(self.tier_counts),
            "archived_count": self.archived,
            "retained_count": self.retained,
            "hot_count": len(self.hot),
            "history_count": len(self.history),
            "archive_id": self.summary.id if self.summary else None,
        }


class Compactor:
    """Decides when to compact and rebuilds the tiers."""

    def __init__(
        self,
        policy: CompactionPolicy | None = None,
        tier_policy: TierPolicy | None = None,
        last_run: datetime | None = None,
    ):
        """
        Initialize compactor.

        Args:
            policy: Trigger and retention settings
            tier_policy: Tier thresholds
            last_run: Time the interval is measured from (usually session start)
        """
        self.policy = policy or CompactionPolicy()
        self.tier_policy = tier_policy or TierPolicy()
        self.last_run = last_run or datetime.now()

    def should_compact(
        self,
        now: datetime,
        conversation_log_size: int = 0,
        hot_size: int = 0,
    ) -> bool:
        """
        Check whether a compaction pass is due.

        Args:
            now: Current time
            conversation_log_size: Messages in the caller's conversation log
            hot_size: Events currently in the Hot working set

        Returns:
            True if the interval elapsed or a size threshold was crossed
        """
        if now - self.last_run >= timedelta(minutes=self.policy.interval_minutes):
            return True
        if conversation_log_size > self.policy.log_threshold:
            return True
        return hot_size >= self.policy.max_hot_events

    def compact(
        self,
        hot: list[MemoryEvent],
        history: list[MemoryEvent],
        now: datetime,
    ) -> CompactionResult:
        """
        Recompute every event's tier and fold what has aged out.

        Args:
            hot: Current Hot working set
            history: Persisted Warm/Cool/Cold/Archived events
            now: Reference time for ages

        Returns:
            CompactionResult with the new hot set, history and folded events
        """
        result = CompactionResult(tier_counts={tier.value: 0 for tier in Tier})

        for event in list(hot) + list(history):
            tier = event.tier_at(now, self.tier_policy)
            result.tier_counts[tier.value] += 1

            if tier == Tier.ARCHIVED:
                if event.significance < self.policy.retain_significance:
                    result.folded.append(event)
                    continue
                # Legendary moments stay retrievable forever
                result.retained += 1
                result.history.append(event)
            elif tier == Tier.HOT:
                result.hot.append(event)
            else:
                result.history.append(event)

        if result.folded:
            result.summary = self.create_archive_summary(result.folded, now)

        self.last_run = now
        logger.info(
            "Memory compacted: %d events archived, %d kept active, %d retained past archive age",
            result.archived,
            len(result.hot) + len(result.history),
            result.retained,
        )
        return result

    # =========================================================================
    # Summaries
    # =========================================================================

    def create_archive_summary(self, events: list[MemoryEvent], now: datetime) -> ArchiveSummary:
        """Group folded events by type and aggregate each group."""
        by_type: dict[EventType, list[MemoryEvent]] = defaultdict(list)
        for event in events:
            by_type[event.event_type].append(event)

        return ArchiveSummary(
            event_count=len(events),
            summaries={
                event_type.value: self.summarize_group(event_type, group)
                for event_type, group in by_type.items()
            },
            created_at=now,
        )

    @staticmethod
    def summarize_group(event_type: EventType, events: list[MemoryEvent]) -> dict[str, Any]:
        """
        Summarize a group of same-type events (LLM-free, simple aggregation).

        Args:
            event_type: Shared type of the group
            events: Events to summarize

        Returns:
            Summary dict with aggregated information
        """
        if not events:
            return {}

        participants = {name for e in events for name in e.payload.participants()}
        locations = {e.payload.location for e in events if e.payload.location}
        timestamps = [e.timestamp for e in events]

        summary: dict[str, Any] = {
            "type": event_type.value,
            "count": len(events),
            "participants": sorted(participants),
            "locations": sorted(locations),
            "date_range": {
                "start": min(timestamps).isoformat(),
                "end": max(timestamps).isoformat(),
            },
            "avg_significance": sum(e.significance for e in events) / len(events),
        }

        if event_type == EventType.COMBAT:
            summary["casualties"] = [
                name
                for e in events
                if isinstance(e.payload, CombatPayload)
                for name in e.payload.casualties
            ]
        elif event_type == EventType.DIALOGUE:
            summary["speakers"] = sorted(
                {e.payload.speaker for e in events if isinstance(e.payload, DialoguePayload)}
            )
        elif event_type == EventType.QUEST:
            summary["quests"] = sorted(
                {e.payload.quest_id for e in events if isinstance(e.payload, QuestPayload)}
            )

        return summary
