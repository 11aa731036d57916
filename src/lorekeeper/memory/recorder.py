"""
Event Recorder - Validated ingestion of interaction events.

Flow: coerce type → parse payload → fill location → score → store Hot →
embed → index. Nothing here raises for odd input: unknown tags become
generic events, malformed payloads take neutral defaults, and an embedding
failure only means the event has no vector.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Executor
from datetime import datetime
from typing import Any

from lorekeeper.memory.config import EmbeddingPolicy
from lorekeeper.memory.embeddings import EmbeddingProvider, embed_with_timeout
from lorekeeper.memory.schema import (
    UNKNOWN_LOCATION,
    EventPayload,
    EventType,
    MemoryEvent,
    coerce_event_type,
    parse_payload,
)
from lorekeeper.memory.scoring import ScoringEngine
from lorekeeper.memory.store import MemoryStore
from lorekeeper.memory.vector_index import VectorIndex

logger = logging.getLogger(__name__)


class EventRecorder:
    """Turns raw (type, payload) pairs into stored, indexed MemoryEvents."""

    def __init__(
        self,
        store: MemoryStore,
        index: VectorIndex,
        scoring: ScoringEngine | None = None,
        embedder: EmbeddingProvider | None = None,
        executor: Executor | None = None,
        embedding_policy: EmbeddingPolicy | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.index = index
        self.scoring = scoring or ScoringEngine()
        self.embedder = embedder
        self.executor = executor
        self.embedding_policy = embedding_policy or EmbeddingPolicy()
        self.clock = clock

        # Location applied to payloads that do not name one
        self.current_location = UNKNOWN_LOCATION

    def record(
        self,
        event_type: EventType | str,
        payload: EventPayload | dict[str, Any] | None = None,
        significance_hint: Any = None,
    ) -> MemoryEvent:
        """
        Record a new event.

        Args:
            event_type: EventType or raw tag (unknown tags become generic)
            payload: Typed payload or a loose mapping
            significance_hint: Overrides the type heuristic when numeric

        Returns:
            The stored MemoryEvent
        """
        kind, raw_tag = coerce_event_type(event_type)
        parsed = parse_payload(kind, payload, raw_tag)
        if not parsed.location:
            parsed.location = self.current_location or UNKNOWN_LOCATION

        event = MemoryEvent(
            event_type=kind,
            payload=parsed,
            significance=self.scoring.calculate_significance(parsed, significance_hint),
            timestamp=self.clock(),
        )
        self.store.add_hot(event)
        self._index(event)
        logger.debug(
            "Recorded %s event %s (significance %.2f)",
            kind.value,
            event.id,
            event.significance,
        )
        return event

    def _index(self, event: MemoryEvent) -> bool:
        """Embed and index an event. Returns False in degraded mode."""
        text = event.payload.index_text()
        vector = embed_with_timeout(
            self.embedder,
            text,
            executor=self.executor,
            timeout=self.embedding_policy.timeout_seconds,
        )
        if vector is None:
            return False
        self.index.upsert(
            event.id,
            vector,
            {
                "event_type": event.event_type.value,
                "significance": event.significance,
                "timestamp": event.timestamp.isoformat(),
                "text": text,
            },
        )
        return True

    # =========================================================================
    # Convenience Recorders
    # =========================================================================

    def record_combat(
        self,
        combatants: list[str],
        outcome: str,
        casualties: list[str] | None = None,
        location: str = "",
    ) -> MemoryEvent:
        """Record a fight (more significant when someone fell)."""
        return self.record(
            EventType.COMBAT,
            {
                "combatants": combatants,
                "outcome": outcome,
                "casualties": casualties or [],
                "location": location,
            },
        )

    def record_dialogue(
        self,
        speaker: str,
        content: str,
        reactions: dict[str, str] | None = None,
        location: str = "",
    ) -> MemoryEvent:
        """Record something said, with optional listener reactions."""
        return self.record(
            EventType.DIALOGUE,
            {
                "speaker": speaker,
                "content": content,
                "reactions": reactions or {},
                "location": location,
            },
        )

    def record_travel(self, origin: str, destination: str, method: str = "travel") -> MemoryEvent:
        """Record a journey; the destination becomes the current location."""
        event = self.record(
            EventType.TRAVEL,
            {"origin": origin, "destination": destination, "method": method},
        )
        self.current_location = destination
        return event

    def record_quest(
        self,
        quest_id: str,
        action: str,
        status: str,
        location: str = "",
    ) -> MemoryEvent:
        return self.record(
            EventType.QUEST,
            {"quest_id": quest_id, "action": action, "status": status, "location": location},
        )

    def record_character(
        self,
        character_id: str,
        change: str,
        details: dict[str, Any] | None = None,
        location: str = "",
    ) -> MemoryEvent:
        return self.record(
            EventType.CHARACTER,
            {
                "character_id": character_id,
                "change": change,
                "details": details or {},
                "location": location,
            },
        )

    def record_item_change(
        self,
        character_id: str,
        item_name: str,
        change: str = "add",
        quantity: int = 1,
        location: str = "",
    ) -> MemoryEvent:
        return self.record(
            EventType.ITEM_CHANGE,
            {
                "character_id": character_id,
                "item_name": item_name,
                "change": change,
                "quantity": quantity,
                "location": location,
            },
        )

    def record_location_discovery(
        self,
        name: str,
        description: str = "",
        parent: str = "",
    ) -> MemoryEvent:
        return self.record(
            EventType.LOCATION_DISCOVERY,
            {"name": name, "description": description, "parent": parent},
        )
