"""
Memory Engine - Session-owned facade over the memory components.

Responsibilities:
- Recording events (validation, scoring, durable append, vector indexing)
- Assembling the token-bounded memory context for a turn
- Free-text search over everything still retained
- Out-of-band compaction and archive summaries
- Loading and tearing down the session's durable store

One engine per session and no shared mutable state between engines. All
mutations go through an instance lock; embedding calls run on a private
single-thread executor so a stuck provider can be abandoned after a timeout.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, OrderedDict
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Any

from lorekeeper.memory.assembler import AssembledContext, ContextAssembler
from lorekeeper.memory.compaction import Compactor
from lorekeeper.memory.config import MemoryConfig, default_memory_dir, load_config
from lorekeeper.memory.embeddings import (
    EmbeddingProvider,
    embed_with_timeout,
    get_embedding_provider,
)
from lorekeeper.memory.errors import VectorIndexCorruptError
from lorekeeper.memory.recorder import EventRecorder
from lorekeeper.memory.relevance import RelevanceScorer
from lorekeeper.memory.schema import (
    ArchiveSummary,
    EventPayload,
    EventType,
    MemoryEvent,
    QueryContext,
)
from lorekeeper.memory.scoring import ScoringEngine
from lorekeeper.memory.store import MemoryStore
from lorekeeper.memory.vector_index import VectorIndex

logger = logging.getLogger(__name__)


class MemoryEngine:
    """
    Working memory for one conversation session.

    Usage:
        with MemoryEngine("session-1", base_dir=Path("memory")) as engine:
            engine.record("combat", {"combatants": ["Aria", "Goblin"], "outcome": "victory"})
            context = engine.assemble(QueryContext(location="Darkwood"))
    """

    def __init__(
        self,
        session_id: str,
        base_dir: Path | str | None = None,
        config: MemoryConfig | None = None,
        embedder: EmbeddingProvider | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize engine and load any persisted state for the session.

        Args:
            session_id: Session identifier (also the store directory name)
            base_dir: Parent directory of session stores (None = memory only)
            config: Engine configuration (defaults when None)
            embedder: Embedding provider (None = lexical-only mode)
            clock: Time source for timestamps, ages and compaction triggers
        """
        session_id = str(session_id).strip()
        if not session_id or session_id in (".", "..") or "/" in session_id or "\\" in session_id:
            raise ValueError(f"Invalid session id: {session_id!r}")

        self.session_id = session_id
        self.config = config or MemoryConfig()
        self.embedder = embedder
        self.clock = clock
        self.session_dir = Path(base_dir) / session_id if base_dir is not None else None

        self.store = MemoryStore(self.session_dir)
        self.index = VectorIndex(self.session_dir / "vectors" if self.session_dir else None)

        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"embed-{session_id}")
            if embedder is not None
            else None
        )
        self.scoring = ScoringEngine(self.config.significance, self.config.relevance)
        self.recorder = EventRecorder(
            self.store,
            self.index,
            scoring=self.scoring,
            embedder=embedder,
            executor=self._executor,
            embedding_policy=self.config.embedding,
            clock=clock,
        )
        self.scorer = RelevanceScorer(self.config.relevance)
        self.assembler = ContextAssembler(self.config.assembly, self.config.tiers, self.scoring)
        self.compactor = Compactor(self.config.compaction, self.config.tiers, last_run=clock())

        self._lock = threading.RLock()
        self._closed = False

        # Access counts frozen at the first assembly after any mutation
        self._access_snapshot: dict[str, int] | None = None

        # Query text -> embedding (LRU)
        self._query_cache: OrderedDict[str, list[float]] = OrderedDict()

        self._load()

    def _load(self) -> None:
        loaded = self.store.load()
        try:
            self.index.load()
        except VectorIndexCorruptError as e:
            logger.error(
                "Vector index for session %s is corrupt, starting empty: %s", self.session_id, e
            )
            self.index.clear()

        orphans = [event_id for event_id in self.index.ids() if self.store.get(event_id) is None]
        if orphans:
            self.index.remove_many(orphans)
        if loaded:
            logger.info(
                "Loaded session %s: %d events, %d vectors", self.session_id, loaded, len(self.index)
            )

    # =========================================================================
    # Context Manager
    # =========================================================================

    def __enter__(self) -> MemoryEngine:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def current_location(self) -> str:
        """Location applied to recorded payloads that do not name one."""
        return self.recorder.current_location

    @current_location.setter
    def current_location(self, value: str) -> None:
        self.recorder.current_location = value

    # =========================================================================
    # Write Operations
    # =========================================================================

    def record(
        self,
        event_type: EventType | str,
        payload: EventPayload | dict[str, Any] | None = None,
        significance_hint: Any = None,
    ) -> str:
        """
        Record an event.

        Args:
            event_type: EventType or raw tag (unknown tags become generic)
            payload: Typed payload or loose mapping (tolerantly parsed)
            significance_hint: Caller-supplied significance (clamped to [0, 1])

        Returns:
            The new event id
        """
        return self._ingest(self.recorder.record, event_type, payload, significance_hint)

    def record_combat(
        self,
        combatants: list[str],
        outcome: str,
        casualties: list[str] | None = None,
        location: str = "",
    ) -> str:
        return self._ingest(self.recorder.record_combat, combatants, outcome, casualties, location)

    def record_dialogue(
        self,
        speaker: str,
        content: str,
        reactions: dict[str, str] | None = None,
        location: str = "",
    ) -> str:
        return self._ingest(self.recorder.record_dialogue, speaker, content, reactions, location)

    def record_travel(self, origin: str, destination: str, method: str = "travel") -> str:
        return self._ingest(self.recorder.record_travel, origin, destination, method)

    def record_quest(self, quest_id: str, action: str, status: str, location: str = "") -> str:
        return self._ingest(self.recorder.record_quest, quest_id, action, status, location)

    def record_character(
        self,
        character_id: str,
        change: str,
        details: dict[str, Any] | None = None,
        location: str = "",
    ) -> str:
        return self._ingest(self.recorder.record_character, character_id, change, details, location)

    def record_item_change(
        self,
        character_id: str,
        item_name: str,
        change: str = "add",
        quantity: int = 1,
        location: str = "",
    ) -> str:
        return self._ingest(
            self.recorder.record_item_change, character_id, item_name, change, quantity, location
        )

    def record_location_discovery(self, name: str, description: str = "", parent: str = "") -> str:
        return self._ingest(self.recorder.record_location_discovery, name, description, parent)

    def _ingest(self, record: Callable[..., MemoryEvent], *args: Any) -> str:
        with self._lock:
            self._check_open()
            if len(self.store.hot) >= self.config.compaction.max_hot_events:
                self._compact_locked(self.clock())
                self._spill_hot()
            event = record(*args)
            self._access_snapshot = None
            return event.id

    def _spill_hot(self) -> None:
        """Move the oldest Hot events to history until there is room for one more."""
        limit = self.config.compaction.max_hot_events
        excess = len(self.store.hot) - limit + 1
        if excess <= 0:
            return
        hot = sorted(self.store.hot.values(), key=lambda e: e.timestamp)
        spilled, kept = hot[:excess], hot[excess:]
        self.store.replace(kept, list(self.store.history.values()) + spilled)
        self.store.save(self.clock(), self.config.tiers)
        logger.debug("Moved %d oldest hot events to history", len(spilled))

    # =========================================================================
    # Context Assembly
    # =========================================================================

    def assemble(
        self,
        query_context: QueryContext | None = None,
        token_budget: int | None = None,
    ) -> str:
        """
        Build the memory block for the next prompt.

        Args:
            query_context: Current location, participants and recent actions
            token_budget: Maximum estimated tokens (config default when None)

        Returns:
            Rendered context, or the new-adventure placeholder
        """
        return self.assemble_context(query_context, token_budget).text

    def assemble_context(
        self,
        query_context: QueryContext | None = None,
        token_budget: int | None = None,
    ) -> AssembledContext:
        """Like assemble, returning the selection details as well."""
        if token_budget is None:
            token_budget = self.config.assembly.default_token_budget
        if token_budget < 0:
            raise ValueError("token_budget must be non-negative")
        context = query_context or QueryContext()

        with self._lock:
            self._check_open()
            now = self.clock()
            candidates = self._candidates()
            if self._access_snapshot is None:
                self._access_snapshot = {e.id: e.access_count for e in self.store.all_events()}

            relevance = self.scorer.score_all(candidates, context, self._similarities(context))
            result = self.assembler.assemble(
                candidates,
                relevance,
                token_budget,
                now,
                access_counts=self._access_snapshot,
            )
            logger.debug(
                "Assembled %d events (~%d/%d tokens) for session %s",
                len(result.selected),
                result.token_estimate,
                token_budget,
                self.session_id,
            )
            return result

    def _candidates(self) -> list[MemoryEvent]:
        """Hot events plus the most recent history within the look-back."""
        candidates = list(self.store.hot.values())
        policy = self.config.assembly
        if policy.include_history and policy.history_lookback > 0 and self.store.history:
            recent = sorted(self.store.history.values(), key=lambda e: e.timestamp)
            candidates += recent[-policy.history_lookback :]
        return candidates

    def _similarities(self, context: QueryContext) -> dict[str, float]:
        if context.is_empty():
            return {}
        return self._vector_search(context.to_query(), self.config.relevance.vector_top_k)

    def _vector_search(self, query: str, k: int) -> dict[str, float]:
        """event id -> similarity for the nearest indexed events (empty when degraded)."""
        if self.embedder is None or not len(self.index):
            return {}
        vector = self._embed_query(query)
        if vector is None:
            return {}
        hits = self.index.search(vector, k=k, min_similarity=self.config.relevance.min_similarity)
        return {event_id: similarity for event_id, similarity in hits if self.store.get(event_id)}

    def _embed_query(self, query: str) -> list[float] | None:
        if query in self._query_cache:
            self._query_cache.move_to_end(query)
            return self._query_cache[query]

        vector = embed_with_timeout(
            self.embedder,
            query,
            executor=self._executor,
            timeout=self.config.embedding.timeout_seconds,
        )
        if vector is not None:
            self._query_cache[query] = vector
            while len(self._query_cache) > max(self.config.embedding.query_cache_size, 0):
                self._query_cache.popitem(last=False)
        return vector

    # =========================================================================
    # Read Operations
    # =========================================================================

    def search(self, query: str, limit: int = 10) -> list[MemoryEvent]:
        """
        Free-text search over all retained events.

        Keyword overlap with each event's text, blended with vector
        similarity when an embedding provider is available. Does not count
        as an access.

        Args:
            query: Search text
            limit: Maximum results

        Returns:
            Matching events, best first
        """
        if not query.strip() or limit <= 0:
            return []

        with self._lock:
            events = self.store.all_events()
            top_k = max(limit, self.config.relevance.vector_top_k)
            similarities = self._vector_search(query, top_k)

            scored: list[tuple[MemoryEvent, float]] = []
            for event in events:
                text = f"{event.payload.index_text()} {event.payload.summary()}"
                score = self.scorer.blend(
                    self.scorer.text_overlap(query, text), similarities.get(event.id)
                )
                if score > 0:
                    scored.append((event, score))

        scored.sort(key=lambda item: -item[1])
        return [event for event, _ in scored[:limit]]

    def get_event(self, event_id: str) -> MemoryEvent | None:
        with self._lock:
            return self.store.get(event_id)

    def events(self, include_history: bool = True) -> list[MemoryEvent]:
        """Retained events, Hot first."""
        with self._lock:
            if include_history:
                return self.store.all_events()
            return list(self.store.hot.values())

    def archive_summaries(self) -> list[ArchiveSummary]:
        with self._lock:
            return self.store.archives()

    # =========================================================================
    # Compaction
    # =========================================================================

    def compact(self, force: bool = True) -> dict[str, Any] | None:
        """
        Recompute tiers, fold archived low-significance events into a summary.

        Args:
            force: Run even if no trigger is due

        Returns:
            Compaction statistics, or None when skipped
        """
        with self._lock:
            self._check_open()
            now = self.clock()
            if not force and not self.compactor.should_compact(now, hot_size=len(self.store.hot)):
                return None
            return self._compact_locked(now)

    def maybe_compact(self, conversation_log_size: int = 0) -> dict[str, Any] | None:
        """Compact when the interval elapsed or the conversation log is long."""
        with self._lock:
            self._check_open()
            now = self.clock()
            if not self.compactor.should_compact(now, conversation_log_size, len(self.store.hot)):
                return None
            return self._compact_locked(now)

    def _compact_locked(self, now: datetime) -> dict[str, Any]:
        result = self.compactor.compact(
            list(self.store.hot.values()),
            list(self.store.history.values()),
            now,
        )
        self.store.replace(result.hot, result.history)
        if result.folded:
            self.index.remove_many([event.id for event in result.folded])
        if result.summary is not None:
            self.store.append_archive(result.summary)
        self.store.save(now, self.config.tiers)
        self._access_snapshot = None
        return result.stats()

    # =========================================================================
    # Statistics and Lifecycle
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Get memory statistics for the session."""
        with self._lock:
            now = self.clock()
            events = self.store.all_events()
            by_tier = Counter(event.tier_at(now, self.config.tiers).value for event in events)
            by_type = Counter(event.event_type.value for event in events)
            return {
                "session_id": self.session_id,
                "total_events": len(events),
                "hot_events": len(self.store.hot),
                "history_events": len(self.store.history),
                "by_tier": dict(by_tier),
                "by_type": dict(by_type),
                "vectors": len(self.index),
                "archives": len(self.store.archives()),
                "embeddings_enabled": self.embedder is not None,
                "embedding_provider": type(self.embedder).__name__ if self.embedder else None,
                "current_location": self.current_location,
                "last_compaction": self.compactor.last_run.isoformat(),
                "storage": str(self.session_dir) if self.session_dir else None,
            }

    def flush(self) -> bool:
        """Persist tiers (including access counts) and the vector index."""
        with self._lock:
            saved = self.store.save(self.clock(), self.config.tiers)
            return self.index.flush() and saved

    def close(self) -> None:
        """Flush and release the embedding executor. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self.flush()
            self._shutdown_executor()
            self._closed = True

    def teardown(self) -> None:
        """Forget the session and delete its durable store."""
        with self._lock:
            self._shutdown_executor()
            self.index.clear()
            self._query_cache.clear()
            self._access_snapshot = None
            self.store.teardown()
            self._closed = True
            logger.info("Session %s torn down", self.session_id)

    def _shutdown_executor(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
            self.recorder.executor = None

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Memory engine for session {self.session_id} is closed")


def open_engine(
    session_id: str,
    base_dir: Path | str | None = None,
    config_path: Path | str | None = None,
    embeddings: str = "auto",
    clock: Callable[[], datetime] = datetime.now,
) -> MemoryEngine:
    """
    Create an engine from environment and config file.

    Args:
        session_id: Session identifier
        base_dir: Store directory. If None, LOREKEEPER_MEMORY_DIR or the default.
        config_path: Config file. If None, LOREKEEPER_MEMORY_CONFIG is consulted.
        embeddings: Provider name (auto, none, openai, huggingface, ollama, local)
        clock: Time source

    Returns:
        MemoryEngine (lexical-only if the provider cannot be created)
    """
    config = load_config(config_path)
    embedder = None
    try:
        embedder = get_embedding_provider(embeddings)
    except ValueError:
        raise
    except Exception as e:
        # Degraded mode: keep going with lexical relevance only
        logger.warning(
            "Embedding provider %r unavailable, using lexical relevance: %s", embeddings, e
        )

    return MemoryEngine(
        session_id,
        base_dir=base_dir if base_dir is not None else default_memory_dir(),
        config=config,
        embedder=embedder,
        clock=clock,
    )
