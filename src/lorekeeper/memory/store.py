"""
Memory Store - Durable tiered event collections and archive summaries.

Layout under the session directory:
- tiers/hot.jsonl: the in-memory working set (appended on every record)
- tiers/{warm,cool,cold,archived}.jsonl: persisted history by tier
- archive/archive-<timestamp>.json: one summary per compaction

JSONL is the source of truth for events. Missing files are a new session.
Malformed lines are skipped with a warning; they never take the rest of the
session down. Write failures are logged and the in-memory state keeps serving.
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from lorekeeper.memory.errors import MemoryStoreError
from lorekeeper.memory.schema import ArchiveSummary, MemoryEvent
from lorekeeper.memory.tiers import Tier

if TYPE_CHECKING:
    from lorekeeper.memory.config import TierPolicy

logger = logging.getLogger(__name__)

HISTORY_TIERS = (Tier.WARM, Tier.COOL, Tier.COLD, Tier.ARCHIVED)


class MemoryStore:
    """Hot working set plus persisted history for one session."""

    def __init__(self, session_dir: Path | None = None):
        """
        Initialize store.

        Args:
            session_dir: Session directory (None = memory only)
        """
        self.session_dir = session_dir
        self.hot: dict[str, MemoryEvent] = {}
        self.history: dict[str, MemoryEvent] = {}
        self._archives: list[ArchiveSummary] = []
        self._file_lock = threading.Lock()

    @property
    def tiers_dir(self) -> Path | None:
        return self.session_dir / "tiers" if self.session_dir else None

    @property
    def archive_dir(self) -> Path | None:
        return self.session_dir / "archive" if self.session_dir else None

    def _tier_file(self, tier: Tier) -> Path | None:
        tiers_dir = self.tiers_dir
        return tiers_dir / f"{tier.value}.jsonl" if tiers_dir else None

    # =========================================================================
    # Access
    # =========================================================================

    def get(self, event_id: str) -> MemoryEvent | None:
        return self.hot.get(event_id) or self.history.get(event_id)

    def all_events(self) -> list[MemoryEvent]:
        """Hot events first, then history, each in insertion order."""
        return list(self.hot.values()) + list(self.history.values())

    def __len__(self) -> int:
        return len(self.hot) + len(self.history)

    def archives(self) -> list[ArchiveSummary]:
        return list(self._archives)

    # =========================================================================
    # Write Operations
    # =========================================================================

    def add_hot(self, event: MemoryEvent) -> bool:
        """Add a new event to the working set and append it to hot.jsonl."""
        self.hot[event.id] = event
        path = self._tier_file(Tier.HOT)
        if path is None:
            return True
        try:
            self._append_line(path, self._encode(event))
        except MemoryStoreError as e:
            logger.warning("Event %s kept in memory only: %s", event.id, e)
            return False
        return True

    def replace(
        self,
        hot: Iterable[MemoryEvent],
        history: Iterable[MemoryEvent],
    ) -> None:
        """Swap in a new working set and history (used by compaction)."""
        self.hot = {event.id: event for event in hot}
        self.history = {event.id: event for event in history}

    def save(self, now: datetime, policy: TierPolicy | None = None) -> bool:
        """
        Rewrite every tier file from in-memory state.

        History events are filed under their current tier; a history event
        whose access boost lifts it back to Hot is filed as Warm so it stays
        out of the working set until the next compaction.
        """
        if self.tiers_dir is None:
            return True

        by_tier: dict[Tier, list[MemoryEvent]] = {tier: [] for tier in HISTORY_TIERS}
        for event in self.history.values():
            tier = event.tier_at(now, policy)
            by_tier[Tier.WARM if tier == Tier.HOT else tier].append(event)

        try:
            with self._file_lock:
                self._write_lines(self._tier_file(Tier.HOT), self.hot.values())
                for tier, events in by_tier.items():
                    self._write_lines(self._tier_file(tier), events)
        except MemoryStoreError as e:
            logger.warning("Failed to save memory tiers: %s", e)
            return False
        return True

    def append_archive(self, summary: ArchiveSummary) -> bool:
        """Persist an archive summary (kept in memory even if the write fails)."""
        self._archives.append(summary)
        archive_dir = self.archive_dir
        if archive_dir is None:
            return True
        try:
            archive_dir.mkdir(parents=True, exist_ok=True)
            path = archive_dir / f"{summary.id}.json"
            with open(path, "w", encoding="utf-8") as f:
                json.dump(summary.to_dict(), f, ensure_ascii=False, indent=2, default=str)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to write archive summary %s: %s", summary.id, e)
            return False
        return True

    @staticmethod
    def _encode(event: MemoryEvent) -> str:
        """One JSONL line; values JSON cannot represent are stored as strings."""
        try:
            return json.dumps(event.to_dict(), ensure_ascii=False, default=str)
        except (TypeError, ValueError) as e:
            raise MemoryStoreError(f"Cannot encode event {event.id}: {e}") from e

    def _append_line(self, path: Path, line: str) -> None:
        try:
            with self._file_lock:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
                    f.flush()
        except OSError as e:
            raise MemoryStoreError(f"Cannot append to {path}: {e}") from e

    @staticmethod
    def _write_lines(path: Path | None, events: Iterable[MemoryEvent]) -> None:
        """Atomically replace a JSONL file."""
        if path is None:
            return
        temp_file = path.with_suffix(".writing")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                for event in events:
                    try:
                        f.write(MemoryStore._encode(event) + "\n")
                    except MemoryStoreError as e:
                        logger.warning("Leaving event out of %s: %s", path.name, e)
            temp_file.replace(path)
        except OSError as e:
            raise MemoryStoreError(f"Cannot write {path}: {e}") from e
        finally:
            temp_file.unlink(missing_ok=True)

    # =========================================================================
    # Loading
    # =========================================================================

    def load(self) -> int:
        """
        Rebuild in-memory state from disk.

        Returns:
            Number of events loaded
        """
        self.hot.clear()
        self.history.clear()
        self._archives.clear()
        if self.session_dir is None:
            return 0

        for tier in HISTORY_TIERS:
            for event in self._load_jsonl(self._tier_file(tier)):
                self.history[event.id] = event
        for event in self._load_jsonl(self._tier_file(Tier.HOT)):
            # Later lines win (the hot file is append-only between saves)
            self.history.pop(event.id, None)
            self.hot[event.id] = event

        self._archives = self._load_archives()
        return len(self)

    @staticmethod
    def _load_jsonl(path: Path | None) -> list[MemoryEvent]:
        """Load events from JSONL file."""
        if path is None or not path.exists():
            return []

        events = []
        try:
            with open(path, encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        events.append(MemoryEvent.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                        logger.warning("Skipping malformed event at %s:%d: %s", path, line_no, e)
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Cannot read %s, treating it as empty: %s", path, e)
            return []
        return events

    def _load_archives(self) -> list[ArchiveSummary]:
        archive_dir = self.archive_dir
        if archive_dir is None or not archive_dir.exists():
            return []

        archives = []
        for path in sorted(archive_dir.glob("archive-*.json")):
            try:
                with open(path, encoding="utf-8") as f:
                    archives.append(ArchiveSummary.from_dict(json.load(f)))
            except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable archive summary %s: %s", path, e)
        archives.sort(key=lambda a: a.created_at)
        return archives

    # =========================================================================
    # Teardown
    # =========================================================================

    def teardown(self) -> None:
        """Forget everything and delete the session directory."""
        self.hot.clear()
        self.history.clear()
        self._archives.clear()
        if self.session_dir is not None and self.session_dir.exists():
            with self._file_lock:
                shutil.rmtree(self.session_dir)
