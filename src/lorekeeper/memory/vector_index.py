"""
Vector Index - Persistent id -> embedding store with cosine search.

Layout under the index directory:
- vectors.json: {event_id: [float, ...]}
- metadata.json: {event_id: {...}}

JSON keeps float values exact across a save/load cycle. Both files are
rewritten atomically (temp file + replace). A missing directory or missing
files is an empty index; files that exist but cannot be decoded raise
VectorIndexCorruptError.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np

from lorekeeper.memory.errors import VectorIndexCorruptError

logger = logging.getLogger(__name__)

VECTORS_FILE = "vectors.json"
METADATA_FILE = "metadata.json"


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity; 0.0 for empty, zero-norm or mismatched vectors."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class VectorIndex:
    """
    In-memory vector index backed by JSON files.

    Insertion order is preserved (dict order) and used to break similarity
    ties, so search results are stable.
    """

    def __init__(self, index_dir: Path | None = None, autosave: bool = True):
        """
        Initialize vector index.

        Args:
            index_dir: Directory for persistence (None = memory only)
            autosave: Persist after every upsert/remove
        """
        self.index_dir = index_dir
        self.autosave = autosave
        self._vectors: dict[str, np.ndarray] = {}
        self._metadata: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._vectors

    def ids(self) -> list[str]:
        return list(self._vectors)

    # =========================================================================
    # Mutations
    # =========================================================================

    def upsert(
        self,
        event_id: str,
        vector: Sequence[float] | np.ndarray,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Insert or replace the vector for an event."""
        array = np.asarray(vector, dtype=float).ravel()
        if array.size == 0:
            raise ValueError("Cannot index an empty vector")
        with self._lock:
            self._vectors[event_id] = array
            self._metadata[event_id] = dict(metadata or {})
        if self.autosave:
            self.flush()

    def remove(self, event_id: str) -> bool:
        """Remove an event's vector. Returns True if it existed."""
        with self._lock:
            existed = self._vectors.pop(event_id, None) is not None
            self._metadata.pop(event_id, None)
        if existed and self.autosave:
            self.flush()
        return existed

    def remove_many(self, event_ids: Sequence[str]) -> int:
        """Remove several vectors with a single save."""
        removed = 0
        with self._lock:
            for event_id in event_ids:
                if self._vectors.pop(event_id, None) is not None:
                    removed += 1
                self._metadata.pop(event_id, None)
        if removed and self.autosave:
            self.flush()
        return removed

    def clear(self) -> None:
        with self._lock:
            self._vectors.clear()
            self._metadata.clear()

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, event_id: str) -> list[float] | None:
        vector = self._vectors.get(event_id)
        return vector.tolist() if vector is not None else None

    def metadata(self, event_id: str) -> dict[str, Any]:
        return dict(self._metadata.get(event_id, {}))

    def search(
        self,
        query_vector: Sequence[float] | np.ndarray,
        k: int = 10,
        min_similarity: float = 0.0,
    ) -> list[tuple[str, float]]:
        """
        Nearest neighbours by cosine similarity.

        Args:
            query_vector: Query embedding
            k: Maximum results
            min_similarity: Drop results below this similarity

        Returns:
            [(event_id, similarity)] by descending similarity, ties in
            insertion order
        """
        query = np.asarray(query_vector, dtype=float).ravel()
        if query.size == 0 or k <= 0 or not self._vectors:
            return []
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return []

        ids = list(self._vectors)
        scored: list[tuple[str, float]] = []
        # Group same-dimension vectors for one matrix product
        dim_matches = [i for i in ids if self._vectors[i].shape == query.shape]
        if dim_matches:
            matrix = np.vstack([self._vectors[i] for i in dim_matches])
            norms = np.linalg.norm(matrix, axis=1) * query_norm
            dots = matrix @ query
            with np.errstate(divide="ignore", invalid="ignore"):
                sims = np.where(norms > 0, dots / np.where(norms > 0, norms, 1.0), 0.0)
            for event_id, sim in zip(dim_matches, sims):
                similarity = float(sim)
                if similarity >= min_similarity:
                    scored.append((event_id, similarity))

        # sorted() is stable: equal similarities keep insertion order
        scored = sorted(scored, key=lambda item: -item[1])
        return scored[:k]

    # =========================================================================
    # Persistence
    # =========================================================================

    def flush(self) -> bool:
        """
        Persist full state. Failures are logged and in-memory state is kept.

        Returns:
            True if written (or nothing to write to)
        """
        if self.index_dir is None:
            return True
        with self._lock:
            vectors = {event_id: [float(x) for x in vec] for event_id, vec in self._vectors.items()}
            metadata = {event_id: meta for event_id, meta in self._metadata.items()}
        try:
            self.index_dir.mkdir(parents=True, exist_ok=True)
            self._write_atomic(self.index_dir / VECTORS_FILE, vectors)
            self._write_atomic(self.index_dir / METADATA_FILE, metadata)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to save vector index to %s: %s", self.index_dir, e)
            return False
        return True

    @staticmethod
    def _write_atomic(path: Path, data: dict[str, Any]) -> None:
        temp_file = path.with_suffix(".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            temp_file.replace(path)
        finally:
            temp_file.unlink(missing_ok=True)

    def load(self) -> int:
        """
        Replace in-memory state with the persisted index.

        Returns:
            Number of vectors loaded

        Raises:
            VectorIndexCorruptError: store exists but cannot be decoded
        """
        self.clear()
        if self.index_dir is None:
            return 0

        vectors_path = self.index_dir / VECTORS_FILE
        metadata_path = self.index_dir / METADATA_FILE
        raw_vectors = self._read_json(vectors_path)
        raw_metadata = self._read_json(metadata_path)

        vectors: dict[str, np.ndarray] = {}
        for event_id, values in raw_vectors.items():
            if not isinstance(values, list) or not values:
                raise VectorIndexCorruptError(f"Invalid vector for {event_id!r} in {vectors_path}")
            try:
                vectors[event_id] = np.asarray(values, dtype=float)
            except (TypeError, ValueError) as e:
                raise VectorIndexCorruptError(
                    f"Invalid vector for {event_id!r} in {vectors_path}"
                ) from e

        metadata: dict[str, dict[str, Any]] = {}
        for event_id in vectors:
            meta = raw_metadata.get(event_id)
            if meta is None:
                meta = {}
            if not isinstance(meta, dict):
                raise VectorIndexCorruptError(
                    f"Invalid metadata for {event_id!r} in {metadata_path}"
                )
            metadata[event_id] = dict(meta)

        with self._lock:
            self._vectors = vectors
            self._metadata = metadata
        logger.debug("Loaded %d vectors from %s", len(vectors), self.index_dir)
        return len(vectors)

    @staticmethod
    def _read_json(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise VectorIndexCorruptError(f"Cannot read {path}: {e}") from e
        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise VectorIndexCorruptError(f"Cannot decode {path}: {e}") from e
        if not isinstance(data, dict):
            raise VectorIndexCorruptError(f"Unexpected content in {path}")
        return data
