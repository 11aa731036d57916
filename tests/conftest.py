"""Shared fixtures for memory engine tests."""

import re
import threading
import time
from datetime import datetime, timedelta

import pytest

from lorekeeper.memory import MemoryEngine
from lorekeeper.memory.embeddings import EmbeddingProvider

START = datetime(2026, 3, 1, 12, 0, 0)


class FrozenClock:
    """Controllable time source."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class KeywordEmbedding(EmbeddingProvider):
    """Deterministic bag-of-concepts embedding for tests."""

    VOCAB = [
        "combat",
        "dragon",
        "hero",
        "victory",
        "lair",
        "goblin",
        "tavern",
        "forest",
        "talk",
        "travel",
        "quest",
        "sword",
        "merchant",
        "gold",
    ]
    SYNONYMS = {
        "battle": "combat",
        "fight": "combat",
        "attack": "combat",
        "said": "talk",
        "traveled": "travel",
        "inn": "tavern",
        "woods": "forest",
    }

    def __init__(self):
        self.calls = 0
        self._lock = threading.Lock()

    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.calls += 1
        vector = [0.0] * len(self.VOCAB)
        for word in re.findall(r"[a-z]+", text.lower()):
            concept = self.SYNONYMS.get(word, word)
            if concept in self.VOCAB:
                vector[self.VOCAB.index(concept)] += 1.0
        return vector

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]

    @property
    def dimension(self) -> int:
        return len(self.VOCAB)


class FailingEmbedding(KeywordEmbedding):
    """Provider that is always down."""

    def embed(self, text: str) -> list[float]:
        raise ConnectionError("embedding service unreachable")


class SlowEmbedding(KeywordEmbedding):
    """Provider that takes longer than any sane timeout."""

    def __init__(self, delay: float = 2.0):
        super().__init__()
        self.delay = delay

    def embed(self, text: str) -> list[float]:
        time.sleep(self.delay)
        return super().embed(text)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def embedder():
    return KeywordEmbedding()


@pytest.fixture
def engine(tmp_path, clock):
    """Lexical-only engine with a temp store."""
    with MemoryEngine("test-session", base_dir=tmp_path, clock=clock) as eng:
        yield eng


@pytest.fixture
def vector_engine(tmp_path, clock, embedder):
    """Engine with the keyword embedding provider."""
    with MemoryEngine("vector-session", base_dir=tmp_path, embedder=embedder, clock=clock) as eng:
        yield eng
