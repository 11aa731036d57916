"""
Embedding Provider Abstraction Layer.

Supports multiple embedding providers:
- OpenAI (text-embedding-3-small)
- HuggingFace (local, no API needed)
- Ollama (local)
- Any OpenAI-compatible /v1/embeddings service (local llama.cpp, vLLM, ...)

Callers never depend on a provider being available: embed_with_timeout turns
every failure (exception, empty result, timeout) into None so the engine can
keep the event without a vector.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any

from lorekeeper.memory.errors import EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_EMBEDDING_URL = "http://127.0.0.1:8082/v1/embeddings"


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Generate embedding for text."""
        pass

    @abstractmethod
    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return embedding dimension."""
        pass


class OpenAIEmbedding(EmbeddingProvider):
    """OpenAI embedding provider."""

    def __init__(self, model: str = "text-embedding-3-small", timeout: float = 10.0):
        self.model = model
        self._dimension = 1536 if "small" in model else 3072

        try:
            from openai import OpenAI

            self.client = OpenAI(timeout=timeout, max_retries=0)
        except ImportError as e:
            raise ImportError("openai package required: pip install openai") from e

    def embed(self, text: str) -> list[float]:
        response = self.client.embeddings.create(
            model=self.model,
            input=text,
        )
        return response.data[0].embedding

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        response = self.client.embeddings.create(
            model=self.model,
            input=texts,
        )
        return [d.embedding for d in response.data]

    @property
    def dimension(self) -> int:
        return self._dimension


class HuggingFaceEmbedding(EmbeddingProvider):
    """HuggingFace local embedding provider (no API needed)."""

    def __init__(self, model: str = "sentence-transformers/all-MiniLM-L6-v2"):
        self.model_name = model

        try:
            from sentence_transformers import SentenceTransformer

            self.model = SentenceTransformer(model)
            self._dimension = self.model.get_sentence_embedding_dimension()
        except ImportError as e:
            raise ImportError(
                "sentence-transformers required: pip install 'lorekeeper[local]'"
            ) from e

    def embed(self, text: str) -> list[float]:
        embedding = self.model.encode(text)
        return embedding.tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        embeddings = self.model.encode(texts)
        return [e.tolist() for e in embeddings]

    @property
    def dimension(self) -> int:
        return self._dimension


class OllamaEmbedding(EmbeddingProvider):
    """Ollama local embedding provider."""

    def __init__(
        self,
        model: str = "nomic-embed-text",
        host: str = "http://localhost:11434",
        timeout: float = 10.0,
    ):
        import httpx

        self.model = model
        self.host = host
        self._dimension = 768  # Default for nomic-embed-text
        self.client = httpx.Client(base_url=host, timeout=timeout)

    def embed(self, text: str) -> list[float]:
        response = self.client.post(
            "/api/embeddings",
            json={"model": self.model, "prompt": text},
        )
        response.raise_for_status()
        return response.json()["embedding"]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]

    @property
    def dimension(self) -> int:
        return self._dimension


class LocalServiceEmbedding(EmbeddingProvider):
    """OpenAI-compatible embedding endpoint (POST {model, input})."""

    def __init__(
        self,
        url: str = DEFAULT_LOCAL_EMBEDDING_URL,
        model: str = "nomic-embed-text",
        dimension: int = 768,
        timeout: float = 10.0,
    ):
        import httpx

        self.url = url
        self.model = model
        self._dimension = dimension
        self.client = httpx.Client(timeout=timeout)

    def _post(self, payload: Any) -> list[list[float]]:
        response = self.client.post(self.url, json={"model": self.model, "input": payload})
        response.raise_for_status()
        data = response.json()["data"]
        return [item["embedding"] for item in sorted(data, key=lambda d: d.get("index", 0))]

    def embed(self, text: str) -> list[float]:
        return self._post(text)[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return self._post(texts)

    @property
    def dimension(self) -> int:
        return self._dimension


def get_embedding_provider(
    provider: str = "auto",
    **kwargs: Any,
) -> EmbeddingProvider | None:
    """
    Get embedding provider by name or auto-detect.

    Args:
        provider: Provider name (openai, huggingface, ollama, local, none, auto)
        **kwargs: Provider-specific arguments

    Returns:
        EmbeddingProvider instance, or None for "none" (lexical-only mode)
    """
    if provider == "none":
        return None

    if provider == "auto":
        if os.environ.get("OPENAI_API_KEY"):
            provider = "openai"
        elif url := os.environ.get("LOREKEEPER_EMBEDDING_URL"):
            provider = "local"
            kwargs.setdefault("url", url)
        else:
            # Fall back to HuggingFace (local, no API needed)
            provider = "huggingface"

    if provider == "openai":
        return OpenAIEmbedding(**kwargs)
    elif provider == "huggingface":
        return HuggingFaceEmbedding(**kwargs)
    elif provider == "ollama":
        return OllamaEmbedding(**kwargs)
    elif provider == "local":
        return LocalServiceEmbedding(**kwargs)
    else:
        raise ValueError(f"Unknown embedding provider: {provider}")


def embed_with_timeout(
    provider: EmbeddingProvider | None,
    text: str,
    executor: Executor | None = None,
    timeout: float | None = None,
) -> list[float] | None:
    """
    Embed text, degrading to None on any failure.

    Args:
        provider: Embedding provider (None = lexical-only mode)
        text: Text to embed
        executor: Runs the call so it can be abandoned after `timeout`
        timeout: Seconds to wait (only with an executor)

    Returns:
        The vector, or None when unavailable
    """
    if provider is None or not text.strip():
        return None

    try:
        if executor is not None:
            future = executor.submit(provider.embed, text)
            try:
                vector = future.result(timeout=timeout)
            except FutureTimeoutError as e:
                future.cancel()
                raise EmbeddingError(f"embedding timed out after {timeout}s") from e
        else:
            vector = provider.embed(text)
        if not vector:
            raise EmbeddingError("provider returned an empty vector")
        return [float(x) for x in vector]
    except Exception as e:
        # Degraded mode: the caller keeps going without a vector
        logger.warning("Embedding unavailable, continuing without vector: %s", e)
        return None
