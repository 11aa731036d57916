"""
Memory Layer for conversational sessions.

Tiered architecture:
- JSONL tier files as source of truth (auditable, inspectable)
- Persistent vector index for semantic recall (optional provider)
- Memory Engine as the per-session facade
- Context Assembler for token-budgeted prompt memory
- Compactor folding aged, low-value events into archive summaries
"""

from lorekeeper.memory.assembler import AssembledContext, ContextAssembler, Section
from lorekeeper.memory.compaction import CompactionResult, Compactor
from lorekeeper.memory.config import MemoryConfig, load_config, save_config
from lorekeeper.memory.embeddings import EmbeddingProvider, get_embedding_provider
from lorekeeper.memory.engine import MemoryEngine, open_engine
from lorekeeper.memory.errors import (
    EmbeddingError,
    LorekeeperMemoryError,
    MemoryStoreError,
    VectorIndexCorruptError,
)
from lorekeeper.memory.relevance import Relevance, RelevanceScorer
from lorekeeper.memory.schema import (
    ArchiveSummary,
    EventType,
    MemoryEvent,
    QueryContext,
    parse_payload,
)
from lorekeeper.memory.scoring import ScoringEngine, estimate_tokens
from lorekeeper.memory.tiers import Tier, classify, effective_significance
from lorekeeper.memory.vector_index import VectorIndex

__all__ = [
    "ArchiveSummary",
    "AssembledContext",
    "CompactionResult",
    "Compactor",
    "ContextAssembler",
    "EmbeddingError",
    "EmbeddingProvider",
    "EventType",
    "LorekeeperMemoryError",
    "MemoryConfig",
    "MemoryEngine",
    "MemoryEvent",
    "MemoryStoreError",
    "QueryContext",
    "Relevance",
    "RelevanceScorer",
    "ScoringEngine",
    "Section",
    "Tier",
    "VectorIndex",
    "VectorIndexCorruptError",
    "classify",
    "effective_significance",
    "estimate_tokens",
    "get_embedding_provider",
    "load_config",
    "open_engine",
    "parse_payload",
    "save_config",
]
