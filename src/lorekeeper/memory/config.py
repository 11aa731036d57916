"""
Memory Config - Tunable policy for tiers, scoring, assembly and compaction.

Every constant the engine uses lives here so it can be adjusted per
deployment (JSON or YAML file) instead of being hard-coded.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LOREKEEPER_MEMORY_CONFIG"
MEMORY_DIR_ENV_VAR = "LOREKEEPER_MEMORY_DIR"


@dataclass
class TierPolicy:
    """Age/significance thresholds for tier classification."""

    hot_max_hours: float = 2.0
    warm_max_hours: float = 24.0
    cool_max_hours: float = 7 * 24.0
    cold_max_hours: float = 30 * 24.0

    # Effective significance must be strictly above these
    hot_min_significance: float = 0.3
    warm_min_significance: float = 0.2
    cool_min_significance: float = 0.15
    cold_min_significance: float = 0.1

    # Access frequency boost
    access_boost: float = 0.1
    max_access_boost: float = 0.5


@dataclass
class SignificancePolicy:
    """Default significance per event type (used when no hint is given)."""

    combat: float = 0.7
    combat_with_casualties: float = 0.9
    dialogue: float = 0.3
    dialogue_with_reactions: float = 0.6
    travel: float = 0.4
    quest_progress: float = 0.6
    quest_completed: float = 0.9
    character_change: float = 0.5
    character_level_up: float = 0.8
    character_death: float = 1.0
    item_change: float = 0.4
    item_update: float = 0.3
    location_discovery: float = 0.6
    generic: float = 0.5


@dataclass
class RelevancePolicy:
    """Weights for lexical/contextual relevance and vector blending."""

    base_score: float = 0.1
    location_match: float = 0.3
    participant_match: float = 0.2
    max_participant_bonus: float = 0.4
    action_group_match: float = 0.25

    vector_weight: float = 0.7  # Share of vector similarity in the blend
    vector_top_k: int = 10
    min_similarity: float = 0.3

    recency_half_life_hours: float = 168.0  # Halves every week


@dataclass
class AssemblyPolicy:
    """Context assembly settings."""

    default_token_budget: int = 1200
    chars_per_token: int = 4
    semantic_threshold: float = 0.7  # Similarity for "semantically related"
    immediate_max_minutes: float = 60.0
    include_history: bool = True
    history_lookback: int = 50  # Max persisted (non-hot) events considered
    dialogue_excerpt_chars: int = 80


@dataclass
class CompactionPolicy:
    """When compaction runs and what it keeps."""

    interval_minutes: float = 60.0
    log_threshold: int = 50  # Conversation log size that forces compaction
    max_hot_events: int = 500
    retain_significance: float = 0.8  # Never folded at or above this


@dataclass
class EmbeddingPolicy:
    """Embedding request settings."""

    timeout_seconds: float = 10.0
    query_cache_size: int = 64


@dataclass
class MemoryConfig:
    """Complete engine configuration."""

    tiers: TierPolicy = field(default_factory=TierPolicy)
    significance: SignificancePolicy = field(default_factory=SignificancePolicy)
    relevance: RelevancePolicy = field(default_factory=RelevancePolicy)
    assembly: AssemblyPolicy = field(default_factory=AssemblyPolicy)
    compaction: CompactionPolicy = field(default_factory=CompactionPolicy)
    embedding: EmbeddingPolicy = field(default_factory=EmbeddingPolicy)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryConfig":
        """Create from dictionary, falling back to defaults per section."""
        config = cls()
        for section in fields(cls):
            raw = data.get(section.name)
            if raw is None:
                continue
            policy_cls = type(getattr(config, section.name))
            if not isinstance(raw, dict):
                logger.warning("Ignoring config section %r: not a mapping", section.name)
                continue
            known = {f.name for f in fields(policy_cls)}
            unknown = set(raw) - known
            if unknown:
                logger.warning(
                    "Ignoring unknown keys in config section %r: %s",
                    section.name,
                    ", ".join(sorted(unknown)),
                )
            try:
                policy = policy_cls(**{k: v for k, v in raw.items() if k in known})
            except TypeError as e:
                logger.warning("Invalid config section %r (%s), using defaults", section.name, e)
                continue
            setattr(config, section.name, policy)
        return config


# =========================================================================
# Loading / Saving
# =========================================================================


def load_config(path: Path | str | None = None) -> MemoryConfig:
    """
    Load configuration from a JSON or YAML file.

    Args:
        path: Config file. If None, LOREKEEPER_MEMORY_CONFIG is consulted.

    Returns:
        MemoryConfig (defaults when no file is found or it cannot be parsed)
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not env_path:
            return MemoryConfig()
        path = env_path

    config_path = Path(path)
    if not config_path.exists():
        logger.debug("Config file %s not found, using defaults", config_path)
        return MemoryConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (json.JSONDecodeError, yaml.YAMLError, OSError) as e:
        logger.warning("Failed to read config %s (%s), using defaults", config_path, e)
        return MemoryConfig()

    if not isinstance(data, dict):
        return MemoryConfig()
    return MemoryConfig.from_dict(data)


def save_config(config: MemoryConfig, path: Path | str) -> None:
    """Save configuration as JSON or YAML depending on the suffix."""
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        if config_path.suffix.lower() in (".yaml", ".yml"):
            yaml.safe_dump(config.to_dict(), f, default_flow_style=False, allow_unicode=True)
        else:
            json.dump(config.to_dict(), f, ensure_ascii=False, indent=2)


def default_memory_dir() -> Path:
    """
    Get default memory directory.

    Priority:
    1. LOREKEEPER_MEMORY_DIR environment variable
    2. ~/.config/lorekeeper/memory
    """
    if custom_path := os.environ.get(MEMORY_DIR_ENV_VAR):
        return Path(custom_path)
    return Path.home() / ".config" / "lorekeeper" / "memory"
