"""
Narrative boundary for the memory engine.

- Heuristic extraction: best-effort event proposals from free text
- GameSession: per-turn driver between memory and a text generator
"""

from lorekeeper.narrative.extraction import (
    EventProposal,
    action_importance,
    action_proposal,
    detect_location_change,
    detect_scene_type,
    extract_character_names,
    extract_new_npcs,
    propose_events,
)
from lorekeeper.narrative.session import GameSession, Scene, TurnResult

__all__ = [
    "EventProposal",
    "GameSession",
    "Scene",
    "TurnResult",
    "action_importance",
    "action_proposal",
    "detect_location_change",
    "detect_scene_type",
    "extract_character_names",
    "extract_new_npcs",
    "propose_events",
]
