"""
Narrative Extraction - Heuristic event proposals from free text.

Best-effort pattern matching over player actions and generated responses.
Nothing here is authoritative: the results are proposals that go through
MemoryEngine.record validation like any other input, and a missed or wrong
match only costs recall quality.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from lorekeeper.memory.schema import EventType

# Capitalized words that start sentences rather than name anyone
NAME_STOPWORDS = frozenset({"The", "You", "Your", "This", "That", "They"})

# Significance of a newly met character (matches entity-creation events)
NPC_SIGNIFICANCE = 0.6

SCENE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("combat", re.compile(r"\b(attack|fight|shoot|cast|defend|battle)\b")),
    ("dialogue", re.compile(r"\b(say|tell|ask|speak|talk)\b")),
    ("exploration", re.compile(r"\b(go|move|travel|enter|leave|explore)\b")),
    ("puzzle", re.compile(r"\b(search|examine|investigate|solve|puzzle)\b")),
]

# (substring or word pattern, bonus)
IMPORTANCE_KEYWORDS: list[tuple[tuple[str, ...], float]] = [
    (("kill", "die"), 0.4),
    (("love", "marry"), 0.3),
    (("betray", "lie"), 0.3),
    (("reveal", "confess"), 0.2),
    (("quest", "mission"), 0.2),
]
IMPORTANCE_PATTERNS: list[tuple[re.Pattern[str], float]] = [
    (re.compile(r"\b(give|take|steal|buy|sell)\b"), 0.1),
    (re.compile(r"\b(join|leave|follow)\b"), 0.15),
]
BASE_IMPORTANCE = 0.3

LOCATION_PATTERNS = [
    re.compile(r"\b(?:arrive|enter|reach|travel to)\s+(?:at\s+|in\s+)?(?:the\s+)?([^.!?]+)", re.I),
    re.compile(r"\byou find yourself in\s+([^.!?]+)", re.I),
    re.compile(r"\bthe scene changes to\s+([^.!?]+)", re.I),
]

NPC_PATTERNS = [
    re.compile(r"(?:meet|encounter|see)\s+([A-Z][a-z]+)"),
    re.compile(r"([A-Z][a-z]+)\s+(?:says|tells|asks)"),
]

_NAME_RE = re.compile(r"\b[A-Z][a-z]{2,}\b")


def detect_scene_type(action: str) -> str:
    """Classify a player action: combat, dialogue, exploration, puzzle or story."""
    lowered = action.lower()
    for scene, pattern in SCENE_PATTERNS:
        if pattern.search(lowered):
            return scene
        # Quoted speech is dialogue even without a speech verb
        if scene == "dialogue" and '"' in action:
            return scene
    return "story"


def action_importance(action: str) -> float:
    """Keyword-based importance of a player action, in [0.3, 1.0]."""
    lowered = action.lower()
    importance = BASE_IMPORTANCE
    for keywords, bonus in IMPORTANCE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            importance += bonus
    for pattern, bonus in IMPORTANCE_PATTERNS:
        if pattern.search(lowered):
            importance += bonus
    return min(importance, 1.0)


def detect_location_change(text: str) -> str | None:
    """Destination named by an arrival phrase, if any."""
    for pattern in LOCATION_PATTERNS:
        match = pattern.search(text)
        if match:
            destination = match.group(1).strip()
            if destination:
                return destination
    return None


def extract_new_npcs(text: str, known: set[str] | frozenset[str] = frozenset()) -> list[str]:
    """Names introduced by meeting or speaking phrases, first occurrence order."""
    names: list[str] = []
    for pattern in NPC_PATTERNS:
        for match in pattern.finditer(text):
            name = match.group(1)
            if name in NAME_STOPWORDS or name in known or name in names:
                continue
            names.append(name)
    return names


def extract_character_names(text: str) -> list[str]:
    """Capitalized words that might be character names, deduplicated."""
    names: list[str] = []
    for word in _NAME_RE.findall(text):
        if word not in NAME_STOPWORDS and word not in names:
            names.append(word)
    return names


@dataclass
class EventProposal:
    """A candidate event for MemoryEngine.record."""

    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    significance_hint: float | None = None
    reason: str = ""


def action_proposal(action: str, actor: str = "Player", location: str = "") -> EventProposal:
    """Describe the player's own action as an event."""
    scene = detect_scene_type(action)
    importance = action_importance(action)

    if scene == "combat":
        others = [name for name in extract_character_names(action) if name != actor]
        return EventProposal(
            event_type=EventType.COMBAT.value,
            payload={"combatants": [actor] + others, "outcome": "ongoing", "location": location},
            significance_hint=importance,
            reason="combat action",
        )
    if scene == "dialogue":
        return EventProposal(
            event_type=EventType.DIALOGUE.value,
            payload={"speaker": actor, "content": action, "location": location},
            significance_hint=importance,
            reason="dialogue action",
        )
    return EventProposal(
        event_type="player_action",
        payload={
            "description": f"{actor}: {action}",
            "people": [actor],
            "location": location,
            "scene_type": scene,
        },
        significance_hint=importance,
        reason=f"{scene} action",
    )


def propose_events(
    action: str,
    response: str,
    current_location: str = "",
    known_characters: set[str] | frozenset[str] = frozenset(),
) -> list[EventProposal]:
    """
    Propose events implied by a generated response.

    Args:
        action: Player action that produced the response
        response: Generated narrative text
        current_location: Location before the response
        known_characters: Names already in the scene (not proposed again)

    Returns:
        Travel proposal for a detected arrival, then one proposal per newly
        introduced character
    """
    proposals: list[EventProposal] = []

    destination = detect_location_change(response)
    if destination and destination.lower() != current_location.strip().lower():
        proposals.append(
            EventProposal(
                event_type=EventType.TRAVEL.value,
                payload={
                    "origin": current_location or "somewhere",
                    "destination": destination,
                    "method": "travel",
                },
                reason="arrival phrase in response",
            )
        )
        current_location = destination

    for name in extract_new_npcs(response, known_characters):
        proposals.append(
            EventProposal(
                event_type="npc_encountered",
                payload={
                    "description": f"Met {name}",
                    "people": [name],
                    "location": current_location,
                    "trigger": action[:100],
                },
                significance_hint=NPC_SIGNIFICANCE,
                reason="character introduced in response",
            )
        )

    return proposals
