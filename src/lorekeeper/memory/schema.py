"""
Memory Schema - Typed event model for the memory engine.

Events are a tagged union keyed by EventType: every type has its own payload
dataclass that knows its participants, its location, how to render itself
for the embedding provider and for the prompt, and its default significance.
Payload parsing is tolerant: missing fields become neutral defaults and
unknown keys are ignored, because losing an event is worse than recording it
imprecisely.
"""

from __future__ import annotations

import copy
import json
import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from lorekeeper.memory.tiers import Tier, classify, effective_significance

if TYPE_CHECKING:
    from lorekeeper.memory.config import SignificancePolicy, TierPolicy

UNKNOWN_LOCATION = "unknown location"


class EventType(str, Enum):
    """Type of memory event."""

    COMBAT = "combat"
    DIALOGUE = "dialogue"
    TRAVEL = "travel"
    QUEST = "quest"
    CHARACTER = "character-development"
    ITEM_CHANGE = "item-change"
    LOCATION_DISCOVERY = "location-discovery"
    GENERIC = "generic"


# Tags emitted by upstream callers that map onto a recognized type
EVENT_TYPE_ALIASES: dict[str, EventType] = {
    "character": EventType.CHARACTER,
    "character_development": EventType.CHARACTER,
    "item_change": EventType.ITEM_CHANGE,
    "inventory_add": EventType.ITEM_CHANGE,
    "inventory_remove": EventType.ITEM_CHANGE,
    "inventory_update": EventType.ITEM_CHANGE,
    "location_discovery": EventType.LOCATION_DISCOVERY,
    "location_discovered": EventType.LOCATION_DISCOVERY,
}

# Item change implied by an inventory alias
_INVENTORY_CHANGES = {
    "inventory_add": "add",
    "inventory_remove": "remove",
    "inventory_update": "update",
}


def coerce_event_type(value: EventType | str) -> tuple[EventType, str | None]:
    """
    Map a raw tag onto EventType.

    Returns:
        (event_type, raw_tag) where raw_tag is the original tag when it was
        not a canonical value, else None. Unrecognized tags become GENERIC.
    """
    if isinstance(value, EventType):
        return value, None
    tag = str(value).strip().lower()
    try:
        return EventType(tag), None
    except ValueError:
        pass
    if tag in EVENT_TYPE_ALIASES:
        return EVENT_TYPE_ALIASES[tag], tag
    return EventType.GENERIC, tag


def new_event_id(timestamp: datetime | None = None) -> str:
    """Generate a sortable, collision-free event id."""
    ts = timestamp or datetime.now()
    return f"{ts.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:8]}"


def clamp_significance(value: Any) -> float | None:
    """Clamp a significance hint to [0, 1]; None for missing or NaN input."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return min(max(number, 0.0), 1.0)


# =========================================================================
# Field helpers (tolerant parsing)
# =========================================================================


def _text(data: dict[str, Any], *keys: str, default: str = "") -> str:
    for key in keys:
        value = data.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return default


def _names(data: dict[str, Any], *keys: str) -> list[str]:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            return [value] if value.strip() else []
        if isinstance(value, (list, tuple, set)):
            names = []
            for item in value:
                if isinstance(item, dict):
                    item = item.get("name")
                if item is not None and str(item).strip():
                    names.append(str(item).strip())
            return names
    return []


def _mapping(data: dict[str, Any], *keys: str) -> dict[str, Any]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, dict):
            return dict(value)
    return {}


def _int(data: dict[str, Any], *keys: str, default: int = 1) -> int:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return default


def _json_safe(value: Any) -> Any:
    """Reduce a details value to something JSON can store as-is."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return _json_safe(value.value)
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return [_json_safe(item) for item in sorted(value, key=str)]
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _format_details(details: dict[str, Any]) -> str:
    return ", ".join(f"{key}: {value}" for key, value in details.items())


# =========================================================================
# Payload variants
# =========================================================================


@dataclass
class EventPayload:
    """Base class for typed event payloads."""

    location: str = ""

    def participants(self) -> list[str]:
        """Names of characters involved in the event."""
        return []

    def index_text(self) -> str:
        """Text form sent to the embedding provider."""
        raise NotImplementedError

    def summary(self, excerpt_chars: int = 80) -> str:
        """One-line prompt form, without the elapsed-time label."""
        raise NotImplementedError

    def significance(self, policy: SignificancePolicy) -> float:
        """Default significance for this payload."""
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventPayload:
        raise NotImplementedError


@dataclass
class CombatPayload(EventPayload):
    combatants: list[str] = field(default_factory=list)
    outcome: str = "unknown"
    casualties: list[str] = field(default_factory=list)

    def participants(self) -> list[str]:
        return list(self.combatants)

    def index_text(self) -> str:
        who = ", ".join(self.combatants) or "unknown combatants"
        where = self.location or UNKNOWN_LOCATION
        text = f"Combat at {where} between {who}. Outcome: {self.outcome}."
        if self.casualties:
            text += f" Casualties: {', '.join(self.casualties)}."
        return text

    def summary(self, excerpt_chars: int = 80) -> str:
        who = ", ".join(self.combatants) or "unknown combatants"
        desc = f"Combat between {who} - {self.outcome}"
        if self.casualties:
            desc += f" ({', '.join(self.casualties)} were defeated)"
        return desc

    def significance(self, policy: SignificancePolicy) -> float:
        # Deaths are very significant
        return policy.combat_with_casualties if self.casualties else policy.combat

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CombatPayload:
        return cls(
            location=_text(data, "location"),
            combatants=_names(data, "combatants", "participants"),
            outcome=_text(data, "outcome", default="unknown"),
            casualties=_names(data, "casualties"),
        )


@dataclass
class DialoguePayload(EventPayload):
    speaker: str = "someone"
    content: str = ""
    reactions: dict[str, str] = field(default_factory=dict)

    def participants(self) -> list[str]:
        return [self.speaker] + [name for name in self.reactions if name != self.speaker]

    def index_text(self) -> str:
        text = f'{self.speaker} said: "{self.content}" at {self.location or UNKNOWN_LOCATION}.'
        if self.reactions:
            reaction_text = ", ".join(
                f"{name} reacted: {reaction}" for name, reaction in self.reactions.items()
            )
            text += f" Reactions: {reaction_text}."
        return text

    def summary(self, excerpt_chars: int = 80) -> str:
        excerpt = self.content[:excerpt_chars]
        if len(self.content) > excerpt_chars:
            excerpt += "..."
        return f'{self.speaker}: "{excerpt}"'

    def significance(self, policy: SignificancePolicy) -> float:
        return policy.dialogue_with_reactions if self.reactions else policy.dialogue

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DialoguePayload:
        reactions = {
            str(name): str(reaction)
            for name, reaction in _mapping(data, "reactions", "characterReactions").items()
        }
        return cls(
            location=_text(data, "location"),
            speaker=_text(data, "speaker", default="someone"),
            content=_text(data, "content", "text"),
            reactions=reactions,
        )


@dataclass
class TravelPayload(EventPayload):
    origin: str = "somewhere"
    destination: str = "somewhere"
    method: str = "travel"

    def index_text(self) -> str:
        return f"Party traveled from {self.origin} to {self.destination} via {self.method}."

    def summary(self, excerpt_chars: int = 80) -> str:
        return f"Party traveled from {self.origin} to {self.destination} via {self.method}"

    def significance(self, policy: SignificancePolicy) -> float:
        return policy.travel

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TravelPayload:
        destination = _text(data, "destination", "to", default="somewhere")
        return cls(
            # A journey happens where it ends
            location=_text(data, "location", default=destination),
            origin=_text(data, "origin", "from", default="somewhere"),
            destination=destination,
            method=_text(data, "method", default="travel"),
        )


@dataclass
class QuestPayload(EventPayload):
    quest_id: str = "unknown quest"
    action: str = "progressed"
    status: str = "active"

    def index_text(self) -> str:
        return (
            f'Quest "{self.quest_id}" at {self.location or UNKNOWN_LOCATION}: '
            f"{self.action}. Status changed to {self.status}."
        )

    def summary(self, excerpt_chars: int = 80) -> str:
        return f'Quest "{self.quest_id}": {self.action} - now {self.status}'

    def significance(self, policy: SignificancePolicy) -> float:
        if self.status.lower() == "completed":
            return policy.quest_completed
        return policy.quest_progress

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QuestPayload:
        return cls(
            location=_text(data, "location"),
            quest_id=_text(data, "quest_id", "questId", "quest", default="unknown quest"),
            action=_text(data, "action", default="progressed"),
            status=_text(data, "status", "new_status", "newStatus", default="active"),
        )


@dataclass
class CharacterPayload(EventPayload):
    character_id: str = "someone"
    change: str = "change"  # level_up, skill_gain, relationship_change, death, resurrection
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.details = _json_safe(self.details) if isinstance(self.details, dict) else {}

    def participants(self) -> list[str]:
        return [self.character_id]

    def index_text(self) -> str:
        where = self.location or UNKNOWN_LOCATION
        text = f"Character {self.character_id} at {where}: {self.change}."
        if self.details:
            text += f" Details: {json.dumps(self.details, ensure_ascii=False, default=str)}."
        return text

    def summary(self, excerpt_chars: int = 80) -> str:
        desc = f"{self.character_id} {self.change}"
        if self.details:
            desc += f": {_format_details(self.details)}"
        return desc

    def significance(self, policy: SignificancePolicy) -> float:
        change = self.change.lower()
        if change == "death":
            return policy.character_death
        if change == "level_up":
            return policy.character_level_up
        return policy.character_change

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CharacterPayload:
        return cls(
            location=_text(data, "location"),
            character_id=_text(data, "character_id", "characterId", "character", default="someone"),
            change=_text(data, "change", "type", default="change"),
            details=_mapping(data, "details"),
        )


ITEM_CHANGE_VERBS = {
    "add": "gained",
    "remove": "lost",
    "update": "updated",
    "use": "used",
    "transfer": "handed over",
}


@dataclass
class ItemChangePayload(EventPayload):
    character_id: str = "someone"
    item_name: str = "an item"
    change: str = "add"
    quantity: int = 1

    def participants(self) -> list[str]:
        return [self.character_id]

    def _verb(self) -> str:
        return ITEM_CHANGE_VERBS.get(self.change.lower(), self.change)

    def index_text(self) -> str:
        return (
            f"{self.character_id} {self._verb()} {self.quantity} x {self.item_name} "
            f"at {self.location or UNKNOWN_LOCATION}."
        )

    def summary(self, excerpt_chars: int = 80) -> str:
        desc = f"{self.character_id} {self._verb()} {self.item_name}"
        if self.quantity != 1:
            desc += f" x{self.quantity}"
        return desc

    def significance(self, policy: SignificancePolicy) -> float:
        if self.change.lower() == "update":
            return policy.item_update
        return policy.item_change

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ItemChangePayload:
        return cls(
            location=_text(data, "location"),
            character_id=_text(data, "character_id", "characterId", "owner", default="someone"),
            item_name=_text(data, "item_name", "itemName", "item", "name", default="an item"),
            change=_text(data, "change", "action", default="add"),
            quantity=_int(data, "quantity", "quantityRemoved", default=1),
        )


@dataclass
class LocationDiscoveryPayload(EventPayload):
    name: str = "an unnamed place"
    description: str = ""
    parent: str = ""

    def index_text(self) -> str:
        text = f"Discovered {self.name}"
        if self.parent:
            text += f" in {self.parent}"
        if self.description:
            text += f": {self.description}"
        return text + "."

    def summary(self, excerpt_chars: int = 80) -> str:
        desc = f"Discovered {self.name}"
        if self.parent:
            desc += f" in {self.parent}"
        return desc

    def significance(self, policy: SignificancePolicy) -> float:
        return policy.location_discovery

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LocationDiscoveryPayload:
        name = _text(data, "name", "location_name", "locationName", default="an unnamed place")
        return cls(
            location=_text(data, "location", default=name),
            name=name,
            description=_text(data, "description"),
            parent=_text(data, "parent", "parent_location", "parentLocation"),
        )


@dataclass
class GenericPayload(EventPayload):
    description: str = ""
    people: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.details = _json_safe(self.details) if isinstance(self.details, dict) else {}

    # Keys consumed by from_dict; everything else is kept in details
    _KNOWN_KEYS: ClassVar[set[str]] = {
        "location",
        "description",
        "summary",
        "content",
        "people",
        "participants",
        "characters",
        "details",
    }

    def participants(self) -> list[str]:
        return list(self.people)

    def _label(self) -> str:
        raw_type = self.details.get("raw_type")
        return str(raw_type) if raw_type else "event"

    def index_text(self) -> str:
        shown = {k: v for k, v in self.details.items() if k != "raw_type"}
        if self.description:
            return self.description
        if shown:
            return f"{self._label()}: {json.dumps(shown, ensure_ascii=False, default=str)}"
        return ""

    def summary(self, excerpt_chars: int = 80) -> str:
        shown = {k: v for k, v in self.details.items() if k != "raw_type"}
        if self.description:
            return f"{self._label()}: {self.description}"
        if shown:
            return f"{self._label()}: {_format_details(shown)}"
        return self._label()

    def significance(self, policy: SignificancePolicy) -> float:
        return policy.generic

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenericPayload:
        details = _mapping(data, "details")
        for key, value in data.items():
            if key not in cls._KNOWN_KEYS:
                details.setdefault(key, value)
        return cls(
            location=_text(data, "location"),
            description=_text(data, "description", "summary", "content"),
            people=_names(data, "people", "participants", "characters"),
            details=details,
        )


PAYLOAD_TYPES: dict[EventType, type[EventPayload]] = {
    EventType.COMBAT: CombatPayload,
    EventType.DIALOGUE: DialoguePayload,
    EventType.TRAVEL: TravelPayload,
    EventType.QUEST: QuestPayload,
    EventType.CHARACTER: CharacterPayload,
    EventType.ITEM_CHANGE: ItemChangePayload,
    EventType.LOCATION_DISCOVERY: LocationDiscoveryPayload,
    EventType.GENERIC: GenericPayload,
}


def parse_payload(
    event_type: EventType,
    data: EventPayload | dict[str, Any] | None,
    raw_tag: str | None = None,
) -> EventPayload:
    """
    Build the typed payload for an event type.

    Never raises for unexpected shapes: anything that is not a mapping is
    treated as empty, missing fields take neutral defaults.
    """
    payload_cls = PAYLOAD_TYPES[event_type]
    if isinstance(data, payload_cls):
        # Stored payloads never share state with the caller
        return copy.deepcopy(data)
    if isinstance(data, EventPayload):
        data = data.to_dict()
    elif not isinstance(data, dict):
        data = {}
    else:
        data = dict(data)

    if raw_tag in _INVENTORY_CHANGES and "change" not in data:
        data["change"] = _INVENTORY_CHANGES[raw_tag]

    payload = payload_cls.from_dict(data)
    if isinstance(payload, GenericPayload) and raw_tag:
        payload.details.setdefault("raw_type", raw_tag)
    return payload


# =========================================================================
# Events and queries
# =========================================================================


@dataclass
class MemoryEvent:
    """
    The atomic unit of memory.

    `tier` is deliberately not a field: it is derived on read from age,
    significance and access count (see tier_at).
    """

    event_type: EventType
    payload: EventPayload
    significance: float
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = ""

    # Mutated only when the event is selected into an assembled context
    access_count: int = 0
    last_accessed: datetime | None = None

    def __post_init__(self) -> None:
        if not self.id:
            self.id = new_event_id(self.timestamp)

    def age(self, now: datetime) -> timedelta:
        return max(now - self.timestamp, timedelta(0))

    def effective_significance(
        self, policy: TierPolicy | None = None, access_count: int | None = None
    ) -> float:
        count = self.access_count if access_count is None else access_count
        return effective_significance(self.significance, count, policy)

    def tier_at(self, now: datetime, policy: TierPolicy | None = None) -> Tier:
        return classify(self.age(now), self.significance, self.access_count, policy)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload.to_dict(),
            "significance": self.significance,
            "access_count": self.access_count,
            "last_accessed": self.last_accessed.isoformat() if self.last_accessed else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryEvent:
        """Create from dictionary."""
        event_type, raw_tag = coerce_event_type(data["event_type"])
        last_accessed = data.get("last_accessed")
        return cls(
            id=data["id"],
            event_type=event_type,
            payload=parse_payload(event_type, data.get("payload"), raw_tag),
            significance=clamp_significance(data.get("significance")) or 0.0,
            timestamp=datetime.fromisoformat(data["timestamp"]),
            access_count=int(data.get("access_count", 0)),
            last_accessed=datetime.fromisoformat(last_accessed) if last_accessed else None,
        )


@dataclass
class QueryContext:
    """Situation an assembly call scores against. Never persisted."""

    location: str = ""
    participants: set[str] = field(default_factory=set)
    recent_actions: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.participants, str):
            self.participants = {self.participants}
        self.participants = {str(p) for p in self.participants if str(p).strip()}
        if isinstance(self.recent_actions, str):
            self.recent_actions = [self.recent_actions]
        self.recent_actions = [str(a) for a in self.recent_actions if str(a).strip()]

    def is_empty(self) -> bool:
        return not (self.location or self.participants or self.recent_actions)

    def to_query(self) -> str:
        """Synthesize the text used for vector search."""
        parts = []
        if self.location:
            parts.append(f"location: {self.location}")
        if self.participants:
            parts.append(f"characters: {', '.join(sorted(self.participants))}")
        if self.recent_actions:
            parts.append(f"actions: {', '.join(self.recent_actions)}")
        return " ".join(parts)


@dataclass
class ArchiveSummary:
    """Aggregate left behind when compaction folds archived events."""

    event_count: int
    summaries: dict[str, dict[str, Any]]
    created_at: datetime = field(default_factory=datetime.now)
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            stamp = self.created_at.strftime("%Y%m%d%H%M%S%f")
            self.id = f"archive-{stamp}-{uuid.uuid4().hex[:6]}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "event_count": self.event_count,
            "summaries": self.summaries,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArchiveSummary:
        return cls(
            id=data.get("id", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            event_count=int(data["event_count"]),
            summaries=dict(data.get("summaries", {})),
        )
