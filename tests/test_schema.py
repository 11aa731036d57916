"""Tests for the event model."""

import math
from datetime import datetime

from lorekeeper.memory.config import SignificancePolicy
from lorekeeper.memory.schema import (
    ArchiveSummary,
    CharacterPayload,
    CombatPayload,
    DialoguePayload,
    EventType,
    GenericPayload,
    ItemChangePayload,
    LocationDiscoveryPayload,
    MemoryEvent,
    QueryContext,
    QuestPayload,
    TravelPayload,
    clamp_significance,
    coerce_event_type,
    parse_payload,
)


class TestEventType:
    """Tests for event type coercion."""

    def test_canonical_tags(self):
        assert coerce_event_type("combat") == (EventType.COMBAT, None)
        assert coerce_event_type("character-development") == (EventType.CHARACTER, None)
        assert coerce_event_type(EventType.TRAVEL) == (EventType.TRAVEL, None)

    def test_case_and_whitespace(self):
        assert coerce_event_type("  Dialogue ")[0] == EventType.DIALOGUE

    def test_aliases(self):
        assert coerce_event_type("inventory_add") == (EventType.ITEM_CHANGE, "inventory_add")
        assert coerce_event_type("location_discovered")[0] == EventType.LOCATION_DISCOVERY
        assert coerce_event_type("character")[0] == EventType.CHARACTER

    def test_unknown_tag_is_generic(self):
        assert coerce_event_type("session_start") == (EventType.GENERIC, "session_start")


class TestPayloads:
    """Tests for tolerant payload parsing."""

    def test_combat_defaults(self):
        payload = parse_payload(EventType.COMBAT, {})
        assert isinstance(payload, CombatPayload)
        assert payload.combatants == []
        assert payload.outcome == "unknown"

    def test_combat_accepts_participants_alias(self):
        payload = parse_payload(
            EventType.COMBAT, {"participants": ["Hero", {"name": "Dragon"}], "outcome": "victory"}
        )
        assert payload.combatants == ["Hero", "Dragon"]
        assert payload.participants() == ["Hero", "Dragon"]

    def test_combat_index_text(self):
        payload = CombatPayload(
            location="Dragon Lair",
            combatants=["Hero", "Dragon"],
            outcome="victory",
            casualties=["Dragon"],
        )
        assert payload.index_text() == (
            "Combat at Dragon Lair between Hero, Dragon. Outcome: victory. Casualties: Dragon."
        )
        assert payload.summary() == "Combat between Hero, Dragon - victory (Dragon were defeated)"

    def test_dialogue_excerpt(self):
        payload = DialoguePayload(speaker="Mira", content="x" * 100)
        summary = payload.summary(excerpt_chars=10)
        assert summary == 'Mira: "' + "x" * 10 + '..."'

    def test_dialogue_participants_include_reactors(self):
        payload = parse_payload(
            EventType.DIALOGUE,
            {"speaker": "Mira", "content": "Hello", "characterReactions": {"Brom": "nods"}},
        )
        assert payload.participants() == ["Mira", "Brom"]

    def test_travel_camel_case_and_location(self):
        payload = parse_payload(EventType.TRAVEL, {"from": "Village", "to": "Darkwood"})
        assert isinstance(payload, TravelPayload)
        assert payload.origin == "Village"
        assert payload.destination == "Darkwood"
        assert payload.location == "Darkwood"

    def test_quest_aliases(self):
        payload = parse_payload(
            EventType.QUEST, {"questId": "lost-sword", "action": "found", "newStatus": "completed"}
        )
        assert isinstance(payload, QuestPayload)
        assert payload.quest_id == "lost-sword"
        assert payload.status == "completed"

    def test_inventory_alias_sets_change(self):
        kind, raw = coerce_event_type("inventory_remove")
        payload = parse_payload(kind, {"characterId": "Aria", "itemName": "Rope"}, raw)
        assert isinstance(payload, ItemChangePayload)
        assert payload.change == "remove"
        assert payload.summary() == "Aria lost Rope"

    def test_location_discovery_location_is_name(self):
        payload = parse_payload(EventType.LOCATION_DISCOVERY, {"name": "Sunken Temple"})
        assert isinstance(payload, LocationDiscoveryPayload)
        assert payload.location == "Sunken Temple"

    def test_generic_keeps_unknown_keys(self):
        kind, raw = coerce_event_type("session_start")
        payload = parse_payload(kind, {"world": "Eldoria", "setting": "fantasy"}, raw)
        assert isinstance(payload, GenericPayload)
        assert payload.details == {"world": "Eldoria", "setting": "fantasy", "raw_type": "session_start"}
        assert payload.summary().startswith("session_start: ")

    def test_details_made_json_safe(self):
        payload = parse_payload(
            EventType.CHARACTER,
            {
                "character_id": "Aldric",
                "details": {"at": datetime(2026, 1, 2, 8, 30), "allies": {"Mira", "Bo"}},
            },
        )
        assert payload.details == {"at": "2026-01-02T08:30:00", "allies": ["Bo", "Mira"]}

        generic = parse_payload(EventType.GENERIC, {"when": datetime(2026, 1, 1), "odds": (1, 2)})
        assert generic.details == {"when": "2026-01-01T00:00:00", "odds": [1, 2]}

    def test_payload_instance_is_copied(self):
        original = CombatPayload(combatants=["Hero", "Orc"])
        payload = parse_payload(EventType.COMBAT, original)
        assert payload == original
        assert payload is not original
        assert payload.combatants is not original.combatants

    def test_non_mapping_payload_is_empty(self):
        payload = parse_payload(EventType.CHARACTER, ["not", "a", "dict"])
        assert isinstance(payload, CharacterPayload)
        assert payload.character_id == "someone"


class TestSignificanceHeuristics:
    """Relative ordering of type defaults."""

    def test_ordering(self):
        policy = SignificancePolicy()
        casualties = CombatPayload(combatants=["A"], casualties=["B"]).significance(policy)
        combat = CombatPayload(combatants=["A"]).significance(policy)
        dialogue = DialoguePayload(content="hi").significance(policy)
        reacted = DialoguePayload(content="hi", reactions={"B": "laughs"}).significance(policy)
        travel = TravelPayload().significance(policy)
        completed = QuestPayload(status="completed").significance(policy)
        progress = QuestPayload(status="active").significance(policy)
        death = CharacterPayload(change="death").significance(policy)

        assert casualties >= 0.7
        assert casualties > combat
        assert reacted > dialogue
        assert dialogue < travel < combat
        assert completed > progress
        assert death == 1.0

    def test_clamp_significance(self):
        assert clamp_significance(1.7) == 1.0
        assert clamp_significance(-3) == 0.0
        assert clamp_significance("0.4") == 0.4
        assert clamp_significance(None) is None
        assert clamp_significance(math.nan) is None
        assert clamp_significance("high") is None


class TestMemoryEvent:
    """Tests for MemoryEvent."""

    def test_id_assigned(self):
        event = MemoryEvent(EventType.TRAVEL, TravelPayload(), 0.4, timestamp=datetime(2026, 1, 1))
        assert event.id.startswith("20260101000000000000-")

    def test_ids_unique(self):
        ts = datetime(2026, 1, 1)
        ids = {MemoryEvent(EventType.GENERIC, GenericPayload(), 0.5, timestamp=ts).id for _ in range(50)}
        assert len(ids) == 50

    def test_round_trip(self):
        event = MemoryEvent(
            EventType.COMBAT,
            CombatPayload(location="Lair", combatants=["Hero"], outcome="victory"),
            0.9,
            timestamp=datetime(2026, 1, 31, 18, 0, 0),
            access_count=2,
            last_accessed=datetime(2026, 2, 1),
        )
        restored = MemoryEvent.from_dict(event.to_dict())
        assert restored == event

    def test_tier_is_derived(self):
        event = MemoryEvent(EventType.GENERIC, GenericPayload(), 0.5, timestamp=datetime(2026, 1, 1))
        assert "tier" not in event.to_dict()
        assert event.tier_at(datetime(2026, 1, 1, 1)).value == "hot"
        assert event.tier_at(datetime(2026, 1, 1, 5)).value == "warm"


class TestQueryContext:
    """Tests for QueryContext."""

    def test_to_query(self):
        ctx = QueryContext(
            location="Dragon Lair", participants={"Hero", "Aria"}, recent_actions=["attack"]
        )
        assert ctx.to_query() == "location: Dragon Lair characters: Aria, Hero actions: attack"

    def test_coerces_strings(self):
        ctx = QueryContext(participants="Hero", recent_actions="attack")
        assert ctx.participants == {"Hero"}
        assert ctx.recent_actions == ["attack"]

    def test_empty(self):
        assert QueryContext().is_empty()
        assert QueryContext().to_query() == ""


class TestArchiveSummary:
    def test_round_trip(self):
        summary = ArchiveSummary(
            event_count=3,
            summaries={"generic": {"count": 3}},
            created_at=datetime(2026, 2, 1),
        )
        restored = ArchiveSummary.from_dict(summary.to_dict())
        assert restored == summary
        assert summary.id.startswith("archive-20260201")
