"""Tests for the session memory engine."""

import json
import time
from datetime import datetime

import pytest

from lorekeeper.memory import EventType, MemoryConfig, MemoryEngine, QueryContext
from lorekeeper.memory.assembler import PLACEHOLDER
from lorekeeper.memory.config import CompactionPolicy, EmbeddingPolicy
from lorekeeper.memory.schema import GenericPayload
from lorekeeper.memory.scoring import estimate_tokens

from conftest import FailingEmbedding, KeywordEmbedding, SlowEmbedding

LAIR = QueryContext(location="Dragon Lair", participants={"Hero"}, recent_actions=["attack"])


def record_dragon_fight(engine):
    return engine.record(
        "combat",
        {
            "combatants": ["Hero", "Dragon"],
            "outcome": "victory",
            "casualties": ["Dragon"],
            "location": "Dragon Lair",
        },
        significance_hint=0.9,
    )


def record_scene(engine):
    """A small adventure: a dragon fight, a goblin skirmish and small talk."""
    dragon = record_dragon_fight(engine)
    goblin = engine.record_combat(["Hero", "Goblin"], "fled", location="Forest")
    chat = engine.record_dialogue("Mira", "Have a drink, traveler.", location="Tavern")
    return dragon, goblin, chat


class TestRecord:
    def test_combat_scenario(self, engine):
        event_id = record_dragon_fight(engine)
        event = engine.get_event(event_id)
        assert event.event_type == EventType.COMBAT
        assert event.significance == 0.9

        text = engine.assemble(LAIR, token_budget=500)
        assert text != PLACEHOLDER
        assert "Combat between Hero, Dragon - victory (Dragon were defeated)" in text

    def test_heuristic_significance(self, engine):
        event_id = engine.record_quest("q-relic", "returned the relic", "completed")
        assert engine.get_event(event_id).significance == 0.9

    def test_unknown_tag_becomes_generic(self, engine):
        event_id = engine.record("weather_change", {"description": "A storm rolls in"})
        event = engine.get_event(event_id)
        assert event.event_type == EventType.GENERIC
        assert event.payload.details["raw_type"] == "weather_change"

    def test_malformed_payload_tolerated(self, engine):
        event_id = engine.record("combat", "not a mapping")
        assert engine.get_event(event_id).payload.outcome == "unknown"

    def test_current_location_fills_payload(self, engine):
        engine.record_travel("Village", "Darkwood")
        assert engine.current_location == "Darkwood"
        event_id = engine.record_dialogue("Hero", "It is quiet here.")
        assert engine.get_event(event_id).payload.location == "Darkwood"

    def test_default_location(self, engine):
        event_id = engine.record("generic", {"description": "a note"})
        assert engine.get_event(event_id).payload.location == "unknown location"

    def test_unencodable_details_persist(self, tmp_path, clock):
        with MemoryEngine("details", base_dir=tmp_path, clock=clock) as engine:
            event_id = engine.record(
                "generic",
                {"description": "met the envoy", "when": datetime(2026, 1, 1), "tags": {"envoy"}},
            )
            engine.record_character("Aldric", "level_up", details={"at": datetime(2026, 1, 2)})
            assert len(engine.events(include_history=False)) == 2
            engine.compact()

        with MemoryEngine("details", base_dir=tmp_path, clock=clock) as engine:
            details = engine.get_event(event_id).payload.details
            assert details["when"] == "2026-01-01T00:00:00"
            assert details["tags"] == ["envoy"]
            assert len(engine.events()) == 2

    def test_caller_payload_not_shared(self, engine):
        payload = GenericPayload(description="a lantern flickers", people=["Mira"])
        event_id = engine.record("generic", payload)
        stored = engine.get_event(event_id).payload

        assert payload.location == ""
        assert stored.location == "unknown location"
        payload.people.append("Stranger")
        assert stored.people == ["Mira"]

    def test_ids_unique(self, engine):
        ids = {engine.record("generic", {"description": f"n{i}"}) for i in range(50)}
        assert len(ids) == 50

    def test_invalid_session_id(self, tmp_path):
        for bad in ["", "  ", ".", "..", "a/b", "a\\b"]:
            with pytest.raises(ValueError):
                MemoryEngine(bad, base_dir=tmp_path)


class TestAssemble:
    def test_empty_session_placeholder(self, engine):
        assert engine.assemble(LAIR) == PLACEHOLDER

    def test_negative_budget(self, engine):
        with pytest.raises(ValueError):
            engine.assemble(LAIR, token_budget=-5)

    def test_zero_budget_placeholder(self, engine):
        record_dragon_fight(engine)
        assert engine.assemble(LAIR, token_budget=0) == PLACEHOLDER

    def test_budget_respected(self, engine, clock):
        for i in range(40):
            engine.record("generic", {"description": f"Entry {i} " + "lore " * (i % 7)})
            clock.advance(minutes=17)
        for budget in (10, 25, 60, 120, 300, 800):
            text = engine.assemble(QueryContext(location="Nowhere"), token_budget=budget)
            if text != PLACEHOLDER:
                assert estimate_tokens(text) <= budget

    def test_repeat_calls_are_stable(self, engine, clock):
        record_scene(engine)
        clock.advance(minutes=90)
        engine.record_travel("Forest", "Dragon Lair")

        first = engine.assemble_context(LAIR, token_budget=500)
        second = engine.assemble_context(LAIR, token_budget=500)
        assert [e.id for e in first.events] == [e.id for e in second.events]
        assert first.text == second.text
        assert all(event.access_count == 2 for event in second.events)

    def test_relevant_event_ranked_first(self, engine):
        record_scene(engine)
        result = engine.assemble_context(LAIR, token_budget=500)
        assert result.events[0].payload.location == "Dragon Lair"

    def test_history_events_considered(self, engine, clock):
        old_id = record_dragon_fight(engine)
        clock.advance(hours=5)
        engine.compact()
        assert engine.get_event(old_id) in engine.events()
        assert old_id not in [e.id for e in engine.events(include_history=False)]

        result = engine.assemble_context(LAIR, token_budget=500)
        assert old_id in [e.id for e in result.events]
        assert "(5h ago)" in result.text


class TestSearch:
    def test_lexical_only(self, engine):
        dragon, _, _ = record_scene(engine)
        assert [e.id for e in engine.search("dragon battle")] == [dragon]

    def test_vector_finds_related(self, vector_engine):
        dragon, goblin, chat = record_scene(vector_engine)
        results = [e.id for e in vector_engine.search("dragon battle")]
        assert results[0] == dragon
        assert goblin in results
        assert chat not in results

    def test_search_is_not_an_access(self, engine):
        record_scene(engine)
        engine.search("dragon")
        assert all(event.access_count == 0 for event in engine.events())

    def test_limit_and_blank(self, engine):
        record_scene(engine)
        assert len(engine.search("hero", limit=1)) == 1
        assert engine.search("   ") == []


class TestVectors:
    def test_events_indexed(self, vector_engine):
        event_id = record_dragon_fight(vector_engine)
        assert event_id in vector_engine.index
        assert vector_engine.index.metadata(event_id)["event_type"] == "combat"

    def test_semantic_section(self, vector_engine):
        record_dragon_fight(vector_engine)
        text = vector_engine.assemble(
            QueryContext(participants={"Dragon"}, recent_actions=["combat"]), token_budget=500
        )
        assert "**Semantically Related Events:**" in text
        assert "[similarity:" in text

    def test_query_embedding_cached(self, vector_engine, embedder):
        record_dragon_fight(vector_engine)
        vector_engine.assemble(LAIR)
        calls = embedder.calls
        vector_engine.assemble(LAIR)
        assert embedder.calls == calls

    def test_failing_provider_degrades(self, tmp_path, clock):
        with MemoryEngine(
            "degraded", base_dir=tmp_path, embedder=FailingEmbedding(), clock=clock
        ) as engine:
            event_id = record_dragon_fight(engine)
            assert engine.get_event(event_id) is not None
            assert len(engine.index) == 0
            assert "Combat between Hero, Dragon" in engine.assemble(LAIR, token_budget=500)
            assert [e.id for e in engine.search("dragon")] == [event_id]

    def test_slow_provider_times_out(self, tmp_path, clock):
        config = MemoryConfig(embedding=EmbeddingPolicy(timeout_seconds=0.1))
        with MemoryEngine(
            "slow", base_dir=tmp_path, config=config, embedder=SlowEmbedding(delay=1.0), clock=clock
        ) as engine:
            started = time.monotonic()
            event_id = record_dragon_fight(engine)
            assert time.monotonic() - started < 0.9
            assert engine.get_event(event_id) is not None
            assert event_id not in engine.index

    def test_corrupt_index_starts_empty(self, tmp_path, clock):
        with MemoryEngine(
            "corrupt", base_dir=tmp_path, embedder=KeywordEmbedding(), clock=clock
        ) as engine:
            event_id = record_dragon_fight(engine)
        (tmp_path / "corrupt" / "vectors" / "vectors.json").write_text("{{{ not json")

        with MemoryEngine(
            "corrupt", base_dir=tmp_path, embedder=KeywordEmbedding(), clock=clock
        ) as engine:
            assert len(engine.index) == 0
            assert engine.get_event(event_id) is not None
            assert engine.assemble(LAIR, token_budget=500) != PLACEHOLDER

    def test_bad_index_metadata_starts_empty(self, tmp_path, clock):
        with MemoryEngine(
            "bad-meta", base_dir=tmp_path, embedder=KeywordEmbedding(), clock=clock
        ) as engine:
            event_id = record_dragon_fight(engine)
        metadata_path = tmp_path / "bad-meta" / "vectors" / "metadata.json"
        metadata_path.write_text(json.dumps({event_id: [1, 2]}))

        with MemoryEngine(
            "bad-meta", base_dir=tmp_path, embedder=KeywordEmbedding(), clock=clock
        ) as engine:
            assert len(engine.index) == 0
            assert engine.get_event(event_id) is not None


class TestCompaction:
    def test_old_low_significance_folded(self, engine, clock):
        for i in range(60):
            engine.record("generic", {"description": f"idle chatter {i}"}, significance_hint=0.2)
        clock.advance(days=31)

        stats = engine.compact()
        assert stats["archived_count"] == 60
        assert len(engine.events()) < 60
        summaries = engine.archive_summaries()
        assert len(summaries) == 1
        assert summaries[0].event_count == 60

    def test_legendary_event_survives(self, engine, clock):
        event_id = engine.record_character("Aldric", "death")
        assert engine.get_event(event_id).significance == 1.0
        clock.advance(days=400)
        engine.compact()
        assert engine.get_event(event_id) is not None
        assert engine.archive_summaries() == []

    def test_folded_vectors_removed(self, vector_engine, clock):
        event_id = vector_engine.record(
            "generic", {"description": "a dragon passed overhead"}, significance_hint=0.1
        )
        assert event_id in vector_engine.index
        clock.advance(days=45)
        vector_engine.compact()
        assert event_id not in vector_engine.index
        assert vector_engine.get_event(event_id) is None

    def test_not_forced_and_not_due(self, engine):
        assert engine.compact(force=False) is None
        assert engine.maybe_compact(conversation_log_size=10) is None

    def test_log_size_triggers(self, engine):
        engine.record("generic", {"description": "x"})
        assert engine.maybe_compact(conversation_log_size=51) is not None

    def test_interval_triggers(self, engine, clock):
        clock.advance(minutes=61)
        assert engine.maybe_compact() is not None

    def test_hot_set_bounded(self, tmp_path, clock):
        config = MemoryConfig(compaction=CompactionPolicy(max_hot_events=5))
        with MemoryEngine("bounded", base_dir=tmp_path, config=config, clock=clock) as engine:
            for i in range(12):
                engine.record("generic", {"description": f"step {i}"})
                clock.advance(minutes=1)
                assert len(engine.events(include_history=False)) <= 5
            assert len(engine.events()) == 12


class TestLifecycle:
    def test_restart_restores_state(self, tmp_path, clock):
        with MemoryEngine("persist", base_dir=tmp_path, clock=clock) as engine:
            ids = record_scene(engine)
            engine.assemble(LAIR, token_budget=500)
            counts = {e.id: e.access_count for e in engine.events()}

        with MemoryEngine("persist", base_dir=tmp_path, clock=clock) as engine:
            assert {e.id for e in engine.events()} == set(ids)
            assert {e.id: e.access_count for e in engine.events()} == counts

    def test_restart_restores_vectors(self, tmp_path, clock):
        with MemoryEngine(
            "persist", base_dir=tmp_path, embedder=KeywordEmbedding(), clock=clock
        ) as engine:
            dragon, _, _ = record_scene(engine)

        with MemoryEngine(
            "persist", base_dir=tmp_path, embedder=KeywordEmbedding(), clock=clock
        ) as engine:
            assert len(engine.index) == 3
            assert engine.search("dragon battle")[0].id == dragon

    def test_sessions_isolated(self, tmp_path, clock):
        with MemoryEngine("one", base_dir=tmp_path, clock=clock) as one, MemoryEngine(
            "two", base_dir=tmp_path, clock=clock
        ) as two:
            record_dragon_fight(one)
            assert two.events() == []
            assert two.assemble(LAIR) == PLACEHOLDER

    def test_teardown(self, engine):
        record_dragon_fight(engine)
        session_dir = engine.session_dir
        assert session_dir.exists()
        engine.teardown()
        assert not session_dir.exists()
        with pytest.raises(RuntimeError):
            engine.record("generic", {"description": "too late"})

    def test_closed_engine_rejects_calls(self, tmp_path, clock):
        engine = MemoryEngine("closing", base_dir=tmp_path, clock=clock)
        engine.close()
        engine.close()
        with pytest.raises(RuntimeError):
            engine.assemble(LAIR)

    def test_stats(self, vector_engine):
        record_scene(vector_engine)
        stats = vector_engine.get_stats()
        assert stats["total_events"] == 3
        assert stats["hot_events"] == 3
        assert stats["by_type"] == {"combat": 2, "dialogue": 1}
        assert stats["by_tier"] == {"hot": 2, "warm": 1}
        assert stats["vectors"] == 3
        assert stats["embeddings_enabled"]
        assert stats["embedding_provider"] == "KeywordEmbedding"
