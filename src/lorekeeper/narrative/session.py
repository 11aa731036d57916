"""
Game Session - Per-turn driver tying memory to a text generator.

Each turn: maybe compact → record the player's action → assemble memory
context → generate → record events proposed from the response → follow any
location change. The generator is opaque: any callable taking
(prompt, message_history) and returning text.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from lorekeeper.memory.engine import MemoryEngine
from lorekeeper.memory.schema import QueryContext
from lorekeeper.narrative.extraction import (
    action_importance,
    action_proposal,
    detect_scene_type,
    propose_events,
)

logger = logging.getLogger(__name__)

TextGenerator = Callable[[str, list[dict[str, str]]], str]
FactSource = Callable[[], list[str]]


@dataclass
class Scene:
    """Where the party currently is and who is around."""

    location: str
    name: str = ""
    npcs: list[str] = field(default_factory=list)
    previous_location: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.location


@dataclass
class TurnResult:
    """What one turn produced."""

    response: str
    scene_type: str
    importance: float
    memory_context: str
    event_ids: list[str] = field(default_factory=list)


class GameSession:
    """Drives turns for one session with memory-augmented prompts."""

    def __init__(
        self,
        engine: MemoryEngine,
        generate: TextGenerator,
        present_facts: FactSource | None = None,
        actor: str = "Player",
        token_budget: int | None = None,
        recent_history_limit: int = 10,
        recent_history_keep: int = 8,
        messages_after_compaction: int = 20,
    ):
        """
        Initialize session driver.

        Args:
            engine: Memory engine for this session
            generate: Text generator (prompt, history) -> text
            present_facts: Read-only source of "currently present" facts
            actor: Name recorded for the player's own actions
            token_budget: Memory context budget (engine default when None)
            recent_history_limit: Recent-history length that triggers trimming
            recent_history_keep: Entries kept after trimming
            messages_after_compaction: Raw messages kept once compaction ran
        """
        self.engine = engine
        self.generate = generate
        self.present_facts = present_facts
        self.actor = actor
        self.token_budget = token_budget
        self.recent_history_limit = recent_history_limit
        self.recent_history_keep = recent_history_keep
        self.messages_after_compaction = messages_after_compaction

        self.scene = Scene(location=engine.current_location)
        self.messages: list[dict[str, str]] = []
        self.recent_history: list[str] = []
        self.actions = 0

    def take_turn(self, action: str, scene_type: str | None = None) -> TurnResult:
        """
        Play one turn.

        Args:
            action: Player action text
            scene_type: Override for the detected scene type

        Returns:
            TurnResult with the generated response and recorded event ids
        """
        if self.engine.maybe_compact(len(self.messages)) is not None:
            # Older turns now live in memory; keep the raw log short
            self.messages = self.messages[-self.messages_after_compaction :]

        scene_type = scene_type or detect_scene_type(action)
        importance = action_importance(action)

        proposal = action_proposal(action, self.actor, self.scene.location)
        event_ids = [
            self.engine.record(proposal.event_type, proposal.payload, proposal.significance_hint)
        ]

        context = QueryContext(
            location=self.scene.location,
            participants={self.actor, *self.scene.npcs},
            recent_actions=[scene_type, action],
        )
        memory_context = self.engine.assemble(context, self.token_budget)
        prompt = self.build_prompt(action, memory_context)
        response = self.generate(prompt, list(self.messages))

        known = {self.actor, *self.scene.npcs}
        for candidate in propose_events(action, response, self.scene.location, known):
            event_ids.append(
                self.engine.record(
                    candidate.event_type, candidate.payload, candidate.significance_hint
                )
            )
            if candidate.event_type == "travel":
                self._transition(candidate.payload["destination"])
            else:
                for name in candidate.payload.get("people", []):
                    if name not in self.scene.npcs:
                        self.scene.npcs.append(name)

        self._update_history(action, response, scene_type)
        self.actions += 1
        return TurnResult(
            response=response,
            scene_type=scene_type,
            importance=importance,
            memory_context=memory_context,
            event_ids=event_ids,
        )

    def build_prompt(self, action: str, memory_context: str) -> str:
        """Prompt text: scene, present facts, memory context and the action."""
        parts = [f"## Current Scene\nLocation: {self.scene.location}"]
        if self.scene.npcs:
            parts[0] += f"\nPresent: {', '.join(self.scene.npcs)}"

        facts = self.present_facts() if self.present_facts else []
        if facts:
            parts.append("## Present Facts\n" + "\n".join(f"- {fact}" for fact in facts))

        parts.append(memory_context.rstrip("\n"))
        if self.recent_history:
            parts.append("## Recent Actions\n" + "\n".join(self.recent_history))
        parts.append(f"## Player Action\n{action}")
        return "\n\n".join(parts)

    def _transition(self, destination: str) -> None:
        logger.debug("Scene change: %s -> %s", self.scene.location, destination)
        self.scene = Scene(location=destination, previous_location=self.scene.location)
        self.engine.current_location = destination

    def _update_history(self, action: str, response: str, scene_type: str) -> None:
        self.messages.append({"role": "user", "content": action})
        self.messages.append({"role": "assistant", "content": response})

        stamp = self.engine.clock().strftime("%H:%M:%S")
        self.recent_history.append(f"[{stamp}] {scene_type}: {action[:50]}...")
        if len(self.recent_history) > self.recent_history_limit:
            self.recent_history = self.recent_history[-self.recent_history_keep :]
