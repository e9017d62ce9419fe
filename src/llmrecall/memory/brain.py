# src/llmrecall/memory/brain.py
"""
Memory lifecycle controller ("Brain") for llmrecall.

The Brain owns a persona's durable memory set and decides, message by
message, whether a queued memory should resurface in the conversation.

Lifecycle of a memory, by insertion mode:

- ``natural`` / ``natural_forced``: waits in the eureka queue. Once surfaced
  it is removed (priority <= 1) or demoted to ``trigger`` (priority > 1).
  If it is never surfaced it is dropped once older than the eureka cutoff.
- ``trigger``: recalled only through retrieval. It is evicted once the days
  since its last recall exceed ``base_no_recall_days * (priority + 1) +
  recall_count``.

The Brain also stages the per-turn prompt inserts (retrieval hits, world
info, sticky sessions) into a :class:`PromptInsertLedger`.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..config.models import BrainSettings
from ..models import (ChatMessage, InsertionMode, MemoryCategory,
                      MemoryUnit, PromptInsert, Role, coerce_utc, utc_now)
from ..sessions.chatlog import Chatlog
from .inserts import PromptInsertLedger
from .mood import MoodState
from .retrieval import RetrievalEngine
from .triggers import is_eureka_trigger
from .vault import cosine_distance

if TYPE_CHECKING:
    from ..persona import Persona

logger = logging.getLogger(__name__)

_NATURAL_MODES = (InsertionMode.NATURAL.value, InsertionMode.NATURAL_FORCED.value)


class BrainState(BaseModel):
    """Serializable part of the Brain."""
    memories: List[MemoryUnit] = Field(default_factory=list)
    recent_searches: List[str] = Field(default_factory=list)
    last_insert_time: Optional[datetime] = None
    current_delay: int = 0
    mood: MoodState = Field(default_factory=MoodState)

    @field_validator("last_insert_time", mode="before")
    @classmethod
    def ensure_utc(cls, v):
        return coerce_utc(v)


class Brain:
    """
    Memory lifecycle controller for one persona.

    Args:
        persona: The persona whose memories this Brain owns. The Brain
            registers itself as ``persona.brain``.
        retrieval: Retrieval engine used for distances and searches.
        settings: Lifecycle tuning.
        clock: Returns the current UTC time. Injected by tests.
        rng: Random source for world-info trigger rolls.
    """

    def __init__(self, persona: "Persona", retrieval: RetrievalEngine,
                 settings: Optional[BrainSettings] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 rng: Optional[random.Random] = None):
        self.persona = persona
        self.retrieval = retrieval
        self.settings = settings or BrainSettings()
        self.clock = clock or utc_now
        self.rng = rng or random.Random()
        self.memories: List[MemoryUnit] = []
        self.eurekas: List[MemoryUnit] = []
        self.recent_searches: List[str] = []
        self.last_insert_time: Optional[datetime] = None
        self.current_delay = 0
        self.mood = MoodState()
        persona.brain = self

    # ------------------------------------------------------------------
    # Durable memory set
    # ------------------------------------------------------------------

    def add_memory(self, memory: MemoryUnit) -> MemoryUnit:
        """Add an already built memory. Trigger memories with an embedding join a non-empty vault."""
        self.memories.append(memory)
        if (memory.insertion_mode == InsertionMode.TRIGGER and memory.embedding
                and len(self.retrieval.vault) > 0):
            self.retrieval.vault.add_memories([memory])
        return memory

    async def remember(self, content: str, name: str = "",
                       category: MemoryCategory = MemoryCategory.GENERIC,
                       insertion_mode: InsertionMode = InsertionMode.NATURAL,
                       priority: int = 1, reason: str = "", embed: bool = True) -> MemoryUnit:
        """Create, embed and store a new memory."""
        memory = MemoryUnit(name=name, content=content, category=category,
                            insertion_mode=insertion_mode, priority=priority,
                            reason=reason, added_at=self.clock())
        if embed:
            await self.retrieval.embed_memory(memory)
        logger.debug(f"New {memory.insertion_mode} memory '{memory.name}' (priority {memory.priority}).")
        return self.add_memory(memory)

    def forget(self, memory_id: str) -> bool:
        for memory in self.memories:
            if memory.id == memory_id:
                self.memories.remove(memory)
                if memory in self.eurekas:
                    self.eurekas.remove(memory)
                return True
        return False

    def memories_for_rag(self) -> List[MemoryUnit]:
        return [m for m in self.memories
                if m.insertion_mode == InsertionMode.TRIGGER and m.enabled and m.embedding]

    def get_memory_by_id(self, memory_id: str) -> Optional[MemoryUnit]:
        """Look a memory up among sessions, then world entries, then the durable set."""
        session = self.persona.history.get_session(memory_id)
        if session is not None:
            return session
        for world in self.persona.worlds:
            for entry in world.entries:
                if entry.id == memory_id:
                    return entry
        for memory in self.memories:
            if memory.id == memory_id:
                return memory
        return None

    def touch_by_id(self, memory_id: str) -> None:
        memory = self.get_memory_by_id(memory_id)
        if memory is not None:
            memory.touch(self.clock())

    def new_ledger(self) -> PromptInsertLedger:
        """A ledger that records a recall whenever a memory is first staged."""
        return PromptInsertLedger(on_new=self.touch_by_id)

    # ------------------------------------------------------------------
    # Decay and the eureka queue
    # ------------------------------------------------------------------

    def _is_decayable(self, memory: MemoryUnit) -> bool:
        categories = self.settings.decayable_categories
        return categories is None or memory.category in categories

    def _days_since_recall(self, memory: MemoryUnit, now: datetime) -> float:
        since = memory.last_recalled_at or memory.added_at
        return (now - since).total_seconds() / 86400.0

    def decay(self) -> int:
        """
        Remove expired memories.

        Returns:
            Number of memories removed.
        """
        now = self.clock()
        cutoff = now - timedelta(days=self.settings.eureka_cutoff_days)
        kept: List[MemoryUnit] = []
        for memory in self.memories:
            if memory.insertion_mode in _NATURAL_MODES and memory.added_at < cutoff:
                logger.debug(f"Memory '{memory.name}' expired before surfacing.")
                continue
            if memory.insertion_mode == InsertionMode.TRIGGER and self._is_decayable(memory):
                allowed = self.settings.base_no_recall_days * (memory.priority + 1) + memory.recall_count
                if self._days_since_recall(memory, now) > allowed:
                    logger.debug(f"Memory '{memory.name}' evicted after {allowed:.1f} days without recall.")
                    continue
            kept.append(memory)
        removed = len(self.memories) - len(kept)
        if removed:
            indexed = any(m.insertion_mode == InsertionMode.TRIGGER for m in self.memories if m not in kept)
            self.memories = kept
            if indexed:
                self.retrieval.invalidate_index()
            logger.info(f"Decay removed {removed} memories for persona '{self.persona.name}'.")
        return removed

    def refresh(self) -> None:
        """Run a decay sweep and rebuild the eureka queue, newest first."""
        self.decay()
        cutoff = self.clock() - timedelta(days=self.settings.eureka_cutoff_days)
        queue = [m for m in self.memories
                 if m.insertion_mode in _NATURAL_MODES and m.enabled and m.added_at >= cutoff]
        queue.sort(key=lambda m: m.added_at, reverse=True)
        self.eurekas = queue

    def on_new_session(self) -> None:
        self.current_delay = 0
        for world in self.persona.worlds:
            world.reset()
        self.refresh()

    # ------------------------------------------------------------------
    # Per-message evaluation
    # ------------------------------------------------------------------

    @staticmethod
    def _previous_user_message(history: Chatlog, message: ChatMessage) -> Optional[ChatMessage]:
        for session in reversed(history.sessions):
            for candidate in reversed(session.messages):
                if candidate.id != message.id and candidate.role == Role.USER:
                    return candidate
        return None

    @staticmethod
    def _last_session_message(history: Chatlog, message: ChatMessage) -> Optional[ChatMessage]:
        for candidate in reversed(history.current_session.messages):
            if candidate.id != message.id:
                return candidate
        return None

    def _sense_of_time(self, history: Chatlog, message: ChatMessage) -> bool:
        """
        Update the mood and emit a time-away note after a long absence.

        Returns:
            True when memory evaluation should be skipped this turn.
        """
        previous = self._previous_user_message(history, message)
        if previous is None:
            return False
        now = self.clock()
        if self.settings.mood_enabled:
            self.mood.update(previous.timestamp, now)
            self.mood.interpret(message.content)
        last = self._last_session_message(history, message)
        if last is not None and last.role == Role.SYSTEM:
            return True
        gap = now - previous.timestamp
        if gap < timedelta(hours=self.settings.away_threshold_hours):
            return False
        note = f"{{{{user}}}} has been away for {_describe_gap(gap)}."
        if self.settings.mood_enabled:
            note += " " + self.mood.describe()
        history.add_system_note(self.persona.replace_macros(note), timestamp=now)
        logger.info(f"Time-away note added after {_describe_gap(gap)} without user messages.")
        return True

    async def handle_message(self, message: ChatMessage, history: Optional[Chatlog] = None) -> Optional[MemoryUnit]:
        """
        Evaluate one incoming message and maybe resurface a memory.

        Call this before the message is logged; the eureka note, if any, is
        appended to ``history`` ahead of it.

        Returns:
            The surfaced memory, or None.
        """
        history = history if history is not None else self.persona.history
        if message.role != Role.USER:
            return None
        if self.settings.sense_of_time and self._sense_of_time(history, message):
            return None

        self.refresh()
        if self.settings.disable_eurekas or not self.eurekas:
            return None

        vector = await self.retrieval.embed_text(message.content)
        if vector:
            for memory in list(self.eurekas):
                if cosine_distance(vector, memory.embedding or []) <= self.settings.relevance_threshold:
                    logger.debug(f"Memory '{memory.name}' is relevant to the message; surfacing it now.")
                    return self.insert_eureka(memory, history)

        self.current_delay += 1
        asked_for_news = is_eureka_trigger(message.content)
        now = self.clock()
        waited_enough = (
            self.current_delay >= self.settings.min_message_delay
            and (self.last_insert_time is None
                 or self.last_insert_time + timedelta(minutes=self.settings.min_insert_delay_minutes) <= now)
        )
        if asked_for_news or waited_enough:
            return self.insert_eureka(None, history, only_forced=not asked_for_news)
        return None

    def insert_eureka(self, memory: Optional[MemoryUnit] = None, history: Optional[Chatlog] = None,
                      only_forced: bool = False) -> Optional[MemoryUnit]:
        """
        Surface a memory as a hidden system note.

        Without an explicit ``memory`` the oldest queued one is taken, or the
        oldest ``natural_forced`` one when ``only_forced`` is set.
        """
        history = history if history is not None else self.persona.history
        if memory is None:
            pool = self.eurekas
            if only_forced:
                pool = [m for m in pool if m.insertion_mode == InsertionMode.NATURAL_FORCED]
            if not pool:
                return None
            memory = pool[-1]

        now = self.clock()
        if memory in self.eurekas:
            self.eurekas.remove(memory)
        self.last_insert_time = now
        self.current_delay = 0

        if memory.priority > 1:
            memory.insertion_mode = InsertionMode.TRIGGER
            if memory.embedding and len(self.retrieval.vault) > 0:
                self.retrieval.vault.add_memories([memory])
        elif memory in self.memories:
            self.memories.remove(memory)

        history.add_system_note(self.persona.replace_macros(memory.to_eureka()), timestamp=now)
        memory.touch(now)
        logger.info(f"Eureka: surfaced memory '{memory.name}' (priority {memory.priority}).")
        return memory

    # ------------------------------------------------------------------
    # Searches and prompt inserts
    # ------------------------------------------------------------------

    async def was_searched_recently(self, topic: str) -> bool:
        """True if ``topic`` matches, by text or by meaning, one of the recent searches."""
        lowered = topic.strip().lower()
        for previous in self.recent_searches:
            if previous.strip().lower() == lowered:
                return True
        for previous in self.recent_searches:
            if await self.retrieval.distance(topic, previous) < self.settings.recent_search_distance:
                return True
        return False

    def record_search(self, topic: str) -> None:
        self.recent_searches.append(topic)
        overflow = len(self.recent_searches) - self.settings.max_recent_searches
        if overflow > 0:
            del self.recent_searches[:overflow]

    async def update_rag_and_inserts(self, ledger: PromptInsertLedger, new_message: Optional[str] = None,
                                     history: Optional[Chatlog] = None, rag_index: Optional[int] = None,
                                     include_dates: bool = True) -> None:
        """
        Age the ledger by one turn and stage this turn's memories.

        Retrieval runs on ``new_message``, or the last user message when
        none is given, skipping memories already staged. World info is
        matched against the recent history; sticky sessions are always staged.
        """
        history = history if history is not None else self.persona.history
        rag_index = self.retrieval.settings.insert_index if rag_index is None else rag_index
        ledger.decrease_duration()

        query = new_message
        if not query:
            last_user = history.last_message(Role.USER)
            query = last_user.content if last_user else ""

        if query:
            results = await self.retrieval.search(query, exclude_ids=ledger.ids())
            ledger.add_memories(results, rag_index, include_dates)

        for world in self.persona.worlds:
            for entry in world.find_entries_in_history(history.current_messages(), new_message, rng=self.rng):
                if entry.id not in ledger:
                    ledger.add_memory(entry, rag_index, include_dates)

        current = history.current_session
        for session in history.sticky_sessions():
            if session.id == current.id:
                continue
            ledger.add_insert(PromptInsert(id=session.id, content=session.to_snippet(include_dates),
                                           location=rag_index, remaining_turns=1))

    async def regen_embeddings(self) -> int:
        """
        Re-embed every memory, archived session and world entry, then rebuild the index.

        Returns:
            Number of items that carry an embedding afterwards.
        """
        items: List[MemoryUnit] = list(self.memories)
        items.extend(s for s in self.persona.history.archived_sessions() if s.content.strip())
        for world in self.persona.worlds:
            if world.do_embeds:
                items.extend(world.entries)
            else:
                for entry in world.entries:
                    entry.embedding = None
        embedded = 0
        for item in items:
            if await self.retrieval.embed_memory(item):
                embedded += 1
        await self.retrieval.rebuild_index(self.persona)
        return embedded

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export_state(self) -> BrainState:
        return BrainState(memories=self.memories, recent_searches=self.recent_searches,
                          last_insert_time=self.last_insert_time, current_delay=self.current_delay,
                          mood=self.mood)

    def load_state(self, state: BrainState) -> None:
        self.memories = list(state.memories)
        self.recent_searches = list(state.recent_searches)
        self.last_insert_time = state.last_insert_time
        self.current_delay = state.current_delay
        self.mood = state.mood
        self.eurekas = []


def _describe_gap(gap: timedelta) -> str:
    hours = gap.total_seconds() / 3600.0
    if hours < 48:
        return f"{int(hours)} hours"
    days = int(hours // 24)
    if days < 14:
        return f"{days} days"
    return f"{days // 7} weeks"
