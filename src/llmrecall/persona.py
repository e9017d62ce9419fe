# src/llmrecall/persona.py
"""
The persona a conversation is held with.

Only what the memory engine needs is modelled: a name, the instruction text
placed at the top of every prompt, the chat log, the attached worlds and the
Brain that owns the persona's long-term memories. ``{{char}}`` and
``{{user}}`` macros in any rendered text are replaced by
:meth:`Persona.replace_macros`.
"""

from typing import TYPE_CHECKING, List, Optional

from .memory.world_info import WorldInfo
from .models import MemoryUnit
from .sessions.chatlog import Chatlog

if TYPE_CHECKING:
    from .memory.brain import Brain


class Persona:
    """
    Args:
        name: Character name, substituted for ``{{char}}``.
        instructions: System prompt text for this persona.
        history: Chat log; a new empty one when omitted.
        worlds: Keyword-triggered world info attached to the persona.
        user_name: Substituted for ``{{user}}``.
    """

    def __init__(self, name: str, instructions: str = "", history: Optional[Chatlog] = None,
                 worlds: Optional[List[WorldInfo]] = None, user_name: str = "User"):
        self.name = name
        self.instructions = instructions
        self.history = history if history is not None else Chatlog()
        self.worlds: List[WorldInfo] = list(worlds or [])
        self.user_name = user_name
        self.brain: Optional["Brain"] = None

    def __repr__(self) -> str:
        return f"Persona(name={self.name!r}, sessions={len(self.history.sessions)}, worlds={len(self.worlds)})"

    def replace_macros(self, text: str) -> str:
        return text.replace("{{char}}", self.name).replace("{{user}}", self.user_name)

    def system_prompt(self) -> str:
        return self.replace_macros(self.instructions).strip()

    def world_entries_for_rag(self) -> List[MemoryUnit]:
        entries: List[MemoryUnit] = []
        for world in self.worlds:
            entries.extend(world.embeddable_entries())
        return entries

    def memory_sources(self) -> List[MemoryUnit]:
        """
        Everything the vault should index for this persona: archived sessions
        with a summary embedding, trigger-mode memories from the Brain, and
        enabled world entries with embeddings.
        """
        sources: List[MemoryUnit] = list(self.history.sessions_for_rag())
        if self.brain is not None:
            sources.extend(self.brain.memories_for_rag())
        sources.extend(self.world_entries_for_rag())
        return sources
