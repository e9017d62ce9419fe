# src/llmrecall/memory/world_info.py
"""
Keyword-triggered world info for llmrecall.

A world is a named set of memory entries. Each turn the recent chat text is
scanned for entry keywords; a matching entry that also passes its
``trigger_chance`` roll stays active for ``ttl_turns`` scans. World entries
can additionally be embedded so that retrieval finds them by meaning.
"""

import logging
import random
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, PrivateAttr

from ..models import ChatMessage, MemoryCategory, MemoryUnit, Role

logger = logging.getLogger(__name__)


class WorldInfo(BaseModel):
    """
    A collection of keyword-triggered entries.

    Attributes:
        name: Display name of the world.
        description: Free-form description, not rendered into prompts.
        entries: Entries, stored as memories with the ``world_info`` category.
        scan_depth: Number of trailing chat messages scanned for keywords.
        do_embeds: Whether entries take part in vector retrieval.
    """
    name: str = Field(default="")
    description: str = Field(default="")
    entries: List[MemoryUnit] = Field(default_factory=list)
    scan_depth: int = Field(default=1, ge=0)
    do_embeds: bool = Field(default=True)

    _active: Dict[str, int] = PrivateAttr(default_factory=dict)

    def add_entry(self, entry: MemoryUnit) -> MemoryUnit:
        entry.category = MemoryCategory.WORLD_INFO
        self.entries.append(entry)
        return entry

    def embeddable_entries(self) -> List[MemoryUnit]:
        """Enabled entries that can go into the vault."""
        if not self.do_embeds:
            return []
        return [e for e in self.entries if e.enabled and e.embedding]

    def reset(self) -> None:
        """Forget which entries are currently active."""
        self._active.clear()

    def find_entries(self, text: str, rng: Optional[random.Random] = None) -> List[MemoryUnit]:
        """
        Advance active entries by one turn and activate new keyword matches.

        Returns:
            Every entry active after this scan, in activation order.
        """
        rng = rng or random.Random()
        for entry_id in list(self._active):
            self._active[entry_id] -= 1
            if self._active[entry_id] <= 0:
                del self._active[entry_id]

        for entry in self.entries:
            if not entry.enabled or entry.id in self._active:
                continue
            if entry.matches_keywords(text) and entry.trigger_chance >= rng.random():
                self._active[entry.id] = entry.ttl_turns
                logger.debug(f"World '{self.name}': entry '{entry.name}' activated for {entry.ttl_turns} turn(s).")

        by_id = {e.id: e for e in self.entries}
        return [by_id[entry_id] for entry_id in self._active if entry_id in by_id]

    def find_entries_in_history(self, messages: Iterable[ChatMessage], user_input: Optional[str] = None,
                                rng: Optional[random.Random] = None) -> List[MemoryUnit]:
        """Scan the last ``scan_depth`` user/assistant messages plus ``user_input``."""
        messages = list(messages)
        tail = messages[-self.scan_depth:] if self.scan_depth else []
        lines = [m.content for m in tail if m.role in (Role.USER, Role.ASSISTANT)]
        if user_input:
            lines.append(user_input)
        if not lines:
            return []
        return self.find_entries("\n".join(lines), rng=rng)
