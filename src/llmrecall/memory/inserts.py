# src/llmrecall/memory/inserts.py
"""
The prompt insert ledger.

Fragments staged for the next prompt live here, keyed by the id of the
memory they came from. Staging the same memory again replaces its fragment
in place, so the ledger never holds two entries with one id. Every assembly
cycle starts with :meth:`PromptInsertLedger.decrease_duration`, which ages
all fragments by one turn and drops the expired ones.

The ledger is not thread-safe; one conversation flow drives it.
"""

import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set

from ..models import (SYSTEM_PROMPT_SLOT, ChatSession, MemoryCategory,
                      MemoryUnit, PromptInsert)
from .vault import VaultResult

logger = logging.getLogger(__name__)


class PromptInsertLedger:
    """
    Deduplicated, TTL-decaying collection of prompt fragments.

    Args:
        on_new: Called with the insert id whenever an id enters the ledger
            for the first time. The Brain uses it to record the recall.
    """

    def __init__(self, on_new: Optional[Callable[[str], None]] = None):
        self._inserts: Dict[str, PromptInsert] = {}
        self.on_new = on_new

    def __len__(self) -> int:
        return len(self._inserts)

    def __iter__(self) -> Iterator[PromptInsert]:
        return iter(list(self._inserts.values()))

    def __contains__(self, insert_id: object) -> bool:
        return insert_id in self._inserts

    def get(self, insert_id: str) -> Optional[PromptInsert]:
        return self._inserts.get(insert_id)

    def clear(self) -> None:
        self._inserts.clear()

    def ids(self) -> Set[str]:
        return set(self._inserts)

    def add_insert(self, insert: PromptInsert) -> None:
        """Upsert by id. Replacing keeps the original position in the ledger."""
        is_new = insert.id not in self._inserts
        self._inserts[insert.id] = insert
        if is_new and self.on_new:
            self.on_new(insert.id)

    def decrease_duration(self) -> None:
        """Age every insert by one turn and purge those with no turns left."""
        for insert_id in list(self._inserts):
            insert = self._inserts[insert_id]
            insert.remaining_turns -= 1
            if insert.remaining_turns <= 0:
                del self._inserts[insert_id]

    def add_memory(self, memory: MemoryUnit, rag_index: int, include_dates: bool = True) -> None:
        """
        Stage one retrieved memory.

        Sessions go in as a dated snippet at ``rag_index`` for one turn;
        world entries keep their own position and TTL; anything else is
        staged as raw content at ``rag_index`` for one turn.
        """
        if isinstance(memory, ChatSession):
            self.add_insert(PromptInsert(id=memory.id, content=memory.to_snippet(include_dates),
                                         location=rag_index, remaining_turns=1))
        elif memory.category == MemoryCategory.WORLD_INFO:
            self.add_insert(PromptInsert(id=memory.id, content=memory.content,
                                         location=memory.insert_location, remaining_turns=memory.ttl_turns))
        else:
            self.add_insert(PromptInsert(id=memory.id, content=memory.content,
                                         location=rag_index, remaining_turns=1))

    def add_memories(self, results: Iterable[VaultResult], rag_index: int, include_dates: bool = True) -> None:
        for result in results:
            self.add_memory(result.memory, rag_index, include_dates)

    def entries_by_position(self, position: int) -> List[PromptInsert]:
        return [i for i in self._inserts.values() if i.location == position]

    def content_by_position(self, position: int) -> str:
        """Contents staged at ``position`` joined by newlines; empty string when none."""
        return "\n".join(i.content for i in self.entries_by_position(position))

    def system_prompt_content(self) -> str:
        return self.content_by_position(SYSTEM_PROMPT_SLOT)

    def to_records(self) -> List[dict]:
        return [i.model_dump(mode="json") for i in self._inserts.values()]

    @classmethod
    def from_records(cls, records: Iterable[dict], on_new: Optional[Callable[[str], None]] = None) -> "PromptInsertLedger":
        ledger = cls(on_new=on_new)
        for record in records:
            insert = PromptInsert.model_validate(record)
            ledger._inserts[insert.id] = insert
        return ledger
