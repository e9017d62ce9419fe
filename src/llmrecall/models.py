# src/llmrecall/models.py
"""
Core data models for the llmrecall library.

This module defines the Pydantic models used to represent memories, chat
messages, archived chat sessions and prompt inserts. Every model here is a
plain serializable record: ``model_dump(mode="json")`` produces a
JSON-compatible dictionary and ``model_validate`` restores it.
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

# Location value for inserts that belong to the system prompt rather than
# to a depth bucket inside the chat history.
SYSTEM_PROMPT_SLOT = -1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def coerce_utc(v: Any) -> Any:
    """Parse ISO strings and make datetimes timezone-aware in UTC."""
    if v is None:
        return None
    if isinstance(v, str):
        text = v[:-1] + "+00:00" if v.endswith("Z") else v
        try:
            v = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid datetime format: {v}")
    if isinstance(v, datetime):
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)
    return v


class _CaseInsensitiveEnum(str, Enum):
    @classmethod
    def _missing_(cls, value: object):  # type: ignore[misc]
        if isinstance(value, str):
            lower_value = value.lower()
            for member in cls:
                if member.value == lower_value:
                    return member
        return None


class Role(_CaseInsensitiveEnum):
    """
    Enumeration of possible roles in a conversation.
    These roles define the origin or type of a message.
    """
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def _missing_(cls, value: object):  # type: ignore[misc]
        if isinstance(value, str) and value.lower() in ("agent", "bot"):
            return cls.ASSISTANT
        return super()._missing_(value)


class MemoryCategory(_CaseInsensitiveEnum):
    """What kind of knowledge a memory holds. Drives eureka wording and decay eligibility."""
    CHAT_SESSION = "chat_session"
    WORLD_INFO = "world_info"
    DOCUMENT = "document"
    GENERIC = "generic"
    WEB_SEARCH = "web_search"
    GOAL = "goal"
    PERSON = "person"
    LOCATION = "location"
    EVENT = "event"
    JOURNAL = "journal"


class InsertionMode(_CaseInsensitiveEnum):
    """
    How a memory reaches the prompt.

    ``natural`` memories wait in the eureka queue and surface once;
    ``natural_forced`` ones skip the probabilistic delay gate; ``trigger``
    memories are only recalled through retrieval; ``none`` disables the memory.
    """
    NATURAL = "natural"
    NATURAL_FORCED = "natural_forced"
    TRIGGER = "trigger"
    NONE = "none"


class PositionHint(_CaseInsensitiveEnum):
    """Where a staged memory should be rendered."""
    SYSTEM_PROMPT = "system_prompt"
    HISTORY = "history"


class KeywordLink(_CaseInsensitiveEnum):
    """How the secondary keyword list combines with the main one."""
    AND = "and"
    OR = "or"
    NOT = "not"


# Categories whose embedding fuses the name with the content.
MIXED_EMBED_CATEGORIES = frozenset({
    MemoryCategory.CHAT_SESSION.value,
    MemoryCategory.JOURNAL.value,
    MemoryCategory.WEB_SEARCH.value,
    MemoryCategory.PERSON.value,
    MemoryCategory.LOCATION.value,
    MemoryCategory.EVENT.value,
})

_EUREKA_LEADS: Dict[str, str] = {
    MemoryCategory.PERSON.value: "Here's the information you remember about {name}.",
    MemoryCategory.LOCATION.value: "You remember something about this location: {name}.",
    MemoryCategory.GOAL.value: "You remember you've set this goal for yourself: {name}.",
    MemoryCategory.WEB_SEARCH.value: "You remember something you've found on the web recently about '{name}'.",
}
_EUREKA_DEFAULT_LEAD = "This is some information regarding '{name}'."
_EUREKA_CLOSING = (
    "Mention this information when there's a lull in the discussion, if the user makes "
    "a mention of it, or if you feel like it's a good idea to talk about it."
)


class ChatMessage(BaseModel):
    """
    Represents a single message in the chat log.

    Attributes:
        id: A unique identifier for the message.
        role: The role of the entity that produced the message.
        content: The textual content of the message.
        timestamp: When the message was recorded (UTC).
        author: Display name of the author, if any.
        hidden: Hidden messages stay in the log and the prompt but are not shown to the user.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique identifier for the message.")
    role: Role = Field(description="The role of the message sender (system, user, or assistant).")
    content: str = Field(description="The textual content of the message.")
    timestamp: datetime = Field(default_factory=utc_now, description="Timestamp of when the message was created (UTC).")
    author: Optional[str] = Field(default=None, description="Display name of the author.")
    hidden: bool = Field(default=False, description="Whether the message is hidden from the user.")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Optional dictionary for additional message metadata.")

    class Config:
        """Pydantic model configuration."""
        use_enum_values = True
        validate_assignment = True

    @field_validator("timestamp", mode="before")
    @classmethod
    def ensure_utc_timestamp(cls, v: Any) -> Any:
        """Ensure the timestamp is timezone-aware and in UTC if naive."""
        return coerce_utc(v) if v is not None else utc_now()


class MemoryUnit(BaseModel):
    """
    A single long-term memory.

    Memories are created when a session is summarized, when world info is
    authored, or when the application decides something is worth keeping.
    ``touch()`` updates the recall bookkeeping; the Brain applies lifecycle
    transitions; decay sweeps remove them.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Opaque unique key.")
    name: str = Field(default="", description="Title of the memory.")
    content: str = Field(default="", description="Raw content of the memory.")
    reason: str = Field(default="", description="Why this memory is of interest.")
    category: MemoryCategory = Field(default=MemoryCategory.GENERIC)
    embedding: Optional[List[float]] = Field(default=None, description="L2-normalized embedding, None until embedded.")
    priority: int = Field(default=1, ge=0, description="Higher priority memories are kept longer.")
    insertion_mode: InsertionMode = Field(default=InsertionMode.TRIGGER)
    added_at: datetime = Field(default_factory=utc_now)
    last_recalled_at: Optional[datetime] = Field(default=None)
    recall_count: int = Field(default=0, ge=0)
    ttl_turns: int = Field(default=1, ge=1, description="Turns the memory stays staged once inserted.")
    position_hint: PositionHint = Field(default=PositionHint.SYSTEM_PROMPT)
    position_index: int = Field(default=0, ge=0, description="History depth bucket when rendered in history.")
    enabled: bool = Field(default=True)
    trigger_chance: float = Field(default=1.0, ge=0.0, le=1.0)
    keywords: List[str] = Field(default_factory=list)
    secondary_keywords: List[str] = Field(default_factory=list)
    keyword_link: KeywordLink = Field(default=KeywordLink.OR)
    case_sensitive: bool = Field(default=False)
    whole_words: bool = Field(default=True)

    class Config:
        """Pydantic model configuration."""
        use_enum_values = True
        validate_assignment = True
        validate_default = True

    @field_validator("added_at", "last_recalled_at", mode="before")
    @classmethod
    def ensure_utc_timestamp(cls, v: Any) -> Any:
        return coerce_utc(v)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    @property
    def insert_location(self) -> int:
        """Ledger location for this memory: the system slot or its history bucket."""
        if self.position_hint == PositionHint.SYSTEM_PROMPT:
            return SYSTEM_PROMPT_SLOT
        return self.position_index

    def touch(self, now: Optional[datetime] = None) -> None:
        """Record that the memory was just recalled."""
        self.last_recalled_at = now or utc_now()
        self.recall_count += 1

    def to_eureka(self) -> str:
        """Render the memory as a note the model can bring up on its own."""
        lead = _EUREKA_LEADS.get(self.category, _EUREKA_DEFAULT_LEAD).format(name=self.name)
        parts = [lead]
        if self.reason:
            parts[0] += f" Your reason for it was: {self.reason}."
        parts.append(self.content)
        parts.append(_EUREKA_CLOSING)
        return "\n\n".join(parts)

    def _keyword_hit(self, text: str, keyword: str) -> bool:
        keyword = keyword.strip()
        if not keyword:
            return False
        flags = 0 if self.case_sensitive else re.IGNORECASE
        if self.whole_words:
            return re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", text, flags) is not None
        if self.case_sensitive:
            return keyword in text
        return keyword.lower() in text.lower()

    def matches_keywords(self, text: str) -> bool:
        """
        Check the keyword lists against ``text``.

        The main list must match for ``and`` and ``not`` links; ``or`` also
        accepts a secondary match. An empty secondary list reduces every
        link to the main list alone.
        """
        if not text or not self.keywords:
            return False
        main = any(self._keyword_hit(text, k) for k in self.keywords)
        if not self.secondary_keywords:
            return main
        secondary = any(self._keyword_hit(text, k) for k in self.secondary_keywords)
        if self.keyword_link == KeywordLink.AND:
            return main and secondary
        if self.keyword_link == KeywordLink.NOT:
            return main and not secondary
        return main or secondary


def _human_date(dt: datetime) -> str:
    return f"{dt.strftime('%A')}, {dt.strftime('%B')} {dt.day}, {dt.year}"


class ChatSession(MemoryUnit):
    """
    An archived (or current) conversation session.

    The session is a memory in its own right: ``name`` holds its title and
    ``content`` its summary, and its embedding is the fused title/summary
    vector. ``is_roleplay`` feeds the tone rerank and ``sticky`` sessions are
    staged every turn regardless of relevance.
    """
    category: MemoryCategory = Field(default=MemoryCategory.CHAT_SESSION)
    messages: List[ChatMessage] = Field(default_factory=list)
    is_roleplay: bool = Field(default=False)
    sticky: bool = Field(default=False)

    @property
    def title(self) -> str:
        return self.name

    @property
    def summary(self) -> str:
        return self.content

    @property
    def start_time(self) -> datetime:
        return self.messages[0].timestamp if self.messages else self.added_at

    @property
    def end_time(self) -> datetime:
        return self.messages[-1].timestamp if self.messages else self.start_time

    def raw_memory(self, include_dates: bool = True) -> str:
        summary = " ".join(self.content.split())
        if not include_dates:
            return summary
        if self.start_time.date() == self.end_time.date():
            return f"On {_human_date(self.start_time)}: {summary}"
        return f"Between {_human_date(self.start_time)} and {_human_date(self.end_time)}: {summary}"

    def to_snippet(self, include_dates: bool = True) -> str:
        """Text staged in the prompt when this session is retrieved."""
        title = " ".join(self.name.split())
        return f"{title}: {self.raw_memory(include_dates)}"

    def to_summary_block(self, header: str = "##", include_dates: bool = True) -> str:
        return f"{header} {self.name}\n{self.raw_memory(include_dates)}\n"


class PromptInsert(BaseModel):
    """
    A transient, TTL-bearing fragment queued for the next prompt.

    ``id`` is the id of the originating memory, so staging the same memory
    twice replaces the earlier fragment.
    """
    id: str = Field(description="Id of the originating memory or session.")
    content: str = Field(description="Rendered text of the fragment.")
    location: int = Field(default=SYSTEM_PROMPT_SLOT, ge=SYSTEM_PROMPT_SLOT, description="-1 for the system prompt, else a history depth bucket.")
    remaining_turns: int = Field(default=1, description="Assembly cycles left before the insert is purged.")

    class Config:
        """Pydantic model configuration."""
        validate_assignment = True
