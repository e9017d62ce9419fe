# src/llmrecall/sessions/chatlog.py
"""
Session-grouped chat history.

The chat log is an append-only list of sessions, each an ordered list of
role-tagged, timestamped messages. The last session is the current one.
Finished sessions double as memories: once summarized and embedded they
are indexed by the retrieval engine and rendered into the prior-session
summary block.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set

from pydantic import BaseModel, Field

from ..models import ChatMessage, ChatSession, Role

logger = logging.getLogger(__name__)


class Chatlog(BaseModel):
    """
    Conversation history for one persona.

    Attributes:
        sessions: All sessions, oldest first. Never empty after the first message.
    """
    sessions: List[ChatSession] = Field(default_factory=list)

    @property
    def current_session(self) -> ChatSession:
        if not self.sessions:
            self.sessions.append(ChatSession(name="Current session"))
        return self.sessions[-1]

    @property
    def current_index(self) -> int:
        return len(self.sessions) - 1 if self.sessions else 0

    def log_message(self, role: Role, content: str, author: Optional[str] = None,
                    hidden: bool = False, timestamp: Optional[datetime] = None) -> ChatMessage:
        """Append a message to the current session and return it."""
        message = ChatMessage(role=role, content=content, author=author, hidden=hidden,
                              timestamp=timestamp)
        self.current_session.messages.append(message)
        return message

    def add_system_note(self, content: str, hidden: bool = True, timestamp: Optional[datetime] = None) -> ChatMessage:
        """Append a system-authored note, as the Brain does for eurekas and time-away notes."""
        return self.log_message(Role.SYSTEM, content, hidden=hidden, timestamp=timestamp)

    def remove_last_message(self) -> Optional[ChatMessage]:
        messages = self.current_session.messages
        return messages.pop() if messages else None

    def current_messages(self) -> List[ChatMessage]:
        return list(self.current_session.messages)

    def all_messages(self) -> List[ChatMessage]:
        return [m for s in self.sessions for m in s.messages]

    def last_message(self, role: Optional[Role] = None) -> Optional[ChatMessage]:
        """Most recent message overall, or by ``role``, across all sessions."""
        for session in reversed(self.sessions):
            for message in reversed(session.messages):
                if role is None or message.role == role:
                    return message
        return None

    def last_message_in_session(self) -> Optional[ChatMessage]:
        messages = self.current_session.messages
        return messages[-1] if messages else None

    def start_new_session(self, name: str = "Current session") -> ChatSession:
        """
        Close the current session and open a fresh one.

        Returns:
            The session that was just closed. Summarizing and embedding it
            is up to the caller.
        """
        finished = self.current_session
        self.sessions.append(ChatSession(name=name))
        return finished

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None

    def archived_sessions(self) -> List[ChatSession]:
        return self.sessions[:-1]

    def sticky_sessions(self) -> List[ChatSession]:
        return [s for s in self.archived_sessions() if s.sticky]

    def sessions_for_rag(self) -> List[ChatSession]:
        """Archived sessions carrying a summary embedding."""
        return [s for s in self.archived_sessions() if s.embedding]

    def previous_summaries(
        self,
        max_tokens: int,
        count_tokens: Callable[[str], int],
        header: str = "##",
        include_dates: bool = True,
        ignore_ids: Optional[Iterable[str]] = None,
        before_index: Optional[int] = None,
        allow_roleplay: bool = True,
    ) -> str:
        """
        Render summaries of earlier sessions within ``max_tokens``.

        Sticky sessions come first. The rest are taken newest to oldest
        until the budget runs out, skipping ids in ``ignore_ids`` (already
        staged elsewhere) and sessions with no summary. Only sessions below
        ``before_index`` are considered; by default that is every archived
        session. The chosen blocks are rendered oldest to newest.
        """
        archived = self.archived_sessions()
        limit = len(archived) if before_index is None else min(before_index, len(archived))
        used: Set[str] = set(ignore_ids or ())

        selected = [s for s in archived if s.sticky and s.id not in used]
        used.update(s.id for s in selected)

        tokens_left = max_tokens
        for session in reversed(archived[:limit]):
            if tokens_left <= 0:
                break
            if session.id in used or not session.content.strip():
                continue
            if not allow_roleplay and session.is_roleplay:
                continue
            cost = count_tokens(session.to_summary_block(header, include_dates)) + 1
            if cost <= tokens_left:
                selected.append(session)
                used.add(session.id)
                tokens_left -= cost

        if not selected:
            return ""
        selected.sort(key=lambda s: s.start_time)
        return "".join(s.to_summary_block(header, include_dates) for s in selected)
