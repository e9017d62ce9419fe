# src/llmrecall/context/builder.py
"""
Token-budgeted prompt assembly.

The :class:`ContextAssembler` turns the persona's instructions, the staged
prompt inserts, summaries of earlier sessions and as much chat history as
fits into one ordered list of role/content messages.

Budget accounting, in order:

1. ``max_context_length - max_reply_length - media_tokens`` is available.
2. The plugin message and the new message are paid for up front.
3. The ledger is aged and this turn's memories are staged.
4. The system section (instructions, plugin additions, system-slot inserts)
   is paid for, and ``reserved_session_tokens`` is set aside when earlier
   sessions exist.
5. The response-start text is paid for.
6. History is packed newest first until the budget runs out; history-slot
   inserts sit just before the message at their depth.
7. The summaries of sessions older than the packed history go into the
   reserved block.

An over-long prompt is logged once and returned as is; assembly never fails
because of the budget.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from ..config.models import ContextSettings, SessionHandling
from ..logging_config import log_display
from ..memory.brain import Brain
from ..memory.inserts import PromptInsertLedger
from ..models import ChatMessage, Role
from ..plugins import ContextPlugin
from ..sessions.chatlog import Chatlog
from .tokens import TokenCounter

logger = logging.getLogger(__name__)


class AssembledPrompt(BaseModel):
    """
    A finished prompt.

    Attributes:
        messages: Ordered ``{"role": ..., "content": ...}`` dictionaries.
        token_count: Tokens of the whole prompt, media included.
        budget: ``max_context_length - max_reply_length``.
        overflow: Tokens over the budget, 0 when the prompt fits.
        response_start: Text the reply should open with.
    """
    messages: List[Dict[str, str]] = Field(default_factory=list)
    token_count: int = 0
    budget: int = 0
    overflow: int = 0
    response_start: str = ""

    def to_text(self) -> str:
        """Plain-text rendering, one ``role: content`` block per message."""
        blocks = [f"{m['role']}: {m['content']}" for m in self.messages]
        if self.response_start:
            blocks.append(self.response_start)
        return "\n\n".join(blocks)


class ContextAssembler:
    """
    Builds prompts for one conversation.

    Args:
        tokenizer: A :class:`TokenCounter` or anything with ``count`` and
            ``count_message``.
        settings: Budgets and rendering options.
        brain: Brain that stages memories into this assembler's ledger.
        history: The chat log to pack.
        system_prompt: Persona instructions, already macro-expanded.
        plugins: Context plugins contributing system additions.
    """

    def __init__(self, tokenizer: TokenCounter, settings: ContextSettings, brain: Brain,
                 history: Chatlog, system_prompt: str, plugins: Sequence[ContextPlugin] = ()):
        self.tokenizer = tokenizer
        self.settings = settings
        self.brain = brain
        self.history = history
        self.system_prompt = system_prompt
        self.plugins = list(plugins)
        self.ledger: PromptInsertLedger = brain.new_ledger()
        self.last_packed_session: Optional[int] = None

    def invalidate(self) -> None:
        """Forget every staged insert. The next build starts from a clean ledger."""
        self.ledger.clear()
        self.last_packed_session = None

    def _message_tokens(self, role: str, content: str) -> int:
        return self.tokenizer.count_message(role, content)

    def _system_section(self, search_text: str) -> str:
        parts = [self.system_prompt.strip()] if self.system_prompt.strip() else []
        for plugin in self.plugins:
            if not plugin.enabled:
                continue
            addition = plugin.system_addition(search_text, self.history)
            if addition:
                parts.append(addition.strip())

        if self.settings.move_all_inserts_to_system_prompt:
            staged = "\n".join(i.content for i in self.ledger)
        else:
            staged = self.ledger.system_prompt_content()
        if staged.strip():
            parts.append(f"{self.settings.world_info_title}\n{staged.strip()}")
        return "\n\n".join(parts)

    def _history_candidates(self) -> List[Tuple[int, ChatMessage]]:
        current = self.history.current_index
        if self.settings.session_handling == SessionHandling.CURRENT_ONLY:
            return [(current, m) for m in self.history.current_session.messages]
        candidates: List[Tuple[int, ChatMessage]] = []
        for index, session in enumerate(self.history.sessions[: current + 1]):
            candidates.extend((index, m) for m in session.messages)
        return candidates

    def _pack_history(self, tokens_left: int) -> List[Dict[str, str]]:
        """
        Newest-first packing with depth-bucketed inserts.

        Stops at the first message that does not fit. An insert is dropped
        when it does not fit after its message.
        """
        packed: List[Dict[str, str]] = []
        oldest: Optional[int] = None
        depth = 0
        place_inserts = len(self.ledger) > 0 and not self.settings.move_all_inserts_to_system_prompt
        for session_index, message in reversed(self._history_candidates()):
            tokens_left -= self._message_tokens(message.role, message.content)
            if tokens_left <= 0:
                break
            oldest = session_index if oldest is None else min(oldest, session_index)
            packed.insert(0, {"role": message.role, "content": message.content})
            if place_inserts:
                content = self.ledger.content_by_position(depth).strip()
                if content:
                    tokens_left -= self._message_tokens(Role.SYSTEM.value, content)
                    if tokens_left > 0:
                        packed.insert(0, {"role": Role.SYSTEM.value, "content": content})
            depth += 1
        self.last_packed_session = oldest
        return packed

    def _session_summaries(self) -> str:
        title = self.settings.session_history_title
        budget = self.settings.reserved_session_tokens - self.tokenizer.count(title) - 3
        if budget <= 0:
            return ""
        before = self.last_packed_session if self.last_packed_session is not None else self.history.current_index
        summaries = self.history.previous_summaries(
            budget,
            self.tokenizer.count,
            header=self.settings.session_header,
            include_dates=self.settings.include_dates_in_summaries,
            ignore_ids=self.ledger.ids(),
            before_index=before,
        )
        if not summaries.strip():
            return ""
        return f"{title}\n\n{summaries.strip()}"

    async def build(self, new_message: str = "", sender: Role = Role.USER,
                    plugin_message: Optional[str] = None, media_tokens: int = 0) -> AssembledPrompt:
        """
        Assemble the prompt for the next generation.

        Args:
            new_message: Text being sent, not yet logged in the history.
                Empty when the model continues on its own.
            sender: Role of ``new_message``.
            plugin_message: System text from the plugin pre-pass, placed between the
                history and the new message.
            media_tokens: Tokens already consumed by images or other media.
        """
        settings = self.settings
        sender_role = Role(sender).value
        budget = settings.max_context_length - settings.max_reply_length
        available = budget - media_tokens

        tail: List[Dict[str, str]] = []
        if plugin_message:
            tail.append({"role": Role.SYSTEM.value, "content": plugin_message})
        if new_message:
            tail.append({"role": sender_role, "content": new_message})
        for message in tail:
            available -= self._message_tokens(message["role"], message["content"])

        await self.brain.update_rag_and_inserts(
            self.ledger, new_message or None, self.history,
            include_dates=settings.include_dates_in_summaries,
        )

        search_text = new_message
        if not search_text:
            last_user = self.history.last_message(Role.USER)
            search_text = last_user.content if last_user else ""
        system_text = self._system_section(search_text)
        available -= self._message_tokens(Role.SYSTEM.value, system_text)

        has_archive = bool(self.history.archived_sessions())
        if has_archive:
            available -= settings.reserved_session_tokens
        available -= self.tokenizer.count(settings.response_start)

        packed = self._pack_history(available)

        if has_archive and settings.reserved_session_tokens > 0:
            summaries = self._session_summaries()
            if summaries:
                system_text = f"{system_text}\n\n{summaries}" if system_text else summaries

        messages: List[Dict[str, str]] = []
        if system_text:
            messages.append({"role": Role.SYSTEM.value, "content": system_text})
        messages.extend(packed)
        messages.extend(tail)

        total = sum(self._message_tokens(m["role"], m["content"]) for m in messages)
        total += self.tokenizer.count(settings.response_start) + media_tokens
        overflow = max(0, total - budget)
        if overflow:
            log_display(logger, logging.WARNING, f"The prompt is {overflow} tokens over the limit.")
        logger.debug(f"Prompt assembled: {len(messages)} messages, {total}/{budget} tokens, "
                     f"{len(self.ledger)} inserts staged.")
        return AssembledPrompt(messages=messages, token_count=total, budget=budget,
                               overflow=overflow, response_start=settings.response_start)
