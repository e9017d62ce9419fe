# src/llmrecall/providers/base.py
"""
Abstract Base Class for generation backends.

llmrecall does not talk to any model server itself. Applications wrap their
backend in a :class:`BaseProvider` subclass; the engine hands it assembled
prompts and consumes the streamed chunks.
"""

import abc
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import BaseModel, Field

ContextPayload = List[Dict[str, str]]


class GenerationChunk(BaseModel):
    """
    One piece of a streamed reply.

    Attributes:
        token: Text produced since the previous chunk.
        finish_reason: Set on the last chunk ("stop", "length", ...).
    """
    token: str = ""
    finish_reason: Optional[str] = Field(default=None)

    @property
    def is_final(self) -> bool:
        return self.finish_reason is not None


class BaseProvider(abc.ABC):
    """
    Interface the engine expects from a generation backend.

    Implementations raise :class:`~llmrecall.exceptions.ProviderError` for
    backend failures.
    """

    @abc.abstractmethod
    def get_name(self) -> str:
        """Unique identifier of the backend, e.g. "openai" or "koboldcpp"."""

    @abc.abstractmethod
    def stream(self, messages: ContextPayload, max_tokens: int, **kwargs: Any) -> AsyncIterator[GenerationChunk]:
        """
        Stream a reply to ``messages``.

        Implemented as an async generator; the last chunk carries a
        ``finish_reason``.
        """

    async def generate(self, messages: ContextPayload, max_tokens: int, **kwargs: Any) -> str:
        """Complete reply as one string. The default joins the streamed chunks."""
        parts: List[str] = []
        async for chunk in self.stream(messages, max_tokens, **kwargs):
            parts.append(chunk.token)
        return "".join(parts)

    async def close(self) -> None:
        """Release backend resources. Optional."""
        pass
