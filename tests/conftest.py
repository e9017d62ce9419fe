# tests/conftest.py
"""
Shared pytest fixtures for the llmrecall test suite.

Provides deterministic test doubles for the external interfaces: an
embedding backend whose vectors are derived from topic words, a scripted
generation backend, a whitespace tokenizer and a controllable clock.
"""

import asyncio
import math
import random
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, List, Optional

import pytest

from llmrecall.config.models import (BrainSettings, ContextSettings,
                                     LLMRecallSettings, RetrievalSettings)
from llmrecall.context.tokens import TokenCounter
from llmrecall.exceptions import EmbeddingError
from llmrecall.memory.brain import Brain
from llmrecall.memory.retrieval import RetrievalEngine
from llmrecall.models import utc_now
from llmrecall.persona import Persona
from llmrecall.providers.base import BaseProvider, ContextPayload, GenerationChunk

# ============================================================================
# TEST DOUBLES
# ============================================================================

TOPICS = ("cats", "dogs", "paris", "music", "chess", "rain")
DIMENSION = len(TOPICS) + 1


def unit(*weights: float) -> List[float]:
    """Normalize ``weights`` padded to the fake embedding dimension."""
    vector = list(weights) + [0.0] * (DIMENSION - len(weights))
    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector]


def topic_vector(*topics: str) -> List[float]:
    """The vector FakeEmbedder produces for a text mentioning ``topics``."""
    raw = [1.0 if t in topics else 0.0 for t in TOPICS] + [0.1]
    return unit(*raw)


class FakeEmbedder:
    """
    Embeds text by topic words.

    Each known topic word owns an axis and every text gets a small constant
    on the last axis. Texts about the same topics are identical vectors,
    texts about different topics are far apart.
    """

    def __init__(self, fail: bool = False, zero: bool = False):
        self.fail = fail
        self.zero = zero
        self.calls: List[str] = []

    async def generate_embedding(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("fake", "backend unavailable")
        if self.zero:
            return [0.0] * DIMENSION
        lowered = text.lower()
        return topic_vector(*[t for t in TOPICS if t in lowered])

    async def close(self) -> None:
        pass


class FakeProvider(BaseProvider):
    """
    Streams a scripted reply one word at a time.

    ``gate`` lets a test hold the stream open until it is set.
    """

    def __init__(self, reply: str = "Hello there friend", error: Optional[Exception] = None,
                 gate: Optional[asyncio.Event] = None):
        self.reply = reply
        self.error = error
        self.gate = gate
        self.calls: List[ContextPayload] = []
        self.closed = False

    def get_name(self) -> str:
        return "fake"

    async def stream(self, messages: ContextPayload, max_tokens: int, **kwargs: Any) -> AsyncIterator[GenerationChunk]:
        self.calls.append(messages)
        words = self.reply.split(" ")
        for i, word in enumerate(words):
            if self.gate is not None:
                await self.gate.wait()
            if self.error is not None:
                raise self.error
            token = word if i == 0 else f" {word}"
            yield GenerationChunk(token=token, finish_reason="stop" if i == len(words) - 1 else None)

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Callable returning a settable UTC time."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or utc_now().replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def tokenizer() -> TokenCounter:
    """One token per whitespace-separated word, no per-message overhead."""
    return TokenCounter(encode=str.split, tokens_per_message=0)


@pytest.fixture
def retrieval_settings() -> RetrievalSettings:
    return RetrievalSettings(max_results=3, max_distance=0.2)


@pytest.fixture
def brain_settings() -> BrainSettings:
    return BrainSettings()


@pytest.fixture
def context_settings() -> ContextSettings:
    return ContextSettings(max_context_length=1000, max_reply_length=100, reserved_session_tokens=100)


@pytest.fixture
def persona() -> Persona:
    return Persona(name="Ada", instructions="You are {{char}}, talking with {{user}}.", user_name="Sam")


@pytest.fixture
def retrieval(embedder: FakeEmbedder, retrieval_settings: RetrievalSettings, persona: Persona) -> RetrievalEngine:
    return RetrievalEngine(embedder, retrieval_settings, persona)


@pytest.fixture
def brain(persona: Persona, retrieval: RetrievalEngine, brain_settings: BrainSettings, clock: FakeClock) -> Brain:
    return Brain(persona, retrieval, brain_settings, clock=clock, rng=random.Random(7))


@pytest.fixture
def settings(context_settings: ContextSettings, retrieval_settings: RetrievalSettings) -> LLMRecallSettings:
    return LLMRecallSettings(context=context_settings, retrieval=retrieval_settings)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def vector_for():
    """The topic vector helper, for tests that build embeddings by hand."""
    return topic_vector


@pytest.fixture
def make_provider():
    """Factory for scripted providers."""
    return FakeProvider


@pytest.fixture
def make_embedder():
    return FakeEmbedder
