# src/llmrecall/memory/retrieval.py
"""
Retrieval engine for llmrecall.

Embeds text, owns the persona's :class:`MemoryVault`, and turns raw nearest
neighbours into ranked, reranked candidates. Retrieval is an optional
enhancement of the conversation: when it is switched off every call returns
an empty or neutral result, and when the embedding backend fails the engine
logs the fault, disables itself and carries on returning neutral results.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Union

import numpy as np

from ..config.models import RetrievalSettings
from ..exceptions import VaultCorruptionError, VectorStorageError
from ..logging_config import log_display
from ..models import MIXED_EMBED_CATEGORIES, ChatSession, MemoryUnit
from .vault import MemoryVault, VaultResult, cosine_distance

if TYPE_CHECKING:
    from ..persona import Persona

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    OK = "ok"
    DISABLED = "disabled"
    FAILED = "failed"


@dataclass
class EmbeddingOutcome:
    """Result of an embedding request. ``vector`` is unit length when ``status`` is ``ok``."""
    status: OutcomeStatus
    vector: List[float] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK


def normalize(vector: Sequence[float]) -> Optional[List[float]]:
    """L2-normalize ``vector``. None for zero, empty or non-finite input."""
    arr = np.asarray(vector, dtype=np.float64)
    if arr.size == 0 or not np.all(np.isfinite(arr)):
        return None
    norm = np.linalg.norm(arr)
    if norm == 0:
        return None
    return (arr / norm).tolist()


def merge_embeddings(first: Sequence[float], second: Sequence[float],
                     first_weight: float = 0.2, second_weight: float = 0.8) -> List[float]:
    """
    Weighted sum of two embeddings, re-normalized.

    An empty side yields the other one unchanged. Vectors of different sizes
    cannot be fused and yield an empty list.
    """
    if len(first) == 0:
        return list(second)
    if len(second) == 0:
        return list(first)
    if len(first) != len(second):
        logger.warning(f"Cannot merge embeddings of sizes {len(first)} and {len(second)}.")
        return []
    merged = (np.asarray(first, dtype=np.float64) * first_weight
              + np.asarray(second, dtype=np.float64) * second_weight)
    return normalize(merged) or []


class RetrievalEngine:
    """
    Embedding, indexing and ranked search for one persona.

    Args:
        embedder: Anything with ``async generate_embedding(text)``, such as a
            :class:`~llmrecall.embedding.base.BaseEmbeddingModel` or the
            :class:`~llmrecall.embedding.manager.EmbeddingManager`.
        settings: Retrieval settings.
        persona: Persona whose sources are indexed. Can be set later with :meth:`set_persona`.
    """

    def __init__(self, embedder, settings: Optional[RetrievalSettings] = None,
                 persona: Optional["Persona"] = None):
        self._embedder = embedder
        self.settings = settings or RetrievalSettings()
        self.enabled = self.settings.enabled and embedder is not None
        self.persona = persona
        self.vault = MemoryVault()
        self.rebuild_count = 0
        self.last_error: Optional[str] = None

    def disable(self, reason: str) -> None:
        if self.enabled:
            log_display(logger, logging.WARNING, f"Retrieval disabled: {reason}")
        self.enabled = False
        self.last_error = reason

    def enable(self) -> None:
        """Re-enable after a failure. The next search rebuilds the index if it is empty."""
        if self._embedder is None:
            return
        self.enabled = True
        self.last_error = None

    async def embed(self, text: str) -> EmbeddingOutcome:
        """
        Embed ``text`` and L2-normalize the result.

        Input is cut to ``max_embedding_chars`` first. A backend exception or
        a degenerate vector disables the engine and yields ``failed``.
        """
        if not self.enabled:
            return EmbeddingOutcome(OutcomeStatus.DISABLED)
        text = (text or "")[: self.settings.max_embedding_chars]
        if not text.strip():
            return EmbeddingOutcome(OutcomeStatus.FAILED, error="empty input")
        try:
            raw = await self._embedder.generate_embedding(text)
        except Exception as e:
            logger.error(f"Embedding request failed: {e}", exc_info=True)
            self.disable(f"embedding backend error: {e}")
            return EmbeddingOutcome(OutcomeStatus.FAILED, error=str(e))
        vector = normalize(raw or [])
        if vector is None:
            self.disable("embedding backend returned an empty or zero vector")
            return EmbeddingOutcome(OutcomeStatus.FAILED, error="degenerate vector")
        return EmbeddingOutcome(OutcomeStatus.OK, vector)

    async def embed_text(self, text: str) -> List[float]:
        """Normalized embedding of ``text``, or an empty list when retrieval is off or failed."""
        outcome = await self.embed(text)
        return outcome.vector if outcome.ok else []

    async def embed_memory(self, memory: MemoryUnit) -> bool:
        """
        Compute and store the embedding of ``memory``.

        Sessions, journals and other mixed categories fuse the name and
        content embeddings; everything else embeds its content.

        Returns:
            True when the memory now carries an embedding.
        """
        content = self.persona.replace_macros(memory.content) if self.persona else memory.content
        if memory.category in MIXED_EMBED_CATEGORIES and memory.name.strip():
            title = await self.embed_text(memory.name)
            body = await self.embed_text(content)
            vector = merge_embeddings(title, body, self.settings.title_weight, self.settings.content_weight)
        else:
            vector = await self.embed_text(content)
        if not vector:
            return False
        memory.embedding = vector
        return True

    def merge_embeddings(self, first: Sequence[float], second: Sequence[float]) -> List[float]:
        return merge_embeddings(first, second, self.settings.title_weight, self.settings.content_weight)

    async def rebuild_index(self, persona: Optional["Persona"] = None) -> int:
        """
        Rebuild the vault from the persona's sources and swap it in.

        Returns:
            Number of vectors in the new vault.

        Raises:
            VectorStorageError: If the sources hold vectors of different sizes.
        """
        if persona is not None:
            self.persona = persona
        self.rebuild_count += 1
        if self.persona is None:
            logger.debug("Index rebuild requested without a persona; vault left empty.")
            self.vault = MemoryVault()
            return 0

        sources = self.persona.memory_sources()
        vault = MemoryVault()
        try:
            vault.add_memories(sources)
        except VaultCorruptionError as e:
            logger.error(f"Error adding items to the vault for persona '{self.persona.name}': {e}")
            raise VectorStorageError(f"Error adding items to the vault: {e}") from e
        self.vault = vault
        logger.info(f"Vault rebuilt for persona '{self.persona.name}': {len(vault)} vectors.")
        return len(vault)

    def invalidate_index(self) -> None:
        """Drop the vault; the next search rebuilds it."""
        self.vault = MemoryVault()

    async def set_persona(self, persona: "Persona") -> None:
        """Switch to another persona. The index is rebuilt from scratch."""
        self.persona = persona
        self.vault = MemoryVault()
        if self.enabled:
            await self.rebuild_index()

    def is_roleplay_query(self, query: str) -> bool:
        lowered = f" {query.lower()}"
        return any(indicator in lowered for indicator in self.settings.roleplay_indicators)

    async def search(self, query: str, max_results: Optional[int] = None,
                     max_distance: Optional[float] = None,
                     exclude_ids: Optional[Iterable[str]] = None) -> List[VaultResult]:
        """
        Ranked memories relevant to ``query``, nearest first.

        The vault is over-sampled so that reranking has room to work:
        roleplay sessions move ``tone_epsilon`` closer to roleplay queries
        and the same amount away from other queries, and sticky sessions are
        pushed out of reach because they are staged separately. The cutoff
        and the ``max_results`` trim apply after reranking.
        """
        if not self.enabled:
            return []
        max_results = self.settings.max_results if max_results is None else max_results
        max_distance = self.settings.max_distance if max_distance is None else max_distance
        if max_results <= 0:
            return []

        if len(self.vault) == 0:
            await self.rebuild_index()
            if len(self.vault) == 0:
                return []

        outcome = await self.embed(query)
        if not outcome.ok:
            return []

        excluded = set(exclude_ids or ())
        to_retrieve = max(max_results * 2 + self.settings.oversample_margin, self.settings.min_candidates)
        candidates = self.vault.search(outcome.vector, to_retrieve)

        roleplay_query = self.is_roleplay_query(query)
        for result in candidates:
            memory = result.memory
            if not isinstance(memory, ChatSession):
                continue
            if memory.is_roleplay:
                result.distance += -self.settings.tone_epsilon if roleplay_query else self.settings.tone_epsilon
            if memory.sticky:
                result.distance += self.settings.sticky_penalty

        ranked = [r for r in candidates if r.distance <= max_distance and r.memory.id not in excluded]
        ranked.sort(key=lambda r: r.distance)
        return ranked[:max_results]

    async def _vector_of(self, item: Union[str, MemoryUnit]) -> List[float]:
        if isinstance(item, MemoryUnit):
            return list(item.embedding or [])
        return await self.embed_text(item)

    async def distance(self, a: Union[str, MemoryUnit], b: Union[str, MemoryUnit]) -> float:
        """Cosine distance between two texts or memories; 2.0 whenever it cannot be computed."""
        if not self.enabled:
            return 2.0
        first = await self._vector_of(a)
        if not first:
            return 2.0
        second = await self._vector_of(b)
        return cosine_distance(first, second)
