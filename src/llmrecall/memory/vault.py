# src/llmrecall/memory/vault.py
"""
In-memory vector vault for llmrecall.

The vault holds one float32 matrix of L2-normalized embeddings and a dense
lookup table mapping row number (the vector id) to the memory it came from.
Search is an exact k-nearest-neighbour scan: one matrix-vector product,
then a partial sort of the distances.

The structure is built in bulk. Adding memories later rebuilds the matrix
from the existing rows plus the new ones, and every rebuild swaps the new
matrix and lookup table in with a single assignment. The vault holds no
lock and must be driven from one conversation flow.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import numpy as np

from ..exceptions import VaultCorruptionError
from ..models import MemoryUnit

logger = logging.getLogger(__name__)


@dataclass
class VaultResult:
    """A search hit. ``distance`` may be adjusted by reranking."""
    memory: MemoryUnit
    distance: float


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """``clamp(1 - dot(a, b), 0, 2)`` for two normalized vectors. 2.0 when either is empty or sizes differ."""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 2.0
    dot = float(np.dot(np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)))
    return float(np.clip(1.0 - np.clip(dot, -1.0, 1.0), 0.0, 2.0))


class MemoryVault:
    """
    Exact KNN index over memory embeddings.

    Args:
        dimension: Expected vector size. Taken from the first loaded vector when omitted.
    """

    def __init__(self, dimension: Optional[int] = None):
        self._expected_dimension = dimension
        self._matrix: Optional[np.ndarray] = None
        self._lookup: List[MemoryUnit] = []

    def __len__(self) -> int:
        return len(self._lookup)

    @property
    def count(self) -> int:
        return len(self._lookup)

    @property
    def dimension(self) -> Optional[int]:
        if self._matrix is not None:
            return int(self._matrix.shape[1])
        return self._expected_dimension

    def memories(self) -> List[MemoryUnit]:
        """Memories in vector-id order."""
        return list(self._lookup)

    def clear(self) -> None:
        """Drop the index and the lookup table."""
        self._matrix = None
        self._lookup = []

    def _build_matrix(self, vectors: List[Sequence[float]], dimension: int) -> np.ndarray:
        for vector in vectors:
            if len(vector) != dimension:
                raise VaultCorruptionError(
                    expected=dimension, actual=len(vector),
                    message="Error adding items to the vault: inconsistent vector dimensions.",
                )
        return np.asarray(vectors, dtype=np.float32).reshape(len(vectors), dimension)

    def add_memories(self, items: Iterable[MemoryUnit]) -> int:
        """
        Bulk load memories. Vector ids follow insertion order.

        Memories without an embedding are skipped with a warning.

        Returns:
            Number of memories added.

        Raises:
            VaultCorruptionError: If vector dimensions disagree.
        """
        items = list(items)
        usable = [m for m in items if m.embedding]
        skipped = len(items) - len(usable)
        if skipped:
            logger.warning(f"Skipped {skipped} memories without embeddings while loading the vault.")
        if not usable:
            return 0

        lookup = self._lookup + usable
        vectors = ([] if self._matrix is None else self._matrix.tolist()) + [m.embedding for m in usable]
        matrix = self._build_matrix(vectors, self.dimension or len(vectors[0]))
        self._matrix, self._lookup = matrix, lookup
        logger.debug(f"Vault rebuilt with {len(lookup)} vectors (dimension {matrix.shape[1]}).")
        return len(usable)

    def search(self, query_vector: Sequence[float], k: int, max_distance: Optional[float] = None) -> List[VaultResult]:
        """
        Return up to ``k`` memories closest to ``query_vector``, nearest first.

        Entries farther than ``max_distance`` are dropped. An empty vault, a
        non-positive ``k`` or a query of the wrong size yield an empty list.
        """
        matrix, lookup = self._matrix, self._lookup
        if matrix is None or not lookup or k <= 0 or len(query_vector) == 0:
            return []
        query = np.asarray(query_vector, dtype=np.float32)
        if query.shape[0] != matrix.shape[1]:
            logger.warning(f"Query vector has dimension {query.shape[0]}, vault holds {matrix.shape[1]}.")
            return []

        distances = np.clip(1.0 - np.clip(matrix @ query, -1.0, 1.0), 0.0, 2.0)
        n = len(lookup)
        if k < n:
            candidates = np.sort(np.argpartition(distances, k - 1)[:k])
        else:
            candidates = np.arange(n)
        ordered = candidates[np.argsort(distances[candidates], kind="stable")]

        results = []
        for idx in ordered:
            distance = float(distances[idx])
            if max_distance is not None and distance > max_distance:
                continue
            results.append(VaultResult(memory=lookup[idx], distance=distance))
        return results

    def export_vectors(self) -> List[List[float]]:
        """Vectors as a flat ordered list, matching :meth:`memories` row for row."""
        return [] if self._matrix is None else self._matrix.tolist()

    def import_vectors(self, vectors: List[List[float]], memories: List[MemoryUnit]) -> None:
        """
        Restore the index from :meth:`export_vectors` output.

        Raises:
            VaultCorruptionError: If the two lists differ in length or vector sizes disagree.
        """
        if len(vectors) != len(memories):
            raise VaultCorruptionError(
                expected=len(memories), actual=len(vectors),
                message="Exported vectors do not match the lookup table.",
            )
        if not vectors:
            self.clear()
            return
        matrix = self._build_matrix(vectors, self._expected_dimension or len(vectors[0]))
        self._matrix, self._lookup = matrix, list(memories)
