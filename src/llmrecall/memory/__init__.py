# src/llmrecall/memory/__init__.py
"""
Memory subsystem: the vector vault, retrieval, the Brain lifecycle
controller, the prompt insert ledger and keyword-triggered world info.
"""

from .brain import Brain, BrainState
from .inserts import PromptInsertLedger
from .mood import MoodState
from .retrieval import EmbeddingOutcome, OutcomeStatus, RetrievalEngine
from .vault import MemoryVault, VaultResult
from .world_info import WorldInfo

__all__ = [
    "Brain",
    "BrainState",
    "EmbeddingOutcome",
    "MemoryVault",
    "MoodState",
    "OutcomeStatus",
    "PromptInsertLedger",
    "RetrievalEngine",
    "VaultResult",
    "WorldInfo",
]
