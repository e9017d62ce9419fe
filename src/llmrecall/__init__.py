# src/llmrecall/__init__.py
"""
llmrecall - Long-term memory middleware for conversational LLM applications.

Each turn llmrecall decides which memories, world facts and earlier
conversations fit into the prompt budget, resurfaces old memories on its
own, and forgets what was never recalled.
"""

from importlib.metadata import PackageNotFoundError, version

from .config import LLMRecallSettings, load_settings
from .context import AssembledPrompt, ContextAssembler, TokenCounter
from .engine import EngineStatus, GenerationStream, RecallEngine
from .exceptions import (
    ConfigError,
    ContextError,
    EmbeddingError,
    GenerationBusyError,
    LLMRecallError,
    MemoryStoreError,
    ProviderError,
    StorageError,
    VaultCorruptionError,
    VectorStorageError,
)
from .memory import (Brain, MemoryVault, PromptInsertLedger, RetrievalEngine,
                     WorldInfo)
from .models import (ChatMessage, ChatSession, InsertionMode, MemoryCategory,
                     MemoryUnit, PromptInsert, Role)
from .persona import Persona
from .plugins import ContextPlugin, PluginResponse
from .providers import BaseProvider, GenerationChunk
from .sessions import Chatlog
from .storage import JsonMemoryStore

try:
    __version__ = version("llmrecall")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "AssembledPrompt",
    "BaseProvider",
    "Brain",
    "ChatMessage",
    "ChatSession",
    "Chatlog",
    "ConfigError",
    "ContextAssembler",
    "ContextError",
    "ContextPlugin",
    "EmbeddingError",
    "EngineStatus",
    "GenerationBusyError",
    "GenerationChunk",
    "GenerationStream",
    "InsertionMode",
    "JsonMemoryStore",
    "LLMRecallError",
    "LLMRecallSettings",
    "MemoryCategory",
    "MemoryStoreError",
    "MemoryUnit",
    "MemoryVault",
    "Persona",
    "PluginResponse",
    "PromptInsert",
    "PromptInsertLedger",
    "ProviderError",
    "RecallEngine",
    "RetrievalEngine",
    "Role",
    "StorageError",
    "TokenCounter",
    "VaultCorruptionError",
    "VectorStorageError",
    "WorldInfo",
    "load_settings",
]
