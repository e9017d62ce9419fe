# src/llmrecall/embedding/__init__.py
"""
Embedding model integrations for llmrecall.
"""

from .base import BaseEmbeddingModel
from .manager import EmbeddingManager
from .ollama import OllamaEmbedding
from .openai import OpenAIEmbedding

__all__ = ["BaseEmbeddingModel", "EmbeddingManager", "OllamaEmbedding", "OpenAIEmbedding"]
