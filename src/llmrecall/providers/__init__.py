# src/llmrecall/providers/__init__.py
"""Generation backend interface."""

from .base import BaseProvider, GenerationChunk

__all__ = ["BaseProvider", "GenerationChunk"]
