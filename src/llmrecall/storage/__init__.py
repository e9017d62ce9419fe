# src/llmrecall/storage/__init__.py
"""Persistence of memory state."""

from .json_store import JsonMemoryStore

__all__ = ["JsonMemoryStore"]
