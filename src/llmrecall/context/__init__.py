# src/llmrecall/context/__init__.py
"""
Prompt assembly within a token budget.
"""

from .builder import AssembledPrompt, ContextAssembler
from .tokens import TokenCounter

__all__ = ["AssembledPrompt", "ContextAssembler", "TokenCounter"]
