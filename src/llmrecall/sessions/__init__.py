# src/llmrecall/sessions/__init__.py
"""Session-grouped chat history."""

from .chatlog import Chatlog

__all__ = ["Chatlog"]
