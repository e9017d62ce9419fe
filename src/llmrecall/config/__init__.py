# src/llmrecall/config/__init__.py
"""Configuration models and loader for llmrecall."""

from .loader import load_default_config, load_settings
from .models import (BrainSettings, ContextSettings, LLMRecallSettings,
                     RetrievalSettings, SessionHandling, StorageSettings,
                     default_config_path)

__all__ = [
    "BrainSettings",
    "ContextSettings",
    "LLMRecallSettings",
    "RetrievalSettings",
    "SessionHandling",
    "StorageSettings",
    "default_config_path",
    "load_default_config",
    "load_settings",
]
