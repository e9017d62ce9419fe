# src/llmrecall/embedding/manager.py
"""
Embedding model manager for llmrecall.

Resolves ``provider:model`` identifiers to initialized embedding model
instances and caches them, so every retrieval engine of a process shares one
client per model.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Type

from ..exceptions import ConfigError, EmbeddingError
from .base import BaseEmbeddingModel
from .ollama import OllamaEmbedding
from .openai import OpenAIEmbedding

logger = logging.getLogger(__name__)

EMBEDDING_PROVIDER_CLASS_MAP: Dict[str, Type[BaseEmbeddingModel]] = {
    "openai": OpenAIEmbedding,
    "ollama": OllamaEmbedding,
}

DEFAULT_PROVIDER = "openai"


class EmbeddingManager:
    """
    Manages the initialization and access to text embedding models.

    Args:
        embedding_config: The ``[embedding]`` configuration section, keyed by provider.
        default_model: Identifier used when callers do not name a model.
    """

    def __init__(self, embedding_config: Optional[Dict[str, Dict[str, Any]]] = None,
                 default_model: Optional[str] = None):
        self._embedding_config = embedding_config or {}
        self._default_model = default_model
        self._provider_classes: Dict[str, Type[BaseEmbeddingModel]] = dict(EMBEDDING_PROVIDER_CLASS_MAP)
        self._initialized_models: Dict[str, BaseEmbeddingModel] = {}
        self._model_init_locks: Dict[str, asyncio.Lock] = {}

    def register_provider(self, name: str, model_cls: Type[BaseEmbeddingModel]) -> None:
        """Make ``name:<model>`` identifiers resolve to ``model_cls``."""
        self._provider_classes[name.lower()] = model_cls

    def _split_identifier(self, model_identifier: str) -> tuple:
        if ":" in model_identifier:
            provider, model = model_identifier.split(":", 1)
            provider = provider.lower()
        else:
            provider, model = DEFAULT_PROVIDER, model_identifier
        if provider not in self._provider_classes:
            raise ConfigError(
                f"Unknown embedding provider type '{provider}' in identifier '{model_identifier}'. "
                f"Known types: {list(self._provider_classes)}"
            )
        return provider, model

    async def get_model(self, model_identifier: Optional[str] = None) -> BaseEmbeddingModel:
        """
        Return an initialized, cached model for ``model_identifier``.

        Raises:
            ConfigError: If no identifier is available or the provider is unknown.
            EmbeddingError: If the model fails to initialize.
        """
        identifier = model_identifier or self._default_model
        if not identifier:
            raise ConfigError("No embedding model identifier given and no default configured.")

        lock = self._model_init_locks.setdefault(identifier, asyncio.Lock())
        async with lock:
            if identifier in self._initialized_models:
                return self._initialized_models[identifier]

            provider, model = self._split_identifier(identifier)
            model_cls = self._provider_classes[provider]
            instance_config = dict(self._embedding_config.get(provider, {}))
            instance_config["default_model"] = model
            try:
                instance = model_cls(instance_config)
                await instance.initialize()
            except ImportError as e:
                raise EmbeddingError(model_name=identifier, message=f"Missing dependency for {provider}: {e}") from e
            except ConfigError:
                raise
            except Exception as e:
                logger.error(f"Failed to initialize embedding model '{identifier}': {e}", exc_info=True)
                raise EmbeddingError(model_name=identifier, message=f"Initialization failed: {e}") from e

            self._initialized_models[identifier] = instance
            logger.info(f"Initialized embedding model '{identifier}' ({model_cls.__name__})")
            return instance

    async def generate_embedding(self, text: str, model_identifier: Optional[str] = None) -> List[float]:
        model = await self.get_model(model_identifier)
        return await model.generate_embedding(text)

    async def close(self) -> None:
        """Close every cached model and clear the cache."""
        for identifier, model in list(self._initialized_models.items()):
            try:
                await model.close()
            except Exception as e:
                logger.error(f"Error closing embedding model '{identifier}': {e}", exc_info=True)
        self._initialized_models.clear()
        self._model_init_locks.clear()
