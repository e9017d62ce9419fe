# src/llmrecall/embedding/ollama.py
"""
Ollama embedding model implementation for llmrecall.

Talks to a local Ollama server through the official ``ollama`` library.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

try:
    from ollama import AsyncClient, ResponseError
    ollama_available = True
except ImportError:
    ollama_available = False
    AsyncClient = None  # type: ignore
    ResponseError = Exception  # type: ignore

from ..exceptions import ConfigError, EmbeddingError
from .base import BaseEmbeddingModel

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_EMBEDDING_MODEL = "mxbai-embed-large"


class OllamaEmbedding(BaseEmbeddingModel):
    """
    Generates text embeddings with a local Ollama instance.

    Configuration keys (``[embedding.ollama]``): ``host``, ``default_model``
    and ``timeout``. The model must already be pulled on the server.
    """
    _client: Optional[Any] = None

    def __init__(self, config: Dict[str, Any]):
        if not ollama_available:
            raise ImportError("Ollama library not found. Please install `ollama` (pip install llmrecall[ollama]).")
        self._host: Optional[str] = config.get("host") or None
        self._model_name: str = config.get("default_model", DEFAULT_OLLAMA_EMBEDDING_MODEL)
        timeout = config.get("timeout")
        self._timeout = float(timeout) if timeout is not None else None
        logger.info(f"OllamaEmbedding configured with model '{self._model_name}'. Host: {self._host or 'default'}.")

    @property
    def model_name(self) -> str:
        return self._model_name

    async def initialize(self) -> None:
        if self._client:
            return
        client_args: Dict[str, Any] = {}
        if self._host:
            client_args["host"] = self._host
        if self._timeout:
            client_args["timeout"] = self._timeout
        try:
            self._client = AsyncClient(**client_args)
        except Exception as e:
            logger.error(f"Failed to initialize Ollama client for embeddings: {e}", exc_info=True)
            raise ConfigError(f"Ollama client initialization for embeddings failed: {e}")

    async def generate_embedding(self, text: str) -> List[float]:
        if not self._client:
            raise EmbeddingError(model_name=self._model_name, message="Ollama client not initialized. Call initialize() first.")
        if not text:
            raise EmbeddingError(model_name=self._model_name, message="Input text cannot be empty for Ollama embeddings.")
        try:
            response = await self._client.embeddings(model=self._model_name, prompt=text)
        except ResponseError as e:
            detail = getattr(e, "error", str(e))
            if "not found" in str(detail).lower():
                raise EmbeddingError(model_name=self._model_name,
                                     message=f"Model not found locally. Pull it with 'ollama pull {self._model_name}'.")
            raise EmbeddingError(model_name=self._model_name, message=f"Ollama API Error: {detail}")
        except asyncio.TimeoutError:
            raise EmbeddingError(model_name=self._model_name, message="Request timed out.")
        embedding = response.get("embedding") if hasattr(response, "get") else getattr(response, "embedding", None)
        if not embedding:
            raise EmbeddingError(model_name=self._model_name, message="API returned no embedding data.")
        return list(embedding)
