# src/llmrecall/embedding/openai.py
"""
OpenAI embedding model implementation for llmrecall.

Uses the OpenAI Python SDK; any OpenAI-compatible endpoint works through
``base_url``.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

try:
    from openai import AsyncOpenAI, OpenAIError
    openai_available = True
except ImportError:
    openai_available = False
    AsyncOpenAI = None  # type: ignore
    OpenAIError = Exception  # type: ignore

from ..exceptions import ConfigError, EmbeddingError
from .base import BaseEmbeddingModel

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_EMBEDDING_MODEL = "text-embedding-3-small"


class OpenAIEmbedding(BaseEmbeddingModel):
    """
    Generates text embeddings using the OpenAI API.

    Configuration keys (``[embedding.openai]``): ``api_key`` (falls back to
    the ``OPENAI_API_KEY`` environment variable inside the SDK),
    ``base_url``, ``default_model`` and ``timeout``.
    """
    _client: Optional[Any] = None

    def __init__(self, config: Dict[str, Any]):
        if not openai_available:
            raise ImportError("OpenAI library not found. Please install `openai`.")
        self._api_key: Optional[str] = config.get("api_key") or None
        self._model_name: str = config.get("default_model", DEFAULT_OPENAI_EMBEDDING_MODEL)
        self._base_url: Optional[str] = config.get("base_url") or None
        self._timeout = float(config.get("timeout", 60.0))
        logger.info(f"OpenAIEmbedding configured with model '{self._model_name}'. "
                    f"Base URL: {self._base_url or 'default'}.")

    @property
    def model_name(self) -> str:
        return self._model_name

    async def initialize(self) -> None:
        if self._client:
            return
        try:
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url, timeout=self._timeout)
            logger.debug("AsyncOpenAI client for embeddings initialized.")
        except Exception as e:
            logger.error(f"Failed to initialize AsyncOpenAI client for embeddings: {e}", exc_info=True)
            self._client = None
            raise ConfigError(f"OpenAI client initialization for embeddings failed: {e}")

    async def _create(self, inputs: List[str]) -> List[List[float]]:
        if not self._client:
            raise EmbeddingError(model_name=self._model_name, message="OpenAI client not initialized. Call initialize() first.")
        try:
            response = await self._client.embeddings.create(model=self._model_name, input=inputs)
        except OpenAIError as e:
            logger.error(f"OpenAI API error during embedding generation (model: {self._model_name}): {e}")
            raise EmbeddingError(model_name=self._model_name, message=f"OpenAI API Error: {e}")
        except asyncio.TimeoutError:
            raise EmbeddingError(model_name=self._model_name, message="Request timed out.")
        if not response.data or len(response.data) != len(inputs):
            raise EmbeddingError(model_name=self._model_name, message="API returned mismatched or no embedding data.")
        return [item.embedding for item in response.data]

    async def generate_embedding(self, text: str) -> List[float]:
        # OpenAI recommends replacing newlines for their embedding models
        return (await self._create([text.replace("\n", " ")]))[0]

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        logger.debug(f"Generating OpenAI embeddings for batch of {len(texts)} texts (model: {self._model_name})")
        return await self._create([t.replace("\n", " ") for t in texts])

    async def close(self) -> None:
        if self._client:
            try:
                await self._client.close()
            finally:
                self._client = None
