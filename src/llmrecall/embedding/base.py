# src/llmrecall/embedding/base.py
"""
Abstract Base Class for text embedding models.

The retrieval engine only needs ``generate_embedding``: text in, a
fixed-dimension float vector out. Vectors are returned as the backend
produces them; normalization is the retrieval engine's job.
"""

import abc
from typing import Any, Dict, List


class BaseEmbeddingModel(abc.ABC):
    """
    Abstract Base Class for text embedding model integrations.
    """

    @abc.abstractmethod
    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the embedding model with its specific configuration.

        Args:
            config: The provider's ``[embedding.<provider>]`` section, with
                    ``default_model`` set to the requested model name.
        """
        pass

    @property
    @abc.abstractmethod
    def model_name(self) -> str:
        """Name of the model this instance calls."""

    @abc.abstractmethod
    async def initialize(self) -> None:
        """Create clients or load models. Called once after construction."""
        pass

    @abc.abstractmethod
    async def generate_embedding(self, text: str) -> List[float]:
        """
        Generate a vector embedding for a single text string.

        Raises:
            EmbeddingError: If the embedding generation fails.
        """
        pass

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts. Subclasses override this when the backend batches."""
        embeddings = []
        for text in texts:
            embeddings.append(await self.generate_embedding(text))
        return embeddings

    async def close(self) -> None:
        """Release clients. The default implementation does nothing."""
        pass
