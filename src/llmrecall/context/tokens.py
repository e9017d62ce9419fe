# src/llmrecall/context/tokens.py
"""
Token counting for prompt assembly.

:class:`TokenCounter` wraps a tiktoken encoding. The encoding is loaded on
first use: ``encoding_for_model`` for the configured model, ``cl100k_base``
for models tiktoken does not know, and a characters/4 estimate when no
encoding can be loaded at all. Very long texts are always estimated.
"""

import logging
from typing import Any, Callable, Optional, Sequence

try:
    import tiktoken
    tiktoken_available = True
except ImportError:
    tiktoken_available = False
    tiktoken = None  # type: ignore [assignment]

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "cl100k_base"


def estimate_tokens(text: str) -> int:
    return (len(text) + 3) // 4


class TokenCounter:
    """
    Counts tokens of texts and chat messages.

    Args:
        model: Model name used to select the tiktoken encoding.
        tokens_per_message: Formatting overhead added by :meth:`count_message`.
        encode: Optional replacement for the tiktoken encoder; any callable
            returning a sequence of tokens. Skips tiktoken entirely.
        estimate_above: Texts longer than this many characters are estimated.
    """

    def __init__(self, model: str = "gpt-4o", tokens_per_message: int = 3,
                 encode: Optional[Callable[[str], Sequence[Any]]] = None,
                 estimate_above: int = 200_000):
        self.model = model
        self.tokens_per_message = tokens_per_message
        self.estimate_above = estimate_above
        self._encode = encode
        self._loaded = encode is not None

    def _load_encoding(self) -> None:
        self._loaded = True
        if not tiktoken_available:
            logger.warning("tiktoken library is not installed. Token counts are estimated.")
            return
        try:
            self._encode = tiktoken.encoding_for_model(self.model).encode
            logger.debug(f"Loaded tiktoken encoding for model: {self.model}")
        except KeyError:
            logger.warning(f"No specific tiktoken encoding found for model '{self.model}'. "
                           f"Using default '{DEFAULT_ENCODING}'.")
            try:
                self._encode = tiktoken.get_encoding(DEFAULT_ENCODING).encode
            except Exception as e:
                logger.error(f"Failed to load tiktoken encoding '{DEFAULT_ENCODING}': {e}", exc_info=True)
        except Exception as e:
            logger.error(f"Failed to load tiktoken encoding for model '{self.model}': {e}", exc_info=True)

    def count(self, text: str) -> int:
        if not text:
            return 0
        if not self._loaded:
            self._load_encoding()
        if self._encode is None or len(text) > self.estimate_above:
            return estimate_tokens(text)
        try:
            return len(self._encode(text))
        except Exception as e:
            logger.error(f"Token encoding failed: {e}", exc_info=True)
            return estimate_tokens(text)

    def count_message(self, role: str, text: str) -> int:
        """Tokens of one chat message, formatting overhead included."""
        return self.count(text) + self.tokens_per_message

    def __call__(self, text: str) -> int:
        return self.count(text)
