# src/llmrecall/exceptions.py
"""
Custom exceptions for the llmrecall library.

Expected conditions on the conversational path (retrieval disabled, an
embedding backend that stopped answering) are reported through outcome
values, not through these classes. The classes below are raised for
configuration mistakes, provider faults surfaced to the caller, and data
corruption that processing cannot recover from.
"""


class LLMRecallError(Exception):
    """Base class for all llmrecall specific errors."""
    def __init__(self, message: str = "An unspecified error occurred in llmrecall."):
        super().__init__(message)


class ConfigError(LLMRecallError):
    """Raised for errors related to configuration loading or validation."""
    def __init__(self, message: str = "Configuration error."):
        super().__init__(message)


class ProviderError(LLMRecallError):
    """Raised for errors originating from a generation backend."""
    def __init__(self, provider_name: str = "Unknown", message: str = "Provider error."):
        self.provider_name = provider_name
        super().__init__(f"Error with provider '{provider_name}': {message}")


class EmbeddingError(LLMRecallError):
    """Raised for errors related to embedding generation."""
    def __init__(self, model_name: str = "Unknown", message: str = "Embedding generation error."):
        self.model_name = model_name
        super().__init__(f"Error with embedding model '{model_name}': {message}")


class StorageError(LLMRecallError):
    """Base class for errors related to storage operations."""
    def __init__(self, message: str = "Storage error."):
        super().__init__(message)


class VectorStorageError(StorageError):
    """Raised for errors specific to the vector vault."""
    def __init__(self, message: str = "Vector storage error."):
        super().__init__(message)


class VaultCorruptionError(VectorStorageError):
    """
    Raised when vectors handed to the vault cannot belong to one index.

    Mixed dimensions, or an exported vector list that does not line up with
    its lookup table, mean the stored data is damaged.
    """
    def __init__(self, expected: int = 0, actual: int = 0, message: str = "Inconsistent vector data."):
        self.expected = expected
        self.actual = actual
        super().__init__(f"{message} Expected: {expected}, Actual: {actual}.")


class MemoryStoreError(StorageError):
    """Raised when persisted memory state cannot be written."""
    def __init__(self, message: str = "Memory store error."):
        super().__init__(message)


class ContextError(LLMRecallError):
    """Raised for errors related to prompt assembly."""
    def __init__(self, message: str = "Context assembly error."):
        super().__init__(message)


class GenerationBusyError(LLMRecallError):
    """Raised when the generation slot could not be acquired in time."""
    def __init__(self, timeout: float = 0.0, message: str = "Generation slot is busy."):
        self.timeout = timeout
        super().__init__(f"{message} Waited {timeout:.1f}s.")
