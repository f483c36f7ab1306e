"""HTTP backend for embeddings and chat completions."""

from biosphere.llm.client import (
    LLMClient,
    LLMClientConfig,
    LLMError,
)

__all__ = [
    "LLMClient",
    "LLMClientConfig",
    "LLMError",
]
