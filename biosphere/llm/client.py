"""OpenAI-compatible embedding + chat client.

Implements the `LLMBackend` protocol over HTTP with aiohttp:

    POST {base_url}/embeddings        {"model": ..., "input": text}
    POST {base_url}/chat/completions  {"model": ..., "messages": [...]}

Usage:
    async with LLMClient(LLMClientConfig.from_env()) as llm:
        vector = await llm.embed("hello")
        reply = await llm.chat([{"role": "user", "content": "hi"}])

Calls are never retried here; callers decide how to contain failures.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

import aiohttp
import numpy as np

from biosphere.errors import BiosphereError

if TYPE_CHECKING:
    from biosphere.ecosystem.protocols import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_TIMEOUT_SECONDS = 60.0


class LLMError(BiosphereError):
    """Raised when the backend call fails.

    Examples of causes:
    - Non-2xx HTTP status (rate limit, bad key, unknown model)
    - Response body missing `data[0].embedding` or `choices[0].message.content`
    - Connection errors or timeouts

    Attributes:
        status: HTTP status when the server answered, else None
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass
class LLMClientConfig:
    """Connection settings for `LLMClient`."""

    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    api_key: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self):
        if not self.base_url:
            raise ValueError("base_url must not be empty")
        self.base_url = self.base_url.rstrip("/")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")

    @classmethod
    def from_env(cls) -> "LLMClientConfig":
        """Build a config from BIOSPHERE_* environment variables."""
        return cls(
            base_url=os.environ.get("BIOSPHERE_LLM_BASE_URL", DEFAULT_BASE_URL),
            model=os.environ.get("BIOSPHERE_LLM_MODEL", DEFAULT_MODEL),
            embedding_model=os.environ.get("BIOSPHERE_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            api_key=os.environ.get("BIOSPHERE_LLM_API_KEY") or None,
        )


class LLMClient:
    """aiohttp-backed `LLMBackend`.

    The client owns its session unless one is passed in. An owned session
    is created lazily on first use and closed by `close()` or on leaving
    the `async with` block.
    """

    def __init__(
        self,
        config: Optional[LLMClientConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config or LLMClientConfig()
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_env(cls) -> "LLMClient":
        return cls(LLMClientConfig.from_env())

    async def __aenter__(self) -> "LLMClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
            self._owns_session = True
        return self._session

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.config.base_url}{path}"
        session = self._get_session()
        try:
            async with session.post(url, json=payload, headers=self._headers()) as response:
                if response.status < 200 or response.status >= 300:
                    body = await response.text()
                    raise LLMError(
                        f"{path} returned {response.status}: {body[:200]}",
                        status=response.status,
                    )
                return await response.json()
        except asyncio.TimeoutError as e:
            raise LLMError(f"{path} timed out after {self.config.timeout}s") from e
        except (aiohttp.ClientError, ValueError) as e:
            raise LLMError(f"{path} request failed: {e}") from e

    async def embed(self, text: str) -> np.ndarray:
        """Embed text with the configured embedding model."""
        data = await self._post(
            "/embeddings",
            {"model": self.config.embedding_model, "input": text},
        )
        try:
            embedding = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Malformed embedding response: {e}") from e

        vector = np.asarray(embedding, dtype=np.float64)
        logger.debug(f"Embedded {len(text)} chars into {vector.shape[0]} dims")
        return vector

    async def chat(self, messages: list["ChatMessage"]) -> str:
        """Return the assistant reply for a message list."""
        data = await self._post(
            "/chat/completions",
            {"model": self.config.model, "messages": messages},
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Malformed chat response: {e}") from e

        if content is None:
            raise LLMError("Chat response has no content")
        return content

    async def transform(self, prompt: str, data: Any) -> str:
        """Apply an instruction to a piece of data through the chat model.

        Strings are passed through as-is; anything else is rendered as JSON.
        """
        rendered = data if isinstance(data, str) else json.dumps(data)
        return await self.chat([{"role": "user", "content": f"{prompt}\n\nData:\n{rendered}"}])
