"""Pytest configuration and shared fakes."""

import hashlib
from typing import Callable, Optional, Union

import numpy as np
import pytest

DIM = 64


def basis(index: int, dim: int = DIM) -> np.ndarray:
    """Unit vector along one axis."""
    vector = np.zeros(dim)
    vector[index] = 1.0
    return vector


def padded(*values: float, dim: int = DIM) -> np.ndarray:
    """Vector with the given leading components and zeros after.

    Integer components with integer norms (3-4-5 style) give cosines that are
    exact in floating point, which boundary tests rely on.
    """
    vector = np.zeros(dim)
    vector[:len(values)] = values
    return vector


def hashed_vector(text: str, dim: int = DIM) -> np.ndarray:
    """Deterministic pseudo-random vector for unmapped text.

    In 64 dimensions two of these are nearly orthogonal, so unmapped texts
    (anchors, agent descriptions) never cross routing thresholds by accident.
    """
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    return np.random.default_rng(seed).standard_normal(dim)


ChatReply = Union[str, Exception, Callable[[list], str]]


class FakeBackend:
    """Deterministic LLMBackend for tests.

    Embeddings come from `vectors` when the text is mapped, otherwise from
    `hashed_vector`. Chat replies are taken from the `replies` queue, then
    `default_reply`. Every call is recorded.
    """

    def __init__(
        self,
        vectors: Optional[dict] = None,
        replies: Optional[list[ChatReply]] = None,
        default_reply: str = "ok",
        dim: int = DIM,
    ):
        self.vectors = {text: np.asarray(v, dtype=float) for text, v in (vectors or {}).items()}
        self.replies = list(replies or [])
        self.default_reply = default_reply
        self.dim = dim
        self.embed_calls: list[str] = []
        self.chat_calls: list[list[dict]] = []
        self.failing_embeds: set[str] = set()

    async def embed(self, text: str) -> np.ndarray:
        self.embed_calls.append(text)
        if text in self.failing_embeds:
            raise RuntimeError(f"embedding failed for {text!r}")
        if text in self.vectors:
            return self.vectors[text].copy()
        return hashed_vector(text, self.dim)

    async def chat(self, messages: list[dict]) -> str:
        self.chat_calls.append(messages)
        reply = self.replies.pop(0) if self.replies else self.default_reply
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(messages)
        return reply

    def chats_with_system(self, prompt: str) -> list[list[dict]]:
        """Chat calls whose first message is the given system prompt."""
        return [m for m in self.chat_calls if m and m[0]["content"] == prompt]


@pytest.fixture
def fake_llm():
    """Backend with no mapped texts and an "ok" chat reply."""
    return FakeBackend()
