"""Blended semantic distance between an emitter and a receptor.

Distance mixes a cheap tag overlap with embedding distance:

    distance = tag_weight * tag_distance + (1 - tag_weight) * (1 - cosine)

Tags are compared loosely ("machine-learning", "machine_learning" and
"Machine Learning" are the same tag). Missing embeddings are fetched once and
stored on the signature; when one cannot be fetched the embedding half
counts as maximally distant.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

import numpy as np

from biosphere.signal.similarity import as_vector, similarity_score

if TYPE_CHECKING:
    from biosphere.ecosystem.protocols import LLMBackend

logger = logging.getLogger(__name__)

DEFAULT_TAG_WEIGHT = 0.4

_TAG_SEPARATORS = re.compile(r"[-_\s]")


@dataclass
class SemanticSignature:
    """What an emitter offers, or what a receptor wants."""

    intent: str
    tags: list[str] = field(default_factory=list)
    embedding: Optional[np.ndarray] = None

    def embedding_input(self) -> str:
        if not self.tags:
            return self.intent
        return f"{self.intent} tags: {', '.join(self.tags)}"


def normalize_tag(tag: str) -> str:
    return _TAG_SEPARATORS.sub("", tag.lower())


def tag_distance(emitter_tags: list[str], receptor_tags: list[str]) -> float:
    """1 − (matching emitter tags / size of the raw tag union); 1.0 when both are empty."""
    union = set(emitter_tags) | set(receptor_tags)
    if not union:
        return 1.0
    wanted = {normalize_tag(tag) for tag in receptor_tags}
    overlap = sum(1 for tag in emitter_tags if normalize_tag(tag) in wanted)
    return 1.0 - overlap / len(union)


async def _ensure_embedding(signature: SemanticSignature, llm: "LLMBackend") -> Optional[np.ndarray]:
    if signature.embedding is not None:
        return signature.embedding
    try:
        signature.embedding = as_vector(await llm.embed(signature.embedding_input()))
    except Exception as e:
        logger.warning(f"Could not embed signature {signature.intent[:60]!r}: {e}")
        return None
    return signature.embedding


async def semantic_distance(
    emitter: SemanticSignature,
    receptor: SemanticSignature,
    llm: "LLMBackend",
    tag_weight: float = DEFAULT_TAG_WEIGHT,
    skip_embeddings: bool = False,
) -> float:
    """Distance in [0, 1] between an emitter and a receptor.

    Args:
        emitter: Signature of what is offered
        receptor: Signature of what is wanted
        llm: Backend used to fill in missing embeddings
        tag_weight: Share of the tag distance, clamped to [0, 1]
        skip_embeddings: Use tags alone and make no backend calls

    Returns:
        0.0 for identical meaning, 1.0 for unrelated
    """
    tags = tag_distance(emitter.tags, receptor.tags)
    if skip_embeddings:
        return float(np.clip(tags, 0.0, 1.0))

    emitter_vector, receptor_vector = await asyncio.gather(
        _ensure_embedding(emitter, llm),
        _ensure_embedding(receptor, llm),
    )
    if emitter_vector is None or receptor_vector is None:
        embedding = 1.0
    else:
        embedding = 1.0 - similarity_score(emitter_vector, receptor_vector)

    weight = float(np.clip(tag_weight, 0.0, 1.0))
    return float(np.clip(tags * weight + embedding * (1 - weight), 0.0, 1.0))
