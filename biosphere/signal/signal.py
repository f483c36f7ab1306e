"""Signals: natural-language thoughts carried by a pheromone vector.

Agents never exchange structured messages. A signal is a raw thought plus
the embedding the router attaches to it; delivery is decided entirely by
how strongly that embedding resonates with each agent's receptor field.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

import numpy as np

from biosphere.signal.similarity import Vector, as_vector, cosine_similarity

# Reserved emitters that are not agents
EXTERNAL = "external"
SYSTEM = "system"
ENVIRONMENT = "environment"

# Authors whose signals are broadcast to every live agent
BROADCAST_SENTINELS = frozenset({EXTERNAL, SYSTEM})

DEFAULT_RECEPTOR_THRESHOLD = 0.6


def generate_signal_id() -> str:
    """Generate a unique signal id."""
    return f"signal-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, eq=False)
class Signal:
    """An emitted thought.

    Signals are immutable: the router appends each one to history exactly
    once, and synapses produce new signals via `with_thought` rather than
    editing the original.

    Attributes:
        id: Unique identifier
        thought: Raw natural-language thought
        emitted_by: Agent id or one of the reserved sentinels
        pheromone: Embedding of the thought (set by the router)
        timestamp: When the signal was created
        inferred_intent: Optional intent label, observability only
        inferred_tags: Optional tags, observability only
    """

    thought: str
    emitted_by: str
    pheromone: np.ndarray = field(repr=False)
    id: str = field(default_factory=generate_signal_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    inferred_intent: Optional[str] = None
    inferred_tags: tuple[str, ...] = ()

    def __post_init__(self):
        vector = np.array(self.pheromone, dtype=np.float64).reshape(-1)
        vector.setflags(write=False)
        object.__setattr__(self, "pheromone", vector)
        object.__setattr__(self, "inferred_tags", tuple(self.inferred_tags))

    @property
    def dimension(self) -> int:
        """Pheromone dimensionality."""
        return int(self.pheromone.shape[0])

    def with_thought(self, thought: str, emitted_by: Optional[str] = None) -> "Signal":
        """Return a copy carrying a different thought (and optionally author)."""
        return replace(
            self,
            thought=thought,
            emitted_by=emitted_by if emitted_by is not None else self.emitted_by,
        )

    def to_dict(self) -> dict:
        """Serialize for logging."""
        return {
            "id": self.id,
            "thought": self.thought,
            "emitted_by": self.emitted_by,
            "timestamp": self.timestamp.isoformat(),
            "dimension": self.dimension,
            "inferred_intent": self.inferred_intent,
            "inferred_tags": list(self.inferred_tags),
        }


def create_signal(
    thought: str,
    emitted_by: str,
    pheromone: Vector,
    inferred_intent: Optional[str] = None,
    inferred_tags: Optional[list[str]] = None,
) -> Signal:
    """Create a signal for a thought that has already been embedded."""
    return Signal(
        thought=thought,
        emitted_by=emitted_by,
        pheromone=as_vector(pheromone),
        inferred_intent=inferred_intent,
        inferred_tags=tuple(inferred_tags or ()),
    )


@dataclass
class ReceptorField:
    """What an agent cares about.

    Attributes:
        patterns: Natural-language phrases the agent resonates with
        threshold: Cosine similarity a pheromone must exceed to be received
    """

    patterns: list[str]
    threshold: float = DEFAULT_RECEPTOR_THRESHOLD

    def __post_init__(self):
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"Receptor threshold must be in [0, 1], got {self.threshold}")

    def embedding_text(self) -> str:
        """Text the router embeds to build this field's receptor vector."""
        return ". ".join(self.patterns)

    def describe(self) -> str:
        return ", ".join(self.patterns)


def resonates(
    pheromone: Vector,
    receptor_field: ReceptorField,
    receptor_embedding: Vector,
) -> bool:
    """Check whether a pheromone resonates with a cached receptor embedding.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    return cosine_similarity(pheromone, receptor_embedding) > receptor_field.threshold
