"""MetaObserver: the built-in distress sensor.

Listens for signals that express an inability to proceed (not mere urgency
or intensity) and, when it senses one, emits a natural-language request for
a helper. The router recognizes that request by its meaning and hands it to
the spawner; nothing here calls the spawner directly.

Seed patterns are deliberately minimal and domain-free. The chat model does
the actual judgement; the receptor field only decides what gets looked at.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AsyncIterator, Callable, Optional

import numpy as np

from biosphere.signal.agent import OrganicAgent
from biosphere.signal.signal import ReceptorField, Signal
from biosphere.signal.similarity import as_vector, cosine_similarity

if TYPE_CHECKING:
    from biosphere.ecosystem.protocols import LLMBackend

logger = logging.getLogger(__name__)

META_OBSERVER_ID = "meta-observer"

DISTRESS_SEED_PATTERNS = [
    "uncertainty",
    "confusion",
    "contradiction",
    "unable",
    "cannot",
    "stuck",
    "conflicting",
    "unclear",
]
META_OBSERVER_THRESHOLD = 0.5

# Signals this similar to the last accepted one are ignored
FATIGUE_SIMILARITY = 0.9
# Classifier answers this similar to the anchor mean "no distress"
NO_DISTRESS_SIMILARITY = 0.8
NO_DISTRESS_ANCHOR = "no distress detected, no problem found, this is not distress"

CLASSIFIER_PROMPT = (
    "You are a meta-observer that senses when systems cannot proceed.\n\n"
    "Distress = inability to move forward (stuck, contradictory, unclear)\n"
    "NOT distress = intensity, urgency, or completed decisions\n\n"
    "Examples of TRUE distress across domains:\n"
    '- Business: "These recommendations contradict each other"\n'
    '- Music: "This chord progression feels unresolved"\n'
    '- Dreams: "The symbols blur together, no clear meaning"\n'
    "- Science: \"Data doesn't support either hypothesis\"\n\n"
    "If you detect inability to proceed:\n"
    "1. Describe what perspective/capability would help\n"
    "2. Explain the gap naturally\n"
    "Respond in 1-2 sentences, naturally.\n\n"
    'If this is NOT distress (just intensity/urgency), respond: "no distress detected"'
)


class MetaObserver(OrganicAgent):
    """Distress observer with olfactory fatigue.

    Attributes:
        should_consider: Optional filter applied before a signal is buffered
    """

    def __init__(
        self,
        llm: "LLMBackend",
        should_consider: Optional[Callable[[Signal], bool]] = None,
    ):
        super().__init__(
            id=META_OBSERVER_ID,
            name="MetaObserver",
            receptor_field=ReceptorField(
                patterns=list(DISTRESS_SEED_PATTERNS),
                threshold=META_OBSERVER_THRESHOLD,
            ),
        )
        self._llm = llm
        self.should_consider = should_consider
        self._distress_buffer: list[Signal] = []
        self._last_accepted: Optional[np.ndarray] = None
        self._no_distress_vector: Optional[np.ndarray] = None

    async def perceive(self, signal: Signal) -> None:
        if self.should_consider is not None and not self.should_consider(signal):
            return

        if self._last_accepted is not None:
            similarity = cosine_similarity(signal.pheromone, self._last_accepted)
            if similarity > FATIGUE_SIMILARITY:
                logger.debug(
                    f"MetaObserver ignoring near-duplicate signal from {signal.emitted_by} "
                    f"(similarity={similarity:.2f})"
                )
                return

        logger.info(f"MetaObserver: possible distress from {signal.emitted_by}: {signal.thought[:150]}")
        self._distress_buffer.append(signal)
        self._context.append(signal)
        self._last_accepted = signal.pheromone

    async def emit(self) -> AsyncIterator[str]:
        if not self._distress_buffer:
            return

        latest = self._distress_buffer[-1]
        try:
            analysis = await self._llm.chat([
                {"role": "system", "content": CLASSIFIER_PROMPT},
                {
                    "role": "user",
                    "content": f'Signal from {latest.emitted_by}:\n\n"{latest.thought}"\n\nWhat do you sense?',
                },
            ])
            is_distress = await self._is_distress(analysis)
        finally:
            self._distress_buffer.clear()
            self._context.mark_emitted()

        if not is_distress:
            logger.info("MetaObserver: no distress detected (intensity or decision)")
            return

        logger.info(f"MetaObserver: distress sensed from {latest.emitted_by}, requesting helper")
        yield (
            f"I sense {latest.emitted_by} cannot proceed. {analysis.strip().rstrip('.')}. "
            "Perhaps spawning a helper perspective would resolve this."
        )

    async def _is_distress(self, analysis: str) -> bool:
        """Classify the model's answer by similarity to the no-distress anchor."""
        response_vector = as_vector(await self._llm.embed(analysis.strip()))
        if self._no_distress_vector is None:
            self._no_distress_vector = as_vector(await self._llm.embed(NO_DISTRESS_ANCHOR))
        return cosine_similarity(response_vector, self._no_distress_vector) <= NO_DISTRESS_SIMILARITY

    @property
    def buffered(self) -> int:
        """Signals waiting to be classified."""
        return len(self._distress_buffer)
