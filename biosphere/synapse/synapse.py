"""Adaptive synapses between moderately resonant agents.

A synapse rephrases a signal from the source agent's vocabulary into the
target's. It learns in a Hebbian fashion:

- every transmission is an activation
- efficacy is the running mean of transmission success
- confidence grows with a sigmoid of log-activations, scaled by efficacy
- successful rephrasings are memoized, so a repeated thought is recalled
  without another backend call

A failed transmission never blocks propagation: the original signal is
passed through unchanged.
"""

from __future__ import annotations

import logging
import math
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterator, Optional

from biosphere.config import SynapseConfig
from biosphere.synapse.metrics import SynapseMetrics

if TYPE_CHECKING:
    from biosphere.ecosystem.protocols import LLMBackend
    from biosphere.signal.signal import Signal

logger = logging.getLogger(__name__)

SynapseKey = tuple[str, str]


def sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


def calculate_confidence(activations: int, efficacy: float) -> float:
    """Confidence from track record.

    σ(ln(n + 1) − 2) · efficacy: near zero for a new synapse, asymptotic to
    efficacy as activations accumulate.
    """
    if activations == 0:
        return 0.0
    return sigmoid(math.log(activations + 1) - 2) * efficacy


@dataclass
class SynapticStrength:
    """Continuous strength metrics for one synapse.

    Attributes:
        base_similarity: Pheromone/receptor similarity when the synapse formed
        activations: Number of transmissions (monotonic)
        efficacy: Running mean of transmission success in [0, 1]
        confidence: Derived from activations and efficacy
        conduction_time: Running mean transmission latency in ms
        last_firing: When the synapse last transmitted
    """

    base_similarity: float
    activations: int = 0
    efficacy: float = 1.0
    confidence: float = 0.0
    conduction_time: float = 0.0
    last_firing: Optional[datetime] = None

    def record(self, success: bool, latency_ms: float) -> None:
        """Fold one transmission into the running means."""
        self.activations += 1
        n = self.activations
        outcome = 1.0 if success else 0.0
        self.efficacy = (self.efficacy * (n - 1) + outcome) / n
        if success:
            self.conduction_time = (self.conduction_time * (n - 1) + latency_ms) / n
        self.last_firing = datetime.now(timezone.utc)
        self.confidence = calculate_confidence(self.activations, self.efficacy)


TRANSFORM_PROMPT = "\n".join([
    "You adapt signals between agents with different vocabularies.",
    "",
    "Source context: {source}",
    "Target context: {target}",
    "",
    "Reformulate to resonate with target while preserving meaning.",
    "Natural, concise (2-4 sentences).",
])


class SignalSynapse:
    """Learning coupling from one agent to another.

    Attributes:
        from_id: Source agent id
        to_id: Target agent id
        strength: Continuous strength metrics
        metrics: Success/failure counters
    """

    def __init__(
        self,
        from_id: str,
        to_id: str,
        base_similarity: float,
        from_patterns: list[str],
        to_patterns: list[str],
        llm: "LLMBackend",
        config: Optional[SynapseConfig] = None,
    ):
        self.from_id = from_id
        self.to_id = to_id
        self.from_patterns = list(from_patterns)
        self.to_patterns = list(to_patterns)
        self.strength = SynapticStrength(base_similarity=base_similarity)
        self.metrics = SynapseMetrics()
        self._llm = llm
        self._config = config or SynapseConfig()
        self._memory: OrderedDict[str, str] = OrderedDict()

    @property
    def key(self) -> SynapseKey:
        return (self.from_id, self.to_id)

    @property
    def id(self) -> str:
        return f"{self.from_id}→{self.to_id}"

    async def transform(self, signal: "Signal") -> "Signal":
        """Rephrase a signal for the target agent.

        Returns:
            A new signal authored by the source agent carrying the rephrased
            thought, or the original signal if the backend call failed
        """
        cached = self._recall(signal.thought)
        if cached is not None:
            self.strength.record(success=True, latency_ms=0.0)
            self.metrics.record_success(0.0, recalled=True)
            return signal.with_thought(cached, emitted_by=self.from_id)

        started = time.perf_counter()
        try:
            transformed = await self._llm.chat([
                {
                    "role": "system",
                    "content": TRANSFORM_PROMPT.format(
                        source=", ".join(self.from_patterns),
                        target=", ".join(self.to_patterns),
                    ),
                },
                {"role": "user", "content": f'Transform: "{signal.thought}"'},
            ])
        except Exception as e:
            self.strength.record(success=False, latency_ms=0.0)
            self.metrics.record_failure(e)
            logger.warning(f"Synapse {self.id} failed to transmit, passing signal through: {e}")
            return signal

        latency_ms = (time.perf_counter() - started) * 1000
        self.strength.record(success=True, latency_ms=latency_ms)
        self.metrics.record_success(latency_ms)
        self._remember(signal.thought, transformed)

        return signal.with_thought(transformed, emitted_by=self.from_id)

    def _recall(self, thought: str) -> Optional[str]:
        if thought not in self._memory:
            return None
        self._memory.move_to_end(thought)
        return self._memory[thought]

    def _remember(self, thought: str, transformed: str) -> None:
        self._memory[thought] = transformed
        self._memory.move_to_end(thought)
        while len(self._memory) > self._config.memory_size:
            self._memory.popitem(last=False)

    @property
    def memory_size(self) -> int:
        return len(self._memory)

    @property
    def confidence(self) -> float:
        return self.strength.confidence

    def get_weight(self) -> float:
        """Synaptic weight = similarity × potentiation × efficacy.

        Used for diagnostics and pruning only; it never gates transmission.
        """
        potentiation = 1 + math.log(self.strength.activations + 1)
        return self.strength.base_similarity * potentiation * self.strength.efficacy

    def should_prune(self, now: datetime, idle_threshold: timedelta) -> bool:
        """Never-used synapses, or idle ones that mostly fail, are prunable."""
        if self.strength.activations == 0 or self.strength.last_firing is None:
            return True
        idle = now - self.strength.last_firing
        return idle > idle_threshold and self.strength.efficacy < self._config.prune_efficacy

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "base_similarity": self.strength.base_similarity,
            "activations": self.strength.activations,
            "efficacy": self.strength.efficacy,
            "confidence": self.strength.confidence,
            "conduction_time_ms": self.strength.conduction_time,
            "weight": self.get_weight(),
            "memory_size": self.memory_size,
            "metrics": self.metrics.to_dict(),
        }


class SynapseTable:
    """Sparse map of synapses keyed by ordered (from_id, to_id) pairs."""

    def __init__(self, llm: "LLMBackend", config: Optional[SynapseConfig] = None):
        self._llm = llm
        self._config = config or SynapseConfig()
        self._synapses: dict[SynapseKey, SignalSynapse] = {}

    def get(self, from_id: str, to_id: str) -> Optional[SignalSynapse]:
        return self._synapses.get((from_id, to_id))

    def get_or_create(
        self,
        from_id: str,
        to_id: str,
        similarity: float,
        from_patterns: list[str],
        to_patterns: list[str],
    ) -> SignalSynapse:
        """Return the synapse for an ordered pair, creating it lazily.

        `similarity` becomes the base similarity only on creation.
        """
        key = (from_id, to_id)
        synapse = self._synapses.get(key)
        if synapse is not None:
            return synapse

        synapse = SignalSynapse(
            from_id=from_id,
            to_id=to_id,
            base_similarity=similarity,
            from_patterns=from_patterns,
            to_patterns=to_patterns,
            llm=self._llm,
            config=self._config,
        )
        self._synapses[key] = synapse
        logger.info(
            f"New synapse: {synapse.id} (similarity: {similarity:.2f}, weight: {synapse.get_weight():.2f})"
        )
        return synapse

    def remove_agent(self, agent_id: str) -> int:
        """Drop every synapse touching an agent. Returns how many were removed."""
        doomed = [key for key in self._synapses if agent_id in key]
        for key in doomed:
            del self._synapses[key]
        return len(doomed)

    def prune(self, now: Optional[datetime] = None, idle_threshold: timedelta = timedelta(minutes=5)) -> list[SynapseKey]:
        """Remove prunable synapses. Never called implicitly during routing."""
        now = now or datetime.now(timezone.utc)
        doomed = [key for key, synapse in self._synapses.items() if synapse.should_prune(now, idle_threshold)]
        for key in doomed:
            del self._synapses[key]
        if doomed:
            logger.info(f"Pruned {len(doomed)} synapses")
        return doomed

    def __len__(self) -> int:
        return len(self._synapses)

    def __iter__(self) -> Iterator[SignalSynapse]:
        return iter(list(self._synapses.values()))

    def __contains__(self, key: SynapseKey) -> bool:
        return key in self._synapses
