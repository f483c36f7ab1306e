"""Equilibrium detection: has the society finished thinking?

Instead of AND-gating independent conditions, the detector scores an energy
function over the recent conversation:

    E = 0.4·tension + 0.1·momentum + 0.3·(1 − coherence) + 0.2·(1 − clarity)

and declares equilibrium when the energy is low and its gradient is near
zero, i.e. the system sits in a stable low-energy state.

Dimensions:
    tension: distance between the scenario's ideal end state and what the
        last few signals actually say
    momentum: recent signal activity relative to earlier activity
    coherence: mean pairwise similarity of recent pheromones (consensus)
    clarity: closest approach of any recent pheromone to a set of
        "decision reached" anchors

Stagnation is tracked separately: tension that stays high while coherence
or clarity stays low for several consecutive invocations means the
deliberation is deadlocked and the router should intervene.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np

from biosphere.config import DetectorConfig
from biosphere.signal.similarity import as_vector, cosine_similarity

if TYPE_CHECKING:
    from biosphere.ecosystem.protocols import LLMBackend
    from biosphere.signal.agent import OrganicAgent
    from biosphere.signal.signal import Signal

logger = logging.getLogger(__name__)

ENERGY_WEIGHTS = {
    "tension": 0.4,
    "momentum": 0.1,
    "coherence": 0.3,
    "clarity": 0.2,
}

DECISION_ANCHORS = [
    "We have made a final decision and will proceed with this course of action",
    "The conclusion is clear and we agree on the path forward",
    "After careful consideration, we have reached a definitive resolution",
    "The plan is settled and we know exactly what to do next",
]

IDEAL_STATE_PROMPT = "\n".join([
    "You extract the IDEAL END STATE from a scenario.",
    "",
    "Given a problem/scenario, describe what a SATISFIED state looks like:",
    '- What would it mean for this problem to be "resolved"?',
    "- What outcome would reduce the tension to zero?",
    '- What does "finished thinking" look like?',
    "",
    "Be specific but concise (1-2 sentences).",
])


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass
class EquilibriumState:
    """Detector output for one tick.

    Attributes:
        at_equilibrium: Energy low and stable
        goal_tension: Distance to the ideal state (0 = resolved)
        momentum: Recent vs. previous activity, normalized to [0, 1]
        coherence: Mean pairwise similarity of recent signals
        decision_clarity: Max similarity to a decision anchor
        is_stagnant: Deadlock detected over the stagnation window
        energy: Weighted disorder in [0, 1]
        energy_gradient: Approximate rate of change of energy
        reasoning: Human-readable summary (observability only)
    """

    at_equilibrium: bool
    goal_tension: float
    momentum: float
    coherence: float
    decision_clarity: float
    is_stagnant: bool
    reasoning: str
    energy: float = 1.0
    energy_gradient: float = 1.0

    def to_dict(self) -> dict:
        return {
            "at_equilibrium": self.at_equilibrium,
            "goal_tension": self.goal_tension,
            "momentum": self.momentum,
            "coherence": self.coherence,
            "decision_clarity": self.decision_clarity,
            "is_stagnant": self.is_stagnant,
            "energy": self.energy,
            "energy_gradient": self.energy_gradient,
            "reasoning": self.reasoning,
        }


@dataclass
class StagnationSample:
    tick: int
    tension: float
    coherence: float
    clarity: float


class EquilibriumDetector:
    """Energy-based convergence detector.

    State lives only as long as the run: the ideal-state cache (one
    embedding per scenario string), the decision-anchor embeddings, a
    bounded stagnation window and an invocation counter.
    """

    def __init__(self, llm: "LLMBackend", config: Optional[DetectorConfig] = None):
        self._llm = llm
        self.config = config or DetectorConfig()
        self._ideal_state_cache: dict[str, np.ndarray] = {}
        self._ideal_state_text: dict[str, str] = {}
        self._anchor_embeddings: Optional[list[np.ndarray]] = None
        self._stagnation: deque[StagnationSample] = deque(maxlen=self.config.stagnation_window)
        self._invocations = 0

    @property
    def invocations(self) -> int:
        return self._invocations

    def ideal_state(self, scenario: str) -> Optional[str]:
        """Cached ideal-state text for a scenario, if extracted."""
        return self._ideal_state_text.get(scenario)

    async def detect(
        self,
        scenario: str,
        signals: Sequence["Signal"],
        agents: Sequence["OrganicAgent"] = (),
    ) -> EquilibriumState:
        """Score the current conversation against the scenario.

        Args:
            scenario: Scenario text the society is working on
            signals: Full signal history, oldest first
            agents: Live agents (currently informational)

        Returns:
            EquilibriumState for this invocation
        """
        self._invocations += 1
        cfg = self.config

        if len(signals) < cfg.min_signal_window:
            return self._not_ready("Insufficient signal history to detect equilibrium")

        if self._invocations < cfg.min_ticks:
            return self._not_ready(
                f"Early dialogue (tick {self._invocations}/{cfg.min_ticks}) - allowing agents to deliberate"
            )

        ideal_vector = await self._ideal_state_vector(scenario)
        recent = list(signals[-cfg.signal_window:])

        goal_tension = await self._measure_goal_tension(ideal_vector, recent)
        momentum = self._measure_momentum(signals)
        coherence = self._measure_coherence(recent)
        clarity = await self._measure_decision_clarity(recent)

        energy = self.calculate_energy(goal_tension, momentum, coherence, clarity)
        gradient = self._energy_gradient(signals)

        at_equilibrium = energy < cfg.energy_threshold and abs(gradient) < cfg.gradient_threshold

        is_stagnant = self.observe(goal_tension, coherence, clarity)

        reasoning = self._explain(
            goal_tension, momentum, coherence, clarity, energy, gradient, at_equilibrium, is_stagnant
        )
        logger.debug(f"Equilibrium check #{self._invocations}: {reasoning}")

        return EquilibriumState(
            at_equilibrium=at_equilibrium,
            goal_tension=goal_tension,
            momentum=momentum,
            coherence=coherence,
            decision_clarity=clarity,
            is_stagnant=is_stagnant,
            reasoning=reasoning,
            energy=energy,
            energy_gradient=gradient,
        )

    def _not_ready(self, reasoning: str) -> EquilibriumState:
        return EquilibriumState(
            at_equilibrium=False,
            goal_tension=1.0,
            momentum=1.0,
            coherence=0.0,
            decision_clarity=0.0,
            is_stagnant=False,
            reasoning=reasoning,
        )

    @staticmethod
    def calculate_energy(tension: float, momentum: float, coherence: float, clarity: float) -> float:
        """Weighted disorder, clamped to [0, 1]."""
        energy = (
            ENERGY_WEIGHTS["tension"] * tension
            + ENERGY_WEIGHTS["momentum"] * momentum
            + ENERGY_WEIGHTS["coherence"] * (1 - coherence)
            + ENERGY_WEIGHTS["clarity"] * (1 - clarity)
        )
        return clamp01(energy)

    async def _ideal_state_vector(self, scenario: str) -> np.ndarray:
        """Extract and embed the scenario's ideal end state, once per scenario."""
        cached = self._ideal_state_cache.get(scenario)
        if cached is not None:
            return cached

        response = await self._llm.chat([
            {"role": "system", "content": IDEAL_STATE_PROMPT},
            {
                "role": "user",
                "content": f"Scenario: {scenario}\n\nWhat is the ideal end state that would satisfy this problem?",
            },
        ])
        vector = as_vector(await self._llm.embed(response))
        self._ideal_state_cache[scenario] = vector
        self._ideal_state_text[scenario] = response
        logger.info(f"Ideal state extracted: {response[:120]}")
        return vector

    async def _measure_goal_tension(self, ideal_vector: np.ndarray, recent: list["Signal"]) -> float:
        if not recent:
            return 1.0
        current_text = " ".join(signal.thought for signal in recent)
        current_vector = await self._llm.embed(current_text)
        return clamp01(1 - cosine_similarity(ideal_vector, current_vector))

    def _measure_momentum(self, signals: Sequence["Signal"]) -> float:
        """Recent half vs. previous half of history, capped at 2x and halved."""
        if len(signals) < self.config.min_signal_window * 2:
            return 1.0

        window = len(signals) // 2
        recent_count = len(signals[-window:])
        previous_count = len(signals[-window * 2:-window])

        raw = recent_count / previous_count if previous_count > 0 else 1.0
        return clamp01(min(raw, 2.0) / 2.0)

    def _measure_coherence(self, recent: Sequence["Signal"]) -> float:
        """Mean pairwise cosine similarity of pheromones."""
        if len(recent) < 2:
            return 0.0

        total = 0.0
        pairs = 0
        for i in range(len(recent) - 1):
            for j in range(i + 1, len(recent)):
                total += cosine_similarity(recent[i].pheromone, recent[j].pheromone)
                pairs += 1

        return clamp01(total / pairs) if pairs else 0.0

    async def _measure_decision_clarity(self, recent: Sequence["Signal"]) -> float:
        if not recent:
            return 0.0

        if self._anchor_embeddings is None:
            self._anchor_embeddings = [as_vector(await self._llm.embed(anchor)) for anchor in DECISION_ANCHORS]

        clarity = 0.0
        for signal in recent:
            for anchor in self._anchor_embeddings:
                clarity = max(clarity, cosine_similarity(signal.pheromone, anchor))
        return clarity

    def _energy_gradient(self, signals: Sequence["Signal"]) -> float:
        """Change in (1 − coherence) between the last two thirds-sized windows.

        Positive means diverging, negative converging, near zero stable.
        """
        if len(signals) < self.config.min_signal_window * 2:
            return 1.0

        window = len(signals) // 3
        if window == 0:
            return 1.0
        recent = signals[-window:]
        previous = signals[-window * 2:-window]

        energy_recent = 1 - self._measure_coherence(recent)
        energy_previous = 1 - self._measure_coherence(previous)
        return (energy_recent - energy_previous) / window

    def observe(self, tension: float, coherence: float, clarity: float) -> bool:
        """Record one (tension, coherence, clarity) sample and report stagnation."""
        self._stagnation.append(
            StagnationSample(
                tick=self._invocations,
                tension=tension,
                coherence=coherence,
                clarity=clarity,
            )
        )
        return self._detect_stagnation()

    def _detect_stagnation(self) -> bool:
        cfg = self.config
        if len(self._stagnation) < cfg.stagnation_window:
            return False

        samples = list(self._stagnation)
        high_tension = all(s.tension > cfg.stagnation_tension for s in samples)
        low_coherence = all(s.coherence < cfg.stagnation_coherence for s in samples)
        low_clarity = all(s.clarity < cfg.stagnation_clarity for s in samples)
        return high_tension and (low_coherence or low_clarity)

    def _explain(
        self,
        tension: float,
        momentum: float,
        coherence: float,
        clarity: float,
        energy: float,
        gradient: float,
        at_equilibrium: bool,
        is_stagnant: bool,
    ) -> str:
        if at_equilibrium:
            return (
                f"Equilibrium: E={energy * 100:.0f}% (min), ∇E={gradient:.3f} (stable) "
                f"[Tension: {tension * 100:.0f}% Coherence: {coherence * 100:.0f}% "
                f"Clarity: {clarity * 100:.0f}%]"
            )

        if abs(gradient) >= self.config.gradient_threshold:
            issue = "system converging"
        elif energy >= self.config.energy_threshold:
            issue = "energy too high"
        else:
            issue = "stabilizing"
        marker = " STAGNANT" if is_stagnant else ""
        weak = self.weak_components(tension, momentum, coherence, clarity)
        lagging = f" lagging: {', '.join(weak)}" if weak else ""
        return (
            f"{issue}: E={energy * 100:.0f}%, ∇E={gradient:.3f}{marker} "
            f"[T:{tension * 100:.0f}% M:{momentum * 100:.0f}% "
            f"C:{coherence * 100:.0f}% Cl:{clarity * 100:.0f}%]{lagging}"
        )

    def weak_components(self, tension: float, momentum: float, coherence: float, clarity: float) -> list[str]:
        """Name the measurements outside their healthy band."""
        cfg = self.config
        weak = []
        if tension > cfg.tension_threshold:
            weak.append("tension")
        if momentum > cfg.momentum_threshold:
            weak.append("momentum")
        if coherence < cfg.coherence_threshold:
            weak.append("coherence")
        if clarity < cfg.clarity_threshold:
            weak.append("clarity")
        return weak
