"""Configuration for the biosphere router, synapses and equilibrium detector."""
import math
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class CouplingThresholds:
    """Similarity cut-offs used while routing a signal.

    All comparisons are strict (`>`), so a value sitting exactly on a
    boundary falls to the weaker tier.
    """

    direct: float = 0.8  # Deliver untouched
    synaptic: float = 0.5  # Rephrase through a learned synapse
    bridge: float = 0.3  # Spawn a translator agent
    ambient: float = 0.4  # Fallback when nothing resonates
    max_ambient_receivers: int = 3
    spawn_intent: float = 0.75
    quorum: float = 0.75
    distress_replay: float = 0.7
    distress_replay_limit: int = 3

    def __post_init__(self):
        if not (self.direct > self.synaptic > self.bridge):
            raise ValueError(
                "Coupling thresholds must satisfy direct > synaptic > bridge "
                f"(got {self.direct}, {self.synaptic}, {self.bridge})"
            )
        if self.max_ambient_receivers < 0:
            raise ValueError("max_ambient_receivers must be >= 0")
        if self.distress_replay_limit < 0:
            raise ValueError("distress_replay_limit must be >= 0")


@dataclass
class DetectorConfig:
    """Configuration for equilibrium detection.

    Only `energy_threshold` and `gradient_threshold` gate equilibrium. The
    per-measurement thresholds only name the lagging measurements in the
    detector's reasoning.
    """

    min_signal_window: int = 5
    min_ticks: int = 5
    signal_window: int = 10
    stagnation_window: int = 5

    energy_threshold: float = 0.35
    gradient_threshold: float = 0.1

    # Stagnation: tension stays high while coherence or clarity stays low
    stagnation_tension: float = 0.7
    stagnation_coherence: float = 0.3
    stagnation_clarity: float = 0.3

    # Healthy bands: tension and momentum at most, coherence and clarity at least
    tension_threshold: float = 0.3
    momentum_threshold: float = 0.2
    coherence_threshold: float = 0.7
    clarity_threshold: float = 0.6

    def __post_init__(self):
        if self.min_signal_window < 1:
            raise ValueError("min_signal_window must be >= 1")
        if self.signal_window < 1:
            raise ValueError("signal_window must be >= 1")
        if self.stagnation_window < 1:
            raise ValueError("stagnation_window must be >= 1")


@dataclass
class SynapseConfig:
    """Configuration for adaptive synapses."""

    memory_size: int = 256  # Max memoized transformations per synapse
    prune_efficacy: float = 0.3

    def __post_init__(self):
        if self.memory_size < 1:
            raise ValueError("memory_size must be >= 1")


@dataclass
class BiosphereConfig:
    """Configuration for a biosphere run.

    Attributes:
        max_ticks: Tick budget; `math.inf` runs until equilibrium
        tick_delay: Seconds to sleep between ticks
        auto_meta_observer: Birth the distress observer on construction
        scenario: Scenario text handed to the equilibrium detector
        thresholds: Routing cut-offs
        synapse: Synapse tuning
    """

    max_ticks: float = math.inf
    tick_delay: float = 0.0
    auto_meta_observer: bool = True
    scenario: Optional[str] = None
    thresholds: CouplingThresholds = field(default_factory=CouplingThresholds)
    synapse: SynapseConfig = field(default_factory=SynapseConfig)

    def __post_init__(self):
        if self.max_ticks < 0:
            raise ValueError("max_ticks must be >= 0")
        if self.tick_delay < 0:
            raise ValueError("tick_delay must be >= 0")
