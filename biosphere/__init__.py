"""Semantic-resonance multi-agent biosphere.

Agents exchange raw natural-language thoughts. Each thought is embedded
into a pheromone vector, and the biosphere routes it to the agents whose
receptor fields resonate with it: directly, through a learning synapse
that rephrases it, or through a freshly spawned bridge agent.
"""

from biosphere.config import (
    BiosphereConfig,
    CouplingThresholds,
    DetectorConfig,
    SynapseConfig,
)
from biosphere.ecosystem import (
    Biosphere,
    BiosphereState,
    GenerativeSpawner,
    RunPhase,
    SignalAgentFactory,
    SignalSocietyPlanner,
)
from biosphere.equilibrium import EquilibriumDetector, EquilibriumState
from biosphere.errors import BiosphereError, BlueprintError, DimensionMismatchError
from biosphere.llm import LLMClient, LLMClientConfig, LLMError
from biosphere.signal import (
    FunctionAgent,
    LLMAgent,
    MetaObserver,
    OrganicAgent,
    ReceptorField,
    Signal,
    SignalIntentAnalyzer,
)

__all__ = [
    "Biosphere",
    "BiosphereConfig",
    "BiosphereError",
    "BiosphereState",
    "BlueprintError",
    "CouplingThresholds",
    "DetectorConfig",
    "DimensionMismatchError",
    "EquilibriumDetector",
    "EquilibriumState",
    "FunctionAgent",
    "GenerativeSpawner",
    "LLMAgent",
    "LLMClient",
    "LLMClientConfig",
    "LLMError",
    "MetaObserver",
    "OrganicAgent",
    "ReceptorField",
    "RunPhase",
    "Signal",
    "SignalAgentFactory",
    "SignalIntentAnalyzer",
    "SignalSocietyPlanner",
    "SynapseConfig",
]
