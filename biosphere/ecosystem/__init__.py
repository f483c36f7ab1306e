"""Router, spawner and collaborator protocols."""

from biosphere.ecosystem.blueprint import AgentBlueprint, BridgeBlueprint
from biosphere.ecosystem.protocols import (
    BiosphereObserver,
    BridgeContext,
    Environment,
    EnvironmentSignal,
    LLMBackend,
    Spawner,
)
from biosphere.ecosystem.planning import SignalAgentFactory, SignalSocietyPlanner
from biosphere.ecosystem.router import Biosphere, BiosphereState, RunPhase
from biosphere.ecosystem.spawner import GenerativeSpawner

__all__ = [
    "AgentBlueprint",
    "Biosphere",
    "BiosphereObserver",
    "BiosphereState",
    "BridgeBlueprint",
    "BridgeContext",
    "Environment",
    "EnvironmentSignal",
    "GenerativeSpawner",
    "LLMBackend",
    "RunPhase",
    "SignalAgentFactory",
    "SignalSocietyPlanner",
    "Spawner",
]
