"""Adaptive synapses that rephrase signals between agents."""

from biosphere.synapse.metrics import SynapseMetrics
from biosphere.synapse.synapse import (
    SignalSynapse,
    SynapseTable,
    SynapticStrength,
    calculate_confidence,
)

__all__ = [
    "SignalSynapse",
    "SynapseMetrics",
    "SynapseTable",
    "SynapticStrength",
    "calculate_confidence",
]
