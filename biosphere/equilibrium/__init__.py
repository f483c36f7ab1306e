"""Energy-based equilibrium and stagnation detection."""

from biosphere.equilibrium.detector import EquilibriumDetector, EquilibriumState

__all__ = [
    "EquilibriumDetector",
    "EquilibriumState",
]
