"""Exception taxonomy for the biosphere.

Only dimension mismatches are fatal. Every other failure is contained at the
point where it happens (a single transform, spawn attempt, or environment
tick) and logged by the caller.
"""


class BiosphereError(Exception):
    """Base class for biosphere errors."""

    pass


class DimensionMismatchError(BiosphereError, ValueError):
    """Raised when two pheromone vectors have different dimensionality.

    Embedding dimensionality is constant for the lifetime of a run, so a
    mismatch means the backend changed models mid-run or a caller built a
    vector by hand. It is never coerced.
    """

    def __init__(self, left: int, right: int):
        super().__init__(f"Vector dimension mismatch: {left} vs {right}")
        self.left = left
        self.right = right


class BlueprintError(BiosphereError):
    """Raised when model output cannot be turned into an agent blueprint.

    Examples of causes:
    - No JSON object in the model response
    - Missing agent id or an empty receptor pattern list
    - Threshold outside [0, 1]
    """

    pass
