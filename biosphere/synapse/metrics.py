"""Transmission counters for a synapse (diagnostics only)."""
from dataclasses import dataclass
from typing import Optional


@dataclass
class SynapseMetrics:
    """Success/failure bookkeeping for one synapse.

    Attributes:
        success_count: Transforms that returned rephrased text (including recalls)
        failure_count: Transforms whose backend call failed
        recall_count: Transforms served from synaptic memory
        average_latency_ms: Running mean latency over successes
        last_error: Message of the most recent failure
    """

    success_count: int = 0
    failure_count: int = 0
    recall_count: int = 0
    average_latency_ms: float = 0.0
    last_error: Optional[str] = None

    def record_success(self, latency_ms: float, recalled: bool = False) -> None:
        total = self.average_latency_ms * self.success_count + latency_ms
        self.success_count += 1
        self.average_latency_ms = total / self.success_count
        if recalled:
            self.recall_count += 1

    def record_failure(self, error: BaseException) -> None:
        self.failure_count += 1
        self.last_error = str(error) or type(error).__name__

    @property
    def attempts(self) -> int:
        return self.success_count + self.failure_count

    def to_dict(self) -> dict:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "recall_count": self.recall_count,
            "average_latency_ms": self.average_latency_ms,
            "last_error": self.last_error,
        }
