"""Collaborator contracts consumed by the biosphere router.

The router never depends on a concrete backend, spawner or environment.
Anything implementing these protocols can be plugged in; spawner and
observer methods are optional and looked up with `getattr`, so a missing
method simply means "no proposal" or "not interested".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    import numpy as np

    from biosphere.ecosystem.blueprint import BridgeBlueprint
    from biosphere.ecosystem.router import BiosphereState
    from biosphere.signal.agent import OrganicAgent
    from biosphere.signal.signal import Signal

# {"role": "system" | "user" | "assistant", "content": "..."}
ChatMessage = dict[str, str]


@runtime_checkable
class LLMBackend(Protocol):
    """Embedding + chat backend. Both calls may raise; the core never retries."""

    async def embed(self, text: str) -> "np.ndarray | Sequence[float]":
        """Embed text into a fixed-dimension vector."""
        ...

    async def chat(self, messages: list[ChatMessage]) -> str:
        """Return the assistant reply for a message list."""
        ...


@dataclass
class BridgeContext:
    """Context handed to a spawner when materializing a bridge agent."""

    signal: "Signal"
    source: "OrganicAgent"
    target: "OrganicAgent"
    existing_agents: list["OrganicAgent"] = field(default_factory=list)


class Spawner(Protocol):
    """Proposes new agents. Every method is optional.

    Implementations must return already-validated agents; raw model output
    never crosses into the router.
    """

    async def seed_from_goal(
        self,
        goal: str,
        existing_agents: list["OrganicAgent"],
    ) -> list["OrganicAgent"]:
        ...

    async def spawn_helper_for_distress(
        self,
        signal: "Signal",
        existing_agents: list["OrganicAgent"],
    ) -> Optional["OrganicAgent"]:
        ...

    async def spawn_bridge_agent(
        self,
        blueprint: "BridgeBlueprint",
        context: BridgeContext,
    ) -> Optional["OrganicAgent"]:
        ...


@dataclass
class EnvironmentSignal:
    """Reality feedback emitted by an environment tick."""

    thought: str
    emitted_by: Optional[str] = None
    inferred_intent: Optional[str] = None
    inferred_tags: list[str] = field(default_factory=list)


class Environment(Protocol):
    """A generic physics layer that reacts to the current state each tick."""

    async def tick(self, state: "BiosphereState") -> list[EnvironmentSignal]:
        ...


class BiosphereObserver(Protocol):
    """Lifecycle hooks. All optional; used for presentation and metrics."""

    def on_agent_born(self, agent: "OrganicAgent", tick: int) -> None:
        ...

    def on_agent_died(self, agent_id: str, tick: int) -> None:
        ...

    def on_signal_emitted(self, signal: "Signal", tick: int) -> None:
        ...

    def on_signal_routed(self, signal: "Signal", receivers: list["OrganicAgent"], tick: int) -> None:
        ...

    def on_agent_spawned(self, agent: "OrganicAgent", trigger: "Signal", tick: int) -> None:
        ...
