"""Organic agents: perceive signals, emit natural-language thoughts.

Every agent variant shares one interface with the router:

- `perceive(signal)` appends to the agent's private context and never fails
- `emit()` is an async generator producing a finite stream of thoughts

Emission is gated on change. An agent that has perceived nothing new since
its last emission has nothing to say and makes no backend call.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterator, Callable, Optional

from biosphere.signal.signal import ReceptorField, Signal

if TYPE_CHECKING:
    from biosphere.ecosystem.protocols import LLMBackend

logger = logging.getLogger(__name__)


def format_context_entry(signal: Signal) -> str:
    """Render a perceived signal as a context entry."""
    return f"[Signal from {signal.emitted_by} at {signal.timestamp.isoformat()}]:\n{signal.thought}"


@dataclass
class AgentContext:
    """Per-agent perception log plus the emission watermark.

    Attributes:
        entries: Rendered perceptions, oldest first
        watermark: Number of entries already covered by an emission
        last_signal: Most recently perceived signal (for programmatic agents)
    """

    entries: list[str] = field(default_factory=list)
    watermark: int = 0
    last_signal: Optional[Signal] = None

    def append(self, signal: Signal) -> None:
        self.entries.append(format_context_entry(signal))
        self.last_signal = signal

    @property
    def pending(self) -> int:
        """Entries perceived since the last emission."""
        return len(self.entries) - self.watermark

    def has_new(self) -> bool:
        return self.pending > 0

    def mark_emitted(self) -> None:
        self.watermark = len(self.entries)

    def render(self) -> str:
        return "\n\n".join(self.entries)


class OrganicAgent(ABC):
    """Base class for every agent the biosphere can host.

    Attributes:
        id: Stable identifier used for routing and synapse keys
        name: Human-readable name (used by quorum checks)
        receptor_field: Patterns and threshold the agent resonates with
    """

    def __init__(self, id: str, name: str, receptor_field: ReceptorField):
        self.id = id
        self.name = name
        self.receptor_field = receptor_field
        self._context = AgentContext()

    async def perceive(self, signal: Signal) -> None:
        """Inject a signal into this agent's context."""
        self._context.append(signal)

    @abstractmethod
    def emit(self) -> AsyncIterator[str]:
        """Yield thoughts produced from accumulated context."""
        ...

    def get_context(self) -> list[str]:
        """Snapshot of the perception log."""
        return list(self._context.entries)

    def describe(self) -> str:
        """Name plus receptor patterns, used for quorum similarity."""
        return f"{self.name} {' '.join(self.receptor_field.patterns)}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, name={self.name!r})"


class LLMAgent(OrganicAgent):
    """Conversational agent backed by the chat model.

    Sends the full accumulated context with a fixed system prompt whenever
    something new has been perceived, and yields exactly one thought.
    """

    def __init__(
        self,
        id: str,
        name: str,
        receptor_field: ReceptorField,
        system_prompt: str,
        llm: "LLMBackend",
    ):
        super().__init__(id, name, receptor_field)
        self.system_prompt = system_prompt
        self._llm = llm

    async def emit(self) -> AsyncIterator[str]:
        if not self._context.has_new():
            return

        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self._context.render()},
        ]
        thought = await self._llm.chat(messages)

        self._context.mark_emitted()
        yield thought


EmitFunction = Callable[[Optional[Signal]], AsyncIterator[str]]


class FunctionAgent(OrganicAgent):
    """Programmatic agent driven by an async-generator function.

    The function receives the most recently perceived signal (or None) and
    the signal is cleared once the function's stream is exhausted, so each
    perception is reacted to at most once.
    """

    def __init__(
        self,
        id: str,
        name: str,
        receptor_field: ReceptorField,
        emit_fn: EmitFunction,
    ):
        super().__init__(id, name, receptor_field)
        self._emit_fn = emit_fn

    async def emit(self) -> AsyncIterator[str]:
        signal = self._context.last_signal
        async for thought in self._emit_fn(signal):
            yield thought
        self._context.last_signal = None
        self._context.mark_emitted()
