"""Signal intent analyzer: a programmatic agent that clarifies raw requests.

Reacts only to the most recently perceived signal, asks the chat model to
restate the actionable goal, and emits that restatement as a new thought.
Identical raw text is analyzed once.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AsyncIterator, Optional

from biosphere.signal.agent import FunctionAgent
from biosphere.signal.signal import ReceptorField, Signal

if TYPE_CHECKING:
    from biosphere.ecosystem.protocols import LLMBackend

logger = logging.getLogger(__name__)

INTENT_ANALYZER_ID = "signal-intent-analyzer"

INTENT_PROMPT = "\n".join([
    "You are an intent analyzer for an autonomous multi-agent system.",
    "Given a user signal (thought), extract and clarify the TRUE actionable goal.",
    "Respond in 2-3 sentences of natural language that summarizes:",
    "- What is the core actionable goal?",
    "- What are the key observations or constraints?",
    "- What is the relevant context?",
    "",
    "Respond ONLY in natural language, no JSON.",
])


class SignalIntentAnalyzer(FunctionAgent):
    """Clarifies the actionable goal behind task-like signals."""

    def __init__(self, llm: "LLMBackend", id: str = INTENT_ANALYZER_ID):
        super().__init__(
            id=id,
            name="Signal Intent Analyzer",
            receptor_field=ReceptorField(
                patterns=["task", "goal", "scenario", "question", "problem"],
            ),
            emit_fn=self._analyze,
        )
        self._llm = llm
        self._analyzed: set[str] = set()

    async def _analyze(self, signal: Optional[Signal]) -> AsyncIterator[str]:
        if signal is None:
            return
        raw = signal.thought.strip()
        if not raw or raw in self._analyzed:
            return
        self._analyzed.add(raw)

        logger.debug(f"Analyzing intent of signal {signal.id}")
        response = await self._llm.chat([
            {"role": "user", "content": f"{INTENT_PROMPT}\n\nUser signal:\n{raw}"},
        ])
        yield response.strip()
