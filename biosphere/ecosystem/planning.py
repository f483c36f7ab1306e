"""In-society planning: a planner and a factory that grow the society from signals.

The pipeline runs entirely through ordinary signals:

    SignalIntentAnalyzer  → restated goal
    SignalSocietyPlanner  → natural-language plan with a trailing JSON specification
    SignalAgentFactory    → births the planned agents, reports what it spawned

Each stage is a `FunctionAgent`, so it perceives and emits like any other
agent and can be left out of a society without affecting the router.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, Optional

from biosphere.ecosystem.blueprint import parse_json_object, parse_seed_plan
from biosphere.ecosystem.spawner import DEFAULT_MAX_AGENTS, GenerativeSpawner
from biosphere.errors import BlueprintError
from biosphere.signal.agent import FunctionAgent, OrganicAgent
from biosphere.signal.signal import ReceptorField, Signal

if TYPE_CHECKING:
    from biosphere.ecosystem.protocols import LLMBackend

logger = logging.getLogger(__name__)

PLANNER_ID = "signal-society-planner"
FACTORY_ID = "signal-agent-factory"
PLAN_VERSION = "v1-signal"

PLANNER_PROMPT = "\n".join([
    "You are a society planner that designs organic agents for a signal-based biosphere.",
    "Given a goal, describe what specialized agents would help achieve it.",
    "For each agent, naturally explain:",
    "- The agent's name and role",
    "- What patterns/concerns they should respond to",
    "- Their expertise or perspective",
    "",
    "Then provide the technical specification as JSON at the end.",
    "Use kebab-case ids. Threshold should be 0.5-0.7 (default: 0.6).",
])

PLAN_EXAMPLE = {
    "version": PLAN_VERSION,
    "goal": "...",
    "agents": [
        {
            "id": "decision-weaver",
            "name": "Decision Weaver",
            "receptor_patterns": ["recommendation", "decision", "analysis"],
            "threshold": 0.55,
            "voice": "Make calls; if stuck, say what you need.",
        }
    ],
}

EXTRACTION_PROMPT = "\n".join([
    "Extract agent spawn specifications from this signal.",
    "Look for descriptions of specialized agents to create.",
    "Return ONLY a JSON object with this structure:",
    '{"version": "v1-signal", "goal": "brief goal", "agents": [',
    '  {"id": "kebab-case-id", "name": "Agent Name", "receptor_patterns": ["pattern1", "pattern2"], '
    '"threshold": 0.6, "voice": "brief persona"}',
    "]}",
    "",
    'If you cannot find agent specifications, return: {"version": "v1-signal", "goal": "", "agents": []}',
])

BirthCallback = Callable[[OrganicAgent], Awaitable[None]]


class SignalSocietyPlanner(FunctionAgent):
    """Designs a society for each new goal it perceives.

    Emits the plan in prose followed by its JSON specification so the
    factory (or a human reading the transcript) can act on it.
    """

    def __init__(self, llm: "LLMBackend", max_agents: int = DEFAULT_MAX_AGENTS, id: str = PLANNER_ID):
        if max_agents < 1:
            raise ValueError("max_agents must be >= 1")
        super().__init__(
            id=id,
            name="Signal Society Planner",
            receptor_field=ReceptorField(patterns=["task", "goal", "scenario", "analyzed-intent"]),
            emit_fn=self._plan,
        )
        self._llm = llm
        self.max_agents = max_agents
        self._planned: set[str] = set()

    async def _plan(self, signal: Optional[Signal]) -> AsyncIterator[str]:
        if signal is None:
            return
        goal = signal.thought.strip()
        if not goal or goal in self._planned:
            return
        self._planned.add(goal)

        logger.debug(f"Planning society for signal {signal.id}")
        prompt = "\n".join([
            PLANNER_PROMPT,
            "",
            f"Goal: {goal}",
            f"Max agents: {self.max_agents}",
            "",
            "Schema:",
            json.dumps(PLAN_EXAMPLE),
        ])
        response = await self._llm.chat([{"role": "user", "content": prompt}])

        try:
            blueprints = parse_seed_plan(response)[:self.max_agents]
        except BlueprintError as e:
            logger.info(f"Could not parse society plan: {e}")
            blueprints = []

        if not blueprints:
            yield (
                f'I tried to design a society plan for "{goal}" but couldn\'t generate valid agents. '
                "The goal may need clarification."
            )
            return

        plan = {
            "version": PLAN_VERSION,
            "goal": goal,
            "agents": [blueprint.model_dump(exclude_none=True) for blueprint in blueprints],
        }
        names = ", ".join(blueprint.name for blueprint in blueprints)
        yield (
            f'I\'ve designed a society plan for the goal: "{goal}". '
            f"The plan includes {len(blueprints)} specialized agents: {names}. "
            f"Technical specification: {json.dumps(plan)}"
        )


class SignalAgentFactory(FunctionAgent):
    """Materializes the agents described in a plan signal.

    Plans are read straight from the signal when it carries a JSON
    specification; otherwise the chat model is asked to extract one.
    Each plan (keyed by its goal) is acted on once.

    Args:
        llm: Backend for extraction and for the spawned agents
        birth: Async callback admitting an agent, e.g. `Biosphere.birth`
        existing_agents: Returns the live agents, so taken ids and names are skipped
        max_agents: Cap on agents spawned from one plan
    """

    def __init__(
        self,
        llm: "LLMBackend",
        birth: BirthCallback,
        existing_agents: Optional[Callable[[], list[OrganicAgent]]] = None,
        max_agents: int = DEFAULT_MAX_AGENTS,
        id: str = FACTORY_ID,
    ):
        super().__init__(
            id=id,
            name="Signal Agent Factory",
            receptor_field=ReceptorField(
                patterns=["agent-plan", "society plan", "plan", "specialized agents", "designed"],
            ),
            emit_fn=self._materialize,
        )
        self._llm = llm
        self._birth = birth
        self._existing_agents = existing_agents or (lambda: [])
        self._spawner = GenerativeSpawner(llm, max_agents=max_agents)
        self._handled: set[str] = set()

    async def _read_plan(self, thought: str) -> dict:
        try:
            return parse_json_object(thought)
        except BlueprintError:
            logger.debug("No inline specification, asking the model to extract one")

        response = await self._llm.chat([
            {"role": "user", "content": f"{EXTRACTION_PROMPT}\n\nSignal to analyze:\n{thought}"},
        ])
        return parse_json_object(response)

    async def _materialize(self, signal: Optional[Signal]) -> AsyncIterator[str]:
        if signal is None:
            return

        try:
            plan = await self._read_plan(signal.thought)
        except BlueprintError as e:
            logger.warning(f"Could not parse agent specifications: {e}")
            yield (
                "I received a plan signal but could not parse the agent specifications. "
                f'The format was invalid. Original signal: "{signal.thought[:100]}..."'
            )
            return
        except Exception as e:
            logger.error(f"Agent specification extraction failed: {e}")
            yield f"I tried to extract agent specifications but the model call failed: {e}"
            return

        version = plan.get("version")
        if version != PLAN_VERSION:
            yield (
                f'I received a plan but it has an invalid version. Expected "{PLAN_VERSION}" '
                f'but got "{version or "none"}".'
            )
            return

        try:
            blueprints = parse_seed_plan(json.dumps(plan))
        except BlueprintError:
            yield "I received a plan but the agents field is malformed."
            return

        if not blueprints:
            yield "I analyzed the signal but could not identify any agents to spawn. The plan appears empty."
            return

        key = str(plan.get("goal") or "").strip() or signal.thought[:50]
        if key in self._handled:
            logger.debug(f"Already spawned agents for: {key}")
            return
        self._handled.add(key)

        spawned: list[OrganicAgent] = []
        for agent in self._spawner.materialize(blueprints, self._existing_agents()):
            try:
                await self._birth(agent)
            except ValueError as e:
                logger.warning(f"Skipping planned agent {agent.id}: {e}")
                continue
            spawned.append(agent)

        logger.info(f"Spawned {len(spawned)} planned agents for: {key}")
        if not spawned:
            yield f'Every agent in the plan for "{key}" already exists, so nothing new was spawned.'
            return

        names = ", ".join(agent.name for agent in spawned)
        yield (
            f"I've successfully spawned {len(spawned)} agents: {names}. "
            "They are now active and ready to contribute."
        )
