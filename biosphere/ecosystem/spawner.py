"""Generative spawner: the chat model invents the society.

No roles or prompts are hardcoded. Given a scenario (or a distress signal)
the model proposes agent blueprints, which are validated and materialized
as `LLMAgent`s.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Optional

from biosphere.ecosystem.blueprint import (
    AgentBlueprint,
    parse_agent_blueprint,
    parse_seed_plan,
)
from biosphere.errors import BlueprintError
from biosphere.signal.agent import LLMAgent, OrganicAgent
from biosphere.signal.signal import DEFAULT_RECEPTOR_THRESHOLD, ReceptorField

if TYPE_CHECKING:
    from biosphere.ecosystem.protocols import LLMBackend
    from biosphere.signal.signal import Signal

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGENTS = 5

SEED_PROMPT = (
    "You design agent societies that naturally emerge from scenarios.\n\n"
    "Given a scenario, discover:\n"
    "- What perspectives/viewpoints would naturally form?\n"
    "- What domains of knowledge matter here?\n"
    "- Who would need to talk to whom?\n"
    "- What tensions or contradictions exist?\n\n"
    "Create agents as thinking entities with:\n"
    "- receptor_patterns: natural language they resonate with\n"
    "- voice: their persona, expertise, and how they think\n\n"
    "Let agents express confusion/uncertainty naturally in their own voice.\n"
    "No prescribed vocabulary - they speak as they would.\n\n"
    "Return JSON only. Keep IDs kebab-case."
)

HELPER_PROMPT = (
    "You are an agent architect. Given a distress signal, invent ONE helper agent that would resolve it. "
    "Do not describe actions; define the agent itself with receptor patterns and a short voice. "
    "Return JSON only."
)

SEED_EXAMPLE = {
    "agents": [
        {
            "id": "perspective-example",
            "name": "Example Perspective",
            "receptor_patterns": ["pattern1", "pattern2", "pattern3"],
            "threshold": 0.6,
            "voice": "Describe how this agent thinks, their domain expertise, and their natural way of expressing thoughts.",
        }
    ]
}

HELPER_EXAMPLE = {
    "agent": {
        "id": "conflict-resolver",
        "name": "Conflict Resolver",
        "receptor_patterns": ["stuck", "cannot decide", "conflicting", "paralyzed"],
        "threshold": 0.55,
        "voice": "You untangle contradictions and offer trade-off options.",
    }
}

VOICE_GUIDELINES = "\n".join([
    "",
    "Guidelines:",
    "- Think and speak naturally (no JSON, no structured output)",
    "- Express uncertainty, confusion, or conflict in your own natural voice",
    "- When you need help or see contradictions, say so naturally",
    "- Keep responses concise (2-4 sentences)",
])


def build_voice(blueprint: AgentBlueprint) -> str:
    """System prompt for an agent built from a blueprint."""
    persona = blueprint.voice or blueprint.purpose or f"You are {blueprint.name}."
    return persona + "\n" + VOICE_GUIDELINES


class GenerativeSpawner:
    """LLM-backed spawner collaborator.

    Attributes:
        max_agents: Cap on agents materialized from one proposal
    """

    def __init__(self, llm: "LLMBackend", max_agents: int = DEFAULT_MAX_AGENTS):
        if max_agents < 1:
            raise ValueError("max_agents must be >= 1")
        self._llm = llm
        self.max_agents = max_agents

    async def seed_from_goal(
        self,
        goal: str,
        existing_agents: Optional[list[OrganicAgent]] = None,
    ) -> list[OrganicAgent]:
        """Propose an initial society for a goal.

        Raises:
            BlueprintError: If the model returns no usable seed plan
        """
        existing_agents = existing_agents or []
        names = ", ".join(agent.name for agent in existing_agents) or "none"
        response = await self._llm.chat([
            {"role": "system", "content": SEED_PROMPT},
            {
                "role": "user",
                "content": "\n".join([
                    f"Scenario: {goal}",
                    f"Existing agents: {names}",
                    f"Max agents desired: {self.max_agents}",
                    "",
                    "Return JSON exactly like:",
                    json.dumps(SEED_EXAMPLE),
                ]),
            },
        ])

        blueprints = parse_seed_plan(response)
        agents = self.materialize(blueprints, existing_agents)
        logger.info(f"Seeded {len(agents)} agents from goal: {[a.name for a in agents]}")
        return agents

    async def spawn_helper_for_distress(
        self,
        signal: "Signal",
        existing_agents: Optional[list[OrganicAgent]] = None,
    ) -> Optional[OrganicAgent]:
        """Propose one helper agent for a distress signal, or None."""
        existing_agents = existing_agents or []
        roster = ", ".join(f"{agent.id} ({agent.name})" for agent in existing_agents) or "none"
        response = await self._llm.chat([
            {"role": "system", "content": HELPER_PROMPT},
            {
                "role": "user",
                "content": "\n".join([
                    "Distress signal:",
                    signal.thought,
                    "",
                    "Existing agents:",
                    roster,
                    "",
                    "Respond with:",
                    json.dumps(HELPER_EXAMPLE),
                ]),
            },
        ])

        try:
            blueprint = parse_agent_blueprint(response)
        except BlueprintError as e:
            logger.warning(f"Helper proposal discarded: {e}")
            return None

        agents = self.materialize([blueprint], existing_agents)
        return agents[0] if agents else None

    def materialize(
        self,
        blueprints: list[AgentBlueprint],
        existing_agents: list[OrganicAgent],
    ) -> list[OrganicAgent]:
        """Build agents from blueprints, skipping ids or names already taken."""
        taken_ids = {agent.id for agent in existing_agents}
        taken_names = {agent.name.lower() for agent in existing_agents}

        agents: list[OrganicAgent] = []
        for blueprint in blueprints[:self.max_agents]:
            if blueprint.id in taken_ids or blueprint.name.lower() in taken_names:
                logger.debug(f"Skipping duplicate blueprint {blueprint.id} ({blueprint.name})")
                continue
            taken_ids.add(blueprint.id)
            taken_names.add(blueprint.name.lower())
            agents.append(self.build_agent(blueprint))
        return agents

    def build_agent(self, blueprint: AgentBlueprint) -> LLMAgent:
        threshold = blueprint.threshold if blueprint.threshold is not None else DEFAULT_RECEPTOR_THRESHOLD
        return LLMAgent(
            id=blueprint.id,
            name=blueprint.name,
            receptor_field=ReceptorField(patterns=list(blueprint.receptor_patterns), threshold=threshold),
            system_prompt=build_voice(blueprint),
            llm=self._llm,
        )
