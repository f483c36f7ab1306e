"""Biosphere: semantic routing engine for organic agents.

Agents emit raw thoughts. The biosphere embeds each thought into a
pheromone, decides who should hear it by semantic resonance, and couples
sender and receiver according to how well they already understand each
other:

    similarity > 0.8          direct perception
    0.5 < similarity <= 0.8   adaptive synapse rephrases the thought
    0.3 < similarity <= 0.5   a bridge agent is spawned between them
    similarity <= 0.3         dropped

Thoughts that ask for help are diverted to the spawner instead of being
routed, and an optional equilibrium detector decides when the society has
finished deliberating (or is deadlocked and needs a nudge).

All registry, history, receptor-cache and synapse mutation happens on the
single event loop driving `live()`. Agent emission within a tick is
interleaved at backend calls only; each agent's thoughts are routed in the
order it produced them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Callable, Optional

import numpy as np

from biosphere.config import BiosphereConfig
from biosphere.ecosystem.blueprint import BridgeBlueprint, parse_bridge_blueprint
from biosphere.ecosystem.protocols import BridgeContext, EnvironmentSignal
from biosphere.errors import BlueprintError, DimensionMismatchError
from biosphere.signal.agent import LLMAgent, OrganicAgent
from biosphere.signal.meta_observer import MetaObserver
from biosphere.signal.signal import (
    BROADCAST_SENTINELS,
    ENVIRONMENT,
    EXTERNAL,
    SYSTEM,
    ReceptorField,
    Signal,
    create_signal,
    resonates,
)
from biosphere.signal.similarity import as_vector, cosine_similarity
from biosphere.synapse.synapse import SynapseTable

if TYPE_CHECKING:
    from biosphere.ecosystem.protocols import (
        BiosphereObserver,
        Environment,
        LLMBackend,
        Spawner,
    )
    from biosphere.equilibrium.detector import EquilibriumDetector, EquilibriumState

logger = logging.getLogger(__name__)

SPAWN_INTENT_ANCHORS = [
    "We need to spawn a helper agent",
    "Perhaps spawning a new perspective would help",
    "This situation requires a specialized agent",
    "A helper with specific expertise would resolve this",
]

DISTRESS_CONCEPTS = "stuck, confusion, cannot proceed, contradiction, unable, conflicting"

INTERVENTION_TEXT = " ".join([
    "SYSTEM INTERVENTION: The deliberation has reached a deadlock.",
    "You have been discussing the same issues without making progress.",
    "If you are waiting for information that does not exist, STATE clearly what is missing.",
    "Then make the BEST DECISION POSSIBLE with the information you currently have.",
    "Do not wait indefinitely. Decide based on available data and reasonable assumptions.",
])

BRIDGE_PROMPT = "\n".join([
    "You design bridge agents that connect incompatible perspectives.",
    "",
    "Given:",
    "- Source agent with specific vocabulary/concerns",
    "- Target agent with different vocabulary/concerns",
    "- A signal the target cannot understand",
    "",
    "Discover: What intermediate perspective would translate between them?",
    "",
    "The bridge agent should:",
    "- Resonate with BOTH source and target vocabularies",
    "- Act as semantic translator",
    "- Have natural expertise in both domains",
    "",
    "Examples:",
    "- CEO and Engineer: Product Manager (understands business + tech)",
    "- Musician and Physicist: Acoustician (understands harmony + waves)",
    "- Dreamer and Analyst: Psychologist (understands symbols + data)",
    "",
    "Return JSON with: id, name, receptor_patterns (covering both domains), voice",
])

BRIDGE_EXAMPLE = (
    '{"agent": {"id": "bridge-example", "name": "Bridge Example", '
    '"receptor_patterns": ["source-vocab", "target-vocab", "bridging-concepts"], '
    '"threshold": 0.5, "voice": "Describe expertise that spans both domains"}}'
)

DEFAULT_BRIDGE_THRESHOLD = 0.5


class RunPhase(Enum):
    """Lifecycle of a biosphere run."""
    SEEDING = "seeding"
    RUNNING = "running"
    EQUILIBRIUM_REACHED = "equilibrium_reached"
    TICK_EXHAUSTED = "tick_exhausted"


@dataclass
class BiosphereState:
    """Snapshot yielded once per tick.

    Attributes:
        tick: Tick the snapshot was taken in
        agents: Live agents by id
        signals: Full signal history, oldest first
        receptor_cache: Receptor embeddings by agent id
        equilibrium: Detector output, when detection is enabled
    """

    tick: int
    agents: dict[str, OrganicAgent]
    signals: list[Signal]
    receptor_cache: dict[str, np.ndarray]
    equilibrium: Optional["EquilibriumState"] = None


class Biosphere:
    """Owns the agent population and routes their thoughts.

    Usage:
        biosphere = Biosphere(llm, spawner=GenerativeSpawner(llm))
        await biosphere.inject("Should we delay the launch?")
        async for state in biosphere.live():
            print(state.tick, len(state.signals))
    """

    def __init__(
        self,
        llm: "LLMBackend",
        spawner: Optional["Spawner"] = None,
        observer: Optional["BiosphereObserver"] = None,
        environment: Optional["Environment"] = None,
        detector: Optional["EquilibriumDetector"] = None,
        config: Optional[BiosphereConfig] = None,
        should_consider: Optional[Callable[[Signal], bool]] = None,
    ):
        """Initialize the biosphere.

        Args:
            llm: Embedding + chat backend
            spawner: Proposes seed, helper and bridge agents (optional)
            observer: Lifecycle hooks (optional)
            environment: Reality feedback emitted each tick (optional)
            detector: Equilibrium detector; needs a scenario to run
            config: Run configuration
            should_consider: Filter for the built-in MetaObserver
        """
        self._llm = llm
        self._spawner = spawner
        self._observer = observer
        self._environment = environment
        self._detector = detector
        self.config = config or BiosphereConfig()
        self.thresholds = self.config.thresholds
        self.scenario = self.config.scenario

        self._agents: dict[str, OrganicAgent] = {}
        self._history: list[Signal] = []
        self._receptor_cache: dict[str, np.ndarray] = {}
        self._synapses = SynapseTable(llm, self.config.synapse)
        self._pending_births: list[OrganicAgent] = []
        self._dimension: Optional[int] = None
        self._spawn_anchor_vectors: Optional[list[np.ndarray]] = None
        self._distress_vector: Optional[np.ndarray] = None
        self._seeded = False
        self._tick = 0
        self.phase = RunPhase.SEEDING

        if self.config.auto_meta_observer:
            self._pending_births.append(MetaObserver(llm, should_consider=should_consider))

    # --- Accessors -------------------------------------------------------

    @property
    def tick(self) -> int:
        return self._tick

    @property
    def seeded(self) -> bool:
        return self._seeded

    @property
    def agents(self) -> dict[str, OrganicAgent]:
        return dict(self._agents)

    @property
    def history(self) -> list[Signal]:
        return list(self._history)

    @property
    def receptor_cache(self) -> dict[str, np.ndarray]:
        return dict(self._receptor_cache)

    @property
    def synapses(self) -> SynapseTable:
        return self._synapses

    def list_agents(self) -> list[OrganicAgent]:
        return list(self._agents.values())

    def get_state(self, equilibrium: Optional["EquilibriumState"] = None) -> BiosphereState:
        return BiosphereState(
            tick=self._tick,
            agents=dict(self._agents),
            signals=list(self._history),
            receptor_cache=dict(self._receptor_cache),
            equilibrium=equilibrium,
        )

    # --- Admission / removal ---------------------------------------------

    async def birth(self, agent: OrganicAgent) -> None:
        """Admit an agent.

        The receptor embedding is computed before anything is registered, so
        the agent can neither send nor receive until it is cached, and a
        failed embed leaves the registry untouched.

        Raises:
            ValueError: If an agent with the same id is already live
        """
        if agent.id in self._agents:
            raise ValueError(f"Agent id already live: {agent.id}")

        receptor_vector = await self._embed(agent.receptor_field.embedding_text())

        if agent.id in self._agents:
            raise ValueError(f"Agent id already live: {agent.id}")
        self._agents[agent.id] = agent
        self._receptor_cache[agent.id] = receptor_vector

        logger.info(f"Agent born: {agent.name} ({agent.id})")
        self._notify("on_agent_born", agent, self._tick)

    def death(self, agent_id: str) -> bool:
        """Remove an agent, its receptor embedding and its synapses.

        Returns:
            True if the agent was live
        """
        agent = self._agents.pop(agent_id, None)
        self._receptor_cache.pop(agent_id, None)
        if agent is None:
            return False

        dropped = self._synapses.remove_agent(agent_id)
        logger.info(f"Agent died: {agent.name} ({agent_id}), {dropped} synapses dropped")
        self._notify("on_agent_died", agent_id, self._tick)
        return True

    async def _flush_births(self) -> None:
        while self._pending_births:
            agent = self._pending_births.pop(0)
            try:
                await self.birth(agent)
            except ValueError as e:
                logger.warning(f"Skipping queued birth: {e}")

    # --- Seeding / injection --------------------------------------------

    async def seed_from_goal(self, goal: str) -> list[OrganicAgent]:
        """Ask the spawner for an initial society and admit it."""
        propose = getattr(self._spawner, "seed_from_goal", None) if self._spawner else None
        if propose is None:
            return []

        agents = await propose(goal, self.list_agents())
        self._pending_births.extend(agents)
        await self._flush_births()
        self._seeded = True
        return [agent for agent in agents if self._agents.get(agent.id) is agent]

    async def inject(self, thought: str, source_id: str = EXTERNAL) -> Signal:
        """Inject a thought from outside the society.

        The first injection seeds the society from the spawner. External and
        system injections (and any injection nobody resonates with) reach
        every other live agent.
        """
        await self._flush_births()

        if not self._seeded and self._spawner is not None:
            try:
                await self.seed_from_goal(thought)
            except DimensionMismatchError:
                raise
            except Exception as e:
                logger.warning(f"Seeding from goal failed: {e}")
            self._seeded = True

        if self.scenario is None and source_id == EXTERNAL:
            self.scenario = thought

        signal = create_signal(thought, source_id, await self._embed(thought))
        self._record(signal)

        receivers = self.find_resonance(signal)
        if not receivers:
            receivers = self._everyone_but(source_id)
            if receivers:
                logger.info("Diffusion broadcast: delivering injected signal to all agents")

        self._notify("on_signal_routed", signal, receivers, self._tick)
        for receiver in receivers:
            await receiver.perceive(signal)
        return signal

    # --- Main loop -------------------------------------------------------

    async def live(self) -> AsyncIterator[BiosphereState]:
        """Run ticks until equilibrium or the tick budget is spent.

        Yields:
            One BiosphereState per tick
        """
        await self._flush_births()
        self.phase = RunPhase.RUNNING

        while self._tick < self.config.max_ticks:
            logger.info(f"=== Tick {self._tick} - {len(self._agents)} agents ===")

            if self._environment is not None:
                await self._emit_environment_signals()

            await self._drain_all()
            logger.info(f"Tick {self._tick} complete: {len(self._history)} total signals")

            equilibrium = None
            if self._detector is not None and self.scenario:
                equilibrium = await self._detector.detect(self.scenario, self.history, self.list_agents())

            yield self.get_state(equilibrium)

            if equilibrium is not None and equilibrium.is_stagnant:
                logger.warning("Stagnation detected, injecting intervention signal")
                await self.inject(INTERVENTION_TEXT, SYSTEM)
                self._tick += 1
                continue

            if equilibrium is not None and equilibrium.at_equilibrium:
                logger.info(f"EQUILIBRIUM REACHED: {equilibrium.reasoning}")
                self.phase = RunPhase.EQUILIBRIUM_REACHED
                return

            self._tick += 1
            if self.config.tick_delay > 0:
                await asyncio.sleep(self.config.tick_delay)

        self.phase = RunPhase.TICK_EXHAUSTED
        logger.info(f"Tick budget exhausted after {self._tick} ticks")

    async def _drain_all(self) -> None:
        """Drain every live agent concurrently; a fatal failure cancels the rest."""
        tasks = [asyncio.create_task(self._drain(agent)) for agent in self.list_agents()]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _drain(self, agent: OrganicAgent) -> None:
        """Route one agent's emissions, each before the next is requested."""
        try:
            async for thought in agent.emit():
                if agent.id not in self._agents:
                    break
                await self._propagate(thought, agent)
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.warning(f"Agent {agent.id} failed while emitting: {e}")

    # --- Routing ---------------------------------------------------------

    async def _propagate(self, thought: str, source: OrganicAgent) -> None:
        await self._flush_births()

        if not thought or not thought.strip():
            logger.debug(f"Ignoring empty thought from {source.id}")
            return

        try:
            pheromone = await self._embed(thought)
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.warning(f"Dropping thought from {source.id}, embedding failed: {e}")
            return

        signal = create_signal(thought, source.id, pheromone)
        self._record(signal)

        if await self.detect_spawn_intent(signal):
            await self._handle_spawn_request(signal)
            return

        receivers = self.find_resonance(signal)
        self._notify("on_signal_routed", signal, receivers, self._tick)

        for receiver in receivers:
            await self._couple(signal, source, receiver)

    def find_resonance(self, signal: Signal) -> list[OrganicAgent]:
        """Resolve the recipients of a signal.

        Resonant agents first; if none, ambient awareness picks the few
        closest agents above a lower bar. Sentinel authors (external,
        system) always reach every other live agent.
        """
        receivers: list[OrganicAgent] = []
        for agent in self._agents.values():
            if agent.id == signal.emitted_by:
                continue
            receptor_vector = self._receptor_cache.get(agent.id)
            if receptor_vector is None:
                logger.warning(f"No receptor field cached for agent {agent.id}")
                continue
            if resonates(signal.pheromone, agent.receptor_field, receptor_vector):
                receivers.append(agent)

        if not receivers:
            receivers = self._ambient_receivers(signal)

        if signal.emitted_by in BROADCAST_SENTINELS:
            receivers = self._everyone_but(signal.emitted_by)

        return receivers

    def _ambient_receivers(self, signal: Signal) -> list[OrganicAgent]:
        candidates: list[tuple[float, OrganicAgent]] = []
        for agent in self._agents.values():
            if agent.id == signal.emitted_by:
                continue
            receptor_vector = self._receptor_cache.get(agent.id)
            if receptor_vector is None:
                continue
            similarity = cosine_similarity(signal.pheromone, receptor_vector)
            if similarity > self.thresholds.ambient:
                candidates.append((similarity, agent))

        candidates.sort(key=lambda item: item[0], reverse=True)
        chosen = [agent for _, agent in candidates[:self.thresholds.max_ambient_receivers]]
        if chosen:
            logger.debug(f"Ambient awareness: {len(chosen)} agents receiving (from {len(candidates)} candidates)")
        return chosen

    def _everyone_but(self, agent_id: str) -> list[OrganicAgent]:
        return [agent for agent in self._agents.values() if agent.id != agent_id]

    async def _couple(self, signal: Signal, source: OrganicAgent, receiver: OrganicAgent) -> None:
        """Deliver a signal with the coupling its similarity calls for."""
        receptor_vector = self._receptor_cache.get(receiver.id)
        if receptor_vector is None:
            return

        similarity = cosine_similarity(signal.pheromone, receptor_vector)
        t = self.thresholds

        if similarity > t.direct:
            await receiver.perceive(signal)
            return

        if similarity > t.synaptic:
            synapse = self._synapses.get_or_create(
                source.id,
                receiver.id,
                similarity,
                source.receptor_field.patterns,
                receiver.receptor_field.patterns,
            )
            transformed = await synapse.transform(signal)
            await receiver.perceive(transformed)
            return

        if similarity > t.bridge:
            await self._spawn_bridge_agent(signal, source, receiver, similarity)
            return

        logger.debug(f"Signal {signal.id} too weak for {receiver.id} (similarity: {similarity:.2f})")

    # --- Environment -----------------------------------------------------

    async def _emit_environment_signals(self) -> None:
        try:
            feedback = await self._environment.tick(self.get_state())
            for item in feedback:
                await self._ingest_environment_signal(item)
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.warning(f"Environment tick failed: {e}")

    async def _ingest_environment_signal(self, item: EnvironmentSignal) -> None:
        """Route environment feedback without synapses or bridging."""
        thought = item.thought.strip()
        if not thought:
            return

        await self._flush_births()

        signal = create_signal(
            thought,
            item.emitted_by or ENVIRONMENT,
            await self._embed(thought),
            inferred_intent=item.inferred_intent,
            inferred_tags=item.inferred_tags,
        )
        self._record(signal)

        if await self.detect_spawn_intent(signal):
            await self._handle_spawn_request(signal)
            return

        receivers = self.find_resonance(signal)
        self._notify("on_signal_routed", signal, receivers, self._tick)
        for receiver in receivers:
            await receiver.perceive(signal)

    # --- Spawning --------------------------------------------------------

    async def detect_spawn_intent(self, signal: Signal) -> bool:
        """True if the thought means "we need a helper agent"."""
        if self._spawn_anchor_vectors is None:
            self._spawn_anchor_vectors = [await self._embed(anchor) for anchor in SPAWN_INTENT_ANCHORS]

        for anchor, vector in zip(SPAWN_INTENT_ANCHORS, self._spawn_anchor_vectors):
            similarity = cosine_similarity(signal.pheromone, vector)
            if similarity > self.thresholds.spawn_intent:
                logger.info(f"Spawn intent detected (similarity: {similarity:.2f} to {anchor!r})")
                return True
        return False

    async def find_similar(self, name: str) -> Optional[OrganicAgent]:
        """Quorum check: the live agent functionally equivalent to `name`, if any."""
        target = await self._embed(name)

        best: Optional[OrganicAgent] = None
        best_similarity = 0.0
        for agent in self.list_agents():
            similarity = cosine_similarity(target, await self._embed(agent.describe()))
            if similarity > self.thresholds.quorum and similarity > best_similarity:
                best = agent
                best_similarity = similarity
        return best

    async def _handle_spawn_request(self, trigger: Signal) -> None:
        propose = getattr(self._spawner, "spawn_helper_for_distress", None) if self._spawner else None
        if propose is None:
            logger.warning("Spawn request received but no spawner configured")
            return

        logger.info(f"EMERGENCE: generative spawn requested by {trigger.emitted_by}")

        try:
            helper = await propose(trigger, self.list_agents())
            if helper is None:
                logger.warning("Spawner returned no helper agent")
                return

            if helper.id in self._agents:
                logger.warning(f"Helper id already exists ({helper.id}), skipping spawn")
                return

            existing = await self.find_similar(helper.name)
            if existing is not None:
                logger.info(f"Quorum: {helper.name} matches existing agent {existing.name}, skipping spawn")
                return

            await self.birth(helper)
            self._notify("on_agent_spawned", helper, trigger, self._tick)

            for signal in await self._recent_distress():
                await helper.perceive(signal)
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.warning(f"Failed to spawn helper agent: {e}")

    async def _recent_distress(self) -> list[Signal]:
        """Recent signals that read like distress, for replay into a new helper."""
        if self._distress_vector is None:
            self._distress_vector = await self._embed(DISTRESS_CONCEPTS)

        t = self.thresholds
        matches = [
            signal for signal in self._history
            if cosine_similarity(signal.pheromone, self._distress_vector) > t.distress_replay
        ]
        if t.distress_replay_limit == 0:
            return []
        return matches[-t.distress_replay_limit:]

    async def _spawn_bridge_agent(
        self,
        signal: Signal,
        source: OrganicAgent,
        target: OrganicAgent,
        similarity: float,
    ) -> None:
        """Insert a translator between two weakly resonant agents."""
        if self._spawner is None:
            logger.info(
                f"Bridge needed ({source.name} → {target.name}, similarity: {similarity:.2f}) "
                "but no spawner configured"
            )
            return

        logger.info(
            f"BRIDGE NEEDED: {source.name} → {target.name} (similarity: {similarity:.2f}), "
            f"signal: {signal.thought[:100]!r}"
        )

        try:
            response = await self._llm.chat([
                {"role": "system", "content": BRIDGE_PROMPT},
                {"role": "user", "content": self._bridge_request(signal, source, target)},
            ])
            blueprint = parse_bridge_blueprint(response)
        except BlueprintError as e:
            logger.warning(f"Invalid bridge blueprint from model: {e}")
            return
        except Exception as e:
            logger.warning(f"Bridge design failed: {e}")
            return

        try:
            existing = await self.find_similar(blueprint.name)
            if existing is not None:
                logger.info(f"Bridge quorum: {blueprint.name} matches existing {existing.name}, skipping spawn")
                return

            bridge = await self._materialize_bridge(blueprint, signal, source, target)
            if bridge is None:
                logger.warning("Spawner failed to create bridge agent")
                return

            if bridge.id in self._agents:
                logger.warning(f"Bridge id already exists ({bridge.id}), skipping spawn")
                return

            await self.birth(bridge)
            self._notify("on_agent_spawned", bridge, signal, self._tick)
            logger.info(f"Bridge spawned: {source.name} ↔ {bridge.name} ↔ {target.name}")

            await bridge.perceive(signal)
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.warning(f"Failed to spawn bridge agent: {e}")

    async def _materialize_bridge(
        self,
        blueprint: BridgeBlueprint,
        signal: Signal,
        source: OrganicAgent,
        target: OrganicAgent,
    ) -> Optional[OrganicAgent]:
        materialize = getattr(self._spawner, "spawn_bridge_agent", None)
        if materialize is not None:
            context = BridgeContext(
                signal=signal,
                source=source,
                target=target,
                existing_agents=self.list_agents(),
            )
            return await materialize(blueprint, context)

        threshold = blueprint.threshold if blueprint.threshold is not None else DEFAULT_BRIDGE_THRESHOLD
        return LLMAgent(
            id=blueprint.id,
            name=blueprint.name,
            receptor_field=ReceptorField(patterns=list(blueprint.receptor_patterns), threshold=threshold),
            system_prompt=blueprint.voice or (
                f"You are {blueprint.name}. You translate between {source.name} "
                f"and {target.name} without losing meaning."
            ),
            llm=self._llm,
        )

    @staticmethod
    def _bridge_request(signal: Signal, source: OrganicAgent, target: OrganicAgent) -> str:
        return "\n".join([
            f"Source: {source.name}",
            f"Source concerns: {source.receptor_field.describe()}",
            "",
            f"Target: {target.name}",
            f"Target concerns: {target.receptor_field.describe()}",
            "",
            "Signal that cannot bridge:",
            f'"{signal.thought}"',
            "",
            "What bridge agent would translate between these perspectives?",
            "",
            "Return JSON:",
            BRIDGE_EXAMPLE,
        ])

    # --- Helpers ---------------------------------------------------------

    async def _embed(self, text: str) -> np.ndarray:
        """Embed text, enforcing one pheromone dimensionality per run."""
        vector = as_vector(await self._llm.embed(text))
        if self._dimension is None:
            self._dimension = int(vector.shape[0])
        elif vector.shape[0] != self._dimension:
            raise DimensionMismatchError(self._dimension, int(vector.shape[0]))
        return vector

    def _record(self, signal: Signal) -> None:
        self._history.append(signal)
        logger.debug(f"Signal {signal.id} from {signal.emitted_by}: {signal.thought[:80]!r}")
        self._notify("on_signal_emitted", signal, self._tick)

    def _notify(self, hook: str, *args) -> None:
        if self._observer is None:
            return
        callback = getattr(self._observer, hook, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"Observer hook {hook} failed: {e}")
