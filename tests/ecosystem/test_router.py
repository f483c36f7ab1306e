"""Tests for the biosphere router: admission, resolution, coupling, spawning, loop."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from biosphere.config import BiosphereConfig
from biosphere.ecosystem.protocols import BridgeContext, EnvironmentSignal
from biosphere.ecosystem.router import (
    DISTRESS_CONCEPTS,
    INTERVENTION_TEXT,
    SPAWN_INTENT_ANCHORS,
    Biosphere,
    BiosphereState,
    RunPhase,
)
from biosphere.equilibrium.detector import EquilibriumState
from biosphere.errors import DimensionMismatchError
from biosphere.signal.agent import FunctionAgent, LLMAgent
from biosphere.signal.meta_observer import META_OBSERVER_ID
from biosphere.signal.signal import ENVIRONMENT, EXTERNAL, SYSTEM, ReceptorField, create_signal

from conftest import FakeBackend, basis, padded


def scripted(agent_id, patterns, thoughts=(), threshold=0.2):
    """Function agent that emits its scripted thoughts on its first turn."""
    remaining = list(thoughts)

    async def emit_fn(signal):
        while remaining:
            yield remaining.pop(0)

    return FunctionAgent(
        agent_id,
        agent_id.title(),
        ReceptorField(patterns=list(patterns), threshold=threshold),
        emit_fn,
    )


def make_biosphere(llm, max_ticks=1, **kwargs):
    config = kwargs.pop("config", None) or BiosphereConfig(max_ticks=max_ticks, auto_meta_observer=False)
    return Biosphere(llm, config=config, **kwargs)


async def run_ticks(biosphere):
    return [state async for state in biosphere.live()]


def thoughts_of(agent):
    return [entry.split("]:\n", 1)[1] for entry in agent.get_context()]


def equilibrium(at_equilibrium=False, is_stagnant=False):
    return EquilibriumState(
        at_equilibrium=at_equilibrium,
        goal_tension=0.5,
        momentum=0.5,
        coherence=0.5,
        decision_clarity=0.5,
        is_stagnant=is_stagnant,
        reasoning="test",
    )


@pytest.fixture
def pair_vectors():
    """Source listens on axis 1, receiver on axis 0."""
    return {"source field": basis(1), "receiver field": basis(0)}


class TestAdmission:
    """Tests for birth and death."""

    @pytest.mark.asyncio
    async def test_birth_caches_receptor_embedding(self):
        """Birth embeds the joined patterns and registers the agent."""
        llm = FakeBackend(vectors={"cost. budget": basis(3)})
        biosphere = make_biosphere(llm)
        agent = scripted("accountant", ["cost", "budget"])

        await biosphere.birth(agent)

        assert biosphere.agents == {"accountant": agent}
        assert np.array_equal(biosphere.receptor_cache["accountant"], basis(3))
        assert llm.embed_calls == ["cost. budget"]

    @pytest.mark.asyncio
    async def test_birth_then_death_restores_state(self, pair_vectors):
        """Death undoes birth exactly, synapses included."""
        llm = FakeBackend(vectors=pair_vectors)
        biosphere = make_biosphere(llm)
        source = scripted("source", ["source field"])
        await biosphere.birth(source)

        agents_before = biosphere.agents
        cache_before = set(biosphere.receptor_cache)

        newcomer = scripted("receiver", ["receiver field"])
        await biosphere.birth(newcomer)
        biosphere.synapses.get_or_create("source", "receiver", 0.6, ["a"], ["b"])
        biosphere.synapses.get_or_create("receiver", "source", 0.6, ["b"], ["a"])

        assert biosphere.death("receiver") is True
        assert biosphere.agents == agents_before
        assert set(biosphere.receptor_cache) == cache_before
        assert len(biosphere.synapses) == 0

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, fake_llm):
        """Two live agents never share an id."""
        biosphere = make_biosphere(fake_llm)
        await biosphere.birth(scripted("twin", ["a"]))

        with pytest.raises(ValueError):
            await biosphere.birth(scripted("twin", ["b"]))

    @pytest.mark.asyncio
    async def test_failed_embed_registers_nothing(self):
        """An agent is not admitted until its receptor is cached."""
        llm = FakeBackend()
        llm.failing_embeds.add("fragile")
        biosphere = make_biosphere(llm)

        with pytest.raises(RuntimeError):
            await biosphere.birth(scripted("fragile", ["fragile"]))

        assert biosphere.agents == {}
        assert biosphere.receptor_cache == {}

    @pytest.mark.asyncio
    async def test_dimension_mismatch_on_birth(self):
        """A receptor of a different dimensionality is fatal."""
        llm = FakeBackend(vectors={"small": np.ones(3)})
        biosphere = make_biosphere(llm)
        await biosphere.birth(scripted("big", ["big"]))

        with pytest.raises(DimensionMismatchError):
            await biosphere.birth(scripted("small", ["small"]))
        assert "small" not in biosphere.agents

    @pytest.mark.asyncio
    async def test_death_of_unknown_agent(self, fake_llm):
        """Removing an unknown id is a no-op."""
        assert make_biosphere(fake_llm).death("ghost") is False

    @pytest.mark.asyncio
    async def test_lifecycle_hooks(self, fake_llm):
        """Observers hear about births and deaths."""
        observer = MagicMock()
        biosphere = make_biosphere(fake_llm, observer=observer)
        agent = scripted("a", ["a"])

        await biosphere.birth(agent)
        biosphere.death("a")

        observer.on_agent_born.assert_called_once_with(agent, 0)
        observer.on_agent_died.assert_called_once_with("a", 0)

    @pytest.mark.asyncio
    async def test_meta_observer_born_on_first_use(self, fake_llm):
        """The distress observer joins before the first routing decision."""
        biosphere = Biosphere(fake_llm)
        assert biosphere.agents == {}

        await biosphere.inject("hello")

        assert META_OBSERVER_ID in biosphere.agents

    @pytest.mark.asyncio
    async def test_meta_observer_can_be_disabled(self, fake_llm):
        """auto_meta_observer=False keeps the registry empty."""
        biosphere = make_biosphere(fake_llm)
        await biosphere.inject("hello")
        assert META_OBSERVER_ID not in biosphere.agents


class TestResolution:
    """Tests for recipient resolution and broadcast."""

    async def listeners(self, biosphere, count=3, threshold=0.9):
        agents = [scripted(f"listener-{i}", [f"field {i}"], threshold=threshold) for i in range(count)]
        for agent in agents:
            await biosphere.birth(agent)
        return agents

    def listener_vectors(self, count=3):
        return {f"field {i}": basis(i) for i in range(count)}

    @pytest.mark.asyncio
    async def test_external_injection_broadcasts(self):
        """External signals reach everyone, resonant or not."""
        llm = FakeBackend(vectors={**self.listener_vectors(), "hello world": basis(0)})
        biosphere = make_biosphere(llm)
        agents = await self.listeners(biosphere)

        signal = await biosphere.inject("hello world")

        assert signal.emitted_by == EXTERNAL
        for agent in agents:
            assert thoughts_of(agent) == ["hello world"]

    @pytest.mark.asyncio
    async def test_targeted_injection_reaches_resonant_only(self):
        """Non-sentinel injections go to resonant agents when there are any."""
        llm = FakeBackend(vectors={**self.listener_vectors(), "about zero": basis(0)})
        biosphere = make_biosphere(llm)
        agents = await self.listeners(biosphere)

        await biosphere.inject("about zero", source_id="operator")

        assert thoughts_of(agents[0]) == ["about zero"]
        assert thoughts_of(agents[1]) == []
        assert thoughts_of(agents[2]) == []

    @pytest.mark.asyncio
    async def test_unheard_injection_broadcasts(self):
        """An injection nobody resonates with reaches everyone."""
        llm = FakeBackend(vectors={**self.listener_vectors(), "nobody": basis(9)})
        biosphere = make_biosphere(llm)
        agents = await self.listeners(biosphere)

        await biosphere.inject("nobody", source_id="operator")

        assert all(thoughts_of(agent) == ["nobody"] for agent in agents)

    @pytest.mark.asyncio
    async def test_resolution_excludes_author(self):
        """An agent never receives its own signal."""
        llm = FakeBackend(vectors={"field 0": basis(0)})
        biosphere = make_biosphere(llm)
        agent = scripted("listener-0", ["field 0"])
        await biosphere.birth(agent)

        assert biosphere.find_resonance(create_signal("x", "listener-0", basis(0))) == []

    @pytest.mark.asyncio
    async def test_sentinel_signal_resolves_to_everyone(self):
        """System-authored signals broadcast even when nothing resonates."""
        llm = FakeBackend(vectors=self.listener_vectors())
        biosphere = make_biosphere(llm)
        agents = await self.listeners(biosphere)

        receivers = biosphere.find_resonance(create_signal("x", SYSTEM, basis(9)))

        assert receivers == agents

    @pytest.mark.asyncio
    async def test_ambient_awareness_picks_top_three(self):
        """With no resonance, the three closest agents above 0.4 hear it."""
        closeness = [0.95, 0.9, 0.6, 0.45, 0.35]
        vectors = {"source field": basis(10), "murmur": basis(0)}
        for i, c in enumerate(closeness):
            vectors[f"field {i}"] = c * basis(0) + np.sqrt(1 - c * c) * basis(i + 1)
        llm = FakeBackend(vectors=vectors, default_reply="rephrased murmur")
        biosphere = make_biosphere(llm)

        await biosphere.birth(scripted("source", ["source field"], ["murmur"]))
        listeners = await self.listeners(biosphere, count=5, threshold=0.99)

        await run_ticks(biosphere)

        assert thoughts_of(listeners[0]) == ["murmur"]
        assert thoughts_of(listeners[1]) == ["murmur"]
        assert thoughts_of(listeners[2]) == ["rephrased murmur"]
        assert thoughts_of(listeners[3]) == []
        assert thoughts_of(listeners[4]) == []


class TestCoupling:
    """Tests for the three coupling tiers."""

    async def setup_pair(self, llm, thought, spawner=None):
        biosphere = make_biosphere(llm, spawner=spawner)
        source = scripted("source", ["source field"], [thought])
        receiver = scripted("receiver", ["receiver field"])
        await biosphere.birth(source)
        await biosphere.birth(receiver)
        return biosphere, source, receiver

    @pytest.mark.asyncio
    async def test_direct_above_0_8(self, pair_vectors):
        """High similarity delivers the original signal untouched."""
        llm = FakeBackend(vectors={**pair_vectors, "direct": basis(0)})
        biosphere, _, receiver = await self.setup_pair(llm, "direct")

        await run_ticks(biosphere)

        assert thoughts_of(receiver) == ["direct"]
        assert len(biosphere.synapses) == 0
        assert llm.chat_calls == []

    @pytest.mark.asyncio
    async def test_exactly_0_8_uses_synapse(self, pair_vectors):
        """0.8 is not direct: the signal goes through a synapse."""
        llm = FakeBackend(vectors={**pair_vectors, "boundary": padded(4, 3)}, default_reply="rephrased")
        biosphere, _, receiver = await self.setup_pair(llm, "boundary")

        await run_ticks(biosphere)

        assert thoughts_of(receiver) == ["rephrased"]
        synapse = biosphere.synapses.get("source", "receiver")
        assert synapse is not None
        assert synapse.strength.base_similarity == 0.8
        assert synapse.strength.activations == 1

    @pytest.mark.asyncio
    async def test_synapse_failure_passes_original(self, pair_vectors):
        """A failed transform still delivers the original thought."""
        llm = FakeBackend(vectors={**pair_vectors, "boundary": padded(4, 3)}, replies=[RuntimeError("down")])
        biosphere, _, receiver = await self.setup_pair(llm, "boundary")

        await run_ticks(biosphere)

        assert thoughts_of(receiver) == ["boundary"]

    @pytest.mark.asyncio
    async def test_exactly_0_5_spawns_bridge(self, pair_vectors):
        """0.5 is not synaptic: a bridge agent is built and perceives the signal."""
        bridge_reply = json.dumps({"agent": {
            "id": "bridge-pm",
            "name": "Product Manager",
            "receptor_patterns": ["source field", "receiver field"],
        }})
        llm = FakeBackend(vectors={**pair_vectors, "far": padded(2, 2, 2, 2)}, default_reply=bridge_reply)
        biosphere, _, receiver = await self.setup_pair(llm, "far", spawner=SimpleNamespace())

        await run_ticks(biosphere)

        bridge = biosphere.agents["bridge-pm"]
        assert isinstance(bridge, LLMAgent)
        assert bridge.receptor_field.threshold == 0.5
        assert bridge.system_prompt == (
            "You are Product Manager. You translate between Source and Receiver without losing meaning."
        )
        assert thoughts_of(bridge) == ["far"]
        assert thoughts_of(receiver) == []
        assert len(llm.chat_calls) == 1

    @pytest.mark.asyncio
    async def test_bridge_uses_spawner_materializer(self, pair_vectors):
        """A spawner with spawn_bridge_agent builds the bridge."""
        bridge_reply = json.dumps({"agent": {
            "id": "bridge-pm",
            "name": "Product Manager",
            "receptor_patterns": ["roadmap"],
        }})
        llm = FakeBackend(vectors={**pair_vectors, "far": padded(2, 2, 2, 2)}, default_reply=bridge_reply)
        custom = scripted("custom-bridge", ["roadmap"])
        spawner = SimpleNamespace(spawn_bridge_agent=AsyncMock(return_value=custom))
        biosphere, source, receiver = await self.setup_pair(llm, "far", spawner=spawner)

        await run_ticks(biosphere)

        blueprint, context = spawner.spawn_bridge_agent.await_args.args
        assert blueprint.id == "bridge-pm"
        assert isinstance(context, BridgeContext)
        assert context.source is source
        assert context.target is receiver
        assert context.signal.thought == "far"
        assert biosphere.agents["custom-bridge"] is custom
        assert thoughts_of(custom) == ["far"]

    @pytest.mark.asyncio
    async def test_invalid_bridge_spec_is_skipped(self, pair_vectors):
        """Malformed bridge output spawns nothing."""
        llm = FakeBackend(vectors={**pair_vectors, "far": padded(2, 2, 2, 2)}, default_reply="no idea")
        biosphere, _, receiver = await self.setup_pair(llm, "far", spawner=SimpleNamespace())

        await run_ticks(biosphere)

        assert set(biosphere.agents) == {"source", "receiver"}
        assert thoughts_of(receiver) == []

    @pytest.mark.asyncio
    async def test_bridge_needs_spawner(self, pair_vectors):
        """Without a spawner the bridge tier only logs."""
        llm = FakeBackend(vectors={**pair_vectors, "far": padded(2, 2, 2, 2)})
        biosphere, _, receiver = await self.setup_pair(llm, "far")

        await run_ticks(biosphere)

        assert llm.chat_calls == []
        assert set(biosphere.agents) == {"source", "receiver"}

    @pytest.mark.asyncio
    async def test_exactly_0_3_is_dropped(self, pair_vectors):
        """0.3 is below every tier: nothing is delivered or spawned."""
        llm = FakeBackend(vectors={**pair_vectors, "faint": padded(3, 9, 3, 1)})
        biosphere, _, receiver = await self.setup_pair(llm, "faint", spawner=SimpleNamespace())

        await run_ticks(biosphere)

        assert thoughts_of(receiver) == []
        assert llm.chat_calls == []
        assert set(biosphere.agents) == {"source", "receiver"}


class TestSpawning:
    """Tests for spawn-intent diversion, quorum and distress replay."""

    def vectors(self):
        return {
            SPAWN_INTENT_ANCHORS[0]: basis(20),
            DISTRESS_CONCEPTS: basis(20),
            "please spawn a helper": basis(20),
            "listener field": basis(20),
            "source field": basis(1),
        }

    async def build(self, llm, spawner, observer=None):
        biosphere = make_biosphere(llm, spawner=spawner, observer=observer)
        source = scripted("source", ["source field"], ["please spawn a helper"])
        listener = scripted("listener", ["listener field"])
        await biosphere.birth(source)
        await biosphere.birth(listener)
        return biosphere, listener

    @pytest.mark.asyncio
    async def test_spawn_request_births_helper_and_replays_distress(self):
        """Help requests are diverted to the spawner, not routed."""
        llm = FakeBackend(vectors=self.vectors())
        helper = scripted("helper", ["helper field"])
        spawner = SimpleNamespace(spawn_helper_for_distress=AsyncMock(return_value=helper))
        observer = MagicMock()
        biosphere, listener = await self.build(llm, spawner, observer)

        await run_ticks(biosphere)

        assert biosphere.agents["helper"] is helper
        assert thoughts_of(listener) == []
        assert thoughts_of(helper) == ["please spawn a helper"]
        spawner.spawn_helper_for_distress.assert_awaited_once()
        observer.on_agent_spawned.assert_called_once()

    @pytest.mark.asyncio
    async def test_spawn_anchors_embedded_once(self):
        """Spawn-intent anchors are cached across signals."""
        llm = FakeBackend(vectors=self.vectors())
        biosphere = make_biosphere(llm)

        for i in range(3):
            await biosphere.detect_spawn_intent(create_signal(f"s{i}", "a", basis(i)))

        assert llm.embed_calls.count(SPAWN_INTENT_ANCHORS[1]) == 1

    @pytest.mark.asyncio
    async def test_quorum_blocks_equivalent_helper(self):
        """A helper equivalent to a live agent is not born."""
        vectors = self.vectors()
        vectors["Listener listener field"] = basis(30)
        vectors["Twin"] = basis(30)
        llm = FakeBackend(vectors=vectors)
        twin = scripted("twin", ["listener field"])
        spawner = SimpleNamespace(spawn_helper_for_distress=AsyncMock(return_value=twin))
        biosphere, _ = await self.build(llm, spawner)

        await run_ticks(biosphere)

        assert "twin" not in biosphere.agents

    @pytest.mark.asyncio
    async def test_duplicate_helper_id_skipped(self):
        """A helper reusing a live id is not born."""
        llm = FakeBackend(vectors=self.vectors())
        impostor = scripted("listener", ["other"])
        spawner = SimpleNamespace(spawn_helper_for_distress=AsyncMock(return_value=impostor))
        biosphere, listener = await self.build(llm, spawner)

        await run_ticks(biosphere)

        assert biosphere.agents["listener"] is listener

    @pytest.mark.asyncio
    async def test_no_helper_proposed(self):
        """A spawner declining to propose leaves the registry alone."""
        llm = FakeBackend(vectors=self.vectors())
        spawner = SimpleNamespace(spawn_helper_for_distress=AsyncMock(return_value=None))
        biosphere, _ = await self.build(llm, spawner)

        await run_ticks(biosphere)

        assert set(biosphere.agents) == {"source", "listener"}

    @pytest.mark.asyncio
    async def test_failed_spawn_does_not_stop_tick(self):
        """A spawner error aborts only that attempt."""
        llm = FakeBackend(vectors=self.vectors())
        spawner = SimpleNamespace(spawn_helper_for_distress=AsyncMock(side_effect=RuntimeError("boom")))
        biosphere, _ = await self.build(llm, spawner)

        states = await run_ticks(biosphere)

        assert len(states) == 1
        assert biosphere.phase == RunPhase.TICK_EXHAUSTED

    @pytest.mark.asyncio
    async def test_seeding_on_first_injection(self, fake_llm):
        """The first injection asks the spawner for a society, once."""
        seeded = scripted("seeded", ["anything"])
        spawner = SimpleNamespace(seed_from_goal=AsyncMock(return_value=[seeded]))
        biosphere = make_biosphere(fake_llm, spawner=spawner)

        await biosphere.inject("Plan the offsite")
        await biosphere.inject("Budget is 10k")

        spawner.seed_from_goal.assert_awaited_once_with("Plan the offsite", [])
        assert biosphere.seeded
        assert thoughts_of(seeded) == ["Plan the offsite", "Budget is 10k"]
        assert biosphere.scenario == "Plan the offsite"

    @pytest.mark.asyncio
    async def test_failed_seeding_still_injects(self, fake_llm):
        """A seeding failure is logged and the injection proceeds."""
        spawner = SimpleNamespace(seed_from_goal=AsyncMock(side_effect=RuntimeError("down")))
        biosphere = make_biosphere(fake_llm, spawner=spawner)

        signal = await biosphere.inject("Plan the offsite")

        assert biosphere.history == [signal]
        assert biosphere.seeded


class TestEnvironment:
    """Tests for environment feedback."""

    @pytest.mark.asyncio
    async def test_environment_signals_bypass_synapses(self, pair_vectors):
        """Environment feedback is perceived verbatim by resonant agents."""
        llm = FakeBackend(vectors={**pair_vectors, "rain starts": padded(4, 3)})
        environment = SimpleNamespace(tick=AsyncMock(return_value=[
            EnvironmentSignal("  rain starts  ", inferred_tags=["weather"]),
            EnvironmentSignal("   "),
        ]))
        biosphere = make_biosphere(llm, environment=environment)
        receiver = scripted("receiver", ["receiver field"])
        await biosphere.birth(receiver)

        await run_ticks(biosphere)

        assert thoughts_of(receiver) == ["rain starts"]
        assert len(biosphere.synapses) == 0
        assert llm.chat_calls == []
        assert len(biosphere.history) == 1
        assert biosphere.history[0].emitted_by == ENVIRONMENT
        assert biosphere.history[0].inferred_tags == ("weather",)
        state = environment.tick.await_args.args[0]
        assert isinstance(state, BiosphereState)

    @pytest.mark.asyncio
    async def test_environment_failure_contained(self, fake_llm):
        """A failing environment does not stop the tick."""
        environment = SimpleNamespace(tick=AsyncMock(side_effect=RuntimeError("sensor offline")))
        biosphere = make_biosphere(fake_llm, max_ticks=2, environment=environment)

        states = await run_ticks(biosphere)

        assert len(states) == 2


class TestLiveLoop:
    """Tests for the tick loop."""

    @pytest.mark.asyncio
    async def test_tick_budget(self, fake_llm):
        """Runs exactly max_ticks ticks without a detector."""
        biosphere = make_biosphere(fake_llm, max_ticks=3)

        states = await run_ticks(biosphere)

        assert [s.tick for s in states] == [0, 1, 2]
        assert biosphere.phase == RunPhase.TICK_EXHAUSTED
        assert biosphere.tick == 3

    @pytest.mark.asyncio
    async def test_zero_ticks(self, fake_llm):
        """max_ticks=0 yields nothing."""
        biosphere = make_biosphere(fake_llm, max_ticks=0)
        assert await run_ticks(biosphere) == []

    @pytest.mark.asyncio
    async def test_stagnation_injects_intervention(self):
        """A stagnant tick triggers a system intervention, then the run continues."""
        llm = FakeBackend()
        detector = MagicMock()
        detector.detect = AsyncMock(side_effect=[
            equilibrium(is_stagnant=True),
            equilibrium(at_equilibrium=True),
        ])
        config = BiosphereConfig(max_ticks=10, auto_meta_observer=False, scenario="Pick a venue")
        biosphere = Biosphere(llm, detector=detector, config=config)
        listener = scripted("listener", ["anything"])
        await biosphere.birth(listener)

        states = await run_ticks(biosphere)

        assert len(states) == 2
        assert states[0].equilibrium.is_stagnant
        assert biosphere.phase == RunPhase.EQUILIBRIUM_REACHED
        assert [s.emitted_by for s in biosphere.history] == [SYSTEM]
        assert biosphere.history[0].thought == INTERVENTION_TEXT
        assert thoughts_of(listener) == [INTERVENTION_TEXT]

    @pytest.mark.asyncio
    async def test_detector_skipped_without_scenario(self, fake_llm):
        """No scenario, no equilibrium detection."""
        detector = MagicMock()
        detector.detect = AsyncMock()
        biosphere = make_biosphere(fake_llm, max_ticks=2, detector=detector)

        states = await run_ticks(biosphere)

        detector.detect.assert_not_awaited()
        assert all(s.equilibrium is None for s in states)

    @pytest.mark.asyncio
    async def test_failed_thought_embedding_drops_only_that_thought(self, pair_vectors):
        """The agent's remaining thoughts are still routed."""
        llm = FakeBackend(vectors={**pair_vectors, "good thought": basis(0)})
        llm.failing_embeds.add("bad thought")
        biosphere = make_biosphere(llm)
        await biosphere.birth(scripted("source", ["source field"], ["bad thought", "good thought"]))
        receiver = scripted("receiver", ["receiver field"])
        await biosphere.birth(receiver)

        await run_ticks(biosphere)

        assert [s.thought for s in biosphere.history] == ["good thought"]
        assert thoughts_of(receiver) == ["good thought"]

    @pytest.mark.asyncio
    async def test_failing_agent_does_not_stop_others(self, pair_vectors):
        """One agent's emission error is contained to that agent."""
        llm = FakeBackend(vectors={**pair_vectors, "still here": basis(0)})

        async def explode(signal):
            raise RuntimeError("agent crashed")
            yield  # pragma: no cover

        biosphere = make_biosphere(llm)
        await biosphere.birth(FunctionAgent("broken", "Broken", ReceptorField(patterns=["broken"]), explode))
        await biosphere.birth(scripted("source", ["source field"], ["still here"]))
        receiver = scripted("receiver", ["receiver field"])
        await biosphere.birth(receiver)

        await run_ticks(biosphere)

        assert thoughts_of(receiver) == ["still here"]

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_fatal(self, pair_vectors):
        """A thought embedded at another dimensionality aborts the run."""
        llm = FakeBackend(vectors={**pair_vectors, "odd": np.ones(3)})
        biosphere = make_biosphere(llm)
        await biosphere.birth(scripted("source", ["source field"], ["odd"]))

        with pytest.raises(DimensionMismatchError):
            await run_ticks(biosphere)

    @pytest.mark.asyncio
    async def test_dimension_mismatch_cancels_other_agents(self, pair_vectors):
        """Agents still emitting when the run aborts are cancelled, not left running."""
        llm = FakeBackend(vectors={**pair_vectors, "odd": np.ones(3)})
        never = asyncio.Event()
        cancelled = []

        async def wait_forever(signal):
            try:
                await never.wait()
            except asyncio.CancelledError:
                cancelled.append(True)
                raise
            yield "unreachable"  # pragma: no cover

        biosphere = make_biosphere(llm)
        await biosphere.birth(FunctionAgent("waiter", "Waiter", ReceptorField(patterns=["waiter"]), wait_forever))
        await biosphere.birth(scripted("source", ["source field"], ["odd"]))

        with pytest.raises(DimensionMismatchError):
            await run_ticks(biosphere)

        assert cancelled == [True]

    @pytest.mark.asyncio
    async def test_signal_hooks(self, pair_vectors):
        """Observers see emission and routing."""
        llm = FakeBackend(vectors={**pair_vectors, "direct": basis(0)})
        observer = MagicMock()
        biosphere = make_biosphere(llm, observer=observer)
        await biosphere.birth(scripted("source", ["source field"], ["direct"]))
        receiver = scripted("receiver", ["receiver field"])
        await biosphere.birth(receiver)

        await run_ticks(biosphere)

        emitted = observer.on_signal_emitted.call_args.args[0]
        routed_signal, receivers, tick = observer.on_signal_routed.call_args.args
        assert emitted.thought == "direct"
        assert routed_signal is emitted
        assert receivers == [receiver]
        assert tick == 0

    @pytest.mark.asyncio
    async def test_observer_errors_are_contained(self, fake_llm):
        """A broken observer does not break admission."""
        observer = MagicMock()
        observer.on_agent_born.side_effect = RuntimeError("ui crashed")
        biosphere = make_biosphere(fake_llm, observer=observer)

        await biosphere.birth(scripted("a", ["a"]))

        assert "a" in biosphere.agents

    @pytest.mark.asyncio
    async def test_state_snapshot(self, fake_llm):
        """Snapshots are copies of the live state."""
        biosphere = make_biosphere(fake_llm)
        await biosphere.birth(scripted("a", ["a"]))

        state = biosphere.get_state()
        state.agents.clear()

        assert "a" in biosphere.agents
        assert set(state.receptor_cache) == {"a"}
