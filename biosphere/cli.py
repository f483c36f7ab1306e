"""Click-based CLI for running a biosphere against an LLM backend."""

import asyncio
import logging

import click

from biosphere.config import BiosphereConfig
from biosphere.ecosystem.router import Biosphere, BiosphereState
from biosphere.ecosystem.spawner import GenerativeSpawner
from biosphere.equilibrium.detector import EquilibriumDetector
from biosphere.errors import BiosphereError
from biosphere.llm.client import LLMClient
from biosphere.signal.similarity import cosine_similarity

logger = logging.getLogger(__name__)

DEFAULT_MAX_TICKS = 20


def format_tick(state: BiosphereState) -> str:
    """One-line summary of a tick snapshot."""
    line = f"Tick {state.tick}: {len(state.agents)} agents, {len(state.signals)} signals"
    if state.equilibrium is not None:
        line += f" | {state.equilibrium.reasoning}"
    return line


@click.group()
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
def cli(verbose: bool) -> None:
    """Semantic-resonance multi-agent biosphere.

    Agents exchange natural-language thoughts routed by embedding
    similarity. Backend settings come from BIOSPHERE_LLM_BASE_URL,
    BIOSPHERE_LLM_MODEL, BIOSPHERE_EMBEDDING_MODEL and BIOSPHERE_LLM_API_KEY.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.debug("CLI initialized")


async def _run(scenario: str, config: BiosphereConfig) -> Biosphere:
    async with LLMClient.from_env() as llm:
        biosphere = Biosphere(
            llm,
            spawner=GenerativeSpawner(llm),
            detector=EquilibriumDetector(llm),
            config=config,
        )
        await biosphere.inject(scenario)

        async for state in biosphere.live():
            click.echo(format_tick(state))

        return biosphere


@cli.command()
@click.argument("scenario")
@click.option(
    "--max-ticks",
    "-n",
    type=click.IntRange(min=0),
    default=DEFAULT_MAX_TICKS,
    show_default=True,
    help="Stop after this many ticks if equilibrium is not reached",
)
@click.option(
    "--tick-delay",
    type=click.FloatRange(min=0.0),
    default=0.0,
    show_default=True,
    help="Seconds to wait between ticks",
)
@click.option(
    "--no-meta-observer",
    is_flag=True,
    help="Do not birth the built-in distress observer",
)
def run(scenario: str, max_ticks: int, tick_delay: float, no_meta_observer: bool) -> None:
    """Seed a society for SCENARIO and let it deliberate.

    Examples:

        biosphere run "Should we delay the product launch by a quarter?"

        biosphere -v run "Plan a week of meals on a budget" --max-ticks 5
    """
    config = BiosphereConfig(
        max_ticks=max_ticks,
        tick_delay=tick_delay,
        auto_meta_observer=not no_meta_observer,
        scenario=scenario,
    )
    logger.info(f"Starting biosphere run (max ticks: {max_ticks})")

    try:
        biosphere = asyncio.run(_run(scenario, config))
    except BiosphereError as e:
        logger.error(f"Biosphere run failed: {e}")
        raise click.ClickException(f"Run failed: {e}")

    click.echo(f"Finished: {biosphere.phase.value} after {biosphere.tick} ticks")
    for agent in biosphere.list_agents():
        click.echo(f"  {agent.id}: {agent.name}")


async def _similarity(text_a: str, text_b: str) -> float:
    async with LLMClient.from_env() as llm:
        vector_a = await llm.embed(text_a)
        vector_b = await llm.embed(text_b)
    return cosine_similarity(vector_a, vector_b)


@cli.command()
@click.argument("text_a")
@click.argument("text_b")
def similarity(text_a: str, text_b: str) -> None:
    """Print the cosine similarity of two texts' embeddings."""
    try:
        score = asyncio.run(_similarity(text_a, text_b))
    except BiosphereError as e:
        logger.error(f"Similarity failed: {e}")
        raise click.ClickException(f"Similarity failed: {e}")

    click.echo(f"{score:.4f}")


if __name__ == "__main__":
    cli()
