"""
Papir Backend — Command Line Tools
===================================

What:  Operator commands that run outside the HTTP server.
Who:   Installed as the `papir` console script (pyproject.toml).

Commands:
    papir generate-cards --count 250 --output batch_0610.csv
        Reserve 250 new pending card IDs and write the manufacturer manifest.
"""

import asyncio
import sys

import click

from app.config import settings
from app.database import async_session_factory, dispose_engine
from app.exceptions import PapirError
from app.main import setup_logging
from app.services.id_generator import CardBatchGenerator, GeneratedBatch


async def generate_batch(count: int, output: str) -> GeneratedBatch:
    try:
        async with async_session_factory() as session:
            return await CardBatchGenerator(session).generate(count, manifest_path=output)
    finally:
        await dispose_engine()


@click.group()
def cli():
    """Papir CLI tools."""
    pass


@cli.command("generate-cards")
@click.option(
    "--count",
    type=click.IntRange(min=1),
    default=settings.batch_default_size,
    show_default=True,
    help="Number of cards to generate",
)
@click.option(
    "--output",
    type=click.Path(dir_okay=False, writable=True),
    default=settings.manifest_path,
    show_default=True,
    help="Manifest CSV destination",
)
def generate_cards(count: int, output: str):
    """
    Generate a batch of pending cards for printing.

    IDs are checked against every card already stored; the manifest is
    written only after the batch has been committed.
    """
    setup_logging()
    try:
        batch = asyncio.run(generate_batch(count, output))
    except PapirError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    click.echo(f"Generated {len(batch.card_ids)} unique cards")
    click.echo(f"  Manifest: {batch.manifest_path}")
    click.echo(f"  Efficiency: {round(batch.efficiency * 100)}% ({batch.attempts} attempts)")


if __name__ == "__main__":
    cli()
