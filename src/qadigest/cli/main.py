"""qadigest CLI: main entry point and shared utilities."""

from __future__ import annotations

import logging

import click
from rich.console import Console

from qadigest.core.logging import Verbosity

console = Console()


def setup_logging(verbose: int) -> None:
    """Route library debug logging to stderr at -vv."""
    level = logging.DEBUG if verbose >= 2 else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def verbosity_for(verbose: int) -> Verbosity:
    return Verbosity(min(max(verbose, 0), Verbosity.DEBUG))


@click.group()
@click.version_option(package_name="qadigest")
def main():
    """qadigest: turn Q&A chat transcripts into a knowledge report."""
    pass


def cli():
    """Entrypoint that loads .env before running the CLI."""
    from dotenv import load_dotenv

    load_dotenv()
    main()


# Import subcommand modules to register commands
from qadigest.cli.analyze_commands import analyze, plan  # noqa: E402

main.add_command(analyze)
main.add_command(plan)
