"""qadigest command-line interface."""

from qadigest.cli.main import cli, main

__all__ = ["cli", "main"]
