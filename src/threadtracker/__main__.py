"""CLI entrypoint for running threadtracker as a module."""

from threadtracker.cli import cli
from threadtracker.logging import setup_logging

if __name__ == "__main__":
    setup_logging()
    cli()
