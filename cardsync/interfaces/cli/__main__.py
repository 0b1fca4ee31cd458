"""Entry point for running the cardsync CLI.

``python -m cardsync.interfaces.cli`` (or the ``cardsync`` console script)
invokes this group.
"""

import logging

import click

from cardsync.infrastructure.observability import configure_logging

from .control import cancel, clear_signal, reset, status
from .sync import discover, sync


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """cardsync command-line interface."""
    configure_logging(level=logging.DEBUG if verbose else logging.INFO)


cli.add_command(sync)
cli.add_command(discover)
cli.add_command(status)
cli.add_command(reset)
cli.add_command(cancel)
cli.add_command(clear_signal)


if __name__ == "__main__":
    cli()
