"""
Main CLI entry point for compintel
"""

import logging

import click

from ..core.observability import setup_logfire
from .analyses import analyses_group
from .providers import providers_group


@click.group()
@click.version_option(version='0.1.0')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
def cli(verbose: bool):
    """
    compintel - Competitor analysis client

    Start multi-provider competitor analyses and manage saved results.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    setup_logfire()


# Register command groups
cli.add_command(analyses_group)
cli.add_command(providers_group)


if __name__ == '__main__':
    cli()
