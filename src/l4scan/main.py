#!/usr/bin/env python3
"""
l4scan - Main entry point for the port scanner.
"""
import logging
from pathlib import Path

import click

from l4scan import __version__
from l4scan.config import settings
from l4scan.utils.logger import configure_root_logging, get_logger, resolve_level

logger = get_logger(__name__)

# Import commands after settings are loaded
from l4scan.commands import register_commands  # noqa: E402


@click.group()
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase verbosity (can be used multiple times)",
)
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.option(
    "--log",
    type=click.Path(dir_okay=False, writable=True),
    help="Also write logs to this file",
)
@click.version_option(__version__, prog_name="l4scan")
@click.pass_context
def cli(ctx: click.Context, verbose: int, debug: bool, log):
    """l4scan - TCP SYN and UDP ICMP port scanner."""
    log_level = resolve_level(settings.logging.level)
    if verbose == 1:
        log_level = min(log_level, logging.INFO)
    elif verbose >= 2 or debug:
        log_level = logging.DEBUG

    log_file = log or settings.logging.log_file
    configure_root_logging(log_level, Path(log_file) if log_file else None)

    if debug:
        logger.debug("Debug mode enabled")

    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["verbose"] = verbose


register_commands(cli)

if __name__ == "__main__":
    cli()
