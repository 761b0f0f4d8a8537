"""Interface listing command for l4scan."""

import click
from rich.console import Console

from l4scan.tools.network.interfaces import list_interfaces
from l4scan.utils.formatters import format_interfaces_table

console = Console()


def print_interfaces() -> None:
    """Print every local interface with its addresses."""
    console.print(format_interfaces_table(list_interfaces()))


@click.command("interfaces")
def interfaces_command() -> None:
    """List network interfaces usable with `scan -i`."""
    print_interfaces()
