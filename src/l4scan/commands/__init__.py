"""
Commands package for l4scan.
This module registers all available commands.
"""


def register_commands(cli):
    """Register all commands with the main CLI.

    Args:
        cli: The main Click command group
    """
    from .scan import scan_command
    cli.add_command(scan_command)

    from .interfaces import interfaces_command
    cli.add_command(interfaces_command)
