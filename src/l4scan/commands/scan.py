"""Scan command for l4scan.

Parses the port and timeout options, then hands a validated request to
the PortScanner core.
"""

import asyncio
import sys
from typing import List, Optional, Tuple

import click
from rich.console import Console

from l4scan.config import settings
from l4scan.core.validators import parse_ports, validate_scan_request
from l4scan.tools.network import PortScanner
from l4scan.utils.exceptions import PortSpecError, ScanError, ValidationError
from l4scan.utils.formatters import format_scan_results

from .interfaces import print_interfaces

console = Console()


def _port_list(ctx, param, values: Tuple[str, ...]) -> List[int]:
    """Click callback: expand every occurrence of a port option into one list."""
    ports = []
    for value in values:
        try:
            ports.extend(parse_ports(value))
        except PortSpecError as e:
            raise click.BadParameter(str(e), ctx=ctx, param=param)
    return list(dict.fromkeys(ports))


@click.command("scan")
@click.argument("host", required=False)
@click.option(
    "-i", "--interface",
    is_flag=False,
    flag_value="",
    default=None,
    help="Interface to scan from; without a value, list interfaces"
)
@click.option(
    "-t", "--pt", "tcp_ports",
    multiple=True,
    callback=_port_list,
    help="TCP ports (e.g., 22 or 1-1024 or 80,443,8000-8002)"
)
@click.option(
    "-u", "--pu", "udp_ports",
    multiple=True,
    callback=_port_list,
    help="UDP ports (e.g., 53 or 1-65535)"
)
@click.option(
    "-w", "--wait", "timeout",
    type=click.IntRange(min=1),
    default=None,
    help="Timeout in milliseconds per probe (default: 5000)"
)
@click.option(
    "--concurrent",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum number of probes in flight per target"
)
@click.option(
    "--syn-method",
    type=click.Choice(["connect", "raw"], case_sensitive=False),
    default=None,
    help="How SYNs are sent: kernel connect() or scapy-crafted packets"
)
@click.option(
    "--format",
    type=click.Choice(["text", "table", "json"], case_sensitive=False),
    default=None,
    help="Output format"
)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, writable=True),
    help="Save results to file"
)
def scan_command(
    host: Optional[str],
    interface: Optional[str],
    tcp_ports: List[int],
    udp_ports: List[int],
    timeout: Optional[int],
    concurrent: Optional[int],
    syn_method: Optional[str],
    format: Optional[str],
    output: Optional[str]
) -> None:
    """
    SYN scan TCP ports and ICMP-probe UDP ports on HOST.

    Raw capture privileges (root or CAP_NET_RAW) are required.

    Examples:

    \b
    # TCP ports 22, 80 and 443 through eth0
    l4scan scan -i eth0 -t 22,80,443 scanme.example.org

    \b
    # UDP range with a 1 second timeout
    l4scan scan -i eth0 -u 50-60 -w 1000 192.0.2.10

    \b
    # List interfaces
    l4scan scan -i
    """
    if interface == "" or (interface is None and not host and not tcp_ports and not udp_ports):
        print_interfaces()
        return

    interface = interface or settings.scanning.default_interface
    try:
        validate_scan_request(interface, tcp_ports, udp_ports, host)
    except ValidationError as e:
        raise click.UsageError(str(e))

    format = (format or settings.output.default_format).lower()

    try:
        scanner = PortScanner(
            interface,
            tcp_ports=tcp_ports,
            udp_ports=udp_ports,
            timeout=timeout,
            max_concurrent=concurrent,
            syn_method=syn_method.lower() if syn_method else None,
        )
        sessions = asyncio.run(scanner.run(host))
    except ScanError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        raise click.Abort()

    rendered = format_scan_results(sessions, format_type=format, host=host)

    if format == "table":
        console.print(rendered)
        if output:
            with open(output, "w") as f:
                Console(file=f, force_terminal=False, width=120).print(rendered)
    else:
        if rendered:
            click.echo(rendered)
        if output:
            with open(output, "w") as f:
                f.write(rendered + "\n")

    for session in sessions:
        if session.error:
            print(f"Error: {session.ip}: {session.error}", file=sys.stderr)
