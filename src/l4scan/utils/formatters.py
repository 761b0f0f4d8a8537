"""Output formatting utilities for scan results."""

import json
from datetime import datetime
from typing import List, Optional

from rich import box
from rich.table import Table

from l4scan.tools.network import PortState, ScanSession

STATE_STYLES = {
    PortState.OPEN: "green",
    PortState.CLOSED: "red",
    PortState.FILTERED: "yellow",
}


def format_scan_results_lines(sessions: List[ScanSession]) -> str:
    """One `<ip> <port> <tcp|udp> <state>` line per result, grouped per target IP.

    TCP results come first in ascending port order, then UDP results.
    """
    lines = []
    for session in sessions:
        lines.extend(session.lines())
    return "\n".join(lines)


def format_scan_results_table(sessions: List[ScanSession]) -> Table:
    """Build a rich table of all results."""
    table = Table(title="Port Scan Results", box=box.ROUNDED)
    table.add_column("Address", justify="left")
    table.add_column("Port", justify="right")
    table.add_column("Proto", justify="left")
    table.add_column("State", justify="left")
    table.add_column("Reason", justify="left", style="dim")

    for session in sessions:
        if session.error:
            table.add_row(session.ip, "-", "-", "[red]error[/red]", session.error)
            continue
        for result in session.ordered():
            style = STATE_STYLES[result.state]
            table.add_row(
                result.ip,
                str(result.port),
                result.protocol.value,
                f"[{style}]{result.state.value}[/{style}]",
                result.reason or "",
            )

    return table


def format_scan_results_json(sessions: List[ScanSession], host: Optional[str] = None) -> str:
    """Serialize the sessions with a timestamp."""
    return json.dumps(
        {
            "host": host,
            "timestamp": datetime.now().isoformat(timespec="seconds"),
            "targets": [session.to_dict() for session in sessions],
        },
        indent=2,
    )


def format_scan_results(sessions: List[ScanSession], format_type: str = "text",
                        host: Optional[str] = None):
    """Dispatch to the formatter for `format_type` (text, table or json)."""
    if format_type == "table":
        return format_scan_results_table(sessions)
    if format_type == "json":
        return format_scan_results_json(sessions, host)
    return format_scan_results_lines(sessions)


def format_interfaces_table(interfaces) -> Table:
    """Render the interface listing."""
    table = Table(title="Network Interfaces", box=box.SIMPLE)
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Addresses")
    table.add_column("MAC", style="dim")

    for info in interfaces:
        status = "[green]up[/green]" if info.is_up else "[dim]down[/dim]"
        table.add_row(info.name, status, "\n".join(info.addresses), info.mac or "")

    return table

