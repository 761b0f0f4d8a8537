"""Input validation and target resolution for l4scan."""

import asyncio
import ipaddress
import socket
from typing import List, Optional

from l4scan.utils.exceptions import PortSpecError, ResolutionError, ValidationError
from l4scan.utils.logger import get_logger

logger = get_logger(__name__)

MIN_PORT = 1
MAX_PORT = 65535


def _parse_port(text: str, spec: str) -> int:
    text = text.strip()
    if not text.isdigit():
        raise PortSpecError(spec, f"Invalid port number {text!r} in {spec!r}")
    port = int(text)
    if port < MIN_PORT or port > MAX_PORT:
        raise PortSpecError(spec, f"Port {port} out of range {MIN_PORT}-{MAX_PORT} in {spec!r}")
    return port


def parse_ports(port_spec: str) -> List[int]:
    """
    Parse a port specification string.

    Supported formats:
        - Single port: "80"
        - Range: "1-1000"
        - Comma-separated: "22,80,443"
        - Mixed: "80,443,8000-8002"

    Ranges expand inclusively. Order of first appearance is kept and
    repeated ports are dropped.

    Raises:
        PortSpecError: on empty parts, non-numeric values, open-ended or
            reversed ranges and out-of-range ports.
    """
    if port_spec is None or not port_spec.strip():
        raise PortSpecError(port_spec or "", "Port specification is empty")

    ports = []
    for part in port_spec.split(","):
        part = part.strip()
        if not part:
            raise PortSpecError(port_spec, f"Empty entry in port specification {port_spec!r}")

        if "-" in part:
            bounds = part.split("-")
            if len(bounds) != 2 or not bounds[0].strip() or not bounds[1].strip():
                raise PortSpecError(port_spec, f"Invalid port range: {part!r}")
            start = _parse_port(bounds[0], port_spec)
            end = _parse_port(bounds[1], port_spec)
            if start > end:
                raise PortSpecError(port_spec, f"Invalid port range: {part!r} (start > end)")
            ports.extend(range(start, end + 1))
        else:
            ports.append(_parse_port(part, port_spec))

    return list(dict.fromkeys(ports))


def _is_positive_int(value) -> bool:
    return not isinstance(value, bool) and isinstance(value, int) and value > 0


def validate_timeout(timeout: int) -> int:
    """Timeouts are positive whole milliseconds."""
    if not _is_positive_int(timeout):
        raise ValidationError(f"Timeout must be a positive number of milliseconds, got {timeout!r}")
    return timeout


def validate_positive(name: str, value: int) -> int:
    if not _is_positive_int(value):
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")
    return value


def validate_scan_request(interface: Optional[str], tcp_ports: List[int],
                          udp_ports: List[int], host: Optional[str]) -> None:
    """Collect every problem with a scan request into one ValidationError."""
    errors = []
    if not host or not host.strip():
        errors.append("Host is required")
    if not tcp_ports and not udp_ports:
        errors.append("At least one port range (TCP or UDP) must be specified")
    if not interface:
        errors.append("Network interface is required")
    if errors:
        raise ValidationError("\n".join(errors))


async def resolve_host(host: str) -> List[str]:
    """
    Resolve a hostname or literal address to all of its IP addresses.

    Literal addresses are returned as-is. Hostnames are resolved without
    blocking the event loop; duplicates are dropped, order is kept.

    Raises:
        ResolutionError: the name does not resolve
    """
    host = host.strip()
    try:
        return [str(ipaddress.ip_address(host))]
    except ValueError:
        pass

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as e:
        raise ResolutionError(
            host,
            f"Could not resolve hostname '{host}'. "
            f"Please verify the hostname is correct and reachable.",
        ) from e

    addresses = list(dict.fromkeys(info[4][0] for info in infos))
    if not addresses:
        raise ResolutionError(host)
    logger.info(f"Resolved '{host}' to {', '.join(addresses)}")
    return addresses
