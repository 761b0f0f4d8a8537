"""Network scanning tools for l4scan."""

from .models import PortResult, PortState, Protocol, ScanSession, ScanTarget
from .port_scanner import PortScanner, scan_host
from .tcp_syn import TcpSynScanner
from .udp_icmp import UdpIcmpScanner

__all__ = [
    "PortScanner",
    "PortResult",
    "PortState",
    "Protocol",
    "ScanSession",
    "ScanTarget",
    "TcpSynScanner",
    "UdpIcmpScanner",
    "scan_host",
]
