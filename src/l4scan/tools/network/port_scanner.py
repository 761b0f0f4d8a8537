"""
Port Scanner Module for l4scan.
Runs the TCP SYN and UDP ICMP engines over every resolved address of a host.
"""
import logging
from typing import List, Optional, Sequence

from l4scan.config import settings
from l4scan.core.validators import resolve_host, validate_positive, validate_timeout
from l4scan.utils.exceptions import ConfigurationError
from l4scan.utils.logger import setup_logger

from .models import PortState, ScanSession
from .tcp_syn import SYN_SENDERS, TcpSynScanner
from .udp_icmp import UdpIcmpScanner


class PortScanner:
    """Scan session driver: one TCP and one UDP pass per target IP."""

    def __init__(self,
                 interface: str,
                 tcp_ports: Optional[Sequence[int]] = None,
                 udp_ports: Optional[Sequence[int]] = None,
                 timeout: Optional[int] = None,
                 max_concurrent: Optional[int] = None,
                 retry_window: Optional[int] = None,
                 syn_method: Optional[str] = None,
                 tcp_scanner: Optional[TcpSynScanner] = None,
                 udp_scanner: Optional[UdpIcmpScanner] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the port scanner.

        Args:
            interface: Local interface to scan from
            tcp_ports: TCP ports to SYN scan
            udp_ports: UDP ports to probe
            timeout: Per-probe timeout in milliseconds (config default when None)
            max_concurrent: Maximum probes in flight per target
            retry_window: TCP retry wait in milliseconds
            syn_method: 'connect' or 'raw'
            tcp_scanner: Pre-built TCP engine (replaces the default one)
            udp_scanner: Pre-built UDP engine (replaces the default one)
        """
        self.logger = logger or setup_logger(__name__)
        scanning = settings.scanning

        self.interface = interface
        self.tcp_ports = list(dict.fromkeys(tcp_ports or []))
        self.udp_ports = list(dict.fromkeys(udp_ports or []))
        if not self.tcp_ports and not self.udp_ports:
            raise ValueError("At least one TCP or UDP port must be given.")

        self.timeout = validate_timeout(
            scanning.default_timeout if timeout is None else timeout
        )
        self.max_concurrent = validate_positive(
            "max_concurrent", scanning.max_concurrent if max_concurrent is None else max_concurrent
        )
        retry_window = validate_positive(
            "retry_window", scanning.retry_window if retry_window is None else retry_window
        )

        self.tcp_scanner = tcp_scanner or TcpSynScanner(
            interface,
            timeout=self.timeout,
            retry_window=retry_window,
            max_concurrent=self.max_concurrent,
            syn_sender=SYN_SENDERS[syn_method or scanning.syn_method],
        )
        self.udp_scanner = udp_scanner or UdpIcmpScanner(
            interface,
            timeout=self.timeout,
            max_concurrent=self.max_concurrent,
        )
        self.sessions: List[ScanSession] = []

    async def scan_target(self, ip: str) -> ScanSession:
        """Run both engines against one address and collect the session."""
        session = ScanSession(ip)
        if self.tcp_ports:
            session.record_all(await self.tcp_scanner.scan(ip, self.tcp_ports))
        if self.udp_ports:
            session.record_all(await self.udp_scanner.scan(ip, self.udp_ports))
        return session

    async def scan(self, addresses: Sequence[str]) -> List[ScanSession]:
        """
        Scan every address in turn.

        A configuration error aborts only the affected address; it is
        re-raised when that address is the only one.
        """
        self.sessions = []
        for ip in addresses:
            try:
                session = await self.scan_target(ip)
            except ConfigurationError as e:
                if len(addresses) == 1:
                    raise
                self.logger.error(f"Skipping {ip}: {e}")
                session = ScanSession(ip, error=str(e))

            counts = session.counts()
            self.logger.info(
                f"Finished {ip}: {counts['open']} open, {counts['closed']} closed, "
                f"{counts['filtered']} filtered"
            )
            self.sessions.append(session)

        return self.sessions

    async def run(self, host: str) -> List[ScanSession]:
        """Resolve the host and scan all of its addresses."""
        addresses = await resolve_host(host)
        return await self.scan(addresses)

    def get_open_ports(self) -> List:
        """Results in the open state across all sessions."""
        return [
            result
            for session in self.sessions
            for result in session.ordered()
            if result.state == PortState.OPEN
        ]


async def scan_host(interface: str, host: str,
                    tcp_ports: Optional[Sequence[int]] = None,
                    udp_ports: Optional[Sequence[int]] = None,
                    timeout: Optional[int] = None,
                    max_concurrent: Optional[int] = None) -> List[ScanSession]:
    """Convenience wrapper: resolve `host` and scan it from `interface`."""
    scanner = PortScanner(
        interface,
        tcp_ports=tcp_ports,
        udp_ports=udp_ports,
        timeout=timeout,
        max_concurrent=max_concurrent,
    )
    return await scanner.run(host)
