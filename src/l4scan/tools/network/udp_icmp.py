"""
UDP scan engine based on ICMP port-unreachable inference.

A port that answers a datagram with ICMP port-unreachable is closed; silence
until the timeout is read as open. A silent drop by a firewall in between
looks the same as an open port, which is inherent to the technique.
"""
import asyncio
import logging
import socket
from typing import Dict, Iterable, Optional

from l4scan.utils.logger import get_logger, setup_logger

from .interfaces import resolve_local_address
from .models import PortResult, PortState, Protocol, ip_version
from .packets import icmp_unreachable_source_port

DEFAULT_TIMEOUT_MS = 5000
BUFFER_SIZE = 4096
PROBE_PAYLOAD = b"\x00"


class IcmpListener:
    """
    Raw ICMP receive path shared by all UDP probes of one target.

    Port-unreachable messages are routed to the probe whose local UDP port
    appears as the source port of the embedded datagram; anything else is
    dropped.
    """

    def __init__(self, family: int = socket.AF_INET, logger: Optional[logging.Logger] = None):
        self.family = family
        self.logger = logger or get_logger(__name__)
        self._sock: Optional[socket.socket] = None
        self._reader: Optional[asyncio.Task] = None
        self._waiters: Dict[int, asyncio.Future] = {}
        self.error: Optional[OSError] = None

    def open(self) -> "IcmpListener":
        """Open the raw socket and start reading; raises OSError without privileges."""
        if self.family == socket.AF_INET6:
            sock = socket.socket(socket.AF_INET6, socket.SOCK_RAW, socket.IPPROTO_ICMPV6)
        else:
            sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
        sock.setblocking(False)
        self._sock = sock
        self._reader = asyncio.get_running_loop().create_task(self._read_loop())
        return self

    async def _read_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                packet = await loop.sock_recv(self._sock, BUFFER_SIZE)
            except OSError as e:
                self.logger.warning(f"ICMP receive failed, listener stopped: {e}")
                self.fail(e)
                return
            self.feed(packet)

    def fail(self, error: OSError) -> None:
        """Stop correlating: every waiting and later probe sees `error`."""
        self.error = error
        for waiter in self._waiters.values():
            if not waiter.done():
                waiter.set_exception(error)

    def feed(self, packet: bytes) -> None:
        """Dispatch one received ICMP packet to the matching probe, if any."""
        source_port = icmp_unreachable_source_port(packet, self.family)
        if source_port is None:
            return
        waiter = self._waiters.get(source_port)
        if waiter is not None and not waiter.done():
            waiter.set_result(source_port)

    def register(self, local_port: int) -> asyncio.Future:
        if self.error is not None:
            raise OSError(self.error.errno, f"ICMP listener failed: {self.error}")
        waiter = asyncio.get_running_loop().create_future()
        self._waiters[local_port] = waiter
        return waiter

    def unregister(self, local_port: int) -> None:
        waiter = self._waiters.pop(local_port, None)
        if waiter is not None and not waiter.done():
            waiter.cancel()

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None


class UdpIcmpScanner:
    """Classify UDP ports of one target as open or closed."""

    def __init__(self,
                 interface: str,
                 timeout: int = DEFAULT_TIMEOUT_MS,
                 max_concurrent: int = 100,
                 listener_factory=IcmpListener,
                 address_resolver=resolve_local_address,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            interface: Interface whose address the probe sockets bind to
            timeout: How long silence is awaited, in milliseconds
            max_concurrent: Maximum number of probes in flight
            listener_factory: Callable(family) returning an unopened IcmpListener
            address_resolver: Callable(interface, family) returning the local address
        """
        self.logger = logger or setup_logger(__name__)
        self.interface = interface
        self.timeout = timeout
        self.max_concurrent = max_concurrent
        self.listener_factory = listener_factory
        self.address_resolver = address_resolver

    async def scan(self, target_ip: str, ports: Iterable[int]) -> Dict[int, PortResult]:
        """
        Scan the given UDP ports on one target.

        Raises:
            ConfigurationError: the interface or its address cannot be resolved
        """
        ports = list(dict.fromkeys(ports))
        family = socket.AF_INET6 if ip_version(target_ip) == 6 else socket.AF_INET
        local_ip = self.address_resolver(self.interface, family)

        listener = self.listener_factory(family)
        try:
            listener.open()
        except OSError as e:
            self.logger.error(
                f"Cannot open ICMP listener for {target_ip}: {e}; "
                f"marking {len(ports)} UDP ports closed"
            )
            return {
                port: PortResult(target_ip, port, Protocol.UDP,
                                 PortState.CLOSED, "icmp-listener-unavailable")
                for port in ports
            }

        self.logger.info(f"UDP scanning {len(ports)} ports on {target_ip} from {local_ip}")
        semaphore = asyncio.Semaphore(self.max_concurrent)
        try:
            results = await asyncio.gather(*[
                self._probe_port(semaphore, listener, family, local_ip, target_ip, port)
                for port in ports
            ])
        finally:
            await listener.close()

        return {result.port: result for result in results}

    async def _probe_port(self, semaphore: asyncio.Semaphore, listener: IcmpListener,
                          family: int, local_ip: str, target_ip: str,
                          port: int) -> PortResult:
        async with semaphore:
            try:
                sock = socket.socket(family, socket.SOCK_DGRAM)
            except OSError as e:
                return self._socket_failure(target_ip, port, e)

            local_port = None
            try:
                sock.setblocking(False)
                sock.bind(_bind_address(local_ip, family))
                local_port = sock.getsockname()[1]
                waiter = listener.register(local_port)
                sock.sendto(PROBE_PAYLOAD, _bind_address(target_ip, family, port))

                try:
                    await asyncio.wait_for(waiter, self.timeout / 1000)
                except asyncio.TimeoutError:
                    return PortResult(target_ip, port, Protocol.UDP,
                                      PortState.OPEN, "no-response")
                return PortResult(target_ip, port, Protocol.UDP,
                                  PortState.CLOSED, "port-unreachable")
            except OSError as e:
                return self._socket_failure(target_ip, port, e)
            finally:
                if local_port is not None:
                    listener.unregister(local_port)
                sock.close()

    def _socket_failure(self, target_ip: str, port: int, error: OSError) -> PortResult:
        self.logger.debug(f"UDP probe to {target_ip}:{port} failed: {error}")
        return PortResult(target_ip, port, Protocol.UDP, PortState.CLOSED,
                          f"socket-error: {error}")


def _bind_address(address: str, family: int, port: int = 0):
    return socket.getaddrinfo(address, port, family, socket.SOCK_DGRAM)[0][4]
