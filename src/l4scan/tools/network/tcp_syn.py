"""
TCP SYN (half-open) scan engine.

For each target IP a single promiscuous capture is opened and shared by all
per-port probes. Each probe:

1. takes an unused ephemeral source port,
2. subscribes a predicate matching replies from (target, port) to that
   ephemeral port,
3. sends a SYN and waits for the timeout,
4. resends once and waits for the shorter retry window,
5. classifies SYN+ACK as open, RST as closed, silence as filtered.

Responses are only ever observed through the capture. With the `raw` sender
no handshake is ever completed; the default `connect` sender is best effort
(see send_syn).
"""
import asyncio
import ipaddress
import logging
import random
import socket
import struct
import time
from functools import partial
from typing import Callable, Dict, Iterable, Optional

from l4scan.utils.exceptions import CaptureUnavailable
from l4scan.utils.logger import setup_logger

from .capture import EphemeralPortPool, FrameBroadcaster, Subscription, open_capture
from .interfaces import resolve_local_address
from .models import PortResult, PortState, Probe, Protocol, ip_version, strip_scope
from .packets import classify_tcp_flags, is_probe_response, tcp_flags

DEFAULT_TIMEOUT_MS = 5000
RETRY_WINDOW_MS = 500

SynSender = Callable[[str, str, int, int], None]


def _sockaddr(address: str, port: int):
    family = socket.AF_INET6 if ip_version(address) == 6 else socket.AF_INET
    return socket.getaddrinfo(address, port, family, socket.SOCK_STREAM)[0][4]


def send_syn(source_ip: str, target_ip: str, source_port: int, target_port: int) -> None:
    """
    Emit a SYN by starting a non-blocking connect and abandoning it.

    Best effort: the socket is closed straight away, but a SYN+ACK that is
    processed before close() (always the case on loopback) lets the kernel
    complete the handshake. Zero linger makes close() abort such a
    connection with RST instead of a FIN exchange. Use the `raw` method when
    no ACK may leave the host.
    """
    family = socket.AF_INET6 if ip_version(target_ip) == 6 else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setblocking(False)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
        sock.bind(_sockaddr(source_ip, source_port))
        sock.connect_ex(_sockaddr(target_ip, target_port))
    finally:
        sock.close()


def send_raw_syn(source_ip: str, target_ip: str, source_port: int, target_port: int) -> None:
    """Craft and send the SYN with scapy instead of the kernel's connect()."""
    from scapy.layers.inet import IP, TCP
    from scapy.layers.inet6 import IPv6
    from scapy.sendrecv import send

    network = IPv6 if ip_version(target_ip) == 6 else IP
    packet = network(src=strip_scope(source_ip), dst=strip_scope(target_ip)) / TCP(
        sport=source_port, dport=target_port, flags="S", seq=random.getrandbits(32)
    )
    send(packet, verbose=0)


SYN_SENDERS = {"connect": send_syn, "raw": send_raw_syn}


def retry_window_for(timeout_ms: int, retry_window_ms: int = RETRY_WINDOW_MS) -> float:
    """The retry wait is the configured window, at most half the main timeout."""
    if retry_window_ms * 2 <= timeout_ms:
        return retry_window_ms
    return timeout_ms / 2


class TcpSynScanner:
    """Classify TCP ports of one target at a time from half-open SYN probes."""

    def __init__(self,
                 interface: str,
                 timeout: int = DEFAULT_TIMEOUT_MS,
                 retry_window: int = RETRY_WINDOW_MS,
                 max_concurrent: int = 100,
                 syn_sender: SynSender = send_syn,
                 capture_factory=open_capture,
                 address_resolver=resolve_local_address,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            interface: Interface to capture on and take the source address from
            timeout: Wait for the first SYN, in milliseconds
            retry_window: Wait after the single retry, in milliseconds
            max_concurrent: Maximum number of probes in flight
            syn_sender: Callable(source_ip, target_ip, source_port, target_port)
            capture_factory: Callable(interface, bpf_filter, on_frame) returning
                an object with close(); raises CaptureUnavailable
            address_resolver: Callable(interface, family) returning the local address
        """
        self.logger = logger or setup_logger(__name__)
        self.interface = interface
        self.timeout = timeout
        self.retry_window = retry_window_for(timeout, retry_window)
        self.max_concurrent = max_concurrent
        self.syn_sender = syn_sender
        self.capture_factory = capture_factory
        self.address_resolver = address_resolver

    async def scan(self, target_ip: str, ports: Iterable[int]) -> Dict[int, PortResult]:
        """
        Scan the given ports on one target.

        Returns:
            Mapping of port to its PortResult, one entry per requested port.

        Raises:
            ConfigurationError: the interface or its address cannot be resolved
        """
        ports = list(dict.fromkeys(ports))
        version = ip_version(target_ip)
        family = socket.AF_INET6 if version == 6 else socket.AF_INET
        local_ip = self.address_resolver(self.interface, family)

        if version == 6 and self._link_local_mismatch(local_ip, target_ip):
            self.logger.warning(
                f"Local address {local_ip} is link-local, cannot reach {target_ip}; "
                f"marking {len(ports)} TCP ports filtered"
            )
            return self._all(target_ip, ports, PortState.FILTERED, "link-local-source")

        broadcaster = FrameBroadcaster()
        bpf_filter = f"tcp and src host {strip_scope(target_ip)}"
        try:
            capture = self.capture_factory(self.interface, bpf_filter, broadcaster.publish)
        except CaptureUnavailable as e:
            self.logger.error(f"{e}; marking {len(ports)} TCP ports on {target_ip} filtered")
            return self._all(target_ip, ports, PortState.FILTERED, "capture-unavailable")

        self.logger.info(f"SYN scanning {len(ports)} ports on {target_ip} from {local_ip}")
        semaphore = asyncio.Semaphore(self.max_concurrent)
        port_pool = EphemeralPortPool()
        try:
            results = await asyncio.gather(*[
                self._probe_port(semaphore, broadcaster, port_pool, local_ip, target_ip, port)
                for port in ports
            ])
        finally:
            capture.close()

        return {result.port: result for result in results}

    def _link_local_mismatch(self, local_ip: str, target_ip: str) -> bool:
        local = ipaddress.ip_address(strip_scope(local_ip))
        target = ipaddress.ip_address(strip_scope(target_ip))
        return local.is_link_local and not target.is_link_local

    def _all(self, target_ip, ports, state, reason) -> Dict[int, PortResult]:
        return {
            port: PortResult(target_ip, port, Protocol.TCP, state, reason)
            for port in ports
        }

    async def _probe_port(self, semaphore: asyncio.Semaphore, broadcaster: FrameBroadcaster,
                          port_pool: EphemeralPortPool, local_ip: str, target_ip: str,
                          port: int) -> PortResult:
        async with semaphore:
            probe = Probe(local_ip, port_pool.acquire(), target_ip, port, Protocol.TCP)
            target = ipaddress.ip_address(strip_scope(target_ip)).packed
            subscription = broadcaster.subscribe(partial(
                is_probe_response, target=target, target_port=port,
                source_port=probe.source_port
            ))
            try:
                self._send(probe)
                state = await self._await_verdict(subscription, self.timeout)

                if state is None:
                    self.logger.debug(f"No reply from {target_ip}:{port}, retrying once")
                    self._send(probe)
                    state = await self._await_verdict(subscription, self.retry_window)

                if state is None:
                    return probe.result(PortState.FILTERED, "no-response")

                return probe.result(state, "syn-ack" if state == PortState.OPEN else "rst")
            finally:
                broadcaster.unsubscribe(subscription)
                port_pool.release(probe.source_port)

    def _send(self, probe: Probe) -> None:
        try:
            self.syn_sender(probe.source_ip, probe.dest_ip, probe.source_port, probe.dest_port)
        except OSError as e:
            self.logger.debug(
                f"SYN to {probe.dest_ip}:{probe.dest_port} "
                f"from port {probe.source_port} failed: {e}"
            )

    async def _await_verdict(self, subscription: Subscription,
                             window_ms: int) -> Optional[PortState]:
        """Drain the probe queue until a conclusive frame arrives or the window closes."""
        deadline = time.monotonic() + window_ms / 1000
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            try:
                frame = await asyncio.wait_for(subscription.queue.get(), remaining)
            except asyncio.TimeoutError:
                return None
            state = classify_tcp_flags(tcp_flags(frame))
            if state is not None:
                return state
