"""
Shared packet capture for the SYN engine.

One promiscuous capture handle is opened per target IP. Its frames are
fanned out by a FrameBroadcaster to every in-flight probe whose predicate
matches, each probe reading from its own asyncio.Queue.
"""
import asyncio
import logging
import random
import threading
from typing import Callable, List, Optional, Set

from scapy.config import conf
from scapy.error import Scapy_Exception
from scapy.sendrecv import AsyncSniffer

from l4scan.utils.exceptions import CaptureUnavailable, ScanError
from l4scan.utils.logger import get_logger

logger = get_logger(__name__)

# IANA dynamic/private range, upper bound exclusive
EPHEMERAL_PORT_MIN = 49152
EPHEMERAL_PORT_MAX = 65535

FramePredicate = Callable[[bytes], bool]


class Subscription:
    """A probe's view of the capture stream."""

    def __init__(self, predicate: FramePredicate, loop: asyncio.AbstractEventLoop):
        self.predicate = predicate
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue()

    def deliver(self, frame: bytes) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, frame)


class FrameBroadcaster:
    """
    Fan-out of captured frames to per-probe subscribers.

    publish() runs on the sniffer thread while probes subscribe and
    unsubscribe from the event loop, so the subscriber list is guarded by a
    lock and frames are handed to the loop with call_soon_threadsafe.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Subscription] = []

    def subscribe(self, predicate: FramePredicate) -> Subscription:
        subscription = Subscription(predicate, asyncio.get_running_loop())
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def publish(self, frame: bytes) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            if subscription.predicate(frame):
                subscription.deliver(frame)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


class EphemeralPortPool:
    """Random source ports in [49152, 65535) that are never handed out twice at once."""

    def __init__(self, low: int = EPHEMERAL_PORT_MIN, high: int = EPHEMERAL_PORT_MAX,
                 rng: Optional[random.Random] = None):
        self.low = low
        self.high = high
        self._rng = rng or random.Random()
        self._in_use: Set[int] = set()

    def acquire(self) -> int:
        size = self.high - self.low
        if len(self._in_use) >= size:
            raise ScanError("Ephemeral source ports exhausted")
        while True:
            port = self._rng.randrange(self.low, self.high)
            if port not in self._in_use:
                self._in_use.add(port)
                return port

    def release(self, port: int) -> None:
        self._in_use.discard(port)

    @property
    def in_use(self) -> Set[int]:
        return set(self._in_use)


class PacketCapture:
    """
    Promiscuous scapy capture on one interface, feeding raw frames to a callback.

    The listening socket is opened synchronously so that permission or device
    errors surface as CaptureUnavailable before any probe is sent; the
    AsyncSniffer thread then reads from it.
    """

    def __init__(self, interface: str, bpf_filter: str,
                 on_frame: Callable[[bytes], None], logger: Optional[logging.Logger] = None):
        self.interface = interface
        self.bpf_filter = bpf_filter
        self.on_frame = on_frame
        self.logger = logger or get_logger(__name__)
        self._socket = None
        self._sniffer: Optional[AsyncSniffer] = None

    def open(self) -> "PacketCapture":
        try:
            self._socket = conf.L2listen(
                iface=self.interface, filter=self.bpf_filter, promisc=True
            )
        except (OSError, Scapy_Exception) as e:
            raise CaptureUnavailable(
                self.interface, f"Cannot capture on interface `{self.interface}`: {e}"
            ) from e

        self._sniffer = AsyncSniffer(
            opened_socket=self._socket, prn=self._handle, store=False
        )
        self._sniffer.start()
        self.logger.debug(f"Capturing on {self.interface} with filter '{self.bpf_filter}'")
        return self

    def _handle(self, packet) -> None:
        self.on_frame(bytes(packet))

    def close(self) -> None:
        if self._sniffer is not None:
            try:
                self._sniffer.stop()
            except Scapy_Exception as e:
                self.logger.warning(f"Error stopping sniffer: {e}")
            self._sniffer = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None


def open_capture(interface: str, bpf_filter: str,
                 on_frame: Callable[[bytes], None]) -> PacketCapture:
    """Open and start a capture; raises CaptureUnavailable."""
    return PacketCapture(interface, bpf_filter, on_frame).open()
