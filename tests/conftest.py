import asyncio
import os
import socket
import sys

import pytest

# Add the src directory to the Python path to make l4scan importable
# when the package is not installed in editable mode
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
src_path = os.path.join(project_root, "src")
sys.path.insert(0, src_path)

from scapy.layers.inet import ICMP, IP, TCP, UDP  # noqa: E402
from scapy.layers.inet6 import ICMPv6DestUnreach, IPv6  # noqa: E402
from scapy.layers.l2 import Ether  # noqa: E402

from l4scan.utils.exceptions import CaptureUnavailable  # noqa: E402

LOCAL_MAC = "02:00:00:00:00:01"
PEER_MAC = "02:00:00:00:00:02"


def tcp_frame(src: str, dst: str, sport: int, dport: int, flags: str) -> bytes:
    """An Ethernet frame carrying one TCP segment from src to dst."""
    network = IPv6 if ":" in src else IP
    return bytes(
        Ether(src=PEER_MAC, dst=LOCAL_MAC)
        / network(src=src, dst=dst)
        / TCP(sport=sport, dport=dport, flags=flags)
    )


def icmp_port_unreachable(local_ip: str, target_ip: str, local_port: int,
                          target_port: int) -> bytes:
    """What an IPv4 raw ICMP socket receives when target_port is closed."""
    return bytes(
        IP(src=target_ip, dst=local_ip)
        / ICMP(type=3, code=3)
        / IP(src=local_ip, dst=target_ip)
        / UDP(sport=local_port, dport=target_port)
    )


def icmpv6_port_unreachable(local_ip: str, target_ip: str, local_port: int,
                            target_port: int) -> bytes:
    """What an ICMPv6 raw socket receives when target_port is closed."""
    return bytes(
        ICMPv6DestUnreach(code=4, cksum=0)
        / IPv6(src=local_ip, dst=target_ip)
        / UDP(sport=local_port, dport=target_port)
    )


class FakeNetwork:
    """
    Stands in for both the capture handle and the wire.

    Every SYN handed to send_syn is recorded; when a reply is configured the
    peer's answer is published to the capture subscribers.
    """

    def __init__(self, reply=None, reply_on_attempt=1, delays=None, fail_capture=False):
        self.reply = reply
        self.reply_on_attempt = reply_on_attempt
        self.delays = delays or {}
        self.fail_capture = fail_capture
        self.sent = []
        self.filters = []
        self.closed = 0
        self.publish = None

    def capture_factory(self, interface, bpf_filter, on_frame):
        if self.fail_capture:
            raise CaptureUnavailable(interface, "Operation not permitted")
        self.filters.append(bpf_filter)
        self.publish = on_frame
        return self

    def close(self):
        self.closed += 1

    def attempts(self, port):
        return len([s for s in self.sent if s[3] == port])

    def send_syn(self, source_ip, target_ip, source_port, target_port):
        self.sent.append((source_ip, target_ip, source_port, target_port))
        if self.reply is None or self.attempts(target_port) < self.reply_on_attempt:
            return
        frame = tcp_frame(target_ip, source_ip, target_port, source_port, self.reply)
        delay = self.delays.get(target_port)
        if delay:
            asyncio.get_running_loop().call_later(delay, self.publish, frame)
        else:
            self.publish(frame)


@pytest.fixture
def fake_network():
    return FakeNetwork()


@pytest.fixture
def local_resolver():
    """Address resolver that always answers with the loopback address."""
    def resolve(interface, family):
        return "::1" if family == socket.AF_INET6 else "127.0.0.1"
    return resolve


@pytest.fixture
def sample_ip():
    """Sample target IP address for testing."""
    return "192.0.2.10"


@pytest.fixture
def sample_ports():
    """Sample TCP ports given out of order."""
    return [443, 80, 22]
