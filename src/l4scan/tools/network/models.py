"""
Result types shared by the scan engines.
"""
import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple


class PortState(Enum):
    """Enumeration of possible port states."""
    OPEN = "open"
    CLOSED = "closed"
    FILTERED = "filtered"


class Protocol(Enum):
    """Transport protocols the scanner probes."""
    TCP = "tcp"
    UDP = "udp"


@dataclass(frozen=True)
class ScanTarget:
    """One (ip, port, protocol) triple to classify."""
    ip: str
    port: int
    protocol: Protocol


@dataclass(frozen=True)
class Probe:
    """An in-flight probe: the local endpoint used to correlate replies."""
    source_ip: str
    source_port: int
    dest_ip: str
    dest_port: int
    protocol: Protocol

    def result(self, state: "PortState", reason: Optional[str] = None) -> "PortResult":
        return PortResult(self.dest_ip, self.dest_port, self.protocol, state, reason)


@dataclass
class PortResult:
    """Represents the result of a port scan for a single port."""
    ip: str
    port: int
    protocol: Protocol
    state: PortState
    reason: Optional[str] = None

    @property
    def target(self) -> ScanTarget:
        return ScanTarget(self.ip, self.port, self.protocol)

    def to_line(self) -> str:
        """Render the result in the `<ip> <port> <protocol> <state>` form."""
        return f"{self.ip} {self.port} {self.protocol.value} {self.state.value}"

    def to_dict(self) -> Dict:
        """Convert the result to a dictionary."""
        return {
            "ip": self.ip,
            "port": self.port,
            "protocol": self.protocol.value,
            "state": self.state.value,
            "reason": self.reason,
        }


@dataclass
class ScanSession:
    """All results for one target IP, keyed by (port, protocol)."""
    ip: str
    results: Dict[Tuple[int, Protocol], PortResult] = field(default_factory=dict)
    error: Optional[str] = None

    def record(self, result: PortResult) -> None:
        """Store a terminal result. A port is only ever classified once."""
        key = (result.port, result.protocol)
        if key in self.results:
            raise ValueError(
                f"{self.ip} {result.port}/{result.protocol.value} already classified"
            )
        self.results[key] = result

    def record_all(self, results: Dict[int, PortResult]) -> None:
        for result in results.values():
            self.record(result)

    def ordered(self, protocol: Optional[Protocol] = None) -> List[PortResult]:
        """Results sorted by protocol (TCP first) then ascending port."""
        order = {Protocol.TCP: 0, Protocol.UDP: 1}
        selected = [
            r for r in self.results.values()
            if protocol is None or r.protocol == protocol
        ]
        return sorted(selected, key=lambda r: (order[r.protocol], r.port))

    def lines(self) -> Iterator[str]:
        for result in self.ordered():
            yield result.to_line()

    def counts(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in PortState}
        for result in self.results.values():
            counts[result.state.value] += 1
        return counts

    def to_dict(self) -> Dict:
        return {
            "ip": self.ip,
            "error": self.error,
            "results": [r.to_dict() for r in self.ordered()],
        }


def ip_version(address: str) -> int:
    """Return 4 or 6 for an address string (IPv6 scope suffixes allowed)."""
    return ipaddress.ip_address(address).version


def strip_scope(address: str) -> str:
    """Drop an IPv6 `%scope` suffix."""
    return address.split("%", 1)[0]
