"""
Frame and datagram parsing for the scan engines.

Captured frames are raw link-layer bytes. Only the fields the engines need
are decoded:

- Ethernet: ethertype at offset 12
- IPv4: header length from the IHL nibble, protocol, source/destination
- IPv6: fixed 40-byte header (extension headers are not walked)
- TCP: ports and the flags byte at offset 13
- ICMP / ICMPv6: destination-unreachable/port-unreachable and the source
  port of the embedded UDP header

Nothing here raises on short or foreign input; parsers return None instead.
"""
import socket
from dataclasses import dataclass
from struct import unpack_from
from typing import Optional

from .models import PortState

ETH_HEADER_LEN = 14
ETHERTYPE_IPV4 = 0x0800
ETHERTYPE_IPV6 = 0x86DD

IPV4_MIN_HEADER_LEN = 20
IPV6_HEADER_LEN = 40
TCP_MIN_HEADER_LEN = 20
TCP_FLAGS_OFFSET = 13
UDP_HEADER_LEN = 8
ICMP_HEADER_LEN = 8

IPPROTO_TCP = 6
IPPROTO_UDP = 17

ICMP_DEST_UNREACHABLE = 3
ICMP_PORT_UNREACHABLE = 3
ICMPV6_DEST_UNREACHABLE = 1
ICMPV6_PORT_UNREACHABLE = 4

# TCP flag bit masks
FIN = 0x01
SYN = 0x02
RST = 0x04
PSH = 0x08
ACK = 0x10
URG = 0x20


@dataclass(frozen=True)
class TcpSegment:
    """The parts of a captured TCP frame used for probe correlation."""
    version: int
    source: bytes
    destination: bytes
    source_port: int
    destination_port: int
    flags: int


def _ip_offsets(frame: bytes):
    """Return (version, ip_offset, transport_offset, protocol) or None."""
    if len(frame) < ETH_HEADER_LEN + IPV4_MIN_HEADER_LEN:
        return None

    ethertype = (frame[12] << 8) | frame[13]
    ip_offset = ETH_HEADER_LEN

    if ethertype == ETHERTYPE_IPV4:
        if frame[ip_offset] >> 4 != 4:
            return None
        ihl = (frame[ip_offset] & 0x0F) * 4
        if ihl < IPV4_MIN_HEADER_LEN:
            return None
        return 4, ip_offset, ip_offset + ihl, frame[ip_offset + 9]

    if ethertype == ETHERTYPE_IPV6:
        if len(frame) < ip_offset + IPV6_HEADER_LEN or frame[ip_offset] >> 4 != 6:
            return None
        return 6, ip_offset, ip_offset + IPV6_HEADER_LEN, frame[ip_offset + 6]

    return None


def parse_tcp_frame(frame: bytes) -> Optional[TcpSegment]:
    """Decode an Ethernet frame carrying TCP over IPv4 or IPv6."""
    offsets = _ip_offsets(frame)
    if offsets is None:
        return None

    version, ip_offset, tcp_offset, protocol = offsets
    if protocol != IPPROTO_TCP or len(frame) < tcp_offset + TCP_MIN_HEADER_LEN:
        return None

    if version == 4:
        source = frame[ip_offset + 12:ip_offset + 16]
        destination = frame[ip_offset + 16:ip_offset + 20]
    else:
        source = frame[ip_offset + 8:ip_offset + 24]
        destination = frame[ip_offset + 24:ip_offset + 40]

    source_port, destination_port = unpack_from("!HH", frame, tcp_offset)
    return TcpSegment(
        version=version,
        source=bytes(source),
        destination=bytes(destination),
        source_port=source_port,
        destination_port=destination_port,
        flags=frame[tcp_offset + TCP_FLAGS_OFFSET],
    )


def tcp_flags(frame: bytes) -> Optional[int]:
    """Read the TCP flags byte of a captured frame."""
    segment = parse_tcp_frame(frame)
    return segment.flags if segment else None


def classify_tcp_flags(flags: Optional[int]) -> Optional[PortState]:
    """RST means closed, SYN+ACK means open, anything else is inconclusive."""
    if flags is None:
        return None
    if flags & RST:
        return PortState.CLOSED
    if flags & (SYN | ACK) == (SYN | ACK):
        return PortState.OPEN
    return None


def is_probe_response(
    frame: bytes, target: bytes, target_port: int, source_port: int
) -> bool:
    """
    Check whether a captured frame answers one specific SYN probe.

    Args:
        frame: Raw link-layer bytes
        target: Packed target address (4 or 16 bytes)
        target_port: Port the probe was sent to
        source_port: Ephemeral port the probe was sent from
    """
    segment = parse_tcp_frame(frame)
    if segment is None:
        return False
    expected_version = 4 if len(target) == 4 else 6
    return (
        segment.version == expected_version
        and segment.source == target
        and segment.source_port == target_port
        and segment.destination_port == source_port
    )


def icmp_unreachable_source_port(packet: bytes, family: int) -> Optional[int]:
    """
    Extract the original UDP source port from an ICMP port-unreachable.

    IPv4 raw ICMP sockets deliver the IP header in front of the ICMP message;
    ICMPv6 raw sockets deliver the ICMPv6 message only. Either way the message
    body echoes the offending IP header followed by the first 8 bytes of its
    UDP header.

    Returns:
        The embedded UDP source port, or None when the packet is not a
        port-unreachable for a UDP datagram.
    """
    if family == socket.AF_INET6:
        icmp_offset = 0
        expected = (ICMPV6_DEST_UNREACHABLE, ICMPV6_PORT_UNREACHABLE)
    else:
        if len(packet) < IPV4_MIN_HEADER_LEN:
            return None
        icmp_offset = (packet[0] & 0x0F) * 4
        expected = (ICMP_DEST_UNREACHABLE, ICMP_PORT_UNREACHABLE)

    if len(packet) < icmp_offset + ICMP_HEADER_LEN:
        return None
    if (packet[icmp_offset], packet[icmp_offset + 1]) != expected:
        return None

    inner = icmp_offset + ICMP_HEADER_LEN
    if family == socket.AF_INET6:
        if len(packet) < inner + IPV6_HEADER_LEN or packet[inner + 6] != IPPROTO_UDP:
            return None
        udp_offset = inner + IPV6_HEADER_LEN
    else:
        if len(packet) < inner + IPV4_MIN_HEADER_LEN or packet[inner + 9] != IPPROTO_UDP:
            return None
        udp_offset = inner + (packet[inner] & 0x0F) * 4

    if len(packet) < udp_offset + 2:
        return None
    return unpack_from("!H", packet, udp_offset)[0]
