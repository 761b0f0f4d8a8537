"""
Local interface lookup.

Maps an interface name to the address probes should be sent from, and
enumerates interfaces for the listing command.
"""
import ipaddress
import socket
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import psutil

from l4scan.utils.exceptions import InterfaceNotFound, NoAddressOfFamily
from l4scan.utils.logger import get_logger

logger = get_logger(__name__)

FAMILY_NAMES = {socket.AF_INET: "IPv4", socket.AF_INET6: "IPv6"}


@dataclass
class InterfaceInfo:
    """An interface as shown by the listing command."""
    name: str
    is_up: bool
    addresses: List[str] = field(default_factory=list)
    mac: Optional[str] = None


def _find_interface(interface_name: str, table: Dict[str, list]) -> str:
    wanted = interface_name.lower()
    for name in table:
        if name.lower() == wanted:
            return name
    raise InterfaceNotFound(interface_name)


def _is_link_local(address: str) -> bool:
    return ipaddress.ip_address(address.split("%", 1)[0]).is_link_local


def resolve_local_address(interface_name: str, family: int = socket.AF_INET) -> str:
    """
    Resolve the local address bound to an interface.

    Args:
        interface_name: Interface name, matched case-insensitively
        family: socket.AF_INET or socket.AF_INET6

    Returns:
        The address as a string. For IPv6 a global address is preferred; a
        link-local fallback keeps its `%scope` suffix so it can be bound.

    Raises:
        InterfaceNotFound: no interface has that name
        NoAddressOfFamily: the interface has no address of that family
    """
    table = psutil.net_if_addrs()
    name = _find_interface(interface_name, table)

    addresses = [a.address for a in table[name] if a.family == family]
    if not addresses:
        raise NoAddressOfFamily(name, FAMILY_NAMES.get(family, str(family)))

    if family == socket.AF_INET6:
        for address in addresses:
            if not _is_link_local(address):
                return address
        address = addresses[0]
        if "%" not in address:
            address = f"{address}%{name}"
        logger.debug(f"Interface {name} has only link-local IPv6 address {address}")
        return address

    return addresses[0]


def list_interfaces() -> List[InterfaceInfo]:
    """Enumerate local interfaces with their status, addresses and MAC."""
    stats = psutil.net_if_stats()
    interfaces = []

    for name, entries in sorted(psutil.net_if_addrs().items()):
        info = InterfaceInfo(name=name, is_up=bool(stats.get(name) and stats[name].isup))
        for entry in entries:
            if entry.family in FAMILY_NAMES:
                info.addresses.append(entry.address)
            elif entry.family == psutil.AF_LINK:
                info.mac = entry.address
        interfaces.append(info)

    return interfaces
