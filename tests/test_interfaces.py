import socket
from collections import namedtuple

import psutil
import pytest

from l4scan.tools.network import interfaces
from l4scan.tools.network.interfaces import list_interfaces, resolve_local_address
from l4scan.utils.exceptions import ConfigurationError, InterfaceNotFound, NoAddressOfFamily

snicaddr = namedtuple("snicaddr", "family address netmask broadcast ptp")
snicstats = namedtuple("snicstats", "isup duplex speed mtu flags")


def addr(family, address):
    return snicaddr(family, address, None, None, None)


@pytest.fixture
def fake_interfaces(monkeypatch):
    """Replace psutil's interface tables with a small fixed set."""
    table = {
        "eth0": [
            addr(psutil.AF_LINK, "02:00:00:00:00:01"),
            addr(socket.AF_INET, "192.0.2.1"),
            addr(socket.AF_INET6, "fe80::1%eth0"),
            addr(socket.AF_INET6, "2001:db8::1"),
        ],
        "wlan0": [
            addr(socket.AF_INET, "198.51.100.7"),
            addr(socket.AF_INET6, "fe80::2"),
        ],
        "tun0": [
            addr(socket.AF_INET6, "2001:db8:1::5"),
        ],
    }
    stats = {
        "eth0": snicstats(True, 2, 1000, 1500, ""),
        "wlan0": snicstats(False, 0, 0, 1500, ""),
    }
    monkeypatch.setattr(interfaces.psutil, "net_if_addrs", lambda: table)
    monkeypatch.setattr(interfaces.psutil, "net_if_stats", lambda: stats)
    return table


class TestResolveLocalAddress:
    """Test interface name to source address resolution."""

    def test_ipv4_address(self, fake_interfaces):
        assert resolve_local_address("eth0", socket.AF_INET) == "192.0.2.1"

    def test_default_family_is_ipv4(self, fake_interfaces):
        assert resolve_local_address("wlan0") == "198.51.100.7"

    def test_name_is_case_insensitive(self, fake_interfaces):
        assert resolve_local_address("ETH0") == "192.0.2.1"

    def test_global_ipv6_preferred(self, fake_interfaces):
        assert resolve_local_address("eth0", socket.AF_INET6) == "2001:db8::1"

    def test_link_local_fallback_gets_scope(self, fake_interfaces):
        assert resolve_local_address("wlan0", socket.AF_INET6) == "fe80::2%wlan0"

    def test_unknown_interface(self, fake_interfaces):
        with pytest.raises(InterfaceNotFound, match="bogus0"):
            resolve_local_address("bogus0")

    def test_missing_family(self, fake_interfaces):
        with pytest.raises(NoAddressOfFamily, match="IPv4"):
            resolve_local_address("tun0", socket.AF_INET)

    def test_errors_are_configuration_errors(self, fake_interfaces):
        with pytest.raises(ConfigurationError):
            resolve_local_address("bogus0")


class TestListInterfaces:
    """Test interface enumeration for the listing command."""

    def test_sorted_by_name(self, fake_interfaces):
        assert [i.name for i in list_interfaces()] == ["eth0", "tun0", "wlan0"]

    def test_details(self, fake_interfaces):
        eth0 = list_interfaces()[0]

        assert eth0.is_up
        assert eth0.mac == "02:00:00:00:00:01"
        assert eth0.addresses == ["192.0.2.1", "fe80::1%eth0", "2001:db8::1"]

    def test_missing_stats_means_down(self, fake_interfaces):
        tun0 = next(i for i in list_interfaces() if i.name == "tun0")

        assert not tun0.is_up
        assert tun0.mac is None
