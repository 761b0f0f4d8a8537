"""l4scan - TCP SYN and UDP ICMP port scanner."""

__version__ = "0.1.0"
