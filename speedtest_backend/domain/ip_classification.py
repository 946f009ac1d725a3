"""Client address normalization and special-use range classification."""

import ipaddress
from dataclasses import dataclass
from typing import Optional

IPV4_MAPPED_PREFIX = "::ffff:"

LOCALHOST_IPV6 = "localhost IPv6 access"
LINK_LOCAL_IPV6 = "link-local IPv6 access"
LOCALHOST_IPV4 = "localhost IPv4 access"
PRIVATE_IPV4 = "private IPv4 access"
LINK_LOCAL_IPV4 = "link-local IPv4 access"
CGNAT_IPV4 = "CGNAT IPv4 access"


@dataclass(frozen=True)
class ClientAddress:
    """The remote address as received and the bare IP derived from it."""

    raw_remote_addr: str
    ip: str


def split_host_port(address: str) -> tuple[str, Optional[str]]:
    """Split ``host:port`` or ``[v6]:port``; bare hosts are returned unchanged."""
    if address.startswith("["):
        host, bracket, rest = address[1:].partition("]")
        if bracket and (not rest or rest.startswith(":")):
            return host, rest[1:] or None
        return address, None
    if address.count(":") == 1:
        host, _, port = address.partition(":")
        return host, port
    return address, None


def join_host_port(host: str, port: int) -> str:
    """Inverse of ``split_host_port``; IPv6 hosts are bracketed."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def normalize_client_address(remote_addr: str) -> ClientAddress:
    """Strip the IPv4-mapped IPv6 prefix and any port from ``remote_addr``."""
    host, _ = split_host_port(remote_addr.strip())
    if host.lower().startswith(IPV4_MAPPED_PREFIX):
        host = host[len(IPV4_MAPPED_PREFIX) :]
    return ClientAddress(raw_remote_addr=remote_addr, ip=host)


def _ipv4_octets(ip: str) -> Optional[tuple[int, int, int, int]]:
    try:
        address = ipaddress.IPv4Address(ip)
    except ValueError:
        return None
    first, second, third, fourth = address.packed
    return first, second, third, fourth


def _classify_ipv6(ip: str) -> Optional[str]:
    try:
        address = ipaddress.IPv6Address(ip.split("%", 1)[0])
    except ValueError:
        return None
    if address.is_loopback:
        return LOCALHOST_IPV6
    # fe80::/16, the textual "fe80:" prefix
    if address.packed[:2] == b"\xfe\x80":
        return LINK_LOCAL_IPV6
    return None


def classify_address(ip: str) -> Optional[str]:
    """Return the special-use label for ``ip`` or ``None`` for public addresses.

    Checks run in a fixed priority order and the first match wins. Anything
    that does not parse as an IP literal is treated as public.
    """
    ipv6_label = _classify_ipv6(ip)
    if ipv6_label is not None:
        return ipv6_label

    octets = _ipv4_octets(ip)
    if octets is None:
        return None
    first, second = octets[0], octets[1]
    if first == 127:
        return LOCALHOST_IPV4
    if first == 10:
        return PRIVATE_IPV4
    if first == 172 and 16 <= second <= 31:
        return PRIVATE_IPV4
    if first == 192 and second == 168:
        return PRIVATE_IPV4
    if first == 169 and second == 254:
        return LINK_LOCAL_IPV4
    if first == 100 and 64 <= second <= 127:
        return CGNAT_IPV4
    return None
