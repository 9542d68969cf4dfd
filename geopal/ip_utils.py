"""Client IP extraction, normalization and classification.

Everything here is a pure function of its string inputs; no I/O happens.
"""

from collections.abc import Mapping
from enum import Enum
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network, ip_address

IPV4_MAPPED_PREFIX = "::ffff:"

# Header names in precedence order, after the explicit `ip` query parameter.
EDGE_PROXY_HEADER = "cf-connecting-ip"
FORWARDED_FOR_HEADER = "x-forwarded-for"
REAL_IP_HEADER = "x-real-ip"

LOCAL_LITERALS = frozenset({"127.0.0.1", "::1", "localhost"})

PRIVATE_IPV4_NETWORKS = (
    IPv4Network("10.0.0.0/8"),
    IPv4Network("192.168.0.0/16"),
    IPv4Network("172.16.0.0/12"),
)

# Matched against the lower-cased literal: unique local (fc, fd) and link local.
PRIVATE_IPV6_PREFIXES = ("fc", "fd", "fe80:")

# Zone ids (`fe80::1%eth0`) are only meaningful on link-local addresses.
LINK_LOCAL_NETWORK = IPv6Network("fe80::/10")


class IpScope(str, Enum):
    """Classification of a candidate IP string."""

    invalid = "invalid"
    private_or_local = "private_or_local"
    public = "public"


def extract_client_ip(
    query_ip: str | None,
    headers: Mapping[str, str],
    peer_host: str | None,
) -> str | None:
    """Pick the candidate client IP for a request.

    The first non-empty value wins, in this order: the explicit `ip` query
    parameter, the Cloudflare `CF-Connecting-IP` header, the first entry of
    `X-Forwarded-For`, `X-Real-IP`, and finally the transport peer address.
    `headers` is expected to be case-insensitive (Starlette `Headers`) or to
    use lower-case keys.
    """
    if query_ip:
        return query_ip

    edge_ip = headers.get(EDGE_PROXY_HEADER)
    if edge_ip:
        return edge_ip

    forwarded_for = headers.get(FORWARDED_FOR_HEADER)
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = headers.get(REAL_IP_HEADER)
    if real_ip:
        return real_ip

    return peer_host or None


def normalize_ip(candidate: str | None) -> str | None:
    """Trim whitespace and strip an IPv4-mapped IPv6 prefix (`::ffff:1.2.3.4` -> `1.2.3.4`)."""
    if candidate is None:
        return None
    value = candidate.strip()
    if value[: len(IPV4_MAPPED_PREFIX)].lower() == IPV4_MAPPED_PREFIX:
        return value[len(IPV4_MAPPED_PREFIX) :]
    return value


def _parse(candidate: str) -> IPv4Address | IPv6Address | None:
    try:
        return ip_address(candidate)
    except ValueError:
        return None


def _without_zone(address: IPv6Address) -> IPv6Address:
    return IPv6Address(str(address).split("%", 1)[0])


def is_valid_ip(candidate: str | None) -> bool:
    """Return True for strict IPv4 dotted-quad or IPv6 literals.

    IPv4 octets with leading zeros (e.g. `010.1.1.1`) are rejected. IPv6
    accepts full, compressed and embedded-IPv4 forms; a zone id is accepted
    only on link-local addresses (`fe80::1%eth0`).
    """
    if not candidate or candidate != candidate.strip():
        return False
    address = _parse(candidate)
    if address is None:
        return False
    if "%" in candidate:
        return _without_zone(address) in LINK_LOCAL_NETWORK
    return True


def is_private_or_local(candidate: str | None) -> bool:
    """Return True for loopback, RFC 1918, and IPv6 unique/link-local addresses."""
    if not candidate:
        return False
    value = candidate.lower()
    if value in LOCAL_LITERALS:
        return True

    address = _parse(candidate)
    if address is None:
        return False
    if isinstance(address, IPv4Address):
        return address == IPv4Address("127.0.0.1") or any(address in net for net in PRIVATE_IPV4_NETWORKS)

    return _without_zone(address) == IPv6Address("::1") or value.startswith(PRIVATE_IPV6_PREFIXES)


def classify_ip(candidate: str | None) -> IpScope:
    """Classify a normalized candidate as invalid, private/local or public."""
    if not is_valid_ip(candidate):
        return IpScope.invalid
    if is_private_or_local(candidate):
        return IpScope.private_or_local
    return IpScope.public
