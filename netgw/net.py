"""Address classification for the gateway listener.

Decides which local addresses the listener binds to and whether a client
address may take the auto-approve path. Only IPv4 CIDR semantics are
supported; IPv4-mapped IPv6 literals (``::ffff:a.b.c.d``) are reduced to
their embedded IPv4 address before any comparison.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

log = logging.getLogger(__name__)

IPV4_LOOPBACK = "127.0.0.1"
IPV6_LOOPBACK = "::1"
LOCALHOST_TOKEN = "localhost"

_IPV4_LOOPBACK_NET = "127.0.0.0/8"
_IPV4_MAPPED_PREFIX = "::ffff:"
_OCTET = re.compile(r"[0-9]{1,3}")
_PREFIX = re.compile(r"[0-9]{1,2}")


class BindProbe(Protocol):
    """Answers whether this process can currently bind to ``host``."""

    async def can_bind_to_host(self, host: str) -> bool:
        ...


def _parse_ipv4(value: str) -> Optional[int]:
    parts = value.split(".")
    if len(parts) != 4:
        return None
    result = 0
    for part in parts:
        if not _OCTET.fullmatch(part):
            return None
        octet = int(part)
        if octet > 255:
            return None
        result = (result << 8) | octet
    return result


def _parse_cidr(value: str) -> Optional[Tuple[int, int]]:
    if not isinstance(value, str) or value.count("/") != 1:
        return None
    address, prefix_text = value.split("/")
    if not _PREFIX.fullmatch(prefix_text):
        return None
    prefix = int(prefix_text)
    if prefix > 32:
        return None
    base = _parse_ipv4(address)
    if base is None:
        return None
    return base, prefix


def is_valid_cidr(value: str) -> bool:
    """Return True if ``value`` is an IPv4 CIDR such as ``10.0.0.0/8``."""
    return _parse_cidr(value) is not None


def is_ipv4_in_cidr(ip: str, cidr: str) -> bool:
    """Return True if the IPv4 address ``ip`` lies inside ``cidr``.

    Host bits of the CIDR base are ignored, so ``10.0.1.5/8`` behaves like
    ``10.0.0.0/8``. Malformed input on either side yields False.
    """
    if not isinstance(ip, str):
        return False
    parsed = _parse_cidr(cidr)
    address = _parse_ipv4(ip)
    if parsed is None or address is None:
        return False
    base, prefix = parsed
    mask = (0xFFFFFFFF << (32 - prefix)) & 0xFFFFFFFF
    return (address & mask) == (base & mask)


def normalize_ipv4_mapped(ip: str) -> str:
    """Strip the ``::ffff:`` prefix from an IPv4-mapped IPv6 literal."""
    if ip[: len(_IPV4_MAPPED_PREFIX)].lower() == _IPV4_MAPPED_PREFIX:
        embedded = ip[len(_IPV4_MAPPED_PREFIX):]
        if _parse_ipv4(embedded) is not None:
            return embedded
    return ip


def is_loopback_address(ip: Optional[str]) -> bool:
    if not ip:
        return False
    return normalize_ipv4_mapped(ip) in (IPV4_LOOPBACK, IPV6_LOOPBACK)


def is_ip_in_auto_approve_allowlist(
    ip: Optional[str], allowlist: Optional[Sequence[str]] = None
) -> bool:
    """Decide whether a client address may be auto-approved.

    Without an allowlist only loopback callers are trusted. With one, the
    address must be IPv4 loopback or match any entry literally, through the
    ``localhost`` token, or by CIDR membership.
    """
    if not ip:
        return False
    address = normalize_ipv4_mapped(ip)

    if not allowlist:
        return is_loopback_address(address)

    if address == IPV4_LOOPBACK:
        return True
    for entry in allowlist:
        if address == entry:
            return True
        if entry == LOCALHOST_TOKEN and is_loopback_address(address):
            return True
        if is_ipv4_in_cidr(address, entry):
            return True
    return False


async def resolve_gateway_listen_hosts(requested_host: str, deps: BindProbe) -> List[str]:
    """Return the hosts to bind, adding ``::1`` next to IPv4 loopback when possible."""
    hosts = [requested_host]
    if not is_ipv4_in_cidr(requested_host, _IPV4_LOOPBACK_NET):
        return hosts
    if await deps.can_bind_to_host(IPV6_LOOPBACK):
        hosts.append(IPV6_LOOPBACK)
    else:
        log.info("IPv6 loopback unavailable; listening on %s only", requested_host)
    return hosts


async def can_bind_to_host(host: str) -> bool:
    """Try to open (and immediately close) a listener on an ephemeral port."""
    try:
        server = await asyncio.start_server(lambda reader, writer: None, host=host, port=0)
    except OSError as exc:
        log.debug("Bind probe for %s failed: %s", host, exc)
        return False
    server.close()
    await server.wait_closed()
    log.debug("Bind probe for %s succeeded", host)
    return True


class SocketBindProbe:
    """Production :class:`BindProbe` backed by :func:`can_bind_to_host`."""

    async def can_bind_to_host(self, host: str) -> bool:
        return await can_bind_to_host(host)


def is_trusted_proxy(ip: Optional[str], trusted_proxies: Iterable[str]) -> bool:
    if not ip:
        return False
    address = normalize_ipv4_mapped(ip)
    for entry in trusted_proxies:
        if address == entry or is_ipv4_in_cidr(address, entry):
            return True
    return False


def resolve_client_ip(
    remote_addr: Optional[str],
    forwarded_for: Optional[str] = None,
    real_ip: Optional[str] = None,
    trusted_proxies: Sequence[str] = (),
) -> Optional[str]:
    """Return the effective client address behind trusted reverse proxies.

    Forwarding headers are honored only when the direct peer is a trusted
    proxy. ``X-Forwarded-For`` is walked right to left, skipping trusted hops.
    """
    if not remote_addr:
        return None
    remote = normalize_ipv4_mapped(remote_addr.strip())
    if not is_trusted_proxy(remote, trusted_proxies):
        return remote

    if forwarded_for:
        hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
        for hop in reversed(hops):
            if not is_trusted_proxy(hop, trusted_proxies):
                return normalize_ipv4_mapped(hop)
        if hops:
            return normalize_ipv4_mapped(hops[0])

    if real_ip and real_ip.strip():
        return normalize_ipv4_mapped(real_ip.strip())
    return remote


__all__ = [
    "BindProbe",
    "IPV4_LOOPBACK",
    "IPV6_LOOPBACK",
    "LOCALHOST_TOKEN",
    "SocketBindProbe",
    "can_bind_to_host",
    "is_ip_in_auto_approve_allowlist",
    "is_ipv4_in_cidr",
    "is_loopback_address",
    "is_trusted_proxy",
    "is_valid_cidr",
    "normalize_ipv4_mapped",
    "resolve_client_ip",
    "resolve_gateway_listen_hosts",
]
