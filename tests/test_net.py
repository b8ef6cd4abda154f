import pytest

from netgw.net import (
    SocketBindProbe,
    can_bind_to_host,
    is_ip_in_auto_approve_allowlist,
    is_ipv4_in_cidr,
    is_valid_cidr,
    normalize_ipv4_mapped,
    resolve_client_ip,
    resolve_gateway_listen_hosts,
)


class StaticProbe:
    def __init__(self, result: bool):
        self.result = result
        self.calls = []

    async def can_bind_to_host(self, host: str) -> bool:
        self.calls.append(host)
        return self.result


class ForbiddenProbe:
    async def can_bind_to_host(self, host: str) -> bool:
        raise AssertionError("probe should not be called")


@pytest.mark.asyncio
async def test_listen_hosts_non_loopback_skips_probe():
    hosts = await resolve_gateway_listen_hosts("0.0.0.0", ForbiddenProbe())
    assert hosts == ["0.0.0.0"]


@pytest.mark.asyncio
async def test_listen_hosts_adds_ipv6_loopback_when_available():
    probe = StaticProbe(True)
    hosts = await resolve_gateway_listen_hosts("127.0.0.1", probe)
    assert hosts == ["127.0.0.1", "::1"]
    assert probe.calls == ["::1"]


@pytest.mark.asyncio
async def test_listen_hosts_ipv4_only_when_ipv6_unavailable():
    probe = StaticProbe(False)
    hosts = await resolve_gateway_listen_hosts("127.0.0.1", probe)
    assert hosts == ["127.0.0.1"]
    assert probe.calls == ["::1"]


@pytest.mark.asyncio
async def test_listen_hosts_propagates_probe_failure():
    class BrokenProbe:
        async def can_bind_to_host(self, host):
            raise RuntimeError("probe failed")

    with pytest.raises(RuntimeError):
        await resolve_gateway_listen_hosts("127.0.0.1", BrokenProbe())


@pytest.mark.asyncio
async def test_listen_hosts_localhost_name_is_not_probed():
    assert await resolve_gateway_listen_hosts("localhost", ForbiddenProbe()) == ["localhost"]


@pytest.mark.asyncio
async def test_listen_hosts_other_ipv4_loopback_is_probed():
    probe = StaticProbe(True)
    assert await resolve_gateway_listen_hosts("127.0.0.2", probe) == ["127.0.0.2", "::1"]
    assert probe.calls == ["::1"]


@pytest.mark.asyncio
async def test_can_bind_to_ipv4_loopback():
    assert await can_bind_to_host("127.0.0.1") is True
    assert await SocketBindProbe().can_bind_to_host("127.0.0.1") is True


@pytest.mark.asyncio
async def test_cannot_bind_to_foreign_address():
    # TEST-NET-3 documentation address, never assigned to a local interface
    assert await can_bind_to_host("203.0.113.1") is False
    assert await SocketBindProbe().can_bind_to_host("203.0.113.1") is False


@pytest.mark.parametrize(
    "ip, cidr, expected",
    [
        ("10.0.1.5", "10.0.0.0/8", True),
        ("10.255.255.255", "10.0.0.0/8", True),
        ("11.0.0.1", "10.0.0.0/8", False),
        ("192.168.1.1", "10.0.0.0/8", False),
        ("172.16.0.1", "172.16.0.0/12", True),
        ("172.31.255.255", "172.16.0.0/12", True),
        ("172.32.0.1", "172.16.0.0/12", False),
        ("192.168.1.254", "192.168.1.0/24", True),
        ("192.168.2.1", "192.168.1.0/24", False),
        ("192.168.1.1", "192.168.1.1/32", True),
        ("192.168.1.2", "192.168.1.1/32", False),
        ("1.2.3.4", "0.0.0.0/0", True),
        ("255.255.255.255", "0.0.0.0/0", True),
        ("10.200.0.1", "10.0.1.5/8", True),
    ],
)
def test_ipv4_in_cidr(ip, cidr, expected):
    assert is_ipv4_in_cidr(ip, cidr) is expected


def test_ipv4_in_cidr_rejects_malformed_input():
    assert is_ipv4_in_cidr("10.0.0.1", "invalid") is False
    assert is_ipv4_in_cidr("10.0.0.1", "10.0.0.0") is False
    assert is_ipv4_in_cidr("999.0.0.1", "10.0.0.0/8") is False
    assert is_ipv4_in_cidr("10.0.0.1", "999.0.0.0/8") is False
    assert is_ipv4_in_cidr("10.0.0.256", "10.0.0.0/8") is False
    assert is_ipv4_in_cidr("10.0.0", "0.0.0.0/0") is False
    assert is_ipv4_in_cidr("", "0.0.0.0/0") is False
    assert is_ipv4_in_cidr("a.b.c.d", "0.0.0.0/0") is False


def test_cidr_matches_its_own_base():
    for cidr in ("10.0.0.0/8", "172.16.0.0/12", "192.168.1.77/24", "8.8.8.8/32", "0.0.0.0/0"):
        assert is_ipv4_in_cidr(cidr.split("/")[0], cidr)


def test_valid_cidr():
    for value in ("10.0.0.0/8", "172.16.0.0/12", "192.168.1.0/24", "192.168.1.1/32", "0.0.0.0/0"):
        assert is_valid_cidr(value) is True


def test_invalid_cidr():
    for value in (
        "10.0.0.0",
        "10.0.0.0/",
        "10.0.0.0/33",
        "10.0.0.0/-1",
        "10.0.0.0/+8",
        "10.0.0/8",
        "256.0.0.0/8",
        "10.0.0.0/8/8",
        " 10.0.0.0/8",
        "invalid",
        "",
    ):
        assert is_valid_cidr(value) is False, value


def test_normalize_ipv4_mapped():
    assert normalize_ipv4_mapped("::ffff:10.0.1.5") == "10.0.1.5"
    assert normalize_ipv4_mapped("::FFFF:127.0.0.1") == "127.0.0.1"
    assert normalize_ipv4_mapped("::ffff:not-an-ip") == "::ffff:not-an-ip"
    assert normalize_ipv4_mapped("192.168.1.1") == "192.168.1.1"


def test_allowlist_defaults_to_loopback_only():
    assert is_ip_in_auto_approve_allowlist("127.0.0.1", None) is True
    assert is_ip_in_auto_approve_allowlist("127.0.0.1", []) is True
    assert is_ip_in_auto_approve_allowlist("::1", None) is True
    assert is_ip_in_auto_approve_allowlist("::ffff:127.0.0.1") is True
    assert is_ip_in_auto_approve_allowlist("10.0.0.1", None) is False
    assert is_ip_in_auto_approve_allowlist("192.168.1.1", []) is False


def test_allowlist_cidr_entries():
    allowlist = ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"]
    assert is_ip_in_auto_approve_allowlist("10.0.1.5", allowlist) is True
    assert is_ip_in_auto_approve_allowlist("172.20.0.1", allowlist) is True
    assert is_ip_in_auto_approve_allowlist("192.168.100.50", allowlist) is True
    assert is_ip_in_auto_approve_allowlist("8.8.8.8", allowlist) is False


def test_allowlist_ipv4_mapped_addresses():
    allowlist = ["10.0.0.0/8"]
    assert is_ip_in_auto_approve_allowlist("::ffff:10.0.1.5", allowlist) is True
    assert is_ip_in_auto_approve_allowlist("::ffff:192.168.1.1", allowlist) is False


def test_allowlist_missing_ip():
    assert is_ip_in_auto_approve_allowlist(None, ["10.0.0.0/8"]) is False
    assert is_ip_in_auto_approve_allowlist("", ["10.0.0.0/8"]) is False
    assert is_ip_in_auto_approve_allowlist(None) is False


def test_allowlist_literal_and_localhost_entries():
    assert is_ip_in_auto_approve_allowlist("127.0.0.1", ["127.0.0.1"]) is True
    assert is_ip_in_auto_approve_allowlist("::1", ["::1"]) is True
    assert is_ip_in_auto_approve_allowlist("127.0.0.1", ["localhost"]) is True
    assert is_ip_in_auto_approve_allowlist("::1", ["localhost"]) is True
    assert is_ip_in_auto_approve_allowlist("203.0.113.9", ["203.0.113.9"]) is True


def test_explicit_allowlist_still_trusts_ipv4_loopback():
    assert is_ip_in_auto_approve_allowlist("127.0.0.1", ["10.0.0.0/8"]) is True
    assert is_ip_in_auto_approve_allowlist("::1", ["10.0.0.0/8"]) is False


def test_allowlist_skips_invalid_entries():
    allowlist = ["not-a-cidr", "10.0.0.0/99", "192.168.0.0/16"]
    assert is_ip_in_auto_approve_allowlist("192.168.3.4", allowlist) is True
    assert is_ip_in_auto_approve_allowlist("10.1.1.1", allowlist) is False


def test_resolve_client_ip_ignores_headers_from_untrusted_peer():
    assert resolve_client_ip("203.0.113.5", "10.0.0.1", "10.0.0.2", []) == "203.0.113.5"
    assert resolve_client_ip("::ffff:203.0.113.5") == "203.0.113.5"
    assert resolve_client_ip(None, "10.0.0.1") is None


def test_resolve_client_ip_walks_forwarded_for_from_trusted_proxy():
    trusted = ["10.0.0.0/8"]
    assert resolve_client_ip("10.0.0.2", "198.51.100.7, 10.0.0.9", None, trusted) == "198.51.100.7"
    assert resolve_client_ip("10.0.0.2", "10.0.0.7, 10.0.0.9", None, trusted) == "10.0.0.7"
    assert resolve_client_ip("10.0.0.2", None, "198.51.100.8", trusted) == "198.51.100.8"
    assert resolve_client_ip("10.0.0.2", None, None, trusted) == "10.0.0.2"
