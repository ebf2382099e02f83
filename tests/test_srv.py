from types import SimpleNamespace
from unittest import mock

import dns.name
import pytest

from ratelimit_kit.srv import (
    DnsSrvResolver,
    SrvParseError,
    SrvRecord,
    lookup_server_strings_from_srv,
    parse_srv,
)


def mock_addrs_lookup(service, proto, name):
    return [SrvRecord("z", 1), SrvRecord("z", 0), SrvRecord("a", 9001)]


def test_lookup_server_strings_from_srv_returns_servers_sorted():
    targets = lookup_server_strings_from_srv("_something._tcp.example.org.", mock_addrs_lookup)
    assert targets == ["a:9001", "z:0", "z:1"]


def test_lookup_passes_parsed_parts():
    calls = []

    def lookup(service, proto, name):
        calls.append((service, proto, name))
        return []

    assert lookup_server_strings_from_srv("_something._tcp.example.org.", lookup) == []
    assert calls == [("something", "tcp", "example.org.")]


def test_parse_srv():
    assert parse_srv("_memcache._tcp.example.com") == ("memcache", "tcp", "example.com")


@pytest.mark.parametrize("bad", ["example.com", "_only.example", "", "memcache._tcp.example.com"])
def test_parse_srv_rejects_malformed(bad):
    with pytest.raises(SrvParseError, match="could not parse"):
        parse_srv(bad)


def test_lookup_rejects_malformed_without_calling_lookup():
    def lookup(service, proto, name):
        raise AssertionError("lookup should not run")

    with pytest.raises(SrvParseError):
        lookup_server_strings_from_srv("example.com", lookup)


def test_lookup_error_propagates():
    def lookup(service, proto, name):
        raise OSError("lookup failed")

    with pytest.raises(OSError, match="lookup failed"):
        lookup_server_strings_from_srv("_something._tcp.example.org.", lookup)


def test_dns_srv_resolver_uses_dns():
    answers = [
        SimpleNamespace(target=dns.name.from_text("b.example.com."), port=11211, priority=0, weight=0),
        SimpleNamespace(target=dns.name.from_text("a.example.com."), port=11211, priority=0, weight=0),
    ]
    with mock.patch("dns.resolver.resolve", return_value=answers) as resolve:
        servers = DnsSrvResolver().server_strings_from_srv("_memcache._tcp.example.com")
    resolve.assert_called_once_with("_memcache._tcp.example.com", "SRV")
    assert servers == ["a.example.com.:11211", "b.example.com.:11211"]