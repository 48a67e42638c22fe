import pytest

from ddnsallowlist.checker import DEFAULT_NETWORK_PREFIX_IPV6, Checker
from ddnsallowlist.strategy import (
    CloudflareDepthStrategy,
    DepthStrategy,
    PoolStrategy,
    RemoteAddrStrategy,
    Request,
    get_ip_from_header,
)

CASES = [
    (
        Request(remote_addr="10.10.10.10"),
        {"remote": "10.10.10.10", "depth": "", "pool": "", "cloudflare": ""},
    ),
    (
        Request(headers={"X-Forwarded-For": ["10.10.10.10"]}),
        {"remote": "", "depth": "10.10.10.10", "pool": "10.10.10.10", "cloudflare": ""},
    ),
    (
        Request(headers={"Cf-Connecting-Ip": ["10.10.10.10"]}),
        {"remote": "", "depth": "", "pool": "", "cloudflare": "10.10.10.10"},
    ),
    (
        Request(
            remote_addr="10.10.10.10",
            headers={
                "X-Forwarded-For": ["20.20.20.20"],
                "Cf-Connecting-Ip": ["30.30.30.30"],
            },
        ),
        {
            "remote": "10.10.10.10",
            "depth": "20.20.20.20",
            "pool": "20.20.20.20",
            "cloudflare": "30.30.30.30",
        },
    ),
]


def strategies():
    checker = Checker(["9.9.9.9"], DEFAULT_NETWORK_PREFIX_IPV6)
    return {
        "remote": RemoteAddrStrategy(),
        "depth": DepthStrategy(depth=1),
        "pool": PoolStrategy(checker=checker),
        "cloudflare": CloudflareDepthStrategy(cloudflare_depth=1),
    }


@pytest.mark.parametrize("request_, expected", CASES)
@pytest.mark.parametrize("kind", ["remote", "depth", "pool", "cloudflare"])
def test_get_ip(request_, expected, kind):
    assert strategies()[kind].get_ip(request_) == expected[kind]


def test_names():
    names = {kind: s.name for kind, s in strategies().items()}
    assert names == {
        "remote": "RemoteAddrStrategy",
        "depth": "DepthStrategy",
        "pool": "PoolStrategy",
        "cloudflare": "CloudflareDepthStrategy",
    }


def test_remote_addr_strips_port():
    assert RemoteAddrStrategy().get_ip(Request(remote_addr="1.2.3.4:5555")) == "1.2.3.4"
    assert RemoteAddrStrategy().get_ip(Request(remote_addr="[::1]:80")) == "::1"
    assert RemoteAddrStrategy().get_ip(Request(remote_addr="::1")) == "::1"


def test_depth_second_entry():
    request = Request(headers={"X-Forwarded-For": "8.8.8.8, 1.2.3.4"})
    assert DepthStrategy(depth=2).get_ip(request) == "8.8.8.8"
    assert DepthStrategy(depth=1).get_ip(request) == "1.2.3.4"
    assert DepthStrategy(depth=3).get_ip(request) == ""


def test_cloudflare_second_entry():
    request = Request(headers={"Cf-Connecting-Ip": "8.8.8.8, 1.2.3.4"})
    assert CloudflareDepthStrategy(cloudflare_depth=2).get_ip(request) == "8.8.8.8"


def test_pool_skips_excluded_entries():
    checker = Checker(["1.2.3.4", "8.8.8.8"], DEFAULT_NETWORK_PREFIX_IPV6)
    request = Request(headers={"X-Forwarded-For": "5.5.5.5, 8.8.8.8, , 1.2.3.4"})
    assert PoolStrategy(checker=checker).get_ip(request) == "5.5.5.5"
    only_excluded = Request(headers={"X-Forwarded-For": "8.8.8.8"})
    assert PoolStrategy(checker=checker).get_ip(only_excluded) == ""


def test_pool_without_checker():
    request = Request(headers={"X-Forwarded-For": "5.5.5.5"})
    assert PoolStrategy().get_ip(request) == ""


def test_header_lookup_is_case_insensitive():
    request = Request(headers={"x-forwarded-for": "7.7.7.7"})
    assert request.header("X-Forwarded-For") == "7.7.7.7"
    assert request.header("Missing") == ""


def test_get_ip_from_header():
    request = Request(headers={"X-Forwarded-For": " 1.1.1.1 ,2.2.2.2"})
    assert get_ip_from_header(request, "X-Forwarded-For", 2) == "1.1.1.1"


def test_from_environ():
    environ = {
        "REMOTE_ADDR": "10.10.10.10",
        "HTTP_X_FORWARDED_FOR": "20.20.20.20",
        "HTTP_CF_CONNECTING_IP": "30.30.30.30",
    }
    request = Request.from_environ(environ)
    assert request.remote_addr == "10.10.10.10"
    assert request.header("X-Forwarded-For") == "20.20.20.20"
    assert CloudflareDepthStrategy(cloudflare_depth=1).get_ip(request) == "30.30.30.30"