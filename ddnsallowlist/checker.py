"""Checking client addresses against trusted IPs and CIDR ranges."""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Iterable
from typing import Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

DEFAULT_NETWORK_PREFIX_IPV6 = 128

_log = logging.getLogger(__name__)


class CheckerError(ValueError):
    """Base class for address checking errors."""


class CannotParseIPError(CheckerError):
    """An address could not be parsed."""


class InvalidCIDRError(CheckerError):
    """A trusted entry is neither an IP nor a valid CIDR range."""


class EmptyIPError(CheckerError):
    """An empty address was given."""


class InvalidIPv6PrefixError(CheckerError):
    """The IPv6 network prefix is outside 0..128."""


class NotAuthorizedError(CheckerError):
    """The address matched none of the trusted IPs."""


class NoTrustedIPsError(CheckerError):
    """No trusted IPs were provided."""


def _normalize(addr: IPAddress) -> IPAddress:
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def _split_host_port(hostport: str) -> str | None:
    """Return the host part of ``host:port`` or ``[host]:port``, or None if malformed."""
    colon = hostport.rfind(":")
    if colon < 0:
        return None
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            return None
        if end + 1 != colon:
            return None
        host = hostport[1:end]
        if "[" in host[0:] or "]" in hostport[end + 1:]:
            return None
    else:
        host = hostport[:colon]
        if ":" in host:
            return None
        if "[" in hostport or "]" in hostport:
            return None
    return host


def parse_ip(addr: str) -> IPAddress:
    """Parse a textual address; IPv4-mapped IPv6 addresses become IPv4."""
    try:
        return _normalize(ipaddress.ip_address(str(addr)))
    except ValueError:
        raise CannotParseIPError(f"can't parse IP from address {addr}") from None


def is_ipv6(addr: IPAddress | str | None) -> bool:
    """Tell whether an address is a genuine IPv6 address."""
    if addr is None:
        return False
    if isinstance(addr, str):
        try:
            addr = parse_ip(addr)
        except CannotParseIPError:
            return False
    return _normalize(addr).version == 6


def is_ip_in_network(addr: str, network_addr: str, network_prefix: int) -> bool:
    """Tell whether ``addr`` lies in ``network_addr/network_prefix``."""
    try:
        net_addr = ipaddress.ip_address(network_addr)
    except ValueError as exc:
        _log.error("could not parse network address %s", exc)
        return False

    network_cls = ipaddress.IPv4Network if net_addr.version == 4 else ipaddress.IPv6Network
    try:
        network = network_cls((int(net_addr), network_prefix), strict=False)
    except (ValueError, TypeError) as exc:
        _log.error("could not get network address prefix %s", exc)
        return False

    try:
        candidate = ipaddress.ip_address(addr)
    except ValueError as exc:
        _log.error("could not parse address %s", exc)
        return False

    if isinstance(candidate, ipaddress.IPv6Address) and candidate.scope_id:
        return False
    return candidate in network


def _in_network(addr: IPAddress, network: IPNetwork) -> bool:
    if addr.version == network.version:
        return addr in network
    if addr.version == 4:
        return ipaddress.IPv6Address(f"::ffff:{addr}") in network
    return False


def _parse_trusted_ip(entry: str) -> IPAddress | None:
    if "%" in entry:
        return None
    try:
        return _normalize(ipaddress.ip_address(entry))
    except ValueError:
        return None


class Checker:
    """A set of trusted addresses and ranges that client addresses are checked against."""

    def __init__(
        self,
        trusted_ips: Iterable[str],
        network_prefix_ipv6: int = DEFAULT_NETWORK_PREFIX_IPV6,
    ) -> None:
        entries = list(trusted_ips)
        if not entries:
            raise NoTrustedIPsError("no trusted IPs provided")

        self.authorized_ips: list[IPAddress] = []
        self.authorized_networks: list[IPNetwork] = []

        for entry in entries:
            address = _parse_trusted_ip(entry)
            if address is not None:
                self.authorized_ips.append(address)
                continue
            if "/" not in entry or "%" in entry:
                raise InvalidCIDRError(
                    f"parsing CIDR trusted IPs: invalid CIDR address: {entry}"
                )
            try:
                network = ipaddress.ip_network(entry, strict=False)
            except ValueError:
                raise InvalidCIDRError(
                    f"parsing CIDR trusted IPs: invalid CIDR address: {entry}"
                ) from None
            self.authorized_networks.append(network)

        if not 0 <= network_prefix_ipv6 <= DEFAULT_NETWORK_PREFIX_IPV6:
            raise InvalidIPv6PrefixError(
                f"invalid IPv6 network prefix: {network_prefix_ipv6}"
            )
        # A prefix of 0 would allow every IPv6 address, so it means "unset".
        self.network_prefix_ipv6 = network_prefix_ipv6 or DEFAULT_NETWORK_PREFIX_IPV6

    def is_authorized(self, addr: str) -> None:
        """Raise unless ``addr`` (optionally with a port) is trusted."""
        host = _split_host_port(addr)
        if host is None:
            host = addr
        if not self.contains(host):
            raise NotAuthorizedError(f'"{addr}" matched none of the trusted IPs')

    def contains(self, addr: str) -> bool:
        """Tell whether a textual address is trusted."""
        if not addr:
            raise EmptyIPError("empty IP address")
        try:
            parsed = parse_ip(addr)
        except CannotParseIPError as exc:
            raise CannotParseIPError(f"unable to parse address: {addr}: {exc}") from None
        return self.contains_ip(parsed)

    def contains_ip(self, addr: IPAddress) -> bool:
        """Tell whether a parsed address is trusted."""
        addr = _normalize(addr)
        check_prefix = self.network_prefix_ipv6 != DEFAULT_NETWORK_PREFIX_IPV6
        for authorized in self.authorized_ips:
            if authorized == addr:
                return True
            # Hosts behind an IPv6 router share its network prefix.
            if (
                check_prefix
                and is_ipv6(addr)
                and is_ipv6(authorized)
                and is_ip_in_network(str(addr), str(authorized), self.network_prefix_ipv6)
            ):
                return True
        return any(_in_network(addr, network) for network in self.authorized_networks)