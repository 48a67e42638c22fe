"""Configuration that selects the client IP strategy."""

from __future__ import annotations

from dataclasses import dataclass, field

from .checker import DEFAULT_NETWORK_PREFIX_IPV6, Checker
from .strategy import (
    CloudflareDepthStrategy,
    DepthStrategy,
    PoolStrategy,
    RemoteAddrStrategy,
    Strategy,
)


@dataclass
class IPStrategy:
    """How the client IP is determined.

    ``depth`` takes precedence over ``cloudflare_depth``, which takes
    precedence over ``excluded_ips``; with none set the peer address is used.
    """

    depth: int = 0
    cloudflare_depth: int = 0
    excluded_ips: list[str] = field(default_factory=list)

    def get(self) -> Strategy:
        """Build the strategy this configuration describes."""
        if self.depth > 0:
            return DepthStrategy(depth=self.depth)
        if self.cloudflare_depth > 0:
            return CloudflareDepthStrategy(cloudflare_depth=self.cloudflare_depth)
        if self.excluded_ips:
            checker = Checker(self.excluded_ips, DEFAULT_NETWORK_PREFIX_IPV6)
            return PoolStrategy(checker=checker)
        return RemoteAddrStrategy()


def get_strategy(ip_strategy: IPStrategy | None) -> Strategy:
    """Build the strategy for an optional configuration."""
    if ip_strategy is None:
        return RemoteAddrStrategy()
    return ip_strategy.get()