"""Strategies that pick the client IP out of a request."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from .checker import Checker, CheckerError, _split_host_port

X_FORWARDED_FOR = "X-Forwarded-For"
CLOUDFLARE_IP = "Cf-Connecting-Ip"

HeaderValue = Union[str, Sequence[str]]


@dataclass
class Request:
    """The parts of an HTTP request that client IP selection looks at."""

    remote_addr: str = ""
    headers: Mapping[str, HeaderValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._lookup: dict[str, str] = {}
        for name, value in self.headers.items():
            key = name.lower()
            if key in self._lookup:
                continue
            if isinstance(value, str):
                self._lookup[key] = value
            elif value:
                self._lookup[key] = value[0]

    @classmethod
    def from_environ(cls, environ: Mapping[str, Any]) -> "Request":
        """Build a request from a WSGI environ."""
        headers: dict[str, str] = {}
        for key, value in environ.items():
            if key.startswith("HTTP_"):
                name = key[len("HTTP_"):].replace("_", "-").title()
                headers[name] = str(value)
        return cls(remote_addr=str(environ.get("REMOTE_ADDR", "")), headers=headers)

    def header(self, name: str) -> str:
        """Return the first value of a header, or an empty string."""
        return self._lookup.get(name.lower(), "")


class Strategy(ABC):
    """Chooses which address of a request identifies the client."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def get_ip(self, request: Request) -> str:
        """Return the selected client IP, or an empty string."""


@dataclass(frozen=True)
class RemoteAddrStrategy(Strategy):
    """Uses the address of the connecting peer."""

    def get_ip(self, request: Request) -> str:
        host = _split_host_port(request.remote_addr)
        return request.remote_addr if host is None else host


@dataclass(frozen=True)
class DepthStrategy(Strategy):
    """Takes the X-Forwarded-For entry at ``depth`` counted from the right."""

    depth: int

    def get_ip(self, request: Request) -> str:
        return get_ip_from_header(request, X_FORWARDED_FOR, self.depth)


@dataclass(frozen=True)
class PoolStrategy(Strategy):
    """Takes the rightmost X-Forwarded-For entry that is not in the checker's pool."""

    checker: Checker | None = None

    def get_ip(self, request: Request) -> str:
        if self.checker is None:
            return ""
        for entry in reversed(request.header(X_FORWARDED_FOR).split(",")):
            candidate = entry.strip()
            if not candidate:
                continue
            try:
                contained = self.checker.contains(candidate)
            except CheckerError:
                contained = False
            if not contained:
                return candidate
        return ""


@dataclass(frozen=True)
class CloudflareDepthStrategy(Strategy):
    """Takes the Cf-Connecting-Ip entry at ``cloudflare_depth`` counted from the right."""

    cloudflare_depth: int

    def get_ip(self, request: Request) -> str:
        return get_ip_from_header(request, CLOUDFLARE_IP, self.cloudflare_depth)


def get_ip_from_header(request: Request, header: str, depth: int) -> str:
    """Return the comma-separated header entry at ``depth`` from the right."""
    entries = request.header(header).split(",")
    if len(entries) < depth:
        return ""
    return entries[len(entries) - depth].strip()