"""WSGI middleware that admits clients whose IP belongs to a set of DNS hostnames."""

from __future__ import annotations

import socket
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Optional, TypeVar

from .checker import Checker, CheckerError, NotAuthorizedError
from .config import IPStrategy, get_strategy
from .logger import Logger
from .strategy import Request

TYPE_NAME = "ddns-allowlist"
DEFAULT_LOOKUP_INTERVAL = 5 * 60.0
MAX_DNS_RETRIES = 3
DNS_RETRY_DELAY = 2.0
DEFAULT_DNS_TTL = 5 * 60.0
SUBSEQUENT_DNS_TIMEOUT = 5.0
UPDATE_TIMEOUT = 60.0
HOSTS_TIMEOUT = 45.0
HOST_TIMEOUT = 15.0
RESOLVE_TIMEOUT = 15.0
MAX_CLEAN_COUNT = 100

Resolver = Callable[[str, float], Sequence[str]]
StartResponse = Callable[..., Any]
WSGIApp = Callable[[dict, StartResponse], Iterable[bytes]]

_T = TypeVar("_T")


class AllowListError(Exception):
    """Base class for allowlist middleware errors."""


class EmptySourceRangeHostsError(AllowListError, ValueError):
    """No hostnames were configured."""


class InvalidStatusCodeError(AllowListError, ValueError):
    """The configured reject status is not a known HTTP status code."""


class DNSResolutionError(AllowListError):
    """A hostname could not be resolved after all retries."""


class NoIPAddressFoundError(AllowListError):
    """A hostname resolved to no addresses."""


@dataclass
class DNSCacheEntry:
    """Addresses resolved for a host and the monotonic time they expire at."""

    ips: list[str]
    expire_at: float


@dataclass
class DdnsAllowListConfig:
    """Middleware configuration; intervals and TTLs are in seconds, 0 means default."""

    source_range_hosts: list[str] = field(default_factory=list)
    source_range_ips: list[str] = field(default_factory=list)
    ip_strategy: Optional[IPStrategy] = None
    reject_status_code: int = 0
    log_level: str = ""
    lookup_interval: int = 0
    allowed_ipv6_network_prefix: int = 0
    dns_cache_ttl: int = 0


def create_config() -> DdnsAllowListConfig:
    """Return the default configuration."""
    return DdnsAllowListConfig()


def _call_with_timeout(func: Callable[..., _T], timeout: float, *args: Any) -> _T:
    """Run ``func`` in a worker thread; raise TimeoutError if it takes too long."""
    outcome: dict[str, Any] = {}
    done = threading.Event()

    def target() -> None:
        try:
            outcome["value"] = func(*args)
        except BaseException as exc:  # handed back to the caller
            outcome["error"] = exc
        finally:
            done.set()

    threading.Thread(target=target, daemon=True).start()
    if not done.wait(timeout):
        raise TimeoutError(f"timed out after {timeout}s")
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def system_resolver(host: str, timeout: float = SUBSEQUENT_DNS_TIMEOUT) -> list[str]:
    """Resolve ``host`` to its IPv4 and IPv6 addresses with the system resolver."""
    infos = _call_with_timeout(
        socket.getaddrinfo, timeout, host, None, 0, socket.SOCK_STREAM
    )
    ips: list[str] = []
    for *_, sockaddr in infos:
        address = str(sockaddr[0])
        if address not in ips:
            ips.append(address)
    return ips


def reject(logger: Logger, status_code: int, start_response: StartResponse) -> list[bytes]:
    """Answer with ``status_code`` and its reason phrase as a plain-text body."""
    phrase = HTTPStatus(status_code).phrase
    body = phrase.encode("utf-8")
    logger.debugf("Rejecting request with status %d", status_code)
    start_response(
        f"{status_code} {phrase}",
        [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("Content-Length", str(len(body))),
        ],
    )
    return [body]


class DdnsAllowLister:
    """Lets requests through only when the client IP belongs to the allowed hosts or ranges."""

    update_timeout = UPDATE_TIMEOUT
    hosts_timeout = HOSTS_TIMEOUT
    host_timeout = HOST_TIMEOUT
    resolve_timeout = RESOLVE_TIMEOUT
    query_timeout = SUBSEQUENT_DNS_TIMEOUT
    retry_delay = DNS_RETRY_DELAY

    def __init__(
        self,
        app: Optional[WSGIApp],
        config: DdnsAllowListConfig,
        name: str = TYPE_NAME,
        resolver: Optional[Resolver] = None,
    ) -> None:
        self.logger = Logger(config.log_level, name, TYPE_NAME)
        self.logger.debug("Creating middleware")

        if not config.source_range_hosts:
            raise EmptySourceRangeHostsError(
                "sourceRangeHosts is empty, DDNSAllowLister not created"
            )

        status = config.reject_status_code or HTTPStatus.FORBIDDEN.value
        try:
            HTTPStatus(status)
        except ValueError:
            raise InvalidStatusCodeError(f"invalid HTTP status code: {status}") from None

        self.strategy = get_strategy(config.ip_strategy)
        self.logger.debugf("using strategy: %s", self.strategy.name)

        self.app = app
        self.name = name
        self.reject_status_code = status
        self.source_range_hosts = list(config.source_range_hosts)
        self.source_range_ips = list(config.source_range_ips)
        self.lookup_interval = (
            float(config.lookup_interval) if config.lookup_interval > 0 else DEFAULT_LOOKUP_INTERVAL
        )
        self.dns_cache_ttl = (
            float(config.dns_cache_ttl) if config.dns_cache_ttl > 0 else DEFAULT_DNS_TTL
        )
        self.network_prefix_ipv6 = config.allowed_ipv6_network_prefix
        self.resolver: Resolver = resolver if resolver is not None else system_resolver
        self.dns_cache: dict[str, DNSCacheEntry] = {}
        self.allow_lister: Optional[Checker] = None
        self.last_update: Optional[float] = None
        self._lock = threading.Lock()

        with self._lock:
            self.update_trusted_ips()

    def _needs_update(self) -> bool:
        if self.last_update is None:
            return True
        return time.monotonic() - self.last_update > self.lookup_interval

    def _background_update(self) -> None:
        with self._lock:
            if not self._needs_update():
                return
            try:
                self.update_trusted_ips()
            except CheckerError as exc:
                self.logger.errorf("Failed to update trusted IPs: %s", exc)

    def __call__(self, environ: dict, start_response: StartResponse) -> Iterable[bytes]:
        self.logger.debug("Serving middleware")
        self.logger.tracef("Incoming request: %r", environ)

        if self._needs_update():
            # Refresh in the background so a slow DNS lookup never holds up the request.
            threading.Thread(target=self._background_update, daemon=True).start()

        client_ip = self.strategy.get_ip(Request.from_environ(environ))
        checker = self.allow_lister
        try:
            if checker is None:
                raise NotAuthorizedError(f'"{client_ip}" matched none of the trusted IPs')
            checker.is_authorized(client_ip)
        except CheckerError as exc:
            self.logger.debugf("Rejecting IP %s: %s", client_ip, exc)
            return reject(self.logger, self.reject_status_code, start_response)

        self.logger.debugf("Accepting IP %s", client_ip)
        if self.app is None:
            raise RuntimeError("no application to pass the request to")
        return self.app(environ, start_response)

    def update_trusted_ips(self) -> None:
        """Rebuild the checker from resolved hosts and static ranges.

        The caller holds the update lock. With no addresses at all the current
        checker is kept.
        """
        self.logger.debug("Updating trusted IPs")
        try:
            trusted = list(_call_with_timeout(self.resolve_hosts_with_cache, self.update_timeout))
        except TimeoutError as exc:
            self.logger.errorf("Timeout while resolving hosts: %s", exc)
            trusted = []
            for host, entry in list(self.dns_cache.items()):
                self.logger.infof("Using cached IPs for %s due to timeout", host)
                trusted.extend(entry.ips)

        trusted.extend(self.source_range_ips)

        if not trusted:
            self.logger.debug("No trusted IPs found, keeping existing configuration")
            return

        self.logger.debugf("trusted IPs: %s", trusted)
        checker = Checker(trusted, self.network_prefix_ipv6)
        self.last_update = time.monotonic()
        self.allow_lister = checker

    def resolve_hosts_with_cache(self) -> list[str]:
        """Resolve every configured host, using and refreshing the DNS cache."""
        host_ips: list[str] = []
        now = time.monotonic()
        self.clean_expired_cache_entries()
        deadline = now + self.hosts_timeout

        for host in self.source_range_hosts:
            if time.monotonic() >= deadline:
                self.logger.debug("Overall timeout reached while resolving hosts")
                for cached_host in self.source_range_hosts:
                    cached = self.dns_cache.get(cached_host)
                    if cached is not None:
                        self.logger.infof("Using cache entry for host %s due to timeout", cached_host)
                        host_ips.extend(cached.ips)
                if host_ips:
                    self.logger.infof("Returning %d cached IPs after timeout", len(host_ips))
                    return host_ips
                break

            entry = self.dns_cache.get(host)
            if entry is not None and now < entry.expire_at:
                self.logger.debugf(
                    "Cache HIT for host %s: using cached IPs (expires in %ds): %s",
                    host, round(entry.expire_at - now), entry.ips,
                )
                host_ips.extend(entry.ips)
                continue

            if entry is None:
                self.logger.debugf("Cache MISS for host %s: no cache entry found", host)
            else:
                self.logger.debugf(
                    "Cache EXPIRED for host %s: cache entry expired %ds ago",
                    host, round(now - entry.expire_at),
                )

            try:
                ips = _call_with_timeout(self.resolve_host_with_retry, self.host_timeout, host)
            except (AllowListError, TimeoutError) as exc:
                self.logger.errorf("Failed to resolve host %s: %s", host, exc)
                if entry is not None:
                    self.logger.infof(
                        "Using stale cache entry for host %s as fallback: %s", host, entry.ips
                    )
                    host_ips.extend(entry.ips)
                else:
                    self.logger.debugf(
                        "No cache entry available for host %s and resolution failed"
                        " - host will be inaccessible",
                        host,
                    )
                continue

            self.dns_cache[host] = DNSCacheEntry(ips=list(ips), expire_at=now + self.dns_cache_ttl)
            self.logger.debugf(
                "Cache UPDATED for host %s: stored new IPs with TTL %ss: %s",
                host, self.dns_cache_ttl, ips,
            )
            host_ips.extend(ips)

        return host_ips

    def clean_expired_cache_entries(self) -> None:
        """Drop expired cache entries, at most a hundred per call."""
        now = time.monotonic()
        removed = 0
        for host, entry in list(self.dns_cache.items()):
            if removed >= MAX_CLEAN_COUNT:
                self.logger.debugf(
                    "Reached clean limit of %d entries, will clean more next time", MAX_CLEAN_COUNT
                )
                break
            if now > entry.expire_at:
                self.logger.debugf("Removing expired cache entry for host %s", host)
                del self.dns_cache[host]
                removed += 1

    def resolve_host_with_retry(self, host: str) -> list[str]:
        """Resolve ``host``, retrying a few times before giving up."""
        errors: list[Exception] = []
        self.logger.debugf("Starting DNS resolution for host %s", host)
        deadline = time.monotonic() + self.resolve_timeout

        for attempt in range(MAX_DNS_RETRIES):
            if time.monotonic() >= deadline:
                self.logger.debugf(
                    "Overall timeout reached for host %s after %d attempts", host, attempt
                )
                break

            if attempt:
                self.logger.debugf(
                    "Retrying DNS resolution for host %s (attempt %d/%d)",
                    host, attempt + 1, MAX_DNS_RETRIES,
                )
                time.sleep(self.retry_delay)
            else:
                self.logger.debugf(
                    "Attempting DNS resolution for host %s (attempt %d/%d)",
                    host, attempt + 1, MAX_DNS_RETRIES,
                )

            started = time.monotonic()
            timeout = max(0.0, min(self.query_timeout, deadline - started))
            try:
                ips = [str(address) for address in self.resolver(host, timeout)]
            except (OSError, ValueError) as exc:
                errors.append(exc)
                self.logger.errorf(
                    "Error looking up IP for host %s (attempt %d/%d, resolver=system default,"
                    " time=%.3fs): %s",
                    host, attempt + 1, MAX_DNS_RETRIES, time.monotonic() - started, exc,
                )
            else:
                if ips:
                    elapsed = time.monotonic() - started
                    self.logger.infof(
                        "Successfully resolved host %s using system default resolver in %.3fs: %s",
                        host, elapsed, ips,
                    )
                    self.logger.tracef(
                        "DNS resolution details for %s: resolver=system default,"
                        " attempts=%d/%d, time=%.6fs",
                        host, attempt + 1, MAX_DNS_RETRIES, elapsed,
                    )
                    return ips

            if time.monotonic() >= deadline:
                self.logger.debugf("DNS resolution for host %s cancelled", host)
                break

        if errors:
            message = f"DNS resolution failed after retries: {host}: {errors[-1]}"
            if len(errors) > 1:
                message += " (additional errors: [" + " ".join(str(e) for e in errors[1:]) + "])"
            raise DNSResolutionError(message)
        raise NoIPAddressFoundError(f"no IP addresses found for hostname: {host}")