# ddnsallowlist

A WSGI middleware that lets a request through only when the client address
belongs to one of a set of hostnames. These are usually dynamic DNS names that
follow a home or office connection. Hostnames are resolved again at regular
intervals, and the results are cached. Static IP addresses and CIDR ranges can
be added alongside the hostnames. Every other client gets a configurable
rejection status, which is 403 Forbidden by default. The response body is the
reason phrase of that status, sent as plain text.

## Installation

```
pip install ddnsallowlist
```

## Usage

```python
from ddnsallowlist.middleware import DdnsAllowLister, create_config

def app(environ, start_response):
    start_response("200 OK", [("Content-Type", "text/plain")])
    return [b"hello"]

config = create_config()
config.source_range_hosts = ["home.example.com"]
config.source_range_ips = ["192.0.2.0/24"]
config.lookup_interval = 300      # seconds between re-resolving hostnames
config.dns_cache_ttl = 300        # seconds a resolved hostname stays cached
config.reject_status_code = 403   # 0 means 403 Forbidden

application = DdnsAllowLister(app, config, "my-allowlist")
```

The middleware resolves the hostnames once when it is created. Creation raises
the following errors:

- `EmptySourceRangeHostsError` when no hostnames are given.
- `InvalidStatusCodeError` for an unknown rejection status code.
- `InvalidCIDRError` (from `ddnsallowlist.checker`) for a static entry that is
  neither an address nor a CIDR range.

Before each request is checked, the middleware looks at the age of the trusted
set. If it is older than `lookup_interval`, a background thread rebuilds it, so
the request does not wait for DNS. The rules for the cache and for failures are
these:

- A resolved host stays cached for `dns_cache_ttl` seconds.
- Each lookup is tried up to three times.
- When a lookup fails, a stale cache entry for that host is used if one exists.
- When nothing at all can be resolved and no static entries are configured,
  the previous trusted set is kept.
- Until some address has been resolved, every request is rejected.

### Custom resolution

Hostnames are resolved with `system_resolver`, which uses the operating
system's resolver and returns both IPv4 and IPv6 addresses. To use something
else, pass a callable that takes `(host, timeout)` and returns a sequence of
address strings:

```python
def resolver(host, timeout):
    return ["192.0.2.10"]

application = DdnsAllowLister(app, config, "my-allowlist", resolver=resolver)
```

### Choosing the client address

By default the client address is taken from `REMOTE_ADDR`. Behind a proxy, set
an `IPStrategy` from `ddnsallowlist.config`:

```python
from ddnsallowlist.config import IPStrategy

config.ip_strategy = IPStrategy(depth=1)              # X-Forwarded-For entry, counted from the right
config.ip_strategy = IPStrategy(cloudflare_depth=1)   # Cf-Connecting-Ip entry, counted from the right
config.ip_strategy = IPStrategy(excluded_ips=["10.0.0.0/8"])  # rightmost X-Forwarded-For entry not excluded
```

`depth` takes precedence over `cloudflare_depth`, and `cloudflare_depth` takes
precedence over `excluded_ips`.

The strategies are also available on their own, in `ddnsallowlist.strategy`:

- `RemoteAddrStrategy`
- `DepthStrategy`
- `CloudflareDepthStrategy`
- `PoolStrategy`

Each one reads a `Request`, which you can build directly or from a WSGI
environ with `Request.from_environ`.

### IPv6 networks

A router with a dynamic DNS name usually publishes a single IPv6 address. The
hosts behind it use other interface identifiers within the same network. Set
`config.allowed_ipv6_network_prefix = 64` to allow any IPv6 address that shares
its first 64 bits with a resolved address. The default `0` requires an exact
match.

### Address checks on their own

```python
from ddnsallowlist.checker import Checker, NotAuthorizedError

checker = Checker(["203.0.113.7", "2001:db8::/32"], 0)
checker.contains("203.0.113.7")             # True
checker.is_authorized("198.51.100.1:4711")  # raises NotAuthorizedError
```

Every checker error derives from `CheckerError`, which is a `ValueError`.

### Logging

`ddnsallowlist.logger.Logger` writes messages at four levels: `trace`, `debug`,
`info` and `error`.

- Trace, debug and info messages go to standard output, or to the `stream`
  you pass in.
- Errors go to standard error, or to the `error_stream` you pass in.

Set `config.log_level` to choose how much is written. An unknown level writes
errors only.

## What it does not do

This package is a library only. It has no command-line program and no HTTP
server of its own. To serve the wrapped application, run it with any WSGI
server.