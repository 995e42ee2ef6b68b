"""DNS upstream addresses: parsing, resolution and lazy initialisation."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union
from urllib.parse import SplitResult, unquote, urlsplit

from .consts import IpVersionStr, L4ProtoStr
from .resolver import IPAddress, SystemDns, resolve_ip46

DEFAULT_INIT_TIMEOUT = 10.0

_Url = Union[str, SplitResult]


class UpstreamFormatError(ValueError):
    """An upstream address is malformed."""


class UpstreamScheme(str, Enum):
    TCP = "tcp"
    UDP = "udp"
    TCP_UDP = "tcp+udp"
    TLS = "tls"
    QUIC = "quic"
    HTTPS = "https"
    H3 = "h3"

    def contains_tcp(self) -> bool:
        return self in (UpstreamScheme.TCP, UpstreamScheme.TCP_UDP)


_ALIASES = {"udp+tcp": UpstreamScheme.TCP_UDP, "http3": UpstreamScheme.H3}
_DEFAULT_PORTS = {
    UpstreamScheme.TCP: "53",
    UpstreamScheme.UDP: "53",
    UpstreamScheme.TCP_UDP: "53",
    UpstreamScheme.HTTPS: "443",
    UpstreamScheme.H3: "443",
    UpstreamScheme.QUIC: "853",
    UpstreamScheme.TLS: "853",
}


@dataclass(frozen=True)
class ParsedUpstream:
    scheme: UpstreamScheme
    hostname: str
    port: int
    path: str


def _split_host_port(netloc: str) -> Tuple[str, str]:
    hostport = netloc.rpartition("@")[2]
    if hostport.startswith("["):
        end = hostport.find("]")
        if end == -1:
            raise UpstreamFormatError(f"missing ']' in host: {hostport}")
        host, rest = hostport[1:end], hostport[end + 1:]
        return host, rest[1:] if rest.startswith(":") else ""
    host, sep, port = hostport.rpartition(":")
    return (host, port) if sep else (hostport, "")


def _as_url(raw: _Url) -> SplitResult:
    if isinstance(raw, SplitResult):
        return raw
    try:
        return urlsplit(raw)
    except ValueError as exc:
        raise UpstreamFormatError(str(exc)) from exc


def parse_raw_upstream(raw: _Url) -> ParsedUpstream:
    """Split an upstream URL into scheme, host name, port and path, filling defaults."""
    parts = _as_url(raw)
    scheme_text = parts.scheme
    try:
        scheme = _ALIASES.get(scheme_text) or UpstreamScheme(scheme_text)
    except ValueError:
        raise UpstreamFormatError(f"unexpected scheme: {scheme_text}") from None
    hostname, port_text = _split_host_port(parts.netloc)
    port_text = port_text or _DEFAULT_PORTS[scheme]
    if not port_text.isdigit() or int(port_text) > 0xFFFF:
        raise UpstreamFormatError(f"failed to parse dns_upstream port: {port_text!r}")
    path = ""
    if scheme in (UpstreamScheme.HTTPS, UpstreamScheme.H3):
        path = unquote(parts.path) or "/dns-query"
    return ParsedUpstream(scheme, hostname, int(port_text), path)


@dataclass
class Upstream:
    scheme: UpstreamScheme
    hostname: str
    port: int
    path: str = ""
    ip4: Optional[IPAddress] = None
    ip6: Optional[IPAddress] = None

    def supported_networks(self) -> Tuple[List[IpVersionStr], List[L4ProtoStr]]:
        """Return the IP versions and transport protocols usable to reach this upstream."""
        if self.ip4 is not None and self.ip6 is not None:
            versions = [IpVersionStr.V4, IpVersionStr.V6]
        elif self.ip4 is not None:
            versions = [IpVersionStr.V4]
        else:
            versions = [IpVersionStr.V6]
        if self.scheme in (UpstreamScheme.TCP, UpstreamScheme.HTTPS, UpstreamScheme.TLS):
            protos = [L4ProtoStr.TCP]
        elif self.scheme is UpstreamScheme.TCP_UDP:
            protos = [L4ProtoStr.UDP, L4ProtoStr.TCP]  # UDP first.
        else:
            protos = [L4ProtoStr.UDP]
        return versions, protos

    def __str__(self) -> str:
        host = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        return f"{self.scheme.value}://{host}:{self.port}{self.path}"


def new_upstream(
    raw: _Url,
    resolver_network: str = "udp",
    system_dns: Optional[SystemDns] = None,
    timeout: float = DEFAULT_INIT_TIMEOUT,
) -> Upstream:
    """Parse ``raw`` and resolve its host through the system name server."""
    try:
        parsed = parse_raw_upstream(raw)
    except UpstreamFormatError as exc:
        raise UpstreamFormatError(f"format error: {exc}") from exc
    sysdns = system_dns if system_dns is not None else SystemDns()
    server = sysdns.get()
    try:
        if server is None:
            raise LookupError("no system DNS server available")
        ip46, _, _ = resolve_ip46(
            server, parsed.hostname, resolver_network, race=False, timeout=timeout
        )
        if ip46.ip4 is None and ip46.ip6 is None:
            text = raw.geturl() if isinstance(raw, SplitResult) else raw
            raise LookupError(f"dns_upstream {text} has no record")
    except Exception:
        try:
            sysdns.try_update_elapse(1.0)
        except RuntimeError:
            pass
        raise
    return Upstream(parsed.scheme, parsed.hostname, parsed.port, parsed.path, ip46.ip4, ip46.ip6)


_FinishCallback = Callable[[_Url, Upstream], None]


class UpstreamResolver:
    """Resolves an upstream on first use and remembers the result.

    ``finish_init_callback`` runs after a successful resolution; if it
    raises, the result is discarded and the next call tries again.
    """

    def __init__(
        self,
        raw: _Url,
        network: str = "udp",
        finish_init_callback: Optional[_FinishCallback] = None,
        system_dns: Optional[SystemDns] = None,
    ):
        self.raw = raw
        self.network = network
        self.finish_init_callback = finish_init_callback
        self.system_dns = system_dns
        self._lock = threading.Lock()
        self._upstream: Optional[Upstream] = None
        self._init = False

    def get_upstream(self) -> Upstream:
        with self._lock:
            if self._init and self._upstream is not None:
                return self._upstream
            upstream = new_upstream(self.raw, self.network, self.system_dns)
            if self.finish_init_callback is not None:
                self.finish_init_callback(self.raw, upstream)
            self._upstream = upstream
            self._init = True
            return upstream