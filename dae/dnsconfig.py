"""Reading of resolver settings from a resolv.conf file."""

from __future__ import annotations

import ipaddress
import os
import re
import socket
import threading
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_NAMESERVERS = ("127.0.0.1:53", "[::1]:53")

_MAX_NAMESERVERS = 3  # small, but the standard limit
_INT = re.compile(r"[+-]?[0-9]+")


def _atoi(text: str) -> int:
    """Parse a decimal integer, yielding 0 for anything malformed."""
    return int(text) if _INT.fullmatch(text) else 0


def ensure_rooted(name: str) -> str:
    """Return ``name`` with a trailing dot."""
    return name if name.endswith(".") else name + "."


def default_search(hostname: Optional[str] = None) -> List[str]:
    """Derive the search list from the domain part of the host name.

    With ``hostname`` None the name of this machine is used.
    """
    if hostname is None:
        try:
            hostname = socket.gethostname()
        except OSError:
            return []
    dot = hostname.find(".")
    if 0 <= dot < len(hostname) - 1:
        return [ensure_rooted(hostname[dot + 1:])]
    return []


@dataclass
class DnsConfig:
    """Resolver settings; see resolv.conf(5)."""

    servers: List[str] = field(default_factory=list)
    search: List[str] = field(default_factory=list)
    ndots: int = 1
    timeout: float = 5.0
    attempts: int = 2
    rotate: bool = False
    unknown_opt: bool = False
    lookup: List[str] = field(default_factory=list)
    error: Optional[OSError] = None
    mtime: Optional[float] = None
    single_request: bool = False
    use_tcp: bool = False
    _soffset: int = field(default=0, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def server_offset(self) -> int:
        """Return the server index offset; it advances on each call when rotating."""
        if not self.rotate:
            return 0
        with self._lock:
            offset = self._soffset
            self._soffset = (self._soffset + 1) & 0xFFFFFFFF
            return offset


def _host_port(host: str, port: str) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _is_ip(text: str) -> bool:
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def _apply_options(conf: DnsConfig, options: List[str]) -> None:
    for opt in options:
        if opt.startswith("ndots:"):
            conf.ndots = min(max(_atoi(opt[6:]), 0), 15)
        elif opt.startswith("timeout:"):
            conf.timeout = float(max(_atoi(opt[8:]), 1))
        elif opt.startswith("attempts:"):
            conf.attempts = max(_atoi(opt[9:]), 1)
        elif opt == "rotate":
            conf.rotate = True
        elif opt in ("single-request", "single-request-reopen"):
            conf.single_request = True
        elif opt in ("use-vc", "usevc", "tcp"):
            conf.use_tcp = True
        else:
            conf.unknown_opt = True


def read_dns_config(filename: str, hostname: Optional[str] = None) -> DnsConfig:
    """Read resolver settings from ``filename``.

    A file that cannot be read yields the default servers, with the error
    kept in ``error``. ``hostname`` feeds the default search list.
    """
    conf = DnsConfig()
    try:
        with open(filename, "rb") as fh:
            conf.mtime = os.fstat(fh.fileno()).st_mtime
            data = fh.read()
    except OSError as exc:
        conf.servers = list(DEFAULT_NAMESERVERS)
        conf.search = default_search(hostname)
        conf.error = exc
        return conf

    for raw in data.split(b"\n"):
        line = raw.rstrip(b"\r").decode("utf-8", errors="replace")
        if line[:1] in (";", "#"):
            continue
        fields = line.split()
        if not fields:
            continue
        keyword, args = fields[0], fields[1:]
        if keyword == "nameserver":
            if args and len(conf.servers) < _MAX_NAMESERVERS and _is_ip(args[0]):
                conf.servers.append(_host_port(args[0], "53"))
        elif keyword == "domain":
            if args:
                conf.search = [ensure_rooted(args[0])]
        elif keyword == "search":
            conf.search = [ensure_rooted(name) for name in args]
        elif keyword == "options":
            _apply_options(conf, args)
        elif keyword == "lookup":
            conf.lookup = args
        else:
            conf.unknown_opt = True

    if not conf.servers:
        conf.servers = list(DEFAULT_NAMESERVERS)
    if not conf.search:
        conf.search = default_search(hostname)
    return conf