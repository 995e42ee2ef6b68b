"""DNS lookups over UDP or TCP, and tracking of the system resolver."""

from __future__ import annotations

import ipaddress
import logging
import socket
import struct
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union
from urllib.parse import SplitResult, urlsplit

import dns.message
import dns.name
import dns.rdatatype
import dns.rrset

from .consts import ETHERNET_MTU
from .dnsconfig import read_dns_config
from .utils import converge_addr

logger = logging.getLogger(__name__)

DEFAULT_RESOLV_CONF = "/etc/resolv.conf"
DEFAULT_TIMEOUT = 10.0

_RESEND_INTERVAL = 3.0
_POLL_INTERVAL = 0.25
_NETWORKS = ("udp", "tcp")

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
AddrPort = Tuple[IPAddress, int]
_ServerLike = Union[str, Tuple[Union[str, IPAddress], int]]


class BadDnsAnswerError(ValueError):
    """A DNS answer was malformed or unusable."""


class _Cancelled(Exception):
    """A lookup was abandoned because a racing lookup finished first."""


@dataclass
class Ip46:
    """First IPv4 and IPv6 address found for a host, if any."""

    ip4: Optional[IPAddress] = None
    ip6: Optional[IPAddress] = None


def _as_addr_port(value: _ServerLike) -> AddrPort:
    if isinstance(value, str):
        host, sep, port_text = value.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address: {value}")
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        elif ":" in host:
            raise ValueError(f"too many colons in address: {value}")
        if not port_text.isdigit():
            raise ValueError(f"invalid port in address: {value}")
        addr, port = ipaddress.ip_address(host), int(port_text)
    else:
        raw_addr, port = value
        addr = ipaddress.ip_address(raw_addr)
        port = int(port)
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"port out of range: {port}")
    return addr, port


def _check(deadline: float, cancel: Optional[threading.Event]) -> float:
    if cancel is not None and cancel.is_set():
        raise _Cancelled()
    now = time.monotonic()
    if now >= deadline:
        raise TimeoutError("timeout")
    return now


def _exchange_udp(server: AddrPort, payload: bytes, deadline: float,
                  cancel: Optional[threading.Event]) -> bytes:
    addr, port = server
    family = socket.AF_INET6 if addr.version == 6 else socket.AF_INET
    with socket.socket(family, socket.SOCK_DGRAM) as sock:
        sock.connect((str(addr), port))
        sock.send(payload)
        resend_at = time.monotonic() + _RESEND_INTERVAL
        while True:
            now = _check(deadline, cancel)
            if now >= resend_at:
                sock.send(payload)
                resend_at = now + _RESEND_INTERVAL
            wait_until = min(deadline, resend_at, now + _POLL_INTERVAL)
            sock.settimeout(max(wait_until - now, 0.001))
            try:
                return sock.recv(ETHERNET_MTU)
            except socket.timeout:
                continue


def _recv_exact(sock: socket.socket, size: int, deadline: float,
                cancel: Optional[threading.Event]) -> bytes:
    chunks = bytearray()
    while len(chunks) < size:
        now = _check(deadline, cancel)
        sock.settimeout(max(min(deadline, now + _POLL_INTERVAL) - now, 0.001))
        try:
            chunk = sock.recv(size - len(chunks))
        except socket.timeout:
            continue
        if not chunk:
            raise ConnectionError("connection closed before the full response")
        chunks.extend(chunk)
    return bytes(chunks)


def _exchange_tcp(server: AddrPort, payload: bytes, deadline: float,
                  cancel: Optional[threading.Event]) -> bytes:
    addr, port = server
    now = _check(deadline, cancel)
    try:
        sock = socket.create_connection((str(addr), port), timeout=deadline - now)
    except socket.timeout:
        raise TimeoutError("timeout") from None
    with sock:
        sock.sendall(struct.pack("!H", len(payload)) + payload)
        (length,) = struct.unpack("!H", _recv_exact(sock, 2, deadline, cancel))
        if length > ETHERNET_MTU:
            raise BadDnsAnswerError("too big dns resp")
        return _recv_exact(sock, length, deadline, cancel)


def _check_network(network: str) -> None:
    if network not in _NETWORKS:
        raise ValueError(f"unsupported network: {network}")


def _resolve(server: AddrPort, host: str, qtype: dns.rdatatype.RdataType,
             network: str, timeout: float,
             cancel: Optional[threading.Event] = None) -> List[dns.rrset.RRset]:
    _check_network(network)
    fqdn = host.lower()
    if not fqdn.endswith("."):
        fqdn += "."
    query = dns.message.make_query(dns.name.from_text(fqdn), qtype)
    payload = query.to_wire()
    deadline = time.monotonic() + timeout
    exchange = _exchange_tcp if network == "tcp" else _exchange_udp
    data = exchange(server, payload, deadline, cancel)
    return list(dns.message.from_wire(data).answer)


def _literal_answer(host: str, qtype: dns.rdatatype.RdataType) -> Optional[List[IPAddress]]:
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return None
    is4 = addr.version == 4 or addr.ipv4_mapped is not None
    if is4 and qtype == dns.rdatatype.A:
        return [addr]
    if addr.version == 6 and qtype == dns.rdatatype.AAAA:
        return [addr]
    return []


def _resolve_netip(server: AddrPort, host: str, qtype, network: str, timeout: float,
                   cancel: Optional[threading.Event] = None) -> List[IPAddress]:
    rdtype = dns.rdatatype.RdataType.make(qtype)
    if rdtype in (dns.rdatatype.A, dns.rdatatype.AAAA):
        literal = _literal_answer(host, rdtype)
        if literal is not None:
            return literal
    addrs: List[IPAddress] = []
    for rrset in _resolve(server, host, rdtype, network, timeout, cancel):
        if rrset.rdtype != rdtype or rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA):
            continue
        for rdata in rrset:
            address = getattr(rdata, "address", None)
            if address is None:
                raise BadDnsAnswerError("bad dns answer")
            addrs.append(ipaddress.ip_address(address))
    return addrs


def resolve_netip(dns_server: _ServerLike, host: str, qtype, network: str = "udp",
                  timeout: float = DEFAULT_TIMEOUT) -> List[IPAddress]:
    """Look up A or AAAA records of ``host``; an IP literal answers itself."""
    return _resolve_netip(_as_addr_port(dns_server), host, qtype, network, timeout)


def _resolve_names(dns_server: _ServerLike, host: str, rdtype, attribute: str,
                   network: str, timeout: float) -> List[str]:
    records = []
    for rrset in _resolve(_as_addr_port(dns_server), host, rdtype, network, timeout):
        if rrset.rdtype != rdtype:
            continue
        for rdata in rrset:
            name = getattr(rdata, attribute, None)
            if name is None:
                raise BadDnsAnswerError("bad dns answer")
            records.append(name.to_text())
    return records


def resolve_ns(dns_server: _ServerLike, host: str, network: str = "udp",
               timeout: float = DEFAULT_TIMEOUT) -> List[str]:
    """Return the name servers listed in the NS records of ``host``."""
    return _resolve_names(dns_server, host, dns.rdatatype.NS, "target", network, timeout)


def resolve_soa(dns_server: _ServerLike, host: str, network: str = "udp",
                timeout: float = DEFAULT_TIMEOUT) -> List[str]:
    """Return the primary name servers named by the SOA records of ``host``."""
    return _resolve_names(dns_server, host, dns.rdatatype.SOA, "mname", network, timeout)


def resolve_ip46(dns_server: _ServerLike, host: str, network: str = "udp",
                 race: bool = False, timeout: float = DEFAULT_TIMEOUT
                 ) -> Tuple[Ip46, Optional[BaseException], Optional[BaseException]]:
    """Look up A and AAAA records of ``host`` in parallel.

    Returns the first address of each family together with the error of
    each lookup. With ``race`` the first lookup to finish abandons the other.
    """
    _check_network(network)
    server = _as_addr_port(dns_server)
    cancel4, cancel6 = threading.Event(), threading.Event()

    def run(qtype, own: threading.Event, other: threading.Event):
        try:
            return _resolve_netip(server, host, qtype, network, timeout, own), None
        except _Cancelled:
            return [], None
        except Exception as exc:  # reported to the caller, not raised
            return [], exc
        finally:
            if race:
                other.set()

    with ThreadPoolExecutor(max_workers=2) as pool:
        future4 = pool.submit(run, dns.rdatatype.A, cancel4, cancel6)
        future6 = pool.submit(run, dns.rdatatype.AAAA, cancel6, cancel4)
        addrs4, err4 = future4.result()
        addrs6, err6 = future6.result()

    result = Ip46(ip4=addrs4[0] if addrs4 else None, ip6=addrs6[0] if addrs6 else None)
    logger.debug("ResolveIp46 %s using %s: A(%s) AAAA(%s) err4=%s err6=%s",
                 host, dns_server, result.ip4, result.ip6, err4, err6)
    return result, err4, err6


class SystemDns:
    """The first non-loopback name server of resolv.conf, refreshed lazily."""

    def __init__(self, resolv_conf: str = DEFAULT_RESOLV_CONF,
                 fallback: Optional[_ServerLike] = None):
        self.resolv_conf = resolv_conf
        self.fallback: Optional[AddrPort] = (
            _as_addr_port(fallback) if fallback is not None else None
        )
        self._lock = threading.Lock()
        self._current: Optional[AddrPort] = None
        self._next_update = float("-inf")

    def _update(self) -> None:
        conf = read_dns_config(self.resolv_conf, hostname="")
        chosen = None
        for server in conf.servers:
            addr_port = _as_addr_port(server)
            if not converge_addr(addr_port[0]).is_loopback:
                chosen = addr_port
                break
        self._current = chosen if chosen is not None else self.fallback

    def _update_elapse(self, interval: float) -> None:
        if time.monotonic() < self._next_update:
            raise RuntimeError("update too quickly")
        self._update()
        self._next_update = time.monotonic() + interval

    def get(self) -> Optional[AddrPort]:
        """Return the system name server, re-reading the file at most every 5 s."""
        with self._lock:
            if self._current is None:
                self._update()
            try:
                self._update_elapse(5.0)
            except RuntimeError:
                pass
            return self._current

    def try_update(self) -> Optional[AddrPort]:
        """Re-read the configuration now and return the chosen server."""
        with self._lock:
            self._update()
            return self._current

    def try_update_elapse(self, interval: float) -> Optional[AddrPort]:
        """Re-read the configuration unless the last such update is under ``interval`` s old.

        Raises RuntimeError when called too soon.
        """
        with self._lock:
            self._update_elapse(interval)
            return self._current


def url_port(url: Union[str, SplitResult]) -> str:
    """Return the port of ``url``, defaulting to 80 for http and 443 for https."""
    parts = urlsplit(url) if isinstance(url, str) else url
    hostport = parts.netloc.rpartition("@")[2]
    colon = hostport.rfind(":")
    if colon != -1 and "]" not in hostport[colon:]:
        port = hostport[colon + 1:]
        if port:
            return port
    return {"http": "80", "https": "443"}.get(parts.scheme, "")