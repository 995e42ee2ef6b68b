"""Collecting the network configuration of this machine into an archive."""

from __future__ import annotations

import ipaddress
import os
import socket
import struct
import subprocess
import tarfile
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

import psutil

_PathLike = Union[str, os.PathLike]

_SCOPES = {0: "universe", 200: "site", 253: "link", 254: "host", 255: "nowhere"}

_PROTOCOLS = {
    42: "babel",
    186: "bgp",
    12: "bird",
    3: "boot",
    16: "dhcp",
    13: "dnrouted",
    192: "eigrp",
    8: "gated",
    187: "isis",
    2: "kernel",
    17: "mrouted",
    10: "mrt",
    15: "ntk",
    188: "ospf",
    9: "ra",
    1: "redirect",
    189: "rip",
    4: "static",
    0: "unspec",
    14: "xorp",
    11: "zebra",
}

_TYPES = {
    0: "unspec",
    1: "unicast",
    2: "local",
    3: "broadcast",
    4: "anycast",
    5: "multicast",
    6: "blackhole",
    7: "unreachable",
    8: "prohibit",
    9: "throw",
    10: "nat",
    11: "xresolve",
}

# Netlink routing protocol.
_NLMSG_HDR = struct.Struct("=IHHII")
_RTMSG = struct.Struct("=BBBBBBBBI")
_RTATTR = struct.Struct("=HH")
_NLMSG_ERROR = 2
_NLMSG_DONE = 3
_RTM_NEWROUTE = 24
_RTM_GETROUTE = 26
_NLM_F_REQUEST = 0x1
_NLM_F_DUMP = 0x300
_RTM_F_CLONED = 0x200
_RT_TABLE_MAIN = 254
_RTA_DST = 1
_RTA_OIF = 4
_RTA_GATEWAY = 5
_RTA_TABLE = 15


def scope_to_string(scope: int) -> str:
    return _SCOPES.get(scope, "unknown")


def protocol_to_string(proto: int) -> str:
    return _PROTOCOLS.get(proto, "unknown")


def type_to_string(route_type: int) -> str:
    return _TYPES.get(route_type, "unknown")


def format_route(route: Mapping[str, Any], ifname: str) -> str:
    """Render a route (keys dst, gateway, scope, protocol, type, flags) as one line."""
    dst = route.get("dst")
    parts = ["default" if dst is None else str(dst)]
    gateway = route.get("gateway")
    if gateway is not None:
        parts.append(f"via {gateway}")
    parts.append(f"dev {ifname}")
    scope = route.get("scope", 0)
    if scope:
        parts.append(f"scope {scope_to_string(scope)}")
    protocol = route.get("protocol", 0)
    if protocol:
        parts.append(f"proto {protocol_to_string(protocol)}")
    route_type = route.get("type", 0)
    if route_type:
        parts.append(f"type {type_to_string(route_type)}")
    flags = route.get("flags", 0)
    if flags:
        parts.append(f"flags {flags}")
    return " ".join(parts)


def _align4(n: int) -> int:
    return (n + 3) & ~3


def _netlink_messages(data: bytes) -> Iterator[Tuple[int, bytes]]:
    offset = 0
    while offset + _NLMSG_HDR.size <= len(data):
        length, msg_type, _, _, _ = _NLMSG_HDR.unpack_from(data, offset)
        if length < _NLMSG_HDR.size:
            return
        yield msg_type, data[offset + _NLMSG_HDR.size: offset + length]
        offset += _align4(length)


def _attributes(payload: bytes, offset: int) -> Iterator[Tuple[int, bytes]]:
    while offset + _RTATTR.size <= len(payload):
        length, attr_type = _RTATTR.unpack_from(payload, offset)
        if length < _RTATTR.size:
            return
        yield attr_type, payload[offset + _RTATTR.size: offset + length]
        offset += _align4(length)


def _ip(raw: bytes):
    if len(raw) in (4, 16):
        return ipaddress.ip_address(raw)
    return None


def _parse_route(payload: bytes) -> Optional[Dict[str, Any]]:
    (_, dst_len, _, _, table, protocol, scope, route_type, flags) = _RTMSG.unpack_from(payload)
    route: Dict[str, Any] = {
        "dst": None, "gateway": None, "oif": 0, "scope": scope,
        "protocol": protocol, "type": route_type, "flags": flags,
    }
    for attr_type, value in _attributes(payload, _RTMSG.size):
        if attr_type == _RTA_DST:
            addr = _ip(value)
            if addr is not None:
                route["dst"] = ipaddress.ip_network(f"{addr}/{dst_len}", strict=False)
        elif attr_type == _RTA_GATEWAY:
            route["gateway"] = _ip(value)
        elif attr_type == _RTA_OIF and len(value) >= 4:
            route["oif"] = struct.unpack_from("=i", value)[0]
        elif attr_type == _RTA_TABLE and len(value) >= 4:
            table = struct.unpack_from("=I", value)[0]
    if flags & _RTM_F_CLONED or table != _RT_TABLE_MAIN:
        return None
    return route


def _list_routes() -> List[Dict[str, Any]]:
    with socket.socket(socket.AF_NETLINK, socket.SOCK_RAW, socket.NETLINK_ROUTE) as sock:
        sock.bind((0, 0))
        body = _RTMSG.pack(socket.AF_UNSPEC, 0, 0, 0, 0, 0, 0, 0, 0)
        header = _NLMSG_HDR.pack(
            _NLMSG_HDR.size + len(body), _RTM_GETROUTE, _NLM_F_REQUEST | _NLM_F_DUMP, 1, 0
        )
        sock.send(header + body)
        routes: List[Dict[str, Any]] = []
        while True:
            data = sock.recv(1 << 20)
            if not data:
                return routes
            for msg_type, payload in _netlink_messages(data):
                if msg_type == _NLMSG_DONE:
                    return routes
                if msg_type == _NLMSG_ERROR:
                    code = struct.unpack_from("=i", payload)[0] if len(payload) >= 4 else 0
                    if code:
                        raise OSError(-code, os.strerror(-code))
                    continue
                if msg_type == _RTM_NEWROUTE:
                    route = _parse_route(payload)
                    if route is not None:
                        routes.append(route)


def dump_routing(output_dir: _PathLike) -> Optional[Path]:
    """Write the main routing table to routing.txt; return its path, or None on failure."""
    try:
        routes = _list_routes()
    except OSError as exc:
        print(f"Failed to get routing table: {exc}")
        return None
    lines = ["Routing:"]
    for route in routes:
        try:
            ifname = socket.if_indextoname(route["oif"])
        except OSError as exc:
            print(f"Failed to get link by index: {exc}")
            continue
        lines.append(format_route(route, ifname))
    target = Path(output_dir) / "routing.txt"
    try:
        target.write_text("\n".join(lines) + "\n")
    except OSError as exc:
        print(f"Failed to write routing information to file: {exc}")
        return None
    return target


def _prefix_length(netmask: Optional[str]) -> Optional[int]:
    if not netmask:
        return None
    try:
        return bin(int(ipaddress.ip_address(netmask))).count("1")
    except ValueError:
        return None


def dump_net_interfaces(output_dir: _PathLike) -> Optional[Path]:
    """Write interface names, MTUs, hardware addresses and addresses to interfaces.txt."""
    try:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except OSError as exc:
        print(f"Failed to get network interfaces: {exc}")
        return None
    lines = ["Network Interfaces:"]
    for name, entries in addrs.items():
        stat = stats.get(name)
        mtu = stat.mtu if stat is not None else 0
        flags = getattr(stat, "flags", "") if stat is not None else ""
        flag_list = [f for f in flags.split(",") if f]
        hwaddr = next((e.address for e in entries if e.family == psutil.AF_LINK), "")
        lines.append(
            f"Name: {name}, MTU: {mtu}, HardwareAddr: {hwaddr}, Flags: [{' '.join(flag_list)}]"
        )
        for entry in entries:
            if entry.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            address = entry.address.split("%", 1)[0]
            prefix = _prefix_length(entry.netmask)
            lines.append(f"  Address: {address}" + (f"/{prefix}" if prefix is not None else ""))
    target = Path(output_dir) / "interfaces.txt"
    target.write_text("\n".join(lines) + "\n")
    return target


def _walk_files(path: str) -> Iterator[str]:
    try:
        entries = sorted(os.scandir(path), key=lambda e: e.name)
    except OSError as exc:
        print(f"Failed to walk {path}: {exc}")
        return
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            yield from _walk_files(entry.path)
        else:
            yield entry.path


def dump_sysctl(output_dir: _PathLike, sysctl_path: str = "/proc/sys/net") -> Path:
    """Write every setting under ``sysctl_path`` to sysctl.txt."""
    lines = []
    for path in _walk_files(sysctl_path):
        try:
            value = Path(path).read_bytes().decode("utf-8", errors="replace")
        except OSError as exc:
            print(f"Failed to read {path}: {exc}")
            value = ""
        relative = path.removeprefix(sysctl_path + "/")
        lines.append(f"{relative:<60} = {value}\n")
    target = Path(output_dir) / "sysctl.txt"
    target.write_text("".join(lines))
    return target


def _capture(command: List[str]) -> bytes:
    completed = subprocess.run(command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
    if completed.returncode != 0:
        raise subprocess.CalledProcessError(completed.returncode, command, completed.stdout)
    return completed.stdout


def dump_netfilter(output_dir: _PathLike) -> Optional[Path]:
    """Write the nftables ruleset to nftables.txt; return None if nft fails."""
    try:
        output = _capture(["nft", "list", "ruleset"])
    except (OSError, subprocess.CalledProcessError) as exc:
        print(f"Failed to get nftables ruleset: {exc}")
        return None
    target = Path(output_dir) / "nftables.txt"
    target.write_bytes(output)
    return target


def dump_iptables(output_dir: _PathLike) -> List[Path]:
    """Write iptables and ip6tables rules with counters; return the files written."""
    written = []
    for tool, filename, label in (
        ("iptables-save", "iptables.txt", "iptables"),
        ("ip6tables-save", "ip6tables.txt", "ip6tables"),
    ):
        try:
            output = _capture([tool, "-c"])
        except (OSError, subprocess.CalledProcessError) as exc:
            print(f"Failed to get {label}: {exc}")
            continue
        target = Path(output_dir) / filename
        target.write_bytes(output)
        written.append(target)
    return written


def dump_network_info(destination: Optional[_PathLike] = None) -> Optional[Path]:
    """Collect all network information into a gzip tarball and return its path."""
    if destination is None:
        destination = f"dae-sysdump.{int(time.time())}.tar.gz"
    try:
        tmp = tempfile.TemporaryDirectory(prefix="sysdump")
    except OSError as exc:
        print(f"Failed to create temp directory: {exc}")
        return None
    with tmp as temp_dir:
        dump_routing(temp_dir)
        dump_net_interfaces(temp_dir)
        dump_sysctl(temp_dir)
        dump_netfilter(temp_dir)
        dump_iptables(temp_dir)
        target = Path(destination)
        try:
            with tarfile.open(target, "w:gz") as archive:
                archive.add(temp_dir, arcname=os.path.basename(temp_dir))
        except OSError as exc:
            print(f"Failed to create tar archive: {exc}")
            return None
    print(f"System network information collected and saved to {target}")
    return target