"""Constants and small enumerations shared across the package."""

from __future__ import annotations

import ipaddress
import socket
from enum import Enum, IntEnum
from typing import ClassVar, Dict, Union

APP_NAME = "dae"

ETHERNET_MTU = 1500

UDP_CHECK_LOOKUP_HOST = "connectivitycheck.gstatic.com."
DEFAULT_DIAL_TIMEOUT = 8.0  # seconds

BPF_PIN_ROOT = "/sys/fs/bpf"
TASK_COMM_LEN = 16

TPROXY_MARK = 0x08000000
TPROXY_MARK_STRING = "0x08000000"  # Should be aligned with nftables
RECOGNIZE = 0x2017
LOOPBACK_IFINDEX = 1

LINK_HDR_LEN_NONE = 0
LINK_HDR_LEN_ETHERNET = 14

BASIC_FEATURE_VERSION = (5, 2, 0)
FTRACE_FEATURE_VERSION = (5, 5, 0)
USERSPACE_BATCH_UPDATE_FEATURE_VERSION = (5, 6, 0)
CG_SOCKET_COOKIE_FEATURE_VERSION = (5, 7, 0)
SK_ASSIGN_FEATURE_VERSION = (5, 7, 0)
CHECKSUM_FEATURE_VERSION = (5, 8, 0)
PROG_TYPE_SK_LOOKUP_FEATURE_VERSION = (5, 9, 0)
SOCKMAP_FEATURE_VERSION = (5, 10, 0)
USERSPACE_BATCH_UPDATE_LPM_TRIE_FEATURE_VERSION = (5, 13, 0)
BPF_TIMER_FEATURE_VERSION = (5, 15, 0)
HELPER_BPF_GET_FUNC_IP_VERSION_FEATURE_VERSION = (5, 15, 0)
BPF_LOOP_FEATURE_VERSION = (5, 17, 0)

FUNCTION_DOMAIN = "domain"
FUNCTION_IP = "ip"
FUNCTION_SOURCE_IP = "sip"
FUNCTION_PORT = "port"
FUNCTION_SOURCE_PORT = "sport"
FUNCTION_L4PROTO = "l4proto"
FUNCTION_IP_VERSION = "ipversion"
FUNCTION_MAC = "mac"
FUNCTION_PROCESS_NAME = "pname"
FUNCTION_DSCP = "dscp"
FUNCTION_QNAME = "qname"
FUNCTION_QTYPE = "qtype"
FUNCTION_UPSTREAM = "upstream"

OUTBOUND_PARAM_MARK = "mark"

_DEFAULT_MAX_MATCH_SET_LEN = 32 * 32

# Protocol number returned for UDP by L4ProtoStr.to_l4_proto.
_IPPROTO_IDP = 22


class DialMode(str, Enum):
    IP = "ip"
    DOMAIN = "domain"
    DOMAIN_PLUS = "domain+"
    DOMAIN_CAO = "domain++"


def parse_dial_mode(mode: str) -> DialMode:
    """Return the dial mode named by ``mode``; raise ValueError if unknown."""
    try:
        return DialMode(mode)
    except ValueError:
        raise ValueError(f"unsupported dial mode: {mode}") from None


class DialerSelectionPolicy(str, Enum):
    RANDOM = "random"
    FIXED = "fixed"
    MIN_AVERAGE10_LATENCIES = "min_avg10"
    MIN_MOVING_AVERAGE_LATENCIES = "min_moving_avg"
    MIN_LAST_LATENCY = "min"


class L4ProtoType(IntEnum):
    TCP = 1
    UDP = 2
    TCP_UDP = 3


class IpVersionType(IntEnum):
    V4 = 1
    V6 = 2
    X = 3

    def to_ip_version_str(self) -> "IpVersionStr":
        if self is IpVersionType.V4:
            return IpVersionStr.V4
        if self is IpVersionType.V6:
            return IpVersionStr.V6
        raise ValueError("unsupported ipversion")


class L4ProtoStr(str, Enum):
    TCP = "tcp"
    UDP = "udp"

    def to_l4_proto(self) -> int:
        if self is L4ProtoStr.TCP:
            return socket.IPPROTO_TCP
        return _IPPROTO_IDP

    def to_l4_proto_type(self) -> L4ProtoType:
        if self is L4ProtoStr.TCP:
            return L4ProtoType.TCP
        return L4ProtoType.UDP


class IpVersionStr(str, Enum):
    V4 = "4"
    V6 = "6"

    def to_ip_version(self) -> int:
        return 4 if self is IpVersionStr.V4 else 6

    def to_ip_version_type(self) -> IpVersionType:
        return IpVersionType.V4 if self is IpVersionStr.V4 else IpVersionType.V6


_Addr = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]


def ip_version_from_addr(addr: _Addr) -> IpVersionStr:
    """Return the IP version of ``addr``; IPv4-mapped IPv6 counts as IPv4."""
    if isinstance(addr, str):
        addr = ipaddress.ip_address(addr)
    if addr.version == 4 or addr.ipv4_mapped is not None:
        return IpVersionStr.V4
    return IpVersionStr.V6


class ParamKey(IntEnum):
    ZERO_KEY = 0
    BIG_ENDIAN_TPROXY_PORT_KEY = 1
    DISABLE_L4_TX_CHECKSUM_KEY = 2
    DISABLE_L4_RX_CHECKSUM_KEY = 3
    CONTROL_PLANE_PID_KEY = 4
    CONTROL_PLANE_NAT_DIRECT_KEY = 5
    CONTROL_PLANE_DNS_ROUTING_KEY = 6

    ONE_KEY = 1


class DisableL4ChecksumPolicy(IntEnum):
    ENABLE_L4_CHECKSUM = 0
    RESTORE = 1
    SET_ZERO = 2


class MatchType(IntEnum):
    DOMAIN_SET = 0
    IP_SET = 1
    SOURCE_IP_SET = 2
    PORT = 3
    SOURCE_PORT = 4
    L4_PROTO = 5
    IP_VERSION = 6
    MAC = 7
    PROCESS_NAME = 8
    DSCP = 9
    FALLBACK = 10
    MUST_RULES = 11
    UPSTREAM = 12
    QTYPE = 13


class RoutingDomainKey(str, Enum):
    FULL = "full"
    KEYWORD = "keyword"
    SUFFIX = "suffix"
    REGEX = "regex"


class ReloadState(str, Enum):
    """Progress markers written as the first byte of the progress file."""

    SEND = "0"
    PROCESSING = "1"
    DONE = "2"
    ERROR = "3"


class _NamedIndex(int):
    """An integer index in a fixed range, some of whose values carry names."""

    _MIN: ClassVar[int] = 0
    _MAX: ClassVar[int] = 0xFF
    _NAMES: ClassVar[Dict[int, str]] = {}

    def __new__(cls, value: int):
        value = int(value)
        if not cls._MIN <= value <= cls._MAX:
            raise ValueError(
                f"{cls.__name__} {value} out of range [{cls._MIN}, {cls._MAX}]"
            )
        return super().__new__(cls, value)

    def __str__(self) -> str:
        return self._NAMES.get(int(self), f"<index: {int(self)}>")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({int(self)})"

    def __format__(self, spec: str) -> str:
        if spec:
            return format(int(self), spec)
        return str(self)


class OutboundIndex(_NamedIndex):
    DIRECT: ClassVar["OutboundIndex"]
    BLOCK: ClassVar["OutboundIndex"]
    USER_DEFINED_MIN: ClassVar["OutboundIndex"]
    MUST_RULES: ClassVar["OutboundIndex"]
    CONTROL_PLANE_ROUTING: ClassVar["OutboundIndex"]
    LOGICAL_OR: ClassVar["OutboundIndex"]
    LOGICAL_AND: ClassVar["OutboundIndex"]
    LOGICAL_MASK: ClassVar["OutboundIndex"]
    USER_DEFINED_MAX: ClassVar["OutboundIndex"]

    _NAMES = {
        0xFC: "must_rules",
        0: "direct",
        1: "block",
        0xFD: "<Control Plane Routing>",
        0xFE: "<OR>",
        0xFF: "<AND>",
    }

    def is_reserved(self) -> bool:
        return int(self) in self._NAMES


OutboundIndex.DIRECT = OutboundIndex(0)
OutboundIndex.BLOCK = OutboundIndex(1)
OutboundIndex.USER_DEFINED_MIN = OutboundIndex(2)
OutboundIndex.MUST_RULES = OutboundIndex(0xFC)
OutboundIndex.CONTROL_PLANE_ROUTING = OutboundIndex(0xFD)
OutboundIndex.LOGICAL_OR = OutboundIndex(0xFE)
OutboundIndex.LOGICAL_AND = OutboundIndex(0xFF)
OutboundIndex.LOGICAL_MASK = OutboundIndex(0xFE)
OutboundIndex.USER_DEFINED_MAX = OutboundIndex(0xFC - 1)


class DnsRequestOutboundIndex(_NamedIndex):
    REJECT: ClassVar["DnsRequestOutboundIndex"]
    AS_IS: ClassVar["DnsRequestOutboundIndex"]
    LOGICAL_OR: ClassVar["DnsRequestOutboundIndex"]
    LOGICAL_AND: ClassVar["DnsRequestOutboundIndex"]
    LOGICAL_MASK: ClassVar["DnsRequestOutboundIndex"]
    USER_DEFINED_MAX: ClassVar["DnsRequestOutboundIndex"]

    _MIN = -0x8000
    _MAX = 0x7FFF
    _NAMES = {
        0xFC: "reject",
        0xFD: "asis",
        0xFE: "<OR>",
        0xFF: "<AND>",
    }


DnsRequestOutboundIndex.REJECT = DnsRequestOutboundIndex(0xFC)
DnsRequestOutboundIndex.AS_IS = DnsRequestOutboundIndex(0xFD)
DnsRequestOutboundIndex.LOGICAL_OR = DnsRequestOutboundIndex(0xFE)
DnsRequestOutboundIndex.LOGICAL_AND = DnsRequestOutboundIndex(0xFF)
DnsRequestOutboundIndex.LOGICAL_MASK = DnsRequestOutboundIndex(0xFE)
DnsRequestOutboundIndex.USER_DEFINED_MAX = DnsRequestOutboundIndex(0xFC - 1)


class DnsResponseOutboundIndex(_NamedIndex):
    ACCEPT: ClassVar["DnsResponseOutboundIndex"]
    REJECT: ClassVar["DnsResponseOutboundIndex"]
    LOGICAL_OR: ClassVar["DnsResponseOutboundIndex"]
    LOGICAL_AND: ClassVar["DnsResponseOutboundIndex"]
    LOGICAL_MASK: ClassVar["DnsResponseOutboundIndex"]
    USER_DEFINED_MAX: ClassVar["DnsResponseOutboundIndex"]

    _NAMES = {
        0xFC: "accept",
        0xFD: "reject",
        0xFE: "<OR>",
        0xFF: "<AND>",
    }

    def is_reserved(self) -> bool:
        return int(self) in self._NAMES


DnsResponseOutboundIndex.ACCEPT = DnsResponseOutboundIndex(0xFC)
DnsResponseOutboundIndex.REJECT = DnsResponseOutboundIndex(0xFD)
DnsResponseOutboundIndex.LOGICAL_OR = DnsResponseOutboundIndex(0xFE)
DnsResponseOutboundIndex.LOGICAL_AND = DnsResponseOutboundIndex(0xFF)
DnsResponseOutboundIndex.LOGICAL_MASK = DnsResponseOutboundIndex(0xFE)
DnsResponseOutboundIndex.USER_DEFINED_MAX = DnsResponseOutboundIndex(0xFC - 1)


def check_max_match_set_len(value: Union[str, int, None]) -> int:
    """Return the match-set length given by ``value`` (default if empty).

    Raises ValueError when it is not an integer or not a multiple of 32.
    """
    if value is None or value == "":
        length = _DEFAULT_MAX_MATCH_SET_LEN
    else:
        length = int(value)
    if length % 32 != 0:
        raise ValueError(f"MaxMatchSetLen should be a multiple of 32: {length}")
    return length


MAX_MATCH_SET_LEN = check_max_match_set_len(None)