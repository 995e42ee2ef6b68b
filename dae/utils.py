"""General helpers: parsing, encoding, hierarchical settings and small network utilities."""

from __future__ import annotations

import base64
import binascii
import dataclasses
import hashlib
import ipaddress
import logging
import os
import re
import struct
import typing
from collections.abc import Mapping, MutableMapping
from datetime import timedelta
from fractions import Fraction
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union
from urllib.parse import SplitResult, urlsplit

import dns.rdatatype
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

_Addr = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_HTTP_METHODS = frozenset(
    {
        "GET", "POST", "PUT", "PATCH", "DELETE", "COPY", "HEAD", "OPTIONS",
        "LINK", "UNLINK", "PURGE", "LOCK", "UNLOCK", "PROPFIND", "CONNECT", "TRACE",
    }
)

_TRUE_WORDS = frozenset({"true", "t", "1", "y", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "f", "0", "n", "no", "off"})

_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,  # micro sign
    "\u03bcs": 1_000,  # Greek mu
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_DURATION_PART = re.compile(r"([0-9]*)(?:\.([0-9]*))?([^0-9.]*)")
_HEX_BYTE = re.compile(r"[0-9a-fA-F]{2}")
_DECIMAL = re.compile(r"[+-]?[0-9]+")
_LIST_ANNOTATION = re.compile(r"(?:typing\.)?(?:list|List)\[\s*([\w.]+)\s*\]")


class OverlayHierarchicalKeyError(KeyError):
    """A hierarchical key passes through a value that is not a mapping."""

    def __init__(self, key: str = ""):
        super().__init__(f"overlay hierarchical key: {key}" if key else "overlay hierarchical key")
        self.key = key


class Base64DecodeError(ValueError):
    """Base64 input could not be decoded; ``text`` holds the trimmed input."""

    def __init__(self, text: str, reason: str):
        super().__init__(f"illegal base64 data: {reason}")
        self.text = text


@dataclasses.dataclass(frozen=True)
class UrlOrEmpty:
    """A URL, or an explicit empty value."""

    url: Optional[SplitResult] = None
    empty: bool = False


_NAMED_TYPES = {
    "bool": bool,
    "int": int,
    "str": str,
    "timedelta": timedelta,
    "datetime.timedelta": timedelta,
    "UrlOrEmpty": UrlOrEmpty,
}


def a_range_u32(n: int) -> List[int]:
    """Return ``[0, 1, ..., n-1]``."""
    if not 0 <= n <= 0xFFFFFFFF:
        raise ValueError(f"n out of uint32 range: {n}")
    return list(range(n))


def ipv6_bytes_to_uint32_array(ip: bytes) -> Tuple[int, int, int, int]:
    """Split 16 address bytes into four native-endian 32-bit words."""
    if len(ip) < 16:
        raise ValueError(f"IPv6 address needs 16 bytes, got {len(ip)}")
    return struct.unpack("=4I", bytes(ip[:16]))


def ipv6_bytes_to_uint8_array(ip: bytes) -> bytes:
    """Return exactly 16 bytes: ``ip`` truncated or zero-padded."""
    return bytes(ip[:16]).ljust(16, b"\0")


def ipv6_uint32_array_to_bytes(words: Sequence[int]) -> bytes:
    """Join four native-endian 32-bit words into 16 address bytes."""
    if len(words) != 4:
        raise ValueError(f"expected 4 words, got {len(words)}")
    return struct.pack("=4I", *words)


def deduplicate(items: Optional[Iterable[str]]) -> Optional[List[str]]:
    """Drop repeated items, keeping first occurrences in order."""
    if items is None:
        return None
    return list(dict.fromkeys(items))


def _decode_base64(s: str, urlsafe: bool) -> str:
    s = s.strip()
    padded = s + "=" * (-len(s) % 4)
    cleaned = padded.replace("\r", "").replace("\n", "")
    try:
        raw = cleaned.encode("ascii")
        if urlsafe:
            if b"+" in raw or b"/" in raw:
                raise binascii.Error("character outside the URL-safe alphabet")
            raw = raw.replace(b"-", b"+").replace(b"_", b"/")
        data = base64.b64decode(raw, validate=True)
    except (UnicodeEncodeError, binascii.Error) as exc:
        raise Base64DecodeError(s, str(exc)) from exc
    return data.decode("utf-8", errors="replace")


def base64_url_decode(s: str) -> str:
    """Decode URL-safe base64, adding any missing padding."""
    return _decode_base64(s, urlsafe=True)


def base64_std_decode(s: str) -> str:
    """Decode standard base64, adding any missing padding."""
    return _decode_base64(s, urlsafe=False)


def set_value(values: MutableMapping[str, List[str]], key: str, value: str) -> None:
    """Set query parameter ``key`` to ``value`` unless ``value`` is empty."""
    if value == "":
        return
    values[key] = [value]


def parse_mac(mac: str) -> bytes:
    """Parse ``aa:bb:cc:dd:ee:ff`` into six bytes."""
    fields = mac.split(":", 5)
    if len(fields) != 6:
        raise ValueError(f"invalid mac: {mac}")
    out = bytearray()
    for field in fields:
        if len(field) % 2 or not all(c in "0123456789abcdefABCDEF" for c in field):
            raise ValueError(f"parse mac {mac}: invalid hex byte {field!r}")
        if not _HEX_BYTE.fullmatch(field):
            raise ValueError(f"invalid mac: {mac}")
        out.append(int(field, 16))
    return bytes(out)


def parse_port_range(text: str) -> Tuple[int, int]:
    """Parse ``port`` or ``low-high`` into a pair of ports."""
    fields = text.split("-", 1)
    ports = []
    for field in fields:
        if field == "":
            raise ValueError(f"bad port range: {text}")
        if not _DECIMAL.fullmatch(field):
            raise ValueError(f"invalid port: {field!r}")
        port = int(field)
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"port {port} exceeds uint16 range")
        ports.append(port)
    if len(ports) == 1:
        return ports[0], ports[0]
    return ports[0], ports[1]


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``300ms``, ``1.5h`` or ``2h45m``."""
    invalid = ValueError(f'time: invalid duration "{text}"')
    s = text
    negative = False
    if s[:1] in ("+", "-") and s:
        negative = s[0] == "-"
        s = s[1:]
    if s == "0":
        return timedelta(0)
    if not s:
        raise invalid
    total = Fraction(0)
    while s:
        match = _DURATION_PART.match(s)
        whole, frac, unit = match.group(1), match.group(2), match.group(3)
        if not whole and not frac:
            raise invalid
        if not unit:
            raise ValueError(f'time: missing unit in duration "{text}"')
        if unit not in _DURATION_UNITS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{text}"')
        value = Fraction(int(whole or "0"))
        if frac:
            value += Fraction(int(frac), 10 ** len(frac))
        total += value * _DURATION_UNITS[unit]
        s = s[match.end():]
    nanos = int(total)
    if nanos > (-_INT64_MIN if negative else _INT64_MAX):
        raise invalid
    seconds, rest = divmod(nanos, 1_000_000_000)
    result = timedelta(seconds=seconds, microseconds=rest / 1000)
    return -result if negative else result


def set_value_hierarchical_map(mapping: MutableMapping[str, Any], key: str, value: Any) -> None:
    """Set ``value`` at a dotted ``key``, creating nested dicts as needed."""
    *path, last = key.split(".")
    current = mapping
    for part in path:
        if part in current:
            child = current[part]
            if not isinstance(child, MutableMapping):
                raise OverlayHierarchicalKeyError(key)
        else:
            child = current[part] = {}
        current = child
    current[last] = value


def _kind(value: Any) -> str:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return "struct"
    return type(value).__name__


def _type_name(target: Any) -> str:
    return getattr(target, "__name__", str(target))


def _resolve_annotation(annotation: Any) -> Any:
    """Turn a field annotation written as text into a type that fuzzy_decode knows."""
    if not isinstance(annotation, str):
        return annotation
    text = annotation.strip()
    if text in _NAMED_TYPES:
        return _NAMED_TYPES[text]
    match = _LIST_ANNOTATION.fullmatch(text)
    if match and match.group(1) in _NAMED_TYPES:
        return List[_NAMED_TYPES[match.group(1)]]
    return text


def _locate(obj: Any, key: str) -> Tuple[Any, dataclasses.Field, Any]:
    current = obj
    parent: Any = None
    found_field: Optional[dataclasses.Field] = None
    last = ""
    for part in key.split("."):
        match = None
        if dataclasses.is_dataclass(current) and not isinstance(current, type):
            match = next(
                (f for f in dataclasses.fields(current)
                 if f.metadata.get("mapstructure", f.name) == part),
                None,
            )
        if match is None:
            raise ValueError(
                f'unexpected key "{key}": "{last}" ({_kind(current)} type) has no member "{part}"'
            )
        parent, found_field = current, match
        current = getattr(current, match.name)
        last = part
    return parent, found_field, current


def get_value_hierarchical_struct(obj: Any, key: str) -> Any:
    """Return the value at a dotted ``key`` inside nested dataclasses.

    A field is addressed by its ``mapstructure`` metadata name, or by its
    attribute name when it has none.
    """
    return _locate(obj, key)[2]


def set_value_hierarchical_struct(obj: Any, key: str, value: str) -> None:
    """Decode ``value`` for the field at a dotted ``key`` and assign it."""
    parent, fld, _ = _locate(obj, key)
    target = _resolve_annotation(fld.type)
    try:
        decoded = fuzzy_decode(target, value)
    except ValueError:
        raise ValueError(
            f'type does not match: type "{_type_name(target)}" and value "{value}"'
        ) from None
    setattr(parent, fld.name, decoded)


def _parse_int64(text: str) -> int:
    bad = ValueError(f"invalid integer: {text!r}")
    if not text.isascii() or any(c.isspace() for c in text):
        raise bad
    s = text
    sign = 1
    if s and s[0] in "+-":
        sign = -1 if s[0] == "-" else 1
        s = s[1:]
    if not s:
        raise bad
    if s[:2].lower() in ("0x", "0b", "0o"):
        literal = s
    elif s[0] == "0" and len(s) > 1:
        literal = "0o" + s[1:]
    elif s.isdigit():
        literal = s
    else:
        raise bad
    try:
        number = sign * int(literal, 0)
    except ValueError:
        raise bad from None
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise ValueError(f"integer out of range: {text!r}")
    return number


def fuzzy_decode(target_type: Any, value: str) -> Any:
    """Convert the text ``value`` to ``target_type``; raise ValueError if it cannot."""
    if target_type is bool:
        lowered = value.lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if target_type is int:
        return _parse_int64(value)
    if target_type is str:
        return value
    if target_type is timedelta:
        return parse_duration(value)
    if target_type is UrlOrEmpty:
        if value == "":
            return UrlOrEmpty(url=None, empty=True)
        return UrlOrEmpty(url=urlsplit(value), empty=False)
    if typing.get_origin(target_type) is list:
        args = typing.get_args(target_type)
        if args == (str,):
            return value.split(",")
        if args == (timedelta,):
            return [parse_duration(value)]
    raise ValueError(f"unsupported type: {_type_name(target_type)}")


def ensure_file_in_sub_dir(file_path: str, directory: str) -> None:
    """Raise ValueError unless ``file_path`` lies within ``directory``."""
    file_dir = os.path.normpath(os.path.dirname(file_path) or ".")
    if not directory:
        raise ValueError(f"bad dir: {directory}")
    base = os.path.normpath(directory)
    if os.path.isabs(base) != os.path.isabs(file_dir):
        raise ValueError(f"Rel: can't make {file_dir} relative to {base}")
    rel = os.path.relpath(file_dir, base)
    if rel.startswith(".."):
        raise ValueError(f"file is out of scope: {rel}")


def map_keys(mapping: Mapping) -> List[str]:
    """Return the keys of a mapping whose keys are all strings."""
    if not isinstance(mapping, Mapping):
        raise TypeError("map_keys requires a mapping with string keys")
    keys = list(mapping.keys())
    if not all(isinstance(k, str) for k in keys):
        raise TypeError("map_keys requires a mapping with string keys")
    return keys


def get_tag_from_link_like_plaintext(link: str) -> Tuple[str, str]:
    """Split ``tag:link`` into ``(tag, link)``; ``scheme://...`` has no tag."""
    colon = link.find(":")
    if colon == -1 or link.startswith("://", colon):
        return "", link
    return link[:colon], link[colon + 1:]


def bool_to_string(flag: bool) -> str:
    return "1" if flag else "0"


def converge_addr(addr: _Addr) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
    """Turn an IPv4-mapped IPv6 address into plain IPv4."""
    address = ipaddress.ip_address(addr)
    if address.version == 6 and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def converge_addr_port(addr: _Addr, port: int):
    """Return ``(address, port)`` with the address converged."""
    return converge_addr(addr), port


def new_gcm(key: bytes) -> AESGCM:
    """Return an AES-GCM cipher for a 16, 24 or 32 byte key."""
    return AESGCM(key)


def addr_to_dns_type(addr: _Addr) -> dns.rdatatype.RdataType:
    """Return A for an IPv4 address, AAAA otherwise."""
    if ipaddress.ip_address(addr).version == 4:
        return dns.rdatatype.A
    return dns.rdatatype.AAAA


def _check_u16(value: int) -> None:
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"value out of uint16 range: {value}")


def htons(value: int) -> int:
    """Convert a 16-bit value from host to network byte order."""
    _check_u16(value)
    return struct.unpack("=H", struct.pack(">H", value))[0]


def ntohs(value: int) -> int:
    """Convert a 16-bit value from network to host byte order."""
    _check_u16(value)
    return struct.unpack(">H", struct.pack("=H", value))[0]


def is_valid_http_method(method: str) -> bool:
    return method in _HTTP_METHODS


def generate_cert_chain_hash(raw_certs: Iterable[bytes]) -> Optional[bytes]:
    """Fold SHA-256 hashes of certificates into one chain hash; None if empty."""
    chain: Optional[bytes] = None
    for cert in raw_certs:
        cert_hash = hashlib.sha256(cert).digest()
        chain = cert_hash if chain is None else hashlib.sha256(chain + cert_hash).digest()
    return chain


def report_memory(tag: str) -> Optional[str]:
    """Log the peak resident memory of this process at debug level.

    Returns the reported value, or None when debug logging is off.
    """
    if not logger.isEnabledFor(logging.DEBUG):
        return None
    status = Path(f"/proc/{os.getpid()}/status").read_text().strip()
    _, _, after = status.partition("VmHWM:")
    usage = after.partition("\n")[0].strip()
    logger.debug("%s: memory usage: %s", tag, usage)
    return usage