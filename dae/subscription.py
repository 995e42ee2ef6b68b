"""Fetching and decoding of node subscriptions."""

from __future__ import annotations

import json
import logging
import os
import posixpath
import stat
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import SplitResult, quote, unquote, urlencode, urlsplit

import requests

from .utils import (
    Base64DecodeError,
    base64_std_decode,
    base64_url_decode,
    ensure_file_in_sub_dir,
    get_tag_from_link_like_plaintext,
)

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 30.0
PERSIST_DIR = "persist.d"

_USER_AGENT = "dae/{} (like v2rayA/1.0 WebRequestHelper) (like v2rayN/1.0 WebRequestHelper)"
_USERINFO_SAFE = "$&+,;="
_FRAGMENT_SAFE = "$&+,/:;=?@!()*"

_Url = Union[str, SplitResult]


def _as_text(data: Union[bytes, str]) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def resolve_as_base64(data: Union[bytes, str]) -> List[str]:
    """Decode a base64 list of share links, one per line.

    Input that is not base64 is read as plain text. Lines without a
    ``scheme://body`` shape are dropped.
    """
    logger.debug("Try to resolve as base64")
    text = _as_text(data)
    try:
        raw = base64_std_decode(text)
    except Base64DecodeError:
        try:
            raw = base64_url_decode(text)
        except Base64DecodeError as exc:
            raw = exc.text
    nodes = []
    for line in raw.split("\n"):
        line = line.strip()
        if not line:
            continue
        protocol, sep, suffix = line.partition("://")
        if not sep or not protocol or not suffix:
            continue
        nodes.append(line)
    return nodes


class _Sip008Error(ValueError):
    pass


def _field(obj: Dict[str, Any], name: str, kind: type, default: Any) -> Any:
    value = obj.get(name)
    if value is None:
        return default
    if kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise _Sip008Error(name)
    return value


def _lowered(obj: Any) -> Dict[str, Any]:
    if not isinstance(obj, dict):
        raise _Sip008Error("object expected")
    return {str(k).lower(): v for k, v in obj.items()}


def _join_host_port(host: str, port: int) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _sip008_link(server: Dict[str, Any]) -> str:
    method = _field(server, "method", str, "")
    password = _field(server, "password", str, "")
    host = _field(server, "server", str, "")
    port = _field(server, "server_port", int, 0)
    plugin_opts = _field(server, "plugin_opts", str, "")
    remarks = _field(server, "remarks", str, "")
    _field(server, "id", str, "")
    _field(server, "plugin", str, "")
    userinfo = f"{quote(method, safe=_USERINFO_SAFE)}:{quote(password, safe=_USERINFO_SAFE)}"
    link = f"ss://{userinfo}@{_join_host_port(host, port)}?{urlencode({'plugin': plugin_opts})}"
    if remarks:
        link += "#" + quote(remarks, safe=_FRAGMENT_SAFE)
    return link


def resolve_as_sip008(data: Union[bytes, str]) -> List[str]:
    """Turn a SIP008 JSON document into ``ss://`` links; raise ValueError if it is not one."""
    logger.debug("Try to resolve as sip008")
    try:
        doc = _lowered(json.loads(data))
        version = _field(doc, "version", int, 0)
        servers = _field(doc, "servers", list, None)
        _field(doc, "bytes_used", int, 0)
        _field(doc, "bytes_remaining", int, 0)
        parsed = [_lowered(s) if s is not None else {} for s in servers or []]
        links = [_sip008_link(s) for s in parsed]
    except (ValueError, _Sip008Error):
        raise ValueError("failed to unmarshal json to sip008") from None
    if version != 1 or servers is None:
        raise ValueError("does not seems like a standard sip008 subscription")
    return links


def _read_subscription_file(config_dir: str, host: str, url_path: str) -> bytes:
    parts = [p for p in (config_dir, host, url_path) if p]
    path = posixpath.normpath("/".join(parts)) if parts else ""
    ensure_file_in_sub_dir(path, config_dir)
    info = os.stat(path)
    if stat.S_ISDIR(info.st_mode):
        raise IsADirectoryError(f"subscription file cannot be a directory: {path}")
    mode = stat.S_IMODE(info.st_mode)
    if mode & 0o037:
        raise PermissionError(
            f"permissions {mode & 0o777:04o} for '{path}' are too open; requires the file "
            "is NOT writable by the same group and NOT accessible by others; "
            "suggest 0640 or 0600"
        )
    with open(path, "rb") as fh:
        content = fh.read()
    if not content:
        raise EOFError(f"subscription file is empty: {path}")
    if content[:1] == b"@":
        # Instruction line; not supported yet, so it is skipped.
        _, _, content = content.partition(b"\n")
    return content.strip()


def _url_host(parts: SplitResult) -> str:
    return parts.netloc.rpartition("@")[2]


def resolve_file(url: _Url, config_dir: str) -> bytes:
    """Read a subscription file named by a ``file://`` URL relative to ``config_dir``."""
    parts = urlsplit(url) if isinstance(url, str) else url
    host = _url_host(parts)
    if host == "":
        raise ValueError("not support absolute path")
    return _read_subscription_file(config_dir, host, unquote(parts.path))


def _persist(config_dir: str, tag: str, body: bytes) -> None:
    directory = os.path.join(config_dir, PERSIST_DIR)
    os.makedirs(directory, mode=0o700, exist_ok=True)
    path = os.path.join(directory, tag + ".sub")
    fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(body)


def _decode_nodes(body: bytes) -> List[str]:
    try:
        return resolve_as_sip008(body)
    except ValueError as exc:
        logger.debug("%s", exc)
    return resolve_as_base64(body)


def resolve_subscription(
    config_dir: str,
    subscription: str,
    version: str = "unknown",
    session: Optional[requests.Session] = None,
) -> Tuple[str, List[str]]:
    """Fetch a subscription and return its tag and node links.

    ``file://`` reads a file under ``config_dir``; ``http-file://`` and
    ``https-file://`` fetch over HTTP(S), keep a copy in ``persist.d`` and
    fall back to it when the fetch fails.
    """
    tag, link = get_tag_from_link_like_plaintext(subscription)
    try:
        parts = urlsplit(link)
    except ValueError as exc:
        raise ValueError(f'failed to parse subscription "{link}": {exc}') from exc
    logger.debug("ResolveSubscription: %s", link)

    if parts.scheme == "file":
        return tag, _decode_nodes(resolve_file(parts, config_dir))

    persist = False
    if parts.scheme in ("http-file", "https-file"):
        if not tag:
            raise ValueError("tag is required for http-file/https-file subscription")
        persist = True
        link = link.replace("-file", "", 1)

    client = session if session is not None else requests.Session()
    try:
        response = client.get(
            link, headers={"User-Agent": _USER_AGENT.format(version)}, timeout=FETCH_TIMEOUT
        )
        body = response.content
    except requests.RequestException:
        if not persist:
            raise
        logger.warning("failed to fetch subscription, try to read from file")
        body = _read_subscription_file(config_dir, f"{PERSIST_DIR}/{tag}.sub", "")
        return tag, _decode_nodes(body)
    finally:
        if session is None:
            client.close()

    if persist:
        _persist(config_dir, tag, body)
    return tag, _decode_nodes(body)