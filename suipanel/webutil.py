"""Helpers for HTTP handlers: JSON replies, client addresses and host checks."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from . import logger


@dataclass
class Msg:
    """A JSON reply of the panel API."""

    success: bool = False
    msg: str = ""
    obj: Any = None

    def to_dict(self) -> dict:
        return {"success": self.success, "msg": self.msg, "obj": self.obj}


def json_msg_obj(msg, obj, err) -> Msg:
    """Build a reply; an error makes it unsuccessful and is appended to ``msg``."""
    if err is None:
        return Msg(success=True, msg=msg or "", obj=obj)
    logger.warning("failed :", err)
    return Msg(success=False, msg=f"{msg}: {err}", obj=obj)


def json_msg(msg, err) -> Msg:
    """Build a reply that carries only a message."""
    return json_msg_obj(msg, None, err)


def json_obj(obj, err) -> Msg:
    """Build a reply that carries an object."""
    return json_msg_obj("", obj, err)


def pure_json_msg(success, msg) -> Msg:
    """Build a reply with the given outcome and message."""
    return Msg(success=bool(success), msg=msg)


def _header(headers, name) -> str:
    if not isinstance(headers, Mapping):
        return ""
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted:
            return value or ""
    return ""


def _split_host_port(hostport: str):
    """Split ``host:port`` the strict way; raise ValueError when malformed."""
    colon = hostport.rfind(":")
    if colon < 0:
        raise ValueError(f"missing port in address {hostport}")
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {hostport}")
        if end + 1 == len(hostport):
            raise ValueError(f"missing port in address {hostport}")
        if end + 1 != colon:
            if hostport[end + 1] == ":":
                raise ValueError(f"too many colons in address {hostport}")
            raise ValueError(f"missing port in address {hostport}")
        host = hostport[1:end]
        if "[" in hostport[1:end] or "]" in hostport[end + 1:]:
            raise ValueError(f"unexpected bracket in address {hostport}")
    else:
        host = hostport[:colon]
        if ":" in host:
            raise ValueError(f"too many colons in address {hostport}")
        if "[" in hostport or "]" in hostport:
            raise ValueError(f"unexpected bracket in address {hostport}")
    return host, hostport[colon + 1:]


def _host_or_empty(hostport: str) -> str:
    try:
        return _split_host_port(hostport)[0]
    except ValueError:
        return ""


def get_remote_ip(headers, remote_addr) -> str:
    """Return the client address, preferring the first ``X-Forwarded-For`` entry."""
    forwarded = _header(headers, "X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0]
    return _host_or_empty(remote_addr or "")


def get_hostname(host) -> str:
    """Return the request host without its port; IPv6 hosts stay bracketed."""
    if ":" in host:
        host = _host_or_empty(host)
        if ":" in host:
            host = f"[{host}]"
    return host


def domain_allowed(host, domain) -> bool:
    """Return True when the request host, without its port, is ``domain``."""
    if ":" in host:
        host = _host_or_empty(host)
    return host == domain