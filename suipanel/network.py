"""Listener wrapper that answers plain HTTP requests with a redirect to HTTPS."""

from __future__ import annotations

import re
import threading
from typing import Optional

_FIRST_READ_SIZE = 2048
_REQUEST_LINE = re.compile(r"^([!#$%&'*+.^_`|~0-9A-Za-z-]+) (\S+) (HTTP/\d+\.\d+)$")


def _parse_request(request_bytes: bytes):
    """Return ``(host, request_uri)`` of a complete HTTP request head, or None."""
    data = bytes(request_bytes)
    if b"\r\n\r\n" in data:
        head = data.split(b"\r\n\r\n", 1)[0]
    elif b"\n\n" in data:
        head = data.split(b"\n\n", 1)[0]
    else:
        return None
    lines = head.decode("latin-1").replace("\r\n", "\n").split("\n")
    match = _REQUEST_LINE.match(lines[0])
    if match is None:
        return None
    uri = match.group(2)
    host = ""
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if not sep or not name or name != name.strip():
            return None
        if name.lower() == "host" and not host:
            host = value.strip()
    lowered = uri.lower()
    for scheme in ("http://", "https://"):
        if lowered.startswith(scheme):
            rest = uri[len(scheme):]
            authority = rest.split("/", 1)[0].split("?", 1)[0]
            if authority:
                host = authority
            break
    return host, uri


def build_redirect(request_bytes) -> Optional[bytes]:
    """Return a 307 response pointing the request at HTTPS, or None if it is not HTTP."""
    parsed = _parse_request(request_bytes)
    if parsed is None:
        return None
    host, uri = parsed
    location = f"https://{host}{uri}"
    response = (
        "HTTP/1.1 307 Temporary Redirect\r\n"
        f"Location: {location}\r\n"
        "Content-Length: 0\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    return response.encode("latin-1")


class AutoHttpsConnection:
    """A socket-like connection whose first read checks for plain HTTP.

    A plain HTTP request is answered with a redirect and the connection is
    closed; any other first bytes are handed on unchanged.
    """

    def __init__(self, conn):
        self._conn = conn
        self._lock = threading.Lock()
        self._checked = False
        self._redirected = False
        self._pending = b""

    @property
    def upstream(self):
        return self._conn

    def _check_first(self):
        data = self._conn.recv(_FIRST_READ_SIZE)
        response = build_redirect(data) if data else None
        if response is None:
            self._pending = data
            return
        self._conn.sendall(response)
        self.close()
        self._redirected = True

    def recv(self, bufsize):
        """Receive up to ``bufsize`` bytes.

        Raises ConnectionAbortedError when the peer spoke plain HTTP and was
        redirected.
        """
        with self._lock:
            if not self._checked:
                self._checked = True
                self._check_first()
            if self._redirected:
                raise ConnectionAbortedError("plain HTTP request redirected to HTTPS")
            if self._pending:
                chunk, self._pending = self._pending[:bufsize], self._pending[bufsize:]
                return chunk
        return self._conn.recv(bufsize)

    def close(self):
        return self._conn.close()

    def __getattr__(self, name):
        return getattr(self._conn, name)


class AutoHttpsListener:
    """A listener whose accepted connections redirect plain HTTP to HTTPS."""

    def __init__(self, listener):
        self._listener = listener

    @property
    def upstream(self):
        return self._listener

    def accept(self):
        """Accept a connection and return ``(connection, address)``."""
        conn, address = self._listener.accept()
        return AutoHttpsConnection(conn), address

    def close(self):
        return self._listener.close()

    def __getattr__(self, name):
        return getattr(self._listener, name)