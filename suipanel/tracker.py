"""Traffic counters and tracking of live connections."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass

from .models import Stats


class Counter:
    """Thread-safe pair of read and write byte counts."""

    def __init__(self):
        self._lock = threading.Lock()
        self._read = 0
        self._write = 0

    def add_read(self, n):
        with self._lock:
            self._read += n

    def add_write(self, n):
        with self._lock:
            self._write += n

    def swap(self):
        """Return ``(read, write)`` and reset both to zero."""
        with self._lock:
            values = (self._read, self._write)
            self._read = 0
            self._write = 0
        return values


class CountedConnection:
    """A socket-like object that adds its traffic to counters."""

    def __init__(self, conn, counters):
        self._conn = conn
        self._counters = list(counters)

    @property
    def upstream(self):
        return self._conn

    def recv(self, bufsize):
        data = self._conn.recv(bufsize)
        for counter in self._counters:
            counter.add_read(len(data))
        return data

    def send(self, data):
        sent = self._conn.send(data)
        for counter in self._counters:
            counter.add_write(sent)
        return sent

    def sendall(self, data):
        self._conn.sendall(data)
        for counter in self._counters:
            counter.add_write(len(data))

    def close(self):
        return self._conn.close()

    def __getattr__(self, name):
        return getattr(self._conn, name)


class StatsTracker:
    """Per inbound, outbound and user traffic counters."""

    _RESOURCES = ("inbound", "outbound", "user")

    def __init__(self):
        self._lock = threading.Lock()
        self._tables: dict[str, dict[str, Counter]] = {name: {} for name in self._RESOURCES}

    def get_counters(self, inbound, outbound, user):
        """Return the counters for the non-empty names, creating them."""
        counters = []
        with self._lock:
            for resource, name in zip(self._RESOURCES, (inbound, outbound, user)):
                if name:
                    counters.append(self._tables[resource].setdefault(name, Counter()))
        return counters

    def routed_connection(self, conn, inbound, outbound, user):
        """Wrap a connection so its traffic is counted."""
        return CountedConnection(conn, self.get_counters(inbound, outbound, user))

    def get_stats(self):
        """Return and reset the traffic gathered since the previous call."""
        now = int(time.time())
        result = []
        with self._lock:
            for resource in self._RESOURCES:
                for tag, counter in self._tables[resource].items():
                    up, down = counter.swap()
                    if down > 0 or up > 0:
                        result.append(Stats(date_time=now, resource=resource, tag=tag,
                                            direction=False, traffic=down))
                        result.append(Stats(date_time=now, resource=resource, tag=tag,
                                            direction=True, traffic=up))
        return result


@dataclass
class _ConnectionInfo:
    id: str
    conn: object
    inbound: str
    kind: str


class TrackedConnection:
    """A connection that leaves its tracker when closed."""

    def __init__(self, conn, tracker, conn_id):
        self._conn = conn
        self._tracker = tracker
        self.conn_id = conn_id

    @property
    def upstream(self):
        return self._conn

    def close(self):
        self._tracker._untrack(self.conn_id)
        return self._conn.close()

    def __getattr__(self, name):
        return getattr(self._conn, name)


class ConnTracker:
    """Live connections grouped by inbound, so they can be closed together."""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: dict[str, _ConnectionInfo] = {}

    def routed_connection(self, conn, inbound, kind="tcp"):
        """Track a connection of kind ``tcp`` or ``udp`` and return its wrapper."""
        if kind not in ("tcp", "udp"):
            raise ValueError(f"unknown connection kind: {kind}")
        conn_id = str(uuid.uuid4())
        with self._lock:
            self._connections[conn_id] = _ConnectionInfo(conn_id, conn, inbound, kind)
        return TrackedConnection(conn, self, conn_id)

    def close_by_inbound(self, inbound):
        """Close every connection of an inbound; return how many were closed."""
        with self._lock:
            matching = [info for info in self._connections.values() if info.inbound == inbound]
            for info in matching:
                info.conn.close()
                del self._connections[info.id]
        return len(matching)

    def _untrack(self, conn_id):
        with self._lock:
            self._connections.pop(conn_id, None)

    def __len__(self):
        with self._lock:
            return len(self._connections)