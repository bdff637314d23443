"""Stored records and their JSON forms."""

import json
import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, NamedTuple, Optional


class _Column(NamedTuple):
    name: str
    type: str
    unique: bool = False


_ID = _Column("id", "integer PRIMARY KEY AUTOINCREMENT")


def _load_object(data, what) -> dict:
    raw = json.loads(data) if isinstance(data, (str, bytes, bytearray)) else data
    if not isinstance(raw, Mapping):
        raise ValueError(f"{what} must be a JSON object")
    return dict(raw)


def _take_id(raw, key) -> int:
    value = raw.pop(key, None)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return 0


def _take_str(raw, key) -> str:
    value = raw.pop(key, None)
    return value if isinstance(value, str) else ""


def _merge_options(combined, options):
    if options is None:
        return
    if not isinstance(options, Mapping):
        raise ValueError("options must be a JSON object")
    combined.update(options)


def _compact(obj) -> str:
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


@dataclass
class Setting:
    id: int = 0
    key: str = ""
    value: str = ""

    TABLE: ClassVar[str] = "settings"
    COLUMNS: ClassVar[tuple] = (_ID, _Column("key", "text"), _Column("value", "text"))


@dataclass
class Tls:
    id: int = 0
    name: str = ""
    server: Any = None
    client: Any = None

    TABLE: ClassVar[str] = "tls"
    COLUMNS: ClassVar[tuple] = (
        _ID,
        _Column("name", "text"),
        _Column("server", "blob"),
        _Column("client", "blob"),
    )


@dataclass
class User:
    id: int = 0
    username: str = ""
    password: str = ""
    last_logins: str = ""

    TABLE: ClassVar[str] = "users"
    COLUMNS: ClassVar[tuple] = (
        _ID,
        _Column("username", "text"),
        _Column("password", "text"),
        _Column("last_logins", "text"),
    )


@dataclass
class Client:
    id: int = 0
    enable: bool = False
    name: str = ""
    config: Any = None
    inbounds: Any = None
    links: Any = None
    volume: int = 0
    expiry: int = 0
    down: int = 0
    up: int = 0
    desc: str = ""
    group: str = ""

    TABLE: ClassVar[str] = "clients"
    COLUMNS: ClassVar[tuple] = (
        _ID,
        _Column("enable", "numeric"),
        _Column("name", "text"),
        _Column("config", "blob"),
        _Column("inbounds", "blob"),
        _Column("links", "blob"),
        _Column("volume", "integer"),
        _Column("expiry", "integer"),
        _Column("down", "integer"),
        _Column("up", "integer"),
        _Column("desc", "text"),
        _Column("group", "text"),
    )


@dataclass
class Stats:
    id: int = 0
    date_time: int = 0
    resource: str = ""
    tag: str = ""
    direction: bool = False
    traffic: int = 0

    TABLE: ClassVar[str] = "stats"
    COLUMNS: ClassVar[tuple] = (
        _ID,
        _Column("date_time", "integer"),
        _Column("resource", "text"),
        _Column("tag", "text"),
        _Column("direction", "numeric"),
        _Column("traffic", "integer"),
    )


@dataclass
class Changes:
    id: int = 0
    date_time: int = 0
    actor: str = ""
    key: str = ""
    action: str = ""
    obj: Any = None

    TABLE: ClassVar[str] = "changes"
    COLUMNS: ClassVar[tuple] = (
        _ID,
        _Column("date_time", "integer"),
        _Column("actor", "text"),
        _Column("key", "text"),
        _Column("action", "text"),
        _Column("obj", "blob"),
    )


@dataclass
class Tokens:
    id: int = 0
    desc: str = ""
    token: str = ""
    expiry: int = 0
    user_id: int = 0
    user: Optional[User] = None

    TABLE: ClassVar[str] = "tokens"
    COLUMNS: ClassVar[tuple] = (
        _ID,
        _Column("desc", "text"),
        _Column("token", "text"),
        _Column("expiry", "integer"),
        _Column("user_id", "integer"),
    )


@dataclass
class Endpoint:
    id: int = 0
    type: str = ""
    tag: str = ""
    options: Optional[dict] = None
    ext: Any = None

    TABLE: ClassVar[str] = "endpoints"
    COLUMNS: ClassVar[tuple] = (
        _ID,
        _Column("type", "text"),
        _Column("tag", "text", unique=True),
        _Column("options", "blob"),
        _Column("ext", "blob"),
    )

    @classmethod
    def from_json(cls, data):
        """Build from a JSON object; unknown fields go to ``options``."""
        raw = _load_object(data, "endpoint")
        endpoint_id = _take_id(raw, "id")
        endpoint_type = _take_str(raw, "type")
        tag = raw.pop("tag", None)
        if not isinstance(tag, str):
            raise ValueError("endpoint tag must be a string")
        ext = raw.pop("ext", None)
        return cls(id=endpoint_id, type=endpoint_type, tag=tag, options=raw, ext=ext)

    def to_json(self) -> str:
        """Return the core configuration form; ``warp`` becomes ``wireguard``."""
        combined = {"type": "wireguard" if self.type == "warp" else self.type, "tag": self.tag}
        _merge_options(combined, self.options)
        return _compact(combined)


@dataclass
class Inbound:
    id: int = 0
    type: str = ""
    tag: str = ""
    tls_id: int = 0
    tls: Optional[Tls] = None
    addrs: Any = None
    out_json: Any = None
    options: Optional[dict] = None

    TABLE: ClassVar[str] = "inbounds"
    COLUMNS: ClassVar[tuple] = (
        _ID,
        _Column("type", "text"),
        _Column("tag", "text", unique=True),
        _Column("tls_id", "integer"),
        _Column("addrs", "blob"),
        _Column("out_json", "blob"),
        _Column("options", "blob"),
    )

    @classmethod
    def from_json(cls, data):
        """Build from a JSON object; ``tls`` and ``users`` are dropped."""
        raw = _load_object(data, "inbound")
        inbound_id = _take_id(raw, "id")
        inbound_type = _take_str(raw, "type")
        tag = _take_str(raw, "tag")
        tls_id = _take_id(raw, "tls_id")
        raw.pop("tls", None)
        raw.pop("users", None)
        addrs = raw.pop("addrs", None)
        out_json = raw.pop("out_json", None)
        return cls(
            id=inbound_id,
            type=inbound_type,
            tag=tag,
            tls_id=tls_id,
            addrs=addrs,
            out_json=out_json,
            options=raw,
        )

    def to_json(self) -> str:
        """Return the core configuration form with the TLS server settings."""
        combined = {"type": self.type, "tag": self.tag}
        if self.tls is not None:
            combined["tls"] = self.tls.server
        _merge_options(combined, self.options)
        return _compact(combined)

    def marshal_full(self) -> dict:
        """Return every stored field merged with the options."""
        combined = {
            "id": self.id,
            "type": self.type,
            "tag": self.tag,
            "tls_id": self.tls_id,
            "addrs": self.addrs,
            "out_json": self.out_json,
        }
        _merge_options(combined, self.options)
        return combined


@dataclass
class Outbound:
    id: int = 0
    type: str = ""
    tag: str = ""
    options: Optional[dict] = None

    TABLE: ClassVar[str] = "outbounds"
    COLUMNS: ClassVar[tuple] = (
        _ID,
        _Column("type", "text"),
        _Column("tag", "text", unique=True),
        _Column("options", "blob"),
    )

    @classmethod
    def from_json(cls, data):
        """Build from a JSON object; unknown fields go to ``options``."""
        raw = _load_object(data, "outbound")
        outbound_id = _take_id(raw, "id")
        outbound_type = _take_str(raw, "type")
        tag = raw.pop("tag", None)
        if not isinstance(tag, str):
            raise ValueError("outbound tag must be a string")
        return cls(id=outbound_id, type=outbound_type, tag=tag, options=raw)

    def to_json(self) -> str:
        """Return the core configuration form."""
        combined = {"type": self.type, "tag": self.tag}
        _merge_options(combined, self.options)
        return _compact(combined)


@dataclass
class Service:
    id: int = 0
    type: str = ""
    tag: str = ""
    tls_id: int = 0
    tls: Optional[Tls] = None
    options: Optional[dict] = None

    TABLE: ClassVar[str] = "services"
    COLUMNS: ClassVar[tuple] = (
        _ID,
        _Column("type", "text"),
        _Column("tag", "text", unique=True),
        _Column("tls_id", "integer"),
        _Column("options", "blob"),
    )

    @classmethod
    def from_json(cls, data):
        """Build from a JSON object; ``tls`` is dropped."""
        raw = _load_object(data, "service")
        service_id = _take_id(raw, "id")
        service_type = _take_str(raw, "type")
        tag = _take_str(raw, "tag")
        tls_id = _take_id(raw, "tls_id")
        raw.pop("tls", None)
        return cls(id=service_id, type=service_type, tag=tag, tls_id=tls_id, options=raw)

    def to_json(self) -> str:
        """Return the core configuration form with the TLS server settings."""
        combined = {"type": self.type, "tag": self.tag}
        if self.tls is not None:
            combined["tls"] = self.tls.server
        _merge_options(combined, self.options)
        return _compact(combined)

    def marshal_full(self) -> dict:
        """Return every stored field merged with the options."""
        combined = {"id": self.id, "type": self.type, "tag": self.tag, "tls_id": self.tls_id}
        _merge_options(combined, self.options)
        return combined


def _column_sql(column: _Column, with_constraints: bool) -> str:
    decl = f'"{column.name}" {column.type}'
    if with_constraints and column.unique:
        decl += " UNIQUE"
    return decl


def ensure_schema(conn: sqlite3.Connection, *args):
    """Create the tables of the given models and add any missing columns."""
    for model in args:
        table = getattr(model, "TABLE", None)
        columns = getattr(model, "COLUMNS", None)
        if table is None or columns is None:
            raise TypeError(f"{model!r} is not a stored model")
        definitions = ", ".join(_column_sql(column, True) for column in columns)
        conn.execute(f'CREATE TABLE IF NOT EXISTS "{table}" ({definitions})')
        existing = {row[1] for row in conn.execute(f'PRAGMA table_info("{table}")')}
        for column in columns:
            if column.name not in existing:
                conn.execute(f'ALTER TABLE "{table}" ADD COLUMN {_column_sql(column, False)}')