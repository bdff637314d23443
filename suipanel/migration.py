"""Upgrades of older panel databases to the current schema."""

from __future__ import annotations

import json
import os
import sqlite3
import sys
from urllib.parse import urlsplit

from . import config
from .models import Endpoint, Inbound, Outbound, ensure_schema

_TLS_CLIENT_KEYS = {"insecure", "disable_sni", "utls", "ech", "reality"}
_DEPRECATED_INBOUND_KEYS = ("sniff", "sniff_override_destination", "sniff_timeout", "domain_strategy")
_URL_DNS_SCHEMES = {"udp", "tcp", "tls", "quic", "https", "h3"}


def _indent(obj) -> str:
    return json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False)


def _parse(raw):
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    return json.loads(raw)


def _columns(conn, table) -> dict:
    return {row[1]: row[2] for row in conn.execute(f'PRAGMA table_info("{table}")')}


def _has_table(conn, table) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
    ).fetchone()
    return row is not None


def _insert(conn, table, values: dict) -> int:
    values = {k: v for k, v in values.items() if not (k == "id" and not v)}
    names = ", ".join(f'"{k}"' for k in values)
    marks = ", ".join("?" for _ in values)
    cursor = conn.execute(f'INSERT INTO "{table}" ({names}) VALUES ({marks})', tuple(values.values()))
    return cursor.lastrowid


# --- 1.1 -------------------------------------------------------------------


def migrate_client_schema(conn):
    """Convert text columns of clients into JSON values."""
    for name, column_type in _columns(conn, "clients").items():
        if name not in ("config", "inbounds", "links") or column_type.lower() != "text":
            continue
        print(f"Column {name} has type TEXT")
        rows = conn.execute(f'SELECT id, "{name}" FROM clients').fetchall()
        for row_id, data in rows:
            text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else (data or "")
            if name == "inbounds":
                new_value = text.split(",")
            else:
                try:
                    new_value = json.loads(text)
                except ValueError:
                    new_value = None
                expected = dict if name == "config" else list
                if not isinstance(new_value, expected):
                    new_value = expected()
            conn.execute(f'UPDATE clients SET "{name}" = ? WHERE id = ?', (_indent(new_value), row_id))


def delete_old_web_secret(conn):
    """Remove the obsolete web secret setting."""
    conn.execute("DELETE FROM settings WHERE key = ?", ("webSecret",))


def changes_obj(conn):
    """Quote the object of changes made by the deplete job."""
    conn.execute(
        "UPDATE changes SET obj = CAST('\"' || CAST(obj AS TEXT) || '\"' AS BLOB) "
        "WHERE actor = ? and obj not like ?",
        ("DepleteJob", '"%"'),
    )


def to_1_1(conn):
    """Apply the 1.1 migration."""
    migrate_client_schema(conn)
    delete_old_web_secret(conn)
    changes_obj(conn)


# --- 1.2 -------------------------------------------------------------------


def _migrate_addrs(addrs):
    if not isinstance(addrs, list):
        return addrs
    for addr in addrs:
        if not isinstance(addr, dict) or not isinstance(addr.get("tls"), bool):
            continue
        new_tls = {"enabled": addr["tls"]}
        if isinstance(addr.get("insecure"), bool):
            new_tls["insecure"] = addr.pop("insecure")
        if isinstance(addr.get("server_name"), str):
            new_tls["server_name"] = addr.pop("server_name")
        addr["tls"] = new_tls
    return addrs


def _inbound_data(conn, tag):
    try:
        return conn.execute(
            "select id,addrs,out_json from inbound_data where tag = ?", (tag,)
        ).fetchone()
    except sqlite3.OperationalError:
        return None


def _store_inbound(conn, inbound: Inbound):
    _insert(conn, Inbound.TABLE, {
        "id": inbound.id,
        "type": inbound.type,
        "tag": inbound.tag,
        "tls_id": inbound.tls_id,
        "addrs": _indent(inbound.addrs),
        "out_json": _indent(inbound.out_json),
        "options": _indent(inbound.options),
    })


def _move_inbounds(conn, old_inbounds):
    conn.execute(f'DROP TABLE IF EXISTS "{Inbound.TABLE}"')
    ensure_schema(conn, Inbound)
    for inbound in old_inbounds:
        obj = dict(inbound) if isinstance(inbound, dict) else {}
        tag = obj.get("tag") if isinstance(obj.get("tag"), str) else ""
        if "tls" in obj:
            row = conn.execute(
                "SELECT id FROM tls WHERE inbounds like ?", (f'%"{tag}"%',)
            ).fetchone()
            tls_id = row[0] if row and row[0] else 0
            if tls_id > 0:
                obj["tls_id"] = tls_id
            else:
                server = _indent(obj["tls"])
                if len(server) > 5:
                    obj["tls_id"] = _insert(conn, "tls", {"name": tag, "server": server, "client": "{}"})
        data = _inbound_data(conn, tag)
        if data is not None and data[0]:
            obj["out_json"] = _parse(data[2])
            obj["addrs"] = _migrate_addrs(_parse(data[1]))
        else:
            obj["out_json"] = {}
            obj["addrs"] = []
        for key in _DEPRECATED_INBOUND_KEYS:
            obj.pop(key, None)
        _store_inbound(conn, Inbound.from_json(obj))


def _move_outbounds(conn, old_outbounds):
    block_tags, dns_tags = [], []
    for table in (Outbound.TABLE, Endpoint.TABLE):
        conn.execute(f'DROP TABLE IF EXISTS "{table}"')
    ensure_schema(conn, Outbound, Endpoint)
    for outbound in old_outbounds:
        out_type = outbound.get("type") if isinstance(outbound, dict) else None
        if out_type == "wireguard":
            endpoint = Endpoint.from_json(outbound)
            _insert(conn, Endpoint.TABLE, {
                "id": endpoint.id,
                "type": endpoint.type,
                "tag": endpoint.tag,
                "options": _indent(endpoint.options),
                "ext": _indent(endpoint.ext),
            })
            continue
        new_outbound = Outbound.from_json(outbound)
        if new_outbound.type == "direct":
            new_outbound.options.pop("override_address", None)
            new_outbound.options.pop("override_port", None)
        if new_outbound.type == "dns":
            dns_tags.append(new_outbound.tag)
        elif new_outbound.type == "block":
            block_tags.append(new_outbound.tag)
        else:
            _insert(conn, Outbound.TABLE, {
                "id": new_outbound.id,
                "type": new_outbound.type,
                "tag": new_outbound.tag,
                "options": _indent(new_outbound.options),
            })
    return block_tags, dns_tags


def _migrate_rules(route, block_tags, dns_tags):
    rules = route.get("rules")
    if not isinstance(rules, list):
        return
    has_dns = False
    new_rules = []
    for rule in rules:
        rule_obj = rule if isinstance(rule, dict) else {}
        outbound_tag = rule_obj.get("outbound") if isinstance(rule_obj.get("outbound"), str) else ""
        if outbound_tag in block_tags:
            rule_obj.pop("outbound", None)
            rule_obj["action"] = "reject"
        elif outbound_tag in dns_tags:
            has_dns = True
            rule_obj.pop("outbound", None)
            rule_obj["action"] = "hijack-dns"
        else:
            rule_obj["action"] = "route"
        new_rules.append(rule_obj)
    if has_dns:
        new_rules.append({"action": "sniff"})
    route["rules"] = new_rules


def move_json_to_db(conn, config_path):
    """Move an old JSON core configuration file into the database."""
    if not os.path.exists(config_path):
        return
    with open(config_path, encoding="utf-8") as handle:
        old_config = json.load(handle)
    if not isinstance(old_config, dict):
        raise ValueError("configuration must be a JSON object")

    old_inbounds = old_config.get("inbounds")
    if not isinstance(old_inbounds, list):
        raise ValueError("configuration has no inbounds list")
    _move_inbounds(conn, old_inbounds)
    del old_config["inbounds"]

    old_outbounds = old_config.get("outbounds")
    if not isinstance(old_outbounds, list):
        raise ValueError("configuration has no outbounds list")
    block_tags, dns_tags = _move_outbounds(conn, old_outbounds)
    del old_config["outbounds"]

    route = old_config.get("route")
    if isinstance(route, dict):
        _migrate_rules(route, block_tags, dns_tags)

    experimental = old_config.get("experimental")
    if not isinstance(experimental, dict):
        raise ValueError("configuration has no experimental object")
    experimental.pop("v2ray_api", None)
    experimental.pop("clash_api", None)

    _insert(conn, "settings", {"key": "config", "value": _indent(old_config)})


def migrate_tls(conn):
    """Drop the inbounds column of TLS and keep only client-side keys."""
    if "inbounds" not in _columns(conn, "tls"):
        return
    conn.execute('ALTER TABLE tls DROP COLUMN "inbounds"')
    for row_id, client in conn.execute("SELECT id, client FROM tls").fetchall():
        try:
            client_obj = _parse(client)
        except ValueError:
            continue
        if not isinstance(client_obj, dict):
            continue
        kept = {k: v for k, v in client_obj.items() if k in _TLS_CLIENT_KEYS}
        conn.execute("UPDATE tls SET client = ? WHERE id = ?", (_indent(kept), row_id))


def drop_inbound_data(conn):
    """Drop the obsolete inbound_data table."""
    conn.execute("DROP TABLE IF EXISTS inbound_data")


def migrate_clients(conn):
    """Replace inbound tags of clients by inbound ids."""
    for row_id, inbounds in conn.execute("SELECT id, inbounds FROM clients").fetchall():
        tags = _parse(inbounds)
        if tags is None:
            tags = []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise ValueError(f"client {row_id} has invalid inbounds")
        ids = []
        if tags:
            marks = ", ".join("?" for _ in tags)
            ids = [r[0] for r in conn.execute(f"SELECT id FROM inbounds WHERE tag in ({marks})", tags)]
        conn.execute(
            "UPDATE clients SET inbounds = ? WHERE id = ?",
            (json.dumps(ids, separators=(",", ":")), row_id),
        )


def migrate_changes(conn):
    """Drop the index column of changes."""
    if "index" in _columns(conn, "changes"):
        conn.execute('ALTER TABLE changes DROP COLUMN "index"')


def to_1_2(conn, config_path):
    """Apply the 1.2 migration."""
    move_json_to_db(conn, config_path)
    migrate_tls(conn)
    drop_inbound_data(conn)
    migrate_clients(conn)
    migrate_changes(conn)


# --- 1.3 -------------------------------------------------------------------


def _migrate_dns_server(server):
    addr = server.get("address")
    if not isinstance(addr, str) or not addr:
        return
    if addr in ("local", "fakeip"):
        del server["address"]
        server["type"] = addr
        return
    try:
        parsed = urlsplit(addr)
    except ValueError:
        return
    scheme = parsed.scheme
    if not scheme and ":" in addr.split("/", 1)[0]:
        return
    if scheme == "":
        server["type"] = "udp"
        server["server"] = addr
    elif scheme in _URL_DNS_SCHEMES:
        server["type"] = scheme
        server["server"] = parsed.netloc
    elif scheme == "dhcp":
        server["type"] = scheme
        if parsed.netloc not in ("auto", ""):
            server["interface"] = parsed.netloc
    elif scheme == "rcode":
        server["type"] = "predefined"
        server["responses"] = [{"rcode": parsed.netloc.upper()}]
    del server["address"]
    try:
        port = parsed.port
    except ValueError:
        port = None
    if port is not None:
        server["server_port"] = port
    resolver = server.get("address_resolver")
    if isinstance(resolver, str) and resolver:
        del server["address_resolver"]
        server["domain_resolver"] = resolver
    server.pop("strategy", None)


def migrate_dns_config(config):
    """Rewrite DNS servers from address form to typed form.

    Returns the changed configuration, or None when it has no DNS object.
    """
    dns = config.get("dns") if isinstance(config, dict) else None
    if not isinstance(dns, dict):
        return None
    servers = dns.get("servers")
    if isinstance(servers, list):
        for server in servers:
            if isinstance(server, dict):
                _migrate_dns_server(server)
    return config


def migrate_dns(conn):
    """Apply the DNS rewrite to the stored configuration."""
    row = conn.execute("SELECT value FROM settings WHERE key = ? LIMIT 1", ("config",)).fetchone()
    if row is None:
        raise LookupError("config setting not found")
    if not row[0]:
        return
    migrated = migrate_dns_config(json.loads(row[0]))
    if migrated is None:
        return
    conn.execute("UPDATE settings SET value = ? WHERE key = ?", (_indent(migrated), "config"))


def remove_outbound_strategy(conn):
    """Remove domain_strategy from outbound options."""
    for row_id, options in conn.execute("SELECT id, options FROM outbounds").fetchall():
        fields = _parse(options)
        if not isinstance(fields, dict):
            fields = {}
        fields.pop("domain_strategy", None)
        conn.execute("UPDATE outbounds SET options = ? WHERE id = ?", (_indent(fields), row_id))


def anytls_user_config(conn):
    """Give every client an anytls configuration copied from trojan."""
    for row_id, client_config in conn.execute("SELECT id, config FROM clients").fetchall():
        configs = _parse(client_config)
        if not isinstance(configs, dict):
            raise ValueError(f"client {row_id} has invalid config")
        if "anytls" in configs:
            continue
        configs["anytls"] = configs.get("trojan")
        conn.execute("UPDATE clients SET config = ? WHERE id = ?", (_indent(configs), row_id))


def to_1_3(conn):
    """Apply the 1.3 migration."""
    anytls_user_config(conn)
    migrate_dns(conn)
    remove_outbound_strategy(conn)


# --- driver ----------------------------------------------------------------


def _default_config_path() -> str:
    bin_folder = os.environ.get("SUI_BIN_FOLDER") or "bin"
    program = sys.argv[0] if sys.argv and sys.argv[0] else "."
    base = os.path.abspath(os.path.dirname(program))
    return f"{base}/{bin_folder}/config.json"


def migrate_db(path=None):
    """Migrate the database at ``path``; return True if migrations ran."""
    path = path or config.get_db_path()
    if not os.path.exists(path):
        print("Database not found")
        return False
    conn = sqlite3.connect(path, isolation_level=None)
    try:
        conn.execute("BEGIN")
        try:
            current = config.get_version()
            try:
                row = conn.execute(
                    "SELECT value FROM settings WHERE key = ?", ("version",)
                ).fetchone()
            except sqlite3.OperationalError:
                row = None
            db_version = row[0] if row and row[0] else ""
            print("Current version:", current, "\nDatabase version:", db_version)
            if current == db_version:
                print("Database is up to date, no need to migrate")
                conn.execute("COMMIT")
                return False
            print("Start migrating database...")
            if db_version == "":
                try:
                    to_1_1(conn)
                except Exception as exc:
                    raise RuntimeError(f"Migration to 1.1 failed: {exc}") from exc
                try:
                    to_1_2(conn, _default_config_path())
                except Exception as exc:
                    raise RuntimeError(f"Migration to 1.2 failed: {exc}") from exc
                db_version = "1.2"
            if db_version[:3] == "1.2":
                try:
                    to_1_3(conn)
                except Exception as exc:
                    raise RuntimeError(f"Migration to 1.3 failed: {exc}") from exc
            conn.execute("UPDATE settings SET value = ? WHERE key = ?", (current, "version"))
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
        print("Migration done!")
        return True
    finally:
        conn.close()