import json
import sqlite3

import pytest

from suipanel import config, migration
from suipanel.models import Client, Outbound, Setting, ensure_schema


@pytest.fixture
def conn():
    c = sqlite3.connect(":memory:")
    yield c
    c.close()


def test_migrate_client_schema_converts_text(conn):
    conn.execute('CREATE TABLE clients (id integer PRIMARY KEY, config text, inbounds text, links text)')
    conn.execute("INSERT INTO clients VALUES (1, ?, ?, ?)", ('{"x": 1}', "a,b", "bad"))
    migration.migrate_client_schema(conn)
    cfg, inb, links = conn.execute("SELECT config, inbounds, links FROM clients").fetchone()
    assert json.loads(cfg) == {"x": 1}
    assert json.loads(inb) == ["a", "b"]
    assert json.loads(links) == []


def test_delete_old_web_secret(conn):
    ensure_schema(conn, Setting)
    conn.execute("INSERT INTO settings (key, value) VALUES ('webSecret', 'x'), ('webPort', '1')")
    migration.delete_old_web_secret(conn)
    keys = [r[0] for r in conn.execute("SELECT key FROM settings")]
    assert keys == ["webPort"]


def test_migrate_dns_config_cases():
    cfg = {"dns": {"servers": [
        {"address": "local"},
        {"address": "tls://1.1.1.1:853", "strategy": "ipv4_only", "address_resolver": "r"},
        {"address": "8.8.8.8"},
        {"address": "rcode://refused"},
        {"address": "dhcp://auto"},
    ]}}
    servers = migration.migrate_dns_config(cfg)["dns"]["servers"]
    assert servers[0] == {"type": "local"}
    assert servers[1] == {"type": "tls", "server": "1.1.1.1:853", "server_port": 853, "domain_resolver": "r"}
    assert servers[2] == {"type": "udp", "server": "8.8.8.8"}
    assert servers[3] == {"type": "predefined", "responses": [{"rcode": "REFUSED"}]}
    assert servers[4] == {"type": "dhcp"}


def test_migrate_dns_config_without_dns():
    assert migration.migrate_dns_config({"log": {}}) is None


def test_migrate_dns_missing_setting_raises(conn):
    ensure_schema(conn, Setting)
    with pytest.raises(LookupError):
        migration.migrate_dns(conn)


def test_remove_outbound_strategy_and_anytls(conn):
    ensure_schema(conn, Outbound, Client)
    conn.execute("INSERT INTO outbounds (type, tag, options) VALUES ('direct', 'd', ?)",
                 ('{"domain_strategy": "x", "a": 1}',))
    conn.execute("INSERT INTO clients (name, config) VALUES ('c', ?)", ('{"trojan": {"password": "k"}}',))
    migration.remove_outbound_strategy(conn)
    migration.anytls_user_config(conn)
    assert json.loads(conn.execute("SELECT options FROM outbounds").fetchone()[0]) == {"a": 1}
    cfg = json.loads(conn.execute("SELECT config FROM clients").fetchone()[0])
    assert cfg["anytls"] == cfg["trojan"]


def test_move_json_to_db(conn, tmp_path):
    ensure_schema(conn, Setting)
    conn.execute("CREATE TABLE tls (id integer PRIMARY KEY AUTOINCREMENT, name text, server blob, client blob, inbounds text)")
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "inbounds": [{"type": "vless", "tag": "in1", "listen_port": 443, "sniff": True}],
        "outbounds": [
            {"type": "direct", "tag": "direct", "override_address": "x"},
            {"type": "block", "tag": "blk"},
            {"type": "wireguard", "tag": "wg"},
        ],
        "route": {"rules": [{"outbound": "blk"}, {"outbound": "direct"}]},
        "experimental": {"v2ray_api": {}, "clash_api": {}, "cache_file": {}},
    }))
    migration.move_json_to_db(conn, str(path))
    tag, options = conn.execute("SELECT tag, options FROM inbounds").fetchone()
    assert tag == "in1"
    assert json.loads(options) == {"listen_port": 443}
    assert [r[0] for r in conn.execute("SELECT tag FROM outbounds")] == ["direct"]
    assert [r[0] for r in conn.execute("SELECT tag FROM endpoints")] == ["wg"]
    stored = json.loads(conn.execute("SELECT value FROM settings WHERE key='config'").fetchone()[0])
    assert [r["action"] for r in stored["route"]["rules"]] == ["reject", "route"]
    assert stored["experimental"] == {"cache_file": {}}


def test_move_json_to_db_missing_file_is_noop(conn, tmp_path):
    ensure_schema(conn, Setting)
    migration.move_json_to_db(conn, str(tmp_path / "none.json"))
    assert conn.execute("SELECT count(*) FROM settings").fetchone()[0] == 0


def test_migrate_db_missing(tmp_path):
    assert migration.migrate_db(str(tmp_path / "x.db")) is False


def test_migrate_db_from_1_2(tmp_path):
    path = str(tmp_path / "s.db")
    c = sqlite3.connect(path)
    ensure_schema(c, Setting, Outbound, Client)
    c.execute("INSERT INTO settings (key, value) VALUES ('version', '1.2.5'), ('config', '{}')")
    c.commit()
    c.close()
    assert migration.migrate_db(path) is True
    c = sqlite3.connect(path)
    version = c.execute("SELECT value FROM settings WHERE key='version'").fetchone()[0]
    c.close()
    assert version == config.get_version()
    assert migration.migrate_db(path) is False