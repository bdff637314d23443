import contextlib
import io
import signal
import sqlite3
import time

import pytest

from suipanel import config
from suipanel.database import SQLITE_SIGNATURE, Database, is_sqlite_db, send_sighup


def make_db(tmp_path, name, marker):
    db = Database(str(tmp_path / name / "s-ui.db"))
    db.init()
    db.connect().execute(
        "INSERT INTO settings (key, value) VALUES (?, ?)", ("marker", marker)
    )
    return db


def read_marker(path):
    conn = sqlite3.connect(path)
    try:
        return conn.execute("SELECT value FROM settings WHERE key = 'marker'").fetchone()[0]
    finally:
        conn.close()


@contextlib.contextmanager
def capture_sighup():
    received = []
    previous = signal.signal(signal.SIGHUP, lambda signum, frame: received.append(signum))
    try:
        yield received
    finally:
        signal.signal(signal.SIGHUP, previous)


def wait_for(received):
    deadline = time.monotonic() + 3
    while not received and time.monotonic() < deadline:
        time.sleep(0.05)


def test_init_creates_default_outbound_and_admin(tmp_path):
    db = Database(str(tmp_path / "db" / "s-ui.db"))
    conn = db.init().connect()
    outbounds = conn.execute("SELECT type, tag, options FROM outbounds").fetchall()
    assert outbounds == [("direct", "direct", "{}")]
    users = [row[0] for row in conn.execute("SELECT username FROM users")]
    assert users == ["admin"]
    db.close()


def test_init_is_idempotent(tmp_path):
    db = Database(str(tmp_path / "s-ui.db"))
    db.init()
    db.init()
    conn = db.connect()
    assert conn.execute("SELECT COUNT(*) FROM outbounds").fetchone()[0] == 1
    assert conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 1
    db.close()


def test_init_creates_all_tables(tmp_path):
    with Database(str(tmp_path / "s-ui.db")) as db:
        names = {row[0] for row in db.connect().execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'")}
    expected = {"settings", "tls", "inbounds", "outbounds", "services", "endpoints",
                "users", "tokens", "stats", "clients", "changes"}
    assert expected <= names


def test_export_returns_sqlite_file(tmp_path):
    db = make_db(tmp_path, "a", "here")
    data = db.export("")
    assert data[:16] == b"SQLite format 3\x00"
    assert is_sqlite_db(io.BytesIO(data)) is True
    out = tmp_path / "copy.db"
    out.write_bytes(data)
    assert read_marker(str(out)) == "here"
    db.close()


def test_export_excludes_tables(tmp_path):
    db = make_db(tmp_path, "a", "x")
    conn = db.connect()
    conn.execute("INSERT INTO stats (resource, tag, traffic) VALUES ('user', 'u', 5)")
    conn.execute("INSERT INTO changes (actor, key) VALUES ('admin', 'clients')")
    out = tmp_path / "copy.db"
    out.write_bytes(db.export("stats"))
    copy = sqlite3.connect(str(out))
    try:
        assert copy.execute("SELECT COUNT(*) FROM stats").fetchone()[0] == 0
        assert copy.execute("SELECT actor, key FROM changes").fetchall() == [("admin", "clients")]
        tables = {row[0] for row in copy.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert "services" not in tables
    finally:
        copy.close()
    db.close()


def test_export_keeps_stats_by_default(tmp_path):
    db = make_db(tmp_path, "a", "x")
    db.connect().execute("INSERT INTO stats (resource, tag, traffic) VALUES ('user', 'u', 5)")
    out = tmp_path / "copy.db"
    out.write_bytes(db.export(""))
    copy = sqlite3.connect(str(out))
    try:
        assert copy.execute("SELECT resource, tag, traffic FROM stats").fetchall() == [("user", "u", 5)]
    finally:
        copy.close()
    db.close()


def test_is_sqlite_db_rejects_other_data():
    assert is_sqlite_db(io.BytesIO(b"not a database file at all")) is False
    assert is_sqlite_db(io.BytesIO(SQLITE_SIGNATURE + b"rest")) is True


def test_is_sqlite_db_raises_on_empty():
    with pytest.raises(EOFError):
        is_sqlite_db(io.BytesIO(b""))


def test_import_rejects_invalid_file(tmp_path):
    db = make_db(tmp_path, "a", "kept")
    with pytest.raises(ValueError, match="Invalid db file format"):
        db.import_db(io.BytesIO(b"plain text, not sqlite"))
    assert read_marker(db.path) == "kept"
    db.close()


def test_import_replaces_database_and_signals(tmp_path):
    source = make_db(tmp_path, "src", "from-source")
    source.connect().execute(
        "INSERT INTO settings (key, value) VALUES (?, ?)", ("version", config.get_version())
    )
    data = source.export("")
    source.close()
    target = make_db(tmp_path, "dst", "from-target")
    with capture_sighup() as received:
        thread = target.import_db(io.BytesIO(data))
        thread.join(timeout=10)
        wait_for(received)
    assert received == [signal.SIGHUP]
    assert read_marker(target.path) == "from-source"
    assert not (tmp_path / "dst" / "s-ui.db.temp").exists()
    assert not (tmp_path / "dst" / "s-ui.db.backup").exists()
    tables = {row[0] for row in target.connect().execute(
        "SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert "services" in tables
    target.close()


def test_import_restores_when_migration_fails(tmp_path, monkeypatch):
    monkeypatch.setenv("SUI_BIN_FOLDER", "no-such-bin-folder")
    source = make_db(tmp_path, "src", "from-source")
    data = source.export("")
    source.close()
    target = make_db(tmp_path, "dst", "from-target")
    with pytest.raises(RuntimeError, match="Error migrating db"):
        target.import_db(io.BytesIO(data))
    assert read_marker(target.path) == "from-target"
    assert not (tmp_path / "dst" / "s-ui.db.backup").exists()


def test_send_sighup_delivers_signal():
    with capture_sighup() as received:
        thread = send_sighup(0)
        thread.join(timeout=5)
        wait_for(received)
    assert thread.is_alive() is False
    assert received == [signal.SIGHUP]