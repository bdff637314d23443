"""SQLite storage of the panel: opening, initial data, export and import."""

from __future__ import annotations

import os
import shutil
import signal
import sqlite3
import sys
import tempfile
import threading
import time
from pathlib import Path

from . import config, logger, migration
from .models import (
    Changes,
    Client,
    Endpoint,
    Inbound,
    Outbound,
    Service,
    Setting,
    Stats,
    Tls,
    Tokens,
    User,
    ensure_schema,
)

SQLITE_SIGNATURE = b"SQLite format 3\x00"

_SCHEMA = (Setting, Tls, Inbound, Outbound, Service, Endpoint, User, Tokens, Stats, Client, Changes)
_BACKUP_SCHEMA = (Setting, Tls, Inbound, Outbound, Endpoint, User, Stats, Client, Changes)
_BACKUP_TABLES = (Setting, Tls, Inbound, Outbound, Endpoint, User, Client)


def _has_table(conn, table) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
    ).fetchone()
    return row is not None


def _copy_table(source, target, model):
    available = {row[1] for row in source.execute(f'PRAGMA table_info("{model.TABLE}")')}
    names = [column.name for column in model.COLUMNS if column.name in available]
    if not names:
        raise sqlite3.OperationalError(f"no such table: {model.TABLE}")
    columns = ", ".join(f'"{name}"' for name in names)
    rows = source.execute(f'SELECT {columns} FROM "{model.TABLE}"').fetchall()
    if rows:
        marks = ", ".join("?" for _ in names)
        target.executemany(f'INSERT INTO "{model.TABLE}" ({columns}) VALUES ({marks})', rows)


def _remove_if_exists(path, what):
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError as exc:
            raise RuntimeError(f"Error removing existing {what} db file: {exc}") from exc


def is_sqlite_db(stream) -> bool:
    """Return True when the stream starts with the SQLite file header.

    Raises EOFError when the stream is empty.
    """
    head = stream.read(len(SQLITE_SIGNATURE))
    if not head:
        raise EOFError("empty file")
    return bytes(head) == SQLITE_SIGNATURE


def send_sighup(delay=3.0) -> threading.Thread:
    """Ask the running process to restart after ``delay`` seconds."""
    pid = os.getpid()

    def _fire():
        time.sleep(delay)
        try:
            if sys.platform == "win32":
                os.kill(pid, signal.SIGTERM)
            else:
                os.kill(pid, signal.SIGHUP)
        except OSError as exc:
            logger.error("send signal SIGHUP failed:", exc)

    thread = threading.Thread(target=_fire, name="sighup", daemon=True)
    thread.start()
    return thread


class Database:
    """The panel database file and its open connection."""

    def __init__(self, path=None):
        self.path = path or config.get_db_path()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open the database if needed and return the connection."""
        if self._conn is None:
            folder = os.path.dirname(self.path)
            if folder:
                os.makedirs(folder, mode=0o1740, exist_ok=True)
            conn = sqlite3.connect(self.path, isolation_level=None, check_same_thread=False)
            if config.is_debug():
                conn.set_trace_callback(logger.debug)
            self._conn = conn
        return self._conn

    def init(self):
        """Open the database, bring the schema up to date and seed defaults."""
        conn = self.connect()
        if not _has_table(conn, Outbound.TABLE):
            ensure_schema(conn, Outbound)
            conn.execute(
                'INSERT INTO "outbounds" ("type", "tag", "options") VALUES (?, ?, ?)',
                ("direct", "direct", "{}"),
            )
        ensure_schema(conn, *_SCHEMA)
        (count,) = conn.execute('SELECT COUNT(*) FROM "users"').fetchone()
        if count == 0:
            conn.execute(
                'INSERT INTO "users" ("username", "password") VALUES (?, ?)',
                ("admin", "admin"),
            )
        return self

    def close(self):
        """Close the connection if it is open."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.init()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def export(self, exclude="") -> bytes:
        """Return a copy of the database as file bytes.

        ``exclude`` is a comma separated list that may name ``stats`` and
        ``changes``.
        """
        skipped = set((exclude or "").split(","))
        models = list(_BACKUP_TABLES)
        if "stats" not in skipped:
            models.append(Stats)
        if "changes" not in skipped:
            models.append(Changes)
        source = self.connect()
        stamp = time.strftime("%Y%m%d-%H%M%S")
        with tempfile.TemporaryDirectory() as folder:
            backup_path = os.path.join(folder, f"{config.get_name()}_{stamp}.db")
            backup = sqlite3.connect(backup_path)
            try:
                ensure_schema(backup, *_BACKUP_SCHEMA)
                for model in models:
                    _copy_table(source, backup, model)
                backup.commit()
                backup.execute("PRAGMA wal_checkpoint;")
            finally:
                backup.close()
            return Path(backup_path).read_bytes()

    def import_db(self, stream) -> threading.Thread:
        """Replace the database with the uploaded one and schedule a restart.

        The current file is restored when the new one cannot be migrated.
        Returns the thread that sends the restart signal.
        """
        try:
            valid = is_sqlite_db(stream)
        except (OSError, EOFError) as exc:
            raise ValueError(f"Error checking db file format: {exc}") from exc
        if not valid:
            raise ValueError("Invalid db file format")
        try:
            stream.seek(0)
        except OSError as exc:
            raise RuntimeError(f"Error resetting file reader: {exc}") from exc

        temp_path = f"{self.path}.temp"
        fallback_path = f"{self.path}.backup"
        _remove_if_exists(temp_path, "temporary")
        self.close()
        try:
            try:
                with open(temp_path, "wb") as temp_file:
                    shutil.copyfileobj(stream, temp_file)
            except OSError as exc:
                raise RuntimeError(f"Error saving db: {exc}") from exc

            try:
                check = sqlite3.connect(temp_path)
                try:
                    check.execute("PRAGMA schema_version").fetchone()
                finally:
                    check.close()
            except sqlite3.Error as exc:
                raise RuntimeError(f"Error checking db: {exc}") from exc

            _remove_if_exists(fallback_path, "fallback")
            try:
                os.replace(self.path, fallback_path)
            except OSError as exc:
                raise RuntimeError(f"Error backing up temporary db file: {exc}") from exc

            try:
                os.replace(temp_path, self.path)
            except OSError as exc:
                try:
                    os.replace(fallback_path, self.path)
                except OSError as err:
                    raise RuntimeError(
                        f"Error moving db file and restoring fallback: {err}"
                    ) from exc
                raise RuntimeError(f"Error moving db file: {exc}") from exc

            try:
                migration.migrate_db(self.path)
                self.init()
            except Exception as exc:
                self.close()
                try:
                    os.replace(fallback_path, self.path)
                except OSError as err:
                    raise RuntimeError(
                        f"Error migrating db and restoring fallback: {err}"
                    ) from exc
                raise RuntimeError(f"Error migrating db: {exc}") from exc
        finally:
            for leftover in (temp_path, fallback_path):
                try:
                    os.remove(leftover)
                except OSError:
                    pass

        return send_sighup(3.0)