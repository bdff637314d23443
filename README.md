# suipanel

Building blocks for a proxy management panel. The panel keeps its state in a
single SQLite file; this package holds the data models, the storage layer and
its upgrades, traffic and connection tracking, and small helpers for HTTP
handlers. It uses only the Python 3.10+ standard library.

## Modules

### `suipanel.config`

Runtime settings read from the environment.

- `get_name()` and `get_version()` return the panel name and version.
- `is_debug()` is true when `SUI_DEBUG` is exactly `true`.
- `get_log_level()` returns a `LogLevel` (`debug`, `info`, `warn`, `error`).
  Debug mode forces `debug`; otherwise `SUI_LOG_LEVEL` is used, defaulting to
  `info`. An unknown level raises `ValueError`.
- `get_db_folder_path()` returns `SUI_DB_FOLDER`, or a `db` folder next to the
  running program. `get_db_path()` returns `<folder>/<name>.db`.

### `suipanel.logger`

- `init_logger(level)` configures the application logger, sending to syslog
  when it is reachable and to standard error otherwise. Unknown levels raise
  `ValueError`.
- `debug`, `info`, `warning` and `error` log their arguments and also record
  them in an in-memory buffer.
- `get_logs(count, level)` reads that buffer back, newest first, keeping lines
  at or above `level` (unknown level names mean `error`). Collection stops once
  more than `count` lines were gathered, so up to `count + 1` lines return.
- `LogBuffer(capacity)` is the bounded, thread-safe buffer itself, with
  `add(level, message)` and `get_logs(count, level)`; once full, the oldest
  lines are dropped.

### `suipanel.models`

Dataclasses for the stored records: `Setting`, `Tls`, `User`, `Client`,
`Stats`, `Changes` and `Tokens`, and the configuration objects `Inbound`,
`Outbound`, `Endpoint` and `Service`.

- `from_json(data)` (a class method, taking a JSON string, bytes or a mapping)
  lifts out the fixed fields and keeps every other key in `options`.
  `Inbound` drops `tls` and `users`; `Service` drops `tls`; `Outbound` and
  `Endpoint` require a string `tag` and raise `ValueError` without one.
- `to_json()` returns the compact core configuration form: `type`, `tag`, the
  TLS server settings when a `tls` object is attached (inbounds and services),
  and the options. An endpoint of type `warp` is written as `wireguard`.
- `Inbound.marshal_full()` and `Service.marshal_full()` return every stored
  field merged with the options, as a dict.
- `ensure_schema(conn, *models)` creates the tables of the given models in a
  `sqlite3` connection and adds any missing columns.

### `suipanel.migration`

Upgrades a database written by an older release.

- `migrate_db(path=None)` opens the database (by default `get_db_path()`),
  compares its stored `version` setting with the package version and, inside
  one transaction, runs the 1.1, 1.2 and 1.3 steps that are needed, then stores
  the new version. It returns `True` when migrations ran and `False` when the
  file is missing or already current. A failing step rolls back and raises
  `RuntimeError`.
- The steps are callable on their own: `to_1_1(conn)`, `to_1_2(conn,
  config_path)`, `to_1_3(conn)`, and their parts (`migrate_client_schema`,
  `delete_old_web_secret`, `changes_obj`, `move_json_to_db`, `migrate_tls`,
  `drop_inbound_data`, `migrate_clients`, `migrate_changes`, `migrate_dns`,
  `remove_outbound_strategy`, `anytls_user_config`).
- The 1.2 step moves an old JSON core configuration into the database. When
  run from `migrate_db`, that file is looked for at
  `<program folder>/<SUI_BIN_FOLDER or bin>/config.json`.
- `migrate_dns_config(config)` rewrites `address` style DNS servers into typed
  server entries and returns the configuration, or `None` when it has no `dns`
  object.

### `suipanel.database`

- `Database(path=None)` wraps the database file (by default `get_db_path()`).
  `connect()` opens it, `init()` brings the schema up to date, creating a
  default `direct` outbound when the outbounds table is new and an initial
  `admin` user when there are no users, and `close()` closes it. Used as a
  context manager it calls `init()` on entry and `close()` on exit.
- `export(exclude="")` returns a standalone copy of the database as bytes;
  `exclude` is a comma separated list that may name `stats` and `changes`.
- `import_db(stream)` checks that the upload is a SQLite file, swaps it in,
  migrates and initialises it, and restores the previous file if that fails.
  On success it schedules a `SIGHUP` to the current process after three seconds
  and returns that thread.
- `is_sqlite_db(stream)` checks the SQLite header (`EOFError` on an empty
  stream); `send_sighup(delay)` sends the restart signal from a background
  thread.

### `suipanel.tracker`

- `StatsTracker` counts bytes per inbound, outbound and user.
  `routed_connection(conn, inbound, outbound, user)` wraps a socket-like object
  in a `CountedConnection` whose `recv` and `send` add to the counters of the
  non-empty names. `get_stats()` returns `Stats` records (one download and one
  upload record for each name with traffic) and resets the counters.
- `Counter` is a thread-safe read/write pair with `add_read`, `add_write` and
  `swap()`.
- `ConnTracker` keeps live connections by inbound.
  `routed_connection(conn, inbound, kind="tcp")` returns a `TrackedConnection`
  that leaves the tracker when closed; `close_by_inbound(inbound)` closes every
  connection of an inbound and returns how many were closed. `len()` gives the
  number tracked.

### `suipanel.network`

- `AutoHttpsListener(listener)` wraps a listening socket; `accept()` returns
  `(AutoHttpsConnection, address)`.
- `AutoHttpsConnection` inspects the first bytes received. A plain HTTP request
  is answered with a `307` redirect to the `https://` address and the
  connection is closed (its `recv` then raises `ConnectionAbortedError`); any
  other data is passed through unchanged.
- `build_redirect(request_bytes)` builds that reply, or returns `None` when the
  bytes are not a complete HTTP request head.

### `suipanel.webutil`

- `Msg` is the reply envelope (`success`, `msg`, `obj`) with `to_dict()`.
  `json_msg_obj(msg, obj, err)` builds one; with an error it is unsuccessful
  and its message is `"<msg>: <err>"`. `json_msg`, `json_obj` and
  `pure_json_msg` are shortcuts.
- `get_remote_ip(headers, remote_addr)` prefers the first `X-Forwarded-For`
  entry, otherwise the host part of `remote_addr`.
- `get_hostname(host)` strips the port; IPv6 hosts stay bracketed.
- `domain_allowed(host, domain)` is true when the host without its port equals
  `domain`.

### `suipanel.tokens`

- `TokenStore(tokens=None)` holds `TokenInMemory` entries (`token`, `expiry`,
  `username`). `load(data)` replaces them from a JSON array; on invalid data
  the store is emptied and `ValueError` is raised.
- `find_username(token, now=None)` drops tokens whose positive expiry is in
  the past and returns the owner of `token`, or an empty string.

## Examples

Round-tripping an outbound:

```python
from suipanel.models import Outbound

outbound = Outbound.from_json('{"type": "direct", "tag": "direct"}')
print(outbound.tag, outbound.to_json())
```

Counting traffic:

```python
import socket
from suipanel.tracker import StatsTracker

tracker = StatsTracker()
left, right = socket.socketpair()
conn = tracker.routed_connection(left, "vless-in", "direct", "alice")
conn.send(b"hello")
for record in tracker.get_stats():
    print(record.resource, record.tag, record.direction, record.traffic)
```

Checking an API token:

```python
import time
from suipanel.tokens import TokenStore

store = TokenStore()
store.load('[{"token": "token", "expiry": 0, "username": "admin"}]')
print(store.find_username("token", int(time.time())))
```

Opening the store and upgrading an old database:

```python
from suipanel.config import get_db_path
from suipanel.database import Database
from suipanel.migration import migrate_db

migrate_db(get_db_path())
with Database() as db:
    backup = db.export("stats,changes")
```

## What this package does not do

It provides no web server, no API routes or login sessions, no subscription
server, no scheduled jobs and no command-line tool. It does not run a proxy
core: the trackers and the HTTPS redirect wrapper work on connections handed
to them, and the models only produce the JSON a core would read. Services for
managing settings, users, clients and inbounds on top of the database are not
included.