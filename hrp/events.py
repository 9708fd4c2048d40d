from __future__ import annotations

import os
import sqlite3
import sys
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class EventRow:
    id: int
    ts: str
    level: str
    message: str
    service_name: str | None


class EventLog:
    """Append-only event log stored in SQLite.

    Every write opens its own short-lived connection, so the log can be used
    from request threads and the refresh worker at the same time.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def _resolve_path(self) -> str:
        p = os.path.abspath(self.db_path)

        # A bind-mounted path that did not exist shows up as a directory.
        if os.path.isdir(p):
            p = os.path.join(p, "hrp.db")

        parent = os.path.dirname(p)
        if parent and not os.path.exists(parent):
            os.makedirs(parent, exist_ok=True)
        return p

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._resolve_path(), check_same_thread=False, timeout=5.0)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create the events table if it does not exist."""
        with closing(self.connect()) as conn, conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts TEXT NOT NULL,
                  level TEXT NOT NULL,
                  service_name TEXT,
                  message TEXT NOT NULL
                )
                """
            )

    def log(self, level: str, message: str, service_name: str | None = None) -> bool:
        """Record one event. Returns False if the store could not be written.

        A broken or locked event store must not fail the request or refresh
        that is being logged, so the event goes to stderr instead.
        """
        try:
            with closing(self.connect()) as conn, conn:
                conn.execute(
                    "INSERT INTO events (ts, level, service_name, message) VALUES (?, ?, ?, ?)",
                    (utc_now(), level.upper(), service_name, message),
                )
        except (sqlite3.Error, OSError) as e:
            print(f"hrp: event log unavailable ({e}): {level.upper()} {message}", file=sys.stderr)
            return False
        return True

    def recent(self, limit: int = 50) -> list[EventRow]:
        limit = max(1, min(1000, int(limit)))
        with closing(self.connect()) as conn:
            rows = conn.execute(
                "SELECT id, ts, level, message, service_name FROM events ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [EventRow(**dict(r)) for r in rows]
