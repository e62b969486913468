from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from .models import ReconciliationOutcome
from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _db_path() -> str:
    return os.path.abspath(settings.journal_path)


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_db_path())
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db() -> None:
    """Create the journal file and its tables if they do not exist."""
    os.makedirs(os.path.dirname(_db_path()), exist_ok=True)
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              mode TEXT NOT NULL, -- provision|harden|backup
              status TEXT NOT NULL, -- running|succeeded|failed
              stage TEXT,
              message TEXT,
              started_at TEXT NOT NULL,
              finished_at TEXT
            );

            CREATE TABLE IF NOT EXISTS outcomes (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              run_id INTEGER NOT NULL,
              kind TEXT NOT NULL,
              name TEXT NOT NULL,
              status TEXT NOT NULL, -- created|started-existing|already-satisfied|failed
              observed TEXT,
              reason TEXT,
              ts TEXT NOT NULL,
              FOREIGN KEY(run_id) REFERENCES runs(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              run_id INTEGER,
              resource TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_outcomes_run_id ON outcomes(run_id);
            """
        )


def log_event(level: str, message: str, run_id: int | None = None, resource: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, run_id, resource, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), run_id, resource, message),
        )


@dataclass(frozen=True)
class RunRow:
    id: int
    mode: str
    status: str
    stage: str | None
    message: str | None
    started_at: str
    finished_at: str | None


@dataclass(frozen=True)
class OutcomeRow:
    id: int
    run_id: int
    kind: str
    name: str
    status: str
    observed: str | None
    reason: str | None
    ts: str


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    return [cls(**dict(r)) for r in rows]


def start_run(mode: str) -> int:
    with connect() as conn:
        cur = conn.execute(
            "INSERT INTO runs (mode, status, started_at) VALUES (?, 'running', ?)",
            (mode, utc_now()),
        )
        return int(cur.lastrowid)


def finish_run(run_id: int, status: str, stage: str | None = None, message: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "UPDATE runs SET status=?, stage=?, message=?, finished_at=? WHERE id=?",
            (status, stage, message, utc_now(), run_id),
        )


def record_outcome(run_id: int, outcome: ReconciliationOutcome) -> None:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO outcomes (run_id, kind, name, status, observed, reason, ts)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run_id,
                outcome.kind.value,
                outcome.name,
                outcome.status.value,
                outcome.observed.value if outcome.observed else None,
                outcome.reason,
                utc_now(),
            ),
        )


def list_outcomes(run_id: int) -> list[OutcomeRow]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM outcomes WHERE run_id=? ORDER BY id", (run_id,)).fetchall()
        return _rows_to_dataclass(rows, OutcomeRow)


def latest_runs(limit: int = 10) -> list[RunRow]:
    return _rows_to_dataclass(_read_latest("runs", limit), RunRow)


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    return [dict(r) for r in _read_latest("events", limit)]


def _read_latest(table: str, limit: int) -> list[sqlite3.Row]:
    """Newest rows first; empty when no run has written the journal yet.

    Never creates the journal file or its directory.
    """
    if not os.path.exists(_db_path()):
        return []
    with connect() as conn:
        try:
            return conn.execute(f"SELECT * FROM {table} ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        except sqlite3.OperationalError:
            return []
