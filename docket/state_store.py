from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from docket.errors import PersistenceError
from docket.models import to_utc


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _db_datetime(value: datetime) -> str:
    return to_utc(value).isoformat(timespec="microseconds")


def _json_or_none(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


class StateStore:
    """Everything around the events: principals, cases, activity, pull runs and reminder jobs."""

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = None
            try:
                conn = self._connect()
                with conn:
                    yield conn
            except sqlite3.Error as exc:
                raise PersistenceError(f"{type(exc).__name__}: {exc}") from exc
            finally:
                if conn is not None:
                    conn.close()

    def _init_schema(self) -> None:
        schema_sql = """
        CREATE TABLE IF NOT EXISTS principals (
            id TEXT PRIMARY KEY,
            first_name TEXT NOT NULL DEFAULT '',
            last_name TEXT NOT NULL DEFAULT '',
            email TEXT NOT NULL DEFAULT '',
            role TEXT
        );

        CREATE TABLE IF NOT EXISTS cases (
            id TEXT PRIMARY KEY,
            case_name TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS activity_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            created_at TEXT NOT NULL,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            actor_id TEXT NOT NULL,
            entity_id TEXT,
            entity_type TEXT,
            previous_value TEXT,
            new_value TEXT
        );

        CREATE TABLE IF NOT EXISTS sync_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_at TEXT NOT NULL,
            trigger TEXT NOT NULL,
            principal_id TEXT NOT NULL,
            status TEXT NOT NULL,
            message TEXT,
            duration_ms INTEGER NOT NULL,
            received_count INTEGER NOT NULL,
            imported_count INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS reminder_jobs (
            id TEXT PRIMARY KEY,
            event_id TEXT NOT NULL,
            due_at TEXT NOT NULL,
            reminder_minutes INTEGER NOT NULL,
            recipients_json TEXT NOT NULL,
            status TEXT NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_reminder_jobs_due ON reminder_jobs(status, due_at);
        """
        with self._transaction() as conn:
            conn.executescript(schema_sql)

    def upsert_principal(
        self,
        *,
        principal_id: str,
        role: str | None,
        first_name: str = "",
        last_name: str = "",
        email: str = "",
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO principals(id, first_name, last_name, email, role)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    first_name = excluded.first_name,
                    last_name = excluded.last_name,
                    email = excluded.email,
                    role = excluded.role
                """,
                (str(principal_id), first_name, last_name, email, role),
            )

    def get_principal(self, principal_id: str) -> dict[str, Any] | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, first_name, last_name, email, role FROM principals WHERE id = ?",
                (str(principal_id),),
            ).fetchone()
        return dict(row) if row else None

    def get_principal_role(self, principal_id: str) -> str | None:
        principal = self.get_principal(principal_id)
        if principal is None:
            return None
        return principal.get("role")

    def list_principals(self) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id, first_name, last_name, email, role FROM principals ORDER BY last_name, first_name"
            ).fetchall()
        return [dict(row) for row in rows]

    def upsert_case(self, *, case_id: str, case_name: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO cases(id, case_name) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET case_name = excluded.case_name
                """,
                (str(case_id), case_name),
            )

    def get_case(self, case_id: str) -> dict[str, Any] | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT id, case_name FROM cases WHERE id = ?", (str(case_id),)).fetchone()
        return dict(row) if row else None

    def record_activity(
        self,
        *,
        activity_type: str,
        title: str,
        description: str,
        actor_id: str,
        entity_id: str | None = None,
        entity_type: str | None = None,
        previous_value: Any = None,
        new_value: Any = None,
    ) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO activity_log(
                    created_at, type, title, description, actor_id,
                    entity_id, entity_type, previous_value, new_value
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _utc_now(),
                    activity_type,
                    title,
                    description,
                    str(actor_id),
                    entity_id,
                    entity_type,
                    _json_or_none(previous_value),
                    _json_or_none(new_value),
                ),
            )
            return int(cursor.lastrowid)

    def recent_activity(self, limit: int = 100) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT id, created_at, type, title, description, actor_id,
                       entity_id, entity_type, previous_value, new_value
                FROM activity_log
                ORDER BY id DESC
                LIMIT ?
                """,
                (max(1, limit),),
            ).fetchall()
        output: list[dict[str, Any]] = []
        for row in rows:
            item = dict(row)
            for key in ("previous_value", "new_value"):
                raw = item.get(key)
                if raw:
                    try:
                        item[key] = json.loads(raw)
                    except ValueError:
                        pass
            output.append(item)
        return output

    def record_sync_run(
        self,
        *,
        trigger: str,
        principal_id: str,
        status: str,
        message: str,
        duration_ms: int,
        received_count: int,
        imported_count: int,
    ) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_runs(
                    run_at, trigger, principal_id, status, message,
                    duration_ms, received_count, imported_count
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _utc_now(),
                    trigger,
                    str(principal_id),
                    status,
                    message,
                    int(duration_ms),
                    int(received_count),
                    int(imported_count),
                ),
            )
            return int(cursor.lastrowid)

    def recent_sync_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT id, run_at, trigger, principal_id, status, message,
                       duration_ms, received_count, imported_count
                FROM sync_runs
                ORDER BY id DESC
                LIMIT ?
                """,
                (max(1, limit),),
            ).fetchall()
        return [dict(row) for row in rows]

    def replace_reminder(
        self,
        *,
        event_id: str,
        due_at: datetime,
        reminder_minutes: int,
        recipients: list[str],
    ) -> str:
        """Cancel pending jobs for ``event_id`` and enqueue a single new one."""
        job_id = uuid.uuid4().hex
        now = _utc_now()
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE reminder_jobs SET status = 'cancelled', updated_at = ?
                WHERE event_id = ? AND status = 'pending'
                """,
                (now, str(event_id)),
            )
            conn.execute(
                """
                INSERT INTO reminder_jobs(
                    id, event_id, due_at, reminder_minutes, recipients_json,
                    status, attempts, last_error, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 'pending', 0, NULL, ?, ?)
                """,
                (
                    job_id,
                    str(event_id),
                    _db_datetime(due_at),
                    int(reminder_minutes),
                    json.dumps(list(recipients), ensure_ascii=False),
                    now,
                    now,
                ),
            )
        return job_id

    def cancel_reminders(self, event_id: str) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE reminder_jobs SET status = 'cancelled', updated_at = ?
                WHERE event_id = ? AND status = 'pending'
                """,
                (_utc_now(), str(event_id)),
            )
            return cursor.rowcount

    def pending_reminder(self, event_id: str) -> dict[str, Any] | None:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM reminder_jobs
                WHERE event_id = ? AND status = 'pending'
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (str(event_id),),
            ).fetchone()
        return self._reminder_row(row) if row else None

    def reminders_for_event(self, event_id: str) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM reminder_jobs WHERE event_id = ? ORDER BY created_at, rowid",
                (str(event_id),),
            ).fetchall()
        return [self._reminder_row(row) for row in rows]

    def due_reminders(self, now: datetime, limit: int = 50) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminder_jobs
                WHERE status = 'pending' AND due_at <= ?
                ORDER BY due_at
                LIMIT ?
                """,
                (_db_datetime(now), max(1, limit)),
            ).fetchall()
        return [self._reminder_row(row) for row in rows]

    def mark_reminder(self, job_id: str, *, status: str, error: str | None = None, attempted: bool = False) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE reminder_jobs
                SET status = ?, last_error = ?, attempts = attempts + ?, updated_at = ?
                WHERE id = ?
                """,
                (status, error, 1 if attempted else 0, _utc_now(), str(job_id)),
            )

    @staticmethod
    def _reminder_row(row: sqlite3.Row) -> dict[str, Any]:
        item = dict(row)
        item["recipients"] = json.loads(item.pop("recipients_json") or "[]")
        return item
