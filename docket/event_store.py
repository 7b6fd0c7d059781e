from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from docket.errors import PersistenceError
from docket.models import CalendarEvent, to_utc, utc_now


EVENT_COLUMNS = (
    "id",
    "title",
    "description",
    "location",
    "start_date",
    "end_date",
    "type",
    "case_id",
    "external_id",
    "email_notification_enabled",
    "created_by",
    "created_at",
    "updated_at",
)
_SELECT_EVENT = f"SELECT {', '.join(EVENT_COLUMNS)} FROM calendar_events"
_DATETIME_COLUMNS = {"start_date", "end_date", "created_at", "updated_at"}


def _db_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_utc(value).isoformat(timespec="microseconds")


def _to_column(key: str, value: Any) -> Any:
    if key in _DATETIME_COLUMNS:
        return _db_datetime(value)
    if key == "email_notification_enabled":
        return 1 if value else 0
    return value


def _event_row(event: CalendarEvent) -> tuple[Any, ...]:
    return tuple(_to_column(column, getattr(event, column)) for column in EVENT_COLUMNS)


class EventStore:
    """Authoritative sqlite store for calendar events.

    ``external_id`` carries a UNIQUE constraint so that importing the same
    remote event twice cannot produce two rows, even when two pulls race.
    Every sqlite failure surfaces as :class:`PersistenceError`.
    """

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
        CREATE TABLE IF NOT EXISTS calendar_events (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT,
            location TEXT,
            start_date TEXT NOT NULL,
            end_date TEXT,
            type TEXT NOT NULL,
            case_id TEXT,
            external_id TEXT UNIQUE,
            email_notification_enabled INTEGER NOT NULL DEFAULT 1,
            created_by TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_calendar_events_start ON calendar_events(start_date);
        """
        with self._transaction() as conn:
            conn.executescript(schema_sql)

    def insert(self, event: CalendarEvent) -> CalendarEvent:
        placeholders = ", ".join("?" for _ in EVENT_COLUMNS)
        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO calendar_events({', '.join(EVENT_COLUMNS)}) VALUES ({placeholders})",
                _event_row(event),
            )
        return event

    def insert_if_external_id_absent(self, event: CalendarEvent) -> bool:
        """Insert an imported event unless its ``external_id`` is already stored.

        The existence check and the insert are a single statement, so
        concurrent pulls cannot both import the same remote event.
        """
        if not event.external_id:
            raise ValueError("imported events must carry an external_id")
        placeholders = ", ".join("?" for _ in EVENT_COLUMNS)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO calendar_events({', '.join(EVENT_COLUMNS)}) VALUES ({placeholders})
                ON CONFLICT(external_id) DO NOTHING
                """,
                _event_row(event),
            )
            return cursor.rowcount == 1

    def get(self, event_id: str) -> CalendarEvent | None:
        with self._transaction() as conn:
            row = conn.execute(f"{_SELECT_EVENT} WHERE id = ?", (str(event_id),)).fetchone()
        return CalendarEvent.from_row(row) if row else None

    def find_by_external_id(self, external_id: str) -> CalendarEvent | None:
        with self._transaction() as conn:
            row = conn.execute(
                f"{_SELECT_EVENT} WHERE external_id = ?",
                (str(external_id),),
            ).fetchone()
        return CalendarEvent.from_row(row) if row else None

    def update(self, event_id: str, changes: dict[str, Any]) -> CalendarEvent | None:
        editable = {key: value for key, value in changes.items() if key in EVENT_COLUMNS and key != "id"}
        editable["updated_at"] = changes.get("updated_at") or utc_now()
        assignments = ", ".join(f"{key} = ?" for key in editable)
        params = [_to_column(key, value) for key, value in editable.items()]
        params.append(str(event_id))
        with self._transaction() as conn:
            cursor = conn.execute(f"UPDATE calendar_events SET {assignments} WHERE id = ?", params)
            if cursor.rowcount == 0:
                return None
            row = conn.execute(f"{_SELECT_EVENT} WHERE id = ?", (str(event_id),)).fetchone()
        return CalendarEvent.from_row(row) if row else None

    def set_external_id(self, event_id: str, external_id: str) -> CalendarEvent | None:
        return self.update(event_id, {"external_id": external_id})

    def delete(self, event_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM calendar_events WHERE id = ?", (str(event_id),))
            return cursor.rowcount > 0

    def list_events(self, start: datetime | None = None, end: datetime | None = None) -> list[CalendarEvent]:
        clauses: list[str] = []
        params: list[Any] = []
        if start is not None:
            clauses.append("start_date >= ?")
            params.append(_db_datetime(start))
        if end is not None:
            clauses.append("start_date <= ?")
            params.append(_db_datetime(end))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._transaction() as conn:
            rows = conn.execute(f"{_SELECT_EVENT}{where} ORDER BY start_date", params).fetchall()
        return [CalendarEvent.from_row(row) for row in rows]

    def count_between(self, start: datetime, end: datetime) -> int:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM calendar_events WHERE start_date >= ? AND start_date <= ?",
                (_db_datetime(start), _db_datetime(end)),
            ).fetchone()
        return int(row["total"])

    def count_all(self) -> int:
        with self._transaction() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM calendar_events").fetchone()
        return int(row["total"])
