import sqlite3
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

from docket.errors import PersistenceError
from docket.event_store import EventStore
from docket.models import CalendarEvent


def _event(event_id: str, start: datetime, **kwargs) -> CalendarEvent:
    return CalendarEvent(id=event_id, title=f"Evento {event_id}", start_date=start, created_by="u-1", **kwargs)


class EventStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = EventStore(str(Path(self.temp_dir.name) / "docket.db"))
        self.start = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_insert_and_get_round_trip(self) -> None:
        event = _event("e-1", self.start, end_date=self.start + timedelta(hours=1), case_id="c-1")
        self.store.insert(event)
        loaded = self.store.get("e-1")
        self.assertEqual(loaded.title, "Evento e-1")
        self.assertEqual(loaded.start_date, self.start)
        self.assertEqual(loaded.end_date, self.start + timedelta(hours=1))
        self.assertEqual(loaded.case_id, "c-1")
        self.assertTrue(loaded.email_notification_enabled)
        self.assertIsNone(self.store.get("missing"))

    def test_external_id_is_unique(self) -> None:
        self.store.insert(_event("e-1", self.start, external_id="g-1"))
        self.assertFalse(self.store.insert_if_external_id_absent(_event("e-2", self.start, external_id="g-1")))
        self.assertEqual(self.store.count_all(), 1)
        with self.assertRaises(PersistenceError):
            self.store.insert(_event("e-3", self.start, external_id="g-1"))

    def test_update_sets_fields_and_reports_missing_rows(self) -> None:
        self.store.insert(_event("e-1", self.start))
        updated = self.store.update("e-1", {"title": "Cambiado", "external_id": "g-5"})
        self.assertEqual(updated.title, "Cambiado")
        self.assertEqual(self.store.find_by_external_id("g-5").id, "e-1")
        self.assertIsNone(self.store.update("missing", {"title": "x"}))

    def test_delete(self) -> None:
        self.store.insert(_event("e-1", self.start))
        self.assertTrue(self.store.delete("e-1"))
        self.assertFalse(self.store.delete("e-1"))

    def test_list_events_ordered_and_filtered(self) -> None:
        self.store.insert(_event("late", self.start + timedelta(days=2)))
        self.store.insert(_event("early", self.start))
        self.store.insert(_event("middle", self.start + timedelta(days=1)))
        self.assertEqual([e.id for e in self.store.list_events()], ["early", "middle", "late"])
        window = self.store.list_events(self.start + timedelta(hours=1), self.start + timedelta(days=1))
        self.assertEqual([e.id for e in window], ["middle"])
        self.assertEqual([e.id for e in self.store.list_events(start=self.start + timedelta(days=1))], ["middle", "late"])
        self.assertEqual(self.store.count_between(self.start, self.start + timedelta(days=1)), 2)

    def test_sqlite_errors_become_persistence_errors(self) -> None:
        with mock.patch.object(self.store, "_connect", side_effect=sqlite3.OperationalError("locked")):
            with self.assertRaises(PersistenceError):
                self.store.get("e-1")


if __name__ == "__main__":
    unittest.main()
