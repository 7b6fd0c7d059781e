import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

from docket.bridge_client import BridgeResponse, WebhookBridge
from docket.config_manager import ConfigManager
from docket.event_store import EventStore
from docket.models import CalendarEvent
from docket.reminders import ReminderDispatcher, ReminderPlanner
from docket.scheduler import ReminderScheduler
from docket.state_store import StateStore


NOW = datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc)


class ReminderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = str(Path(self.temp_dir.name) / "docket.db")
        self.event_store = EventStore(self.db_path)
        self.state_store = StateStore(self.db_path)
        self.state_store.upsert_principal(
            principal_id="u-1", role="SOCIO", first_name="Marta", email="marta@example.com"
        )
        self.bridge = mock.Mock(spec=WebhookBridge)
        self.bridge.send_reminder.return_value = BridgeResponse(success=True)
        self.planner = ReminderPlanner(self.state_store, 1440)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _event(self, event_id: str = "e-1", start: datetime | None = None, **kwargs) -> CalendarEvent:
        event = CalendarEvent(
            id=event_id,
            title="Vista",
            start_date=start or NOW + timedelta(hours=12),
            created_by="u-1",
            **kwargs,
        )
        self.event_store.insert(event)
        return event

    def _dispatcher(self, state_store: StateStore | None = None, max_attempts: int = 3) -> ReminderDispatcher:
        return ReminderDispatcher(
            state_store=state_store or self.state_store,
            event_store=self.event_store,
            bridge=self.bridge,
            max_attempts=max_attempts,
            clock=lambda: NOW,
        )

    def test_plan_computes_due_time(self) -> None:
        event = self._event(start=NOW + timedelta(days=2))
        self.planner.plan(event, minutes=60, recipients=["a@example.com"])
        job = self.state_store.pending_reminder(event.id)
        self.assertEqual(datetime.fromisoformat(job["due_at"]), NOW + timedelta(days=2, minutes=-60))
        self.assertEqual(job["recipients"], ["a@example.com"])

    def test_jobs_survive_a_new_store_instance(self) -> None:
        event = self._event()
        self.planner.plan(event, minutes=None, recipients=["cliente@example.com"])

        reopened = StateStore(self.db_path)
        sent = self._dispatcher(state_store=reopened).dispatch_due()

        self.assertEqual(sent, 1)
        payload = self.bridge.send_reminder.call_args.args[0]
        self.assertEqual(payload["recipients"], ["cliente@example.com", "marta@example.com"])
        self.assertEqual(payload["eventId"], event.id)
        self.assertEqual(reopened.reminders_for_event(event.id)[0]["status"], "sent")

    def test_not_yet_due_jobs_are_left_alone(self) -> None:
        event = self._event(start=NOW + timedelta(days=3))
        self.planner.plan(event, minutes=60, recipients=[])
        self.assertEqual(self._dispatcher().dispatch_due(), 0)
        self.bridge.send_reminder.assert_not_called()

    def test_started_and_deleted_events_are_not_reminded(self) -> None:
        started = self._event("started", start=NOW - timedelta(minutes=5))
        self.planner.plan(started, minutes=60, recipients=[])
        gone = self._event("gone")
        self.planner.plan(gone, minutes=1440, recipients=[])
        self.event_store.delete("gone")

        self.assertEqual(self._dispatcher().dispatch_due(), 0)
        self.bridge.send_reminder.assert_not_called()
        self.assertEqual(self.state_store.reminders_for_event("started")[0]["status"], "skipped")
        self.assertEqual(self.state_store.reminders_for_event("gone")[0]["status"], "cancelled")

    def test_failed_delivery_retries_until_max_attempts(self) -> None:
        self.bridge.send_reminder.return_value = BridgeResponse(success=False, error="smtp down")
        event = self._event()
        self.planner.plan(event, minutes=1440, recipients=[])
        dispatcher = self._dispatcher(max_attempts=2)

        dispatcher.dispatch_due()
        job = self.state_store.reminders_for_event(event.id)[0]
        self.assertEqual(job["status"], "pending")
        self.assertEqual(job["attempts"], 1)

        dispatcher.dispatch_due()
        job = self.state_store.reminders_for_event(event.id)[0]
        self.assertEqual(job["status"], "failed")
        self.assertEqual(job["attempts"], 2)
        self.assertEqual(job["last_error"], "smtp down")

    def test_disabled_notifications_cancel_pending_job(self) -> None:
        event = self._event()
        self.planner.plan(event, minutes=60, recipients=[])
        self.planner.plan(event.with_updates(email_notification_enabled=False))
        self.assertIsNone(self.state_store.pending_reminder(event.id))

    def test_scheduler_run_once_honors_enabled_flag(self) -> None:
        config_manager = ConfigManager(str(Path(self.temp_dir.name) / "config.yaml"))
        dispatcher = mock.Mock(spec=ReminderDispatcher)
        dispatcher.dispatch_due.return_value = 2
        scheduler = ReminderScheduler(dispatcher, config_manager)

        self.assertEqual(scheduler.run_once(), 2)
        config_manager.update({"reminders": {"enabled": False}})
        self.assertEqual(scheduler.run_once(), 0)
        dispatcher.dispatch_due.assert_called_once_with()

    def test_scheduler_swallows_dispatch_errors(self) -> None:
        config_manager = ConfigManager(str(Path(self.temp_dir.name) / "config.yaml"))
        dispatcher = mock.Mock(spec=ReminderDispatcher)
        dispatcher.dispatch_due.side_effect = RuntimeError("boom")
        scheduler = ReminderScheduler(dispatcher, config_manager)
        with self.assertLogs("docket.scheduler", level="ERROR"):
            self.assertEqual(scheduler.run_once(), 0)

    def test_scheduler_survives_unreadable_config(self) -> None:
        config_manager = mock.Mock(spec=ConfigManager)
        config_manager.load.side_effect = ValueError("bad yaml")
        dispatcher = mock.Mock(spec=ReminderDispatcher)
        scheduler = ReminderScheduler(dispatcher, config_manager)
        with self.assertLogs("docket.scheduler", level="ERROR"):
            self.assertEqual(scheduler.run_once(), 0)
            self.assertEqual(scheduler._poll_interval(), 5)
        dispatcher.dispatch_due.assert_not_called()


if __name__ == "__main__":
    unittest.main()
