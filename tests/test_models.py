import unittest
from datetime import datetime, timezone

from docket.models import (
    AppConfig,
    CreateEventRequest,
    UpdateEventRequest,
    parse_iso_datetime,
    to_wire_timestamp,
)


class ModelTests(unittest.TestCase):
    def test_parse_iso_datetime_accepts_z_suffix(self) -> None:
        parsed = parse_iso_datetime("2026-03-10T09:00:00Z")
        self.assertEqual(parsed, datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc))
        self.assertIsNone(parse_iso_datetime("   "))

    def test_wire_timestamp_truncates_to_seconds(self) -> None:
        value = datetime(2026, 3, 10, 9, 0, 5, 123456, tzinfo=timezone.utc)
        self.assertEqual(to_wire_timestamp(value), "2026-03-10T09:00:05Z")

    def test_wire_timestamp_round_trips_to_the_same_second(self) -> None:
        original = parse_iso_datetime("2025-03-10T09:00:00.123Z")
        formatted = to_wire_timestamp(original)
        self.assertEqual(formatted, "2025-03-10T09:00:00Z")
        self.assertEqual(parse_iso_datetime(formatted), original.replace(microsecond=0))

    def test_naive_request_datetimes_become_utc(self) -> None:
        request = UpdateEventRequest(start_date=datetime(2025, 3, 10, 9, 0), end_date=datetime(2025, 3, 10, 10, 0))
        self.assertEqual(request.start_date.tzinfo, timezone.utc)
        self.assertEqual(request.end_date, datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc))
        create = CreateEventRequest(title="x", start_date=datetime(2025, 3, 10, 9, 0))
        self.assertEqual(create.start_date, datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc))

    def test_create_request_from_dict_defaults(self) -> None:
        request, errors = CreateEventRequest.from_dict(
            {"title": "  Audiencia previa ", "start_date": "2026-03-10T09:00:00Z"}
        )
        self.assertEqual(errors, [])
        self.assertEqual(request.title, "Audiencia previa")
        self.assertEqual(request.type, "REUNION_INTERNA")
        self.assertFalse(request.sync_with_remote)
        self.assertTrue(request.email_notification)
        self.assertEqual(request.attendee_emails, [])

    def test_create_request_collects_errors(self) -> None:
        request, errors = CreateEventRequest.from_dict(
            {
                "title": " ",
                "start_date": "2026-03-10T09:00:00Z",
                "end_date": "2026-03-10T08:00:00Z",
                "type": "PARTY",
                "attendee_emails": ["not-an-email"],
            }
        )
        self.assertIsNone(request)
        self.assertIn("title is required", errors)
        self.assertIn("end_date must not be earlier than start_date", errors)
        self.assertTrue(any(item.startswith("type must be one of") for item in errors))
        self.assertIn("invalid attendee email: not-an-email", errors)

    def test_create_request_rejects_bad_datetime_without_raising(self) -> None:
        request, errors = CreateEventRequest.from_dict({"title": "x", "start_date": "yesterday"})
        self.assertIsNone(request)
        self.assertEqual(errors, ["start_date is not a valid ISO-8601 datetime"])

    def test_update_request_only_carries_supplied_fields(self) -> None:
        request, errors = UpdateEventRequest.from_dict({"title": "Nuevo", "type": "audiencia"})
        self.assertEqual(errors, [])
        self.assertEqual(request.local_changes(), {"title": "Nuevo", "type": "AUDIENCIA"})
        self.assertIsNone(request.attendee_emails)

    def test_update_request_rejects_non_positive_reminder(self) -> None:
        request, errors = UpdateEventRequest.from_dict({"reminder_minutes": 0})
        self.assertIsNone(request)
        self.assertEqual(errors, ["reminder_minutes must be positive"])

    def test_app_config_defaults_and_clamps(self) -> None:
        config = AppConfig.from_dict(
            {
                "bridge": {"base_url": "https://bridge.example.com/"},
                "permissions": {"sync_roles": ["socio"]},
                "reminders": {"poll_interval_seconds": 1},
            }
        )
        self.assertEqual(config.bridge.base_url, "https://bridge.example.com")
        self.assertEqual(config.bridge.timeout_seconds, 30)
        self.assertEqual(config.permissions.sync_roles, ["SOCIO"])
        self.assertEqual(config.permissions.default_role, "ABOGADO")
        self.assertEqual(config.reminders.poll_interval_seconds, 5)
        self.assertEqual(config.reminders.default_minutes, 1440)


if __name__ == "__main__":
    unittest.main()
