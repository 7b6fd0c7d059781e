from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from docket.bridge_client import WebhookBridge, build_reminder_payload
from docket.event_store import EventStore
from docket.models import DEFAULT_REMINDER_MINUTES, CalendarEvent, utc_now
from docket.state_store import StateStore


logger = logging.getLogger(__name__)


class ReminderPlanner:
    """Persists one pending reminder job per event.

    Jobs live in sqlite, so a restart between scheduling and the due time
    does not lose them.
    """

    def __init__(self, state_store: StateStore, default_minutes: int = DEFAULT_REMINDER_MINUTES) -> None:
        self.state_store = state_store
        self.default_minutes = default_minutes

    def plan(
        self,
        event: CalendarEvent,
        *,
        minutes: int | None = None,
        recipients: list[str] | None = None,
    ) -> str | None:
        if not event.email_notification_enabled:
            self.state_store.cancel_reminders(event.id)
            return None
        previous = self.state_store.pending_reminder(event.id)
        if minutes is None:
            minutes = int(previous["reminder_minutes"]) if previous else self.default_minutes
        if recipients is None:
            recipients = list(previous["recipients"]) if previous else []
        due_at = event.start_date - timedelta(minutes=minutes)
        return self.state_store.replace_reminder(
            event_id=event.id,
            due_at=due_at,
            reminder_minutes=minutes,
            recipients=recipients,
        )

    def cancel(self, event_id: str) -> int:
        return self.state_store.cancel_reminders(event_id)


class ReminderDispatcher:
    def __init__(
        self,
        *,
        state_store: StateStore,
        event_store: EventStore,
        bridge: WebhookBridge,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.state_store = state_store
        self.event_store = event_store
        self.bridge = bridge
        self.max_attempts = max(1, max_attempts)
        self.clock = clock

    def _recipients(self, job: dict, event: CalendarEvent) -> list[str]:
        recipients = [str(x) for x in job.get("recipients") or [] if str(x).strip()]
        creator = self.state_store.get_principal(event.created_by)
        creator_email = str((creator or {}).get("email") or "").strip()
        if creator_email and creator_email not in recipients:
            recipients.append(creator_email)
        return recipients

    def dispatch_due(self, now: datetime | None = None, limit: int = 50) -> int:
        now = now or self.clock()
        sent = 0
        for job in self.state_store.due_reminders(now, limit=limit):
            job_id = job["id"]
            event = self.event_store.get(job["event_id"])
            if event is None:
                self.state_store.mark_reminder(job_id, status="cancelled", error="event no longer exists")
                continue
            if event.start_date <= now:
                self.state_store.mark_reminder(job_id, status="skipped", error="event already started")
                continue
            recipients = self._recipients(job, event)
            if not recipients:
                self.state_store.mark_reminder(job_id, status="skipped", error="no recipients")
                continue

            response = self.bridge.send_reminder(build_reminder_payload(event, recipients))
            if response.success:
                self.state_store.mark_reminder(job_id, status="sent", attempted=True)
                sent += 1
                continue

            attempts = int(job.get("attempts") or 0) + 1
            status = "failed" if attempts >= self.max_attempts else "pending"
            logger.warning(
                "Reminder %s for event %s failed (attempt %s/%s): %s",
                job_id,
                event.id,
                attempts,
                self.max_attempts,
                response.error,
            )
            self.state_store.mark_reminder(job_id, status=status, error=response.error, attempted=True)
        return sent
