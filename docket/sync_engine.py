from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Any, Callable

from docket.activity import EVENT_CREATED, EVENT_DELETED, EVENT_UPDATED, ActivityLogger
from docket.bridge_client import WebhookBridge, build_create_payload, build_update_payload
from docket.errors import (
    DocketError,
    NotFoundError,
    PermissionDenied,
    PersistenceError,
    RemoteAdapterError,
    ValidationError,
)
from docket.event_store import EventStore
from docket.models import (
    DEFAULT_REMINDER_MINUTES,
    CalendarEvent,
    CreateEventRequest,
    MutationResult,
    PullResult,
    SyncStatus,
    UpdateEventRequest,
    new_event_id,
    serialize_datetime,
    utc_now,
)
from docket.permissions import PermissionGate
from docket.reconciler import import_remote_events
from docket.reminders import ReminderPlanner
from docket.state_store import StateStore


logger = logging.getLogger(__name__)

CREATE_FAILED = "Failed to create calendar event"
UPDATE_FAILED = "Failed to update calendar event"
DELETE_FAILED = "Failed to delete calendar event"
PULL_FAILED = "Failed to sync events from remote calendar"


def _failure(exc: DocketError, generic_message: str) -> MutationResult:
    # Persistence details stay in the log; callers only see the generic message.
    message = generic_message if isinstance(exc, PersistenceError) else str(exc)
    return MutationResult(
        success=False,
        sync_status=SyncStatus.FAILED,
        error=message,
        error_kind=exc.kind,
    )


def _changed_fields(before: CalendarEvent, after: CalendarEvent, fields: list[str]) -> tuple[dict, dict]:
    before_dict = before.to_dict()
    after_dict = after.to_dict()
    previous = {key: before_dict[key] for key in fields if before_dict[key] != after_dict[key]}
    new = {key: after_dict[key] for key in previous}
    return previous, new


class CalendarSyncService:
    """Local-first event mutations with best-effort mirroring to the remote calendar.

    Every mutation writes the local store first. The remote call, when one
    is made, only decides the reported ``sync_status``; a remote failure
    never rolls back the local change.
    """

    def __init__(
        self,
        *,
        event_store: EventStore,
        state_store: StateStore,
        bridge: WebhookBridge,
        permission_gate: PermissionGate,
        activity_logger: ActivityLogger | None = None,
        reminder_planner: ReminderPlanner | None = None,
        default_reminder_minutes: int = DEFAULT_REMINDER_MINUTES,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.event_store = event_store
        self.state_store = state_store
        self.bridge = bridge
        self.permission_gate = permission_gate
        self.activity_logger = activity_logger or ActivityLogger(state_store)
        self.reminder_planner = reminder_planner
        self.default_reminder_minutes = default_reminder_minutes
        self.clock = clock

    def _plan_reminder(self, event: CalendarEvent, *, minutes: int | None, recipients: list[str] | None) -> None:
        if self.reminder_planner is None:
            return
        try:
            self.reminder_planner.plan(event, minutes=minutes, recipients=recipients)
        except PersistenceError:
            logger.warning("Could not schedule reminder for event %s", event.id, exc_info=True)

    def _cancel_reminders(self, event_id: str) -> None:
        if self.reminder_planner is None:
            return
        try:
            self.reminder_planner.cancel(event_id)
        except PersistenceError:
            logger.warning("Could not cancel reminders for event %s", event_id, exc_info=True)

    def _audit(self, write: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        try:
            write(*args, **kwargs)
        except Exception:
            logger.warning("Activity logging failed", exc_info=True)

    def _require_event(self, event_id: str) -> CalendarEvent:
        event = self.event_store.get(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        return event

    def create_event(self, principal_id: str, request: CreateEventRequest) -> MutationResult:
        try:
            errors = request.validate()
            if errors:
                raise ValidationError(errors)
            now = self.clock()
            event = CalendarEvent(
                id=new_event_id(),
                title=request.title.strip(),
                description=request.description,
                location=request.location,
                start_date=request.start_date,
                end_date=request.end_date,
                type=request.type,
                case_id=request.case_id,
                email_notification_enabled=request.email_notification,
                created_by=principal_id,
                created_at=now,
                updated_at=now,
            )
            event = self.event_store.insert(event)
        except DocketError as exc:
            if isinstance(exc, PersistenceError):
                logger.exception("Local insert failed for new event")
            return _failure(exc, CREATE_FAILED)

        sync_status = SyncStatus.LOCAL
        sync_error = None
        if request.sync_with_remote:
            if self.permission_gate.can_sync(principal_id):
                event, sync_status, sync_error = self._mirror_create(event, request)
            else:
                logger.info("Principal %s may not sync; event %s stays local", principal_id, event.id)

        self._plan_reminder(event, minutes=request.reminder_minutes, recipients=list(request.attendee_emails))
        self._audit(self.activity_logger.event_activity, EVENT_CREATED, event, principal_id)
        return MutationResult(
            success=True,
            sync_status=sync_status,
            event=event.to_dict(),
            sync_error=sync_error,
        )

    def _mirror_create(
        self, event: CalendarEvent, request: CreateEventRequest
    ) -> tuple[CalendarEvent, str, str | None]:
        payload = build_create_payload(request, self.default_reminder_minutes)
        response = self.bridge.create_remote(payload)
        if not response.success or not response.external_id:
            error = response.error or "remote calendar did not return an event id"
            logger.warning("Remote create failed for event %s: %s", event.id, error)
            return event, SyncStatus.PARTIAL, error
        try:
            stored = self.event_store.set_external_id(event.id, response.external_id)
        except PersistenceError:
            logger.exception("Could not store external id %s for event %s", response.external_id, event.id)
            return event, SyncStatus.PARTIAL, "remote event created but its id could not be stored locally"
        return stored or event.with_updates(external_id=response.external_id), SyncStatus.SYNCED, None

    def update_event(self, principal_id: str, event_id: str, request: UpdateEventRequest) -> MutationResult:
        try:
            errors = request.validate()
            if errors:
                raise ValidationError(errors)
            existing = self._require_event(event_id)
            start = request.start_date or existing.start_date
            end = request.end_date or existing.end_date
            if end is not None and end < start:
                raise ValidationError(["end_date must not be earlier than start_date"])
            updated = self.event_store.update(event_id, {**request.local_changes(), "updated_at": self.clock()})
            if updated is None:
                raise NotFoundError(f"Event {event_id} not found")
        except DocketError as exc:
            if isinstance(exc, PersistenceError):
                logger.exception("Local update failed for event %s", event_id)
            return _failure(exc, UPDATE_FAILED)

        sync_status = SyncStatus.LOCAL
        sync_error = None
        if existing.external_id and self.permission_gate.can_sync(principal_id):
            payload = build_update_payload(request, event_type=updated.type, principal_id=principal_id)
            response = self.bridge.update_remote(existing.external_id, payload)
            if response.success:
                sync_status = SyncStatus.SYNCED
            else:
                sync_status = SyncStatus.PARTIAL
                sync_error = response.error
                logger.warning("Remote update failed for event %s: %s", event_id, sync_error)

        if (
            request.start_date is not None
            or request.reminder_minutes is not None
            or request.attendee_emails is not None
        ):
            self._plan_reminder(updated, minutes=request.reminder_minutes, recipients=request.attendee_emails)

        previous, new = _changed_fields(existing, updated, list(request.local_changes()))
        self._audit(
            self.activity_logger.event_activity,
            EVENT_UPDATED,
            updated,
            principal_id,
            previous_value=previous,
            new_value=new,
        )
        return MutationResult(
            success=True,
            sync_status=sync_status,
            event=updated.to_dict(),
            sync_error=sync_error,
        )

    def delete_event(self, principal_id: str, event_id: str) -> MutationResult:
        try:
            existing = self._require_event(event_id)
        except DocketError as exc:
            if isinstance(exc, PersistenceError):
                logger.exception("Lookup failed before deleting event %s", event_id)
            return _failure(exc, DELETE_FAILED)

        sync_status = SyncStatus.LOCAL
        sync_error = None
        if existing.external_id and self.permission_gate.can_sync(principal_id):
            response = self.bridge.delete_remote(existing.external_id)
            if response.success:
                sync_status = SyncStatus.SYNCED
            else:
                sync_status = SyncStatus.PARTIAL
                sync_error = response.error
                logger.warning("Remote delete failed for event %s: %s", event_id, sync_error)

        try:
            self.event_store.delete(event_id)
        except PersistenceError as exc:
            logger.exception("Local delete failed for event %s", event_id)
            return _failure(exc, DELETE_FAILED)

        self._cancel_reminders(event_id)
        self._audit(self.activity_logger.event_activity, EVENT_DELETED, existing, principal_id)
        return MutationResult(success=True, sync_status=sync_status, sync_error=sync_error)

    def pull_from_remote(self, principal_id: str, trigger: str = "manual") -> PullResult:
        started_at = self.clock()
        received = 0
        imported = 0
        try:
            if not self.permission_gate.can_sync(principal_id):
                raise PermissionDenied("Principal is not allowed to sync with the remote calendar")
            response = self.bridge.list_remote(principal_id)
            if not response.success:
                raise RemoteAdapterError(response.error or PULL_FAILED)
            outcome = import_remote_events(
                store=self.event_store,
                items=response.events,
                principal_id=principal_id,
                now=started_at,
            )
            received = outcome.received
            imported = outcome.imported
        except DocketError as exc:
            if isinstance(exc, PersistenceError):
                logger.exception("Local import failed during pull for %s", principal_id)
                message = PULL_FAILED
            else:
                logger.warning("Pull for %s failed: %s", principal_id, exc)
                message = str(exc)
            duration_ms = self._elapsed_ms(started_at)
            status = "denied" if isinstance(exc, PermissionDenied) else "error"
            run_id = self._record_run(trigger, principal_id, status, message, duration_ms, received, imported)
            return PullResult(
                success=False,
                imported_count=imported,
                received_count=received,
                error=message,
                error_kind=exc.kind,
                duration_ms=duration_ms,
                run_id=run_id,
            )

        for event in outcome.imported_events:
            self._plan_reminder(event, minutes=None, recipients=None)
        self._audit(self.activity_logger.import_activity, principal_id, outcome.imported_events)

        duration_ms = self._elapsed_ms(started_at)
        message = (
            f"Received {outcome.received} remote events, imported {outcome.imported}, "
            f"kept {outcome.existing} local, skipped {outcome.skipped}."
        )
        run_id = self._record_run(trigger, principal_id, "success", message, duration_ms, received, imported)
        return PullResult(
            success=True,
            imported_count=outcome.imported,
            received_count=outcome.received,
            skipped_count=outcome.skipped,
            duration_ms=duration_ms,
            run_id=run_id,
        )

    def _elapsed_ms(self, started_at: datetime) -> int:
        return max(0, int((self.clock() - started_at).total_seconds() * 1000))

    def _record_run(
        self,
        trigger: str,
        principal_id: str,
        status: str,
        message: str,
        duration_ms: int,
        received: int,
        imported: int,
    ) -> int | None:
        try:
            return self.state_store.record_sync_run(
                trigger=trigger,
                principal_id=principal_id,
                status=status,
                message=message,
                duration_ms=duration_ms,
                received_count=received,
                imported_count=imported,
            )
        except PersistenceError:
            logger.warning("Could not record sync run for %s", principal_id, exc_info=True)
            return None

    def get_event(self, event_id: str) -> CalendarEvent | None:
        return self.event_store.get(event_id)

    def list_events(self, start: datetime | None = None, end: datetime | None = None) -> list[CalendarEvent]:
        return self.event_store.list_events(start, end)

    def calendar_stats(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or self.clock()
        day_start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        day_end = datetime.combine(now.date(), time.max, tzinfo=now.tzinfo)
        # Weeks run Sunday to Saturday.
        week_start = day_start - timedelta(days=(now.weekday() + 1) % 7)
        week_end = datetime.combine((week_start + timedelta(days=6)).date(), time.max, tzinfo=now.tzinfo)
        return {
            "today": self.event_store.count_between(day_start, day_end),
            "this_week": self.event_store.count_between(week_start, week_end),
            "total": self.event_store.count_all(),
            "as_of": serialize_datetime(now),
        }

    def principal_emails(self) -> list[dict[str, str]]:
        return [
            {
                "name": f"{item.get('first_name', '')} {item.get('last_name', '')}".strip(),
                "email": str(item.get("email") or ""),
            }
            for item in self.state_store.list_principals()
            if item.get("email")
        ]
