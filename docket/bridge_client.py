from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from docket.models import (
    DEFAULT_REMINDER_MINUTES,
    BridgeConfig,
    CalendarEvent,
    CreateEventRequest,
    RemoteEvent,
    UpdateEventRequest,
    event_type_label,
    parse_iso_datetime,
    to_wire_timestamp,
)


logger = logging.getLogger(__name__)

CREATE_PATH = "create-calendar-event"
UPDATE_PATH = "update-calendar-event"
DELETE_PATH = "delete-calendar-event"
LIST_PATH = "sync-calendar-events"
REMINDER_PATH = "send-event-reminder"


@dataclass
class BridgeResponse:
    success: bool
    external_id: str | None = None
    events: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


def build_create_payload(
    request: CreateEventRequest,
    default_reminder_minutes: int = DEFAULT_REMINDER_MINUTES,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "summary": request.title,
        "description": request.description or "",
        "location": request.location or "",
        "startDate": to_wire_timestamp(request.start_date),
        "attendees": list(request.attendee_emails or []),
        "reminderMinutes": request.reminder_minutes or default_reminder_minutes,
    }
    if request.end_date is not None:
        payload["endDate"] = to_wire_timestamp(request.end_date)
    return payload


def build_update_payload(request: UpdateEventRequest, *, event_type: str, principal_id: str) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if request.title is not None:
        payload["summary"] = request.title
    if request.description is not None:
        payload["description"] = request.description
    if request.location is not None:
        payload["location"] = request.location
    if request.start_date is not None:
        payload["startDate"] = to_wire_timestamp(request.start_date)
    if request.end_date is not None:
        payload["endDate"] = to_wire_timestamp(request.end_date)
    if request.attendee_emails is not None:
        payload["attendees"] = list(request.attendee_emails)
    if request.reminder_minutes is not None:
        payload["reminderMinutes"] = request.reminder_minutes
    payload["eventType"] = event_type
    payload["userId"] = principal_id
    return payload


def build_reminder_payload(event: CalendarEvent, recipients: list[str]) -> dict[str, Any]:
    return {
        "eventId": event.id,
        "externalId": event.external_id,
        "summary": event.title,
        "description": event.description or "",
        "startDate": to_wire_timestamp(event.start_date),
        "eventType": event.type,
        "eventTypeLabel": event_type_label(event.type),
        "recipients": list(recipients),
        "subject": f"Recordatorio: {event.title}",
    }


def _remote_text(value: Any, external_id: str, key: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dict, list, tuple, set, bytes)):
        raise ValueError(f"remote event {external_id} has a non-text {key}")
    text = str(value).strip()
    return text or None


def remote_event_from_wire(item: Any) -> RemoteEvent:
    if not isinstance(item, dict):
        raise ValueError("remote event must be an object")
    external_id = str(item.get("id") or "").strip()
    if not external_id:
        raise ValueError("remote event has no id")
    try:
        start_date = parse_iso_datetime(item.get("startDate"))
        end_date = parse_iso_datetime(item.get("endDate") or None)
    except (AttributeError, TypeError, ValueError) as exc:
        raise ValueError(f"remote event {external_id} has an invalid date: {exc}") from exc
    if start_date is None:
        raise ValueError(f"remote event {external_id} has no startDate")
    if end_date is not None and end_date < start_date:
        logger.warning("Dropping endDate earlier than startDate on remote event %s", external_id)
        end_date = None
    title = str(item.get("title") or item.get("summary") or "").strip()
    return RemoteEvent(
        external_id=external_id,
        title=title or "(sin título)",
        start_date=start_date,
        description=_remote_text(item.get("description"), external_id, "description"),
        location=_remote_text(item.get("location"), external_id, "location"),
        end_date=end_date,
        type=str(item.get("type") or "").strip().upper() or None,
    )


class WebhookBridge:
    """Client for the webhook bridge in front of the remote calendar.

    Nothing raises past this class: transport errors, non-2xx statuses and
    malformed bodies all come back as ``BridgeResponse(success=False)``.
    """

    def __init__(self, config: BridgeConfig) -> None:
        self.config = config

    def is_configured(self) -> bool:
        return bool(self.config.base_url)

    def _endpoint(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/webhook/{path}"

    def _request(self, path: str, method: str, body: dict[str, Any] | None = None) -> BridgeResponse:
        if not self.is_configured():
            message = "bridge base_url is not configured"
            logger.error(message)
            return BridgeResponse(success=False, error=message)

        url = self._endpoint(path)
        try:
            response = requests.request(
                method,
                url,
                headers={
                    "Authorization": f"Bearer {self.config.secret}",
                    "Content-Type": "application/json",
                },
                json=body,
                timeout=self.config.timeout_seconds,
            )
            if not response.ok:
                return self._failure(url, f"Bridge error ({response.status_code}): {response.text[:300]}")
            try:
                payload = response.json()
            except ValueError:
                return self._failure(url, "Bridge returned a non-JSON response")
            if not isinstance(payload, dict):
                return self._failure(url, "Bridge response root must be an object")
        except Exception as exc:
            return self._failure(url, f"{type(exc).__name__}: {exc}")

        success = payload.get("success") is True
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        raw_events = data.get("events") if isinstance(data.get("events"), list) else []
        external_id = payload.get("externalId") or payload.get("googleEventId")
        error = payload.get("error")
        if not success and not error:
            error = "Bridge reported failure"
        return BridgeResponse(
            success=success,
            external_id=str(external_id) if external_id else None,
            events=list(raw_events),
            error=str(error) if error else None,
            data=data,
        )

    @staticmethod
    def _failure(url: str, message: str) -> BridgeResponse:
        logger.warning("Bridge call to %s failed: %s", url, message)
        return BridgeResponse(success=False, error=message)

    def create_remote(self, payload: dict[str, Any]) -> BridgeResponse:
        return self._request(CREATE_PATH, "POST", payload)

    def update_remote(self, external_id: str, partial_payload: dict[str, Any]) -> BridgeResponse:
        body = {"externalId": external_id, "googleEventId": external_id, **partial_payload}
        return self._request(UPDATE_PATH, "PUT", body)

    def delete_remote(self, external_id: str) -> BridgeResponse:
        return self._request(DELETE_PATH, "DELETE", {"externalId": external_id, "googleEventId": external_id})

    def list_remote(self, principal_id: str) -> BridgeResponse:
        return self._request(LIST_PATH, "POST", {"userId": principal_id})

    def send_reminder(self, payload: dict[str, Any]) -> BridgeResponse:
        return self._request(REMINDER_PATH, "POST", payload)
