from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from docket.activity import ActivityLogger
from docket.bridge_client import WebhookBridge
from docket.config_manager import ConfigManager
from docket.errors import ErrorKind
from docket.event_store import EventStore
from docket.models import (
    AppConfig,
    CreateEventRequest,
    MutationResult,
    SyncStatus,
    UpdateEventRequest,
    parse_iso_datetime,
)
from docket.permissions import PermissionGate
from docket.reminders import ReminderDispatcher, ReminderPlanner
from docket.scheduler import ReminderScheduler
from docket.state_store import StateStore
from docket.sync_engine import CalendarSyncService


logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.PERSISTENCE: 500,
    ErrorKind.REMOTE: 502,
}


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class EventCreateBody(BaseModel):
    title: str = ""
    start_date: str | None = None
    end_date: str | None = None
    description: str | None = None
    location: str | None = None
    type: str | None = None
    case_id: str | None = None
    reminder_minutes: int | None = None
    attendee_emails: list[str] = Field(default_factory=list)
    sync_with_remote: bool = False
    email_notification: bool = True


class EventUpdateBody(BaseModel):
    title: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    description: str | None = None
    location: str | None = None
    type: str | None = None
    reminder_minutes: int | None = None
    attendee_emails: list[str] | None = None


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        config = self.config_manager.load()
        self.event_store = EventStore(state_path)
        self.state_store = StateStore(state_path)
        self.bridge = WebhookBridge(config.bridge)
        self.permission_gate = PermissionGate(
            self.state_store.get_principal_role,
            sync_roles=config.permissions.sync_roles,
            default_role=config.permissions.default_role,
        )
        self.activity_logger = ActivityLogger(self.state_store)
        self.reminder_planner = ReminderPlanner(self.state_store, config.reminders.default_minutes)
        self.reminder_dispatcher = ReminderDispatcher(
            state_store=self.state_store,
            event_store=self.event_store,
            bridge=self.bridge,
            max_attempts=config.reminders.max_attempts,
        )
        self.scheduler = ReminderScheduler(self.reminder_dispatcher, self.config_manager)
        self.sync_service = CalendarSyncService(
            event_store=self.event_store,
            state_store=self.state_store,
            bridge=self.bridge,
            permission_gate=self.permission_gate,
            activity_logger=self.activity_logger,
            reminder_planner=self.reminder_planner,
            default_reminder_minutes=config.reminders.default_minutes,
        )

    def apply_config(self, config: AppConfig) -> None:
        self.bridge.config = config.bridge
        self.permission_gate.sync_roles = set(config.permissions.sync_roles)
        self.permission_gate.default_role = config.permissions.default_role
        self.reminder_planner.default_minutes = config.reminders.default_minutes
        self.reminder_dispatcher.max_attempts = max(1, config.reminders.max_attempts)
        self.sync_service.default_reminder_minutes = config.reminders.default_minutes


def _sanitize_config_payload(payload: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    sanitized = dict(payload)
    current_secret = str(current.get("bridge", {}).get("secret", ""))

    bridge = sanitized.get("bridge")
    if isinstance(bridge, dict):
        bridge = dict(bridge)
        secret = bridge.get("secret")
        if secret is not None and str(secret).strip() in {"", "***"}:
            # The masked placeholder coming back from the UI keeps the stored secret.
            if current_secret:
                bridge.pop("secret", None)
            else:
                bridge["secret"] = ""
        if bridge:
            sanitized["bridge"] = bridge
        else:
            sanitized.pop("bridge", None)
    return sanitized


def _principal_id(x_principal_id: str | None = Header(default=None)) -> str:
    principal_id = str(x_principal_id or "").strip()
    if not principal_id:
        raise HTTPException(status_code=401, detail="X-Principal-Id header is required")
    return principal_id


def _validation_failure(errors: list[str]) -> JSONResponse:
    result = MutationResult(
        success=False,
        sync_status=SyncStatus.FAILED,
        error="; ".join(errors),
        error_kind=ErrorKind.VALIDATION,
    )
    return JSONResponse(status_code=422, content=result.to_dict())


def _result_response(result: Any, success_status: int = 200) -> JSONResponse:
    if result.success:
        return JSONResponse(status_code=success_status, content=result.to_dict())
    status_code = STATUS_BY_KIND.get(result.error_kind or "", 500)
    return JSONResponse(status_code=status_code, content=result.to_dict())


def _parse_query_datetime(name: str, value: str | None) -> datetime | None:
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=f"{name} is not a valid ISO-8601 datetime") from exc


def create_app() -> FastAPI:
    config_path = os.getenv("DOCKET_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("DOCKET_STATE_PATH", "data/docket.db")
    context = AppContext(config_path=config_path, state_path=state_path)

    app = FastAPI(title="Docket Calendar Sync", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
        app.state.context.scheduler.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.scheduler.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/events")
    def list_events(
        start: str | None = None,
        end: str | None = None,
        principal_id: str = Depends(_principal_id),
    ) -> dict[str, Any]:
        start_dt = _parse_query_datetime("start", start)
        end_dt = _parse_query_datetime("end", end)
        events = app.state.context.sync_service.list_events(start_dt, end_dt)
        return {"events": [event.to_dict() for event in events]}

    @app.get("/api/events/{event_id}")
    def get_event(event_id: str, principal_id: str = Depends(_principal_id)) -> dict[str, Any]:
        event = app.state.context.sync_service.get_event(event_id)
        if event is None:
            raise HTTPException(status_code=404, detail="event not found")
        return {"event": event.to_dict()}

    @app.post("/api/events")
    def create_event(body: EventCreateBody, principal_id: str = Depends(_principal_id)) -> JSONResponse:
        request, errors = CreateEventRequest.from_dict(body.model_dump(exclude_unset=True))
        if request is None:
            return _validation_failure(errors)
        result = app.state.context.sync_service.create_event(principal_id, request)
        return _result_response(result, success_status=201)

    @app.patch("/api/events/{event_id}")
    def update_event(
        event_id: str,
        body: EventUpdateBody,
        principal_id: str = Depends(_principal_id),
    ) -> JSONResponse:
        request, errors = UpdateEventRequest.from_dict(body.model_dump(exclude_unset=True))
        if request is None:
            return _validation_failure(errors)
        result = app.state.context.sync_service.update_event(principal_id, event_id, request)
        return _result_response(result)

    @app.delete("/api/events/{event_id}")
    def delete_event(event_id: str, principal_id: str = Depends(_principal_id)) -> JSONResponse:
        result = app.state.context.sync_service.delete_event(principal_id, event_id)
        return _result_response(result)

    @app.post("/api/sync/pull")
    def pull_events(principal_id: str = Depends(_principal_id)) -> JSONResponse:
        result = app.state.context.sync_service.pull_from_remote(principal_id, trigger="manual")
        return _result_response(result)

    @app.get("/api/sync/status")
    def sync_status(limit: int = 20, principal_id: str = Depends(_principal_id)) -> dict[str, Any]:
        return {"runs": app.state.context.state_store.recent_sync_runs(limit=limit)}

    @app.get("/api/sync/permission")
    def sync_permission(principal_id: str = Depends(_principal_id)) -> dict[str, Any]:
        gate = app.state.context.permission_gate
        return {
            "principal_id": principal_id,
            "role": gate.role_for(principal_id),
            "can_sync": gate.can_sync(principal_id),
        }

    @app.get("/api/stats")
    def stats(principal_id: str = Depends(_principal_id)) -> dict[str, Any]:
        return app.state.context.sync_service.calendar_stats()

    @app.get("/api/activity")
    def activity(limit: int = 100, principal_id: str = Depends(_principal_id)) -> dict[str, Any]:
        return {"activity": app.state.context.state_store.recent_activity(limit=limit)}

    @app.get("/api/principals/emails")
    def principal_emails(principal_id: str = Depends(_principal_id)) -> dict[str, Any]:
        return {"principals": app.state.context.sync_service.principal_emails()}

    @app.get("/api/config")
    def get_config(principal_id: str = Depends(_principal_id)) -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest, principal_id: str = Depends(_principal_id)) -> dict[str, Any]:
        config_manager = app.state.context.config_manager
        current = config_manager.load().to_dict()
        updated = config_manager.update(_sanitize_config_payload(request.payload, current))
        app.state.context.apply_config(updated)
        logger.info("Config updated by %s", principal_id)
        return {
            "message": "config updated",
            "config": config_manager.masked(),
        }

    return app
