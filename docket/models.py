from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


EVENT_TYPES = ("AUDIENCIA", "CITA_CON_CLIENTE", "REUNION_INTERNA", "VENCIMIENTO_LEGAL")
DEFAULT_EVENT_TYPE = "REUNION_INTERNA"
EVENT_TYPE_LABELS = {
    "AUDIENCIA": "Audiencia Judicial",
    "CITA_CON_CLIENTE": "Cita con Cliente",
    "REUNION_INTERNA": "Reunión Interna",
    "VENCIMIENTO_LEGAL": "Vencimiento Legal",
}
DEFAULT_REMINDER_MINUTES = 1440
DEFAULT_SYNC_ROLES = ["SOCIO", "ADMIN"]


class SyncStatus:
    LOCAL = "local"
    SYNCED = "synced"
    PARTIAL = "partial"
    FAILED = "failed"


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_utc(dt: datetime) -> datetime:
    return _ensure_tz(dt).astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed)


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_utc(value).isoformat()


def to_wire_timestamp(value: datetime) -> str:
    """Format an instant the way the bridge expects: whole seconds, UTC, literal ``Z``."""
    return to_utc(value).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def event_type_label(event_type: str) -> str:
    return EVENT_TYPE_LABELS.get(event_type, event_type)


def new_event_id() -> str:
    return uuid.uuid4().hex


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_date_field(data: dict[str, Any], key: str, errors: list[str]) -> datetime | None:
    raw = data.get(key)
    if raw is None or raw == "":
        return None
    try:
        return parse_iso_datetime(raw)
    except (TypeError, ValueError):
        errors.append(f"{key} is not a valid ISO-8601 datetime")
        return None


def _parse_reminder_minutes(data: dict[str, Any], errors: list[str]) -> int | None:
    raw = data.get("reminder_minutes")
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        errors.append("reminder_minutes must be an integer")
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        errors.append("reminder_minutes must be an integer")
        return None


def _parse_emails(data: dict[str, Any], errors: list[str]) -> list[str] | None:
    raw = data.get("attendee_emails")
    if raw is None:
        return None
    if not isinstance(raw, (list, tuple)):
        errors.append("attendee_emails must be a list of email addresses")
        return None
    return [str(item).strip() for item in raw if str(item).strip()]


def _aware_or_none(value: datetime | None) -> datetime | None:
    # Naive values are read as UTC, the same way they are stored.
    return _ensure_tz(value) if isinstance(value, datetime) else value


def _email_errors(emails: list[str] | None) -> list[str]:
    return [f"invalid attendee email: {email}" for email in emails or [] if "@" not in email]


@dataclass
class BridgeConfig:
    base_url: str = ""
    secret: str = ""
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "BridgeConfig":
        data = data or {}
        return cls(
            base_url=str(data.get("base_url", "")).strip().rstrip("/"),
            secret=str(data.get("secret", "")).strip(),
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )


@dataclass
class PermissionsConfig:
    sync_roles: list[str] = field(default_factory=lambda: list(DEFAULT_SYNC_ROLES))
    default_role: str = "ABOGADO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PermissionsConfig":
        data = data or {}
        roles = [str(x).strip().upper() for x in data.get("sync_roles", DEFAULT_SYNC_ROLES) if str(x).strip()]
        return cls(
            sync_roles=roles,
            default_role=str(data.get("default_role", "ABOGADO")).strip().upper() or "ABOGADO",
        )


@dataclass
class RemindersConfig:
    enabled: bool = True
    default_minutes: int = DEFAULT_REMINDER_MINUTES
    poll_interval_seconds: int = 60
    max_attempts: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RemindersConfig":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", True)),
            default_minutes=max(1, int(data.get("default_minutes", DEFAULT_REMINDER_MINUTES))),
            poll_interval_seconds=max(5, int(data.get("poll_interval_seconds", 60))),
            max_attempts=max(1, int(data.get("max_attempts", 3))),
        )


@dataclass
class LoggingConfig:
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        data = data or {}
        return cls(level=str(data.get("level", "INFO")).strip().upper() or "INFO")


@dataclass
class AppConfig:
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)
    reminders: RemindersConfig = field(default_factory=RemindersConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            bridge=BridgeConfig.from_dict(data.get("bridge")),
            permissions=PermissionsConfig.from_dict(data.get("permissions")),
            reminders=RemindersConfig.from_dict(data.get("reminders")),
            logging=LoggingConfig.from_dict(data.get("logging")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


@dataclass
class CalendarEvent:
    id: str
    title: str
    start_date: datetime
    created_by: str
    description: str | None = None
    location: str | None = None
    end_date: datetime | None = None
    type: str = DEFAULT_EVENT_TYPE
    case_id: str | None = None
    external_id: str | None = None
    email_notification_enabled: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in ("start_date", "end_date", "created_at", "updated_at"):
            payload[key] = serialize_datetime(getattr(self, key))
        return payload

    @classmethod
    def from_row(cls, row: Any) -> "CalendarEvent":
        return cls(
            id=str(row["id"]),
            title=str(row["title"]),
            description=row["description"],
            location=row["location"],
            start_date=parse_iso_datetime(row["start_date"]),
            end_date=parse_iso_datetime(row["end_date"]),
            type=str(row["type"]),
            case_id=row["case_id"],
            external_id=row["external_id"],
            email_notification_enabled=bool(row["email_notification_enabled"]),
            created_by=str(row["created_by"]),
            created_at=parse_iso_datetime(row["created_at"]),
            updated_at=parse_iso_datetime(row["updated_at"]),
        )

    def with_updates(self, **kwargs: Any) -> "CalendarEvent":
        payload = {key: getattr(self, key) for key in self.__dataclass_fields__}
        payload.update(kwargs)
        return CalendarEvent(**payload)


@dataclass
class CreateEventRequest:
    title: str
    start_date: datetime | None
    description: str | None = None
    location: str | None = None
    end_date: datetime | None = None
    type: str = DEFAULT_EVENT_TYPE
    case_id: str | None = None
    reminder_minutes: int | None = None
    attendee_emails: list[str] = field(default_factory=list)
    sync_with_remote: bool = False
    email_notification: bool = True

    def __post_init__(self) -> None:
        self.start_date = _aware_or_none(self.start_date)
        self.end_date = _aware_or_none(self.end_date)

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not str(self.title or "").strip():
            errors.append("title is required")
        if self.start_date is None:
            errors.append("start_date is required")
        if self.start_date is not None and self.end_date is not None and self.end_date < self.start_date:
            errors.append("end_date must not be earlier than start_date")
        if self.type not in EVENT_TYPES:
            errors.append(f"type must be one of {', '.join(EVENT_TYPES)}")
        if self.reminder_minutes is not None and self.reminder_minutes <= 0:
            errors.append("reminder_minutes must be positive")
        errors.extend(_email_errors(self.attendee_emails))
        return errors

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> tuple["CreateEventRequest | None", list[str]]:
        if not isinstance(data, dict):
            return None, ["request body must be an object"]
        errors: list[str] = []
        start_date = _parse_date_field(data, "start_date", errors)
        end_date = _parse_date_field(data, "end_date", errors)
        reminder_minutes = _parse_reminder_minutes(data, errors)
        emails = _parse_emails(data, errors)
        request = cls(
            title=str(data.get("title") or "").strip(),
            start_date=start_date,
            description=_optional_text(data.get("description")),
            location=_optional_text(data.get("location")),
            end_date=end_date,
            type=str(data.get("type") or DEFAULT_EVENT_TYPE).strip().upper(),
            case_id=_optional_text(data.get("case_id")),
            reminder_minutes=reminder_minutes,
            attendee_emails=emails or [],
            sync_with_remote=bool(data.get("sync_with_remote", False)),
            email_notification=bool(data.get("email_notification", True)),
        )
        if errors:
            return None, errors
        errors = request.validate()
        if errors:
            return None, errors
        return request, []


UPDATABLE_FIELDS = ("title", "description", "location", "start_date", "end_date", "type")


@dataclass
class UpdateEventRequest:
    """Partial update. ``None`` means "leave unchanged"."""

    title: str | None = None
    description: str | None = None
    location: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    type: str | None = None
    reminder_minutes: int | None = None
    attendee_emails: list[str] | None = None

    def __post_init__(self) -> None:
        self.start_date = _aware_or_none(self.start_date)
        self.end_date = _aware_or_none(self.end_date)

    def local_changes(self) -> dict[str, Any]:
        return {key: getattr(self, key) for key in UPDATABLE_FIELDS if getattr(self, key) is not None}

    def validate(self) -> list[str]:
        errors: list[str] = []
        if self.title is not None and not self.title.strip():
            errors.append("title must not be blank")
        if self.type is not None and self.type not in EVENT_TYPES:
            errors.append(f"type must be one of {', '.join(EVENT_TYPES)}")
        if self.start_date is not None and self.end_date is not None and self.end_date < self.start_date:
            errors.append("end_date must not be earlier than start_date")
        if self.reminder_minutes is not None and self.reminder_minutes <= 0:
            errors.append("reminder_minutes must be positive")
        errors.extend(_email_errors(self.attendee_emails))
        return errors

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> tuple["UpdateEventRequest | None", list[str]]:
        if not isinstance(data, dict):
            return None, ["request body must be an object"]
        errors: list[str] = []
        raw_type = data.get("type")
        request = cls(
            title=str(data["title"]).strip() if data.get("title") is not None else None,
            description=str(data["description"]) if data.get("description") is not None else None,
            location=str(data["location"]) if data.get("location") is not None else None,
            start_date=_parse_date_field(data, "start_date", errors),
            end_date=_parse_date_field(data, "end_date", errors),
            type=str(raw_type).strip().upper() if raw_type is not None else None,
            reminder_minutes=_parse_reminder_minutes(data, errors),
            attendee_emails=_parse_emails(data, errors),
        )
        if errors:
            return None, errors
        errors = request.validate()
        if errors:
            return None, errors
        return request, []


@dataclass
class RemoteEvent:
    external_id: str
    title: str
    start_date: datetime
    description: str | None = None
    location: str | None = None
    end_date: datetime | None = None
    type: str | None = None


@dataclass
class MutationResult:
    success: bool
    sync_status: str
    event: dict[str, Any] | None = None
    sync_error: str | None = None
    error: str | None = None
    error_kind: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PullResult:
    success: bool
    imported_count: int = 0
    received_count: int = 0
    skipped_count: int = 0
    error: str | None = None
    error_kind: str | None = None
    duration_ms: int = 0
    run_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
