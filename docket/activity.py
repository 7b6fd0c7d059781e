from __future__ import annotations

import logging
from typing import Any

from docket.models import CalendarEvent
from docket.state_store import StateStore


logger = logging.getLogger(__name__)

EVENT_CREATED = "EVENT_CREATED"
EVENT_UPDATED = "EVENT_UPDATED"
EVENT_DELETED = "EVENT_DELETED"
EVENTS_IMPORTED = "EVENTS_IMPORTED"


def _short_date(event: CalendarEvent) -> str:
    start = event.start_date
    return f"{start.day}/{start.month}/{start.year}"


def _event_snapshot(event: CalendarEvent) -> dict[str, Any]:
    return {
        "eventId": event.id,
        "title": event.title,
        "type": event.type,
        "startDate": event.to_dict()["start_date"],
        "caseId": event.case_id,
        "externalId": event.external_id,
    }


class ActivityLogger:
    """Audit trail writer. Failures are logged and never reach the caller."""

    def __init__(self, state_store: StateStore) -> None:
        self.state_store = state_store

    def log_activity(
        self,
        event_type: str,
        title: str,
        description: str,
        actor_id: str,
        *,
        entity_id: str | None = None,
        entity_type: str | None = None,
        previous_value: Any = None,
        new_value: Any = None,
    ) -> None:
        try:
            self.state_store.record_activity(
                activity_type=event_type,
                title=title,
                description=description,
                actor_id=actor_id,
                entity_id=entity_id,
                entity_type=entity_type,
                previous_value=previous_value,
                new_value=new_value,
            )
        except Exception:
            logger.warning("Could not record %s activity for %s", event_type, actor_id, exc_info=True)

    def _actor_name(self, actor_id: str) -> str:
        principal = self.state_store.get_principal(actor_id)
        return str((principal or {}).get("first_name") or "Usuario")

    def _case_suffix(self, case_id: str | None) -> str:
        if not case_id:
            return ""
        case = self.state_store.get_case(case_id)
        if not case:
            return ""
        return f' en el caso "{case["case_name"]}"'

    def event_activity(
        self,
        activity_type: str,
        event: CalendarEvent,
        actor_id: str,
        *,
        previous_value: Any = None,
        new_value: Any = None,
    ) -> None:
        try:
            actor = self._actor_name(actor_id)
            suffix = self._case_suffix(event.case_id)
        except Exception:
            logger.warning("Activity enrichment failed for event %s", event.id, exc_info=True)
            actor, suffix = "Usuario", ""

        if activity_type == EVENT_CREATED:
            title = f'Evento creado: "{event.title}"'
            description = f'{actor} creó un evento tipo "{event.type}" para {_short_date(event)}{suffix}'
            new_value = new_value if new_value is not None else _event_snapshot(event)
        elif activity_type == EVENT_UPDATED:
            title = f'Evento actualizado: "{event.title}"'
            description = f'{actor} actualizó el evento "{event.title}" del {_short_date(event)}{suffix}'
        elif activity_type == EVENT_DELETED:
            title = f'Evento eliminado: "{event.title}"'
            description = f'{actor} eliminó el evento "{event.title}" del {_short_date(event)}{suffix}'
            previous_value = previous_value if previous_value is not None else _event_snapshot(event)
        else:
            title = f'{activity_type}: "{event.title}"'
            description = f"{actor}{suffix}"

        self.log_activity(
            activity_type,
            title,
            description,
            actor_id,
            entity_id=event.case_id or event.id,
            entity_type="case" if event.case_id else "event",
            previous_value=previous_value,
            new_value=new_value,
        )

    def import_activity(self, actor_id: str, imported: list[CalendarEvent]) -> None:
        if not imported:
            return
        try:
            actor = self._actor_name(actor_id)
        except Exception:
            logger.warning("Activity enrichment failed for import by %s", actor_id, exc_info=True)
            actor = "Usuario"
        self.log_activity(
            EVENTS_IMPORTED,
            f"Eventos importados: {len(imported)}",
            f"{actor} importó {len(imported)} eventos desde el calendario remoto",
            actor_id,
            entity_type="event",
            new_value=[_event_snapshot(event) for event in imported],
        )
