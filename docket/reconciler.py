from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from docket.bridge_client import remote_event_from_wire
from docket.errors import PersistenceError
from docket.event_store import EventStore
from docket.models import (
    DEFAULT_EVENT_TYPE,
    EVENT_TYPES,
    CalendarEvent,
    RemoteEvent,
    new_event_id,
    utc_now,
)


logger = logging.getLogger(__name__)


@dataclass
class ImportOutcome:
    received: int = 0
    imported: int = 0
    existing: int = 0
    skipped: int = 0
    imported_events: list[CalendarEvent] = field(default_factory=list)


def event_from_remote(remote: RemoteEvent, *, principal_id: str, now: datetime | None = None) -> CalendarEvent:
    now = now or utc_now()
    event_type = remote.type if remote.type in EVENT_TYPES else DEFAULT_EVENT_TYPE
    return CalendarEvent(
        id=new_event_id(),
        title=remote.title,
        description=remote.description,
        location=remote.location,
        start_date=remote.start_date,
        end_date=remote.end_date,
        type=event_type,
        external_id=remote.external_id,
        email_notification_enabled=True,
        created_by=principal_id,
        created_at=now,
        updated_at=now,
    )


def import_remote_events(
    *,
    store: EventStore,
    items: Iterable[Any],
    principal_id: str,
    now: datetime | None = None,
) -> ImportOutcome:
    """Merge previously unseen remote events into the local store.

    Rows whose ``external_id`` is already stored are left untouched: local
    content always wins over the remote copy. Running the import twice over
    the same remote set imports nothing the second time.
    """
    outcome = ImportOutcome()
    for item in items:
        outcome.received += 1
        try:
            remote = remote_event_from_wire(item)
        except ValueError as exc:
            outcome.skipped += 1
            logger.warning("Skipping remote event: %s", exc)
            continue

        candidate = event_from_remote(remote, principal_id=principal_id, now=now)
        try:
            if store.find_by_external_id(remote.external_id) is not None:
                outcome.existing += 1
                continue
            inserted = store.insert_if_external_id_absent(candidate)
        except PersistenceError:
            # One unstorable item must not block every later pull.
            outcome.skipped += 1
            logger.warning("Could not store remote event %s", remote.external_id, exc_info=True)
            continue
        if inserted:
            outcome.imported += 1
            outcome.imported_events.append(candidate)
        else:
            # Another pull stored it between the lookup and the insert.
            outcome.existing += 1
    return outcome
