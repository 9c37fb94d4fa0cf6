"""
Event Reconciliation
====================

Creates, updates or leaves untouched the recurring event for a venue and
weekday, and records which source reported it.

Each call runs in one transaction. A lost race on the (venue, day) or
(event, source) unique constraints is retried once so the second writer
observes the first writer's row instead of failing.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, time
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trivia_ingest.core.enums import EventAction
from trivia_ingest.core.schedule import parse_schedule
from trivia_ingest.db.models import EventDB, EventSourceDB, VenueDB, as_utc

logger = logging.getLogger(__name__)

# Fields whose change turns an existing event into an update
EVENT_COMPARE_FIELDS = (
    "start_time",
    "frequency",
    "entry_fee_cents",
    "description",
    "hero_image_url",
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class EventData:
    """Event attributes as reported by a source."""

    raw_title: str
    source_url: str = ""
    time_text: str = ""
    day_of_week: int | None = None
    start_time: time | str | None = None
    entry_fee_cents: int | None = None
    description: str | None = None
    hero_image_url: str | None = None
    performer_name: str | None = None
    performer_image_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def _apply_performer(event: EventDB, event_data: EventData) -> None:
    """Carry over the host's name and photo; they never count as a change."""
    for name in ("performer_name", "performer_image_url"):
        value = getattr(event_data, name)
        if value and getattr(event, name) != value:
            setattr(event, name, value)


@dataclass
class EventResult:
    """Outcome of reconciling one event."""

    event: EventDB
    event_source: EventSourceDB
    action: EventAction


class EventReconciler:
    """
    Reconciles source events against the store.

    Errors propagate: an unparseable schedule raises ``ScheduleParseError``
    and database failures raise ``SQLAlchemyError`` after rollback.
    """

    def __init__(
        self,
        session: Session,
        clock: Callable[[], datetime] | None = None,
        max_conflict_retries: int = 1,
    ) -> None:
        self.session = session
        self._clock = clock or _utc_now
        self.max_conflict_retries = max_conflict_retries

    def process(self, venue: VenueDB, event_data: EventData, source_id: str) -> EventResult:
        """
        Upsert the event for a venue and its EventSource link.

        Args:
            venue: Persisted venue the event takes place at
            event_data: Event attributes from the source
            source_id: ID of the reporting source

        Returns:
            EventResult with the event, its source link and what was done
        """
        schedule = parse_schedule(
            event_data.time_text,
            day_of_week=event_data.day_of_week,
            start_time=event_data.start_time,
            frequency_text=event_data.raw_title,
        )
        attrs = {
            "name": event_data.raw_title,
            "day_of_week": schedule.day_of_week,
            "start_time": schedule.start_time,
            "frequency": schedule.frequency.value,
            "entry_fee_cents": event_data.entry_fee_cents,
            "description": event_data.description,
            "hero_image_url": event_data.hero_image_url,
        }

        attempt = 0
        while True:
            try:
                result = self._reconcile(venue.id, attrs, event_data, source_id)
                self.session.commit()
                return result
            except IntegrityError:
                self.session.rollback()
                if attempt >= self.max_conflict_retries:
                    raise
                attempt += 1
                logger.info(
                    f"Concurrent write on event for venue {venue.id}, day "
                    f"{schedule.day_of_week}; retrying"
                )
            except Exception:
                self.session.rollback()
                raise

    def _reconcile(
        self,
        venue_id: str,
        attrs: dict[str, Any],
        event_data: EventData,
        source_id: str,
    ) -> EventResult:
        event = self.session.scalars(
            select(EventDB)
            .where(EventDB.venue_id == venue_id, EventDB.day_of_week == attrs["day_of_week"])
            .with_for_update()
        ).first()

        if event is None:
            event = EventDB(venue_id=venue_id, **attrs)
            _apply_performer(event, event_data)
            self.session.add(event)
            self.session.flush()
            action = EventAction.CREATED
            logger.info(f"Created event {event.name!r} for venue {venue_id}")
        else:
            changes = {
                name: attrs[name]
                for name in EVENT_COMPARE_FIELDS
                if getattr(event, name) != attrs[name]
            }
            _apply_performer(event, event_data)
            if changes:
                for name, value in changes.items():
                    setattr(event, name, value)
                action = EventAction.UPDATED
                logger.info(f"Updated event {event.id}: {sorted(changes)}")
            else:
                action = EventAction.UNCHANGED

        event_source = self._upsert_event_source(event, event_data, source_id)
        return EventResult(event=event, event_source=event_source, action=action)

    def _upsert_event_source(
        self, event: EventDB, event_data: EventData, source_id: str
    ) -> EventSourceDB:
        now = self._clock()
        metadata = json.dumps(event_data.metadata, default=str)

        event_source = self.session.scalars(
            select(EventSourceDB).where(
                EventSourceDB.event_id == event.id, EventSourceDB.source_id == source_id
            )
        ).first()

        if event_source is None:
            event_source = EventSourceDB(
                event_id=event.id,
                source_id=source_id,
                source_url=event_data.source_url,
                last_seen_at=now,
                metadata_json=metadata,
            )
            self.session.add(event_source)
        else:
            event_source.source_url = event_data.source_url or event_source.source_url
            event_source.metadata_json = metadata
            event_source.last_seen_at = max(as_utc(event_source.last_seen_at), now)

        self.session.flush()
        return event_source
