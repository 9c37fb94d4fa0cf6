"""Tests for event reconciliation."""

from datetime import UTC, datetime, time, timedelta

import pytest
from sqlalchemy import func, select

from trivia_ingest.core.enums import EventAction
from trivia_ingest.core.schedule import ScheduleParseError
from trivia_ingest.db.models import EventDB, EventSourceDB, SourceDB, VenueDB, as_utc
from trivia_ingest.ingestion.events import EventData, EventReconciler


class SteppingClock:
    """Clock that advances one minute per call."""

    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
def venue(session) -> VenueDB:
    row = VenueDB(name="Pub A", slug="pub-a", address="1 High St")
    session.add(row)
    session.commit()
    return row


def _data(**overrides) -> EventData:
    values = {
        "raw_title": "Quiz at Pub A",
        "source_url": "https://example.com/pub-a",
        "time_text": "Wednesday 20:00",
        "entry_fee_cents": 200,
        "metadata": {"raw_title": "Quiz at Pub A"},
    }
    values.update(overrides)
    return EventData(**values)


def _count(session, model) -> int:
    return session.scalar(select(func.count()).select_from(model))


class TestEventReconciler:
    """Tests for EventReconciler.process."""

    def test_creates_event_and_source_link(self, session, venue, source) -> None:
        result = EventReconciler(session).process(venue, _data(), source.id)

        assert result.action == EventAction.CREATED
        assert result.event.day_of_week == 3
        assert result.event.start_time == time(20, 0)
        assert result.event.frequency == "weekly"
        assert result.event.entry_fee_cents == 200
        assert result.event_source.source_url == "https://example.com/pub-a"
        assert result.event_source.metadata_dict == {"raw_title": "Quiz at Pub A"}

    def test_reprocessing_is_idempotent(self, session, venue, source) -> None:
        """Same input twice: one event, one link, strictly later last_seen_at."""
        reconciler = EventReconciler(session, clock=SteppingClock())

        first = reconciler.process(venue, _data(), source.id)
        first_seen = as_utc(first.event_source.last_seen_at)
        second = reconciler.process(venue, _data(), source.id)

        assert second.action == EventAction.UNCHANGED
        assert second.event.id == first.event.id
        assert _count(session, EventDB) == 1
        assert _count(session, EventSourceDB) == 1
        assert as_utc(second.event_source.last_seen_at) > first_seen

    def test_last_seen_never_moves_backwards(self, session, venue, source) -> None:
        times = iter(
            [datetime(2026, 3, 2, tzinfo=UTC), datetime(2026, 3, 1, tzinfo=UTC)]
        )
        reconciler = EventReconciler(session, clock=lambda: next(times))

        reconciler.process(venue, _data(), source.id)
        result = reconciler.process(venue, _data(), source.id)

        assert as_utc(result.event_source.last_seen_at) == datetime(2026, 3, 2, tzinfo=UTC)

    def test_changed_time_updates(self, session, venue, source) -> None:
        reconciler = EventReconciler(session)
        first = reconciler.process(venue, _data(), source.id)
        second = reconciler.process(venue, _data(time_text="Wednesday 19:30"), source.id)

        assert second.action == EventAction.UPDATED
        assert second.event.id == first.event.id
        assert second.event.start_time == time(19, 30)

    def test_changed_fee_updates(self, session, venue, source) -> None:
        reconciler = EventReconciler(session)
        reconciler.process(venue, _data(), source.id)
        result = reconciler.process(venue, _data(entry_fee_cents=None), source.id)

        assert result.action == EventAction.UPDATED
        assert result.event.entry_fee_cents is None

    def test_day_change_creates_new_version(self, session, venue, source) -> None:
        """Moving to another weekday keeps the old event and adds a new one."""
        reconciler = EventReconciler(session)
        wednesday = reconciler.process(
            venue,
            _data(description="Pub quiz", hero_image_url="https://example.com/a.jpg"),
            source.id,
        )
        fields = (
            "start_time",
            "frequency",
            "entry_fee_cents",
            "description",
            "hero_image_url",
            "updated_at",
        )
        session.refresh(wednesday.event)
        before = {name: getattr(wednesday.event, name) for name in fields}

        thursday = reconciler.process(
            venue,
            _data(
                raw_title="Fortnightly Quiz at Pub A",
                time_text="Thursday 19:00",
                entry_fee_cents=500,
                description="Moved to Thursdays",
                hero_image_url="https://example.com/b.jpg",
            ),
            source.id,
        )

        assert thursday.action == EventAction.CREATED
        assert thursday.event.id != wednesday.event.id
        days = sorted(session.scalars(select(EventDB.day_of_week)).all())
        assert days == [3, 4]

        session.expire_all()
        old = session.get(EventDB, wednesday.event.id)
        assert {name: getattr(old, name) for name in fields} == before

    def test_frequency_from_title(self, session, venue, source) -> None:
        result = EventReconciler(session).process(
            venue, _data(raw_title="Fortnightly Quiz at Pub A"), source.id
        )
        assert result.event.frequency == "biweekly"

    def test_performer_recorded(self, session, venue, source) -> None:
        reconciler = EventReconciler(session)
        reconciler.process(venue, _data(performer_name="Sam"), source.id)
        result = reconciler.process(venue, _data(performer_name="Alex"), source.id)

        assert result.event.performer_name == "Alex"
        assert result.action == EventAction.UNCHANGED

    def test_performer_image_recorded(self, session, venue, source) -> None:
        reconciler = EventReconciler(session)
        created = reconciler.process(
            venue, _data(performer_image_url="https://example.com/sam.jpg"), source.id
        )
        assert created.event.performer_image_url == "https://example.com/sam.jpg"

        result = reconciler.process(
            venue, _data(performer_image_url="https://example.com/alex.jpg"), source.id
        )
        assert result.event.performer_image_url == "https://example.com/alex.jpg"
        assert result.action == EventAction.UNCHANGED

        # A missing photo does not clear the stored one
        reconciler.process(venue, _data(), source.id)
        assert result.event.performer_image_url == "https://example.com/alex.jpg"

    def test_two_sources_share_event(self, session, venue, source) -> None:
        other = SourceDB(name="Other", slug="other")
        session.add(other)
        session.commit()

        reconciler = EventReconciler(session)
        first = reconciler.process(venue, _data(), source.id)
        second = reconciler.process(venue, _data(), other.id)

        assert second.event.id == first.event.id
        assert _count(session, EventSourceDB) == 2

    def test_unparseable_schedule_propagates(self, session, venue, source) -> None:
        with pytest.raises(ScheduleParseError):
            EventReconciler(session).process(venue, _data(time_text="Some evenings"), source.id)
        assert _count(session, EventDB) == 0

    def test_explicit_day_beats_title_and_text(self, session, venue, source) -> None:
        """
        Caller-supplied day and time are used even when the title and
        schedule text say otherwise; the disagreement is not detected.
        """
        data = _data(
            raw_title="Wednesday Quiz at Pub A",
            time_text="Wednesday 20:00",
            day_of_week=5,
            start_time="18:00",
        )
        result = EventReconciler(session).process(venue, data, source.id)

        assert result.event.day_of_week == 5
        assert result.event.start_time == time(18, 0)
        assert result.event.name == "Wednesday Quiz at Pub A"
