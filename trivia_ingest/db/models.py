"""SQLAlchemy ORM models for the trivia venue store."""

import json
from datetime import UTC, datetime, time
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


def as_utc(value: datetime | None) -> datetime | None:
    """
    Treat naive datetimes loaded from SQLite as UTC.

    SQLite drops tzinfo on storage, so values read back are naive even
    though everything is written in UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class CountryDB(Base):
    """Country reference data, created on demand from geocoding results."""

    __tablename__ = "countries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    cities: Mapped[list["CityDB"]] = relationship("CityDB", back_populates="country")

    def __repr__(self) -> str:
        return f"<CountryDB(id={self.id}, name='{self.name}')>"


class CityDB(Base):
    """
    City reference data.

    Coordinates are the average of the city's venues and are maintained
    by the recalibration job.
    """

    __tablename__ = "cities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    country_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("countries.id"), nullable=False, index=True
    )
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    country: Mapped["CountryDB"] = relationship("CountryDB", back_populates="cities")
    venues: Mapped[list["VenueDB"]] = relationship("VenueDB", back_populates="city")

    def __repr__(self) -> str:
        return f"<CityDB(id={self.id}, name='{self.name}')>"


class VenueDB(Base):
    """
    A physical venue hosting quiz nights.

    Venues are identified by (name, address). Photo metadata lives in
    ``google_place_images_json`` as an ordered list of at most five entries.
    """

    __tablename__ = "venues"
    __table_args__ = (UniqueConstraint("name", "address", name="uq_venues_name_address"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    postcode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    place_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    website: Mapped[str | None] = mapped_column(Text, nullable=True)
    facebook: Mapped[str | None] = mapped_column(Text, nullable=True)
    instagram: Mapped[str | None] = mapped_column(Text, nullable=True)

    google_place_images_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    photos_refreshed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    city_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("cities.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    city: Mapped["CityDB | None"] = relationship("CityDB", back_populates="venues")
    events: Mapped[list["EventDB"]] = relationship("EventDB", back_populates="venue")

    @property
    def google_place_images(self) -> list[dict[str, Any]]:
        return json.loads(self.google_place_images_json or "[]")

    @google_place_images.setter
    def google_place_images(self, images: list[dict[str, Any]]) -> None:
        self.google_place_images_json = json.dumps(images)

    def __repr__(self) -> str:
        return f"<VenueDB(id={self.id}, name='{self.name}')>"


class SourceDB(Base):
    """An upstream listing source, seeded from config/sources.yaml."""

    __tablename__ = "sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    website_url: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    event_sources: Mapped[list["EventSourceDB"]] = relationship(
        "EventSourceDB", back_populates="source"
    )

    def __repr__(self) -> str:
        return f"<SourceDB(id={self.id}, slug='{self.slug}')>"


class EventDB(Base):
    """
    A recurring quiz night at a venue.

    At most one row exists per (venue, day of week). A schedule moving to
    another day creates a new row and leaves the old one in place.
    """

    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("venue_id", "day_of_week", name="uq_events_venue_day"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    venue_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("venues.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 1=Mon..7=Sun
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), default="weekly")
    entry_fee_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = free
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    hero_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    performer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    performer_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    venue: Mapped["VenueDB"] = relationship("VenueDB", back_populates="events")
    event_sources: Mapped[list["EventSourceDB"]] = relationship(
        "EventSourceDB", back_populates="event"
    )

    def __repr__(self) -> str:
        return f"<EventDB(id={self.id}, venue_id={self.venue_id}, day={self.day_of_week})>"


class EventSourceDB(Base):
    """Provenance link recording which source last reported an event."""

    __tablename__ = "event_sources"
    __table_args__ = (
        UniqueConstraint("event_id", "source_id", name="uq_event_sources_event_source"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id"), nullable=False, index=True
    )
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sources.id"), nullable=False, index=True
    )
    source_url: Mapped[str] = mapped_column(Text, default="")
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    event: Mapped["EventDB"] = relationship("EventDB", back_populates="event_sources")
    source: Mapped["SourceDB"] = relationship("SourceDB", back_populates="event_sources")

    @property
    def metadata_dict(self) -> dict[str, Any]:
        return json.loads(self.metadata_json or "{}")

    def __repr__(self) -> str:
        return f"<EventSourceDB(event_id={self.event_id}, source_id={self.source_id})>"


class JobOutcomeDB(Base):
    """Persisted outcome of a discovery, detail or maintenance job run."""

    __tablename__ = "job_outcomes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    job_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    result_status: Mapped[str] = mapped_column(String(20), default="unknown")
    venue_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    event_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object

    @property
    def metadata_dict(self) -> dict[str, Any]:
        return json.loads(self.metadata_json or "{}")

    def __repr__(self) -> str:
        return f"<JobOutcomeDB(job_id={self.job_id}, status={self.result_status})>"
