"""Pydantic v2 models for data exchanged between pipeline components."""

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, Field

from trivia_ingest.core.enums import ResultStatus


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


class GeoPoint(BaseModel):
    """Latitude/longitude pair."""

    lat: float
    lng: float


class PlaceComponent(BaseModel):
    """A named address component such as a country or city."""

    name: str
    code: str | None = None


class NormalizedPlace(BaseModel):
    """
    Address data normalized from a mapping API response.

    Produced by the address resolver from either the place search or the
    geocoding endpoint.
    """

    name: str | None = None
    formatted_address: str | None = None
    place_id: str | None = None
    location: GeoPoint | None = None
    country: PlaceComponent | None = None
    city: PlaceComponent | None = None
    state: PlaceComponent | None = None
    postal_code: PlaceComponent | None = None

    def has_required_fields(self) -> bool:
        """True when both a country name and a city name are present."""
        return bool(
            self.country is not None
            and self.country.name
            and self.city is not None
            and self.city.name
        )

    def missing_fields(self) -> list[str]:
        missing = []
        if self.country is None or not self.country.name:
            missing.append("country")
        if self.city is None or not self.city.name:
            missing.append("city")
        return missing

    def fill_gaps(self, other: "NormalizedPlace") -> "NormalizedPlace":
        """
        Return a copy where empty fields are filled from ``other``.

        Populated fields on ``self`` are never overwritten.
        """
        updates: dict[str, Any] = {}
        for field_name in type(self).model_fields:
            if getattr(self, field_name) is None:
                value = getattr(other, field_name)
                if value is not None:
                    updates[field_name] = value
        return self.model_copy(update=updates)


class PlaceImage(BaseModel):
    """Metadata for one cached place photo."""

    google_ref: str | None = None
    original_url: str
    local_path: str | None = None
    fetched_at: datetime = Field(default_factory=_utc_now)
    position: Annotated[int, Field(ge=1, le=5)]


class JobOutcome(BaseModel):
    """Persisted summary of a single job run."""

    job_id: str
    job_name: str
    processed_at: datetime = Field(default_factory=_utc_now)
    result_status: ResultStatus = ResultStatus.UNKNOWN
    venue_id: str | None = None
    event_id: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
