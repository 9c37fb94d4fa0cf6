"""
Venue Reconciliation
====================

Creates or updates venues keyed by (name, address), then enriches them
with coordinates, city and photos. Enrichment is best-effort: geocoding
and photo failures are logged and the venue is kept as persisted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from trivia_ingest.core.text import is_blank, normalize_whitespace, slugify
from trivia_ingest.db.models import VenueDB
from trivia_ingest.ingestion.cities import find_or_create_city
from trivia_ingest.ingestion.geocoding import AddressResolver
from trivia_ingest.ingestion.photos import PhotoCache

logger = logging.getLogger(__name__)

# Attributes copied from incoming data when non-blank
VENUE_FIELDS = (
    "postcode",
    "phone",
    "website",
    "facebook",
    "instagram",
    "place_id",
)


@dataclass
class VenueUpsertResult:
    """Outcome of reconciling one venue."""

    venue: VenueDB | None = None
    errors: dict[str, str] = field(default_factory=dict)
    created: bool = False
    geocoded: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors and self.venue is not None


def _coerce_coordinate(value: Any) -> float | None:
    if is_blank(value):
        return None
    return float(value)


def validate_venue_attrs(attrs: Mapping[str, Any]) -> dict[str, str]:
    """
    Check incoming venue attributes.

    Returns:
        Field name -> error message (empty when valid)
    """
    errors: dict[str, str] = {}
    if is_blank(attrs.get("name")):
        errors["name"] = "can't be blank"
    if is_blank(attrs.get("address")):
        errors["address"] = "can't be blank"

    try:
        latitude = _coerce_coordinate(attrs.get("latitude"))
        longitude = _coerce_coordinate(attrs.get("longitude"))
    except (TypeError, ValueError):
        errors["coordinates"] = "must be numeric"
        return errors

    if (latitude is None) != (longitude is None):
        errors["coordinates"] = "latitude and longitude must both be present or both absent"
    elif latitude is not None:
        if not -90 <= latitude <= 90:
            errors["latitude"] = "must be between -90 and 90"
        if not -180 <= longitude <= 180:
            errors["longitude"] = "must be between -180 and 180"
    return errors


class VenueReconciler:
    """
    Upserts venues and runs best-effort enrichment.

    Args:
        session: Database session
        resolver: Address resolver; geocoding is skipped when None
        photo_cache: Photo cache; photo refresh is skipped when None
        lookup_timeout: Deadline in seconds for the address lookup (None waits)
    """

    def __init__(
        self,
        session: Session,
        resolver: AddressResolver | None = None,
        photo_cache: PhotoCache | None = None,
        lookup_timeout: float | None = None,
    ) -> None:
        self.session = session
        self.resolver = resolver
        self.photo_cache = photo_cache
        self.lookup_timeout = lookup_timeout

    def find_venue(self, name: str, address: str) -> VenueDB | None:
        return self.session.scalars(
            select(VenueDB).where(VenueDB.name == name, VenueDB.address == address)
        ).first()

    def _slug_taken(self, slug: str) -> bool:
        return self.session.scalars(select(VenueDB.id).where(VenueDB.slug == slug)).first() is not None

    def unique_slug(self, name: str, qualifier: str | None = None) -> str:
        """Slugify the name, qualifying it (then counting) on collision."""
        base = slugify(name) or "venue"
        if not self._slug_taken(base):
            return base
        if qualifier:
            qualified = f"{base}-{slugify(qualifier)}"
            if not self._slug_taken(qualified):
                return qualified
            base = qualified
        counter = 2
        while self._slug_taken(f"{base}-{counter}"):
            counter += 1
        return f"{base}-{counter}"

    async def upsert(self, attrs: Mapping[str, Any]) -> VenueUpsertResult:
        """
        Insert or merge a venue, then enrich it.

        Args:
            attrs: name, address and optional postcode, phone, website,
                   facebook, instagram, place_id, latitude, longitude

        Returns:
            VenueUpsertResult; ``errors`` is populated on invalid input
        """
        errors = validate_venue_attrs(attrs)
        if errors:
            logger.warning(f"Invalid venue data for {attrs.get('name')!r}: {errors}")
            return VenueUpsertResult(errors=errors)

        name = normalize_whitespace(attrs["name"])
        address = normalize_whitespace(attrs["address"])
        latitude = _coerce_coordinate(attrs.get("latitude"))
        longitude = _coerce_coordinate(attrs.get("longitude"))

        venue = self.find_venue(name, address)
        created = venue is None
        if venue is None:
            venue = VenueDB(
                name=name,
                address=address,
                slug=self.unique_slug(name, attrs.get("postcode")),
            )
            self.session.add(venue)
            logger.info(f"Creating venue {name} ({address})")

        for field_name in VENUE_FIELDS:
            value = attrs.get(field_name)
            if not is_blank(value):
                setattr(venue, field_name, value.strip() if isinstance(value, str) else value)
        if latitude is not None:
            venue.latitude, venue.longitude = latitude, longitude

        self.session.commit()

        result = VenueUpsertResult(venue=venue, created=created)
        if venue.latitude is None:
            result.geocoded = await self.apply_place_lookup(venue)

        if self.photo_cache is not None:
            await self.photo_cache.maybe_refresh(venue)

        return result

    async def apply_place_lookup(self, venue: VenueDB) -> bool:
        """
        Resolve the venue address and merge place id, coordinates,
        postcode and city into the venue.

        Returns:
            True if the lookup succeeded and was applied
        """
        if self.resolver is None:
            return False

        try:
            async with asyncio.timeout(self.lookup_timeout):
                result = await self.resolver.resolve(venue.address)
        except TimeoutError:
            logger.warning(
                f"Address lookup for venue {venue.id} timed out after {self.lookup_timeout}s"
            )
            return False

        if not result.ok:
            logger.warning(
                f"Could not resolve address for venue {venue.id}: "
                f"{result.error.value if result.error else 'unknown'} {result.message or ''}"
            )
            return False

        place = result.place
        if place.place_id and not venue.place_id:
            venue.place_id = place.place_id
        if place.location is not None and venue.latitude is None:
            venue.latitude, venue.longitude = place.location.lat, place.location.lng
        if place.postal_code is not None and not venue.postcode:
            venue.postcode = place.postal_code.name
        if venue.city_id is None:
            city = find_or_create_city(self.session, place)
            if city is not None:
                venue.city_id = city.id

        self.session.commit()
        return True
