"""
City Reference Data
===================

Creates countries and cities on demand from resolved places and keeps
city coordinates centred on their venues.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trivia_ingest.core.schema import NormalizedPlace
from trivia_ingest.core.text import slugify
from trivia_ingest.db.models import CityDB, CountryDB, VenueDB

logger = logging.getLogger(__name__)


def find_or_create_country(session: Session, name: str, code: str | None = None) -> CountryDB:
    """Look up a country by name, creating it if needed (flushed, not committed)."""
    country = session.scalars(select(CountryDB).where(CountryDB.name == name)).first()
    if country is None:
        country = CountryDB(name=name, code=code)
        session.add(country)
        session.flush()
        logger.info(f"Created country {name}")
    elif code and not country.code:
        country.code = code
    return country


def _unique_city_slug(session: Session, name: str, country: CountryDB) -> str:
    base = slugify(name) or "city"
    candidates = [base, f"{base}-{slugify(country.code or country.name)}"]
    for candidate in candidates:
        if session.scalars(select(CityDB.id).where(CityDB.slug == candidate)).first() is None:
            return candidate

    counter = 2
    while True:
        candidate = f"{candidates[-1]}-{counter}"
        if session.scalars(select(CityDB.id).where(CityDB.slug == candidate)).first() is None:
            return candidate
        counter += 1


def find_or_create_city(session: Session, place: NormalizedPlace) -> CityDB | None:
    """
    Return the City for a resolved place, creating City and Country as needed.

    Returns None when the place lacks a country or city name.
    """
    if not place.has_required_fields():
        return None

    country = find_or_create_country(session, place.country.name, place.country.code)
    city = session.scalars(
        select(CityDB).where(CityDB.name == place.city.name, CityDB.country_id == country.id)
    ).first()
    if city is None:
        city = CityDB(
            name=place.city.name,
            slug=_unique_city_slug(session, place.city.name, country),
            country_id=country.id,
        )
        session.add(city)
        session.flush()
        logger.info(f"Created city {city.name} ({country.name})")
    return city


def recalibrate_city_coordinates(session: Session) -> dict[str, int]:
    """
    Set each city's coordinates to the average of its venues.

    Cities without geocoded venues are skipped.

    Returns:
        Dict with total_cities, updated, skipped, failed and duration_ms
    """
    started = time.monotonic()
    logger.info("Starting city coordinates update...")

    averages = {
        city_id: (lat, lng)
        for city_id, lat, lng in session.execute(
            select(VenueDB.city_id, func.avg(VenueDB.latitude), func.avg(VenueDB.longitude))
            .where(
                VenueDB.city_id.is_not(None),
                VenueDB.latitude.is_not(None),
                VenueDB.longitude.is_not(None),
            )
            .group_by(VenueDB.city_id)
        )
    }

    cities = session.scalars(select(CityDB)).all()
    updated = skipped = failed = 0
    for city in cities:
        coordinates = averages.get(city.id)
        if coordinates is None:
            skipped += 1
            continue
        try:
            city.latitude, city.longitude = float(coordinates[0]), float(coordinates[1])
            session.commit()
            updated += 1
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to update {city.name} coordinates: {e}")
            failed += 1

    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        f"City coordinate update completed in {duration_ms}ms: {len(cities)} cities, "
        f"{updated} updated, {skipped} skipped, {failed} failed"
    )
    return {
        "total_cities": len(cities),
        "updated": updated,
        "skipped": skipped,
        "failed": failed,
        "duration_ms": duration_ms,
    }
