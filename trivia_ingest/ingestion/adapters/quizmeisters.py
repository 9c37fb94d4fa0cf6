"""
Quizmeisters Adapter
====================

Venue list from the StoreRocket locations API; descriptions, host and
social links scraped from each venue's page.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from bs4 import BeautifulSoup, Tag

from trivia_ingest.core.schedule import (
    ScheduleParseError,
    format_time_text,
    parse_day_of_week,
    parse_loose_time,
)
from trivia_ingest.core.text import normalize_whitespace
from trivia_ingest.ingestion.adapters.base import AdapterError, BaseAdapter, NormalizedVenue

logger = logging.getLogger(__name__)

DEFAULT_LISTING_URL = "https://storerocket.io/api/user/kDJ3BbK4mn/locations"

SPECIFIC_DESCRIPTION_SELECTOR = (
    ".venue-description.w-richtext:not(.trivia-generic):not(.bingo-generic)"
    ":not(.survey-generic) p"
)
GENERIC_DESCRIPTION_SELECTOR = ".venue-description.trivia-generic.w-richtext p"

# Webflow template filler left on pages without a real description
LOREM_IPSUM_PREFIX = (
    "Lorem ipsum dolor sit amet, consectetur adipiscing elit, sed do eiusmod "
    "tempor incididunt ut labore e"
)

_PHONE_PATTERN = re.compile(r"^\+?[\d\s-]{8,}$")
_SOCIAL_KINDS = ("website", "facebook", "instagram")


def get_trivia_time(location: dict[str, Any]) -> str:
    """
    Schedule text for a StoreRocket location.

    Prefers ``custom_fields.trivia_night``, then any ``fields[]`` entry
    whose name mentions trivia or quiz.
    """
    custom_fields = location.get("custom_fields")
    if isinstance(custom_fields, dict):
        value = custom_fields.get("trivia_night")
        if isinstance(value, str) and value.strip():
            return value.strip()

    for entry in location.get("fields") or []:
        if not isinstance(entry, dict):
            continue
        name = entry.get("name")
        value = entry.get("value")
        if not isinstance(name, str) or not isinstance(value, str):
            continue
        lowered = name.lower()
        if ("trivia" in lowered or "quiz" in lowered) and value.strip():
            return value.strip()

    return ""


def _paragraph_text(soup: BeautifulSoup, selector: str) -> str:
    text = "\n\n".join(p.get_text() for p in soup.select(selector)).strip()
    if text.startswith(LOREM_IPSUM_PREFIX):
        return ""
    return text


def _extract_performer(soup: BeautifulSoup) -> tuple[str | None, str | None]:
    host_info = soup.select(".host-info")
    if not host_info:
        return None, None

    name = " ".join(
        el.get_text().strip() for block in host_info for el in block.select(".host-name")
    ).strip()

    image_url = None
    for block in host_info:
        for img in block.select(".host-image"):
            classes = " ".join(img.get("class") or [])
            if "placeholder" in classes or "w-condition-invisible" in classes:
                continue
            image_url = img.get("src")
            break
        if image_url:
            break

    return name or None, image_url


def _extract_social_links(soup: BeautifulSoup) -> dict[str, str | None]:
    links: dict[str, str | None] = dict.fromkeys(_SOCIAL_KINDS)
    for anchor in soup.select(".icon-block a"):
        href = anchor.get("href")
        for kind in _SOCIAL_KINDS:
            if anchor.select_one(f"img[alt*='{kind}']") is not None:
                links[kind] = href
                break
    return links


def _extract_phone(soup: BeautifulSoup) -> str | None:
    for paragraph in soup.select(".venue-block .paragraph"):
        text = paragraph.get_text()
        if _PHONE_PATTERN.match(text.strip()):
            return text.strip()
    return None


def extract_venue_page(page: bytes | str) -> dict[str, Any]:
    """
    Scrape a Quizmeisters venue page.

    Returns:
        Dict with description, hero_image_url, performer_name,
        performer_image_url, website, facebook, instagram, phone, on_break
    """
    soup = BeautifulSoup(page, "lxml")

    description = _paragraph_text(soup, SPECIFIC_DESCRIPTION_SELECTOR)
    if not description:
        description = _paragraph_text(soup, GENERIC_DESCRIPTION_SELECTOR)

    hero = soup.select_one(".venue-photo")
    performer_name, performer_image_url = _extract_performer(soup)

    return {
        "description": description or None,
        "hero_image_url": hero.get("src") if isinstance(hero, Tag) else None,
        "performer_name": performer_name,
        "performer_image_url": performer_image_url,
        "phone": _extract_phone(soup),
        "on_break": soup.select_one(".on-break") is not None,
        **_extract_social_links(soup),
    }


class QuizmeistersAdapter(BaseAdapter):
    """Adapter for the Quizmeisters StoreRocket listing and venue pages."""

    ADAPTER_NAME = "quizmeisters"
    ADAPTER_VERSION = "1.0.0"

    needs_detail_page = True

    @property
    def listing_url(self) -> str:
        return self.source.listing_url or DEFAULT_LISTING_URL

    async def discover(self) -> list[dict[str, Any]]:
        """Fetch StoreRocket locations (``results.locations``)."""
        result = await self.crawler.fetch(self.listing_url, timeout=15.0)
        if not result.success:
            raise AdapterError(f"Failed to fetch Quizmeisters venues: {result.error}")

        try:
            data = result.json()
        except ValueError as e:
            raise AdapterError("Failed to parse JSON response") from e

        locations = (data.get("results") or {}).get("locations") if isinstance(data, dict) else None
        if not isinstance(locations, list):
            raise AdapterError("Unexpected response format")

        logger.info(f"Fetched {len(locations)} venues from Quizmeisters")
        return locations

    def detail_url(self, raw: dict[str, Any]) -> str | None:
        return raw.get("url") or None

    def extract(self, raw: dict[str, Any], page: bytes | None = None) -> NormalizedVenue:
        name = normalize_whitespace(raw.get("name"))
        time_text = get_trivia_time(raw)

        venue = NormalizedVenue(
            source_slug=self.source.slug,
            name=name,
            address=normalize_whitespace(raw.get("address")),
            raw_title=name,
            time_text=time_text,
            postcode=raw.get("postcode") or None,
            latitude=raw.get("lat"),
            longitude=raw.get("lng"),
            phone=raw.get("phone") or None,
            source_url=raw.get("url") or None,
        )
        self._normalize_schedule(venue)

        if page is not None:
            details = extract_venue_page(page)
            venue.description = details["description"]
            venue.hero_image_url = details["hero_image_url"]
            venue.performer_name = details["performer_name"]
            venue.performer_image_url = details["performer_image_url"]
            venue.website = details["website"]
            venue.facebook = details["facebook"]
            venue.instagram = details["instagram"]
            venue.phone = details["phone"] or venue.phone
            venue.on_break = details["on_break"]

        return venue

    def _normalize_schedule(self, venue: NormalizedVenue) -> None:
        """Turn "Wednesday 7:00pm" style text into canonical "Wednesday 19:00"."""
        if not venue.time_text:
            logger.warning(f"No trivia day/time found for venue: {venue.name}")
            return
        try:
            day = parse_day_of_week(venue.time_text)
        except ScheduleParseError:
            logger.warning(f"No leading weekday in {venue.time_text!r} for {venue.name}")
            return
        start = parse_loose_time(venue.time_text)
        if start is None:
            return
        venue.day_of_week = day
        venue.start_time = start.strftime("%H:%M")
        venue.time_text = format_time_text(day, start)
