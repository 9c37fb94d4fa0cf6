"""
Inquizition Adapter
===================

The find-a-quiz page is rendered client-side, so discovery asks the Zyte
extract API for browser-rendered HTML and parses the store locator
blocks. Every listing carries its full schedule, so there is no detail
page to fetch.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Any

from bs4 import BeautifulSoup

from trivia_ingest.core.schedule import (
    ScheduleParseError,
    parse_day_of_week,
    parse_entry_fee,
    parse_loose_time,
)
from trivia_ingest.core.text import normalize_whitespace
from trivia_ingest.ingestion.adapters.base import AdapterError, BaseAdapter, NormalizedVenue
from trivia_ingest.ingestion.registry import ConfigurationError

if TYPE_CHECKING:
    from trivia_ingest.db.models import VenueDB

logger = logging.getLogger(__name__)

BASE_URL = "https://inquizition.com"
FIND_QUIZ_URL = f"{BASE_URL}/find-a-quiz/"
ZYTE_API_URL = "https://api.zyte.com/v1/extract"
ZYTE_TIMEOUT = 60.0
MAX_RETRIES = 3
STANDARD_FEE_TEXT = "£2.50"


def parse_store_locator(html: str | bytes) -> list[dict[str, Any]]:
    """
    Parse ``.storelocator-store`` blocks into raw venue dicts.

    Blocks without a store name are skipped.
    """
    soup = BeautifulSoup(html, "lxml")
    venues = []
    for store in soup.select(".storelocator-store"):
        name_el = store.select_one(".storelocator-storename")
        title = name_el.get_text().strip() if name_el else ""
        if not title:
            continue

        description_el = store.select_one(".storelocator-description")
        address_el = store.select_one(".storelocator-address")
        phone_el = store.select_one(".storelocator-phone a")
        email_el = store.select_one(".storelocator-email a")

        address_lines = []
        if address_el is not None:
            address_lines = [
                line.strip() for line in address_el.get_text("\n").split("\n") if line.strip()
            ]

        email = None
        href = email_el.get("href") if email_el is not None else None
        if href and href.startswith("mailto:"):
            email = href[len("mailto:"):]

        venues.append(
            {
                "name": title,
                "address": ", ".join(address_lines),
                "time_text": description_el.get_text().strip() if description_el else "",
                "phone": phone_el.get_text().strip() if phone_el else None,
                "email": email,
            }
        )
    return venues


class InquizitionAdapter(BaseAdapter):
    """Adapter for the Inquizition store locator (via Zyte)."""

    ADAPTER_NAME = "inquizition"
    ADAPTER_VERSION = "1.0.0"

    needs_detail_page = False

    def _api_key(self) -> str:
        api_key = os.environ.get("ZYTE_API_KEY") or self.config.get("zyte_api_key")
        if not api_key:
            logger.error("ZYTE_API_KEY not found in environment")
            raise ConfigurationError("ZYTE_API_KEY is not configured")
        return api_key

    async def discover(self) -> list[dict[str, Any]]:
        """
        Render the find-a-quiz page through Zyte and parse its venues.

        Retries up to three times with a linearly growing pause.

        Raises:
            ConfigurationError: If the Zyte key is missing
            AdapterError: If every attempt fails
        """
        api_key = self._api_key()
        payload = {
            "url": self.source.listing_url or FIND_QUIZ_URL,
            "browserHtml": True,
            "javascript": True,
            "viewport": {"width": 1920, "height": 1080},
        }
        backoff = float(self.config.get("retry_backoff_seconds", 1.0))

        last_error = "unknown error"
        for attempt in range(MAX_RETRIES + 1):
            if attempt > 0:
                logger.info(
                    f"Retrying Zyte request (attempt {attempt}/{MAX_RETRIES}). "
                    f"Previous error: {last_error}"
                )
                await asyncio.sleep(backoff * attempt)

            result = await self.crawler.post_json(
                ZYTE_API_URL, payload, auth=(api_key, ""), timeout=ZYTE_TIMEOUT
            )
            if not result.success:
                last_error = result.error or f"HTTP {result.status_code}"
                logger.error(f"Zyte API error: {last_error}")
                continue

            try:
                html = result.json().get("browserHtml")
            except (ValueError, AttributeError):
                html = None
            if not html:
                last_error = "JSON parsing failed"
                logger.error("Failed to parse Zyte response")
                continue

            venues = parse_store_locator(html)
            logger.info(f"Found {len(venues)} venues")
            return venues

        raise AdapterError(f"Max retries ({MAX_RETRIES}) reached. Last error: {last_error}")

    def extract(self, raw: dict[str, Any], page: bytes | None = None) -> NormalizedVenue:
        name = normalize_whitespace(raw.get("name"))
        time_text = (raw.get("time_text") or "").strip()

        venue = NormalizedVenue(
            source_slug=self.source.slug,
            name=name,
            address=normalize_whitespace(raw.get("address")),
            raw_title=f"Inquizition Quiz at {name}",
            time_text=time_text,
            entry_fee_cents=parse_entry_fee(raw.get("entry_fee") or STANDARD_FEE_TEXT),
            phone=raw.get("phone") or None,
            email=raw.get("email") or None,
            description=raw.get("description") or time_text or None,
            hero_image_url=raw.get("hero_image_url"),
            source_url=raw.get("source_url") or None,
        )

        # Explicit day/time supplied with the listing win over the text
        if raw.get("day_of_week") is not None:
            venue.day_of_week = int(raw["day_of_week"])
        if raw.get("start_time"):
            venue.start_time = str(raw["start_time"])[:5]

        if venue.day_of_week is None or venue.start_time is None:
            self._normalize_schedule(venue)
        return venue

    def _normalize_schedule(self, venue: NormalizedVenue) -> None:
        """Fill missing day/time from text such as "Sundays, 7pm"."""
        if venue.day_of_week is None:
            try:
                venue.day_of_week = parse_day_of_week(venue.time_text)
            except ScheduleParseError:
                logger.warning(f"Could not parse day from {venue.time_text!r} for {venue.name}")
        if venue.start_time is None:
            start = parse_loose_time(venue.time_text)
            if start is not None:
                venue.start_time = start.strftime("%H:%M")

    def source_url_for(self, venue: VenueDB) -> str | None:
        return f"{BASE_URL}/find-a-quiz/venue/{venue.id}"
