"""
Sample Adapter Module
=====================

Offline adapter for pipeline validation without network access.
Serves venues from ``custom_config.venues`` in sources.yaml, or a small
built-in list, so the full discovery -> detail flow can be exercised.
"""

from __future__ import annotations

from typing import Any

from trivia_ingest.core.schedule import parse_entry_fee
from trivia_ingest.ingestion.adapters.base import BaseAdapter, NormalizedVenue

SAMPLE_VENUES: list[dict[str, Any]] = [
    {
        "name": "Pub A",
        "address": "1 High St",
        "schedule": "Wednesday 20:00",
    },
    {
        "name": "The Crown",
        "address": "12 Market Square, Oxford",
        "schedule": "Tuesday 19:30",
        "title": "Fortnightly Quiz at The Crown",
        "fee": "£2",
    },
    {
        "name": "The Anchor",
        "address": "3 Quay Street, Bristol",
        "schedule": "Thursday 20:00",
        "title": "First Thursday of the month quiz",
        "fee": "Free",
    },
]


class SampleAdapter(BaseAdapter):
    """Adapter returning static venues, for local runs and pipeline checks."""

    ADAPTER_NAME = "sample"
    ADAPTER_VERSION = "1.0.0"

    needs_detail_page = False

    async def discover(self) -> list[dict[str, Any]]:
        venues = self.config.get("venues")
        return [dict(venue) for venue in (venues if venues is not None else SAMPLE_VENUES)]

    def extract(self, raw: dict[str, Any], page: bytes | None = None) -> NormalizedVenue:
        name = raw.get("name", "")
        return NormalizedVenue(
            source_slug=self.source.slug,
            name=name,
            address=raw.get("address", ""),
            raw_title=raw.get("title") or f"Quiz at {name}",
            time_text=raw.get("schedule", ""),
            day_of_week=raw.get("day_of_week"),
            start_time=raw.get("start_time"),
            entry_fee_cents=parse_entry_fee(raw.get("fee")),
            postcode=raw.get("postcode"),
            latitude=raw.get("latitude"),
            longitude=raw.get("longitude"),
            description=raw.get("description"),
            source_url=raw.get("url") or f"{self.source.website_url}#{name}",
        )
