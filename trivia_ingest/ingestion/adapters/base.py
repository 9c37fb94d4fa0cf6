"""
Adapter Base Module
===================

Defines the abstract base class for source-specific adapters.
Adapters are responsible for:
1. Discovering the venue list published by a source
2. Extracting a normalized venue and event from a listing entry and,
   where the source has one, its detail page
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

from trivia_ingest.core.schedule import DAY_NAMES
from trivia_ingest.ingestion.events import EventData

if TYPE_CHECKING:
    from trivia_ingest.db.models import VenueDB
    from trivia_ingest.ingestion.crawler import Crawler, FetchResult
    from trivia_ingest.ingestion.registry import SourceConfig


class AdapterError(Exception):
    """Raised when a source's listing cannot be fetched or understood."""


@dataclass
class NormalizedVenue:
    """
    A venue and its quiz night as extracted from one source.

    ``time_text`` is the schedule in canonical "Wednesday 20:00" form when
    the adapter could normalise it, otherwise the raw source text.
    """

    source_slug: str
    name: str
    address: str
    raw_title: str
    time_text: str = ""
    day_of_week: int | None = None
    start_time: str | None = None  # "HH:MM"
    entry_fee_cents: int | None = None

    postcode: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    facebook: str | None = None
    instagram: str | None = None

    description: str | None = None
    hero_image_url: str | None = None
    performer_name: str | None = None
    performer_image_url: str | None = None
    on_break: bool = False
    source_url: str | None = None

    extraction_errors: list[str] = field(default_factory=list)

    def venue_attrs(self) -> dict[str, Any]:
        """Attributes handed to the venue reconciler."""
        return {
            "name": self.name,
            "address": self.address,
            "postcode": self.postcode,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "phone": self.phone,
            "website": self.website,
            "facebook": self.facebook,
            "instagram": self.instagram,
        }

    def event_data(self, source_url: str | None = None) -> EventData:
        """Event attributes handed to the event reconciler."""
        url = source_url or self.source_url or ""
        return EventData(
            raw_title=self.raw_title,
            source_url=url,
            time_text=self.time_text,
            day_of_week=self.day_of_week,
            start_time=self.start_time,
            entry_fee_cents=self.entry_fee_cents,
            description=self.description,
            hero_image_url=self.hero_image_url,
            performer_name=self.performer_name,
            performer_image_url=self.performer_image_url,
            metadata={
                "raw_title": self.raw_title,
                "clean_title": self.name,
                "address": self.address,
                "time_text": self.time_text,
                "day_of_week": self.day_of_week,
                "start_time": self.start_time,
                "description": self.description,
                "performer_name": self.performer_name,
                "performer_image_url": self.performer_image_url,
                "email": self.email,
                "source_url": url,
                "on_break": self.on_break,
            },
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


class BaseAdapter(ABC):
    """
    Abstract base class for source-specific adapters.

    Subclasses must implement:
    - discover: Fetch the source's venue list as JSON-serializable dicts
    - extract: Turn one venue dict (plus detail page) into a NormalizedVenue
    """

    # Adapter identification (override in subclasses)
    ADAPTER_NAME: str = "base"
    ADAPTER_VERSION: str = "1.0.0"

    # Whether extract() needs the venue's detail page
    needs_detail_page: bool = False

    def __init__(self, source: SourceConfig, crawler: Crawler) -> None:
        """
        Initialize the adapter.

        Args:
            source: Source configuration from sources.yaml
            crawler: HTTP crawler shared by the job
        """
        self.source = source
        self.crawler = crawler
        self.config = source.custom_config

    @abstractmethod
    async def discover(self) -> list[dict[str, Any]]:
        """
        Fetch the venue list for this source.

        Returns:
            Raw venue dicts; each must carry at least ``name`` and
            ``address`` so jobs can be keyed

        Raises:
            AdapterError: If the listing cannot be fetched or parsed
        """
        pass

    @abstractmethod
    def extract(self, raw: dict[str, Any], page: bytes | None = None) -> NormalizedVenue:
        """
        Build a NormalizedVenue from a discovered venue.

        Args:
            raw: One element of ``discover()``
            page: Detail page body when ``needs_detail_page`` is set

        Returns:
            NormalizedVenue
        """
        pass

    def detail_url(self, raw: dict[str, Any]) -> str | None:
        """URL of the venue's detail page, if the source has one."""
        return None

    async def fetch_detail(self, url: str) -> FetchResult:
        """Fetch a detail page through the crawler."""
        return await self.crawler.fetch(url, self.source)

    def source_url_for(self, venue: VenueDB) -> str | None:
        """Provenance URL once the venue is persisted, for sources without pages."""
        return None

    def validate(self, venue: NormalizedVenue) -> list[str]:
        """
        Validate an extracted venue.

        Override this method to add adapter-specific validation.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = list(venue.extraction_errors)
        if not venue.name:
            errors.append("Missing venue name")
        if not venue.address:
            errors.append("Missing venue address")
        if venue.day_of_week is not None and not 1 <= venue.day_of_week <= len(DAY_NAMES):
            errors.append(f"Invalid day of week: {venue.day_of_week}")
        return errors

    def get_info(self) -> dict[str, str]:
        """Get adapter information."""
        return {
            "name": self.ADAPTER_NAME,
            "version": self.ADAPTER_VERSION,
            "class": self.__class__.__name__,
        }
