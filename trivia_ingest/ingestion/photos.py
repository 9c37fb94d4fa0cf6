"""
Place Photo Cache
=================

Downloads, stores and tracks mapping API photos for venues.

A venue's photos are refreshed when it has a place identifier and either
holds fewer than ``max_images`` photos or its photos are older than
``refresh_days``. Internal steps return result objects; ``maybe_refresh``
is the single place where failures are logged and swallowed so that venue
ingestion never fails because of photography.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trivia_ingest.core.schema import PlaceImage
from trivia_ingest.db.models import VenueDB, as_utc
from trivia_ingest.ingestion.geocoding import GoogleMapsClient
from trivia_ingest.ingestion.storage import (
    IMAGE_VERSIONS,
    ImageStorage,
    extension_for,
    image_path,
)

logger = logging.getLogger(__name__)

MAX_IMAGES = 5
REFRESH_DAYS = 90
DOWNLOAD_TIMEOUT = 15.0

DOWNLOAD_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36",
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Referer": "https://www.google.com/",
}

# Ordered (marker, pattern) pairs; the first marker found in the URL wins
_PHOTO_REFERENCE_MATCHERS: list[tuple[tuple[str, ...], re.Pattern[str]]] = [
    (("PhotoService.GetPhoto",), re.compile(r"1s([^&]+)")),
    (("photos:getFullSizeImage",), re.compile(r"photoreference=([^&]+)")),
    (("/places/", "/photos/"), re.compile(r"/places/[^/]+/photos/([^/?]+)")),
    ((), re.compile(r"photoreference=([^&]+)")),
]


def _utc_now() -> datetime:
    return datetime.now(UTC)


def extract_photo_reference(url: str) -> str | None:
    """
    Pull the provider's photo reference out of a photo URL.

    Handles PhotoService URLs, Places v2 ``photos:getFullSizeImage`` and
    ``places/{id}/photos/{ref}`` URLs, and legacy ``photoreference=`` URLs.
    """
    for markers, pattern in _PHOTO_REFERENCE_MATCHERS:
        if all(marker in url for marker in markers):
            match = pattern.search(url)
            return match.group(1) if match else None
    return None


def venue_storage_key(venue: VenueDB) -> str:
    """Directory name for a venue's photos: its slug, else its id."""
    return venue.slug or str(venue.id)


@dataclass
class DownloadResult:
    """Result of downloading one photo."""

    url: str
    content: bytes = b""
    mime_type: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.content)


@dataclass
class PhotoFetchResult:
    """Result of a full photo refresh for one venue."""

    venue_id: str
    images: list[PlaceImage] = field(default_factory=list)
    downloaded: int = 0
    failed: int = 0
    stored_urls_only: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PhotoCache:
    """
    Keeps venue photography fresh.

    Args:
        session: Database session used to persist venue photo metadata
        maps_client: Client used to look up photo URLs for a place
        storage: Where downloaded images are written
        refresh_timeout: Deadline in seconds for one venue refresh (None waits)
        transport: Optional httpx transport for downloads (tests)
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        session: Session,
        maps_client: GoogleMapsClient,
        storage: ImageStorage,
        *,
        max_images: int = MAX_IMAGES,
        refresh_days: int = REFRESH_DAYS,
        download_timeout: float = DOWNLOAD_TIMEOUT,
        photo_max_width: int = 1200,
        refresh_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.session = session
        self.maps_client = maps_client
        self.storage = storage
        self.max_images = max_images
        self.refresh_days = refresh_days
        self.download_timeout = download_timeout
        self.photo_max_width = photo_max_width
        self.refresh_timeout = refresh_timeout
        self._transport = transport
        self._clock = clock

    # -- refresh criteria -------------------------------------------------

    def has_place_id(self, venue: VenueDB) -> bool:
        return bool(venue.place_id)

    def missing_or_few_images(self, venue: VenueDB) -> bool:
        return len(venue.google_place_images) < self.max_images

    def images_need_refresh(self, venue: VenueDB) -> bool:
        """True when the photos are older than ``refresh_days`` or never dated."""
        reference = as_utc(venue.photos_refreshed_at or venue.updated_at)
        if reference is None:
            return True
        return self._clock() - reference > timedelta(days=self.refresh_days)

    def should_update_images(self, venue: VenueDB) -> bool:
        return self.has_place_id(venue) and (
            self.missing_or_few_images(venue) or self.images_need_refresh(venue)
        )

    # -- refresh ------------------------------------------------------------

    async def maybe_refresh(self, venue: VenueDB) -> VenueDB:
        """
        Refresh a venue's photos if they are missing, incomplete or stale.

        Never raises: on any failure, including ``refresh_timeout`` running
        out, the venue is returned as it was.
        """
        try:
            if not self.should_update_images(venue):
                return venue

            logger.info(f"Fetching place photos for venue: {venue.name}")
            async with asyncio.timeout(self.refresh_timeout):
                result = await self.process_venue_images(venue)
        except TimeoutError:
            logger.error(
                f"Fetching place photos for venue {venue.id} timed out after "
                f"{self.refresh_timeout}s"
            )
            self.session.rollback()
            return venue
        except (httpx.HTTPError, OSError, SQLAlchemyError, TypeError, ValueError) as e:
            logger.error(f"Error fetching place photos for venue {venue.id}: {e}")
            self.session.rollback()
            return venue

        if not result.ok:
            logger.warning(f"Photo refresh for venue {venue.id} failed: {result.error}")
        return venue

    async def process_venue_images(self, venue: VenueDB) -> PhotoFetchResult:
        """
        Fetch, download and store up to ``max_images`` photos for a venue.

        When every download fails the raw URLs are stored without local
        paths so the venue still has something to show.
        """
        if not venue.place_id:
            return PhotoFetchResult(venue_id=venue.id, error="venue has no place_id")

        urls = await self.maps_client.place_photo_urls(
            venue.place_id, max_photos=self.max_images, max_width=self.photo_max_width
        )
        if not urls:
            logger.info(f"No place photos found for venue {venue.id}")
            return PhotoFetchResult(venue_id=venue.id)

        urls = urls[: self.max_images]
        downloads = await asyncio.gather(*(self.download_image(url) for url in urls))
        fetched_at = self._clock()

        result = PhotoFetchResult(venue_id=venue.id)
        for position, download in enumerate(downloads, start=1):
            image = self._store_download(venue, download, position, fetched_at)
            if image is None:
                result.failed += 1
            else:
                result.downloaded += 1
                result.images.append(image)

        if not result.images:
            logger.info(f"Storing photo URLs instead of downloaded images for venue {venue.id}")
            result.stored_urls_only = True
            result.images = [
                PlaceImage(
                    google_ref=extract_photo_reference(url),
                    original_url=url,
                    fetched_at=fetched_at,
                    position=position,
                )
                for position, url in enumerate(urls, start=1)
            ]

        venue.google_place_images = [
            image.model_dump(mode="json") for image in sorted(result.images, key=lambda i: i.position)
        ]
        venue.photos_refreshed_at = fetched_at
        self.session.commit()
        return result

    def _store_download(
        self, venue: VenueDB, download: DownloadResult, position: int, fetched_at: datetime
    ) -> PlaceImage | None:
        reference = extract_photo_reference(download.url)
        if reference is None:
            logger.error("Could not extract photo reference from place photo URL")
            return None
        if not download.ok:
            logger.error(f"Failed to download place photo {position}: {download.error}")
            return None

        relative_path = image_path(
            venue_storage_key(venue), "original", position, extension_for(download.mime_type)
        )
        try:
            stored = self.storage.save_image(download.content, relative_path)
        except OSError as e:
            logger.error(f"Failed to store place photo {relative_path}: {e}")
            return None

        return PlaceImage(
            google_ref=reference,
            original_url=download.url,
            local_path=stored.relative_path,
            fetched_at=fetched_at,
            position=position,
        )

    async def download_image(self, url: str) -> DownloadResult:
        """Download one photo under a fixed deadline."""
        try:
            async with asyncio.timeout(self.download_timeout):
                async with httpx.AsyncClient(
                    timeout=self.download_timeout,
                    transport=self._transport,
                    follow_redirects=True,
                ) as client:
                    response = await client.get(url, headers=DOWNLOAD_HEADERS)
        except TimeoutError:
            return DownloadResult(url=url, error=f"Timeout after {self.download_timeout}s")
        except httpx.HTTPError as e:
            return DownloadResult(url=url, error=f"{type(e).__name__}: {e}")

        if response.status_code != 200:
            return DownloadResult(url=url, error=f"HTTP error: {response.status_code}")

        return DownloadResult(
            url=url,
            content=response.content,
            mime_type=response.headers.get("content-type", "image/jpeg"),
        )

    # -- maintenance --------------------------------------------------------

    def delete_venue_images(self, venue: VenueDB) -> int:
        """
        Delete both versions of every cached photo for a venue.

        Individual failures are logged and skipped.

        Returns:
            Number of files actually removed
        """
        images = venue.google_place_images
        if not images:
            return 0

        logger.info(f"Deleting place photos for venue: {venue.name}")
        key = venue_storage_key(venue)
        deleted = 0
        for image in images:
            position = image.get("position") or 0
            local_path = image.get("local_path") or ""
            extension = local_path.rsplit(".", 1)[-1] if "." in local_path else "jpg"
            for version in IMAGE_VERSIONS:
                path = image_path(key, version, position, extension)
                try:
                    if self.storage.delete_image(path):
                        deleted += 1
                except (OSError, ValueError) as e:
                    logger.warning(f"Failed to delete image {path}: {e}")
        return deleted

    async def refresh_all_venue_images(self, max_venues: int = 100) -> dict[str, Any]:
        """
        Re-fetch photos for up to ``max_venues`` venues with a place id.

        Returns:
            Dict with processed, successful, failed and failed_ids
        """
        venues = self.session.scalars(
            select(VenueDB)
            .where(VenueDB.place_id.is_not(None), VenueDB.place_id != "")
            .order_by(VenueDB.created_at)
            .limit(max_venues)
        ).all()

        successful = 0
        failed_ids: list[str] = []
        for venue in venues:
            try:
                result = await self.process_venue_images(venue)
            except (httpx.HTTPError, OSError, SQLAlchemyError, TimeoutError, ValueError) as e:
                logger.error(f"Photo refresh failed for venue {venue.id}: {e}")
                self.session.rollback()
                failed_ids.append(venue.id)
                continue
            if result.ok:
                successful += 1
            else:
                failed_ids.append(venue.id)

        return {
            "processed": len(venues),
            "successful": successful,
            "failed": len(failed_ids),
            "failed_ids": failed_ids,
        }


def get_image_urls(venue: VenueDB, count: int = 3) -> list[str]:
    """Photo URLs in position order, preferring the local copy."""
    images = sorted(venue.google_place_images, key=lambda image: image.get("position") or 0)
    return [image.get("local_path") or image["original_url"] for image in images[:count]]


def get_first_image_url(venue: VenueDB) -> str | None:
    urls = get_image_urls(venue, 1)
    return urls[0] if urls else None
