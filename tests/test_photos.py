"""Tests for the venue photo cache."""

from datetime import UTC, datetime, timedelta

import httpx
import pytest

from trivia_ingest.db.models import VenueDB
from trivia_ingest.ingestion.geocoding import GoogleCredentials, GoogleMapsClient
from trivia_ingest.ingestion.photos import (
    PhotoCache,
    extract_photo_reference,
    get_first_image_url,
    get_image_urls,
)
from trivia_ingest.ingestion.storage import image_path

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


def _images(count: int) -> list[dict]:
    return [
        {
            "google_ref": f"ref{i}",
            "original_url": f"https://maps.example/photo?photoreference=ref{i}",
            "local_path": None,
            "fetched_at": NOW.isoformat(),
            "position": i,
        }
        for i in range(1, count + 1)
    ]


def _venue(session, place_id: str | None = "place-1", images: int = 0, refreshed_days_ago=None):
    venue = VenueDB(name="Pub A", slug="pub-a", address="1 High St", place_id=place_id)
    venue.google_place_images = _images(images)
    if refreshed_days_ago is not None:
        venue.photos_refreshed_at = NOW - timedelta(days=refreshed_days_ago)
    session.add(venue)
    session.commit()
    return venue


def _cache(session, google, storage) -> PhotoCache:
    return PhotoCache(
        session, google.client(), storage, transport=google.transport, clock=lambda: NOW
    )


class TestRefreshCriteria:
    """Tests for when photos are refreshed."""

    def test_no_photos_triggers_refresh(self, session, make_google, storage) -> None:
        venue = _venue(session, images=0, refreshed_days_ago=1)
        assert _cache(session, make_google(), storage).should_update_images(venue)

    def test_recent_full_set_is_kept(self, session, make_google, storage) -> None:
        """Five photos refreshed 10 days ago are fresh."""
        venue = _venue(session, images=5, refreshed_days_ago=10)
        assert not _cache(session, make_google(), storage).should_update_images(venue)

    def test_stale_full_set_refreshes(self, session, make_google, storage) -> None:
        """Five photos refreshed 100 days ago are stale."""
        venue = _venue(session, images=5, refreshed_days_ago=100)
        assert _cache(session, make_google(), storage).should_update_images(venue)

    def test_few_photos_refresh(self, session, make_google, storage) -> None:
        venue = _venue(session, images=3, refreshed_days_ago=10)
        assert _cache(session, make_google(), storage).should_update_images(venue)

    def test_no_place_id_never_refreshes(self, session, make_google, storage) -> None:
        venue = _venue(session, place_id=None, images=0)
        assert not _cache(session, make_google(), storage).should_update_images(venue)


class TestProcessVenueImages:
    """Tests for fetching and storing photos."""

    @pytest.mark.asyncio
    async def test_downloads_and_stores(self, session, make_google, storage) -> None:
        google = make_google(photo_refs=["refA", "refB"])
        venue = _venue(session)

        result = await _cache(session, google, storage).process_venue_images(venue)

        assert result.ok
        assert result.downloaded == 2
        images = venue.google_place_images
        assert [image["position"] for image in images] == [1, 2]
        assert images[0]["google_ref"] == "refA"
        assert images[0]["local_path"] == "google_place_images/pub-a/original_1.jpg"
        assert storage.exists("google_place_images/pub-a/original_2.jpg")
        assert venue.photos_refreshed_at is not None

    @pytest.mark.asyncio
    async def test_at_most_five_photos(self, session, make_google, storage) -> None:
        google = make_google(photo_refs=[f"ref{i}" for i in range(8)])
        venue = _venue(session)

        await _cache(session, google, storage).process_venue_images(venue)

        assert len(venue.google_place_images) == 5
        assert google.calls["photo"] == 5

    @pytest.mark.asyncio
    async def test_all_downloads_fail_stores_urls(self, session, make_google, storage) -> None:
        """When every download fails the URLs are kept without local paths."""
        google = make_google(photo_refs=["refA", "refB"], photo_status=403)
        venue = _venue(session)

        result = await _cache(session, google, storage).process_venue_images(venue)

        assert result.stored_urls_only
        images = venue.google_place_images
        assert len(images) == 2
        assert all(image["local_path"] is None for image in images)
        assert "photoreference=refA" in images[0]["original_url"]

    @pytest.mark.asyncio
    async def test_no_photos_available(self, session, make_google, storage) -> None:
        venue = _venue(session)
        result = await _cache(session, make_google(photo_refs=[]), storage).process_venue_images(
            venue
        )
        assert result.ok
        assert venue.google_place_images == []

    @pytest.mark.asyncio
    async def test_maybe_refresh_skips_fresh_venue(self, session, make_google, storage) -> None:
        google = make_google(photo_refs=["refA"])
        venue = _venue(session, images=5, refreshed_days_ago=10)

        await _cache(session, google, storage).maybe_refresh(venue)

        assert google.calls["details"] == 0

    @pytest.mark.asyncio
    async def test_storage_failure_falls_back_to_urls(self, session, make_google, storage) -> None:
        """Storage failures are logged and never escape maybe_refresh."""

        class BrokenStorage(type(storage)):
            def save_image(self, content, relative_path):
                raise OSError("disk full")

        google = make_google(photo_refs=["refA"])
        venue = _venue(session)
        cache = PhotoCache(
            session,
            google.client(),
            BrokenStorage(storage.base_path),
            transport=google.transport,
            clock=lambda: NOW,
        )

        returned = await cache.maybe_refresh(venue)

        assert returned is venue
        # Failed stores fall back to URL-only entries
        assert venue.google_place_images[0]["local_path"] is None

    @pytest.mark.asyncio
    async def test_malformed_photo_list_is_ignored(self, session, storage) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json={"status": "OK", "result": {"photos": ["not-a-dict"]}}
            )

        transport = httpx.MockTransport(handler)
        client = GoogleMapsClient(
            GoogleCredentials(api_key="test-key"), retry_wait=0, transport=transport
        )
        venue = _venue(session)

        returned = await PhotoCache(session, client, storage, transport=transport).maybe_refresh(
            venue
        )

        assert returned is venue
        assert venue.google_place_images == []

    @pytest.mark.asyncio
    async def test_slow_refresh_gives_up(self, session, storage) -> None:
        """A refresh that outlives its deadline leaves the venue unchanged."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "OVER_QUERY_LIMIT"})

        client = GoogleMapsClient(
            GoogleCredentials(api_key="test-key"),
            retry_wait=5.0,
            transport=httpx.MockTransport(handler),
        )
        venue = _venue(session)
        cache = PhotoCache(session, client, storage, refresh_timeout=0.05)

        returned = await cache.maybe_refresh(venue)

        assert returned is venue
        assert venue.google_place_images == []
        assert venue.photos_refreshed_at is None


class TestDeleteVenueImages:
    """Tests for photo cleanup."""

    def test_deletes_both_versions(self, session, storage) -> None:
        venue = _venue(session)
        venue.google_place_images = [
            {"original_url": "u1", "local_path": image_path("pub-a", "original", 1), "position": 1},
            {"original_url": "u2", "local_path": image_path("pub-a", "original", 2), "position": 2},
        ]
        for position in (1, 2):
            storage.save_image(b"x", image_path("pub-a", "original", position))
        storage.save_image(b"x", image_path("pub-a", "thumb", 1))

        cache = PhotoCache(session, None, storage)
        assert cache.delete_venue_images(venue) == 3
        assert not storage.exists(image_path("pub-a", "thumb", 1))
        assert not storage.exists(image_path("pub-a", "original", 2))

    def test_no_images(self, session, storage) -> None:
        venue = _venue(session)
        assert PhotoCache(session, None, storage).delete_venue_images(venue) == 0


class TestPhotoHelpers:
    """Tests for photo reference extraction and URL helpers."""

    def test_extract_reference_from_photo_url(self) -> None:
        url = "https://maps.googleapis.com/maps/api/place/photo?maxwidth=1200&photoreference=abc&key=k"
        assert extract_photo_reference(url) == "abc"

    def test_extract_reference_from_places_v1_url(self) -> None:
        url = "https://places.googleapis.com/v1/places/xyz/photos/ref123/media"
        assert extract_photo_reference(url) == "ref123"

    def test_extract_reference_missing(self) -> None:
        assert extract_photo_reference("https://example.com/image.jpg") is None

    def test_image_urls_prefer_local(self, session) -> None:
        venue = _venue(session)
        venue.google_place_images = [
            {"original_url": "remote-2", "local_path": None, "position": 2},
            {"original_url": "remote-1", "local_path": "local-1.jpg", "position": 1},
        ]
        assert get_image_urls(venue) == ["local-1.jpg", "remote-2"]
        assert get_first_image_url(venue) == "local-1.jpg"

    def test_first_image_url_none(self, session) -> None:
        assert get_first_image_url(_venue(session)) is None


class TestRefreshAllVenueImages:
    """Tests for the maintenance batch."""

    @pytest.mark.asyncio
    async def test_refreshes_venues_with_place_id(self, session, make_google, storage) -> None:
        google = make_google(photo_refs=["refA"])
        _venue(session)
        session.add(VenueDB(name="Pub B", slug="pub-b", address="2 High St"))
        session.commit()

        stats = await _cache(session, google, storage).refresh_all_venue_images()

        assert stats == {"processed": 1, "successful": 1, "failed": 0, "failed_ids": []}
