"""Shared fixtures: temporary databases, a fake mapping API and a fake job queue."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import httpx
import pytest

from trivia_ingest.db.engine import get_session, init_db, reset_engine
from trivia_ingest.db.models import SourceDB
from trivia_ingest.ingestion.geocoding import (
    GoogleCredentials,
    GoogleMapsClient,
    reset_google_credentials,
)
from trivia_ingest.ingestion.registry import reset_default_registry
from trivia_ingest.ingestion.storage import LocalImageStorage

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"


def place_result(
    name: str = "Pub A",
    place_id: str = "place-pub-a",
    city: str | None = "London",
    country: str | None = "United Kingdom",
    country_code: str = "GB",
    postcode: str | None = "N1 1AA",
    lat: float = 51.5362,
    lng: float = -0.1033,
) -> dict[str, Any]:
    """Build a Places candidate / geocode result payload."""
    components = []
    if city:
        components.append({"long_name": city, "short_name": city, "types": ["locality"]})
    if country:
        components.append(
            {"long_name": country, "short_name": country_code, "types": ["country", "political"]}
        )
    if postcode:
        components.append({"long_name": postcode, "short_name": postcode, "types": ["postal_code"]})
    return {
        "name": name,
        "place_id": place_id,
        "formatted_address": f"{name}, {city or ''}",
        "geometry": {"location": {"lat": lat, "lng": lng}},
        "address_components": components,
    }


class FakeGoogle:
    """
    Canned mapping API.

    Routes Places find / details / photo and Geocoding requests to fixed
    responses and counts calls per endpoint.
    """

    def __init__(
        self,
        candidate: dict[str, Any] | None = None,
        geocode_result: dict[str, Any] | None = None,
        photo_refs: list[str] | None = None,
        photo_status: int = 200,
        find_responses: list[httpx.Response] | None = None,
    ) -> None:
        self.candidate = candidate
        self.geocode_result = geocode_result
        self.photo_refs = photo_refs if photo_refs is not None else []
        self.photo_status = photo_status
        self.find_responses = list(find_responses or [])
        self.calls: dict[str, int] = {"find": 0, "geocode": 0, "details": 0, "photo": 0}

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/findplacefromtext/json"):
            self.calls["find"] += 1
            if self.find_responses:
                return self.find_responses.pop(0)
            candidates = [self.candidate] if self.candidate else []
            status = "OK" if candidates else "ZERO_RESULTS"
            return httpx.Response(200, json={"status": status, "candidates": candidates})
        if path.endswith("/geocode/json"):
            self.calls["geocode"] += 1
            results = [self.geocode_result] if self.geocode_result else []
            status = "OK" if results else "ZERO_RESULTS"
            return httpx.Response(200, json={"status": status, "results": results})
        if path.endswith("/details/json"):
            self.calls["details"] += 1
            photos = [{"photo_reference": ref} for ref in self.photo_refs]
            return httpx.Response(200, json={"status": "OK", "result": {"photos": photos}})
        if path.endswith("/place/photo"):
            self.calls["photo"] += 1
            if self.photo_status != 200:
                return httpx.Response(self.photo_status)
            return httpx.Response(
                200, content=JPEG_BYTES, headers={"content-type": "image/jpeg"}
            )
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, max_retries: int = 3) -> GoogleMapsClient:
        return GoogleMapsClient(
            GoogleCredentials(api_key="test-key"),
            retry_wait=0,
            max_retries=max_retries,
            transport=self.transport,
        )


class FakeEnqueuer:
    """Records arq enqueue_job calls and rejects repeated job ids."""

    def __init__(self) -> None:
        self.jobs: list[dict[str, Any]] = []
        self.known_ids: set[str] = set()

    async def enqueue_job(
        self,
        function: str,
        *args: Any,
        _job_id: str | None = None,
        _queue_name: str | None = None,
        _defer_by: timedelta | None = None,
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        if _job_id is not None and _job_id in self.known_ids:
            return None
        if _job_id is not None:
            self.known_ids.add(_job_id)
        job = {
            "function": function,
            "args": args,
            "job_id": _job_id,
            "queue_name": _queue_name,
            "defer_by": _defer_by,
            "kwargs": kwargs,
        }
        self.jobs.append(job)
        return job


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch):
    """Keep process-wide registries and credentials out of each test."""
    for name in ("GOOGLE_MAPS_API_KEY", "ZYTE_API_KEY", "SOURCES_CONFIG_PATH"):
        monkeypatch.delenv(name, raising=False)
    reset_default_registry()
    reset_google_credentials()
    yield
    reset_default_registry()
    reset_google_credentials()


@pytest.fixture
def db_path(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Point the global engine at a fresh SQLite file."""
    path = tmp_path / "trivia_test.db"
    monkeypatch.setenv("DATABASE_URL", str(path))
    reset_engine()
    init_db()
    yield path
    reset_engine()


@pytest.fixture
def session(db_path):
    """Create a database session for testing."""
    with get_session() as session:
        yield session


@pytest.fixture
def source(session) -> SourceDB:
    row = SourceDB(name="Test Source", slug="test-source", website_url="https://example.com")
    session.add(row)
    session.commit()
    return row


@pytest.fixture
def storage(tmp_path) -> LocalImageStorage:
    return LocalImageStorage(tmp_path / "uploads")


@pytest.fixture
def fake_enqueuer() -> FakeEnqueuer:
    return FakeEnqueuer()


@pytest.fixture
def make_google():
    """Factory for FakeGoogle instances."""
    return FakeGoogle


@pytest.fixture
def make_place():
    """Factory for place payloads."""
    return place_result
