"""
Address Resolution Module
=========================

Resolves free-text venue addresses into structured place data using the
Google Places "find place from text" endpoint, falling back to the
Geocoding API when the place search is missing the country or city.

All calls share one retry helper: rate-limit responses and transport
errors wait a fixed interval and retry up to a ceiling, while error
statuses and malformed bodies fail immediately.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from trivia_ingest.core.schema import GeoPoint, NormalizedPlace, PlaceComponent
from trivia_ingest.ingestion.registry import (
    ConfigurationError,
    GoogleConfig,
    get_default_registry,
)

logger = logging.getLogger(__name__)

PLACES_FIND_URL = "https://maps.googleapis.com/maps/api/place/findplacefromtext/json"
PLACE_DETAILS_URL = "https://maps.googleapis.com/maps/api/place/details/json"
PLACE_PHOTO_URL = "https://maps.googleapis.com/maps/api/place/photo"
GEOCODING_URL = "https://maps.googleapis.com/maps/api/geocode/json"

PLACE_FIELDS = "formatted_address,name,place_id,geometry"

# Query parameters that carry credentials in logged URLs
_KEY_PARAM_PATTERN = re.compile(r"([?&](?:key|apiKey|API_KEY|Key)=)[^&]+")

# address_components type -> NormalizedPlace field
_COMPONENT_TYPES = {
    "country": "country",
    "locality": "city",
    "administrative_area_level_1": "state",
    "postal_code": "postal_code",
}


def mask_api_key(url: str) -> str:
    """Replace credential query values in a URL with asterisks."""
    return _KEY_PARAM_PATTERN.sub(r"\1****", url)


@dataclass(frozen=True)
class GoogleCredentials:
    """Credentials for the Google Maps Platform APIs."""

    api_key: str

    def __repr__(self) -> str:
        return "GoogleCredentials(api_key='****')"

    @classmethod
    def from_environment(cls, config: GoogleConfig | None = None) -> GoogleCredentials:
        """
        Read the API key from GOOGLE_MAPS_API_KEY, then from sources.yaml.

        Raises:
            ConfigurationError: If no key is configured anywhere
        """
        api_key = os.environ.get("GOOGLE_MAPS_API_KEY") or (config.api_key if config else None)
        if not api_key:
            logger.error(
                "Google Maps API key is not configured; set GOOGLE_MAPS_API_KEY "
                "or google.api_key in sources.yaml"
            )
            raise ConfigurationError("Google Maps API key is not configured")
        return cls(api_key=api_key)


_credentials: GoogleCredentials | None = None
_credentials_lock = threading.Lock()


def get_google_credentials() -> GoogleCredentials:
    """
    Return the process-wide credentials, reading them on first use.

    Initialization happens exactly once even when several workers race.

    Raises:
        ConfigurationError: If no key is configured
    """
    global _credentials
    if _credentials is None:
        with _credentials_lock:
            if _credentials is None:
                _credentials = GoogleCredentials.from_environment(
                    get_default_registry().google
                )
    return _credentials


def reset_google_credentials() -> None:
    """Forget cached credentials (useful for testing)."""
    global _credentials
    with _credentials_lock:
        _credentials = None


class GeocodeError(str, Enum):
    """Failure reasons reported by the resolver."""

    NO_RESULTS = "no_results"
    OVER_QUERY_LIMIT = "over_query_limit"
    REQUEST_FAILED = "request_failed"
    INVALID_RESPONSE = "invalid_response"
    API_ERROR = "api_error"


@dataclass
class ApiResult:
    """Outcome of one logical mapping API call (after retries)."""

    data: dict[str, Any] = field(default_factory=dict)
    error: GeocodeError | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class GeocodeResult:
    """Outcome of resolving one address."""

    address: str
    place: NormalizedPlace | None = None
    error: GeocodeError | None = None
    message: str | None = None
    geocoding_used: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.place is not None


class GoogleMapsClient:
    """
    Thin client over the Places, Place Photo and Geocoding endpoints.

    Every request goes through ``request``, which owns the retry policy.
    """

    def __init__(
        self,
        credentials: GoogleCredentials,
        *,
        retry_wait: float = 5.0,
        max_retries: int = 3,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.credentials = credentials
        self.retry_wait = retry_wait
        self.max_retries = max_retries
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: GoogleConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GoogleMapsClient:
        """Build a client from the shared credentials and registry settings."""
        config = config or get_default_registry().google
        return cls(
            get_google_credentials(),
            retry_wait=config.retry_wait_seconds,
            max_retries=config.max_retries,
            timeout=config.request_timeout,
            transport=transport,
        )

    async def request(self, api_name: str, url: str, params: dict[str, Any]) -> ApiResult:
        """
        Call a mapping endpoint, retrying on rate limits and transport errors.

        Args:
            api_name: Label used in log messages
            url: Endpoint URL
            params: Query parameters (the key is added here)

        Returns:
            ApiResult holding the decoded body or the failure reason
        """
        query = {**params, "key": self.credentials.api_key}
        last_error = GeocodeError.OVER_QUERY_LIMIT
        last_message = "rate limited"

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                logger.warning(
                    f"{api_name}: retrying in {self.retry_wait}s "
                    f"(retry {attempt}/{self.max_retries}): {last_message}"
                )
                await self._sleep(self.retry_wait)

            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    response = await client.get(url, params=query)
            except httpx.HTTPError as e:
                last_error = GeocodeError.REQUEST_FAILED
                last_message = f"{type(e).__name__}: {e}"
                continue

            logged_url = mask_api_key(str(response.url))

            if response.status_code == 429:
                last_error = GeocodeError.OVER_QUERY_LIMIT
                last_message = f"HTTP 429 from {logged_url}"
                continue

            if response.status_code != 200:
                logger.error(f"{api_name}: HTTP {response.status_code} from {logged_url}")
                return ApiResult(
                    error=GeocodeError.API_ERROR, message=f"HTTP {response.status_code}"
                )

            try:
                body = response.json()
            except ValueError:
                logger.error(f"{api_name}: malformed JSON from {logged_url}")
                return ApiResult(error=GeocodeError.INVALID_RESPONSE, message="malformed JSON")
            if not isinstance(body, dict):
                logger.error(f"{api_name}: unexpected body type from {logged_url}")
                return ApiResult(error=GeocodeError.INVALID_RESPONSE, message="unexpected body")

            status = body.get("status")
            if status in ("OK", "ZERO_RESULTS"):
                return ApiResult(data=body)
            if status == "OVER_QUERY_LIMIT":
                last_error = GeocodeError.OVER_QUERY_LIMIT
                last_message = body.get("error_message") or "OVER_QUERY_LIMIT"
                continue

            message = body.get("error_message") or str(status)
            logger.error(f"{api_name}: {status} from {logged_url}: {message}")
            return ApiResult(error=GeocodeError.API_ERROR, message=f"{status}: {message}")

        logger.error(f"{api_name}: giving up after {self.max_retries} retries: {last_message}")
        return ApiResult(error=last_error, message=last_message)

    async def find_place(self, text: str) -> ApiResult:
        """Places "find place from text"; data is the first candidate or empty."""
        result = await self.request(
            "Places API",
            PLACES_FIND_URL,
            {"input": text, "inputtype": "textquery", "fields": PLACE_FIELDS},
        )
        if not result.ok:
            return result
        candidates = result.data.get("candidates") or []
        return ApiResult(data=candidates[0] if candidates else {})

    async def geocode(self, address: str) -> ApiResult:
        """Geocoding API lookup; data is the first result or empty."""
        result = await self.request("Geocoding API", GEOCODING_URL, {"address": address})
        if not result.ok:
            return result
        results = result.data.get("results") or []
        return ApiResult(data=results[0] if results else {})

    async def place_details(self, place_id: str, fields: str) -> ApiResult:
        """Place Details lookup; data is the ``result`` object."""
        result = await self.request(
            "Place Details API", PLACE_DETAILS_URL, {"place_id": place_id, "fields": fields}
        )
        if not result.ok:
            return result
        return ApiResult(data=result.data.get("result") or {})

    async def place_photo_urls(
        self, place_id: str, max_photos: int = 5, max_width: int = 1200
    ) -> list[str]:
        """
        Return downloadable photo URLs for a place, best first.

        An empty list means the place has no photos or the lookup failed;
        the failure is already logged by ``request``.
        """
        result = await self.place_details(place_id, "photos")
        if not result.ok:
            return []
        photos = result.data.get("photos") if isinstance(result.data, dict) else None
        if photos is None:
            return []
        if not isinstance(photos, list) or not all(isinstance(p, dict) for p in photos):
            logger.error(
                f"Place Details API: {GeocodeError.INVALID_RESPONSE.value} photos for {place_id}"
            )
            return []
        urls = []
        for photo in photos[:max_photos]:
            reference = photo.get("photo_reference")
            if reference:
                urls.append(
                    f"{PLACE_PHOTO_URL}?maxwidth={max_width}"
                    f"&photoreference={reference}&key={self.credentials.api_key}"
                )
        return urls


def normalize_location_data(data: dict[str, Any]) -> NormalizedPlace:
    """
    Normalize a place candidate or geocode result into a NormalizedPlace.

    Args:
        data: One element of ``candidates`` or ``results``

    Returns:
        NormalizedPlace (fields absent from the payload are None)
    """
    location = (data.get("geometry") or {}).get("location") or {}
    point = None
    if location.get("lat") is not None and location.get("lng") is not None:
        point = GeoPoint(lat=location["lat"], lng=location["lng"])

    components: dict[str, PlaceComponent] = {}
    for component in data.get("address_components") or []:
        types = component.get("types") or []
        for google_type, field_name in _COMPONENT_TYPES.items():
            if google_type in types and field_name not in components:
                components[field_name] = PlaceComponent(
                    name=component.get("long_name", ""),
                    code=component.get("short_name"),
                )

    return NormalizedPlace(
        name=data.get("name"),
        formatted_address=data.get("formatted_address"),
        place_id=data.get("place_id"),
        location=point,
        **components,
    )


class AddressResolver:
    """Two-tier address resolution: place search, then geocoding fallback."""

    def __init__(self, client: GoogleMapsClient) -> None:
        self.client = client

    @classmethod
    def from_config(
        cls,
        config: GoogleConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AddressResolver:
        """
        Build a resolver from shared credentials.

        Raises:
            ConfigurationError: If the API key is missing
        """
        return cls(GoogleMapsClient.from_config(config, transport=transport))

    async def resolve(self, address: str, force_geocoding: bool = True) -> GeocodeResult:
        """
        Resolve an address into a NormalizedPlace.

        Args:
            address: Free-text address (usually "name, street, town")
            force_geocoding: When False, partial place search data is
                accepted without calling the Geocoding API

        Returns:
            GeocodeResult; ``ok`` is True only when country and city are known
        """
        found = await self.client.find_place(address)
        if not found.ok:
            return GeocodeResult(address=address, error=found.error, message=found.message)

        place = normalize_location_data(found.data)
        if place.has_required_fields():
            return GeocodeResult(address=address, place=place)

        if force_geocoding is False:
            logger.info(f"Accepting partial place data for '{address}' without geocoding")
            return GeocodeResult(address=address, place=place)

        logger.info(
            f"Place search for '{address}' missing {', '.join(place.missing_fields())}; "
            f"falling back to geocoding"
        )
        geocoded = await self.client.geocode(address)
        if not geocoded.ok:
            return GeocodeResult(
                address=address,
                error=geocoded.error,
                message=geocoded.message,
                geocoding_used=True,
            )

        merged = place.fill_gaps(normalize_location_data(geocoded.data))
        if not merged.has_required_fields():
            missing = ", ".join(merged.missing_fields())
            logger.warning(f"Could not resolve {missing} for '{address}'")
            return GeocodeResult(
                address=address,
                place=merged,
                error=GeocodeError.NO_RESULTS,
                message=f"missing {missing}",
                geocoding_used=True,
            )

        return GeocodeResult(address=address, place=merged, geocoding_used=True)
