"""
Trivia Ingest Pipeline
======================

This package provides the ingestion pipeline that lists quiz venues from
external sources and reconciles them into canonical venues and events.

Pipeline Stages:
1. Discovery - Adapters list every venue a source publishes
2. Scheduling - One delayed detail job per venue, spaced and de-duplicated
3. Fetch - Crawler fetches detail pages with rate limits and retries
4. Extract - Adapters turn listings and pages into normalized venues
5. Reconcile - Upsert venues (with geocoding) and events (with provenance)
6. Enrich - Follow-up place lookup and venue photo cache refresh
7. Record - Persist a job outcome for every run
"""

from trivia_ingest.ingestion.registry import (
    ConfigurationError,
    SourceRegistry,
    SourceConfig,
    RateLimitConfig,
    get_default_registry,
)
from trivia_ingest.ingestion.crawler import (
    Crawler,
    FetchResult,
    TokenBucket,
)
from trivia_ingest.ingestion.geocoding import (
    AddressResolver,
    GoogleMapsClient,
    GeocodeResult,
)
from trivia_ingest.ingestion.storage import (
    ImageStorage,
    LocalImageStorage,
)
from trivia_ingest.ingestion.photos import (
    PhotoCache,
    PhotoFetchResult,
)
from trivia_ingest.ingestion.venues import (
    VenueReconciler,
    VenueUpsertResult,
)
from trivia_ingest.ingestion.events import (
    EventData,
    EventReconciler,
    EventResult,
)
from trivia_ingest.ingestion.scheduler import (
    RateLimitedScheduler,
    ScheduleReport,
)
from trivia_ingest.ingestion.detail import (
    DetailOutcome,
    DetailProcessor,
)
from trivia_ingest.ingestion.outcomes import JobOutcomeRecorder
from trivia_ingest.ingestion.jobs import (
    index_source,
    process_venue_detail,
    lookup_place,
    recalibrate_cities,
    enqueue_index,
    get_job_status,
    run_source_sync,
    JobResult,
)

__all__ = [
    # Registry
    "ConfigurationError",
    "SourceRegistry",
    "SourceConfig",
    "RateLimitConfig",
    "get_default_registry",
    # Crawler
    "Crawler",
    "FetchResult",
    "TokenBucket",
    # Geocoding
    "AddressResolver",
    "GoogleMapsClient",
    "GeocodeResult",
    # Photos
    "ImageStorage",
    "LocalImageStorage",
    "PhotoCache",
    "PhotoFetchResult",
    # Reconciliation
    "VenueReconciler",
    "VenueUpsertResult",
    "EventData",
    "EventReconciler",
    "EventResult",
    # Scheduling and detail
    "RateLimitedScheduler",
    "ScheduleReport",
    "DetailOutcome",
    "DetailProcessor",
    "JobOutcomeRecorder",
    # Jobs
    "index_source",
    "process_venue_detail",
    "lookup_place",
    "recalibrate_cities",
    "enqueue_index",
    "get_job_status",
    "run_source_sync",
    "JobResult",
]
