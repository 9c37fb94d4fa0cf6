"""
Background Jobs Module
======================

Defines arq tasks for discovery, per-venue detail processing and
maintenance. Uses Redis as the job queue backend.

Discovery and maintenance run on the default queue. Detail and place
lookup jobs run on the scraper queue, serviced by their own worker, so a
large fan-out never starves discovery.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from arq import Retry, create_pool, cron, func
from arq.connections import RedisSettings
from arq.jobs import Job
from arq.jobs import JobStatus as ArqJobStatus
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.orm import Session

from trivia_ingest.core.enums import JobStatus
from trivia_ingest.db.engine import get_session
from trivia_ingest.db.models import SourceDB, VenueDB
from trivia_ingest.ingestion.adapters import get_adapter
from trivia_ingest.ingestion.adapters.base import AdapterError
from trivia_ingest.ingestion.cities import recalibrate_city_coordinates
from trivia_ingest.ingestion.crawler import Crawler
from trivia_ingest.ingestion.detail import DETAIL_JOB_NAME, DetailProcessor
from trivia_ingest.ingestion.events import EventReconciler
from trivia_ingest.ingestion.geocoding import AddressResolver, GoogleMapsClient
from trivia_ingest.ingestion.outcomes import JobOutcomeRecorder
from trivia_ingest.ingestion.photos import PhotoCache
from trivia_ingest.ingestion.registry import (
    ConfigurationError,
    SourceConfig,
    SourceRegistry,
    get_default_registry,
)
from trivia_ingest.ingestion.scheduler import SCRAPER_QUEUE, RateLimitedScheduler
from trivia_ingest.ingestion.storage import get_default_storage
from trivia_ingest.ingestion.venues import VenueReconciler

logger = logging.getLogger(__name__)

INDEX_JOB_NAME = "index_source"
LOOKUP_JOB_NAME = "lookup_place"
RETRY_DEFER_SECONDS = 10


@dataclass
class JobResult:
    """Result of a discovery job."""

    job_id: str
    source_slug: str
    status: JobStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    venues_discovered: int = 0
    jobs_enqueued: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "source_slug": self.source_slug,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "venues_discovered": self.venues_discovered,
            "jobs_enqueued": self.jobs_enqueued,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobResult:
        return cls(
            job_id=data["job_id"],
            source_slug=data["source_slug"],
            status=JobStatus(data["status"]),
            started_at=datetime.fromisoformat(data["started_at"]) if data["started_at"] else None,
            completed_at=(
                datetime.fromisoformat(data["completed_at"]) if data["completed_at"] else None
            ),
            venues_discovered=data["venues_discovered"],
            jobs_enqueued=data["jobs_enqueued"],
            duplicates=data["duplicates"],
            errors=data["errors"],
            duration_seconds=data["duration_seconds"],
        )


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


def get_or_create_source(session: Session, source_config: SourceConfig) -> SourceDB:
    """Find the source row for a configured source, creating or refreshing it."""
    source = session.scalars(select(SourceDB).where(SourceDB.slug == source_config.slug)).first()
    if source is None:
        source = SourceDB(
            name=source_config.name,
            slug=source_config.slug,
            website_url=source_config.website_url,
        )
        session.add(source)
        session.commit()
        logger.info(f"Created source {source_config.slug}")
    elif (source.name, source.website_url) != (source_config.name, source_config.website_url):
        source.name = source_config.name
        source.website_url = source_config.website_url
        session.commit()
    return source


def sync_sources(session: Session, registry: SourceRegistry | None = None) -> list[SourceDB]:
    """Upsert a source row for every source in the registry."""
    registry = registry or get_default_registry()
    return [get_or_create_source(session, config) for config in registry.list_sources()]


# -- context helpers ---------------------------------------------------------
#
# Workers build shared clients once in ``startup``; anything missing from
# ctx (sync runs, tests) is built on demand.


def _registry(ctx: dict[str, Any]) -> SourceRegistry:
    return ctx.get("registry") or get_default_registry()


def _crawler(ctx: dict[str, Any], registry: SourceRegistry) -> Crawler:
    if ctx.get("crawler") is None:
        global_config = registry.global_config
        ctx["crawler"] = Crawler(
            user_agent=global_config.user_agent,
            timeout=global_config.request_timeout,
            max_retries=global_config.max_retries,
        )
    return ctx["crawler"]


def _maps_client(ctx: dict[str, Any], registry: SourceRegistry) -> GoogleMapsClient:
    if ctx.get("maps_client") is None:
        ctx["maps_client"] = GoogleMapsClient.from_config(registry.google)
    return ctx["maps_client"]


def _photo_cache(
    ctx: dict[str, Any],
    session: Session,
    registry: SourceRegistry,
    maps_client: GoogleMapsClient,
) -> PhotoCache:
    google = registry.google
    return PhotoCache(
        session,
        maps_client,
        ctx.get("storage") or get_default_storage(),
        max_images=google.max_images,
        refresh_days=google.refresh_days,
        photo_max_width=google.photo_max_width,
        refresh_timeout=registry.scheduling.detail_timeout_seconds,
        transport=ctx.get("photo_transport"),
    )


def _job_id(ctx: dict[str, Any]) -> str:
    return ctx.get("job_id") or str(uuid4())


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup: load config and build shared clients."""
    registry = get_default_registry()
    ctx["registry"] = registry
    _crawler(ctx, registry)
    try:
        _maps_client(ctx, registry)
    except ConfigurationError as e:
        logger.error(f"Google Maps client unavailable, enrichment disabled: {e}")
    logger.info("Worker started")


async def shutdown(ctx: dict[str, Any]) -> None:
    logger.info("Worker shutting down")


# -- discovery ---------------------------------------------------------------


def _detail_args(source_slug: str) -> Callable[[dict[str, Any]], dict[str, Any]]:
    def build(venue: dict[str, Any]) -> dict[str, Any]:
        return {"source_slug": source_slug, "venue": dict(venue)}

    return build


async def index_source(
    ctx: dict[str, Any],
    source_slug: str,
    limit: int | None = None,
) -> dict[str, Any]:
    """
    Discovery task.

    Lists every venue the source publishes and schedules one delayed
    detail job per venue on the scraper queue.

    Args:
        ctx: arq context (contains the Redis connection)
        source_slug: Slug of the source to index
        limit: Optional limit on venues to schedule

    Returns:
        JobResult as dictionary
    """
    job_id = _job_id(ctx)
    result = JobResult(
        job_id=job_id,
        source_slug=source_slug,
        status=JobStatus.RUNNING,
        started_at=datetime.now(UTC),
    )

    try:
        registry = _registry(ctx)
        source_config = registry.require_source(source_slug)
        if not source_config.enabled:
            raise ConfigurationError(f"Source '{source_slug}' is disabled")

        adapter = get_adapter(source_config, _crawler(ctx, registry))
        if adapter is None:
            raise ConfigurationError(f"Adapter '{source_config.adapter}' not found")

        logger.info(f"Discovering venues for source '{source_slug}'...")
        venues = await adapter.discover()
        result.venues_discovered = len(venues)
        logger.info(f"Found {len(venues)} venues")

        scheduler = RateLimitedScheduler(
            ctx["redis"], base_interval=registry.scheduling.base_interval_seconds
        )
        report = await scheduler.schedule_detail_jobs(
            venues, DETAIL_JOB_NAME, _detail_args(source_slug), source_slug, limit=limit
        )
        result.jobs_enqueued = report.enqueued_count
        result.duplicates = len(report.duplicates)
        result.status = JobStatus.COMPLETED

    except (AdapterError, ConfigurationError, RedisError) as e:
        logger.error(f"Discovery for '{source_slug}' failed: {e}")
        result.status = JobStatus.FAILED
        result.errors.append(str(e))

    finally:
        result.completed_at = datetime.now(UTC)
        if result.started_at and result.completed_at:
            result.duration_seconds = (result.completed_at - result.started_at).total_seconds()

    with get_session() as session:
        recorder = JobOutcomeRecorder(session)
        if result.status == JobStatus.COMPLETED:
            recorder.record_success(job_id, INDEX_JOB_NAME, metadata=result.to_dict())
        else:
            recorder.record_error(
                job_id, INDEX_JOB_NAME, "; ".join(result.errors), metadata=result.to_dict()
            )

    return result.to_dict()


async def index_all_sources(ctx: dict[str, Any]) -> list[str]:
    """Cron task: enqueue one discovery job per enabled source."""
    today = datetime.now(UTC).date().isoformat()
    enqueued = []
    for source in _registry(ctx).list_enabled_sources():
        job = await ctx["redis"].enqueue_job(
            INDEX_JOB_NAME, source.slug, _job_id=f"{INDEX_JOB_NAME}:{source.slug}:{today}"
        )
        if job is not None:
            enqueued.append(source.slug)
    logger.info(f"Enqueued discovery for {len(enqueued)} sources")
    return enqueued


# -- detail ------------------------------------------------------------------


def _lookup_scheduler(ctx: dict[str, Any]) -> Callable[[str], Coroutine[Any, Any, None]]:
    async def schedule_lookup(venue_id: str) -> None:
        redis = ctx.get("redis")
        if redis is None:
            return
        try:
            await redis.enqueue_job(
                LOOKUP_JOB_NAME,
                venue_id,
                _job_id=f"{LOOKUP_JOB_NAME}:{venue_id}",
                _queue_name=SCRAPER_QUEUE,
            )
        except RedisError as e:
            logger.warning(f"Could not enqueue place lookup for venue {venue_id}: {e}")

    return schedule_lookup


async def process_venue_detail(
    ctx: dict[str, Any],
    source_slug: str,
    venue: dict[str, Any],
) -> dict[str, Any]:
    """
    Detail task: run one discovered venue through the pipeline.

    Transient failures (timeouts, failed fetches, locked database) raise
    ``arq.Retry`` until the job's tries are used up.

    Args:
        ctx: arq context
        source_slug: Slug of the source the venue came from
        venue: Raw venue dict from discovery

    Returns:
        DetailOutcome as dictionary
    """
    job_id = _job_id(ctx)
    registry = _registry(ctx)
    source_config = registry.require_source(source_slug)
    adapter = get_adapter(source_config, _crawler(ctx, registry))
    if adapter is None:
        raise ConfigurationError(f"Adapter '{source_config.adapter}' not found")

    with get_session() as session:
        resolver = photo_cache = None
        try:
            maps_client = _maps_client(ctx, registry)
        except ConfigurationError as e:
            logger.error(f"Geocoding and photos disabled for this job: {e}")
        else:
            resolver = AddressResolver(maps_client)
            photo_cache = _photo_cache(ctx, session, registry, maps_client)

        processor = DetailProcessor(
            VenueReconciler(
                session,
                resolver,
                photo_cache,
                lookup_timeout=registry.scheduling.detail_timeout_seconds,
            ),
            EventReconciler(session, clock=ctx.get("clock")),
            JobOutcomeRecorder(session),
            follow_up=_lookup_scheduler(ctx),
            request_timeout=registry.scheduling.detail_timeout_seconds,
        )
        source = get_or_create_source(session, source_config)
        outcome = await processor.process(job_id, adapter, venue, source)

    job_try = ctx.get("job_try", 1)
    if outcome.retryable and job_try < registry.scheduling.max_attempts:
        logger.info(f"Retrying detail job {job_id} (try {job_try}): {outcome.error}")
        raise Retry(defer=job_try * RETRY_DEFER_SECONDS)
    return outcome.to_dict()


async def lookup_place(ctx: dict[str, Any], venue_id: str) -> dict[str, Any]:
    """
    Follow-up task: geocode a venue still missing location data, then
    refresh its photos if they are missing or stale.

    Raises:
        ConfigurationError: If no Google Maps API key is configured
    """
    job_id = _job_id(ctx)
    registry = _registry(ctx)
    maps_client = _maps_client(ctx, registry)

    with get_session() as session:
        recorder = JobOutcomeRecorder(session)
        venue = session.get(VenueDB, venue_id)
        if venue is None:
            recorder.record_error(job_id, LOOKUP_JOB_NAME, f"Venue {venue_id} not found")
            return {"venue_id": venue_id, "found": False}

        photo_cache = _photo_cache(ctx, session, registry, maps_client)
        geocoded = False
        if venue.latitude is None or venue.city_id is None:
            reconciler = VenueReconciler(
                session,
                AddressResolver(maps_client),
                photo_cache,
                lookup_timeout=registry.scheduling.detail_timeout_seconds,
            )
            geocoded = await reconciler.apply_place_lookup(venue)

        images_before = len(venue.google_place_images)
        await photo_cache.maybe_refresh(venue)
        summary = {
            "venue_id": venue.id,
            "found": True,
            "geocoded": geocoded,
            "images": len(venue.google_place_images),
            "images_before": images_before,
        }
        recorder.record_success(job_id, LOOKUP_JOB_NAME, venue_id=venue.id, metadata=summary)
    return summary


# -- maintenance -------------------------------------------------------------


async def recalibrate_cities(ctx: dict[str, Any]) -> dict[str, int]:
    """Average city coordinates from their venues."""
    with get_session() as session:
        stats = recalibrate_city_coordinates(session)
        JobOutcomeRecorder(session).record_success(
            _job_id(ctx), "recalibrate_cities", metadata=stats
        )
    return stats


async def refresh_venue_photos(ctx: dict[str, Any], max_venues: int = 100) -> dict[str, Any]:
    """Re-fetch photos for venues with a place id."""
    registry = _registry(ctx)
    maps_client = _maps_client(ctx, registry)
    with get_session() as session:
        photo_cache = _photo_cache(ctx, session, registry, maps_client)
        stats = await photo_cache.refresh_all_venue_images(max_venues=max_venues)
        JobOutcomeRecorder(session).record_success(
            _job_id(ctx), "refresh_venue_photos", metadata=stats
        )
    return stats


# -- inline execution ----------------------------------------------------------


@dataclass
class InlineJob:
    """A job captured by InlineEnqueuer."""

    job_id: str
    function: str
    args: tuple[Any, ...]
    kwargs: dict[str, Any]
    queue_name: str | None = None
    defer_by: timedelta | None = None


class InlineEnqueuer:
    """
    In-process stand-in for ArqRedis.enqueue_job.

    Captures jobs instead of sending them to Redis and rejects a job id it
    has already seen, the way arq does while a job is queued or retained.
    """

    def __init__(self) -> None:
        self.jobs: list[InlineJob] = []
        self._seen: set[str] = set()

    async def enqueue_job(
        self,
        function: str,
        *args: Any,
        _job_id: str | None = None,
        _queue_name: str | None = None,
        _defer_by: timedelta | None = None,
        **kwargs: Any,
    ) -> InlineJob | None:
        job_id = _job_id or uuid4().hex
        if job_id in self._seen:
            return None
        self._seen.add(job_id)
        job = InlineJob(job_id, function, args, kwargs, _queue_name, _defer_by)
        self.jobs.append(job)
        return job

    def pop_all(self) -> list[InlineJob]:
        jobs, self.jobs = self.jobs, []
        return jobs


INLINE_FUNCTIONS: dict[str, Callable[..., Coroutine[Any, Any, Any]]] = {
    DETAIL_JOB_NAME: process_venue_detail,
    LOOKUP_JOB_NAME: lookup_place,
}


async def run_source_sync(
    source_slug: str,
    limit: int | None = None,
    ctx: dict[str, Any] | None = None,
) -> tuple[JobResult, list[dict[str, Any]]]:
    """
    Run discovery and every job it fans out in-process (without arq).

    Useful for CLI commands with --sync flag. Job delays are not honoured;
    the crawler's per-source rate limit still applies.

    Args:
        source_slug: Slug of the source to index
        limit: Optional limit on venues to process
        ctx: Context overrides (clients, registry, storage)

    Returns:
        Tuple of the discovery JobResult and the result of each fanned-out job
    """
    enqueuer = InlineEnqueuer()
    ctx = {**(ctx or {}), "redis": enqueuer}
    index_ctx = {**ctx, "job_id": str(uuid4())}
    result = JobResult.from_dict(await index_source(index_ctx, source_slug, limit))

    job_results: list[dict[str, Any]] = []
    pending = enqueuer.pop_all()
    while pending:
        for job in pending:
            handler = INLINE_FUNCTIONS[job.function]
            job_ctx = {**ctx, "job_id": job.job_id, "job_try": 1}
            try:
                job_results.append(await handler(job_ctx, *job.args, **job.kwargs))
            except Retry:
                # Sync runs make a single attempt per job
                job_results.append({"job_id": job.job_id, "status": "error", "retryable": True})
            except ConfigurationError as e:
                logger.error(f"Job {job.job_id} skipped: {e}")
                job_results.append({"job_id": job.job_id, "status": "error", "error": str(e)})
        pending = enqueuer.pop_all()

    return result, job_results


# -- queue helpers -------------------------------------------------------------


async def enqueue_index(source_slug: str, limit: int | None = None) -> str | None:
    """
    Enqueue a discovery job for async processing.

    Returns:
        Job ID, or None if a discovery job for the source is already queued
    """
    redis = await create_pool(get_redis_settings())
    try:
        job = await redis.enqueue_job(INDEX_JOB_NAME, source_slug, limit)
    finally:
        await redis.close()
    return job.job_id if job else None


async def get_job_status(job_id: str, queue_name: str | None = None) -> dict[str, Any] | None:
    """
    Get the status of a job.

    Args:
        job_id: Job ID to look up
        queue_name: Queue the job was sent to (default queue when None)

    Returns:
        Job info dict, or None if not found
    """
    redis = await create_pool(get_redis_settings())
    try:
        job = Job(job_id, redis, _queue_name=queue_name or redis.default_queue_name)
        status = await job.status()
        if status == ArqJobStatus.not_found:
            return None
        info = await job.result_info()
    finally:
        await redis.close()

    return {
        "job_id": job_id,
        "status": status.value,
        "result": info.result if info else None,
    }


class WorkerSettings:
    """arq worker settings for discovery and maintenance (default queue)."""

    functions = [index_source, recalibrate_cities, refresh_venue_photos]
    cron_jobs = [
        cron(index_all_sources, hour={3}, minute={0}),
        cron(recalibrate_cities, hour={2}, minute={0}),
        cron(refresh_venue_photos, hour={1}, minute={0}),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()
    max_jobs = 5
    job_timeout = 3600  # 1 hour
    keep_result = 86400  # 24 hours


class ScraperWorkerSettings:
    """arq worker settings for per-venue detail and place lookup jobs."""

    queue_name = SCRAPER_QUEUE
    functions = [
        func(process_venue_detail, max_tries=3, timeout=300),
        func(lookup_place, max_tries=3, timeout=120),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()
    max_jobs = 10
    job_timeout = 300
    keep_result = 3600  # duplicate detail jobs rejected for an hour after completion
