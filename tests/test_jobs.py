"""
Tests for the arq job functions, run directly with a hand-built context.

The discovery -> detail -> lookup flow is exercised end to end against a
temporary database, a fake mapping API and a fake queue.
"""

from datetime import UTC, datetime, timedelta

import httpx
import pytest
from arq import Retry
from sqlalchemy import func, select

from trivia_ingest.core.enums import JobStatus
from trivia_ingest.db.models import (
    EventDB,
    EventSourceDB,
    JobOutcomeDB,
    SourceDB,
    VenueDB,
    as_utc,
)
from trivia_ingest.ingestion.crawler import Crawler
from trivia_ingest.ingestion.jobs import (
    INDEX_JOB_NAME,
    LOOKUP_JOB_NAME,
    InlineEnqueuer,
    JobResult,
    index_all_sources,
    index_source,
    lookup_place,
    process_venue_detail,
    run_source_sync,
    sync_sources,
)
from trivia_ingest.ingestion.registry import RateLimitConfig, SourceConfig, SourceRegistry
from trivia_ingest.ingestion.scheduler import SCRAPER_QUEUE

PUB_A = {"name": "Pub A", "address": "1 High St", "schedule": "Wednesday 20:00"}
RUN_AT = datetime(2026, 3, 4, 9, 30, tzinfo=UTC)


async def _no_sleep(seconds: float) -> None:
    return None


def _registry(*sources: SourceConfig) -> SourceRegistry:
    registry = SourceRegistry()
    for source in sources or (_sample_source(),):
        registry.register(source)
    return registry


def _sample_source(**kwargs) -> SourceConfig:
    values = {
        "name": "Sample",
        "slug": "sample",
        "adapter": "sample",
        "website_url": "https://example.com/quizzes",
        "custom_config": {"venues": [PUB_A]},
    }
    values.update(kwargs)
    return SourceConfig(**values)


def _count(session, model) -> int:
    return session.scalar(select(func.count()).select_from(model))


@pytest.fixture
def google(make_google, make_place):
    return make_google(candidate=make_place(), photo_refs=["refA"])


@pytest.fixture
def ctx(google, storage, fake_enqueuer):
    return {
        "registry": _registry(),
        "maps_client": google.client(),
        "storage": storage,
        "photo_transport": google.transport,
        "redis": fake_enqueuer,
    }


class TestIndexSource:
    """Tests for the discovery job."""

    @pytest.mark.asyncio
    async def test_schedules_detail_jobs(self, db_path, ctx, fake_enqueuer) -> None:
        result = await index_source({**ctx, "job_id": "index-1"}, "sample")

        assert result["status"] == JobStatus.COMPLETED.value
        assert result["venues_discovered"] == 1
        assert result["jobs_enqueued"] == 1

        job = fake_enqueuer.jobs[0]
        assert job["function"] == "process_venue_detail"
        assert job["queue_name"] == SCRAPER_QUEUE
        assert job["defer_by"] == timedelta(0)
        assert job["kwargs"] == {"source_slug": "sample", "venue": PUB_A}

    @pytest.mark.asyncio
    async def test_rerun_reports_duplicates(self, db_path, ctx) -> None:
        await index_source(ctx, "sample")
        result = await index_source(ctx, "sample")

        assert result["jobs_enqueued"] == 0
        assert result["duplicates"] == 1

    @pytest.mark.asyncio
    async def test_outcome_recorded(self, db_path, ctx, session) -> None:
        await index_source({**ctx, "job_id": "index-1"}, "sample")

        row = session.scalars(select(JobOutcomeDB).where(JobOutcomeDB.job_id == "index-1")).one()
        assert row.job_name == INDEX_JOB_NAME
        assert row.result_status == "success"
        assert row.metadata_dict["venues_discovered"] == 1

    @pytest.mark.asyncio
    async def test_disabled_source_fails(self, db_path, ctx) -> None:
        ctx["registry"] = _registry(_sample_source(enabled=False))
        result = await index_source(ctx, "sample")

        assert result["status"] == JobStatus.FAILED.value
        assert "disabled" in result["errors"][0]

    @pytest.mark.asyncio
    async def test_unknown_source_fails(self, db_path, ctx) -> None:
        result = await index_source(ctx, "missing")
        assert result["status"] == JobStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_discovery_error_fails(self, db_path, ctx) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        ctx["registry"] = _registry(
            SourceConfig(name="Quizmeisters", slug="quizmeisters", adapter="quizmeisters")
        )
        ctx["crawler"] = Crawler(transport=httpx.MockTransport(handler), sleep=_no_sleep)

        result = await index_source(ctx, "quizmeisters")

        assert result["status"] == JobStatus.FAILED.value
        assert "Quizmeisters" in result["errors"][0]

    @pytest.mark.asyncio
    async def test_index_all_sources(self, ctx, fake_enqueuer) -> None:
        ctx["registry"] = _registry(
            _sample_source(), _sample_source(slug="off", enabled=False)
        )
        assert await index_all_sources(ctx) == ["sample"]
        # Same day, same job id
        assert await index_all_sources(ctx) == []
        assert fake_enqueuer.jobs[0]["job_id"].startswith(f"{INDEX_JOB_NAME}:sample:")


class TestVenueDetailFlow:
    """End-to-end discovery, detail and lookup for one venue."""

    async def _run_detail(self, ctx, fake_enqueuer) -> dict:
        await index_source(ctx, "sample")
        job = next(j for j in fake_enqueuer.jobs if j["function"] == "process_venue_detail")
        job_ctx = {**ctx, "job_id": job["job_id"], "job_try": 1}
        return await process_venue_detail(job_ctx, **job["kwargs"])

    @pytest.mark.asyncio
    async def test_pub_a(self, db_path, ctx, fake_enqueuer, session, storage) -> None:
        ctx["clock"] = lambda: RUN_AT
        outcome = await self._run_detail(ctx, fake_enqueuer)

        assert outcome["status"] == "success"
        assert outcome["event_action"] == "created"

        venue = session.scalars(select(VenueDB)).one()
        assert venue.name == "Pub A"
        assert venue.place_id == "place-pub-a"
        assert venue.latitude is not None
        assert venue.city_id is not None
        assert len(venue.google_place_images) == 1
        assert storage.exists("google_place_images/pub-a/original_1.jpg")

        event = session.scalars(select(EventDB)).one()
        assert event.venue_id == venue.id
        assert event.day_of_week == 3
        assert event.start_time.strftime("%H:%M") == "20:00"
        assert event.frequency == "weekly"

        link = session.scalars(select(EventSourceDB)).one()
        sample = session.scalars(select(SourceDB).where(SourceDB.slug == "sample")).one()
        assert link.source_id == sample.id
        assert as_utc(link.last_seen_at) == RUN_AT

        detail_outcomes = session.scalars(
            select(JobOutcomeDB).where(JobOutcomeDB.job_name == "process_venue_detail")
        ).all()
        assert [row.result_status for row in detail_outcomes] == ["success"]

        lookup = fake_enqueuer.jobs[-1]
        assert lookup["function"] == LOOKUP_JOB_NAME
        assert lookup["args"] == (venue.id,)
        assert lookup["job_id"] == f"{LOOKUP_JOB_NAME}:{venue.id}"
        assert lookup["queue_name"] == SCRAPER_QUEUE

    @pytest.mark.asyncio
    async def test_reprocessing_is_idempotent(self, db_path, ctx, fake_enqueuer, session) -> None:
        await self._run_detail(ctx, fake_enqueuer)
        job = fake_enqueuer.jobs[0]
        again = await process_venue_detail({**ctx, "job_id": job["job_id"]}, **job["kwargs"])

        assert again["status"] == "success"
        assert again["event_action"] == "unchanged"
        assert _count(session, VenueDB) == 1
        assert _count(session, EventDB) == 1
        assert _count(session, EventSourceDB) == 1

    @pytest.mark.asyncio
    async def test_lookup_place(self, db_path, ctx, fake_enqueuer) -> None:
        await self._run_detail(ctx, fake_enqueuer)
        lookup = fake_enqueuer.jobs[-1]

        summary = await lookup_place({**ctx, "job_id": lookup["job_id"]}, *lookup["args"])

        assert summary["found"] is True
        assert summary["geocoded"] is False
        assert summary["images"] == 1

    @pytest.mark.asyncio
    async def test_lookup_missing_venue(self, db_path, ctx) -> None:
        summary = await lookup_place(ctx, "no-such-venue")
        assert summary == {"venue_id": "no-such-venue", "found": False}

    @pytest.mark.asyncio
    async def test_runs_without_google_key(self, db_path, ctx, fake_enqueuer, session) -> None:
        """Missing credentials disable enrichment but the venue is still stored."""
        del ctx["maps_client"]
        outcome = await self._run_detail(ctx, fake_enqueuer)

        assert outcome["status"] == "success"
        venue = session.scalars(select(VenueDB)).one()
        assert venue.latitude is None
        assert venue.google_place_images == []


class TestDetailRetries:
    """Tests for transient failure handling in the detail job."""

    @pytest.fixture
    def failing_ctx(self, ctx):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        ctx["registry"] = _registry(
            SourceConfig(
                name="Quizmeisters",
                slug="quizmeisters",
                adapter="quizmeisters",
                rate_limit=RateLimitConfig(requests_per_second=100, burst_limit=100),
            )
        )
        ctx["crawler"] = Crawler(transport=httpx.MockTransport(handler), sleep=_no_sleep)
        return ctx

    VENUE = {
        "name": "Pub A",
        "address": "1 High St",
        "url": "https://www.quizmeisters.com/venues/pub-a",
    }

    @pytest.mark.asyncio
    async def test_transient_failure_retries(self, db_path, failing_ctx) -> None:
        with pytest.raises(Retry):
            await process_venue_detail({**failing_ctx, "job_try": 1}, "quizmeisters", self.VENUE)

    @pytest.mark.asyncio
    async def test_last_try_returns_error(self, db_path, failing_ctx) -> None:
        outcome = await process_venue_detail(
            {**failing_ctx, "job_try": 3}, "quizmeisters", self.VENUE
        )
        assert outcome["status"] == "error"
        assert outcome["stage"] == "fetch"
        assert outcome["retryable"] is True


class TestRunSourceSync:
    """Tests for in-process execution."""

    @pytest.mark.asyncio
    async def test_runs_whole_pipeline(self, db_path, ctx, session) -> None:
        del ctx["redis"]
        result, job_results = await run_source_sync("sample", ctx=ctx)

        assert isinstance(result, JobResult)
        assert result.status == JobStatus.COMPLETED
        assert result.jobs_enqueued == 1
        assert job_results[0]["status"] == "success"
        assert job_results[1]["found"] is True
        assert _count(session, EventDB) == 1

    @pytest.mark.asyncio
    async def test_limit(self, db_path, ctx) -> None:
        ctx["registry"] = _registry(_sample_source(custom_config={}))
        result, job_results = await run_source_sync("sample", limit=2, ctx=ctx)

        assert result.venues_discovered == 3
        assert result.jobs_enqueued == 2
        assert len([r for r in job_results if "stage" in r]) == 2


class TestInlineEnqueuer:
    """Tests for the in-process queue."""

    @pytest.mark.asyncio
    async def test_rejects_seen_ids(self) -> None:
        enqueuer = InlineEnqueuer()
        assert await enqueuer.enqueue_job("f", _job_id="a") is not None
        assert await enqueuer.enqueue_job("f", _job_id="a") is None
        assert [job.job_id for job in enqueuer.pop_all()] == ["a"]
        assert enqueuer.pop_all() == []


class TestSyncSources:
    """Tests for seeding source rows from config."""

    def test_creates_and_updates(self, session) -> None:
        registry = _registry()
        sync_sources(session, registry)
        registry.register(_sample_source(name="Renamed"))
        rows = sync_sources(session, registry)

        assert [row.name for row in rows] == ["Renamed"]
        assert _count(session, SourceDB) == 1
