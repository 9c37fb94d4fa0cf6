"""
Rate-Limited Scheduler
======================

Fans a discovered venue list out into delayed per-venue detail jobs.

Job ``i`` is deferred by ``i * base_interval`` so a source is never hit
with a burst of detail requests. Each job gets a deterministic arq job id
built from the job name, source and venue, so arq rejects a duplicate while
the original is queued, running or its result is still retained.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Protocol

from trivia_ingest.core.text import normalize_whitespace, slugify

logger = logging.getLogger(__name__)

SCRAPER_QUEUE = "arq:scraper"


class JobEnqueuer(Protocol):
    """Anything with arq's ``enqueue_job`` signature (ArqRedis in production)."""

    async def enqueue_job(
        self,
        function: str,
        *args: Any,
        _job_id: str | None = None,
        _queue_name: str | None = None,
        _defer_by: timedelta | None = None,
        **kwargs: Any,
    ) -> Any: ...


def venue_key(venue: Mapping[str, Any]) -> str:
    """
    Stable identity for a discovered venue: slugified name plus a short
    hash of the normalized address.
    """
    name = slugify(str(venue.get("name") or "")) or "venue"
    address = normalize_whitespace(str(venue.get("address") or "")).lower()
    digest = hashlib.sha1(address.encode("utf-8")).hexdigest()[:10]
    return f"{name}-{digest}"


def detail_job_id(job_name: str, source_slug: str, venue: Mapping[str, Any]) -> str:
    return f"{job_name}:{source_slug}:{venue_key(venue)}"


@dataclass
class ScheduledJob:
    """One detail job handed to the queue."""

    job_id: str
    venue_name: str
    delay_seconds: float


@dataclass
class ScheduleReport:
    """What ``schedule_detail_jobs`` did with a venue list."""

    scheduled: list[ScheduledJob] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)

    @property
    def enqueued_count(self) -> int:
        return len(self.scheduled)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enqueued": self.enqueued_count,
            "duplicates": len(self.duplicates),
            "last_delay_seconds": self.scheduled[-1].delay_seconds if self.scheduled else 0.0,
        }


class RateLimitedScheduler:
    """
    Schedules detail jobs with monotonically increasing delays.

    Args:
        enqueuer: arq pool (or compatible) used to enqueue jobs
        base_interval: Seconds between consecutive jobs
        queue_name: Queue the detail worker listens on
    """

    def __init__(
        self,
        enqueuer: JobEnqueuer,
        base_interval: float = 2.0,
        queue_name: str = SCRAPER_QUEUE,
    ) -> None:
        self.enqueuer = enqueuer
        self.base_interval = base_interval
        self.queue_name = queue_name

    def delay_for(self, index: int) -> timedelta:
        return timedelta(seconds=index * self.base_interval)

    async def schedule_detail_jobs(
        self,
        venues: Sequence[Mapping[str, Any]],
        job_name: str,
        build_args: Callable[[Mapping[str, Any]], dict[str, Any]],
        source_slug: str,
        limit: int | None = None,
    ) -> ScheduleReport:
        """
        Enqueue one delayed detail job per venue.

        Args:
            venues: Raw venue payloads from discovery
            job_name: arq function name of the detail job
            build_args: Builds the job's keyword arguments from a venue
            source_slug: Slug of the source the venues came from
            limit: Only schedule the first N venues (test runs)

        Returns:
            ScheduleReport listing scheduled jobs and rejected duplicates
        """
        if limit is not None:
            venues = venues[:limit]

        report = ScheduleReport()
        seen: set[str] = set()

        for venue in venues:
            job_id = detail_job_id(job_name, source_slug, venue)
            if job_id in seen:
                report.duplicates.append(job_id)
                continue
            seen.add(job_id)

            delay = self.delay_for(len(report.scheduled))
            job = await self.enqueuer.enqueue_job(
                job_name,
                _job_id=job_id,
                _queue_name=self.queue_name,
                _defer_by=delay,
                **build_args(venue),
            )
            if job is None:
                logger.info(f"Skipping duplicate detail job {job_id}")
                report.duplicates.append(job_id)
                continue

            report.scheduled.append(
                ScheduledJob(
                    job_id=job_id,
                    venue_name=str(venue.get("name") or ""),
                    delay_seconds=delay.total_seconds(),
                )
            )

        logger.info(
            f"Scheduled {report.enqueued_count} {job_name} jobs for {source_slug} "
            f"({len(report.duplicates)} duplicates skipped)"
        )
        return report
