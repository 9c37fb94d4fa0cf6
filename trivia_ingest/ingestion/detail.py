"""
Detail Processing
=================

Runs one discovered venue through the pipeline:

    fetch -> extract -> parse schedule -> reconcile venue
          -> reconcile event -> schedule follow-up -> record outcome

A failing stage ends processing with an error outcome. Stages that
already committed (the venue, typically) stay committed; re-running the
job is safe because every write is an idempotent upsert.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from trivia_ingest.core.enums import EventAction, ResultStatus
from trivia_ingest.core.schedule import ScheduleParseError, parse_schedule
from trivia_ingest.db.models import SourceDB, VenueDB
from trivia_ingest.ingestion.adapters.base import BaseAdapter
from trivia_ingest.ingestion.events import EventReconciler
from trivia_ingest.ingestion.outcomes import JobOutcomeRecorder
from trivia_ingest.ingestion.venues import VenueReconciler

logger = logging.getLogger(__name__)

DETAIL_JOB_NAME = "process_venue_detail"


class DetailStage(str, Enum):
    """Pipeline stages, in order."""

    FETCH = "fetch"
    EXTRACT = "extract"
    PARSE_SCHEDULE = "parse_schedule"
    RECONCILE_VENUE = "reconcile_venue"
    RECONCILE_EVENT = "reconcile_event"
    FOLLOW_UP = "follow_up"
    DONE = "done"


@dataclass
class DetailOutcome:
    """Result of processing one venue."""

    venue_name: str
    status: ResultStatus = ResultStatus.UNKNOWN
    stage: DetailStage = DetailStage.FETCH
    venue_id: str | None = None
    event_id: str | None = None
    event_action: EventAction | None = None
    error: str | None = None
    retryable: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    def fail(self, stage: DetailStage, error: str, retryable: bool = False) -> DetailOutcome:
        self.status = ResultStatus.ERROR
        self.stage = stage
        self.error = error
        self.retryable = retryable
        logger.error(f"Failed to process venue {self.venue_name!r} at {stage.value}: {error}")
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "venue_name": self.venue_name,
            "status": self.status.value,
            "stage": self.stage.value,
            "venue_id": self.venue_id,
            "event_id": self.event_id,
            "event_action": self.event_action.value if self.event_action else None,
            "error": self.error,
            "retryable": self.retryable,
        }


class DetailProcessor:
    """
    Processes single venues for any adapter.

    Args:
        venue_reconciler: Upserts venues and runs enrichment
        event_reconciler: Upserts events and provenance
        recorder: Persists the job outcome
        follow_up: Called with the venue id to schedule the place lookup job
        request_timeout: Deadline in seconds for the detail page fetch
    """

    def __init__(
        self,
        venue_reconciler: VenueReconciler,
        event_reconciler: EventReconciler,
        recorder: JobOutcomeRecorder,
        follow_up: Callable[[str], Awaitable[Any]] | None = None,
        request_timeout: float = 60.0,
    ) -> None:
        self.venue_reconciler = venue_reconciler
        self.event_reconciler = event_reconciler
        self.recorder = recorder
        self.follow_up = follow_up
        self.request_timeout = request_timeout

    async def process(
        self,
        job_id: str | None,
        adapter: BaseAdapter,
        raw_venue: dict[str, Any],
        source: SourceDB,
    ) -> DetailOutcome:
        """
        Run the pipeline for one venue and record the outcome.

        Args:
            job_id: Job id the outcome is recorded under (None skips recording)
            adapter: Adapter for the venue's source
            raw_venue: Venue dict as produced by ``adapter.discover()``
            source: Persisted source row

        Returns:
            DetailOutcome
        """
        outcome = DetailOutcome(venue_name=str(raw_venue.get("name") or ""))
        logger.info(f"Processing venue: {outcome.venue_name}")

        await self._run(outcome, adapter, raw_venue, source)

        if outcome.ok:
            self.recorder.record_success(
                job_id,
                DETAIL_JOB_NAME,
                venue_id=outcome.venue_id,
                event_id=outcome.event_id,
                metadata=outcome.metadata,
            )
        else:
            self.recorder.record_error(
                job_id,
                DETAIL_JOB_NAME,
                outcome.error or "unknown error",
                venue_id=outcome.venue_id,
                metadata={"venue": outcome.venue_name, "stage": outcome.stage.value},
            )
        return outcome

    async def _run(
        self,
        outcome: DetailOutcome,
        adapter: BaseAdapter,
        raw_venue: dict[str, Any],
        source: SourceDB,
    ) -> None:
        page: bytes | None = None
        if adapter.needs_detail_page:
            url = adapter.detail_url(raw_venue)
            if not url:
                outcome.fail(DetailStage.FETCH, "venue has no detail page URL")
                return
            try:
                async with asyncio.timeout(self.request_timeout):
                    fetched = await adapter.fetch_detail(url)
            except TimeoutError:
                outcome.fail(
                    DetailStage.FETCH, f"timed out after {self.request_timeout}s", retryable=True
                )
                return
            if not fetched.success:
                outcome.fail(DetailStage.FETCH, fetched.error or "fetch failed", retryable=True)
                return
            page = fetched.content

        outcome.stage = DetailStage.EXTRACT
        try:
            normalized = adapter.extract(raw_venue, page)
        except (KeyError, TypeError, ValueError) as e:
            outcome.fail(DetailStage.EXTRACT, f"{type(e).__name__}: {e}")
            return
        errors = adapter.validate(normalized)
        if errors:
            outcome.fail(DetailStage.EXTRACT, "; ".join(errors))
            return

        outcome.stage = DetailStage.PARSE_SCHEDULE
        try:
            schedule = parse_schedule(
                normalized.time_text,
                day_of_week=normalized.day_of_week,
                start_time=normalized.start_time,
                frequency_text=normalized.raw_title,
            )
        except ScheduleParseError as e:
            outcome.fail(DetailStage.PARSE_SCHEDULE, str(e))
            return

        outcome.stage = DetailStage.RECONCILE_VENUE
        # Enrichment inside upsert carries its own deadlines
        try:
            venue_result = await self.venue_reconciler.upsert(normalized.venue_attrs())
        except SQLAlchemyError as e:
            self.venue_reconciler.session.rollback()
            # A unique conflict means another job just created the venue
            outcome.fail(
                DetailStage.RECONCILE_VENUE,
                f"{type(e).__name__}: {e}",
                retryable=isinstance(e, (IntegrityError, OperationalError)),
            )
            return
        if not venue_result.ok:
            outcome.fail(DetailStage.RECONCILE_VENUE, f"invalid venue: {venue_result.errors}")
            return

        venue: VenueDB = venue_result.venue
        outcome.venue_id = venue.id

        outcome.stage = DetailStage.RECONCILE_EVENT
        event_data = normalized.event_data(adapter.source_url_for(venue))
        event_data.day_of_week = schedule.day_of_week
        event_data.start_time = schedule.start_time
        try:
            event_result = self.event_reconciler.process(venue, event_data, source.id)
        except ScheduleParseError as e:
            outcome.fail(DetailStage.RECONCILE_EVENT, str(e))
            return
        except SQLAlchemyError as e:
            outcome.fail(
                DetailStage.RECONCILE_EVENT,
                f"{type(e).__name__}: {e}",
                retryable=isinstance(e, OperationalError),
            )
            return

        outcome.event_id = event_result.event.id
        outcome.event_action = event_result.action

        outcome.stage = DetailStage.FOLLOW_UP
        if self.follow_up is not None:
            try:
                await self.follow_up(venue.id)
            except (OSError, TimeoutError) as e:
                logger.warning(f"Could not schedule place lookup for venue {venue.id}: {e}")

        outcome.stage = DetailStage.DONE
        outcome.status = ResultStatus.SUCCESS
        outcome.metadata = {
            "name": venue.name,
            "address": venue.address,
            "day_of_week": schedule.day_of_week,
            "start_time": schedule.start_time.strftime("%H:%M"),
            "frequency": schedule.frequency.value,
            "url": event_data.source_url,
            "event_action": event_result.action.value,
        }
        logger.info(f"Successfully processed venue: {venue.name}")
