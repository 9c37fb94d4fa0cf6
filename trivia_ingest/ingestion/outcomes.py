"""
Job Outcome Recording
=====================

Persists a small summary of every job run (status, venue, event, error)
so operators can see what each discovery and detail job did.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trivia_ingest.core.enums import ResultStatus
from trivia_ingest.core.schema import JobOutcome
from trivia_ingest.db.models import JobOutcomeDB

logger = logging.getLogger(__name__)


class JobOutcomeRecorder:
    """
    Writes JobOutcome rows.

    Recording is observability only: storage failures are logged and never
    change the outcome of the job being recorded.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def record(self, outcome: JobOutcome) -> JobOutcomeDB | None:
        """Persist an outcome; returns None if it could not be stored."""
        row = JobOutcomeDB(
            job_id=outcome.job_id,
            job_name=outcome.job_name,
            processed_at=outcome.processed_at,
            result_status=outcome.result_status.value,
            venue_id=outcome.venue_id,
            event_id=outcome.event_id,
            error=outcome.error,
            metadata_json=json.dumps(outcome.metadata, default=str),
        )
        try:
            self.session.add(row)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception(f"Failed to record outcome for job {outcome.job_id}: {e}")
            return None
        return row

    def record_success(
        self,
        job_id: str | None,
        job_name: str,
        venue_id: str | None = None,
        event_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> JobOutcomeDB | None:
        if job_id is None:
            return None
        return self.record(
            JobOutcome(
                job_id=job_id,
                job_name=job_name,
                result_status=ResultStatus.SUCCESS,
                venue_id=venue_id,
                event_id=event_id,
                metadata=metadata or {},
            )
        )

    def record_error(
        self,
        job_id: str | None,
        job_name: str,
        error: BaseException | str,
        venue_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> JobOutcomeDB | None:
        if job_id is None:
            return None
        message = error if isinstance(error, str) else f"{type(error).__name__}: {error}"
        return self.record(
            JobOutcome(
                job_id=job_id,
                job_name=job_name,
                result_status=ResultStatus.ERROR,
                venue_id=venue_id,
                error=message,
                metadata=metadata or {},
            )
        )

    def latest(self, job_id: str) -> JobOutcomeDB | None:
        """Most recent outcome recorded for a job id."""
        return self.session.scalars(
            select(JobOutcomeDB)
            .where(JobOutcomeDB.job_id == job_id)
            .order_by(JobOutcomeDB.processed_at.desc())
        ).first()
