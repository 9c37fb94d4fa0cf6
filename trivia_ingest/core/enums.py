"""Enums shared across the ingestion pipeline."""

from enum import Enum


class Frequency(str, Enum):
    """How often a quiz night recurs."""

    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class ResultStatus(str, Enum):
    """Outcome of a single job run, as persisted for observability."""

    SUCCESS = "success"
    ERROR = "error"
    UNKNOWN = "unknown"


class JobStatus(str, Enum):
    """Status of an ingestion job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class EventAction(str, Enum):
    """What the event reconciler did with an incoming event."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
