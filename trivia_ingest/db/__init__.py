"""Database initialization and persistence layer."""

from trivia_ingest.db.engine import (
    create_db_engine,
    get_database_url,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    reset_engine,
)
from trivia_ingest.db.models import (
    Base,
    CityDB,
    CountryDB,
    EventDB,
    EventSourceDB,
    JobOutcomeDB,
    SourceDB,
    VenueDB,
    as_utc,
)

__all__ = [
    # Engine
    "create_db_engine",
    "get_database_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "reset_engine",
    # Models
    "Base",
    "CountryDB",
    "CityDB",
    "VenueDB",
    "SourceDB",
    "EventDB",
    "EventSourceDB",
    "JobOutcomeDB",
    "as_utc",
]
