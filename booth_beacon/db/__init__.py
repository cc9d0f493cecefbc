"""Database initialization and persistence layer."""

from booth_beacon.db.engine import (
    get_database_url,
    get_engine,
    get_session,
    init_db,
    run_migrations,
)
from booth_beacon.db.models import (
    Base,
    BoothDB,
    ExtractionPatternDB,
    SnapshotDB,
    SourceDB,
)
from booth_beacon.db.repositories import (
    BoothRepository,
    PatternRepository,
    SnapshotRepository,
    SourceRepository,
)

__all__ = [
    # Engine
    "get_database_url",
    "get_engine",
    "get_session",
    "init_db",
    "run_migrations",
    # Models
    "Base",
    "SourceDB",
    "SnapshotDB",
    "BoothDB",
    "ExtractionPatternDB",
    # Repositories
    "SourceRepository",
    "SnapshotRepository",
    "BoothRepository",
    "PatternRepository",
]
