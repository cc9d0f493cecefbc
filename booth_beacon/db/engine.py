"""
Crawl store connection.

One process-wide engine backs the source registry, snapshot cache,
canonical booths and learned patterns. SQLite is the default; any
SQLAlchemy URL can be given through ``DATABASE_URL``.
"""

import os
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

DEFAULT_DB_PATH = Path.home() / ".booth_beacon" / "booth_beacon.db"
MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_database_url(db_path: Path | str | None = None) -> str:
    """
    Resolve the crawl store URL.

    An explicit path wins, then ``DATABASE_URL`` (a full URL or a bare
    SQLite file path), then ``~/.booth_beacon/booth_beacon.db``. The
    parent directory of a SQLite file is created if needed.
    """
    if db_path is None and "://" in os.environ.get("DATABASE_URL", ""):
        return os.environ["DATABASE_URL"]

    path = Path(db_path or os.environ.get("DATABASE_URL") or DEFAULT_DB_PATH).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def get_engine(db_path: Path | str | None = None) -> Engine:
    """Shared engine, created on first use."""
    global _engine
    if _engine is None:
        url = get_database_url(db_path)
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(url, connect_args=connect_args)
    return _engine


@contextmanager
def get_session(db_path: Path | str | None = None) -> Generator[Session, None, None]:
    """
    Open a session on the shared engine.

    Callers commit their own work; the session is always closed.

    Example:
        with get_session() as session:
            SourceRegistry(session).sync_from_config(config)
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autoflush=False, bind=get_engine(db_path))
    session = _session_factory()
    try:
        yield session
    finally:
        session.close()


def init_db(db_path: Path | str | None = None) -> None:
    """Create any missing tables straight from the ORM models."""
    from booth_beacon.db.models import Base

    Base.metadata.create_all(bind=get_engine(db_path))


def run_migrations(db_path: Path | str | None = None) -> None:
    """
    Upgrade the crawl store to the newest Alembic revision.

    Raises:
        FileNotFoundError: alembic.ini is missing from the project root.
    """
    alembic_ini = Path(__file__).resolve().parents[2] / "alembic.ini"
    if not alembic_ini.exists():
        raise FileNotFoundError(f"Alembic config not found: {alembic_ini}")

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", get_database_url(db_path))
    command.upgrade(config, "head")
