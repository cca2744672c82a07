#orchestration_engine\infrastructure\sql\database.py

"""
Shared database for the durable state store and the mailbox channels.

The daemon and every module process it launches open the same URL, so the
SQLite default is tuned for several processes writing to one file.
"""

from typing import Any, Dict, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from orchestration_engine.config.settings import settings


# ============================================
# ORM declarative root
# ============================================
Base = declarative_base()

# Seconds a SQLite writer waits on a locked file before failing
SQLITE_BUSY_TIMEOUT = 30


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.echo_sql}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
    else:
        options.update(
            pool_pre_ping=True,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_recycle=settings.pool_recycle,
        )
    return options


def _enable_wal(sqlite_engine: Engine) -> None:
    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_conn, _record):
        # Module processes read their control channel while the daemon writes
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.close()


# ============================================
# Engine / sessions
# ============================================
def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """Build an engine for `database_url`, falling back to ORCH_DATABASE_URL."""
    url = database_url or settings.database_url
    db_engine = create_engine(url, **_engine_options(url))
    if db_engine.dialect.name == "sqlite":
        _enable_wal(db_engine)
    return db_engine


def get_session_factory(engine_instance: Optional[Engine] = None):
    """Session factory for the stores; defaults to the process-wide engine."""
    return sessionmaker(
        bind=engine_instance if engine_instance is not None else engine,
        autoflush=False,
        expire_on_commit=False,
    )


# Process-wide defaults, used by the container and the module runner
engine = create_db_engine()
SessionLocal = get_session_factory(engine)


# ============================================
# Schema
# ============================================
def init_db(engine_instance: Optional[Engine] = None) -> None:
    """Create the state and mailbox tables if missing."""
    from orchestration_engine.infrastructure.sql import models  # noqa: F401

    Base.metadata.create_all(bind=engine_instance if engine_instance is not None else engine)


def drop_db(engine_instance: Optional[Engine] = None) -> None:
    """Drop the state and mailbox tables. Used by test teardown."""
    Base.metadata.drop_all(bind=engine_instance if engine_instance is not None else engine)
