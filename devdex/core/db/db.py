"""Database connection and session management for DevDex."""

import logging
from contextlib import contextmanager
from typing import Dict, Iterator

import backoff
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Owns the SQLAlchemy engine and hands out transactional sessions.

    Every ``get_session()`` block is one transaction: committed when the
    block exits normally, rolled back when it raises.
    """

    def __init__(self, database_url: str, echo: bool = False, pool_size: int = 5):
        self.database_url = database_url
        engine_kwargs: Dict = {"echo": echo, "future": True}

        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url == "sqlite://":
                # Share the single in-memory database across sessions
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_size"] = pool_size
            engine_kwargs["pool_pre_ping"] = True

        self.engine = create_engine(database_url, **engine_kwargs)
        self._session_factory = sessionmaker(
            bind=self.engine, expire_on_commit=False, future=True
        )
        logger.info(f"DatabaseManager initialized ({self.engine.dialect.name})")

    def create_tables(self):
        """Create all tables and indexes that do not exist yet."""
        Base.metadata.create_all(self.engine)
        logger.info("Database tables ensured")

    def drop_tables(self):
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def dispose(self):
        self.engine.dispose()


_db_managers: Dict[str, DatabaseManager] = {}


def get_database_manager(database_url: str, **kwargs) -> DatabaseManager:
    """Return a cached DatabaseManager for the given URL."""
    if database_url not in _db_managers:
        _db_managers[database_url] = DatabaseManager(database_url, **kwargs)
    return _db_managers[database_url]


def wait_for_db(db_manager: DatabaseManager, max_time: int = 60) -> bool:
    """Block until the database answers, retrying with exponential backoff."""

    @backoff.on_exception(
        backoff.expo,
        OperationalError,
        max_time=max_time,
        on_backoff=lambda details: logger.warning(
            f"Database not ready (attempt {details['tries']}), "
            f"retrying in {details['wait']:.1f}s"
        ),
    )
    def _ping():
        return db_manager.ping()

    result = _ping()
    logger.info("Database is available")
    return result
