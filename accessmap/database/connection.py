"""
Database connection management for AccessMap
Supports PostgreSQL and SQLite (development and tests)
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.exc import SQLAlchemyError

from accessmap.core.config import settings
from .models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseConnection:
    """
    Database connection manager with connection pooling.

    The report store is the single source of truth for every component.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        echo: Optional[bool] = None
    ):
        """
        Initialize database connection.

        Args:
            database_url: SQLAlchemy connection URL
            pool_size: Connection pool size
            max_overflow: Max connections beyond pool_size
            pool_timeout: Timeout for getting connection from pool
            echo: Log SQL statements (defaults to settings.db_echo)
        """
        self.database_url = database_url or settings.database_url
        echo = settings.db_echo if echo is None else echo

        if self.is_sqlite:
            self.engine = self._create_sqlite_engine(echo, pool_timeout)
        else:
            self.engine = create_engine(
                self.database_url,
                poolclass=QueuePool,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_pre_ping=True,  # Verify connections before use
                echo=echo
            )

        # Session factory
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

        logger.info(f"Database connection initialized: {self._mask_url(self.database_url)}")

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def _create_sqlite_engine(self, echo: bool, timeout: int) -> Engine:
        """Create a thread-shareable SQLite engine with foreign keys enforced."""
        connect_args = {"check_same_thread": False, "timeout": timeout}
        in_memory = self.database_url in ("sqlite://", "sqlite:///:memory:")

        engine = create_engine(
            self.database_url,
            connect_args=connect_args,
            poolclass=StaticPool if in_memory else None,
            echo=echo
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    def _mask_url(self, url: str) -> str:
        """Mask password in connection URL for logging."""
        if "@" in url and ":" in url:
            parts = url.split("@")
            credentials = parts[0].split(":")
            if len(credentials) >= 3:
                credentials[-1] = "****"
            return ":".join(credentials) + "@" + parts[1]
        return url

    def create_tables(self) -> None:
        """Create all database tables."""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database tables created successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create tables: {e}")
            raise

    def check_connection(self) -> bool:
        """
        Check if database connection is healthy.

        Returns:
            True if connection is healthy
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Commits on success and rolls back on any error, so a failed
        operation never leaves a partially written report behind.

        Yields:
            SQLAlchemy session
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Close database connection and dispose engine."""
        self.engine.dispose()
        logger.info("Database connection closed")


def init_db(database_url: Optional[str] = None) -> DatabaseConnection:
    """
    Open the report store and create missing tables.

    Args:
        database_url: Optional database URL override

    Returns:
        DatabaseConnection instance
    """
    db = DatabaseConnection(database_url=database_url)
    db.create_tables()
    return db
