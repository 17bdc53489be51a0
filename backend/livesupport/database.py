"""
Database engine and session management for the transcript archive.
Supports SQLite (default) and any SQLAlchemy-compatible server database.

Version: 1.0.0
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Optional
import logging
import os
import time

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()

REQUIRED_TABLES = ['archived_sessions', 'archived_messages']


def _enable_sqlite_wal_mode(dbapi_connection, connection_record):
    """Enable WAL mode for file-backed SQLite databases."""
    try:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()
        logger.debug("SQLite WAL mode enabled")
    except Exception as e:
        logger.warning(f"Failed to enable SQLite optimizations: {e}")


class Database:
    """
    Owns one engine and its session factory.

    Created by the application lifespan and disposed on shutdown; nothing in
    this module holds a process-wide engine.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and ":memory:" in self.database_url

    def connect(self) -> Engine:
        """Create the engine and session factory if not done yet."""
        if self.engine is not None:
            return self.engine

        logger.info("Creating database engine...")

        if self.is_sqlite:
            if not self.is_memory:
                db_path = self.database_url.replace('sqlite:///', '')
                db_dir = os.path.dirname(db_path)
                if db_dir:
                    Path(db_dir).mkdir(parents=True, exist_ok=True)

            self.engine = create_engine(
                self.database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=self.echo
            )

            if not self.is_memory:
                event.listen(self.engine, "connect", _enable_sqlite_wal_mode)
        else:
            self.engine = create_engine(
                self.database_url,
                pool_pre_ping=True,
                pool_recycle=3600,
                echo=self.echo
            )

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
            expire_on_commit=False
        )

        logger.info(f"✓ Database engine created ({self.engine.dialect.name})")
        return self.engine

    def init_db(self) -> None:
        """Create archive tables."""
        engine = self.connect()

        from .models import transcript  # noqa: F401  registers tables

        start_time = time.time()
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info(f"✓ Database tables ready in {time.time() - start_time:.2f}s")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Transactional scope: commit on success, roll back on error."""
        if self.SessionLocal is None:
            self.connect()

        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database session error: {e}")
            db.rollback()
            raise
        finally:
            db.close()

    def check_connection(self, max_retries: int = 3, retry_delay: float = 0.5) -> bool:
        """Check database connectivity with exponential backoff."""
        if self.engine is None:
            logger.error("Database engine not initialized")
            return False

        for attempt in range(max_retries):
            try:
                with self.engine.connect() as connection:
                    result = connection.execute(text("SELECT 1"))
                    if result.fetchone()[0] == 1:
                        return True
            except (DisconnectionError, OperationalError) as e:
                logger.warning(
                    f"Database connection check failed "
                    f"(attempt {attempt + 1}/{max_retries}): {e}"
                )
                if attempt < max_retries - 1:
                    time.sleep(retry_delay)
                    retry_delay *= 2

        logger.error("Database connection check failed after all retries")
        return False

    def check_tables_exist(self) -> bool:
        if self.engine is None:
            return False

        table_names = inspect(self.engine).get_table_names()
        missing = [table for table in REQUIRED_TABLES if table not in table_names]
        if missing:
            logger.error(f"Missing tables: {missing}")
            return False
        return True

    def get_info(self) -> Dict[str, Any]:
        return {
            "dialect": self.engine.dialect.name if self.engine else None,
            "initialized": self.engine is not None,
            "in_memory": self.is_memory,
        }

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            logger.info("✓ Database engine disposed")
        self.engine = None
        self.SessionLocal = None


__all__ = ['Base', 'Database', 'REQUIRED_TABLES']
