"""
Database Configuration and Session Management
============================================

Provides the ``Database`` handle: engine, session factory and table creation
for the payment link ledger. The handle is constructed explicitly and passed
to the ledger and claim orchestrator; there is no module-level engine.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import Config
from models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection"""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """Build an engine tuned for the target backend"""
    if database_url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,  # request workers run in a thread pool
            "timeout": Config.SQLITE_BUSY_TIMEOUT,  # concurrent writers wait instead of failing
        }
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            engine = create_engine(database_url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
        else:
            engine = create_engine(database_url, echo=echo, connect_args=connect_args)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    # PostgreSQL and friends: conservative pool
    return create_engine(
        database_url,
        pool_size=7,
        max_overflow=15,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,     # Recycle connections every hour
        pool_timeout=30,
        echo=echo,
    )


class Database:
    """Persistence handle injected into the ledger services"""

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None, engine: Optional[Engine] = None):
        self.database_url = database_url or Config.DATABASE_URL
        if not self.database_url:
            raise ValueError("DATABASE_URL is required")
        self.engine = engine or create_database_engine(
            self.database_url, echo=Config.DATABASE_ECHO if echo is None else echo
        )
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @contextmanager
    def managed_session(self) -> Iterator[Session]:
        """Session scope: commit on success, roll back on any exception"""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all database tables if they don't exist"""
        logger.info(f"🏗️ Creating database tables (if they don't exist): {', '.join(sorted(Base.metadata.tables))}")
        Base.metadata.create_all(bind=self.engine, checkfirst=True)

    def test_connection(self) -> bool:
        """Test database connection"""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"❌ Database connection test failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()
