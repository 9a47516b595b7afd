"""
================================================================================
MangaLink v1.0 - Database Configuration
================================================================================
SQLAlchemy engine and session management.

USAGE:
    from mangalink_app.database import get_db_session

    with get_db_session() as session:
        mapping = session.query(ProviderMapping).filter_by(catalog_id="30013").first()

Stores accept an explicit session factory so tests can run against a
private in-memory database:

    factory = create_session_factory(create_db_engine("sqlite:///:memory:"))
    store = MappingStore(session_factory=factory)

CONFIGURATION:
    DATABASE_URL (PostgreSQL in production, SQLite fallback for development)
================================================================================
"""

from contextlib import contextmanager
from typing import Generator, Optional
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

from .config import get_database_url
from .models import Base

logger = logging.getLogger(__name__)


def create_db_engine(db_url: Optional[str] = None) -> Engine:
    """
    Create SQLAlchemy engine with optimized settings.

    PostgreSQL: Connection pooling for concurrent requests
    SQLite: WAL mode for better concurrency; in-memory databases share
    one connection so every session sees the same tables
    """
    db_url = db_url or get_database_url()
    is_sqlite = db_url.startswith('sqlite')

    if is_sqlite:
        in_memory = db_url in ('sqlite://', 'sqlite:///:memory:')
        kwargs = {
            'echo': False,
            'connect_args': {
                'check_same_thread': False,  # Allow multi-threaded access
                'timeout': 20  # Wait up to 20s for locks
            }
        }
        if in_memory:
            kwargs['poolclass'] = StaticPool
        engine = create_engine(db_url, **kwargs)

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    else:
        engine = create_engine(
            db_url,
            echo=False,
            poolclass=QueuePool,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,    # Verify connections before use
            pool_recycle=3600,
            connect_args={
                'connect_timeout': 10,
                'options': '-c timezone=utc'
            }
        )

    logger.info(f"Database engine created: {'SQLite' if is_sqlite else 'PostgreSQL'}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to an engine, with tables created."""
    Base.metadata.create_all(engine)
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False  # Keep objects usable after commit
    )


# Global engine and session factory
_engine = None
_SessionLocal = None


def get_engine(db_url: Optional[str] = None) -> Engine:
    """Get or create the global database engine (tables are created on first use)."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(db_url)
    return _engine


def get_session_factory(db_url: Optional[str] = None) -> sessionmaker:
    """Get or create the global session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = create_session_factory(get_engine(db_url))
    return _SessionLocal


# =============================================================================
# SESSION MANAGEMENT
# =============================================================================

@contextmanager
def get_db_session(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits when the block exits cleanly, rolls back and re-raises otherwise.
    """
    SessionLocal = factory or get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database session error: {e}")
        raise
    finally:
        session.close()

