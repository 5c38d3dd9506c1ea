"""
Database Connection Module

Provides synchronous session management for the rule store, the
evaluation harness and the background workers.

Usage:
    with get_db_session() as session:
        result = session.execute(query)

    # Components take a session factory so tests can point them at
    # their own database:
    factory = create_session_factory(DatabaseSettings(url="sqlite:///tmp.db"))
    with session_scope(factory) as session:
        ...
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, QueuePool, StaticPool

from config.database import DatabaseSettings, get_database_settings
from database.models import Base

logger = logging.getLogger(__name__)

# Global sync engine and session factory (lazy initialization)
_sync_engine: Optional[Engine] = None
_sync_session_factory: Optional[sessionmaker] = None


def build_engine(settings: DatabaseSettings) -> Engine:
    """
    Create a SQLAlchemy engine for the given settings.

    Args:
        settings: Database settings.

    Returns:
        Engine: Synchronous SQLAlchemy engine.
    """
    logger.info(
        "Creating database engine",
        extra={
            "driver": settings.driver,
            "database": settings.name if settings.is_postgres else str(settings.sqlite_path),
        }
    )

    # Pool configuration differs for SQLite vs PostgreSQL
    if settings.is_memory:
        pool_class = StaticPool
        pool_kwargs = {}
    elif settings.is_sqlite:
        pool_class = NullPool
        pool_kwargs = {}
    else:
        pool_class = QueuePool
        pool_kwargs = {
            "pool_size": settings.pool_size,
            "max_overflow": settings.max_overflow,
            "pool_timeout": settings.pool_timeout,
            "pool_recycle": settings.pool_recycle,
            "pool_pre_ping": settings.pool_pre_ping,
        }

    return create_engine(
        settings.sync_url,
        echo=settings.echo_sql,
        poolclass=pool_class,
        connect_args=settings.get_connect_args(),
        **pool_kwargs,
    )


def create_session_factory(
    settings: Optional[DatabaseSettings] = None,
    create_tables: bool = True,
) -> sessionmaker:
    """
    Build a standalone session factory, optionally creating the schema.

    Args:
        settings: Database settings. If None, loads from environment.
        create_tables: Create missing tables on the engine.

    Returns:
        sessionmaker bound to a new engine.
    """
    engine = build_engine(settings or get_database_settings())
    if create_tables:
        init_database(engine)
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


def get_sync_engine(settings: Optional[DatabaseSettings] = None) -> Engine:
    """
    Get or create the process-wide synchronous engine.

    Args:
        settings: Database settings. If None, loads from environment.
    """
    global _sync_engine

    if _sync_engine is None:
        _sync_engine = build_engine(settings or get_database_settings())

    return _sync_engine


def get_sync_session_factory(
    settings: Optional[DatabaseSettings] = None
) -> sessionmaker:
    """
    Get or create the process-wide session factory.

    Args:
        settings: Optional database settings.

    Returns:
        sessionmaker: Factory for creating sync sessions.
    """
    global _sync_session_factory

    if _sync_session_factory is None:
        engine = get_sync_engine(settings)
        init_database(engine)
        _sync_session_factory = sessionmaker(
            bind=engine,
            expire_on_commit=False,
            autoflush=False,
            autocommit=False,
        )

    return _sync_session_factory


def init_database(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Transactional scope around a series of operations.

    Yields:
        Session that commits on success, rolls back on error.
    """
    session = session_factory()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_db_session(
    settings: Optional[DatabaseSettings] = None
) -> Generator[Session, None, None]:
    """
    Get a session from the process-wide factory as a context manager.

    Usage:
        with get_db_session() as session:
            session.add(new_record)
    """
    with session_scope(get_sync_session_factory(settings)) as session:
        yield session


def close_sync_engine() -> None:
    """
    Close the sync database engine and cleanup connections.

    Should be called during application shutdown.
    """
    global _sync_engine, _sync_session_factory

    if _sync_engine is not None:
        logger.info("Closing sync database engine")
        _sync_engine.dispose()
        _sync_engine = None
        _sync_session_factory = None
