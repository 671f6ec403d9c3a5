"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine construction (sessions are owned by storage.sql.SqlStore)
- Connection pooling with sane defaults
- Test database support (in-memory SQLite via StaticPool)
- Table definitions for users, stories, rate limits, activity logs, settings, api keys
"""
from typing import Optional
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Float, JSON, Text, Index, ForeignKey, UniqueConstraint, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func, select
import logging
import os

from backend.core.config import settings

logger = logging.getLogger("socialstory.database")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour
SQLITE_BUSY_TIMEOUT = 30  # seconds a writer waits for the database lock


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def _is_sqlite_memory(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def create_db_engine(url: str) -> Engine:
    """Create an engine with pooling appropriate for the backend."""
    if url.startswith("sqlite"):
        if _is_sqlite_memory(url):
            # One shared connection, otherwise every checkout sees an empty database
            engine = create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                echo=False,
            )
        else:
            engine = create_engine(
                url,
                connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
                echo=False,
            )

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            # pysqlite's own transaction handling lets SAVEPOINT/RELEASE commit on its own;
            # take over BEGIN so nested savepoints stay inside the unit of work
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            # Take the write lock up front: one writer at a time, no SHARED->RESERVED deadlock
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL query logging
    )


def create_all_tables(engine: Engine) -> None:
    """Create every table in metadata; existing tables are left alone."""
    metadata.create_all(bind=engine)


def drop_all_tables(engine: Engine) -> None:
    """Drop every table in metadata. Tests and local resets only."""
    metadata.drop_all(bind=engine)


def check_connection(engine: Engine) -> bool:
    """True when a trivial SELECT succeeds on the engine."""
    try:
        with engine.connect() as conn:
            conn.execute(select(1))
        return True
    except SQLAlchemyError as e:
        logger.warning(f"Database connection check failed: {e.__class__.__name__}")
        return False


# Users: identity plus entitlement fields
users = Table(
    'users',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('email', String(320), nullable=False, unique=True),
    Column('name', Text, nullable=False),
    Column('password_hash', String(255), nullable=False),
    Column('is_premium', Boolean, nullable=False, server_default='false'),
    Column('stories_generated', Integer, nullable=False, server_default='0'),
    Column('is_admin', Boolean, nullable=False, server_default='false'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('subscription_end_date', DateTime(timezone=True), nullable=True),
    Column('last_login_at', DateTime(timezone=True), nullable=True),
    Index('idx_users_created_at', 'created_at'),
)

# Stories owned by users (deleted with their owner)
stories = Table(
    'stories',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('child_name', Text, nullable=False),
    Column('situation', Text, nullable=False),
    Column('complexity', String(50), nullable=False),
    Column('tone', String(50), nullable=False),
    Column('image_style', String(50), nullable=False),
    Column('content', Text, nullable=False),
    Column('images', JSON, nullable=False),
    Column('video_url', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    # Composite index for list-by-owner pattern: (user_id, created_at)
    Index('idx_stories_user_created', 'user_id', 'created_at'),
    Index('idx_stories_created_at', 'created_at'),
)

# Rate limit counters, one row per (identifier, action)
rate_limits = Table(
    'rate_limits',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('identifier', String(320), nullable=False),
    Column('action', String(50), nullable=False),
    Column('count', Integer, nullable=False),
    Column('reset_at', Float, nullable=False),  # epoch seconds
    UniqueConstraint('identifier', 'action', name='uq_rate_limits_identifier_action'),
    Index('idx_rate_limits_reset_at', 'reset_at'),
)

# Append-only admin activity log
activity_logs = Table(
    'activity_logs',
    metadata,
    Column('seq', Integer, primary_key=True, autoincrement=True),
    Column('id', String(100), nullable=False, unique=True),
    Column('timestamp', DateTime(timezone=True), nullable=False),
    Column('action', String(100), nullable=False),
    Column('actor_user_id', String(100), nullable=False),
    Column('details', Text, nullable=False),
    Index('idx_activity_logs_timestamp', 'timestamp', 'seq'),
)

# Platform settings singleton (id = 'default')
admin_settings = Table(
    'admin_settings',
    metadata,
    Column('id', String(50), primary_key=True),
    Column('free_story_limit', Integer, nullable=False),
    Column('enable_registration', Boolean, nullable=False, server_default='true'),
    Column('maintenance_mode', Boolean, nullable=False, server_default='false'),
    Column('premium_price', Float, nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
)

# Third-party credentials singleton (id = 'default')
api_keys = Table(
    'api_keys',
    metadata,
    Column('id', String(50), primary_key=True),
    Column('openai_key', Text, nullable=True),
    Column('gemini_key', Text, nullable=True),
    Column('stripe_secret_key', Text, nullable=True),
    Column('stripe_publishable_key', Text, nullable=True),
    Column('google_oauth_web_client_id', Text, nullable=True),
    Column('google_oauth_ios_client_id', Text, nullable=True),
    Column('google_oauth_android_client_id', Text, nullable=True),
    Column('updated_at', DateTime(timezone=True), nullable=False),
)
