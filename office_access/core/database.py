# File: database.py
# Path: office_access/core/database.py

import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from office_access.core.config import settings

logger = logging.getLogger(__name__)

# Shared declarative base for all models
Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE rules unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, echo: bool = False, **engine_options) -> Engine:
    """
    Create an engine for the given URL.

    SQLite gets a single-connection-per-thread setup that FastAPI's threadpool
    can share; server databases get a small pre-pinged pool.
    """
    if database_url.startswith("sqlite"):
        sqlite_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo,
            **engine_options,
        )
        event.listen(sqlite_engine, "connect", _enable_sqlite_foreign_keys)
        return sqlite_engine

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=300,       # Recycle connections every 5 minutes
        pool_timeout=20,
        connect_args={
            "options": "-c timezone=utc",
            "connect_timeout": 5,
            "application_name": "OfficeAccessBackend"
        } if "postgresql" in database_url else {},
        echo=echo,
        **engine_options,
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False  # Rows stay readable after commit in background threads
    )


engine = build_engine(settings.DATABASE_URL, echo=settings.database_echo)
SessionLocal = build_session_factory(engine)


def get_db():
    """
    Dependency function for FastAPI endpoints.
    Creates a new database session for each request.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def test_database_connection(bind: Engine = engine) -> bool:
    """
    Test database connection health.
    Returns True if connection is successful, False otherwise.
    """
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection test successful")
        return True
    except Exception as e:
        logger.error(f"Database connection test failed: {str(e)}")
        return False
