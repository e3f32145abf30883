"""Database configuration and session management"""

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
from sessionguard.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
    """Create an engine; SQLite gets thread-shareable connections instead of pool sizing."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=settings.DEBUG,
        )
    return create_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=settings.DEBUG
    )


engine = build_engine(settings.get_database_url())

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create base class for models
Base = declarative_base()

# Import models after Base is defined so metadata is populated.
from sessionguard import models  # noqa: E402,F401


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session

    Yields:
        Session: Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


INIT_MODES = ("migrate", "create_all", "off")


def missing_tables(bind=None) -> list:
    """Names of mapped tables (plus alembic_version) absent from the database."""
    existing = set(inspect(bind or engine).get_table_names())
    expected = set(Base.metadata.tables) | {"alembic_version"}
    return sorted(expected - existing)


def init_db() -> None:
    """
    Prepare the schema according to DB_INIT_MODE

    migrate: refuse to start unless migrations have been applied
    create_all: build tables from the models (tests, throwaway local databases)
    off: do nothing
    """
    mode = settings.DB_INIT_MODE.lower().strip()
    if mode not in INIT_MODES:
        raise RuntimeError(f"Unknown DB_INIT_MODE: {settings.DB_INIT_MODE}")

    if mode == "off":
        logger.info("Skipping database initialization (DB_INIT_MODE=off)")
    elif mode == "create_all":
        Base.metadata.create_all(bind=engine)
        logger.warning("Tables created from models; use migrations outside local development.")
    else:
        missing = missing_tables()
        if missing and settings.DB_REQUIRE_HEAD:
            raise RuntimeError(
                f"Database is not migrated (missing: {', '.join(missing)}). Run `alembic upgrade head` first."
            )
        if missing:
            logger.warning("Database is missing tables %s; continuing because DB_REQUIRE_HEAD is off", missing)
        else:
            logger.info("Database schema is migrated")
