"""Database connection and session management."""

from functools import lru_cache
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from image_pipeline.models import Base
import structlog

logger = structlog.get_logger()


@lru_cache(maxsize=None)
def get_engine(database_url: str) -> Engine:
    """Create (once per URL) the database engine."""
    if database_url.startswith("sqlite"):
        # stores are called from worker threads; an in-memory database exists only on one connection
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(database_url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
        return create_engine(database_url, connect_args={"check_same_thread": False, "timeout": 5})
    return create_engine(database_url, pool_pre_ping=True)


def get_session_factory(engine: Engine) -> sessionmaker:
    """Session factory whose objects stay readable after commit."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Engine):
    """Create all database tables."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error("Failed to create database tables", error=str(e))
        raise


def check_connection(engine: Engine) -> bool:
    """Return True when the database answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False
