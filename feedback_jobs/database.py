"""Database connection and session management."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from feedback_jobs.models import Base
import structlog

logger = structlog.get_logger()


def build_engine(database_url: str) -> Engine:
    """Create a database engine for the given URL."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url)


def build_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Engine):
    """Create all database tables."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error("Failed to create database tables", error=str(e))
        raise


def check_connection(session_factory: sessionmaker) -> bool:
    """Check that a session can be opened and used."""
    db: Session = session_factory()
    try:
        db.connection()
        return True
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False
    finally:
        db.close()
