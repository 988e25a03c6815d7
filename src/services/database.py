"""Database session management for the persisted audit trail."""

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config import settings
from models import Base

logger = logging.getLogger(__name__)


def create_session_factory(url: str | None = None, *, create_tables: bool = True) -> sessionmaker:
    """Return a session factory, creating the audit tables unless told not to.

    Args:
        url: SQLAlchemy database URL; defaults to ``settings.database.url``.
        create_tables: Run ``create_all`` before returning.

    Raises:
        ValueError: If no database URL is configured.
    """
    db_url = url or settings.database.url
    if not db_url:
        raise ValueError("No database URL configured; set DATABASE_URL or database.url.")
    engine = create_engine(db_url, pool_pre_ping=True)
    if create_tables:
        Base.metadata.create_all(engine)
        logger.info("Audit tables ready on %s", engine.url.render_as_string(hide_password=True))
    return sessionmaker(bind=engine)


def check_connection(session_factory: sessionmaker) -> bool:
    """Check if the database connection is working."""
    try:
        with session_factory() as session:
            session.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as exc:
        logger.error("Database connection check failed: %s", exc)
        return False
