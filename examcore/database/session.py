"""
Database Session Management

Engine and session factory setup for the records database, and a
transactional scope helper used by the SQL records service.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from examcore.common.logger import app_logger
from examcore.config import get_settings
from examcore.database.base import metadata

# Set up logging
logger = app_logger.getChild("db.session")


def get_engine_kwargs(database_url: str, echo: bool = False) -> Dict[str, Any]:
    """
    Get engine keyword arguments based on database type.
    Different databases support different connection options.
    """
    kwargs: Dict[str, Any] = {"echo": echo}

    if database_url.startswith("postgresql"):
        kwargs.update({
            "pool_size": 5,
            "pool_pre_ping": True,
            "pool_recycle": 300,
        })
    elif database_url.startswith("sqlite"):
        # Sessions are scored from request threads and the sweeper thread
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    return kwargs


def create_db_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    settings = get_settings()
    database_url = database_url or settings.database_url
    echo = settings.sql_echo if echo is None else echo
    logger.info(f"Creating database engine for {database_url.split(':', 1)[0]}")
    return create_engine(database_url, **get_engine_kwargs(database_url, echo))


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    """Create any missing records tables."""
    # Models register their tables on import
    import examcore.database.models  # noqa: F401

    metadata.create_all(engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Provide a transactional scope around a series of operations.

    Example:
        with session_scope(factory) as session:
            session.add(row)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database session error: {e}")
        raise
    finally:
        session.close()
