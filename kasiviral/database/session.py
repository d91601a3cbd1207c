"""
SQLAlchemy engine and session management.

The application owns one sessionmaker (stored on app.state.session_factory);
request handlers get a short-lived Session through get_db_session.
"""

import logging
from typing import Callable, Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from kasiviral.config import normalize_database_url
from kasiviral.platform.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

Base = declarative_base()


def build_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine; SQLite connections are shared with threadpool workers."""
    url = normalize_database_url(database_url)
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        return create_engine(url, connect_args=connect_args, **kwargs)
    return create_engine(url, pool_pre_ping=True, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create missing tables. Existing tables are left untouched."""
    # Import models so they register with Base.metadata
    from kasiviral.models import entitlement  # noqa: F401

    Base.metadata.create_all(engine)
    logger.info("Database schema ensured", extra={"dialect": engine.dialect.name})


def get_session_factory(request: Request) -> SessionFactory:
    factory: Optional[SessionFactory] = getattr(request.app.state, "session_factory", None)
    if factory is None:
        raise ServiceUnavailableError("Database not configured", code="STORE_UNAVAILABLE")
    return factory


def get_db_session(request: Request) -> Iterator[Session]:
    """FastAPI dependency yielding a request-scoped session."""
    session = get_session_factory(request)()
    try:
        yield session
    finally:
        session.close()
