from kasiviral.database.session import (
    Base,
    SessionFactory,
    build_engine,
    build_session_factory,
    get_db_session,
    get_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "SessionFactory",
    "build_engine",
    "build_session_factory",
    "get_db_session",
    "get_session_factory",
    "init_db",
]
