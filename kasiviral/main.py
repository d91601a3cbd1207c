"""
KasiViral API application factory.

Run with an ASGI server in factory mode, e.g.:
    uvicorn kasiviral.main:create_app --factory

Collaborators (session factory, identity provider, thread generator, clock)
can be injected; anything not injected is built from Settings.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI

from kasiviral import __version__
from kasiviral.api.routes import entitlements, health, principals, threads, webhooks_billing
from kasiviral.config.settings import Settings, get_settings
from kasiviral.database.session import SessionFactory, build_engine, build_session_factory, init_db
from kasiviral.models.entitlement import utcnow
from kasiviral.platform.errors import register_exception_handlers
from kasiviral.platform.identity import IdentityProvider, build_identity_provider
from kasiviral.services.thread_generator import OpenAIThreadGenerator

logger = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[SessionFactory] = None,
    identity_provider: Optional[IdentityProvider] = None,
    thread_generator: Optional[OpenAIThreadGenerator] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    configure_logging()
    settings = settings or get_settings()
    settings.log_config_status()

    app = FastAPI(title="KasiViral API", version=__version__)

    if session_factory is None:
        engine = build_engine(settings.database_url)
        init_db(engine)
        session_factory = build_session_factory(engine)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.identity_provider = identity_provider or build_identity_provider(settings)
    app.state.thread_generator = thread_generator or OpenAIThreadGenerator.from_settings(settings)
    app.state.clock = clock or utcnow

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(entitlements.router)
    app.include_router(principals.router)
    app.include_router(webhooks_billing.router)
    app.include_router(threads.router)

    if settings.activation_shortcut_enabled:
        logger.warning(
            "Development activation shortcut enabled",
            extra={"app_env": settings.app_env},
        )
        app.include_router(entitlements.activation_router)

    return app
