"""
Shared fixtures: per-test SQLite database, a controllable clock, a fake
identity provider and a FastAPI app wired to all three.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest
from fastapi.testclient import TestClient

from kasiviral.config.settings import Settings
from kasiviral.database.session import build_engine, build_session_factory, init_db
from kasiviral.main import create_app
from kasiviral.platform.identity import IdentityVerificationError, VerifiedPrincipal


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeIdentityProvider:
    """Maps known tokens to principals; anything else is rejected."""

    def __init__(self, tokens: Optional[Dict[str, str]] = None, delay: float = 0.0):
        self.tokens = dict(tokens or {})
        self.delay = delay
        self.calls = 0

    async def verify_credential(self, raw_token: str) -> VerifiedPrincipal:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        subject_id = self.tokens.get(raw_token)
        if subject_id is None:
            raise IdentityVerificationError("unknown token")
        return VerifiedPrincipal(subject_id=subject_id, email=f"{subject_id}@example.com")


def auth_header(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'kasiviral-test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider({"token-u1": "u1", "token-u2": "u2"})


@pytest.fixture
def test_settings():
    return Settings(
        app_env="test",
        database_url="sqlite://",
        billing_webhook_secret="whsec_test",
        rate_limit_enabled=False,
    )


@pytest.fixture
def app(test_settings, session_factory, identity_provider, clock):
    return create_app(
        settings=test_settings,
        session_factory=session_factory,
        identity_provider=identity_provider,
        clock=clock,
    )


@pytest.fixture
def client(app):
    return TestClient(app)
