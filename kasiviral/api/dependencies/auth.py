"""
Request authentication and subscription enforcement dependencies.

Order of checks for a gated route:
1. Bearer credential present and well-formed, else 401 (nothing else runs)
2. Identity provider verifies it, else 401; provider timeout is a 504
3. Entitlement predicate for the verified subject, else 403 SUBSCRIPTION_REQUIRED;
   store failure is a 503 and a lookup timeout is a 504 (never an implicit allow)

subject_id is ALWAYS taken from the verified credential, never from the body.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from kasiviral.config.settings import Settings, get_settings
from kasiviral.database.session import get_db_session, get_session_factory
from kasiviral.entitlements.errors import StoreUnavailableError
from kasiviral.entitlements.service import EntitlementService
from kasiviral.entitlements.store import EntitlementStore
from kasiviral.models.entitlement import utcnow
from kasiviral.platform.errors import (
    AuthenticationError,
    ServiceUnavailableError,
    SubscriptionRequiredError,
    UpstreamTimeoutError,
)
from kasiviral.platform.identity import (
    IdentityProviderTimeoutError,
    IdentityVerificationError,
    VerifiedPrincipal,
)

logger = logging.getLogger(__name__)


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_clock(request: Request) -> Callable[[], datetime]:
    return getattr(request.app.state, "clock", None) or utcnow


def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Return the raw token from an Authorization header.

    Raises:
        AuthenticationError: Header missing or not of the form "Bearer <token>"
    """
    if not authorization:
        raise AuthenticationError("Missing bearer credential")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthenticationError("Malformed authorization header")

    return parts[1]


async def get_current_principal(request: Request) -> VerifiedPrincipal:
    """
    Verify the request's bearer credential and bind the principal to request.state.
    """
    token = extract_bearer_token(request.headers.get("Authorization"))

    provider = getattr(request.app.state, "identity_provider", None)
    if provider is None:
        logger.error("Identity provider not configured", extra={"path": request.url.path})
        raise AuthenticationError("Authentication is not available")

    settings = get_app_settings(request)
    try:
        principal = await asyncio.wait_for(
            provider.verify_credential(token),
            timeout=settings.identity_timeout_seconds,
        )
    except (asyncio.TimeoutError, IdentityProviderTimeoutError) as e:
        raise UpstreamTimeoutError("Identity verification") from e
    except IdentityVerificationError as e:
        raise AuthenticationError("Invalid or expired credential") from e
    except Exception as e:
        logger.exception("Identity provider error", extra={"path": request.url.path})
        raise AuthenticationError("Invalid or expired credential") from e

    request.state.principal = principal
    return principal


def get_entitlement_service(
    request: Request,
    db_session: Session = Depends(get_db_session),
) -> EntitlementService:
    clock = get_clock(request)
    return EntitlementService(EntitlementStore(db_session, clock=clock), clock=clock)


async def require_active_subscription(
    request: Request,
    principal: VerifiedPrincipal = Depends(get_current_principal),
) -> VerifiedPrincipal:
    """
    Dependency for gated routes. Raises 403 SUBSCRIPTION_REQUIRED when the
    verified principal is not entitled right now.

    Use on a route: Depends(require_active_subscription)
    """
    session_factory = get_session_factory(request)
    clock = get_clock(request)
    settings = get_app_settings(request)

    def _lookup() -> bool:
        session = session_factory()
        try:
            service = EntitlementService(EntitlementStore(session, clock=clock), clock=clock)
            return service.is_entitled(principal.subject_id)
        finally:
            session.close()

    try:
        loop = asyncio.get_running_loop()
        entitled = await asyncio.wait_for(
            loop.run_in_executor(None, _lookup),
            timeout=settings.entitlement_lookup_timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        logger.error(
            "Entitlement lookup timed out",
            extra={"subject_id": principal.subject_id, "path": request.url.path},
        )
        raise UpstreamTimeoutError("Entitlement lookup") from e
    except StoreUnavailableError as e:
        raise ServiceUnavailableError(
            "Unable to verify subscription status",
            code=e.error_code,
        ) from e

    if not entitled:
        logger.warning(
            "Subscription required - access denied",
            extra={"subject_id": principal.subject_id, "path": request.url.path},
        )
        raise SubscriptionRequiredError()

    return principal
