"""
Identity provider clients for bearer credential verification.

Handles:
- Remote verification against the Supabase Auth API (GET /auth/v1/user)
- Local verification of Supabase-issued HS256 access tokens (PyJWT)

SECURITY:
- Only the verified subject id and email leave this module
- Raw tokens are never logged
- A provider timeout is reported separately from an invalid credential so the
  request fails closed with a server error instead of a 401
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
import jwt

from kasiviral.config.settings import Settings

logger = logging.getLogger(__name__)

SUPABASE_USER_PATH = "/auth/v1/user"
SUPABASE_AUDIENCE = "authenticated"


@dataclass(frozen=True)
class VerifiedPrincipal:
    """Identity bound to a request after successful verification."""
    subject_id: str
    email: Optional[str] = None


class IdentityVerificationError(Exception):
    """Raised when a credential is invalid, expired, or the provider rejects it."""
    pass


class IdentityProviderTimeoutError(Exception):
    """Raised when the identity provider does not answer in time."""
    pass


class IdentityProvider(Protocol):
    async def verify_credential(self, raw_token: str) -> VerifiedPrincipal:
        ...


class SupabaseIdentityProvider:
    """
    Verifies access tokens by asking Supabase Auth who the token belongs to.

    Any non-200 answer or malformed body is an IdentityVerificationError.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Supabase project URL
            anon_key: Public anon key sent as the apikey header
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def verify_credential(self, raw_token: str) -> VerifiedPrincipal:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    f"{self.base_url}{SUPABASE_USER_PATH}",
                    headers={
                        "Authorization": f"Bearer {raw_token}",
                        "apikey": self.anon_key,
                    },
                )
        except httpx.TimeoutException as e:
            logger.error("Identity provider timed out", extra={"provider": "supabase"})
            raise IdentityProviderTimeoutError("Identity provider timed out") from e
        except httpx.HTTPError as e:
            logger.error(
                "Identity provider request failed",
                extra={"provider": "supabase", "error": str(e)},
            )
            raise IdentityVerificationError(f"Identity provider error: {e}") from e

        if response.status_code != 200:
            logger.info(
                "Credential rejected by identity provider",
                extra={"provider": "supabase", "status_code": response.status_code},
            )
            raise IdentityVerificationError("Credential rejected")

        try:
            data = response.json()
        except ValueError as e:
            raise IdentityVerificationError("Malformed identity provider response") from e

        subject_id = data.get("id") if isinstance(data, dict) else None
        if not subject_id:
            raise IdentityVerificationError("Identity provider response has no subject id")

        return VerifiedPrincipal(subject_id=str(subject_id), email=data.get("email"))


class JWTIdentityProvider:
    """
    Verifies Supabase access tokens locally with the project's JWT secret.

    Avoids a network round trip per request; requires SUPABASE_JWT_SECRET.
    """

    def __init__(
        self,
        jwt_secret: str,
        audience: Optional[str] = SUPABASE_AUDIENCE,
        algorithms: tuple = ("HS256",),
    ):
        self.jwt_secret = jwt_secret
        self.audience = audience
        self.algorithms = list(algorithms)

    async def verify_credential(self, raw_token: str) -> VerifiedPrincipal:
        try:
            claims = jwt.decode(
                raw_token,
                self.jwt_secret,
                algorithms=self.algorithms,
                audience=self.audience,
                options={"require": ["exp", "sub"], "verify_aud": self.audience is not None},
            )
        except jwt.ExpiredSignatureError as e:
            raise IdentityVerificationError("Credential expired") from e
        except jwt.InvalidTokenError as e:
            logger.info("Invalid bearer token", extra={"error_type": type(e).__name__})
            raise IdentityVerificationError("Invalid credential") from e

        return VerifiedPrincipal(subject_id=str(claims["sub"]), email=claims.get("email"))


def build_identity_provider(settings: Settings) -> Optional[IdentityProvider]:
    """
    Choose the verification strategy from configuration.

    Local JWT verification wins when a secret is configured; otherwise the
    Supabase API is used. Returns None when neither is configured.
    """
    if settings.supabase_jwt_secret:
        return JWTIdentityProvider(settings.supabase_jwt_secret)

    if settings.supabase_url and settings.supabase_anon_key:
        return SupabaseIdentityProvider(
            base_url=settings.supabase_url,
            anon_key=settings.supabase_anon_key,
            timeout_seconds=settings.identity_timeout_seconds,
        )

    logger.warning(
        "Identity provider not fully configured",
        extra={
            "has_url": bool(settings.supabase_url),
            "has_anon_key": bool(settings.supabase_anon_key),
            "has_jwt_secret": bool(settings.supabase_jwt_secret),
        }
    )
    return None
