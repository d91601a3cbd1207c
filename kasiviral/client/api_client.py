"""
HTTP client for the KasiViral entitlement API.

Handles:
- Bearer token injection from a token provider (the signed-in session)
- Typed errors so callers can tell 401, 403 and server failures apart
- Retries: none on 401/403, up to max_retries on server or transport errors
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


class ClientError(Exception):
    """Base error for API client failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class UnauthenticatedError(ClientError):
    """No session, or the server rejected the credential (401)."""
    pass


class SubscriptionRequiredError(ClientError):
    """Signed in but not entitled (403)."""
    pass


class ServerError(ClientError):
    """The server failed or could not be reached; the caller should offer a retry."""
    pass


class RequestRejectedError(ClientError):
    """Any other 4xx answer (bad input, unknown route)."""
    pass


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class EntitlementStatus:
    """Client-side view of GET /entitlement/me."""
    status: str
    plan: Optional[str]
    expires_at: Optional[datetime]
    is_active: bool
    billing_customer_ref: Optional[str] = None
    billing_subscription_ref: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "EntitlementStatus":
        """
        Raises:
            ServerError: The payload is not an entitlement object
        """
        if not isinstance(payload, dict):
            raise ServerError("Malformed entitlement payload")
        try:
            expires_at = _parse_timestamp(payload.get("expiresAt"))
        except (AttributeError, TypeError, ValueError) as e:
            raise ServerError(f"Malformed expiresAt in entitlement payload: {e}") from e
        return cls(
            status=payload.get("status") or "inactive",
            plan=payload.get("plan"),
            expires_at=expires_at,
            is_active=bool(payload.get("isActive", False)),
            billing_customer_ref=payload.get("externalBillingCustomerRef"),
            billing_subscription_ref=payload.get("externalBillingSubscriptionRef"),
        )


class KasiViralClient:
    """Synchronous client for the entitlement endpoints."""

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        max_retries: int = 2,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.max_retries = max_retries
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        token = self.token_provider()
        if not token:
            raise UnauthenticatedError("No authentication token available")

        headers = {"Authorization": f"Bearer {token}"}
        last_error: Optional[ClientError] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = self._client.request(method, path, json=json, headers=headers)
            except httpx.HTTPError as e:
                last_error = ServerError(f"Request to {path} failed: {e}")
                logger.warning(
                    "Entitlement API request failed",
                    extra={"path": path, "attempt": attempt + 1, "error": str(e)},
                )
                continue

            if response.is_success:
                try:
                    return response.json()
                except ValueError:
                    last_error = ServerError(
                        f"Non-JSON response from {path}", status_code=response.status_code
                    )
                    logger.warning(
                        "Entitlement API returned a non-JSON body",
                        extra={"path": path, "attempt": attempt + 1, "status_code": response.status_code},
                    )
                    continue

            code = _error_code(response)
            if response.status_code == 401:
                raise UnauthenticatedError("Not authenticated", status_code=401, code=code)
            if response.status_code == 403:
                raise SubscriptionRequiredError("Subscription required", status_code=403, code=code)
            if response.status_code < 500:
                raise RequestRejectedError(
                    f"HTTP {response.status_code}", status_code=response.status_code, code=code
                )

            last_error = ServerError(f"HTTP {response.status_code}", status_code=response.status_code, code=code)
            logger.warning(
                "Entitlement API server error",
                extra={"path": path, "attempt": attempt + 1, "status_code": response.status_code},
            )

        raise last_error

    def get_entitlement(self) -> EntitlementStatus:
        return EntitlementStatus.from_payload(self._request("GET", "/entitlement/me"))

    def register(self) -> Tuple[EntitlementStatus, bool]:
        """Register the signed-in principal. Returns (status, already_registered)."""
        payload = self._request("POST", "/principal/register")
        return EntitlementStatus.from_payload(payload), bool(payload.get("alreadyRegistered"))

    def activate(self, plan: str, expires_at: datetime) -> EntitlementStatus:
        """Development-only activation shortcut."""
        payload = self._request(
            "POST",
            "/entitlement/activate",
            json={"plan": plan, "expiresAt": expires_at.isoformat()},
        )
        return EntitlementStatus.from_payload(payload)


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("code")
    return None
