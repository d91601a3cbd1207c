"""
Pydantic schemas for the entitlement and principal endpoints.

Field names on the wire are camelCase (expiresAt, isActive, alreadyRegistered).
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from kasiviral.entitlements.errors import ActivationValidationError
from kasiviral.models.entitlement import Entitlement, ensure_utc


def parse_expiry(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp. Naive values are taken as UTC.

    Raises:
        ActivationValidationError: If the value cannot be parsed or does not
            fit in a UTC datetime
    """
    raw = (value or "").strip()
    if raw.endswith("Z") or raw.endswith("z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        raise ActivationValidationError(
            f"expiresAt is not a valid ISO-8601 timestamp: {value!r}", field="expiresAt"
        )


class EntitlementResponse(BaseModel):
    """Entitlement state as seen by the client."""
    model_config = ConfigDict(populate_by_name=True)

    status: str
    plan: str
    expires_at: datetime = Field(..., alias="expiresAt")
    is_active: bool = Field(..., alias="isActive")
    external_billing_customer_ref: Optional[str] = Field(None, alias="externalBillingCustomerRef")
    external_billing_subscription_ref: Optional[str] = Field(None, alias="externalBillingSubscriptionRef")
    external_price_ref: Optional[str] = Field(None, alias="externalPriceRef")

    @classmethod
    def from_entitlement(cls, entitlement: Entitlement, is_active: bool, **extra) -> "EntitlementResponse":
        return cls(
            status=entitlement.status.value,
            plan=entitlement.plan.value,
            expires_at=ensure_utc(entitlement.expires_at),
            is_active=is_active,
            external_billing_customer_ref=entitlement.external_billing_customer_ref,
            external_billing_subscription_ref=entitlement.external_billing_subscription_ref,
            external_price_ref=entitlement.external_price_ref,
            **extra,
        )


class RegisterResponse(EntitlementResponse):
    """Entitlement plus whether the principal was already known."""
    already_registered: bool = Field(..., alias="alreadyRegistered")


class ActivateRequest(BaseModel):
    """
    Request body for POST /entitlement/activate (development only).

    expiresAt is kept as a string so an unparseable value is a 400
    VALIDATION_ERROR rather than a schema error.
    """
    model_config = ConfigDict(populate_by_name=True)

    plan: str = Field(..., examples=["monthly"])
    expires_at: str = Field(..., alias="expiresAt", examples=["2026-12-01T00:00:00Z"])
