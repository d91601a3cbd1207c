"""
Billing webhook: the production path to activation.

SECURITY:
- Every webhook MUST carry a valid X-Billing-Signature (base64 HMAC-SHA256 of
  the raw body keyed with BILLING_WEBHOOK_SECRET)
- No bearer authentication; the billing provider is not a user
- The subject id comes from the signed payload, which only the billing
  provider can produce

Payload:
    {
        "type": "subscription.activated" | "subscription.renewed",
        "data": {
            "subjectId": "...",
            "plan": "monthly" | "annual",
            "expiresAt": "2026-12-01T00:00:00Z",
            "customerRef": "...",        # optional
            "subscriptionRef": "...",    # optional
            "priceRef": "..."            # optional
        }
    }

Other event types are acknowledged and ignored.
"""

import base64
import hashlib
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status

from kasiviral.api.dependencies.auth import get_app_settings, get_entitlement_service
from kasiviral.api.routes.entitlements import to_app_error
from kasiviral.api.schemas.entitlement import parse_expiry
from kasiviral.config.settings import Settings
from kasiviral.entitlements.errors import EntitlementError
from kasiviral.entitlements.service import EntitlementService
from kasiviral.platform.errors import AppError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "X-Billing-Signature"

ACTIVATION_EVENTS = frozenset({"subscription.activated", "subscription.renewed"})


class InvalidSignatureError(AppError):
    """Webhook signature missing or wrong (401)."""

    def __init__(self):
        super().__init__(
            code="INVALID_SIGNATURE",
            message="Invalid webhook signature",
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


def compute_signature(payload: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_webhook_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Verify a billing webhook HMAC signature.

    Returns False when either the secret or the signature is missing.
    """
    if not secret:
        logger.error("BILLING_WEBHOOK_SECRET not configured for webhook verification")
        return False
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(payload, secret), signature.strip())


async def verify_webhook(
    request: Request,
    x_billing_signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    settings: Settings = Depends(get_app_settings),
) -> bytes:
    """Return the raw body once its signature checks out."""
    body = await request.body()

    if not verify_webhook_signature(body, x_billing_signature, settings.billing_webhook_secret):
        logger.warning("Invalid webhook signature", extra={"path": request.url.path})
        raise InvalidSignatureError()

    return body


def _optional_str(data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    return str(value)


@router.post("/billing")
def handle_billing_event(
    body: bytes = Depends(verify_webhook),
    service: EntitlementService = Depends(get_entitlement_service),
) -> dict:
    """
    Apply a billing event to the subject's entitlement.

    Store failures surface as 503 so the billing provider retries delivery.
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("Invalid webhook JSON payload")
        raise ValidationError("Invalid JSON payload")

    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be an object")

    event_type = payload.get("type")
    if event_type not in ACTIVATION_EVENTS:
        logger.info("Ignoring billing event", extra={"event_type": event_type})
        return {"status": "ignored"}

    data = payload.get("data")
    if not isinstance(data, dict):
        raise ValidationError("Webhook payload has no data object")

    subject_id = data.get("subjectId")
    if not isinstance(subject_id, str) or not subject_id.strip():
        raise ValidationError("subjectId must be a non-empty string", details={"field": "subjectId"})

    try:
        entitlement = service.activate(
            subject_id,
            data.get("plan"),
            parse_expiry(str(data.get("expiresAt") or "")),
            billing_customer_ref=_optional_str(data, "customerRef"),
            billing_subscription_ref=_optional_str(data, "subscriptionRef"),
            price_ref=_optional_str(data, "priceRef"),
        )
    except EntitlementError as e:
        logger.warning(
            "Billing event rejected",
            extra={"event_type": event_type, "subject_id": subject_id, "error": e.message},
        )
        raise to_app_error(e) from e

    logger.info(
        "Billing event applied",
        extra={
            "event_type": event_type,
            "subject_id": entitlement.subject_id,
            "plan": entitlement.plan.value,
        },
    )
    return {"status": "processed"}
