"""
Entitlement endpoints.

GET /entitlement/me is safe to call on every page load: it provisions an
INACTIVE row on first contact and reports whether the principal is entitled
right now. POST /entitlement/activate is a development shortcut and is only
mounted when the activation shortcut is enabled (see Settings); production
activation arrives through the signed billing webhook.

subject_id is NEVER accepted from the request body.
"""

import logging

from fastapi import APIRouter, Depends

from kasiviral.api.dependencies.auth import (
    get_app_settings,
    get_current_principal,
    get_entitlement_service,
)
from kasiviral.api.schemas.entitlement import (
    ActivateRequest,
    EntitlementResponse,
    parse_expiry,
)
from kasiviral.config.settings import Settings
from kasiviral.entitlements.errors import (
    ActivationValidationError,
    EntitlementError,
    StoreUnavailableError,
)
from kasiviral.entitlements.service import EntitlementService
from kasiviral.platform.errors import AppError, ServiceUnavailableError, ValidationError
from kasiviral.platform.identity import VerifiedPrincipal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entitlement", tags=["entitlements"])

activation_router = APIRouter(prefix="/entitlement", tags=["entitlements"])


def to_app_error(error: EntitlementError) -> AppError:
    """Map entitlement-layer failures onto the API error taxonomy."""
    if isinstance(error, ActivationValidationError):
        details = {"field": error.field} if error.field else None
        return ValidationError(error.message, details=details)
    if isinstance(error, StoreUnavailableError):
        return ServiceUnavailableError("Unable to load subscription status", code=error.error_code)
    return ServiceUnavailableError(error.message)


@router.get("/me", response_model=EntitlementResponse)
def get_my_entitlement(
    principal: VerifiedPrincipal = Depends(get_current_principal),
    service: EntitlementService = Depends(get_entitlement_service),
    settings: Settings = Depends(get_app_settings),
) -> EntitlementResponse:
    """
    Return the caller's entitlement, provisioning a default one if missing.
    """
    try:
        entitlement, created = service.ensure_default_entitlement(
            principal.subject_id, grace_days=settings.default_grace_days
        )
    except EntitlementError as e:
        raise to_app_error(e) from e

    if created:
        logger.info("Provisioned default entitlement", extra={"subject_id": principal.subject_id})

    return EntitlementResponse.from_entitlement(entitlement, service.is_active(entitlement))


@activation_router.post("/activate", response_model=EntitlementResponse)
def activate_my_entitlement(
    body: ActivateRequest,
    principal: VerifiedPrincipal = Depends(get_current_principal),
    service: EntitlementService = Depends(get_entitlement_service),
) -> EntitlementResponse:
    """
    Activate the caller's entitlement without payment (development only).
    """
    try:
        expires_at = parse_expiry(body.expires_at)
        entitlement = service.activate(principal.subject_id, body.plan, expires_at)
    except EntitlementError as e:
        raise to_app_error(e) from e

    logger.warning(
        "Entitlement activated through development shortcut",
        extra={"subject_id": principal.subject_id, "plan": entitlement.plan.value},
    )
    return EntitlementResponse.from_entitlement(entitlement, service.is_active(entitlement))
