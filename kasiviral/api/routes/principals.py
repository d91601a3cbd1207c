"""
Principal registration.

Clients call this once after sign-up. Calling it again is not an error; the
response says whether the principal already had an entitlement row.
"""

import logging

from fastapi import APIRouter, Depends

from kasiviral.api.dependencies.auth import (
    get_app_settings,
    get_current_principal,
    get_entitlement_service,
)
from kasiviral.api.routes.entitlements import to_app_error
from kasiviral.api.schemas.entitlement import RegisterResponse
from kasiviral.config.settings import Settings
from kasiviral.entitlements.errors import EntitlementError
from kasiviral.entitlements.service import EntitlementService
from kasiviral.platform.identity import VerifiedPrincipal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/principal", tags=["principals"])


@router.post("/register", response_model=RegisterResponse)
def register_principal(
    principal: VerifiedPrincipal = Depends(get_current_principal),
    service: EntitlementService = Depends(get_entitlement_service),
    settings: Settings = Depends(get_app_settings),
) -> RegisterResponse:
    try:
        entitlement, created = service.ensure_default_entitlement(
            principal.subject_id, grace_days=settings.default_grace_days
        )
    except EntitlementError as e:
        raise to_app_error(e) from e

    logger.info(
        "Principal registered",
        extra={"subject_id": principal.subject_id, "already_registered": not created},
    )

    return RegisterResponse.from_entitlement(
        entitlement,
        service.is_active(entitlement),
        already_registered=not created,
    )
