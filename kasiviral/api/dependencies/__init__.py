"""
Request dependencies (re-exports from auth).
"""

from kasiviral.api.dependencies.auth import (
    extract_bearer_token,
    get_app_settings,
    get_clock,
    get_current_principal,
    get_entitlement_service,
    require_active_subscription,
)

__all__ = [
    "extract_bearer_token",
    "get_app_settings",
    "get_clock",
    "get_current_principal",
    "get_entitlement_service",
    "require_active_subscription",
]
