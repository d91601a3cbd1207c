"""
Database models for subscriptions and entitlements.
"""

from kasiviral.models.entitlement import (
    DEFAULT_PLAN,
    Entitlement,
    EntitlementPlan,
    EntitlementStatus,
    ensure_utc,
    normalize_ref,
    utcnow,
)

__all__ = [
    "DEFAULT_PLAN",
    "Entitlement",
    "EntitlementPlan",
    "EntitlementStatus",
    "ensure_utc",
    "normalize_ref",
    "utcnow",
]
