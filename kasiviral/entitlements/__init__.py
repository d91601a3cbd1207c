"""
Subscription entitlement subsystem.

This module provides:
- EntitlementStore: atomic insert-or-fetch / upsert over the subscriptions table
- EntitlementService: the is-entitled predicate, default provisioning, activation
- Error types: StoreUnavailableError, ActivationValidationError

A principal is entitled iff status == active and now < expires_at.
"""

from kasiviral.entitlements.errors import (
    ActivationValidationError,
    EntitlementError,
    StoreUnavailableError,
)
from kasiviral.entitlements.service import EntitlementService, parse_plan
from kasiviral.entitlements.store import EntitlementStore

__all__ = [
    # Store
    "EntitlementStore",
    # Service
    "EntitlementService",
    "parse_plan",
    # Errors
    "EntitlementError",
    "StoreUnavailableError",
    "ActivationValidationError",
]
