"""
Entitlement evaluation and lifecycle: predicate → provisioning → activation.

is_entitled never writes. Provisioning and activation go through the store's
atomic primitives; this module performs no read-modify-write sequences.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from kasiviral.config.settings import DEFAULT_GRACE_DAYS
from kasiviral.entitlements.errors import ActivationValidationError
from kasiviral.entitlements.store import EntitlementStore
from kasiviral.models.entitlement import (
    DEFAULT_PLAN,
    Entitlement,
    EntitlementPlan,
    ensure_utc,
    utcnow,
)

logger = logging.getLogger(__name__)


def parse_plan(plan) -> EntitlementPlan:
    """Coerce a plan name to EntitlementPlan or raise ActivationValidationError."""
    if isinstance(plan, EntitlementPlan):
        return plan
    try:
        return EntitlementPlan(str(plan).strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in EntitlementPlan)
        raise ActivationValidationError(
            f"Unknown plan {plan!r}; expected one of: {allowed}", field="plan"
        )


class EntitlementService:
    """Business rules over the entitlement store."""

    def __init__(self, store: EntitlementStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    def is_entitled(self, subject_id: str) -> bool:
        """
        True iff a row exists, its status is active and it has not expired.

        Raises:
            StoreUnavailableError: If the store cannot be read. Never swallowed
                into a False, which would misroute the client to the upsell page.
        """
        entitlement = self.store.get(subject_id)
        if entitlement is None:
            return False
        return entitlement.is_entitled_at(self.now())

    def is_active(self, entitlement: Entitlement) -> bool:
        """The same predicate for a row the caller already holds."""
        return entitlement.is_entitled_at(self.now())

    def get_entitlement(self, subject_id: str) -> Optional[Entitlement]:
        return self.store.get(subject_id)

    def ensure_default_entitlement(
        self,
        subject_id: str,
        default_plan: EntitlementPlan = DEFAULT_PLAN,
        grace_days: int = DEFAULT_GRACE_DAYS,
    ) -> Tuple[Entitlement, bool]:
        """
        Return the subject's entitlement, provisioning an INACTIVE one if missing.

        Safe to call concurrently for the same subject: the store performs an
        atomic insert-or-fetch.

        Returns:
            (entitlement, created)
        """
        expires_at = self.now() + timedelta(days=grace_days)
        return self.store.create_inactive(subject_id, default_plan, expires_at)

    def activate(
        self,
        subject_id: str,
        plan,
        expires_at: datetime,
        *,
        billing_customer_ref: Optional[str] = None,
        billing_subscription_ref: Optional[str] = None,
        price_ref: Optional[str] = None,
    ) -> Entitlement:
        """
        Set the subject's entitlement ACTIVE until expires_at.

        Only trusted server-side callers (billing webhook, development shortcut)
        may reach this method.

        Raises:
            ActivationValidationError: Unknown plan, or expires_at not in the future
            StoreUnavailableError: If the upsert fails
        """
        if not subject_id or not str(subject_id).strip():
            raise ActivationValidationError("subject_id is required", field="subject_id")

        resolved_plan = parse_plan(plan)

        if not isinstance(expires_at, datetime):
            raise ActivationValidationError("expiresAt must be a timestamp", field="expiresAt")
        expires_at = ensure_utc(expires_at)
        if expires_at <= self.now():
            logger.warning(
                "Activation rejected: expiry not in the future",
                extra={"subject_id": subject_id, "expires_at": expires_at.isoformat()},
            )
            raise ActivationValidationError("expiresAt must be in the future", field="expiresAt")

        return self.store.upsert_active(
            subject_id,
            resolved_plan,
            expires_at,
            billing_customer_ref=billing_customer_ref,
            billing_subscription_ref=billing_subscription_ref,
            price_ref=price_ref,
        )
