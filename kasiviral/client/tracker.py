"""
Subscription tracking for a signed-in client session.

SubscriptionTracker ties the API client to the status cache:
- status() serves a fresh cached value or refetches
- on_activation() invalidates so the next read sees the new entitlement
- on_logout() evicts the subject's entry
- guard_state() turns the outcome into route guard inputs
"""

import logging
from dataclasses import dataclass
from typing import Optional

from kasiviral.client.api_client import (
    ClientError,
    EntitlementStatus,
    KasiViralClient,
    SubscriptionRequiredError,
    UnauthenticatedError,
)
from kasiviral.client.cache import EntitlementStatusCache
from kasiviral.client.route_guard import GATED_PATH, UPSELL_PATH, GuardState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionSnapshot:
    status: Optional[EntitlementStatus]
    is_error: bool = False
    error: Optional[ClientError] = None

    @property
    def is_active(self) -> bool:
        return bool(self.status and self.status.is_active)


class SubscriptionTracker:
    def __init__(self, client: KasiViralClient, cache: Optional[EntitlementStatusCache] = None):
        self.client = client
        self.cache = cache or EntitlementStatusCache()

    def status(self, subject_id: str, force: bool = False) -> EntitlementStatus:
        """
        Raises:
            ClientError: When a fetch was needed and failed
        """
        if not force:
            cached = self.cache.get_fresh(subject_id)
            if cached is not None:
                return cached

        fresh = self.client.get_entitlement()
        self.cache.put(subject_id, fresh)
        return fresh

    def snapshot(self, subject_id: str) -> SubscriptionSnapshot:
        try:
            return SubscriptionSnapshot(status=self.status(subject_id))
        except SubscriptionRequiredError:
            return SubscriptionSnapshot(status=None)
        except ClientError as e:
            logger.warning(
                "Subscription status check failed",
                extra={"subject_id": subject_id, "error_type": type(e).__name__},
            )
            return SubscriptionSnapshot(status=None, is_error=True, error=e)

    def guard_state(self, subject_id: Optional[str], auth_loading: bool = False) -> GuardState:
        if auth_loading:
            return GuardState(auth_loading=True)
        if not subject_id:
            return GuardState(is_logged_in=False)

        snap = self.snapshot(subject_id)
        # The server no longer accepts the session: treat as signed out
        if isinstance(snap.error, UnauthenticatedError):
            return GuardState(is_logged_in=False)
        return GuardState(
            is_logged_in=True,
            is_active=snap.is_active,
            is_subscription_check_error=snap.is_error,
        )

    def on_activation(self, subject_id: str) -> None:
        self.cache.invalidate(subject_id)

    def on_logout(self, subject_id: str) -> None:
        self.cache.evict(subject_id)


def resolve_post_auth_destination(client: KasiViralClient) -> str:
    """
    Where to land right after sign-in: the dashboard when entitled, otherwise
    billing. Any failure lands on billing.
    """
    try:
        status = client.get_entitlement()
    except ClientError as e:
        logger.warning("Post-auth subscription check failed", extra={"error_type": type(e).__name__})
        return UPSELL_PATH
    return GATED_PATH if status.is_active else UPSELL_PATH
