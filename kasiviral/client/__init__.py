"""
Python client for the KasiViral entitlement API and the route guard logic
the web client runs on top of it.
"""

from kasiviral.client.api_client import (
    ClientError,
    EntitlementStatus,
    KasiViralClient,
    RequestRejectedError,
    ServerError,
    SubscriptionRequiredError,
    UnauthenticatedError,
)
from kasiviral.client.cache import EntitlementStatusCache
from kasiviral.client.route_guard import (
    GATED_PATH,
    SIGN_IN_PATH,
    UPSELL_PATH,
    GuardAction,
    GuardDecision,
    GuardState,
    RouteGuard,
    evaluate_gated_route,
    evaluate_upsell_route,
)
from kasiviral.client.tracker import (
    SubscriptionSnapshot,
    SubscriptionTracker,
    resolve_post_auth_destination,
)

__all__ = [
    "ClientError",
    "EntitlementStatus",
    "EntitlementStatusCache",
    "GATED_PATH",
    "GuardAction",
    "GuardDecision",
    "GuardState",
    "KasiViralClient",
    "RequestRejectedError",
    "RouteGuard",
    "SIGN_IN_PATH",
    "ServerError",
    "SubscriptionRequiredError",
    "SubscriptionSnapshot",
    "SubscriptionTracker",
    "UPSELL_PATH",
    "UnauthenticatedError",
    "evaluate_gated_route",
    "evaluate_upsell_route",
    "resolve_post_auth_destination",
]
