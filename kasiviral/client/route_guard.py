"""
Client route guards for the gated dashboard and the upsell (billing) screen.

Evaluation is pure: evaluate_* map a GuardState to a GuardDecision and never
navigate. RouteGuard re-evaluates whenever its inputs change and emits a
redirect through the navigate callback only after evaluation finished.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

SIGN_IN_PATH = "/login"
UPSELL_PATH = "/billing"
GATED_PATH = "/dashboard"


class GuardAction(str, enum.Enum):
    LOADING = "loading"
    REDIRECT = "redirect"
    RETRY = "retry"
    RENDER = "render"


@dataclass(frozen=True)
class GuardState:
    auth_loading: bool = False
    is_logged_in: bool = False
    subscription_loading: bool = False
    is_active: bool = False
    is_subscription_check_error: bool = False

    @property
    def is_loading(self) -> bool:
        return self.auth_loading or (self.is_logged_in and self.subscription_loading)


@dataclass(frozen=True)
class GuardDecision:
    action: GuardAction
    redirect_to: Optional[str] = None


LOADING = GuardDecision(GuardAction.LOADING)
RENDER = GuardDecision(GuardAction.RENDER)


def evaluate_gated_route(state: GuardState) -> GuardDecision:
    if state.is_loading:
        return LOADING
    if not state.is_logged_in:
        return GuardDecision(GuardAction.REDIRECT, SIGN_IN_PATH)
    # A failed check is not a "no"; show a manual retry instead of bouncing to billing
    if state.is_subscription_check_error:
        return GuardDecision(GuardAction.RETRY)
    if not state.is_active:
        return GuardDecision(GuardAction.REDIRECT, UPSELL_PATH)
    return RENDER


def evaluate_upsell_route(state: GuardState) -> GuardDecision:
    if state.is_loading:
        return LOADING
    if not state.is_logged_in:
        return GuardDecision(GuardAction.REDIRECT, SIGN_IN_PATH)
    if state.is_active and not state.is_subscription_check_error:
        return GuardDecision(GuardAction.REDIRECT, GATED_PATH)
    return RENDER


class RouteGuard:
    """
    Stateful wrapper that re-evaluates on input change.

    The same redirect is not emitted twice in a row for unchanged inputs.
    """

    def __init__(
        self,
        evaluate: Callable[[GuardState], GuardDecision],
        navigate: Callable[[str], None],
    ):
        self._evaluate = evaluate
        self._navigate = navigate
        self._state: Optional[GuardState] = None
        self._decision: Optional[GuardDecision] = None

    @property
    def decision(self) -> Optional[GuardDecision]:
        return self._decision

    def update(self, state: GuardState) -> GuardDecision:
        if state == self._state and self._decision is not None:
            return self._decision

        decision = self._evaluate(state)
        self._state = state
        self._decision = decision

        if decision.action is GuardAction.REDIRECT and decision.redirect_to:
            logger.debug("Route guard redirect", extra={"redirect_to": decision.redirect_to})
            self._navigate(decision.redirect_to)

        return decision
