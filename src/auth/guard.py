"""
Route Guard

Decides what a protected view shows for one reading of the auth state.

The guard is a pure function of (resolving, session presence, role,
allowed roles). It performs no navigation itself; the UI acts on the
returned decision. Same inputs, same decision.
"""

from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict

from src.models.auth import AuthSnapshot, Role


class GuardOutcome(str, Enum):
    """The four things a guarded view can do."""
    LOADING = "loading"
    REDIRECT_LOGIN = "redirect_login"
    ACCESS_DENIED = "access_denied"
    RENDER = "render"


class DeniedAction(str, Enum):
    """Remediation offered on the access-denied view."""
    GO_BACK = "go_back"
    GO_TO_DEFAULT_VIEW = "go_to_default_view"


class GuardDecision(BaseModel):
    """
    Result of evaluating a route against an auth snapshot.

    redirect_to / return_to are set only for REDIRECT_LOGIN.
    required_roles / current_role / actions are set only for ACCESS_DENIED.
    """
    model_config = ConfigDict(frozen=True)

    outcome: GuardOutcome
    redirect_to: Optional[str] = None
    return_to: Optional[str] = None
    required_roles: tuple[Role, ...] = ()
    current_role: Optional[Role] = None
    actions: tuple[DeniedAction, ...] = ()
    default_view: Optional[str] = None

    @property
    def should_render(self) -> bool:
        return self.outcome == GuardOutcome.RENDER


class RouteGuard:
    """
    Evaluates route access.

    Args:
        login_path: Where unauthenticated visitors are sent
        default_view: Target of the "go to default view" action
    """

    def __init__(self, login_path: str = "/login", default_view: str = "/"):
        self.login_path = login_path
        self.default_view = default_view

    def evaluate(
        self,
        snapshot: AuthSnapshot,
        allowed_roles: Optional[Iterable[Role]] = None,
        requested_location: str = "/",
    ) -> GuardDecision:
        """
        Decide the outcome for a view.

        Args:
            snapshot: Current auth state
            allowed_roles: Roles permitted on the view; None means any
                authenticated identity
            requested_location: Path the visitor asked for, kept so login
                can return there

        Returns:
            GuardDecision
        """
        if snapshot.resolving:
            return GuardDecision(outcome=GuardOutcome.LOADING)

        if snapshot.session is None:
            return GuardDecision(
                outcome=GuardOutcome.REDIRECT_LOGIN,
                redirect_to=self.login_path,
                return_to=requested_location,
            )

        if snapshot.role is None:
            # Transient: session seen, role not committed yet
            return GuardDecision(outcome=GuardOutcome.LOADING)

        if allowed_roles is not None:
            allowed = frozenset(allowed_roles)
            if snapshot.role not in allowed:
                return GuardDecision(
                    outcome=GuardOutcome.ACCESS_DENIED,
                    # Enum order, so the decision does not depend on set ordering
                    required_roles=tuple(role for role in Role if role in allowed),
                    current_role=snapshot.role,
                    actions=(DeniedAction.GO_BACK, DeniedAction.GO_TO_DEFAULT_VIEW),
                    default_view=self.default_view,
                )

        return GuardDecision(outcome=GuardOutcome.RENDER)
