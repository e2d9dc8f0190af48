"""
Auth Core Package

Role resolution, the auth state machine and route guarding.
"""

from src.auth.guard import DeniedAction, GuardDecision, GuardOutcome, RouteGuard
from src.auth.navigation import (
    ROUTES,
    RouteMatch,
    RouteSpec,
    evaluate_route,
    match_route,
    role_description,
    route_path,
    visible_nav_items,
)
from src.auth.role_resolver import FAIL_CLOSED_ROLE, RoleResolver, fail_closed_role
from src.auth.state import AuthStateManager

__all__ = [
    # Role resolution
    "FAIL_CLOSED_ROLE",
    "RoleResolver",
    "fail_closed_role",
    # State
    "AuthStateManager",
    # Guard
    "DeniedAction",
    "GuardDecision",
    "GuardOutcome",
    "RouteGuard",
    # Navigation
    "ROUTES",
    "RouteMatch",
    "RouteSpec",
    "evaluate_route",
    "match_route",
    "role_description",
    "route_path",
    "visible_nav_items",
]
