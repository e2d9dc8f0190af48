"""
Route table and navigation.

Every view of the app is declared here with the roles allowed to see it.
Paths may carry one `{name}` placeholder segment per parameter
(e.g. /admin/transactions/{id}).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from src.auth.guard import GuardDecision, GuardOutcome, RouteGuard
from src.models.auth import LEDGER_ADMIN_ROLES, AuthSnapshot, Role


class RouteSpec(BaseModel):
    """A view and who may see it."""
    model_config = ConfigDict(frozen=True)

    path: str
    title: str
    allowed_roles: Optional[frozenset[Role]] = None
    public: bool = False
    in_nav: bool = True

    def match(self, path: str) -> Optional[dict[str, str]]:
        """Path parameters if `path` matches this route, else None."""
        pattern = _segments(self.path)
        actual = _segments(path)
        if len(pattern) != len(actual):
            return None

        params: dict[str, str] = {}
        for expected, value in zip(pattern, actual):
            if expected.startswith("{") and expected.endswith("}"):
                if not value:
                    return None
                params[expected[1:-1]] = value
            elif expected != value:
                return None
        return params


class RouteMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    route: RouteSpec
    params: dict[str, str] = {}


def _segments(path: str) -> list[str]:
    return [part for part in path.split("?", 1)[0].strip("/").split("/") if part]


LOGIN = RouteSpec(path="/login", title="Sign In", public=True, in_nav=False)
RESET_PASSWORD = RouteSpec(
    path="/reset-password", title="Reset Password", public=True, in_nav=False
)
DASHBOARD = RouteSpec(path="/", title="Pulse")
RECEIPT_SCAN = RouteSpec(
    path="/admin/scan", title="Scanner", allowed_roles=LEDGER_ADMIN_ROLES
)
LEDGER_SEARCH = RouteSpec(
    path="/admin/search", title="Ledger", allowed_roles=LEDGER_ADMIN_ROLES
)
INTELLIGENCE = RouteSpec(
    path="/intelligence", title="Intelligence", allowed_roles=LEDGER_ADMIN_ROLES
)
NEW_TRANSACTION = RouteSpec(
    path="/transactions/new", title="Entry", allowed_roles=LEDGER_ADMIN_ROLES
)
TRANSACTION_DETAIL = RouteSpec(
    path="/admin/transactions/{id}",
    title="Transaction Detail",
    allowed_roles=LEDGER_ADMIN_ROLES,
    in_nav=False,
)

# Nav order follows this tuple
ROUTES: tuple[RouteSpec, ...] = (
    LOGIN,
    RESET_PASSWORD,
    DASHBOARD,
    RECEIPT_SCAN,
    LEDGER_SEARCH,
    INTELLIGENCE,
    NEW_TRANSACTION,
    TRANSACTION_DETAIL,
)


def match_route(path: str) -> Optional[RouteMatch]:
    """Find the route for a path. Unknown paths return None."""
    for route in ROUTES:
        params = route.match(path)
        if params is not None:
            return RouteMatch(route=route, params=params)
    return None


def route_path(route: RouteSpec, **params: str) -> str:
    """Fill a route's placeholders, e.g. route_path(TRANSACTION_DETAIL, id=...)."""
    path = route.path
    for name, value in params.items():
        path = path.replace("{" + name + "}", str(value))
    return path


def evaluate_route(
    guard: RouteGuard,
    snapshot: AuthSnapshot,
    path: str,
) -> tuple[Optional[RouteMatch], GuardDecision]:
    """
    Match a path and run the guard on it.

    Public routes always render. Unknown paths redirect to login without
    a return location.
    """
    match = match_route(path)
    if match is None:
        return None, GuardDecision(
            outcome=GuardOutcome.REDIRECT_LOGIN,
            redirect_to=guard.login_path,
        )

    if match.route.public:
        return match, GuardDecision(outcome=GuardOutcome.RENDER)

    return match, guard.evaluate(snapshot, match.route.allowed_roles, path)


def visible_nav_items(role: Optional[Role]) -> list[RouteSpec]:
    """Nav entries for a role. Unrestricted entries are always shown."""
    return [
        route
        for route in ROUTES
        if route.in_nav
        and not route.public
        and (route.allowed_roles is None or (role is not None and role in route.allowed_roles))
    ]


_ROLE_DESCRIPTIONS = {
    Role.SUPER_ADMIN: "You have full access to all system data.",
    Role.ADMIN: "You can manage transactions and users for your branch.",
    Role.USER: "You have read-only access to your assigned transactions.",
}


def role_description(role: Optional[Role]) -> str:
    """Dashboard blurb for a role."""
    if role is None:
        return "Your access level is still being verified."
    return _ROLE_DESCRIPTIONS[role]
