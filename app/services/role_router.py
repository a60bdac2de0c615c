# app/services/role_router.py
"""
Role -> landing view mapping.

Pure functions, no I/O. Unknown or missing roles land on the customer home.
"""
from enum import Enum
from typing import Iterable


class ViewId(str, Enum):
    ADMIN_HOME = "AdminHome"
    SELLER_HOME = "SellerHome"
    DELIVERY_HOME = "DeliveryHome"
    CUSTOMER_HOME = "CustomerHome"


_DESTINATIONS: dict[str, ViewId] = {
    "admin": ViewId.ADMIN_HOME,
    "seller": ViewId.SELLER_HOME,
    "delivery": ViewId.DELIVERY_HOME,
    "customer": ViewId.CUSTOMER_HOME,
}

_PATHS: dict[ViewId, str] = {
    ViewId.ADMIN_HOME: "/admin",
    ViewId.SELLER_HOME: "/seller",
    ViewId.DELIVERY_HOME: "/delivery",
    ViewId.CUSTOMER_HOME: "/",
}


def destination_for(role: str | None) -> ViewId:
    """Landing view for `role`; never raises."""
    if not isinstance(role, str):
        return ViewId.CUSTOMER_HOME
    return _DESTINATIONS.get(role, ViewId.CUSTOMER_HOME)


def path_for(view: ViewId) -> str:
    """URL path of a landing view."""
    return _PATHS[view]


def is_role_allowed(role: str | None, allowed_roles: Iterable[str]) -> bool:
    """
    Route guard check.

    An empty allow-list admits any role (authentication alone is enough).
    A user whose role is still unresolved is not admitted to a restricted
    route.
    """
    allowed = set(allowed_roles)
    if not allowed:
        return True
    return role is not None and role in allowed
