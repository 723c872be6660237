"""Role based capability checks."""

from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Mapping, Optional

from . import log
from .constants import UserRole
from .errors import PermissionDeniedError


class Capability(str, Enum):
    """Actions a role may be granted."""

    VIEW_DASHBOARD = "view_dashboard"
    MANAGE_ALL_PRODUCTS = "manage_all_products"
    MANAGE_ALL_ORDERS = "manage_all_orders"
    MANAGE_OWN_ORDERS = "manage_own_orders"
    VIEW_ALL_CLIENTS = "view_all_clients"
    CREATE_CLIENT = "create_client"
    DELETE_CLIENT = "delete_client"
    MANAGE_SELLERS = "manage_sellers"
    VIEW_CATALOG = "view_catalog"
    CREATE_ORDER = "create_order"
    MANAGE_OWN_FINANCES = "manage_own_finances"
    ORDER_STATUS_IN_PROGRESS = "order_status_in_progress"
    ORDER_STATUS_INVOICED = "order_status_invoiced"
    ORDER_STATUS_SENT = "order_status_sent"
    ORDER_STATUS_CANCELLED = "order_status_cancelled"
    ORDER_STATUS_FINISHED = "order_status_finished"
    REASSIGN_SELLER = "reassign_seller"
    PURGE_ORDERS = "purge_orders"


# ``None`` grants every capability.
ROLE_CAPABILITIES: Mapping[UserRole, Optional[FrozenSet[Capability]]] = {
    UserRole.MANAGER: None,
    UserRole.SELLER: frozenset(
        {
            Capability.VIEW_DASHBOARD,
            Capability.MANAGE_OWN_ORDERS,
            Capability.VIEW_ALL_CLIENTS,
            Capability.CREATE_CLIENT,
            Capability.ORDER_STATUS_IN_PROGRESS,
            Capability.ORDER_STATUS_INVOICED,
            Capability.ORDER_STATUS_SENT,
            Capability.ORDER_STATUS_CANCELLED,
            Capability.MANAGE_OWN_FINANCES,
        }
    ),
    UserRole.CLIENT: frozenset(
        {
            Capability.VIEW_CATALOG,
            Capability.CREATE_ORDER,
            Capability.MANAGE_OWN_FINANCES,
        }
    ),
}


def can(role: UserRole, capability: Capability) -> bool:
    """Return ``True`` when ``role`` holds ``capability``."""

    if role not in ROLE_CAPABILITIES:
        return False
    granted = ROLE_CAPABILITIES[role]
    return granted is None or capability in granted


def require_capability(session, capability: Capability) -> None:
    """Raise :class:`PermissionDeniedError` unless the session's role allows it."""

    if not can(session.role, capability):
        log.warning(
            "User '%s' (%s) denied capability '%s'",
            session.user_id,
            session.role.value,
            capability.value,
        )
        raise PermissionDeniedError(
            f"Role '{session.role.value}' is not allowed to {capability.value.replace('_', ' ')}"
        )
