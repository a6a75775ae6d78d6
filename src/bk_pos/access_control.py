"""Role-based access control for BK POS.

Roles form a closed set (:class:`~bk_pos.constants.Role`). Every role is
handled explicitly in :func:`permissions_for`; an unrecognised value raises
instead of silently granting or denying.
"""

from __future__ import annotations

from typing import FrozenSet

from . import core_logic, data_manager, log
from .constants import Permission, Role
from .core_logic import AccessDenied, RuntimeContext


ADMIN_PERMISSIONS: FrozenSet[Permission] = frozenset(Permission)

RIDER_PERMISSIONS: FrozenSet[Permission] = frozenset(
    {
        Permission.VIEW_DASHBOARD,
        Permission.RECORD_SALE,
    }
)


def permissions_for(role: Role) -> FrozenSet[Permission]:
    """Return the permissions granted to ``role``.

    Raises:
        ValueError: If ``role`` is not a known :class:`Role`.
    """
    if role is Role.ADMIN:
        return ADMIN_PERMISSIONS
    if role is Role.RIDER:
        return RIDER_PERMISSIONS
    raise ValueError(f"Unhandled role: {role!r}")


def is_allowed(role: Role, permission: Permission) -> bool:
    return permission in permissions_for(role)


def authorize(context: RuntimeContext, user_id: str, permission: Permission) -> data_manager.UserRow:
    """Resolve ``user_id`` and require ``permission``.

    Returns:
        data_manager.UserRow: The authorised user.

    Raises:
        MissingReferenceError: If the user is unknown.
        AccessDenied: If the user's role lacks ``permission``.
    """
    user = core_logic.get_user(context, user_id)
    if not is_allowed(user.role, permission):
        log.warning("Denied '%s' (%s) permission '%s'", user_id, user.role.value, permission.value)
        raise AccessDenied(user_id, permission)
    log.debug("Granted '%s' (%s) permission '%s'", user_id, user.role.value, permission.value)
    return user


def authorize_sale(context: RuntimeContext, user_id: str, rider_id: str) -> data_manager.UserRow:
    """Require that ``user_id`` may record a sale on behalf of ``rider_id``.

    Riders sell only from their own stock; admins may record a sale for any
    rider.

    Raises:
        AccessDenied: If a rider attempts to sell from another rider's stock.
    """
    user = authorize(context, user_id, Permission.RECORD_SALE)
    if user.role is Role.RIDER and user.user_id != rider_id:
        log.warning("Rider '%s' attempted to sell from rider '%s' stock", user_id, rider_id)
        raise AccessDenied(user_id, Permission.RECORD_SALE)
    return user
