"""
Access-level permission checks for ledger operations.

The matrix below is the whole policy: READ_ONLY users may only read,
USER may book stock and request transfers, MANAGER may additionally
resolve transfers and maintain thresholds, ADMIN may also edit the catalog.
"""

from __future__ import annotations

from enum import Enum

from inventory_kernel.domain.values import AccessLevel, User
from inventory_kernel.exceptions import PermissionDeniedError


class Permission(str, Enum):
    READ = "read"
    BOOK_STOCK = "book_stock"
    REQUEST_TRANSFER = "request_transfer"
    RESOLVE_TRANSFER = "resolve_transfer"
    SET_THRESHOLD = "set_threshold"
    ADMINISTER_CATALOG = "administer_catalog"


_USER_PERMISSIONS = frozenset({
    Permission.READ,
    Permission.BOOK_STOCK,
    Permission.REQUEST_TRANSFER,
})

ACCESS_PERMISSIONS: dict[AccessLevel, frozenset[Permission]] = {
    AccessLevel.READ_ONLY: frozenset({Permission.READ}),
    AccessLevel.USER: _USER_PERMISSIONS,
    AccessLevel.MANAGER: _USER_PERMISSIONS | {
        Permission.RESOLVE_TRANSFER,
        Permission.SET_THRESHOLD,
    },
    AccessLevel.ADMIN: frozenset(Permission),
}


def has_permission(user: User, permission: Permission) -> bool:
    return permission in ACCESS_PERMISSIONS.get(user.access_level, frozenset())


def require_permission(user: User, permission: Permission) -> None:
    """Raise PermissionDeniedError unless ``user`` holds ``permission``."""
    if not has_permission(user, permission):
        raise PermissionDeniedError(
            user.user_id, permission.value, user.access_level.value
        )
