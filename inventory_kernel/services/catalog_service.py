"""
CatalogService -- items, hospitals, departments, subdepartments and users.

Responsibility:
    Read-mostly reference data consulted by every other component.  The
    only writes are explicit admin operations, each gated on the
    ADMINISTER_CATALOG permission.

Architecture position:
    Kernel > Services.  Seeded from ``inventory_config.ReferenceData`` by
    the outer facade; holds no ledger state.

Invariants enforced:
    - Identifiers are unique per entity type.
    - A department belongs to exactly one hospital.
    - Items are never removed, only deactivated, so log entries always
      resolve to a catalog item.

Failure modes:
    - NotFoundError for unknown ids.
    - InvalidInputError for duplicate ids or bad attribute values.
    - PermissionDeniedError for non-admin callers of admin operations.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import replace

from inventory_kernel.domain.authorization import Permission, require_permission
from inventory_kernel.domain.values import (
    Department,
    Hospital,
    Item,
    Subdepartment,
    User,
)
from inventory_kernel.exceptions import InvalidInputError, NotFoundError
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.catalog")

_ITEM_FIELDS = frozenset({"name", "category", "unit", "default_min_threshold", "is_active"})
_DEPARTMENT_FIELDS = frozenset({"name", "department_type", "staff_count"})
_HOSPITAL_FIELDS = frozenset({"name", "location", "hospital_type"})


class CatalogService:
    """
    Thread-safe in-memory catalog.

    Hospitals are stored without their nested departments; ``get_hospital``
    re-assembles the tree from the department index so that admin edits to
    a department are visible through its hospital.
    """

    def __init__(
        self,
        hospitals: Iterable[Hospital] = (),
        items: Iterable[Item] = (),
        users: Iterable[User] = (),
    ):
        self._lock = threading.RLock()
        self._hospitals: dict[str, Hospital] = {}
        self._departments: dict[str, Department] = {}
        self._items: dict[str, Item] = {}
        self._users: dict[str, User] = {}
        self._item_listeners: list[Callable[[Item], None]] = []

        for hospital in hospitals:
            self._insert_hospital(hospital)
        for item in items:
            self._insert_item(item)
        for user in users:
            self._insert_user(user)

    def add_item_listener(self, listener: Callable[[Item], None]) -> None:
        """Called after an admin edit changes an item."""
        self._item_listeners.append(listener)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_item(self, item_id: str) -> Item:
        with self._lock:
            item = self._items.get(item_id)
        if item is None:
            raise NotFoundError("Item", item_id)
        return item

    def find_item(self, item_id: str) -> Item | None:
        with self._lock:
            return self._items.get(item_id)

    def list_items(self, include_inactive: bool = True) -> list[Item]:
        with self._lock:
            items = list(self._items.values())
        return [i for i in items if include_inactive or i.is_active]

    def default_threshold(self, item_id: str) -> int:
        item = self.find_item(item_id)
        return item.default_min_threshold if item is not None else 0

    def get_department(self, department_id: str) -> Department:
        with self._lock:
            department = self._departments.get(department_id)
        if department is None:
            raise NotFoundError("Department", department_id)
        return department

    def find_department(self, department_id: str) -> Department | None:
        with self._lock:
            return self._departments.get(department_id)

    def list_departments(self, hospital_id: str | None = None) -> list[Department]:
        with self._lock:
            departments = list(self._departments.values())
        if hospital_id is not None:
            departments = [d for d in departments if d.hospital_id == hospital_id]
        return departments

    def get_hospital(self, hospital_id: str) -> Hospital:
        with self._lock:
            hospital = self._hospitals.get(hospital_id)
            if hospital is None:
                raise NotFoundError("Hospital", hospital_id)
            departments = tuple(
                d for d in self._departments.values() if d.hospital_id == hospital_id
            )
        return replace(hospital, departments=departments)

    def list_hospitals(self) -> list[Hospital]:
        with self._lock:
            ids = list(self._hospitals)
        return [self.get_hospital(hospital_id) for hospital_id in ids]

    def get_user(self, user_id: str) -> User:
        with self._lock:
            user = self._users.get(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def list_users(self) -> list[User]:
        with self._lock:
            return list(self._users.values())

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def add_item(self, item: Item, actor: User) -> Item:
        require_permission(actor, Permission.ADMINISTER_CATALOG)
        with self._lock:
            self._insert_item(item)
        logger.info("catalog_item_added", extra={"item_id": item.item_id, "actor_id": actor.user_id})
        return item

    def update_item(self, item_id: str, actor: User, **changes) -> Item:
        """Edit item metadata.  ``item_id`` itself is immutable."""
        require_permission(actor, Permission.ADMINISTER_CATALOG)
        self._check_fields("Item", changes, _ITEM_FIELDS)
        with self._lock:
            updated = replace(self.get_item(item_id), **changes)
            self._validate_item(updated)
            self._items[item_id] = updated
        logger.info(
            "catalog_item_updated",
            extra={"item_id": item_id, "actor_id": actor.user_id, "fields": sorted(changes)},
        )
        for listener in self._item_listeners:
            listener(updated)
        return updated

    def add_hospital(self, hospital: Hospital, actor: User) -> Hospital:
        require_permission(actor, Permission.ADMINISTER_CATALOG)
        with self._lock:
            self._insert_hospital(hospital)
        logger.info(
            "catalog_hospital_added",
            extra={"hospital_id": hospital.hospital_id, "actor_id": actor.user_id},
        )
        return self.get_hospital(hospital.hospital_id)

    def update_hospital(self, hospital_id: str, actor: User, **changes) -> Hospital:
        require_permission(actor, Permission.ADMINISTER_CATALOG)
        self._check_fields("Hospital", changes, _HOSPITAL_FIELDS)
        with self._lock:
            current = self._hospitals.get(hospital_id)
            if current is None:
                raise NotFoundError("Hospital", hospital_id)
            self._hospitals[hospital_id] = replace(current, **changes)
        logger.info(
            "catalog_hospital_updated",
            extra={"hospital_id": hospital_id, "actor_id": actor.user_id, "fields": sorted(changes)},
        )
        return self.get_hospital(hospital_id)

    def add_department(self, department: Department, actor: User) -> Department:
        require_permission(actor, Permission.ADMINISTER_CATALOG)
        with self._lock:
            if department.hospital_id not in self._hospitals:
                raise NotFoundError("Hospital", department.hospital_id)
            self._insert_department(department)
        logger.info(
            "catalog_department_added",
            extra={"department_id": department.department_id, "actor_id": actor.user_id},
        )
        return department

    def update_department(self, department_id: str, actor: User, **changes) -> Department:
        require_permission(actor, Permission.ADMINISTER_CATALOG)
        self._check_fields("Department", changes, _DEPARTMENT_FIELDS)
        with self._lock:
            updated = replace(self.get_department(department_id), **changes)
            if updated.staff_count < 0:
                raise InvalidInputError("staff_count must be >= 0", field="staff_count")
            self._departments[department_id] = updated
        logger.info(
            "catalog_department_updated",
            extra={"department_id": department_id, "actor_id": actor.user_id, "fields": sorted(changes)},
        )
        return updated

    def add_subdepartment(
        self,
        department_id: str,
        subdepartment: Subdepartment,
        actor: User,
    ) -> Department:
        require_permission(actor, Permission.ADMINISTER_CATALOG)
        with self._lock:
            department = self.get_department(department_id)
            if any(
                s.subdepartment_id == subdepartment.subdepartment_id
                for s in department.subdepartments
            ):
                raise InvalidInputError(
                    f"Subdepartment already exists: {subdepartment.subdepartment_id}",
                    field="subdepartment_id",
                )
            updated = replace(
                department,
                subdepartments=department.subdepartments + (subdepartment,),
            )
            self._departments[department_id] = updated
        logger.info(
            "catalog_subdepartment_added",
            extra={
                "department_id": department_id,
                "subdepartment_id": subdepartment.subdepartment_id,
                "actor_id": actor.user_id,
            },
        )
        return updated

    def add_user(self, user: User, actor: User) -> User:
        require_permission(actor, Permission.ADMINISTER_CATALOG)
        with self._lock:
            self._insert_user(user)
        logger.info("catalog_user_added", extra={"user_id": user.user_id, "actor_id": actor.user_id})
        return user

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_fields(entity: str, changes: dict, allowed: frozenset[str]) -> None:
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise InvalidInputError(
                f"{entity} fields cannot be edited: {', '.join(unknown)}",
                field=unknown[0],
            )

    @staticmethod
    def _validate_item(item: Item) -> None:
        if not item.item_id or not item.name:
            raise InvalidInputError("Item requires an id and a name", field="item_id")
        if item.default_min_threshold < 0:
            raise InvalidInputError(
                "default_min_threshold must be >= 0", field="default_min_threshold"
            )

    def _insert_item(self, item: Item) -> None:
        self._validate_item(item)
        if item.item_id in self._items:
            raise InvalidInputError(f"Duplicate item id: {item.item_id}", field="item_id")
        self._items[item.item_id] = item

    def _insert_hospital(self, hospital: Hospital) -> None:
        if hospital.hospital_id in self._hospitals:
            raise InvalidInputError(
                f"Duplicate hospital id: {hospital.hospital_id}", field="hospital_id"
            )
        self._hospitals[hospital.hospital_id] = replace(hospital, departments=())
        for department in hospital.departments:
            if department.hospital_id != hospital.hospital_id:
                department = replace(department, hospital_id=hospital.hospital_id)
            self._insert_department(department)

    def _insert_department(self, department: Department) -> None:
        if department.department_id in self._departments:
            raise InvalidInputError(
                f"Duplicate department id: {department.department_id}",
                field="department_id",
            )
        if department.staff_count < 0:
            raise InvalidInputError("staff_count must be >= 0", field="staff_count")
        self._departments[department.department_id] = department

    def _insert_user(self, user: User) -> None:
        if user.user_id in self._users:
            raise InvalidInputError(f"Duplicate user id: {user.user_id}", field="user_id")
        if user.department_id is not None and user.department_id not in self._departments:
            raise NotFoundError("Department", user.department_id)
        self._users[user.user_id] = user
